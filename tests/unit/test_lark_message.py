"""Tests for minutes notification cards."""

from __future__ import annotations

import json

import httpx
import pytest

from src.lark.client import LarkClient
from src.lark.message import (
    NotificationService,
    build_minutes_completed_card,
    build_minutes_draft_card,
    format_date,
    format_duration,
)
from src.models import ActionItem, Priority, Speaker
from tests.conftest import make_minutes


def _texts(card: dict) -> list[str]:
    return [e["text"]["content"] for e in card["elements"] if e["tag"] == "div"]


def _buttons(card: dict) -> list[dict]:
    return [b for e in card["elements"] if e["tag"] == "action" for b in e["actions"]]


class TestFormatting:
    @pytest.mark.parametrize(("ms", "ja", "en"), [
        (45 * 60_000, "45分", "45m"),
        (60 * 60_000, "1時間", "1h"),
        (90 * 60_000, "1時間30分", "1h 30m"),
        (0, "0分", "0m"),
    ])
    def test_duration(self, ms: int, ja: str, en: str) -> None:
        assert format_duration(ms, "ja") == ja
        assert format_duration(ms, "en") == en

    def test_date(self) -> None:
        assert format_date("2024-01-15", "ja") == "2024年1月15日"
        assert format_date("2024-01-15", "en") == "January 15, 2024"

    def test_unparseable_date_passes_through(self) -> None:
        assert format_date("soon", "en") == "soon"


class TestCards:
    def test_completed_card_en(self) -> None:
        minutes = make_minutes(
            attendees=[Speaker(id="speaker_0", name="A"), Speaker(id="speaker_1", name="B")],
            action_items=[ActionItem(id="act_0", content="x", priority=Priority.LOW)],
        )
        card = build_minutes_completed_card(minutes, "https://docs.test/m", "en")
        assert card["header"]["template"] == "blue"
        assert card["header"]["title"]["content"] == "Minutes Created"
        texts = _texts(card)
        assert "**Meeting**: Weekly Sync" in texts
        assert "**Date**: January 15, 2024" in texts
        assert "**Duration**: 1h" in texts
        assert "**Attendees**: 2 people" in texts
        assert "**Action Items**: 1 items" in texts
        assert _buttons(card)[0]["url"] == "https://docs.test/m"

    def test_completed_card_ja_labels(self) -> None:
        card = build_minutes_completed_card(make_minutes(), "", "ja")
        assert card["header"]["title"]["content"] == "議事録が作成されました"
        assert "**参加者**: 0名" in _texts(card)

    def test_empty_url_omitted_from_button(self) -> None:
        card = build_minutes_completed_card(make_minutes(), "", "en")
        assert "url" not in _buttons(card)[0]

    def test_draft_card(self) -> None:
        card = build_minutes_draft_card(
            make_minutes(), "https://p.test", "https://a.test", "en",
        )
        assert card["header"]["template"] == "yellow"
        labels = [b["text"]["content"] for b in _buttons(card)]
        assert labels == ["Preview Draft", "Approve"]
        assert [b.get("url") for b in _buttons(card)] == ["https://p.test", "https://a.test"]


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_send_card_posts_interactive_message(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"code": 0, "data": {"message_id": "om_1"}})

        lark = LarkClient("https://lark.test", transport=httpx.MockTransport(handler))
        result = await NotificationService(lark).send_card("tok", "ou_1", {"k": "v"})
        assert result.success is True
        assert result.message_id == "om_1"
        request = seen[0]
        assert request.url.path == "/open-apis/im/v1/messages"
        assert request.url.params["receive_id_type"] == "open_id"
        body = json.loads(request.content)
        assert body["receive_id"] == "ou_1"
        assert body["msg_type"] == "interactive"
        assert json.loads(body["content"]) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_batch_reports_partial_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["receive_id"] == "ou_bad":
                return httpx.Response(200, json={"code": 230001, "msg": "no permission"})
            return httpx.Response(200, json={"code": 0, "data": {"message_id": "om"}})

        lark = LarkClient("https://lark.test", transport=httpx.MockTransport(handler))
        batch = await NotificationService(lark, language="en").send_minutes_notification(
            "tok", make_minutes(), ["ou_1", "ou_bad", "ou_2"],
        )
        assert batch.total == 3
        assert batch.succeeded == 2
        assert batch.failed == 1
        assert batch.success is False
        failed = [r for r in batch.results if not r.success]
        assert failed[0].recipient_id == "ou_bad"
        assert failed[0].error == "no permission"

    @pytest.mark.asyncio
    async def test_draft_notification_uses_configured_language(self) -> None:
        cards: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            cards.append(json.loads(json.loads(request.content)["content"]))
            return httpx.Response(200, json={"code": 0, "data": {"message_id": "om"}})

        lark = LarkClient("https://lark.test", transport=httpx.MockTransport(handler))
        result = await NotificationService(lark, language="en").send_draft_minutes_notification(
            "tok", make_minutes(), "ou_host",
        )
        assert result.success
        assert cards[0]["header"]["title"]["content"] == "Minutes Review Request"

    def test_unknown_language_falls_back_to_japanese(self) -> None:
        lark = LarkClient("https://lark.test")
        assert NotificationService(lark, language="fr")._language == "ja"
