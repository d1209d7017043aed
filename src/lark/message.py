"""Interactive-card notifications sent through the Lark IM API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

from src.lark.client import LarkClient, LarkClientError
from src.models import Minutes

logger = logging.getLogger(__name__)

SEND_MESSAGE_ENDPOINT = "/open-apis/im/v1/messages"

Language = Literal["ja", "en"]

_LABELS: dict[str, dict[str, dict[str, str]]] = {
    "completed": {
        "ja": {
            "title": "議事録が作成されました",
            "meeting": "会議名",
            "date": "日付",
            "duration": "時間",
            "attendees": "参加者",
            "action_items": "アクションアイテム",
            "view": "議事録を確認",
            "people": "{n}名",
            "items": "{n}件",
        },
        "en": {
            "title": "Minutes Created",
            "meeting": "Meeting",
            "date": "Date",
            "duration": "Duration",
            "attendees": "Attendees",
            "action_items": "Action Items",
            "view": "View Minutes",
            "people": "{n} people",
            "items": "{n} items",
        },
    },
    "draft": {
        "ja": {
            "title": "議事録の確認依頼",
            "description": "以下の会議の議事録が作成されました。内容をご確認ください。",
            "meeting": "会議名",
            "date": "日付",
            "preview": "下書きを確認",
            "approve": "承認する",
        },
        "en": {
            "title": "Minutes Review Request",
            "description": (
                "Minutes have been created for the following meeting. "
                "Please review the content."
            ),
            "meeting": "Meeting",
            "date": "Date",
            "preview": "Preview Draft",
            "approve": "Approve",
        },
    },
}

_MONTHS_EN = [
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
]


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    recipient_id: str
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchNotificationResult:
    results: list[NotificationResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def success(self) -> bool:
        return self.failed == 0


def format_duration(duration_ms: int, language: Language) -> str:
    total_minutes = duration_ms // 60_000
    hours, minutes = divmod(total_minutes, 60)
    if language == "ja":
        if hours and minutes:
            return f"{hours}時間{minutes}分"
        if hours:
            return f"{hours}時間"
        return f"{minutes}分"
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def format_date(value: str, language: Language) -> str:
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return value
    if language == "ja":
        return f"{parsed.year}年{parsed.month}月{parsed.day}日"
    return f"{_MONTHS_EN[parsed.month - 1]} {parsed.day}, {parsed.year}"


def _md(content: str) -> dict[str, Any]:
    return {"tag": "div", "text": {"tag": "lark_md", "content": content}}


def _button(label: str, url: str, kind: str) -> dict[str, Any]:
    button: dict[str, Any] = {
        "tag": "button",
        "text": {"tag": "plain_text", "content": label},
        "type": kind,
    }
    # Lark rejects buttons with an empty url.
    if url:
        button["url"] = url
    return button


def build_minutes_completed_card(
    minutes: Minutes, document_url: str, language: Language = "ja",
) -> dict[str, Any]:
    labels = _LABELS["completed"][language]
    return {
        "header": {
            "title": {"tag": "plain_text", "content": labels["title"]},
            "template": "blue",
        },
        "elements": [
            _md(f"**{labels['meeting']}**: {minutes.title}"),
            _md(f"**{labels['date']}**: {format_date(minutes.date, language)}"),
            _md(f"**{labels['duration']}**: {format_duration(minutes.duration, language)}"),
            _md(f"**{labels['attendees']}**: "
                + labels["people"].format(n=len(minutes.attendees))),
            _md(f"**{labels['action_items']}**: "
                + labels["items"].format(n=len(minutes.action_items))),
            {"tag": "hr"},
            {"tag": "action", "actions": [_button(labels["view"], document_url, "primary")]},
        ],
    }


def build_minutes_draft_card(
    minutes: Minutes, preview_url: str, approve_url: str, language: Language = "ja",
) -> dict[str, Any]:
    labels = _LABELS["draft"][language]
    return {
        "header": {
            "title": {"tag": "plain_text", "content": labels["title"]},
            "template": "yellow",
        },
        "elements": [
            _md(labels["description"]),
            {"tag": "hr"},
            _md(f"**{labels['meeting']}**: {minutes.title}"),
            _md(f"**{labels['date']}**: {format_date(minutes.date, language)}"),
            {"tag": "hr"},
            {
                "tag": "action",
                "actions": [
                    _button(labels["preview"], preview_url, "default"),
                    _button(labels["approve"], approve_url, "primary"),
                ],
            },
        ],
    }


class NotificationService:
    """Sends minutes cards to users identified by open_id."""

    def __init__(self, client: LarkClient, language: str = "ja") -> None:
        self._client = client
        self._language: Language = "en" if language == "en" else "ja"

    async def send_card(
        self, access_token: str, recipient_id: str, card: dict[str, Any],
    ) -> NotificationResult:
        try:
            envelope = await self._client.authenticated_request(
                "POST",
                SEND_MESSAGE_ENDPOINT,
                access_token,
                params={"receive_id_type": "open_id"},
                json={
                    "receive_id": recipient_id,
                    "msg_type": "interactive",
                    "content": json.dumps(card, ensure_ascii=False),
                },
            )
        except LarkClientError as exc:
            logger.warning("Failed to send card to %s: %s", recipient_id, exc)
            return NotificationResult(success=False, recipient_id=recipient_id, error=str(exc))

        message_id = (envelope.get("data") or {}).get("message_id")
        return NotificationResult(success=True, recipient_id=recipient_id, message_id=message_id)

    async def send_minutes_notification(
        self,
        access_token: str,
        minutes: Minutes,
        recipients: list[str],
        document_url: str = "",
    ) -> BatchNotificationResult:
        card = build_minutes_completed_card(minutes, document_url, self._language)
        results = [
            await self.send_card(access_token, recipient, card) for recipient in recipients
        ]
        return BatchNotificationResult(results=results)

    async def send_draft_minutes_notification(
        self,
        access_token: str,
        minutes: Minutes,
        recipient: str,
        preview_url: str = "",
        approve_url: str = "",
    ) -> NotificationResult:
        card = build_minutes_draft_card(minutes, preview_url, approve_url, self._language)
        return await self.send_card(access_token, recipient, card)
