"""Tests for minutes persistence in Lark Base."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.lark.bitable import MinutesStore, MinutesStoreError, minutes_to_fields
from src.lark.client import LarkClient
from src.lark.token import AppAccessTokenProvider
from src.models import ActionItem, Priority
from tests.conftest import make_minutes

RECORDS_PATH = "/open-apis/bitable/v1/apps/app_tok/tables/tbl_1/records"


def _token_provider() -> MagicMock:
    provider = MagicMock(spec=AppAccessTokenProvider)
    provider.get_token = AsyncMock(return_value="tok")
    return provider


class _FakeBase:
    """In-memory records endpoint with pagination."""

    def __init__(self, versions: list[int], page_size: int = 2) -> None:
        self.records: list[dict[str, Any]] = [
            {"record_id": f"rec_{v}", "fields": {"meeting_id": "m1", "version": v}}
            for v in versions
        ]
        self.page_size = page_size
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            start = int(request.url.params.get("page_token") or 0)
            page = self.records[start:start + self.page_size]
            has_more = start + self.page_size < len(self.records)
            return httpx.Response(200, json={"code": 0, "data": {
                "items": page,
                "has_more": has_more,
                "page_token": str(start + self.page_size) if has_more else None,
            }})
        fields = json.loads(request.content)["fields"]
        record_id = f"rec_new_{fields['version']}"
        self.records.append({"record_id": record_id, "fields": fields})
        return httpx.Response(200, json={"code": 0, "data": {"record": {"record_id": record_id}}})


def _store(base: _FakeBase) -> MinutesStore:
    client = LarkClient("https://lark.test", transport=httpx.MockTransport(base))
    return MinutesStore(client, _token_provider(), "app_tok", "tbl_1")


class TestMinutesToFields:
    def test_serializes_nested_lists_as_json(self) -> None:
        minutes = make_minutes(action_items=[
            ActionItem(id="act_0", content="Write notes", priority=Priority.HIGH),
        ])
        fields = minutes_to_fields(minutes, "m1", 3)
        assert fields["version"] == 3
        assert fields["meeting_id"] == "m1"
        assert json.loads(fields["action_items_json"])[0]["priority"] == "high"
        assert json.loads(fields["topics_json"]) == []
        assert fields["created_at"] == fields["updated_at"]

    def test_keeps_non_ascii_text(self) -> None:
        fields = minutes_to_fields(make_minutes(summary="議事録"), "m1", 1)
        assert fields["summary"] == "議事録"


class TestMinutesStore:
    @pytest.mark.asyncio
    async def test_first_save_is_version_one(self) -> None:
        base = _FakeBase([])
        result = await _store(base).save_minutes(make_minutes(), "m1")
        assert result.version == 1
        assert result.record_id == "rec_new_1"

    @pytest.mark.asyncio
    async def test_appends_next_version_across_pages(self) -> None:
        base = _FakeBase([1, 2, 3, 4, 5])
        result = await _store(base).save_minutes(make_minutes(), "m1")
        assert result.version == 6
        gets = [r for r in base.requests if r.method == "GET"]
        assert len(gets) == 3
        assert gets[0].url.params["filter"] == 'CurrentValue.[meeting_id]="m1"'

    @pytest.mark.asyncio
    async def test_earlier_versions_untouched(self) -> None:
        base = _FakeBase([1])
        store = _store(base)
        await store.save_minutes(make_minutes(), "m1")
        await store.save_minutes(make_minutes(), "m1")
        assert [r["fields"]["version"] for r in base.records] == [1, 2, 3]
        assert all(r.method in ("GET", "POST") for r in base.requests)

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self) -> None:
        client = LarkClient(
            "https://lark.test",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"code": 1254045, "msg": "field missing"}),
            ),
        )
        store = MinutesStore(client, _token_provider(), "app_tok", "tbl_1")
        with pytest.raises(MinutesStoreError) as exc_info:
            await store.save_minutes(make_minutes(), "m1")
        assert exc_info.value.code == 1254045

    @pytest.mark.asyncio
    async def test_missing_record_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"code": 0, "data": {"items": []}})
            return httpx.Response(200, json={"code": 0, "data": {}})

        client = LarkClient("https://lark.test", transport=httpx.MockTransport(handler))
        store = MinutesStore(client, _token_provider(), "app_tok", "tbl_1")
        with pytest.raises(MinutesStoreError, match="no record_id"):
            await store.save_minutes(make_minutes(), "m1")
