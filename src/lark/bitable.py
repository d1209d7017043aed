"""Minutes persistence in a Lark Base (bitable) table.

Each save appends a new record; earlier versions of a meeting's minutes are
never overwritten.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from src.lark.client import LarkClient, LarkClientError
from src.lark.token import AppAccessTokenProvider
from src.models import Minutes

logger = logging.getLogger(__name__)

RECORDS_ENDPOINT = "/open-apis/bitable/v1/apps/{app_token}/tables/{table_id}/records"
_PAGE_SIZE = "100"


class MinutesStoreError(Exception):
    def __init__(self, message: str, code: int, details: object | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


@dataclass(frozen=True)
class SaveResult:
    record_id: str
    version: int


def minutes_to_fields(minutes: Minutes, meeting_id: str, version: int) -> dict[str, Any]:
    now_ms = int(time.time() * 1000)
    return {
        "minutes_id": minutes.id,
        "meeting_id": meeting_id,
        "version": version,
        "title": minutes.title,
        "date": minutes.date,
        "summary": minutes.summary,
        "topics_json": json.dumps(
            [t.model_dump(mode="json") for t in minutes.topics], ensure_ascii=False,
        ),
        "decisions_json": json.dumps(
            [d.model_dump(mode="json") for d in minutes.decisions], ensure_ascii=False,
        ),
        "action_items_json": json.dumps(
            [a.model_dump(mode="json") for a in minutes.action_items], ensure_ascii=False,
        ),
        "attendees_json": json.dumps(
            [s.model_dump(mode="json") for s in minutes.attendees], ensure_ascii=False,
        ),
        "generated_at": minutes.metadata.generated_at,
        "model": minutes.metadata.model,
        "confidence": minutes.metadata.confidence,
        "created_at": now_ms,
        "updated_at": now_ms,
    }


class MinutesStore:
    def __init__(
        self,
        client: LarkClient,
        token_provider: AppAccessTokenProvider,
        app_token: str,
        table_id: str,
    ) -> None:
        self._client = client
        self._token_provider = token_provider
        self._endpoint = RECORDS_ENDPOINT.format(app_token=app_token, table_id=table_id)

    async def _existing_versions(self, access_token: str, meeting_id: str) -> list[int]:
        versions: list[int] = []
        page_token: str | None = None
        while True:
            params = {
                "filter": f'CurrentValue.[meeting_id]="{meeting_id}"',
                "page_size": _PAGE_SIZE,
            }
            if page_token:
                params["page_token"] = page_token
            envelope = await self._client.authenticated_request(
                "GET", self._endpoint, access_token, params=params,
            )
            data = envelope.get("data") or {}
            for item in data.get("items") or []:
                version = (item.get("fields") or {}).get("version")
                if isinstance(version, int | float):
                    versions.append(int(version))
            page_token = data.get("page_token")
            if not data.get("has_more") or not page_token:
                return versions

    async def save_minutes(self, minutes: Minutes, meeting_id: str) -> SaveResult:
        try:
            access_token = await self._token_provider.get_token()
            version = max(await self._existing_versions(access_token, meeting_id), default=0) + 1
        except LarkClientError as exc:
            raise MinutesStoreError(str(exc), exc.code, exc.details) from exc
        try:
            envelope = await self._client.authenticated_request(
                "POST",
                self._endpoint,
                access_token,
                json={"fields": minutes_to_fields(minutes, meeting_id, version)},
            )
        except LarkClientError as exc:
            raise MinutesStoreError(str(exc), exc.code, exc.details) from exc

        record = (envelope.get("data") or {}).get("record") or {}
        record_id = record.get("record_id")
        if not record_id:
            raise MinutesStoreError("Record creation returned no record_id", 502, envelope)

        logger.info(
            "Saved minutes for meeting %s as version %d (record %s)",
            meeting_id, version, record_id,
        )
        return SaveResult(record_id=record_id, version=version)
