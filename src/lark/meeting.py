"""Meeting metadata lookup."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, ValidationError

from src.lark.client import LarkClient, LarkClientError
from src.models import Meeting

MEETING_ENDPOINT = "/open-apis/vc/v1/meetings/{meeting_id}"

_NOT_FOUND_CODES = frozenset({404, 99991663, 99991664})


class MeetingNotFoundError(Exception):
    def __init__(self, meeting_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Meeting not found: {meeting_id}")
        self.meeting_id = meeting_id


class MeetingApiError(Exception):
    def __init__(self, message: str, code: int, details: object | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class _LarkHostUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str


class _LarkMeeting(BaseModel):
    model_config = ConfigDict(extra="ignore")

    meeting_id: str
    topic: str
    start_time: int | None = None
    end_time: int | None = None
    host_user: _LarkHostUser | None = None
    participant_count: int | None = None


class MeetingClient:
    def __init__(self, client: LarkClient) -> None:
        self._client = client

    async def get_meeting_by_id(self, access_token: str, meeting_id: str) -> Meeting:
        endpoint = MEETING_ENDPOINT.format(meeting_id=meeting_id)
        try:
            envelope = await self._client.authenticated_request("GET", endpoint, access_token)
        except LarkClientError as exc:
            if exc.code in _NOT_FOUND_CODES:
                raise MeetingNotFoundError(meeting_id, str(exc)) from exc
            raise MeetingApiError(str(exc), exc.code, exc.details) from exc

        data = envelope.get("data") or {}
        # The VC API nests the record under "meeting".
        raw_meeting = data.get("meeting", data)
        if not raw_meeting:
            raise MeetingNotFoundError(meeting_id)
        try:
            raw = _LarkMeeting.model_validate(raw_meeting)
        except ValidationError as exc:
            raise MeetingApiError(
                "Malformed meeting response", 502, exc.errors(include_url=False),
            ) from exc

        return Meeting(
            id=raw.meeting_id,
            topic=raw.topic,
            start_time=raw.start_time,
            end_time=raw.end_time,
            host_user_id=raw.host_user.user_id if raw.host_user else None,
            participant_count=raw.participant_count,
        )
