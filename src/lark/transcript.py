"""Meeting transcript retrieval.

Lark publishes the transcript some time after a meeting ends. Until then the
API answers with "resource not found" / "transcript not available" codes or an
empty segment list; both are reported as ``TranscriptNotReadyError`` so the
pipeline can keep polling. A meeting that does not exist at all is permanent.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.lark.client import LarkClient, LarkClientError
from src.models import Transcript, TranscriptSegment, TranscriptSpeaker

logger = logging.getLogger(__name__)

TRANSCRIPT_ENDPOINT = "/open-apis/vc/v1/meetings/{meeting_id}/transcript"

MEETING_NOT_FOUND_CODE = 99991663
RESOURCE_NOT_FOUND_CODE = 99991664
TRANSCRIPT_NOT_AVAILABLE_CODE = 99991672

_NOT_READY_CODES = frozenset({RESOURCE_NOT_FOUND_CODE, TRANSCRIPT_NOT_AVAILABLE_CODE})


class TranscriptNotReadyError(Exception):
    """Transcript is not yet published; retrying later may succeed."""

    def __init__(self, meeting_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Transcript not ready for meeting: {meeting_id}")
        self.meeting_id = meeting_id


class TranscriptUnavailableError(Exception):
    """Transcript will never be available (e.g. the meeting does not exist)."""

    def __init__(self, meeting_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Transcript unavailable for meeting: {meeting_id}")
        self.meeting_id = meeting_id


class TranscriptApiError(Exception):
    """Any other transcript API failure.

    ``status`` is set only for HTTP-level failures so the generic retry
    predicate treats 5xx and 429 as transient; ``code`` keeps the raw value.
    """

    def __init__(
        self,
        message: str,
        code: int,
        status: int | None = None,
        details: object | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.details = details

    @classmethod
    def from_client_error(cls, error: LarkClientError) -> TranscriptApiError:
        return cls(str(error), error.code, error.status, error.details)


# --- Lark wire schema ---


class _LarkSpeaker(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    name: str


class _LarkSegment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    segment_id: str
    start_time: int = Field(ge=0)
    end_time: int = Field(ge=0)
    speaker: _LarkSpeaker
    text: str
    confidence: float | None = Field(default=None, ge=0, le=1)


class _LarkTranscript(BaseModel):
    model_config = ConfigDict(extra="ignore")

    meeting_id: str
    language: str | None = None
    segments: list[_LarkSegment] = Field(default_factory=list)


def to_transcript(raw: _LarkTranscript) -> Transcript:
    return Transcript(
        meeting_id=raw.meeting_id,
        language=raw.language,
        segments=[
            TranscriptSegment(
                id=s.segment_id,
                start_time_ms=s.start_time,
                end_time_ms=s.end_time,
                speaker=TranscriptSpeaker(id=s.speaker.user_id, name=s.speaker.name),
                text=s.text,
                confidence=s.confidence,
            )
            for s in raw.segments
        ],
    )


class TranscriptClient:
    def __init__(self, client: LarkClient) -> None:
        self._client = client

    async def get_transcript(self, access_token: str, meeting_id: str) -> Transcript:
        endpoint = TRANSCRIPT_ENDPOINT.format(meeting_id=meeting_id)
        try:
            envelope = await self._client.authenticated_request("GET", endpoint, access_token)
        except LarkClientError as exc:
            if exc.code in _NOT_READY_CODES:
                raise TranscriptNotReadyError(meeting_id, str(exc)) from exc
            if exc.code == MEETING_NOT_FOUND_CODE:
                raise TranscriptUnavailableError(meeting_id, str(exc)) from exc
            raise TranscriptApiError.from_client_error(exc) from exc

        data = envelope.get("data")
        if data is None:
            raise TranscriptNotReadyError(meeting_id)
        try:
            raw = _LarkTranscript.model_validate(data)
        except ValidationError as exc:
            raise TranscriptApiError(
                "Malformed transcript response", 502, details=exc.errors(include_url=False),
            ) from exc

        if not raw.segments:
            raise TranscriptNotReadyError(meeting_id, "Transcript has no segments yet")

        transcript = to_transcript(raw)
        logger.debug(
            "Fetched transcript for %s (%d segments)", meeting_id, len(transcript.segments),
        )
        return transcript
