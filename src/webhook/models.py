"""Data models for Lark webhook requests and pipeline outcomes."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

MEETING_ENDED = "vc.meeting.meeting_ended_v1"
TRANSCRIPT_READY = "vc.meeting.transcript_ready_v1"
RECORDING_READY = "vc.meeting.recording_ready_v1"


class ProcessingState(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineStage(str, Enum):
    ACCEPTED = "accepted"
    WAITING_FOR_TRANSCRIPT = "waiting_for_transcript"
    FETCHING_TRANSCRIPT = "fetching_transcript"
    GENERATING_MINUTES = "generating_minutes"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookHeader(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    event_id: str = Field(min_length=1)
    token: str = Field(min_length=1)
    create_time: str = Field(min_length=1)
    event_type: str = Field(min_length=1)
    tenant_key: str | None = None
    app_id: str | None = None


class MeetingEndedEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: Literal["vc.meeting.meeting_ended_v1"]
    meeting_id: str = Field(min_length=1)
    end_time: int = Field(gt=0, strict=True)  # unix seconds
    host_user_id: str = Field(min_length=1)
    topic: str | None = None
    duration: int | None = Field(default=None, ge=0)
    participant_count: int | None = Field(default=None, ge=0)


class TranscriptReadyEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: Literal["vc.meeting.transcript_ready_v1"]
    meeting_id: str = Field(min_length=1)
    transcript_id: str = Field(min_length=1)
    ready_time: int = Field(gt=0)


class RecordingReadyEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: Literal["vc.meeting.recording_ready_v1"]
    meeting_id: str = Field(min_length=1)
    recording_id: str = Field(min_length=1)
    ready_time: int = Field(gt=0)


WebhookEvent = Annotated[
    MeetingEndedEvent | TranscriptReadyEvent | RecordingReadyEvent,
    Field(discriminator="type"),
]


class WebhookPayload(BaseModel):
    """Signed event envelope delivered by the Lark event subscription."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    header: WebhookHeader
    event: WebhookEvent
    schema_version: str | None = Field(default=None, alias="schema")

    @property
    def event_id(self) -> str:
        return self.header.event_id


class WebhookChallenge(BaseModel):
    """URL verification handshake sent when the subscription is configured."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    challenge: str = Field(min_length=1)
    token: str = Field(min_length=1)
    type: Literal["url_verification"]


class SignatureVerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    error: str | None = None
    timestamp: str | None = None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class PipelineProcessingResult(BaseModel):
    """Terminal record of one webhook event's processing."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    state: ProcessingState
    meeting_id: str | None = None
    duration_ms: int = Field(ge=0)
    error: str | None = None
    retry_count: int | None = Field(default=None, ge=0)
    completed_at: str = Field(default_factory=_now_iso)
