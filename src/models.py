"""Shared Pydantic data models for the minutes pipeline."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

# --- Enums ---


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditEventType(str, Enum):
    WEBHOOK_ACCEPTED = "webhook_accepted"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_CHALLENGE = "webhook_challenge"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_FAILED = "pipeline_failed"
    PIPELINE_SKIPPED = "pipeline_skipped"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Transcript Models ---


class TranscriptSpeaker(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class TranscriptSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    start_time_ms: int = Field(ge=0)
    end_time_ms: int = Field(ge=0)
    speaker: TranscriptSpeaker
    text: str
    confidence: float | None = Field(default=None, ge=0, le=1)


class Transcript(BaseModel):
    model_config = ConfigDict(frozen=True)

    meeting_id: str
    language: str | None = None
    segments: list[TranscriptSegment]

    @property
    def total_duration_ms(self) -> int:
        if not self.segments:
            return 0
        return max(s.end_time_ms for s in self.segments)

    @property
    def speakers(self) -> list[TranscriptSpeaker]:
        seen: dict[str, TranscriptSpeaker] = {}
        for segment in self.segments:
            seen.setdefault(segment.speaker.id, segment.speaker)
        return list(seen.values())


# --- Meeting Models ---


class Meeting(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    topic: str
    start_time: int | None = None  # unix seconds
    end_time: int | None = None
    host_user_id: str | None = None
    participant_count: int | None = None


# --- Minutes Models ---


class Speaker(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    lark_user_id: str | None = None


class TopicSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    start_time: int = Field(ge=0)
    end_time: int = Field(ge=0)
    summary: str
    key_points: list[str]
    speakers: list[Speaker]

    @model_validator(mode="after")
    def _check_range(self) -> TopicSegment:
        if self.end_time < self.start_time:
            raise ValueError("end_time must be greater than or equal to start_time")
        return self


class DecisionItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    context: str
    decided_at: int = Field(ge=0)
    related_topic_id: str | None = None


class ActionItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    assignee: Speaker | None = None
    due_date: str | None = Field(default=None, pattern=_DATE_PATTERN)
    priority: Priority
    status: ActionItemStatus = ActionItemStatus.PENDING
    related_topic_id: str | None = None


class MinutesMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    generated_at: str  # ISO8601
    model: str
    processing_time_ms: int = Field(ge=0)
    confidence: float = Field(ge=0, le=1)


class Minutes(BaseModel):
    """Structured minutes shared by generation, notification and storage."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    meeting_id: str = Field(min_length=1)
    title: str
    date: str = Field(pattern=_DATE_PATTERN)
    duration: int = Field(ge=0)
    summary: str
    topics: list[TopicSegment]
    decisions: list[DecisionItem]
    action_items: list[ActionItem]
    attendees: list[Speaker]
    metadata: MinutesMetadata


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)


class MinutesGenerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    minutes: Minutes
    processing_time_ms: int = Field(ge=0)
    usage: TokenUsage


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def unix_to_date(timestamp: int) -> str:
    """Render a unix timestamp (seconds) as a YYYY-MM-DD UTC date."""
    return datetime.fromtimestamp(timestamp, UTC).date().isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    event_id: str | None = None
    meeting_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "rejected" | "skipped"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
