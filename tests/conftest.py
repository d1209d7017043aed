"""Shared test fixtures for lark-minutes."""

from __future__ import annotations

import json
import time
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.models import (
    AuditEvent,
    AuditEventType,
    Minutes,
    MinutesGenerationResult,
    MinutesMetadata,
    RiskLevel,
    TokenUsage,
    Transcript,
    TranscriptSegment,
    TranscriptSpeaker,
)
from src.webhook.models import WebhookPayload
from src.webhook.signature import (
    NONCE_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
)

ENCRYPT_KEY = "test-encrypt-key"
VERIFICATION_TOKEN = "test-verification-token"
MEETING_END_TIME = 1_705_312_800  # 2024-01-15T10:00:00Z


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_meeting_ended_body(**event_overrides: Any) -> dict[str, Any]:
    """Raw meeting-ended webhook body as Lark sends it."""
    event: dict[str, Any] = {
        "type": "vc.meeting.meeting_ended_v1",
        "meeting_id": "meeting_001",
        "end_time": MEETING_END_TIME,
        "host_user_id": "ou_host",
        "topic": "Weekly Sync",
    }
    event.update(event_overrides)
    event_id = event_overrides.get("event_id", "evt_001")
    event.pop("event_id", None)
    return {
        "schema": "2.0",
        "header": {
            "event_id": event_id,
            "token": VERIFICATION_TOKEN,
            "create_time": str(MEETING_END_TIME * 1000),
            "event_type": event["type"],
            "tenant_key": "tenant",
            "app_id": "cli_test",
        },
        "event": event,
    }


def make_payload(**event_overrides: Any) -> WebhookPayload:
    return WebhookPayload.model_validate(make_meeting_ended_body(**event_overrides))


def sign_body(
    body: str,
    key: str = ENCRYPT_KEY,
    timestamp: str | None = None,
    nonce: str = "nonce-123",
) -> dict[str, str]:
    """Headers Lark would send with ``body``."""
    timestamp = timestamp or str(int(time.time()))
    return {
        "content-type": "application/json",
        TIMESTAMP_HEADER: timestamp,
        NONCE_HEADER: nonce,
        SIGNATURE_HEADER: compute_signature(timestamp, nonce, body, key),
    }


def signed_request(body: dict[str, Any], **kwargs: Any) -> tuple[str, dict[str, str]]:
    raw = json.dumps(body)
    return raw, sign_body(raw, **kwargs)


def make_transcript(meeting_id: str = "meeting_001", segments: int = 2) -> Transcript:
    speakers = [
        TranscriptSpeaker(id="u1", name="Tanaka"),
        TranscriptSpeaker(id="u2", name="Suzuki"),
    ]
    return Transcript(
        meeting_id=meeting_id,
        language="ja",
        segments=[
            TranscriptSegment(
                id=f"seg_{i}",
                start_time_ms=i * 60_000,
                end_time_ms=(i + 1) * 60_000,
                speaker=speakers[i % 2],
                text=f"Statement number {i}",
                confidence=0.9,
            )
            for i in range(segments)
        ],
    )


def make_minutes(**kwargs: Any) -> Minutes:
    defaults: dict[str, Any] = {
        "id": "min_meeting_001_1",
        "meeting_id": "meeting_001",
        "title": "Weekly Sync",
        "date": "2024-01-15",
        "duration": 3_600_000,
        "summary": "Discussed the release plan.",
        "topics": [],
        "decisions": [],
        "action_items": [],
        "attendees": [],
        "metadata": MinutesMetadata(
            generated_at="2024-01-15T10:05:00+00:00",
            model="claude-test",
            processing_time_ms=1200,
            confidence=0.8,
        ),
    }
    defaults.update(kwargs)
    return Minutes(**defaults)


def make_generation_result(**minutes_kwargs: Any) -> MinutesGenerationResult:
    return MinutesGenerationResult(
        minutes=make_minutes(**minutes_kwargs),
        processing_time_ms=1200,
        usage=TokenUsage(input_tokens=100, output_tokens=50),
    )


def make_minutes_output(**kwargs: Any) -> dict[str, Any]:
    """A well-formed model reply, as the parsed JSON object."""
    defaults: dict[str, Any] = {
        "summary": "The team reviewed the release schedule and agreed on next steps for QA.",
        "topics": [
            {
                "title": "Release schedule",
                "start_time": 0,
                "end_time": 120_000,
                "summary": "Release moves to Friday.",
                "key_points": ["Friday release"],
                "speakers": [{"name": "Tanaka"}],
            },
        ],
        "decisions": [
            {
                "content": "Ship on Friday",
                "context": "QA needs two more days",
                "decided_at": 60_000,
            },
        ],
        "action_items": [
            {
                "content": "Prepare release notes",
                "assignee": {"name": "Suzuki"},
                "due_date": "2024-01-19",
                "priority": "high",
            },
        ],
        "attendees": [{"name": "Tanaka"}, {"name": "Suzuki"}],
    }
    defaults.update(kwargs)
    return defaults


def make_audit_event(**kwargs: Any) -> AuditEvent:
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.WEBHOOK_REJECTED,
        "action": "/webhook/meeting-ended",
        "result": "rejected",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)
