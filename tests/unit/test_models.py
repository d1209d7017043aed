"""Tests for shared Pydantic data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.models import (
    ActionItem,
    ActionItemStatus,
    Priority,
    Speaker,
    TopicSegment,
    Transcript,
    TranscriptSegment,
    TranscriptSpeaker,
    unix_to_date,
)
from src.webhook.models import PipelineProcessingResult, ProcessingState, WebhookPayload
from tests.conftest import make_meeting_ended_body, make_minutes, make_transcript


class TestTranscript:
    def test_speakers_deduplicated_in_order(self):
        transcript = make_transcript(segments=4)
        assert [s.id for s in transcript.speakers] == ["u1", "u2"]

    def test_total_duration_is_last_end_time(self):
        assert make_transcript(segments=3).total_duration_ms == 180_000

    def test_empty_transcript(self):
        transcript = Transcript(meeting_id="m", segments=[])
        assert transcript.total_duration_ms == 0
        assert transcript.speakers == []

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            TranscriptSegment(
                id="s",
                start_time_ms=0,
                end_time_ms=1,
                speaker=TranscriptSpeaker(id="u", name="n"),
                text="t",
                confidence=1.5,
            )


class TestMinutes:
    def test_date_must_be_iso_day(self):
        with pytest.raises(ValidationError):
            make_minutes(date="15/01/2024")

    def test_frozen(self):
        minutes = make_minutes()
        with pytest.raises(ValidationError):
            minutes.title = "changed"  # type: ignore[misc]

    def test_topic_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            TopicSegment(
                id="topic_0",
                title="t",
                start_time=10,
                end_time=5,
                summary="",
                key_points=[],
                speakers=[],
            )

    def test_action_item_defaults_to_pending(self):
        item = ActionItem(id="act_0", content="Do it", priority=Priority.LOW)
        assert item.status is ActionItemStatus.PENDING
        assert item.model_dump()["priority"] == "low"

    def test_action_item_due_date_format(self):
        with pytest.raises(ValidationError):
            ActionItem(id="act_0", content="x", priority=Priority.HIGH, due_date="tomorrow")

    def test_speaker_requires_name(self):
        with pytest.raises(ValidationError):
            Speaker(id="speaker_0", name="")


class TestWebhookPayload:
    def test_schema_alias_round_trip(self):
        payload = WebhookPayload.model_validate(make_meeting_ended_body())
        dumped = payload.model_dump(by_alias=True)
        assert dumped["schema"] == "2.0"
        assert WebhookPayload.model_validate(dumped) == payload

    def test_event_id_comes_from_header(self):
        payload = WebhookPayload.model_validate(make_meeting_ended_body(event_id="abc"))
        assert payload.event_id == "abc"


class TestPipelineProcessingResult:
    def test_completed_at_defaults_to_now(self):
        result = PipelineProcessingResult(
            event_id="e", state=ProcessingState.COMPLETED, duration_ms=5,
        )
        assert "T" in result.completed_at

    def test_negative_retry_count_rejected(self):
        with pytest.raises(ValidationError):
            PipelineProcessingResult(
                event_id="e", state=ProcessingState.FAILED, duration_ms=0, retry_count=-1,
            )


def test_unix_to_date_is_utc():
    assert unix_to_date(1_705_312_800) == "2024-01-15"
    assert unix_to_date(1_705_363_199) == "2024-01-15"
