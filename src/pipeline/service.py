"""Meeting-ended processing pipeline.

One accepted event moves through::

    ACCEPTED -> WAITING_FOR_TRANSCRIPT -> FETCHING_TRANSCRIPT -> GENERATING_MINUTES
             -> COMPLETED | FAILED

The pre-delay gives Lark time to publish the transcript before the first
fetch. Fetching is retried with backoff while the transcript is not ready;
generation is called exactly once. ``process_event`` always returns a
terminal result and never raises; success and failure are also reported to
every registered callback, each isolated from the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.audit.logger import AuditLogger
from src.generation.service import MeetingInfo, MinutesGenerationService
from src.lark.meeting import MeetingApiError, MeetingClient, MeetingNotFoundError
from src.lark.token import AppAccessTokenProvider
from src.lark.transcript import (
    TranscriptClient,
    TranscriptNotReadyError,
    TranscriptUnavailableError,
)
from src.models import (
    AuditEvent,
    AuditEventType,
    MinutesGenerationResult,
    RiskLevel,
    Transcript,
    unix_to_date,
)
from src.retry import RetryConfig, default_should_retry, retry
from src.webhook.models import (
    MeetingEndedEvent,
    PipelineProcessingResult,
    PipelineStage,
    ProcessingState,
    WebhookPayload,
)
from src.webhook.replay_protection import ProcessedEventStore

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPT_RETRY = RetryConfig(
    max_retries=5, initial_delay_ms=5000, max_delay_ms=60000,
)


@dataclass(frozen=True)
class PipelineContext:
    """What callbacks know about the meeting being processed."""

    meeting_id: str
    host_user_id: str
    end_time: int
    event_id: str
    topic: str | None = None
    participant_count: int | None = None

    @classmethod
    def from_event(cls, event: MeetingEndedEvent, event_id: str) -> PipelineContext:
        return cls(
            meeting_id=event.meeting_id,
            host_user_id=event.host_user_id,
            end_time=event.end_time,
            event_id=event_id,
            topic=event.topic,
            participant_count=event.participant_count,
        )


class PipelineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    transcript_ready_delay_ms: int = Field(default=30000, ge=0)
    transcript_retry: RetryConfig = DEFAULT_TRANSCRIPT_RETRY


OnMinutesGenerated = Callable[[PipelineContext, MinutesGenerationResult], Awaitable[None]]
OnProcessingFailed = Callable[[PipelineContext, BaseException], Awaitable[None]]


def should_retry_transcript(error: BaseException, attempt: int = 0) -> bool:
    """Retry not-ready and transient failures; never a transcript that cannot exist."""
    if isinstance(error, TranscriptUnavailableError):
        return False
    if isinstance(error, TranscriptNotReadyError):
        return True
    return default_should_retry(error, attempt)


class _StageFailure(Exception):
    """Carries the original error plus how many transcript attempts were made."""

    def __init__(self, error: BaseException, attempts: int | None) -> None:
        super().__init__(str(error))
        self.error = error
        self.attempts = attempts


class MeetingMinutesPipeline:
    def __init__(
        self,
        transcripts: TranscriptClient,
        generator: MinutesGenerationService,
        token_provider: AppAccessTokenProvider,
        config: PipelineConfig | None = None,
        meetings: MeetingClient | None = None,
        event_store: ProcessedEventStore | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._transcripts = transcripts
        self._generator = generator
        self._token_provider = token_provider
        self._config = config or PipelineConfig()
        self._meetings = meetings
        self._event_store = event_store
        self._audit = audit_logger
        self._on_generated: list[OnMinutesGenerated] = []
        self._on_failed: list[OnProcessingFailed] = []

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def on_minutes_generated(self, callback: OnMinutesGenerated) -> None:
        self._on_generated.append(callback)

    def on_processing_failed(self, callback: OnProcessingFailed) -> None:
        self._on_failed.append(callback)

    async def process_event(
        self, payload: WebhookPayload, *, deduplicate: bool = True,
    ) -> PipelineProcessingResult:
        """Run one event to a terminal state.

        ``deduplicate=False`` is for re-driving an event this process already
        accepted (e.g. from the outbox after a restart).
        """
        start = time.monotonic()
        event_id = payload.event_id
        event = payload.event

        if deduplicate and not self._is_new_event(event_id):
            logger.info("Skipping duplicate event %s", event_id)
            result = PipelineProcessingResult(
                event_id=event_id,
                state=ProcessingState.SKIPPED,
                meeting_id=event.meeting_id,
                duration_ms=_elapsed_ms(start),
            )
            self._audit_result(result, AuditEventType.PIPELINE_SKIPPED)
            return result

        if not isinstance(event, MeetingEndedEvent):
            # Transcript- and recording-ready notifications need no work here.
            logger.info("Acknowledged %s for meeting %s", event.type, event.meeting_id)
            return PipelineProcessingResult(
                event_id=event_id,
                state=ProcessingState.COMPLETED,
                meeting_id=event.meeting_id,
                duration_ms=_elapsed_ms(start),
            )

        context = PipelineContext.from_event(event, event_id)
        try:
            result = await self._handle_meeting_ended(context, start)
        except Exception:
            # Only reachable through a bug in this module; keep the caller safe.
            logger.exception("Unexpected pipeline error for event %s", event_id)
            result = PipelineProcessingResult(
                event_id=event_id,
                state=ProcessingState.FAILED,
                meeting_id=context.meeting_id,
                duration_ms=_elapsed_ms(start),
                error="Unexpected pipeline error",
            )

        self._audit_result(
            result,
            AuditEventType.PIPELINE_COMPLETED
            if result.state is ProcessingState.COMPLETED
            else AuditEventType.PIPELINE_FAILED,
        )
        return result

    async def _handle_meeting_ended(
        self, context: PipelineContext, start: float,
    ) -> PipelineProcessingResult:
        self._stage(context, PipelineStage.ACCEPTED)
        try:
            generated, attempts = await self._run_stages(context)
        except _StageFailure as failure:
            self._stage(context, PipelineStage.FAILED, error=failure.error)
            await self._run_callbacks(self._on_failed, context, failure.error)
            return PipelineProcessingResult(
                event_id=context.event_id,
                state=ProcessingState.FAILED,
                meeting_id=context.meeting_id,
                duration_ms=_elapsed_ms(start),
                error=str(failure.error),
                retry_count=failure.attempts - 1 if failure.attempts else None,
            )

        self._stage(context, PipelineStage.COMPLETED)
        await self._run_callbacks(self._on_generated, context, generated)
        return PipelineProcessingResult(
            event_id=context.event_id,
            state=ProcessingState.COMPLETED,
            meeting_id=context.meeting_id,
            duration_ms=_elapsed_ms(start),
            retry_count=attempts - 1,
        )

    async def _run_stages(
        self, context: PipelineContext,
    ) -> tuple[MinutesGenerationResult, int]:
        try:
            access_token = await self._token_provider.get_token()
        except Exception as exc:
            raise _StageFailure(exc, None) from exc

        self._stage(context, PipelineStage.WAITING_FOR_TRANSCRIPT)
        await asyncio.sleep(self._config.transcript_ready_delay_ms / 1000)

        self._stage(context, PipelineStage.FETCHING_TRANSCRIPT)
        transcript, attempts = await self._fetch_transcript(access_token, context.meeting_id)

        self._stage(context, PipelineStage.GENERATING_MINUTES)
        try:
            meeting = await self._meeting_info(access_token, context, transcript)
            generated = await self._generator.generate_minutes(transcript, meeting)
        except Exception as exc:
            raise _StageFailure(exc, attempts) from exc
        return generated, attempts

    async def _fetch_transcript(
        self, access_token: str, meeting_id: str,
    ) -> tuple[Transcript, int]:
        def on_retry(attempt: int, error: BaseException, delay_ms: int) -> None:
            logger.warning(
                "Transcript for %s not available (retry %d in %dms): %s",
                meeting_id, attempt, delay_ms, error,
            )

        result = await retry(
            lambda: self._transcripts.get_transcript(access_token, meeting_id),
            self._config.transcript_retry,
            should_retry=should_retry_transcript,
            on_retry=on_retry,
            operation_name=f"fetch_transcript:{meeting_id}",
        )
        if not result.success or result.data is None:
            error = result.error or TranscriptNotReadyError(meeting_id)
            raise _StageFailure(error, result.attempts)
        return result.data, result.attempts

    async def _meeting_info(
        self, access_token: str, context: PipelineContext, transcript: Transcript,
    ) -> MeetingInfo:
        title = context.topic
        if not title and self._meetings is not None:
            try:
                meeting = await self._meetings.get_meeting_by_id(access_token, context.meeting_id)
            except (MeetingApiError, MeetingNotFoundError) as exc:
                logger.warning(
                    "Meeting lookup for %s failed, using default title: %s",
                    context.meeting_id, exc,
                )
            else:
                title = meeting.topic
        return MeetingInfo(
            id=context.meeting_id,
            title=title or f"Meeting {context.meeting_id}",
            date=unix_to_date(context.end_time),
            attendees=transcript.speakers,
        )

    async def _run_callbacks(
        self, callbacks: list[Callable[..., Awaitable[None]]], *args: Any,
    ) -> None:
        for callback in callbacks:
            try:
                await callback(*args)
            except Exception:
                logger.exception(
                    "Pipeline callback %s failed", getattr(callback, "__name__", callback),
                )

    async def trigger_minutes_generation(
        self, meeting_id: str, wait_for_transcript: bool = True,
    ) -> MinutesGenerationResult:
        """Generate minutes for a meeting outside the webhook flow.

        Errors propagate to the caller; callbacks are not invoked.
        """
        access_token = await self._token_provider.get_token()
        if wait_for_transcript:
            try:
                transcript, _ = await self._fetch_transcript(access_token, meeting_id)
            except _StageFailure as failure:
                raise failure.error from None
        else:
            transcript = await self._transcripts.get_transcript(access_token, meeting_id)

        title = f"Meeting {meeting_id}"
        date = unix_to_date(int(time.time()))
        if self._meetings is not None:
            meeting = await self._meetings.get_meeting_by_id(access_token, meeting_id)
            title = meeting.topic or title
            if meeting.end_time:
                date = unix_to_date(meeting.end_time)
        return await self._generator.generate_minutes(
            transcript,
            MeetingInfo(id=meeting_id, title=title, date=date, attendees=transcript.speakers),
        )

    def _stage(
        self,
        context: PipelineContext,
        stage: PipelineStage,
        error: BaseException | None = None,
    ) -> None:
        if error is not None:
            logger.error(
                "Meeting %s (event %s) -> %s: %s",
                context.meeting_id, context.event_id, stage.value, error,
            )
        else:
            logger.info(
                "Meeting %s (event %s) -> %s",
                context.meeting_id, context.event_id, stage.value,
            )

    def _is_new_event(self, event_id: str) -> bool:
        if self._event_store is None:
            return True
        try:
            return self._event_store.check_and_mark(event_id)
        except Exception:
            logger.exception("Dedup check failed for event %s; processing anyway", event_id)
            return True

    def purge_processed_events(self) -> int:
        """Drop dedup entries older than the store's TTL."""
        if self._event_store is None:
            return 0
        return self._event_store.purge_expired()

    def _audit_result(
        self, result: PipelineProcessingResult, event_type: AuditEventType,
    ) -> None:
        if self._audit is None:
            return
        failed = result.state is ProcessingState.FAILED
        event = AuditEvent(
            event_type=event_type,
            event_id=result.event_id,
            meeting_id=result.meeting_id,
            action="process_event",
            result=result.state.value,
            risk_level=RiskLevel.MEDIUM if failed else RiskLevel.INFO,
            details={
                "duration_ms": result.duration_ms,
                "retry_count": result.retry_count,
                "error": result.error,
            },
        )
        try:
            self._audit.log(event)
        except Exception:
            logger.exception("Failed to audit result of event %s", result.event_id)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
