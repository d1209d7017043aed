"""Side effects run after a pipeline reaches a terminal state.

Each callback handles its own errors: a failed notification must not stop the
minutes from being persisted, and the failure notice to the host is strictly
best-effort.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from src.lark.bitable import MinutesStore
from src.lark.message import NotificationService
from src.lark.token import AppAccessTokenProvider
from src.models import Minutes, MinutesGenerationResult, MinutesMetadata, unix_to_date
from src.pipeline.service import OnMinutesGenerated, OnProcessingFailed, PipelineContext

logger = logging.getLogger(__name__)


def placeholder_minutes(context: PipelineContext) -> Minutes:
    """Empty minutes used to render the "review needed" card after a failure."""
    return Minutes(
        id=f"failed_{context.meeting_id}",
        meeting_id=context.meeting_id,
        title=context.topic or "Meeting",
        date=unix_to_date(context.end_time),
        duration=0,
        summary="",
        topics=[],
        decisions=[],
        action_items=[],
        attendees=[],
        metadata=MinutesMetadata(
            generated_at=datetime.now(UTC).isoformat(),
            model="",
            processing_time_ms=0,
            confidence=0,
        ),
    )


def build_success_callbacks(
    notifier: NotificationService,
    store: MinutesStore | None,
    token_provider: AppAccessTokenProvider,
) -> list[OnMinutesGenerated]:
    async def log_generated(context: PipelineContext, result: MinutesGenerationResult) -> None:
        logger.info(
            "Minutes generated for meeting %s in %dms (%d topics, %d action items)",
            context.meeting_id,
            result.processing_time_ms,
            len(result.minutes.topics),
            len(result.minutes.action_items),
        )

    async def notify_host(context: PipelineContext, result: MinutesGenerationResult) -> None:
        try:
            access_token = await token_provider.get_token()
            outcome = await notifier.send_minutes_notification(
                access_token, result.minutes, [context.host_user_id],
            )
        except Exception:
            logger.exception(
                "Failed to notify host %s for meeting %s",
                context.host_user_id, context.meeting_id,
            )
            return
        if outcome.success:
            logger.info(
                "Notified host %s for meeting %s", context.host_user_id, context.meeting_id,
            )
        else:
            logger.error(
                "Host notification for meeting %s was rejected: %s",
                context.meeting_id,
                "; ".join(r.error or "unknown error" for r in outcome.results if not r.success),
            )

    async def persist_minutes(context: PipelineContext, result: MinutesGenerationResult) -> None:
        if store is None:
            logger.debug("No minutes store configured; not persisting %s", context.meeting_id)
            return
        try:
            saved = await store.save_minutes(result.minutes, context.meeting_id)
        except Exception:
            logger.exception("Failed to save minutes for meeting %s", context.meeting_id)
            return
        logger.info(
            "Saved minutes for meeting %s (record %s, version %d)",
            context.meeting_id, saved.record_id, saved.version,
        )

    return [log_generated, notify_host, persist_minutes]


def build_failure_callbacks(
    notifier: NotificationService,
    token_provider: AppAccessTokenProvider,
) -> list[OnProcessingFailed]:
    async def log_failure(context: PipelineContext, error: BaseException) -> None:
        logger.error(
            "Processing failed for meeting %s (event %s, host %s, end_time %d): %s: %s",
            context.meeting_id,
            context.event_id,
            context.host_user_id,
            context.end_time,
            type(error).__name__,
            error,
        )

    async def notify_host_of_failure(context: PipelineContext, error: BaseException) -> None:
        try:
            access_token = await token_provider.get_token()
            outcome = await notifier.send_draft_minutes_notification(
                access_token, placeholder_minutes(context), context.host_user_id,
            )
        except Exception as exc:
            logger.warning(
                "Could not send failure notice for meeting %s: %s", context.meeting_id, exc,
            )
            return
        if outcome.success:
            logger.info("Sent failure notice for meeting %s", context.meeting_id)
        else:
            logger.warning(
                "Failure notice for meeting %s was rejected: %s",
                context.meeting_id, outcome.error,
            )

    return [log_failure, notify_host_of_failure]
