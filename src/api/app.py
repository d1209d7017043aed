"""FastAPI application receiving Lark meeting webhooks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.config import ConfigurationError, Settings
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.pipeline.service import MeetingMinutesPipeline
from src.webhook.models import (
    MEETING_ENDED,
    RECORDING_READY,
    TRANSCRIPT_READY,
    PipelineProcessingResult,
    ProcessingState,
    WebhookPayload,
)
from src.webhook.outbox import EventOutbox
from src.webhook.parser import (
    ChallengeOutcome,
    ErrorOutcome,
    RequestOutcome,
    process_webhook_request,
)

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook/meeting-ended"
SUPPORTED_EVENTS = [MEETING_ENDED, TRANSCRIPT_READY, RECORDING_READY]


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    from src.pipeline.factory import build_pipeline

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env()
    audit_logger = (
        AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
    )
    pipeline = build_pipeline(settings, audit_logger)
    outbox = EventOutbox(settings.outbox_db_path)
    return create_app(settings, pipeline, outbox, audit_logger)


def create_app(
    settings: Settings,
    pipeline: MeetingMinutesPipeline,
    outbox: EventOutbox | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Create the webhook app around an already-wired pipeline."""
    tasks: set[asyncio.Task[PipelineProcessingResult]] = set()

    async def run_event(
        payload: WebhookPayload, deduplicate: bool,
    ) -> PipelineProcessingResult:
        start = time.monotonic()
        try:
            if outbox is not None:
                outbox.mark_processing(payload.event_id)
            result = await pipeline.process_event(payload, deduplicate=deduplicate)
        except Exception as exc:
            logger.exception("Processing of event %s raised", payload.event_id)
            result = PipelineProcessingResult(
                event_id=payload.event_id,
                state=ProcessingState.FAILED,
                meeting_id=payload.event.meeting_id,
                duration_ms=int((time.monotonic() - start) * 1000),
                error=str(exc) or type(exc).__name__,
            )
        if outbox is not None:
            try:
                outbox.mark_done(payload.event_id, result.state, result.error)
            except Exception:
                logger.exception("Could not record outcome of event %s", payload.event_id)
        logger.info(
            "Event %s finished as %s in %dms",
            payload.event_id, result.state.value, result.duration_ms,
        )
        return result

    def schedule(payload: WebhookPayload, deduplicate: bool = True) -> None:
        task = asyncio.create_task(run_event(payload, deduplicate))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def redrive_pending() -> int:
        """Schedule outbox entries a previous process accepted but never finished."""
        if outbox is None:
            return 0
        pending = outbox.pending()
        for payload in pending:
            schedule(payload, deduplicate=False)
        if pending:
            logger.warning("Re-driving %d pending webhook event(s) from the outbox", len(pending))
        return len(pending)

    async def drain() -> list[PipelineProcessingResult]:
        """Wait for in-flight background processing (tests and shutdown)."""
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    def purge_stale() -> tuple[int, int]:
        """Drop expired dedup entries and finished outbox rows past the dedup window."""
        purged_events = pipeline.purge_processed_events()
        purged_entries = (
            outbox.purge_finished(settings.event_dedup_ttl_seconds) if outbox is not None else 0
        )
        if purged_events or purged_entries:
            logger.info(
                "Purged %d dedup entries and %d finished outbox rows",
                purged_events, purged_entries,
            )
        return purged_events, purged_entries

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        purge_stale()
        await redrive_pending()
        yield
        # Unfinished events stay pending in the outbox and are re-driven next start.
        for task in list(tasks):
            task.cancel()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.redrive_pending = redrive_pending
    app.state.drain = drain
    app.state.purge_stale = purge_stale

    def _audit(
        event_type: AuditEventType,
        request: Request,
        result: str,
        risk_level: RiskLevel,
        event_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        if audit_logger is None:
            return
        audit_logger.log(AuditEvent(
            event_type=event_type,
            source_ip=request.client.host if request.client else None,
            event_id=event_id,
            action=WEBHOOK_PATH,
            result=result,
            risk_level=risk_level,
            details=details,
        ))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(WEBHOOK_PATH)
    async def receive_webhook(request: Request) -> JSONResponse:
        try:
            encrypt_key, verification_token = settings.get_webhook_config()
        except ConfigurationError as exc:
            logger.error("Webhook configuration error: %s", exc)
            return JSONResponse(
                {"success": False, "error": "Webhook not configured", "code": "CONFIG_ERROR"},
                status_code=500,
            )

        try:
            try:
                body = (await request.body()).decode("utf-8")
            except UnicodeDecodeError:
                outcome: RequestOutcome = ErrorOutcome(
                    status=400, message="Request body is not valid UTF-8",
                )
            else:
                outcome = process_webhook_request(
                    request.headers, body, encrypt_key, verification_token,
                )

            if isinstance(outcome, ChallengeOutcome):
                logger.info("URL verification challenge received")
                _audit(AuditEventType.WEBHOOK_CHALLENGE, request, "success", RiskLevel.INFO)
                return JSONResponse(outcome.response)

            if isinstance(outcome, ErrorOutcome):
                logger.warning("Webhook rejected (%d): %s", outcome.status, outcome.message)
                _audit(
                    AuditEventType.WEBHOOK_REJECTED,
                    request,
                    "rejected",
                    RiskLevel.HIGH if outcome.status == 401 else RiskLevel.LOW,
                    details={"status": outcome.status, "reason": outcome.message},
                )
                return JSONResponse(
                    {"success": False, "error": outcome.message},
                    status_code=outcome.status,
                )

            payload = outcome.payload
            if outbox is not None and not outbox.enqueue(payload):
                logger.info("Duplicate delivery of event %s ignored", payload.event_id)
                return JSONResponse({
                    "success": True,
                    "eventId": payload.event_id,
                    "message": "Event already received",
                })

            schedule(payload)
            logger.info(
                "Accepted %s event %s for meeting %s",
                payload.header.event_type, payload.event_id, payload.event.meeting_id,
            )
            _audit(
                AuditEventType.WEBHOOK_ACCEPTED,
                request,
                "success",
                RiskLevel.INFO,
                event_id=payload.event_id,
                details={"event_type": payload.header.event_type},
            )
            return JSONResponse({
                "success": True,
                "eventId": payload.event_id,
                "message": "Event received and queued for processing",
            })
        except Exception:
            logger.exception("Unexpected error handling webhook")
            return JSONResponse(
                {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
                status_code=500,
            )

    @app.get(WEBHOOK_PATH)
    async def webhook_status() -> JSONResponse:
        try:
            settings.get_webhook_config()
        except ConfigurationError as exc:
            return JSONResponse({"status": "unhealthy", "error": str(exc)}, status_code=503)
        return JSONResponse({
            "status": "healthy",
            "endpoint": WEBHOOK_PATH,
            "supportedEvents": SUPPORTED_EVENTS,
            "timestamp": datetime.now(UTC).isoformat(),
        })

    return app
