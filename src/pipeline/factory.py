"""Wire a fully configured pipeline from Settings."""

from __future__ import annotations

import logging

import anthropic

from src.audit.logger import AuditLogger
from src.config import ConfigurationError, Settings
from src.generation.service import DEFAULT_MODEL, MinutesGenerationService
from src.lark.bitable import MinutesStore
from src.lark.client import LarkClient
from src.lark.meeting import MeetingClient
from src.lark.message import NotificationService
from src.lark.token import AppAccessTokenProvider
from src.lark.transcript import TranscriptClient
from src.pipeline.callbacks import build_failure_callbacks, build_success_callbacks
from src.pipeline.service import MeetingMinutesPipeline, PipelineConfig
from src.webhook.replay_protection import ProcessedEventStore

logger = logging.getLogger(__name__)


def build_pipeline(
    settings: Settings,
    audit_logger: AuditLogger | None = None,
) -> MeetingMinutesPipeline:
    missing = [
        name
        for name, value in (
            ("LARK_APP_ID", settings.lark_app_id),
            ("LARK_APP_SECRET", settings.lark_app_secret),
            ("ANTHROPIC_API_KEY", settings.anthropic_api_key),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    client = LarkClient(settings.lark_base_url)
    token_provider = AppAccessTokenProvider(
        client, settings.lark_app_id, settings.lark_app_secret,
    )
    generator = MinutesGenerationService(
        anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key),
        model=settings.minutes_model or DEFAULT_MODEL,
    )
    pipeline = MeetingMinutesPipeline(
        transcripts=TranscriptClient(client),
        generator=generator,
        token_provider=token_provider,
        config=PipelineConfig(
            transcript_ready_delay_ms=settings.transcript_ready_delay_ms,
            transcript_retry=settings.transcript_retry_config(),
        ),
        meetings=MeetingClient(client),
        event_store=ProcessedEventStore(
            settings.event_db_path, ttl_seconds=settings.event_dedup_ttl_seconds,
        ),
        audit_logger=audit_logger,
    )

    store: MinutesStore | None = None
    if settings.base_app_token and settings.minutes_table_id:
        store = MinutesStore(
            client, token_provider, settings.base_app_token, settings.minutes_table_id,
        )
    else:
        logger.warning("Lark Base is not configured; generated minutes will not be persisted")

    notifier = NotificationService(client, language=settings.notification_language)
    for callback in build_success_callbacks(notifier, store, token_provider):
        pipeline.on_minutes_generated(callback)
    for failure_callback in build_failure_callbacks(notifier, token_provider):
        pipeline.on_processing_failed(failure_callback)
    return pipeline
