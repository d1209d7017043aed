"""Webhook-driven minutes pipeline."""

from src.pipeline.callbacks import build_failure_callbacks, build_success_callbacks
from src.pipeline.service import (
    MeetingMinutesPipeline,
    PipelineConfig,
    PipelineContext,
    should_retry_transcript,
)

__all__ = [
    "MeetingMinutesPipeline",
    "PipelineConfig",
    "PipelineContext",
    "build_failure_callbacks",
    "build_success_callbacks",
    "should_retry_transcript",
]
