"""LLM-backed minutes generation."""

from src.generation.service import (
    GenerationOptions,
    MeetingInfo,
    MinutesGenerationError,
    MinutesGenerationService,
)

__all__ = [
    "GenerationOptions",
    "MeetingInfo",
    "MinutesGenerationError",
    "MinutesGenerationService",
]
