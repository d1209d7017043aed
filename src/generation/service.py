"""Structured minutes generation with the Anthropic Messages API."""

from __future__ import annotations

import json
import logging
import math
import os
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import anthropic
from pydantic import ValidationError

from src.generation.prompts import (
    Language,
    MinutesOutput,
    OutputSpeaker,
    build_minutes_prompt,
    get_system_prompt,
)
from src.models import (
    ActionItem,
    DecisionItem,
    Minutes,
    MinutesGenerationResult,
    MinutesMetadata,
    Speaker,
    TokenUsage,
    TopicSegment,
    Transcript,
    TranscriptSegment,
    TranscriptSpeaker,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 8000
PARSE_RETRY_COUNT = 2

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_STATUS_BY_CODE = {"MISSING_API_KEY": 500, "INVALID_INPUT": 400}


class MinutesGenerationError(Exception):
    """Generation failed.

    ``code`` is one of MISSING_API_KEY, INVALID_INPUT, CLAUDE_API_ERROR,
    PARSE_ERROR or UNKNOWN_ERROR.
    """

    def __init__(self, message: str, code: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.cause = cause

    @property
    def http_status(self) -> int:
        return http_status_for(self.code)


def http_status_for(code: str) -> int:
    return _STATUS_BY_CODE.get(code, 502)


class _ParseFailure(Exception):
    pass


@dataclass(frozen=True)
class MeetingInfo:
    id: str
    title: str
    date: str  # YYYY-MM-DD
    attendees: list[TranscriptSpeaker] = field(default_factory=list)


@dataclass(frozen=True)
class GenerationOptions:
    language: Language = "ja"
    max_tokens: int = DEFAULT_MAX_TOKENS


def format_timestamp(ms: int) -> str:
    if ms < 0:
        return "00:00:00"
    total_seconds = ms // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_segment(segment: TranscriptSegment) -> str:
    return f"[{format_timestamp(segment.start_time_ms)}] {segment.speaker.name}: {segment.text}"


def format_transcript(transcript: Transcript) -> str:
    return "\n".join(format_segment(s) for s in transcript.segments)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def extract_json(text: str) -> Any:
    """Pull a JSON value out of a model reply that may wrap it in prose or fences."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    candidates = []
    block = _CODE_BLOCK_RE.search(text)
    if block and block.group(1).strip():
        candidates.append(block.group(1).strip())
    obj = _OBJECT_RE.search(text)
    if obj:
        candidates.append(obj.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise _ParseFailure("Failed to extract valid JSON from response")


def calculate_confidence(output: MinutesOutput) -> float:
    """Completeness heuristic in [0, 1] over summary, topics and outcomes."""
    score = 0.0
    if len(output.summary) > 50:
        score += 1
    elif output.summary:
        score += 0.5

    if output.topics:
        score += 1
        if all(t.key_points for t in output.topics):
            score += 0.5

    if output.decisions or output.action_items:
        score += 0.5

    return min(1.0, score / 3.0)


def _speaker(raw: OutputSpeaker, speaker_id: str) -> Speaker:
    return Speaker(id=speaker_id, name=raw.name, lark_user_id=raw.lark_user_id)


def to_minutes(
    output: MinutesOutput,
    meeting: MeetingInfo,
    model: str,
    processing_time_ms: int,
) -> Minutes:
    topics = [
        TopicSegment(
            id=f"topic_{i}",
            title=t.title,
            start_time=t.start_time,
            end_time=max(t.end_time, t.start_time),
            summary=t.summary,
            key_points=t.key_points,
            speakers=[_speaker(s, f"speaker_{j}") for j, s in enumerate(t.speakers)],
        )
        for i, t in enumerate(output.topics)
    ]
    decisions = [
        DecisionItem(id=f"dec_{i}", content=d.content, context=d.context, decided_at=d.decided_at)
        for i, d in enumerate(output.decisions)
    ]
    action_items = [
        ActionItem(
            id=f"act_{i}",
            content=a.content,
            assignee=_speaker(a.assignee, f"assignee_{i}") if a.assignee else None,
            due_date=a.due_date,
            priority=a.priority,
        )
        for i, a in enumerate(output.action_items)
    ]
    duration = (
        max(t.end_time for t in topics) - min(t.start_time for t in topics) if topics else 0
    )
    now = datetime.now(UTC)
    return Minutes(
        id=f"min_{meeting.id}_{int(now.timestamp() * 1000)}",
        meeting_id=meeting.id,
        title=meeting.title,
        date=meeting.date,
        duration=duration,
        summary=output.summary,
        topics=topics,
        decisions=decisions,
        action_items=action_items,
        attendees=[_speaker(s, f"speaker_{i}") for i, s in enumerate(output.attendees)],
        metadata=MinutesMetadata(
            generated_at=now.isoformat(),
            model=model,
            processing_time_ms=processing_time_ms,
            confidence=calculate_confidence(output),
        ),
    )


def _validate_input(transcript: Transcript, meeting: MeetingInfo) -> None:
    if not transcript.segments:
        raise MinutesGenerationError(
            "Transcript must have at least one segment", "INVALID_INPUT",
        )
    if not meeting.id.strip():
        raise MinutesGenerationError("Meeting ID is required", "INVALID_INPUT")
    if not meeting.title.strip():
        raise MinutesGenerationError("Meeting title is required", "INVALID_INPUT")
    if not _DATE_RE.match(meeting.date):
        raise MinutesGenerationError(
            "Meeting date is required and must be in YYYY-MM-DD format", "INVALID_INPUT",
        )


class MinutesGenerationService:
    def __init__(self, client: anthropic.AsyncAnthropic, model: str = DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_env(cls) -> MinutesGenerationService:
        api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
        if not api_key:
            raise MinutesGenerationError(
                "ANTHROPIC_API_KEY environment variable is required", "MISSING_API_KEY",
            )
        model = os.environ.get("MINUTES_MODEL", DEFAULT_MODEL)
        return cls(anthropic.AsyncAnthropic(api_key=api_key), model=model)

    async def _complete(self, system: str, prompt: str, max_tokens: int) -> tuple[str, TokenUsage]:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            raise MinutesGenerationError(
                f"Claude API error: {exc}", "CLAUDE_API_ERROR", exc,
            ) from exc

        text = next((b.text for b in response.content if b.type == "text"), None)
        if text is None:
            raise MinutesGenerationError(
                "Claude API error: No text content in response", "CLAUDE_API_ERROR",
            )
        usage = getattr(response, "usage", None)
        if usage is not None:
            token_usage = TokenUsage(
                input_tokens=usage.input_tokens, output_tokens=usage.output_tokens,
            )
        else:
            token_usage = TokenUsage(
                input_tokens=estimate_tokens(system + prompt),
                output_tokens=estimate_tokens(text),
            )
        return text, token_usage

    async def _generate_output(
        self, system: str, prompt: str, max_tokens: int,
    ) -> tuple[MinutesOutput, TokenUsage]:
        last_error: Exception | None = None
        input_tokens = output_tokens = 0
        for attempt in range(PARSE_RETRY_COUNT + 1):
            text, usage = await self._complete(system, prompt, max_tokens)
            input_tokens += usage.input_tokens
            output_tokens += usage.output_tokens
            try:
                output = MinutesOutput.model_validate(extract_json(text))
            except (_ParseFailure, ValidationError) as exc:
                last_error = exc
                logger.warning(
                    "Unparsable minutes output (attempt %d/%d): %s",
                    attempt + 1, PARSE_RETRY_COUNT + 1, exc,
                )
                continue
            return output, TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)

        raise MinutesGenerationError(
            f"Failed to parse Claude response: {last_error}", "PARSE_ERROR", last_error,
        )

    async def generate_minutes(
        self,
        transcript: Transcript,
        meeting: MeetingInfo,
        options: GenerationOptions | None = None,
    ) -> MinutesGenerationResult:
        start = time.monotonic()
        _validate_input(transcript, meeting)
        opts = options or GenerationOptions()

        try:
            attendees = meeting.attendees or transcript.speakers
            prompt = build_minutes_prompt(
                transcript=format_transcript(transcript),
                meeting_title=meeting.title,
                meeting_date=meeting.date,
                attendees=[a.name for a in attendees],
                language=opts.language,
            )
            output, usage = await self._generate_output(
                get_system_prompt(opts.language), prompt, opts.max_tokens,
            )
            processing_time_ms = int((time.monotonic() - start) * 1000)
            minutes = to_minutes(output, meeting, self._model, processing_time_ms)
        except MinutesGenerationError:
            raise
        except Exception as exc:
            raise MinutesGenerationError(
                f"Unexpected error during minutes generation: {exc}", "UNKNOWN_ERROR", exc,
            ) from exc

        logger.info(
            "Generated minutes for %s in %dms (%d topics, %d action items)",
            meeting.id, processing_time_ms, len(minutes.topics), len(minutes.action_items),
        )
        return MinutesGenerationResult(
            minutes=minutes, processing_time_ms=processing_time_ms, usage=usage,
        )
