"""Retry utilities with exponential backoff.

Delay for attempt ``i`` (0-indexed) is ``min(initial * multiplier**i, max)``.
With jitter enabled up to 10% is added on top, so the delay never drops
below the unjittered base.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import re
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

T = TypeVar("T")

ShouldRetryPredicate = Callable[[BaseException, int], bool]
OnRetryCallback = Callable[[int, BaseException, int], None]

_JITTER_FRACTION = 0.1

_NETWORK_ERROR_MARKERS = (
    "network",
    "timeout",
    "econnrefused",
    "econnreset",
    "socket hang up",
    "fetch failed",
)
_SERVER_ERROR_RE = re.compile(r"\b5\d{2}\b")


class RetryConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0, le=10)
    initial_delay_ms: int = Field(default=1000, gt=0)
    max_delay_ms: int = Field(default=30000, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    jitter: bool = True

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> RetryConfig:
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self


def create_retry_config(
    overrides: RetryConfig | Mapping[str, Any] | None = None,
) -> RetryConfig:
    """Build a RetryConfig from defaults plus optional partial overrides."""
    if overrides is None:
        return RetryConfig()
    if isinstance(overrides, RetryConfig):
        return overrides
    return RetryConfig(**dict(overrides))


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Outcome of a single ``retry()`` invocation."""

    success: bool
    attempts: int
    total_time_ms: int
    data: T | None = None
    error: BaseException | None = None


class RetryExhaustedError(Exception):
    """Raised by retry_or_throw when every attempt has failed."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: BaseException,
        operation_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.operation_name = operation_name

    @classmethod
    def create(
        cls,
        attempts: int,
        last_error: BaseException,
        operation_name: str | None = None,
    ) -> RetryExhaustedError:
        op_name = operation_name or "operation"
        return cls(
            f"{op_name} failed after {attempts} attempts: {last_error}",
            attempts,
            last_error,
            operation_name,
        )


def calculate_delay(attempt: int, config: RetryConfig) -> int:
    """Return the delay in milliseconds before retry ``attempt`` (0-indexed)."""
    base = config.initial_delay_ms * math.pow(config.backoff_multiplier, attempt)
    capped = min(base, config.max_delay_ms)
    if config.jitter:
        return math.floor(capped + random.uniform(0, capped * _JITTER_FRACTION))
    return math.floor(capped)


def _status_of(error: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def default_should_retry(error: BaseException, attempt: int = 0) -> bool:
    """Retry on network failures, 5xx and 429; everything else is permanent."""
    message = str(error).lower()
    if any(marker in message for marker in _NETWORK_ERROR_MARKERS):
        return True
    if _SERVER_ERROR_RE.search(message):
        return True

    status = _status_of(error)
    if status is not None:
        return status >= 500 or status == 429
    return False


async def retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | Mapping[str, Any] | None = None,
    should_retry: ShouldRetryPredicate | None = None,
    on_retry: OnRetryCallback | None = None,
    *,
    operation_name: str | None = None,
) -> RetryResult[T]:
    """Run ``fn`` with exponential backoff.

    Makes at most ``max_retries + 1`` attempts. The predicate receives the
    error and the 0-indexed attempt that just failed; ``on_retry`` receives
    the 1-based number of the upcoming retry, the error and the delay.
    """
    cfg = create_retry_config(config)
    predicate = should_retry or default_should_retry
    start = time.monotonic()

    attempt = 0
    last_error: BaseException | None = None
    while attempt <= cfg.max_retries:
        try:
            data = await fn()
        except Exception as exc:
            last_error = exc
            if attempt >= cfg.max_retries or not predicate(exc, attempt):
                break

            delay = calculate_delay(attempt, cfg)
            if on_retry is not None:
                on_retry(attempt + 1, exc, delay)
            logger.debug(
                "Retrying %s (attempt %d) in %dms: %s",
                operation_name or "operation", attempt + 1, delay, exc,
            )
            await asyncio.sleep(delay / 1000)
            attempt += 1
        else:
            return RetryResult(
                success=True,
                data=data,
                attempts=attempt + 1,
                total_time_ms=_elapsed_ms(start),
            )

    return RetryResult(
        success=False,
        error=last_error or RuntimeError("Unknown error"),
        attempts=attempt + 1,
        total_time_ms=_elapsed_ms(start),
    )


async def retry_or_throw(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | Mapping[str, Any] | None = None,
    should_retry: ShouldRetryPredicate | None = None,
    on_retry: OnRetryCallback | None = None,
    *,
    operation_name: str | None = None,
) -> T:
    """Like retry(), but raise RetryExhaustedError instead of returning failure."""
    result = await retry(
        fn, config, should_retry, on_retry, operation_name=operation_name,
    )
    if not result.success:
        raise RetryExhaustedError.create(
            result.attempts,
            result.error or RuntimeError("Unknown error"),
            operation_name,
        )
    return result.data  # type: ignore[return-value]


async def retry_linear(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | Mapping[str, Any] | None = None,
    should_retry: ShouldRetryPredicate | None = None,
    on_retry: OnRetryCallback | None = None,
    *,
    operation_name: str | None = None,
) -> RetryResult[T]:
    """Retry with a constant ``initial_delay_ms`` between attempts."""
    cfg = create_retry_config(config).model_copy(update={"backoff_multiplier": 1.0})
    return await retry(fn, cfg, should_retry, on_retry, operation_name=operation_name)


async def retry_fixed(
    fn: Callable[[], Awaitable[T]],
    delay_ms: int,
    config: RetryConfig | Mapping[str, Any] | None = None,
    should_retry: ShouldRetryPredicate | None = None,
    on_retry: OnRetryCallback | None = None,
    *,
    operation_name: str | None = None,
) -> RetryResult[T]:
    """Retry with exactly ``delay_ms`` between attempts (no backoff, no jitter)."""
    base = create_retry_config(config).model_dump()
    base.update(
        initial_delay_ms=delay_ms,
        max_delay_ms=max(delay_ms, base["max_delay_ms"]),
        backoff_multiplier=1.0,
        jitter=False,
    )
    return await retry(
        fn, RetryConfig(**base), should_retry, on_retry, operation_name=operation_name,
    )


def with_retry(
    fn: Callable[..., Awaitable[T]],
    config: RetryConfig | Mapping[str, Any] | None = None,
    operation_name: str | None = None,
) -> Callable[..., Awaitable[RetryResult[T]]]:
    """Wrap an async function so every call goes through retry()."""

    async def wrapper(*args: Any, **kwargs: Any) -> RetryResult[T]:
        return await retry(
            lambda: fn(*args, **kwargs), config, operation_name=operation_name,
        )

    wrapper.__name__ = getattr(fn, "__name__", "wrapped")
    wrapper.__doc__ = fn.__doc__
    return wrapper


def is_retry_exhausted_error(error: object) -> bool:
    return isinstance(error, RetryExhaustedError)


def create_retry_predicate(
    patterns: Iterable[str | re.Pattern[str]],
) -> ShouldRetryPredicate:
    """Build a predicate matching on exception class name or message.

    String patterns match the class name exactly or appear in the message;
    compiled regexes are searched in the message and the class name.
    """
    compiled = list(patterns)

    def predicate(error: BaseException, attempt: int = 0) -> bool:
        name = type(error).__name__
        message = str(error)
        for pattern in compiled:
            if isinstance(pattern, str):
                if name == pattern or pattern in message:
                    return True
            elif pattern.search(message) or pattern.search(name):
                return True
        return False

    return predicate


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
