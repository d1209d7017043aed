"""Webhook body parsing and request processing.

Order of checks for an inbound request:
1. JSON decode (400 on failure, no HMAC work)
2. URL verification challenge, authenticated by verification token only
3. HMAC signature + timestamp freshness (401)
4. Event schema validation (400)
"""

from __future__ import annotations

import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from src.webhook.models import WebhookChallenge, WebhookPayload
from src.webhook.signature import (
    NONCE_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)


# --- parse_webhook_body results ---


@dataclass(frozen=True)
class ChallengeParse:
    data: WebhookChallenge
    type: str = "challenge"


@dataclass(frozen=True)
class EventParse:
    data: WebhookPayload
    type: str = "event"


@dataclass(frozen=True)
class ErrorParse:
    error: str
    details: Any = None
    invalid_json: bool = False
    type: str = "error"


ParseResult = ChallengeParse | EventParse | ErrorParse


# --- process_webhook_request results ---


@dataclass(frozen=True)
class ChallengeOutcome:
    response: dict[str, str]
    type: str = "challenge"


@dataclass(frozen=True)
class EventOutcome:
    payload: WebhookPayload
    type: str = "event"


@dataclass(frozen=True)
class ErrorOutcome:
    status: int
    message: str
    details: Any = None
    type: str = "error"


RequestOutcome = ChallengeOutcome | EventOutcome | ErrorOutcome


def parse_webhook_body(body: str) -> ParseResult:
    """Classify a raw body as challenge, event, or error."""
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        return ErrorParse(error="Invalid JSON body", details=str(exc), invalid_json=True)

    if isinstance(parsed, dict) and parsed.get("type") == "url_verification":
        try:
            return ChallengeParse(data=WebhookChallenge.model_validate(parsed))
        except ValidationError as exc:
            return ErrorParse(
                error="Invalid challenge payload",
                details=exc.errors(include_url=False, include_context=False),
            )

    try:
        return EventParse(data=WebhookPayload.model_validate(parsed))
    except ValidationError as exc:
        return ErrorParse(
            error="Invalid webhook payload",
            details=exc.errors(include_url=False, include_context=False),
        )


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def _tokens_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


def process_webhook_request(
    headers: Mapping[str, str],
    body: str,
    encrypt_key: str,
    verification_token: str,
) -> RequestOutcome:
    """Verify and parse one webhook request.

    401 means "not authentic"; 400 means "authentic (or unauthenticated
    challenge) but malformed".
    """
    parsed = parse_webhook_body(body)

    if isinstance(parsed, ErrorParse) and parsed.invalid_json:
        return ErrorOutcome(status=400, message=parsed.error, details=parsed.details)

    if isinstance(parsed, ChallengeParse):
        if not _tokens_match(parsed.data.token, verification_token):
            return ErrorOutcome(status=401, message="Invalid verification token")
        return ChallengeOutcome(response={"challenge": parsed.data.challenge})

    signature_result = verify_webhook_signature(
        signature=_header(headers, SIGNATURE_HEADER),
        timestamp=_header(headers, TIMESTAMP_HEADER),
        nonce=_header(headers, NONCE_HEADER),
        body=body,
        encrypt_key=encrypt_key,
    )
    if not signature_result.is_valid:
        logger.warning("Webhook signature rejected: %s", signature_result.error)
        return ErrorOutcome(
            status=401,
            message=signature_result.error or "Signature verification failed",
        )

    if isinstance(parsed, ErrorParse):
        return ErrorOutcome(status=400, message=parsed.error, details=parsed.details)

    return EventOutcome(payload=parsed.data)
