"""Lark webhook signature verification.

The signature is HMAC-SHA256 over ``timestamp + nonce + raw_body`` keyed
with the app's encrypt key, rendered as lowercase hex. Requests whose
timestamp is more than five minutes away from local time are rejected
before any HMAC work so replays of captured requests cannot succeed.
"""

from __future__ import annotations

import hashlib
import hmac
import time

from src.webhook.models import SignatureVerificationResult

SIGNATURE_HEADER = "x-lark-signature"
TIMESTAMP_HEADER = "x-lark-request-timestamp"
NONCE_HEADER = "x-lark-request-nonce"

MAX_TIMESTAMP_AGE_SECONDS = 300


class WebhookSignatureError(Exception):
    """Raised by callers that prefer exceptions over result objects."""

    def __init__(self, message: str, code: str, details: object | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details

    @classmethod
    def missing_signature(cls) -> WebhookSignatureError:
        return cls("Missing webhook signature header", "MISSING_SIGNATURE")

    @classmethod
    def missing_timestamp(cls) -> WebhookSignatureError:
        return cls("Missing webhook timestamp header", "MISSING_TIMESTAMP")

    @classmethod
    def invalid_signature(cls) -> WebhookSignatureError:
        return cls("Invalid webhook signature", "INVALID_SIGNATURE")

    @classmethod
    def expired_timestamp(cls, age: int) -> WebhookSignatureError:
        return cls(
            f"Webhook timestamp expired (age: {age}s, max: {MAX_TIMESTAMP_AGE_SECONDS}s)",
            "EXPIRED_TIMESTAMP",
            {"age": age, "max_age": MAX_TIMESTAMP_AGE_SECONDS},
        )

    @classmethod
    def invalid_payload(cls, details: object) -> WebhookSignatureError:
        return cls("Invalid webhook payload", "INVALID_PAYLOAD", details)


def compute_signature(timestamp: str, nonce: str, body: str, encrypt_key: str) -> str:
    content = f"{timestamp}{nonce}{body}".encode()
    return hmac.new(encrypt_key.encode(), content, hashlib.sha256).hexdigest()


def verify_signature(provided: str, computed: str) -> bool:
    """Compare two hex signatures as raw bytes in constant time.

    Malformed hex on either side yields False rather than raising.
    """
    try:
        provided_bytes = bytes.fromhex(provided)
        computed_bytes = bytes.fromhex(computed)
    except ValueError:
        return False
    if len(provided_bytes) != len(computed_bytes):
        return False
    return hmac.compare_digest(provided_bytes, computed_bytes)


def verify_timestamp(
    timestamp: str,
    max_age_seconds: int = MAX_TIMESTAMP_AGE_SECONDS,
) -> tuple[bool, int | None]:
    """Return (is_fresh, age_seconds). Unparseable timestamps are never fresh."""
    try:
        request_time = int(timestamp)
    except ValueError:
        return False, None
    age = abs(int(time.time()) - request_time)
    return age <= max_age_seconds, age


def verify_webhook_signature(
    signature: str | None,
    timestamp: str | None,
    nonce: str | None,
    body: str,
    encrypt_key: str,
) -> SignatureVerificationResult:
    """Full authenticity check: headers present, timestamp fresh, HMAC valid."""
    if not signature:
        return SignatureVerificationResult(is_valid=False, error="Missing signature header")
    if not timestamp:
        return SignatureVerificationResult(is_valid=False, error="Missing timestamp header")
    if not nonce:
        return SignatureVerificationResult(is_valid=False, error="Missing nonce header")

    fresh, age = verify_timestamp(timestamp)
    if not fresh:
        error = (
            f"Timestamp expired (age: {age}s)" if age is not None else "Invalid timestamp header"
        )
        return SignatureVerificationResult(is_valid=False, error=error, timestamp=timestamp)

    computed = compute_signature(timestamp, nonce, body, encrypt_key)
    if not verify_signature(signature, computed):
        return SignatureVerificationResult(
            is_valid=False, error="Invalid signature", timestamp=timestamp,
        )

    return SignatureVerificationResult(is_valid=True, timestamp=timestamp)
