"""Environment-driven settings for the webhook service."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from src.lark.client import DEFAULT_BASE_URL
from src.retry import RetryConfig


class ConfigurationError(Exception):
    """Required configuration is missing or malformed."""


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    encrypt_key: str = ""
    verification_token: str = ""
    lark_app_id: str = ""
    lark_app_secret: str = ""
    lark_base_url: str = DEFAULT_BASE_URL
    anthropic_api_key: str = ""
    minutes_model: str | None = None
    base_app_token: str = ""
    minutes_table_id: str = ""
    transcript_ready_delay_ms: int = 30_000
    transcript_max_retries: int = 5
    transcript_initial_delay_ms: int = 5_000
    transcript_max_delay_ms: int = 60_000
    outbox_db_path: str = "data/outbox.db"
    event_db_path: str = "data/events.db"
    event_dedup_ttl_seconds: int = 86_400
    audit_log_path: str | None = None
    notification_language: str = "ja"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        language = env.get("NOTIFICATION_LANGUAGE", "ja")
        if language not in ("ja", "en"):
            raise ConfigurationError(
                f"NOTIFICATION_LANGUAGE must be 'ja' or 'en', got {language!r}"
            )
        return cls(
            encrypt_key=env.get("LARK_WEBHOOK_ENCRYPT_KEY", ""),
            verification_token=env.get("LARK_WEBHOOK_VERIFICATION_TOKEN", ""),
            lark_app_id=env.get("LARK_APP_ID", ""),
            lark_app_secret=env.get("LARK_APP_SECRET", ""),
            lark_base_url=env.get("LARK_API_BASE_URL") or DEFAULT_BASE_URL,
            anthropic_api_key=env.get("ANTHROPIC_API_KEY", ""),
            minutes_model=env.get("MINUTES_MODEL") or None,
            base_app_token=env.get("LARK_BASE_APP_TOKEN", ""),
            minutes_table_id=env.get("LARK_BASE_MINUTES_TABLE_ID", ""),
            transcript_ready_delay_ms=_int(env, "TRANSCRIPT_READY_DELAY_MS", 30_000),
            transcript_max_retries=_int(env, "TRANSCRIPT_MAX_RETRIES", 5),
            transcript_initial_delay_ms=_int(env, "TRANSCRIPT_INITIAL_DELAY_MS", 5_000),
            transcript_max_delay_ms=_int(env, "TRANSCRIPT_MAX_DELAY_MS", 60_000),
            outbox_db_path=env.get("OUTBOX_DB_PATH", "data/outbox.db"),
            event_db_path=env.get("EVENT_DB_PATH", "data/events.db"),
            event_dedup_ttl_seconds=_int(env, "EVENT_DEDUP_TTL_SECONDS", 86_400),
            audit_log_path=env.get("AUDIT_LOG_PATH") or None,
            notification_language=language,
        )

    def get_webhook_config(self) -> tuple[str, str]:
        """Return (encrypt_key, verification_token); raise if either is unset."""
        missing = [
            name
            for name, value in (
                ("LARK_WEBHOOK_ENCRYPT_KEY", self.encrypt_key),
                ("LARK_WEBHOOK_VERIFICATION_TOKEN", self.verification_token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        return self.encrypt_key, self.verification_token

    def transcript_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.transcript_max_retries,
            initial_delay_ms=self.transcript_initial_delay_ms,
            max_delay_ms=self.transcript_max_delay_ms,
        )


def get_webhook_config(env: Mapping[str, str] | None = None) -> tuple[str, str]:
    return Settings.from_env(env).get_webhook_config()
