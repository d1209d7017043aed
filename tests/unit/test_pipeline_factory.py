"""Tests for wiring the pipeline from settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.config import ConfigurationError, Settings
from src.pipeline.factory import build_pipeline


def _settings(tmp_path: Path, **overrides: str) -> Settings:
    env = {
        "LARK_APP_ID": "cli_1",
        "LARK_APP_SECRET": "secret",
        "ANTHROPIC_API_KEY": "sk-test",
        "EVENT_DB_PATH": str(tmp_path / "events.db"),
        "TRANSCRIPT_READY_DELAY_MS": "1000",
    }
    env.update(overrides)
    return Settings.from_env(env)


def test_missing_credentials_rejected(tmp_path: Path) -> None:
    settings = _settings(tmp_path, LARK_APP_SECRET="", ANTHROPIC_API_KEY="")
    with pytest.raises(ConfigurationError) as exc_info:
        build_pipeline(settings)
    assert "LARK_APP_SECRET" in str(exc_info.value)
    assert "ANTHROPIC_API_KEY" in str(exc_info.value)
    assert "LARK_APP_ID" not in str(exc_info.value)


def test_registers_side_effect_callbacks(tmp_path: Path) -> None:
    pipeline = build_pipeline(_settings(
        tmp_path, LARK_BASE_APP_TOKEN="app_tok", LARK_BASE_MINUTES_TABLE_ID="tbl",
    ))
    assert len(pipeline._on_generated) == 3
    assert len(pipeline._on_failed) == 2


def test_config_comes_from_settings(tmp_path: Path) -> None:
    pipeline = build_pipeline(_settings(tmp_path, TRANSCRIPT_MAX_RETRIES="2"))
    assert pipeline.config.transcript_ready_delay_ms == 1000
    assert pipeline.config.transcript_retry.max_retries == 2


def test_builds_without_minutes_table(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING"):
        build_pipeline(_settings(tmp_path))
    assert "not be persisted" in caplog.text
