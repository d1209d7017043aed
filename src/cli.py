"""Click CLI for operating the minutes webhook service."""

from __future__ import annotations

import asyncio
import json
import secrets
import time
from pathlib import Path

import click

from src.audit.logger import AuditLogger, validate_audit_chain
from src.config import ConfigurationError, Settings
from src.webhook.outbox import EventOutbox
from src.webhook.signature import (
    NONCE_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
)


@click.group()
def cli() -> None:
    """Lark meeting minutes service CLI."""


@cli.command()
@click.option("--key", required=True, help="Webhook encrypt key.")
@click.option(
    "--body", "body_file", required=True, type=click.Path(exists=True, dir_okay=False),
    help="File containing the exact request body.",
)
@click.option("--timestamp", default=None, help="Unix seconds (defaults to now).")
@click.option("--nonce", default=None, help="Request nonce (defaults to random).")
def sign(key: str, body_file: str, timestamp: str | None, nonce: str | None) -> None:
    """Print the signature headers for a test webhook request."""
    body = Path(body_file).read_text()
    timestamp = timestamp or str(int(time.time()))
    nonce = nonce or secrets.token_hex(8)
    headers = {
        TIMESTAMP_HEADER: timestamp,
        NONCE_HEADER: nonce,
        SIGNATURE_HEADER: compute_signature(timestamp, nonce, body, key),
    }
    click.echo(json.dumps(headers, indent=2))


@cli.group("outbox")
@click.option("--db", default=None, help="Outbox database path (default: OUTBOX_DB_PATH).")
@click.pass_context
def outbox_group(ctx: click.Context, db: str | None) -> None:
    """Inspect and re-drive accepted webhook events."""
    ctx.ensure_object(dict)
    settings = Settings.from_env()
    ctx.obj["settings"] = settings
    ctx.obj["outbox"] = EventOutbox(db or settings.outbox_db_path)


@outbox_group.command("list")
@click.option("--pending-only", is_flag=True, help="Only show unfinished events.")
@click.pass_context
def outbox_list(ctx: click.Context, pending_only: bool) -> None:
    """List outbox entries as JSON."""
    outbox: EventOutbox = ctx.obj["outbox"]
    entries = outbox.list_entries()
    if pending_only:
        entries = [e for e in entries if e["state"] in ("pending", "processing")]
    click.echo(json.dumps(entries, indent=2))


@outbox_group.command("replay")
@click.pass_context
def outbox_replay(ctx: click.Context) -> None:
    """Process pending events now, using credentials from the environment."""
    from src.pipeline.factory import build_pipeline

    settings: Settings = ctx.obj["settings"]
    outbox: EventOutbox = ctx.obj["outbox"]
    pending = outbox.pending()
    if not pending:
        click.echo("No pending events.")
        return

    audit_logger = (
        AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
    )
    try:
        pipeline = build_pipeline(settings, audit_logger)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    async def replay() -> int:
        failures = 0
        for payload in pending:
            outbox.mark_processing(payload.event_id)
            result = await pipeline.process_event(payload, deduplicate=False)
            outbox.mark_done(payload.event_id, result.state, result.error)
            click.echo(f"{payload.event_id}: {result.state.value}")
            if result.error:
                failures += 1
        return failures

    failures = asyncio.run(replay())
    if failures:
        raise click.ClickException(f"{failures} event(s) failed")


@cli.group("audit")
def audit_group() -> None:
    """Audit log tools."""


@audit_group.command("verify")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False))
def audit_verify(log_path: str) -> None:
    """Validate the hash chain of an audit log."""
    result = validate_audit_chain(Path(log_path))
    if not result.valid:
        raise click.ClickException(f"Hash chain broken at line {result.broken_at_line}")
    click.echo("Audit log chain is intact.")


if __name__ == "__main__":
    cli()
