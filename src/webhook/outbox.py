"""Durable outbox for accepted webhook events.

The HTTP handler acknowledges Lark before minutes are generated. Writing the
payload here first means a process restart between the acknowledgement and
the end of processing leaves the event ``pending`` instead of losing it; the
app re-drives pending entries on startup.
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

from src.webhook.models import ProcessingState, WebhookPayload

PENDING = "pending"
PROCESSING = "processing"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class EventOutbox:
    """SQLite table of accepted webhook payloads and their processing state."""

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS webhook_outbox (
                event_id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                state TEXT NOT NULL DEFAULT 'pending',
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                enqueued_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self.conn.commit()

    def enqueue(self, payload: WebhookPayload) -> bool:
        """Persist a payload. Returns False if the event_id is already known."""
        now = _now_iso()
        cursor = self.conn.execute(
            """INSERT OR IGNORE INTO webhook_outbox
               (event_id, event_type, payload_json, state, enqueued_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                payload.event_id,
                payload.header.event_type,
                payload.model_dump_json(by_alias=True),
                PENDING,
                now,
                now,
            ),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    def mark_processing(self, event_id: str) -> None:
        self.conn.execute(
            """UPDATE webhook_outbox
               SET state = ?, attempts = attempts + 1, updated_at = ?
               WHERE event_id = ?""",
            (PROCESSING, _now_iso(), event_id),
        )
        self.conn.commit()

    def mark_done(
        self, event_id: str, state: ProcessingState, error: str | None = None
    ) -> None:
        """Record the terminal state (completed, failed or skipped)."""
        self.conn.execute(
            """UPDATE webhook_outbox
               SET state = ?, last_error = ?, updated_at = ?
               WHERE event_id = ?""",
            (state.value, error, _now_iso(), event_id),
        )
        self.conn.commit()

    def get(self, event_id: str) -> dict[str, object] | None:
        row = self.conn.execute(
            """SELECT event_id, event_type, payload_json, state, attempts,
                      last_error, enqueued_at, updated_at
               FROM webhook_outbox WHERE event_id = ?""",
            (event_id,),
        ).fetchone()
        return dict(row) if row else None

    def pending(self) -> list[WebhookPayload]:
        """Payloads accepted but never brought to a terminal state, oldest first."""
        rows = self.conn.execute(
            """SELECT payload_json FROM webhook_outbox
               WHERE state IN (?, ?) ORDER BY enqueued_at, rowid""",
            (PENDING, PROCESSING),
        ).fetchall()
        return [WebhookPayload.model_validate_json(row["payload_json"]) for row in rows]

    def purge_finished(self, older_than_seconds: int) -> int:
        """Delete terminal entries last updated more than ``older_than_seconds`` ago.

        A purged event_id can be enqueued again, so a re-delivery arriving after
        the dedup window is accepted like a new event.
        """
        cutoff = (datetime.now(UTC) - timedelta(seconds=older_than_seconds)).isoformat()
        cursor = self.conn.execute(
            """DELETE FROM webhook_outbox
               WHERE state NOT IN (?, ?) AND updated_at < ?""",
            (PENDING, PROCESSING, cutoff),
        )
        self.conn.commit()
        return cursor.rowcount

    def list_entries(self) -> list[dict[str, object]]:
        rows = self.conn.execute(
            """SELECT event_id, event_type, state, attempts, last_error,
                      enqueued_at, updated_at
               FROM webhook_outbox ORDER BY enqueued_at, rowid"""
        ).fetchall()
        return [dict(row) for row in rows]
