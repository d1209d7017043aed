"""Duplicate-delivery protection for Lark webhook events.

Lark re-delivers an event when it does not see a timely 200, so the same
``event_id`` can arrive more than once. Seen IDs are kept in SQLite for a
TTL window so re-deliveries do not trigger a second (billed) generation,
including across restarts.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path

DEFAULT_TTL_SECONDS = 86_400


class ProcessedEventStore:
    """SQLite-backed set of recently processed event IDs."""

    def __init__(self, db_path: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ttl_seconds = ttl_seconds
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS processed_events (
                event_id TEXT PRIMARY KEY,
                seen_at REAL NOT NULL
            )"""
        )
        self._conn.commit()

    def check_and_mark(self, event_id: str) -> bool:
        """Return True if event_id is new (and record it), False if a duplicate."""
        now = time.time()
        row = self._conn.execute(
            "SELECT seen_at FROM processed_events WHERE event_id = ?", (event_id,)
        ).fetchone()
        if row is not None and now - row[0] < self._ttl_seconds:
            return False

        self._conn.execute(
            "INSERT OR REPLACE INTO processed_events (event_id, seen_at) VALUES (?, ?)",
            (event_id, now),
        )
        self._conn.commit()
        return True

    def purge_expired(self) -> int:
        """Delete entries older than the TTL; returns the number removed."""
        cutoff = time.time() - self._ttl_seconds
        cursor = self._conn.execute(
            "DELETE FROM processed_events WHERE seen_at < ?", (cutoff,)
        )
        self._conn.commit()
        return cursor.rowcount
