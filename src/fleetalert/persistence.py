"""Incident log persistence.

Every admitted incident is written once, independently of whether the
window aggregator later produces an alert for it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from threading import RLock
from typing import Any, Protocol

from fleetalert.models.incident import IncidentRecord

_logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS incident_log (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id      INTEGER NOT NULL,
    tracker_id      TEXT,
    source_id       TEXT,
    event_type      TEXT NOT NULL,
    event_code      TEXT,
    sub_event_code  TEXT,
    event_name      TEXT,
    raw_payload     TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_incident_log_tracker ON incident_log(tracker_id, created_at);
"""

_INSERT_SQL = (
    "INSERT INTO incident_log "
    "(company_id, tracker_id, source_id, event_type, event_code, sub_event_code, event_name, raw_payload, created_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
)


class IncidentPersister(Protocol):
    async def log_incident(self, record: IncidentRecord) -> None: ...


class SqliteIncidentLog:
    """SQLite-backed :class:`IncidentPersister`.

    Writes run in the loop's default executor so the ingestion path never
    blocks on disk I/O.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        with self._lock:
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.commit()
        _logger.debug("Incident log opened at %s", self._path)

    def _insert(self, record: IncidentRecord) -> None:
        row = (
            record.company_id,
            str(record.tracker_id),
            str(record.source_id),
            record.event_type,
            record.event_code,
            record.sub_event_code,
            record.event_name,
            json.dumps(record.payload, default=str),
            datetime.now(UTC).isoformat(),
        )
        with self._lock:
            self._conn.execute(_INSERT_SQL, row)
            self._conn.commit()

    async def log_incident(self, record: IncidentRecord) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._insert, record)

    def recent(self, tracker_id: int | str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent rows for a tracker, newest first."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT event_code, event_name, sub_event_code, raw_payload, created_at "
                "FROM incident_log WHERE tracker_id = ? ORDER BY id DESC LIMIT ?",
                (str(tracker_id), limit),
            )
            rows = cursor.fetchall()
        return [
            {
                "event_code": code,
                "event_name": name,
                "sub_event_code": sub_code,
                "payload": json.loads(payload),
                "created_at": created_at,
            }
            for code, name, sub_code, payload, created_at in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
