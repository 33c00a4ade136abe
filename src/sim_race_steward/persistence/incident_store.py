from __future__ import annotations

import asyncio
import json
import os
import sqlite3
import threading
from datetime import datetime
from typing import Optional, Protocol

from sim_race_steward.logging import get_logger
from ..core.models import (
    ContactType,
    IncidentEvent,
    IncidentStatus,
    IncidentType,
    InvolvedDriver,
    Severity,
)

_LOGGER = get_logger(__name__)

_DDL = """
CREATE TABLE IF NOT EXISTS incidents(
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    type TEXT NOT NULL,
    contact_type TEXT,
    severity TEXT NOT NULL,
    severity_score INT NOT NULL,
    lap_number INT,
    session_time_ms INT,
    track_position REAL,
    replay_timestamp_ms INT,
    status TEXT NOT NULL,
    involved_drivers TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_incidents_session ON incidents(session_id);
"""

_COLUMNS = (
    "id, session_id, type, contact_type, severity, severity_score, lap_number, "
    "session_time_ms, track_position, replay_timestamp_ms, status, involved_drivers, "
    "created_at, updated_at"
)


class PersistenceError(Exception):
    """The incident could not be written; the caller decides whether to resubmit."""


class IncidentStore(Protocol):
    async def create(self, incident: IncidentEvent) -> IncidentEvent: ...


class SQLiteIncidentStore:
    """Incident persistence on sqlite; writes run off the event loop."""

    def __init__(self, path: str):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _ensure_db(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        parent = os.path.dirname(self.path)
        if parent and self.path != ":memory:":
            os.makedirs(parent, exist_ok=True)
        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.executescript(_DDL)
        conn.commit()
        self._conn = conn
        return conn

    @staticmethod
    def _row(incident: IncidentEvent) -> tuple:
        return (
            incident.id,
            incident.session_id,
            incident.type.value,
            incident.contact_type.value if incident.contact_type else None,
            incident.severity.value,
            incident.severity_score,
            incident.lap_number,
            incident.session_time_ms,
            incident.track_position,
            incident.replay_timestamp_ms,
            incident.status.value,
            json.dumps([d.to_dict() for d in incident.involved_drivers]),
            incident.created_at.isoformat(),
            incident.updated_at.isoformat(),
        )

    @staticmethod
    def _from_row(row: tuple) -> IncidentEvent:
        return IncidentEvent(
            id=row[0],
            session_id=row[1],
            type=IncidentType(row[2]),
            contact_type=ContactType(row[3]) if row[3] else None,
            severity=Severity(row[4]),
            severity_score=int(row[5]),
            lap_number=int(row[6] or 0),
            session_time_ms=int(row[7] or 0),
            track_position=float(row[8] or 0.0),
            replay_timestamp_ms=row[9],
            status=IncidentStatus(row[10]),
            involved_drivers=[InvolvedDriver.from_dict(d) for d in json.loads(row[11])],
            created_at=datetime.fromisoformat(row[12]),
            updated_at=datetime.fromisoformat(row[13]),
        )

    def _insert(self, incident: IncidentEvent) -> IncidentEvent:
        with self._lock:
            conn = self._ensure_db()
            with conn:
                conn.execute(
                    f"INSERT INTO incidents({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                    self._row(incident),
                )
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM incidents WHERE id=?", (incident.id,)
            ).fetchone()
        return self._from_row(row)

    async def create(self, incident: IncidentEvent) -> IncidentEvent:
        try:
            return await asyncio.to_thread(self._insert, incident)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"failed to persist incident {incident.id}: {e}") from e

    def get(self, incident_id: str) -> IncidentEvent | None:
        with self._lock:
            row = (
                self._ensure_db()
                .execute(f"SELECT {_COLUMNS} FROM incidents WHERE id=?", (incident_id,))
                .fetchone()
            )
        return self._from_row(row) if row else None

    def count(self, session_id: Optional[str] = None) -> int:
        with self._lock:
            conn = self._ensure_db()
            if session_id is None:
                (n,) = conn.execute("SELECT COUNT(*) FROM incidents").fetchone()
            else:
                (n,) = conn.execute(
                    "SELECT COUNT(*) FROM incidents WHERE session_id=?", (session_id,)
                ).fetchone()
        return int(n)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error:
                    _LOGGER.debug("[store] close failed", exc_info=True)
                self._conn = None
