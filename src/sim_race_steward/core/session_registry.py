from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sim_race_steward.logging import get_logger
from .models import DriverSnapshot, SessionEntry, SessionMetadata, SessionSummary
from .triggers import DriverRef

_LOGGER = get_logger(__name__)


class SessionRegistry:
    """Live view of active sessions, built only from inbound relay events.

    Mutations are serialized with one registry-wide lock so concurrent
    writers never lose updates to other drivers of the same frame. Expiry
    is tracked in a min-heap keyed by `last_update`; heap records made
    obsolete by a later touch are skipped lazily during the sweep.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._sessions: Dict[str, SessionEntry] = {}
        self._expiry: List[Tuple[float, int, str]] = []
        self._seq = itertools.count()

    # ---- internal ----
    def _touch(self, entry: SessionEntry) -> None:
        entry.last_update = self._clock()
        heapq.heappush(self._expiry, (entry.last_update, next(self._seq), entry.session_id))
        if len(self._expiry) > 2 * len(self._sessions) + 64:
            self._expiry = [(e.last_update, next(self._seq), sid) for sid, e in self._sessions.items()]
            heapq.heapify(self._expiry)

    def _get_or_create(self, session_id: str) -> SessionEntry:
        entry = self._sessions.get(session_id)
        if entry is None:
            entry = SessionEntry(session_id=session_id, metadata=SessionMetadata(), last_update=0.0)
            self._sessions[session_id] = entry
            _LOGGER.info("[registry] session created %s", session_id)
        return entry

    # ---- mutations ----
    def upsert_metadata(self, session_id: str, meta: SessionMetadata) -> SessionSummary:
        """Create or overwrite the non-driver fields of a session."""
        with self._lock:
            entry = self._get_or_create(session_id)
            entry.metadata = meta
            self._touch(entry)
            return self._summary(entry)

    def apply_telemetry(
        self,
        session_id: str,
        snapshots: Iterable[DriverSnapshot],
        session_time_ms: Optional[int] = None,
    ) -> List[dict]:
        """Replace each named driver's snapshot and return the timing view.

        Unseen sessions are created with placeholder metadata. The returned
        entries cover the drivers in this frame, ordered by position where
        present and otherwise by arrival order.
        """
        with self._lock:
            entry = self._get_or_create(session_id)
            order: Dict[str, DriverSnapshot] = {}
            for snap in snapshots:
                entry.drivers[snap.driver_id] = snap
                order[snap.driver_id] = snap
            if session_time_ms is not None:
                entry.session_time_ms = session_time_ms
            self._touch(entry)
        ranked = sorted(order.values(), key=lambda s: (s.position is None, s.position or 0))
        return [s.to_timing_entry() for s in ranked]

    def evict_stale(self, now: Optional[float] = None, ttl: float = 60.0) -> List[str]:
        """Remove every session idle for strictly more than `ttl` seconds."""
        now = self._clock() if now is None else now
        evicted: List[str] = []
        with self._lock:
            while self._expiry and now - self._expiry[0][0] > ttl:
                ts, _, sid = heapq.heappop(self._expiry)
                entry = self._sessions.get(sid)
                if entry is None or entry.last_update != ts:
                    continue
                del self._sessions[sid]
                evicted.append(sid)
        if evicted:
            _LOGGER.info("[registry] evicted %d stale session(s): %s", len(evicted), evicted)
        return evicted

    # ---- accessors ----
    @staticmethod
    def _summary(entry: SessionEntry) -> SessionSummary:
        return SessionSummary(
            session_id=entry.session_id,
            track_name=entry.metadata.track_name,
            session_type=entry.metadata.session_type,
            driver_count=len(entry.drivers),
            last_update=entry.last_update,
        )

    def list_active(self) -> List[SessionSummary]:
        with self._lock:
            return [self._summary(e) for e in self._sessions.values()]

    def get(self, session_id: str) -> SessionSummary | None:
        with self._lock:
            entry = self._sessions.get(session_id)
            return self._summary(entry) if entry else None

    def driver(self, session_id: str, driver_id: str) -> DriverSnapshot | None:
        with self._lock:
            entry = self._sessions.get(session_id)
            return entry.drivers.get(driver_id) if entry else None

    def roster(self, session_id: str) -> Dict[str, DriverRef]:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return {}
            return {
                did: DriverRef(s.driver_name, s.car_number) for did, s in entry.drivers.items()
            }

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
