"""Room-scoped broadcast channel.

Each subscriber (dashboard socket, relay connection) owns a bounded queue;
publishing never blocks the publisher. When a subscriber falls behind, its
oldest queued message is discarded and counted in `Connection.dropped`.
Rooms are named `session:<session_id>`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union

from sim_race_steward.logging import get_logger

_LOGGER = get_logger(__name__)

SESSION_ACTIVE = "session:active"
TIMING_UPDATE = "timing:update"
INCIDENT_NEW = "incident:new"
INCIDENT_UPDATED = "incident:updated"
PENALTY_PROPOSED = "penalty:proposed"
PENALTY_APPROVED = "penalty:approved"
SESSION_STATE = "session:state"
RACE_EVENT = "race:event"
DRIVER_UPDATE = "driver:update"


class ChannelNotReady(RuntimeError):
    """Publishing on a hub that has not been opened (or was closed)."""


def room_name(session_id: str) -> str:
    return f"session:{session_id}"


@dataclass(frozen=True)
class BroadcastMessage:
    event: str
    payload: Dict[str, Any]
    session_id: Optional[str] = None

    def to_frame(self) -> dict:
        return {"event": self.event, "data": self.payload}


class Connection:
    def __init__(self, connection_id: str, maxsize: int = 256):
        self.connection_id = connection_id
        self.rooms: Set[str] = set()
        self.dropped = 0
        self._queue: asyncio.Queue[BroadcastMessage] = asyncio.Queue(maxsize=max(1, maxsize))

    def deliver(self, msg: BroadcastMessage) -> None:
        try:
            self._queue.put_nowait(msg)
            return
        except asyncio.QueueFull:
            pass
        try:
            self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        self.dropped += 1
        self._queue.put_nowait(msg)
        if self.dropped == 1 or self.dropped % 100 == 0:
            _LOGGER.warning(
                "[hub] connection %s is slow; dropped=%d", self.connection_id, self.dropped
            )

    async def next(self) -> BroadcastMessage:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def drain_nowait(self) -> List[BroadcastMessage]:
        out: List[BroadcastMessage] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return out


ConnRef = Union[Connection, str]


class BroadcastHub:
    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._open = False

    # ---- lifecycle ----
    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False
        for conn_id in list(self._connections):
            self.unregister(conn_id)

    @property
    def is_open(self) -> bool:
        return self._open

    # ---- membership ----
    def register(self, connection_id: str, maxsize: Optional[int] = None) -> Connection:
        conn = self._connections.get(connection_id)
        if conn is None:
            conn = Connection(connection_id, maxsize or self.queue_size)
            self._connections[connection_id] = conn
        return conn

    def unregister(self, connection_id: str) -> None:
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return
        for room in list(conn.rooms):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._rooms[room]
        conn.rooms.clear()

    def connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def _resolve(self, conn: ConnRef) -> Connection:
        if isinstance(conn, Connection):
            self._connections.setdefault(conn.connection_id, conn)
            return self._connections[conn.connection_id]
        return self.register(conn)

    def join(self, conn: ConnRef, session_id: str) -> None:
        c = self._resolve(conn)
        room = room_name(session_id)
        if room not in c.rooms:
            c.rooms.add(room)
            self._rooms.setdefault(room, set()).add(c.connection_id)
            _LOGGER.debug("[hub] %s joined %s", c.connection_id, room)

    def leave(self, conn: ConnRef, session_id: str) -> None:
        conn_id = conn.connection_id if isinstance(conn, Connection) else conn
        room = room_name(session_id)
        c = self._connections.get(conn_id)
        if c is not None:
            c.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn_id)
            if not members:
                del self._rooms[room]

    def members(self, session_id: str) -> Set[str]:
        return set(self._rooms.get(room_name(session_id), ()))

    def __len__(self) -> int:
        return len(self._connections)

    # ---- publishing ----
    def publish(self, event: str, payload: Dict[str, Any], session_id: Optional[str] = None) -> int:
        """Deliver to the session room, or to every connection when no session is given."""
        if not self._open:
            raise ChannelNotReady(f"broadcast hub not open (event={event})")
        msg = BroadcastMessage(event, payload, session_id)
        if session_id is None:
            targets = list(self._connections.values())
        else:
            ids = self._rooms.get(room_name(session_id), ())
            targets = [self._connections[i] for i in ids if i in self._connections]
        for conn in targets:
            conn.deliver(msg)
        return len(targets)

    def session_active(self, session: Dict[str, Any]) -> int:
        return self.publish(SESSION_ACTIVE, session)

    def timing_update(
        self, session_id: str, entries: List[dict], session_time_ms: Optional[int] = None
    ) -> int:
        payload = {
            "sessionId": session_id,
            "sessionTimeMs": session_time_ms,
            "timing": {"entries": entries},
        }
        return self.publish(TIMING_UPDATE, payload, session_id)

    def incident_new(self, session_id: str, incident: Dict[str, Any]) -> int:
        return self.publish(INCIDENT_NEW, {"sessionId": session_id, "incident": incident}, session_id)

    def incident_updated(self, session_id: str, incident: Dict[str, Any]) -> int:
        return self.publish(
            INCIDENT_UPDATED, {"sessionId": session_id, "incident": incident}, session_id
        )

    def penalty_proposed(self, session_id: str, penalty: Dict[str, Any]) -> int:
        return self.publish(PENALTY_PROPOSED, {"sessionId": session_id, "penalty": penalty}, session_id)

    def penalty_approved(self, session_id: str, penalty: Dict[str, Any]) -> int:
        return self.publish(PENALTY_APPROVED, {"sessionId": session_id, "penalty": penalty}, session_id)

    def session_state(self, session_id: str, state: Dict[str, Any]) -> int:
        return self.publish(SESSION_STATE, {"sessionId": session_id, **state}, session_id)

    def race_event(self, session_id: str, event_type: str, data: Any = None) -> int:
        payload = {"sessionId": session_id, "eventType": event_type, "data": data}
        return self.publish(RACE_EVENT, payload, session_id)

    def driver_update(self, session_id: str, data: Dict[str, Any]) -> int:
        return self.publish(DRIVER_UPDATE, {**data, "sessionId": session_id}, session_id)
