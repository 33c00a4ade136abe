from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import jsonschema

from sim_race_steward.logging import get_logger
from ..broadcast.hub import BroadcastHub, Connection
from ..core.models import (
    DriverRole,
    DriverSnapshot,
    IncidentStatus,
    SessionMetadata,
    Severity,
    finite_int,
    finite_number,
)
from ..core.session_registry import SessionRegistry
from ..core.triggers import parse_trigger
from ..incidents.dispatcher import TriggerDispatcher
from ..schemas import validation

_LOGGER = get_logger(__name__)

SESSION_METADATA = "session_metadata"
TELEMETRY = "telemetry"
INCIDENT = "incident"
RACE_EVENT = "race_event"
DRIVER_UPDATE = "driver_update"
INCIDENT_TRIGGER = "incident_trigger"

RELAY_EVENTS = (SESSION_METADATA, TELEMETRY, INCIDENT, RACE_EVENT, DRIVER_UPDATE, INCIDENT_TRIGGER)
# Acknowledged as soon as they are handled; triggers are acknowledged after persistence.
_IMMEDIATE_ACK = {SESSION_METADATA, INCIDENT, RACE_EVENT, DRIVER_UPDATE}


@dataclass(frozen=True)
class Ack:
    original_type: str
    success: bool

    def to_dict(self) -> dict:
        return {"originalType": self.original_type, "success": self.success}


Reply = Callable[[Ack], Awaitable[None]]
_Handler = Callable[[Optional[Connection], Dict[str, Any], Optional[Reply]], Awaitable[bool]]


class IngestGateway:
    """Validates relay frames and routes them to the registry, hub or pipeline."""

    def __init__(
        self, registry: SessionRegistry, dispatcher: TriggerDispatcher, hub: BroadcastHub
    ):
        self.registry = registry
        self.dispatcher = dispatcher
        self.hub = hub
        self._handlers: Dict[str, _Handler] = {
            SESSION_METADATA: self._on_session_metadata,
            TELEMETRY: self._on_telemetry,
            INCIDENT: self._on_incident,
            RACE_EVENT: self._on_race_event,
            DRIVER_UPDATE: self._on_driver_update,
            INCIDENT_TRIGGER: self._on_incident_trigger,
        }
        self.counts: Dict[str, int] = {}

    async def handle(
        self,
        connection: Optional[Connection],
        event_type: str,
        payload: Any,
        reply: Optional[Reply] = None,
    ) -> None:
        handler = self._handlers.get(event_type)
        if handler is None:
            _LOGGER.debug("[gateway] ignoring unknown event %s", event_type)
            return
        if not isinstance(payload, dict):
            payload = {}
        try:
            validation.validate(event_type, payload)
        except jsonschema.ValidationError as e:
            _LOGGER.warning("[gateway] invalid %s payload: %s", event_type, e.message)
            if reply is not None and event_type != TELEMETRY:
                await reply(Ack(event_type, False))
            return
        self.counts[event_type] = self.counts.get(event_type, 0) + 1
        ok = await handler(connection, payload, reply)
        if reply is not None and event_type in _IMMEDIATE_ACK:
            await reply(Ack(event_type, ok))

    # ---- handlers ----
    async def _on_session_metadata(self, connection, payload, _reply) -> bool:
        sid = payload["sessionId"]
        meta = SessionMetadata.from_wire(payload)
        summary = self.registry.upsert_metadata(sid, meta)
        if connection is not None:
            self.hub.join(connection, sid)
        self.hub.session_active({**summary.to_dict(), "trackConfig": meta.track_config})
        _LOGGER.info(
            "[gateway] session metadata %s track=%s type=%s", sid, meta.track_name, meta.session_type
        )
        return True

    async def _on_telemetry(self, _connection, payload, _reply) -> bool:
        sid = payload["sessionId"]
        snapshots = [DriverSnapshot.from_wire(d) for d in payload.get("drivers") or []]
        ts = finite_int(payload.get("sessionTimeMs"))
        entries = self.registry.apply_telemetry(sid, snapshots, ts)
        self.hub.timing_update(sid, entries, ts)
        return True

    async def _on_incident(self, _connection, payload, _reply) -> bool:
        sid = payload["sessionId"]
        did = str(payload["driverId"])
        now = datetime.now(timezone.utc).isoformat()
        incident = {
            "id": str(uuid.uuid4()),
            "sessionId": sid,
            "type": payload["type"],
            "severity": payload.get("severity") or Severity.MEDIUM.value,
            "lapNumber": finite_int(payload.get("lapNumber")) or 0,
            "sessionTimeMs": finite_int(payload.get("sessionTimeMs")) or 0,
            "trackPosition": finite_number(payload.get("trackPosition")) or 0,
            "incidentCount": finite_int(payload.get("incidentCount")),
            "involvedDrivers": [
                {
                    "driverId": did,
                    "driverName": payload.get("driverName") or f"Driver {did}",
                    "carNumber": str(payload.get("carNumber") or "0"),
                    "role": DriverRole.INVOLVED.value,
                }
            ],
            "status": IncidentStatus.PENDING.value,
            "createdAt": now,
            "updatedAt": now,
        }
        self.hub.incident_new(sid, incident)
        _LOGGER.info("[gateway] relay incident %s driver=%s session=%s", payload["type"], did, sid)
        return True

    async def _on_race_event(self, _connection, payload, _reply) -> bool:
        self.hub.race_event(payload["sessionId"], payload["eventType"], payload.get("data"))
        _LOGGER.info("[gateway] race event %s session=%s", payload["eventType"], payload["sessionId"])
        return True

    async def _on_driver_update(self, _connection, payload, _reply) -> bool:
        self.hub.driver_update(payload["sessionId"], payload)
        return True

    async def _on_incident_trigger(self, _connection, payload, reply) -> bool:
        sid = payload["sessionId"]
        # Roster captured now, at arrival, so later frames cannot leak into classification.
        trigger = parse_trigger(payload).with_roster(self.registry.roster(sid))

        async def _done(result) -> None:
            if result is not None and reply is not None:
                await reply(Ack(INCIDENT_TRIGGER, True))

        accepted = self.dispatcher.submit(trigger, sid, _done)
        if not accepted and reply is not None:
            await reply(Ack(INCIDENT_TRIGGER, False))
        return accepted
