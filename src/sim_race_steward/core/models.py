from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

UNKNOWN_TRACK = "Unknown Track"
DEFAULT_SESSION_TYPE = "race"


class IncidentType(str, Enum):
    CONTACT = "contact"
    OFF_TRACK = "off_track"
    SPIN = "spin"
    LOSS_OF_CONTROL = "loss_of_control"


class ContactType(str, Enum):
    REAR_END = "rear_end"
    SIDE = "side"
    DIVEBOMB = "divebomb"
    OTHER = "other"


class Severity(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class DriverRole(str, Enum):
    CAUSE = "cause"
    VICTIM = "victim"
    INVOLVED = "involved"


class IncidentStatus(str, Enum):
    # Only PENDING is produced here; the rest belong to the stewarding workflow.
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


def finite_number(v: Any) -> float | None:
    """`v` as a float if it is a finite JSON number, else None.

    `json.loads` yields inf/nan for `1e999`, `Infinity` and `NaN`, and ints
    of any size; all of those count as absent.
    """
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    try:
        f = float(v)
    except OverflowError:
        return None
    return f if math.isfinite(f) else None


def finite_int(v: Any) -> int | None:
    f = finite_number(v)
    if f is None:
        return None
    return v if isinstance(v, int) else int(f)


@dataclass
class DriverSnapshot:
    driver_id: str
    driver_name: str
    car_number: str
    lap_dist_pct: float
    position: int | None = None
    lap_number: int | None = None
    speed: float | None = None
    last_lap_time: float | None = None
    best_lap_time: float | None = None
    gap_to_leader: float | None = None
    incident_count: int | None = None

    @classmethod
    def from_wire(cls, d: dict) -> "DriverSnapshot":
        did = str(d["driverId"])
        return cls(
            driver_id=did,
            driver_name=str(d.get("driverName") or f"Driver {did}"),
            car_number=str(d.get("carNumber") or "0"),
            lap_dist_pct=finite_number(d.get("lapDistPct")) or 0.0,
            position=finite_int(d.get("position")),
            lap_number=finite_int(d.get("lapNumber")),
            speed=finite_number(d.get("speed")),
            last_lap_time=finite_number(d.get("lastLapTime")),
            best_lap_time=finite_number(d.get("bestLapTime")),
            gap_to_leader=finite_number(d.get("gapToLeader")),
            incident_count=finite_int(d.get("incidentCount")),
        )

    def to_timing_entry(self) -> dict:
        return {
            "driverId": self.driver_id,
            "driverName": self.driver_name,
            "carNumber": self.car_number,
            "position": self.position,
            "lapNumber": self.lap_number,
            "lapDistPct": self.lap_dist_pct,
            "speed": self.speed,
            "lastLapTime": self.last_lap_time,
            "bestLapTime": self.best_lap_time,
            "gapToLeader": self.gap_to_leader,
            "incidentCount": self.incident_count,
        }


@dataclass
class SessionMetadata:
    track_name: str = UNKNOWN_TRACK
    session_type: str = DEFAULT_SESSION_TYPE
    track_config: Optional[str] = None

    @classmethod
    def from_wire(cls, d: dict) -> "SessionMetadata":
        return cls(
            track_name=str(d.get("trackName") or UNKNOWN_TRACK),
            session_type=str(d.get("sessionType") or DEFAULT_SESSION_TYPE),
            track_config=d.get("trackConfig"),
        )


@dataclass
class SessionEntry:
    session_id: str
    metadata: SessionMetadata
    last_update: float
    drivers: Dict[str, DriverSnapshot] = field(default_factory=dict)
    session_time_ms: int | None = None


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    track_name: str
    session_type: str
    driver_count: int
    last_update: float

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "trackName": self.track_name,
            "sessionType": self.session_type,
            "driverCount": self.driver_count,
            "lastUpdate": self.last_update,
        }


@dataclass
class InvolvedDriver:
    driver_id: str
    driver_name: str
    car_number: str
    role: DriverRole = DriverRole.INVOLVED
    fault_probability: float | None = None

    def to_dict(self) -> dict:
        out = {
            "driverId": self.driver_id,
            "driverName": self.driver_name,
            "carNumber": self.car_number,
            "role": self.role.value,
        }
        if self.fault_probability is not None:
            out["faultProbability"] = self.fault_probability
        return out

    @classmethod
    def from_dict(cls, d: dict) -> "InvolvedDriver":
        return cls(
            driver_id=str(d["driverId"]),
            driver_name=str(d.get("driverName", "")),
            car_number=str(d.get("carNumber", "0")),
            role=DriverRole(d.get("role", DriverRole.INVOLVED.value)),
            fault_probability=finite_number(d.get("faultProbability")),
        )


@dataclass
class IncidentEvent:
    """Classified incident record handed to the persistence store.

    `involved_drivers[0]` is always the primary driver and `contact_type`
    is set only for contact incidents.
    """

    id: str
    session_id: str
    type: IncidentType
    severity: Severity
    severity_score: int
    lap_number: int
    session_time_ms: int
    track_position: float
    involved_drivers: List[InvolvedDriver]
    created_at: datetime
    updated_at: datetime
    contact_type: ContactType | None = None
    status: IncidentStatus = IncidentStatus.PENDING
    replay_timestamp_ms: int | None = None

    def to_dict(self) -> dict:
        out: Dict[str, Any] = {
            "id": self.id,
            "sessionId": self.session_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "severityScore": self.severity_score,
            "lapNumber": self.lap_number,
            "sessionTimeMs": self.session_time_ms,
            "trackPosition": self.track_position,
            "involvedDrivers": [d.to_dict() for d in self.involved_drivers],
            "status": self.status.value,
            "replayTimestampMs": self.replay_timestamp_ms,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.contact_type is not None:
            out["contactType"] = self.contact_type.value
        return out
