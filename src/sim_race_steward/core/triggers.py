"""Incident triggers and their per-kind payloads.

A trigger is a provisional signal from an upstream detector. Each trigger
kind carries its own frozen payload class instead of an open dictionary,
so downstream stages only read fields that the kind actually defines.

Wire format (camelCase, as sent by relay agents)::

    {
      "sessionId": "S1",
      "type": "contact_proximity",
      "primaryDriverId": "D1",
      "nearbyDriverIds": ["D2"],
      "sessionTimeMs": 812345,
      "triggerData": {
        "lapNumber": 7,
        "trackPosition": 0.31,
        "contact": {"closingSpeedKph": 24.0, "approachAngleDeg": 8.0, ...},
        "drivers": {"D1": {"driverName": "Alice", "carNumber": "11"}}
      }
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Tuple, Type

from .models import finite_int, finite_number


class TriggerKind(str, Enum):
    OFF_TRACK_DETECTED = "off_track_detected"
    SPIN_DETECTED = "spin_detected"
    SUDDEN_DECELERATION = "sudden_deceleration"
    INCIDENT_COUNT_INCREASE = "incident_count_increase"
    CONTACT_PROXIMITY = "contact_proximity"
    ERRATIC_TRAJECTORY = "erratic_trajectory"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


def _num(cast: Callable[[Any], Any]) -> Callable[[Any], Any]:
    parse = finite_int if cast is int else finite_number

    def conv(v: Any) -> Any:
        out = parse(v)
        if out is None:
            raise TypeError(v)
        return out

    return conv


@dataclass(frozen=True)
class DriverRef:
    driver_name: str
    car_number: str = "0"


@dataclass(frozen=True)
class ContactContext:
    closing_speed_kph: float | None = None
    # 0 = straight from behind, 90 = perpendicular
    approach_angle_deg: float | None = None
    lateral_overlap: float | None = None
    corner_entry: bool = False
    positions: Mapping[str, int] = field(default_factory=dict)
    # Metres before the corner where braking began; smaller means later.
    braking_points_m: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, d: Any) -> "ContactContext":
        if not isinstance(d, dict):
            return cls()
        positions = {
            str(k): p
            for k, p in ((k, finite_int(v)) for k, v in (d.get("positions") or {}).items())
            if p is not None
        }
        braking = {
            str(k): m
            for k, m in ((k, finite_number(v)) for k, v in (d.get("brakingPointsM") or {}).items())
            if m is not None
        }
        kwargs: Dict[str, Any] = {"positions": positions, "braking_points_m": braking}
        for name in ("closing_speed_kph", "approach_angle_deg", "lateral_overlap"):
            v = finite_number(d.get(_camel(name)))
            if v is not None:
                kwargs[name] = v
        kwargs["corner_entry"] = bool(d.get("cornerEntry", False))
        return cls(**kwargs)


def _drivers(v: Any) -> Dict[str, DriverRef]:
    if not isinstance(v, dict):
        raise TypeError(v)
    out: Dict[str, DriverRef] = {}
    for did, info in v.items():
        if isinstance(info, dict) and info.get("driverName"):
            out[str(did)] = DriverRef(str(info["driverName"]), str(info.get("carNumber") or "0"))
    return out


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "lap_number": _num(int),
    "track_position": _num(float),
    "speed_kph": _num(float),
    "wheels_off": _num(int),
    "yaw_rate_dps": _num(float),
    "speed_before_kph": _num(float),
    "speed_after_kph": _num(float),
    "delta": _num(int),
    "lateral_deviation_m": _num(float),
    "contact": ContactContext.from_wire,
    "drivers": _drivers,
}


@dataclass(frozen=True)
class TriggerData:
    """Fields shared by every trigger kind; also used for unknown kinds."""

    lap_number: int = 0
    track_position: float = 0.0
    drivers: Mapping[str, DriverRef] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, d: Any) -> "TriggerData":
        if not isinstance(d, dict):
            return cls()
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            raw = d.get(_camel(f.name))
            if raw is None:
                continue
            try:
                kwargs[f.name] = _CONVERTERS[f.name](raw)
            except (TypeError, ValueError, OverflowError):
                continue  # keep the field default
        return cls(**kwargs)


@dataclass(frozen=True)
class OffTrackData(TriggerData):
    speed_kph: float = 0.0
    wheels_off: int = 4


@dataclass(frozen=True)
class SpinData(TriggerData):
    speed_kph: float = 0.0
    yaw_rate_dps: float = 0.0


@dataclass(frozen=True)
class DecelerationData(TriggerData):
    speed_before_kph: float = 0.0
    speed_after_kph: float = 0.0
    contact: ContactContext | None = None

    @property
    def speed_drop_kph(self) -> float:
        drop = self.speed_before_kph - self.speed_after_kph
        return drop if drop > 0 else 0.0


@dataclass(frozen=True)
class IncidentCountData(TriggerData):
    delta: int = 1
    speed_kph: float = 0.0
    contact: ContactContext | None = None


@dataclass(frozen=True)
class ContactProximityData(TriggerData):
    contact: ContactContext = field(default_factory=ContactContext)


@dataclass(frozen=True)
class ErraticTrajectoryData(TriggerData):
    speed_kph: float = 0.0
    lateral_deviation_m: float = 0.0


DATA_TYPES: Dict[str, Type[TriggerData]] = {
    TriggerKind.OFF_TRACK_DETECTED.value: OffTrackData,
    TriggerKind.SPIN_DETECTED.value: SpinData,
    TriggerKind.SUDDEN_DECELERATION.value: DecelerationData,
    TriggerKind.INCIDENT_COUNT_INCREASE.value: IncidentCountData,
    TriggerKind.CONTACT_PROXIMITY.value: ContactProximityData,
    TriggerKind.ERRATIC_TRAJECTORY.value: ErraticTrajectoryData,
}


@dataclass(frozen=True)
class IncidentTrigger:
    type: str
    primary_driver_id: str
    nearby_driver_ids: Tuple[str, ...] = ()
    session_time_ms: int = 0
    data: TriggerData = field(default_factory=TriggerData)

    @property
    def driver_ids(self) -> Tuple[str, ...]:
        return (self.primary_driver_id,) + self.nearby_driver_ids

    def contact_context(self) -> ContactContext | None:
        return getattr(self.data, "contact", None)

    def with_roster(self, roster: Mapping[str, DriverRef]) -> "IncidentTrigger":
        """Return a copy whose driver roster is filled from `roster`.

        Entries already present on the trigger win.
        """
        wanted = {did: roster[did] for did in self.driver_ids if did in roster}
        if not wanted:
            return self
        merged = {**wanted, **dict(self.data.drivers)}
        return replace(self, data=replace(self.data, drivers=merged))


def parse_trigger(payload: dict) -> IncidentTrigger:
    """Build a trigger from a validated camelCase payload."""
    kind = str(payload["type"])
    data_cls = DATA_TYPES.get(kind, TriggerData)
    nearby = tuple(str(x) for x in payload.get("nearbyDriverIds") or ())
    return IncidentTrigger(
        type=kind,
        primary_driver_id=str(payload["primaryDriverId"]),
        nearby_driver_ids=nearby,
        session_time_ms=finite_int(payload.get("sessionTimeMs")) or 0,
        data=data_cls.from_wire(payload.get("triggerData")),
    )
