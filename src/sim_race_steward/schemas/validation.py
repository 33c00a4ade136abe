"""JSON Schema validation for relay payloads.

One schema file per inbound event type lives next to this module. Schemas
only pin down the key fields each event needs and leave everything else
open, so relay agents can add fields without breaking ingestion.
"""

from __future__ import annotations

import copy
import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import jsonschema

SCHEMA_DIR = Path(__file__).parent

SCHEMA_MAP = {
    "session_metadata": "relay.session_metadata.schema.json",
    "telemetry": "relay.telemetry.schema.json",
    "incident": "relay.incident.schema.json",
    "race_event": "relay.race_event.schema.json",
    "driver_update": "relay.driver_update.schema.json",
    "incident_trigger": "relay.incident_trigger.schema.json",
}


@lru_cache(maxsize=16)
def _load_schema(name: str) -> Dict[str, Any]:
    path = SCHEMA_DIR / name
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def validate(event_type: str, payload: Dict[str, Any]) -> None:
    """Raise jsonschema.ValidationError when `payload` does not match."""
    schema_file = SCHEMA_MAP.get(event_type)
    if not schema_file:
        raise ValueError(f"No schema registered for event {event_type}")
    jsonschema.validate(instance=payload, schema=_load_schema(schema_file))


def is_valid(event_type: str, payload: Dict[str, Any]) -> bool:
    try:
        validate(event_type, payload)
        return True
    except (jsonschema.ValidationError, ValueError):
        return False


EXAMPLES: Dict[str, Dict[str, Any]] = {
    "session_metadata": {
        "sessionId": "S1",
        "trackName": "Spa-Francorchamps",
        "trackConfig": "Grand Prix",
        "sessionType": "race",
    },
    "telemetry": {
        "sessionId": "S1",
        "sessionTimeMs": 812345,
        "drivers": [
            {
                "driverId": "D1",
                "driverName": "Alice",
                "carNumber": "11",
                "lapDistPct": 0.42,
                "position": 2,
                "lapNumber": 7,
                "speed": 212.4,
            },
            {
                "driverId": "D2",
                "driverName": "Bob",
                "carNumber": "22",
                "lapDistPct": 0.44,
                "position": 1,
                "lapNumber": 7,
                "speed": 214.9,
            },
        ],
    },
    "incident": {
        "sessionId": "S1",
        "type": "off_track",
        "driverId": "D1",
        "driverName": "Alice",
        "carNumber": "11",
        "lapNumber": 7,
        "trackPosition": 0.42,
        "incidentCount": 3,
    },
    "race_event": {"sessionId": "S1", "eventType": "green_flag", "data": {"lap": 1}},
    "driver_update": {"sessionId": "S1", "driverId": "D1", "driverName": "Alice", "iRating": 2450},
    "incident_trigger": {
        "sessionId": "S1",
        "type": "contact_proximity",
        "primaryDriverId": "D1",
        "nearbyDriverIds": ["D2"],
        "sessionTimeMs": 812345,
        "triggerData": {
            "lapNumber": 7,
            "trackPosition": 0.42,
            "contact": {
                "closingSpeedKph": 28.0,
                "approachAngleDeg": 8.0,
                "lateralOverlap": 0.1,
                "cornerEntry": False,
                "positions": {"D1": 3, "D2": 2},
            },
        },
    },
}


def example(event_type: str) -> Dict[str, Any]:
    return copy.deepcopy(EXAMPLES[event_type])
