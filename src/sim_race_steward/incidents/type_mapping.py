from __future__ import annotations

from typing import Dict

from ..core.models import IncidentType
from ..core.triggers import IncidentTrigger, TriggerKind

_FIXED: Dict[str, IncidentType] = {
    TriggerKind.OFF_TRACK_DETECTED.value: IncidentType.OFF_TRACK,
    TriggerKind.SPIN_DETECTED.value: IncidentType.SPIN,
    TriggerKind.CONTACT_PROXIMITY.value: IncidentType.CONTACT,
    TriggerKind.ERRATIC_TRAJECTORY.value: IncidentType.LOSS_OF_CONTROL,
}

# Kinds that become contacts only when other cars were nearby.
_SOLO_FALLBACK: Dict[str, IncidentType] = {
    TriggerKind.INCIDENT_COUNT_INCREASE.value: IncidentType.OFF_TRACK,
    TriggerKind.SUDDEN_DECELERATION.value: IncidentType.LOSS_OF_CONTROL,
}


def map_trigger_type(trigger: IncidentTrigger) -> IncidentType:
    """Total mapping from trigger kind to incident type; unknown kinds are contacts."""
    if trigger.type in _FIXED:
        return _FIXED[trigger.type]
    if trigger.type in _SOLO_FALLBACK:
        return IncidentType.CONTACT if trigger.nearby_driver_ids else _SOLO_FALLBACK[trigger.type]
    return IncidentType.CONTACT
