"""Severity scoring policy.

The score is a weighted sum of a per-kind base, a contact-type weight,
an impact speed term and a per-extra-car term, clamped to [0, 100]. Every
term is non-decreasing in its physical input, so the score is monotonic
in impact-derived signals; implausible inputs saturate instead of failing.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

from ..core.models import ContactType, Severity
from ..core.triggers import (
    DecelerationData,
    ErraticTrajectoryData,
    IncidentCountData,
    IncidentTrigger,
    OffTrackData,
    SpinData,
    TriggerKind,
)

SCORE_MIN = 0
SCORE_MAX = 100


def _f(v) -> float:
    """Float value of `v`; ints beyond float range saturate, NaN reads as 0."""
    try:
        f = float(v)
    except OverflowError:
        return math.inf if v > 0 else -math.inf
    return 0.0 if math.isnan(f) else f


class SeverityScorer:
    kind_base: Dict[str, float] = {
        TriggerKind.OFF_TRACK_DETECTED.value: 10.0,
        TriggerKind.SPIN_DETECTED.value: 20.0,
        TriggerKind.SUDDEN_DECELERATION.value: 15.0,
        TriggerKind.INCIDENT_COUNT_INCREASE.value: 10.0,
        TriggerKind.CONTACT_PROXIMITY.value: 15.0,
        TriggerKind.ERRATIC_TRAJECTORY.value: 10.0,
    }
    unknown_base = 15.0
    contact_weight: Dict[ContactType, float] = {
        ContactType.REAR_END: 10.0,
        ContactType.SIDE: 5.0,
        ContactType.DIVEBOMB: 15.0,
        ContactType.OTHER: 0.0,
    }
    impact_factor = 1.2
    extra_car_weight = 4.0
    incident_point_weight = 5.0
    # enough points to saturate the score on their own
    max_incident_points = 20
    medium_threshold = 35
    heavy_threshold = 65

    def impact_speed(self, trigger: IncidentTrigger) -> float:
        """Best estimate of impact speed in km/h, never negative."""
        data = trigger.data
        impact = 0.0
        if isinstance(data, DecelerationData):
            impact = _f(data.speed_drop_kph)
        elif isinstance(data, SpinData):
            impact = 0.3 * _f(data.speed_kph)
        elif isinstance(data, OffTrackData):
            impact = 0.15 * _f(data.speed_kph) * max(0, min(4, data.wheels_off)) / 4
        elif isinstance(data, ErraticTrajectoryData):
            impact = 0.1 * _f(data.speed_kph) + 2.0 * abs(_f(data.lateral_deviation_m))
        elif isinstance(data, IncidentCountData):
            impact = 0.2 * _f(data.speed_kph)
        ctx = trigger.contact_context()
        if ctx is not None and ctx.closing_speed_kph is not None:
            impact = max(impact, _f(ctx.closing_speed_kph))
        return max(0.0, impact)

    def calculate(
        self, trigger: IncidentTrigger, contact_type: Optional[ContactType] = None
    ) -> Tuple[Severity, int]:
        raw = self.kind_base.get(trigger.type, self.unknown_base)
        if contact_type is not None:
            raw += self.contact_weight.get(contact_type, 0.0)
        raw += self.impact_factor * self.impact_speed(trigger)
        raw += self.extra_car_weight * len(trigger.nearby_driver_ids)
        if isinstance(trigger.data, IncidentCountData):
            raw += self.incident_point_weight * min(max(0, trigger.data.delta), self.max_incident_points)
        if math.isnan(raw):
            raw = 0.0
        score = int(round(max(SCORE_MIN, min(SCORE_MAX, raw))))
        return self.classify_score(score), score

    def classify_score(self, score: int) -> Severity:
        if score >= self.heavy_threshold:
            return Severity.HEAVY
        if score >= self.medium_threshold:
            return Severity.MEDIUM
        return Severity.LIGHT
