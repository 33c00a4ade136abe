from __future__ import annotations

from typing import Iterable, Optional

from ..core.models import ContactType
from ..core.triggers import ContactContext, IncidentTrigger


def latest_braker(
    ctx: ContactContext, driver_ids: Iterable[str], margin_m: float = 10.0
) -> Optional[str]:
    """Driver who braked clearly later than everyone else, if any.

    Needs braking points for at least two of the drivers and a lead of at
    least `margin_m` metres over the next latest one.
    """
    points = sorted(
        (ctx.braking_points_m[d], d) for d in driver_ids if d in ctx.braking_points_m
    )
    if len(points) < 2:
        return None
    (first, did), (second, _) = points[0], points[1]
    return did if second - first >= margin_m else None


class ContactAnalyzer:
    """Tags a contact incident as rear_end, side, divebomb or other."""

    rear_end_max_angle_deg = 30.0
    rear_end_max_overlap = 0.3
    side_min_angle_deg = 45.0
    side_min_overlap = 0.5
    divebomb_min_closing_kph = 20.0
    rear_end_min_closing_kph = 15.0

    def analyze(self, trigger: IncidentTrigger) -> ContactType:
        if not trigger.nearby_driver_ids:
            return ContactType.OTHER
        ctx = trigger.contact_context()
        if ctx is None:
            return ContactType.OTHER

        angle = ctx.approach_angle_deg
        overlap = ctx.lateral_overlap
        closing = ctx.closing_speed_kph or 0.0

        if ctx.corner_entry and closing >= self.divebomb_min_closing_kph:
            late = latest_braker(ctx, trigger.driver_ids)
            oblique = angle is not None and self.rear_end_max_angle_deg / 3 < angle < self.side_min_angle_deg
            if late is not None or oblique:
                return ContactType.DIVEBOMB

        if angle is not None and angle <= self.rear_end_max_angle_deg:
            if overlap is None or overlap < self.rear_end_max_overlap:
                return ContactType.REAR_END
        if (angle is not None and angle >= self.side_min_angle_deg) or (
            overlap is not None and overlap >= self.side_min_overlap
        ):
            return ContactType.SIDE
        if angle is None and overlap is None and closing >= self.rear_end_min_closing_kph:
            return ContactType.REAR_END
        return ContactType.OTHER
