from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..core.models import ContactType, DriverRole
from ..core.triggers import ContactContext, IncidentTrigger
from .contact_analyzer import latest_braker


@dataclass(frozen=True)
class FaultPrediction:
    driver_id: str
    probability: float
    role: DriverRole


class ResponsibilityPredictor:
    """Advisory fault split between the drivers of a multi-car incident.

    Every driver starts at 0.5. The rearmost car (by race position) gains
    weight according to the contact type and the others lose the same
    amount; on corner entry the clearly latest braker gains extra weight.
    Probabilities are clamped to [0, 1] and mapped to exactly one role.
    """

    neutral = 0.5
    attacker_weight: Dict[Optional[ContactType], float] = {
        ContactType.REAR_END: 0.35,
        ContactType.DIVEBOMB: 0.25,
        ContactType.SIDE: 0.05,
        ContactType.OTHER: 0.15,
        None: 0.15,
    }
    late_braking_weight = 0.15
    cause_threshold = 0.6
    victim_threshold = 0.4

    def predict(
        self,
        trigger: IncidentTrigger,
        driver_ids: Sequence[str],
        contact_type: Optional[ContactType] = None,
    ) -> List[FaultPrediction]:
        if len(driver_ids) < 2:
            return []
        ctx = trigger.contact_context() or ContactContext()
        scores = {did: self.neutral for did in driver_ids}

        attacker = self._rearmost(ctx, driver_ids)
        if attacker is not None:
            w = self.attacker_weight.get(contact_type, self.attacker_weight[None])
            for did in scores:
                scores[did] += w if did == attacker else -w

        if ctx.corner_entry:
            late = latest_braker(ctx, driver_ids)
            if late is not None:
                for did in scores:
                    scores[did] += self.late_braking_weight if did == late else -self.late_braking_weight

        return [
            FaultPrediction(did, p, self.role_for(p))
            for did, p in ((d, round(min(1.0, max(0.0, s)), 2)) for d, s in scores.items())
        ]

    @staticmethod
    def _rearmost(ctx: ContactContext, driver_ids: Sequence[str]) -> Optional[str]:
        ranked = sorted((ctx.positions[d], d) for d in driver_ids if d in ctx.positions)
        if len(ranked) < 2 or ranked[-1][0] == ranked[-2][0]:
            return None
        return ranked[-1][1]

    def role_for(self, probability: float) -> DriverRole:
        if probability >= self.cause_threshold:
            return DriverRole.CAUSE
        if probability <= self.victim_threshold:
            return DriverRole.VICTIM
        return DriverRole.INVOLVED
