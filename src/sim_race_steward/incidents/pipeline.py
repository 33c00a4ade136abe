from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sim_race_steward.logging import get_logger
from ..broadcast.hub import BroadcastHub
from ..core.models import IncidentEvent, IncidentStatus, IncidentType, InvolvedDriver
from ..core.triggers import IncidentTrigger
from ..persistence.incident_store import IncidentStore, PersistenceError
from .contact_analyzer import ContactAnalyzer
from .responsibility import ResponsibilityPredictor
from .severity_scorer import SeverityScorer
from .type_mapping import map_trigger_type

_LOGGER = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClassificationPipeline:
    """Turns an incident trigger into a persisted, classified incident.

    Stages run in order: type mapping, contact analysis (contacts only),
    severity scoring, responsibility prediction (multi-car only). The
    pipeline never reads the session registry; any driver context must
    arrive on the trigger itself.

    Persistence is the commit point: `incident:new` goes out on the hub
    only after the store accepted the record, and a failed write is
    reported to the caller as `None` without any broadcast.
    """

    def __init__(
        self,
        store: IncidentStore,
        hub: Optional[BroadcastHub] = None,
        contact_analyzer: Optional[ContactAnalyzer] = None,
        severity_scorer: Optional[SeverityScorer] = None,
        responsibility_predictor: Optional[ResponsibilityPredictor] = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.hub = hub
        self.contact_analyzer = contact_analyzer or ContactAnalyzer()
        self.severity_scorer = severity_scorer or SeverityScorer()
        self.responsibility_predictor = responsibility_predictor or ResponsibilityPredictor()
        self._clock = clock
        self._id_factory = id_factory

    def _involved(self, trigger: IncidentTrigger) -> List[InvolvedDriver]:
        roster = trigger.data.drivers
        out: List[InvolvedDriver] = []
        for did in trigger.driver_ids:
            ref = roster.get(did)
            out.append(
                InvolvedDriver(
                    driver_id=did,
                    driver_name=ref.driver_name if ref else f"Driver {did}",
                    car_number=ref.car_number if ref else "0",
                )
            )
        return out

    def classify(self, trigger: IncidentTrigger, session_id: str) -> IncidentEvent:
        incident_type = map_trigger_type(trigger)
        contact_type = None
        if incident_type is IncidentType.CONTACT:
            contact_type = self.contact_analyzer.analyze(trigger)
        severity, score = self.severity_scorer.calculate(trigger, contact_type)

        involved = self._involved(trigger)
        if len(involved) > 1:
            predictions = {
                p.driver_id: p
                for p in self.responsibility_predictor.predict(
                    trigger, [d.driver_id for d in involved], contact_type
                )
            }
            for driver in involved:
                pred = predictions.get(driver.driver_id)
                if pred is not None:
                    driver.fault_probability = pred.probability
                    driver.role = pred.role

        now = self._clock()
        return IncidentEvent(
            id=self._id_factory(),
            session_id=session_id,
            type=incident_type,
            contact_type=contact_type,
            severity=severity,
            severity_score=score,
            lap_number=trigger.data.lap_number,
            session_time_ms=trigger.session_time_ms,
            track_position=trigger.data.track_position,
            involved_drivers=involved,
            status=IncidentStatus.PENDING,
            replay_timestamp_ms=trigger.session_time_ms,
            created_at=now,
            updated_at=now,
        )

    async def process_trigger(
        self, trigger: IncidentTrigger, session_id: str
    ) -> Optional[IncidentEvent]:
        try:
            incident = self.classify(trigger, session_id)
        except Exception:
            _LOGGER.exception(
                "[pipeline] classification failed session=%s trigger=%s", session_id, trigger.type
            )
            return None
        try:
            saved = await self.store.create(incident)
        except PersistenceError:
            _LOGGER.exception(
                "[pipeline] persist failed session=%s incident=%s", session_id, incident.id
            )
            return None

        _LOGGER.info(
            "[pipeline] incident classified session=%s type=%s severity=%s(%d) drivers=%d",
            session_id,
            saved.type.value,
            saved.severity.value,
            saved.severity_score,
            len(saved.involved_drivers),
        )
        if self.hub is not None:
            self.hub.incident_new(session_id, saved.to_dict())
        return saved
