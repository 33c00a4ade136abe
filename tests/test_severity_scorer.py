import math

import pytest

from sim_race_steward.core.models import ContactType, Severity
from sim_race_steward.core.triggers import (
    ContactContext,
    ContactProximityData,
    DecelerationData,
    ErraticTrajectoryData,
    IncidentCountData,
    IncidentTrigger,
    OffTrackData,
    SpinData,
    TriggerData,
)
from sim_race_steward.incidents.severity_scorer import SeverityScorer


def contact(closing, nearby=("D2",)):
    return IncidentTrigger(
        type="contact_proximity",
        primary_driver_id="D1",
        nearby_driver_ids=nearby,
        data=ContactProximityData(contact=ContactContext(closing_speed_kph=closing)),
    )


def test_light_off_track():
    trig = IncidentTrigger(
        type="off_track_detected", primary_driver_id="D1", data=OffTrackData(speed_kph=80.0, wheels_off=2)
    )
    severity, score = SeverityScorer().calculate(trig)
    assert severity is Severity.LIGHT
    assert 0 <= score < 35


def test_heavy_rear_end_collision():
    severity, score = SeverityScorer().calculate(contact(80.0, ("D2", "D3")), ContactType.REAR_END)
    assert severity is Severity.HEAVY
    assert score == 100


def test_score_monotonic_in_closing_speed():
    scorer = SeverityScorer()
    scores = [scorer.calculate(contact(v), ContactType.REAR_END)[1] for v in range(0, 120, 5)]
    assert scores == sorted(scores)


def test_score_monotonic_in_speed_drop():
    scorer = SeverityScorer()
    scores = []
    for after in (200, 150, 100, 50, 0):
        trig = IncidentTrigger(
            type="sudden_deceleration",
            primary_driver_id="D1",
            data=DecelerationData(speed_before_kph=200.0, speed_after_kph=float(after)),
        )
        scores.append(scorer.calculate(trig)[1])
    assert scores == sorted(scores)
    assert scores[0] < scores[-1]


@pytest.mark.parametrize(
    "data,kind",
    [
        (DecelerationData(speed_before_kph=1e9, speed_after_kph=0.0), "sudden_deceleration"),
        (DecelerationData(speed_before_kph=-50.0, speed_after_kph=100.0), "sudden_deceleration"),
        (SpinData(speed_kph=math.inf), "spin_detected"),
        (SpinData(speed_kph=-400.0), "spin_detected"),
        (OffTrackData(speed_kph=math.nan), "off_track_detected"),
        (ErraticTrajectoryData(speed_kph=50.0, lateral_deviation_m=-1e6), "erratic_trajectory"),
        (IncidentCountData(delta=-5), "incident_count_increase"),
        (IncidentCountData(delta=10_000, speed_kph=400.0), "incident_count_increase"),
        (ContactProximityData(contact=ContactContext(closing_speed_kph=-80.0)), "contact_proximity"),
        (TriggerData(), "unknown_kind"),
    ],
)
def test_score_always_clamped(data, kind):
    trig = IncidentTrigger(type=kind, primary_driver_id="D1", nearby_driver_ids=("D2",), data=data)
    for ct in (None, *ContactType):
        severity, score = SeverityScorer().calculate(trig, ct)
        assert isinstance(score, int)
        assert 0 <= score <= 100
        assert severity in Severity


def test_severity_bands():
    scorer = SeverityScorer()
    assert scorer.classify_score(0) is Severity.LIGHT
    assert scorer.classify_score(34) is Severity.LIGHT
    assert scorer.classify_score(35) is Severity.MEDIUM
    assert scorer.classify_score(64) is Severity.MEDIUM
    assert scorer.classify_score(65) is Severity.HEAVY
    assert scorer.classify_score(100) is Severity.HEAVY


def test_huge_integer_inputs_saturate():
    scorer = SeverityScorer()
    trig = IncidentTrigger(
        type="incident_count_increase", primary_driver_id="D1", data=IncidentCountData(delta=10**400)
    )
    assert scorer.calculate(trig) == (Severity.HEAVY, 100)
    trig = IncidentTrigger(
        type="sudden_deceleration",
        primary_driver_id="D1",
        data=DecelerationData(speed_before_kph=10**400, speed_after_kph=0),
    )
    assert scorer.calculate(trig)[1] == 100
    trig = IncidentTrigger(
        type="spin_detected", primary_driver_id="D1", data=SpinData(speed_kph=-(10**400))
    )
    severity, score = scorer.calculate(trig)
    assert 0 <= score <= 100
    assert severity is Severity.LIGHT


def test_incident_points_capped_but_monotonic():
    scorer = SeverityScorer()
    scores = [
        scorer.calculate(
            IncidentTrigger(type="incident_count_increase", primary_driver_id="D1", data=IncidentCountData(delta=d))
        )[1]
        for d in (0, 1, 4, 8, 20, 50, 10**6)
    ]
    assert scores == sorted(scores)
    assert scores[-1] == 100
