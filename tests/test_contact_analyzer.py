from sim_race_steward.core.models import ContactType
from sim_race_steward.core.triggers import (
    ContactContext,
    ContactProximityData,
    IncidentCountData,
    IncidentTrigger,
)
from sim_race_steward.incidents.contact_analyzer import ContactAnalyzer, latest_braker


def contact_trigger(nearby=("D2",), **ctx):
    return IncidentTrigger(
        type="contact_proximity",
        primary_driver_id="D1",
        nearby_driver_ids=tuple(nearby),
        data=ContactProximityData(contact=ContactContext(**ctx)),
    )


def test_no_nearby_drivers_returns_other():
    assert ContactAnalyzer().analyze(contact_trigger(nearby=(), approach_angle_deg=5.0)) is ContactType.OTHER


def test_missing_context_returns_other():
    trig = IncidentTrigger(
        type="incident_count_increase",
        primary_driver_id="D1",
        nearby_driver_ids=("D2",),
        data=IncidentCountData(delta=4),
    )
    assert ContactAnalyzer().analyze(trig) is ContactType.OTHER


def test_rear_end_small_angle_low_overlap():
    trig = contact_trigger(approach_angle_deg=5.0, lateral_overlap=0.1, closing_speed_kph=30.0)
    assert ContactAnalyzer().analyze(trig) is ContactType.REAR_END


def test_rear_end_from_closing_speed_alone():
    assert ContactAnalyzer().analyze(contact_trigger(closing_speed_kph=25.0)) is ContactType.REAR_END


def test_side_contact_wide_angle_or_overlap():
    analyzer = ContactAnalyzer()
    assert analyzer.analyze(contact_trigger(approach_angle_deg=70.0)) is ContactType.SIDE
    assert analyzer.analyze(contact_trigger(lateral_overlap=0.8)) is ContactType.SIDE


def test_divebomb_on_corner_entry_with_late_braking():
    trig = contact_trigger(
        closing_speed_kph=35.0,
        approach_angle_deg=20.0,
        corner_entry=True,
        braking_points_m={"D1": 120.0, "D2": 75.0},
    )
    assert ContactAnalyzer().analyze(trig) is ContactType.DIVEBOMB


def test_corner_entry_slow_closing_is_not_divebomb():
    trig = contact_trigger(
        closing_speed_kph=5.0,
        approach_angle_deg=5.0,
        corner_entry=True,
        braking_points_m={"D1": 120.0, "D2": 75.0},
    )
    assert ContactAnalyzer().analyze(trig) is ContactType.REAR_END


def test_empty_context_is_other():
    assert ContactAnalyzer().analyze(contact_trigger()) is ContactType.OTHER


def test_latest_braker_needs_clear_margin():
    ctx = ContactContext(braking_points_m={"A": 100.0, "B": 95.0})
    assert latest_braker(ctx, ["A", "B"]) is None
    ctx = ContactContext(braking_points_m={"A": 100.0, "B": 60.0})
    assert latest_braker(ctx, ["A", "B"]) == "B"
    assert latest_braker(ctx, ["A"]) is None
