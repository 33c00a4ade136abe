import json

from sim_race_steward.core.triggers import (
    ContactProximityData,
    DecelerationData,
    DriverRef,
    IncidentCountData,
    OffTrackData,
    TriggerData,
    parse_trigger,
)
from sim_race_steward.schemas.validation import example


def test_parse_contact_proximity_example():
    trig = parse_trigger(example("incident_trigger"))
    assert trig.type == "contact_proximity"
    assert trig.primary_driver_id == "D1"
    assert trig.nearby_driver_ids == ("D2",)
    assert trig.session_time_ms == 812345
    assert isinstance(trig.data, ContactProximityData)
    assert trig.data.lap_number == 7
    ctx = trig.contact_context()
    assert ctx.closing_speed_kph == 28.0
    assert ctx.positions == {"D1": 3, "D2": 2}
    assert ctx.corner_entry is False


def test_parse_defaults_when_trigger_data_missing():
    trig = parse_trigger({"type": "off_track_detected", "primaryDriverId": "D1"})
    assert isinstance(trig.data, OffTrackData)
    assert trig.data.lap_number == 0
    assert trig.data.track_position == 0.0
    assert trig.nearby_driver_ids == ()
    assert trig.contact_context() is None


def test_unknown_kind_uses_base_payload():
    trig = parse_trigger(
        {"type": "meteor_strike", "primaryDriverId": "D1", "triggerData": {"lapNumber": 4}}
    )
    assert type(trig.data) is TriggerData
    assert trig.data.lap_number == 4


def test_fields_of_other_kinds_are_ignored_and_bad_types_defaulted():
    trig = parse_trigger(
        {
            "type": "incident_count_increase",
            "primaryDriverId": "D1",
            "triggerData": {"delta": 4, "yawRateDps": 300, "lapNumber": "seven", "speedKph": 150},
        }
    )
    assert isinstance(trig.data, IncidentCountData)
    assert trig.data.delta == 4
    assert trig.data.speed_kph == 150.0
    assert trig.data.lap_number == 0
    assert not hasattr(trig.data, "yaw_rate_dps")


def test_deceleration_speed_drop_never_negative():
    data = DecelerationData(speed_before_kph=80.0, speed_after_kph=120.0)
    assert data.speed_drop_kph == 0.0
    assert DecelerationData(speed_before_kph=180.0, speed_after_kph=60.0).speed_drop_kph == 120.0


def test_with_roster_fills_missing_names_only():
    trig = parse_trigger(
        {
            "type": "contact_proximity",
            "primaryDriverId": "D1",
            "nearbyDriverIds": ["D2"],
            "triggerData": {"drivers": {"D1": {"driverName": "From Relay", "carNumber": "7"}}},
        }
    )
    enriched = trig.with_roster(
        {"D1": DriverRef("Registry", "1"), "D2": DriverRef("Bob", "22"), "D9": DriverRef("X")}
    )
    assert enriched.data.drivers["D1"].driver_name == "From Relay"
    assert enriched.data.drivers["D2"] == DriverRef("Bob", "22")
    assert "D9" not in enriched.data.drivers
    # original trigger is immutable
    assert "D2" not in trig.data.drivers


def test_non_finite_numbers_fall_back_to_defaults():
    payload = json.loads(
        '{"type": "incident_count_increase", "primaryDriverId": "D1", "sessionTimeMs": 1e999,'
        ' "triggerData": {"lapNumber": 1e999, "trackPosition": NaN, "delta": -Infinity,'
        ' "speedKph": Infinity, "contact": {"closingSpeedKph": NaN, "positions": {"D1": 1e999, "D2": 4},'
        ' "brakingPointsM": {"D1": Infinity, "D2": 50}}}}'
    )
    trig = parse_trigger(payload)
    assert trig.session_time_ms == 0
    assert trig.data.lap_number == 0
    assert trig.data.track_position == 0.0
    assert trig.data.delta == 1
    assert trig.data.speed_kph == 0.0
    assert trig.data.contact.closing_speed_kph is None
    assert trig.data.contact.positions == {"D2": 4}
    assert trig.data.contact.braking_points_m == {"D2": 50.0}


def test_nan_session_time_and_huge_ints_are_ignored():
    trig = parse_trigger(
        {
            "type": "spin_detected",
            "primaryDriverId": "D1",
            "sessionTimeMs": float("nan"),
            "triggerData": {"lapNumber": 10**400, "yawRateDps": 10**400},
        }
    )
    assert trig.session_time_ms == 0
    assert trig.data.lap_number == 0
    assert trig.data.yaw_rate_dps == 0.0
