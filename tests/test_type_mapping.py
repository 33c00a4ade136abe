import pytest

from sim_race_steward.core.models import IncidentType
from sim_race_steward.core.triggers import IncidentTrigger
from sim_race_steward.incidents.type_mapping import map_trigger_type


@pytest.mark.parametrize(
    "kind,nearby,expected",
    [
        ("off_track_detected", (), IncidentType.OFF_TRACK),
        ("off_track_detected", ("D2",), IncidentType.OFF_TRACK),
        ("spin_detected", (), IncidentType.SPIN),
        ("contact_proximity", (), IncidentType.CONTACT),
        ("erratic_trajectory", ("D2",), IncidentType.LOSS_OF_CONTROL),
        ("incident_count_increase", (), IncidentType.OFF_TRACK),
        ("incident_count_increase", ("D2",), IncidentType.CONTACT),
        ("sudden_deceleration", (), IncidentType.LOSS_OF_CONTROL),
        ("sudden_deceleration", ("D2", "D3"), IncidentType.CONTACT),
        ("something_new", (), IncidentType.CONTACT),
    ],
)
def test_trigger_kind_mapping(kind, nearby, expected):
    trig = IncidentTrigger(type=kind, primary_driver_id="D1", nearby_driver_ids=nearby)
    assert map_trigger_type(trig) is expected
