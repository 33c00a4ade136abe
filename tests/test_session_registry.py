import threading

from sim_race_steward.core.models import DriverSnapshot, SessionMetadata
from sim_race_steward.core.session_registry import SessionRegistry


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def snap(driver_id, pct=0.0, position=None, **kw):
    return DriverSnapshot(
        driver_id=driver_id,
        driver_name=kw.pop("driver_name", f"Driver {driver_id}"),
        car_number=kw.pop("car_number", "0"),
        lap_dist_pct=pct,
        position=position,
        **kw,
    )


def test_registry_initially_empty():
    reg = SessionRegistry()
    assert reg.list_active() == []
    assert reg.get("S1") is None
    assert len(reg) == 0


def test_telemetry_for_unseen_session_creates_placeholder():
    reg = SessionRegistry(FakeClock())
    entries = reg.apply_telemetry("S1", [snap("D1", 0.42)])
    assert [e["driverId"] for e in entries] == ["D1"]
    active = reg.list_active()
    assert len(active) == 1
    s = active[0]
    assert s.session_id == "S1"
    assert s.track_name == "Unknown Track"
    assert s.session_type == "race"
    assert s.driver_count == 1


def test_metadata_overwrites_placeholder_and_keeps_drivers():
    clock = FakeClock()
    reg = SessionRegistry(clock)
    reg.apply_telemetry("S1", [snap("D1"), snap("D2")])
    clock.now += 5
    summary = reg.upsert_metadata("S1", SessionMetadata("Monza", "qualifying", "GP"))
    assert summary.track_name == "Monza"
    assert summary.session_type == "qualifying"
    assert summary.driver_count == 2
    assert summary.last_update == clock.now


def test_upsert_metadata_twice_leaves_drivers_untouched():
    reg = SessionRegistry(FakeClock())
    meta = SessionMetadata("Spa", "race")
    reg.upsert_metadata("S1", meta)
    reg.apply_telemetry("S1", [snap("D1", 0.1, lap_number=3)])
    reg.upsert_metadata("S1", meta)
    reg.upsert_metadata("S1", meta)
    assert reg.get("S1").driver_count == 1
    assert reg.driver("S1", "D1").lap_number == 3


def test_snapshot_is_replaced_not_patched():
    reg = SessionRegistry(FakeClock())
    reg.apply_telemetry("S1", [snap("D1", 0.1, position=3, speed=200.0, best_lap_time=91.2)])
    reg.apply_telemetry("S1", [snap("D1", 0.2)])
    d1 = reg.driver("S1", "D1")
    assert d1.lap_dist_pct == 0.2
    assert d1.speed is None
    assert d1.best_lap_time is None
    assert d1.position is None


def test_frame_only_touches_named_drivers():
    reg = SessionRegistry(FakeClock())
    reg.apply_telemetry("S1", [snap("D1", 0.1), snap("D2", 0.2)])
    reg.apply_telemetry("S1", [snap("D2", 0.3)])
    assert reg.driver("S1", "D1").lap_dist_pct == 0.1
    assert reg.driver("S1", "D2").lap_dist_pct == 0.3


def test_timing_view_ordered_by_position_then_input_order():
    reg = SessionRegistry(FakeClock())
    entries = reg.apply_telemetry(
        "S1",
        [snap("D3"), snap("D1", position=2), snap("D4"), snap("D2", position=1)],
    )
    assert [e["driverId"] for e in entries] == ["D2", "D1", "D3", "D4"]


def test_timing_view_without_positions_keeps_input_order():
    reg = SessionRegistry(FakeClock())
    entries = reg.apply_telemetry("S1", [snap("B"), snap("A"), snap("C")])
    assert [e["driverId"] for e in entries] == ["B", "A", "C"]


def test_roster_projection():
    reg = SessionRegistry(FakeClock())
    reg.apply_telemetry("S1", [snap("D1", driver_name="Alice", car_number="11")])
    roster = reg.roster("S1")
    assert roster["D1"].driver_name == "Alice"
    assert roster["D1"].car_number == "11"
    assert reg.roster("nope") == {}


def test_concurrent_writers_do_not_lose_driver_updates():
    reg = SessionRegistry()
    n_threads, per_thread = 8, 50

    def writer(t):
        for i in range(per_thread):
            reg.apply_telemetry("S1", [snap(f"T{t}-D{i}", i / per_thread)])

    threads = [threading.Thread(target=writer, args=(t,)) for t in range(n_threads)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()
    assert reg.get("S1").driver_count == n_threads * per_thread
