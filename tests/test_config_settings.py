import importlib
import json


def reload_settings_module():
    import sim_race_steward.config.settings as settings_mod

    importlib.reload(settings_mod)
    return settings_mod


def test_default_settings_values(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.json"))
    for key in ["NATS_URL", "SESSION_TTL_S", "EVICTION_INTERVAL_S", "ENABLE_NATS"]:
        monkeypatch.delenv(key, raising=False)
    s = reload_settings_module().get_settings()
    assert s.nats.url.startswith("nats://"), "Unexpected default NATS URL"
    assert s.session_ttl_s == 60.0
    assert s.eviction_interval_s == 30.0
    assert s.nats.relay_prefix == "relay"
    assert s.enable_nats is True


def test_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.json"))
    monkeypatch.setenv("NATS_URL", "nats://localhost:4223")
    monkeypatch.setenv("SESSION_TTL_S", "90")
    monkeypatch.setenv("TRIGGER_QUEUE_SIZE", "7")
    monkeypatch.setenv("NATS_CONNECT_TIMEOUT", "3.5")
    s = reload_settings_module().get_settings()
    assert s.nats.url.endswith(":4223")
    assert s.session_ttl_s == 90.0
    assert s.trigger_queue_size == 7
    assert s.nats.connect_timeout == 3.5


def test_boolean_feature_flags(monkeypatch, tmp_path):
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.json"))
    monkeypatch.setenv("ENABLE_NATS", "0")
    monkeypatch.setenv("ENABLE_HTTP", "0")
    s = reload_settings_module().get_settings()
    assert s.enable_nats is False
    assert s.enable_http is False


def test_config_file_then_env(monkeypatch, tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text(
        json.dumps({"nats": {"relay_prefix": "iracing.relay"}, "sqlite_path": "x.db", "http_port": 9001})
    )
    monkeypatch.setenv("CONFIG_PATH", str(cfg))
    monkeypatch.delenv("SQLITE_PATH", raising=False)
    monkeypatch.delenv("RELAY_SUBJECT_PREFIX", raising=False)
    monkeypatch.setenv("HTTP_PORT", "9100")
    s = reload_settings_module().get_settings()
    assert s.nats.relay_prefix == "iracing.relay"
    assert s.sqlite_path == "x.db"
    assert s.http_port == 9100


def test_malformed_config_file_ignored(monkeypatch, tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text("{not json")
    monkeypatch.setenv("CONFIG_PATH", str(cfg))
    monkeypatch.delenv("SQLITE_PATH", raising=False)
    s = reload_settings_module().get_settings()
    assert s.sqlite_path == "data/steward.db"
