from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field


class NATSSettings(BaseModel):
    url: str = Field(default="nats://nats:4222")
    # Relay agents publish on <relay_prefix>.<event_type>
    relay_prefix: str = Field(default="relay")
    # Outbound room traffic goes to <broadcast_prefix>.<session_id|all>.<event>
    broadcast_prefix: str = Field(default="steward")
    # Credentials optional; anonymous connect when either is missing
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)
    connect_timeout: float = Field(default=10.0)


class Settings(BaseModel):
    nats: NATSSettings = Field(default_factory=NATSSettings)
    sqlite_path: str = Field(default="data/steward.db")
    log_level: str = Field(default="INFO")
    http_host: str = Field(default="0.0.0.0")
    http_port: int = Field(default=8000)
    # Registry eviction policy
    session_ttl_s: float = Field(default=60.0)
    eviction_interval_s: float = Field(default=30.0)
    # Bounded queues
    subscriber_queue_size: int = Field(default=256)
    trigger_queue_size: int = Field(default=100)
    # Transports
    enable_nats: bool = Field(default=True)
    enable_http: bool = Field(default=True)


_NATS_ENV = {
    "NATS_URL": ("url", str),
    "RELAY_SUBJECT_PREFIX": ("relay_prefix", str),
    "BROADCAST_SUBJECT_PREFIX": ("broadcast_prefix", str),
    "NATS_USERNAME": ("username", str),
    "NATS_PASSWORD": ("password", str),
    "NATS_CONNECT_TIMEOUT": ("connect_timeout", float),
}


def _flag(env_key: str, data: dict, key: str, default: bool) -> bool:
    return os.environ.get(env_key, str(int(data.get(key, default)))) == "1"


def get_settings() -> Settings:
    config_path = os.environ.get("CONFIG_PATH", "config.json")
    data: dict = {}
    p = Path(config_path)
    if p.exists():
        try:
            data = json.loads(p.read_text())
        except (OSError, ValueError):
            data = {}  # malformed file falls back to env + defaults
    nats_block = data.get("nats", {}) if isinstance(data.get("nats"), dict) else {}
    for env_key, (field, cast) in _NATS_ENV.items():
        if os.environ.get(env_key):
            nats_block[field] = cast(os.environ[env_key])

    return Settings(
        nats=NATSSettings(**nats_block),
        sqlite_path=os.environ.get("SQLITE_PATH", data.get("sqlite_path", "data/steward.db")),
        log_level=os.environ.get("LOG_LEVEL", data.get("log_level", "INFO")),
        http_host=os.environ.get("HTTP_HOST", data.get("http_host", "0.0.0.0")),
        http_port=int(os.environ.get("HTTP_PORT", data.get("http_port", 8000))),
        session_ttl_s=float(os.environ.get("SESSION_TTL_S", data.get("session_ttl_s", 60.0))),
        eviction_interval_s=float(
            os.environ.get("EVICTION_INTERVAL_S", data.get("eviction_interval_s", 30.0))
        ),
        subscriber_queue_size=int(
            os.environ.get("SUBSCRIBER_QUEUE_SIZE", data.get("subscriber_queue_size", 256))
        ),
        trigger_queue_size=int(
            os.environ.get("TRIGGER_QUEUE_SIZE", data.get("trigger_queue_size", 100))
        ),
        enable_nats=_flag("ENABLE_NATS", data, "enable_nats", True),
        enable_http=_flag("ENABLE_HTTP", data, "enable_http", True),
    )
