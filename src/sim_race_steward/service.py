"""Service composition and the long-running process entry point."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from typing import Callable, Optional

import uvicorn

from sim_race_steward.logging import get_logger
from .broadcast.hub import BroadcastHub
from .config.settings import Settings
from .core.eviction import EvictionScheduler
from .core.session_registry import SessionRegistry
from .incidents.dispatcher import TriggerDispatcher
from .incidents.pipeline import ClassificationPipeline
from .ingest.gateway import IngestGateway
from .persistence.incident_store import IncidentStore, SQLiteIncidentStore

LOG = get_logger(__name__)


class StewardService:
    """Wires registry, hub, pipeline, dispatcher, gateway and eviction together.

    Each instance owns its own collaborators, so tests can run several
    isolated services side by side.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[IncidentStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.registry = SessionRegistry(clock)
        self.hub = BroadcastHub(settings.subscriber_queue_size)
        self.store = store if store is not None else SQLiteIncidentStore(settings.sqlite_path)
        self.pipeline = ClassificationPipeline(self.store, self.hub)
        self.dispatcher = TriggerDispatcher(self.pipeline, settings.trigger_queue_size)
        self.gateway = IngestGateway(self.registry, self.dispatcher, self.hub)
        self.scheduler = EvictionScheduler(
            self.registry, settings.session_ttl_s, settings.eviction_interval_s
        )
        self.started_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self.started_at is not None

    async def start(self) -> None:
        if self.running:
            return
        # The channel must exist before any ingest can publish on it.
        self.hub.open()
        self.scheduler.start()
        self.started_at = time.time()
        LOG.info("[service] started")

    async def stop(self, grace: float = 5.0) -> None:
        if not self.running:
            return
        await self.scheduler.stop()
        try:
            await asyncio.wait_for(self.dispatcher.drain(), timeout=grace)
        except asyncio.TimeoutError:
            LOG.warning("[service] classification still pending after %.1fs, cancelling", grace)
        await self.dispatcher.close()
        self.hub.close()
        close = getattr(self.store, "close", None)
        if callable(close):
            close()
        self.started_at = None
        LOG.info("[service] stopped")

    def status(self) -> dict:
        return {
            "status": "ok" if self.running else "stopped",
            "sessions": len(self.registry),
            "connections": len(self.hub),
            "pending_triggers": self.dispatcher.pending(),
            "dispatch": dict(self.dispatcher.stats),
            "uptime_s": round(time.time() - self.started_at, 3) if self.started_at else None,
        }


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to `run_service`."""

    def install_signal_handlers(self) -> None:  # older uvicorn releases
        pass

    @contextlib.contextmanager
    def capture_signals(self):  # newer uvicorn releases
        yield


async def run_service(settings: Settings, grace_timeout: float = 8.0) -> None:  # pragma: no cover
    from .adapters.nats_listener import NATSRelayListener
    from .api.http_api import create_app

    service = StewardService(settings)
    await service.start()
    stop_event = asyncio.Event()
    tasks: list[asyncio.Task] = []

    listener = None
    if settings.enable_nats:
        listener = NATSRelayListener(service.gateway, service.hub, settings)
        tasks.append(asyncio.create_task(listener.run(), name="nats_relay_listener"))
    else:
        LOG.info("NATS relay ingestion disabled (ENABLE_NATS=0)")

    server = None
    if settings.enable_http:
        app = create_app(service, manage_lifecycle=False)
        config = uvicorn.Config(
            app, host=settings.http_host, port=settings.http_port, log_config=None, lifespan="off"
        )
        server = _EmbeddedServer(config)
        tasks.append(asyncio.create_task(server.serve(), name="http_api"))

    LOG.info(
        "Steward started NATS_URL=%s relay=%s.* http=%s:%s ttl=%.0fs sweep=%.0fs",
        settings.nats.url,
        settings.nats.relay_prefix,
        settings.http_host if settings.enable_http else "-",
        settings.http_port if settings.enable_http else "-",
        settings.session_ttl_s,
        settings.eviction_interval_s,
    )

    shutting_down = False

    def _signal_handler(sig, _frame=None):
        nonlocal shutting_down
        if not shutting_down:
            shutting_down = True
            LOG.info("Signal %s received: initiating graceful shutdown", sig)
            stop_event.set()
        else:
            LOG.warning("Second signal %s received: force cancellation", sig)
            for t in tasks:
                t.cancel()

    loop = asyncio.get_running_loop()
    for s in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(s, _signal_handler, s, None)
        except NotImplementedError:
            signal.signal(s, _signal_handler)

    try:
        await stop_event.wait()
    finally:
        if listener is not None:
            listener.stop()
        if server is not None:
            server.should_exit = True
        for t in tasks:
            if t.done():
                continue
            try:
                await asyncio.wait_for(t, timeout=grace_timeout)
            except asyncio.TimeoutError:
                LOG.warning("Task %s did not finish in %.1fs, cancelling", t.get_name(), grace_timeout)
                t.cancel()
            except asyncio.CancelledError:
                pass
        await service.stop(grace=grace_timeout)
        LOG.info("Shutdown complete")
