from __future__ import annotations

import asyncio
from typing import List, Optional

from sim_race_steward.logging import get_logger
from .session_registry import SessionRegistry

_LOGGER = get_logger(__name__)


class EvictionScheduler:
    """Periodically drops sessions that stopped receiving relay traffic."""

    def __init__(self, registry: SessionRegistry, ttl_s: float = 60.0, interval_s: float = 30.0):
        self.registry = registry
        self.ttl_s = ttl_s
        self.interval_s = interval_s
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> List[str]:
        return self.registry.evict_stale(ttl=self.ttl_s)

    def start(self) -> asyncio.Task:
        if self.running:
            assert self._task is not None
            return self._task
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="eviction_scheduler")
        _LOGGER.info("[evict] started ttl=%.1fs interval=%.1fs", self.ttl_s, self.interval_s)
        return self._task

    async def _run(self) -> None:
        assert self._stop is not None
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass
            if self._stop.is_set():
                break
            try:
                self.sweep()
            except Exception:
                _LOGGER.exception("[evict] sweep failed")

    async def stop(self, timeout: float = 2.0) -> None:
        task = self._task
        if task is None:
            return
        if self._stop is not None:
            self._stop.set()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            task.cancel()
        except asyncio.CancelledError:
            pass
        self._task = None
        _LOGGER.info("[evict] stopped")
