from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from sim_race_steward.logging import get_logger
from ..core.models import IncidentEvent
from ..core.triggers import IncidentTrigger
from .pipeline import ClassificationPipeline

_LOGGER = get_logger(__name__)

OnDone = Callable[[Optional[IncidentEvent]], Awaitable[None]]


@dataclass
class _Job:
    trigger: IncidentTrigger
    on_done: Optional[OnDone]


class TriggerDispatcher:
    """Runs classification off the ingest path.

    One bounded FIFO and one worker per session: triggers of a session are
    classified in arrival order, sessions proceed independently. A worker
    exits once its queue is empty and is recreated on the next submit.
    """

    def __init__(self, pipeline: ClassificationPipeline, queue_size: int = 100):
        self.pipeline = pipeline
        self.queue_size = max(1, queue_size)
        self._queues: Dict[str, asyncio.Queue[_Job]] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._closed = False
        self.stats = {"submitted": 0, "rejected": 0, "persisted": 0, "failed": 0}

    def submit(
        self, trigger: IncidentTrigger, session_id: str, on_done: Optional[OnDone] = None
    ) -> bool:
        if self._closed:
            self.stats["rejected"] += 1
            return False
        queue = self._queues.get(session_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.queue_size)
            self._queues[session_id] = queue
        try:
            queue.put_nowait(_Job(trigger, on_done))
        except asyncio.QueueFull:
            self.stats["rejected"] += 1
            _LOGGER.warning(
                "[dispatch] queue full session=%s size=%d; trigger %s rejected",
                session_id,
                self.queue_size,
                trigger.type,
            )
            return False
        self.stats["submitted"] += 1
        worker = self._workers.get(session_id)
        if worker is None or worker.done():
            self._workers[session_id] = asyncio.create_task(
                self._work(session_id, queue), name=f"classify:{session_id}"
            )
        return True

    async def _work(self, session_id: str, queue: asyncio.Queue[_Job]) -> None:
        while True:
            try:
                job = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                result = await self.pipeline.process_trigger(job.trigger, session_id)
            except Exception:
                _LOGGER.exception("[dispatch] worker error session=%s", session_id)
                result = None
            self.stats["persisted" if result is not None else "failed"] += 1
            if job.on_done is not None:
                try:
                    await job.on_done(result)
                except Exception:
                    _LOGGER.exception("[dispatch] completion callback failed session=%s", session_id)
            queue.task_done()
        if self._queues.get(session_id) is queue:
            del self._queues[session_id]
        if self._workers.get(session_id) is asyncio.current_task():
            del self._workers[session_id]

    def pending(self, session_id: Optional[str] = None) -> int:
        if session_id is not None:
            q = self._queues.get(session_id)
            return q.qsize() if q else 0
        return sum(q.qsize() for q in self._queues.values())

    async def drain(self) -> None:
        """Wait until every queued trigger has been processed."""
        while True:
            running = [t for t in self._workers.values() if not t.done()]
            if not running:
                break
            await asyncio.gather(*running, return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        workers = list(self._workers.values())
        for t in workers:
            t.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
