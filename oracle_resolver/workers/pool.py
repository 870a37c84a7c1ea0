from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from typing import Protocol

from ..core.models import MarketRef, SubmissionResult

logger = logging.getLogger(__name__)


class Submitter(Protocol):
    async def resolve_and_submit(self, market_id: int) -> SubmissionResult: ...


class ResolutionWorkerPool:
    """Bounded queue of market refs drained by concurrent resolution workers."""

    def __init__(
        self,
        *,
        submitter: Submitter,
        workers: int = 4,
        maxsize: int = 100,
        idle_poll: float = 0.5,
        history: int = 50,
    ) -> None:
        self._submitter = submitter
        self._workers = max(workers, 1)
        self._queue: asyncio.Queue[MarketRef] = asyncio.Queue(maxsize=max(maxsize, 1))
        self._idle_poll = max(idle_poll, 0.01)
        self._tasks: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()
        self._active = 0
        self.outcomes: Counter[str] = Counter()
        self.recent: deque[SubmissionResult] = deque(maxlen=max(history, 1))

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def workers(self) -> int:
        return self._workers

    @property
    def active(self) -> int:
        return self._active

    def qsize(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"resolution-worker-{index}")
            for index in range(self._workers)
        ]
        logger.info("Started %s resolution workers", self._workers)

    async def submit(self, ref: MarketRef) -> None:
        """Enqueue a market ref, waiting while the queue is full."""

        try:
            self._queue.put_nowait(ref)
        except asyncio.QueueFull:
            logger.warning("Resolution queue full; awaiting enqueue of market %s", ref.id)
            await self._queue.put(ref)

    async def stop(self) -> None:
        """Stop taking work; items already being processed run to completion."""

        if not self._tasks:
            return
        self._stop_event.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.info("Dropped %s queued markets on shutdown; a later backfill re-delivers them", dropped)
        logger.info("Resolution workers stopped")

    async def _run(self, index: int) -> None:
        while not self._stop_event.is_set():
            try:
                ref = await asyncio.wait_for(self._queue.get(), timeout=self._idle_poll)
            except asyncio.TimeoutError:
                continue

            self._active += 1
            try:
                result = await self._submitter.resolve_and_submit(ref.id)
            except Exception:
                logger.exception("Worker %s failed to resolve market %s", index, ref.id)
                self.outcomes["error"] += 1
            else:
                self.outcomes[result.reason] += 1
                self.recent.append(result)
            finally:
                self._active -= 1
                self._queue.task_done()


__all__ = ["ResolutionWorkerPool", "Submitter"]
