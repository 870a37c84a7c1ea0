from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any

from .core.models import BackfillReport, MarketRef, ResolutionDecision
from .ingress.watcher import ChainEventWatcher
from .resolution.engine import DecisionEngine
from .store.redis_store import RedisStore
from .submitter import OutcomeSubmitter
from .workers.pool import ResolutionWorkerPool

logger = logging.getLogger(__name__)


class OracleService:
    """Feed MarketClosed events from backfill and subscription into the worker pool."""

    def __init__(
        self,
        *,
        watcher: ChainEventWatcher,
        pool: ResolutionWorkerPool,
        store: RedisStore,
        engine: DecisionEngine,
        submitter: OutcomeSubmitter,
        start_block: int,
        backfill_interval: int,
        lookback_blocks: int,
        enable_subscription: bool = True,
        dry_run: bool = False,
    ) -> None:
        self._watcher = watcher
        self._pool = pool
        self._store = store
        self._engine = engine
        self._submitter = submitter
        self._start_block = max(start_block, 0)
        self._backfill_interval = max(backfill_interval, 0)
        self._lookback_blocks = max(lookback_blocks, 0)
        self._enable_subscription = enable_subscription
        self._dry_run = dry_run
        self._tasks: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()
        self.last_backfill: BackfillReport | None = None

    async def start(self) -> None:
        if any(not task.done() for task in self._tasks):
            return
        self._stop_event = asyncio.Event()
        await self._pool.start()
        self._tasks = [asyncio.create_task(self._backfill_loop(), name="market-closed-backfill")]
        if self._enable_subscription:
            self._tasks.append(
                asyncio.create_task(self._subscription_loop(), name="market-closed-subscription")
            )

    async def stop(self) -> None:
        """Stop intake first, then let workers finish in-flight resolutions."""

        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        await self._pool.stop()

    async def _from_block(self) -> int:
        try:
            checkpoint = await self._store.get_checkpoint()
        except Exception:
            logger.exception("Failed to read backfill checkpoint; starting from START_BLOCK")
            checkpoint = None
        if checkpoint is None:
            return self._start_block
        return max(self._start_block, checkpoint - self._lookback_blocks)

    async def run_backfill_once(self) -> BackfillReport | None:
        from_block = await self._from_block()
        backfill = self._watcher.backfill(from_block)
        async for ref in backfill:
            await self._pool.submit(ref)

        report = backfill.report
        self.last_backfill = report
        if report is not None and report.checkpoint is not None:
            try:
                await self._store.set_checkpoint(report.checkpoint)
            except Exception:
                logger.exception("Failed to persist backfill checkpoint %s", report.checkpoint)
        return report

    async def _backfill_loop(self) -> None:
        logger.info(
            "Starting backfill loop (start_block=%s, interval=%ss, lookback=%s)",
            self._start_block,
            self._backfill_interval,
            self._lookback_blocks,
        )
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_backfill_once()
                except Exception:
                    logger.exception("Backfill pass failed")
                if self._backfill_interval <= 0:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._backfill_interval)
                except asyncio.TimeoutError:
                    continue
        finally:
            logger.info("Backfill loop stopped")

    async def _subscription_loop(self) -> None:
        try:
            async for ref in self._watcher.subscribe(self._stop_event):
                logger.info("MarketClosed received for market %s (block=%s)", ref.id, ref.block_number)
                await self._pool.submit(ref)
        except Exception:
            logger.exception("MarketClosed subscription loop terminated")

    async def enqueue(self, market_id: int) -> None:
        await self._pool.submit(MarketRef(id=market_id))

    async def preview(self, market_id: int) -> tuple[Any, ResolutionDecision | None]:
        """Read a market and compute its decision without submitting anything."""

        record = await self._watcher.chain.read_market(market_id)
        decision = await self._engine.resolve(record.question)
        return record, decision

    def status(self) -> dict[str, Any]:
        return {
            "running": any(not task.done() for task in self._tasks),
            "dry_run": self._dry_run,
            "queue_depth": self._pool.qsize(),
            "workers": self._pool.workers,
            "active": self._pool.active,
            "in_flight": sorted(self._submitter.in_flight),
            "outcomes": dict(self._pool.outcomes),
            "last_block": self._watcher.last_block,
            "last_backfill": self.last_backfill.model_dump(mode="json") if self.last_backfill else None,
            "recent": [result.serialize() for result in self._pool.recent],
        }


__all__ = ["OracleService"]
