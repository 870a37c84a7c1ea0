from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timezone
from typing import Any, Protocol

import websockets

from ..core.models import BackfillReport, MarketRecord, MarketRef, MarketStatus
from .chain import MARKET_CLOSED_TOPIC, decode_market_closed

logger = logging.getLogger(__name__)

_SUBSCRIBE_REQUEST_ID = 1


class MarketSource(Protocol):
    address: str

    async def block_number(self) -> int: ...

    async def closed_market_logs(self, from_block: int, to_block: int) -> list[MarketRef]: ...

    async def read_market(self, market_id: int) -> MarketRecord: ...

    async def next_market_id(self) -> int: ...


def block_ranges(from_block: int, to_block: int, chunk_size: int) -> Iterator[tuple[int, int]]:
    """Yield inclusive, gap-free, non-overlapping windows covering the range."""

    size = max(chunk_size, 1)
    start = from_block
    while start <= to_block:
        end = min(start + size - 1, to_block)
        yield start, end
        start = end + 1


class BackfillPass:
    """One sequential scan of historical MarketClosed logs.

    Iterate it to receive market refs; ``report`` is filled in as chunks
    complete and holds failed ranges and the contiguous checkpoint.
    """

    def __init__(self, watcher: "ChainEventWatcher", from_block: int, to_block: int | None) -> None:
        self._watcher = watcher
        self._from_block = max(from_block, 0)
        self._to_block = to_block
        self.report: BackfillReport | None = None

    def __aiter__(self) -> AsyncIterator[MarketRef]:
        return self._run()

    async def _run(self) -> AsyncIterator[MarketRef]:
        head = await self._watcher._with_retries("chain head", self._watcher.chain.block_number)
        if head is None:
            raise RuntimeError("Unable to read chain head for backfill")
        to_block = head if self._to_block is None else min(self._to_block, head)

        report = BackfillReport(from_block=self._from_block, to_block=to_block)
        self.report = report
        if self._from_block > to_block:
            logger.info("Backfill range empty (from=%s, head=%s)", self._from_block, to_block)
            report.finished_at = datetime.now(timezone.utc)
            return

        logger.info("Backfilling MarketClosed events from block %s to %s", self._from_block, to_block)
        contiguous = True
        for start, end in block_ranges(self._from_block, to_block, self._watcher.chunk_size):
            report.chunks += 1
            refs = await self._watcher._with_retries(
                f"block range [{start}, {end}]",
                lambda s=start, e=end: self._watcher.chain.closed_market_logs(s, e),
            )
            if refs is None:
                report.failed_ranges.append((start, end))
                contiguous = False
                continue
            if contiguous:
                report.checkpoint = end
            for ref in refs:
                report.events += 1
                yield ref

        report.finished_at = datetime.now(timezone.utc)
        if report.failed_ranges:
            logger.error(
                "Backfill finished with %s failed ranges: %s",
                len(report.failed_ranges),
                report.failed_ranges,
            )
        logger.info(
            "Backfill finished (%s chunks, %s events, checkpoint=%s)",
            report.chunks,
            report.events,
            report.checkpoint,
        )


class ChainEventWatcher:
    """Discover MarketClosed events through backfill and a live subscription."""

    def __init__(
        self,
        chain: MarketSource,
        *,
        ws_url: str | None = None,
        chunk_size: int = 500,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        reconnect_delay: float = 5.0,
    ) -> None:
        self.chain = chain
        self.chunk_size = max(chunk_size, 1)
        self._ws_url = ws_url
        self._max_retries = max(max_retries, 0)
        self._retry_backoff = max(retry_backoff, 0.0)
        self._reconnect_delay = max(reconnect_delay, 0.1)
        self._last_block: int | None = None
        self._subscribed = False

    @property
    def last_block(self) -> int | None:
        return self._last_block

    def backfill(self, from_block: int, to_block: int | None = None) -> BackfillPass:
        return BackfillPass(self, from_block, to_block)

    async def _with_retries(self, label: str, call: Any) -> Any:
        attempt = 0
        backoff = self._retry_backoff
        while True:
            try:
                return await call()
            except Exception as exc:
                if attempt >= self._max_retries:
                    logger.error("Giving up on %s after %s attempts: %s", label, attempt + 1, exc)
                    return None
                attempt += 1
                logger.warning("Fetching %s failed (%s); retrying in %.1fs", label, exc, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 30)

    async def enumerate_awaiting(self) -> AsyncIterator[MarketRef]:
        """Walk every market id and yield those awaiting an outcome proposal."""

        total = await self.chain.next_market_id()
        logger.info("Enumerating %s markets for pending resolutions", total)
        for market_id in range(total):
            try:
                record = await self.chain.read_market(market_id)
            except Exception as exc:
                logger.warning("Failed to read market %s during enumeration: %s", market_id, exc)
                continue
            if record.status is MarketStatus.CLOSED:
                yield MarketRef(id=market_id, question=record.question)

    async def subscribe(self, stop_event: asyncio.Event) -> AsyncIterator[MarketRef]:
        """Yield live MarketClosed refs until ``stop_event`` is set, reconnecting on failure."""

        if not self._ws_url:
            raise RuntimeError("RPC_WS_URL is required for the live subscription")

        backoff = self._reconnect_delay
        while not stop_event.is_set():
            self._subscribed = False
            try:
                async for ref in self._consume_subscription(stop_event):
                    yield ref
            except Exception:
                logger.exception("MarketClosed subscription disconnected unexpectedly")
            if stop_event.is_set():
                break
            # An acknowledged subscription counts as a successful connect.
            if self._subscribed:
                backoff = self._reconnect_delay
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, 60)
        logger.info("MarketClosed subscription stopped")

    async def _consume_subscription(self, stop_event: asyncio.Event) -> AsyncIterator[MarketRef]:
        logger.info("Connecting to RPC websocket %s", self._ws_url)
        async with websockets.connect(
            self._ws_url,
            open_timeout=10,
            close_timeout=10,
            max_size=None,
        ) as ws:
            request = {
                "jsonrpc": "2.0",
                "id": _SUBSCRIBE_REQUEST_ID,
                "method": "eth_subscribe",
                "params": ["logs", {"address": self.chain.address, "topics": [MARKET_CLOSED_TOPIC]}],
            }
            await ws.send(json.dumps(request))
            subscription_id = await asyncio.wait_for(self._await_subscription(ws), timeout=10)
            logger.info("Subscribed to MarketClosed logs (subscription=%s)", subscription_id)
            self._subscribed = True

            if self._last_block is None:
                try:
                    self._last_block = await self.chain.block_number()
                except Exception as exc:
                    logger.warning("Could not read chain head after subscribing: %s", exc)
            else:
                gap = self.backfill(self._last_block)
                async for ref in gap:
                    yield ref
                if gap.report is not None and gap.report.checkpoint is not None:
                    self._last_block = max(self._last_block, gap.report.checkpoint)

            async for raw in ws:
                if stop_event.is_set():
                    break
                try:
                    message = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
                except json.JSONDecodeError:
                    logger.warning("Dropping malformed websocket payload: %r", raw)
                    continue
                ref = self._ref_from_notification(message, subscription_id)
                if ref is None:
                    continue
                if ref.block_number is not None:
                    self._last_block = max(self._last_block or 0, ref.block_number)
                yield ref

    async def _await_subscription(self, ws: Any) -> str:
        while True:
            raw = await ws.recv()
            message = json.loads(raw)
            if not isinstance(message, dict) or message.get("id") != _SUBSCRIBE_REQUEST_ID:
                continue
            if "error" in message:
                raise RuntimeError(f"eth_subscribe rejected: {message['error']}")
            return str(message.get("result"))

    def _ref_from_notification(self, message: Any, subscription_id: str) -> MarketRef | None:
        if not isinstance(message, dict) or message.get("method") != "eth_subscription":
            logger.debug("Ignoring websocket message: %s", message)
            return None
        params = message.get("params") or {}
        if params.get("subscription") != subscription_id:
            return None
        log = params.get("result")
        if not isinstance(log, dict):
            return None
        return decode_market_closed(log)


__all__ = ["BackfillPass", "ChainEventWatcher", "MarketSource", "block_ranges"]
