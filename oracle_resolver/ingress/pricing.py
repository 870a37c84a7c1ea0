from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Iterable

import httpx

from ..core.models import PriceQuote, QuoteSource
from ..core.registry import AssetFeed, AssetRegistry, normalize_feed_id

logger = logging.getLogger(__name__)


def _chunked(items: Sequence[str], size: int) -> list[list[str]]:
    if size <= 0:
        size = 1
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _to_float(value: Any) -> float | None:
    try:
        if value in (None, ""):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)

    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate.replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            return None

    return None


class PythClient:
    """Provider A: batched latest-price lookups against Pyth Hermes."""

    def __init__(
        self,
        base_url: str,
        *,
        registry: AssetRegistry,
        batch_size: int = 50,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._registry = registry
        self._batch_size = max(batch_size, 1)
        self._max_retries = max(max_retries, 0)
        self._retry_backoff = max(retry_backoff, 0.0)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def fetch_quotes(self, symbols: Iterable[str]) -> list[PriceQuote]:
        feeds = self._registry.feeds_for(symbols)
        if not feeds:
            return []

        feed_ids = [feed.id for feed in feeds]
        quotes: list[PriceQuote] = []
        for chunk in _chunked(feed_ids, self._batch_size):
            try:
                parsed = await self._fetch_batch(chunk)
            except Exception:
                logger.exception("Pyth batch failed after retries (%s feeds)", len(chunk))
                continue
            for item in parsed:
                quote = self._to_quote(item)
                if quote is not None:
                    quotes.append(quote)
        return quotes

    async def _fetch_batch(self, feed_ids: list[str]) -> list[dict[str, Any]]:
        params = [("ids[]", feed_id) for feed_id in feed_ids]
        params.append(("parsed", "true"))
        url = f"{self._base_url}/v2/updates/price/latest"

        attempt = 0
        backoff = self._retry_backoff
        while True:
            try:
                response = await self._client.get(url, params=params)
                response.raise_for_status()
                payload = response.json()
                break
            except (httpx.HTTPError, ValueError) as exc:
                if attempt >= self._max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "Pyth request failed (%s); retrying in %.1fs",
                    exc.__class__.__name__,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 10)

        if isinstance(payload, dict) and isinstance(payload.get("parsed"), list):
            return [item for item in payload["parsed"] if isinstance(item, dict)]
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        return []

    def _to_quote(self, item: dict[str, Any]) -> PriceQuote | None:
        feed_id = item.get("id")
        price_block = item.get("price")
        if not feed_id or not isinstance(price_block, dict):
            return None

        raw_price = _to_float(price_block.get("price"))
        expo = price_block.get("expo")
        if raw_price is None or expo is None:
            logger.debug("Pyth feed %s missing price or exponent", feed_id)
            return None
        try:
            scale = 10 ** int(expo)
        except (TypeError, ValueError):
            return None

        raw_conf = _to_float(price_block.get("conf"))
        feed: AssetFeed | None = self._registry.feed_by_id(str(feed_id))
        return PriceQuote(
            source=QuoteSource.PYTH,
            symbol=feed.base if feed else normalize_feed_id(str(feed_id)),
            price=raw_price * scale,
            confidence=raw_conf * scale if raw_conf is not None else None,
            observed_at=_parse_datetime(price_block.get("publish_time")),
            pair=feed.pair if feed else None,
        )

    async def close(self) -> None:
        await self._client.aclose()


class DiaClient:
    """Provider B: per-symbol quotations from DIA."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def fetch_quote(self, symbol: str) -> PriceQuote | None:
        response = await self._client.get(f"{self._base_url}/quotation/{symbol}")
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            return None

        price = _to_float(payload.get("Price"))
        if price is None:
            return None
        volume = _to_float(payload.get("Volume"))
        if volume is None:
            volume = _to_float(payload.get("VolumeYesterdayUSD"))
        return PriceQuote(
            source=QuoteSource.DIA,
            symbol=symbol,
            price=price,
            observed_at=_parse_datetime(payload.get("Time")),
            pair=f"{symbol}/USD",
            exchange=payload.get("Exchange") or payload.get("Source"),
            volume=volume,
        )

    async def fetch_quotes(self, symbols: Iterable[str]) -> list[PriceQuote]:
        quotes: list[PriceQuote] = []
        for symbol in symbols:
            try:
                quote = await self.fetch_quote(symbol)
            except Exception as exc:
                logger.warning("Failed to fetch DIA quote for %s: %s", symbol, exc)
                continue
            if quote is not None:
                quotes.append(quote)
        return quotes

    async def close(self) -> None:
        await self._client.aclose()


class PriceOracleClient:
    """Collect quotes for a symbol set from both independent providers."""

    def __init__(self, pyth: PythClient, dia: DiaClient) -> None:
        self._pyth = pyth
        self._dia = dia

    async def fetch_quotes(self, symbols: Iterable[str]) -> list[PriceQuote]:
        wanted = list(dict.fromkeys(symbol.upper() for symbol in symbols))
        if not wanted:
            return []

        results = await asyncio.gather(
            self._pyth.fetch_quotes(wanted),
            self._dia.fetch_quotes(wanted),
            return_exceptions=True,
        )
        quotes: list[PriceQuote] = []
        for provider, result in zip((QuoteSource.PYTH, QuoteSource.DIA), results):
            if isinstance(result, BaseException):
                logger.error("Price provider %s failed: %r", provider.value, result)
                continue
            quotes.extend(result)

        covered = {quote.symbol for quote in quotes}
        missing = [symbol for symbol in wanted if symbol not in covered]
        if missing:
            logger.info("No quotes from any provider for %s; excluding from evidence", missing)
        return [quote for quote in quotes if quote.symbol in wanted]

    async def close(self) -> None:
        await self._pyth.close()
        await self._dia.close()


def quote_spreads(quotes: Iterable[PriceQuote]) -> dict[str, float]:
    """Relative spread between providers per symbol quoted by more than one source."""

    by_symbol: dict[str, dict[QuoteSource, list[float]]] = defaultdict(lambda: defaultdict(list))
    for quote in quotes:
        by_symbol[quote.symbol][quote.source].append(quote.price)

    spreads: dict[str, float] = {}
    for symbol, sources in by_symbol.items():
        if len(sources) < 2:
            continue
        prices = [price for values in sources.values() for price in values]
        low, high = min(prices), max(prices)
        mid = (low + high) / 2
        if mid <= 0:
            continue
        spreads[symbol] = (high - low) / mid
    return spreads


__all__ = ["DiaClient", "PriceOracleClient", "PythClient", "quote_spreads"]
