from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)

# Colloquial names that resolve to a canonical base when the registry
# lists that base.
DEFAULT_ALIASES: dict[str, str] = {
    "bitcoin": "BTC",
    "xbt": "BTC",
    "ether": "ETH",
    "ethereum": "ETH",
    "solana": "SOL",
    "dogecoin": "DOGE",
    "ripple": "XRP",
    "cardano": "ADA",
    "binance coin": "BNB",
    "polygon": "POL",
    "avalanche": "AVAX",
    "chainlink": "LINK",
    "litecoin": "LTC",
}


@dataclass(frozen=True)
class AssetFeed:
    """One price feed entry from the registry file."""

    id: str
    base: str
    symbol: str
    quote: str = "USD"
    aliases: tuple[str, ...] = ()

    @property
    def normalized_id(self) -> str:
        return normalize_feed_id(self.id)

    @property
    def pair(self) -> str:
        return f"{self.base}/{self.quote}"


def normalize_feed_id(value: str) -> str:
    candidate = str(value).strip().lower()
    if candidate.startswith("0x"):
        candidate = candidate[2:]
    return candidate


def _parse_feed(raw: Any) -> AssetFeed | None:
    if not isinstance(raw, dict):
        return None
    feed_id = raw.get("id") or raw.get("feed_id")
    base = raw.get("base")
    if not feed_id or not base:
        return None
    aliases = raw.get("aliases") or []
    if not isinstance(aliases, list):
        aliases = []
    return AssetFeed(
        id=str(feed_id),
        base=str(base).strip().upper(),
        symbol=str(raw.get("symbol") or base),
        quote=str(raw.get("quote") or "USD").upper(),
        aliases=tuple(str(alias) for alias in aliases if alias),
    )


@dataclass
class AssetRegistry:
    """Known assets, their Pyth feeds and the alias table used for extraction."""

    feeds: list[AssetFeed]
    aliases: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        bases = self.bases
        table: dict[str, str] = {}
        for alias, base in DEFAULT_ALIASES.items():
            if base in bases:
                table[alias] = base
        for feed in self.feeds:
            table[feed.base.lower()] = feed.base
            for alias in feed.aliases:
                table[alias.strip().lower()] = feed.base
        for alias, base in self.aliases.items():
            canonical = base.strip().upper()
            if canonical in bases:
                table[alias.strip().lower()] = canonical
        self.aliases = table

    @classmethod
    def from_entries(cls, entries: Iterable[Any]) -> "AssetRegistry":
        feeds: list[AssetFeed] = []
        for raw in entries:
            feed = _parse_feed(raw)
            if feed is None:
                logger.debug("Skipping malformed registry entry: %s", raw)
                continue
            feeds.append(feed)
        return cls(feeds=feeds)

    @classmethod
    def load(cls, path: str | Path) -> "AssetRegistry":
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get("feeds") or []
        if not isinstance(payload, list):
            raise ValueError(f"Asset registry {path} must contain a list of feeds")
        registry = cls.from_entries(payload)
        logger.info(
            "Loaded asset registry from %s (%s feeds, %s bases)",
            path,
            len(registry.feeds),
            len(registry.bases),
        )
        return registry

    @property
    def bases(self) -> set[str]:
        return {feed.base for feed in self.feeds}

    def feeds_for(self, bases: Iterable[str]) -> list[AssetFeed]:
        wanted = {base.upper() for base in bases}
        return [feed for feed in self.feeds if feed.base in wanted]

    def feed_by_id(self, feed_id: str) -> AssetFeed | None:
        key = normalize_feed_id(feed_id)
        for feed in self.feeds:
            if feed.normalized_id == key:
                return feed
        return None


__all__ = ["AssetFeed", "AssetRegistry", "DEFAULT_ALIASES", "normalize_feed_id"]
