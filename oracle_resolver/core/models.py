from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict, Field


class MarketStatus(str, Enum):
    """Lifecycle status of a market as stored by the contract."""

    OPEN = "open"
    CLOSED = "closed"
    RESOLVING = "resolving"
    PROPOSED = "proposed"
    RESOLVED = "resolved"

    @classmethod
    def from_code(cls, code: int) -> "MarketStatus":
        try:
            return _STATUS_CODES[int(code)]
        except (KeyError, TypeError, ValueError):
            raise ValueError(f"Unknown market status code: {code!r}") from None


_STATUS_CODES: dict[int, MarketStatus] = {
    0: MarketStatus.OPEN,
    1: MarketStatus.CLOSED,
    2: MarketStatus.PROPOSED,
    3: MarketStatus.RESOLVED,
    4: MarketStatus.RESOLVING,
}


class MarketRef(BaseModel):
    """Identity of a market handed from the event watcher to the workers."""

    model_config = ConfigDict(frozen=True)

    id: int
    question: str = ""
    block_number: int | None = None
    tx_hash: str | None = None


def _timestamp(value: Any) -> datetime | None:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class MarketRecord(BaseModel):
    """Read model of the contract's ``markets(id)`` getter."""

    id: int
    question: str
    status: MarketStatus
    created_at: datetime | None = None
    end_time: datetime | None = None
    final_outcome: int | None = None
    yes_pool: int = 0
    no_pool: int = 0
    creator: str | None = None
    evidence_uri: str = ""
    proposed_at: datetime | None = None
    proposed_outcome: int | None = None

    @classmethod
    def from_call(cls, market_id: int, values: Sequence[Any]) -> "MarketRecord":
        """Build a record from the positional tuple returned by the contract."""

        fields = list(values) + [None] * max(0, 11 - len(values))
        return cls(
            id=market_id,
            question=str(fields[0] or ""),
            created_at=_timestamp(fields[1]),
            end_time=_timestamp(fields[2]),
            status=MarketStatus.from_code(fields[3]),
            final_outcome=int(fields[4]) if fields[4] is not None else None,
            yes_pool=int(fields[5] or 0),
            no_pool=int(fields[6] or 0),
            creator=str(fields[7]) if fields[7] else None,
            evidence_uri=str(fields[8] or ""),
            proposed_at=_timestamp(fields[9]),
            proposed_outcome=int(fields[10]) if fields[10] is not None else None,
        )


class QuoteSource(str, Enum):
    PYTH = "pyth"
    DIA = "dia"


class PriceQuote(BaseModel):
    """Normalized quote from a single market-data provider."""

    model_config = ConfigDict(frozen=True)

    source: QuoteSource
    symbol: str
    price: float
    confidence: float | None = None
    observed_at: datetime | None = None
    pair: str | None = None
    exchange: str | None = None
    volume: float | None = None

    def describe(self) -> str:
        parts = [f"{self.source.value}: {self.pair or self.symbol} = {self.price}"]
        if self.confidence is not None:
            parts.append(f"conf ±{self.confidence}")
        if self.exchange:
            parts.append(f"exchange={self.exchange}")
        if self.observed_at is not None:
            parts.append(f"time={self.observed_at.isoformat()}")
        return ", ".join(parts)


class Domain(str, Enum):
    FINANCIAL = "financial"
    EVENT = "event"
    UNCLASSIFIABLE = "unclassifiable"


class ClassificationResult(BaseModel):
    domain: Domain


class ExtractionResult(BaseModel):
    """Ordered identifiers taken from the known asset registry."""

    symbols: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.symbols


class ResolutionDecision(BaseModel):
    """Verdict handed to the outcome submitter."""

    answer: bool
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: str
    domain: Domain | None = None
    abstained: bool = False


class SubmissionResult(BaseModel):
    """Outcome of one resolve-and-submit attempt."""

    market_id: int
    submitted: bool
    reason: str
    tx_hash: str | None = None
    block_number: int | None = None
    decision: ResolutionDecision | None = None

    def serialize(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class BackfillReport(BaseModel):
    """Summary of one backfill pass over a block range."""

    from_block: int
    to_block: int
    chunks: int = 0
    events: int = 0
    failed_ranges: list[tuple[int, int]] = Field(default_factory=list)
    checkpoint: int | None = None
    finished_at: datetime | None = None


__all__ = [
    "BackfillReport",
    "ClassificationResult",
    "Domain",
    "ExtractionResult",
    "MarketRecord",
    "MarketRef",
    "MarketStatus",
    "PriceQuote",
    "QuoteSource",
    "ResolutionDecision",
    "SubmissionResult",
]
