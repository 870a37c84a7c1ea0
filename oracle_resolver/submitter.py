from __future__ import annotations

import logging
from typing import Protocol

from .core.models import MarketRecord, MarketStatus, ResolutionDecision, SubmissionResult
from .ingress.chain import SubmissionError

logger = logging.getLogger(__name__)


class MarketContract(Protocol):
    async def read_market(self, market_id: int) -> MarketRecord: ...

    async def propose_outcome(self, market_id: int, answer: bool, evidence_uri: str) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, *, timeout: float) -> int: ...


class Resolver(Protocol):
    async def resolve(self, question: str) -> ResolutionDecision | None: ...


class ResolutionPublisher(Protocol):
    async def publish_resolution(self, result: SubmissionResult) -> None: ...


class OutcomeSubmitter:
    """Resolve a closed market and propose its outcome on-chain at most once."""

    def __init__(
        self,
        *,
        contract: MarketContract,
        engine: Resolver,
        receipt_timeout: float = 180.0,
        evidence_uri: str = "",
        dry_run: bool = False,
        publisher: ResolutionPublisher | None = None,
    ) -> None:
        self._contract = contract
        self._engine = engine
        self._receipt_timeout = receipt_timeout
        self._evidence_uri = evidence_uri
        self._dry_run = dry_run
        self._publisher = publisher
        self._in_flight: set[int] = set()

    @property
    def in_flight(self) -> set[int]:
        return set(self._in_flight)

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def resolve_and_submit(self, market_id: int) -> SubmissionResult:
        # Single-flight per market id; the check and add run without an await in between.
        if market_id in self._in_flight:
            logger.info("Market %s already being resolved; skipping duplicate trigger", market_id)
            return SubmissionResult(market_id=market_id, submitted=False, reason="in_flight")

        self._in_flight.add(market_id)
        try:
            result = await self._resolve_and_submit(market_id)
        finally:
            self._in_flight.discard(market_id)

        if self._publisher is not None and result.decision is not None:
            try:
                await self._publisher.publish_resolution(result)
            except Exception:
                logger.exception("Failed to publish resolution for market %s", market_id)
        return result

    async def _read_status(self, market_id: int) -> MarketRecord | None:
        try:
            return await self._contract.read_market(market_id)
        except Exception as exc:
            logger.warning("Failed to read market %s: %s", market_id, exc)
            return None

    async def _resolve_and_submit(self, market_id: int) -> SubmissionResult:
        record = await self._read_status(market_id)
        if record is None:
            return SubmissionResult(market_id=market_id, submitted=False, reason="status_unavailable")
        if record.status is not MarketStatus.CLOSED:
            logger.info(
                "Market %s is %s, not awaiting resolution; skipping",
                market_id,
                record.status.value,
            )
            return SubmissionResult(market_id=market_id, submitted=False, reason="not_awaiting_resolution")

        decision = await self._engine.resolve(record.question)
        if decision is None:
            logger.warning("Market %s verdict unavailable or malformed; not submitting", market_id)
            return SubmissionResult(market_id=market_id, submitted=False, reason="unparseable_verdict")
        if decision.abstained:
            logger.info("Market %s abstained (%s); not submitting", market_id, decision.explanation)
            return SubmissionResult(
                market_id=market_id,
                submitted=False,
                reason="abstained",
                decision=decision,
            )

        if self._dry_run:
            logger.info(
                "Dry run: market %s would be proposed as %s (confidence=%.2f)",
                market_id,
                decision.answer,
                decision.confidence,
            )
            return SubmissionResult(market_id=market_id, submitted=False, reason="dry_run", decision=decision)

        # Re-check right before writing to narrow the race with external proposers.
        latest = await self._read_status(market_id)
        if latest is None:
            return SubmissionResult(
                market_id=market_id,
                submitted=False,
                reason="status_unavailable",
                decision=decision,
            )
        if latest.status is not MarketStatus.CLOSED:
            logger.info(
                "Market %s moved to %s during resolution; skipping submission",
                market_id,
                latest.status.value,
            )
            return SubmissionResult(
                market_id=market_id,
                submitted=False,
                reason="not_awaiting_resolution",
                decision=decision,
            )

        # Only {market_id} is substituted; other braces pass through untouched.
        evidence_uri = self._evidence_uri.replace("{market_id}", str(market_id))
        tx_hash: str | None = None
        try:
            tx_hash = await self._contract.propose_outcome(market_id, decision.answer, evidence_uri)
            logger.info("Proposal for market %s sent (tx=%s)", market_id, tx_hash)
            block_number = await self._contract.wait_for_receipt(tx_hash, timeout=self._receipt_timeout)
        except SubmissionError as exc:
            logger.error("Proposal for market %s failed: %s", market_id, exc)
            return SubmissionResult(
                market_id=market_id,
                submitted=False,
                reason="submission_failed",
                tx_hash=tx_hash,
                decision=decision,
            )

        logger.info(
            "Proposal for market %s confirmed in block %s (answer=%s, confidence=%.2f)",
            market_id,
            block_number,
            decision.answer,
            decision.confidence,
        )
        return SubmissionResult(
            market_id=market_id,
            submitted=True,
            reason="submitted",
            tx_hash=tx_hash,
            block_number=block_number,
            decision=decision,
        )


__all__ = ["MarketContract", "OutcomeSubmitter", "ResolutionPublisher", "Resolver"]
