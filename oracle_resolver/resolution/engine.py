from __future__ import annotations

import logging
from typing import AbstractSet, Iterable, Protocol

from ..core.models import Domain, PriceQuote, ResolutionDecision
from .classifier import QuestionClassifier
from .extractor import EntityExtractor
from .reasoner import EvidenceReasoner

logger = logging.getLogger(__name__)

NO_ENTITIES_CONFIDENCE = 0.3
UNCLASSIFIED_CONFIDENCE = 0.2


class QuoteProvider(Protocol):
    async def fetch_quotes(self, symbols: Iterable[str]) -> list[PriceQuote]: ...


class DecisionEngine:
    """Route a question to the financial or event-based resolution path."""

    def __init__(
        self,
        *,
        classifier: QuestionClassifier,
        extractor: EntityExtractor,
        reasoner: EvidenceReasoner,
        prices: QuoteProvider,
        known_symbols: AbstractSet[str],
    ) -> None:
        self._classifier = classifier
        self._extractor = extractor
        self._reasoner = reasoner
        self._prices = prices
        self._known_symbols = frozenset(symbol.upper() for symbol in known_symbols)

    async def resolve(self, question: str) -> ResolutionDecision | None:
        classification = await self._classifier.classify(question)
        domain = classification.domain
        logger.info("Question classified as %s: %r", domain.value, question)

        if domain is Domain.FINANCIAL:
            return await self._resolve_financial(question)
        if domain is Domain.EVENT:
            return await self._reasoner.reason_event(question)
        return ResolutionDecision(
            answer=False,
            confidence=UNCLASSIFIED_CONFIDENCE,
            explanation="could not classify",
            domain=Domain.UNCLASSIFIABLE,
            abstained=True,
        )

    async def _resolve_financial(self, question: str) -> ResolutionDecision | None:
        extraction = await self._extractor.extract(question, self._known_symbols)
        if extraction.is_empty:
            logger.info("No known assets in question; abstaining from financial resolution")
            return ResolutionDecision(
                answer=False,
                confidence=NO_ENTITIES_CONFIDENCE,
                explanation="no matching entities",
                domain=Domain.FINANCIAL,
                abstained=True,
            )

        quotes = await self._prices.fetch_quotes(extraction.symbols)
        logger.info(
            "Collected %s quotes for %s",
            len(quotes),
            ", ".join(extraction.symbols),
        )
        return await self._reasoner.reason_financial(question, quotes)


__all__ = ["DecisionEngine", "NO_ENTITIES_CONFIDENCE", "UNCLASSIFIED_CONFIDENCE"]
