from __future__ import annotations

import logging
from typing import Protocol

from ..core.models import ClassificationResult, Domain
from .parsing import DOMAIN_SCHEMA, DomainOutput, parse_output

logger = logging.getLogger(__name__)


class ReasoningClient(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        web_search: bool = False,
        schema: dict | None = None,
        schema_name: str = "result",
    ) -> str: ...


CLASSIFY_PROMPT = """\
You are a classifier for prediction market questions.

Question: "{question}"

Decide the domain:
- "financial" if the question is about asset prices or market data (tokens, BTC, ETH, price thresholds, ROI).
- "event" if the question is about a real-world event with a checkable result (matches, scores, standings, who won).
- "unclassifiable" if it is neither.

Return STRICT JSON ONLY:
{{"domain": "financial" | "event" | "unclassifiable"}}
"""


class QuestionClassifier:
    """Route a market question to a resolution domain with one reasoning call."""

    def __init__(self, client: ReasoningClient) -> None:
        self._client = client

    async def classify(self, question: str) -> ClassificationResult:
        try:
            text = await self._client.complete(
                CLASSIFY_PROMPT.format(question=question),
                schema=DOMAIN_SCHEMA,
                schema_name="classification",
            )
        except Exception:
            logger.exception("Classification request failed; treating question as unclassifiable")
            return ClassificationResult(domain=Domain.UNCLASSIFIABLE)

        parsed = parse_output(text, DomainOutput)
        if parsed is None:
            return ClassificationResult(domain=Domain.UNCLASSIFIABLE)
        return ClassificationResult(domain=Domain(parsed.domain))


__all__ = ["QuestionClassifier", "ReasoningClient"]
