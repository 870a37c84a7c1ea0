from __future__ import annotations

import logging
from typing import Sequence

from ..core.models import Domain, PriceQuote, ResolutionDecision
from ..ingress.pricing import quote_spreads
from .classifier import ReasoningClient
from .parsing import VERDICT_SCHEMA, VerdictOutput, parse_output

logger = logging.getLogger(__name__)


FINANCIAL_PROMPT = """\
You are a price reasoning agent resolving a prediction market.

Latest quotes from independent providers:
{quotes}

Spread between providers per symbol:
{spreads}

Question: {question}

Validate the answer across all providers. If the providers disagree, or a
symbol is only quoted by one provider, lower your confidence accordingly.

Return STRICT JSON ONLY:
{{
  "answer": true or false,
  "confidence": 0.0-1.0,
  "explanation": "short reasoning comparing the providers"
}}
"""

EVENT_PROMPT = """\
You are a real-world event result oracle resolving a prediction market.

Question: "{question}"

Use web search to find the official result (final score, standings, official
announcement). Base the verdict on one specific result you found and name it
in the explanation. Answer true only if that result makes the question's
statement true.

Return STRICT JSON ONLY:
{{
  "answer": true or false,
  "confidence": 0.0-1.0,
  "explanation": "short reasoning based on the searched result"
}}
"""


def _to_decision(parsed: VerdictOutput, domain: Domain) -> ResolutionDecision:
    return ResolutionDecision(
        answer=parsed.answer,
        confidence=parsed.confidence,
        explanation=parsed.explanation.strip(),
        domain=domain,
    )


class EvidenceReasoner:
    """Turn a question plus typed evidence into a structured verdict.

    Both variants return ``None`` when the verdict cannot be obtained or
    parsed; callers treat that as an abstention, never as ``False``.
    """

    def __init__(self, client: ReasoningClient) -> None:
        self._client = client

    async def reason_financial(
        self,
        question: str,
        quotes: Sequence[PriceQuote],
    ) -> ResolutionDecision | None:
        if not quotes:
            logger.info("No price evidence available; abstaining from financial verdict")
            return None

        spreads = quote_spreads(quotes)
        spread_lines = [f"{symbol}: {spread:.4%}" for symbol, spread in sorted(spreads.items())]
        prompt = FINANCIAL_PROMPT.format(
            quotes="\n".join(quote.describe() for quote in quotes),
            spreads="\n".join(spread_lines) or "(single provider only)",
            question=question,
        )
        try:
            text = await self._client.complete(prompt, schema=VERDICT_SCHEMA, schema_name="verdict")
        except Exception:
            logger.exception("Financial reasoning request failed")
            return None

        parsed = parse_output(text, VerdictOutput)
        if parsed is None:
            return None
        return _to_decision(parsed, Domain.FINANCIAL)

    async def reason_event(self, question: str) -> ResolutionDecision | None:
        # web_search responses are prompted for JSON rather than schema-constrained
        try:
            text = await self._client.complete(EVENT_PROMPT.format(question=question), web_search=True)
        except Exception:
            logger.exception("Event reasoning request failed")
            return None

        parsed = parse_output(text, VerdictOutput)
        if parsed is None:
            return None
        return _to_decision(parsed, Domain.EVENT)


__all__ = ["EvidenceReasoner"]
