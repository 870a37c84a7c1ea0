from __future__ import annotations

import logging
from typing import AbstractSet, Mapping

from ..core.models import ExtractionResult
from .classifier import ReasoningClient
from .parsing import SYMBOLS_SCHEMA, SymbolsOutput, parse_output

logger = logging.getLogger(__name__)


EXTRACT_PROMPT = """\
You are an asset symbol extractor.

Question: "{question}"

Valid symbols you can choose from:
{symbols}

Known aliases:
{aliases}

Task:
- Identify which of the valid symbols the question refers to, directly or through a common name (for example "bitcoin" = BTC).
- Only use symbols from the valid list.

Return STRICT JSON ONLY:
{{"symbols": ["BTC", "SOL"]}}
"""


class EntityExtractor:
    """Map a question to known asset symbols, never beyond the supplied registry."""

    def __init__(self, client: ReasoningClient, aliases: Mapping[str, str] | None = None) -> None:
        self._client = client
        self._aliases = {key.lower(): value for key, value in (aliases or {}).items()}

    def canonical(self, name: str, known_symbols: AbstractSet[str]) -> str | None:
        candidate = str(name).strip()
        if not candidate:
            return None
        if candidate.upper() in known_symbols:
            return candidate.upper()
        alias = self._aliases.get(candidate.lower())
        if alias and alias in known_symbols:
            return alias
        return None

    async def extract(self, question: str, known_symbols: AbstractSet[str]) -> ExtractionResult:
        known = {symbol.upper() for symbol in known_symbols}
        if not known:
            return ExtractionResult()

        alias_lines = [
            f"{alias} = {base}"
            for alias, base in sorted(self._aliases.items())
            if base in known and alias != base.lower()
        ]
        prompt = EXTRACT_PROMPT.format(
            question=question,
            symbols=", ".join(sorted(known)),
            aliases="\n".join(alias_lines) or "(none)",
        )
        try:
            text = await self._client.complete(prompt, schema=SYMBOLS_SCHEMA, schema_name="extraction")
        except Exception:
            logger.exception("Entity extraction request failed; abstaining")
            return ExtractionResult()

        parsed = parse_output(text, SymbolsOutput)
        if parsed is None:
            return ExtractionResult()

        symbols: list[str] = []
        dropped: list[str] = []
        for name in parsed.symbols:
            canonical = self.canonical(name, known)
            if canonical is None:
                dropped.append(name)
                continue
            if canonical not in symbols:
                symbols.append(canonical)

        if dropped:
            logger.debug("Dropped identifiers outside the registry: %s", dropped)
        return ExtractionResult(symbols=tuple(symbols))


__all__ = ["EntityExtractor"]
