"""Strict parsing of structured reasoning output.

Every call site documents the JSON object it expects as a pydantic model.
Text that is not exactly that object (after removing one optional markdown
code fence) is a parse failure and yields ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Literal, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n(?P<body>.*)\n\s*```$", re.DOTALL)


class DomainOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    domain: Literal["financial", "event", "unclassifiable"]


class SymbolsOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbols: list[StrictStr]


class VerdictOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    answer: StrictBool
    confidence: float = Field(ge=0.0, le=1.0, strict=True)
    explanation: StrictStr


DOMAIN_SCHEMA = {
    "type": "object",
    "properties": {
        "domain": {"type": "string", "enum": ["financial", "event", "unclassifiable"]},
    },
    "required": ["domain"],
    "additionalProperties": False,
}

SYMBOLS_SCHEMA = {
    "type": "object",
    "properties": {
        "symbols": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["symbols"],
    "additionalProperties": False,
}

VERDICT_SCHEMA = {
    "type": "object",
    "properties": {
        "answer": {"type": "boolean"},
        "confidence": {"type": "number"},
        "explanation": {"type": "string"},
    },
    "required": ["answer", "confidence", "explanation"],
    "additionalProperties": False,
}


def _strip_fence(text: str) -> str:
    candidate = text.strip()
    match = _FENCE.match(candidate)
    if match:
        return match.group("body").strip()
    return candidate


def parse_output(text: str | None, model: Type[ModelT]) -> ModelT | None:
    """Parse ``text`` as the JSON object described by ``model``."""

    if not text or not text.strip():
        logger.warning("Empty reasoning output for %s", model.__name__)
        return None

    body = _strip_fence(text)
    try:
        raw = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Reasoning output is not JSON (%s): %r", model.__name__, text[:200])
        return None

    if not isinstance(raw, dict):
        logger.warning("Reasoning output is not a JSON object (%s): %r", model.__name__, text[:200])
        return None

    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            "Reasoning output failed %s validation: %s",
            model.__name__,
            exc.errors(include_url=False),
        )
        return None


__all__ = [
    "DOMAIN_SCHEMA",
    "DomainOutput",
    "SYMBOLS_SCHEMA",
    "SymbolsOutput",
    "VERDICT_SCHEMA",
    "VerdictOutput",
    "parse_output",
]
