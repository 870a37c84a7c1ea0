"""ABI fragments of the prediction market contract used by the resolver."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

MARKET_CLOSED_SIGNATURE = "MarketClosed(uint256)"
PROPOSE_FUNCTION = "proposeAIOutcome"

PREDICTION_MARKET_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "markets",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [
            {"name": "question", "type": "string"},
            {"name": "createdAt", "type": "uint256"},
            {"name": "endTime", "type": "uint256"},
            {"name": "status", "type": "uint8"},
            {"name": "finalOutcome", "type": "uint8"},
            {"name": "yesPool", "type": "uint256"},
            {"name": "noPool", "type": "uint256"},
            {"name": "creator", "type": "address"},
            {"name": "evidenceURI", "type": "string"},
            {"name": "proposedAt", "type": "uint256"},
            {"name": "proposedOutcome", "type": "uint8"},
            {"name": "aiSupportStake", "type": "uint256"},
            {"name": "opposeStake", "type": "uint256"},
            {"name": "aiSupportVotes", "type": "uint256"},
            {"name": "opposeVotes", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "nextMarketId",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": PROPOSE_FUNCTION,
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "marketId", "type": "uint256"},
            {"name": "isYes", "type": "bool"},
            {"name": "evidenceURI", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "MarketClosed",
        "anonymous": False,
        "inputs": [{"name": "marketId", "type": "uint256", "indexed": True}],
    },
]


def load_abi(path: str | None) -> list[dict[str, Any]]:
    """Return the ABI at ``path`` (a JSON list or a ``{"abi": [...]}`` artifact)."""

    if not path:
        return PREDICTION_MARKET_ABI
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("abi")
    if not isinstance(payload, list):
        raise ValueError(f"Contract ABI file {path} does not contain an ABI list")
    return payload


__all__ = ["MARKET_CLOSED_SIGNATURE", "PREDICTION_MARKET_ABI", "PROPOSE_FUNCTION", "load_abi"]
