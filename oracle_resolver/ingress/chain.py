from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Mapping, TypeVar

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from ..core.models import MarketRecord, MarketRef
from .contract_abi import MARKET_CLOSED_SIGNATURE, PREDICTION_MARKET_ABI, PROPOSE_FUNCTION

logger = logging.getLogger(__name__)

T = TypeVar("T")

MARKET_CLOSED_TOPIC = Web3.to_hex(Web3.keccak(text=MARKET_CLOSED_SIGNATURE))


class SubmissionError(RuntimeError):
    """Raised when a proposal transaction fails to send or confirm."""


def _word_to_int(value: Any) -> int:
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(bytes(value)[:32], "big")
    if isinstance(value, int):
        return value
    text = str(value)
    if text.startswith("0x"):
        return int(text[2:66] or "0", 16)
    return int(text)


def _to_hex_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value))
    return str(value)


def decode_market_closed(log: Mapping[str, Any]) -> MarketRef | None:
    """Decode a ``MarketClosed`` log from web3 or raw JSON-RPC form."""

    if log.get("removed"):
        return None

    topics = list(log.get("topics") or [])
    try:
        if len(topics) > 1:
            market_id = _word_to_int(topics[1])
        else:
            data = log.get("data")
            if not data or data in ("0x", b""):
                return None
            market_id = _word_to_int(data)
        block_raw = log.get("blockNumber")
        block_number = _word_to_int(block_raw) if block_raw is not None else None
    except (TypeError, ValueError):
        logger.warning("Dropping undecodable MarketClosed log: %s", log)
        return None

    return MarketRef(
        id=market_id,
        block_number=block_number,
        tx_hash=_to_hex_str(log.get("transactionHash")),
    )


class ChainClient:
    """Async access to the prediction market contract over JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        *,
        private_key: str | None = None,
        chain_id: int | None = None,
        timeout: float = 10.0,
        abi: list[dict[str, Any]] | None = None,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        if not contract_address:
            raise RuntimeError("CONTRACT_ADDRESS is required to watch and resolve markets")
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._address = Web3.to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(address=self._address, abi=abi or PREDICTION_MARKET_ABI)
        self._account = Account.from_key(private_key) if private_key else None
        self._chain_id = chain_id
        self._timeout = timeout
        self._nonce_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._address

    @property
    def can_submit(self) -> bool:
        return self._account is not None

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def block_number(self) -> int:
        return int(await self._call(self._w3.eth.block_number))

    async def closed_market_logs(self, from_block: int, to_block: int) -> list[MarketRef]:
        logs = await self._call(
            self._w3.eth.get_logs(
                {
                    "address": self._address,
                    "topics": [MARKET_CLOSED_TOPIC],
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
        )
        refs: list[MarketRef] = []
        for log in logs:
            ref = decode_market_closed(log)
            if ref is not None:
                refs.append(ref)
        return refs

    async def read_market(self, market_id: int) -> MarketRecord:
        values = await self._call(self._contract.functions.markets(market_id).call())
        return MarketRecord.from_call(market_id, values)

    async def next_market_id(self) -> int:
        return int(await self._call(self._contract.functions.nextMarketId().call()))

    async def propose_outcome(self, market_id: int, answer: bool, evidence_uri: str) -> str:
        """Sign and send the proposal; return the transaction hash."""

        if self._account is None:
            raise SubmissionError("ORACLE_PRIVATE_KEY is not configured")

        sender = self._account.address
        function = getattr(self._contract.functions, PROPOSE_FUNCTION)(market_id, answer, evidence_uri)
        try:
            async with self._nonce_lock:
                chain_id = self._chain_id or await self._call(self._w3.eth.chain_id)
                nonce = await self._call(self._w3.eth.get_transaction_count(sender, "pending"))
                tx = await self._call(
                    function.build_transaction({"from": sender, "nonce": nonce, "chainId": chain_id})
                )
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._call(self._w3.eth.send_raw_transaction(signed.raw_transaction))
        except Exception as exc:
            raise SubmissionError(f"Failed to send proposal for market {market_id}: {exc}") from exc
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, *, timeout: float) -> int:
        """Wait for confirmation and return the block number."""

        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except Exception as exc:
            raise SubmissionError(f"No receipt for {tx_hash}: {exc}") from exc
        if receipt.get("status") != 1:
            raise SubmissionError(f"Transaction {tx_hash} reverted in block {receipt.get('blockNumber')}")
        return int(receipt["blockNumber"])


__all__ = ["ChainClient", "MARKET_CLOSED_TOPIC", "SubmissionError", "decode_market_closed"]
