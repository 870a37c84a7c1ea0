import asyncio
import json

import pytest

from oracle_resolver.core.models import (
    MarketRecord,
    MarketRef,
    MarketStatus,
    PriceQuote,
    QuoteSource,
    ResolutionDecision,
)
from oracle_resolver.ingress.chain import SubmissionError


class FakeReasoningClient:
    """Replies keyed by schema name, or "web_search" for search-enabled calls."""

    def __init__(self, replies):
        self.replies = dict(replies)
        self.calls = []

    async def complete(self, prompt, *, web_search=False, schema=None, schema_name="result"):
        key = "web_search" if web_search else schema_name
        self.calls.append({"key": key, "prompt": prompt, "schema": schema})
        reply = self.replies.get(key)
        if isinstance(reply, BaseException):
            raise reply
        if reply is None:
            raise AssertionError(f"unexpected reasoning call {key}")
        return reply if isinstance(reply, str) else json.dumps(reply)


class FakeQuoteProvider:
    def __init__(self, quotes=()):
        self.quotes = list(quotes)
        self.calls = []

    async def fetch_quotes(self, symbols):
        symbols = list(symbols)
        self.calls.append(symbols)
        return [quote for quote in self.quotes if quote.symbol in symbols]


class FakeChain:
    address = "0x00000000000000000000000000000000000000aa"

    def __init__(self, records=None):
        self.records = dict(records or {})
        self.proposals = []
        self.pending = {}
        self.fail_send = False
        self.fail_receipt = False

    async def read_market(self, market_id):
        await asyncio.sleep(0)
        if market_id not in self.records:
            raise KeyError(market_id)
        return self.records[market_id].model_copy()

    async def propose_outcome(self, market_id, answer, evidence_uri):
        await asyncio.sleep(0)
        if self.fail_send:
            raise SubmissionError("execution reverted")
        self.proposals.append((market_id, answer, evidence_uri))
        tx_hash = f"0x{len(self.proposals):064x}"
        self.pending[tx_hash] = market_id
        return tx_hash

    async def wait_for_receipt(self, tx_hash, *, timeout):
        await asyncio.sleep(0)
        if self.fail_receipt:
            raise SubmissionError(f"No receipt for {tx_hash}")
        market_id = self.pending.pop(tx_hash)
        self.set_status(market_id, MarketStatus.PROPOSED)
        return 4242

    def set_status(self, market_id, status):
        self.records[market_id] = self.records[market_id].model_copy(update={"status": status})


class FakeEngine:
    def __init__(self, decision):
        self.decision = decision
        self.questions = []

    async def resolve(self, question):
        self.questions.append(question)
        await asyncio.sleep(0)
        return self.decision


class FakeLogSource:
    address = "0x00000000000000000000000000000000000000aa"

    def __init__(self, head, events=None, failures=None):
        self.head = head
        self.events = dict(events or {})
        self.failures = dict(failures or {})
        self.calls = []
        self.head_reads = 0

    async def block_number(self):
        self.head_reads += 1
        return self.head

    async def closed_market_logs(self, from_block, to_block):
        self.calls.append((from_block, to_block))
        remaining = self.failures.get((from_block, to_block), 0)
        if remaining:
            self.failures[(from_block, to_block)] = remaining - 1
            raise ConnectionError("rpc unavailable")
        refs = []
        for block in sorted(self.events):
            if from_block <= block <= to_block:
                refs.extend(MarketRef(id=market_id, block_number=block) for market_id in self.events[block])
        return refs


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.published = []

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value):
        self.store[key] = value
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


def make_record(market_id=1, status=MarketStatus.CLOSED, question="Will BTC exceed $120k on 2025-09-25?"):
    return MarketRecord(id=market_id, question=question, status=status)


def make_quote(source, symbol, price):
    return PriceQuote(source=QuoteSource(source), symbol=symbol, price=price)


def make_decision(answer=True, confidence=0.9, abstained=False):
    return ResolutionDecision(answer=answer, confidence=confidence, explanation="test", abstained=abstained)


@pytest.fixture()
def fake_llm():
    return FakeReasoningClient


@pytest.fixture()
def fake_quotes():
    return FakeQuoteProvider


@pytest.fixture()
def fake_chain():
    return FakeChain


@pytest.fixture()
def fake_engine():
    return FakeEngine


@pytest.fixture()
def fake_log_source():
    return FakeLogSource


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def record_factory():
    return make_record


@pytest.fixture()
def quote_factory():
    return make_quote


@pytest.fixture()
def decision_factory():
    return make_decision
