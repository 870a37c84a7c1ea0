import asyncio
import json

import pytest

from oracle_resolver.ingress import watcher as watcher_module
from oracle_resolver.ingress.chain import MARKET_CLOSED_TOPIC
from oracle_resolver.ingress.watcher import ChainEventWatcher, block_ranges


async def _collect(iterable):
    return [ref async for ref in iterable]


def test_block_ranges_cover_range_without_gaps():
    assert list(block_ranges(100, 1200, 500)) == [(100, 599), (600, 1099), (1100, 1200)]
    assert list(block_ranges(5, 5, 500)) == [(5, 5)]
    assert list(block_ranges(10, 9, 500)) == []


def test_backfill_yields_events_in_block_order(fake_log_source):
    source = fake_log_source(head=1200, events={150: [1], 700: [2, 3], 1150: [4]})
    watcher = ChainEventWatcher(source, chunk_size=500, retry_backoff=0)

    backfill = watcher.backfill(100)
    refs = asyncio.run(_collect(backfill))

    assert [ref.id for ref in refs] == [1, 2, 3, 4]
    assert source.calls == [(100, 599), (600, 1099), (1100, 1200)]
    assert backfill.report.events == 4
    assert backfill.report.checkpoint == 1200
    assert backfill.report.failed_ranges == []


def test_backfill_reads_head_once(fake_log_source):
    source = fake_log_source(head=1200, events={1300: [9]})
    watcher = ChainEventWatcher(source, chunk_size=500, retry_backoff=0)

    async def _run():
        backfill = watcher.backfill(100)
        refs = []
        async for ref in backfill:
            refs.append(ref)
        return backfill, refs

    original = source.closed_market_logs

    async def moving_head(from_block, to_block):
        source.head += 500
        return await original(from_block, to_block)

    source.closed_market_logs = moving_head
    backfill, refs = asyncio.run(_run())

    assert source.head_reads == 1
    assert source.calls[-1] == (1100, 1200)
    assert refs == []
    assert backfill.report.to_block == 1200


def test_backfill_retries_chunk_then_continues(fake_log_source):
    source = fake_log_source(
        head=1200,
        events={150: [1], 700: [2], 1150: [3]},
        failures={(600, 1099): 10},
    )
    watcher = ChainEventWatcher(source, chunk_size=500, max_retries=2, retry_backoff=0)

    backfill = watcher.backfill(100)
    refs = asyncio.run(_collect(backfill))

    assert [ref.id for ref in refs] == [1, 3]
    assert source.calls.count((600, 1099)) == 3
    assert backfill.report.failed_ranges == [(600, 1099)]
    # Checkpoint stops before the first failed range.
    assert backfill.report.checkpoint == 599


def test_backfill_recovers_from_transient_failure(fake_log_source):
    source = fake_log_source(head=599, events={300: [5]}, failures={(100, 599): 1})
    watcher = ChainEventWatcher(source, chunk_size=500, max_retries=2, retry_backoff=0)

    backfill = watcher.backfill(100)
    refs = asyncio.run(_collect(backfill))

    assert [ref.id for ref in refs] == [5]
    assert backfill.report.failed_ranges == []
    assert backfill.report.checkpoint == 599


def test_backfill_clamps_to_block_to_head(fake_log_source):
    source = fake_log_source(head=800)
    watcher = ChainEventWatcher(source, chunk_size=500, retry_backoff=0)

    backfill = watcher.backfill(100, 5000)
    asyncio.run(_collect(backfill))

    assert source.calls == [(100, 599), (600, 800)]


def test_backfill_empty_range_when_start_past_head(fake_log_source):
    source = fake_log_source(head=50)
    watcher = ChainEventWatcher(source, chunk_size=500, retry_backoff=0)

    backfill = watcher.backfill(100)
    refs = asyncio.run(_collect(backfill))

    assert refs == []
    assert source.calls == []
    assert backfill.report.checkpoint is None


def test_enumerate_awaiting_yields_only_closed_markets(fake_chain, record_factory):
    from oracle_resolver.core.models import MarketStatus

    chain = fake_chain(
        {
            0: record_factory(0, MarketStatus.OPEN),
            1: record_factory(1, MarketStatus.CLOSED, "Will ETH close above $3k?"),
            2: record_factory(2, MarketStatus.PROPOSED),
            4: record_factory(4, MarketStatus.CLOSED),
        }
    )

    async def next_market_id():
        return 5

    chain.next_market_id = next_market_id
    watcher = ChainEventWatcher(chain)

    refs = asyncio.run(_collect(watcher.enumerate_awaiting()))

    assert [ref.id for ref in refs] == [1, 4]
    assert refs[0].question == "Will ETH close above $3k?"


def test_subscribe_requires_ws_url(fake_log_source):
    watcher = ChainEventWatcher(fake_log_source(head=1))

    async def _run():
        async for _ in watcher.subscribe(asyncio.Event()):
            pass

    with pytest.raises(RuntimeError):
        asyncio.run(_run())


def _notification(market_id, block, removed=False):
    return {
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {
            "subscription": "0xsub",
            "result": {
                "address": "0x00000000000000000000000000000000000000aa",
                "topics": [MARKET_CLOSED_TOPIC, "0x" + format(market_id, "064x")],
                "data": "0x",
                "blockNumber": hex(block),
                "transactionHash": "0x" + "ab" * 32,
                "removed": removed,
            },
        },
    }


class FakeWebSocket:
    def __init__(self, messages, drop=False):
        self.sent = []
        self._messages = messages
        self._drop = drop

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def recv(self):
        return json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0xsub"})

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield json.dumps(message)
        if self._drop:
            raise ConnectionError("socket dropped")
        await asyncio.Event().wait()


class FakeConnection:
    def __init__(self, ws):
        self._ws = ws

    async def __aenter__(self):
        return self._ws

    async def __aexit__(self, exc_type, exc, tb):
        return False


def test_subscription_reconnects_and_backfills_gap(monkeypatch, fake_log_source):
    source = fake_log_source(head=100, events={110: [8]})
    first = FakeWebSocket([_notification(7, 105), _notification(99, 106, removed=True)], drop=True)
    second = FakeWebSocket([_notification(9, 121)])
    sockets = [first, second]
    urls = []

    def fake_connect(url, **kwargs):
        urls.append(url)
        return FakeConnection(sockets.pop(0))

    monkeypatch.setattr(watcher_module.websockets, "connect", fake_connect)
    watcher = ChainEventWatcher(source, ws_url="wss://rpc.test", retry_backoff=0, reconnect_delay=0.01)

    async def _run():
        stop_event = asyncio.Event()
        stream = watcher.subscribe(stop_event)
        received = []
        async for ref in stream:
            received.append(ref)
            if ref.id == 7:
                # Head moves on while the socket is down.
                source.head = 120
            if len(received) == 3:
                stop_event.set()
                break
        await stream.aclose()
        return received

    received = asyncio.run(_run())

    assert [ref.id for ref in received] == [7, 8, 9]
    assert urls == ["wss://rpc.test", "wss://rpc.test"]
    assert first.sent[0]["method"] == "eth_subscribe"
    assert first.sent[0]["params"][1]["topics"] == [MARKET_CLOSED_TOPIC]
    # Gap backfill starts at the last block seen before the disconnect.
    assert source.calls == [(105, 120)]
    assert watcher.last_block == 121


def _record_reconnect_delays(monkeypatch, delays):
    real_wait_for = asyncio.wait_for

    async def recording_wait_for(awaitable, timeout):
        if timeout == 10:
            return await real_wait_for(awaitable, timeout)
        delays.append(timeout)
        awaitable.close()
        raise asyncio.TimeoutError

    monkeypatch.setattr(watcher_module.asyncio, "wait_for", recording_wait_for)


def test_acknowledged_reconnects_keep_base_backoff(monkeypatch, fake_log_source):
    source = fake_log_source(head=10)
    stop_event = asyncio.Event()
    delays = []
    connects = []

    def fake_connect(url, **kwargs):
        connects.append(url)
        if len(connects) == 3:
            stop_event.set()
        return FakeConnection(FakeWebSocket([], drop=True))

    monkeypatch.setattr(watcher_module.websockets, "connect", fake_connect)
    _record_reconnect_delays(monkeypatch, delays)
    watcher = ChainEventWatcher(source, ws_url="wss://rpc.test", retry_backoff=0, reconnect_delay=0.5)

    refs = asyncio.run(_collect(watcher.subscribe(stop_event)))

    assert refs == []
    assert len(connects) == 3
    assert delays == [0.5, 0.5]


def test_failed_connects_back_off_exponentially(monkeypatch, fake_log_source):
    stop_event = asyncio.Event()
    delays = []
    connects = []

    def failing_connect(url, **kwargs):
        connects.append(url)
        if len(connects) == 3:
            stop_event.set()
        raise OSError("connection refused")

    monkeypatch.setattr(watcher_module.websockets, "connect", failing_connect)
    _record_reconnect_delays(monkeypatch, delays)
    watcher = ChainEventWatcher(fake_log_source(head=10), ws_url="wss://rpc.test", reconnect_delay=0.5)

    asyncio.run(_collect(watcher.subscribe(stop_event)))

    assert len(connects) == 3
    assert delays == [0.5, 1.0]
