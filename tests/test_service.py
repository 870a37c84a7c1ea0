import asyncio

from oracle_resolver.background import OracleService
from oracle_resolver.ingress.watcher import ChainEventWatcher
from oracle_resolver.store.redis_store import RedisStore


class RecordingPool:
    workers = 2
    active = 0

    def __init__(self):
        self.refs = []
        self.outcomes = {}
        self.recent = []
        self.started = False
        self.stopped = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def submit(self, ref):
        self.refs.append(ref)

    def qsize(self):
        return len(self.refs)


class IdleSubmitter:
    in_flight = set()


def _service(source, store, pool, **kwargs):
    watcher = ChainEventWatcher(source, chunk_size=500, retry_backoff=0)
    options = {"start_block": 100, "backfill_interval": 0, "lookback_blocks": 300}
    options.update(kwargs)
    return OracleService(
        watcher=watcher,
        pool=pool,
        store=store,
        engine=None,
        submitter=IdleSubmitter(),
        **options,
    )


def test_first_backfill_starts_at_start_block_and_saves_checkpoint(fake_log_source, fake_redis):
    source = fake_log_source(head=1200, events={150: [1], 900: [2]})
    store = RedisStore(fake_redis, contract_address="0xABC")
    pool = RecordingPool()

    report = asyncio.run(_service(source, store, pool).run_backfill_once())

    assert source.calls[0] == (100, 599)
    assert [ref.id for ref in pool.refs] == [1, 2]
    assert report.checkpoint == 1200
    assert fake_redis.store["oracle:checkpoint:0xabc"] == "1200"


def test_later_backfill_rescans_lookback_window(fake_log_source, fake_redis):
    fake_redis.store["oracle:checkpoint:0xabc"] = "1200"
    source = fake_log_source(head=1500)
    store = RedisStore(fake_redis, contract_address="0xabc")

    asyncio.run(_service(source, store, RecordingPool()).run_backfill_once())

    assert source.calls == [(900, 1399), (1400, 1500)]
    assert fake_redis.store["oracle:checkpoint:0xabc"] == "1500"


def test_lookback_never_precedes_start_block(fake_log_source, fake_redis):
    fake_redis.store["oracle:checkpoint:0xabc"] = "150"
    source = fake_log_source(head=200)
    store = RedisStore(fake_redis, contract_address="0xabc")

    asyncio.run(_service(source, store, RecordingPool()).run_backfill_once())

    assert source.calls == [(100, 200)]


def test_checkpoint_does_not_advance_past_failed_range(fake_log_source, fake_redis):
    source = fake_log_source(head=1200, failures={(600, 1099): 99})
    store = RedisStore(fake_redis, contract_address="0xabc")
    service = _service(source, store, RecordingPool())
    service._watcher._max_retries = 0

    report = asyncio.run(service.run_backfill_once())

    assert report.failed_ranges == [(600, 1099)]
    assert fake_redis.store["oracle:checkpoint:0xabc"] == "599"


def test_checkpoint_is_monotonic(fake_redis):
    store = RedisStore(fake_redis, contract_address="0xabc")

    async def _run():
        await store.set_checkpoint(500)
        await store.set_checkpoint(400)
        return await store.get_checkpoint()

    assert asyncio.run(_run()) == 500


def test_malformed_checkpoint_is_ignored(fake_redis):
    fake_redis.store["oracle:checkpoint:0xabc"] = "not-a-block"
    store = RedisStore(fake_redis, contract_address="0xabc")

    assert asyncio.run(store.get_checkpoint()) is None


def test_start_and_stop_without_subscription(fake_log_source, fake_redis):
    source = fake_log_source(head=150, events={120: [3]})
    store = RedisStore(fake_redis, contract_address="0xabc")
    pool = RecordingPool()
    service = _service(source, store, pool, enable_subscription=False)

    async def _run():
        await service.start()
        while service.last_backfill is None:
            await asyncio.sleep(0.01)
        status = service.status()
        await service.stop()
        return status

    status = asyncio.run(_run())

    assert pool.started and pool.stopped
    assert [ref.id for ref in pool.refs] == [3]
    assert status["last_backfill"]["checkpoint"] == 150
    assert status["in_flight"] == []
