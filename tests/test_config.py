import asyncio

import pytest
from pydantic import ValidationError

from oracle_resolver.components import build_components
from oracle_resolver.config import Settings
from oracle_resolver.core.models import MarketRef, SubmissionResult
from oracle_resolver.workers.backfill import _resolve_all


def test_settings_read_environment_aliases(monkeypatch):
    monkeypatch.setenv("RPC_URL", "https://rpc.test")
    monkeypatch.setenv("START_BLOCK", "1234")
    monkeypatch.setenv("BACKFILL_CHUNK_SIZE", "250")
    monkeypatch.setenv("ORACLE_DRY_RUN", "true")
    monkeypatch.setenv("EVIDENCE_URI", "ipfs://evidence/{market_id}")

    settings = Settings(_env_file=None)

    assert settings.rpc_url == "https://rpc.test"
    assert settings.start_block == 1234
    assert settings.backfill_chunk_size == 250
    assert settings.dry_run is True
    assert settings.pyth_batch_size == 50
    assert settings.evidence_uri == "ipfs://evidence/{market_id}"


def test_submission_requires_private_key(monkeypatch):
    monkeypatch.delenv("ORACLE_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("ORACLE_DRY_RUN", raising=False)

    with pytest.raises(RuntimeError, match="ORACLE_PRIVATE_KEY"):
        build_components(Settings(_env_file=None))


def test_cli_resolves_each_market_once():
    class CountingSubmitter:
        def __init__(self):
            self.calls = []

        async def resolve_and_submit(self, market_id):
            self.calls.append(market_id)
            reason = "submitted" if market_id % 2 else "abstained"
            return SubmissionResult(market_id=market_id, submitted=reason == "submitted", reason=reason)

    async def refs():
        for market_id in (1, 2, 1, 3):
            yield MarketRef(id=market_id)

    submitter = CountingSubmitter()
    outcomes = asyncio.run(_resolve_all(refs(), submitter))

    assert submitter.calls == [1, 2, 3]
    assert outcomes == {"submitted": 2, "abstained": 1}


def test_queue_size_below_one_is_rejected(monkeypatch):
    monkeypatch.setenv("QUEUE_MAXSIZE", "0")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
