from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis

from .config import Settings
from .core.registry import AssetRegistry
from .ingress.chain import ChainClient
from .ingress.contract_abi import load_abi
from .ingress.pricing import DiaClient, PriceOracleClient, PythClient
from .ingress.watcher import ChainEventWatcher
from .integrations.openai_client import OpenAIResponsesClient
from .resolution.classifier import QuestionClassifier
from .resolution.engine import DecisionEngine
from .resolution.extractor import EntityExtractor
from .resolution.reasoner import EvidenceReasoner
from .store.redis_store import RedisStore
from .submitter import OutcomeSubmitter

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Every long-lived collaborator of the pipeline, built once from settings."""

    redis: Redis
    store: RedisStore
    chain: ChainClient
    watcher: ChainEventWatcher
    llm: OpenAIResponsesClient
    prices: PriceOracleClient
    engine: DecisionEngine
    submitter: OutcomeSubmitter

    async def close(self) -> None:
        await self.llm.close()
        await self.prices.close()
        await self.redis.aclose()


def build_components(settings: Settings) -> Components:
    if not settings.dry_run and not settings.oracle_private_key:
        raise RuntimeError("ORACLE_PRIVATE_KEY is required unless ORACLE_DRY_RUN is enabled")

    registry = AssetRegistry.load(settings.asset_registry_path)

    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    store = RedisStore(redis, contract_address=settings.contract_address)
    chain = ChainClient(
        settings.rpc_url,
        settings.contract_address,
        private_key=settings.oracle_private_key,
        chain_id=settings.chain_id,
        timeout=settings.request_timeout,
        abi=load_abi(settings.contract_abi_path),
    )
    watcher = ChainEventWatcher(
        chain,
        ws_url=settings.rpc_ws_url,
        chunk_size=settings.backfill_chunk_size,
        max_retries=settings.backfill_max_retries,
        retry_backoff=settings.backfill_retry_backoff,
        reconnect_delay=settings.ws_reconnect_backoff,
    )
    llm = OpenAIResponsesClient(
        settings.openai_api_key,
        model=settings.openai_model,
        base_url=settings.openai_base_url,
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
    )
    prices = PriceOracleClient(
        PythClient(
            settings.pyth_hermes_url,
            registry=registry,
            batch_size=settings.pyth_batch_size,
            timeout=settings.request_timeout,
        ),
        DiaClient(settings.dia_base_url, timeout=settings.request_timeout),
    )
    engine = DecisionEngine(
        classifier=QuestionClassifier(llm),
        extractor=EntityExtractor(llm, registry.aliases),
        reasoner=EvidenceReasoner(llm),
        prices=prices,
        known_symbols=registry.bases,
    )
    submitter = OutcomeSubmitter(
        contract=chain,
        engine=engine,
        receipt_timeout=settings.receipt_timeout,
        evidence_uri=settings.evidence_uri,
        dry_run=settings.dry_run,
        publisher=store,
    )

    logger.info(
        "Oracle configuration loaded (contract=%s, start_block=%s, chunk=%s, workers=%s, dry_run=%s)",
        chain.address,
        settings.start_block,
        settings.backfill_chunk_size,
        settings.resolution_workers,
        settings.dry_run,
    )
    return Components(
        redis=redis,
        store=store,
        chain=chain,
        watcher=watcher,
        llm=llm,
        prices=prices,
        engine=engine,
        submitter=submitter,
    )


__all__ = ["Components", "build_components"]
