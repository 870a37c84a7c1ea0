from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Oracle resolver configuration sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env.local", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    rpc_url: str = Field(
        default="http://localhost:8545",
        alias="RPC_URL",
        description="HTTP JSON-RPC endpoint used for reads, log queries and transactions.",
    )
    rpc_ws_url: Optional[str] = Field(
        default=None,
        alias="RPC_WS_URL",
        description="WebSocket JSON-RPC endpoint for live MarketClosed subscriptions.",
    )
    contract_address: str = Field(
        default="",
        alias="CONTRACT_ADDRESS",
        description="Address of the prediction market contract.",
    )
    contract_abi_path: Optional[str] = Field(
        default=None,
        alias="CONTRACT_ABI_PATH",
        description="Optional ABI JSON overriding the embedded contract fragments.",
    )
    oracle_private_key: Optional[str] = Field(
        default=None,
        alias="ORACLE_PRIVATE_KEY",
        description="Private key of the account allowed to propose AI outcomes.",
    )
    chain_id: Optional[int] = Field(
        default=None,
        alias="CHAIN_ID",
        description="Chain id for signed transactions; read from the node when unset.",
    )
    start_block: int = Field(
        default=0,
        alias="START_BLOCK",
        description="First block scanned for MarketClosed events when no checkpoint exists.",
    )
    asset_registry_path: str = Field(
        default="asset_registry.json",
        alias="ASSET_REGISTRY_PATH",
        description="JSON file mapping asset bases to Pyth feed identifiers.",
    )

    openai_api_key: Optional[str] = Field(
        default=None,
        alias="OPENAI_API_KEY",
        description="API key for the OpenAI Responses API.",
    )
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        alias="OPENAI_BASE_URL",
        description="Base URL of the OpenAI-compatible reasoning service.",
    )
    openai_model: str = Field(
        default="gpt-4.1",
        alias="OPENAI_MODEL",
        description="Model identifier used for classification, extraction and reasoning.",
    )
    llm_timeout: float = Field(
        default=60.0,
        alias="LLM_TIMEOUT_SEC",
        description="Timeout in seconds for a single reasoning request.",
    )
    llm_max_retries: int = Field(
        default=2,
        alias="LLM_MAX_RETRIES",
        description="Retries for transient reasoning service failures.",
    )

    pyth_hermes_url: str = Field(
        default="https://hermes.pyth.network",
        alias="PYTH_HERMES_URL",
        description="Base URL of the Pyth Hermes price service.",
    )
    dia_base_url: str = Field(
        default="https://api.diadata.org/v1",
        alias="DIA_BASE_URL",
        description="Base URL of the DIA quotation API.",
    )
    pyth_batch_size: int = Field(
        default=50,
        alias="PYTH_BATCH_SIZE",
        description="Maximum number of Pyth feed ids per request.",
    )
    request_timeout: float = Field(
        default=10.0,
        alias="REQUEST_TIMEOUT_SEC",
        description="Timeout in seconds for price provider and RPC requests.",
    )

    backfill_chunk_size: int = Field(
        default=500,
        alias="BACKFILL_CHUNK_SIZE",
        description="Number of blocks covered by one eth_getLogs request.",
    )
    backfill_max_retries: int = Field(
        default=3,
        alias="BACKFILL_MAX_RETRIES",
        description="Retries for a failing block range before it is reported and skipped.",
    )
    backfill_retry_backoff: float = Field(
        default=1.0,
        alias="BACKFILL_RETRY_BACKOFF",
        description="Initial backoff seconds between block range retries.",
    )
    backfill_interval_sec: int = Field(
        default=300,
        alias="BACKFILL_INTERVAL_SEC",
        description="Seconds between periodic backfill passes (0 disables them).",
    )
    backfill_lookback_blocks: int = Field(
        default=5000,
        alias="BACKFILL_LOOKBACK_BLOCKS",
        description="Blocks re-scanned behind the checkpoint on each periodic pass.",
    )

    resolution_workers: int = Field(
        default=4,
        alias="RESOLUTION_WORKERS",
        ge=1,
        description="Number of concurrent resolution workers.",
    )
    queue_maxsize: int = Field(
        default=100,
        alias="QUEUE_MAXSIZE",
        ge=1,
        description="Capacity of the queue between the event watcher and the workers.",
    )
    receipt_timeout: float = Field(
        default=180.0,
        alias="RECEIPT_TIMEOUT_SEC",
        description="Seconds to wait for a proposal transaction receipt.",
    )
    ws_reconnect_backoff: float = Field(
        default=5.0,
        alias="WS_RECONNECT_BACKOFF",
        description="Initial backoff seconds before attempting websocket reconnects.",
    )
    enable_live_subscription: bool = Field(
        default=True,
        alias="ENABLE_LIVE_SUBSCRIPTION",
        description="Toggle for the live MarketClosed websocket subscription.",
    )
    dry_run: bool = Field(
        default=False,
        alias="ORACLE_DRY_RUN",
        description="Compute decisions without sending proposal transactions.",
    )
    evidence_uri: str = Field(
        default="",
        alias="EVIDENCE_URI",
        description="Evidence URI template passed to proposeAIOutcome; may use {market_id}.",
    )

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL for the backfill checkpoint and pub/sub.",
    )
    cors_allow_origins: str = Field(
        default="*",
        alias="CORS_ALLOW_ORIGINS",
        description="Comma-separated list of origins allowed for CORS (use '*' for all).",
    )


@lru_cache()
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
