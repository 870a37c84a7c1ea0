from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router
from .background import OracleService
from .components import build_components
from .config import get_settings
from .workers.pool import ResolutionWorkerPool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    components = build_components(settings)
    pool = ResolutionWorkerPool(
        submitter=components.submitter,
        workers=settings.resolution_workers,
        maxsize=settings.queue_maxsize,
    )
    service = OracleService(
        watcher=components.watcher,
        pool=pool,
        store=components.store,
        engine=components.engine,
        submitter=components.submitter,
        start_block=settings.start_block,
        backfill_interval=settings.backfill_interval_sec,
        lookback_blocks=settings.backfill_lookback_blocks,
        enable_subscription=settings.enable_live_subscription and bool(settings.rpc_ws_url),
        dry_run=settings.dry_run,
    )

    app.state.settings = settings
    app.state.redis = components.redis
    app.state.store = components.store
    app.state.service = service

    try:
        await components.redis.ping()
    except Exception:
        logger.exception("Failed to connect to Redis")
        raise

    if settings.enable_live_subscription and not settings.rpc_ws_url:
        logger.warning("RPC_WS_URL not set; relying on periodic backfill only")

    await service.start()

    try:
        yield
    finally:
        await service.stop()
        await components.close()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Oracle Resolution Service", lifespan=lifespan)
    origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    if not origins:
        origins = ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
