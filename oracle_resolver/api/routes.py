from __future__ import annotations

import json
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from fastapi.responses import StreamingResponse

from ..background import OracleService
from ..store.redis_store import RedisStore

router = APIRouter()


def get_service(request: Request) -> OracleService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=500, detail="Oracle service is not available")
    return service


def get_store(request: Request) -> RedisStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Redis store is not available")
    return store


@router.get("/healthz")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/v1/status")
async def status(service: OracleService = Depends(get_service)) -> dict[str, Any]:
    return service.status()


@router.post("/v1/markets/{market_id}/resolve", status_code=202)
async def resolve_market(
    market_id: int = Path(ge=0),
    service: OracleService = Depends(get_service),
) -> dict[str, Any]:
    await service.enqueue(market_id)
    return {"marketId": market_id, "queued": True}


@router.get("/v1/markets/{market_id}/decision")
async def preview_decision(
    market_id: int = Path(ge=0),
    service: OracleService = Depends(get_service),
) -> dict[str, Any]:
    try:
        record, decision = await service.preview(market_id)
    except Exception as exc:
        raise HTTPException(status_code=502, detail=f"Failed to read market {market_id}: {exc}") from exc

    return {
        "marketId": market_id,
        "question": record.question,
        "status": record.status.value,
        "decision": decision.model_dump(mode="json") if decision else None,
    }


@router.get("/v1/stream")
async def stream_updates(
    request: Request,
    store: RedisStore = Depends(get_store),
) -> StreamingResponse:
    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        raise HTTPException(status_code=500, detail="Redis connection is not available")

    pubsub = redis.pubsub()
    await pubsub.subscribe(store.updates_channel)

    async def event_generator() -> AsyncGenerator[bytes, None]:
        try:
            payload = json.dumps({"type": "ready", "status": "listening"})
            yield f"data: {payload}\n\n".encode("utf-8")

            async for message in pubsub.listen():
                if await request.is_disconnected():
                    break
                if message.get("type") != "message":
                    continue
                data = message.get("data")
                if data is None:
                    continue
                if isinstance(data, bytes):
                    data_str = data.decode("utf-8")
                else:
                    data_str = str(data)
                yield f"data: {data_str}\n\n".encode("utf-8")
        finally:
            await pubsub.unsubscribe(store.updates_channel)
            await pubsub.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream")
