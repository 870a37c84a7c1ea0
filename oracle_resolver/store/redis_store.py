from __future__ import annotations

import json
import logging

from redis.asyncio import Redis

from ..core.models import SubmissionResult

logger = logging.getLogger(__name__)


def _checkpoint_key(contract_address: str) -> str:
    return f"oracle:checkpoint:{contract_address.lower()}"


class RedisStore:
    """Backfill checkpoint persistence and resolution update pub/sub."""

    updates_channel = "oracle:resolutions"

    def __init__(self, client: Redis, *, contract_address: str) -> None:
        self._redis = client
        self._checkpoint_key = _checkpoint_key(contract_address)

    async def get_checkpoint(self) -> int | None:
        value = await self._redis.get(self._checkpoint_key)
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed checkpoint value %r", value)
            return None

    async def set_checkpoint(self, block_number: int) -> None:
        """Advance the checkpoint; it never moves backwards."""

        current = await self.get_checkpoint()
        if current is not None and current >= block_number:
            return
        await self._redis.set(self._checkpoint_key, str(block_number))
        logger.debug("Backfill checkpoint advanced to %s", block_number)

    async def publish_resolution(self, result: SubmissionResult) -> None:
        message = json.dumps(result.serialize())
        await self._redis.publish(self.updates_channel, message)


__all__ = ["RedisStore"]
