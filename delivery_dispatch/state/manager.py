"""Redis-based state manager for state that outlives one process."""

import json
from typing import Any

import redis.asyncio as redis

from delivery_dispatch.config import get_settings
from delivery_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


class StateManager:
    """Thin async wrapper around the Redis operations the engine needs."""

    def __init__(self, redis_url: str | None = None) -> None:
        self.redis_client: redis.Redis | None = None
        self.redis_url = redis_url or get_settings().redis_url

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def push_bounded(self, key: str, value: Any, capacity: int) -> None:
        """Prepend a value to a list and drop everything past `capacity`."""
        if not self.redis_client:
            await self.connect()

        if isinstance(value, (dict, list)):
            value = json.dumps(value)

        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, capacity - 1)
            await pipe.execute()

        logger.debug("state_list_pushed", key=key, capacity=capacity)

    async def lrange(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        """Get list members, deserializing JSON values."""
        if not self.redis_client:
            await self.connect()

        values = await self.redis_client.lrange(key, start, end)

        result = []
        for value in values:
            try:
                result.append(json.loads(value))
            except (json.JSONDecodeError, TypeError):
                result.append(value)

        return result

    async def replace_list(self, key: str, values: list[Any]) -> None:
        """Atomically replace the contents of a list, keeping order."""
        if not self.redis_client:
            await self.connect()

        encoded = [json.dumps(v) if isinstance(v, (dict, list)) else v for v in values]

        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            if encoded:
                pipe.rpush(key, *encoded)
            await pipe.execute()

    async def delete(self, key: str) -> None:
        """Delete a key from Redis."""
        if not self.redis_client:
            await self.connect()

        await self.redis_client.delete(key)
        logger.debug("state_deleted", key=key)
