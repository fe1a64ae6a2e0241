"""Redis-backed persistent tier of the response cache."""

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from voicedesc.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class RedisCacheStore:
    """Stores cache entries as JSON under a key prefix with a TTL."""

    def __init__(self, client: redis.Redis, prefix: str = "voicedesc:cache") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "voicedesc:cache") -> "RedisCacheStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> dict[str, Any] | None:
        full_key = self._key(key)
        try:
            data = await self.client.get(full_key)
        except RedisError as e:
            raise ExternalServiceError(f"Cache read failed: {e}", service="redis", retryable=True) from e
        if not data:
            return None
        logger.debug("Persistent cache hit: %s", full_key)
        return json.loads(data)

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        full_key = self._key(key)
        try:
            await self.client.setex(full_key, ttl_seconds, json.dumps(value, default=str))
        except RedisError as e:
            raise ExternalServiceError(f"Cache write failed: {e}", service="redis", retryable=True) from e
        logger.debug("Persistent cache set: %s (ttl=%ss)", full_key, ttl_seconds)

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            raise ExternalServiceError(f"Cache delete failed: {e}", service="redis") from e

    async def close(self) -> None:
        await self.client.aclose()
