"""
Redis storage backend.

Keeps credentials, session keys and challenge records across process
restarts so a challenge completed after a reload can still be resumed.
"""

from __future__ import annotations

import json
import math
import os
from typing import Any

import redis.asyncio as redis

from arcle.core.logging import get_logger
from arcle.storage.base import StorageBackend, register_storage_backend


class RedisStorage(StorageBackend):
    """Records are JSON strings under ``{prefix}:{collection}:{key}``."""

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "arcle",
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from ARCLE_REDIS_URL env)
            prefix: Key prefix for all storage keys
        """
        self._redis_url = redis_url or os.environ.get(
            "ARCLE_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client: redis.Redis | None = None
        self._logger = get_logger("storage.redis")

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        ttl: float | None = None,
    ) -> None:
        client = self._get_client()
        expiry = max(1, math.ceil(ttl)) if ttl is not None else None
        await client.set(self._make_key(collection, key), json.dumps(data), ex=expiry)
        await client.sadd(self._index_key(collection), key)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        client = self._get_client()
        raw = await client.get(self._make_key(collection, key))
        if raw is None:
            return None
        return json.loads(raw)

    async def delete(self, collection: str, key: str) -> bool:
        client = self._get_client()
        result = await client.delete(self._make_key(collection, key))
        await client.srem(self._index_key(collection), key)
        return result > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))

        results = []
        for key in sorted(keys):
            data = await self.get(collection, key)
            if data is None:
                # Expired through TTL; drop the stale index entry
                await client.srem(self._index_key(collection), key)
                continue
            if filters and any(data.get(f) != v for f, v in filters.items()):
                continue
            data["_key"] = key
            results.append(data)
            if limit is not None and len(results) >= limit:
                break
        return results

    async def update(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        client = self._get_client()
        redis_key = self._make_key(collection, key)
        existing = await self.get(collection, key)
        if existing is None:
            return False
        existing.update(data)
        # KEEPTTL preserves a challenge record's expiry across updates
        await client.set(redis_key, json.dumps(existing), keepttl=True)
        return True

    async def clear(self, collection: str) -> int:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))
        for key in keys:
            await client.delete(self._make_key(collection, key))
        await client.delete(self._index_key(collection))
        return len(keys)

    async def health_check(self) -> bool:
        try:
            await self._get_client().ping()
        except redis.RedisError as e:
            self._logger.warning(f"Redis health check failed: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)
