"""
Redis-backed cache store.

Each value is wrapped in an envelope carrying cached_at/ttl/source. Redis
expiry is set past the freshness TTL so stale reads still find the entry.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from advisor.infrastructure.cache.cache_store import CacheEntry
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)


class RedisCacheStore:
    def __init__(
        self,
        url: str,
        prefix: str = "advisor:",
        enabled: bool = True,
        stale_retention_seconds: int = 30 * 24 * 3600,
        client: Optional[redis.Redis] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)
        self._prefix = prefix
        self._enabled = enabled
        self._stale_retention_seconds = stale_retention_seconds
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        if not self._enabled:
            return None
        try:
            raw = await self._client.get(self._key(key))
        except RedisError as exc:
            logger.warning("Redis get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding malformed cache entry %s: %s", key, exc)
            return None
        if entry.is_expired(self._clock()) and not allow_stale:
            return None
        return entry

    async def set(
        self, key: str, data: Any, ttl_seconds: int, source: str, retention_seconds: Optional[int] = None
    ) -> None:
        if not self._enabled:
            return
        entry = CacheEntry(data=data, cached_at=self._clock(), ttl_seconds=ttl_seconds, source=source)
        if retention_seconds is None:
            retention_seconds = self._stale_retention_seconds
        try:
            await self._client.set(
                self._key(key),
                json.dumps(entry.to_dict()),
                ex=ttl_seconds + retention_seconds,
            )
        except RedisError as exc:
            logger.warning("Redis set failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        if not self._enabled:
            return
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            logger.warning("Redis delete failed for %s: %s", key, exc)

    async def close(self) -> None:
        await self._client.aclose()
