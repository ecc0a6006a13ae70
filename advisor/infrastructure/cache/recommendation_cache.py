"""
Recommendation cache - latest generated recommendation per user.

Key pattern recs:{user_id}. The stored payload carries the portfolio
summary and data freshness timestamps so a hit never needs the provider
layer. Cache failures are logged and reported through the return value,
never raised to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from advisor.domain.models import (
    CachedRecommendation,
    CacheGetResult,
    DataFreshness,
    PortfolioSummary,
    Recommendation,
)
from advisor.infrastructure.cache.cache_store import CacheStore
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)

_adapter = TypeAdapter(CachedRecommendation)

CACHE_SOURCE = "recommendation-engine"


class RecommendationCache:
    KEY_PREFIX = "recs"

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = 24 * 3600,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}:{user_id}"

    async def set(
        self,
        user_id: str,
        recommendation: Recommendation,
        portfolio_summary: Optional[PortfolioSummary] = None,
        data_freshness: Optional[DataFreshness] = None,
    ) -> bool:
        now = self._clock()
        # Expire together with the recommendation itself
        ttl = min(self.ttl_seconds, int((recommendation.expires_at - now).total_seconds()))
        if ttl <= 0:
            logger.info("Not caching expired recommendation %s", recommendation.id)
            return False

        cached = CachedRecommendation(
            recommendation=recommendation,
            cached_at=now,
            portfolio_summary=portfolio_summary,
            data_freshness=data_freshness,
        )
        try:
            # No stale reads for recommendations
            await self.store.set(
                self.key(user_id), _adapter.dump_python(cached, mode="json"), ttl, CACHE_SOURCE,
                retention_seconds=0,
            )
        except Exception as exc:
            logger.warning(
                "Failed to cache recommendation %s for user %s: %s",
                recommendation.id, user_id, exc,
            )
            return False
        logger.debug("Cached recommendation %s for user %s (ttl=%ss)", recommendation.id, user_id, ttl)
        return True

    async def get(self, user_id: str) -> CacheGetResult:
        try:
            entry = await self.store.get(self.key(user_id))
        except Exception as exc:
            logger.warning("Failed to read cached recommendation for user %s: %s", user_id, exc)
            return CacheGetResult(data=None, from_cache=False)
        if entry is None:
            return CacheGetResult(data=None, from_cache=False)

        try:
            cached = _adapter.validate_python(entry.data)
        except PydanticValidationError as exc:
            logger.warning("Discarding unreadable cached recommendation for user %s: %s", user_id, exc)
            await self.invalidate(user_id)
            return CacheGetResult(data=None, from_cache=False)

        if cached.recommendation.expires_at <= self._clock():
            return CacheGetResult(data=None, from_cache=False)
        return CacheGetResult(data=cached, from_cache=True)

    async def invalidate(self, user_id: str) -> None:
        try:
            await self.store.delete(self.key(user_id))
        except Exception as exc:
            logger.warning("Failed to invalidate cached recommendation for user %s: %s", user_id, exc)
