"""
Service container
Wires settings into the long-lived services the routes depend on
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from advisor.config import Settings, settings as default_settings
from advisor.domain.services.batch_recommendation_service import BatchRecommendationService
from advisor.domain.services.currency_converter import CurrencyConverter
from advisor.domain.services.portfolio_valuator import HoldingsPortfolio, PortfolioValuator
from advisor.domain.services.recommendation_service import RecommendationService
from advisor.infrastructure.cache.cache_store import CacheStore, MemoryCacheStore
from advisor.infrastructure.cache.recommendation_cache import RecommendationCache
from advisor.infrastructure.cache.redis_cache import RedisCacheStore
from advisor.infrastructure.db import database
from advisor.infrastructure.db.repositories.exchange_rate_repository import SessionExchangeRateStore
from advisor.infrastructure.events.audit_sink import AuditEventSink
from advisor.infrastructure.market_data.provider_factory import (
    MarketDataServices,
    build_market_data_services,
)
from advisor.infrastructure.market_data.rate_refresh import RateRefreshService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    cache: CacheStore
    market_data: MarketDataServices
    audit_sink: AuditEventSink
    converter: CurrencyConverter
    recommendations: RecommendationService
    batch: BatchRecommendationService
    rate_refresh: Optional[RateRefreshService] = None
    uses_database: bool = False

    async def startup(self) -> None:
        if self.uses_database and self.settings.AUTO_CREATE_TABLES:
            await database.init_db()
            logger.info("Database tables ensured")
        self.audit_sink.start()

    async def shutdown(self) -> None:
        await self.audit_sink.stop()
        if isinstance(self.cache, RedisCacheStore):
            await self.cache.close()
        if self.uses_database:
            await database.close_db()


def build_cache(app_settings: Settings) -> CacheStore:
    if app_settings.REDIS_ENABLED:
        logger.info("Using Redis cache at prefix %s", app_settings.REDIS_PREFIX)
        return RedisCacheStore(
            url=app_settings.REDIS_URL,
            prefix=app_settings.REDIS_PREFIX,
            stale_retention_seconds=app_settings.STALE_RETENTION_SECONDS,
        )
    return MemoryCacheStore(retention_seconds=app_settings.STALE_RETENTION_SECONDS)


def build_container(
    app_settings: Settings = default_settings,
    portfolio: Optional[Any] = None,
    scoring: Optional[Any] = None,
) -> ServiceContainer:
    """
    Build every service from settings.

    Portfolio storage and criteria scoring live outside this service; when
    no portfolio collaborator is given, an empty HoldingsPortfolio is used
    and callers register holdings on it.
    """
    cache = build_cache(app_settings)
    market_data = build_market_data_services(cache, app_settings)
    audit_sink = AuditEventSink(max_queue_size=app_settings.AUDIT_QUEUE_SIZE)

    database.configure_engine(app_settings.DATABASE_URL, echo=app_settings.DEBUG)
    rate_store = SessionExchangeRateStore(database.async_session_factory)

    converter = CurrencyConverter(
        rate_store,
        audit_sink=audit_sink,
        supported_currencies=app_settings.SUPPORTED_CURRENCIES,
        stale_after=timedelta(hours=app_settings.STALE_RATE_THRESHOLD_HOURS),
    )
    if portfolio is None:
        portfolio = HoldingsPortfolio(PortfolioValuator(market_data.prices, converter))
    if scoring is None:
        logger.warning(
            "No scoring collaborator configured; recommendations use portfolio scores only "
            "and unscored assets receive nothing"
        )

    recommendations = RecommendationService(
        portfolio,
        converter,
        scoring=scoring,
        cache=RecommendationCache(cache, ttl_seconds=app_settings.RECOMMENDATION_TTL_HOURS * 3600),
        audit_sink=audit_sink,
        ttl=timedelta(hours=app_settings.RECOMMENDATION_TTL_HOURS),
    )
    return ServiceContainer(
        settings=app_settings,
        cache=cache,
        market_data=market_data,
        audit_sink=audit_sink,
        converter=converter,
        recommendations=recommendations,
        batch=BatchRecommendationService(recommendations, app_settings.BATCH_MAX_CONCURRENCY),
        rate_refresh=RateRefreshService(market_data.rates, rate_store, audit_sink),
        uses_database=True,
    )
