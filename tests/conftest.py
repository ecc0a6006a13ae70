from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from advisor.api.container import ServiceContainer
from advisor.api.main import create_app
from advisor.config import Settings
from advisor.core.errors import NotFoundError
from advisor.domain.models import AssetAllocationInput, PriceQuote, RateSet
from advisor.domain.services.batch_recommendation_service import BatchRecommendationService
from advisor.domain.services.currency_converter import CurrencyConverter
from advisor.domain.services.recommendation_service import RecommendationService
from advisor.infrastructure.cache.cache_store import MemoryCacheStore
from advisor.infrastructure.cache.recommendation_cache import RecommendationCache
from advisor.infrastructure.db import models  # noqa: F401
from advisor.infrastructure.db.database import Base
from advisor.infrastructure.db.repositories.exchange_rate_repository import SessionExchangeRateStore
from advisor.infrastructure.events.audit_sink import AuditEventSink, RecordingAuditHandler
from advisor.infrastructure.market_data.provider_chain import (
    ExchangeRateService,
    FundamentalsService,
    NamedProvider,
    PriceService,
)
from advisor.infrastructure.market_data.provider_factory import MarketDataServices
from advisor.infrastructure.market_data.rate_refresh import RateRefreshService
from advisor.infrastructure.resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from advisor.infrastructure.resilience.retry import RetryExecutor, RetryPolicy


@pytest.fixture()
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ------------------------------------------------------------
# Collaborator fakes for the API container
# ------------------------------------------------------------

class FakePortfolio:
    """Portfolio collaborator with fixed allocation inputs per (user, portfolio)"""

    def __init__(self, portfolios):
        self.portfolios = portfolios

    async def load_allocation_inputs(self, user_id, portfolio_id):
        try:
            return self.portfolios[(user_id, portfolio_id)]
        except KeyError:
            raise NotFoundError(f"Portfolio {portfolio_id} not found", details={"portfolio_id": portfolio_id})


class StaticRateProvider:
    async def get_rates(self, base, targets):
        table = {("USD", "BRL"): Decimal("5.00"), ("USD", "EUR"): Decimal("0.92")}
        return RateSet(
            base=base,
            rates={t: table[(base, t)] for t in targets if (base, t) in table},
            rate_date=date.today(),
        )


class StaticPriceProvider:
    async def get_prices(self, symbols):
        return [PriceQuote(symbol=s, close=Decimal("10"), currency="USD", price_date=date.today()) for s in symbols]


class StaticFundamentalsProvider:
    async def get_fundamentals(self, symbols):
        return []


async def no_sleep(_seconds):
    return None


def _allocation_input(asset_id, current, score):
    return AssetAllocationInput(
        asset_id=asset_id,
        symbol=asset_id.upper(),
        current_value_base=Decimal(current) * 10,
        current_allocation_pct=Decimal(current),
        target_min=Decimal("45"),
        target_max=Decimal("55"),
        score=Decimal(score),
        class_name="stocks",
    )


@pytest.fixture()
def audit_handler() -> RecordingAuditHandler:
    return RecordingAuditHandler()


@pytest.fixture()
async def container(session_factory, audit_handler) -> AsyncGenerator[ServiceContainer, None]:
    app_settings = Settings(_env_file=None, BREAKER_FAILURE_THRESHOLD=1)
    cache = MemoryCacheStore()
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
    retry = RetryExecutor(RetryPolicy(max_attempts=1), sleep=no_sleep)
    market_data = MarketDataServices(
        prices=PriceService([NamedProvider("prices_fake", StaticPriceProvider())], cache, breakers, retry, 3600),
        rates=ExchangeRateService([NamedProvider("rates_fake", StaticRateProvider())], cache, breakers, retry, 3600),
        fundamentals=FundamentalsService(
            [NamedProvider("fundamentals_fake", StaticFundamentalsProvider())], cache, breakers, retry, 3600
        ),
        breakers=breakers,
    )
    audit_sink = AuditEventSink(audit_handler)
    rate_store = SessionExchangeRateStore(session_factory)
    converter = CurrencyConverter(rate_store, audit_sink=audit_sink,
                                  supported_currencies=app_settings.SUPPORTED_CURRENCIES)
    portfolio = FakePortfolio({
        ("user-1", "pf-1"): [_allocation_input("a", "40", "80"), _allocation_input("b", "45", "50")],
    })
    recommendations = RecommendationService(
        portfolio, converter, cache=RecommendationCache(cache), audit_sink=audit_sink
    )
    built = ServiceContainer(
        settings=app_settings,
        cache=cache,
        market_data=market_data,
        audit_sink=audit_sink,
        converter=converter,
        recommendations=recommendations,
        batch=BatchRecommendationService(recommendations),
        rate_refresh=RateRefreshService(market_data.rates, rate_store, audit_sink),
    )
    await built.startup()
    yield built
    await built.shutdown()


@pytest.fixture()
def app(container) -> FastAPI:
    return create_app(container)


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
