from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from advisor.core.errors import NotFoundError
from advisor.domain.models import (
    AssetScore,
    ExchangeRate,
    GenerateRequest,
    Holding,
    PriceQuote,
    SubclassConstraint,
)
from advisor.domain.services.currency_converter import CurrencyConverter
from advisor.domain.services.portfolio_valuator import HoldingsPortfolio, PortfolioValuator
from advisor.domain.services.recommendation_service import RecommendationService
from advisor.infrastructure.cache.cache_store import MemoryCacheStore
from advisor.infrastructure.market_data.provider_chain import NamedProvider, PriceService
from advisor.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry
from advisor.infrastructure.resilience.retry import RetryExecutor, RetryPolicy

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
RATE_FETCHED_AT = NOW - timedelta(hours=3)


class FakeQuoteProvider:
    name = "fake"

    def __init__(self, quotes):
        self.quotes = quotes

    async def get_prices(self, symbols):
        return [
            PriceQuote(symbol=s, close=self.quotes[s][0], currency=self.quotes[s][1],
                       price_date=date(2026, 3, 2))
            for s in symbols
            if s in self.quotes
        ]


class InMemoryRateStore:
    def __init__(self, rates=()):
        self.rates = list(rates)

    async def get_latest(self, base, target, as_of=None):
        for r in self.rates:
            if r.base == base and r.target == target:
                return r
        return None


async def no_sleep(_seconds):
    return None


def make_valuator(quotes):
    clock = lambda: NOW  # noqa: E731
    prices = PriceService(
        [NamedProvider("fake", FakeQuoteProvider(quotes))],
        MemoryCacheStore(clock=clock),
        CircuitBreakerRegistry(clock=clock),
        RetryExecutor(RetryPolicy(max_attempts=1), sleep=no_sleep),
        ttl_seconds=3600,
        clock=clock,
    )
    rates = InMemoryRateStore([
        ExchangeRate(base="USD", target="BRL", rate=Decimal("5.00"), rate_date=date(2026, 3, 2),
                     fetched_at=RATE_FETCHED_AT, source="exchangerate_api"),
    ])
    return PortfolioValuator(prices, CurrencyConverter(rates, clock=clock))


QUOTES = {
    "AAPL": (Decimal("100"), "USD"),
    "PETR4": (Decimal("50"), "BRL"),
}

HOLDINGS = [
    Holding(asset_id="a1", symbol="aapl", quantity=Decimal("2"),
            target_min=Decimal("40"), target_max=Decimal("60"), class_name="stocks"),
    Holding(asset_id="a2", symbol="PETR4", quantity=Decimal("10"),
            target_min=Decimal("40"), target_max=Decimal("60"), class_name="stocks"),
]


class TestPortfolioValuator:
    async def test_values_holdings_in_base_currency(self):
        valuation = await make_valuator(QUOTES).value_holdings(HOLDINGS, "USD")

        by_id = {i.asset_id: i for i in valuation.inputs}
        assert by_id["a1"].current_value_base == Decimal("200.0000")
        assert by_id["a2"].current_value_base == Decimal("100.0000")
        assert by_id["a1"].current_allocation_pct == Decimal("66.6667")
        assert by_id["a2"].current_allocation_pct == Decimal("33.3333")
        assert by_id["a1"].target_min == Decimal("40")

        assert [e.pair for e in valuation.rate_snapshot] == ["BRL/USD"]
        assert valuation.prices_as_of == NOW
        assert valuation.rates_as_of == RATE_FETCHED_AT

    async def test_missing_price(self):
        holdings = HOLDINGS + [Holding(asset_id="a3", symbol="MSFT", quantity=Decimal("1"))]
        with pytest.raises(NotFoundError) as exc_info:
            await make_valuator(QUOTES).value_holdings(holdings, "USD")
        assert exc_info.value.details == {"symbols": ["MSFT"]}

    async def test_empty_holdings(self):
        valuation = await make_valuator(QUOTES).value_holdings([], "USD")
        assert valuation.inputs == []
        assert valuation.prices_as_of is None


class TestHoldingsPortfolio:
    async def test_unknown_portfolio(self):
        portfolio = HoldingsPortfolio(make_valuator(QUOTES))
        with pytest.raises(NotFoundError):
            await portfolio.load_valuation("user-1", "missing", "USD")

    async def test_register_and_constraints(self):
        portfolio = HoldingsPortfolio(make_valuator(QUOTES))
        portfolio.register("user-1", "pf-1", HOLDINGS, [SubclassConstraint("etf", max_assets=2)])

        valuation = await portfolio.load_valuation("user-1", "pf-1", "USD")
        assert len(valuation.inputs) == 2
        assert await portfolio.load_constraints("user-1", "pf-1") == [SubclassConstraint("etf", max_assets=2)]
        assert await portfolio.load_constraints("user-2", "pf-1") == []

    async def test_drives_recommendation_service(self):
        valuator = make_valuator(QUOTES)
        portfolio = HoldingsPortfolio(valuator, holdings={("user-1", "pf-1"): HOLDINGS})

        class FlatScores:
            async def score_assets(self, criteria_version_id, assets):
                return [AssetScore(a.asset_id, Decimal("100"), "score-1") for a in assets]

        service = RecommendationService(portfolio, valuator.converter, scoring=FlatScores(),
                                        clock=lambda: NOW)
        rec = await service.generate("user-1", GenerateRequest(
            portfolio_id="pf-1", contribution=Decimal("300"), dividends=Decimal("0"),
            base_currency="USD",
        ))

        by_id = {i.asset_id: i.recommended_amount for i in rec.items}
        assert by_id == {"a1": Decimal("0.00"), "a2": Decimal("300.00")}
        assert rec.audit_trail.prices_as_of == NOW
        assert [e.pair for e in rec.audit_trail.exchange_rates_snapshot] == ["BRL/USD"]
