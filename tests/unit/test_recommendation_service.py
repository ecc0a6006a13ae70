from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from advisor.core.errors import NotFoundError, RateNotFoundError, ValidationError
from advisor.domain.models import (
    AssetAllocationInput,
    AssetScore,
    ExchangeRate,
    GenerateRequest,
    SubclassConstraint,
)
from advisor.domain.services.allocation_engine import DropReason
from advisor.domain.services.currency_converter import CurrencyConverter
from advisor.domain.services.recommendation_service import RecommendationService
from advisor.infrastructure.cache.cache_store import MemoryCacheStore
from advisor.infrastructure.cache.recommendation_cache import RecommendationCache
from advisor.infrastructure.events.audit_sink import (
    AuditEventSink,
    AuditEventType,
    RecordingAuditHandler,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
RATE_FETCHED_AT = NOW - timedelta(hours=2)


class FakePortfolio:
    """Mock portfolio collaborator returning prepared allocation inputs"""

    def __init__(self, inputs=None, error=None):
        self.inputs = inputs or []
        self.error = error
        self.calls = []

    async def load_allocation_inputs(self, user_id, portfolio_id):
        self.calls.append((user_id, portfolio_id))
        if self.error is not None:
            raise self.error
        return self.inputs


class ConstrainedPortfolio(FakePortfolio):
    def __init__(self, inputs, constraints):
        super().__init__(inputs)
        self.constraints = constraints

    async def load_constraints(self, user_id, portfolio_id):
        return self.constraints


class FakeScoring:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    async def score_assets(self, criteria_version_id, assets):
        self.calls.append((criteria_version_id, [a.asset_id for a in assets]))
        return self.rows


class InMemoryRateStore:
    def __init__(self, rates=()):
        self.rates = list(rates)

    async def get_latest(self, base, target, as_of=None):
        for r in self.rates:
            if r.base == base and r.target == target:
                return r
        return None


def holding(asset_id, value, current, target_min=None, target_max=None, score=None,
            currency=None, subclass_id=None, class_name=None):
    return AssetAllocationInput(
        asset_id=asset_id,
        symbol=asset_id.upper(),
        current_value_base=Decimal(value),
        current_allocation_pct=Decimal(current),
        target_min=Decimal(target_min) if target_min is not None else None,
        target_max=Decimal(target_max) if target_max is not None else None,
        score=Decimal(score) if score is not None else None,
        subclass_id=subclass_id,
        class_name=class_name,
        value_currency=currency,
    )


def request(contribution="800", dividends="200", base_currency="USD", portfolio_id="pf-1",
            criteria_version_id="cv-1"):
    return GenerateRequest(
        portfolio_id=portfolio_id,
        contribution=Decimal(contribution),
        dividends=Decimal(dividends),
        base_currency=base_currency,
        criteria_version_id=criteria_version_id,
    )


def make_service(portfolio, *rates, scoring=None, cache=None, sink=None):
    converter = CurrencyConverter(InMemoryRateStore(rates), clock=lambda: NOW)
    return RecommendationService(
        portfolio, converter, scoring=scoring, cache=cache, audit_sink=sink, clock=lambda: NOW
    )


TWO_ASSETS = [
    holding("a", "400", "40", "45", "55", "80", class_name="stocks"),
    holding("b", "450", "45", "45", "55", "50", class_name="bonds"),
]


class TestRecommendationService:
    async def test_generates_reference_split(self):
        service = make_service(FakePortfolio(TWO_ASSETS))
        rec = await service.generate("user-1", request())

        assert rec.total_investable == Decimal("1000")
        assert [(i.asset_id, i.recommended_amount) for i in rec.items] == [
            ("a", Decimal("761.90")),
            ("b", Decimal("238.10")),
        ]
        assert rec.total_recommended == Decimal("1000.00")
        assert rec.items[0].target_allocation_pct == Decimal("50")
        assert rec.items[0].allocation_gap_pct == Decimal("10")
        assert rec.expires_at == NOW + timedelta(hours=24)
        assert rec.audit_trail.criteria_version_id == "cv-1"
        assert rec.audit_trail.exchange_rates_snapshot == []
        assert rec.is_balanced is False

    async def test_no_targets_gives_zero_recommendation(self):
        service = make_service(FakePortfolio([holding("a", "100", "100", score="90")]))
        rec = await service.generate("user-1", request())

        assert rec.is_balanced is True
        assert rec.items[0].recommended_amount == Decimal("0.00")
        assert rec.items[0].dropped_reason == DropReason.NO_TARGET
        assert rec.audit_trail.dropped_assets == ["a"]

    async def test_empty_portfolio(self):
        rec = await make_service(FakePortfolio([])).generate("user-1", request())
        assert rec.items == []
        assert rec.is_balanced is True

    async def test_foreign_values_converted_to_base(self):
        inputs = [
            holding("a", "500", "0", "60", "70", "100", currency="USD"),
            holding("b", "2500", "0", "30", "40", "100", currency="BRL"),
        ]
        rate = ExchangeRate(
            base="USD", target="BRL", rate=Decimal("5.00"), rate_date=date(2026, 3, 2),
            fetched_at=RATE_FETCHED_AT, source="exchangerate_api",
        )
        service = make_service(FakePortfolio(inputs), rate)

        rec = await service.generate("user-1", request(contribution="100", dividends="0"))

        by_id = {i.asset_id: i for i in rec.items}
        assert by_id["a"].current_allocation_pct == Decimal("50")
        assert by_id["b"].current_allocation_pct == Decimal("50")
        assert by_id["a"].recommended_amount == Decimal("100.00")
        assert by_id["b"].is_over_allocated is True

        snapshot = rec.audit_trail.exchange_rates_snapshot
        assert [(e.pair, e.rate) for e in snapshot] == [("BRL/USD", Decimal("0.2"))]
        assert rec.audit_trail.rates_as_of == RATE_FETCHED_AT

    async def test_missing_rate_fails(self):
        inputs = [holding("a", "100", "100", "40", "60", "50", currency="JPY")]
        with pytest.raises(RateNotFoundError):
            await make_service(FakePortfolio(inputs)).generate("user-1", request())

    async def test_scoring_collaborator_overrides_scores(self):
        scoring = FakeScoring([
            AssetScore(asset_id="a", score=Decimal("50"), correlation_id="run-b"),
            AssetScore(asset_id="b", score=Decimal("80"), correlation_id="run-a"),
            AssetScore(asset_id="unknown", score=Decimal("99"), correlation_id="run-a"),
        ])
        inputs = [
            holding("a", "450", "45", "45", "55"),
            holding("b", "400", "40", "45", "55"),
        ]
        service = make_service(FakePortfolio(inputs), scoring=scoring)

        rec = await service.generate("user-1", request())

        assert scoring.calls == [("cv-1", ["a", "b"])]
        assert rec.audit_trail.scores_correlation_id == "run-a"
        assert {i.asset_id: i.recommended_amount for i in rec.items} == {
            "b": Decimal("761.90"), "a": Decimal("238.10"),
        }

    async def test_constraints_from_portfolio(self):
        inputs = [
            holding("a", "400", "40", "45", "55", "80", subclass_id="etf"),
            holding("b", "450", "45", "45", "55", "50", subclass_id="etf"),
        ]
        portfolio = ConstrainedPortfolio(inputs, [SubclassConstraint("etf", max_assets=1)])
        rec = await make_service(portfolio).generate("user-1", request())

        by_id = {i.asset_id: i for i in rec.items}
        assert by_id["a"].recommended_amount == Decimal("1000.00")
        assert by_id["b"].dropped_reason == DropReason.MAX_ASSETS
        assert rec.audit_trail.dropped_assets == ["b"]

    async def test_audit_events_in_order(self):
        handler = RecordingAuditHandler()
        sink = AuditEventSink(handler)
        sink.start()
        service = make_service(FakePortfolio(TWO_ASSETS), sink=sink)

        rec = await service.generate("user-1", request())
        await sink.drain()
        await sink.stop()

        assert [e.event_type for e in handler.events] == [
            AuditEventType.CALC_STARTED,
            AuditEventType.RECS_INPUTS_CAPTURED,
            AuditEventType.RECS_COMPUTED,
            AuditEventType.CALC_COMPLETED,
        ]
        assert {e.correlation_id for e in handler.events} == {rec.correlation_id}
        assert handler.events[-1].payload == {"status": "succeeded", "recommendation_id": rec.id}
        assert handler.events[2].payload["total_recommended"] == "1000.00"

    async def test_failure_is_audited_and_raised(self):
        handler = RecordingAuditHandler()
        sink = AuditEventSink(handler)
        sink.start()
        portfolio = FakePortfolio(error=NotFoundError("Portfolio pf-9 not found"))
        service = make_service(portfolio, sink=sink)

        with pytest.raises(NotFoundError):
            await service.generate("user-1", request(portfolio_id="pf-9"))
        await sink.drain()
        await sink.stop()

        completed = handler.of_type(AuditEventType.CALC_COMPLETED)
        assert len(completed) == 1
        assert completed[0].payload["status"] == "failed"
        assert completed[0].payload["error_code"] == "NOT_FOUND"

    @pytest.mark.parametrize("kwargs", [
        {"contribution": "0"},
        {"contribution": "-10"},
        {"contribution": "10.001"},
        {"dividends": "-1"},
        {"dividends": "0.005"},
        {"base_currency": "US"},
        {"base_currency": "dollars"},
        {"portfolio_id": ""},
    ])
    async def test_validation(self, kwargs):
        portfolio = FakePortfolio(TWO_ASSETS)
        with pytest.raises(ValidationError):
            await make_service(portfolio).generate("user-1", request(**kwargs))
        assert portfolio.calls == []

    async def test_lowercase_currency_accepted(self):
        rec = await make_service(FakePortfolio(TWO_ASSETS)).generate(
            "user-1", request(base_currency="usd")
        )
        assert rec.base_currency == "USD"

    async def test_each_run_gets_new_ids(self):
        service = make_service(FakePortfolio(TWO_ASSETS))
        first = await service.generate("user-1", request())
        second = await service.generate("user-1", request())
        assert first.id != second.id
        assert first.correlation_id != second.correlation_id
        assert [i.recommended_amount for i in first.items] == [i.recommended_amount for i in second.items]


class TestRecommendationCaching:
    async def test_latest_recommendation_cached(self):
        cache = RecommendationCache(MemoryCacheStore(clock=lambda: NOW), clock=lambda: NOW)
        service = make_service(FakePortfolio(TWO_ASSETS), cache=cache)

        assert (await service.get_cached("user-1")).from_cache is False

        rec = await service.generate("user-1", request())
        result = await service.get_cached("user-1")

        assert result.from_cache is True
        assert result.data.recommendation.id == rec.id
        summary = result.data.portfolio_summary
        assert summary.total_value == Decimal("850")
        assert summary.asset_count == 2
        assert summary.allocation_by_class == {"bonds": Decimal("45"), "stocks": Decimal("40")}
        assert result.data.data_freshness.criteria_version == "cv-1"

    async def test_new_generation_replaces_cached(self):
        cache = RecommendationCache(MemoryCacheStore(clock=lambda: NOW), clock=lambda: NOW)
        service = make_service(FakePortfolio(TWO_ASSETS), cache=cache)

        await service.generate("user-1", request())
        second = await service.generate("user-1", request())
        assert (await service.get_cached("user-1")).data.recommendation.id == second.id

    async def test_no_cache_configured(self):
        service = make_service(FakePortfolio(TWO_ASSETS))
        await service.generate("user-1", request())
        result = await service.get_cached("user-1")
        assert result.data is None
        assert result.from_cache is False
