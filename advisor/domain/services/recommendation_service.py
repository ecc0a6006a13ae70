"""
RECOMMENDATION SERVICE
Turn a portfolio plus new money into an auditable Recommendation

RESPONSIBILITIES:
- Validate the contribution request
- Load allocation inputs and subclass constraints from the portfolio side
- Convert foreign-currency values with stored rates
- Merge scores, compute gaps, run the allocation engine
- Assemble the immutable Recommendation, audit it and cache it

RULES:
❌ Upstream errors are never masked
❌ No live rate fetches (converter reads stored rates only)
✅ Every run has its own correlation id
✅ A portfolio without targets yields a valid all-zero recommendation
"""

import logging
import re
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from advisor.core.errors import AdvisorError, ErrorCode, ValidationError
from advisor.domain.models import (
    AllocationCandidate,
    AllocationOutcome,
    AssetAllocationInput,
    AssetScore,
    AuditTrail,
    CacheGetResult,
    DataFreshness,
    GenerateRequest,
    PortfolioSummary,
    RateSnapshotEntry,
    Recommendation,
    RecommendationItem,
    SubclassConstraint,
)
from advisor.domain.services.allocation_engine import AllocationEngine
from advisor.domain.services.allocation_gap import calculate_gaps
from advisor.domain.services.currency_converter import CurrencyConverter
from advisor.domain.services.portfolio_valuator import PortfolioValuation
from advisor.infrastructure.cache.recommendation_cache import RecommendationCache
from advisor.infrastructure.events.audit_sink import AuditEvent, AuditEventSink, AuditEventType
from advisor.utils.decimal_utils import HUNDRED, ZERO, decimal_places, round_pct, to_decimal
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
UNCLASSIFIED = "unclassified"


# ------------------------------------------------------------
# Collaborators
# ------------------------------------------------------------

class PortfolioCollaborator(Protocol):
    async def load_allocation_inputs(
        self, user_id: str, portfolio_id: str
    ) -> List[AssetAllocationInput]:
        ...


@runtime_checkable
class SupportsValuation(Protocol):
    async def load_valuation(
        self,
        user_id: str,
        portfolio_id: str,
        base_currency: str,
        correlation_id: Optional[str] = None,
    ) -> PortfolioValuation:
        ...


@runtime_checkable
class SupportsConstraints(Protocol):
    async def load_constraints(self, user_id: str, portfolio_id: str) -> List[SubclassConstraint]:
        ...


class ScoringCollaborator(Protocol):
    async def score_assets(
        self,
        criteria_version_id: Optional[str],
        assets: Sequence[AssetAllocationInput],
    ) -> List[AssetScore]:
        ...


class RecommendationService:
    """
    Recommendation Service
    Orchestrates one generation run per call
    """

    def __init__(
        self,
        portfolio: Any,
        converter: CurrencyConverter,
        scoring: Optional[ScoringCollaborator] = None,
        cache: Optional[RecommendationCache] = None,
        audit_sink: Optional[AuditEventSink] = None,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize recommendation service

        Args:
            portfolio: Provides load_valuation or load_allocation_inputs,
                optionally load_constraints
            converter: Stored-rate currency converter
            scoring: Supplies asset scores; None uses scores on the inputs
            cache: Latest recommendation per user
            audit_sink: Receives calculation audit events
            ttl: Recommendation lifetime
            clock: Injectable time source
        """
        self.portfolio = portfolio
        self.converter = converter
        self.scoring = scoring
        self.cache = cache
        self.audit_sink = audit_sink
        self.ttl = ttl
        self._clock = clock

    async def generate(self, user_id: str, request: GenerateRequest) -> Recommendation:
        """
        Generate a recommendation for one portfolio

        Raises:
            ValidationError: bad contribution, dividends or currency
            NotFoundError: portfolio unknown to the collaborator
            RateNotFoundError: a holding currency has no stored rate
            AllProvidersFailedError: prices unavailable during valuation
        """
        contribution, dividends, base_currency = self._validate(request)
        correlation_id = str(uuid.uuid4())
        total_investable = contribution + dividends

        logger.info(
            "Generating recommendation user=%s portfolio=%s total=%s %s correlation_id=%s",
            user_id, request.portfolio_id, total_investable, base_currency, correlation_id,
        )
        self._emit(AuditEventType.CALC_STARTED, correlation_id, user_id, {
            "portfolio_id": request.portfolio_id,
            "contribution": str(contribution),
            "dividends": str(dividends),
            "base_currency": base_currency,
            "criteria_version_id": request.criteria_version_id,
        })

        try:
            recommendation, summary, freshness = await self._run(
                user_id, request, contribution, dividends, base_currency, correlation_id
            )
        except Exception as exc:
            code = exc.code if isinstance(exc, AdvisorError) else ErrorCode.INTERNAL_ERROR
            logger.error(
                "Recommendation failed user=%s correlation_id=%s code=%s: %s",
                user_id, correlation_id, code, exc,
            )
            self._emit(AuditEventType.CALC_COMPLETED, correlation_id, user_id, {
                "status": "failed",
                "error_code": code,
                "error": str(exc),
            })
            raise

        self._emit(AuditEventType.CALC_COMPLETED, correlation_id, user_id, {
            "status": "succeeded",
            "recommendation_id": recommendation.id,
        })

        if self.cache is not None:
            await self.cache.set(user_id, recommendation, summary, freshness)

        logger.info(
            "Recommendation %s ready: %d items, %s recommended",
            recommendation.id, len(recommendation.items), recommendation.total_recommended,
        )
        return recommendation

    async def get_cached(self, user_id: str) -> CacheGetResult:
        if self.cache is None:
            return CacheGetResult(data=None, from_cache=False)
        return await self.cache.get(user_id)

    # ------------------------------------------------------------------
    # PIPELINE
    # ------------------------------------------------------------------

    async def _run(
        self,
        user_id: str,
        request: GenerateRequest,
        contribution: Decimal,
        dividends: Decimal,
        base_currency: str,
        correlation_id: str,
    ):
        valuation = await self._load_valuation(user_id, request.portfolio_id, base_currency, correlation_id)
        constraints = await self._load_constraints(user_id, request.portfolio_id)

        inputs, snapshot, rates_as_of = await self._to_base_currency(
            valuation, base_currency, correlation_id
        )
        scores, scores_correlation_id = await self._score(request, inputs)

        self._emit(AuditEventType.RECS_INPUTS_CAPTURED, correlation_id, user_id, {
            "asset_count": len(inputs),
            "criteria_version_id": request.criteria_version_id,
            "scores_correlation_id": scores_correlation_id,
            "exchange_rates": [entry.pair for entry in snapshot],
            "constraints": [c.subclass_id for c in constraints],
        })

        gaps = calculate_gaps(inputs)
        candidates = [
            AllocationCandidate(
                asset_id=i.asset_id,
                symbol=i.symbol,
                score=scores.get(i.asset_id),
                current_allocation_pct=i.current_allocation_pct,
                gap=gaps.get(i.asset_id),
                subclass_id=i.subclass_id,
            )
            for i in inputs
        ]
        total_investable = contribution + dividends
        outcome = AllocationEngine(constraints).allocate(candidates, total_investable)

        items = self._build_items(candidates, outcome)
        generated_at = self._clock()
        dropped = sorted(
            a.asset_id for a in outcome.amounts.values()
            if a.dropped_reason is not None and a.amount == ZERO
        )
        recommendation = Recommendation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            portfolio_id=request.portfolio_id,
            correlation_id=correlation_id,
            contribution=contribution,
            dividends=dividends,
            total_investable=total_investable,
            base_currency=base_currency,
            generated_at=generated_at,
            expires_at=generated_at + self.ttl,
            items=items,
            audit_trail=AuditTrail(
                criteria_version_id=request.criteria_version_id,
                scores_correlation_id=scores_correlation_id,
                exchange_rates_snapshot=snapshot,
                prices_as_of=valuation.prices_as_of,
                rates_as_of=rates_as_of,
                dropped_assets=dropped,
                warnings=list(outcome.warnings),
            ),
        )

        self._emit(AuditEventType.RECS_COMPUTED, correlation_id, user_id, {
            "recommendation_id": recommendation.id,
            "total_investable": str(total_investable),
            "total_recommended": str(recommendation.total_recommended),
            "is_balanced": outcome.is_balanced,
            "iterations": outcome.iterations,
            "dropped_assets": dropped,
        })

        summary = self._summarize(inputs, base_currency)
        freshness = DataFreshness(
            prices_as_of=valuation.prices_as_of,
            rates_as_of=rates_as_of,
            criteria_version=request.criteria_version_id,
        )
        return recommendation, summary, freshness

    async def _load_valuation(
        self, user_id: str, portfolio_id: str, base_currency: str, correlation_id: str
    ) -> PortfolioValuation:
        if isinstance(self.portfolio, SupportsValuation):
            return await self.portfolio.load_valuation(
                user_id, portfolio_id, base_currency, correlation_id
            )
        inputs = await self.portfolio.load_allocation_inputs(user_id, portfolio_id)
        return PortfolioValuation(inputs=list(inputs))

    async def _load_constraints(self, user_id: str, portfolio_id: str) -> List[SubclassConstraint]:
        if isinstance(self.portfolio, SupportsConstraints):
            return list(await self.portfolio.load_constraints(user_id, portfolio_id))
        return []

    async def _to_base_currency(
        self,
        valuation: PortfolioValuation,
        base_currency: str,
        correlation_id: str,
    ):
        """
        Convert foreign-currency values and recompute allocation percentages.

        Inputs already in the base currency pass through untouched. When
        nothing needs converting the percentages are kept as supplied.
        """
        snapshot: Dict[str, RateSnapshotEntry] = {
            entry.pair: entry for entry in valuation.rate_snapshot
        }
        rates_as_of = valuation.rates_as_of
        foreign = [
            i for i in valuation.inputs
            if i.value_currency and i.value_currency.upper() != base_currency
        ]
        if not foreign:
            return list(valuation.inputs), list(snapshot.values()), rates_as_of

        values: Dict[str, Decimal] = {i.asset_id: i.current_value_base for i in valuation.inputs}
        for item in foreign:
            converted = await self.converter.convert(
                item.current_value_base, item.value_currency, base_currency,
                correlation_id=correlation_id,
            )
            values[item.asset_id] = converted.value
            snapshot.setdefault(
                f"{converted.from_currency}/{converted.to_currency}",
                CurrencyConverter.snapshot_entry(converted),
            )
            if converted.rate_fetched_at is not None and (
                rates_as_of is None or converted.rate_fetched_at < rates_as_of
            ):
                rates_as_of = converted.rate_fetched_at

        total = sum(values.values(), ZERO)
        inputs = [
            AssetAllocationInput(
                asset_id=i.asset_id,
                symbol=i.symbol,
                current_value_base=values[i.asset_id],
                current_allocation_pct=(
                    round_pct(values[i.asset_id] / total * HUNDRED) if total > ZERO else ZERO
                ),
                target_min=i.target_min,
                target_max=i.target_max,
                score=i.score,
                subclass_id=i.subclass_id,
                class_name=i.class_name,
                value_currency=base_currency,
            )
            for i in valuation.inputs
        ]
        return inputs, list(snapshot.values()), rates_as_of

    async def _score(
        self,
        request: GenerateRequest,
        inputs: List[AssetAllocationInput],
    ):
        scores: Dict[str, Optional[Decimal]] = {i.asset_id: i.score for i in inputs}
        if self.scoring is None or not inputs:
            return scores, None

        rows = await self.scoring.score_assets(request.criteria_version_id, inputs)
        correlation_ids = sorted({row.correlation_id for row in rows if row.correlation_id})
        if len(correlation_ids) > 1:
            logger.warning("Scores came from %d scoring runs: %s", len(correlation_ids), correlation_ids)
        for row in rows:
            if row.asset_id in scores:
                scores[row.asset_id] = row.score
        return scores, (correlation_ids[0] if correlation_ids else None)

    # ------------------------------------------------------------------
    # ASSEMBLY
    # ------------------------------------------------------------------

    @staticmethod
    def _build_items(
        candidates: List[AllocationCandidate],
        outcome: AllocationOutcome,
    ) -> List[RecommendationItem]:
        items = []
        for c in candidates:
            allocated = outcome.amounts[c.asset_id]
            items.append(RecommendationItem(
                asset_id=c.asset_id,
                symbol=c.symbol,
                score=c.score,
                current_allocation_pct=c.current_allocation_pct,
                target_allocation_pct=c.gap.target_midpoint if c.gap else None,
                allocation_gap_pct=c.gap.allocation_gap_pct if c.gap else None,
                recommended_amount=allocated.amount,
                is_over_allocated=c.gap.is_over_allocated if c.gap else False,
                weighted_priority=allocated.weighted_priority,
                redistributed_from=allocated.redistributed_from,
                dropped_reason=allocated.dropped_reason,
            ))
        items.sort(key=lambda i: (
            -i.recommended_amount,
            -(i.score if i.score is not None else ZERO),
            i.symbol,
        ))
        return items

    @staticmethod
    def _summarize(inputs: List[AssetAllocationInput], base_currency: str) -> PortfolioSummary:
        total = sum((i.current_value_base for i in inputs), ZERO)
        by_class: Dict[str, Decimal] = {}
        for i in inputs:
            key = i.class_name or UNCLASSIFIED
            by_class[key] = by_class.get(key, ZERO) + i.current_allocation_pct
        return PortfolioSummary(
            total_value=total,
            base_currency=base_currency,
            asset_count=len(inputs),
            allocation_by_class={k: round_pct(v) for k, v in sorted(by_class.items())},
        )

    @staticmethod
    def _validate(request: GenerateRequest):
        try:
            contribution = to_decimal(request.contribution, "contribution")
            dividends = to_decimal(request.dividends, "dividends")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if contribution <= ZERO:
            raise ValidationError("Contribution must be positive", details={"field": "contribution"})
        if dividends < ZERO:
            raise ValidationError("Dividends cannot be negative", details={"field": "dividends"})
        for name, value in (("contribution", contribution), ("dividends", dividends)):
            if decimal_places(value) > 2:
                raise ValidationError(
                    f"{name.capitalize()} cannot have more than 2 decimal places",
                    details={"field": name},
                )
        if not request.portfolio_id:
            raise ValidationError("Portfolio id is required", details={"field": "portfolio_id"})

        base_currency = (request.base_currency or "").strip().upper()
        if not _CURRENCY_RE.match(base_currency):
            raise ValidationError(
                f"Invalid base currency: {request.base_currency!r}",
                details={"field": "base_currency"},
            )
        return contribution, dividends, base_currency

    def _emit(self, event_type: str, correlation_id: str, user_id: str, payload: Dict[str, Any]) -> None:
        if self.audit_sink is None:
            return
        self.audit_sink.emit(AuditEvent(
            event_type=event_type,
            correlation_id=correlation_id,
            payload=payload,
            user_id=user_id,
        ))
