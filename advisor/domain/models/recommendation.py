"""
Domain Models - Recommendation Entities
Inputs, intermediate results and the immutable Recommendation itself
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from .entities import RateSnapshotEntry


@dataclass(frozen=True)
class AssetAllocationInput:
    """
    Per-asset allocation state - read-only to the engine

    current_value_base is expressed in value_currency when given,
    otherwise in the request's base currency.
    """
    asset_id: str
    symbol: str
    current_value_base: Decimal
    current_allocation_pct: Decimal
    target_min: Optional[Decimal] = None
    target_max: Optional[Decimal] = None
    score: Optional[Decimal] = None
    subclass_id: Optional[str] = None
    class_name: Optional[str] = None
    value_currency: Optional[str] = None

    def __post_init__(self):
        if not self.asset_id:
            raise ValueError("Asset id cannot be empty")
        if self.current_value_base < Decimal('0'):
            raise ValueError(f"Current value cannot be negative for {self.symbol}")
        if self.score is not None and not (Decimal('0') <= self.score <= Decimal('100')):
            raise ValueError(f"Score must be between 0 and 100 for {self.symbol}")
        if (
            self.target_min is not None
            and self.target_max is not None
            and self.target_min > self.target_max
        ):
            raise ValueError(f"Target min exceeds target max for {self.symbol}")

    @property
    def has_target(self) -> bool:
        return self.target_min is not None and self.target_max is not None


@dataclass(frozen=True)
class AssetScore:
    """Row returned by the scoring collaborator"""
    asset_id: str
    score: Decimal
    correlation_id: str


@dataclass(frozen=True)
class SubclassConstraint:
    """Per-subclass minimum allocation value and maximum funded asset count"""
    subclass_id: str
    min_allocation_value: Optional[Decimal] = None
    max_assets: Optional[int] = None

    def __post_init__(self):
        if self.min_allocation_value is not None and self.min_allocation_value < Decimal('0'):
            raise ValueError("Minimum allocation value cannot be negative")
        if self.max_assets is not None and self.max_assets < 1:
            raise ValueError("Max assets must be at least 1")


@dataclass(frozen=True)
class AllocationGapResult:
    asset_id: str
    target_midpoint: Decimal
    allocation_gap_pct: Decimal
    is_over_allocated: bool


@dataclass(frozen=True)
class AllocationCandidate:
    """Engine input: one asset with its gap and score already merged"""
    asset_id: str
    symbol: str
    score: Optional[Decimal]
    current_allocation_pct: Decimal
    gap: Optional[AllocationGapResult]
    subclass_id: Optional[str] = None

    @property
    def has_target(self) -> bool:
        return self.gap is not None


@dataclass(frozen=True)
class AllocatedAmount:
    asset_id: str
    weighted_priority: Decimal
    amount: Decimal
    redistributed_from: Decimal = Decimal('0')
    dropped_reason: Optional[str] = None


@dataclass(frozen=True)
class AllocationOutcome:
    """Engine output before it is turned into recommendation items"""
    amounts: Dict[str, AllocatedAmount]
    total_priority: Decimal
    is_balanced: bool
    iterations: int
    warnings: List[str] = field(default_factory=list)

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.amount for a in self.amounts.values()), Decimal('0'))


@dataclass(frozen=True)
class RecommendationItem:
    asset_id: str
    symbol: str
    score: Optional[Decimal]
    current_allocation_pct: Decimal
    target_allocation_pct: Optional[Decimal]
    allocation_gap_pct: Optional[Decimal]
    recommended_amount: Decimal
    is_over_allocated: bool
    weighted_priority: Decimal = Decimal('0')
    redistributed_from: Decimal = Decimal('0')
    dropped_reason: Optional[str] = None


@dataclass(frozen=True)
class AuditTrail:
    criteria_version_id: Optional[str]
    scores_correlation_id: Optional[str]
    exchange_rates_snapshot: List[RateSnapshotEntry] = field(default_factory=list)
    prices_as_of: Optional[datetime] = None
    rates_as_of: Optional[datetime] = None
    dropped_assets: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class GenerateRequest:
    portfolio_id: str
    contribution: Decimal
    dividends: Decimal
    base_currency: str
    criteria_version_id: Optional[str] = None


@dataclass(frozen=True)
class Recommendation:
    """
    Recommendation - Immutable

    Superseded by the next generation for the same user, never mutated.
    """
    id: str
    user_id: str
    portfolio_id: str
    correlation_id: str
    contribution: Decimal
    dividends: Decimal
    total_investable: Decimal
    base_currency: str
    generated_at: datetime
    expires_at: datetime
    items: List[RecommendationItem]
    audit_trail: AuditTrail

    @property
    def total_recommended(self) -> Decimal:
        return sum((i.recommended_amount for i in self.items), Decimal('0'))

    @property
    def is_balanced(self) -> bool:
        return all(i.recommended_amount == Decimal('0') for i in self.items)


@dataclass(frozen=True)
class PortfolioSummary:
    total_value: Decimal
    base_currency: str
    asset_count: int
    allocation_by_class: Dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class DataFreshness:
    prices_as_of: Optional[datetime] = None
    rates_as_of: Optional[datetime] = None
    criteria_version: Optional[str] = None


@dataclass(frozen=True)
class CachedRecommendation:
    recommendation: Recommendation
    cached_at: datetime
    portfolio_summary: Optional[PortfolioSummary] = None
    data_freshness: Optional[DataFreshness] = None


@dataclass(frozen=True)
class CacheGetResult:
    data: Optional[CachedRecommendation]
    from_cache: bool


@dataclass(frozen=True)
class UserBatchRequest:
    user_id: str
    request: GenerateRequest


@dataclass(frozen=True)
class BatchUserResult:
    user_id: str
    success: bool
    recommendation_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class BatchRecommendationResult:
    users_processed: int
    users_succeeded: int
    users_failed: int
    results: List[BatchUserResult]
