from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateRecommendationRequest(BaseModel):
    portfolio_id: str = Field(..., min_length=1)
    contribution: Decimal
    dividends: Decimal = Decimal("0")
    base_currency: str = "USD"
    criteria_version_id: Optional[str] = None


class RecommendationItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    asset_id: str
    symbol: str
    score: Optional[Decimal]
    current_allocation_pct: Decimal
    target_allocation_pct: Optional[Decimal]
    allocation_gap_pct: Optional[Decimal]
    recommended_amount: Decimal
    is_over_allocated: bool
    weighted_priority: Decimal
    redistributed_from: Decimal
    dropped_reason: Optional[str] = None


class RateSnapshotSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pair: str
    rate: Decimal
    rate_date: Optional[date]
    source: str
    is_stale_rate: bool


class AuditTrailSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    criteria_version_id: Optional[str]
    scores_correlation_id: Optional[str]
    exchange_rates_snapshot: List[RateSnapshotSchema]
    prices_as_of: Optional[datetime]
    rates_as_of: Optional[datetime]
    dropped_assets: List[str]
    warnings: List[str]


class RecommendationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    portfolio_id: str
    correlation_id: str
    contribution: Decimal
    dividends: Decimal
    total_investable: Decimal
    total_recommended: Decimal
    is_balanced: bool
    base_currency: str
    generated_at: datetime
    expires_at: datetime
    items: List[RecommendationItemSchema]
    audit_trail: AuditTrailSchema


class PortfolioSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_value: Decimal
    base_currency: str
    asset_count: int
    allocation_by_class: Dict[str, Decimal]


class DataFreshnessSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    prices_as_of: Optional[datetime]
    rates_as_of: Optional[datetime]
    criteria_version: Optional[str]


class CachedRecommendationSchema(BaseModel):
    recommendation: RecommendationSchema
    cached_at: datetime
    from_cache: bool
    portfolio_summary: Optional[PortfolioSummarySchema] = None
    data_freshness: Optional[DataFreshnessSchema] = None
