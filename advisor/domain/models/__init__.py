"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Enums
    CircuitState,
    DataType,

    # Market data
    ChainResult,
    CircuitSnapshot,
    ConversionResult,
    ExchangeRate,
    FreshnessInfo,
    Fundamentals,
    Holding,
    PriceQuote,
    ProviderResult,
    RateSet,
    RateSnapshotEntry,
)
from .recommendation import (
    AllocatedAmount,
    AllocationCandidate,
    AllocationGapResult,
    AllocationOutcome,
    AssetAllocationInput,
    AssetScore,
    AuditTrail,
    BatchRecommendationResult,
    BatchUserResult,
    CachedRecommendation,
    CacheGetResult,
    DataFreshness,
    GenerateRequest,
    PortfolioSummary,
    Recommendation,
    RecommendationItem,
    SubclassConstraint,
    UserBatchRequest,
)

__all__ = [
    # Enums
    "CircuitState",
    "DataType",

    # Market data
    "ChainResult",
    "CircuitSnapshot",
    "ConversionResult",
    "ExchangeRate",
    "FreshnessInfo",
    "Fundamentals",
    "Holding",
    "PriceQuote",
    "ProviderResult",
    "RateSet",
    "RateSnapshotEntry",

    # Recommendation
    "AllocatedAmount",
    "AllocationCandidate",
    "AllocationGapResult",
    "AllocationOutcome",
    "AssetAllocationInput",
    "AssetScore",
    "AuditTrail",
    "BatchRecommendationResult",
    "BatchUserResult",
    "CachedRecommendation",
    "CacheGetResult",
    "DataFreshness",
    "GenerateRequest",
    "PortfolioSummary",
    "Recommendation",
    "RecommendationItem",
    "SubclassConstraint",
    "UserBatchRequest",
]
