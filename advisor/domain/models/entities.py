"""
Domain Models - Market Data Entities
Pure domain objects with no infrastructure dependencies
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class DataType(str, Enum):
    """Kind of data served by a provider chain"""
    PRICES = "prices"
    RATES = "rates"
    FUNDAMENTALS = "fundamentals"


class CircuitState(str, Enum):
    """Circuit breaker state"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """A fetched or cached datum with provenance"""
    value: T
    source: str
    fetched_at: datetime
    is_stale: bool = False

    def __post_init__(self):
        if not self.source:
            raise ValueError("ProviderResult source cannot be empty")

    def as_stale(self) -> "ProviderResult[T]":
        return replace(self, is_stale=True)


@dataclass(frozen=True)
class PriceQuote:
    """Latest close for one symbol"""
    symbol: str
    close: Decimal
    currency: str
    price_date: date
    open: Optional[Decimal] = None
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    volume: Optional[int] = None

    def __post_init__(self):
        if not self.symbol:
            raise ValueError("Price symbol cannot be empty")
        if self.close <= Decimal('0'):
            raise ValueError(f"Close price must be positive for {self.symbol}")


@dataclass(frozen=True)
class RateSet:
    """One provider answer: rates from `base` to each target"""
    base: str
    rates: Dict[str, Decimal]
    rate_date: date

    def __post_init__(self):
        for target, rate in self.rates.items():
            if rate <= Decimal('0'):
                raise ValueError(f"Rate {self.base}->{target} must be positive")


@dataclass(frozen=True)
class Fundamentals:
    """Fundamental ratios for one symbol"""
    symbol: str
    data_date: date
    pe_ratio: Optional[Decimal] = None
    pb_ratio: Optional[Decimal] = None
    dividend_yield: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    revenue: Optional[Decimal] = None
    earnings: Optional[Decimal] = None
    sector: Optional[str] = None
    industry: Optional[str] = None


@dataclass(frozen=True)
class FreshnessInfo:
    source: str
    fetched_at: datetime
    is_stale: bool
    stale_since: Optional[datetime] = None


@dataclass(frozen=True)
class ChainResult(Generic[T]):
    """Outcome of a provider chain fetch"""
    data: List[ProviderResult[T]]
    from_cache: bool
    provider: str
    freshness: FreshnessInfo

    def values(self) -> List[T]:
        return [item.value for item in self.data]


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only view of one provider's breaker"""
    provider: str
    state: CircuitState
    failure_count: int
    last_failure_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None


@dataclass(frozen=True)
class ExchangeRate:
    """Stored exchange rate - Immutable; a new fetch creates a new record"""
    base: str
    target: str
    rate: Decimal
    rate_date: date
    fetched_at: datetime
    source: str

    def __post_init__(self):
        if self.base == self.target:
            raise ValueError("Exchange rate base and target must differ")
        if self.rate <= Decimal('0'):
            raise ValueError(f"Exchange rate {self.base}->{self.target} must be positive")
        if not self.source:
            raise ValueError("Exchange rate source cannot be empty")

    def is_stale(self, now: datetime, threshold: timedelta = timedelta(hours=24)) -> bool:
        return now - self.fetched_at > threshold


@dataclass(frozen=True)
class ConversionResult:
    value: Decimal
    from_currency: str
    to_currency: str
    rate: Decimal
    rate_date: Optional[date]
    source: str
    is_stale_rate: bool = False
    inverted: bool = False
    rate_fetched_at: Optional[datetime] = None


@dataclass(frozen=True)
class RateSnapshotEntry:
    """Rate actually used during a calculation (audit)"""
    pair: str
    rate: Decimal
    rate_date: Optional[date]
    source: str
    is_stale_rate: bool = False


@dataclass(frozen=True)
class Holding:
    """Raw position supplied by a portfolio collaborator for valuation"""
    asset_id: str
    symbol: str
    quantity: Decimal
    target_min: Optional[Decimal] = None
    target_max: Optional[Decimal] = None
    subclass_id: Optional[str] = None
    class_name: Optional[str] = None
