from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from advisor.domain.models import CircuitState


class ConvertRequest(BaseModel):
    value: Decimal
    from_currency: str
    to_currency: str
    rate_date: Optional[date] = None


class ConversionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    value: Decimal
    from_currency: str
    to_currency: str
    rate: Decimal
    rate_date: Optional[date]
    source: str
    is_stale_rate: bool
    inverted: bool


class RateRefreshRequest(BaseModel):
    base: str
    targets: List[str]
    skip_cache: bool = True


class StoredRateSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base: str
    target: str
    rate: Decimal
    rate_date: date
    fetched_at: datetime
    source: str


class CircuitStateSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    state: CircuitState
    failure_count: int
    last_failure_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None


class ProvidersHealthSchema(BaseModel):
    status: str
    providers: List[CircuitStateSchema]
