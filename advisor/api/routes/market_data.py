"""
Market Data routes - currency conversion and stored rate refresh.
"""

from typing import List

from fastapi import APIRouter, Depends

from advisor.api.container import ServiceContainer
from advisor.api.dependencies import get_container
from advisor.core.errors import InternalError
from advisor.domain.schemas.market_data import (
    ConversionSchema,
    ConvertRequest,
    RateRefreshRequest,
    StoredRateSchema,
)

router = APIRouter()


@router.post("/convert", response_model=ConversionSchema)
async def convert_currency(
    payload: ConvertRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Convert a value with stored exchange rates."""
    result = await container.converter.convert(
        payload.value,
        payload.from_currency,
        payload.to_currency,
        rate_date=payload.rate_date,
    )
    return ConversionSchema.model_validate(result)


@router.post("/rates/refresh", response_model=List[StoredRateSchema])
async def refresh_rates(
    payload: RateRefreshRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Fetch rates through the provider chain and store them."""
    if container.rate_refresh is None:
        raise InternalError("Rate refresh is not configured")
    stored = await container.rate_refresh.refresh(
        payload.base, payload.targets, skip_cache=payload.skip_cache
    )
    return [StoredRateSchema.model_validate(r) for r in stored]
