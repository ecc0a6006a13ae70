"""
Recommendation API Routes
Generate a recommendation for new money and read back the latest one
"""

import logging

from fastapi import APIRouter, Depends

from advisor.api.container import ServiceContainer
from advisor.api.dependencies import get_container, get_user_id
from advisor.core.errors import NotFoundError
from advisor.domain.models import GenerateRequest
from advisor.domain.schemas.recommendation import (
    CachedRecommendationSchema,
    DataFreshnessSchema,
    GenerateRecommendationRequest,
    PortfolioSummarySchema,
    RecommendationSchema,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate", response_model=RecommendationSchema)
async def generate_recommendation(
    payload: GenerateRecommendationRequest,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Run the allocation pipeline for one portfolio."""
    recommendation = await container.recommendations.generate(
        user_id,
        GenerateRequest(
            portfolio_id=payload.portfolio_id,
            contribution=payload.contribution,
            dividends=payload.dividends,
            base_currency=payload.base_currency,
            criteria_version_id=payload.criteria_version_id,
        ),
    )
    return RecommendationSchema.model_validate(recommendation)


@router.get("", response_model=CachedRecommendationSchema)
async def get_latest_recommendation(
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """Latest cached recommendation for the user."""
    result = await container.recommendations.get_cached(user_id)
    if result.data is None:
        raise NotFoundError(
            "No recommendation available; generate one first",
            details={"user_id": user_id},
        )

    cached = result.data
    return CachedRecommendationSchema(
        recommendation=RecommendationSchema.model_validate(cached.recommendation),
        cached_at=cached.cached_at,
        from_cache=result.from_cache,
        portfolio_summary=(
            PortfolioSummarySchema.model_validate(cached.portfolio_summary)
            if cached.portfolio_summary else None
        ),
        data_freshness=(
            DataFreshnessSchema.model_validate(cached.data_freshness)
            if cached.data_freshness else None
        ),
    )
