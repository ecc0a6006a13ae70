# advisor/domain/services/batch_recommendation_service.py

import asyncio
import logging
from typing import List, Optional, Sequence

from advisor.core.errors import AdvisorError, ErrorCode
from advisor.domain.models import BatchRecommendationResult, BatchUserResult, UserBatchRequest
from advisor.domain.services.recommendation_service import RecommendationService

logger = logging.getLogger(__name__)


class BatchRecommendationService:
    """Run recommendation generation for many users with bounded concurrency."""

    def __init__(self, recommendations: RecommendationService, max_concurrency: int = 5):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.recommendations = recommendations
        self.max_concurrency = max_concurrency

    async def generate_for_users(
        self,
        requests: Sequence[UserBatchRequest],
        max_concurrency: Optional[int] = None,
    ) -> BatchRecommendationResult:
        limit = max_concurrency or self.max_concurrency
        semaphore = asyncio.Semaphore(limit)
        logger.info("Batch generation for %d users (concurrency=%d)", len(requests), limit)

        async def run_one(item: UserBatchRequest) -> BatchUserResult:
            async with semaphore:
                try:
                    recommendation = await self.recommendations.generate(item.user_id, item.request)
                except AdvisorError as exc:
                    logger.warning("Batch: user %s failed with %s: %s", item.user_id, exc.code, exc.message)
                    return BatchUserResult(
                        user_id=item.user_id,
                        success=False,
                        error_code=exc.code,
                        error_message=exc.message,
                    )
                except Exception as exc:
                    logger.exception("Batch: user %s failed unexpectedly", item.user_id)
                    return BatchUserResult(
                        user_id=item.user_id,
                        success=False,
                        error_code=ErrorCode.INTERNAL_ERROR,
                        error_message=str(exc),
                    )
                return BatchUserResult(
                    user_id=item.user_id,
                    success=True,
                    recommendation_id=recommendation.id,
                )

        results: List[BatchUserResult] = list(
            await asyncio.gather(*(run_one(item) for item in requests))
        )
        succeeded = sum(1 for r in results if r.success)
        logger.info("Batch done: %d succeeded, %d failed", succeeded, len(results) - succeeded)
        return BatchRecommendationResult(
            users_processed=len(results),
            users_succeeded=succeeded,
            users_failed=len(results) - succeeded,
            results=results,
        )
