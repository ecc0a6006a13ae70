import asyncio
from decimal import Decimal

import pytest

from advisor.core.errors import NotFoundError
from advisor.domain.models import GenerateRequest, UserBatchRequest
from advisor.domain.services.batch_recommendation_service import BatchRecommendationService


class FakeRecommendation:
    def __init__(self, rec_id):
        self.id = rec_id


class FakeRecommendationService:
    """Mock RecommendationService tracking concurrency"""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.active = 0
        self.peak = 0

    async def generate(self, user_id, request):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            if user_id in self.failures:
                raise self.failures[user_id]
            return FakeRecommendation(f"rec-{user_id}")
        finally:
            self.active -= 1


def batch_request(user_id):
    return UserBatchRequest(
        user_id=user_id,
        request=GenerateRequest(
            portfolio_id="pf-1",
            contribution=Decimal("100"),
            dividends=Decimal("0"),
            base_currency="USD",
        ),
    )


class TestBatchRecommendationService:
    async def test_all_users_succeed(self):
        service = BatchRecommendationService(FakeRecommendationService())
        result = await service.generate_for_users([batch_request("u1"), batch_request("u2")])

        assert result.users_processed == 2
        assert result.users_succeeded == 2
        assert result.users_failed == 0
        assert [r.recommendation_id for r in result.results] == ["rec-u1", "rec-u2"]

    async def test_failures_are_isolated(self):
        recs = FakeRecommendationService(failures={
            "u2": NotFoundError("Portfolio pf-1 not found"),
            "u3": RuntimeError("boom"),
        })
        service = BatchRecommendationService(recs)
        result = await service.generate_for_users(
            [batch_request("u1"), batch_request("u2"), batch_request("u3")]
        )

        assert result.users_succeeded == 1
        assert result.users_failed == 2
        by_user = {r.user_id: r for r in result.results}
        assert by_user["u1"].success is True
        assert by_user["u2"].error_code == "NOT_FOUND"
        assert by_user["u2"].error_message == "Portfolio pf-1 not found"
        assert by_user["u3"].error_code == "INTERNAL_ERROR"
        assert by_user["u3"].error_message == "boom"

    async def test_concurrency_is_bounded(self):
        recs = FakeRecommendationService()
        service = BatchRecommendationService(recs, max_concurrency=5)
        await service.generate_for_users(
            [batch_request(f"u{i}") for i in range(10)], max_concurrency=2
        )
        assert recs.peak == 2

    async def test_empty_batch(self):
        result = await BatchRecommendationService(FakeRecommendationService()).generate_for_users([])
        assert result.users_processed == 0
        assert result.results == []

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            BatchRecommendationService(FakeRecommendationService(), max_concurrency=0)
