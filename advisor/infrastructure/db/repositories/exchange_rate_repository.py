"""
Repository for stored exchange rates
Append-only: new fetches add rows, old rows are never modified
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from advisor.domain.models import ExchangeRate
from advisor.infrastructure.db.models import ExchangeRateModel
from advisor.utils.time import ensure_utc


class ExchangeRateRepository:
    """Stored exchange rates"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_latest(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        """
        Most recent rate for base->target.

        Args:
            base: Source currency
            target: Destination currency
            as_of: Only consider rates dated on or before this day

        Returns:
            ExchangeRate or None if nothing stored
        """
        stmt = select(ExchangeRateModel).where(
            ExchangeRateModel.base_currency == base,
            ExchangeRateModel.target_currency == target,
        )
        if as_of is not None:
            stmt = stmt.where(ExchangeRateModel.rate_date <= as_of)
        stmt = stmt.order_by(
            ExchangeRateModel.rate_date.desc(),
            ExchangeRateModel.fetched_at.desc(),
            ExchangeRateModel.id.desc(),
        ).limit(1)

        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def add_rates(self, rates: Sequence[ExchangeRate]) -> List[ExchangeRate]:
        for rate in rates:
            self.session.add(
                ExchangeRateModel(
                    base_currency=rate.base,
                    target_currency=rate.target,
                    rate=rate.rate,
                    rate_date=rate.rate_date,
                    fetched_at=rate.fetched_at,
                    source=rate.source,
                )
            )
        await self.session.flush()
        return list(rates)

    @staticmethod
    def _to_domain(model: ExchangeRateModel) -> ExchangeRate:
        return ExchangeRate(
            base=model.base_currency,
            target=model.target_currency,
            rate=Decimal(str(model.rate)),
            rate_date=model.rate_date,
            fetched_at=ensure_utc(model.fetched_at),
            source=model.source,
        )


class SessionExchangeRateStore:
    """
    Exchange rate store that opens a short-lived session per call.

    Long-lived services (converter, rate refresh) hold this instead of a
    repository bound to one request's session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_latest(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        async with self.session_factory() as session:
            return await ExchangeRateRepository(session).get_latest(base, target, as_of)

    async def add_rates(self, rates: Sequence[ExchangeRate]) -> List[ExchangeRate]:
        async with self.session_factory() as session:
            try:
                stored = await ExchangeRateRepository(session).add_rates(rates)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return stored
