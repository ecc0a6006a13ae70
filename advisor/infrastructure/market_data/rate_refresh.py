# advisor/infrastructure/market_data/rate_refresh.py

import logging
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence

from advisor.domain.models import ExchangeRate
from advisor.infrastructure.events.audit_sink import AuditEvent, AuditEventSink, AuditEventType
from advisor.infrastructure.market_data.provider_chain import ExchangeRateService
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)


class ExchangeRateWriter(Protocol):
    async def add_rates(self, rates: Sequence[ExchangeRate]) -> List[ExchangeRate]:
        ...


class RateRefreshService:
    """
    Pull the latest rates through the rates chain and store them.

    Stored rates are what the currency converter reads; this is the only
    path from providers into the exchange_rates table. A refresh goes to the
    providers by default. When it is allowed to read the chain cache, cached
    answers are not written again. A failed write drops the chain cache entry
    so the next refresh fetches and stores again.
    """

    def __init__(
        self,
        rates: ExchangeRateService,
        store: ExchangeRateWriter,
        audit_sink: Optional[AuditEventSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.rates = rates
        self.store = store
        self.audit_sink = audit_sink
        self._clock = clock

    async def refresh(
        self, base: str, targets: Sequence[str], skip_cache: bool = True
    ) -> List[ExchangeRate]:
        base = base.strip().upper()
        result = await self.rates.get_rates(base, targets, skip_cache=skip_cache)
        if result.from_cache:
            logger.info(
                "Rates %s->%s served from cache (stale=%s); nothing to store",
                base, ",".join(targets), result.freshness.is_stale,
            )
            return []

        records = [
            ExchangeRate(
                base=item.value.base,
                target=target,
                rate=rate,
                rate_date=item.value.rate_date,
                fetched_at=item.fetched_at,
                source=item.source,
            )
            for item in result.data
            for target, rate in sorted(item.value.rates.items())
            if target != item.value.base
        ]
        try:
            stored = await self.store.add_rates(records)
        except Exception:
            logger.error("Failed to store %s rates from %s; dropping cached answer", base, result.provider)
            await self.rates.invalidate_rates(base, targets)
            raise
        logger.info("Stored %d %s rates from %s", len(stored), base, result.provider)

        if self.audit_sink is not None:
            self.audit_sink.emit(AuditEvent(
                event_type=AuditEventType.RATES_REFRESHED,
                correlation_id=None,
                payload={
                    "base": base,
                    "provider": result.provider,
                    "pairs": [f"{r.base}/{r.target}" for r in stored],
                    "fetched_at": result.freshness.fetched_at.isoformat(),
                },
            ))
        return stored
