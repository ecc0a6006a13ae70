"""
CURRENCY CONVERTER
Convert monetary values using previously stored exchange rates

RESPONSIBILITIES:
- Same-currency passthrough (rate 1)
- Direct stored rate, else inverted opposite-direction rate
- Flag rates older than the staleness threshold
- Emit an audit event per conversion

RULES:
❌ Never calls a live provider (rates come from the store only)
❌ No float arithmetic
✅ Round to 4 decimal places once, at the end
✅ Stale rate is informational, still used
✅ Deterministic and replayable from stored rates
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from advisor.core.errors import RateNotFoundError, ValidationError
from advisor.domain.models import ConversionResult, ExchangeRate, RateSnapshotEntry
from advisor.infrastructure.events.audit_sink import AuditEvent, AuditEventSink, AuditEventType
from advisor.utils.decimal_utils import round_pct, to_decimal
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
SAME_CURRENCY_SOURCE = "same-currency"


class ExchangeRateStore(Protocol):
    """Read side of the exchange rate repository"""

    async def get_latest(
        self, base: str, target: str, as_of: Optional[date] = None
    ) -> Optional[ExchangeRate]:
        ...


@dataclass(frozen=True)
class _ResolvedRate:
    rate: Decimal
    rate_date: Optional[date]
    source: str
    fetched_at: Optional[datetime]
    inverted: bool


class CurrencyConverter:
    """
    Currency Converter
    Reads rates from an ExchangeRateStore only
    """

    def __init__(
        self,
        rates: ExchangeRateStore,
        audit_sink: Optional[AuditEventSink] = None,
        supported_currencies: Optional[Sequence[str]] = None,
        stale_after: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize currency converter

        Args:
            rates: Stored exchange rates
            audit_sink: Where CURRENCY_CONVERTED events go (optional)
            supported_currencies: Allowed ISO codes; None allows any 3-letter code
            stale_after: Age after which a rate is flagged stale
            clock: Injectable time source
        """
        self.rates = rates
        self.audit_sink = audit_sink
        self.supported_currencies = (
            frozenset(c.upper() for c in supported_currencies) if supported_currencies else None
        )
        self.stale_after = stale_after
        self._clock = clock

    async def convert(
        self,
        value: Any,
        from_currency: str,
        to_currency: str,
        rate_date: Optional[date] = None,
        correlation_id: Optional[str] = None,
    ) -> ConversionResult:
        """
        Convert value between currencies

        Args:
            value: Amount (str/int/Decimal), must be non-negative
            from_currency: Source ISO code
            to_currency: Target ISO code
            rate_date: Use the latest rate dated on or before this day
            correlation_id: Links the audit event to a calculation run

        Returns:
            ConversionResult with value rounded to 4 dp

        Raises:
            ValidationError: bad amount or currency code
            RateNotFoundError: no stored rate in either direction
        """
        amount = self._parse_amount(value)
        src = self._parse_currency(from_currency, "from_currency")
        dst = self._parse_currency(to_currency, "to_currency")

        resolved = await self._resolve(src, dst, rate_date)
        return self._finish(amount, src, dst, resolved, correlation_id)

    async def convert_batch(
        self,
        items: Sequence[Tuple[Any, str]],
        to_currency: str,
        rate_date: Optional[date] = None,
        correlation_id: Optional[str] = None,
    ) -> List[ConversionResult]:
        """Convert (value, from_currency) pairs, looking each pair's rate up once."""
        dst = self._parse_currency(to_currency, "to_currency")
        resolved_by_pair: Dict[str, _ResolvedRate] = {}
        results = []
        for value, from_currency in items:
            amount = self._parse_amount(value)
            src = self._parse_currency(from_currency, "from_currency")
            resolved = resolved_by_pair.get(src)
            if resolved is None:
                resolved = await self._resolve(src, dst, rate_date)
                resolved_by_pair[src] = resolved
            results.append(self._finish(amount, src, dst, resolved, correlation_id))
        return results

    @staticmethod
    def snapshot_entry(result: ConversionResult) -> RateSnapshotEntry:
        return RateSnapshotEntry(
            pair=f"{result.from_currency}/{result.to_currency}",
            rate=result.rate,
            rate_date=result.rate_date,
            source=result.source,
            is_stale_rate=result.is_stale_rate,
        )

    # ------------------------------------------------------------------

    async def _resolve(self, src: str, dst: str, rate_date: Optional[date]) -> _ResolvedRate:
        if src == dst:
            return _ResolvedRate(Decimal("1"), None, SAME_CURRENCY_SOURCE, None, False)

        direct = await self.rates.get_latest(src, dst, rate_date)
        if direct is not None:
            return _ResolvedRate(direct.rate, direct.rate_date, direct.source, direct.fetched_at, False)

        opposite = await self.rates.get_latest(dst, src, rate_date)
        if opposite is not None:
            logger.info(
                "No stored %s->%s rate; inverting stored %s->%s rate %s from %s",
                src, dst, dst, src, opposite.rate, opposite.source,
            )
            return _ResolvedRate(
                Decimal("1") / opposite.rate,
                opposite.rate_date,
                opposite.source,
                opposite.fetched_at,
                True,
            )

        raise RateNotFoundError(src, dst, rate_date.isoformat() if rate_date else None)

    def _finish(
        self,
        amount: Decimal,
        src: str,
        dst: str,
        resolved: _ResolvedRate,
        correlation_id: Optional[str],
    ) -> ConversionResult:
        is_stale = (
            resolved.fetched_at is not None
            and self._clock() - resolved.fetched_at > self.stale_after
        )
        if is_stale:
            logger.warning(
                "Using stale %s->%s rate fetched at %s", src, dst, resolved.fetched_at.isoformat()
            )

        result = ConversionResult(
            value=round_pct(amount * resolved.rate),
            from_currency=src,
            to_currency=dst,
            rate=resolved.rate,
            rate_date=resolved.rate_date,
            source=resolved.source,
            is_stale_rate=is_stale,
            inverted=resolved.inverted,
            rate_fetched_at=resolved.fetched_at,
        )
        self._emit(amount, result, correlation_id)
        return result

    def _emit(self, amount: Decimal, result: ConversionResult, correlation_id: Optional[str]) -> None:
        if self.audit_sink is None:
            return
        self.audit_sink.emit(
            AuditEvent(
                event_type=AuditEventType.CURRENCY_CONVERTED,
                correlation_id=correlation_id,
                payload={
                    "from": result.from_currency,
                    "to": result.to_currency,
                    "input_value": str(amount),
                    "output_value": str(result.value),
                    "rate": str(result.rate),
                    "rate_date": result.rate_date.isoformat() if result.rate_date else None,
                    "source": result.source,
                    "inverted": result.inverted,
                    "is_stale_rate": result.is_stale_rate,
                },
            )
        )

    @staticmethod
    def _parse_amount(value: Any) -> Decimal:
        try:
            amount = to_decimal(value, "value")
        except ValueError as exc:
            raise ValidationError(str(exc), details={"field": "value"}) from exc
        if amount < 0:
            raise ValidationError("Value to convert cannot be negative", details={"field": "value"})
        return amount

    def _parse_currency(self, code: str, field_name: str) -> str:
        normalized = (code or "").strip().upper()
        if not _CURRENCY_RE.match(normalized):
            raise ValidationError(f"Invalid currency code: {code!r}", details={"field": field_name})
        if self.supported_currencies is not None and normalized not in self.supported_currencies:
            raise ValidationError(f"Unsupported currency: {normalized}", details={"field": field_name})
        return normalized
