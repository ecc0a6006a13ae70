"""
Exchange rate providers: exchangerate-api.com (primary) and
Open Exchange Rates (fallback).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

import httpx

from advisor.core.errors import ValidationError
from advisor.domain.models import RateSet
from advisor.infrastructure.market_data.http import HttpJsonProvider, invalid_response
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)

DEFAULT_SUPPORTED_CURRENCIES = ("USD", "EUR", "GBP", "BRL", "CAD", "AUD", "JPY", "CHF")


def _check_supported(provider: str, supported: Sequence[str], codes: Sequence[str]) -> None:
    unsupported = [c for c in codes if c not in supported]
    if unsupported:
        raise ValidationError(
            f"{provider} does not support currencies: {', '.join(unsupported)}",
            details={"unsupported": unsupported},
        )


def _rate_date(timestamp: Optional[Any]):
    if timestamp:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).date()
    return utc_now().date()


class ExchangeRateApiProvider(HttpJsonProvider):
    """GET {base_url}/{api_key}/latest/{BASE} -> conversion_rates"""

    name = "exchangerate_api"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://v6.exchangerate-api.com/v6",
        timeout_seconds: float = 10.0,
        supported_currencies: Sequence[str] = DEFAULT_SUPPORTED_CURRENCIES,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("exchangerate-api key missing")
        super().__init__(base_url, timeout_seconds, client)
        self.api_key = api_key
        self.supported_currencies = tuple(supported_currencies)

    async def get_rates(self, base: str, targets: Sequence[str]) -> RateSet:
        _check_supported(self.name, self.supported_currencies, [base, *targets])
        data = await self._request_json("GET", f"/{self.api_key}/latest/{base}")

        if not isinstance(data, dict) or data.get("result") != "success":
            reason = data.get("error-type", "unknown") if isinstance(data, dict) else "not an object"
            raise invalid_response(self.name, f"result={reason}")
        conversion_rates: Dict[str, Any] = data.get("conversion_rates") or {}

        rates: Dict[str, Decimal] = {}
        for target in targets:
            value = conversion_rates.get(target)
            if value is None:
                logger.warning("%s has no %s->%s rate", self.name, base, target)
                continue
            rates[target] = Decimal(str(value))

        return RateSet(base=base, rates=rates, rate_date=_rate_date(data.get("time_last_update_unix")))


class OpenExchangeRatesProvider(HttpJsonProvider):
    """
    GET {base_url}/latest.json?app_id=..&symbols=..

    Free plans only quote against USD, so other bases are derived as
    cross rates: rate(base->t) = usd_rate[t] / usd_rate[base].
    """

    name = "open_exchange_rates"

    def __init__(
        self,
        app_id: str,
        base_url: str = "https://openexchangerates.org/api",
        timeout_seconds: float = 10.0,
        supported_currencies: Sequence[str] = DEFAULT_SUPPORTED_CURRENCIES,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not app_id:
            raise ValueError("Open Exchange Rates app id missing")
        super().__init__(base_url, timeout_seconds, client)
        self.app_id = app_id
        self.supported_currencies = tuple(supported_currencies)

    async def get_rates(self, base: str, targets: Sequence[str]) -> RateSet:
        _check_supported(self.name, self.supported_currencies, [base, *targets])
        symbols = sorted({base, *targets} - {"USD"})
        data = await self._request_json(
            "GET",
            "/latest.json",
            params={"app_id": self.app_id, "symbols": ",".join(symbols)},
        )
        if not isinstance(data, dict) or data.get("error") or not data.get("rates"):
            reason = data.get("description", "no rates") if isinstance(data, dict) else "not an object"
            raise invalid_response(self.name, reason)

        usd_rates: Dict[str, Decimal] = {"USD": Decimal("1")}
        for code, value in data["rates"].items():
            usd_rates[code] = Decimal(str(value))

        base_rate = usd_rates.get(base)
        if base_rate is None or base_rate <= 0:
            raise invalid_response(self.name, f"no USD->{base} rate to cross through")

        rates: Dict[str, Decimal] = {}
        for target in targets:
            target_rate = usd_rates.get(target)
            if target_rate is None:
                logger.warning("%s has no USD->%s rate", self.name, target)
                continue
            rates[target] = target_rate / base_rate

        return RateSet(base=base, rates=rates, rate_date=_rate_date(data.get("timestamp")))
