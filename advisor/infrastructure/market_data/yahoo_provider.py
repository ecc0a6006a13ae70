"""
Yahoo Finance quote endpoint (HTTP) price provider.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import httpx

from advisor.domain.models import PriceQuote
from advisor.infrastructure.market_data.http import HttpJsonProvider, invalid_response
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


class YahooQuoteProvider(HttpJsonProvider):
    """Batch quotes from /v7/finance/quote"""

    name = "yahoo"

    def __init__(
        self,
        base_url: str = "https://query1.finance.yahoo.com",
        timeout_seconds: float = 10.0,
        batch_size: int = 50,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(base_url, timeout_seconds, client)
        self.batch_size = batch_size

    async def get_prices(self, symbols: Sequence[str]) -> List[PriceQuote]:
        quotes: List[PriceQuote] = []
        for start in range(0, len(symbols), self.batch_size):
            batch = list(symbols[start:start + self.batch_size])
            data = await self._request_json(
                "GET", "/v7/finance/quote", params={"symbols": ",".join(batch)}
            )
            quotes.extend(self._parse(data))
        return quotes

    def _parse(self, data: Dict[str, Any]) -> List[PriceQuote]:
        try:
            results = data["quoteResponse"]["result"]
        except (KeyError, TypeError):
            raise invalid_response(self.name, "missing quoteResponse.result")

        quotes = []
        for row in results or []:
            price = row.get("regularMarketPrice")
            if price is None:
                logger.debug("Yahoo quote for %s has no price; skipping", row.get("symbol"))
                continue
            market_time = row.get("regularMarketTime")
            price_date = (
                datetime.fromtimestamp(market_time, tz=timezone.utc).date()
                if market_time
                else utc_now().date()
            )
            try:
                quotes.append(
                    PriceQuote(
                        symbol=str(row["symbol"]).upper(),
                        close=Decimal(str(price)),
                        currency=(row.get("currency") or "USD").upper(),
                        price_date=price_date,
                        open=_decimal_or_none(row.get("regularMarketOpen")),
                        high=_decimal_or_none(row.get("regularMarketDayHigh")),
                        low=_decimal_or_none(row.get("regularMarketDayLow")),
                        volume=int(row["regularMarketVolume"]) if row.get("regularMarketVolume") is not None else None,
                    )
                )
            except (KeyError, ValueError, ArithmeticError) as exc:
                raise invalid_response(self.name, f"bad quote row {row.get('symbol')!r}: {exc}")
        return quotes
