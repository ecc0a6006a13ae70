"""
YFinance providers (prices and fundamentals)
Async-safe via thread offloading
"""

from __future__ import annotations

import asyncio
import logging
import math
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from advisor.core.errors import ErrorCode, ProviderError
from advisor.domain.models import Fundamentals, PriceQuote
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        return None
    return result if result.is_finite() else None


class _YFinanceBase:
    name = "yfinance"

    def __init__(self, symbol_overrides: Optional[Dict[str, str]] = None):
        self.symbol_mapping: Dict[str, str] = {
            k.upper(): v for k, v in (symbol_overrides or {}).items()
        }

    def _ticker(self, symbol: str) -> yf.Ticker:
        return yf.Ticker(self.symbol_mapping.get(symbol.upper(), symbol))

    async def _in_thread(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except YFRateLimitError as exc:
            raise ProviderError(
                f"yfinance rate limited: {exc}",
                provider=self.name,
                code=ErrorCode.RATE_LIMITED,
                status_code=429,
                transient=True,
            ) from exc
        except Exception as exc:
            # yfinance surfaces network and parsing failures alike
            raise ProviderError(
                f"yfinance call failed: {exc}", provider=self.name, transient=True
            ) from exc


class YFinancePriceProvider(_YFinanceBase):
    """Latest daily close per symbol from Ticker.history()"""

    async def get_prices(self, symbols: Sequence[str]) -> List[PriceQuote]:
        quotes: List[PriceQuote] = []
        for symbol in symbols:
            ticker = self._ticker(symbol)
            hist = await self._in_thread(ticker.history, period="5d", interval="1d", auto_adjust=False)
            if hist is None or hist.empty:
                logger.debug("yfinance returned no history for %s", symbol)
                continue
            last = hist.iloc[-1]
            close = _to_decimal(last.get("Close"))
            if close is None or close <= 0:
                continue
            currency = await self._currency(ticker)
            volume = last.get("Volume")
            quotes.append(
                PriceQuote(
                    symbol=symbol.upper(),
                    close=close,
                    currency=currency,
                    price_date=hist.index[-1].date(),
                    open=_to_decimal(last.get("Open")),
                    high=_to_decimal(last.get("High")),
                    low=_to_decimal(last.get("Low")),
                    volume=int(volume) if volume is not None and not math.isnan(float(volume)) else None,
                )
            )
        return quotes

    async def _currency(self, ticker: yf.Ticker) -> str:
        currency = await self._in_thread(lambda: getattr(ticker.fast_info, "currency", None))
        return str(currency or "USD").upper()


class YFinanceFundamentalsProvider(_YFinanceBase):
    """Valuation ratios from Ticker.info"""

    async def get_fundamentals(self, symbols: Sequence[str]) -> List[Fundamentals]:
        results: List[Fundamentals] = []
        today = utc_now().date()
        for symbol in symbols:
            ticker = self._ticker(symbol)
            info = await self._in_thread(lambda: ticker.info)
            if not info:
                continue
            results.append(
                Fundamentals(
                    symbol=symbol.upper(),
                    data_date=today,
                    pe_ratio=_to_decimal(info.get("trailingPE")),
                    pb_ratio=_to_decimal(info.get("priceToBook")),
                    dividend_yield=_to_decimal(info.get("dividendYield")),
                    market_cap=_to_decimal(info.get("marketCap")),
                    revenue=_to_decimal(info.get("totalRevenue")),
                    earnings=_to_decimal(info.get("netIncomeToCommon")),
                    sector=info.get("sector"),
                    industry=info.get("industry"),
                )
            )
        return results
