"""
Provider protocols - one per data type.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence

from advisor.domain.models import Fundamentals, PriceQuote, RateSet


class PriceProvider(Protocol):
    name: str

    async def get_prices(self, symbols: Sequence[str]) -> List[PriceQuote]:
        ...


class ExchangeRateProvider(Protocol):
    name: str
    supported_currencies: Sequence[str]

    async def get_rates(self, base: str, targets: Sequence[str]) -> RateSet:
        ...


class FundamentalsProvider(Protocol):
    name: str

    async def get_fundamentals(self, symbols: Sequence[str]) -> List[Fundamentals]:
        ...
