# advisor/domain/services/portfolio_valuator.py

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from advisor.core.errors import NotFoundError
from advisor.domain.models import (
    AssetAllocationInput,
    Holding,
    RateSnapshotEntry,
    SubclassConstraint,
)
from advisor.domain.services.currency_converter import CurrencyConverter
from advisor.infrastructure.market_data.provider_chain import PriceService
from advisor.utils.decimal_utils import HUNDRED, ZERO, round_pct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortfolioValuation:
    inputs: List[AssetAllocationInput]
    prices_as_of: Optional[datetime] = None
    rate_snapshot: List[RateSnapshotEntry] = field(default_factory=list)
    rates_as_of: Optional[datetime] = None


class PortfolioValuator:
    """Values raw holdings in a base currency using the price chain and stored rates."""

    def __init__(self, prices: PriceService, converter: CurrencyConverter):
        self.prices = prices
        self.converter = converter

    async def value_holdings(
        self,
        holdings: Sequence[Holding],
        base_currency: str,
        correlation_id: Optional[str] = None,
    ) -> PortfolioValuation:
        if not holdings:
            return PortfolioValuation(inputs=[])

        symbols = sorted({h.symbol.upper() for h in holdings})
        chain_result = await self.prices.get_prices(symbols)
        quotes = {item.value.symbol.upper(): item for item in chain_result.data}

        missing = [s for s in symbols if s not in quotes]
        if missing:
            raise NotFoundError(
                f"No price available for {', '.join(missing)}",
                details={"symbols": missing},
            )
        if chain_result.freshness.is_stale:
            logger.warning(
                "Valuing portfolio with stale prices from %s (since %s)",
                chain_result.provider, chain_result.freshness.stale_since,
            )

        # ------------------------------------------------------------
        # Value each holding in the base currency
        # ------------------------------------------------------------
        values: Dict[str, Decimal] = {}
        snapshot: Dict[str, RateSnapshotEntry] = {}
        rate_times: List[datetime] = []
        for holding in holdings:
            quote = quotes[holding.symbol.upper()].value
            local_value = holding.quantity * quote.close
            converted = await self.converter.convert(
                local_value, quote.currency, base_currency, correlation_id=correlation_id
            )
            values[holding.asset_id] = converted.value
            if converted.from_currency != converted.to_currency:
                snapshot.setdefault(
                    f"{converted.from_currency}/{converted.to_currency}",
                    CurrencyConverter.snapshot_entry(converted),
                )
            if converted.rate_fetched_at is not None:
                rate_times.append(converted.rate_fetched_at)

        total = sum(values.values(), ZERO)
        inputs = [
            AssetAllocationInput(
                asset_id=h.asset_id,
                symbol=h.symbol,
                current_value_base=values[h.asset_id],
                current_allocation_pct=(
                    round_pct(values[h.asset_id] / total * HUNDRED) if total > ZERO else ZERO
                ),
                target_min=h.target_min,
                target_max=h.target_max,
                subclass_id=h.subclass_id,
                class_name=h.class_name,
            )
            for h in holdings
        ]

        used = [quotes[h.symbol.upper()] for h in holdings]
        return PortfolioValuation(
            inputs=inputs,
            prices_as_of=min(item.fetched_at for item in used),
            rate_snapshot=list(snapshot.values()),
            rates_as_of=min(rate_times) if rate_times else None,
        )


class HoldingsPortfolio:
    """
    Portfolio collaborator backed by raw holdings.

    Registered holdings are valued on demand through a PortfolioValuator,
    so callers get live prices and stored rates instead of precomputed
    allocation inputs.
    """

    def __init__(
        self,
        valuator: PortfolioValuator,
        holdings: Optional[Mapping[Tuple[str, str], Sequence[Holding]]] = None,
        constraints: Optional[Mapping[Tuple[str, str], Sequence[SubclassConstraint]]] = None,
    ):
        self.valuator = valuator
        self._holdings: Dict[Tuple[str, str], List[Holding]] = {
            key: list(items) for key, items in (holdings or {}).items()
        }
        self._constraints: Dict[Tuple[str, str], List[SubclassConstraint]] = {
            key: list(items) for key, items in (constraints or {}).items()
        }

    def register(
        self,
        user_id: str,
        portfolio_id: str,
        holdings: Sequence[Holding],
        constraints: Optional[Sequence[SubclassConstraint]] = None,
    ) -> None:
        self._holdings[(user_id, portfolio_id)] = list(holdings)
        if constraints is not None:
            self._constraints[(user_id, portfolio_id)] = list(constraints)

    def _lookup(self, user_id: str, portfolio_id: str) -> List[Holding]:
        key = (user_id, portfolio_id)
        if key not in self._holdings:
            raise NotFoundError(
                f"Portfolio {portfolio_id} not found",
                details={"portfolio_id": portfolio_id},
            )
        return self._holdings[key]

    async def load_valuation(
        self,
        user_id: str,
        portfolio_id: str,
        base_currency: str,
        correlation_id: Optional[str] = None,
    ) -> PortfolioValuation:
        holdings = self._lookup(user_id, portfolio_id)
        return await self.valuator.value_holdings(holdings, base_currency, correlation_id)

    async def load_constraints(self, user_id: str, portfolio_id: str) -> List[SubclassConstraint]:
        return list(self._constraints.get((user_id, portfolio_id), []))
