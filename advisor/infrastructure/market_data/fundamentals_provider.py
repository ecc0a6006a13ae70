"""
Fundamentals API provider (HTTP batch endpoint).
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional, Sequence

import httpx

from advisor.domain.models import Fundamentals
from advisor.infrastructure.market_data.http import HttpJsonProvider, invalid_response

logger = logging.getLogger(__name__)


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


class FundamentalsApiProvider(HttpJsonProvider):
    """POST {base_url}/v1/fundamentals/batch {"symbols": [...]}"""

    name = "fundamentals_api"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 15.0,
        batch_size: int = 50,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url:
            raise ValueError("Fundamentals API base URL missing")
        super().__init__(base_url, timeout_seconds, client)
        self.api_key = api_key
        self.batch_size = batch_size

    async def get_fundamentals(self, symbols: Sequence[str]) -> List[Fundamentals]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        results: List[Fundamentals] = []
        for start in range(0, len(symbols), self.batch_size):
            batch = list(symbols[start:start + self.batch_size])
            data = await self._request_json(
                "POST", "/v1/fundamentals/batch", json_body={"symbols": batch}, headers=headers
            )
            if not isinstance(data, dict) or not isinstance(data.get("data"), list):
                raise invalid_response(self.name, "missing data array")
            for err in data.get("errors") or []:
                logger.warning("%s error for %s: %s", self.name, err.get("symbol"), err.get("error"))
            for row in data["data"]:
                try:
                    results.append(
                        Fundamentals(
                            symbol=str(row["symbol"]).upper(),
                            data_date=date.fromisoformat(str(row["data_date"])[:10]),
                            pe_ratio=_decimal_or_none(row.get("pe_ratio")),
                            pb_ratio=_decimal_or_none(row.get("pb_ratio")),
                            dividend_yield=_decimal_or_none(row.get("dividend_yield")),
                            market_cap=_decimal_or_none(row.get("market_cap")),
                            revenue=_decimal_or_none(row.get("revenue")),
                            earnings=_decimal_or_none(row.get("net_income")),
                            sector=row.get("sector"),
                            industry=row.get("industry"),
                        )
                    )
                except (KeyError, ValueError, ArithmeticError) as exc:
                    raise invalid_response(self.name, f"bad row {row.get('symbol')!r}: {exc}")
        return results
