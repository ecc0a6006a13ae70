"""
Market data service factory (config-driven).

Provider order per data type comes from config/app.yml; credentials and
URLs come from Settings. Providers whose credentials are missing are
skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from advisor.config import Settings, settings as default_settings
from advisor.infrastructure.cache.cache_store import CacheStore
from advisor.infrastructure.market_data.exchange_rate_providers import (
    ExchangeRateApiProvider,
    OpenExchangeRatesProvider,
)
from advisor.infrastructure.market_data.fundamentals_provider import FundamentalsApiProvider
from advisor.infrastructure.market_data.provider_chain import (
    ExchangeRateService,
    FundamentalsService,
    NamedProvider,
    PriceService,
)
from advisor.infrastructure.market_data.yahoo_provider import YahooQuoteProvider
from advisor.infrastructure.market_data.yfinance_provider import (
    YFinanceFundamentalsProvider,
    YFinancePriceProvider,
)
from advisor.infrastructure.resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from advisor.infrastructure.resilience.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

_DEFAULT_ORDER = {
    "prices": ["yahoo", "yfinance"],
    "rates": ["exchangerate_api", "open_exchange_rates"],
    "fundamentals": ["fundamentals_api", "yfinance"],
}


@dataclass
class MarketDataServices:
    prices: PriceService
    rates: ExchangeRateService
    fundamentals: FundamentalsService
    breakers: CircuitBreakerRegistry


def load_market_data_config(path: Optional[Path] = None, app_settings: Settings = default_settings) -> Dict:
    """Read the `market_data` section of config/app.yml; missing file means defaults."""
    if path is None:
        path = Path(app_settings.MARKET_DATA_CONFIG_FILE)
        if not path.is_absolute():
            path = Path(__file__).resolve().parents[3] / path
    if not path.exists():
        logger.warning("Market data config %s not found; using built-in provider order", path)
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    return data.get("market_data", {})


def _timeout(app_config: Dict, name: str, default: float = 10.0) -> float:
    return float(app_config.get(name, {}).get("timeout_seconds", default))


def _build_price_provider(name: str, app_config: Dict, app_settings: Settings) -> Any:
    if name == "yahoo":
        return YahooQuoteProvider(
            base_url=app_settings.YAHOO_BASE_URL,
            timeout_seconds=_timeout(app_config, "yahoo"),
        )
    if name == "yfinance":
        return YFinancePriceProvider(app_config.get("yfinance", {}).get("symbol_overrides"))
    raise ValueError(f"Unknown price provider: {name}")


def _build_rate_provider(name: str, app_config: Dict, app_settings: Settings) -> Any:
    if name == "exchangerate_api":
        return ExchangeRateApiProvider(
            api_key=(app_settings.EXCHANGERATE_API_KEY or "").strip(),
            base_url=app_settings.EXCHANGERATE_API_BASE_URL,
            timeout_seconds=_timeout(app_config, "exchangerate_api"),
            supported_currencies=app_settings.SUPPORTED_CURRENCIES,
        )
    if name == "open_exchange_rates":
        return OpenExchangeRatesProvider(
            app_id=(app_settings.OPEN_EXCHANGE_RATES_APP_ID or "").strip(),
            base_url=app_settings.OPEN_EXCHANGE_RATES_BASE_URL,
            timeout_seconds=_timeout(app_config, "open_exchange_rates"),
            supported_currencies=app_settings.SUPPORTED_CURRENCIES,
        )
    raise ValueError(f"Unknown exchange rate provider: {name}")


def _build_fundamentals_provider(name: str, app_config: Dict, app_settings: Settings) -> Any:
    if name == "fundamentals_api":
        return FundamentalsApiProvider(
            base_url=(app_settings.FUNDAMENTALS_API_BASE_URL or "").strip(),
            api_key=app_settings.FUNDAMENTALS_API_KEY,
            timeout_seconds=_timeout(app_config, "fundamentals_api", 15.0),
        )
    if name == "yfinance":
        return YFinanceFundamentalsProvider(app_config.get("yfinance", {}).get("symbol_overrides"))
    raise ValueError(f"Unknown fundamentals provider: {name}")


def _build_chain(
    data_type: str,
    app_config: Dict,
    app_settings: Settings,
    builder: Callable[[str, Dict, Settings], Any],
) -> List[NamedProvider]:
    names = app_config.get(data_type, {}).get("providers") or _DEFAULT_ORDER[data_type]
    providers: List[NamedProvider] = []
    for name in names:
        name = (name or "").lower()
        try:
            providers.append(NamedProvider(name, builder(name, app_config, app_settings)))
        except ValueError as exc:
            # Missing credentials or unknown name
            logger.warning("Skipping %s provider %s: %s", data_type, name, exc)
    if not providers:
        raise ValueError(f"No usable {data_type} providers configured (tried {names})")
    return providers


def build_market_data_services(
    cache: CacheStore,
    app_settings: Settings = default_settings,
    app_config: Optional[Dict] = None,
    breakers: Optional[CircuitBreakerRegistry] = None,
) -> MarketDataServices:
    if app_config is None:
        app_config = load_market_data_config(app_settings=app_settings)
    if breakers is None:
        breakers = CircuitBreakerRegistry(
            CircuitBreakerConfig(
                failure_threshold=app_settings.BREAKER_FAILURE_THRESHOLD,
                reset_timeout_ms=app_settings.BREAKER_RESET_TIMEOUT_MS,
            )
        )
    retry = RetryExecutor(
        RetryPolicy(
            max_attempts=app_settings.RETRY_MAX_ATTEMPTS,
            backoff_schedule_ms=tuple(app_settings.RETRY_BACKOFF_SCHEDULE_MS),
            timeout_ms=app_settings.RETRY_TIMEOUT_MS,
            max_delay_ms=app_settings.RETRY_MAX_DELAY_MS,
        )
    )

    return MarketDataServices(
        prices=PriceService(
            _build_chain("prices", app_config, app_settings, _build_price_provider),
            cache, breakers, retry, app_settings.PRICES_CACHE_TTL_SECONDS,
        ),
        rates=ExchangeRateService(
            _build_chain("rates", app_config, app_settings, _build_rate_provider),
            cache, breakers, retry, app_settings.RATES_CACHE_TTL_SECONDS,
        ),
        fundamentals=FundamentalsService(
            _build_chain("fundamentals", app_config, app_settings, _build_fundamentals_provider),
            cache, breakers, retry, app_settings.FUNDAMENTALS_CACHE_TTL_SECONDS,
        ),
        breakers=breakers,
    )
