"""
Provider chain - fresh cache, then primary, then fallbacks, then stale cache.

One chain per data type (prices, exchange rates, fundamentals). Providers
are tried sequentially; the first success short-circuits the rest and is
cached. Each provider call goes through its circuit breaker and the retry
executor, and counts exactly once against the breaker no matter how many
retry attempts it took.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Set, Tuple, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from advisor.core.errors import AllProvidersFailedError, CircuitOpenError, ValidationError
from advisor.domain.models import (
    ChainResult,
    CircuitSnapshot,
    DataType,
    FreshnessInfo,
    Fundamentals,
    PriceQuote,
    ProviderResult,
    RateSet,
)
from advisor.infrastructure.cache.cache_store import CacheEntry, CacheStore
from advisor.infrastructure.market_data.http import invalid_response
from advisor.infrastructure.market_data.types import (
    ExchangeRateProvider,
    FundamentalsProvider,
    PriceProvider,
)
from advisor.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry
from advisor.infrastructure.resilience.retry import RetryExecutor
from advisor.utils.time import parse_iso, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class NamedProvider:
    name: str
    provider: Any


class ProviderFallbackChain(Generic[T]):
    """Base chain. Subclasses define the cache key and how to call a provider."""

    data_type: DataType
    item_type: type

    def __init__(
        self,
        providers: List[NamedProvider],
        cache: CacheStore,
        breakers: CircuitBreakerRegistry,
        retry: RetryExecutor,
        ttl_seconds: int,
        clock: Callable[[], datetime] = utc_now,
    ):
        if not providers:
            raise ValueError(f"{self.data_type.value} chain needs at least one provider")
        self.providers = providers
        self.cache = cache
        self.breakers = breakers
        self.retry = retry
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._adapter = TypeAdapter(self.item_type)
        for named in providers:
            breakers.get_or_create(named.name)

    # -- hooks ---------------------------------------------------------------

    def cache_key(self, identifiers: Sequence[str]) -> str:
        return f"{self.data_type.value}:batch:{','.join(sorted(identifiers))}"

    def normalize(self, identifiers: Sequence[str]) -> List[str]:
        return sorted({i.strip().upper() for i in identifiers if i and i.strip()})

    async def call_provider(self, provider: Any, identifiers: List[str]) -> List[T]:
        raise NotImplementedError

    def missing(self, values: List[T], identifiers: List[str]) -> List[str]:
        """Requested identifiers absent from `values`."""
        raise NotImplementedError

    # -- public --------------------------------------------------------------

    async def fetch(self, identifiers: Sequence[str], skip_cache: bool = False) -> ChainResult[T]:
        ids = self.normalize(identifiers)
        if not ids:
            raise ValidationError(f"No identifiers given for {self.data_type.value} fetch")
        key = self.cache_key(ids)

        if not skip_cache:
            cached = await self._read_cache(key, ids, allow_stale=False)
            if cached is not None:
                logger.debug("%s served from cache (%s)", self.data_type.value, key)
                return cached

        errors: Dict[str, Exception] = {}
        for named in self.providers:
            breaker = self.breakers.get_or_create(named.name)
            if not breaker.allow_request():
                errors[named.name] = CircuitOpenError(named.name, breaker.next_attempt_at)
                logger.info("Skipping %s for %s: circuit open", named.name, self.data_type.value)
                continue

            try:
                values = await self.retry.execute(
                    lambda provider=named.provider, name=named.name: self._call_checked(provider, name, ids),
                    provider_name=named.name,
                    operation_name=f"get_{self.data_type.value}",
                )
            except asyncio.CancelledError:
                # Neither success nor failure
                breaker.release_probe()
                raise
            except ValidationError as exc:
                # Request this provider cannot serve; not a health signal
                breaker.release_probe()
                errors[named.name] = exc
                logger.info("%s provider %s rejected request: %s", self.data_type.value, named.name, exc)
                continue
            except Exception as exc:
                breaker.record_failure()
                errors[named.name] = exc
                logger.warning(
                    "%s provider %s failed: %s", self.data_type.value, named.name, exc
                )
                continue

            breaker.record_success()
            return await self._store(key, ids, named.name, values)

        stale = await self._read_cache(key, ids, allow_stale=True)
        if stale is not None:
            logger.warning(
                "All %s providers failed; returning stale cache (%s, cached_at=%s)",
                self.data_type.value, key, stale.freshness.fetched_at.isoformat(),
            )
            return ChainResult(
                data=[item.as_stale() for item in stale.data],
                from_cache=True,
                provider=stale.provider,
                freshness=FreshnessInfo(
                    source=stale.freshness.source,
                    fetched_at=stale.freshness.fetched_at,
                    is_stale=True,
                    stale_since=stale.freshness.fetched_at,
                ),
            )

        logger.error("All %s providers failed and no cache available (%s)", self.data_type.value, key)
        raise AllProvidersFailedError(self.data_type.value, errors)

    async def invalidate(self, identifiers: Sequence[str]) -> None:
        ids = self.normalize(identifiers)
        if ids:
            await self.cache.delete(self.cache_key(ids))

    def circuit_states(self) -> List[CircuitSnapshot]:
        return [self.breakers.get_or_create(n.name).snapshot() for n in self.providers]

    # -- internals -----------------------------------------------------------

    async def _call_checked(self, provider: Any, name: str, ids: List[str]) -> List[T]:
        values = await self.call_provider(provider, ids)
        if not values:
            raise invalid_response(name, f"no {self.data_type.value} returned")
        missing = self.missing(values, ids)
        if missing:
            logger.warning("%s returned no %s for: %s", name, self.data_type.value, ",".join(missing))
        return values

    async def _store(self, key: str, ids: List[str], provider_name: str, values: List[T]) -> ChainResult[T]:
        now = self._clock()
        # Entry records what was asked and what the provider could not answer
        payload = {
            "requested": ids,
            "unavailable": self.missing(values, ids),
            "items": [
                {
                    "value": self._adapter.dump_python(value, mode="json"),
                    "source": provider_name,
                    "fetched_at": now.isoformat(),
                }
                for value in values
            ],
        }
        await self.cache.set(key, payload, self.ttl_seconds, provider_name)
        return ChainResult(
            data=[ProviderResult(value=v, source=provider_name, fetched_at=now) for v in values],
            from_cache=False,
            provider=provider_name,
            freshness=FreshnessInfo(source=provider_name, fetched_at=now, is_stale=False),
        )

    async def _read_cache(self, key: str, ids: List[str], allow_stale: bool) -> Optional[ChainResult[T]]:
        entry = await self.cache.get(key, allow_stale=allow_stale)
        if entry is None:
            return None
        decoded = self._decode(key, entry)
        if decoded is None:
            return None
        requested, unavailable, items = decoded
        if requested != ids:
            logger.debug("Cache entry %s was stored for %s; treating as miss", key, ",".join(requested))
            return None
        absent = set(self.missing([i.value for i in items], ids)) - unavailable
        if absent:
            logger.debug("Cache entry %s lost answered identifiers %s; treating as miss", key, sorted(absent))
            return None
        return ChainResult(
            data=items,
            from_cache=True,
            provider="cache",
            freshness=FreshnessInfo(source=entry.source, fetched_at=entry.cached_at, is_stale=False),
        )

    def _decode(
        self, key: str, entry: CacheEntry
    ) -> Optional[Tuple[List[str], Set[str], List[ProviderResult[T]]]]:
        try:
            data = entry.data
            items = [
                ProviderResult(
                    value=self._adapter.validate_python(raw["value"]),
                    source=raw["source"],
                    fetched_at=parse_iso(raw["fetched_at"]),
                )
                for raw in data["items"]
            ]
            return list(data["requested"]), set(data["unavailable"]), items
        except (KeyError, TypeError, ValueError, PydanticValidationError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None


class PriceService(ProviderFallbackChain[PriceQuote]):
    data_type = DataType.PRICES
    item_type = PriceQuote

    async def call_provider(self, provider: PriceProvider, identifiers: List[str]) -> List[PriceQuote]:
        return await provider.get_prices(identifiers)

    def missing(self, values: List[PriceQuote], identifiers: List[str]) -> List[str]:
        found = {v.symbol.upper() for v in values}
        return [s for s in identifiers if s not in found]

    async def get_prices(self, symbols: Sequence[str], skip_cache: bool = False) -> ChainResult[PriceQuote]:
        return await self.fetch(symbols, skip_cache=skip_cache)


class FundamentalsService(ProviderFallbackChain[Fundamentals]):
    data_type = DataType.FUNDAMENTALS
    item_type = Fundamentals

    async def call_provider(self, provider: FundamentalsProvider, identifiers: List[str]) -> List[Fundamentals]:
        return await provider.get_fundamentals(identifiers)

    def missing(self, values: List[Fundamentals], identifiers: List[str]) -> List[str]:
        found = {v.symbol.upper() for v in values}
        return [s for s in identifiers if s not in found]

    async def get_fundamentals(
        self, symbols: Sequence[str], skip_cache: bool = False
    ) -> ChainResult[Fundamentals]:
        return await self.fetch(symbols, skip_cache=skip_cache)


class ExchangeRateService(ProviderFallbackChain[RateSet]):
    """
    Rates chain. Identifiers are "BASE/TARGET" pairs so one call can cover
    several bases; providers are asked once per base.
    """

    data_type = DataType.RATES
    item_type = RateSet

    def normalize(self, identifiers: Sequence[str]) -> List[str]:
        pairs = set()
        for raw in identifiers:
            base, _, target = raw.strip().upper().partition("/")
            if not base or not target:
                raise ValidationError(f"Rate identifier must look like BASE/TARGET: {raw!r}")
            if base != target:
                pairs.add(f"{base}/{target}")
        return sorted(pairs)

    def cache_key(self, identifiers: Sequence[str]) -> str:
        grouped = _group_pairs(identifiers)
        return "rates:" + ";".join(
            f"{base}:{','.join(sorted(targets))}" for base, targets in sorted(grouped.items())
        )

    async def call_provider(self, provider: ExchangeRateProvider, identifiers: List[str]) -> List[RateSet]:
        results = []
        for base, targets in sorted(_group_pairs(identifiers).items()):
            results.append(await provider.get_rates(base, sorted(targets)))
        return results

    def missing(self, values: List[RateSet], identifiers: List[str]) -> List[str]:
        found = {f"{v.base}/{target}" for v in values for target in v.rates}
        return [p for p in identifiers if p not in found]

    async def get_rates(
        self, base: str, targets: Sequence[str], skip_cache: bool = False
    ) -> ChainResult[RateSet]:
        return await self.fetch([f"{base}/{t}" for t in targets], skip_cache=skip_cache)

    async def invalidate_rates(self, base: str, targets: Sequence[str]) -> None:
        await self.invalidate([f"{base}/{t}" for t in targets])


def _group_pairs(identifiers: Sequence[str]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for pair in identifiers:
        base, _, target = pair.partition("/")
        grouped.setdefault(base, []).append(target)
    return grouped
