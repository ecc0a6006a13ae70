"""
Cache store contract and in-process implementation.

Entries outlive their TTL (up to a retention window) so that a provider
chain can fall back to stale data when every provider is down.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from advisor.utils.time import parse_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    cached_at: datetime
    ttl_seconds: int
    source: str

    @property
    def expires_at(self) -> datetime:
        return self.cached_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def remaining_ttl(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "cached_at": self.cached_at.isoformat(),
            "ttl_seconds": self.ttl_seconds,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CacheEntry":
        return cls(
            data=raw["data"],
            cached_at=parse_iso(raw["cached_at"]),
            ttl_seconds=int(raw["ttl_seconds"]),
            source=raw["source"],
        )


class CacheStore(Protocol):
    """
    Key/value store with TTL and stale reads. Values must be JSON-compatible.

    `retention_seconds` overrides how long an entry stays readable as stale
    past its TTL; 0 means it disappears at expiry.
    """

    async def get(self, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        ...

    async def set(
        self, key: str, data: Any, ttl_seconds: int, source: str, retention_seconds: Optional[int] = None
    ) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class MemoryCacheStore:
    """Process-local cache store. Writes sweep entries past their retention."""

    def __init__(
        self,
        retention_seconds: int = 30 * 24 * 3600,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._purge_at: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    async def get(self, key: str, allow_stale: bool = False) -> Optional[CacheEntry]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now >= self._purge_at[key]:
                self._drop(key)
                return None
        if entry.is_expired(now) and not allow_stale:
            return None
        return entry

    async def set(
        self, key: str, data: Any, ttl_seconds: int, source: str, retention_seconds: Optional[int] = None
    ) -> None:
        now = self._clock()
        entry = CacheEntry(data=data, cached_at=now, ttl_seconds=ttl_seconds, source=source)
        retention = self._retention if retention_seconds is None else timedelta(seconds=retention_seconds)
        with self._lock:
            self._sweep(now)
            self._entries[key] = entry
            self._purge_at[key] = entry.expires_at + retention

    async def delete(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def _sweep(self, now: datetime) -> None:
        expired = [key for key, purge_at in self._purge_at.items() if now >= purge_at]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        self._purge_at.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
