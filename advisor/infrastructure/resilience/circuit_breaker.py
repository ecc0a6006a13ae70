"""
Circuit breaker for upstream data providers.

Pure state machine: it never performs I/O, it only decides whether a call
may go through and records outcomes. Callers drive it:

    if breaker.allow_request():
        try:
            result = await call()
        except ProviderError:
            breaker.record_failure()
            raise
        breaker.record_success()

States:
- CLOSED: requests pass through
- OPEN: requests rejected until reset_timeout elapses
- HALF_OPEN: exactly one probe request admitted
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from advisor.core.errors import CircuitOpenError
from advisor.domain.models import CircuitSnapshot, CircuitState
from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5
    reset_timeout_ms: int = 300_000

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms cannot be negative")

    @property
    def reset_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.reset_timeout_ms)


class CircuitBreaker:
    """Per-provider breaker. Safe to share across threads and event loops."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Clock = utc_now,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: Optional[datetime] = None
        self._opened_at: Optional[datetime] = None
        self._next_attempt_at: Optional[datetime] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open(self._clock())
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def next_attempt_at(self) -> Optional[datetime]:
        with self._lock:
            return self._next_attempt_at

    def allow_request(self) -> bool:
        """
        Decide whether a call may reach the provider.

        In HALF_OPEN the first caller claims the probe slot; everyone else is
        rejected until that probe is recorded or released.
        """
        with self._lock:
            self._maybe_half_open(self._clock())
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return False
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def check_request(self) -> None:
        """Like allow_request, but raises CircuitOpenError on rejection."""
        if not self.allow_request():
            raise CircuitOpenError(self.name, self.next_attempt_at)

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._probe_in_flight = False
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)
                self._opened_at = None
                self._next_attempt_at = None

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failure_count += 1
            self._last_failure_at = now
            self._probe_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._open(now)
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._open(now)

    def release_probe(self) -> None:
        """Give back a half-open probe slot without recording an outcome."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_at = None
            self._opened_at = None
            self._next_attempt_at = None
            self._probe_in_flight = False

    def snapshot(self) -> CircuitSnapshot:
        with self._lock:
            self._maybe_half_open(self._clock())
            return CircuitSnapshot(
                provider=self.name,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
                next_attempt_at=self._next_attempt_at,
            )

    # Callers must hold self._lock below this line

    def _maybe_half_open(self, now: datetime) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._next_attempt_at is not None
            and now >= self._next_attempt_at
        ):
            self._transition(CircuitState.HALF_OPEN)
            self._probe_in_flight = False

    def _open(self, now: datetime) -> None:
        self._opened_at = now
        self._next_attempt_at = now + self.config.reset_timeout
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "Circuit breaker %s: %s -> %s (consecutive_failures=%d, next_attempt_at=%s)",
            self.name,
            old_state.value,
            new_state.value,
            self._failure_count,
            self._next_attempt_at.isoformat() if self._next_attempt_at else None,
        )


class CircuitBreakerRegistry:
    """One breaker per provider name, never duplicated."""

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Clock = utc_now,
    ):
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_or_create(
        self, name: str, config: Optional[CircuitBreakerConfig] = None
    ) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config or self._default_config, self._clock)
                self._breakers[name] = breaker
            return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        with self._lock:
            return self._breakers.get(name)

    def snapshots(self) -> List[CircuitSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in sorted(breakers, key=lambda b: b.name)]

    def get_all_states(self) -> Dict[str, str]:
        return {snap.provider: snap.state.value for snap in self.snapshots()}

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
