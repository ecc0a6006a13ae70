"""
Retry executor with bounded attempts, per-attempt timeout and backoff.

Only transient failures are retried: network errors, timeouts and
HTTP 429/503/504 (ProviderError.transient). A Retry-After hint from a 429
replaces the scheduled delay, capped at max_delay_ms.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

import httpx

from advisor.core.errors import ErrorCode, ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_schedule_ms: Tuple[int, ...] = (1000, 2000, 4000)
    timeout_ms: int = 10000
    max_delay_ms: int = 10000

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.backoff_schedule_ms:
            raise ValueError("backoff_schedule_ms cannot be empty")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    def delay_seconds(self, failed_attempt: int, retry_after_seconds: Optional[float] = None) -> float:
        """
        Delay before the attempt following `failed_attempt` (1-based).

        The schedule's last entry is reused once attempts run past it.
        """
        if retry_after_seconds is not None and retry_after_seconds >= 0:
            delay_ms = retry_after_seconds * 1000
        else:
            index = min(failed_attempt - 1, len(self.backoff_schedule_ms) - 1)
            delay_ms = self.backoff_schedule_ms[index]
        return min(delay_ms, self.max_delay_ms) / 1000


class RetryExecutor:
    """Runs one upstream operation under a RetryPolicy."""

    def __init__(self, policy: Optional[RetryPolicy] = None, sleep: Sleep = asyncio.sleep):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        provider_name: str = "unknown",
        operation_name: str = "call",
    ) -> T:
        """
        Run `operation` until it succeeds, fails permanently or attempts run out.

        Raises:
            ProviderError: the last failure, with `attempts` set
        """
        policy = self.policy
        history: List[str] = []
        last_error: Optional[ProviderError] = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await asyncio.wait_for(operation(), timeout=policy.timeout_ms / 1000)
            except asyncio.TimeoutError as exc:
                error = ProviderError(
                    f"{provider_name} {operation_name} timed out after {policy.timeout_ms}ms",
                    provider=provider_name,
                    code=ErrorCode.PROVIDER_TIMEOUT,
                    transient=True,
                )
                error.__cause__ = exc
            except ProviderError as exc:
                error = exc
            except httpx.TransportError as exc:
                error = ProviderError(
                    f"{provider_name} {operation_name} network error: {exc!r}",
                    provider=provider_name,
                    transient=True,
                )
                error.__cause__ = exc

            error.attempts = attempt
            last_error = error
            history.append(f"#{attempt} {error.code}: {error.message}")

            if not error.transient:
                logger.warning(
                    "%s.%s failed permanently on attempt %d/%d: %s",
                    provider_name, operation_name, attempt, policy.max_attempts, error.message,
                )
                raise error

            if attempt >= policy.max_attempts:
                break

            delay = policy.delay_seconds(attempt, error.retry_after_seconds)
            logger.warning(
                "%s.%s attempt %d/%d failed (%s); retrying in %.2fs",
                provider_name, operation_name, attempt, policy.max_attempts, error.code, delay,
            )
            await self._sleep(delay)

        logger.error(
            "%s.%s exhausted %d attempts: %s",
            provider_name, operation_name, policy.max_attempts, " | ".join(history),
        )
        assert last_error is not None
        raise last_error
