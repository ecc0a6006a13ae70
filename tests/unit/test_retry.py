import asyncio

import httpx
import pytest

from advisor.core.errors import ErrorCode, ProviderError, ValidationError
from advisor.infrastructure.resilience.retry import RetryExecutor, RetryPolicy


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def transient(message="upstream 503", retry_after=None):
    return ProviderError(message, provider="yahoo", status_code=503, transient=True,
                         retry_after_seconds=retry_after)


class TestRetryPolicy:
    def test_schedule(self):
        policy = RetryPolicy()
        assert policy.delay_seconds(1) == 1.0
        assert policy.delay_seconds(2) == 2.0
        assert policy.delay_seconds(3) == 4.0
        # Last entry reused
        assert policy.delay_seconds(7) == 4.0

    def test_retry_after_overrides_and_is_capped(self):
        policy = RetryPolicy(max_delay_ms=10000)
        assert policy.delay_seconds(1, retry_after_seconds=3) == 3.0
        assert policy.delay_seconds(1, retry_after_seconds=120) == 10.0

    def test_invalid(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)


class TestRetryExecutor:
    async def test_success_first_attempt(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)

        async def op():
            return "ok"

        assert await executor.execute(op, "yahoo") == "ok"
        assert sleep.delays == []

    async def test_transient_then_success(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)
        calls = []

        async def op():
            calls.append(1)
            if len(calls) < 3:
                raise transient()
            return "ok"

        assert await executor.execute(op, "yahoo") == "ok"
        assert len(calls) == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_exhaustion_raises_last_error_with_attempts(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)
        calls = []

        async def op():
            calls.append(1)
            raise transient(f"failure {len(calls)}")

        with pytest.raises(ProviderError) as exc_info:
            await executor.execute(op, "yahoo")

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.message == "failure 3"
        assert sleep.delays == [1.0, 2.0]

    async def test_permanent_error_not_retried(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)
        calls = []

        async def op():
            calls.append(1)
            raise ProviderError("bad request", provider="yahoo", status_code=400)

        with pytest.raises(ProviderError) as exc_info:
            await executor.execute(op, "yahoo")
        assert len(calls) == 1
        assert exc_info.value.attempts == 1
        assert sleep.delays == []

    async def test_retry_after_used_as_delay(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)
        calls = []

        async def op():
            calls.append(1)
            if len(calls) == 1:
                raise ProviderError("slow down", provider="yahoo", code=ErrorCode.RATE_LIMITED,
                                    status_code=429, transient=True, retry_after_seconds=5)
            return "ok"

        assert await executor.execute(op, "yahoo") == "ok"
        assert sleep.delays == [5.0]

    async def test_network_error_is_transient(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(RetryPolicy(max_attempts=2), sleep=sleep)

        async def op():
            raise httpx.ConnectError("connection refused")

        with pytest.raises(ProviderError) as exc_info:
            await executor.execute(op, "yahoo")
        assert exc_info.value.transient is True
        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    async def test_timeout_per_attempt(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(RetryPolicy(max_attempts=2, timeout_ms=10), sleep=sleep)

        async def op():
            await asyncio.sleep(1)

        with pytest.raises(ProviderError) as exc_info:
            await executor.execute(op, "yahoo", "get_prices")
        assert exc_info.value.code == ErrorCode.PROVIDER_TIMEOUT
        assert exc_info.value.attempts == 2

    async def test_non_provider_errors_propagate(self):
        executor = RetryExecutor(sleep=RecordingSleep())

        async def op():
            raise ValidationError("unsupported currency")

        with pytest.raises(ValidationError):
            await executor.execute(op, "exchangerate_api")
