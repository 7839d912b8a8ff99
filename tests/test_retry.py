"""Tests for retry with exponential backoff."""

import random

import pytest

from vizom.services.errors import APIError, ErrorCode, MaxRetriesExceededError
from vizom.services.retry import RetryConfig, RetryHandler


class ZeroRandom(random.Random):
    """Random source with no jitter."""

    def random(self):
        return 0.0


class Scripted:
    """Raises the queued errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def rate_limited():
    return APIError("slow down", ErrorCode.RATE_LIMITED, status=429, retryable=True)


def server_error():
    return APIError("boom", ErrorCode.INTERNAL_SERVER_ERROR, status=500, retryable=True)


@pytest.fixture
def handler(sleep):
    return RetryHandler(RetryConfig(), rng=ZeroRandom(), sleep_func=sleep)


class TestExecuteWithRetry:
    """Which failures are retried and how often."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, handler, sleep):
        operation = Scripted(rate_limited(), rate_limited())

        assert await handler.execute_with_retry(operation) == "ok"
        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_code_fails_immediately(self, handler, sleep):
        operation = Scripted(APIError("no", ErrorCode.FORBIDDEN, status=403))

        with pytest.raises(APIError) as exc_info:
            await handler.execute_with_retry(operation)

        assert exc_info.value.code == ErrorCode.FORBIDDEN
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retryable_flag_is_respected(self, handler):
        operation = Scripted(
            APIError("boom", ErrorCode.INTERNAL_SERVER_ERROR, status=500, retryable=False)
        )

        with pytest.raises(APIError):
            await handler.execute_with_retry(operation)

        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_exhaustion_raises_max_retries_exceeded(self, handler, sleep):
        last = server_error()
        operation = Scripted(server_error(), server_error(), server_error(), last)

        with pytest.raises(MaxRetriesExceededError) as exc_info:
            await handler.execute_with_retry(operation, "chart generation")

        error = exc_info.value
        assert operation.calls == 4
        assert error.attempts == 4
        assert error.code == ErrorCode.MAX_RETRIES_EXCEEDED
        assert error.__cause__ is last
        assert error.last_error is last
        assert "chart generation" in error.message
        assert sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_zero_retries_still_reports_exhaustion(self, sleep):
        handler = RetryHandler(RetryConfig(max_retries=0), sleep_func=sleep)
        operation = Scripted(server_error())

        with pytest.raises(MaxRetriesExceededError):
            await handler.execute_with_retry(operation)

        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_plain_exceptions_propagate(self, handler):
        operation = Scripted(ValueError("bad input"))

        with pytest.raises(ValueError):
            await handler.execute_with_retry(operation)

        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_custom_retryable_set(self, sleep):
        config = RetryConfig(retryable_errors=frozenset({ErrorCode.RATE_LIMITED}))
        handler = RetryHandler(config, sleep_func=sleep)
        operation = Scripted(server_error())

        with pytest.raises(APIError) as exc_info:
            await handler.execute_with_retry(operation)

        assert exc_info.value.code == ErrorCode.INTERNAL_SERVER_ERROR
        assert operation.calls == 1


class TestCalculateDelay:
    """Backoff schedule."""

    def test_exponential_and_capped(self):
        handler = RetryHandler(RetryConfig(), rng=ZeroRandom())

        assert [handler.calculate_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_jitter_is_at_most_ten_percent(self):
        config = RetryConfig()
        handler = RetryHandler(config, rng=random.Random(7))

        for attempt in range(1, 10):
            base = min(config.base_delay * config.backoff_factor ** (attempt - 1), config.max_delay)
            delay = handler.calculate_delay(attempt)
            assert base <= delay <= base * 1.1

    def test_never_exceeds_max_delay_plus_jitter(self):
        handler = RetryHandler(RetryConfig(max_delay=3.0), rng=random.Random(1))

        assert all(handler.calculate_delay(n) <= 3.3 for n in range(1, 20))
