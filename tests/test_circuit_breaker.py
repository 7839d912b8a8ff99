"""Tests for the circuit breaker."""

import asyncio
from datetime import timedelta

import pytest

from vizom.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from vizom.services.errors import APIError, CircuitOpenError, ErrorCode


class Upstream:
    """Counts calls and fails while failing is set."""

    def __init__(self, failing: bool = False):
        self.failing = failing
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failing:
            raise APIError("boom", ErrorCode.INTERNAL_SERVER_ERROR, status=500, retryable=True)
        return "ok"


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(failure_threshold=3, reset_timeout=timedelta(seconds=60))
    return CircuitBreaker("deepseek", config, clock=clock)


async def trip(breaker, upstream, times):
    for _ in range(times):
        with pytest.raises(APIError):
            await breaker.execute(upstream)


class TestClosed:
    """Normal operation."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, breaker):
        assert await breaker.execute(Upstream()) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_error_is_reraised_unchanged(self, breaker):
        with pytest.raises(APIError) as exc_info:
            await breaker.execute(Upstream(failing=True))

        assert exc_info.value.code == ErrorCode.INTERNAL_SERVER_ERROR

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        failing = Upstream(failing=True)
        await trip(breaker, failing, 2)
        await breaker.execute(Upstream())

        assert breaker.get_state().failure_count == 0

        await trip(breaker, failing, 2)
        assert breaker.state == CircuitState.CLOSED


class TestOpen:
    """Failing fast."""

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        await trip(breaker, Upstream(failing=True), 3)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_state().failure_count == 3

    @pytest.mark.asyncio
    async def test_open_breaker_does_not_invoke_operation(self, breaker, clock):
        await trip(breaker, Upstream(failing=True), 3)
        upstream = Upstream()
        clock.advance(seconds=20)

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(upstream)

        assert upstream.calls == 0
        assert exc_info.value.code == ErrorCode.CIRCUIT_BREAKER_OPEN
        assert exc_info.value.reset_after_seconds == pytest.approx(40.0)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_time_until_reset(self, breaker, clock):
        assert breaker.get_time_until_reset() is None

        await trip(breaker, Upstream(failing=True), 3)
        clock.advance(seconds=45)

        assert breaker.get_time_until_reset() == pytest.approx(15.0)


class TestHalfOpen:
    """Recovery probing."""

    @pytest.mark.asyncio
    async def test_successful_probe_closes(self, breaker, clock):
        await trip(breaker, Upstream(failing=True), 3)
        clock.advance(seconds=61)

        assert await breaker.execute(Upstream()) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state().failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self, breaker, clock):
        failing = Upstream(failing=True)
        await trip(breaker, failing, 3)
        clock.advance(seconds=61)

        await trip(breaker, failing, 1)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_time_until_reset() == pytest.approx(60.0)

    @pytest.mark.asyncio
    async def test_probe_admitted_exactly_at_reset_timeout(self, breaker, clock):
        await trip(breaker, Upstream(failing=True), 3)
        clock.advance(seconds=60)

        assert await breaker.execute(Upstream()) == "ok"

    @pytest.mark.asyncio
    async def test_concurrent_probes_limited_when_configured(self, clock):
        config = CircuitBreakerConfig(
            failure_threshold=1,
            reset_timeout=timedelta(seconds=10),
            half_open_max_requests=1,
        )
        breaker = CircuitBreaker("deepseek", config, clock=clock)
        await trip(breaker, Upstream(failing=True), 1)
        clock.advance(seconds=11)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.create_task(breaker.execute(slow_probe))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.execute(Upstream())

        release.set()
        assert await probe == "probe"
        assert breaker.state == CircuitState.CLOSED


class TestManagement:
    """Reset and status reporting."""

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        await trip(breaker, Upstream(failing=True), 3)

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state().last_failure_time is None
        assert await breaker.execute(Upstream()) == "ok"

    @pytest.mark.asyncio
    async def test_status(self, breaker, clock):
        await trip(breaker, Upstream(failing=True), 3)

        status = breaker.get_status()

        assert status == {
            "service_id": "deepseek",
            "state": "OPEN",
            "failure_count": 3,
            "last_failure": clock.now.isoformat(),
            "time_until_reset": 60.0,
        }
