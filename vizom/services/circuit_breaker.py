"""
CircuitBreaker - Stops calling a failing upstream until it has had time to recover.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Upstream is failing, requests are rejected without being attempted
- HALF_OPEN: Probing whether the upstream has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are reached
- OPEN → HALF_OPEN: On the first call after reset_timeout since the last failure
- HALF_OPEN → CLOSED: On a successful probe
- HALF_OPEN → OPEN: On a failed probe
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from vizom.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    half_open_max_requests: int | None = None  # None admits every concurrent probe


@dataclass(frozen=True)
class CircuitBreakerState:
    """Read-only snapshot of a breaker."""

    state: CircuitState
    failure_count: int
    last_failure_time: datetime | None


class CircuitBreaker:
    """
    Circuit breaker guarding calls to a single upstream service.

    Usage:
        cb = CircuitBreaker("deepseek")
        result = await cb.execute(lambda: client.post(url, json=body))
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: datetime | None = None
        self._half_open_in_flight = 0

    @property
    def state(self) -> CircuitState:
        """Current state without triggering transitions."""
        return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation under breaker protection.

        Raises:
            CircuitOpenError: If the breaker is open; operation is not invoked
        """
        self._before_call()

        probing = self._state == CircuitState.HALF_OPEN
        if probing:
            self._half_open_in_flight += 1

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise
        else:
            self._on_success()
            return result
        finally:
            if probing:
                self._half_open_in_flight -= 1

    def _before_call(self) -> None:
        if self._state == CircuitState.OPEN:
            if self._time_until_reset() > 0:
                raise CircuitOpenError(self.service_id, self._time_until_reset())

            self._state = CircuitState.HALF_OPEN
            self._half_open_in_flight = 0
            logger.info(f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN")

        limit = self.config.half_open_max_requests
        if (
            self._state == CircuitState.HALF_OPEN
            and limit is not None
            and self._half_open_in_flight >= limit
        ):
            raise CircuitOpenError(self.service_id, 0.0)

    def _on_success(self) -> None:
        """Record a successful call."""
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def _on_failure(self) -> None:
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if (
            self._state == CircuitState.HALF_OPEN
            or self._failure_count >= self.config.failure_threshold
        ):
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker '{self.service_id}' OPENED after "
                    f"{self._failure_count} failures"
                )
            self._state = CircuitState.OPEN

    def _time_until_reset(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        reset_at = self._last_failure_time + self.config.reset_timeout
        return max(0.0, (reset_at - self._clock()).total_seconds())

    def get_state(self) -> CircuitBreakerState:
        """Snapshot of state, failure count and last failure time."""
        return CircuitBreakerState(
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
        )

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._half_open_in_flight = 0
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit admits a probe."""
        if self._state != CircuitState.OPEN:
            return None
        return self._time_until_reset()

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }
