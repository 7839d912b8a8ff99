"""
RetryHandler - Exponential backoff with jitter for classified API errors.

Only APIErrors whose code is in the retryable set and whose retryable flag is
set are retried; everything else propagates on the first failure.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from vizom.services.errors import APIError, MaxRetriesExceededError, RETRYABLE_CODES

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retries."""

    max_retries: int = 3
    base_delay: float = 1.0  # Seconds before the first retry
    max_delay: float = 10.0  # Cap before jitter
    backoff_factor: float = 2.0
    retryable_errors: frozenset[str] = field(default_factory=lambda: RETRYABLE_CODES)


class RetryHandler:
    """
    Runs an async operation, retrying transient failures.

    Usage:
        retry = RetryHandler(RetryConfig(max_retries=3))
        data = await retry.execute_with_retry(fetch, "chart generation")

    Testing:
        retry = RetryHandler(config, rng=random.Random(42), sleep_func=fake_sleep)
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        rng: random.Random | None = None,
        sleep_func: SleepFunc | None = None,
    ):
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep_func or asyncio.sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "API request",
    ) -> T:
        """
        Execute operation, retrying retryable APIErrors.

        Raises:
            MaxRetriesExceededError: If the last permitted attempt failed with
                a retryable error (the error is chained as __cause__)
            Exception: Any non-retryable error, unchanged
        """
        max_retries = self.config.max_retries
        last_error: APIError | None = None

        for attempt in range(max_retries + 1):
            if attempt > 0:
                delay = self.calculate_delay(attempt)
                logger.info(
                    f"Retrying {context} (attempt {attempt}/{max_retries}) "
                    f"after {delay:.2f}s"
                )
                await self._sleep(delay)

            try:
                return await operation()
            except APIError as e:
                if not self._is_retryable(e):
                    raise
                last_error = e
                logger.warning(f"Attempt {attempt + 1} failed for {context}: {e}")

        raise MaxRetriesExceededError(context, max_retries + 1, last_error) from last_error

    def _is_retryable(self, error: APIError) -> bool:
        return error.retryable and error.code in self.config.retryable_errors

    def calculate_delay(self, attempt: int) -> float:
        """Backoff for an attempt (1-based), plus up to 10% jitter."""
        delay = min(
            self.config.base_delay * self.config.backoff_factor ** (attempt - 1),
            self.config.max_delay,
        )
        return delay + self._rng.random() * 0.1 * delay
