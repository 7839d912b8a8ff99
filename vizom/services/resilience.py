"""
ResilienceService - Circuit breaker and retries around upstream requests.

Combines:
- CircuitBreaker wrapping the whole retry sequence as one logical call
- RetryHandler for transient failures
- APIErrorHandler turning HTTP responses into data or classified APIErrors
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from vizom.services.circuit_breaker import CircuitBreaker, CircuitState
from vizom.services.errors import (
    APIError,
    ErrorCode,
    error_code_for_status,
    is_retryable,
)
from vizom.services.retry import RetryHandler

T = TypeVar("T")

RESPONSE_TIME_WINDOW = 100


@dataclass
class RequestMetrics:
    """Counters for handled responses."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0  # Seconds
    last_error: dict[str, Any] | None = None
    circuit_breaker_tripped: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "average_response_time": round(self.average_response_time, 4),
            "last_error": self.last_error,
            "circuit_breaker_tripped": self.circuit_breaker_tripped,
        }


class APIErrorHandler:
    """Converts upstream HTTP responses into JSON data or APIErrors."""

    def __init__(self) -> None:
        self._metrics = RequestMetrics()
        self._response_times: deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)

    async def handle_response(self, response: httpx.Response, request_id: str) -> Any:
        """
        Return the JSON body of a 2xx response.

        Raises:
            APIError: Classified from the status and error body for non-2xx
                responses, UNEXPECTED_ERROR if a 2xx body is not JSON
        """
        start = time.perf_counter()
        self._metrics.total_requests += 1

        await response.aread()

        if not response.is_success:
            error = self._create_api_error(response, request_id)
            self._record_failure(error)
            raise error

        try:
            data = response.json()
        except ValueError as e:
            error = APIError(
                f"Unexpected error: {e}",
                ErrorCode.UNEXPECTED_ERROR,
                status=response.status_code,
                retryable=False,
                request_id=request_id,
                details={"original_error": str(e)},
            )
            self._record_failure(error)
            raise error from e

        self._metrics.successful_requests += 1
        self._response_times.append(self._response_time(response, start))
        self._metrics.average_response_time = sum(self._response_times) / len(
            self._response_times
        )
        return data

    def _create_api_error(self, response: httpx.Response, request_id: str) -> APIError:
        status = response.status_code
        error_data = self._parse_error_body(response)

        raw_error = error_data.get("error")
        if isinstance(raw_error, dict):
            message = raw_error.get("message") or f"HTTP {status}"
            body_code = raw_error.get("code") or error_data.get("code")
        else:
            message = raw_error or error_data.get("message") or f"HTTP {status}"
            body_code = error_data.get("code")

        # Upstream vendor codes are kept in details; only our own codes override the status
        code = (
            ErrorCode(body_code)
            if isinstance(body_code, str) and body_code in ErrorCode._value2member_map_
            else error_code_for_status(status)
        )

        return APIError(
            str(message),
            code,
            status=status,
            retryable=is_retryable(code, status),
            request_id=request_id,
            details=error_data,
        )

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {"error": f"HTTP {response.status_code}: {response.reason_phrase}"}
        if not isinstance(data, dict):
            return {"error": str(data)}
        return data

    @staticmethod
    def _response_time(response: httpx.Response, start: float) -> float:
        try:
            return response.elapsed.total_seconds()
        except RuntimeError:
            # Responses built outside a transport carry no elapsed time
            return time.perf_counter() - start

    def _record_failure(self, error: APIError) -> None:
        self._metrics.failed_requests += 1
        self._metrics.last_error = error.to_dict()

    def get_metrics(self) -> RequestMetrics:
        """Get a copy of the current metrics."""
        return RequestMetrics(**vars(self._metrics))

    def reset_metrics(self) -> None:
        """Reset metrics."""
        self._metrics = RequestMetrics()
        self._response_times.clear()


class ResilienceService:
    """
    Circuit breaker + retry orchestration for one upstream integration.

    Usage:
        resilience = ResilienceService(CircuitBreaker("deepseek"), RetryHandler())

        async def call():
            response = await http.post(url, json=body)
            return await resilience.handle_response(response, request_id)

        data = await resilience.execute_request(call, "chart generation")
    """

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        retry_handler: RetryHandler | None = None,
        error_handler: APIErrorHandler | None = None,
    ):
        self.circuit_breaker = circuit_breaker or CircuitBreaker("deepseek")
        self.retry_handler = retry_handler or RetryHandler()
        self.error_handler = error_handler or APIErrorHandler()

    async def execute_request(
        self,
        request_fn: Callable[[], Awaitable[T]],
        context: str = "API request",
    ) -> T:
        """
        Run request_fn with retries, the whole sequence guarded by the breaker.

        A burst of retries counts as a single success or failure for the breaker.
        """
        return await self.circuit_breaker.execute(
            lambda: self.retry_handler.execute_with_retry(request_fn, context)
        )

    async def handle_response(self, response: httpx.Response, request_id: str) -> Any:
        """Return response JSON or raise a classified APIError."""
        return await self.error_handler.handle_response(response, request_id)

    def get_metrics(self) -> dict[str, Any]:
        """Get metrics of all components."""
        metrics = self.error_handler.get_metrics()
        metrics.circuit_breaker_tripped = self.circuit_breaker.state == CircuitState.OPEN
        retry = self.retry_handler.config
        return {
            "error_handling": metrics.to_dict(),
            "circuit_breaker": self.circuit_breaker.get_status(),
            "retry_config": {
                "max_retries": retry.max_retries,
                "base_delay": retry.base_delay,
                "max_delay": retry.max_delay,
            },
        }

    def reset(self) -> None:
        """Reset metrics and the circuit breaker."""
        self.error_handler.reset_metrics()
        self.circuit_breaker.reset()
        logger.info("Resilience state reset")
