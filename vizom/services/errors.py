"""
Service layer exceptions.

Every failure that crosses the API boundary is an APIError carrying a stable
string code; the retry loop, the circuit breaker and callers only look at
that code and the retryable flag.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any

import httpx


class ErrorCode(str, Enum):
    """Stable error codes."""

    CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    BAD_GATEWAY = "BAD_GATEWAY"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    JSON_PARSE_ERROR = "JSON_PARSE_ERROR"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


RETRYABLE_CODES: frozenset[str] = frozenset(
    {
        ErrorCode.RATE_LIMITED,
        ErrorCode.TIMEOUT,
        ErrorCode.INTERNAL_SERVER_ERROR,
        ErrorCode.BAD_GATEWAY,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.GATEWAY_TIMEOUT,
        ErrorCode.NETWORK_ERROR,
        ErrorCode.CONNECTION_ERROR,
    }
)

_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.RATE_LIMITED,
    500: ErrorCode.INTERNAL_SERVER_ERROR,
    502: ErrorCode.BAD_GATEWAY,
    503: ErrorCode.SERVICE_UNAVAILABLE,
    504: ErrorCode.GATEWAY_TIMEOUT,
}


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class APIError(ServiceError):
    """Classified error passed between HTTP handling, retries and callers."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | str,
        *,
        status: int | None = None,
        retryable: bool = False,
        request_id: str | None = None,
        details: Any = None,
        service_id: str | None = None,
    ):
        self.code = _as_code(code)
        self.message = message
        self.status = status
        self.retryable = retryable
        self.request_id = request_id
        self.details = details
        self.timestamp = datetime.now()
        super().__init__(message, service_id=service_id)

    @property
    def code_value(self) -> str:
        """Plain string form of the error code."""
        return self.code.value if isinstance(self.code, ErrorCode) else str(self.code)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code_value,
            "message": self.message,
            "status": self.status,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code_value}, message={self.message!r})"


class CircuitOpenError(APIError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            ErrorCode.CIRCUIT_BREAKER_OPEN,
            retryable=False,
            service_id=service_id,
        )


class MaxRetriesExceededError(APIError):
    """Every permitted attempt failed with a retryable error."""

    def __init__(self, context: str, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All {attempts} attempts failed for {context}. Last error: {last_error}",
            ErrorCode.MAX_RETRIES_EXCEEDED,
            retryable=False,
            status=getattr(last_error, "status", None),
            request_id=getattr(last_error, "request_id", None),
            details={"attempts": attempts, "last_error": str(last_error)},
        )


class ResponseParseError(APIError):
    """Response could not be recovered by any fallback strategy."""

    pass


def _as_code(code: ErrorCode | str) -> ErrorCode | str:
    if isinstance(code, ErrorCode):
        return code
    try:
        return ErrorCode(code)
    except ValueError:
        return code


def error_code_for_status(status: int) -> ErrorCode:
    """Map an HTTP status to a stable error code."""
    return _STATUS_CODES.get(status, ErrorCode.HTTP_ERROR)


def is_retryable(code: ErrorCode | str, status: int | None = None) -> bool:
    """Rate limits, timeouts, network failures and any 5xx are retryable."""
    if code in RETRYABLE_CODES:
        return True
    return status is not None and 500 <= status < 600


def classify_exception(
    exc: BaseException, request_id: str | None = None
) -> APIError:
    """Turn an arbitrary exception into an APIError."""
    if isinstance(exc, APIError):
        return exc

    if isinstance(exc, asyncio.CancelledError):
        return APIError(
            "Request was cancelled",
            ErrorCode.REQUEST_CANCELLED,
            retryable=False,
            request_id=request_id,
        )

    if isinstance(exc, httpx.TimeoutException):
        code = ErrorCode.TIMEOUT
    elif isinstance(exc, httpx.ConnectError):
        code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, httpx.TransportError):
        code = ErrorCode.NETWORK_ERROR
    else:
        return APIError(
            f"Unexpected error: {exc}",
            ErrorCode.UNEXPECTED_ERROR,
            retryable=False,
            request_id=request_id,
            details={"original_error": f"{type(exc).__name__}: {exc}"},
        )

    return APIError(
        str(exc) or type(exc).__name__,
        code,
        retryable=True,
        request_id=request_id,
        details={"original_error": type(exc).__name__},
    )
