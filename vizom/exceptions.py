"""
Custom exceptions and error handlers
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from vizom.services.errors import APIError, ErrorCode


class ProxyError(HTTPException):
    """Error rendered as {error, code, requestId}"""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str,
        request_id: str | None = None,
    ):
        super().__init__(
            status_code=status_code,
            detail={"error": message, "code": code, "requestId": request_id},
        )


class BadRequestError(ProxyError):
    """Invalid request exception"""

    def __init__(self, message: str = "Bad request", request_id: str | None = None):
        super().__init__(
            status.HTTP_400_BAD_REQUEST, message, ErrorCode.BAD_REQUEST.value, request_id
        )


class ServiceUnavailableError(ProxyError):
    """Upstream temporarily unavailable exception"""

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        code: str = ErrorCode.SERVICE_UNAVAILABLE.value,
        request_id: str | None = None,
    ):
        super().__init__(status.HTTP_503_SERVICE_UNAVAILABLE, message, code, request_id)


class UpstreamError(ProxyError):
    """Upstream API error exception"""

    def __init__(
        self,
        message: str = "AI service error",
        code: str = ErrorCode.HTTP_ERROR.value,
        request_id: str | None = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
    ):
        super().__init__(status_code, message, code, request_id)


def error_from_api_error(error: APIError) -> ProxyError:
    """Pick the HTTP exception for a classified API error."""
    code = error.code_value
    if code == ErrorCode.BAD_REQUEST and error.status in (None, 400):
        return BadRequestError(error.message, error.request_id)
    if code == ErrorCode.CIRCUIT_BREAKER_OPEN:
        return ServiceUnavailableError(error.message, code, error.request_id)
    if error.status is not None and 400 <= error.status < 600:
        return UpstreamError(error.message, code, error.request_id, error.status)
    return UpstreamError(error.message, code, error.request_id)


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    """Render ProxyError details as the response body."""
    return JSONResponse(status_code=exc.status_code, content=exc.detail)
