"""Custom exception classes and exception handlers."""

from enum import Enum
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from gateway.core.logging import get_logger

logger = get_logger(__name__)


def _get_cors_headers(request: Request) -> dict[str, str]:
    """Get CORS headers for error responses."""
    origin = request.headers.get("origin", "")
    # Import here to avoid circular imports
    from gateway.core.config import get_settings
    settings = get_settings()

    if origin and (origin in settings.cors_origins or "*" in settings.cors_origins):
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS, PATCH",
            "Access-Control-Allow-Headers": "Authorization, Content-Type, X-Request-ID",
        }
    return {}


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        code: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.code = code
        self.headers = headers or {}
        super().__init__(message)


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message,
            status.HTTP_401_UNAUTHORIZED,
            code="AUTH_REQUIRED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(AppException):
    """Authorization failed."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status.HTTP_403_FORBIDDEN, code="FORBIDDEN")


class RateLimitError(AppException):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int = 60):
        super().__init__(
            "Rate limit exceeded. Please try again later.",
            status.HTTP_429_TOO_MANY_REQUESTS,
            {"retry_after": retry_after},
            code="RATE_LIMITED",
        )


class UpstreamError(Exception):
    """Raised by upstream adapters; translated by the gateway."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"Upstream error ({provider}): {message}")


class CacheError(Exception):
    """Key-value store unreachable or failing (never surfaced to callers)."""


class StoreError(Exception):
    """Durable datastore operation failed."""


class ErrorKind(str, Enum):
    """Caller-visible failure kinds of the conversation gateway."""

    NO_COMPANY = "NO_COMPANY"
    NO_COMPANY_LICENSE = "NO_COMPANY_LICENSE"
    ACCESS_DENIED = "ACCESS_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    BOT_NOT_CONFIGURED = "BOT_NOT_CONFIGURED"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UPSTREAM_FAILED = "UPSTREAM_FAILED"
    SESSION_UNAVAILABLE = "SESSION_UNAVAILABLE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


_KIND_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NO_COMPANY: status.HTTP_403_FORBIDDEN,
    ErrorKind.NO_COMPANY_LICENSE: status.HTTP_403_FORBIDDEN,
    ErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.QUOTA_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.BOT_NOT_CONFIGURED: status.HTTP_404_NOT_FOUND,
    ErrorKind.UPSTREAM_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.UPSTREAM_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.SESSION_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

RETRYABLE_KINDS = frozenset({ErrorKind.UPSTREAM_TIMEOUT, ErrorKind.UPSTREAM_FAILED})


class GatewayError(AppException):
    """Typed failure of an ``ask`` request."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.kind = kind
        super().__init__(message, _KIND_STATUS[kind], details, code=kind.value)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions."""
    logger.warning(
        "Application exception",
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
        path=str(request.url),
    )

    error: dict[str, Any] = {
        "message": exc.message,
        "details": exc.details,
    }
    if exc.code:
        error["code"] = exc.code
    if isinstance(exc, GatewayError):
        error["retryable"] = exc.retryable

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error},
        headers={**exc.headers, **_get_cors_headers(request)},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=str(request.url),
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
            }
        },
        headers={**(exc.headers or {}), **_get_cors_headers(request)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        exc_info=exc,
        path=str(request.url),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "An internal error occurred. Please try again later.",
            }
        },
        headers=_get_cors_headers(request),
    )
