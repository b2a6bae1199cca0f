"""Core module exports."""

from gateway.core.config import Settings, get_settings
from gateway.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    CacheError,
    ErrorKind,
    GatewayError,
    RateLimitError,
    StoreError,
    UpstreamError,
)
from gateway.core.logging import bind_request_context, get_logger, setup_logging
from gateway.core.security import Caller, caller_from_payload, decode_access_token
from gateway.core.tasks import BackgroundDispatcher, get_background_dispatcher

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Logging
    "bind_request_context",
    "get_logger",
    "setup_logging",
    # Security
    "Caller",
    "caller_from_payload",
    "decode_access_token",
    # Tasks
    "BackgroundDispatcher",
    "get_background_dispatcher",
    # Exceptions
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "CacheError",
    "ErrorKind",
    "GatewayError",
    "RateLimitError",
    "StoreError",
    "UpstreamError",
]
