"""API dependencies for FastAPI routes."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gateway.core.exceptions import AuthenticationError, AuthorizationError, RateLimitError
from gateway.core.security import Caller, caller_from_payload, decode_access_token
from gateway.services.gateway import ConversationGateway, get_conversation_gateway
from gateway.services.rate_limit import RateLimitService, get_rate_limit_service

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Caller:
    """Resolve the caller from the bearer token.

    Raises:
        AuthenticationError: If authentication fails
    """
    if not credentials:
        raise AuthenticationError("Authentication required")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    caller = caller_from_payload(payload)
    if caller is None:
        raise AuthenticationError("Invalid token payload")
    return caller


async def require_operator(
    caller: Annotated[Caller, Depends(get_current_caller)],
    rate_limiter: Annotated[RateLimitService, Depends(get_rate_limit_service)],
) -> Caller:
    """Allow operators only, then apply the admin rate limit."""
    if not caller.is_operator:
        raise AuthorizationError("Operator role required")

    allowed, _ = await rate_limiter.check_admin_limit(caller.user_id)
    if not allowed:
        raise RateLimitError()
    return caller


async def check_ask_rate_limit(
    caller: Annotated[Caller, Depends(get_current_caller)],
    rate_limiter: Annotated[RateLimitService, Depends(get_rate_limit_service)],
) -> None:
    """Per-user rate limit on questions.

    Raises:
        RateLimitError: If rate limit exceeded
    """
    allowed, _ = await rate_limiter.check_ask_limit(caller.user_id)
    if not allowed:
        raise RateLimitError()


# Type aliases for cleaner route signatures
CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
OperatorCaller = Annotated[Caller, Depends(require_operator)]
Gateway = Annotated[ConversationGateway, Depends(get_conversation_gateway)]
