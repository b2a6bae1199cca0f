"""Bearer token verification.

Tokens are minted by the external auth service; this module only
verifies them and extracts the caller identity. Uses python-jose.
"""

from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt

from gateway.core.config import get_settings


@dataclass(frozen=True)
class Caller:
    """Identity of the authenticated requester."""

    user_id: str
    role: str
    email: str | None = None

    @property
    def is_operator(self) -> bool:
        return self.role == get_settings().operator_role


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token.

    Args:
        token: JWT token string to decode

    Returns:
        Decoded payload if valid, None otherwise
    """
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None


def caller_from_payload(payload: dict[str, Any]) -> Caller | None:
    """Build a Caller from a decoded token payload.

    The auth service historically put the user id under ``id``; ``sub``
    is preferred when both are present.
    """
    user_id = payload.get("sub") or payload.get("id")
    role = payload.get("role")
    if not user_id or not role:
        return None
    return Caller(user_id=str(user_id), role=str(role), email=payload.get("email"))
