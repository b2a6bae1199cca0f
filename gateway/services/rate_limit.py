"""Per-user request rate limiting over the Upstash Redis REST API.

Sliding window counter kept in a sorted set, updated through a single
REST pipeline call. The limiter fails open: if Redis cannot be reached
the request is allowed, since licensing and quotas are enforced
separately.
"""

import time
from functools import lru_cache
from uuid import uuid4

import httpx

from gateway.core.config import get_settings
from gateway.core.logging import get_logger
from gateway.services.cache.constants import KEY_PREFIX_RATE

logger = get_logger(__name__)


class RateLimitService:
    """Sliding-window rate limits for the ask and admin endpoints."""

    def __init__(self) -> None:
        settings = get_settings()
        self._enabled = settings.rate_limit_enabled and settings.redis_available
        self._url = settings.upstash_redis_rest_url
        self._token = settings.upstash_redis_rest_token
        self._ask_limit = settings.rate_limit_ask_requests_per_minute
        self._admin_limit = settings.rate_limit_admin_requests_per_minute
        self._window_seconds = 60

        self._client: httpx.AsyncClient | None = None

        if self._enabled:
            logger.info(
                "Rate limiting initialized",
                ask_limit=self._ask_limit,
                admin_limit=self._admin_limit,
            )
        else:
            logger.info("Rate limiting disabled")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(5.0, connect=2.0),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"Authorization": f"Bearer {self._token}"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    async def _check_limit(self, key: str, limit: int) -> tuple[bool, int]:
        """Count this request in the window.

        Returns:
            Tuple of (allowed, remaining_requests); remaining is -1 when
            the limiter is disabled or unreachable.
        """
        if not self._enabled:
            return True, -1

        try:
            now = time.time()
            window_start = now - self._window_seconds
            client = await self._get_client()

            response = await client.post(
                f"{self._url}/pipeline",
                json=[
                    ["ZREMRANGEBYSCORE", key, "0", str(window_start)],
                    ["ZADD", key, str(now), uuid4().hex],
                    ["EXPIRE", key, str(self._window_seconds * 2)],
                    ["ZCARD", key],
                ],
            )
            response.raise_for_status()
            results = response.json()

            count = int(results[-1].get("result", 0)) if results else 0
            return count <= limit, max(0, limit - count)

        except Exception as e:
            logger.warning("Rate limit check failed", key=key, error=str(e))
            return True, -1

    async def check_ask_limit(self, user_id: str) -> tuple[bool, int]:
        return await self._check_limit(f"{KEY_PREFIX_RATE}:ask:{user_id}", self._ask_limit)

    async def check_admin_limit(self, user_id: str) -> tuple[bool, int]:
        return await self._check_limit(f"{KEY_PREFIX_RATE}:admin:{user_id}", self._admin_limit)


@lru_cache
def get_rate_limit_service() -> RateLimitService:
    """Get or create the rate limit service instance (cached)."""
    return RateLimitService()
