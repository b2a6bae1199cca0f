"""Key-value store access over Upstash Redis.

Unlike a best-effort cache wrapper, every operation here raises
``CacheError`` when the store is unconfigured or failing so callers can
count the failure before degrading.
"""

import asyncio
from typing import Any

from upstash_redis.asyncio import Redis

from gateway.core.config import get_settings
from gateway.core.exceptions import CacheError
from gateway.core.logging import get_logger

logger = get_logger(__name__)

_UNSET: Any = object()


class CacheStore:
    """Thin async facade over the Upstash REST client."""

    def __init__(self, client: Redis | None = _UNSET) -> None:
        if client is not _UNSET:
            self._client = client
            return

        settings = get_settings()
        self._client = None
        if settings.redis_available:
            try:
                self._client = Redis(
                    url=settings.upstash_redis_rest_url,
                    token=settings.upstash_redis_rest_token,
                )
                logger.info("Redis cache initialized")
            except Exception as e:
                logger.warning("Failed to initialize Redis cache", error=str(e))
                self._client = None
        else:
            logger.info("Redis cache not configured, caching disabled")

    @property
    def is_available(self) -> bool:
        """Check if a client is configured."""
        return self._client is not None

    def _require(self) -> Any:
        if self._client is None:
            raise CacheError("cache store not configured")
        return self._client

    async def get(self, key: str) -> str | None:
        client = self._require()
        try:
            result = await client.get(key)
        except Exception as e:
            raise CacheError(f"get failed: {e}") from e
        return result if isinstance(result, str) else None

    async def setex(self, key: str, ttl: int, value: str) -> None:
        client = self._require()
        try:
            await client.setex(key, ttl, value)
        except Exception as e:
            raise CacheError(f"setex failed: {e}") from e

    async def keys(self, pattern: str) -> list[str]:
        # Upstash REST has no cursor SCAN; KEYS is acceptable for admin use
        client = self._require()
        try:
            result = await client.keys(pattern)
        except Exception as e:
            raise CacheError(f"keys failed: {e}") from e
        return list(result or [])

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        client = self._require()
        try:
            return int(await client.delete(*keys) or 0)
        except Exception as e:
            raise CacheError(f"delete failed: {e}") from e

    async def check_health(self, timeout: float = 5.0) -> bool:
        """Check Redis connectivity with timeout."""
        if not self.is_available:
            return False

        try:
            result = await asyncio.wait_for(self._client.ping(), timeout=timeout)  # type: ignore[union-attr]
            return bool(result)
        except asyncio.TimeoutError:
            logger.error("Redis health check timed out", timeout=timeout)
            return False
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
            except Exception as e:
                logger.debug("Redis client close failed", error=str(e))


_cache_store: CacheStore | None = None


def get_cache_store() -> CacheStore:
    """Get or create the global cache store."""
    global _cache_store
    if _cache_store is None:
        _cache_store = CacheStore()
    return _cache_store
