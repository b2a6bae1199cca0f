"""Per (user, bot) upstream session reuse.

An in-process LRU fronts the durable session store. A mapping is reused
while its last use is inside the freshness window; otherwise a new
upstream session supersedes it. Store failures only cost a new session.
"""

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from cachetools import LRUCache

from gateway.core.config import get_settings
from gateway.core.exceptions import ErrorKind, GatewayError
from gateway.core.logging import get_logger
from gateway.core.tasks import BackgroundDispatcher, get_background_dispatcher
from gateway.db.store import SessionRecord, SessionStore
from gateway.services.upstream import UpstreamAdapter

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionCache:
    """Acquire reusable upstream session handles."""

    def __init__(
        self,
        store: SessionStore,
        upstream: UpstreamAdapter,
        dispatcher: BackgroundDispatcher | None = None,
        *,
        capacity: int | None = None,
        freshness_seconds: int | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        settings = get_settings()
        self._store = store
        self._upstream = upstream
        self._dispatcher = dispatcher or get_background_dispatcher()
        self._capacity = capacity or settings.session_cache_capacity
        self._freshness = timedelta(
            seconds=freshness_seconds or settings.session_freshness_seconds
        )
        self._clock = clock
        self._entries: LRUCache[tuple[str, str], tuple[str, datetime]] = LRUCache(
            maxsize=self._capacity
        )
        self._lock = threading.Lock()

    def _is_fresh(self, last_used_at: datetime, now: datetime) -> bool:
        return now - last_used_at < self._freshness

    def _remember(self, key: tuple[str, str], handle: str, when: datetime) -> None:
        with self._lock:
            self._entries[key] = (handle, when)

    def _cached(self, key: tuple[str, str]) -> tuple[str, datetime] | None:
        with self._lock:
            return self._entries.get(key)

    async def acquire(self, user_id: str, bot_id: str) -> str:
        """Return a session handle for (user, bot), creating one if needed."""
        key = (user_id, bot_id)
        now = self._clock()

        cached = self._cached(key)
        if cached is not None and self._is_fresh(cached[1], now):
            self._remember(key, cached[0], now)
            self._touch_later(user_id, bot_id, now)
            return cached[0]

        try:
            record = await self._store.get_session(user_id, bot_id)
        except Exception as e:
            logger.warning(
                "Session lookup failed, creating a new session",
                user_id=user_id,
                bot=bot_id,
                error=str(e),
            )
            return await self._create(user_id, bot_id, now)

        if record is not None and self._is_fresh(record.last_used_at, now):
            self._remember(key, record.handle, now)
            self._touch_later(user_id, bot_id, now)
            logger.debug("Session reused from store", user_id=user_id, bot=bot_id)
            return record.handle

        return await self._create(user_id, bot_id, now)

    async def _create(self, user_id: str, bot_id: str, now: datetime) -> str:
        try:
            handle = await self._upstream.create_session()
        except Exception as e:
            logger.error("Session creation failed", user_id=user_id, bot=bot_id, error=str(e))
            raise GatewayError(
                ErrorKind.SESSION_UNAVAILABLE,
                "Unable to open a conversation session. Please try again.",
            ) from e

        if not handle:
            raise GatewayError(
                ErrorKind.SESSION_UNAVAILABLE,
                "Upstream returned an empty session handle.",
            )

        self._remember((user_id, bot_id), handle, now)
        self._dispatcher.submit(
            self._store.save_session(
                SessionRecord(user_id=user_id, bot_id=bot_id, handle=handle, last_used_at=now)
            ),
            name="session.save",
        )
        logger.info("Session created", user_id=user_id, bot=bot_id)
        return handle

    def _touch_later(self, user_id: str, bot_id: str, now: datetime) -> None:
        self._dispatcher.submit(
            self._store.touch_session(user_id, bot_id, now),
            name="session.touch",
        )

    def invalidate(self, user_id: str, bot_id: str) -> bool:
        """Drop the in-process entry; the durable mapping is left alone."""
        with self._lock:
            return self._entries.pop((user_id, bot_id), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            size = len(self._entries)
        return {
            "size": size,
            "capacity": self._capacity,
            "freshness_seconds": int(self._freshness.total_seconds()),
        }
