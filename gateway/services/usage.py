"""Fire-and-forget usage accounting."""

from collections.abc import Callable
from datetime import datetime, timezone

from gateway.core.logging import get_logger
from gateway.core.tasks import BackgroundDispatcher, get_background_dispatcher
from gateway.db.store import LicenseStore, UsageRecord, UsageStore, month_key

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageRecorder:
    """Persist token usage and quota increments off the response path.

    Writes go through the background dispatcher; a failed write is logged
    as a dead-letter event and never retried or surfaced to the caller.
    """

    def __init__(
        self,
        usage_store: UsageStore,
        license_store: LicenseStore,
        dispatcher: BackgroundDispatcher | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._usage_store = usage_store
        self._license_store = license_store
        self._dispatcher = dispatcher or get_background_dispatcher()
        self._clock = clock

    def record(self, usage: UsageRecord) -> bool:
        """Queue a usage row; returns False when there is nothing to record."""
        if usage.total_tokens <= 0:
            logger.debug("Skipping empty usage record", call_id=usage.call_id)
            return False
        self._dispatcher.submit(self._usage_store.insert_usage(usage), name="usage.insert")
        return True

    def increment_quota(self, license_id: str | None) -> bool:
        """Queue a quota increment; operator contexts have no license."""
        if license_id is None:
            return False
        period = month_key(self._clock())
        self._dispatcher.submit(
            self._license_store.increment_usage(license_id, period),
            name="quota.increment",
        )
        return True

    async def drain(self) -> None:
        await self._dispatcher.drain()
