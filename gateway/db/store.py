"""Narrow interfaces to the durable store.

The gateway never touches ORM models outside ``repository.py``; services
depend on these abstract stores so tests can substitute in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


def month_key(moment: datetime) -> str:
    """Usage period identifier for ``moment`` (``YYYY-MM``)."""
    return moment.strftime("%Y-%m")


@dataclass(frozen=True)
class SessionRecord:
    """Durable (user, bot) -> upstream session mapping."""

    user_id: str
    bot_id: str
    handle: str
    last_used_at: datetime


@dataclass(frozen=True)
class LicenseRecord:
    """Company license for one bot, as read from the store."""

    id: str
    company_id: str
    bot_id: str
    status: str
    max_requests_per_month: int
    requests_used: int
    usage_period: str | None = None
    end_date: datetime | None = None

    def is_valid(self, now: datetime) -> bool:
        if self.status != "active":
            return False
        return self.end_date is None or self.end_date > now

    def used_in(self, period: str) -> int:
        """Requests counted against ``period``; a stale period reads as zero."""
        if self.usage_period is not None and self.usage_period != period:
            return 0
        return self.requests_used


@dataclass(frozen=True)
class StoredPreferences:
    """Global per-user preferences as stored (values unvalidated)."""

    communication_style: str | None = None
    nickname: str | None = None


@dataclass(frozen=True)
class UsageRecord:
    """Tokens spent on one upstream call."""

    user_id: str
    company_id: str | None
    bot_id: str
    session_handle: str
    call_id: str
    input_tokens: int
    output_tokens: int
    latency_ms: int | None
    occurred_at: datetime

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class SessionStore(ABC):
    @abstractmethod
    async def get_session(self, user_id: str, bot_id: str) -> SessionRecord | None: ...

    @abstractmethod
    async def save_session(self, record: SessionRecord) -> None:
        """Upsert on (user_id, bot_id)."""

    @abstractmethod
    async def touch_session(self, user_id: str, bot_id: str, when: datetime) -> None: ...


class PreferenceStore(ABC):
    @abstractmethod
    async def get_global_preferences(self, user_id: str) -> StoredPreferences | None: ...

    @abstractmethod
    async def get_bot_level(self, user_id: str, bot_id: str) -> str | None: ...

    @abstractmethod
    async def create_default_bot_level(self, user_id: str, bot_id: str, level: str) -> None: ...


class LicenseStore(ABC):
    @abstractmethod
    async def get_user_company(self, user_id: str) -> str | None: ...

    @abstractmethod
    async def get_company_licenses(self, company_id: str, bot_id: str) -> list[LicenseRecord]:
        """Licenses the company holds for the bot, valid or not."""

    @abstractmethod
    async def has_active_grant(self, user_id: str, license_id: str) -> bool: ...

    @abstractmethod
    async def increment_usage(self, license_id: str, period: str) -> None:
        """Add one request to the license, restarting the count on a new period."""


class UsageStore(ABC):
    @abstractmethod
    async def insert_usage(self, record: UsageRecord) -> None: ...
