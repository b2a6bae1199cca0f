"""SQLAlchemy implementation of the gateway store interfaces."""

from datetime import datetime, timezone

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.core.logging import get_logger
from gateway.db.models import (
    Bot,
    License,
    TokenUsage,
    User,
    UserBotAccess,
    UserBotPreference,
    UserPreference,
    UserThread,
)
from gateway.db.session import get_session_factory, session_scope
from gateway.db.store import (
    LicenseRecord,
    LicenseStore,
    PreferenceStore,
    SessionRecord,
    SessionStore,
    StoredPreferences,
    UsageRecord,
    UsageStore,
)

logger = get_logger(__name__)


def _aware(moment: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class SqlGatewayStore(SessionStore, PreferenceStore, LicenseStore, UsageStore):
    """All durable gateway state behind one session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._factory = session_factory

    @property
    def factory(self) -> async_sessionmaker[AsyncSession]:
        if self._factory is None:
            self._factory = get_session_factory()
        return self._factory

    # ========== Sessions ==========

    async def get_session(self, user_id: str, bot_id: str) -> SessionRecord | None:
        async with session_scope(self.factory) as db:
            result = await db.execute(
                select(UserThread).where(
                    UserThread.user_id == user_id,
                    UserThread.bot_name == bot_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return SessionRecord(
                user_id=row.user_id,
                bot_id=row.bot_name,
                handle=row.thread_id,
                last_used_at=_aware(row.last_used_at),
            )

    async def save_session(self, record: SessionRecord) -> None:
        async with session_scope(self.factory) as db:
            result = await db.execute(
                select(UserThread).where(
                    UserThread.user_id == record.user_id,
                    UserThread.bot_name == record.bot_id,
                )
            )
            if row := result.scalar_one_or_none():
                row.thread_id = record.handle
                row.created_at = record.last_used_at
                row.last_used_at = record.last_used_at
                row.message_count = 0
            else:
                db.add(
                    UserThread(
                        user_id=record.user_id,
                        bot_name=record.bot_id,
                        thread_id=record.handle,
                        created_at=record.last_used_at,
                        last_used_at=record.last_used_at,
                    )
                )

    async def touch_session(self, user_id: str, bot_id: str, when: datetime) -> None:
        async with session_scope(self.factory) as db:
            await db.execute(
                update(UserThread)
                .where(UserThread.user_id == user_id, UserThread.bot_name == bot_id)
                .values(
                    last_used_at=when,
                    message_count=UserThread.message_count + 1,
                )
            )

    # ========== Preferences ==========

    async def get_global_preferences(self, user_id: str) -> StoredPreferences | None:
        async with session_scope(self.factory) as db:
            row = await db.get(UserPreference, user_id)
            if row is None:
                return None
            return StoredPreferences(
                communication_style=row.communication_style,
                nickname=row.nickname,
            )

    async def get_bot_level(self, user_id: str, bot_id: str) -> str | None:
        async with session_scope(self.factory) as db:
            result = await db.execute(
                select(UserBotPreference.content_orientation).where(
                    UserBotPreference.user_id == user_id,
                    UserBotPreference.bot_name == bot_id,
                )
            )
            return result.scalar_one_or_none()

    async def create_default_bot_level(self, user_id: str, bot_id: str, level: str) -> None:
        async with session_scope(self.factory) as db:
            db.add(
                UserBotPreference(
                    user_id=user_id,
                    bot_name=bot_id,
                    content_orientation=level,
                )
            )

    # ========== Licensing ==========

    async def get_user_company(self, user_id: str) -> str | None:
        async with session_scope(self.factory) as db:
            result = await db.execute(select(User.company_id).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def get_company_licenses(self, company_id: str, bot_id: str) -> list[LicenseRecord]:
        async with session_scope(self.factory) as db:
            result = await db.execute(
                select(License)
                .join(Bot, Bot.id == License.bot_id)
                .where(License.company_id == company_id, Bot.name == bot_id)
                .order_by(License.start_date.desc())
            )
            return [
                LicenseRecord(
                    id=lic.id,
                    company_id=lic.company_id,
                    bot_id=bot_id,
                    status=lic.status,
                    max_requests_per_month=lic.max_requests_per_month,
                    requests_used=lic.requests_used,
                    usage_period=lic.usage_period,
                    end_date=_aware(lic.end_date) if lic.end_date else None,
                )
                for lic in result.scalars().all()
            ]

    async def has_active_grant(self, user_id: str, license_id: str) -> bool:
        async with session_scope(self.factory) as db:
            result = await db.execute(
                select(UserBotAccess.id).where(
                    UserBotAccess.user_id == user_id,
                    UserBotAccess.license_id == license_id,
                    UserBotAccess.status == "active",
                )
            )
            return result.first() is not None

    async def increment_usage(self, license_id: str, period: str) -> None:
        same_period = or_(License.usage_period == period, License.usage_period.is_(None))
        async with session_scope(self.factory) as db:
            await db.execute(
                update(License)
                .where(License.id == license_id)
                .values(
                    requests_used=case(
                        (same_period, License.requests_used + 1),
                        else_=1,
                    ),
                    usage_period=period,
                )
            )

    # ========== Usage ==========

    async def insert_usage(self, record: UsageRecord) -> None:
        async with session_scope(self.factory) as db:
            db.add(
                TokenUsage(
                    user_id=record.user_id,
                    company_id=record.company_id,
                    bot_name=record.bot_id,
                    thread_id=record.session_handle,
                    run_id=record.call_id,
                    input_tokens=record.input_tokens,
                    output_tokens=record.output_tokens,
                    total_tokens=record.total_tokens,
                    latency_ms=record.latency_ms,
                    created_at=record.occurred_at,
                )
            )
        logger.debug(
            "Token usage recorded",
            user_id=record.user_id,
            bot=record.bot_id,
            total_tokens=record.total_tokens,
        )


_store: SqlGatewayStore | None = None


def get_gateway_store() -> SqlGatewayStore:
    """Get the global SQL-backed store."""
    global _store
    if _store is None:
        _store = SqlGatewayStore()
    return _store
