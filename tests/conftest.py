"""Test configuration and fixtures.

Provides in-memory fakes for:
- The durable store (sessions, preferences, licenses, usage)
- The Upstash Redis client, with an injectable clock for TTL expiry
- The upstream assistants service
"""

import asyncio
import dataclasses
import itertools
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt

from gateway.core.config import get_settings
from gateway.core.exceptions import StoreError, UpstreamError
from gateway.core.tasks import BackgroundDispatcher
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
from gateway.services.cache.response import ResponseCache
from gateway.services.cache.store import CacheStore
from gateway.services.gateway import ConversationGateway
from gateway.services.preferences import PreferenceResolver
from gateway.services.quota import QuotaGuard
from gateway.services.session_cache import SessionCache
from gateway.services.upstream import (
    AssistantInfo,
    Completion,
    CompletionStatus,
    UpstreamAdapter,
)
from gateway.services.usage import UsageRecorder

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BOT = "MACF"
OTHER_BOT = "EUDR"
ASSISTANTS = {BOT: "asst_macf", OTHER_BOT: "asst_eudr"}


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Manually advanced clock usable both as datetime and epoch source."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


# =============================================================================
# Redis
# =============================================================================

class FakeRedis:
    """Subset of upstash_redis.asyncio.Redis with passive expiry."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.data: dict[str, tuple[str, float | None]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unreachable")

    def _live(self, key: str) -> str | None:
        item = self.data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock.time() >= expires_at:
            del self.data[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        self._check()
        return self._live(key)

    async def setex(self, key: str, seconds: int, value: str) -> bool:
        self._check()
        self.data[key] = (value, self._clock.time() + seconds)
        return True

    async def keys(self, pattern: str) -> list[str]:
        self._check()
        prefix = pattern.rstrip("*")
        return [k for k in list(self.data) if k.startswith(prefix) and self._live(k) is not None]

    async def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def ping(self) -> str:
        self._check()
        return "PONG"

    async def close(self) -> None:
        return None


# =============================================================================
# Durable store
# =============================================================================

class InMemoryStore(SessionStore, PreferenceStore, LicenseStore, UsageStore):
    def __init__(self) -> None:
        self.sessions: dict[tuple[str, str], SessionRecord] = {}
        self.global_prefs: dict[str, StoredPreferences] = {}
        self.bot_levels: dict[tuple[str, str], str] = {}
        self.companies: dict[str, str] = {}
        self.licenses: dict[str, LicenseRecord] = {}
        self.grants: set[tuple[str, str]] = set()
        self.usage: list[UsageRecord] = []
        self.touches: list[tuple[str, str, datetime]] = []
        self.license_calls = 0
        self.fail_sessions = False
        self.fail_preferences = False
        self.fail_licenses = False
        self.fail_usage = False

    # Sessions
    async def get_session(self, user_id: str, bot_id: str) -> SessionRecord | None:
        if self.fail_sessions:
            raise StoreError("session store unreachable")
        return self.sessions.get((user_id, bot_id))

    async def save_session(self, record: SessionRecord) -> None:
        if self.fail_sessions:
            raise StoreError("session store unreachable")
        self.sessions[(record.user_id, record.bot_id)] = record

    async def touch_session(self, user_id: str, bot_id: str, when: datetime) -> None:
        if self.fail_sessions:
            raise StoreError("session store unreachable")
        self.touches.append((user_id, bot_id, when))
        if record := self.sessions.get((user_id, bot_id)):
            self.sessions[(user_id, bot_id)] = dataclasses.replace(record, last_used_at=when)

    # Preferences
    async def get_global_preferences(self, user_id: str) -> StoredPreferences | None:
        if self.fail_preferences:
            raise StoreError("preference store unreachable")
        return self.global_prefs.get(user_id)

    async def get_bot_level(self, user_id: str, bot_id: str) -> str | None:
        if self.fail_preferences:
            raise StoreError("preference store unreachable")
        return self.bot_levels.get((user_id, bot_id))

    async def create_default_bot_level(self, user_id: str, bot_id: str, level: str) -> None:
        self.bot_levels.setdefault((user_id, bot_id), level)

    # Licensing
    async def get_user_company(self, user_id: str) -> str | None:
        self.license_calls += 1
        if self.fail_licenses:
            raise StoreError("license store unreachable")
        return self.companies.get(user_id)

    async def get_company_licenses(self, company_id: str, bot_id: str) -> list[LicenseRecord]:
        self.license_calls += 1
        if self.fail_licenses:
            raise StoreError("license store unreachable")
        return [
            lic for lic in self.licenses.values()
            if lic.company_id == company_id and lic.bot_id == bot_id
        ]

    async def has_active_grant(self, user_id: str, license_id: str) -> bool:
        self.license_calls += 1
        if self.fail_licenses:
            raise StoreError("license store unreachable")
        return (user_id, license_id) in self.grants

    async def increment_usage(self, license_id: str, period: str) -> None:
        if self.fail_licenses:
            raise StoreError("license store unreachable")
        lic = self.licenses[license_id]
        used = lic.used_in(period) + 1
        self.licenses[license_id] = dataclasses.replace(lic, requests_used=used, usage_period=period)

    # Usage
    async def insert_usage(self, record: UsageRecord) -> None:
        if self.fail_usage:
            raise StoreError("usage store unreachable")
        self.usage.append(record)

    # Seeding helpers
    def add_member(
        self,
        user_id: str,
        *,
        company_id: str = "acme",
        bot_id: str = BOT,
        max_requests: int = 100,
        used: int = 0,
        period: str | None = "2026-03",
        status: str = "active",
        end_date: datetime | None = None,
        granted: bool = True,
    ) -> LicenseRecord:
        self.companies[user_id] = company_id
        license_id = f"lic-{company_id}-{bot_id}"
        lic = self.licenses.get(license_id) or LicenseRecord(
            id=license_id,
            company_id=company_id,
            bot_id=bot_id,
            status=status,
            max_requests_per_month=max_requests,
            requests_used=used,
            usage_period=period,
            end_date=end_date,
        )
        self.licenses[license_id] = lic
        if granted:
            self.grants.add((user_id, license_id))
        return lic


# =============================================================================
# Upstream
# =============================================================================

class FakeUpstream(UpstreamAdapter):
    provider_name = "fake"

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.created: list[str] = []
        self.sent: list[dict[str, Any]] = []
        self.answer = "Answer"
        self.input_tokens = 40
        self.output_tokens = 60
        self.pending_polls = 0
        self.final_status = CompletionStatus.COMPLETED
        self.fail_create = False
        self.fail_send = False
        self.release: asyncio.Event | None = None
        self._polls: dict[str, int] = {}

    async def create_session(self) -> str:
        if self.fail_create:
            raise UpstreamError(self.provider_name, "unreachable")
        handle = f"thread_{next(self._ids)}"
        self.created.append(handle)
        return handle

    async def send_message(self, handle, text, *, assistant_id, instructions=None) -> str:
        if self.fail_send:
            raise UpstreamError(self.provider_name, "rejected")
        call_id = f"run_{len(self.sent) + 1}"
        self.sent.append({
            "handle": handle,
            "text": text,
            "assistant_id": assistant_id,
            "instructions": instructions,
            "call_id": call_id,
        })
        return call_id

    async def await_completion(self, handle: str, call_id: str) -> Completion:
        if self.release is not None:
            await self.release.wait()
        polls = self._polls.get(call_id, 0)
        self._polls[call_id] = polls + 1
        if polls < self.pending_polls:
            return Completion(status=CompletionStatus.RUNNING)
        if self.final_status is not CompletionStatus.COMPLETED:
            return Completion(status=self.final_status, error="boom")
        return Completion(
            status=CompletionStatus.COMPLETED,
            answer_text=self.answer,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )

    async def describe(self, assistant_id: str) -> AssistantInfo:
        return AssistantInfo(
            assistant_id=assistant_id,
            display_name=f"Assistant {assistant_id}",
            model="gpt-4o",
            capabilities=["file_search"],
        )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def cache_store(fake_redis: FakeRedis) -> CacheStore:
    return CacheStore(client=fake_redis)


@pytest.fixture
def response_cache(cache_store: CacheStore, clock: FakeClock) -> ResponseCache:
    return ResponseCache(cache_store, clock=clock.time)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest_asyncio.fixture
async def dispatcher() -> AsyncGenerator[BackgroundDispatcher, None]:
    dispatcher = BackgroundDispatcher(max_concurrency=4)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
def session_cache(
    store: InMemoryStore,
    upstream: FakeUpstream,
    dispatcher: BackgroundDispatcher,
    clock: FakeClock,
) -> SessionCache:
    return SessionCache(store, upstream, dispatcher, capacity=100, freshness_seconds=3600, clock=clock)


@pytest.fixture
def conversation_gateway(
    store: InMemoryStore,
    upstream: FakeUpstream,
    dispatcher: BackgroundDispatcher,
    response_cache: ResponseCache,
    session_cache: SessionCache,
    clock: FakeClock,
) -> ConversationGateway:
    return ConversationGateway(
        assistants=ASSISTANTS,
        upstream=upstream,
        response_cache=response_cache,
        session_cache=session_cache,
        preferences=PreferenceResolver(store, answer_language="French"),
        quota_guard=QuotaGuard(store, operator_role="admin", clock=clock),
        usage=UsageRecorder(store, store, dispatcher, clock=clock),
        max_wait_seconds=1.0,
        poll_interval_seconds=0.01,
    )


# =============================================================================
# HTTP
# =============================================================================

def make_token(user_id: str, role: str = "user", **claims: Any) -> str:
    settings = get_settings()
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=15),
        **claims,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def auth_header(user_id: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest_asyncio.fixture
async def client(conversation_gateway: ConversationGateway) -> AsyncGenerator[AsyncClient, None]:
    """Async test client wired to the in-memory gateway, rate limits off."""
    from gateway.main import app
    from gateway.services.gateway import get_conversation_gateway
    from gateway.services.rate_limit import get_rate_limit_service

    class _NoLimit:
        async def check_ask_limit(self, user_id: str) -> tuple[bool, int]:
            return True, -1

        async def check_admin_limit(self, user_id: str) -> tuple[bool, int]:
            return True, -1

    app.dependency_overrides[get_conversation_gateway] = lambda: conversation_gateway
    app.dependency_overrides[get_rate_limit_service] = lambda: _NoLimit()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
