"""Tests for QuotaGuard: check order, boundaries, period reset."""

from datetime import datetime, timezone

import pytest

from gateway.core.exceptions import ErrorKind, GatewayError
from gateway.services.quota import QuotaGuard

from tests.conftest import BOT, FakeClock, InMemoryStore


@pytest.fixture
def guard(store: InMemoryStore, clock: FakeClock) -> QuotaGuard:
    return QuotaGuard(store, operator_role="admin", clock=clock)


async def _kind(guard: QuotaGuard, user_id: str = "u1", role: str = "user") -> ErrorKind:
    with pytest.raises(GatewayError) as exc_info:
        await guard.authorize(user_id, BOT, role)
    return exc_info.value.kind


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    @pytest.mark.asyncio
    async def test_operator_bypasses_store(self, guard: QuotaGuard, store: InMemoryStore):
        context = await guard.authorize("root", BOT, "admin")
        assert context.unlimited
        assert context.license_id is None
        assert store.license_calls == 0

    @pytest.mark.asyncio
    async def test_no_company(self, guard: QuotaGuard):
        assert await _kind(guard) is ErrorKind.NO_COMPANY

    @pytest.mark.asyncio
    async def test_no_company_license(self, guard: QuotaGuard, store: InMemoryStore):
        store.companies["u1"] = "acme"
        assert await _kind(guard) is ErrorKind.NO_COMPANY_LICENSE

    @pytest.mark.asyncio
    async def test_license_for_other_bot_does_not_count(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", bot_id="EUDR")
        assert await _kind(guard) is ErrorKind.NO_COMPANY_LICENSE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,end_date", [
        ("suspended", None),
        ("active", datetime(2026, 3, 1, tzinfo=timezone.utc)),
    ])
    async def test_invalid_license_ignored(self, guard: QuotaGuard, store: InMemoryStore, status, end_date):
        store.add_member("u1", status=status, end_date=end_date)
        assert await _kind(guard) is ErrorKind.NO_COMPANY_LICENSE

    @pytest.mark.asyncio
    async def test_access_denied_without_grant(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", granted=False)
        assert await _kind(guard) is ErrorKind.ACCESS_DENIED

    @pytest.mark.asyncio
    async def test_license_checked_before_grant(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", status="expired", granted=True)
        assert await _kind(guard) is ErrorKind.NO_COMPANY_LICENSE

    @pytest.mark.asyncio
    async def test_authorized_context(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", max_requests=100, used=40)

        context = await guard.authorize("u1", BOT, "user")

        assert context.company_id == "acme"
        assert context.license_id == "lic-acme-MACF"
        assert context.monthly_used == 40
        assert context.remaining == 60
        assert not context.unlimited

    @pytest.mark.asyncio
    async def test_authorize_has_no_side_effects(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", used=5)
        await guard.authorize("u1", BOT, "user")
        assert store.licenses["lic-acme-MACF"].requests_used == 5


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


class TestQuota:
    @pytest.mark.asyncio
    async def test_last_request_allowed(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", max_requests=10, used=9)
        context = await guard.authorize("u1", BOT, "user")
        assert context.remaining == 1

    @pytest.mark.asyncio
    async def test_exhausted(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", max_requests=10, used=10)
        with pytest.raises(GatewayError) as exc_info:
            await guard.authorize("u1", BOT, "user")
        err = exc_info.value
        assert err.kind is ErrorKind.QUOTA_EXCEEDED
        assert err.status_code == 429
        assert err.details == {"usage": {"used": 10, "max": 10, "remaining": 0}}

    @pytest.mark.asyncio
    async def test_new_period_resets_count(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", max_requests=10, used=10, period="2026-02")
        context = await guard.authorize("u1", BOT, "user")
        assert context.monthly_used == 0

    @pytest.mark.asyncio
    async def test_non_positive_max_is_unlimited(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1", max_requests=0, used=5000)
        context = await guard.authorize("u1", BOT, "user")
        assert context.unlimited
        assert context.remaining is None

    @pytest.mark.asyncio
    async def test_operator_ignores_exhausted_quota(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("root", max_requests=1, used=1)
        context = await guard.authorize("root", BOT, "admin")
        assert context.unlimited


# ---------------------------------------------------------------------------
# Store failures
# ---------------------------------------------------------------------------


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_store_unavailable(self, guard: QuotaGuard, store: InMemoryStore):
        store.add_member("u1")
        store.fail_licenses = True
        with pytest.raises(GatewayError) as exc_info:
            await guard.authorize("u1", BOT, "user")
        assert exc_info.value.kind is ErrorKind.STORE_UNAVAILABLE
        assert exc_info.value.status_code == 503
