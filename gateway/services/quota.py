"""Layered license and quota authorization.

Checks run in a fixed order and stop at the first rejection: operator
bypass, company, company license for the bot, user grant, monthly quota.
Authorization has no side effects; usage is counted after a successful
upstream call by ``UsageRecorder``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from gateway.core.config import get_settings
from gateway.core.exceptions import ErrorKind, GatewayError
from gateway.core.logging import get_logger
from gateway.db.store import LicenseRecord, LicenseStore, month_key

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthorizationContext:
    """Outcome of a successful authorization."""

    user_id: str
    role: str
    bot_id: str
    company_id: str | None = None
    license_id: str | None = None
    monthly_used: int = 0
    monthly_max: int | None = None

    @property
    def unlimited(self) -> bool:
        return self.monthly_max is None

    @property
    def remaining(self) -> int | None:
        if self.monthly_max is None:
            return None
        return max(self.monthly_max - self.monthly_used, 0)


class QuotaGuard:
    """Decide whether a caller may spend an upstream call on a bot."""

    def __init__(
        self,
        store: LicenseStore,
        *,
        operator_role: str | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._store = store
        self._operator_role = operator_role or get_settings().operator_role
        self._clock = clock

    async def authorize(self, user_id: str, bot_id: str, role: str) -> AuthorizationContext:
        if role == self._operator_role:
            logger.info("Operator bypass", user_id=user_id, bot=bot_id)
            return AuthorizationContext(user_id=user_id, role=role, bot_id=bot_id)

        try:
            return await self._authorize_member(user_id, bot_id, role)
        except GatewayError:
            raise
        except Exception as e:
            logger.error("Authorization store failure", user_id=user_id, bot=bot_id, error=str(e))
            raise GatewayError(
                ErrorKind.STORE_UNAVAILABLE,
                "Authorization is temporarily unavailable. Please try again.",
            ) from e

    async def _authorize_member(
        self, user_id: str, bot_id: str, role: str
    ) -> AuthorizationContext:
        company_id = await self._store.get_user_company(user_id)
        if not company_id:
            logger.warning("User without company", user_id=user_id, bot=bot_id)
            raise GatewayError(
                ErrorKind.NO_COMPANY,
                "Your account is not attached to a company. Contact your administrator.",
            )

        now = self._clock()
        licenses = [
            lic
            for lic in await self._store.get_company_licenses(company_id, bot_id)
            if lic.is_valid(now)
        ]
        if not licenses:
            logger.warning("No valid company license", company_id=company_id, bot=bot_id)
            raise GatewayError(
                ErrorKind.NO_COMPANY_LICENSE,
                f"Your company has no active license for {bot_id}.",
                {"bot": bot_id},
            )

        license_ = await self._granted_license(user_id, licenses)
        if license_ is None:
            logger.warning("User not granted bot access", user_id=user_id, bot=bot_id)
            raise GatewayError(
                ErrorKind.ACCESS_DENIED,
                f"You do not have access to {bot_id}. Contact your administrator.",
                {"bot": bot_id},
            )

        used = license_.used_in(month_key(now))
        maximum = license_.max_requests_per_month
        if maximum > 0 and used >= maximum:
            logger.warning(
                "Monthly quota exceeded",
                company_id=company_id,
                license_id=license_.id,
                used=used,
                max=maximum,
            )
            raise GatewayError(
                ErrorKind.QUOTA_EXCEEDED,
                "Your company has reached its monthly request quota for this bot.",
                {"usage": {"used": used, "max": maximum, "remaining": 0}},
            )

        return AuthorizationContext(
            user_id=user_id,
            role=role,
            bot_id=bot_id,
            company_id=company_id,
            license_id=license_.id,
            monthly_used=used,
            monthly_max=maximum if maximum > 0 else None,
        )

    async def _granted_license(
        self, user_id: str, licenses: list[LicenseRecord]
    ) -> LicenseRecord | None:
        for license_ in licenses:
            if await self._store.has_active_grant(user_id, license_.id):
                return license_
        return None
