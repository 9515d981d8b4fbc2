"""Quota Enforcer: per-user daily / monthly generation limits.

Usage is derived by counting ledger rows inside the current day and
calendar-month windows at check time; the enforcer keeps no state of its
own. Limits come from the user's plan tier; None means unlimited and always
passes.

If the usage store is unreachable the enforcer fails open: the call is
permitted and a warning is logged.

Per-feature limits (profile / business / quiz) are a second, daily-only
layer applied to generations tagged with a FeatureType. They are
admin-editable per (service, plan tier); an unreadable configuration falls
back to DEFAULT_FEATURE_LIMITS.

Concurrent requests may both pass a check that a serialized check would
have rejected. Enforcement guards against sustained abuse, not exact billing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from types import MappingProxyType
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from ai_gateway.core.config import settings
from ai_gateway.core.exceptions import QuotaExceededError
from ai_gateway.core.metrics import QUOTA_DENIALS
from ai_gateway.gateway.types import FeatureType, PlanTier

logger = logging.getLogger(__name__)

UNLIMITED = None


class UsageCounter(Protocol):
    async def count_since(self, user_id: str, since: datetime, feature_type: str | None = None) -> int: ...


@dataclass(frozen=True)
class QuotaLimits:
    daily: int | None  # None = unlimited
    monthly: int | None


PLAN_QUOTAS: MappingProxyType[PlanTier, QuotaLimits] = MappingProxyType(
    {
        PlanTier.NONE: QuotaLimits(daily=3, monthly=10),
        PlanTier.LITE: QuotaLimits(daily=20, monthly=300),
        PlanTier.STANDARD: QuotaLimits(daily=50, monthly=500),
        PlanTier.PRO: QuotaLimits(daily=100, monthly=1000),
        PlanTier.BUSINESS: QuotaLimits(daily=UNLIMITED, monthly=UNLIMITED),
        PlanTier.ENTERPRISE: QuotaLimits(daily=UNLIMITED, monthly=UNLIMITED),
    }
)


@dataclass(frozen=True)
class FeatureLimits:
    """Daily generations per feature. -1 = unlimited; total None = no combined cap."""

    profile: int = 5
    business: int = 5
    quiz: int = 5
    total: int | None = None

    def __post_init__(self) -> None:
        for feature in FeatureType:
            if getattr(self, feature.value) < -1:
                raise ValueError(f"Invalid {feature.value} limit: {getattr(self, feature.value)}")
        if self.total is not None and self.total < -1:
            raise ValueError(f"Invalid total limit: {self.total}")

    def limit_for(self, feature_type: FeatureType) -> int | None:
        value = getattr(self, FeatureType(feature_type).value)
        return UNLIMITED if value == -1 else value

    @property
    def total_limit(self) -> int | None:
        return UNLIMITED if self.total is None or self.total == -1 else self.total

    def to_dict(self) -> dict[str, int | None]:
        return {"profile": self.profile, "business": self.business, "quiz": self.quiz, "total": self.total}


DEFAULT_FEATURE_LIMITS: MappingProxyType[PlanTier, FeatureLimits] = MappingProxyType(
    {
        PlanTier.NONE: FeatureLimits(5, 5, 5),
        PlanTier.LITE: FeatureLimits(5, 5, 5),
        PlanTier.STANDARD: FeatureLimits(10, 10, 10),
        PlanTier.PRO: FeatureLimits(-1, -1, -1),
        PlanTier.BUSINESS: FeatureLimits(-1, -1, -1),
        PlanTier.ENTERPRISE: FeatureLimits(-1, -1, -1),
    }
)


class FeatureLimitSource(Protocol):
    """Read path for admin-configured per-feature limits."""

    async def get_feature_limits(self, service: str, plan_tier: PlanTier) -> FeatureLimits | None: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _remaining(limit: int | None, used: int) -> int | None:
    return None if limit is UNLIMITED else max(0, limit - used)


@dataclass(frozen=True)
class QuotaStatus:
    plan_tier: PlanTier
    daily_usage: int
    monthly_usage: int
    daily_limit: int | None
    monthly_limit: int | None
    degraded: bool = False  # True when the usage store was unreachable (fail open)

    @property
    def within_daily(self) -> bool:
        return self.degraded or self.daily_limit is UNLIMITED or self.daily_usage < self.daily_limit

    @property
    def within_monthly(self) -> bool:
        return self.degraded or self.monthly_limit is UNLIMITED or self.monthly_usage < self.monthly_limit

    @property
    def is_within_limit(self) -> bool:
        return self.within_daily and self.within_monthly

    @property
    def denied_scope(self) -> str | None:
        if not self.within_daily:
            return "daily"
        if not self.within_monthly:
            return "monthly"
        return None

    @property
    def remaining_daily(self) -> int | None:
        return _remaining(self.daily_limit, self.daily_usage)

    @property
    def remaining_monthly(self) -> int | None:
        return _remaining(self.monthly_limit, self.monthly_usage)

    def to_summary(self) -> dict[str, Any]:
        """Display shape; -1 stands for unlimited."""

        def _block(used: int, limit: int | None, remaining: int | None) -> dict[str, int]:
            return {
                "used": used,
                "limit": -1 if limit is UNLIMITED else limit,
                "remaining": -1 if remaining is None else remaining,
            }

        return {
            "plan_tier": self.plan_tier.value,
            "is_within_limit": self.is_within_limit,
            "daily": _block(self.daily_usage, self.daily_limit, self.remaining_daily),
            "monthly": _block(self.monthly_usage, self.monthly_limit, self.remaining_monthly),
        }


@dataclass(frozen=True)
class FeatureQuotaStatus:
    plan_tier: PlanTier
    feature_type: FeatureType
    feature_usage: int
    feature_limit: int | None
    total_usage: int = 0
    total_limit: int | None = UNLIMITED
    degraded: bool = False

    @property
    def within_feature(self) -> bool:
        return self.degraded or self.feature_limit is UNLIMITED or self.feature_usage < self.feature_limit

    @property
    def within_total(self) -> bool:
        return self.degraded or self.total_limit is UNLIMITED or self.total_usage < self.total_limit

    @property
    def is_within_limit(self) -> bool:
        return self.within_feature and self.within_total

    @property
    def denied_scope(self) -> str | None:
        if not self.within_feature:
            return "feature"
        if not self.within_total:
            return "feature_total"
        return None

    @property
    def remaining_feature(self) -> int | None:
        return _remaining(self.feature_limit, self.feature_usage)

    def to_summary(self) -> dict[str, Any]:
        remaining = self.remaining_feature
        return {
            "used": self.feature_usage,
            "limit": -1 if self.feature_limit is UNLIMITED else self.feature_limit,
            "remaining": -1 if remaining is None else remaining,
            "is_within_limit": self.is_within_limit,
        }


def window_starts(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Start of the current day and calendar month in `tz`, returned in UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = day_start.replace(day=1)
    return day_start.astimezone(timezone.utc), month_start.astimezone(timezone.utc)


class QuotaEnforcer:
    """Accept or reject new generations against plan-tier limits."""

    def __init__(
        self,
        counter: UsageCounter,
        clock: Callable[[], datetime] = utcnow,
        tz: str | tzinfo | None = None,
        limits: MappingProxyType[PlanTier, QuotaLimits] | dict[PlanTier, QuotaLimits] = PLAN_QUOTAS,
        feature_limits: FeatureLimitSource | None = None,
    ):
        self.counter = counter
        self.clock = clock
        tz = tz or settings.quota_timezone
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz
        self.limits = limits
        self.feature_limits = feature_limits

    async def check(self, user_id: str, plan_tier: PlanTier | str) -> QuotaStatus:
        """Current usage versus limits. Never raises for store failures."""
        plan_tier = PlanTier(plan_tier)
        limits = self.limits[plan_tier]

        if limits.daily is UNLIMITED and limits.monthly is UNLIMITED:
            return QuotaStatus(plan_tier, 0, 0, UNLIMITED, UNLIMITED)

        day_start, month_start = window_starts(self.clock(), self.tz)
        try:
            daily = await self.counter.count_since(user_id, day_start) if limits.daily is not UNLIMITED else 0
            monthly = await self.counter.count_since(user_id, month_start) if limits.monthly is not UNLIMITED else 0
        except Exception as e:
            # Availability over strictness: an infrastructure outage must not block generation
            logger.warning("Usage store unavailable for user=%s, allowing request: %s", user_id, e)
            return QuotaStatus(plan_tier, 0, 0, limits.daily, limits.monthly, degraded=True)

        return QuotaStatus(plan_tier, daily, monthly, limits.daily, limits.monthly)

    async def enforce(self, user_id: str, plan_tier: PlanTier | str) -> QuotaStatus:
        """Like check(), but raise QuotaExceededError when the call is not permitted."""
        status = await self.check(user_id, plan_tier)
        scope = status.denied_scope
        if scope is None:
            return status

        QUOTA_DENIALS.labels(scope=scope).inc()
        if scope == "daily":
            used, limit = status.daily_usage, status.daily_limit
        else:
            used, limit = status.monthly_usage, status.monthly_limit
        logger.info(
            "Quota exceeded for user=%s plan=%s scope=%s (%d/%s)",
            user_id,
            status.plan_tier.value,
            scope,
            used,
            limit,
        )
        raise QuotaExceededError(scope, used=used, limit=limit)

    async def get_feature_limits(self, service: str, plan_tier: PlanTier | str) -> FeatureLimits:
        """Configured limits for (service, plan tier), or the shipped defaults."""
        plan_tier = PlanTier(plan_tier)
        default = DEFAULT_FEATURE_LIMITS[plan_tier]
        if self.feature_limits is None:
            return default
        try:
            configured = await self.feature_limits.get_feature_limits(service, plan_tier)
        except Exception as e:
            logger.warning("Feature limit lookup failed for %s/%s, using defaults: %s", service, plan_tier.value, e)
            return default
        return configured or default

    async def check_feature(
        self,
        user_id: str,
        plan_tier: PlanTier | str,
        feature_type: FeatureType | str,
        service: str,
    ) -> FeatureQuotaStatus:
        """Today's usage of one feature versus its limit. Never raises for store failures."""
        plan_tier = PlanTier(plan_tier)
        feature_type = FeatureType(feature_type)
        limits = await self.get_feature_limits(service, plan_tier)
        feature_limit = limits.limit_for(feature_type)
        total_limit = limits.total_limit

        if feature_limit is UNLIMITED and total_limit is UNLIMITED:
            return FeatureQuotaStatus(plan_tier, feature_type, 0, UNLIMITED)

        day_start, _ = window_starts(self.clock(), self.tz)
        try:
            feature_usage = (
                await self.counter.count_since(user_id, day_start, feature_type=feature_type.value)
                if feature_limit is not UNLIMITED
                else 0
            )
            total_usage = await self.counter.count_since(user_id, day_start) if total_limit is not UNLIMITED else 0
        except Exception as e:
            logger.warning(
                "Usage store unavailable for user=%s feature=%s, allowing request: %s",
                user_id,
                feature_type.value,
                e,
            )
            return FeatureQuotaStatus(plan_tier, feature_type, 0, feature_limit, 0, total_limit, degraded=True)

        return FeatureQuotaStatus(plan_tier, feature_type, feature_usage, feature_limit, total_usage, total_limit)

    async def enforce_feature(
        self,
        user_id: str,
        plan_tier: PlanTier | str,
        feature_type: FeatureType | str,
        service: str,
    ) -> FeatureQuotaStatus:
        """Like check_feature(), but raise QuotaExceededError when the call is not permitted."""
        status = await self.check_feature(user_id, plan_tier, feature_type, service)
        scope = status.denied_scope
        if scope is None:
            return status

        QUOTA_DENIALS.labels(scope=scope).inc()
        if scope == "feature":
            used, limit = status.feature_usage, status.feature_limit
        else:
            used, limit = status.total_usage, status.total_limit
        logger.info(
            "Feature quota exceeded for user=%s plan=%s feature=%s scope=%s (%d/%s)",
            user_id,
            status.plan_tier.value,
            status.feature_type.value,
            scope,
            used,
            limit,
        )
        raise QuotaExceededError(scope, used=used, limit=limit, feature_type=status.feature_type.value)
