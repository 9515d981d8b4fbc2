"""Tests for the quota enforcer (fixed clocks, in-memory counter)."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from ai_gateway.core.exceptions import QuotaExceededError
from ai_gateway.gateway.quota import DEFAULT_FEATURE_LIMITS, PLAN_QUOTAS, FeatureLimits, QuotaEnforcer, window_starts
from ai_gateway.gateway.types import FeatureType, PlanTier

JST = ZoneInfo("Asia/Tokyo")


class ListCounter:
    """UsageCounter over an in-memory list of (user_id, created_at)."""

    def __init__(self):
        self.rows: list[tuple[str, datetime, str | None]] = []
        self.queries = 0

    def add(self, user_id: str, created_at: datetime, n: int = 1, feature_type: str | None = None):
        self.rows.extend([(user_id, created_at, feature_type)] * n)

    async def count_since(self, user_id, since, feature_type=None):
        self.queries += 1
        return sum(
            1
            for uid, ts, feature in self.rows
            if uid == user_id and ts >= since and (feature_type is None or feature == feature_type)
        )


class BrokenCounter:
    async def count_since(self, user_id, since, feature_type=None):
        raise ConnectionError("usage store unreachable")


def _clock(dt: datetime):
    return lambda: dt


class TestPlanQuotas:
    def test_limits(self):
        assert (PLAN_QUOTAS[PlanTier.NONE].daily, PLAN_QUOTAS[PlanTier.NONE].monthly) == (3, 10)
        assert (PLAN_QUOTAS[PlanTier.LITE].daily, PLAN_QUOTAS[PlanTier.LITE].monthly) == (20, 300)
        assert (PLAN_QUOTAS[PlanTier.STANDARD].daily, PLAN_QUOTAS[PlanTier.STANDARD].monthly) == (50, 500)
        assert (PLAN_QUOTAS[PlanTier.PRO].daily, PLAN_QUOTAS[PlanTier.PRO].monthly) == (100, 1000)
        assert PLAN_QUOTAS[PlanTier.BUSINESS].daily is None
        assert PLAN_QUOTAS[PlanTier.ENTERPRISE].monthly is None


class TestWindows:
    def test_windows_in_local_timezone(self):
        # 2025-01-15 00:30 JST == 2025-01-14 15:30 UTC
        now = datetime(2025, 1, 14, 15, 30, tzinfo=timezone.utc)
        day_start, month_start = window_starts(now, JST)
        assert day_start == datetime(2025, 1, 15, 0, 0, tzinfo=JST)
        assert month_start == datetime(2025, 1, 1, 0, 0, tzinfo=JST)
        assert day_start.tzinfo == timezone.utc


class TestQuotaEnforcer:
    @pytest.mark.asyncio
    async def test_lite_daily_limit(self):
        now = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)
        counter = ListCounter()
        counter.add("u1", now - timedelta(minutes=5), n=19)
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz=JST)

        status = await enforcer.enforce("u1", PlanTier.LITE)
        assert status.daily_usage == 19
        assert status.remaining_daily == 1

        counter.add("u1", now)
        with pytest.raises(QuotaExceededError) as exc_info:
            await enforcer.enforce("u1", PlanTier.LITE)
        assert exc_info.value.scope == "daily"
        assert "tomorrow" in exc_info.value.user_message
        assert exc_info.value.used == 20
        assert exc_info.value.limit == 20

    @pytest.mark.asyncio
    async def test_day_boundary_resets(self):
        counter = ListCounter()
        # Three generations late on Jan 14 (JST)
        counter.add("u1", datetime(2025, 1, 14, 23, 50, tzinfo=JST), n=3)

        before = QuotaEnforcer(counter, clock=_clock(datetime(2025, 1, 14, 23, 59, tzinfo=JST)), tz=JST)
        with pytest.raises(QuotaExceededError):
            await before.enforce("u1", PlanTier.NONE)

        after = QuotaEnforcer(counter, clock=_clock(datetime(2025, 1, 15, 0, 1, tzinfo=JST)), tz=JST)
        status = await after.enforce("u1", PlanTier.NONE)
        assert status.daily_usage == 0
        assert status.monthly_usage == 3

    @pytest.mark.asyncio
    async def test_monthly_limit(self):
        now = datetime(2025, 1, 20, 12, 0, tzinfo=JST)
        counter = ListCounter()
        for day in range(1, 11):
            counter.add("u1", datetime(2025, 1, day, 10, 0, tzinfo=JST))
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz=JST)

        with pytest.raises(QuotaExceededError) as exc_info:
            await enforcer.enforce("u1", PlanTier.NONE)
        assert exc_info.value.scope == "monthly"
        assert "next month" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_daily_wins_when_both_exhausted(self):
        now = datetime(2025, 1, 31, 12, 0, tzinfo=JST)
        counter = ListCounter()
        counter.add("u1", datetime(2025, 1, 2, 9, 0, tzinfo=JST), n=7)
        counter.add("u1", datetime(2025, 1, 31, 9, 0, tzinfo=JST), n=3)
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz=JST)

        with pytest.raises(QuotaExceededError) as exc_info:
            await enforcer.enforce("u1", PlanTier.NONE)
        assert exc_info.value.scope == "daily"

    @pytest.mark.asyncio
    async def test_previous_month_not_counted(self):
        now = datetime(2025, 2, 1, 0, 5, tzinfo=JST)
        counter = ListCounter()
        counter.add("u1", datetime(2025, 1, 31, 23, 0, tzinfo=JST), n=10)
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz=JST)

        status = await enforcer.enforce("u1", PlanTier.NONE)
        assert status.monthly_usage == 0

    @pytest.mark.asyncio
    async def test_other_users_not_counted(self):
        now = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)
        counter = ListCounter()
        counter.add("someone-else", now, n=50)
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz=JST)

        status = await enforcer.enforce("u1", PlanTier.NONE)
        assert status.is_within_limit

    @pytest.mark.asyncio
    async def test_unlimited_never_queries(self):
        counter = ListCounter()
        counter.add("u1", datetime.now(timezone.utc), n=10_000)
        enforcer = QuotaEnforcer(counter)

        status = await enforcer.enforce("u1", PlanTier.ENTERPRISE)
        assert status.is_within_limit
        assert counter.queries == 0
        assert status.to_summary()["daily"] == {"used": 0, "limit": -1, "remaining": -1}

    @pytest.mark.asyncio
    async def test_fail_open_on_store_error(self):
        enforcer = QuotaEnforcer(BrokenCounter())
        status = await enforcer.enforce("u1", PlanTier.NONE)
        assert status.is_within_limit
        assert status.degraded

    @pytest.mark.asyncio
    async def test_check_is_read_only(self):
        now = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)
        counter = ListCounter()
        counter.add("u1", now, n=3)
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz="Asia/Tokyo")

        status = await enforcer.check("u1", "none")
        assert not status.is_within_limit
        assert status.denied_scope == "daily"
        assert len(counter.rows) == 3

    @pytest.mark.asyncio
    async def test_summary_shape(self):
        now = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)
        counter = ListCounter()
        counter.add("u1", now, n=4)
        enforcer = QuotaEnforcer(counter, clock=_clock(now), tz=JST)

        summary = (await enforcer.check("u1", PlanTier.LITE)).to_summary()
        assert summary["plan_tier"] == "lite"
        assert summary["daily"] == {"used": 4, "limit": 20, "remaining": 16}
        assert summary["monthly"] == {"used": 4, "limit": 300, "remaining": 296}
        assert summary["is_within_limit"] is True


class TestQuotaExceededError:
    def test_unknown_scope(self):
        with pytest.raises(ValueError):
            QuotaExceededError("weekly")

    def test_feature_scope_message(self):
        exc = QuotaExceededError("feature", used=5, limit=5, feature_type="quiz")
        assert "tomorrow" in exc.user_message
        assert exc.feature_type == "quiz"


class StaticFeatureLimits:
    def __init__(self, limits=None, error=None):
        self.limits = limits
        self.error = error

    async def get_feature_limits(self, service, plan_tier):
        if self.error:
            raise self.error
        return self.limits


NOW = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)


class TestFeatureLimits:
    def test_defaults(self):
        assert DEFAULT_FEATURE_LIMITS[PlanTier.LITE].limit_for(FeatureType.PROFILE) == 5
        assert DEFAULT_FEATURE_LIMITS[PlanTier.STANDARD].limit_for(FeatureType.QUIZ) == 10
        assert DEFAULT_FEATURE_LIMITS[PlanTier.PRO].limit_for(FeatureType.BUSINESS) is None
        assert DEFAULT_FEATURE_LIMITS[PlanTier.PRO].total_limit is None

    def test_rejects_invalid_values(self):
        with pytest.raises(ValueError):
            FeatureLimits(profile=-2)
        with pytest.raises(ValueError):
            FeatureLimits(total=-5)

    @pytest.mark.asyncio
    async def test_feature_usage_counted_per_feature(self):
        counter = ListCounter()
        counter.add("u1", NOW, n=5, feature_type="profile")
        counter.add("u1", NOW, n=2, feature_type="quiz")
        enforcer = QuotaEnforcer(counter, clock=_clock(NOW), tz=JST)

        profile = await enforcer.check_feature("u1", PlanTier.LITE, FeatureType.PROFILE, "kdl")
        assert (profile.feature_usage, profile.feature_limit) == (5, 5)
        assert profile.denied_scope == "feature"

        quiz = await enforcer.check_feature("u1", PlanTier.LITE, "quiz", "kdl")
        assert quiz.is_within_limit
        assert quiz.to_summary() == {"used": 2, "limit": 5, "remaining": 3, "is_within_limit": True}

    @pytest.mark.asyncio
    async def test_feature_window_is_daily(self):
        counter = ListCounter()
        # Yesterday in JST
        counter.add("u1", datetime(2025, 1, 14, 23, 50, tzinfo=JST), n=5, feature_type="profile")
        enforcer = QuotaEnforcer(counter, clock=_clock(NOW), tz=JST)

        status = await enforcer.check_feature("u1", PlanTier.LITE, FeatureType.PROFILE, "kdl")
        assert status.feature_usage == 0

    @pytest.mark.asyncio
    async def test_enforce_feature_raises(self):
        counter = ListCounter()
        counter.add("u1", NOW, n=5, feature_type="business")
        enforcer = QuotaEnforcer(counter, clock=_clock(NOW), tz=JST)

        with pytest.raises(QuotaExceededError) as exc_info:
            await enforcer.enforce_feature("u1", PlanTier.LITE, FeatureType.BUSINESS, "kdl")
        assert exc_info.value.scope == "feature"
        assert exc_info.value.feature_type == "business"

    @pytest.mark.asyncio
    async def test_total_cap_across_features(self):
        counter = ListCounter()
        counter.add("u1", NOW, n=2, feature_type="profile")
        counter.add("u1", NOW, n=1, feature_type="quiz")
        limits = FeatureLimits(profile=10, business=10, quiz=10, total=3)
        enforcer = QuotaEnforcer(counter, clock=_clock(NOW), tz=JST, feature_limits=StaticFeatureLimits(limits))

        with pytest.raises(QuotaExceededError) as exc_info:
            await enforcer.enforce_feature("u1", PlanTier.PRO, FeatureType.BUSINESS, "kdl")
        assert exc_info.value.scope == "feature_total"
        assert (exc_info.value.used, exc_info.value.limit) == (3, 3)

    @pytest.mark.asyncio
    async def test_unlimited_feature_never_queries(self):
        counter = ListCounter()
        enforcer = QuotaEnforcer(counter, clock=_clock(NOW), tz=JST)

        status = await enforcer.check_feature("u1", PlanTier.BUSINESS, FeatureType.QUIZ, "kdl")
        assert status.is_within_limit
        assert counter.queries == 0
        assert status.to_summary()["limit"] == -1

    @pytest.mark.asyncio
    async def test_configured_limits_override_defaults(self):
        counter = ListCounter()
        counter.add("u1", NOW, n=1, feature_type="quiz")
        source = StaticFeatureLimits(FeatureLimits(profile=5, business=5, quiz=1))
        enforcer = QuotaEnforcer(counter, clock=_clock(NOW), tz=JST, feature_limits=source)

        status = await enforcer.check_feature("u1", PlanTier.PRO, FeatureType.QUIZ, "kdl")
        assert status.denied_scope == "feature"

    @pytest.mark.asyncio
    async def test_unreadable_limits_fall_back_to_defaults(self):
        enforcer = QuotaEnforcer(
            ListCounter(), clock=_clock(NOW), tz=JST, feature_limits=StaticFeatureLimits(error=RuntimeError("db down"))
        )

        limits = await enforcer.get_feature_limits("kdl", PlanTier.STANDARD)
        assert limits == DEFAULT_FEATURE_LIMITS[PlanTier.STANDARD]

    @pytest.mark.asyncio
    async def test_counter_failure_fails_open(self):
        enforcer = QuotaEnforcer(BrokenCounter(), clock=_clock(NOW), tz=JST)

        status = await enforcer.enforce_feature("u1", PlanTier.NONE, FeatureType.PROFILE, "kdl")
        assert status.degraded
        assert status.is_within_limit
