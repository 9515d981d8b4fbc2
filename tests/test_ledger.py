"""Tests for the usage ledger (in-memory SQLite)."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ai_gateway.gateway.ledger import UsageLedger, UsageLogEntry, estimate_cost_jpy
from ai_gateway.gateway.types import Outcome
from ai_gateway.models.usage_log import AiUsageLog

NOW = datetime(2025, 1, 15, 3, 0, tzinfo=timezone.utc)


def _entry(user_id="u1", created_at=NOW, **kwargs) -> UsageLogEntry:
    defaults = dict(
        action_type="generate_article",
        service="kdl",
        model_used="gemini-2.5-flash",
        input_tokens=1000,
        output_tokens=2000,
        phase="writing",
    )
    defaults.update(kwargs)
    return UsageLogEntry(user_id=user_id, created_at=created_at, **defaults)


class TestCostEstimate:
    def test_known_model(self):
        # gpt-4o-mini: $0.15 in / $0.60 out per 1M tokens, 150 JPY/USD
        assert estimate_cost_jpy("gpt-4o-mini", 1_000_000, 1_000_000) == pytest.approx(112.5)

    def test_unknown_model_uses_default_price(self):
        assert estimate_cost_jpy("mystery", 1000, 1000) == estimate_cost_jpy("gemini-2.5-flash-lite", 1000, 1000)

    def test_zero_tokens(self):
        assert estimate_cost_jpy("gpt-5", 0, 0) == 0


class TestUsageLedger:
    @pytest.mark.asyncio
    async def test_append_and_read_back(self, session_factory):
        ledger = UsageLedger(session_factory)
        row_id = await ledger.append(_entry(metadata={"plan_tier": "pro"}))
        assert row_id

        async with session_factory() as session:
            row = await session.get(AiUsageLog, row_id)
        assert row.user_id == "u1"
        assert row.service == "kdl"
        assert row.outcome == "success"
        assert row.metadata_ == {"plan_tier": "pro"}
        assert row.estimated_cost_jpy == pytest.approx(estimate_cost_jpy("gemini-2.5-flash", 1000, 2000))

    @pytest.mark.asyncio
    async def test_count_since(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.append(_entry(created_at=NOW - timedelta(days=2)))
        await ledger.append(_entry(created_at=NOW - timedelta(hours=1)))
        await ledger.append(_entry(created_at=NOW))
        await ledger.append(_entry(user_id="u2", created_at=NOW))

        assert await ledger.count_since("u1", NOW - timedelta(days=1)) == 2
        assert await ledger.count_since("u1", NOW - timedelta(days=7)) == 3
        assert await ledger.count_since("u1", NOW + timedelta(seconds=1)) == 0
        assert await ledger.count_since("nobody", NOW - timedelta(days=7)) == 0

    @pytest.mark.asyncio
    async def test_count_since_is_inclusive(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.append(_entry(created_at=NOW))
        assert await ledger.count_since("u1", NOW) == 1

    @pytest.mark.asyncio
    async def test_count_since_by_feature(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.append(_entry(feature_type="profile"))
        await ledger.append(_entry(feature_type="profile"))
        await ledger.append(_entry(feature_type="quiz"))
        await ledger.append(_entry())

        since = NOW - timedelta(hours=1)
        assert await ledger.count_since("u1", since, feature_type="profile") == 2
        assert await ledger.count_since("u1", since, feature_type="business") == 0
        assert await ledger.count_since("u1", since) == 4

        entries = await ledger.fetch_between(since, NOW + timedelta(seconds=1))
        assert sorted(e.feature_type or "" for e in entries) == ["", "profile", "profile", "quiz"]

    @pytest.mark.asyncio
    async def test_fetch_between(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.append(_entry(created_at=NOW - timedelta(days=40)))
        await ledger.append(_entry(created_at=NOW - timedelta(hours=2), service="quiz", outcome=Outcome.FALLBACK))
        await ledger.append(_entry(created_at=NOW - timedelta(hours=1)))

        entries = await ledger.fetch_between(NOW - timedelta(days=1), NOW)
        assert [e.service for e in entries] == ["quiz", "kdl"]
        assert entries[0].outcome == Outcome.FALLBACK
        assert entries[0].created_at.tzinfo is not None

        quiz_only = await ledger.fetch_between(NOW - timedelta(days=1), NOW, service="quiz")
        assert len(quiz_only) == 1

    @pytest.mark.asyncio
    async def test_entries_are_never_updated(self, session_factory):
        ledger = UsageLedger(session_factory)
        await ledger.append(_entry())
        await ledger.append(_entry())

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(AiUsageLog))).scalar()
        assert count == 2

    @pytest.mark.asyncio
    async def test_record_swallows_store_failure(self):
        session = MagicMock()
        session.__aenter__.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        ledger = UsageLedger(lambda: session)

        assert await ledger.record(_entry()) is False

    @pytest.mark.asyncio
    async def test_record_success(self, session_factory):
        ledger = UsageLedger(session_factory)
        assert await ledger.record(_entry()) is True
        assert await ledger.count_since("u1", NOW - timedelta(minutes=1)) == 1

    @pytest.mark.asyncio
    async def test_append_raises_on_store_failure(self):
        session = MagicMock()
        session.__aenter__.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        ledger = UsageLedger(lambda: session)

        with pytest.raises(OperationalError):
            await ledger.append(_entry())


class TestUsageLogEntry:
    def test_naive_timestamp_treated_as_utc(self):
        row = _entry(created_at=datetime(2025, 1, 15, 3, 0)).to_row()
        assert row.created_at == NOW

    def test_empty_metadata_stored_as_null(self):
        assert _entry().to_row().metadata_ is None
