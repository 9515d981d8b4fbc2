"""Usage Ledger: append-only audit log of generation attempts.

The ledger is the single source of truth for quota: the enforcer counts
rows inside a time window instead of keeping a separate counter.

Writes happen after the response is finalized. `record()` is best-effort:
a lost row is logged and counted, never surfaced to the caller as a failed
generation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_gateway.core.metrics import LEDGER_WRITE_FAILURES
from ai_gateway.gateway.catalog import pricing_for
from ai_gateway.gateway.types import Outcome
from ai_gateway.models.usage_log import AiUsageLog

logger = logging.getLogger(__name__)

USD_TO_JPY = 150


def estimate_cost_jpy(model_used: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated cost in JPY from catalog USD-per-1M-token prices."""
    pricing = pricing_for(model_used)
    usd = (input_tokens * pricing.input_cost + output_tokens * pricing.output_cost) / 1_000_000
    return round(usd * USD_TO_JPY, 6)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class UsageLogEntry:
    """Immutable record of one generation attempt."""

    user_id: str
    action_type: str
    service: str
    model_used: str
    input_tokens: int = 0
    output_tokens: int = 0
    phase: str | None = None
    feature_type: str | None = None
    outcome: Outcome = Outcome.SUCCESS
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def estimated_cost_jpy(self) -> float:
        return estimate_cost_jpy(self.model_used, self.input_tokens, self.output_tokens)

    def to_row(self) -> AiUsageLog:
        return AiUsageLog(
            user_id=self.user_id,
            action_type=self.action_type,
            service=self.service,
            phase=self.phase,
            feature_type=self.feature_type,
            model_used=self.model_used,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            estimated_cost_jpy=self.estimated_cost_jpy,
            outcome=self.outcome.value,
            metadata_=dict(self.metadata) or None,
            created_at=_as_utc(self.created_at),
        )

    @classmethod
    def from_row(cls, row: AiUsageLog) -> UsageLogEntry:
        return cls(
            user_id=row.user_id,
            action_type=row.action_type,
            service=row.service,
            model_used=row.model_used,
            input_tokens=row.input_tokens or 0,
            output_tokens=row.output_tokens or 0,
            phase=row.phase,
            feature_type=row.feature_type,
            outcome=Outcome(row.outcome),
            metadata=dict(row.metadata_ or {}),
            created_at=_as_utc(row.created_at),
        )


class UsageLedger:
    """SQLAlchemy-backed ledger; also the UsageCounter behind the quota enforcer."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, entry: UsageLogEntry) -> int:
        """Insert one row in its own transaction. Raises on store failure."""
        async with self.session_factory() as session:
            row = entry.to_row()
            session.add(row)
            await session.commit()
            return row.id

    async def record(self, entry: UsageLogEntry) -> bool:
        """Best-effort append: log and continue on write error."""
        try:
            await self.append(entry)
        except (SQLAlchemyError, OSError) as e:
            LEDGER_WRITE_FAILURES.inc()
            logger.error(
                "Failed to write usage log for user=%s action=%s model=%s: %s",
                entry.user_id,
                entry.action_type,
                entry.model_used,
                e,
            )
            return False
        return True

    async def count_since(self, user_id: str, since: datetime, feature_type: str | None = None) -> int:
        """Number of rows for user_id created at or after `since`, optionally for one feature."""
        query = (
            select(func.count())
            .select_from(AiUsageLog)
            .where(
                AiUsageLog.user_id == user_id,
                AiUsageLog.created_at >= _as_utc(since),
            )
        )
        if feature_type:
            query = query.where(AiUsageLog.feature_type == feature_type)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def fetch_between(
        self,
        start: datetime,
        end: datetime,
        service: str | None = None,
        user_id: str | None = None,
    ) -> list[UsageLogEntry]:
        """Rows created in [start, end), oldest first."""
        query = select(AiUsageLog).where(
            AiUsageLog.created_at >= _as_utc(start),
            AiUsageLog.created_at < _as_utc(end),
        )
        if service:
            query = query.where(AiUsageLog.service == service)
        if user_id:
            query = query.where(AiUsageLog.user_id == user_id)
        query = query.order_by(AiUsageLog.created_at, AiUsageLog.id)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [UsageLogEntry.from_row(row) for row in result.scalars().all()]
