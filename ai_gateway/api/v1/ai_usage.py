"""AI usage API: per-user quota summary and aggregate usage statistics."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query

from ai_gateway.core.config import settings
from ai_gateway.core.dependencies import get_enforcer, get_ledger, require_admin
from ai_gateway.gateway.ledger import UsageLedger
from ai_gateway.gateway.quota import QuotaEnforcer
from ai_gateway.gateway.types import PlanTier
from ai_gateway.services.usage_stats import get_usage_stats, get_user_summary

router = APIRouter(prefix="/ai-usage", tags=["ai-usage"], dependencies=[Depends(require_admin)])


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@router.get("/stats")
async def usage_stats(
    start: datetime | None = Query(None, description="Inclusive, defaults to 30 days ago"),
    end: datetime | None = Query(None, description="Exclusive, defaults to now"),
    service: str | None = Query(None),
    ledger: UsageLedger = Depends(get_ledger),
):
    """Requests, tokens and estimated cost by service, model and backend."""
    end = _aware(end) if end else datetime.now(timezone.utc)
    start = _aware(start) if start else end - timedelta(days=30)
    if start >= end:
        raise HTTPException(status_code=400, detail="start must be before end")
    return await get_usage_stats(ledger, start, end, service=service)


@router.get("/{user_id}/summary")
async def user_usage_summary(
    user_id: str,
    plan_tier: PlanTier = Query(...),
    service: str | None = Query(None),
    enforcer: QuotaEnforcer = Depends(get_enforcer),
):
    """Daily, monthly and per-feature usage against the plan limits (-1 = unlimited)."""
    return await get_user_summary(enforcer, user_id, plan_tier, service or settings.default_service)
