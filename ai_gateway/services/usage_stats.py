"""Usage statistics over the usage ledger for the admin dashboard."""

from collections import defaultdict
from datetime import datetime
from typing import Any

from ai_gateway.gateway.catalog import backend_for_model
from ai_gateway.gateway.ledger import UsageLedger, UsageLogEntry
from ai_gateway.gateway.quota import QuotaEnforcer
from ai_gateway.gateway.types import FeatureType, Outcome, PlanTier


def _bucket() -> dict[str, Any]:
    return {"requests": 0, "failed": 0, "input_tokens": 0, "output_tokens": 0, "cost_jpy": 0.0}


def aggregate_usage(entries: list[UsageLogEntry]) -> dict[str, Any]:
    """Totals plus breakdowns by service, model, backend and feature."""
    totals = _bucket()
    by_service: dict[str, dict[str, Any]] = defaultdict(_bucket)
    by_model: dict[str, dict[str, Any]] = defaultdict(_bucket)
    by_backend: dict[str, dict[str, Any]] = defaultdict(_bucket)
    by_feature: dict[str, dict[str, Any]] = defaultdict(_bucket)
    fallbacks = 0

    for entry in entries:
        cost = entry.estimated_cost_jpy
        buckets = (
            totals,
            by_service[entry.service],
            by_model[entry.model_used],
            by_backend[backend_for_model(entry.model_used).value],
        )
        if entry.feature_type:
            buckets += (by_feature[entry.feature_type],)
        for bucket in buckets:
            bucket["requests"] += 1
            bucket["input_tokens"] += entry.input_tokens
            bucket["output_tokens"] += entry.output_tokens
            bucket["cost_jpy"] += cost
            if entry.outcome == Outcome.FAILED:
                bucket["failed"] += 1
        if entry.outcome == Outcome.FALLBACK:
            fallbacks += 1

    for bucket in (totals, *by_service.values(), *by_model.values(), *by_backend.values(), *by_feature.values()):
        bucket["cost_jpy"] = round(bucket["cost_jpy"], 2)

    return {
        "totals": {**totals, "fallbacks": fallbacks},
        "by_service": dict(by_service),
        "by_model": dict(by_model),
        "by_backend": dict(by_backend),
        "by_feature": dict(by_feature),
    }


async def get_usage_stats(
    ledger: UsageLedger,
    start: datetime,
    end: datetime,
    service: str | None = None,
) -> dict[str, Any]:
    entries = await ledger.fetch_between(start, end, service=service)
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "service": service,
        **aggregate_usage(entries),
    }


async def get_user_summary(
    enforcer: QuotaEnforcer,
    user_id: str,
    plan_tier: PlanTier,
    service: str,
) -> dict[str, Any]:
    status = await enforcer.check(user_id, plan_tier)
    features = {}
    for feature in FeatureType:
        feature_status = await enforcer.check_feature(user_id, plan_tier, feature, service)
        features[feature.value] = feature_status.to_summary()
    return {"user_id": user_id, "service": service, **status.to_summary(), "features": features}
