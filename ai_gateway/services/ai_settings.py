"""AI settings service: admin overrides for the model selection policy.

Read path (dispatch): SqlOverrideSource, consulted fresh on every generation.
Write path (admin): save_override / apply_preset, which validate strictly
against the catalog. Dispatch itself tolerates bad ids by falling back to
defaults, so the two paths intentionally differ.

Per-feature daily limits live next to the overrides: SqlFeatureLimitSource
feeds the quota enforcer, save_feature_limits is the admin write path.
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai_gateway.gateway.catalog import backend_for_model, get_model_info, is_known_model
from ai_gateway.gateway.policy import DEFAULT_PRESET, ModelSelectionPolicy, default_models, get_presets
from ai_gateway.gateway.quota import DEFAULT_FEATURE_LIMITS, FeatureLimits
from ai_gateway.gateway.types import Phase, PhaseConfig, PhaseModels, PlanTier
from ai_gateway.models.ai_setting import AiFeatureLimit, AiModelOverride

logger = logging.getLogger(__name__)


def _to_config(row: AiModelOverride) -> PhaseConfig:
    return PhaseConfig(
        service=row.service,
        plan_tier=PlanTier(row.plan_tier),
        phase=Phase(row.phase),
        primary_model=row.primary_model,
        backup_model=row.backup_model,
    )


class SqlOverrideSource:
    """OverrideSource reading the ai_model_overrides table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_override(self, service: str, plan_tier: PlanTier, phase: Phase) -> PhaseConfig | None:
        async with self.session_factory() as session:
            row = await _get_row(session, service, plan_tier, phase)
            return _to_config(row) if row else None


class _LoadedOverrides:
    """OverrideSource over rows already fetched in the caller's session."""

    def __init__(self, rows: list[AiModelOverride]):
        self._configs = {(r.service, r.plan_tier, r.phase): _to_config(r) for r in rows}

    async def get_override(self, service: str, plan_tier: PlanTier, phase: Phase) -> PhaseConfig | None:
        return self._configs.get((service, plan_tier.value, phase.value))


async def _get_row(db: AsyncSession, service: str, plan_tier: PlanTier, phase: Phase) -> AiModelOverride | None:
    result = await db.execute(
        select(AiModelOverride).where(
            AiModelOverride.service == service,
            AiModelOverride.plan_tier == plan_tier.value,
            AiModelOverride.phase == phase.value,
        )
    )
    return result.scalar_one_or_none()


async def list_overrides(db: AsyncSession, plan_tier: PlanTier, service: str) -> list[AiModelOverride]:
    result = await db.execute(
        select(AiModelOverride)
        .where(AiModelOverride.service == service, AiModelOverride.plan_tier == plan_tier.value)
        .order_by(AiModelOverride.phase)
    )
    return list(result.scalars().all())


async def save_override(
    db: AsyncSession,
    service: str,
    plan_tier: PlanTier,
    phase: Phase,
    primary_model: str | None,
    backup_model: str | None,
    updated_by: str | None = None,
    selected_preset: str = "custom",
) -> AiModelOverride:
    """Create or update the override for (service, plan_tier, phase).

    An empty slot keeps the tier default, so the pair is checked as it will
    be dispatched.

    Raises:
        ValueError: a model id is not in the catalog, or primary and backup share a backend
    """
    for slot, model_id in (("primary_model", primary_model), ("backup_model", backup_model)):
        if model_id and not is_known_model(model_id):
            raise ValueError(f"Unknown model for {slot}: {model_id}")

    default = default_models(plan_tier, phase)
    primary = primary_model or default.primary
    backup = backup_model or default.backup
    backend = backend_for_model(primary)
    if backend == backend_for_model(backup):
        raise ValueError(f"Primary and backup must use different backends: {primary} and {backup} are both {backend.value}")

    row = await _get_row(db, service, plan_tier, phase)
    if row is None:
        row = AiModelOverride(service=service, plan_tier=plan_tier.value, phase=phase.value)
        db.add(row)

    row.primary_model = primary_model or None
    row.backup_model = backup_model or None
    row.selected_preset = selected_preset
    row.updated_by = updated_by
    await db.flush()

    logger.info(
        "AI override saved for %s/%s/%s: primary=%s backup=%s (%s, by %s)",
        service,
        plan_tier.value,
        phase.value,
        row.primary_model,
        row.backup_model,
        selected_preset,
        updated_by,
    )
    return row


async def apply_preset(
    db: AsyncSession,
    service: str,
    plan_tier: PlanTier,
    preset_key: str,
    updated_by: str | None = None,
) -> list[AiModelOverride]:
    """Write both phases of a tier from one of its presets."""
    presets = get_presets(plan_tier)
    if preset_key not in presets:
        raise ValueError(f"Unknown preset: {preset_key}")

    preset = presets[preset_key]
    rows = []
    for phase in Phase:
        models = preset.for_phase(phase)
        rows.append(
            await save_override(
                db,
                service,
                plan_tier,
                phase,
                models.primary,
                models.backup,
                updated_by=updated_by,
                selected_preset=preset_key,
            )
        )
    return rows


def _to_limits(row: AiFeatureLimit) -> FeatureLimits:
    return FeatureLimits(profile=row.profile, business=row.business, quiz=row.quiz, total=row.total)


async def _get_limit_row(db: AsyncSession, service: str, plan_tier: PlanTier) -> AiFeatureLimit | None:
    result = await db.execute(
        select(AiFeatureLimit).where(AiFeatureLimit.service == service, AiFeatureLimit.plan_tier == plan_tier.value)
    )
    return result.scalar_one_or_none()


class SqlFeatureLimitSource:
    """FeatureLimitSource reading the ai_feature_limits table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_feature_limits(self, service: str, plan_tier: PlanTier) -> FeatureLimits | None:
        async with self.session_factory() as session:
            row = await _get_limit_row(session, service, plan_tier)
            return _to_limits(row) if row else None


async def save_feature_limits(
    db: AsyncSession,
    service: str,
    plan_tier: PlanTier,
    limits: FeatureLimits,
    updated_by: str | None = None,
) -> AiFeatureLimit:
    """Create or update the per-feature daily limits for (service, plan_tier)."""
    row = await _get_limit_row(db, service, plan_tier)
    if row is None:
        row = AiFeatureLimit(service=service, plan_tier=plan_tier.value)
        db.add(row)

    row.profile = limits.profile
    row.business = limits.business
    row.quiz = limits.quiz
    row.total = limits.total
    row.updated_by = updated_by
    await db.flush()

    logger.info("AI feature limits saved for %s/%s: %s (by %s)", service, plan_tier.value, limits.to_dict(), updated_by)
    return row


def _pair_view(models: PhaseModels) -> dict[str, Any]:
    def _cost(model_id: str) -> dict[str, float] | None:
        info = get_model_info(model_id)
        return {"input": info.input_cost, "output": info.output_cost} if info else None

    return {
        "primary_model": models.primary,
        "backup_model": models.backup,
        "primary_cost": _cost(models.primary),
        "backup_cost": _cost(models.backup),
    }


async def get_settings_view(db: AsyncSession, plan_tier: PlanTier, service: str) -> dict[str, Any]:
    """Presets, stored overrides and the effective selection per phase for one tier."""
    rows = await list_overrides(db, plan_tier, service)
    policy = ModelSelectionPolicy(_LoadedOverrides(rows))

    effective = {}
    for phase in Phase:
        selection = await policy.select(service, plan_tier, phase)
        effective[phase.value] = {
            "primary_model": selection.primary_model,
            "backup_model": selection.backup_model,
            "source": selection.source,
        }

    selected = {r.selected_preset for r in rows}
    if not rows:
        selected_preset = DEFAULT_PRESET
    elif len(selected) == 1:
        selected_preset = selected.pop()
    else:
        selected_preset = "custom"

    limit_row = await _get_limit_row(db, service, plan_tier)
    feature_limits = _to_limits(limit_row) if limit_row else DEFAULT_FEATURE_LIMITS[plan_tier]

    return {
        "service": service,
        "plan_tier": plan_tier.value,
        "selected_preset": selected_preset,
        "presets": {
            key: {
                "name": preset.name,
                "description": preset.description,
                **{phase.value: _pair_view(preset.for_phase(phase)) for phase in Phase},
            }
            for key, preset in get_presets(plan_tier).items()
        },
        "overrides": {
            r.phase: {
                "primary_model": r.primary_model,
                "backup_model": r.backup_model,
                "selected_preset": r.selected_preset,
                "updated_by": r.updated_by,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            }
            for r in rows
        },
        "effective": effective,
        "feature_limits": {**feature_limits.to_dict(), "source": "custom" if limit_row else "default"},
    }
