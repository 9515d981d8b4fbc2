"""AI settings API: per-tier model overrides, presets and feature limits (admin)."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ai_gateway.core.config import settings
from ai_gateway.core.dependencies import require_admin
from ai_gateway.db.session import get_db
from ai_gateway.gateway.quota import FeatureLimits
from ai_gateway.gateway.types import Phase, PlanTier
from ai_gateway.services.ai_settings import apply_preset, get_settings_view, save_feature_limits, save_override

router = APIRouter(prefix="/ai-settings", tags=["ai-settings"], dependencies=[Depends(require_admin)])


# --- Schemas ---


class OverrideUpdate(BaseModel):
    service: str | None = None
    phase: Phase
    primary_model: str | None = None
    backup_model: str | None = None
    updated_by: str | None = None


class PresetApply(BaseModel):
    service: str | None = None
    preset: Literal["presetA", "presetB"]
    updated_by: str | None = None


class FeatureLimitsUpdate(BaseModel):
    service: str | None = None
    profile: int = Field(ge=-1)  # -1 = unlimited
    business: int = Field(ge=-1)
    quiz: int = Field(ge=-1)
    total: int | None = Field(None, ge=-1)  # None = no combined cap
    updated_by: str | None = None


class OverrideResponse(BaseModel):
    service: str
    plan_tier: str
    phase: str
    primary_model: str | None
    backup_model: str | None
    selected_preset: str
    updated_by: str | None = None


# --- Endpoints ---


@router.get("/{plan_tier}")
async def get_ai_settings(
    plan_tier: PlanTier,
    service: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Presets, stored overrides and effective models for one plan tier."""
    return await get_settings_view(db, plan_tier, service or settings.default_service)


@router.put("/{plan_tier}", response_model=OverrideResponse)
async def update_ai_settings(
    plan_tier: PlanTier,
    body: OverrideUpdate,
    db: AsyncSession = Depends(get_db),
):
    try:
        row = await save_override(
            db,
            body.service or settings.default_service,
            plan_tier,
            body.phase,
            body.primary_model,
            body.backup_model,
            updated_by=body.updated_by,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return OverrideResponse(
        service=row.service,
        plan_tier=row.plan_tier,
        phase=row.phase,
        primary_model=row.primary_model,
        backup_model=row.backup_model,
        selected_preset=row.selected_preset,
        updated_by=row.updated_by,
    )


@router.post("/{plan_tier}/preset", response_model=list[OverrideResponse])
async def apply_ai_preset(
    plan_tier: PlanTier,
    body: PresetApply,
    db: AsyncSession = Depends(get_db),
):
    """Overwrite both phases of the tier with the chosen preset."""
    try:
        rows = await apply_preset(
            db, body.service or settings.default_service, plan_tier, body.preset, updated_by=body.updated_by
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return [
        OverrideResponse(
            service=r.service,
            plan_tier=r.plan_tier,
            phase=r.phase,
            primary_model=r.primary_model,
            backup_model=r.backup_model,
            selected_preset=r.selected_preset,
            updated_by=r.updated_by,
        )
        for r in rows
    ]


@router.put("/{plan_tier}/feature-limits")
async def update_feature_limits(
    plan_tier: PlanTier,
    body: FeatureLimitsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Daily per-feature generation limits for the tier."""
    limits = FeatureLimits(profile=body.profile, business=body.business, quiz=body.quiz, total=body.total)
    row = await save_feature_limits(
        db, body.service or settings.default_service, plan_tier, limits, updated_by=body.updated_by
    )
    return {"service": row.service, "plan_tier": row.plan_tier, "updated_by": row.updated_by, **limits.to_dict()}
