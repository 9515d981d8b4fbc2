"""Model Selection Policy: (service, plan tier, phase) -> (primary, backup).

Two layers:
  1. Admin override for the exact triple, read fresh on every call
  2. Built-in DEFAULT_PHASE_MODELS keyed by plan tier × phase (not by service),
     complete for every combination

Each override id is validated against the catalog on its own; an unknown id
is logged and replaced by the default for that slot, so an admin typo can
only ever degrade to the shipped default, never to an error.
Primary and backup must be on different backends; a same-backend pair
reverts the backup slot to its default first, then the primary.

Presets (cost-optimized / quality-optimized pairs per tier) feed the admin
authoring flow only and are never consulted at dispatch time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Protocol

from ai_gateway.gateway.catalog import backend_for_model, is_known_model
from ai_gateway.gateway.types import ModelSelection, Phase, PhaseConfig, PhaseModels, PlanTier

logger = logging.getLogger(__name__)


class OverrideSource(Protocol):
    """Read path for admin-configured model overrides."""

    async def get_override(self, service: str, plan_tier: PlanTier, phase: Phase) -> PhaseConfig | None: ...


# ---------------------------------------------------------------------------
# Presets (admin authoring only)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Preset:
    key: str  # presetA | presetB
    name: str
    description: str
    outline: PhaseModels
    writing: PhaseModels

    def for_phase(self, phase: Phase) -> PhaseModels:
        return self.outline if phase == Phase.OUTLINE else self.writing


def _presets(cost: tuple[PhaseModels, PhaseModels], quality: tuple[PhaseModels, PhaseModels]) -> dict[str, Preset]:
    return {
        "presetA": Preset(
            key="presetA",
            name="Cost-optimized",
            description="Fast, inexpensive models for both phases",
            outline=cost[0],
            writing=cost[1],
        ),
        "presetB": Preset(
            key="presetB",
            name="Quality-optimized",
            description="Economical outline model, strongest affordable writing model",
            outline=quality[0],
            writing=quality[1],
        ),
    }


_P = PhaseModels

PLAN_AI_PRESETS: MappingProxyType[PlanTier, dict[str, Preset]] = MappingProxyType(
    {
        PlanTier.NONE: _presets(
            cost=(_P("gemini-2.5-flash-lite", "gpt-5-nano"), _P("gemini-2.5-flash-lite", "gpt-5-nano")),
            quality=(_P("gemini-2.5-flash-lite", "gpt-5-nano"), _P("gemini-2.5-flash", "gpt-5-nano")),
        ),
        PlanTier.LITE: _presets(
            cost=(_P("gemini-2.5-flash-lite", "gpt-5-nano"), _P("gemini-2.5-flash-lite", "gpt-5-mini")),
            quality=(_P("gemini-2.5-flash-lite", "gpt-5-nano"), _P("gemini-2.5-flash", "gpt-5-mini")),
        ),
        PlanTier.STANDARD: _presets(
            cost=(_P("gemini-2.5-flash-lite", "gpt-5-mini"), _P("gemini-2.5-flash", "gpt-5-mini")),
            quality=(_P("gemini-2.5-flash", "gpt-5-mini"), _P("claude-haiku-4-5", "gemini-2.5-flash")),
        ),
        PlanTier.PRO: _presets(
            cost=(_P("gemini-2.5-flash", "gpt-5-mini"), _P("gemini-2.5-pro", "gpt-5-mini")),
            quality=(_P("gemini-2.5-flash", "gpt-5-mini"), _P("claude-sonnet-4-5", "gpt-5")),
        ),
        PlanTier.BUSINESS: _presets(
            cost=(_P("gemini-2.5-flash", "gpt-5-mini"), _P("gemini-2.5-pro", "gpt-5")),
            quality=(_P("gpt-5-mini", "gemini-2.5-flash"), _P("claude-sonnet-4-5", "gemini-2.5-pro")),
        ),
        PlanTier.ENTERPRISE: _presets(
            cost=(_P("gemini-2.5-flash", "gpt-5-mini"), _P("claude-sonnet-4-5", "gpt-5")),
            quality=(_P("gemini-2.5-pro", "gpt-5"), _P("claude-opus-4-5", "gpt-5")),
        ),
    }
)

# Shipped defaults = the quality preset of every tier
DEFAULT_PRESET = "presetB"

DEFAULT_PHASE_MODELS: MappingProxyType[PlanTier, MappingProxyType[Phase, PhaseModels]] = MappingProxyType(
    {
        tier: MappingProxyType({phase: presets[DEFAULT_PRESET].for_phase(phase) for phase in Phase})
        for tier, presets in PLAN_AI_PRESETS.items()
    }
)


def get_presets(plan_tier: PlanTier) -> dict[str, Preset]:
    return dict(PLAN_AI_PRESETS[plan_tier])


def default_models(plan_tier: PlanTier, phase: Phase) -> PhaseModels:
    return DEFAULT_PHASE_MODELS[plan_tier][phase]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class ModelSelectionPolicy:
    """Resolve the primary/backup pair for one generation."""

    def __init__(self, override_source: OverrideSource | None = None):
        self.override_source = override_source

    async def select(self, service: str, plan_tier: PlanTier | str, phase: Phase | str) -> ModelSelection:
        plan_tier = PlanTier(plan_tier)
        phase = Phase(phase)
        default = default_models(plan_tier, phase)

        override = await self._load_override(service, plan_tier, phase)
        if override is None:
            return ModelSelection(default.primary, default.backup, source="default")

        primary, primary_overridden = self._validated(
            override.primary_model, default.primary, "primary", service, plan_tier, phase
        )
        backup, backup_overridden = self._validated(
            override.backup_model, default.backup, "backup", service, plan_tier, phase
        )

        # Fallback must switch vendors
        if backend_for_model(primary) == backend_for_model(backup):
            logger.warning(
                "Configured pair %s/%s for %s/%s/%s shares a backend; reverting to defaults %s/%s",
                primary,
                backup,
                service,
                plan_tier.value,
                phase.value,
                default.primary,
                default.backup,
            )
            if backup_overridden:
                backup, backup_overridden = default.backup, False
            if backend_for_model(primary) == backend_for_model(backup):
                primary, primary_overridden = default.primary, False

        if primary_overridden and backup_overridden:
            source = "override"
        elif primary_overridden or backup_overridden:
            source = "mixed"
        else:
            source = "default"
        return ModelSelection(primary, backup, source=source)

    async def _load_override(self, service: str, plan_tier: PlanTier, phase: Phase) -> PhaseConfig | None:
        if self.override_source is None:
            return None
        try:
            return await self.override_source.get_override(service, plan_tier, phase)
        except Exception as e:
            # Broken configuration store: dispatch proceeds on shipped defaults
            logger.warning(
                "Override lookup failed for %s/%s/%s, using defaults: %s",
                service,
                plan_tier.value,
                phase.value,
                e,
            )
            return None

    @staticmethod
    def _validated(
        model_id: str | None,
        default: str,
        slot: str,
        service: str,
        plan_tier: PlanTier,
        phase: Phase,
    ) -> tuple[str, bool]:
        """Return (model id to use, whether it came from the override)."""
        if not model_id:
            return default, False
        if not is_known_model(model_id):
            logger.warning(
                "Configured %s model %r for %s/%s/%s is not in the catalog; using default %s",
                slot,
                model_id,
                service,
                plan_tier.value,
                phase.value,
                default,
            )
            return default, False
        return model_id, True
