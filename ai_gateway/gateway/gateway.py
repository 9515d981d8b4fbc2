"""AI Generation Gateway: single entry point for text generation.

Control flow for one call:
  1. QuotaEnforcer.enforce (and enforce_feature for feature-tagged calls):
     reject over-limit users before any backend call
  2. ModelSelectionPolicy.select: (service, plan tier, phase) -> primary/backup
  3. FallbackOrchestrator.run: primary, then backup on failure
  4. UsageLedger.record: one row per logical generation that reached a vendor
  5. Return the response, or raise GenerationFailed

Usage:
    gateway = GenerationGateway.from_settings()
    response = await gateway.generate(
        GenerationContext(user_id="u1", service="kdl", plan_tier=PlanTier.PRO, phase=Phase.WRITING),
        GenerationRequest.from_prompts("Write an article about ...", system="You are an editor."),
    )

    # Or through the module-level shortcut
    response = await generate("kdl", "pro", "writing", request, user_id="u1")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ai_gateway.core.exceptions import GenerationFailed
from ai_gateway.core.metrics import GENERATION_DURATION, GENERATION_FAILURES, GENERATION_FALLBACKS
from ai_gateway.gateway.ledger import UsageLedger, UsageLogEntry
from ai_gateway.gateway.orchestrator import AttemptRecord, FallbackOrchestrator, any_dispatched
from ai_gateway.gateway.policy import ModelSelectionPolicy
from ai_gateway.gateway.quota import QuotaEnforcer, utcnow
from ai_gateway.gateway.registry import AdapterRegistry
from ai_gateway.gateway.types import (
    FeatureType,
    GenerationContext,
    GenerationRequest,
    GenerationResponse,
    ModelSelection,
    Outcome,
    Phase,
    PlanTier,
)

if TYPE_CHECKING:
    from ai_gateway.core.config import Settings

logger = logging.getLogger(__name__)


class GenerationGateway:
    """Wires quota, policy, fallback and ledger around the adapter registry."""

    def __init__(
        self,
        registry: AdapterRegistry,
        policy: ModelSelectionPolicy,
        enforcer: QuotaEnforcer,
        ledger: UsageLedger,
        orchestrator: FallbackOrchestrator | None = None,
        clock: Callable[[], datetime] = utcnow,
        timeout: float | None = None,
    ):
        """
        Args:
            registry: Adapters for every backend with credentials
            policy: Primary/backup model selection
            enforcer: Daily/monthly and per-feature quota checks
            ledger: Usage log writer (also the enforcer's counter in production)
            orchestrator: Defaults to a FallbackOrchestrator over `registry`
            clock: Timestamp source for ledger rows
            timeout: Default overall budget for one generation, None = adapter timeouts only
        """
        self.registry = registry
        self.policy = policy
        self.enforcer = enforcer
        self.ledger = ledger
        self.orchestrator = orchestrator or FallbackOrchestrator(registry)
        self.clock = clock
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> GenerationGateway:
        """Build a gateway backed by the configured database and API keys."""
        from ai_gateway.core.config import settings as default_settings
        from ai_gateway.db.session import async_session_factory
        from ai_gateway.services.ai_settings import SqlFeatureLimitSource, SqlOverrideSource

        settings = settings or default_settings
        ledger = UsageLedger(async_session_factory)
        return cls(
            registry=AdapterRegistry.from_settings(settings),
            policy=ModelSelectionPolicy(SqlOverrideSource(async_session_factory)),
            enforcer=QuotaEnforcer(
                ledger,
                tz=settings.quota_timezone,
                feature_limits=SqlFeatureLimitSource(async_session_factory),
            ),
            ledger=ledger,
            timeout=settings.generation_timeout_seconds or None,
        )

    async def generate(
        self,
        context: GenerationContext,
        request: GenerationRequest,
        timeout: float | None = None,
    ) -> GenerationResponse:
        """Run one logical generation for `context`.

        Raises:
            QuotaExceededError: user is over a daily, monthly or feature limit (no backend call made)
            GenerationFailed: primary and backup both failed
        """
        plan_tier = PlanTier(context.plan_tier)
        phase = Phase(context.phase)
        log_extra = {"user_id": context.user_id, "service": context.service, "phase": phase.value}

        await self.enforcer.enforce(context.user_id, plan_tier)
        if context.feature_type:
            await self.enforcer.enforce_feature(context.user_id, plan_tier, context.feature_type, context.service)

        selection = await self.policy.select(context.service, plan_tier, phase)
        logger.debug(
            "Selected %s (backup %s, source=%s) for %s/%s/%s",
            selection.primary_model,
            selection.backup_model,
            selection.source,
            context.service,
            plan_tier.value,
            phase.value,
            extra=log_extra,
        )

        start = time.monotonic()
        try:
            result = await self.orchestrator.run(selection, request, timeout=timeout or self.timeout)
        except GenerationFailed as e:
            GENERATION_FAILURES.labels(service=context.service).inc()
            GENERATION_DURATION.labels(service=context.service, phase=phase.value).observe(time.monotonic() - start)
            logger.error(
                "AI generation failed for user=%s service=%s: primary=%s backup=%s",
                context.user_id,
                context.service,
                e.primary_cause,
                e.backup_cause,
                extra=log_extra,
            )
            # Only a generation that reached a vendor consumes quota
            if any_dispatched(e.attempts):
                await self.ledger.record(
                    self._entry(context, phase, selection, e.attempts, None, Outcome.FAILED, e)
                )
            raise

        GENERATION_DURATION.labels(service=context.service, phase=phase.value).observe(time.monotonic() - start)
        response = result.response
        outcome = Outcome.FALLBACK if response.is_fallback else Outcome.SUCCESS
        if response.is_fallback:
            GENERATION_FALLBACKS.labels(service=context.service).inc()

        await self.ledger.record(self._entry(context, phase, selection, result.attempts, response, outcome))
        logger.info(
            "Generated %d chars with %s for user=%s service=%s (%s, %dms)",
            len(response.content),
            response.model,
            context.user_id,
            context.service,
            outcome.value,
            response.latency_ms,
            extra={**log_extra, "model": response.model},
        )
        return response

    def _entry(
        self,
        context: GenerationContext,
        phase: Phase,
        selection: ModelSelection,
        attempts: list[AttemptRecord],
        response: GenerationResponse | None,
        outcome: Outcome,
        failure: GenerationFailed | None = None,
    ) -> UsageLogEntry:
        metadata: dict[str, Any] = {
            **context.metadata,
            "plan_tier": PlanTier(context.plan_tier).value,
            "primary_model": selection.primary_model,
            "backup_model": selection.backup_model,
            "selection_source": selection.source,
            "attempts": len(attempts),
        }
        if failure is not None:
            metadata["primary_error"] = str(failure.primary_cause)
            metadata["backup_error"] = str(failure.backup_cause)
        elif attempts and not attempts[0].ok:
            metadata["primary_error"] = attempts[0].error

        usage = response.usage if response else None
        return UsageLogEntry(
            user_id=context.user_id,
            action_type=context.action_type,
            service=context.service,
            model_used=response.model if response else attempts[-1].model,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
            phase=phase.value,
            feature_type=FeatureType(context.feature_type).value if context.feature_type else None,
            outcome=outcome,
            metadata=metadata,
            created_at=self.clock(),
        )


_default_gateway: GenerationGateway | None = None


def get_gateway() -> GenerationGateway:
    """Process-wide gateway built from settings on first use."""
    global _default_gateway
    if _default_gateway is None:
        _default_gateway = GenerationGateway.from_settings()
    return _default_gateway


async def generate(
    service: str,
    plan_tier: PlanTier | str,
    phase: Phase | str,
    request: GenerationRequest,
    *,
    user_id: str,
    action_type: str = "generate",
    feature_type: FeatureType | str | None = None,
    metadata: dict[str, Any] | None = None,
    timeout: float | None = None,
    gateway: GenerationGateway | None = None,
) -> GenerationResponse:
    """Generate text for (service, plan tier, phase) on behalf of user_id."""
    context = GenerationContext(
        user_id=user_id,
        service=service,
        plan_tier=PlanTier(plan_tier),
        phase=Phase(phase),
        action_type=action_type,
        feature_type=FeatureType(feature_type) if feature_type else None,
        metadata=metadata or {},
    )
    return await (gateway or get_gateway()).generate(context, request, timeout=timeout)
