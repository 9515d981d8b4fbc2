"""Fallback Orchestrator: primary first, backup once, never more.

Sequence for one logical generation:
  1. Resolve and call the primary model with the unmodified request
  2. On BackendError or timeout, call the backup model with the same request
  3. If the backup fails as well, raise GenerationFailed carrying both causes

No retries of the same adapter, no concurrent attempts. An optional overall
timeout bounds both calls together: a primary timeout still leaves the
backup whatever time remains, a backup timeout is terminal.

Cancellation of the calling task propagates unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from ai_gateway.core.exceptions import BackendError, GenerationFailed
from ai_gateway.core.metrics import GENERATION_ATTEMPTS
from ai_gateway.gateway.catalog import backend_for_model
from ai_gateway.gateway.registry import AdapterRegistry
from ai_gateway.gateway.types import GenerationRequest, GenerationResponse, ModelSelection

logger = logging.getLogger(__name__)


@dataclass
class AttemptRecord:
    """One backend call made by the orchestrator."""

    model: str
    backend: str
    ok: bool
    error: str = ""
    latency_ms: int = 0
    dispatched: bool = True  # False when no adapter could be resolved (vendor never called)


def any_dispatched(attempts: list[AttemptRecord]) -> bool:
    """True if at least one attempt actually reached a vendor."""
    return any(a.dispatched for a in attempts)


@dataclass
class OrchestrationResult:
    response: GenerationResponse
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def primary_error(self) -> str:
        if self.attempts and not self.attempts[0].ok:
            return self.attempts[0].error
        return ""


class FallbackOrchestrator:
    def __init__(self, registry: AdapterRegistry):
        self.registry = registry

    async def run(
        self,
        selection: ModelSelection,
        request: GenerationRequest,
        timeout: float | None = None,
    ) -> OrchestrationResult:
        """Execute primary then, on failure, backup.

        Args:
            selection: Primary/backup model ids from the selection policy
            request: Sent unchanged to both attempts
            timeout: Overall budget in seconds for both attempts (None = adapter timeouts only)

        Raises:
            GenerationFailed: both attempts failed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        attempts: list[AttemptRecord] = []

        try:
            response = await self._attempt(selection.primary_model, request, deadline, attempts)
            return OrchestrationResult(response=response, attempts=attempts)
        except BackendError as e:
            primary_error = e

        logger.warning(
            "Primary model %s failed (%s), falling back to %s",
            selection.primary_model,
            primary_error.cause,
            selection.backup_model,
        )

        if deadline is not None and deadline - loop.time() <= 0:
            backup_error = BackendError(
                "No time left for backup attempt",
                backend=backend_for_model(selection.backup_model).value,
                model=selection.backup_model,
            )
            logger.error("Generation failed: primary=%s; backup skipped (deadline reached)", primary_error)
            raise GenerationFailed(primary_error, backup_error, attempts)

        try:
            response = await self._attempt(selection.backup_model, request, deadline, attempts)
        except BackendError as e:
            logger.error("Generation failed: primary=%s; backup=%s", primary_error, e)
            raise GenerationFailed(primary_error, e, attempts) from e

        response.is_fallback = True
        return OrchestrationResult(response=response, attempts=attempts)

    async def _attempt(
        self,
        model_id: str,
        request: GenerationRequest,
        deadline: float | None,
        attempts: list[AttemptRecord],
    ) -> GenerationResponse:
        """Make exactly one backend call, recording it in `attempts`.

        Every failure mode surfaces as BackendError.
        """
        backend = backend_for_model(model_id).value
        try:
            adapter = self.registry.resolve(model_id)
        except BackendError as e:
            attempts.append(AttemptRecord(model_id, backend, ok=False, error=str(e), dispatched=False))
            GENERATION_ATTEMPTS.labels(backend=backend, outcome="unavailable").inc()
            raise

        start = time.monotonic()
        try:
            if deadline is None:
                response = await adapter.generate(request)
            else:
                remaining = max(deadline - asyncio.get_running_loop().time(), 0.0)
                response = await asyncio.wait_for(adapter.generate(request, timeout=remaining), timeout=remaining)
        except BackendError as e:
            error = e
        except asyncio.TimeoutError:
            error = BackendError("Generation timed out", backend=backend, model=model_id)
        except Exception as e:
            logger.exception("Unexpected adapter error for %s", model_id)
            error = BackendError(f"{type(e).__name__}: {e}", backend=backend, model=model_id)
        else:
            attempts.append(AttemptRecord(model_id, backend, ok=True, latency_ms=response.latency_ms))
            GENERATION_ATTEMPTS.labels(backend=backend, outcome="success").inc()
            return response

        latency_ms = int((time.monotonic() - start) * 1000)
        attempts.append(AttemptRecord(model_id, backend, ok=False, error=str(error), latency_ms=latency_ms))
        GENERATION_ATTEMPTS.labels(backend=backend, outcome="error").inc()
        raise error
