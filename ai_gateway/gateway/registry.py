"""Adapter Registry: resolve a model id to a ready adapter instance."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from ai_gateway.core.exceptions import BackendError, ConfigurationError
from ai_gateway.gateway.catalog import backend_for_model
from ai_gateway.gateway.types import Backend
from ai_gateway.gateway.vendor_adapters import ADAPTER_REGISTRY, BaseBackendAdapter

if TYPE_CHECKING:
    from ai_gateway.core.config import Settings

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., BaseBackendAdapter]


class AdapterRegistry:
    """Holds one adapter per backend with usable credentials.

    Construction fails with ConfigurationError when no backend is usable:
    at least one backend is a hard precondition for serving traffic.
    """

    def __init__(
        self,
        api_keys: Mapping[Backend | str, str],
        adapter_factories: Mapping[Backend, AdapterFactory] | None = None,
        timeout: float | None = None,
    ):
        factories = dict(ADAPTER_REGISTRY)
        if adapter_factories:
            factories.update(adapter_factories)

        kwargs = {"timeout": timeout} if timeout else {}
        self._adapters: dict[Backend, BaseBackendAdapter] = {}
        for key, api_key in api_keys.items():
            backend = Backend(key)
            if not api_key or backend not in factories:
                continue
            adapter = factories[backend](api_key=api_key, **kwargs)
            if adapter.is_available():
                self._adapters[backend] = adapter

        if not self._adapters:
            raise ConfigurationError("No AI backend available: configure at least one backend API key")

        logger.info("Adapter registry ready: %s", ", ".join(b.value for b in self._adapters))

    @classmethod
    def from_settings(cls, settings: Settings) -> AdapterRegistry:
        return cls(
            api_keys={
                Backend.OPENAI: settings.openai_api_key,
                Backend.GEMINI: settings.gemini_api_key,
                Backend.ANTHROPIC: settings.anthropic_api_key,
            },
            timeout=settings.backend_timeout_seconds,
        )

    def available_backends(self) -> list[Backend]:
        return list(self._adapters)

    def is_available(self, backend: Backend) -> bool:
        return backend in self._adapters

    def resolve(self, model_id: str) -> BaseBackendAdapter:
        """Return an adapter bound to model_id.

        Raises BackendError when the owning backend has no credentials; the
        orchestrator treats that like any other failed attempt.
        """
        backend = backend_for_model(model_id)
        adapter = self._adapters.get(backend)
        if adapter is None:
            raise BackendError("No credentials configured", backend=backend.value, model=model_id)
        return adapter.with_model(model_id)
