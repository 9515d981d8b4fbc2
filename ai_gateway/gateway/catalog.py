"""Static model catalog and id → backend resolution.

The catalog is immutable and shared without locking. It is used for
validating admin overrides, display, and cost estimation; it is never
mutated at runtime.
"""

from __future__ import annotations

from types import MappingProxyType

from ai_gateway.gateway.types import Backend, ModelInfo, ModelStatus, PerformanceTier

# Unknown id prefixes resolve to this backend instead of failing dispatch
DEFAULT_BACKEND = Backend.GEMINI

# Cost fallback for ids missing from the catalog (ledger cost estimation)
DEFAULT_PRICING_MODEL = "gemini-2.5-flash-lite"

_BACKEND_PREFIXES: tuple[tuple[str, Backend], ...] = (
    ("gpt-", Backend.OPENAI),
    ("o1", Backend.OPENAI),
    ("o3", Backend.OPENAI),
    ("o4", Backend.OPENAI),
    ("gemini-", Backend.GEMINI),
    ("claude-", Backend.ANTHROPIC),
)


def _m(
    model_id: str,
    backend: Backend,
    input_cost: float,
    output_cost: float,
    context_length: int,
    performance: PerformanceTier,
    status: ModelStatus = ModelStatus.AVAILABLE,
    display_name: str = "",
) -> tuple[str, ModelInfo]:
    return model_id, ModelInfo(
        model_id=model_id,
        backend=backend,
        input_cost=input_cost,
        output_cost=output_cost,
        context_length=context_length,
        performance=performance,
        status=status,
        display_name=display_name or model_id,
    )


# Pricing per 1M tokens (USD)
MODEL_CATALOG: MappingProxyType[str, ModelInfo] = MappingProxyType(
    dict(
        [
            # OpenAI
            _m("gpt-4o-mini", Backend.OPENAI, 0.15, 0.60, 128_000, PerformanceTier.ECONOMY),
            _m("gpt-4o", Backend.OPENAI, 2.50, 10.00, 128_000, PerformanceTier.STANDARD),
            _m("gpt-5-nano", Backend.OPENAI, 0.05, 0.40, 400_000, PerformanceTier.ECONOMY, ModelStatus.RECOMMENDED),
            _m("gpt-5-mini", Backend.OPENAI, 0.25, 2.00, 400_000, PerformanceTier.STANDARD, ModelStatus.RECOMMENDED),
            _m("gpt-5", Backend.OPENAI, 1.25, 10.00, 400_000, PerformanceTier.PREMIUM, ModelStatus.RECOMMENDED),
            _m("gpt-5.1", Backend.OPENAI, 1.25, 10.00, 400_000, PerformanceTier.PREMIUM, ModelStatus.PREVIEW),
            _m("o3-mini", Backend.OPENAI, 1.10, 4.40, 200_000, PerformanceTier.STANDARD),
            # Gemini
            _m(
                "gemini-2.5-flash-lite",
                Backend.GEMINI,
                0.10,
                0.40,
                1_000_000,
                PerformanceTier.ECONOMY,
                ModelStatus.RECOMMENDED,
            ),
            _m(
                "gemini-2.5-flash",
                Backend.GEMINI,
                0.30,
                2.50,
                1_000_000,
                PerformanceTier.STANDARD,
                ModelStatus.RECOMMENDED,
            ),
            _m("gemini-2.5-pro", Backend.GEMINI, 1.25, 10.00, 1_000_000, PerformanceTier.PREMIUM),
            _m("gemini-2.0-flash", Backend.GEMINI, 0.10, 0.40, 1_000_000, PerformanceTier.ECONOMY),
            _m(
                "gemini-3-flash-preview",
                Backend.GEMINI,
                0.50,
                3.00,
                1_000_000,
                PerformanceTier.STANDARD,
                ModelStatus.PREVIEW,
            ),
            # Anthropic
            _m("claude-3-5-haiku", Backend.ANTHROPIC, 0.80, 4.00, 200_000, PerformanceTier.ECONOMY),
            _m(
                "claude-haiku-4-5",
                Backend.ANTHROPIC,
                1.00,
                5.00,
                200_000,
                PerformanceTier.STANDARD,
                ModelStatus.RECOMMENDED,
            ),
            _m(
                "claude-sonnet-4-5",
                Backend.ANTHROPIC,
                3.00,
                15.00,
                200_000,
                PerformanceTier.PREMIUM,
                ModelStatus.RECOMMENDED,
            ),
            _m("claude-opus-4-5", Backend.ANTHROPIC, 5.00, 25.00, 200_000, PerformanceTier.PREMIUM),
        ]
    )
)


def backend_for_model(model_id: str) -> Backend:
    """Derive the owning backend of a model id.

    Catalog entries win; otherwise the id prefix decides, and unknown
    prefixes map to DEFAULT_BACKEND.
    """
    info = MODEL_CATALOG.get(model_id)
    if info is not None:
        return info.backend
    for prefix, backend in _BACKEND_PREFIXES:
        if model_id.startswith(prefix):
            return backend
    return DEFAULT_BACKEND


def is_known_model(model_id: str | None) -> bool:
    return bool(model_id) and model_id in MODEL_CATALOG


def get_model_info(model_id: str) -> ModelInfo | None:
    return MODEL_CATALOG.get(model_id)


def pricing_for(model_id: str) -> ModelInfo:
    """Catalog entry used for cost estimation, falling back to the cheapest default."""
    info = MODEL_CATALOG.get(model_id)
    if info is None:
        # Versioned ids such as "claude-sonnet-4-5-20250929" price as their family
        for known_id in sorted(MODEL_CATALOG, key=len, reverse=True):
            if model_id.startswith(known_id):
                return MODEL_CATALOG[known_id]
        return MODEL_CATALOG[DEFAULT_PRICING_MODEL]
    return info


def list_models(backend: Backend | None = None, status: ModelStatus | None = None) -> list[ModelInfo]:
    """Catalog entries for display, optionally filtered."""
    models = list(MODEL_CATALOG.values())
    if backend is not None:
        models = [m for m in models if m.backend == backend]
    if status is not None:
        models = [m for m in models if m.status == status]
    return models
