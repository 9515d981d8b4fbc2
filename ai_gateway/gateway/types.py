"""Core types and DTOs for the AI Generation Gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Backend(str, Enum):
    """Supported text-generation backends."""

    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class OutputFormat(str, Enum):
    """Desired output shape of a generation."""

    JSON = "json"
    TEXT = "text"


class PlanTier(str, Enum):
    """Subscription level. Assigned by billing, read-only to the gateway."""

    NONE = "none"
    LITE = "lite"
    STANDARD = "standard"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class Phase(str, Enum):
    """Stage of the calling workflow used to pick models."""

    OUTLINE = "outline"  # Thinking / structuring (cost first)
    WRITING = "writing"  # Long-form text (quality first)

    @classmethod
    def _missing_(cls, value: object) -> Phase | None:
        if value == "planning":
            return cls.OUTLINE
        return None


class ModelStatus(str, Enum):
    RECOMMENDED = "recommended"
    AVAILABLE = "available"
    PREVIEW = "preview"


class PerformanceTier(str, Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    PREMIUM = "premium"


class FeatureType(str, Enum):
    """Product feature a generation is counted against for per-feature daily limits."""

    PROFILE = "profile"
    BUSINESS = "business"
    QUIZ = "quiz"


class Outcome(str, Enum):
    """Outcome of one logical generation as written to the usage ledger."""

    SUCCESS = "success"  # Primary answered
    FALLBACK = "fallback"  # Backup answered after primary failed
    FAILED = "failed"  # Both failed


# ---------------------------------------------------------------------------
# Request / Response
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Message:
    role: Role
    content: str


@dataclass(frozen=True)
class GenerationRequest:
    """Vendor-neutral generation request.

    Frozen: the same instance is handed to the primary and the backup
    adapter, so neither attempt can alter what the other one sees.
    """

    messages: tuple[Message, ...]
    temperature: float | None = None  # None = vendor default
    max_tokens: int | None = None  # Output-token budget
    response_format: OutputFormat | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers but store an immutable tuple
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        if not self.messages:
            raise ValueError("GenerationRequest requires at least one message")

    @classmethod
    def from_prompts(
        cls,
        user: str,
        system: str = "",
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: OutputFormat | None = None,
    ) -> GenerationRequest:
        messages = []
        if system:
            messages.append(Message(Role.SYSTEM, system))
        messages.append(Message(Role.USER, user))
        return cls(
            messages=tuple(messages),
            temperature=temperature,
            max_tokens=max_tokens,
            response_format=response_format,
        )

    def contents(self, role: Role) -> list[str]:
        return [m.content for m in self.messages if m.role == role]

    @property
    def wants_json(self) -> bool:
        return self.response_format == OutputFormat.JSON


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class GenerationResponse:
    """Normalized output of exactly one successful adapter call."""

    content: str
    model: str
    backend: Backend
    usage: TokenUsage | None = None
    latency_ms: int = 0
    is_fallback: bool = False  # True when produced by the backup model

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "model": self.model,
            "backend": self.backend.value,
            "usage": (
                {"input_tokens": self.usage.input_tokens, "output_tokens": self.usage.output_tokens}
                if self.usage
                else None
            ),
            "latency_ms": self.latency_ms,
            "is_fallback": self.is_fallback,
        }


# ---------------------------------------------------------------------------
# Catalog / policy records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelInfo:
    """Static catalog entry. Costs are USD per 1M tokens."""

    model_id: str
    backend: Backend
    input_cost: float
    output_cost: float
    context_length: int
    performance: PerformanceTier
    status: ModelStatus = ModelStatus.AVAILABLE
    display_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_id": self.model_id,
            "backend": self.backend.value,
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "context_length": self.context_length,
            "performance": self.performance.value,
            "status": self.status.value,
            "display_name": self.display_name or self.model_id,
        }


@dataclass(frozen=True)
class PhaseModels:
    primary: str
    backup: str


@dataclass(frozen=True)
class PhaseConfig:
    """Admin override for one (service, plan tier, phase). Either id may be absent."""

    service: str
    plan_tier: PlanTier
    phase: Phase
    primary_model: str | None = None
    backup_model: str | None = None


@dataclass(frozen=True)
class ModelSelection:
    primary_model: str
    backup_model: str
    source: str = "default"  # default | override | mixed


@dataclass
class GenerationContext:
    """Who is generating, for what, on which plan."""

    user_id: str
    service: str
    plan_tier: PlanTier
    phase: Phase
    action_type: str = "generate"
    feature_type: FeatureType | None = None  # Set to apply per-feature limits
    metadata: dict[str, Any] = field(default_factory=dict)
