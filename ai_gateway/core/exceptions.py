"""Gateway error taxonomy.

  - ConfigurationError: no usable backend at all (fatal at startup)
  - QuotaExceededError: caller is over a daily, monthly or per-feature limit (shown to the user)
  - BackendError: one adapter failed (recovered internally by fallback)
  - GenerationFailed: primary and backup both failed (generic message to the user)
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigurationError(GatewayError):
    """Raised when the gateway cannot serve traffic with the current configuration."""


class QuotaExceededError(GatewayError):
    """Raised when a user has exhausted a generation quota."""

    MESSAGES = {
        "daily": "Daily AI usage limit reached. Please try again tomorrow.",
        "monthly": "Monthly AI usage limit reached. Please try again next month or upgrade your plan.",
        "feature": "Daily AI limit for this feature reached. Please try again tomorrow.",
        "feature_total": "Daily AI limit across all features reached. Please try again tomorrow.",
    }

    def __init__(self, scope: str, used: int = 0, limit: int | None = None, feature_type: str | None = None):
        if scope not in self.MESSAGES:
            raise ValueError(f"Unknown quota scope: {scope}")
        super().__init__(self.MESSAGES[scope])
        self.scope = scope
        self.used = used
        self.limit = limit
        self.feature_type = feature_type

    @property
    def user_message(self) -> str:
        return self.MESSAGES[self.scope]


class BackendError(GatewayError):
    """A single adapter call failed: transport error, vendor rejection or empty body."""

    def __init__(self, cause: str, backend: str = "", model: str = "", status_code: int = 0):
        super().__init__(cause)
        self.cause = cause
        self.backend = backend
        self.model = model
        self.status_code = status_code

    def __str__(self) -> str:
        where = "/".join(p for p in (self.backend, self.model) if p)
        return f"[{where}] {self.cause}" if where else self.cause


class GenerationFailed(GatewayError):
    """Both the primary and the backup adapter failed for one logical generation."""

    user_message = "AI generation failed. Please try again later."

    def __init__(
        self,
        primary_cause: BackendError,
        backup_cause: BackendError,
        attempts: list[Any] | None = None,
    ):
        super().__init__(f"primary failed: {primary_cause}; backup failed: {backup_cause}")
        self.primary_cause = primary_cause
        self.backup_cause = backup_cause
        self.attempts = attempts or []
