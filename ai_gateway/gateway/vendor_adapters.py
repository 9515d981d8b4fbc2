"""Backend Adapters: one vendor call convention behind one interface.

Each adapter translates a GenerationRequest into the vendor's HTTP protocol,
sends it, and returns a GenerationResponse. Any failure (transport error,
vendor rejection, malformed or empty body) is raised as BackendError so the
orchestrator can fall back; nothing vendor-specific leaks upward.

Vendor-specific behaviors:
  - OpenAI: flat role-tagged messages; reasoning models (gpt-5 / o-series)
    forbid temperature and use max_completion_tokens
  - Gemini: no role distinction at the transport level, system + user are
    concatenated into one prompt; JSON mode is a response mimetype
  - Anthropic: system is a top-level field, turns must alternate
    user/assistant, max_tokens is mandatory
"""

from __future__ import annotations

import copy
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ai_gateway.core.exceptions import BackendError
from ai_gateway.gateway.types import (
    Backend,
    GenerationRequest,
    GenerationResponse,
    Role,
    TokenUsage,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class BaseBackendAdapter(ABC):
    """Base class for all backend adapters."""

    backend: Backend
    provider_name: str
    default_model: str

    def __init__(self, api_key: str, model: str | None = None, timeout: float = DEFAULT_TIMEOUT, **kwargs):
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout

    def is_available(self) -> bool:
        """True when credentials are present."""
        return bool(self.api_key)

    def with_model(self, model: str) -> BaseBackendAdapter:
        """Return a copy of this adapter bound to another model id."""
        clone = copy.copy(self)
        clone.model = model
        return clone

    @abstractmethod
    async def generate(self, request: GenerationRequest, timeout: float | None = None) -> GenerationResponse:
        """Send a request to the vendor and return a normalized response."""
        ...

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        timeout: float | None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST a JSON payload and return the decoded body, mapping every failure to BackendError."""
        timeout = timeout or self.timeout
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException:
            raise self._error(f"Timeout after {timeout}s")
        except httpx.HTTPError as e:
            raise self._error(f"Transport error: {e}")

        if resp.status_code == 429:
            raise self._error(f"Rate limited by {self.provider_name}", status_code=429)
        if resp.status_code >= 400:
            raise self._error(f"HTTP {resp.status_code}: {resp.text[:300]}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            raise self._error("Malformed response body")
        if not isinstance(data, dict):
            raise self._error("Malformed response body")
        return data

    def _error(self, cause: str, status_code: int = 0) -> BackendError:
        return BackendError(cause, backend=self.backend.value, model=self.model, status_code=status_code)

    def _response(self, content: str | None, usage: TokenUsage | None, start: float) -> GenerationResponse:
        # A blank generation is indistinguishable from a silent vendor fault
        if not content or not content.strip():
            raise self._error(f"{self.provider_name} returned empty response")
        return GenerationResponse(
            content=content,
            model=self.model,
            backend=self.backend,
            usage=usage,
            latency_ms=int((time.monotonic() - start) * 1000),
        )


def _usage(data: dict[str, Any], key: str, input_key: str, output_key: str) -> TokenUsage | None:
    """Normalize a vendor usage block, None when the vendor does not report one."""
    usage = data.get(key)
    if not isinstance(usage, dict):
        return None
    return TokenUsage(
        input_tokens=int(usage.get(input_key) or 0),
        output_tokens=int(usage.get(output_key) or 0),
    )


# ---------------------------------------------------------------------------
# OpenAI Adapter
# ---------------------------------------------------------------------------

# GPT-5 series and o-series are reasoning models that do NOT support
# temperature or max_tokens; they require max_completion_tokens instead.
_REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def _is_reasoning_model(model: str) -> bool:
    """Check if a model is a reasoning model (GPT-5 / o-series)."""
    return any(model.startswith(p) for p in _REASONING_MODEL_PREFIXES)


class OpenAIAdapter(BaseBackendAdapter):
    """OpenAI Chat Completions adapter."""

    backend = Backend.OPENAI
    provider_name = "OpenAI"
    default_model = "gpt-4o-mini"
    api_url = "https://api.openai.com/v1/chat/completions"

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
        }

        if _is_reasoning_model(self.model):
            if request.max_tokens:
                payload["max_completion_tokens"] = request.max_tokens
        else:
            if request.temperature is not None:
                payload["temperature"] = request.temperature
            if request.max_tokens:
                payload["max_tokens"] = request.max_tokens

        if request.wants_json:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def generate(self, request: GenerationRequest, timeout: float | None = None) -> GenerationResponse:
        start = time.monotonic()
        data = await self._post_json(
            self.api_url,
            self.build_payload(request),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

        choices = data.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        return self._response(content, _usage(data, "usage", "prompt_tokens", "completion_tokens"), start)


# ---------------------------------------------------------------------------
# Gemini Adapter (Google AI generateContent)
# ---------------------------------------------------------------------------


def _flatten_prompt(request: GenerationRequest) -> str:
    """Merge system and user content into the single prompt Gemini receives."""
    system = "\n\n".join(request.contents(Role.SYSTEM))
    user = "\n\n".join(request.contents(Role.USER))
    return f"{system}\n\n---\n\n{user}" if system else user


class GeminiAdapter(BaseBackendAdapter):
    """Google Gemini adapter with SAFETY filter detection."""

    backend = Backend.GEMINI
    provider_name = "Gemini"
    default_model = "gemini-2.5-flash-lite"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        generation_config: dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens:
            generation_config["maxOutputTokens"] = request.max_tokens
        if request.wants_json:
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": _flatten_prompt(request)}]}],
        }
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    async def generate(self, request: GenerationRequest, timeout: float | None = None) -> GenerationResponse:
        start = time.monotonic()
        data = await self._post_json(
            self.api_url_template.format(model=self.model),
            self.build_payload(request),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            params={"key": self.api_key},
        )

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason", "")
            if block_reason:
                raise self._error(f"Prompt blocked: {block_reason}")
            raise self._error("Gemini returned no candidates")

        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            raise self._error("Gemini safety filter triggered")

        parts = (candidate.get("content") or {}).get("parts") or []
        content = "".join(p.get("text", "") for p in parts if "text" in p)
        return self._response(content, _usage(data, "usageMetadata", "promptTokenCount", "candidatesTokenCount"), start)


# ---------------------------------------------------------------------------
# Anthropic Adapter (Messages API)
# ---------------------------------------------------------------------------

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_DEFAULT_MAX_TOKENS = 4096
_JSON_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


def _alternating_turns(request: GenerationRequest) -> list[dict[str, str]]:
    """Coerce non-system messages into strictly alternating user/assistant turns.

    Consecutive same-role messages are merged; the list always opens with a
    user turn.
    """
    turns: list[dict[str, str]] = []
    for message in request.messages:
        if message.role == Role.SYSTEM:
            continue
        if turns and turns[-1]["role"] == message.role.value:
            turns[-1]["content"] += "\n\n" + message.content
        else:
            turns.append({"role": message.role.value, "content": message.content})

    if not turns or turns[0]["role"] != Role.USER.value:
        turns.insert(0, {"role": Role.USER.value, "content": "Continue."})
    return turns


class AnthropicAdapter(BaseBackendAdapter):
    """Anthropic Claude Messages adapter."""

    backend = Backend.ANTHROPIC
    provider_name = "Anthropic"
    default_model = "claude-haiku-4-5"
    api_url = "https://api.anthropic.com/v1/messages"

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        system_parts = request.contents(Role.SYSTEM)
        if request.wants_json:
            system_parts = [*system_parts, _JSON_INSTRUCTION]

        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
            "messages": _alternating_turns(request),
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            # Anthropic accepts 0..1
            payload["temperature"] = min(max(request.temperature, 0.0), 1.0)
        return payload

    async def generate(self, request: GenerationRequest, timeout: float | None = None) -> GenerationResponse:
        start = time.monotonic()
        data = await self._post_json(
            self.api_url,
            self.build_payload(request),
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

        blocks = data.get("content") or []
        content = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        return self._response(content, _usage(data, "usage", "input_tokens", "output_tokens"), start)


# ---------------------------------------------------------------------------
# Adapter registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[Backend, type[BaseBackendAdapter]] = {
    Backend.OPENAI: OpenAIAdapter,
    Backend.GEMINI: GeminiAdapter,
    Backend.ANTHROPIC: AnthropicAdapter,
}


def get_adapter(backend: Backend, api_key: str, **kwargs) -> BaseBackendAdapter:
    """Factory: get the appropriate adapter for a backend."""
    cls = ADAPTER_REGISTRY.get(backend)
    if cls is None:
        raise ValueError(f"No adapter registered for backend: {backend}")
    return cls(api_key=api_key, **kwargs)
