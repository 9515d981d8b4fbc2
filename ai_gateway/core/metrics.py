"""Prometheus metrics for the generation gateway and its admin API."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("ai_gateway", "AI generation gateway info")
APP_INFO.info({"version": "1.0.0", "name": "ai_gateway"})

GENERATION_ATTEMPTS = Counter(
    "ai_generation_attempts_total",
    "Backend calls made by the gateway",
    ["backend", "outcome"],
)

GENERATION_FALLBACKS = Counter(
    "ai_generation_fallbacks_total",
    "Generations served by the backup model",
    ["service"],
)

GENERATION_FAILURES = Counter(
    "ai_generation_failures_total",
    "Generations where both primary and backup failed",
    ["service"],
)

QUOTA_DENIALS = Counter(
    "ai_quota_denials_total",
    "Generations rejected by the quota enforcer",
    ["scope"],
)

LEDGER_WRITE_FAILURES = Counter(
    "ai_ledger_write_failures_total",
    "Usage log rows that could not be written",
)

GENERATION_DURATION = Histogram(
    "ai_generation_duration_seconds",
    "End-to-end generation duration in seconds (primary + backup)",
    ["service", "phase"],
    buckets=[0.5, 1, 2.5, 5, 10, 20, 30, 60, 120],
)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)


# --- Middleware ---

# User ids in usage paths would explode label cardinality
_USER_PATH_PREFIX = "/api/v1/ai-usage/"


def _normalize_path(path: str) -> str:
    """Replace the user id segment of per-user usage paths with {user_id}."""
    if path.startswith(_USER_PATH_PREFIX):
        parts = path[len(_USER_PATH_PREFIX) :].split("/", 1)
        if len(parts) == 2:
            return f"{_USER_PATH_PREFIX}{{user_id}}/{parts[1]}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
