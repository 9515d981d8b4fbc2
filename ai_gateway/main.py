import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ai_gateway.api.v1.router import api_v1_router
from ai_gateway.core.config import settings, validate_settings_for_production
from ai_gateway.core.exceptions import GenerationFailed, QuotaExceededError
from ai_gateway.core.logging import setup_logging
from ai_gateway.core.metrics import PrometheusMiddleware, metrics_response
from ai_gateway.core.sentry import init_sentry
from ai_gateway.db.session import engine, init_models
from ai_gateway.gateway.catalog import list_models

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting AI Generation Gateway...")
    await init_models()

    yield

    # Shutdown
    await engine.dispose()
    logger.info("AI Generation Gateway shut down")


app = FastAPI(
    title="AI Generation Gateway",
    description="Vendor-neutral text generation with quota, fallback and usage ledger",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(QuotaExceededError)
async def _quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    content = {"detail": exc.user_message, "scope": exc.scope, "used": exc.used, "limit": exc.limit}
    if exc.feature_type:
        content["feature_type"] = exc.feature_type
    return JSONResponse(status_code=429, content=content)


@app.exception_handler(GenerationFailed)
async def _generation_failed_handler(request: Request, exc: GenerationFailed):
    # Vendor details stay in the logs
    return JSONResponse(status_code=502, content={"detail": exc.user_message})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


app.add_middleware(PrometheusMiddleware)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health():
    return {
        "status": "ok",
        "backends": {
            "openai": bool(settings.openai_api_key),
            "gemini": bool(settings.gemini_api_key),
            "anthropic": bool(settings.anthropic_api_key),
        },
        "models": len(list_models()),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
