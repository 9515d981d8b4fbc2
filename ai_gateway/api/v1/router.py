from fastapi import APIRouter

from ai_gateway.api.v1.ai_models import router as ai_models_router
from ai_gateway.api.v1.ai_settings import router as ai_settings_router
from ai_gateway.api.v1.ai_usage import router as ai_usage_router
from ai_gateway.api.v1.generate import router as generate_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(ai_settings_router)
api_v1_router.include_router(ai_models_router)
api_v1_router.include_router(ai_usage_router)
api_v1_router.include_router(generate_router)
