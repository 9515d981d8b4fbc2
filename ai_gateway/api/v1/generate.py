"""Generation API: one text generation through the gateway for an internal caller.

Callers authenticate with the admin token and pass the end user's id and plan
tier. Quota denials surface as 429 and double backend failures as 502 through
the application's exception handlers.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ai_gateway.core.config import settings
from ai_gateway.core.dependencies import require_admin
from ai_gateway.gateway.gateway import GenerationGateway, get_gateway
from ai_gateway.gateway.types import FeatureType, GenerationContext, GenerationRequest, OutputFormat, Phase, PlanTier

router = APIRouter(prefix="/generate", tags=["generate"], dependencies=[Depends(require_admin)])


# --- Schemas ---


class GenerateBody(BaseModel):
    user_id: str = Field(min_length=1)
    service: str | None = None
    plan_tier: PlanTier
    phase: Phase
    prompt: str = Field(min_length=1)
    system: str = ""
    temperature: float | None = Field(None, ge=0, le=2)
    max_tokens: int | None = Field(None, gt=0)
    response_format: OutputFormat | None = None
    feature_type: FeatureType | None = None
    action_type: str = "generate"
    metadata: dict[str, Any] = Field(default_factory=dict)


# --- Endpoints ---


@router.post("")
async def generate_text(body: GenerateBody, gateway: GenerationGateway = Depends(get_gateway)):
    context = GenerationContext(
        user_id=body.user_id,
        service=body.service or settings.default_service,
        plan_tier=body.plan_tier,
        phase=body.phase,
        action_type=body.action_type,
        feature_type=body.feature_type,
        metadata=body.metadata,
    )
    request = GenerationRequest.from_prompts(
        body.prompt,
        system=body.system,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        response_format=body.response_format,
    )
    response = await gateway.generate(context, request)
    return response.to_dict()
