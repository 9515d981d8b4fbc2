from fastapi import APIRouter, Depends, Query

from ai_gateway.core.dependencies import require_admin
from ai_gateway.gateway.catalog import list_models
from ai_gateway.gateway.types import Backend, ModelStatus

router = APIRouter(prefix="/ai-models", tags=["ai-models"], dependencies=[Depends(require_admin)])


@router.get("")
async def get_ai_models(
    backend: Backend | None = Query(None),
    status: ModelStatus | None = Query(None),
):
    """Model catalog, optionally filtered by backend and status."""
    return [info.to_dict() for info in list_models(backend=backend, status=status)]
