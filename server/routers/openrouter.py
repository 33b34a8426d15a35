"""Paid OpenRouter models offered for the CHEAP and PREMIUM bots."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api_client.llm.model_catalog import ModelCatalog
from server.dependencies import get_model_catalog
from server.schemas import ModelOut, ModelsResponse

router = APIRouter(prefix="/api/openrouter", tags=["openrouter"])


@router.get("/models", response_model=ModelsResponse)
async def list_models(
    catalog: ModelCatalog = Depends(get_model_catalog),
) -> ModelsResponse:
    """Cheapest first; a built-in list when OpenRouter cannot be reached."""
    return ModelsResponse(models=[ModelOut.from_domain(m) for m in await catalog.paid_models()])
