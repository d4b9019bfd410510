"""
API routes for model discovery and usage.

Provides endpoints to get models currently usable from the provider and
per-model execution statistics.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from learnflow.api.dependencies import AppContainer, get_container
from learnflow.exceptions import NoModelsAvailableError
from learnflow.models.schemas import AvailableModelsResponse, ModelUsageView

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("/available")
async def get_available_models(
    refresh: bool = Query(False, description="Bypass the model cache"),
    container: AppContainer = Depends(get_container),
) -> AvailableModelsResponse:
    """
    Get models that support text generation.

    Served from the catalog cache unless refresh is set.

    Raises:
        503: No model could be discovered and nothing is cached
    """
    try:
        models = await container.catalog.list_available(force_refresh=refresh)
    except NoModelsAvailableError as e:
        logger.warning(f"Model discovery failed: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return AvailableModelsResponse(provider=container.client.provider, models=models)


@router.get("/stats")
async def get_model_stats(
    container: AppContainer = Depends(get_container),
) -> list[ModelUsageView]:
    """
    Get per-model usage statistics since startup.

    Returns:
        List of ModelUsageView, one per model used
    """
    return container.executor.usage_snapshot()
