"""
API routes for quota usage and quota-paused content.

Provides endpoints for:
- Listing the caller's quota-paused content
- Daily request usage against the provider's limit
- Checking whether the caller can still make requests today
"""

import logging

from fastapi import APIRouter, Depends, Header

from learnflow.api.content_routes import build_status_response
from learnflow.api.dependencies import AppContainer, get_container
from learnflow.models.schemas import ContentStatusResponse, QuotaCheckResponse, QuotaUsageResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/quota", tags=["quota"])


@router.get("/paused", response_model=list[ContentStatusResponse])
async def list_paused_content(
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> list[ContentStatusResponse]:
    """
    List the caller's content paused because of quota exhaustion.

    Each item carries its quota message and estimated recovery time.
    """
    records = await container.store.list_for_user(user_id)
    return [build_status_response(r) for r in records if r.is_quota_paused]


@router.get("/usage", response_model=QuotaUsageResponse)
async def get_quota_usage(
    provider: str | None = None,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> QuotaUsageResponse:
    """
    Request usage of the caller for today and the last 24 hours.

    Args:
        provider: Provider whose daily limit applies (default: configured provider)

    Returns:
        QuotaUsageResponse with counts, remaining requests, time to reset,
        recent errors and the number of quota-paused items
    """
    records = await container.store.list_for_user(user_id)
    paused = sum(1 for r in records if r.is_quota_paused)
    return await container.usage.get_usage(
        user_id,
        provider or container.settings.ai_provider,
        paused_content=paused,
    )


@router.get("/check", response_model=QuotaCheckResponse)
async def check_quota(
    provider: str | None = None,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> QuotaCheckResponse:
    """
    Check whether the caller is still under today's request limit.

    Args:
        provider: Provider to check (default: configured provider)
    """
    check = await container.usage.can_make_request(user_id, provider or container.settings.ai_provider)
    if not check.can_proceed:
        logger.info(f"User {user_id} reached the daily request limit: {check.reason}")
    return check
