"""
API routes for content processing.

Provides endpoints for:
- Registering uploaded content (optionally starting processing)
- Querying per-stage processing status
- Starting, resuming and deleting content

The X-User-Id header identifies the caller; only the owner may act on
a content item.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from learnflow.api.dependencies import AppContainer, get_container
from learnflow.exceptions import (
    ConcurrentUpdateError,
    ContentNotFoundError,
    InvalidTransitionError,
)
from learnflow.models.schemas import (
    STAGE_ORDER,
    ContentRecord,
    ContentStatus,
    ContentStatusResponse,
    CreateContentRequest,
    ResumeRequest,
    StageName,
    StageStatusView,
)
from learnflow.services.pipeline import ContentPipeline
from learnflow.services.quota_classifier import format_quota_message

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/content", tags=["content"])


def build_status_response(record: ContentRecord) -> ContentStatusResponse:
    """
    Build the status API view of a content record.

    Args:
        record: Content record

    Returns:
        ContentStatusResponse with stages in pipeline order
    """
    stages = []
    for name in STAGE_ORDER:
        state = record.stage(name)
        stages.append(
            StageStatusView(
                name=name,
                status=state.status,
                progress=state.progress,
                error=state.error,
                error_kind=state.error_kind,
                retry_count=state.retry_count,
                paused_reason=state.paused_reason,
                estimated_recovery_time=(
                    state.quota_info.estimated_recovery_time if state.quota_info else None
                ),
            )
        )

    info = record.metadata.quota_info
    return ContentStatusResponse(
        content_id=record.content_id,
        status=record.status,
        stages=stages,
        error=record.metadata.error,
        paused_reason=record.metadata.paused_reason,
        quota_message=format_quota_message(info) if info else None,
        estimated_recovery_time=info.estimated_recovery_time if info else None,
    )


async def run_processing(
    pipeline: ContentPipeline,
    content_id: str,
    resume: bool = False,
    from_stage: StageName | None = None,
) -> None:
    """
    Background task to run or resume pipeline processing.

    Args:
        pipeline: Content pipeline
        content_id: Content to process
        resume: Resume paused/failed processing instead of advancing
        from_stage: Resume point (resume only)
    """
    try:
        if resume:
            record = await pipeline.resume(content_id, from_stage)
        else:
            record = await pipeline.advance(content_id)
        logger.info(f"Processing of {content_id} finished with status {record.status.value}")

    except ConcurrentUpdateError as e:
        logger.warning(f"Processing of {content_id} skipped: {e}")
    except Exception:
        logger.exception(f"Pipeline error for content {content_id}")


async def _owned_record(container: AppContainer, content_id: str, user_id: str) -> ContentRecord:
    try:
        record = await container.pipeline.get(content_id)
    except ContentNotFoundError:
        raise HTTPException(status_code=404, detail=f"Content not found: {content_id}")

    if record.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not the owner of this content")

    return record


@router.post("", response_model=ContentStatusResponse, status_code=201)
async def create_content(
    request: CreateContentRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> ContentStatusResponse:
    """
    Register uploaded content with all five stages pending.

    Processing starts in the background unless start_processing is false.

    Returns:
        ContentStatusResponse of the new content
    """
    record = await container.pipeline.create_content(user_id, request.title, request.source_text)

    if request.start_processing:
        background_tasks.add_task(run_processing, container.pipeline, record.content_id)

    return build_status_response(record)


@router.get("/{content_id}/status", response_model=ContentStatusResponse)
async def get_content_status(
    content_id: str,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> ContentStatusResponse:
    """
    Get processing status of a content item.

    Raises:
        403: Caller is not the owner
        404: Content not found
    """
    record = await _owned_record(container, content_id, user_id)
    return build_status_response(record)


@router.post("/{content_id}/process", response_model=ContentStatusResponse, status_code=202)
async def process_content(
    content_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> ContentStatusResponse:
    """
    Start processing from the first stage that is not completed.

    Raises:
        403: Caller is not the owner
        404: Content not found
        409: Content is already processing, paused or failed (use resume)
    """
    record = await _owned_record(container, content_id, user_id)

    if record.status != ContentStatus.PENDING:
        raise HTTPException(
            status_code=409,
            detail=f"Content is {record.status.value}; only pending content can be processed",
        )

    background_tasks.add_task(run_processing, container.pipeline, content_id)
    logger.info(f"Started processing content {content_id}")
    return build_status_response(record)


@router.post("/{content_id}/resume", response_model=ContentStatusResponse, status_code=202)
async def resume_content(
    content_id: str,
    background_tasks: BackgroundTasks,
    request: ResumeRequest | None = None,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> ContentStatusResponse:
    """
    Resume paused or failed processing.

    Completed stages are never re-run. Resuming completed content is a
    no-op.

    Raises:
        403: Caller is not the owner
        404: Content not found
        409: from_stage has an unfinished earlier stage, or the content is
            already processing
    """
    record = await _owned_record(container, content_id, user_id)
    from_stage = request.from_stage if request else None

    try:
        start = container.pipeline.resume_point(record, from_stage)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if start is not None:
        background_tasks.add_task(
            run_processing, container.pipeline, content_id, resume=True, from_stage=from_stage
        )
        logger.info(f"Resume requested for content {content_id} at {start.value}")

    return build_status_response(record)


@router.delete("/{content_id}", status_code=204)
async def delete_content(
    content_id: str,
    user_id: str = Header(..., alias="X-User-Id"),
    container: AppContainer = Depends(get_container),
) -> None:
    """
    Soft-delete a content item. The cleanup job removes it after the
    retention period.

    Raises:
        403: Caller is not the owner
        404: Content not found
        409: Content was modified concurrently
    """
    await _owned_record(container, content_id, user_id)

    try:
        await container.store.soft_delete(content_id)
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info(f"Soft-deleted content {content_id}")
