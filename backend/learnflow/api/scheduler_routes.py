"""
API routes for the recovery scheduler.

Provides endpoints to inspect the scheduler and trigger its jobs by hand.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from learnflow.api.dependencies import AppContainer, get_container

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])

JOBS = ("auto_resume", "quota_check", "cleanup")


@router.get("/status")
async def get_scheduler_status(container: AppContainer = Depends(get_container)) -> dict:
    """Get scheduled jobs and the results of their last runs."""
    return container.recovery.get_status()


@router.post("/{job}/trigger")
async def trigger_job(job: str, container: AppContainer = Depends(get_container)) -> dict:
    """
    Run a recovery job immediately.

    Args:
        job: One of auto_resume, quota_check, cleanup

    Returns:
        Job name and its result

    Raises:
        404: Unknown job
    """
    recovery = container.recovery

    if job == "auto_resume":
        result = (await recovery.trigger_auto_resume()).model_dump()
    elif job == "quota_check":
        result = {"paused": await recovery.trigger_quota_check()}
    elif job == "cleanup":
        result = (await recovery.trigger_cleanup()).model_dump()
    else:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job}. Available: {list(JOBS)}")

    return {"job": job, "result": result}
