"""
Pydantic models for the learning-content pipeline.

Exports the processing state (ContentRecord, StageState, QuotaInfo)
and model selection types (ModelDescriptor, TaskProfile).
"""

from learnflow.models.schemas import (
    STAGE_ORDER,
    AITaskType,
    ContentMetadata,
    ContentRecord,
    ContentStatus,
    ModelDescriptor,
    PausedReason,
    QuotaInfo,
    StageName,
    StageState,
    StageStatus,
    TaskProfile,
)

__all__ = [
    # Model selection
    "AITaskType",
    "ModelDescriptor",
    "TaskProfile",
    # Processing state
    "STAGE_ORDER",
    "ContentMetadata",
    "ContentRecord",
    "ContentStatus",
    "PausedReason",
    "QuotaInfo",
    "StageName",
    "StageState",
    "StageStatus",
]
