"""
Per-content stage state machine.

Drives a content item through its five stages in fixed order:
transcription -> vectorization -> summarization -> flashcard_generation
-> quiz_generation.

Stage transitions:
    pending    -> processing
    processing -> completed | failed | paused
    paused     -> processing
    failed     -> processing

A quota error pauses the stage and the content with a recovery
estimate; any other error fails the stage. Completed stages are never
re-run, so resuming continues exactly where processing stopped.

Every write goes through ContentStore.save(), whose version check makes
the first write of a run act as a claim: two concurrent resumes of one
item cannot both start it.

Example:
    pipeline = ContentPipeline(store, registry)
    record = await pipeline.create_content("user-1", "Lecture 1", text)
    record = await pipeline.advance(record.content_id)
    if record.status == ContentStatus.PAUSED:
        ...  # the recovery scheduler resumes it once quota returns
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Iterable

from learnflow.exceptions import ContentNotFoundError, InvalidTransitionError
from learnflow.models.schemas import (
    STAGE_ORDER,
    ContentMetadata,
    ContentRecord,
    ContentStatus,
    PausedReason,
    StageName,
    StageState,
    StageStatus,
    utcnow,
)
from learnflow.services.content_store import ContentStore
from learnflow.services.quota_classifier import (
    DEFAULT_RESET_TIMEZONE,
    ErrorClass,
    classify_error,
    format_quota_message,
    parse_quota_info,
)
from learnflow.services.stages.base import StageContext, StageRegistry

logger = logging.getLogger(__name__)

# Signature: (content_id, stage, progress_percent, message) -> None
ProgressCallback = Callable[[str, StageName, float, str], Awaitable[None]]

ALLOWED_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.PENDING: {StageStatus.PROCESSING},
    StageStatus.PROCESSING: {StageStatus.COMPLETED, StageStatus.FAILED, StageStatus.PAUSED},
    StageStatus.PAUSED: {StageStatus.PROCESSING},
    StageStatus.FAILED: {StageStatus.PROCESSING},
    StageStatus.COMPLETED: set(),
}


def ensure_transition(stage: StageName, current: StageStatus, target: StageStatus) -> None:
    """
    Check a stage transition against the state machine.

    Raises:
        InvalidTransitionError: If current -> target is not allowed
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(stage, current, target)


def derive_content_status(stages: Iterable[StageState]) -> ContentStatus:
    """
    Overall status from stage statuses.

    Precedence: any paused -> paused; any failed -> failed; all completed
    -> completed; all pending -> pending; otherwise processing.
    """
    statuses = [s.status for s in stages]

    if StageStatus.PAUSED in statuses:
        return ContentStatus.PAUSED
    if StageStatus.FAILED in statuses:
        return ContentStatus.FAILED
    if all(s == StageStatus.COMPLETED for s in statuses):
        return ContentStatus.COMPLETED
    if all(s == StageStatus.PENDING for s in statuses):
        return ContentStatus.PENDING
    return ContentStatus.PROCESSING


def next_stage(record: ContentRecord) -> StageName | None:
    """First stage (in pipeline order) that is not completed."""
    for name in STAGE_ORDER:
        if record.stage(name).status != StageStatus.COMPLETED:
            return name
    return None


class ContentPipeline:
    """
    Runs content items through their stages and persists every transition.

    Attributes:
        store: Content persistence
        registry: Stage processors by stage name
        clock: Current UTC time (injectable for tests)
        reset_timezone: Timezone of the provider's daily quota reset
        progress_callback: Optional async callback for progress events
    """

    def __init__(
        self,
        store: ContentStore,
        registry: StageRegistry,
        clock: Callable[[], datetime] = utcnow,
        reset_timezone: str = DEFAULT_RESET_TIMEZONE,
        progress_callback: ProgressCallback | None = None,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.reset_timezone = reset_timezone
        self.progress_callback = progress_callback

    async def create_content(self, user_id: str, title: str, source_text: str) -> ContentRecord:
        """Register uploaded content with all five stages pending."""
        now = self.clock()
        record = ContentRecord(
            content_id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            source_text=source_text,
            created_at=now,
            updated_at=now,
        )
        record = await self.store.create(record)
        logger.info(f"Created content {record.content_id} for user {user_id}: {title}")
        return record

    async def get(self, content_id: str) -> ContentRecord:
        """
        Load a non-deleted content record.

        Raises:
            ContentNotFoundError: If missing or soft-deleted
        """
        record = await self.store.get(content_id)
        if record.is_deleted:
            raise ContentNotFoundError(content_id)
        return record

    async def advance(self, content_id: str) -> ContentRecord:
        """
        Run stages from the first non-completed one until the content
        completes, pauses or fails.

        Returns:
            Final record

        Raises:
            ContentNotFoundError: If the content does not exist
            InvalidTransitionError: If the next stage is already processing
            ConcurrentUpdateError: If another run claimed the item first
        """
        record = await self.get(content_id)
        return await self._run(record)

    def resume_point(self, record: ContentRecord, from_stage: StageName | None = None) -> StageName | None:
        """
        Stage a resume would re-enter at, or None if the content is completed.

        Raises:
            InvalidTransitionError: If from_stage has an unfinished earlier
                stage, or the resume point is already processing
        """
        start = next_stage(record)
        if start is None:
            return None

        if from_stage is not None:
            index = STAGE_ORDER.index(from_stage)
            unfinished = [
                s for s in STAGE_ORDER[:index] if record.stage(s).status != StageStatus.COMPLETED
            ]
            if unfinished:
                raise InvalidTransitionError(
                    from_stage,
                    record.stage(from_stage).status,
                    StageStatus.PROCESSING,
                    reason=f"earlier stage '{unfinished[0].value}' is not completed",
                )

        ensure_transition(start, record.stage(start).status, StageStatus.PROCESSING)
        return start

    async def resume(self, content_id: str, from_stage: StageName | None = None) -> ContentRecord:
        """
        Continue paused or failed processing.

        Re-enters at the first paused/failed stage (or `from_stage`, whose
        earlier stages must all be completed). Completed stages are never
        re-run; resuming completed content is a no-op.

        Raises:
            ContentNotFoundError: If the content does not exist
            InvalidTransitionError: If from_stage has an unfinished earlier
                stage, or the resume point is already processing
            ConcurrentUpdateError: If another run claimed the item first
        """
        record = await self.get(content_id)

        start = self.resume_point(record, from_stage)
        if start is None:
            logger.info(f"Content {content_id} already completed, nothing to resume")
            return record

        logger.info(
            f"Resuming content {content_id} at {start.value} "
            f"(was {record.stage(start).status.value})"
        )

        return await self._run(record)

    async def _run(self, record: ContentRecord) -> ContentRecord:
        while True:
            name = next_stage(record)
            if name is None:
                record.status = ContentStatus.COMPLETED
                record.metadata.error = None
                record = await self.store.save(record)
                logger.info(f"Content {record.content_id} completed all stages")
                return record

            previous_state = record.stage(name).model_copy(deep=True)
            previous_metadata = record.metadata.model_copy(deep=True)

            record = await self._start_stage(record, name)
            processor = self.registry.get(name)
            context = StageContext.from_record(record, self._stage_progress(record.content_id))

            try:
                result = await processor.execute(context)
            except asyncio.CancelledError:
                if previous_state.status in (StageStatus.PAUSED, StageStatus.FAILED):
                    await self._restore_stage(record, name, previous_state, previous_metadata)
                else:
                    await self._finish_failed(record, name, "Processing cancelled", ErrorClass.FATAL)
                raise
            except Exception as e:
                error_class = classify_error(e)
                if error_class == ErrorClass.QUOTA_EXCEEDED:
                    return await self._finish_paused(record, name, e)
                return await self._finish_failed(record, name, str(e), error_class)

            record = await self._finish_completed(record, name, result)

    async def _start_stage(self, record: ContentRecord, name: StageName) -> ContentRecord:
        state = record.stage(name)
        ensure_transition(name, state.status, StageStatus.PROCESSING)

        now = self.clock()
        if state.status == StageStatus.FAILED:
            state.last_retry_at = now
        state.status = StageStatus.PROCESSING
        state.progress = 0
        state.started_at = now
        state.completed_at = None
        state.error = None
        state.error_kind = None
        state.paused_reason = None
        state.quota_info = None
        record.metadata.paused_reason = None
        record.metadata.paused_at = None
        record.metadata.quota_info = None
        record.metadata.error = None
        record.status = derive_content_status(record.stages.values())

        record = await self.store.save(record)
        logger.info(f"[{name.value}] Started for content {record.content_id}")
        await self._emit(record.content_id, name, 0, f"Starting {name.value}")
        return record

    async def _finish_completed(self, record: ContentRecord, name: StageName, result: dict) -> ContentRecord:
        state = record.stage(name)
        ensure_transition(name, state.status, StageStatus.COMPLETED)

        state.status = StageStatus.COMPLETED
        state.progress = 100
        state.completed_at = self.clock()
        record.outputs[name.value] = result
        record.status = derive_content_status(record.stages.values())

        record = await self.store.save(record)
        logger.info(f"[{name.value}] Completed for content {record.content_id}")
        await self._emit(record.content_id, name, 100, f"{name.value} completed")
        return record

    async def _finish_paused(self, record: ContentRecord, name: StageName, error: Exception) -> ContentRecord:
        state = record.stage(name)
        ensure_transition(name, state.status, StageStatus.PAUSED)

        now = self.clock()
        info = parse_quota_info(error, now=now, reset_timezone=self.reset_timezone)

        state.status = StageStatus.PAUSED
        state.paused_reason = PausedReason.QUOTA_EXCEEDED
        state.quota_info = info
        state.error = str(error)
        state.error_kind = ErrorClass.QUOTA_EXCEEDED.value

        record.metadata.paused_reason = PausedReason.QUOTA_EXCEEDED
        record.metadata.paused_at = now
        record.metadata.quota_info = info
        record.metadata.error = format_quota_message(info)
        record.status = derive_content_status(record.stages.values())

        record = await self.store.save(record)
        logger.warning(
            f"[{name.value}] Paused content {record.content_id} on quota, "
            f"estimated recovery {info.estimated_recovery_time.isoformat()}"
        )
        await self._emit(record.content_id, name, state.progress, "Paused: API quota exceeded")
        return record

    async def _finish_failed(
        self,
        record: ContentRecord,
        name: StageName,
        message: str,
        error_class: ErrorClass,
    ) -> ContentRecord:
        state = record.stage(name)
        ensure_transition(name, state.status, StageStatus.FAILED)

        state.status = StageStatus.FAILED
        state.error = message
        state.error_kind = error_class.value
        state.retry_count += 1

        record.metadata.error = f"{name.value}: {message}"
        record.status = derive_content_status(record.stages.values())

        record = await self.store.save(record)
        logger.error(f"[{name.value}] Failed for content {record.content_id}: {message}")
        await self._emit(record.content_id, name, state.progress, "Processing failed")
        return record

    async def _restore_stage(
        self,
        record: ContentRecord,
        name: StageName,
        previous_state: StageState,
        previous_metadata: ContentMetadata,
    ) -> ContentRecord:
        """
        Put a cancelled resume back to the state it started from.

        A quota-paused stage stays paused with its recovery estimate, so
        the auto-resume job picks it up again after a restart.
        """
        record.stages[name] = previous_state
        record.metadata = previous_metadata
        record.status = derive_content_status(record.stages.values())

        record = await self.store.save(record)
        logger.warning(
            f"[{name.value}] Cancelled for content {record.content_id}, "
            f"restored to {previous_state.status.value}"
        )
        return record

    def _stage_progress(self, content_id: str):
        async def report(stage: StageName, progress: float, message: str) -> None:
            await self._emit(content_id, stage, progress, message)

        return report

    async def _emit(self, content_id: str, stage: StageName, progress: float, message: str) -> None:
        if self.progress_callback is None:
            return
        try:
            await self.progress_callback(content_id, stage, progress, message)
        except Exception as e:
            logger.warning(f"Progress callback failed for {content_id}: {e}")
