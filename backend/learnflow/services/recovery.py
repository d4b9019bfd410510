"""
Background recovery jobs for quota-paused and deleted content.

Jobs:
- auto_resume (hourly): resume quota-paused content whose estimated
  recovery time has passed
- quota_check (every 15 minutes): count quota-paused content
- cleanup (daily): hard-delete content soft-deleted longer than the
  retention period

Each item in a batch is isolated: one item failing never stops the
rest, and no job raises to its caller.

Example:
    recovery = RecoveryScheduler.from_settings(settings, store, pipeline, AsyncioScheduler())
    recovery.start()
    ...
    await recovery.stop()
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from learnflow.config import Settings
from learnflow.models.schemas import (
    AutoResumeReport,
    CleanupReport,
    ContentRecord,
    ContentStatus,
    StageStatus,
    utcnow,
)
from learnflow.services.content_store import ContentStore
from learnflow.services.notifier import LogNotifier, Notifier, format_paused_duration
from learnflow.services.pipeline import ContentPipeline
from learnflow.services.quota_classifier import ErrorClass, classify_error
from learnflow.services.scheduler import JobHandle, Scheduler
from learnflow.services.stages.vectorization_stage import VectorIndex

logger = logging.getLogger(__name__)

AUTO_RESUME_JOB = "auto_resume"
QUOTA_CHECK_JOB = "quota_check"
CLEANUP_JOB = "cleanup"


class RecoveryScheduler:
    """
    Owns the periodic recovery jobs and their manual triggers.

    Attributes:
        store: Content persistence
        pipeline: Pipeline used to resume content
        scheduler: Interval scheduler
        notifier: Owner notifications
        vector_index: Optional index purged on hard delete
        clock: Current UTC time (injectable for tests)
    """

    def __init__(
        self,
        store: ContentStore,
        pipeline: ContentPipeline,
        scheduler: Scheduler,
        notifier: Notifier | None = None,
        vector_index: VectorIndex | None = None,
        clock: Callable[[], datetime] = utcnow,
        auto_resume_interval: float = 3600.0,
        quota_check_interval: float = 900.0,
        cleanup_interval: float = 86400.0,
        batch_size: int = 50,
        recovery_extension: float = 3600.0,
        retention_days: int = 30,
    ):
        self.store = store
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.notifier = notifier or LogNotifier()
        self.vector_index = vector_index
        self.clock = clock
        self.intervals = {
            AUTO_RESUME_JOB: auto_resume_interval,
            QUOTA_CHECK_JOB: quota_check_interval,
            CLEANUP_JOB: cleanup_interval,
        }
        self.batch_size = batch_size
        self.recovery_extension = timedelta(seconds=recovery_extension)
        self.retention = timedelta(days=retention_days)

        self._handles: list[JobHandle] = []
        self.last_results: dict[str, dict] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ContentStore,
        pipeline: ContentPipeline,
        scheduler: Scheduler,
        **kwargs,
    ) -> "RecoveryScheduler":
        return cls(
            store,
            pipeline,
            scheduler,
            auto_resume_interval=settings.auto_resume_interval,
            quota_check_interval=settings.quota_check_interval,
            cleanup_interval=settings.cleanup_interval,
            batch_size=settings.scheduler_batch_size,
            recovery_extension=settings.recovery_extension,
            retention_days=settings.content_retention_days,
            **kwargs,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════════

    @property
    def running(self) -> bool:
        return bool(self._handles)

    def start(self) -> None:
        """Schedule all jobs. Calling start() twice is a no-op."""
        if self._handles:
            logger.warning("Recovery scheduler already running")
            return

        logger.info("Starting recovery scheduler...")
        jobs = {
            AUTO_RESUME_JOB: self.auto_resume_paused_content,
            QUOTA_CHECK_JOB: self.check_quota_paused_content,
            CLEANUP_JOB: self.cleanup_expired_content,
        }
        for name, callback in jobs.items():
            self._handles.append(self.scheduler.schedule_every(self.intervals[name], callback, name))
        logger.info(f"Started {len(self._handles)} scheduled jobs")

    async def stop(self) -> None:
        """Cancel all jobs and wait for them to unwind."""
        if not self._handles:
            return

        logger.info("Stopping recovery scheduler...")
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()
        for handle in handles:
            await handle.wait()

    def get_status(self) -> dict:
        """Scheduler state for the status API."""
        return {
            "running": self.running,
            "jobs": [
                {"name": h.name, "interval": h.interval, "runs": h.runs, "active": h.active}
                for h in self._handles
            ],
            "last_results": self.last_results,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # Jobs
    # ═══════════════════════════════════════════════════════════════════════════

    async def auto_resume_paused_content(self) -> AutoResumeReport:
        """
        Resume quota-paused content whose recovery time has passed.

        Items without a recovery estimate are resumed as well. An item
        that pauses on quota again gets its estimate pushed to at least
        now + recovery_extension.
        """
        report = AutoResumeReport()
        logger.info("Running auto-resume job for paused content...")

        try:
            paused = await self.store.find_paused_for_quota(self.batch_size)
        except Exception as e:
            logger.error(f"Error in auto-resume job: {e}", exc_info=True)
            return report

        report.found = len(paused)
        if not paused:
            logger.info("No paused content found for auto-resume")
            self._remember(AUTO_RESUME_JOB, report)
            return report

        logger.info(f"Found {len(paused)} paused content(s) to check")

        for record in paused:
            try:
                await self._resume_one(record, report)
            except Exception as e:
                if classify_error(e) == ErrorClass.QUOTA_EXCEEDED:
                    if await self._extend_recovery(record.content_id):
                        report.extended += 1
                        continue
                report.failed += 1
                logger.error(f"Failed to auto-resume content {record.content_id}: {e}")

        logger.info(
            f"Auto-resume job completed: {report.resumed} resumed, {report.skipped} skipped, "
            f"{report.extended} extended, {report.failed} failed"
        )
        self._remember(AUTO_RESUME_JOB, report)
        return report

    async def _resume_one(self, record: ContentRecord, report: AutoResumeReport) -> None:
        now = self.clock()
        info = record.metadata.quota_info
        recovery_time = info.estimated_recovery_time if info else None

        if recovery_time is not None and now < recovery_time:
            minutes = int((recovery_time - now).total_seconds() // 60) + 1
            logger.debug(
                f"Content {record.content_id} still waiting for quota recovery ({minutes} minutes)"
            )
            report.skipped += 1
            return

        if recovery_time is None:
            logger.info(f"Auto-resuming content {record.content_id} (no recovery time set)")
        else:
            logger.info(f"Auto-resuming content {record.content_id} (quota should be restored)")

        result = await self.pipeline.resume(record.content_id)

        if result.status == ContentStatus.PAUSED:
            if await self._extend_recovery(record.content_id):
                report.extended += 1
            else:
                report.failed += 1
            return

        if result.status == ContentStatus.FAILED:
            logger.warning(f"Content {record.content_id} failed after auto-resume: {result.metadata.error}")
            report.failed += 1
            return

        report.resumed += 1
        await self._notify_resumed(result, record.metadata.paused_at)

    async def _extend_recovery(self, content_id: str) -> bool:
        """Push the recovery estimate to at least now + recovery_extension."""
        try:
            record = await self.store.get(content_id)
            now = self.clock()
            floor = now + self.recovery_extension

            info = record.metadata.quota_info
            if info is None:
                logger.warning(f"Content {content_id} has no quota info to extend")
                return False

            current = info.estimated_recovery_time
            info.estimated_recovery_time = max(current, floor) if current else floor

            for state in record.stages.values():
                if state.status == StageStatus.PAUSED and state.quota_info is not None:
                    state.quota_info.estimated_recovery_time = info.estimated_recovery_time

            await self.store.save(record)
        except Exception as e:
            logger.error(f"Could not extend recovery time for content {content_id}: {e}")
            return False

        logger.info(
            f"Extended recovery time for content {content_id} "
            f"to {info.estimated_recovery_time.isoformat()}"
        )
        return True

    async def _notify_resumed(self, record: ContentRecord, paused_at: datetime | None) -> None:
        try:
            await self.notifier.notify_resumed(record, format_paused_duration(paused_at, self.clock()))
        except Exception as e:
            logger.error(f"Error sending resume notification for content {record.content_id}: {e}")

    async def check_quota_paused_content(self) -> int:
        """Count quota-paused content. Read-only."""
        try:
            count = await self.store.count_paused_for_quota()
        except Exception as e:
            logger.error(f"Error checking quota-paused content: {e}", exc_info=True)
            return 0

        if count > 0:
            logger.info(f"Currently {count} content(s) paused due to quota limits")
        self.last_results[QUOTA_CHECK_JOB] = {"paused": count, "at": self.clock().isoformat()}
        return count

    async def cleanup_expired_content(self) -> CleanupReport:
        """Hard-delete content soft-deleted before the retention cutoff."""
        report = CleanupReport()
        cutoff = self.clock() - self.retention
        logger.info(f"Running cleanup job for content deleted before {cutoff.isoformat()}")

        try:
            expired = await self.store.find_expired_deleted(cutoff, self.batch_size)
        except Exception as e:
            logger.error(f"Error in cleanup job: {e}", exc_info=True)
            return report

        report.found = len(expired)
        for record in expired:
            try:
                if self.vector_index is not None:
                    await self.vector_index.delete_content(record.content_id)
                await self.store.delete(record.content_id)
                report.deleted += 1
            except Exception as e:
                report.failed += 1
                logger.error(f"Failed to delete expired content {record.content_id}: {e}")

        logger.info(f"Cleanup job completed: {report.deleted} deleted, {report.failed} failed")
        self._remember(CLEANUP_JOB, report)
        return report

    # ═══════════════════════════════════════════════════════════════════════════
    # Manual triggers
    # ═══════════════════════════════════════════════════════════════════════════

    async def trigger_auto_resume(self) -> AutoResumeReport:
        logger.info("Manually triggering auto-resume job")
        return await self.auto_resume_paused_content()

    async def trigger_quota_check(self) -> int:
        logger.info("Manually triggering quota check job")
        return await self.check_quota_paused_content()

    async def trigger_cleanup(self) -> CleanupReport:
        logger.info("Manually triggering cleanup job")
        return await self.cleanup_expired_content()

    def _remember(self, job: str, report) -> None:
        self.last_results[job] = {**report.model_dump(), "at": self.clock().isoformat()}
