"""
Persistence for content processing state.

ContentStore is the seam to a real database. The in-memory store keeps
deep copies so callers can never mutate stored state without save(),
and save() enforces optimistic concurrency through ContentRecord.version.

Example:
    store = InMemoryContentStore()
    await store.create(record)

    record = await store.get(content_id)
    record.title = "Renamed"
    await store.save(record)  # raises ConcurrentUpdateError if modified meanwhile
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from learnflow.exceptions import ConcurrentUpdateError, ContentNotFoundError
from learnflow.models.schemas import ContentRecord, utcnow

logger = logging.getLogger(__name__)


class ContentStore(ABC):
    """Storage interface used by the pipeline, recovery jobs and API."""

    @abstractmethod
    async def create(self, record: ContentRecord) -> ContentRecord:
        """Insert a new record. Raises ValueError if the id is taken."""

    @abstractmethod
    async def get(self, content_id: str) -> ContentRecord:
        """Load a record. Raises ContentNotFoundError."""

    @abstractmethod
    async def save(self, record: ContentRecord) -> ContentRecord:
        """
        Persist a record read earlier.

        Succeeds only if the stored version still equals record.version;
        the stored (and returned) record carries version + 1.

        Raises:
            ConcurrentUpdateError: Record was saved by someone else meanwhile
            ContentNotFoundError: Record no longer exists
        """

    @abstractmethod
    async def delete(self, content_id: str) -> None:
        """Hard-delete a record. Raises ContentNotFoundError."""

    @abstractmethod
    async def find_paused_for_quota(self, limit: int) -> list[ContentRecord]:
        """Non-deleted records paused for quota, oldest pause first."""

    @abstractmethod
    async def count_paused_for_quota(self) -> int:
        """Number of non-deleted records paused for quota."""

    @abstractmethod
    async def find_expired_deleted(self, before: datetime, limit: int) -> list[ContentRecord]:
        """Soft-deleted records whose deleted_at is older than `before`."""

    @abstractmethod
    async def list_for_user(self, user_id: str, include_deleted: bool = False) -> list[ContentRecord]:
        """Records owned by a user, newest first."""

    async def soft_delete(self, content_id: str, now: datetime | None = None) -> ContentRecord:
        """Mark a record deleted; it is hard-deleted later by cleanup."""
        record = await self.get(content_id)
        record.is_deleted = True
        record.deleted_at = now or utcnow()
        return await self.save(record)


class InMemoryContentStore(ContentStore):
    """
    Process-local store backed by a dict.

    Suitable for a single-process deployment and tests.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._records: dict[str, ContentRecord] = {}
        self.clock = clock

    async def create(self, record: ContentRecord) -> ContentRecord:
        if record.content_id in self._records:
            raise ValueError(f"Content already exists: {record.content_id}")

        self._records[record.content_id] = record.model_copy(deep=True)
        logger.debug(f"Created content {record.content_id} for user {record.user_id}")
        return record.model_copy(deep=True)

    async def get(self, content_id: str) -> ContentRecord:
        stored = self._records.get(content_id)
        if stored is None:
            raise ContentNotFoundError(content_id)
        return stored.model_copy(deep=True)

    async def save(self, record: ContentRecord) -> ContentRecord:
        stored = self._records.get(record.content_id)
        if stored is None:
            raise ContentNotFoundError(record.content_id)

        if stored.version != record.version:
            raise ConcurrentUpdateError(record.content_id, record.version, stored.version)

        record.version += 1
        record.updated_at = self.clock()
        self._records[record.content_id] = record.model_copy(deep=True)
        return record

    async def delete(self, content_id: str) -> None:
        if self._records.pop(content_id, None) is None:
            raise ContentNotFoundError(content_id)
        logger.debug(f"Deleted content {content_id}")

    def _quota_paused(self) -> list[ContentRecord]:
        paused = [r for r in self._records.values() if r.is_quota_paused and not r.is_deleted]
        return sorted(paused, key=lambda r: r.metadata.paused_at or r.updated_at)

    async def find_paused_for_quota(self, limit: int) -> list[ContentRecord]:
        return [r.model_copy(deep=True) for r in self._quota_paused()[:limit]]

    async def count_paused_for_quota(self) -> int:
        return len(self._quota_paused())

    async def find_expired_deleted(self, before: datetime, limit: int) -> list[ContentRecord]:
        expired = [
            r
            for r in self._records.values()
            if r.is_deleted and r.deleted_at is not None and r.deleted_at < before
        ]
        expired.sort(key=lambda r: r.deleted_at)
        return [r.model_copy(deep=True) for r in expired[:limit]]

    async def list_for_user(self, user_id: str, include_deleted: bool = False) -> list[ContentRecord]:
        owned = [
            r
            for r in self._records.values()
            if r.user_id == user_id and (include_deleted or not r.is_deleted)
        ]
        owned.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in owned]
