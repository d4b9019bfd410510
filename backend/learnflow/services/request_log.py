"""
Provider request log and per-user daily quota usage.

The executor records one ApiRequestLog entry per attempt. QuotaUsageService
turns those entries into the usage view (daily/hourly counts, remaining
requests, time to reset) and answers whether a user is still under the
provider's daily request limit.

Quota days start at midnight in the provider's reset timezone, the same
boundary used for quota recovery estimates.

Example:
    usage = QuotaUsageService(InMemoryRequestLogStore())
    await usage.log_request(entry)
    check = await usage.can_make_request("user-1", "gemini")
"""

import logging
import math
from abc import ABC, abstractmethod
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Callable

from learnflow.config import Settings
from learnflow.models.schemas import (
    ApiRequestLog,
    OverallUsageStats,
    PeakHour,
    ProviderQuotaStats,
    QuotaCheckResponse,
    QuotaUsageResponse,
    RecentRequestError,
    RequestStatus,
    RequestTypeCount,
    utcnow,
)
from learnflow.services.quota_classifier import (
    DEFAULT_RESET_TIMEZONE,
    current_day_start,
    next_daily_reset,
)

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMITS = {"gemini": 50}
RECENT_ERRORS_LIMIT = 5


class RequestLogStore(ABC):
    """Storage interface for provider request entries."""

    @abstractmethod
    async def append(self, entry: ApiRequestLog) -> None:
        """Store one entry."""

    @abstractmethod
    async def find(
        self,
        user_id: str,
        since: datetime | None = None,
        provider: str | None = None,
    ) -> list[ApiRequestLog]:
        """Entries of a user at or after `since`, oldest first."""


class InMemoryRequestLogStore(RequestLogStore):
    """Process-local request log keeping the newest max_entries entries."""

    def __init__(self, max_entries: int = 10000):
        self._entries: deque[ApiRequestLog] = deque(maxlen=max_entries)

    async def append(self, entry: ApiRequestLog) -> None:
        self._entries.append(entry.model_copy())

    async def find(
        self,
        user_id: str,
        since: datetime | None = None,
        provider: str | None = None,
    ) -> list[ApiRequestLog]:
        return [
            e.model_copy()
            for e in self._entries
            if e.user_id == user_id
            and (since is None or e.timestamp >= since)
            and (provider is None or e.provider == provider)
        ]


def _average(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def _format_hours(hours: int) -> str:
    return f"{hours} hour{'s' if hours != 1 else ''}"


class QuotaUsageService:
    """
    Request logging and daily quota usage per user.

    Attributes:
        store: Request log persistence
        clock: Current UTC time (injectable for tests)
        reset_timezone: Timezone of the provider's daily quota reset
        daily_limits: Daily request limit per provider
        default_limit: Limit for providers missing from daily_limits
        hourly_warning: Hourly request count that triggers a pacing hint
    """

    def __init__(
        self,
        store: RequestLogStore,
        clock: Callable[[], datetime] = utcnow,
        reset_timezone: str = DEFAULT_RESET_TIMEZONE,
        daily_limits: dict[str, int] | None = None,
        default_limit: int = 100,
        hourly_warning: int = 5,
    ):
        self.store = store
        self.clock = clock
        self.reset_timezone = reset_timezone
        self.daily_limits = daily_limits if daily_limits is not None else dict(DEFAULT_DAILY_LIMITS)
        self.default_limit = default_limit
        self.hourly_warning = hourly_warning

    @classmethod
    def from_settings(cls, settings: Settings, store: RequestLogStore, **kwargs) -> "QuotaUsageService":
        return cls(
            store,
            reset_timezone=settings.quota_reset_timezone,
            daily_limits=dict(settings.daily_request_limits),
            default_limit=settings.default_daily_request_limit,
            hourly_warning=settings.hourly_request_warning,
            **kwargs,
        )

    def limit_for(self, provider: str) -> int:
        return self.daily_limits.get(provider, self.default_limit)

    async def log_request(self, entry: ApiRequestLog) -> None:
        """Store a request entry stamped with the current time. Logging failures never reach the caller."""
        try:
            await self.store.append(entry.model_copy(update={"timestamp": self.clock()}))
        except Exception as e:
            logger.error(f"Failed to log API request for model {entry.model}: {e}")

    async def get_usage(self, user_id: str, provider: str, paused_content: int = 0) -> QuotaUsageResponse:
        """
        Usage view for one user and provider.

        Args:
            user_id: Owner of the requests
            provider: Provider whose daily limit applies
            paused_content: Number of the user's quota-paused items

        Returns:
            QuotaUsageResponse
        """
        now = self.clock()
        day_start = current_day_start(now, self.reset_timezone)
        since = min(day_start, now - timedelta(hours=24))
        entries = await self.store.find(user_id, since=since)

        return QuotaUsageResponse(
            usage=self._provider_stats(entries, provider, now, day_start),
            overall=self._overall_stats(entries, now),
            recent_errors=self._recent_errors(entries),
            paused_content=paused_content,
        )

    async def can_make_request(self, user_id: str, provider: str) -> QuotaCheckResponse:
        """Check the user's requests today against the provider's daily limit."""
        now = self.clock()
        day_start = current_day_start(now, self.reset_timezone)
        today = await self.store.find(user_id, since=day_start, provider=provider)

        limit = self.limit_for(provider)
        remaining = max(0, limit - len(today))
        if remaining == 0:
            return QuotaCheckResponse(
                can_proceed=False,
                remaining_requests=0,
                reason=(
                    f"Daily quota limit of {limit} requests reached. "
                    f"Resets at midnight ({self.reset_timezone})."
                ),
            )
        return QuotaCheckResponse(can_proceed=True, remaining_requests=remaining)

    def _provider_stats(
        self,
        entries: list[ApiRequestLog],
        provider: str,
        now: datetime,
        day_start: datetime,
    ) -> ProviderQuotaStats:
        own = [e for e in entries if e.provider == provider]
        today = [e for e in own if e.timestamp >= day_start]
        last_hour = [e for e in own if e.timestamp >= now - timedelta(hours=1)]
        last_day = [e for e in own if e.timestamp >= now - timedelta(hours=24)]

        limit = self.limit_for(provider)
        reset_at = next_daily_reset(now, self.reset_timezone)
        hours_to_reset = math.ceil((reset_at - now).total_seconds() / 3600)
        quota_exceeded = sum(1 for e in today if e.status == RequestStatus.QUOTA_EXCEEDED)
        by_type = Counter(e.request_type for e in today)

        return ProviderQuotaStats(
            provider=provider,
            today_count=len(today),
            hourly_count=len(last_hour),
            last_24_hours=len(last_day),
            quota_limit=limit,
            percent_used=round(len(today) * 100 / limit, 2) if limit else 100.0,
            remaining_requests=max(0, limit - len(today)),
            reset_at=reset_at,
            estimated_time_to_reset=_format_hours(hours_to_reset),
            requests_by_type=[RequestTypeCount(type=t, count=c) for t, c in by_type.most_common()],
            recent_failures=sum(1 for e in last_day if e.status == RequestStatus.FAILURE),
            quota_exceeded_count=quota_exceeded,
            avg_response_time_ms=_average([e.duration_ms for e in today if e.duration_ms is not None]),
            recommendations=self._recommendations(len(today), limit, len(last_hour), quota_exceeded),
        )

    def _overall_stats(self, entries: list[ApiRequestLog], now: datetime) -> OverallUsageStats:
        last_day = [e for e in entries if e.timestamp >= now - timedelta(hours=24)]
        successes = sum(1 for e in last_day if e.status == RequestStatus.SUCCESS)
        hours = Counter(e.timestamp.hour for e in last_day)
        peak = hours.most_common(1)

        return OverallUsageStats(
            total_requests=len(last_day),
            success_rate=round(successes * 100 / len(last_day), 2) if last_day else 100.0,
            avg_response_time_ms=_average([e.duration_ms for e in last_day if e.duration_ms is not None]) or 0.0,
            peak_hour=PeakHour(hour=peak[0][0], count=peak[0][1]) if peak else PeakHour(),
        )

    def _recent_errors(self, entries: list[ApiRequestLog]) -> list[RecentRequestError]:
        failed = [e for e in entries if e.status != RequestStatus.SUCCESS]
        failed.sort(key=lambda e: e.timestamp, reverse=True)
        return [
            RecentRequestError(
                timestamp=e.timestamp,
                request_type=e.request_type,
                error_message=e.error_message or "Unknown error",
            )
            for e in failed[:RECENT_ERRORS_LIMIT]
        ]

    def _recommendations(self, today: int, limit: int, hourly: int, quota_exceeded: int) -> list[str]:
        tips = []
        percent = today * 100 / limit if limit else 100.0

        if percent >= 90:
            tips.append("You're near your daily quota limit. Consider upgrading to a paid plan.")
            tips.append("Batch process multiple documents to optimize API usage.")
        elif percent >= 70:
            tips.append("You've used 70%+ of your daily quota. Monitor usage carefully.")
        elif percent < 30:
            tips.append("You have plenty of quota remaining for today.")

        if hourly >= self.hourly_warning:
            tips.append("High hourly usage detected. Spread out processing to avoid rate limits.")

        if quota_exceeded > 0:
            tips.append(
                "Quota exceeded errors detected today. Processing has been paused and will auto-resume."
            )

        if today == 0:
            tips.append("No API requests today. Upload content to start learning!")

        return tips
