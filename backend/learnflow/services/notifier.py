"""
Owner notifications for processing events.

Delivery channels (email, push) sit behind the Notifier protocol. The
default LogNotifier only logs, which keeps the recovery jobs usable
without any mail configuration.
"""

import logging
from datetime import datetime
from typing import Protocol

from learnflow.models.schemas import ContentRecord

logger = logging.getLogger(__name__)


def format_paused_duration(paused_at: datetime | None, now: datetime) -> str:
    """
    Human-readable pause length.

    Example:
        >>> format_paused_duration(now - timedelta(hours=2, minutes=5), now)
        '2 hours 5 minutes'
    """
    if paused_at is None:
        return "0 minutes"

    total_minutes = max(int((now - paused_at).total_seconds() // 60), 0)
    hours, minutes = divmod(total_minutes, 60)

    def plural(value: int, unit: str) -> str:
        return f"{value} {unit}{'' if value == 1 else 's'}"

    if hours > 0:
        text = plural(hours, "hour")
        if minutes > 0:
            text += " " + plural(minutes, "minute")
        return text
    return plural(minutes, "minute")


class Notifier(Protocol):
    """Sends processing notifications to content owners."""

    async def notify_resumed(self, record: ContentRecord, paused_duration: str) -> None:
        """Content was automatically resumed after a quota pause."""
        ...


class LogNotifier:
    """Notifier that writes notifications to the log."""

    async def notify_resumed(self, record: ContentRecord, paused_duration: str) -> None:
        logger.info(
            f"Notify {record.user_id}: '{record.title}' ({record.content_id}) resumed "
            f"after {paused_duration}, status {record.status.value}"
        )
