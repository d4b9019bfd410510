"""
Error classification and quota recovery estimation.

Turns any exception into one of four classes that drive behavior:

- RETRYABLE: transient overload, rate limit, timeout -> retry same model
- NEEDS_FALLBACK: requested model missing/unsupported -> next model
- QUOTA_EXCEEDED: daily/periodic quota hit -> pause with recovery estimate
- FATAL: anything else -> propagate, mark stage failed

Provider clients attach a structured ErrorKind to their errors using
error_kind_from_response(). Text matching is only used for exceptions
that did not come through a provider client, and it lives in one table.

Example:
    from learnflow.services.quota_classifier import ErrorClass, classify_error

    if classify_error(exc) is ErrorClass.QUOTA_EXCEEDED:
        info = parse_quota_info(exc)
"""

import logging
import math
import re
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from learnflow.exceptions import ModelsExhaustedError, QuotaExceededError
from learnflow.models.schemas import QuotaInfo

logger = logging.getLogger(__name__)

DEFAULT_RESET_TIMEZONE = "America/Los_Angeles"


class ErrorKind(str, Enum):
    """Structured failure codes attached to provider errors by the clients."""

    TRANSIENT = "transient"  # overload, timeout, connection reset
    RATE_LIMITED = "rate_limited"  # short-window rate limit
    QUOTA_EXHAUSTED = "quota_exhausted"  # daily/periodic quota
    MODEL_UNAVAILABLE = "model_unavailable"  # unknown or unsupported model
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


class ErrorClass(str, Enum):
    """Error taxonomy used by the executor and the pipeline."""

    RETRYABLE = "retryable"
    NEEDS_FALLBACK = "needs_fallback"
    QUOTA_EXCEEDED = "quota_exceeded"
    FATAL = "fatal"


KIND_TO_CLASS: dict[ErrorKind, ErrorClass] = {
    ErrorKind.TRANSIENT: ErrorClass.RETRYABLE,
    ErrorKind.RATE_LIMITED: ErrorClass.RETRYABLE,
    ErrorKind.QUOTA_EXHAUSTED: ErrorClass.QUOTA_EXCEEDED,
    ErrorKind.MODEL_UNAVAILABLE: ErrorClass.NEEDS_FALLBACK,
    ErrorKind.INVALID_REQUEST: ErrorClass.FATAL,
    ErrorKind.AUTHENTICATION: ErrorClass.FATAL,
    ErrorKind.UNKNOWN: ErrorClass.FATAL,
}

# Checked in order: quota before rate limit, since quota errors are 429s too.
MESSAGE_INDICATORS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (
        ErrorKind.QUOTA_EXHAUSTED,
        ("quota", "resource_exhausted", "quotafailure", "per_day", "perday", "free_tier"),
    ),
    (
        ErrorKind.RATE_LIMITED,
        ("429", "rate limit", "rate_limit", "too many requests"),
    ),
    (
        ErrorKind.TRANSIENT,
        (
            "503",
            "502",
            "overload",
            "timeout",
            "timed out",
            "try again",
            "temporarily unavailable",
            "service unavailable",
            "connection reset",
        ),
    ),
    (
        ErrorKind.MODEL_UNAVAILABLE,
        ("404", "not found", "not available", "unsupported", "not supported"),
    ),
]

_MODEL_MISSING_RE = re.compile(r"model\b.*\bdoes not exist")
_RETRY_IN_RE = re.compile(r"retry in ([\d.]+)\s*s", re.IGNORECASE)
_RETRY_DELAY_RE = re.compile(r"retryDelay[\"':\s]+([\d.]+)s", re.IGNORECASE)
_METRIC_RE = re.compile(r"quotaMetric[\"':\s]+([\w./-]+)", re.IGNORECASE)
_LIMIT_RE = re.compile(r"quotaValue[\"':\s]+(\d+)", re.IGNORECASE)


def error_kind_from_message(message: str) -> ErrorKind:
    """
    Classify raw error text into an ErrorKind.

    Args:
        message: Error message (any case)

    Returns:
        First matching ErrorKind, or UNKNOWN
    """
    lowered = (message or "").lower()

    for kind, indicators in MESSAGE_INDICATORS:
        if any(indicator in lowered for indicator in indicators):
            return kind

    if _MODEL_MISSING_RE.search(lowered):
        return ErrorKind.MODEL_UNAVAILABLE

    return ErrorKind.UNKNOWN


def error_kind_from_response(status_code: int | None, message: str = "") -> ErrorKind:
    """
    Map a provider HTTP response to an ErrorKind.

    Status codes decide where they are unambiguous; 429 and 400/403
    bodies are inspected to tell quota exhaustion from rate limiting.

    Args:
        status_code: HTTP status code (None for non-HTTP failures)
        message: Response body or provider error message

    Returns:
        Structured error kind
    """
    if status_code == 429:
        kind = error_kind_from_message(message)
        return ErrorKind.QUOTA_EXHAUSTED if kind == ErrorKind.QUOTA_EXHAUSTED else ErrorKind.RATE_LIMITED
    if status_code == 404:
        return ErrorKind.MODEL_UNAVAILABLE
    if status_code == 401:
        return ErrorKind.AUTHENTICATION
    if status_code in (408, 500, 502, 503, 504, 529):
        return ErrorKind.TRANSIENT
    if status_code in (400, 403):
        kind = error_kind_from_message(message)
        if kind in (ErrorKind.QUOTA_EXHAUSTED, ErrorKind.MODEL_UNAVAILABLE):
            return kind
        return ErrorKind.AUTHENTICATION if status_code == 403 else ErrorKind.INVALID_REQUEST

    return error_kind_from_message(message)


def classify_error(error: BaseException) -> ErrorClass:
    """
    Classify an exception for retry / fallback / pause decisions.

    - provider errors: use their structured kind (text fallback for UNKNOWN)
    - QuotaExceededError: always QUOTA_EXCEEDED
    - ModelsExhaustedError: QUOTA_EXCEEDED if the last error was a quota
      error, otherwise FATAL (retry budget already spent)
    - anything else: centralized text indicators

    Args:
        error: Exception to classify

    Returns:
        ErrorClass
    """
    if isinstance(error, QuotaExceededError):
        return ErrorClass.QUOTA_EXCEEDED

    if isinstance(error, ModelsExhaustedError):
        if error.last_error is not None and classify_error(error.last_error) == ErrorClass.QUOTA_EXCEEDED:
            return ErrorClass.QUOTA_EXCEEDED
        return ErrorClass.FATAL

    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind) and kind != ErrorKind.UNKNOWN:
        return KIND_TO_CLASS[kind]

    return KIND_TO_CLASS[error_kind_from_message(str(error))]


def _quota_source(error: BaseException) -> BaseException:
    """Unwrap aggregate errors to the error that carries quota details."""
    if isinstance(error, ModelsExhaustedError) and error.last_error is not None:
        return _quota_source(error.last_error)
    return error


def next_daily_reset(now: datetime, tz_name: str = DEFAULT_RESET_TIMEZONE) -> datetime:
    """
    Next daily quota reset boundary (midnight in the provider's timezone).

    Args:
        now: Current time (timezone-aware)
        tz_name: IANA timezone of the reset boundary

    Returns:
        Reset time in UTC, strictly after now
    """
    tz = ZoneInfo(tz_name)
    local_now = now.astimezone(tz)
    next_midnight = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return next_midnight.astimezone(timezone.utc)


def current_day_start(now: datetime, tz_name: str = DEFAULT_RESET_TIMEZONE) -> datetime:
    """Start of the current quota day (last midnight in the provider's timezone), in UTC."""
    tz = ZoneInfo(tz_name)
    midnight = datetime.combine(now.astimezone(tz).date(), time.min, tzinfo=tz)
    return midnight.astimezone(timezone.utc)


def parse_quota_info(
    error: BaseException,
    now: datetime | None = None,
    reset_timezone: str = DEFAULT_RESET_TIMEZONE,
) -> QuotaInfo:
    """
    Extract quota details and estimate when the quota will be restored.

    Recovery estimate: explicit retry-after from the provider if present,
    otherwise the next daily reset boundary. The estimate is always
    strictly in the future relative to `now`.

    Args:
        error: Quota error (provider error, QuotaExceededError or aggregate)
        now: Current time, UTC (defaults to wall clock)
        reset_timezone: Timezone of the daily reset boundary

    Returns:
        QuotaInfo
    """
    now = now or datetime.now(timezone.utc)

    if isinstance(error, QuotaExceededError):
        info = error.quota_info.model_copy()
        if info.estimated_recovery_time is None or info.estimated_recovery_time <= now:
            info.estimated_recovery_time = next_daily_reset(now, reset_timezone)
        return info

    source = _quota_source(error)
    message = str(source)
    response_body = getattr(source, "response_body", None)
    if response_body:
        message = f"{message} {response_body}"

    info = QuotaInfo(
        is_quota_error=classify_error(error) == ErrorClass.QUOTA_EXCEEDED,
        error_message=message,
    )

    retry_after = getattr(source, "retry_after_seconds", None)
    if retry_after is None:
        match = _RETRY_IN_RE.search(message) or _RETRY_DELAY_RE.search(message)
        if match:
            retry_after = float(match.group(1))

    metric_match = _METRIC_RE.search(message)
    if metric_match:
        info.quota_metric = metric_match.group(1)

    limit_match = _LIMIT_RE.search(message)
    if limit_match:
        info.quota_limit = int(limit_match.group(1))

    if retry_after is not None and retry_after > 0:
        info.retry_after_seconds = math.ceil(retry_after)
        info.estimated_recovery_time = now + timedelta(seconds=retry_after)
    else:
        info.estimated_recovery_time = next_daily_reset(now, reset_timezone)

    info.suggested_action = _suggested_action(message, info)
    return info


def _suggested_action(message: str, info: QuotaInfo) -> str:
    lowered = message.lower()
    if "free_tier" in lowered or "freetier" in lowered:
        return (
            f"Free tier quota limit reached ({info.quota_limit or 50} requests/day). "
            "Processing resumes automatically after the daily reset; "
            "upgrading the API plan removes the limit."
        )
    if "per_minute" in lowered or "perminute" in lowered:
        return f"Rate limit exceeded. Please wait {info.retry_after_seconds or 60} seconds before retrying."
    if "per_day" in lowered or "perday" in lowered:
        return "Daily quota exceeded. Quota resets at midnight Pacific Time."
    return "Please try again later or upgrade your API plan"


def format_quota_message(info: QuotaInfo) -> str:
    """
    Format quota details for display to the content owner.

    Args:
        info: Parsed quota info

    Returns:
        Multi-line human-readable message
    """
    if not info.is_quota_error:
        return "An error occurred during processing"

    lines = ["API quota limit reached."]
    if info.quota_limit:
        lines.append(f"The limit of {info.quota_limit} AI requests has been used up.")
    if info.estimated_recovery_time:
        lines.append(
            f"Estimated recovery: {info.estimated_recovery_time.strftime('%Y-%m-%d %H:%M UTC')}"
        )
    lines.append(info.suggested_action)
    return "\n".join(lines)
