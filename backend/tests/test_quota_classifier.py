"""Tests for error classification and quota recovery estimation."""

from datetime import datetime, timedelta, timezone

import pytest

from learnflow.exceptions import ModelsExhaustedError, QuotaExceededError
from learnflow.models.schemas import QuotaInfo
from learnflow.services.ai_clients.base import AIClientResponseError, AIClientTimeoutError
from learnflow.services.quota_classifier import (
    ErrorClass,
    ErrorKind,
    classify_error,
    error_kind_from_message,
    error_kind_from_response,
    format_quota_message,
    next_daily_reset,
    parse_quota_info,
)

from tests.conftest import T0, overload_error, quota_error


class TestErrorKindFromResponse:
    """Tests for status-code based mapping."""

    def test_429_with_quota_body_is_quota(self):
        body = '{"error": {"status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}}'
        assert error_kind_from_response(429, body) == ErrorKind.QUOTA_EXHAUSTED

    def test_plain_429_is_rate_limit(self):
        assert error_kind_from_response(429, "Too many requests") == ErrorKind.RATE_LIMITED

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_errors_are_transient(self, status):
        assert error_kind_from_response(status, "") == ErrorKind.TRANSIENT

    def test_404_is_model_unavailable(self):
        assert error_kind_from_response(404, "") == ErrorKind.MODEL_UNAVAILABLE

    def test_400_unsupported_model(self):
        body = "model gemini-1.0 is not supported for generateContent"
        assert error_kind_from_response(400, body) == ErrorKind.MODEL_UNAVAILABLE

    def test_400_bad_request(self):
        assert error_kind_from_response(400, "Invalid JSON payload") == ErrorKind.INVALID_REQUEST

    def test_401_is_authentication(self):
        assert error_kind_from_response(401, "API key not valid") == ErrorKind.AUTHENTICATION


class TestErrorKindFromMessage:
    """Tests for the text indicator table."""

    def test_quota_checked_before_rate_limit(self):
        assert error_kind_from_message("429 quota exceeded") == ErrorKind.QUOTA_EXHAUSTED

    def test_model_does_not_exist(self):
        assert error_kind_from_message("The model foo does not exist") == ErrorKind.MODEL_UNAVAILABLE

    def test_unknown(self):
        assert error_kind_from_message("division by zero") == ErrorKind.UNKNOWN


class TestClassifyError:
    """Tests for the four-class taxonomy."""

    def test_structured_kinds(self):
        assert classify_error(overload_error()) == ErrorClass.RETRYABLE
        assert classify_error(quota_error()) == ErrorClass.QUOTA_EXCEEDED
        assert classify_error(AIClientTimeoutError("timeout")) == ErrorClass.RETRYABLE

    def test_authentication_is_fatal(self):
        error = AIClientResponseError("bad key", kind=ErrorKind.AUTHENTICATION, status_code=401)
        assert classify_error(error) == ErrorClass.FATAL

    def test_plain_exceptions_use_text(self):
        assert classify_error(RuntimeError("Service Unavailable (503)")) == ErrorClass.RETRYABLE
        assert classify_error(RuntimeError("model not found")) == ErrorClass.NEEDS_FALLBACK
        assert classify_error(ValueError("bad input")) == ErrorClass.FATAL

    def test_quota_exceeded_error(self):
        assert classify_error(QuotaExceededError(QuotaInfo())) == ErrorClass.QUOTA_EXCEEDED

    def test_exhausted_after_quota_is_quota(self):
        error = ModelsExhaustedError(["a", "b"], 2, 0.1, quota_error())
        assert classify_error(error) == ErrorClass.QUOTA_EXCEEDED

    def test_exhausted_after_overload_is_fatal(self):
        error = ModelsExhaustedError(["a", "b"], 6, 0.1, overload_error())
        assert classify_error(error) == ErrorClass.FATAL


class TestNextDailyReset:
    """Tests for the daily reset boundary."""

    def test_midnight_pacific_in_utc(self):
        # 12:00 UTC on 2025-03-10 is 05:00 PDT; next reset is 2025-03-11 00:00 PDT
        reset = next_daily_reset(T0, "America/Los_Angeles")
        assert reset == datetime(2025, 3, 11, 7, 0, tzinfo=timezone.utc)

    def test_always_after_now(self):
        now = datetime(2025, 3, 11, 6, 59, 59, tzinfo=timezone.utc)
        assert next_daily_reset(now) > now


class TestParseQuotaInfo:
    """Tests for recovery estimation."""

    def test_retry_after_from_error(self):
        info = parse_quota_info(quota_error(retry_after_seconds=30), now=T0)

        assert info.is_quota_error
        assert info.retry_after_seconds == 30
        assert info.estimated_recovery_time == T0 + timedelta(seconds=30)

    def test_retry_delay_in_body(self):
        error = quota_error(response_body='{"retryDelay": "42s", "quotaValue": "50"}')
        info = parse_quota_info(error, now=T0)

        assert info.estimated_recovery_time == T0 + timedelta(seconds=42)
        assert info.quota_limit == 50

    def test_daily_reset_without_hint(self):
        info = parse_quota_info(quota_error(), now=T0)

        assert info.estimated_recovery_time == next_daily_reset(T0)
        assert "Daily quota" in info.suggested_action

    def test_unwraps_exhausted_error(self):
        error = ModelsExhaustedError(["a"], 1, 0.0, quota_error(retry_after_seconds=5))
        info = parse_quota_info(error, now=T0)

        assert info.retry_after_seconds == 5

    def test_quota_exceeded_error_gets_future_estimate(self):
        stale = QuotaInfo(estimated_recovery_time=T0 - timedelta(hours=1))
        info = parse_quota_info(QuotaExceededError(stale), now=T0)

        assert info.estimated_recovery_time > T0
        assert stale.estimated_recovery_time == T0 - timedelta(hours=1)


class TestFormatQuotaMessage:
    """Tests for the owner-facing message."""

    def test_includes_recovery_and_limit(self):
        info = QuotaInfo(quota_limit=50, estimated_recovery_time=T0, suggested_action="Wait.")
        message = format_quota_message(info)

        assert "50 AI requests" in message
        assert "2025-03-10 12:00 UTC" in message
        assert message.endswith("Wait.")

    def test_non_quota_error(self):
        assert format_quota_message(QuotaInfo(is_quota_error=False)) == "An error occurred during processing"
