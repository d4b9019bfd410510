"""Tests for the AI operation executor."""

import pytest

from learnflow.exceptions import ModelsExhaustedError, UnknownTaskTypeError
from learnflow.models.schemas import RequestStatus
from learnflow.services.ai_clients.base import AIClientResponseError, ErrorKind
from learnflow.services.ai_executor import AIExecutor, RetryPolicy, compute_backoff_delay
from learnflow.services.quota_classifier import ErrorClass, classify_error
from learnflow.services.request_log import InMemoryRequestLogStore, QuotaUsageService

from tests.conftest import missing_model_error, overload_error, quota_error


class TestBackoff:
    """Tests for the backoff schedule."""

    def test_default_schedule(self):
        policy = RetryPolicy()
        delays = [compute_backoff_delay(n, policy) for n in range(1, 7)]
        assert delays == [1, 2, 4, 8, 10, 10]

    def test_non_decreasing_and_capped(self):
        policy = RetryPolicy(initial_delay=0.5, max_delay=7, multiplier=3)
        delays = [compute_backoff_delay(n, policy) for n in range(1, 20)]

        assert delays == sorted(delays)
        assert max(delays) == 7

    def test_no_delay_before_first_attempt(self):
        assert compute_backoff_delay(0, RetryPolicy()) == 0


class Recorder:
    """Operation double: maps model -> list of outcomes (exception or value)."""

    def __init__(self, outcomes: dict[str, list]):
        self.outcomes = {model: list(items) for model, items in outcomes.items()}
        self.calls: list[str] = []

    async def __call__(self, model: str):
        self.calls.append(model)
        items = self.outcomes.get(model) or [f"result from {model}"]
        outcome = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class TestExecuteWithFallback:
    """Tests for AIExecutor.execute_with_fallback."""

    @pytest.fixture
    def executor(self, catalog, sleep):
        return AIExecutor(catalog, RetryPolicy(), sleep=sleep)

    async def test_primary_succeeds(self, executor):
        operation = Recorder({})
        outcome = await executor.execute_with_fallback(operation, "summary_brief")

        assert outcome.result == "result from gemini-2.5-flash"
        assert outcome.model_used == "gemini-2.5-flash"
        assert outcome.attempts_made == 1
        assert outcome.models_attempted == ["gemini-2.5-flash"]

    async def test_retries_same_model_with_backoff(self, executor, sleep):
        operation = Recorder({"gemini-2.5-flash": [overload_error(), overload_error(), "done"]})
        outcome = await executor.execute_with_fallback(operation, "summary_brief")

        assert outcome.result == "done"
        assert outcome.attempts_made == 3
        assert operation.calls == ["gemini-2.5-flash"] * 3
        assert sleep.delays == [1, 2]

    async def test_missing_model_falls_back_without_retry(self, executor, sleep):
        operation = Recorder({"gemini-2.5-flash": [missing_model_error()]})
        outcome = await executor.execute_with_fallback(operation, "summary_brief")

        assert outcome.model_used == "gemini-2.5-flash-lite"
        assert operation.calls == ["gemini-2.5-flash", "gemini-2.5-flash-lite"]
        assert sleep.delays == []

    async def test_quota_moves_to_next_model(self, executor):
        operation = Recorder({"gemini-2.5-flash": [quota_error()]})
        outcome = await executor.execute_with_fallback(operation, "summary_brief")

        assert outcome.model_used == "gemini-2.5-flash-lite"
        assert outcome.attempts_made == 2

    async def test_all_models_overloaded(self, executor, sleep):
        operation = Recorder(
            {
                "gemini-2.5-flash": [overload_error()],
                "gemini-2.5-flash-lite": [overload_error()],
                "gemini-2.5-pro": [overload_error()],
            }
        )

        with pytest.raises(ModelsExhaustedError) as exc_info:
            await executor.execute_with_fallback(operation, "summary_brief")

        error = exc_info.value
        assert error.attempts == 9
        assert error.models_attempted == ["gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.5-pro"]
        assert len(operation.calls) == 9
        assert sleep.delays == [1, 2] * 3
        assert classify_error(error) == ErrorClass.FATAL

    async def test_all_models_missing(self, executor, sleep):
        chain = ["m1", "m2", "m3"]
        operation = Recorder({model: [missing_model_error(model)] for model in chain})

        with pytest.raises(ModelsExhaustedError) as exc_info:
            await executor.execute_with_fallback(operation, "summary_brief", fallback_chain=chain)

        error = exc_info.value
        assert operation.calls == chain
        assert error.attempts == 3
        assert error.models_attempted == chain
        assert sleep.delays == []
        for model in chain:
            assert model in str(error)

    async def test_all_models_out_of_quota(self, executor):
        operation = Recorder(
            {
                "gemini-2.5-flash": [quota_error()],
                "gemini-2.5-flash-lite": [quota_error()],
                "gemini-2.5-pro": [quota_error()],
            }
        )

        with pytest.raises(ModelsExhaustedError) as exc_info:
            await executor.execute_with_fallback(operation, "summary_brief")

        assert exc_info.value.attempts == 3
        assert classify_error(exc_info.value) == ErrorClass.QUOTA_EXCEEDED

    async def test_fatal_error_is_reraised(self, executor):
        fatal = AIClientResponseError("API key not valid", kind=ErrorKind.AUTHENTICATION, status_code=401)
        operation = Recorder({"gemini-2.5-flash": [fatal]})

        with pytest.raises(AIClientResponseError) as exc_info:
            await executor.execute_with_fallback(operation, "summary_brief")

        assert exc_info.value is fatal
        assert operation.calls == ["gemini-2.5-flash"]

    async def test_explicit_chain_and_attempts(self, executor, sleep):
        operation = Recorder({"m1": [overload_error()]})

        with pytest.raises(ModelsExhaustedError):
            await executor.execute_with_fallback(operation, "anything", max_attempts=5, fallback_chain=["m1"])

        assert operation.calls == ["m1"] * 5
        assert sleep.delays == [1, 2, 4, 8]

    async def test_explicit_empty_chain_rejected(self, executor):
        operation = Recorder({})

        with pytest.raises(ValueError):
            await executor.execute_with_fallback(operation, "summary_brief", fallback_chain=[])

        assert operation.calls == []

    async def test_zero_attempts_rejected(self, executor):
        operation = Recorder({})

        with pytest.raises(ValueError):
            await executor.execute_with_fallback(operation, "summary_brief", max_attempts=0)

        assert operation.calls == []

    async def test_every_attempt_is_logged(self, catalog, sleep, clock):
        store = InMemoryRequestLogStore()
        executor = AIExecutor(catalog, sleep=sleep, request_log=QuotaUsageService(store, clock=clock))
        operation = Recorder(
            {
                "gemini-2.5-flash": [quota_error()],
                "gemini-2.5-flash-lite": [overload_error(), "done"],
            }
        )

        await executor.execute_with_fallback(operation, "summary_brief", user_id="user-1", content_id="c1")

        entries = await store.find("user-1")
        assert [(e.model, e.status) for e in entries] == [
            ("gemini-2.5-flash", RequestStatus.QUOTA_EXCEEDED),
            ("gemini-2.5-flash-lite", RequestStatus.FAILURE),
            ("gemini-2.5-flash-lite", RequestStatus.SUCCESS),
        ]
        assert all(e.request_type == "summary_brief" and e.content_id == "c1" for e in entries)
        assert entries[1].error_message
        assert entries[2].error_message is None

    async def test_unknown_task_type(self, executor):
        with pytest.raises(UnknownTaskTypeError):
            await executor.execute_with_fallback(Recorder({}), "poetry")

    async def test_usage_stats(self, executor):
        operation = Recorder({"gemini-2.5-flash": [missing_model_error()]})
        await executor.execute_with_fallback(operation, "summary_brief")

        stats = {view.model: view for view in executor.usage_snapshot()}
        assert stats["gemini-2.5-flash"].failures == 1
        assert stats["gemini-2.5-flash-lite"].successes == 1
        assert stats["gemini-2.5-flash-lite"].fallback_successes == 1
        assert stats["gemini-2.5-flash-lite"].success_rate == 100.0


class TestExecuteWithRetriesOnly:
    """Tests for AIExecutor.execute_with_retries_only."""

    async def test_retries_then_succeeds(self, catalog, sleep):
        executor = AIExecutor(catalog, sleep=sleep)
        outcomes = [overload_error(), "ok"]

        async def operation():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        assert await executor.execute_with_retries_only(operation) == "ok"
        assert sleep.delays == [1]

    async def test_last_error_reraised(self, catalog, sleep):
        executor = AIExecutor(catalog, sleep=sleep)
        calls = []

        async def operation():
            calls.append(1)
            raise overload_error()

        with pytest.raises(AIClientResponseError):
            await executor.execute_with_retries_only(operation, max_attempts=2)
        assert len(calls) == 2

    async def test_non_retryable_not_retried(self, catalog, sleep):
        executor = AIExecutor(catalog, sleep=sleep)
        calls = []

        async def operation():
            calls.append(1)
            raise missing_model_error()

        with pytest.raises(AIClientResponseError):
            await executor.execute_with_retries_only(operation)
        assert calls == [1]
        assert sleep.delays == []
