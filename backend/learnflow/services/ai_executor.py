"""
AI operation executor with retries and model fallback.

Runs an async operation against a chain of models: each model gets up
to max_attempts attempts with exponential backoff between them, and the
error class of each failure decides what happens next:

- RETRYABLE: retry the same model (until attempts run out)
- NEEDS_FALLBACK / QUOTA_EXCEEDED: move to the next model immediately
- FATAL: re-raise at once

Quota errors fall through to the next model because quotas are tracked
per model by the provider; only when every model is exhausted does the
caller see a quota-classified ModelsExhaustedError.

Example:
    async def summarize(model: str) -> str:
        text, _ = await client.generate(prompt, model=model)
        return text

    outcome = await executor.execute_with_fallback(summarize, "summary_brief")
    print(outcome.result, outcome.model_used)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from learnflow.config import Settings
from learnflow.exceptions import ModelsExhaustedError
from learnflow.models.schemas import ApiRequestLog, ModelUsageView, RequestStatus
from learnflow.services.model_catalog import ModelCatalog
from learnflow.services.quota_classifier import ErrorClass, classify_error
from learnflow.services.request_log import QuotaUsageService

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[str], Awaitable[T]]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """
    Backoff parameters shared by all executor calls.

    Attributes:
        max_attempts: Attempts per model (>= 1)
        initial_delay: Delay before the first retry, seconds
        max_delay: Upper bound for any single delay, seconds
        multiplier: Growth factor between consecutive delays
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            multiplier=settings.retry_backoff_multiplier,
        )


def compute_backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Delay to sleep before attempt number `attempt` (0-based, attempt > 0).

    delay = min(initial_delay * multiplier ** (attempt - 1), max_delay)

    With defaults: 1, 2, 4, 8, 10, 10, ... seconds. Non-decreasing in
    attempt and never above max_delay.
    """
    if attempt < 1:
        return 0.0
    return min(policy.initial_delay * policy.multiplier ** (attempt - 1), policy.max_delay)


@dataclass
class OperationOutcome(Generic[T]):
    """
    Result of a successful executor call.

    Attributes:
        result: Operation payload
        model_used: Model that produced the result
        attempts_made: Attempts across all models (>= 1)
        total_duration: Wall time in seconds, including backoff
        models_attempted: Models tried in order (model_used is last)
    """

    result: T
    model_used: str
    attempts_made: int
    total_duration: float
    models_attempted: list[str] = field(default_factory=list)


@dataclass
class _ModelCounters:
    calls: int = 0
    successes: int = 0
    failures: int = 0
    fallback_successes: int = 0
    total_attempts: int = 0
    total_latency: float = 0.0


class ModelUsageStats:
    """
    In-process usage counters per model.

    One "call" is one model's turn inside an executor run (which may
    include several attempts).
    """

    def __init__(self):
        self._models: dict[str, _ModelCounters] = {}

    def record(
        self,
        model: str,
        success: bool,
        attempts: int,
        latency: float,
        fallback: bool = False,
    ) -> None:
        counters = self._models.setdefault(model, _ModelCounters())
        counters.calls += 1
        counters.total_attempts += attempts
        counters.total_latency += latency
        if success:
            counters.successes += 1
            if fallback:
                counters.fallback_successes += 1
        else:
            counters.failures += 1

    def snapshot(self) -> list[ModelUsageView]:
        """Per-model statistics, sorted by model name."""
        views = []
        for model, c in sorted(self._models.items()):
            views.append(
                ModelUsageView(
                    model=model,
                    calls=c.calls,
                    successes=c.successes,
                    failures=c.failures,
                    fallback_successes=c.fallback_successes,
                    total_attempts=c.total_attempts,
                    avg_latency_ms=round(c.total_latency * 1000 / c.calls, 1) if c.calls else 0.0,
                    success_rate=round(c.successes * 100 / c.calls, 1) if c.calls else 0.0,
                )
            )
        return views

    def reset(self) -> None:
        self._models.clear()


def _is_retryable(error: BaseException) -> bool:
    return classify_error(error) == ErrorClass.RETRYABLE


class AIExecutor:
    """
    Executes AI operations with per-model retries and chain fallback.

    Attributes:
        catalog: Source of per-task fallback chains
        policy: Retry/backoff policy
        sleep: Awaitable sleep (injectable for tests)
        clock: Monotonic clock in seconds (injectable for tests)
        stats: Per-model usage counters
        request_log: Optional per-attempt request log (quota usage)
        provider: Provider name recorded in request log entries
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        policy: RetryPolicy | None = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        stats: ModelUsageStats | None = None,
        request_log: QuotaUsageService | None = None,
        provider: str | None = None,
    ):
        self.catalog = catalog
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.clock = clock
        self.stats = stats or ModelUsageStats()
        self.request_log = request_log
        self.provider = provider or getattr(catalog.client, "provider", "unknown")

    def _retrying(self, max_attempts: int, label: str) -> AsyncRetrying:
        """Build the tenacity loop for one target."""
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        def wait(retry_state: RetryCallState) -> float:
            return compute_backoff_delay(retry_state.attempt_number, self.policy)

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                f"[{label}] Retry {retry_state.attempt_number}/{max_attempts - 1} "
                f"after {wait(retry_state):.1f}s delay: {error}"
            )

        return AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep,
            sleep=self.sleep,
            reraise=True,
        )

    async def execute_with_fallback(
        self,
        operation: Operation,
        task_type: str,
        max_attempts: int | None = None,
        fallback_chain: list[str] | None = None,
        user_id: str | None = None,
        content_id: str | None = None,
    ) -> OperationOutcome:
        """
        Run operation(model_name) against the task's model chain.

        Args:
            operation: Async callable taking a model name
            task_type: Task type used to look up the fallback chain
            max_attempts: Attempts per model (default: policy.max_attempts)
            fallback_chain: Explicit chain overriding the task profile
            user_id: User the attempts are logged for
            content_id: Content the attempts are logged for

        Returns:
            OperationOutcome with cumulative attempts

        Raises:
            ModelsExhaustedError: Every model in the chain failed
            UnknownTaskTypeError: No chain override and no profile for task_type
            ValueError: Empty fallback chain or max_attempts < 1
            Exception: The original error, if it was classified FATAL
        """
        chain = self.catalog.get_fallback_chain(task_type) if fallback_chain is None else fallback_chain
        max_attempts = self.policy.max_attempts if max_attempts is None else max_attempts
        task_label = getattr(task_type, "value", task_type)

        if not chain:
            raise ValueError(f"Empty fallback chain for task {task_label}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        async def attempt_once(model: str):
            attempt_started = self.clock()
            try:
                result = await operation(model)
            except Exception as e:
                await self._log_attempt(model, task_label, attempt_started, user_id, content_id, e)
                raise
            await self._log_attempt(model, task_label, attempt_started, user_id, content_id)
            return result

        started = self.clock()
        total_attempts = 0
        models_attempted: list[str] = []
        last_error: Exception | None = None

        for index, model in enumerate(chain):
            models_attempted.append(model)
            logger.info(
                f"[{task_label}] Attempting with model: {model} "
                f"(fallback level {index + 1}/{len(chain)})"
            )

            model_started = self.clock()
            model_attempts = 0
            try:
                async for attempt in self._retrying(max_attempts, f"{task_label}/{model}"):
                    with attempt:
                        model_attempts += 1
                        total_attempts += 1
                        result = await attempt_once(model)
            except Exception as e:
                self.stats.record(
                    model, success=False, attempts=model_attempts, latency=self.clock() - model_started
                )
                last_error = e
                error_class = classify_error(e)

                if error_class == ErrorClass.FATAL:
                    logger.error(f"[{task_label}] Non-retryable error with {model}: {e}")
                    raise

                if error_class == ErrorClass.RETRYABLE:
                    logger.error(f"[{task_label}] Max retries ({max_attempts}) reached for model {model}")
                elif error_class == ErrorClass.QUOTA_EXCEEDED:
                    logger.warning(f"[{task_label}] Quota exceeded for {model}, trying next fallback")
                else:
                    logger.warning(f"[{task_label}] Model {model} not available, trying next fallback")
                continue

            elapsed = self.clock() - started
            self.stats.record(
                model,
                success=True,
                attempts=model_attempts,
                latency=self.clock() - model_started,
                fallback=index > 0,
            )
            logger.info(
                f"[{task_label}] Operation successful with {model} "
                f"after {total_attempts} attempts ({elapsed * 1000:.0f}ms)"
            )
            return OperationOutcome(
                result=result,
                model_used=model,
                attempts_made=total_attempts,
                total_duration=elapsed,
                models_attempted=models_attempted,
            )

        raise ModelsExhaustedError(
            models_attempted=models_attempted,
            attempts=total_attempts,
            elapsed=self.clock() - started,
            last_error=last_error,
        )

    async def execute_with_retries_only(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
    ) -> T:
        """
        Run a single-target operation, retrying only RETRYABLE errors.

        Non-retryable errors and the last retryable error after the
        attempts are spent are re-raised unchanged.
        """
        max_attempts = self.policy.max_attempts if max_attempts is None else max_attempts

        async for attempt in self._retrying(max_attempts, "single"):
            with attempt:
                result = await operation()
        return result

    async def _log_attempt(
        self,
        model: str,
        request_type: str,
        started: float,
        user_id: str | None,
        content_id: str | None,
        error: Exception | None = None,
    ) -> None:
        if self.request_log is None:
            return

        if error is None:
            status = RequestStatus.SUCCESS
        elif classify_error(error) == ErrorClass.QUOTA_EXCEEDED:
            status = RequestStatus.QUOTA_EXCEEDED
        else:
            status = RequestStatus.FAILURE

        await self.request_log.log_request(
            ApiRequestLog(
                user_id=user_id,
                content_id=content_id,
                provider=self.provider,
                model=model,
                request_type=request_type,
                status=status,
                duration_ms=round((self.clock() - started) * 1000, 1),
                error_message=str(error) if error is not None else None,
            )
        )

    def usage_snapshot(self) -> list[ModelUsageView]:
        """Per-model usage statistics collected by this executor."""
        return self.stats.snapshot()
