"""
Domain exceptions for model selection, execution and content processing.

Provider-level failures live in learnflow.services.ai_clients.base
(AIClientError family); everything raised above that layer is defined here.
"""

from learnflow.models.schemas import QuotaInfo, StageName, StageStatus


class NoModelsAvailableError(Exception):
    """Raised when model discovery yields no usable model and nothing is cached."""

    pass


class UnknownTaskTypeError(KeyError):
    """Raised when no TaskProfile is configured for a task type."""

    def __init__(self, task_type: str, known: list[str]):
        self.task_type = task_type
        self.known = known
        super().__init__(f"Unknown task type '{task_type}'. Known: {known}")


class ModelsExhaustedError(Exception):
    """
    Every model in a fallback chain failed.

    Attributes:
        models_attempted: Models tried, in order
        attempts: Total attempts across all models
        elapsed: Total elapsed time in seconds
        last_error: Last underlying error
    """

    def __init__(
        self,
        models_attempted: list[str],
        attempts: int,
        elapsed: float,
        last_error: Exception | None,
    ):
        self.models_attempted = models_attempted
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_error = last_error
        last_message = str(last_error) if last_error else "Unknown error"
        super().__init__(
            f"All models exhausted after {attempts} attempts ({elapsed * 1000:.0f}ms). "
            f"Models tried: {' -> '.join(models_attempted)}. "
            f"Last error: {last_message}"
        )


class QuotaExceededError(Exception):
    """
    Quota-aware error carrying parsed QuotaInfo.

    Stage processors may raise this directly when they detect quota
    exhaustion outside the executor.
    """

    def __init__(self, quota_info: QuotaInfo):
        self.quota_info = quota_info
        super().__init__(quota_info.error_message or "API quota exceeded")


class ContentNotFoundError(Exception):
    """Raised when a content record does not exist (or is not owned by the caller)."""

    def __init__(self, content_id: str):
        self.content_id = content_id
        super().__init__(f"Content not found: {content_id}")


class InvalidTransitionError(Exception):
    """Raised when a stage transition is not allowed by the state machine."""

    def __init__(
        self,
        stage: StageName,
        current: StageStatus,
        target: StageStatus | None = None,
        reason: str = "",
    ):
        self.stage = stage
        self.current = current
        self.target = target
        message = f"[{stage.value}] cannot move from {current.value}"
        if target:
            message += f" to {target.value}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ConcurrentUpdateError(Exception):
    """Raised when a record was modified by someone else since it was read."""

    def __init__(self, content_id: str, expected_version: int, actual_version: int):
        self.content_id = content_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Content {content_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class StageError(Exception):
    """Error during stage execution.

    Attributes:
        stage_name: Name of the stage that failed
        message: Error description
        cause: Original exception (if any)
    """

    def __init__(
        self,
        stage_name: str,
        message: str,
        cause: Exception | None = None,
    ):
        self.stage_name = stage_name
        self.message = message
        self.cause = cause
        super().__init__(f"[{stage_name}] {message}")

