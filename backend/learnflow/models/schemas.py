"""
Pydantic models for the learning-content processing pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class AITaskType(str, Enum):
    """Task types for per-task model selection."""

    SUMMARY_QUICK = "summary_quick"
    SUMMARY_BRIEF = "summary_brief"
    SUMMARY_DETAILED = "summary_detailed"
    FLASHCARD_GENERATION = "flashcard_generation"
    QUIZ_GENERATION = "quiz_generation"
    QA_SIMPLE = "qa_simple"
    QA_COMPLEX = "qa_complex"
    QA_STREAMING = "qa_streaming"
    CONCEPT_EXTRACTION = "concept_extraction"


class ModelDescriptor(BaseModel):
    """Provider model as returned by discovery (or the static candidate list)."""

    name: str
    display_name: str = ""
    description: str = ""
    input_token_limit: int = 30000
    output_token_limit: int = 2048
    supported_operations: list[str] = Field(default_factory=lambda: ["generateContent"])
    temperature: float = 0.7
    top_p: float = 0.95
    top_k: int = 40

    def supports(self, operation: str) -> bool:
        """Check if the model supports a generation operation."""
        return operation in self.supported_operations


class TaskProfile(BaseModel):
    """Model preference for a task type: one primary plus ordered fallbacks."""

    task_type: str
    primary: str
    fallbacks: list[str] = Field(default_factory=list)

    @property
    def chain(self) -> list[str]:
        """Primary followed by fallbacks, without duplicates."""
        ordered: list[str] = []
        for model in [self.primary, *self.fallbacks]:
            if model not in ordered:
                ordered.append(model)
        return ordered


class StageName(str, Enum):
    """Processing stages in pipeline order."""

    TRANSCRIPTION = "transcription"
    VECTORIZATION = "vectorization"
    SUMMARIZATION = "summarization"
    FLASHCARD_GENERATION = "flashcard_generation"
    QUIZ_GENERATION = "quiz_generation"


STAGE_ORDER: list[StageName] = [
    StageName.TRANSCRIPTION,
    StageName.VECTORIZATION,
    StageName.SUMMARIZATION,
    StageName.FLASHCARD_GENERATION,
    StageName.QUIZ_GENERATION,
]


class StageStatus(str, Enum):
    """Status of a single processing stage."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class ContentStatus(str, Enum):
    """Overall content status, derived from stage statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class PausedReason(str, Enum):
    """Why a stage or content item is paused."""

    QUOTA_EXCEEDED = "quota_exceeded"


class QuotaInfo(BaseModel):
    """Details of a quota error, attached to paused stages and content.

    Attributes:
        is_quota_error: Whether the error was classified as quota exhaustion
        quota_metric: Provider quota metric name, if reported
        quota_limit: Provider quota value, if reported
        retry_after_seconds: Provider retry-after hint
        estimated_recovery_time: When the quota is expected to be restored
        suggested_action: Human-readable advice
        error_message: Raw provider error message
    """

    is_quota_error: bool = True
    quota_metric: str | None = None
    quota_limit: int | None = None
    retry_after_seconds: int | None = None
    estimated_recovery_time: datetime | None = None
    suggested_action: str = "Please try again later or upgrade your API plan"
    error_message: str = ""


class StageState(BaseModel):
    """Persisted state of one processing stage."""

    status: StageStatus = StageStatus.PENDING
    progress: float = Field(default=0, ge=0, le=100)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    error_kind: str | None = None
    retry_count: int = 0
    last_retry_at: datetime | None = None
    paused_reason: PausedReason | None = None
    quota_info: QuotaInfo | None = None


class ContentMetadata(BaseModel):
    """Content-level processing metadata."""

    error: str | None = None
    paused_reason: PausedReason | None = None
    paused_at: datetime | None = None
    quota_info: QuotaInfo | None = None


def _initial_stages() -> dict[StageName, StageState]:
    return {stage: StageState() for stage in STAGE_ORDER}


class ContentRecord(BaseModel):
    """Content item with its five-stage processing state.

    The record is the single source of truth for pipeline progress.
    `version` is bumped by the store on every save and is used for
    optimistic concurrency control.
    """

    content_id: str
    user_id: str
    title: str
    source_text: str = ""
    status: ContentStatus = ContentStatus.PENDING
    stages: dict[StageName, StageState] = Field(default_factory=_initial_stages)
    metadata: ContentMetadata = Field(default_factory=ContentMetadata)
    outputs: dict[str, dict] = Field(default_factory=dict)
    is_deleted: bool = False
    deleted_at: datetime | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def stage(self, name: StageName) -> StageState:
        """Get state of a stage."""
        return self.stages[name]

    @property
    def is_quota_paused(self) -> bool:
        """True if content is paused because of quota exhaustion."""
        return (
            self.status == ContentStatus.PAUSED
            and self.metadata.paused_reason == PausedReason.QUOTA_EXCEEDED
        )


class StageStatusView(BaseModel):
    """Stage state as presented by the status API."""

    name: StageName
    status: StageStatus
    progress: float
    error: str | None = None
    error_kind: str | None = None
    retry_count: int = 0
    paused_reason: PausedReason | None = None
    estimated_recovery_time: datetime | None = None


class ContentStatusResponse(BaseModel):
    """Processing status of one content item."""

    content_id: str
    status: ContentStatus
    stages: list[StageStatusView]
    error: str | None = None
    paused_reason: PausedReason | None = None
    quota_message: str | None = None
    estimated_recovery_time: datetime | None = None

    @computed_field
    @property
    def completed_stages(self) -> int:
        """Number of completed stages."""
        return sum(1 for s in self.stages if s.status == StageStatus.COMPLETED)


class CreateContentRequest(BaseModel):
    """Request to register uploaded content for processing."""

    title: str
    source_text: str = Field(..., min_length=1)
    start_processing: bool = True


class ResumeRequest(BaseModel):
    """Request to resume paused or failed processing."""

    from_stage: StageName | None = None


class AutoResumeReport(BaseModel):
    """Result of one auto-resume run."""

    found: int = 0
    resumed: int = 0
    skipped: int = 0
    failed: int = 0
    extended: int = 0


class CleanupReport(BaseModel):
    """Result of one expired-content cleanup run."""

    found: int = 0
    deleted: int = 0
    failed: int = 0


class ModelUsageView(BaseModel):
    """Per-model usage statistics."""

    model: str
    calls: int
    successes: int
    failures: int
    fallback_successes: int
    total_attempts: int
    avg_latency_ms: float
    success_rate: float


class RequestStatus(str, Enum):
    """Outcome of one provider request."""

    SUCCESS = "success"
    FAILURE = "failure"
    QUOTA_EXCEEDED = "quota_exceeded"


class ApiRequestLog(BaseModel):
    """One provider request made by the executor (one attempt)."""

    user_id: str | None = None
    content_id: str | None = None
    provider: str
    model: str
    request_type: str
    status: RequestStatus
    duration_ms: float | None = None
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class RequestTypeCount(BaseModel):
    type: str
    count: int


class ProviderQuotaStats(BaseModel):
    """Daily request quota usage of one provider for one user."""

    provider: str
    today_count: int
    hourly_count: int
    last_24_hours: int
    quota_limit: int
    percent_used: float
    remaining_requests: int
    reset_at: datetime
    estimated_time_to_reset: str
    requests_by_type: list[RequestTypeCount] = Field(default_factory=list)
    recent_failures: int = 0
    quota_exceeded_count: int = 0
    avg_response_time_ms: float | None = None
    recommendations: list[str] = Field(default_factory=list)


class PeakHour(BaseModel):
    hour: int = 0
    count: int = 0


class OverallUsageStats(BaseModel):
    """Request totals across providers over the last 24 hours."""

    total_requests: int
    success_rate: float
    avg_response_time_ms: float
    peak_hour: PeakHour


class RecentRequestError(BaseModel):
    timestamp: datetime
    request_type: str
    error_message: str


class QuotaUsageResponse(BaseModel):
    """Response of GET /api/quota/usage."""

    usage: ProviderQuotaStats
    overall: OverallUsageStats
    recent_errors: list[RecentRequestError] = Field(default_factory=list)
    paused_content: int = 0


class QuotaCheckResponse(BaseModel):
    """Whether the user is still under the provider's daily request limit."""

    can_proceed: bool
    remaining_requests: int
    reason: str | None = None


class AvailableModelsResponse(BaseModel):
    """Models currently usable from the provider."""

    provider: str
    models: list[ModelDescriptor]


class FlashcardType(str, Enum):
    MCQ = "mcq"
    TRUE_FALSE = "truefalse"
    FILL_IN = "fillin"
    ESSAY = "essay"


class Flashcard(BaseModel):
    """Generated flashcard."""

    front: str = Field(..., min_length=1)
    back: str = Field(..., min_length=1)
    type: FlashcardType = FlashcardType.ESSAY
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    tags: list[str] = Field(default_factory=list)


class QuizQuestionType(str, Enum):
    MCQ = "mcq"
    TRUE_FALSE = "truefalse"
    SHORT_ANSWER = "short_answer"


class QuizQuestion(BaseModel):
    """Generated quiz question.

    Accepts both snake_case and the camelCase keys models tend to emit.
    """

    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1)
    type: QuizQuestionType = QuizQuestionType.MCQ
    options: list[str] = Field(default_factory=list)
    correct_answer: str = Field(..., min_length=1, alias="correctAnswer")
    explanation: str = ""
    difficulty: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    points: int = 1
