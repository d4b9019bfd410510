"""
Stage abstraction for content processing.

Each of the five processing stages is a BaseStage with:
- A StageName identifying its slot in the pipeline
- The AI task type it runs under (None for stages that make no AI calls)
- Dependencies on earlier stages' outputs
- An async execute() that returns a JSON-serializable result dict

Stage results are persisted in ContentRecord.outputs so a resumed
pipeline can hand earlier results to later stages without re-running them.

Example:
    class SummarizationStage(BaseStage):
        name = StageName.SUMMARIZATION
        task_type = AITaskType.SUMMARY_BRIEF
        depends_on = [StageName.TRANSCRIPTION]

        async def execute(self, context: StageContext) -> dict:
            text = context.get_result(StageName.TRANSCRIPTION)["text"]
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from learnflow.exceptions import StageError
from learnflow.models.schemas import AITaskType, ContentRecord, StageName

# (stage, progress 0-100, message)
StageProgressCallback = Callable[[StageName, float, str], Awaitable[None]]


async def _no_progress(stage: StageName, progress: float, message: str) -> None:
    return None


@dataclass
class StageContext:
    """Input handed to a stage.

    Attributes:
        content_id: Content being processed
        user_id: Owner of the content
        title: Content title
        source_text: Raw uploaded text
        results: Outputs of stages that already completed
        report_progress: Async callback for intra-stage progress

    Example:
        context = StageContext.from_record(record)
        transcript = context.get_result(StageName.TRANSCRIPTION)
    """

    content_id: str
    user_id: str
    title: str
    source_text: str
    results: dict[str, Any] = field(default_factory=dict)
    report_progress: StageProgressCallback = _no_progress

    @classmethod
    def from_record(
        cls,
        record: ContentRecord,
        report_progress: StageProgressCallback | None = None,
    ) -> "StageContext":
        return cls(
            content_id=record.content_id,
            user_id=record.user_id,
            title=record.title,
            source_text=record.source_text,
            results=dict(record.outputs),
            report_progress=report_progress or _no_progress,
        )

    def get_result(self, stage: StageName) -> Any:
        """Get result from a completed stage.

        Raises:
            KeyError: If stage result not found
        """
        key = stage.value
        if key not in self.results:
            raise KeyError(
                f"Stage '{key}' result not found. "
                f"Available: {list(self.results.keys())}"
            )
        return self.results[key]

    def has_result(self, stage: StageName) -> bool:
        return stage.value in self.results


class BaseStage(ABC):
    """Abstract base class for processing stages.

    Subclasses must implement:
    - name: StageName
    - execute(): Async method that performs the work

    Errors raised from execute() are classified by the pipeline: quota
    errors pause the content, everything else fails the stage.
    """

    name: StageName
    task_type: AITaskType | None = None
    depends_on: list[StageName] = []

    @abstractmethod
    async def execute(self, context: StageContext) -> dict:
        """Execute the stage.

        Args:
            context: Content data and results from previous stages

        Returns:
            JSON-serializable result summary stored in ContentRecord.outputs

        Raises:
            StageError: If execution fails for a non-AI reason
        """

    def validate_context(self, context: StageContext) -> None:
        """Check that all dependency results are present.

        Raises:
            StageError: If dependencies are missing
        """
        missing = [dep.value for dep in self.depends_on if not context.has_result(dep)]
        if missing:
            raise StageError(self.name.value, f"Missing dependencies: {missing}")


class StageRegistry:
    """Maps stage names to processors.

    Example:
        registry = StageRegistry()
        registry.register(TranscriptionStage())
        stage = registry.get(StageName.TRANSCRIPTION)
    """

    def __init__(self) -> None:
        self._stages: dict[StageName, BaseStage] = {}

    def register(self, stage: BaseStage) -> None:
        """Register a stage.

        Raises:
            ValueError: If stage with same name already registered
        """
        if stage.name in self._stages:
            raise ValueError(f"Stage '{stage.name.value}' already registered")
        self._stages[stage.name] = stage

    def get(self, name: StageName) -> BaseStage:
        """Get stage by name.

        Raises:
            KeyError: If stage not found
        """
        if name not in self._stages:
            raise KeyError(
                f"Stage '{name.value}' not found. "
                f"Available: {[s.value for s in self._stages]}"
            )
        return self._stages[name]

    def __contains__(self, name: StageName) -> bool:
        return name in self._stages

    def __len__(self) -> int:
        return len(self._stages)
