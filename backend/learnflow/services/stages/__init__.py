"""
Processing stages for learning content.

Usage:
    from learnflow.services.stages import create_default_stages

    registry = create_default_stages(ai_client, executor, settings)
    stage = registry.get(StageName.SUMMARIZATION)
    result = await stage.execute(StageContext.from_record(record))

Adding new stages:
    1. Subclass BaseStage (or GenerationStage for AI-backed stages)
    2. Register it in create_default_stages()
"""

from learnflow.config import Settings
from learnflow.services.ai_clients import BaseAIClient
from learnflow.services.ai_executor import AIExecutor
from learnflow.services.stages.base import BaseStage, StageContext, StageRegistry
from learnflow.services.stages.flashcard_stage import FlashcardStage
from learnflow.services.stages.generation_stage import GenerationStage
from learnflow.services.stages.quiz_stage import QuizStage
from learnflow.services.stages.summarization_stage import SummarizationStage
from learnflow.services.stages.transcription_stage import TranscriptionStage
from learnflow.services.stages.vectorization_stage import (
    InMemoryVectorIndex,
    VectorIndex,
    VectorizationStage,
)

__all__ = [
    # Base classes
    "BaseStage",
    "GenerationStage",
    "StageContext",
    "StageRegistry",
    # Stage implementations
    "TranscriptionStage",
    "VectorizationStage",
    "SummarizationStage",
    "FlashcardStage",
    "QuizStage",
    # Vector index
    "VectorIndex",
    "InMemoryVectorIndex",
    # Factory function
    "create_default_stages",
]


def create_default_stages(
    ai_client: BaseAIClient,
    executor: AIExecutor,
    settings: Settings,
    vector_index: VectorIndex | None = None,
    registry: StageRegistry | None = None,
) -> StageRegistry:
    """Create and register all five processing stages.

    Args:
        ai_client: Provider client for generation stages
        executor: Executor with retries and model fallback
        settings: Application settings
        vector_index: Destination for transcript chunks (in-memory if None)
        registry: Optional registry to use (creates new if None)

    Returns:
        Registry with all stages registered
    """
    if registry is None:
        registry = StageRegistry()

    registry.register(TranscriptionStage())
    registry.register(VectorizationStage(vector_index or InMemoryVectorIndex()))
    registry.register(SummarizationStage(ai_client, executor, settings))
    registry.register(FlashcardStage(ai_client, executor, settings))
    registry.register(QuizStage(ai_client, executor, settings))

    return registry
