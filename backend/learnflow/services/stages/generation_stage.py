"""
Shared machinery for stages that generate content with an AI model.

A generation stage renders prompt templates (config/prompts/<stage>/)
for whichever model the executor is currently trying, so model-specific
prompt variants apply per attempt.
"""

import logging

from learnflow.config import Settings, load_prompt
from learnflow.exceptions import StageError
from learnflow.models.schemas import AITaskType, StageName
from learnflow.services.ai_clients import BaseAIClient
from learnflow.services.ai_executor import AIExecutor, OperationOutcome
from learnflow.services.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 8000


def render_prompt(template: str, **values) -> str:
    """Substitute {placeholders} without touching other braces (JSON examples)."""
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template


class GenerationStage(BaseStage):
    """Base for summarization, flashcard and quiz stages."""

    depends_on = [StageName.TRANSCRIPTION]

    def __init__(self, ai_client: BaseAIClient, executor: AIExecutor, settings: Settings):
        """
        Args:
            ai_client: Provider client used for generation
            executor: Executor providing retries and model fallback
            settings: Application settings (prompt locations)
        """
        self.ai_client = ai_client
        self.executor = executor
        self.settings = settings

    def transcript(self, context: StageContext) -> str:
        """Transcript text, truncated to what fits in one prompt."""
        self.validate_context(context)
        return context.get_result(StageName.TRANSCRIPTION)["text"][:MAX_CONTENT_CHARS]

    async def generate(
        self,
        context: StageContext,
        task_type: AITaskType,
        user_component: str,
        values: dict,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> OperationOutcome:
        """
        Generate text for a task type through the executor.

        Args:
            context: Stage context (requests are logged for its user and content)
            task_type: Task type selecting the model chain
            user_component: Prompt component for the user message
            values: Placeholder values for the templates
            temperature: Sampling temperature
            max_tokens: Output token cap

        Returns:
            OperationOutcome whose result is the generated text

        Raises:
            StageError: If the model returned no text
        """
        stage = self.name.value

        # Generic templates must exist; model-specific ones are optional.
        load_prompt(stage, "system", settings=self.settings)
        load_prompt(stage, user_component, settings=self.settings)

        async def operation(model: str) -> str:
            system = render_prompt(load_prompt(stage, "system", model, self.settings), **values)
            prompt = render_prompt(load_prompt(stage, user_component, model, self.settings), **values)
            text, _ = await self.ai_client.generate(
                prompt,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                system=system,
            )
            return text.strip()

        outcome = await self.executor.execute_with_fallback(
            operation,
            task_type,
            user_id=context.user_id,
            content_id=context.content_id,
        )
        if not outcome.result:
            raise StageError(stage, f"Empty {user_component} response from {outcome.model_used}")

        logger.debug(
            f"[{stage}] {user_component}: {len(outcome.result)} chars from {outcome.model_used}"
        )
        return outcome
