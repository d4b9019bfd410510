"""
Summarization stage: quick, brief and detailed summaries.
"""

import logging

from learnflow.models.schemas import AITaskType, StageName
from learnflow.services.stages.base import StageContext
from learnflow.services.stages.generation_stage import GenerationStage
from learnflow.utils.text_chunks import count_words

logger = logging.getLogger(__name__)

SUMMARY_LEVELS: list[tuple[str, AITaskType]] = [
    ("quick", AITaskType.SUMMARY_QUICK),
    ("brief", AITaskType.SUMMARY_BRIEF),
    ("detailed", AITaskType.SUMMARY_DETAILED),
]


class SummarizationStage(GenerationStage):
    """Generate one summary per level.

    Output:
        {"summaries": {level: {"text", "word_count", "model"}}}
    """

    name = StageName.SUMMARIZATION
    task_type = AITaskType.SUMMARY_BRIEF

    async def execute(self, context: StageContext) -> dict:
        content = self.transcript(context)
        summaries: dict[str, dict] = {}

        for i, (level, task_type) in enumerate(SUMMARY_LEVELS):
            await context.report_progress(self.name, 20 + i * 25, f"Generating {level} summary...")

            outcome = await self.generate(
                context,
                task_type,
                level,
                {"title": context.title, "content": content},
            )
            summaries[level] = {
                "text": outcome.result,
                "word_count": count_words(outcome.result),
                "model": outcome.model_used,
            }
            logger.info(
                f"{level} summary for {context.content_id}: "
                f"{summaries[level]['word_count']} words ({outcome.model_used})"
            )

        return {"summaries": summaries}
