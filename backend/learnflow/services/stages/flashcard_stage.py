"""
Flashcard generation stage.
"""

import logging

from pydantic import ValidationError

from learnflow.exceptions import StageError
from learnflow.models.schemas import AITaskType, Flashcard, StageName
from learnflow.services.stages.base import StageContext
from learnflow.services.stages.generation_stage import GenerationStage
from learnflow.utils.json_utils import extract_json

logger = logging.getLogger(__name__)

DEFAULT_FLASHCARD_COUNT = 20


def parse_flashcards(text: str) -> list[Flashcard]:
    """
    Parse flashcards from a model response.

    Accepts a bare JSON array or an object with a "flashcards" array.
    Invalid entries are dropped.
    """
    data = extract_json(text)
    if isinstance(data, dict):
        data = data.get("flashcards", [])
    if not isinstance(data, list):
        return []

    cards: list[Flashcard] = []
    for item in data:
        try:
            cards.append(Flashcard.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid flashcard: {e.errors()[0]['msg']}")
    return cards


class FlashcardStage(GenerationStage):
    """Generate study flashcards from the transcript.

    Output:
        {"flashcards": [Flashcard...], "count": int, "model": str}
    """

    name = StageName.FLASHCARD_GENERATION
    task_type = AITaskType.FLASHCARD_GENERATION

    def __init__(self, *args, count: int = DEFAULT_FLASHCARD_COUNT, **kwargs):
        super().__init__(*args, **kwargs)
        self.count = count

    async def execute(self, context: StageContext) -> dict:
        content = self.transcript(context)
        await context.report_progress(self.name, 30, "Analyzing content...")

        outcome = await self.generate(
            context,
            self.task_type,
            "user",
            {"title": context.title, "content": content, "count": self.count},
            temperature=0.5,
        )

        cards = parse_flashcards(outcome.result)
        if not cards:
            raise StageError(self.name.value, "Model response contained no valid flashcards")

        await context.report_progress(self.name, 80, f"Generated {len(cards)} flashcards")
        logger.info(f"Generated {len(cards)} flashcards for {context.content_id}")

        return {
            "flashcards": [card.model_dump(mode="json") for card in cards],
            "count": len(cards),
            "model": outcome.model_used,
        }
