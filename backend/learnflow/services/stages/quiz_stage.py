"""
Quiz generation stage.
"""

import logging

from pydantic import ValidationError

from learnflow.exceptions import StageError
from learnflow.models.schemas import AITaskType, QuizQuestion, QuizQuestionType, StageName
from learnflow.services.stages.base import StageContext
from learnflow.services.stages.generation_stage import GenerationStage
from learnflow.utils.json_utils import extract_json

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 10


def parse_quiz(text: str) -> list[QuizQuestion]:
    """
    Parse quiz questions from a model response.

    Accepts a bare JSON array or an object with a "questions" array.
    Multiple-choice questions whose answer is not among the options
    are dropped along with otherwise invalid entries.
    """
    data = extract_json(text)
    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        return []

    questions: list[QuizQuestion] = []
    for item in data:
        try:
            question = QuizQuestion.model_validate(item)
        except ValidationError as e:
            logger.warning(f"Skipping invalid quiz question: {e.errors()[0]['msg']}")
            continue

        if question.type == QuizQuestionType.MCQ and question.correct_answer not in question.options:
            logger.warning(f"Skipping MCQ with answer outside options: {question.question[:50]}")
            continue

        questions.append(question)
    return questions


class QuizStage(GenerationStage):
    """Generate a quiz from the transcript.

    Output:
        {"questions": [QuizQuestion...], "count": int, "total_points": int, "model": str}
    """

    name = StageName.QUIZ_GENERATION
    task_type = AITaskType.QUIZ_GENERATION

    def __init__(self, *args, count: int = DEFAULT_QUESTION_COUNT, **kwargs):
        super().__init__(*args, **kwargs)
        self.count = count

    async def execute(self, context: StageContext) -> dict:
        content = self.transcript(context)
        await context.report_progress(self.name, 30, "Generating quiz questions...")

        outcome = await self.generate(
            context,
            self.task_type,
            "user",
            {"title": context.title, "content": content, "count": self.count},
            temperature=0.5,
        )

        questions = parse_quiz(outcome.result)
        if not questions:
            raise StageError(self.name.value, "Model response contained no valid quiz questions")

        logger.info(f"Generated {len(questions)} quiz questions for {context.content_id}")
        return {
            "questions": [q.model_dump(mode="json") for q in questions],
            "count": len(questions),
            "total_points": sum(q.points for q in questions),
            "model": outcome.model_used,
        }
