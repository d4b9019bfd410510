"""
Transcription stage: validate and normalize the supplied transcript.

Text arrives already extracted (document parsing and speech-to-text
happen before upload). This stage makes it the canonical transcript
every later stage reads.
"""

import logging
import re

from learnflow.exceptions import StageError
from learnflow.models.schemas import StageName
from learnflow.services.stages.base import BaseStage, StageContext
from learnflow.utils.text_chunks import count_words

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_WORDS = 3

_SPACES_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def normalize_transcript(text: str) -> str:
    """
    Normalize whitespace while keeping paragraph breaks.

    Example:
        >>> normalize_transcript("Hello   world\\r\\n\\n\\n\\nBye ")
        'Hello world\\n\\nBye'
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_SPACES_RE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


class TranscriptionStage(BaseStage):
    """Produce the canonical transcript.

    Output:
        {"text": str, "word_count": int, "char_count": int}
    """

    name = StageName.TRANSCRIPTION

    def __init__(self, min_words: int = MIN_TRANSCRIPT_WORDS):
        self.min_words = min_words

    async def execute(self, context: StageContext) -> dict:
        text = normalize_transcript(context.source_text or "")
        words = count_words(text)

        if words < self.min_words:
            raise StageError(
                self.name.value,
                f"Transcript too short: {words} words (minimum {self.min_words})",
            )

        await context.report_progress(self.name, 50, "Transcript normalized")
        logger.info(f"Transcript for {context.content_id}: {words} words, {len(text)} chars")

        return {"text": text, "word_count": words, "char_count": len(text)}
