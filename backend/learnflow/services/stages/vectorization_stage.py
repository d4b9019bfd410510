"""
Vectorization stage: chunk the transcript and hand chunks to a vector index.

Embedding and storage mechanics sit behind the VectorIndex protocol;
the in-memory index keeps chunks per content item for tests and
single-process deployments.
"""

import logging
from typing import Protocol

from learnflow.models.schemas import StageName
from learnflow.services.stages.base import BaseStage, StageContext
from learnflow.utils.text_chunks import CHUNK_OVERLAP, CHUNK_SIZE, TextChunk, split_with_overlap

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Destination for transcript chunks."""

    async def add_chunks(self, content_id: str, user_id: str, chunks: list[TextChunk]) -> int:
        """Index chunks for a content item, replacing earlier ones. Returns count stored."""
        ...

    async def delete_content(self, content_id: str) -> None:
        """Remove all chunks of a content item."""
        ...


class InMemoryVectorIndex:
    """Keeps chunks in a dict keyed by content id."""

    def __init__(self):
        self.chunks: dict[str, list[TextChunk]] = {}
        self.owners: dict[str, str] = {}

    async def add_chunks(self, content_id: str, user_id: str, chunks: list[TextChunk]) -> int:
        self.chunks[content_id] = list(chunks)
        self.owners[content_id] = user_id
        return len(chunks)

    async def delete_content(self, content_id: str) -> None:
        self.chunks.pop(content_id, None)
        self.owners.pop(content_id, None)


class VectorizationStage(BaseStage):
    """Split the transcript into overlapping chunks and index them.

    Input (from context):
        - transcription: {"text": ...}

    Output:
        {"chunk_count": int, "chunk_size": int, "chunk_overlap": int}
    """

    name = StageName.VECTORIZATION
    depends_on = [StageName.TRANSCRIPTION]

    def __init__(
        self,
        index: VectorIndex,
        chunk_size: int = CHUNK_SIZE,
        chunk_overlap: int = CHUNK_OVERLAP,
    ):
        self.index = index
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    async def execute(self, context: StageContext) -> dict:
        self.validate_context(context)
        text = context.get_result(StageName.TRANSCRIPTION)["text"]

        chunks = split_with_overlap(text, self.chunk_size, self.chunk_overlap)
        await context.report_progress(self.name, 30, f"Split into {len(chunks)} chunks")

        stored = await self.index.add_chunks(context.content_id, context.user_id, chunks)
        await context.report_progress(self.name, 90, "Stored in vector index")

        logger.info(f"Vectorized {context.content_id}: {stored} chunks")
        return {
            "chunk_count": stored,
            "chunk_size": self.chunk_size,
            "chunk_overlap": self.chunk_overlap,
        }
