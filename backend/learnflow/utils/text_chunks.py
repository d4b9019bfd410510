"""
Overlapping text chunking for vectorization.

Chunks are cut on word boundaries; consecutive chunks share roughly
`overlap` characters so that a sentence split across a boundary is
still retrievable from either side.
"""

from dataclasses import dataclass

CHUNK_SIZE = 500  # characters
CHUNK_OVERLAP = 100  # characters


@dataclass
class TextChunk:
    """
    One chunk of a longer text.

    Attributes:
        index: Position of the chunk (0-based)
        text: Chunk text
        start: Offset of the first word in the normalized text
    """

    index: int
    text: str
    start: int

    @property
    def char_count(self) -> int:
        return len(self.text)


def count_words(text: str) -> int:
    """
    Count words in text.

    Example:
        >>> count_words("Hello world")
        2
    """
    return len(text.split())


def split_with_overlap(
    text: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[TextChunk]:
    """
    Split text into word-aligned chunks of at most chunk_size characters.

    A single word longer than chunk_size becomes its own chunk.

    Args:
        text: Text to split (whitespace is normalized)
        chunk_size: Maximum characters per chunk
        overlap: Characters repeated from the end of the previous chunk

    Returns:
        Chunks in order (empty list for blank text)

    Raises:
        ValueError: If overlap is not smaller than chunk_size
    """
    if overlap >= chunk_size:
        raise ValueError(f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})")

    words = text.split()
    if not words:
        return []

    offsets: list[int] = []
    position = 0
    for word in words:
        offsets.append(position)
        position += len(word) + 1

    chunks: list[TextChunk] = []
    first = 0

    while first < len(words):
        last = first
        length = len(words[first])
        while last + 1 < len(words) and length + 1 + len(words[last + 1]) <= chunk_size:
            last += 1
            length += 1 + len(words[last])

        chunks.append(
            TextChunk(
                index=len(chunks),
                text=" ".join(words[first : last + 1]),
                start=offsets[first],
            )
        )

        if last + 1 >= len(words):
            break

        # Step back over trailing words that fit into the overlap window.
        next_first = last + 1
        carried = 0
        while next_first - 1 > first and carried + len(words[next_first - 1]) + 1 <= overlap:
            next_first -= 1
            carried += len(words[next_first]) + 1
        first = next_first

    return chunks
