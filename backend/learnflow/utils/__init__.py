"""
Shared utilities for stage processors.

Modules:
    json_utils: JSON extraction and parsing from LLM responses
    text_chunks: Overlapping text chunking for vectorization
"""

from learnflow.utils.json_utils import extract_json, parse_json_safe
from learnflow.utils.text_chunks import TextChunk, count_words, split_with_overlap

__all__ = [
    # json_utils
    "extract_json",
    "parse_json_safe",
    # text_chunks
    "TextChunk",
    "count_words",
    "split_with_overlap",
]
