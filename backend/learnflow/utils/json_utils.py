"""
JSON extraction and parsing utilities for LLM responses.

Models often wrap JSON in markdown code fences or surround it with
prose. extract_json() finds the first decodable JSON value of the
requested type; parse_json_safe() parses with a default on failure.

Example:
    from learnflow.utils.json_utils import extract_json, parse_json_safe

    data = extract_json('```json\\n{"flashcards": []}\\n```', json_type="object")
    cards = parse_json_safe(raw, default=[])
"""

import json
import logging
import re
from typing import Any, Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_decoder = json.JSONDecoder()


def extract_json(
    text: str,
    json_type: Literal["object", "array", "auto"] = "auto",
) -> Any | None:
    """
    Extract and decode the first JSON value from an LLM response.

    Args:
        text: Raw LLM response
        json_type: "object" for {...}, "array" for [...], "auto" for either

    Returns:
        Decoded value, or None if nothing decodable was found

    Example:
        >>> extract_json('Here you go: [1, 2, 3] done', json_type="array")
        [1, 2, 3]
    """
    if not text:
        return None

    cleaned = text.strip()
    fence = _CODE_FENCE_RE.search(cleaned)
    if fence:
        cleaned = fence.group(1).strip()

    openers = {"object": "{", "array": "[", "auto": "{["}[json_type]

    for index, char in enumerate(cleaned):
        if char not in openers:
            continue
        try:
            value, _ = _decoder.raw_decode(cleaned, index)
        except json.JSONDecodeError:
            continue
        return value

    return None


def parse_json_safe(
    json_str: str,
    default: T = None,  # type: ignore
    log_errors: bool = True,
) -> Any | T:
    """
    Parse JSON string with error handling.

    Example:
        >>> parse_json_safe('invalid', default=[], log_errors=False)
        []
    """
    if not json_str or not json_str.strip():
        if log_errors:
            logger.warning("Empty JSON string provided")
        return default

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        if log_errors:
            preview = json_str[:200] + "..." if len(json_str) > 200 else json_str
            logger.warning(f"Failed to parse JSON: {e}. Input: {preview}")
        return default
