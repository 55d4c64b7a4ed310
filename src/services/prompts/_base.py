"""Base utilities for prompts module.

Contains the shared helpers for turning loosely formatted model output into
JSON objects.
"""

import json
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def strip_markdown_code_blocks(text: str) -> str:
    """Strip markdown code blocks from AI response text.

    Args:
        text: Raw text that may contain markdown code blocks

    Returns:
        Cleaned text with markdown code blocks removed
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]  # Remove ```json
    elif text.startswith("```"):
        text = text[3:]  # Remove ```
    if text.endswith("```"):
        text = text[:-3]  # Remove ```
    return text.strip()


def extract_json_object(text: str) -> Optional[str]:
    """Find the first balanced {...} span in text.

    Braces inside string literals are ignored. Returns None when no balanced
    object exists.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def _loads_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def parse_json_response(text: Optional[str]) -> dict:
    """Parse a model response that should contain one JSON object.

    Tries the fence-stripped text first, then the first balanced object in it.
    Returns an empty dict instead of raising when nothing parses.
    """
    if not text:
        return {}

    cleaned = strip_markdown_code_blocks(text)
    parsed = _loads_object(cleaned)
    if parsed is not None:
        return parsed

    candidate = extract_json_object(cleaned)
    if candidate is not None:
        parsed = _loads_object(candidate)
        if parsed is not None:
            return parsed

    logger.warning(f"Could not parse JSON from AI response ({len(text)} chars)")
    logger.debug(f"Raw response: {text[:500]}")
    return {}
