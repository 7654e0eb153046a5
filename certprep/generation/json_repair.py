"""
Tolerant JSON parsing for model output.

Models often wrap JSON in code fences, add prose around the array, or leave
small syntax errors. ``parse_question_array`` applies an ordered chain of
repairs, from least to most invasive, and stops at the first one that
parses:

1. Strip code fences
2. Extract the outermost ``[...]`` span
3. Strict parse
4. Remove trailing commas
5. Insert missing commas between adjacent objects/arrays
6. Normalize single quotes on keys and simple values

Each repair is a plain function so it can be tested on its own.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from loguru import logger

from certprep.core.exceptions import MalformedGeneratedContent

_FENCE_OPEN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_MISSING_COMMA_OBJECTS = re.compile(r"}(\s*{)")
_MISSING_COMMA_ARRAYS = re.compile(r"](\s*\[)")
_SINGLE_QUOTED_KEY = re.compile(r"'([^']*)':")
_SINGLE_QUOTED_VALUE = re.compile(r":\s*'([^']*?)'")


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def extract_array(text: str) -> str:
    """Outermost ``[...]`` span, or the text unchanged when there is none."""
    first = text.find("[")
    last = text.rfind("]")
    if first != -1 and last > first:
        return text[first : last + 1]
    return text


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def insert_missing_commas(text: str) -> str:
    text = _MISSING_COMMA_OBJECTS.sub(r"},\1", text)
    return _MISSING_COMMA_ARRAYS.sub(r"],\1", text)


def normalize_single_quotes(text: str) -> str:
    """Double-quote single-quoted keys and simple values (apostrophes in prose are left alone)."""
    text = _SINGLE_QUOTED_KEY.sub(r'"\1":', text)
    return _SINGLE_QUOTED_VALUE.sub(r': "\1"', text)


# Cumulative repairs tried after the strict parse fails
REPAIRS: list[tuple[str, Callable[[str], str]]] = [
    ("trailing commas", remove_trailing_commas),
    ("missing commas", insert_missing_commas),
    ("single quotes", normalize_single_quotes),
]


def parse_json_lenient(text: str) -> Any:
    """
    Parse model output into a JSON value.

    Raises:
        MalformedGeneratedContent: When no repair produces valid JSON
    """
    candidate = extract_array(strip_code_fences(text))

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        last_error = exc
        logger.debug("Initial parse failed: {}", exc)

    for name, repair in REPAIRS:
        candidate = repair(candidate)
        try:
            value = json.loads(candidate)
            logger.debug("Parsed generated JSON after fixing {}", name)
            return value
        except json.JSONDecodeError as exc:
            last_error = exc

    raise MalformedGeneratedContent(f"Unable to repair JSON: {last_error}", raw=text)


def parse_question_array(text: str) -> list[dict[str, Any]]:
    """Parse model output that must be a JSON array of question objects."""
    value = parse_json_lenient(text)
    if isinstance(value, dict):
        # Some responses wrap the array: {"questions": [...]}
        value = value.get("questions", [value])
    if not isinstance(value, list):
        raise MalformedGeneratedContent("Generated content is not a JSON array", raw=text)
    return [item for item in value if isinstance(item, dict)]
