"""
Resilient JSON extraction from raw LLM completions.

Handles the output quirks seen from generation models:
- Leading byte-order marks and surrounding whitespace
- Markdown code fences (```json ... ```)
- Several top-level objects separated by commas instead of an array

Parse failure is returned as a result, never raised.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

BOM = "\ufeff"
FENCE = "```"

# "}" followed by optional whitespace, a comma, optional whitespace, "{"
_OBJECT_SEQUENCE = re.compile(r"}\s*,\s*{")


@dataclass
class ExtractionResult:
    """Result of extracting JSON from an LLM response."""

    success: bool
    value: Any = None
    raw_text: str | None = None
    error: str | None = None


def strip_markdown_fence(text: str) -> str:
    """Drop the opening and closing fence lines of a fenced block.

    Only applies when the text starts with a fence and its last line is a
    bare closing fence; anything else is returned unchanged.
    """
    if not text.startswith(FENCE):
        return text

    lines = text.split("\n")
    if len(lines) > 2 and lines[-1].strip() == FENCE:
        logger.debug("Stripped markdown fence from LLM response")
        return "\n".join(lines[1:-1]).strip()
    return text


def wrap_object_sequence(text: str) -> str:
    """Wrap ``{...},{...}`` in brackets so it parses as an array."""
    if text.startswith("{") and not text.startswith("[") and _OBJECT_SEQUENCE.search(text):
        logger.debug("Detected comma-separated JSON objects, wrapping in array")
        return f"[{text}]"
    return text


def prepare_text(text: str) -> str:
    """Apply every pre-parse normalisation step in order."""
    prepared = text.strip()
    if prepared.startswith(BOM):
        prepared = prepared[len(BOM):]
    prepared = strip_markdown_fence(prepared)
    return wrap_object_sequence(prepared)


def extract_json(text: str) -> ExtractionResult:
    """
    Parse an LLM completion into a JSON value.

    Args:
        text: Raw completion text

    Returns:
        ExtractionResult with the parsed value on success. On failure the
        original, untouched text is returned in ``raw_text``.
    """
    if text is None:
        return ExtractionResult(success=False, raw_text=text, error="Empty response")

    try:
        value = json.loads(prepare_text(text))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Failed to parse LLM JSON response: {e}")
        logger.debug(f"Content that failed to parse (first 200 chars): {text[:200]!r}")
        return ExtractionResult(success=False, raw_text=text, error=str(e))

    logger.debug(f"Parsed LLM JSON response, type: {type(value).__name__}")
    return ExtractionResult(success=True, value=value)
