"""
Judge response parser.

Extracts a (score, rationale) verdict from free-form judge model output.
Judges are prompted for a tagged format but drift between several others,
so parsing tries an ordered chain of strategies and stops at the first one
that yields both a number and a non-empty rationale:

1. Tagged markup: <score>N</score> <details>...</details>
2. Legacy labels: SCORE: N / DETAILS: ...
3. Embedded JSON in one of four accepted shapes
4. Loose key/value patterns anywhere in the text

A verdict whose score falls outside [MIN_SCORE, MAX_SCORE] is downgraded to
"could not be determined" (score=None).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 10
EXCERPT_LENGTH = 500
PARSE_FAILURE_PREFIX = "Judge response parsing failed"

_NUMBER = r"(\d+(?:\.\d+)?)"

_TAGGED_SCORE = re.compile(rf"<score>\s*{_NUMBER}\s*</score>", re.IGNORECASE)
_TAGGED_DETAILS = re.compile(r"<details>(.*?)</details>", re.IGNORECASE | re.DOTALL)

_LABELED_SCORE = re.compile(rf"\bSCORE:\s*{_NUMBER}", re.IGNORECASE)
_LABELED_DETAILS = re.compile(r"DETAILS:\s*(.*?)(?:\n\s*\n|\Z)", re.IGNORECASE | re.DOTALL)

_JSON_SPAN = re.compile(r"[\[{][\s\S]*[\]}]")

_LOOSE_SCORE = re.compile(
    rf"(?:similarity_score|score)[\"']?\s*[:=]?\s*{_NUMBER}", re.IGNORECASE
)
_LOOSE_DETAILS = re.compile(
    r"(?:details|explanation)[\"']?\s*[:=]?\s*([\"'])(.*?)\1", re.IGNORECASE | re.DOTALL
)


@dataclass
class JudgeVerdict:
    """Score and rationale extracted from a judge response.

    ``score`` is None when no valid score could be determined.
    """

    score: float | None
    rationale: str
    strategy: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.score is not None


def _to_number(raw: str) -> float:
    value = float(raw)
    return int(value) if value.is_integer() else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _excerpt(text: str) -> str:
    excerpt = text[:EXCERPT_LENGTH]
    if len(text) > EXCERPT_LENGTH:
        excerpt += "..."
    return excerpt


def _parse_tagged(text: str) -> tuple[float, str] | None:
    score_match = _TAGGED_SCORE.search(text)
    details_match = _TAGGED_DETAILS.search(text)
    if score_match and details_match:
        return _to_number(score_match.group(1)), details_match.group(1).strip()
    return None


def _parse_labeled(text: str) -> tuple[float, str] | None:
    score_match = _LABELED_SCORE.search(text)
    if not score_match:
        return None
    details_match = _LABELED_DETAILS.search(text, score_match.end())
    if not details_match:
        return None
    return _to_number(score_match.group(1)), details_match.group(1).strip()


def _score_details(obj: Any, score_key: str, details_key: str) -> tuple[float, str] | None:
    if not isinstance(obj, dict):
        return None
    score = obj.get(score_key)
    details = obj.get(details_key)
    if _is_number(score) and isinstance(details, str):
        return score, details.strip()
    return None


def _parse_embedded_json(text: str) -> tuple[float, str] | None:
    span = _JSON_SPAN.search(text)
    if not span:
        return None
    try:
        data = json.loads(span.group(0))
    except json.JSONDecodeError as e:
        logger.debug(f"Embedded JSON in judge response did not parse: {e}")
        return None

    if isinstance(data, dict):
        return (
            _score_details(data, "score", "details")
            or _score_details(data, "similarity_score", "explanation")
            or _score_details(data.get("evaluation"), "score", "details")
        )
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return _score_details(data[0].get("evaluation"), "score", "details")
    return None


def _parse_loose(text: str) -> tuple[float, str] | None:
    score_match = _LOOSE_SCORE.search(text)
    details_match = _LOOSE_DETAILS.search(text)
    if score_match and details_match:
        return _to_number(score_match.group(1)), details_match.group(2).strip()
    return None


STRATEGIES: list[tuple[str, Callable[[str], tuple[float, str] | None]]] = [
    ("tagged", _parse_tagged),
    ("labeled", _parse_labeled),
    ("json", _parse_embedded_json),
    ("loose", _parse_loose),
]


def parse_judge_response(text: str | None) -> JudgeVerdict:
    """
    Extract a score and rationale from a judge model response.

    Args:
        text: Raw judge response

    Returns:
        JudgeVerdict; ``score`` is None when nothing matched or the matched
        score was out of range, with a rationale quoting the raw response.
    """
    text = text or ""

    for name, strategy in STRATEGIES:
        parsed = strategy(text)
        if parsed is None:
            continue
        score, rationale = parsed
        if not rationale:
            continue

        if not MIN_SCORE <= score <= MAX_SCORE:
            logger.warning(f"Judge score {score} out of range, marking as undetermined")
            return JudgeVerdict(
                score=None,
                rationale=(
                    f"Invalid score ({score}) out of range {MIN_SCORE}-{MAX_SCORE}.\n"
                    f"Judge Evaluation:\n{_excerpt(text)}"
                ),
                strategy=name,
            )

        logger.debug(f"Parsed judge response with {name} strategy - score {score}")
        return JudgeVerdict(score=score, rationale=rationale, strategy=name)

    logger.warning("All judge response parsing strategies failed")
    return JudgeVerdict(
        score=None,
        rationale=f"{PARSE_FAILURE_PREFIX}\nJudge Evaluation:\n{_excerpt(text)}",
    )
