"""
Rule-based scoring of generated dashboards.

A deterministic companion to the judge score. Five criteria, each in [0, 1]:

- parameter_completeness: weather parameters named in the user request that
  appear somewhere in the generated document
- structure_quality: whether the document has an uploadable dashboard shape
- layer_count: number of weather layers (3+ is full marks)
- cost_efficiency: generation cost, when a token price is configured
- performance: generation latency

The overall score is the weighted mean of the criteria that could be
computed. Nothing here calls a model or touches storage.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from .schema_repair import repair_document
from .vocabulary import BACKGROUND_KIND

logger = logging.getLogger(__name__)

WEATHER_PARAMETERS = (
    # Basic
    "temperature", "temp", "precipitation", "precip", "rain", "snow",
    "wind", "humidity", "pressure", "visibility", "clouds",
    # Aviation
    "METAR", "TAF", "turbulence", "icing", "convection",
    # Marine
    "wave", "tide", "current", "sea temperature",
    # Agriculture
    "soil moisture", "evapotranspiration", "growing degree days",
    # Energy
    "solar radiation", "UV index", "wind power",
    # Severe weather
    "lightning", "hail", "tornado", "cyclone", "frost",
)

# Canonical parameter -> alternative spellings, in matching order
PARAMETER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "temperature": ("temp", "thermal", "heat"),
    "precipitation": ("precip", "rainfall", "snowfall"),
    "wind": ("wind speed", "wind direction", "gusts"),
    "humidity": ("moisture", "relative humidity"),
    "pressure": ("atmospheric pressure", "barometric pressure"),
    "visibility": ("vis", "visual range"),
    "clouds": ("cloud cover", "cloudiness", "ceiling"),
}

# Reported in upper case
UPPERCASE_PARAMETERS = frozenset(["METAR", "TAF"])

REQUIRED_FIELDS = ("layers", "region")
DASHBOARD_ROOT_KEYS = ("metx_dashboard", "aviation_dashboard", "config", "layers")
LAYER_MARKER_KEYS = ("kind", "type", "parameter_unit", "layer")

CRITERIA_WEIGHTS = {
    "parameter_completeness": 0.3,
    "structure_quality": 0.25,
    "layer_count": 0.2,
    "cost_efficiency": 0.15,
    "performance": 0.1,
}

# (upper bound, score, rationale), checked in order
COST_BANDS = (
    (0.01, 1.0, "Perfect cost efficiency - under 1 cent"),
    (0.05, 0.9, "Excellent cost efficiency"),
    (0.10, 0.8, "Good cost efficiency within target"),
    (0.15, 0.6, "Moderate cost, slightly above target"),
    (0.20, 0.4, "High cost approaching limit"),
)
COST_FALLBACK = (0.2, "Very high cost exceeding recommended limits")

LATENCY_BANDS = (
    (2000, 1.0, "Excellent response time"),
    (5000, 0.8, "Good response time"),
    (15000, 0.6, "Acceptable response time"),
    (30000, 0.4, "Slow response time"),
    (60000, 0.2, "Very slow response time"),
)
LATENCY_FALLBACK = (0.1, "Unacceptable response time exceeding 60s target")


@dataclass
class CriterionScore:
    """Score and explanation for one criterion."""

    score: float
    rationale: str
    found: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass
class RuleBasedEvaluation:
    """Weighted combination of every computed criterion."""

    overall_score: float
    rationale: str
    criteria: dict[str, CriterionScore]
    layer_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Parameter completeness
# ---------------------------------------------------------------------------


def extract_weather_parameters(text: str) -> list[str]:
    """Weather parameters mentioned in free text, canonical names first."""
    lower = text.lower()
    found: list[str] = []

    for canonical, synonyms in PARAMETER_SYNONYMS.items():
        if any(variant in lower for variant in (canonical, *synonyms)):
            found.append(canonical)

    covered = set(PARAMETER_SYNONYMS)
    for synonyms in PARAMETER_SYNONYMS.values():
        covered.update(synonyms)

    for parameter in WEATHER_PARAMETERS:
        if parameter in covered or parameter.lower() not in lower:
            continue
        found.append(parameter if parameter in UPPERCASE_PARAMETERS else parameter.lower())

    return found


def find_parameters_in_json(value: Any, parameters: list[str]) -> list[str]:
    """Subset of ``parameters`` occurring anywhere in the serialized value."""
    text = json.dumps(value, ensure_ascii=False).lower()
    return [p for p in parameters if p.lower() in text]


def evaluate_parameter_completeness(user_request: str, generated: Any) -> CriterionScore:
    requested = extract_weather_parameters(user_request)
    found = find_parameters_in_json(generated, requested)
    missing = [p for p in requested if p not in found]
    score = len(found) / len(requested) if requested else 1.0

    if score >= 0.9:
        rationale = "All requested weather parameters found in generated JSON"
    elif score >= 0.7:
        rationale = f"Most requested parameters found. Missing: {', '.join(missing)}"
    elif score >= 0.5:
        rationale = f"Some requested parameters found. Missing: {', '.join(missing)}"
    else:
        rationale = f"Missing requested parameters: {', '.join(missing)}"

    return CriterionScore(score=score, rationale=rationale, found=found, missing=missing)


# ---------------------------------------------------------------------------
# Structure quality
# ---------------------------------------------------------------------------


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def has_dashboard_structure(document: Any) -> bool:
    """True for any shape the platform upload accepts."""
    if isinstance(document, list):
        return len(document) > 0 and all(
            isinstance(item, dict) and any(item.get(key) for key in LAYER_MARKER_KEYS)
            for item in document
        )
    if not isinstance(document, dict):
        return False

    if any(document.get(key) for key in DASHBOARD_ROOT_KEYS):
        return True

    tabs = document.get("tabs")
    if not _non_empty_list(tabs):
        return False
    return any(
        isinstance(tab, dict)
        and isinstance(tab.get("maps"), list)
        and any(isinstance(m, dict) and _non_empty_list(m.get("layers")) for m in tab["maps"])
        for tab in tabs
    )


def collect_keys(document: Any) -> set[str]:
    """Keys of a dict and of every nested dict. Lists are not descended into."""
    keys: set[str] = set()
    if not isinstance(document, dict):
        return keys
    for key, value in document.items():
        keys.add(key)
        if isinstance(value, dict):
            keys.update(collect_keys(value))
    return keys


def evaluate_structure_quality(generated: Any) -> CriterionScore:
    if generated is None:
        return CriterionScore(
            score=0.0,
            rationale="Invalid JSON structure in raw LLM output",
            missing=list(REQUIRED_FIELDS),
        )

    # Vocabulary repairs are reported, not applied to the caller's document
    fixes = repair_document(copy.deepcopy(generated))
    suffix = f" ({'; '.join(fixes)})" if fixes else ""

    if has_dashboard_structure(generated):
        return CriterionScore(
            score=1.0,
            rationale=f"Valid MetX JSON structure - ready for upload{suffix}",
            found=list(REQUIRED_FIELDS),
        )

    keys = collect_keys(generated)
    found = [f for f in REQUIRED_FIELDS if f in keys]
    missing = [f for f in REQUIRED_FIELDS if f not in keys]
    score = 0.5 + (len(found) / len(REQUIRED_FIELDS)) * 0.5

    if score >= 0.7:
        missing_text = f", missing: {', '.join(missing)}" if missing else ""
        rationale = f"Valid JSON with most required fields{missing_text}{suffix}"
    else:
        rationale = f"Valid JSON but missing required fields: {', '.join(missing)}{suffix}"
    return CriterionScore(score=score, rationale=rationale, found=found, missing=missing)


# ---------------------------------------------------------------------------
# Layer count
# ---------------------------------------------------------------------------


def count_weather_layers(document: Any) -> int:
    """Layer count for scoring.

    Bare lists and ``layers`` envelopes count every entry. Full dashboards
    count non-background layers across all tabs and maps, and any other
    object counts as a single layer.
    """
    if isinstance(document, list):
        return len(document)
    if not isinstance(document, dict):
        return 0
    if isinstance(document.get("layers"), list):
        return len(document["layers"])

    total = 0
    for tab in document.get("tabs") or []:
        if not isinstance(tab, dict) or not isinstance(tab.get("maps"), list):
            continue
        for map_ in tab["maps"]:
            if not isinstance(map_, dict) or not isinstance(map_.get("layers"), list):
                continue
            total += sum(
                1
                for layer in map_["layers"]
                if isinstance(layer, dict) and layer.get("kind") and layer["kind"] != BACKGROUND_KIND
            )
    return total or 1


def evaluate_layer_count(generated: Any) -> tuple[CriterionScore, int]:
    count = count_weather_layers(generated)
    if count >= 3:
        return CriterionScore(1.0, f"Excellent layer count: {count} layers generated"), count
    if count == 2:
        return CriterionScore(0.5, f"Good layer count: {count} layers generated"), count
    if count == 1:
        return CriterionScore(0.0, "Poor layer count: only 1 layer generated"), count
    return CriterionScore(0.0, "No layers found in generated output"), count


# ---------------------------------------------------------------------------
# Cost and latency
# ---------------------------------------------------------------------------


def score_cost(cost: float) -> CriterionScore:
    """Score a generation cost in CHF."""
    if cost < COST_BANDS[0][0]:
        return CriterionScore(COST_BANDS[0][1], COST_BANDS[0][2])
    for limit, score, rationale in COST_BANDS[1:]:
        if cost <= limit:
            return CriterionScore(score, rationale)
    return CriterionScore(*COST_FALLBACK)


def score_latency(latency_ms: float) -> CriterionScore:
    for limit, score, rationale in LATENCY_BANDS:
        if latency_ms <= limit:
            return CriterionScore(score, rationale)
    return CriterionScore(*LATENCY_FALLBACK)


# ---------------------------------------------------------------------------
# Overall
# ---------------------------------------------------------------------------

_CRITERION_LABELS = {
    "parameter_completeness": "parameter completeness",
    "structure_quality": "structure quality",
    "layer_count": "layer count",
    "cost_efficiency": "cost efficiency",
    "performance": "performance",
}


def _overall_rationale(criteria: dict[str, CriterionScore]) -> str:
    parts = [f"{_CRITERION_LABELS[name]} ({c.score * 100:.1f}%)" for name, c in criteria.items()]
    if len(parts) > 1:
        parts[-1] = f"and {parts[-1]}"
    return "Overall evaluation based on: " + ", ".join(parts)


def evaluate_generation(
    user_request: str,
    generated: Any,
    latency_ms: float | None = None,
    cost: float | None = None,
) -> RuleBasedEvaluation:
    """
    Score a generated document without a judge model.

    Args:
        user_request: The natural-language request the document answers
        generated: Parsed generation output, or None if it did not parse
        latency_ms: Generation latency; performance is skipped when None
        cost: Generation cost in CHF; cost efficiency is skipped when None

    Returns:
        RuleBasedEvaluation whose overall score renormalizes the weights of
        the criteria that were computed
    """
    layer_score, layer_count = evaluate_layer_count(generated)
    criteria: dict[str, CriterionScore] = {
        "parameter_completeness": evaluate_parameter_completeness(user_request, generated),
        "structure_quality": evaluate_structure_quality(generated),
        "layer_count": layer_score,
    }
    if cost is not None:
        criteria["cost_efficiency"] = score_cost(cost)
    if latency_ms is not None:
        criteria["performance"] = score_latency(latency_ms)

    total_weight = sum(CRITERIA_WEIGHTS[name] for name in criteria)
    overall = sum(c.score * CRITERIA_WEIGHTS[name] for name, c in criteria.items()) / total_weight

    logger.debug(f"Rule-based score {overall:.3f} over {len(criteria)} criteria")
    return RuleBasedEvaluation(
        overall_score=overall,
        rationale=_overall_rationale(criteria),
        criteria=criteria,
        layer_count=layer_count,
    )
