"""Evaluation: parsing, repair and rule-based scoring of generated dashboards, and judge verdicts."""

from .dashboard_audit import AuditReport, audit_dashboard, repair_dashboard
from .judge_parser import JudgeVerdict, parse_judge_response
from .output_extractor import ExtractionResult, extract_json
from .rule_based import CriterionScore, RuleBasedEvaluation, evaluate_generation, extract_weather_parameters
from .schema_repair import (
    ValidationOptions,
    ValidationResult,
    format_json,
    is_valid_json,
    minify_json,
    validate_json,
    validate_layer_json,
)

__all__ = [
    # Output extraction
    "ExtractionResult",
    "extract_json",
    # Judge parsing
    "JudgeVerdict",
    "parse_judge_response",
    # Schema repair
    "ValidationOptions",
    "ValidationResult",
    "validate_json",
    "validate_layer_json",
    "format_json",
    "minify_json",
    "is_valid_json",
    # Dashboard audit
    "AuditReport",
    "audit_dashboard",
    "repair_dashboard",
    # Rule-based scoring
    "CriterionScore",
    "RuleBasedEvaluation",
    "evaluate_generation",
    "extract_weather_parameters",
]
