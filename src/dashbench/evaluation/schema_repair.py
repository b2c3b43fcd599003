"""
JSON validation and repair for dashboard documents.

Two phases:

1. Syntactic repair, only when the text does not parse and auto-fix is on:
   trailing commas, whitespace around punctuation, missing commas between
   adjacent objects/arrays, layer-list formatting. All rewrites skip the
   inside of string literals.
2. Domain repair, when domain structure is required: walk
   document -> tabs -> maps -> layers and rewrite layer fields that fall
   outside the fixed vocabulary (kind names, model, color map, background
   style, misplaced styling options).

Only unparseable syntax is an error. Structural gaps are warnings unless
strict mode is on.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from .vocabulary import (
    BACKGROUND_KIND,
    DEFAULT_BACKGROUND_STYLE,
    DEFAULT_COLOR_MAP,
    DEFAULT_MODEL,
    HOISTED_OPTIONS,
    ISOLINES_KIND,
    KIND_RENAMES,
    VALID_BACKGROUND_STYLES,
    VALID_COLOR_MAPS,
    VALID_MODELS,
    WEATHER_FRONTS_KIND,
)

logger = logging.getLogger(__name__)

LAYERS_ENVELOPE_KEY = "layers"

_STRING_LITERAL = re.compile(r'"(?:\\.|[^"\\])*"')


@dataclass
class ValidationOptions:
    """Options for validate_json."""

    auto_fix: bool = True
    indent_size: int = 2
    require_domain_structure: bool = False
    strict: bool = False


@dataclass
class ValidationResult:
    """Outcome of validating (and possibly repairing) a JSON document."""

    is_valid: bool
    original_text: str
    fixed_text: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    fixes: list[str] = field(default_factory=list)
    was_fixed: bool = False

    @property
    def value(self) -> Any:
        """Parsed fixed document, or None when validation failed."""
        return json.loads(self.fixed_text) if self.fixed_text is not None else None


# ---------------------------------------------------------------------------
# Phase 1: syntactic repair
# ---------------------------------------------------------------------------


def _outside_strings(text: str, rewrite: Callable[[str], str]) -> str:
    """Apply ``rewrite`` to every segment of ``text`` outside string literals.

    Whitespace-only gaps between two string literals get a comma when they
    span a line break (``"a"\\n"b"`` is a missing comma, never valid JSON).
    """
    parts: list[str] = []
    pos = 0
    previous_was_string = False
    for match in _STRING_LITERAL.finditer(text):
        gap = text[pos:match.start()]
        if previous_was_string and gap and not gap.strip() and "\n" in gap:
            parts.append(", ")
        else:
            parts.append(rewrite(gap))
        parts.append(match.group(0))
        pos = match.end()
        previous_was_string = True
    parts.append(rewrite(text[pos:]))
    return "".join(parts)


def fix_trailing_commas(text: str) -> str:
    return _outside_strings(text, lambda s: re.sub(r",(\s*[}\]])", r"\1", s))


def fix_spacing(text: str) -> str:
    def rewrite(segment: str) -> str:
        segment = re.sub(r"\s+", " ", segment)
        segment = re.sub(r"\[\s+", "[", segment)
        segment = re.sub(r"\s+\]", "]", segment)
        segment = re.sub(r"\{\s+", "{", segment)
        segment = re.sub(r"\s+\}", "}", segment)
        segment = re.sub(r"\s*:\s*", ": ", segment)
        return re.sub(r"\s*,\s*", ", ", segment)

    return _outside_strings(text, rewrite)


def fix_missing_commas(text: str) -> str:
    def rewrite(segment: str) -> str:
        segment = re.sub(r"\}\s*\{", "}, {", segment)
        return re.sub(r"\]\s*\[", "], [", segment)

    return _outside_strings(text, rewrite)


def fix_layer_list_formatting(text: str) -> str:
    """Put each object of a ``"layers": [...]`` list on its own line."""
    text = re.sub(r'"layers":\s*\[\s*\{', '"layers": [\n    {', text)
    return re.sub(r'\{\s*"id":', '{\n      "id":', text)


SYNTAX_FIXES: list[tuple[str, Callable[[str], str]]] = [
    ("Fixed trailing commas", fix_trailing_commas),
    ("Fixed irregular spacing", fix_spacing),
    ("Fixed missing commas", fix_missing_commas),
    ("Fixed layer array formatting", fix_layer_list_formatting),
]


def _repair_syntax(text: str, result: ValidationResult, parse_error: Exception) -> Any | None:
    fixed = text
    applied: list[str] = []
    for label, fix in SYNTAX_FIXES:
        rewritten = fix(fixed)
        if rewritten != fixed:
            applied.append(label)
        fixed = rewritten

    try:
        parsed = json.loads(fixed)
    except json.JSONDecodeError as e:
        result.errors.append(f"JSON Parse Error: {parse_error}")
        result.errors.append(f"Failed to fix JSON: {e}")
        return None

    result.warnings.extend(applied)
    result.was_fixed = True
    return parsed


# ---------------------------------------------------------------------------
# Phase 2: domain structure
# ---------------------------------------------------------------------------


def iter_layer_lists(document: Any) -> Iterator[tuple[str, list]]:
    """Yield (location, layer list) for every layer list in a document.

    Accepts the full form (tabs -> maps -> layers), the compact form with a
    top-level ``layers`` list, and a bare list of layers.
    """
    if isinstance(document, list):
        yield "Root", document
        return
    if not isinstance(document, dict):
        return

    if isinstance(document.get(LAYERS_ENVELOPE_KEY), list):
        yield "Root", document[LAYERS_ENVELOPE_KEY]

    tabs = document.get("tabs")
    if not isinstance(tabs, list):
        return
    for tab_index, tab in enumerate(tabs):
        maps = tab.get("maps") if isinstance(tab, dict) else None
        if not isinstance(maps, list):
            continue
        for map_index, map_ in enumerate(maps):
            layers = map_.get("layers") if isinstance(map_, dict) else None
            if isinstance(layers, list):
                yield f"Tab {tab_index}, Map {map_index}", layers


def check_structure(document: Any, envelope: bool = False) -> list[str]:
    """Report missing containers and layer identity fields."""
    warnings: list[str] = []

    if isinstance(document, dict) and not envelope:
        if not document.get("id"):
            warnings.append("Missing required field: id")
        tabs = document.get("tabs")
        if tabs is None and not isinstance(document.get(LAYERS_ENVELOPE_KEY), list):
            warnings.append("Missing required field: tabs")
        elif tabs is not None and not isinstance(tabs, list):
            warnings.append('Field "tabs" should be an array')
        elif isinstance(tabs, list):
            for tab_index, tab in enumerate(tabs):
                if not isinstance(tab, dict) or not isinstance(tab.get("maps"), list):
                    warnings.append(f"Tab {tab_index}: Missing maps array")
                    continue
                for map_index, map_ in enumerate(tab["maps"]):
                    if not isinstance(map_, dict) or not isinstance(map_.get("layers"), list):
                        warnings.append(f"Tab {tab_index}, Map {map_index}: Missing layers array")
    elif not isinstance(document, (dict, list)):
        warnings.append(f"Document root is a {type(document).__name__}, expected an object")
        return warnings

    for location, layers in iter_layer_lists(document):
        for layer_index, layer in enumerate(layers):
            prefix = f"{location}, Layer {layer_index}"
            if not isinstance(layer, dict):
                warnings.append(f"{prefix}: Layer is not an object")
                continue
            if not layer.get("kind"):
                warnings.append(f"{prefix}: Missing kind field")
            if not envelope and not layer.get("id"):
                warnings.append(f"{prefix}: Missing id field")
            if not envelope and "index" not in layer:
                warnings.append(f"{prefix}: Missing index field")
    return warnings


def _replace_invalid(
    layer: dict, key: str, valid: frozenset[str], default: str, fixes: list[str], prefix: str
) -> None:
    value = layer.get(key)
    if isinstance(value, str) and value and value not in valid:
        layer[key] = default
        fixes.append(f"{prefix}: Replaced invalid {key} '{value}' with '{default}'")


def repair_layer(layer: dict, prefix: str = "Layer") -> list[str]:
    """Rewrite one layer in place against the domain vocabulary.

    Returns a description of each change made. Unrecognised fields are left
    untouched.
    """
    fixes: list[str] = []

    kind = layer.get("kind")
    if kind in KIND_RENAMES:
        layer["kind"] = KIND_RENAMES[kind]
        fixes.append(f"{prefix}: Renamed kind {kind} -> {layer['kind']}")
        kind = layer["kind"]

    _replace_invalid(layer, "model", VALID_MODELS, DEFAULT_MODEL, fixes, prefix)
    _replace_invalid(layer, "color_map", VALID_COLOR_MAPS, DEFAULT_COLOR_MAP, fixes, prefix)
    if kind == BACKGROUND_KIND:
        _replace_invalid(
            layer, "style", VALID_BACKGROUND_STYLES, DEFAULT_BACKGROUND_STYLE, fixes, prefix
        )

    options = layer.get("custom_options")
    hoisted = HOISTED_OPTIONS.get(kind)
    if hoisted and isinstance(options, dict):
        for option, target in hoisted.items():
            if option in options:
                layer[target] = options.pop(option)
                fixes.append(f"{prefix}: Moved custom_options.{option} to {target}")
        if kind == ISOLINES_KIND and "values" not in layer:
            layer["values"] = None
            fixes.append(f"{prefix}: Added missing values field")

    if kind == WEATHER_FRONTS_KIND and "parameter_unit" in layer and layer["parameter_unit"] is None:
        del layer["parameter_unit"]
        fixes.append(f"{prefix}: Removed null parameter_unit")

    return fixes


def repair_document(document: Any) -> list[str]:
    """Apply repair_layer to every layer in the document, in place."""
    fixes: list[str] = []
    for location, layers in iter_layer_lists(document):
        for layer_index, layer in enumerate(layers):
            if isinstance(layer, dict):
                fixes.extend(repair_layer(layer, f"{location}, Layer {layer_index}"))
    return fixes


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _validate(text: str, options: ValidationOptions, envelope: bool = False) -> ValidationResult:
    result = ValidationResult(is_valid=False, original_text=text)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        if not options.auto_fix:
            result.errors.append(f"JSON Parse Error: {e}")
            return result
        parsed = _repair_syntax(text, result, e)
        if parsed is None:
            return result

    if options.require_domain_structure:
        structure_warnings = check_structure(parsed, envelope=envelope)
        before = copy.deepcopy(parsed)
        fixes = repair_document(parsed)
        if parsed != before:
            result.was_fixed = True
        result.fixes.extend(fixes)
        result.warnings.extend(structure_warnings)
        result.warnings.extend(fixes)
        if options.strict and structure_warnings:
            result.errors.extend(structure_warnings)
            return result

    result.is_valid = True
    result.fixed_text = json.dumps(parsed, indent=options.indent_size, ensure_ascii=False)
    return result


def validate_json(text: str, options: ValidationOptions | None = None) -> ValidationResult:
    """
    Validate a JSON document and optionally repair it.

    Args:
        text: JSON text to validate
        options: Validation options (defaults: auto-fix on, no domain checks)

    Returns:
        ValidationResult. ``fixed_text`` is None whenever ``is_valid`` is
        False; no partial output is returned for unrecoverable syntax.
    """
    options = options or ValidationOptions()
    result = _validate(text, options)
    if result.is_valid:
        logger.debug(
            f"JSON valid (fixed={result.was_fixed}, warnings={len(result.warnings)})"
        )
    else:
        logger.debug(f"JSON invalid: {result.errors}")
    return result


def validate_layer_json(text: str, options: ValidationOptions | None = None) -> ValidationResult:
    """
    Validate a bare layer array.

    The array is wrapped in a ``{"layers": ...}`` envelope, run through both
    phases with domain structure required, and unwrapped again. Text that is
    not an array is validated as a whole document.
    """
    base = options or ValidationOptions()
    options = ValidationOptions(
        auto_fix=base.auto_fix,
        indent_size=base.indent_size,
        require_domain_structure=True,
        strict=base.strict,
    )

    if not text.lstrip().startswith("["):
        return _validate(text, options)

    wrapped = _validate(f'{{"{LAYERS_ENVELOPE_KEY}": {text}}}', options, envelope=True)
    result = ValidationResult(
        is_valid=wrapped.is_valid,
        original_text=text,
        errors=wrapped.errors,
        warnings=wrapped.warnings,
        fixes=wrapped.fixes,
        was_fixed=wrapped.was_fixed,
    )
    if wrapped.is_valid:
        layers = json.loads(wrapped.fixed_text)[LAYERS_ENVELOPE_KEY]
        result.fixed_text = json.dumps(layers, indent=options.indent_size, ensure_ascii=False)
    return result


def format_json(text: str, indent_size: int = 2) -> str:
    """Re-indent valid JSON. Raises ValueError for invalid input."""
    try:
        return json.dumps(json.loads(text), indent=indent_size, ensure_ascii=False)
    except json.JSONDecodeError as e:
        raise ValueError(f"Cannot format invalid JSON: {e}") from e


def minify_json(text: str) -> str:
    """Serialise valid JSON without whitespace. Raises ValueError for invalid input."""
    try:
        return json.dumps(json.loads(text), separators=(",", ":"), ensure_ascii=False)
    except json.JSONDecodeError as e:
        raise ValueError(f"Cannot minify invalid JSON: {e}") from e


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except json.JSONDecodeError:
        return False
    return True
