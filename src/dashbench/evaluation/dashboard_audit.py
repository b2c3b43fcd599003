"""
Full dashboard audit and repair.

Stricter than schema_repair: checks every layer against the per-kind field
table observed in uploaded dashboards, verifies cross references between
dashboard, map and layer ids, and can generate whatever ids, indices,
timestamps and fields are missing.

Used by the ``validate --audit`` command, never by the evaluation loop.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .schema_repair import repair_layer
from .vocabulary import BACKGROUND_KIND, ISOLINES_KIND

logger = logging.getLogger(__name__)

MISSPELLED_ISOLINES_KIND = "IsolineLayerDescription"

UNIVERSAL_FIELDS = (
    "id", "id_profile", "id_cartographicmap", "index", "kind", "opacity", "show",
    "calibrated", "vertical_interpolation", "experimental", "custom_options",
    "time_created", "time_updated",
)
WEATHER_MODEL_FIELDS = ("model", "parameter_unit", "ens_select", "show_init_time")
_LINE_FIELDS = (
    "filter_gauss", "filter_median", "line_color", "line_width", "text_color",
    "text_size", "value_range", "values",
)

# Kind-specific fields on top of UNIVERSAL_FIELDS
KIND_FIELDS: dict[str, tuple[str, ...]] = {
    "AviationLayerDescription": ("aviation_type", "text_size"),
    BACKGROUND_KIND: ("style",),
    "BarbsLayerDescription": (*WEATHER_MODEL_FIELDS, "element_color", "parameter_unit_paired", "step"),
    "GenericPoiLayerDescription": (*WEATHER_MODEL_FIELDS, "legend_visible", "poiOptions"),
    "GridLayerDescription": (*WEATHER_MODEL_FIELDS, "step", "text_color", "text_size"),
    ISOLINES_KIND: (*WEATHER_MODEL_FIELDS, *_LINE_FIELDS),
    "LightningLayerDescription": (*WEATHER_MODEL_FIELDS, "legend_visible", "text_color", "text_size"),
    "PressureSystemLayerDescription": (*WEATHER_MODEL_FIELDS, *_LINE_FIELDS),
    "StationLayerDescription": (*WEATHER_MODEL_FIELDS, "text_color", "text_size"),
    "SymbolLayerDescription": (*WEATHER_MODEL_FIELDS, "layer_type", "step"),
    "WeatherFrontsLayerDescription": (*WEATHER_MODEL_FIELDS, "line_width", "text_size"),
    "WindAnimationLayerDescription": (*WEATHER_MODEL_FIELDS, "color_map", "parameter_unit_paired"),
    "WmsLayerDescription": (*WEATHER_MODEL_FIELDS, "color_map", "legend_visible"),
}

ROOT_FIELDS = (
    "id", "title", "tab_active", "use_global_datetime", "global_datetime",
    "id_account", "time_created", "time_updated", "tabs",
)

ISOLINES_MISPLACED_OPTIONS = (
    "range", "text_size", "line_color", "line_width", "text_color",
    "median_filter", "gaussian_filter",
)

# Starting points for generated ids
BASE_IDS = {
    "dashboard": 12000,
    "tab": 70000,
    "layout": 170000,
    "map": 120000,
    "viewport": 130000,
    "layer": 550000,
}

# Kind-specific defaults added when a layer lacks the field
KIND_DEFAULTS: dict[str, dict[str, Any]] = {
    "WeatherFrontsLayerDescription": {"parameter_unit": ""},
    "PressureSystemLayerDescription": {"value_range": "950,1050,4", "values": None},
    ISOLINES_KIND: {"value_range": "0,1000,10", "values": None},
    "SymbolLayerDescription": {"step": 25, "layer_type": "WeatherSymbol"},
    "BarbsLayerDescription": {
        "step": 41, "parameter_unit_paired": "wind_dir_10m:d", "element_color": "#000000",
    },
    "GridLayerDescription": {"step": 42, "text_color": "#000000", "text_size": 16},
    "LightningLayerDescription": {"text_color": "#FFFF00", "text_size": 16},
}

DEFAULT_CUSTOM_OPTIONS: dict[str, dict[str, Any]] = {
    BACKGROUND_KIND: {"line_color": None, "show_state_border": False, "map_label_language": None},
    "WmsLayerDescription": {"init_date": None},
    "SymbolLayerDescription": {"show_only_significant_weather": True, "icon_size": 0.4},
}


@dataclass
class AuditReport:
    """Errors and warnings found by audit_dashboard."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


def is_iso_timestamp(value: Any) -> bool:
    if not isinstance(value, str) or "T" not in value:
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


def audit_layer(layer: Any, dashboard_id: Any, map_id: Any, layer_index: int) -> AuditReport:
    """Check one layer against its kind's field table and its parents' ids."""
    report = AuditReport()
    if not isinstance(layer, dict):
        report.errors.append("Layer is not an object")
        return report

    kind = layer.get("kind")
    if not kind:
        report.errors.append('Layer missing required "kind" field')
        return report

    if kind == MISSPELLED_ISOLINES_KIND:
        report.errors.append(f'Incorrect layer type: "{kind}" should be "{ISOLINES_KIND}"')

    if kind in KIND_FIELDS:
        required = UNIVERSAL_FIELDS + KIND_FIELDS[kind]
        missing = [name for name in required if name not in layer]
        if missing:
            report.errors.append(f"Missing required fields for {kind}: {', '.join(missing)}")
    else:
        report.warnings.append(f"Unknown layer type: {kind}. Using universal validation only.")
        missing = [name for name in UNIVERSAL_FIELDS if name not in layer]
        if missing:
            report.errors.append(f"Missing universal required fields: {', '.join(missing)}")

    if layer.get("id_profile") != dashboard_id:
        report.errors.append(
            f"Layer id_profile ({layer.get('id_profile')}) should match dashboard ID ({dashboard_id})"
        )
    if layer.get("id_cartographicmap") != map_id:
        report.errors.append(
            f"Layer id_cartographicmap ({layer.get('id_cartographicmap')}) should match map ID ({map_id})"
        )
    if layer.get("index") != layer_index:
        report.warnings.append(
            f"Layer index ({layer.get('index')}) doesn't match expected index ({layer_index})"
        )

    opacity = layer.get("opacity")
    if not _is_number(opacity) or not 0 <= opacity <= 1:
        report.errors.append(f"Layer opacity must be a number between 0 and 1, got: {opacity}")
    if not _is_bool(layer.get("show")):
        report.errors.append(f"Layer show must be boolean, got: {type(layer.get('show')).__name__}")
    if not _is_bool(layer.get("experimental")):
        report.errors.append(
            f"Layer experimental must be boolean, got: {type(layer.get('experimental')).__name__}"
        )
    if not _is_number(layer.get("index")):
        report.errors.append(f"Layer index must be number, got: {type(layer.get('index')).__name__}")

    for stamp in ("time_created", "time_updated"):
        if layer.get(stamp) and not is_iso_timestamp(layer[stamp]):
            report.errors.append(f"Invalid {stamp} timestamp: {layer[stamp]}")

    options = layer.get("custom_options")
    if kind == ISOLINES_KIND and isinstance(options, dict):
        misplaced = [name for name in ISOLINES_MISPLACED_OPTIONS if name in options]
        if misplaced:
            report.errors.append(
                f"{ISOLINES_KIND} has invalid custom_options fields: {', '.join(misplaced)}. "
                "These should be layer-level properties."
            )
    if kind == "LightningLayerDescription":
        if isinstance(options, dict) and options.get("text_color") and not layer.get("text_color"):
            report.errors.append(
                "LightningLayerDescription has text_color in custom_options but should be at layer level."
            )
        if str(layer.get("parameter_unit", "")).endswith(":"):
            report.errors.append(
                f"LightningLayerDescription has invalid parameter_unit with trailing colon: "
                f"{layer['parameter_unit']}"
            )
    if kind == "SymbolLayerDescription":
        if isinstance(options, dict) and options.get("layer_type") and not layer.get("layer_type"):
            report.errors.append(
                "SymbolLayerDescription has layer_type in custom_options but should be at layer level."
            )

    return report


def audit_structure(dashboard: dict) -> AuditReport:
    """Check root fields, global datetime and tab references."""
    report = AuditReport()

    missing = [name for name in ROOT_FIELDS if name not in dashboard]
    if missing:
        report.errors.append(f"Missing required root fields: {', '.join(missing)}")

    global_datetime = dashboard.get("global_datetime")
    if isinstance(global_datetime, dict):
        if "id_profile" not in global_datetime:
            report.errors.append("global_datetime missing required id_profile field")
        elif global_datetime["id_profile"] != dashboard.get("id"):
            report.errors.append(
                f"global_datetime.id_profile ({global_datetime['id_profile']}) "
                f"should match dashboard.id ({dashboard.get('id')})"
            )

    tabs = dashboard.get("tabs")
    if not isinstance(tabs, list):
        report.errors.append("Dashboard must have tabs array")
    elif not tabs:
        report.errors.append("Dashboard must have at least one tab")
    elif dashboard.get("tab_active"):
        tab_ids = [tab.get("id") for tab in tabs if isinstance(tab, dict)]
        if dashboard["tab_active"] not in tab_ids:
            report.errors.append(
                f"tab_active ({dashboard['tab_active']}) does not reference any existing tab ID"
            )

    return report


def audit_dashboard(dashboard: Any) -> AuditReport:
    """
    Audit a full dashboard document.

    Args:
        dashboard: Parsed dashboard document

    Returns:
        AuditReport; layer findings are prefixed with their location
    """
    if not isinstance(dashboard, dict):
        return AuditReport(errors=[f"Dashboard must be an object, got {type(dashboard).__name__}"])

    report = audit_structure(dashboard)
    tabs = dashboard.get("tabs")
    if not isinstance(tabs, list):
        return report

    for tab_index, tab in enumerate(tabs):
        maps = tab.get("maps") if isinstance(tab, dict) else None
        if not isinstance(maps, list):
            report.warnings.append(f"Tab {tab_index} has no maps array")
            continue
        for map_index, map_ in enumerate(maps):
            layers = map_.get("layers") if isinstance(map_, dict) else None
            if not isinstance(layers, list):
                report.warnings.append(f"Tab {tab_index}, Map {map_index} has no layers array")
                continue
            for layer_index, layer in enumerate(layers):
                layer_report = audit_layer(layer, dashboard.get("id"), map_.get("id"), layer_index)
                prefix = f"Tab {tab_index}, Map {map_index}, Layer {layer_index}"
                report.errors.extend(f"{prefix}: {e}" for e in layer_report.errors)
                report.warnings.extend(f"{prefix}: {w}" for w in layer_report.warnings)

    logger.debug(f"Audit found {len(report.errors)} errors, {len(report.warnings)} warnings")
    return report


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


def _fill_layer(layer: dict, now: str, location: str, fixes: list[str]) -> None:
    kind = layer.get("kind")

    def add(name: str, value: Any) -> None:
        if name not in layer:
            layer[name] = copy.deepcopy(value)
            fixes.append(f"Added missing {name} to {location}")

    for stamp in ("time_created", "time_updated"):
        if not layer.get(stamp):
            layer[stamp] = now
            fixes.append(f"Added missing {stamp} to {location}")
    add("calibrated", None)
    add("experimental", False)
    add("vertical_interpolation", "none" if kind == BACKGROUND_KIND else None)
    if not layer.get("custom_options"):
        default_options = DEFAULT_CUSTOM_OPTIONS.get(kind, {})
        if layer.get("custom_options") != default_options:
            layer["custom_options"] = copy.deepcopy(default_options)
            fixes.append(f"Added missing custom_options to {location}")

    if kind in KIND_FIELDS and kind != BACKGROUND_KIND:
        add("ens_select", None)
        add("show_init_time", False)
    for name, value in KIND_DEFAULTS.get(kind, {}).items():
        add(name, value)

    if kind == "LightningLayerDescription":
        unit = layer.get("parameter_unit")
        if isinstance(unit, str) and unit.endswith(":"):
            layer["parameter_unit"] = unit.rstrip(":")
            fixes.append(f"Stripped trailing colon from parameter_unit in {location}")
    if kind in ("LightningLayerDescription", "SymbolLayerDescription"):
        name = "text_color" if kind == "LightningLayerDescription" else "layer_type"
        options = layer["custom_options"]
        if isinstance(options, dict) and name in options:
            layer[name] = options.pop(name)
            fixes.append(f"Moved custom_options.{name} to layer level in {location}")
    if layer.get("calibrated") is False:
        layer["calibrated"] = None
        fixes.append(f"Set calibrated to null in {location}")


def repair_dashboard(dashboard: dict, now: str | None = None) -> tuple[dict, list[str]]:
    """
    Generate missing ids and fields and fix cross references.

    The input is not modified.

    Args:
        dashboard: Parsed dashboard document
        now: ISO timestamp used for generated time fields (default: current UTC time)

    Returns:
        (fixed dashboard, list of fixes applied)
    """
    fixed = copy.deepcopy(dashboard)
    now = now or datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    fixes: list[str] = []

    if not fixed.get("id"):
        fixed["id"] = BASE_IDS["dashboard"]
        fixes.append(f"Generated dashboard id {fixed['id']}")
    dashboard_id = fixed["id"]

    global_datetime = fixed.setdefault("global_datetime", {})
    if not global_datetime.get("id"):
        global_datetime["id"] = BASE_IDS["dashboard"] + 100
        fixes.append("Generated global_datetime id")
    if global_datetime.get("id_profile") != dashboard_id:
        global_datetime["id_profile"] = dashboard_id
        fixes.append(f"Fixed global_datetime.id_profile to match dashboard.id ({dashboard_id})")
    for stamp in ("time_created", "time_updated"):
        if not global_datetime.get(stamp):
            global_datetime[stamp] = now
            fixes.append(f"Added missing {stamp} to global_datetime")

    next_layer_id = BASE_IDS["layer"]
    tabs = fixed.get("tabs") if isinstance(fixed.get("tabs"), list) else []
    for tab_index, tab in enumerate(tabs):
        if not isinstance(tab, dict):
            continue
        if not tab.get("id"):
            tab["id"] = BASE_IDS["tab"] + tab_index
            fixes.append(f"Generated id {tab['id']} for tab {tab_index}")
        tab.setdefault("id_profile", dashboard_id)
        for stamp in ("time_created", "time_updated"):
            if not tab.get(stamp):
                tab[stamp] = now
                fixes.append(f"Added missing {stamp} to tab {tab_index}")

        for layout_index, layout in enumerate(tab.get("layouts") or []):
            if not isinstance(layout, dict):
                continue
            if not layout.get("id"):
                layout["id"] = BASE_IDS["layout"] + tab_index * 10 + layout_index
            layout.setdefault("id_tab", tab["id"])
        viewports = [v for v in tab.get("viewports") or [] if isinstance(v, dict)]
        for viewport_index, viewport in enumerate(viewports):
            if not viewport.get("id"):
                viewport["id"] = BASE_IDS["viewport"] + tab_index * 10 + viewport_index
            viewport.setdefault("id_profile", dashboard_id)

        for map_index, map_ in enumerate(tab.get("maps") or []):
            if not isinstance(map_, dict):
                continue
            location = f"tab {tab_index}, map {map_index}"
            if not map_.get("id"):
                map_["id"] = BASE_IDS["map"] + tab_index * 10 + map_index
                fixes.append(f"Generated id {map_['id']} for {location}")
            map_.setdefault("id_profile", dashboard_id)
            map_.setdefault("id_tab", tab["id"])
            if not map_.get("id_viewport") and viewports:
                map_["id_viewport"] = viewports[0]["id"]
            for stamp in ("time_created", "time_updated"):
                if not map_.get(stamp):
                    map_[stamp] = now
                    fixes.append(f"Added missing {stamp} to {location}")

            for layer_index, layer in enumerate(map_.get("layers") or []):
                if not isinstance(layer, dict):
                    continue
                layer_location = f"{location}, layer {layer_index}"
                if not layer.get("id"):
                    layer["id"] = next_layer_id
                    next_layer_id += 1
                    fixes.append(f"Generated id {layer['id']} for {layer_location}")
                if layer.get("id_profile") != dashboard_id:
                    layer["id_profile"] = dashboard_id
                    fixes.append(f"Fixed id_profile of {layer_location}")
                if layer.get("id_cartographicmap") != map_["id"]:
                    layer["id_cartographicmap"] = map_["id"]
                    fixes.append(f"Fixed id_cartographicmap of {layer_location}")
                if layer.get("index") != layer_index:
                    fixes.append(f"Fixed index of {layer_location}: {layer.get('index')} -> {layer_index}")
                    layer["index"] = layer_index
                fixes.extend(repair_layer(layer, layer_location))
                _fill_layer(layer, now, layer_location, fixes)

    tab_ids = [tab["id"] for tab in tabs if isinstance(tab, dict)]
    if tab_ids and fixed.get("tab_active") not in tab_ids:
        fixed["tab_active"] = tab_ids[0]
        fixes.append(f"Fixed tab_active reference: now points to tab {tab_ids[0]}")

    if fixes:
        logger.info(f"Applied {len(fixes)} dashboard fixes")
    return fixed, fixes
