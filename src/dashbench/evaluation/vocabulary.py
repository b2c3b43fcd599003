"""
Fixed domain vocabulary for dashboard documents.

Whitelists of model identifiers, color maps and background styles accepted by
the dashboard platform, the canonical layer kinds, and the fallback values
used when a generated document names something outside the whitelist.
"""

from __future__ import annotations

VALID_MODELS = frozenset([
    "mix", "ai-fourcast-ecmwf-ifs", "ai-graphcast-ecmwf-ifs", "cmc-gem", "chc-chirps2",
    "dwd-icon-d2", "dwd-icon-eu", "dwd-icon-global", "ecmwf-aifs", "ecmwf-cams",
    "ecmwf-cmems", "ecmwf-efi", "ecmwf-ens", "ecmwf-ens-cluster", "ecmwf-ens-tc",
    "ecmwf-era5", "ecmwf-ifs", "ecmwf-mmsf", "ecmwf-vareps", "ecmwf-wam",
    "eumetsat-h03b", "eumetsat-h60b", "fmi-silam", "ksancm-wrf-16", "ksancm-wrf-48",
    "ksancm-wrf-dust", "ksancm-wrf-nowcast", "meteosat-msg", "meteosat-msg-ext",
    "mf-arome", "mix-radar", "mix-satellite", "mm-heliosat", "mm-lightning",
    "mm-swiss1k", "mm-swiss1k-hindcast", "mm-euro1k", "mm-nd1k", "mm-sing1k",
    "mm-tides", "mm-us1k", "mri-esm2-ssp126", "mri-esm2-ssp245", "mri-esm2-ssp370",
    "mri-esm2-ssp460", "mri-esm2-ssp585", "nasa-ghrsst", "nasa-srtm", "ncep-gfs",
    "ncep-gfs-ens", "ncep-hrrr", "noaa-hycom", "noaa-swpc", "ukmo-um10",
    "opera-radar", "at-radar", "ca-radar", "cz-radar", "dk-radar", "fi-radar",
    "mf-radar-metropolitan", "dwd-radar-px250", "it-radar", "no-radar", "pl-radar",
    "es-radar", "se-radar", "mch-radar", "ukmo-500m-radar", "noaa-1k-radar", "mix-obs",
])

VALID_COLOR_MAPS = frozenset([
    "air_quality_index", "anomaly_temperature", "binary_warning_segmented", "blue_magenta",
    "blue_to_red", "blues", "blues_inverted", "cape", "ceiling_height_airmet",
    "ceiling_height_segmented", "cin_segmented", "cloud_type", "dust_segmented",
    "dwd_radar_5min", "dwd_warnings", "edr_turbulence", "fresh_snow_long_interval",
    "fresh_snow_short_interval", "gray", "gray_inverted", "gray_transparent",
    "gray_transparent_dark", "greens_shifted", "heavy_rain_warning_europe_segmented",
    "incessant_rain_warning_europe_segmented", "jet", "jet_inverted", "jet_segmented",
    "jet_segmented_inverted", "jetstream", "land_usage", "lifted_index_global",
    "lifted_index_global_segmented", "lightning_europe_transparent", "magenta_blue",
    "msg_h03b", "negative_cold_index_segmented", "negative_index_segmented", "periodic",
    "periodic_inverted", "plasma", "plasma_inverted", "pollen_europe_segmented",
    "pollen_grains_large", "pollen_grains_medium", "pollen_grains_small",
    "pollen_segmented", "positive_index_segmented", "precip_europe_segmented",
    "precip_layer_europe_segmented", "precip_layer_segmented", "precip_segmented",
    "precip_type_europe_segmented", "precip_type_intensity_europe_segmented",
    "precip_type_intensity_segmented", "precip_type_segmented", "precip_usa_segmented",
    "prism", "prism_inverted", "radar_coverage", "radar_log",
    "radar_reflectivity_segmented", "radar_segmented", "red_to_blue", "red_yellow_green",
    "reds", "reds_inverted", "satellite", "satellite_fog", "satellite_ir_clouds",
    "satellite_ir_clouds_greys", "satellite_ir_colored", "satellite_ir_water_vapor",
    "satellite_ndvi", "seismic", "seismic_inverted", "snow_depth", "storm_warning",
    "sunshine_europe_segmented", "t_arabia", "t_europe", "t_europe_segmented", "t_global",
    "t_global_segmented", "theta_e_arabia", "theta_e_global", "theta_e_global_segmented",
    "traffic_light", "traffic_light_inverted", "transparent_blue", "transparent_green",
    "transparent_red", "tstorm_warning_europe_segmented", "turbulence_ellrod3_segmented",
    "turbulence_segmented", "turbulence_segmented_inverted", "ukmo_radar",
    "uv_index_europe_segmented", "viridis", "viridis_inverted", "visibility_airmet",
    "visibility_segmented", "vorticity_segmented", "wave_height_segmented", "wind_arabia",
    "wind_arabia_beaufort", "wind_speed_europe_segmented", "wind_warning_europe_segmented",
    "wind_speed_arrows",
])

VALID_BACKGROUND_STYLES = frozenset([
    "topographique", "basic", "bright", "darkmatter", "hybrid", "outdoor", "pastel",
    "positron", "toner", "topo", "voyager",
    "f866428e-554f-4ef7-b745-5b893ea778dd", "0e914266-89b2-46c2-8359-1b47522855c0",
    "3958f66e-04a7-48e9-a088-a3b3c617c617", "b4033781-d6cb-42c4-ab61-59d1921da345",
    "542e86e1-7347-4309-826b-006008055f48", "ff991184-9793-4129-9cc5-79bf690b8efb",
    "ac4c3d0c-1979-4c94-b56c-e60ce151b2c0", "61bd317a-d1b2-4d81-ae68-011ad0d4d9b5",
])

DEFAULT_MODEL = "mix"
DEFAULT_COLOR_MAP = "t_europe"
DEFAULT_BACKGROUND_STYLE = "topographique"

BACKGROUND_KIND = "BackgroundMapDescription"
ISOLINES_KIND = "IsoLinesLayerDescription"
WEATHER_FRONTS_KIND = "WeatherFrontsLayerDescription"
PRESSURE_SYSTEM_KIND = "PressureSystemLayerDescription"

# Kind names LLMs commonly produce, mapped to what the platform accepts
KIND_RENAMES = {
    "IsolineLayerDescription": ISOLINES_KIND,
    "WindAnimationLayerDescription": "BarbsLayerDescription",
}


# custom_options keys that belong at layer level, per kind.
# Values are the layer-level key each option is moved to.
_LINE_STYLING = {
    "text_size": "text_size",
    "line_color": "line_color",
    "line_width": "line_width",
    "text_color": "text_color",
}

HOISTED_OPTIONS: dict[str, dict[str, str]] = {
    WEATHER_FRONTS_KIND: dict(_LINE_STYLING),
    ISOLINES_KIND: {
        **_LINE_STYLING,
        "median_filter": "filter_median",
        "gaussian_filter": "filter_gauss",
        "filter_median": "filter_median",
        "filter_gauss": "filter_gauss",
        "range": "value_range",
    },
    PRESSURE_SYSTEM_KIND: {
        "filter_gauss": "filter_gauss",
        "filter_median": "filter_median",
    },
}
