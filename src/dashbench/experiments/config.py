"""
Configuration for dashbench.

Supports:
- YAML config files
- ${VAR} / ${VAR:default} environment substitution (keeps API keys out of files)
- Defaults for every field, so an empty file is a valid config
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .llm_client import GenerationSettings, ProviderSettings
from .records import ModelRef

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{(\w+)(?::([^}]*))?\}")

DEFAULT_JUDGE_MODEL = "google/gemini-2.5-flash"
DEFAULT_JUDGE_PROVIDER = "openrouter"


@dataclass
class BenchConfig:
    """Configuration for evaluation runs."""

    db_path: Path = field(default_factory=lambda: Path("dashbench.db"))

    # Judge used when a run does not name one
    default_judge_model: str = DEFAULT_JUDGE_MODEL
    default_judge_provider: str = DEFAULT_JUDGE_PROVIDER
    judge_temperature: float = 0.0

    # Run schema repair on extracted output before judging
    repair_generated: bool = False
    # Ask generation models for a JSON object response (provider support varies)
    json_mode: bool = False

    # Generation price in CHF per 1000 tokens; the rule-based cost criterion is
    # skipped when unset
    cost_per_1k_tokens: float | None = None

    # Provider calls
    max_tokens: int = 4000
    temperature: float = 0.7
    request_timeout: float = 120.0
    retry_attempts: int = 1  # total attempts; >1 retries timeouts, rate limits, empty completions
    retry_min_wait: float = 1.0
    retry_max_wait: float = 30.0
    providers: dict[str, ProviderSettings] = field(default_factory=dict)

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    def generation_settings(self) -> GenerationSettings:
        return GenerationSettings(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            request_timeout=self.request_timeout,
            retry_attempts=self.retry_attempts,
            retry_min_wait=self.retry_min_wait,
            retry_max_wait=self.retry_max_wait,
        )

    def judge_settings(self) -> GenerationSettings:
        settings = self.generation_settings()
        settings.temperature = self.judge_temperature
        return settings

    def generation_cost(self, tokens_used: int | None) -> float | None:
        if self.cost_per_1k_tokens is None or tokens_used is None:
            return None
        return tokens_used / 1000 * self.cost_per_1k_tokens

    def default_judge(self) -> ModelRef:
        return ModelRef(
            id=self.default_judge_model,
            name=self.default_judge_model,
            provider=self.default_judge_provider,
            provider_model=self.default_judge_model,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchConfig:
        """Create config from a dictionary, ignoring unknown keys with a warning."""
        valid = {f.name: f for f in fields(cls)}
        defaults = cls()
        kwargs: dict[str, Any] = {}

        for key, value in data.items():
            if key not in valid:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue
            if key == "providers":
                kwargs[key] = _parse_providers(value)
            elif key in ("db_path", "log_file"):
                kwargs[key] = Path(value) if value else None
            elif key == "cost_per_1k_tokens":
                kwargs[key] = _coerce(key, value, 0.0) if value not in (None, "") else None
            else:
                kwargs[key] = _coerce(key, value, getattr(defaults, key))

        if kwargs.get("db_path") is None:
            kwargs.pop("db_path", None)
        return cls(**kwargs)


def _coerce(key: str, value: Any, default: Any) -> Any:
    # Substituted env values arrive as strings
    if not isinstance(value, str) or isinstance(default, str):
        return value
    try:
        if isinstance(default, bool):
            return value.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {key}: {value!r}") from e
    return value


def _parse_providers(data: Any) -> dict[str, ProviderSettings]:
    if not isinstance(data, dict):
        raise ConfigurationError("providers must be a mapping of provider name to settings")
    providers = {}
    for name, settings in data.items():
        settings = settings or {}
        providers[name] = ProviderSettings(
            api_key=settings.get("api_key") or None,
            base_url=settings.get("base_url") or None,
        )
    return providers


def substitute_env(data: Any) -> Any:
    """Substitute ${VAR} patterns with environment variables.

    An unset variable without a default becomes an empty string.
    """
    if isinstance(data, str):
        def replace(match: re.Match) -> str:
            default = match.group(2)
            return os.environ.get(match.group(1), default if default is not None else "")

        return _ENV_PATTERN.sub(replace, data)
    elif isinstance(data, dict):
        return {k: substitute_env(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [substitute_env(v) for v in data]
    return data


def load_config(path: Path | str | None = None) -> BenchConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Config file; None returns the defaults

    Returns:
        BenchConfig

    Raises:
        ConfigurationError: If the file is missing or not a YAML mapping
    """
    if path is None:
        return BenchConfig()

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must be a mapping, got {type(data).__name__}")

    logger.debug(f"Loaded config from {path}")
    return BenchConfig.from_dict(substitute_env(data))
