"""Tests for configuration loading."""

import logging
from pathlib import Path

import pytest

from dashbench.experiments.config import (
    DEFAULT_JUDGE_MODEL,
    BenchConfig,
    load_config,
    substitute_env,
)
from dashbench.experiments.exceptions import ConfigurationError

REPO_ROOT = Path(__file__).parent.parent


class TestSubstituteEnv:
    """Tests for ${VAR} substitution."""

    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("DASHBENCH_TEST_KEY", "sk-123")
        assert substitute_env("${DASHBENCH_TEST_KEY}") == "sk-123"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("DASHBENCH_UNSET", raising=False)
        assert substitute_env("${DASHBENCH_UNSET:fallback.db}") == "fallback.db"
        assert substitute_env("${DASHBENCH_UNSET}") == ""
        assert substitute_env("${DASHBENCH_UNSET:}") == ""

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("DASHBENCH_TEST_KEY", "k")
        data = {"providers": {"openai": {"api_key": "${DASHBENCH_TEST_KEY}"}}, "list": ["${DASHBENCH_TEST_KEY}", 3]}
        assert substitute_env(data) == {"providers": {"openai": {"api_key": "k"}}, "list": ["k", 3]}


class TestBenchConfig:
    """Tests for BenchConfig.from_dict and its helpers."""

    def test_defaults(self):
        config = BenchConfig()
        assert config.default_judge_model == DEFAULT_JUDGE_MODEL
        assert config.retry_attempts == 1
        assert not config.repair_generated
        assert config.default_judge().provider == "openrouter"

    def test_string_values_coerced(self):
        config = BenchConfig.from_dict(
            {"repair_generated": "true", "max_tokens": "2000", "temperature": "0.2", "json_mode": "no"}
        )
        assert config.repair_generated is True
        assert config.max_tokens == 2000
        assert config.temperature == 0.2
        assert config.json_mode is False

    def test_generation_cost(self):
        assert BenchConfig().generation_cost(1000) is None
        config = BenchConfig.from_dict({"cost_per_1k_tokens": "0.02"})
        assert config.cost_per_1k_tokens == 0.02
        assert config.generation_cost(500) == pytest.approx(0.01)
        assert BenchConfig.from_dict({"cost_per_1k_tokens": ""}).cost_per_1k_tokens is None

    def test_invalid_number(self):
        with pytest.raises(ConfigurationError, match="Invalid value for max_tokens"):
            BenchConfig.from_dict({"max_tokens": "lots"})

    def test_unknown_key_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = BenchConfig.from_dict({"colour": "blue", "log_level": "DEBUG"})
        assert "Ignoring unknown config key: colour" in caplog.text
        assert config.log_level == "DEBUG"

    def test_paths(self):
        config = BenchConfig.from_dict({"db_path": "runs/bench.db", "log_file": ""})
        assert config.db_path == Path("runs/bench.db")
        assert config.log_file is None

    def test_empty_db_path_keeps_default(self):
        assert BenchConfig.from_dict({"db_path": ""}).db_path == Path("dashbench.db")

    def test_providers(self):
        config = BenchConfig.from_dict(
            {"providers": {"openai": {"api_key": "k"}, "ollama": {"base_url": "http://box:11434"}, "google": None}}
        )
        assert config.providers["openai"].api_key == "k"
        assert config.providers["openai"].base_url is None
        assert config.providers["ollama"].base_url == "http://box:11434"
        assert config.providers["google"].api_key is None

    def test_providers_must_be_mapping(self):
        with pytest.raises(ConfigurationError, match="providers must be a mapping"):
            BenchConfig.from_dict({"providers": ["openai"]})

    def test_judge_settings(self):
        config = BenchConfig(temperature=0.9, judge_temperature=0.1, retry_attempts=3)
        assert config.generation_settings().temperature == 0.9
        assert config.judge_settings().temperature == 0.1
        assert config.judge_settings().retry_attempts == 3


class TestLoadConfig:
    """Tests for load_config."""

    def test_none_returns_defaults(self):
        assert load_config(None) == BenchConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Config not found"):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == BenchConfig()

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_env_substitution_applied(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DASHBENCH_TEST_RETRIES", "4")
        path = tmp_path / "bench.yaml"
        path.write_text(
            "retry_attempts: ${DASHBENCH_TEST_RETRIES}\n"
            "db_path: ${DASHBENCH_TEST_DB:custom.db}\n"
        )
        monkeypatch.delenv("DASHBENCH_TEST_DB", raising=False)
        config = load_config(path)
        assert config.retry_attempts == 4
        assert config.db_path == Path("custom.db")

    def test_shipped_default_config(self, monkeypatch):
        monkeypatch.delenv("DASHBENCH_DB", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = load_config(REPO_ROOT / "configs" / "default.yaml")
        assert config.db_path == Path("dashbench.db")
        assert config.default_judge_model == DEFAULT_JUDGE_MODEL
        assert config.providers["openai"].api_key is None
