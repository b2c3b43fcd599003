"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dashbench.experiments.config import BenchConfig
from dashbench.experiments.llm_client import LLMResponse
from dashbench.experiments.records import ModelRef
from dashbench.experiments.tracker import EvaluationTracker, TrackerConfig


class ScriptedClient:
    """Fake LLM client that replays a fixed list of responses.

    Items may be strings (returned as content) or exceptions (raised).
    Every prompt received is kept in ``prompts``.
    """

    def __init__(self, responses: list, model: str = "scripted"):
        self.responses = list(responses)
        self.model = model
        self.prompts: list[str] = []
        self.json_modes: list[bool] = []

    @property
    def model_id(self) -> str:
        return self.model

    def call(self, prompt, max_tokens=4000, temperature=0.7, json_mode=False, image_url=None):
        self.prompts.append(prompt)
        self.json_modes.append(json_mode)
        if not self.responses:
            raise RuntimeError("ScriptedClient ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return LLMResponse(content=item, model=self.model, tokens_used=10)


def make_client_factory(generator: ScriptedClient, judge: ScriptedClient):
    """Client factory that hands out the judge for the judge model, the generator otherwise."""

    def factory(model: ModelRef):
        return judge if model.id == "judge-model" else generator

    return factory


@pytest.fixture
def tracker(tmp_path: Path) -> EvaluationTracker:
    """Tracker backed by a fresh SQLite file."""
    return EvaluationTracker(TrackerConfig(db_path=tmp_path / "bench.db"))


@pytest.fixture
def bench_config(tmp_path: Path) -> BenchConfig:
    """Config with retries off."""
    return BenchConfig(db_path=tmp_path / "bench.db", retry_attempts=1, retry_min_wait=0, retry_max_wait=0)


@pytest.fixture
def sample_layers() -> list[dict]:
    """Layer list as produced by a generation model."""
    return [
        {"kind": "BackgroundMapDescription", "style": "topographique", "opacity": 1, "show": True},
        {
            "kind": "WmsLayerDescription",
            "model": "mix",
            "parameter_unit": "t_2m:C",
            "color_map": "t_europe",
            "opacity": 0.7,
            "show": True,
        },
    ]


@pytest.fixture
def sample_dashboard(sample_layers) -> dict:
    """Minimal full-form dashboard: one tab, one map."""
    layers = []
    for index, layer in enumerate(sample_layers):
        layers.append({**layer, "id": 550000 + index, "index": index})
    return {
        "id": 12000,
        "title": "Temperature Germany",
        "tabs": [
            {
                "id": 70000,
                "title": "Main",
                "maps": [{"id": 120000, "layers": layers}],
            }
        ],
    }


@pytest.fixture
def seeded(tracker: EvaluationTracker) -> dict:
    """Tracker with a generation prompt, a model, a judge model and three test cases."""
    prompt = tracker.add_prompt("layers-v1", "Build a dashboard for: {{output}}", version=3)
    tracker.add_model(ModelRef(id="gen-model", name="Generator", provider="mock", provider_model="gen"))
    tracker.add_model(ModelRef(id="judge-model", name="Judge", provider="mock", provider_model="judge"))
    cases = [
        tracker.add_test_case(
            f"Case {i}",
            f"Show me map number {i}",
            {"layers": [{"kind": "BackgroundMapDescription", "style": "topographique"}]},
        )
        for i in range(1, 4)
    ]
    return {"prompt": prompt, "test_cases": cases}


def dashboard_reply(layers: list[dict] | None = None) -> str:
    """Generation response text for a layers document."""
    return json.dumps({"layers": layers or [{"kind": "BackgroundMapDescription"}]})


def judge_reply(score, details: str = "Looks right") -> str:
    return f"<score>{score}</score>\n<details>{details}</details>"
