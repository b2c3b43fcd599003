"""
Record types shared by the tracker and the run orchestrator.

The tracker converts rows to these dataclasses on read; the runner only ever
creates results and updates a fixed subset of run fields.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    """Lifecycle of an evaluation run.

    pending -> running -> completed | failed | cancelled
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


@dataclass
class TestCase:
    """A (user prompt, reference dashboard) pair used as ground truth."""

    __test__ = False  # not a pytest class

    id: int
    name: str
    user_prompt: str
    expected_json: Any
    description: str | None = None
    is_active: bool = True
    created_at: str | None = None


@dataclass
class PromptTemplate:
    """A generation or judge prompt. ``template`` holds ``{{...}}`` placeholders."""

    id: int
    name: str
    template: str
    version: int = 1
    description: str | None = None


@dataclass
class ModelRef:
    """A model reachable through one of the supported providers.

    ``id`` is the local key, ``provider_model`` the identifier sent to the
    provider API (often the same string).
    """

    id: str
    name: str
    provider: str
    provider_model: str
    is_active: bool = True


@dataclass
class StartRunRequest:
    """Inputs for starting an evaluation run."""

    prompt_id: int
    model_id: str
    judge_prompt_id: int | None = None
    judge_model_id: str | None = None
    name: str | None = None
    test_case_ids: list[int] | None = None


@dataclass
class EvaluationRun:
    """Persisted state of an evaluation run."""

    id: int
    prompt_id: int
    prompt_version: int
    model_id: str
    status: RunStatus
    total_test_cases: int
    started_at: str
    completed_test_cases: int = 0
    average_score: float | None = None
    judge_prompt_id: int | None = None
    judge_model_id: str | None = None
    name: str | None = None
    completed_at: str | None = None
    cancel_requested: bool = False

    @property
    def duration_ms(self) -> int | None:
        """Wall time between start and completion, if the run has finished."""
        if not self.completed_at:
            return None
        started = datetime.fromisoformat(self.started_at)
        completed = datetime.fromisoformat(self.completed_at)
        return int((completed - started).total_seconds() * 1000)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["duration_ms"] = self.duration_ms
        return data


@dataclass
class EvaluationResult:
    """Outcome of one test case within a run.

    ``comparison_score`` is None when no valid score could be determined.
    ``rule_score`` is the deterministic score in [0, 1], None when generation
    itself failed.
    """

    id: int
    run_id: int
    test_case_id: int
    comparison_details: str
    comparison_score: float | None = None
    generated_json: Any = None
    judge_model_id: str | None = None
    raw_judge_response: str | None = None
    raw_llm_response: str | None = None
    tokens_used: int | None = None
    latency_ms: int | None = None
    rule_score: float | None = None
    rule_details: Any = None
    created_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RunSummary:
    """A run together with every result persisted so far."""

    run: EvaluationRun
    results: list[EvaluationResult] = field(default_factory=list)

    @property
    def scored_results(self) -> list[EvaluationResult]:
        return [r for r in self.results if r.comparison_score is not None]

    @property
    def average_rule_score(self) -> float | None:
        rule_scores = [r.rule_score for r in self.results if r.rule_score is not None]
        if not rule_scores:
            return None
        return sum(rule_scores) / len(rule_scores)

    def to_dict(self) -> dict:
        data = self.run.to_dict()
        data["average_rule_score"] = self.average_rule_score
        data["results"] = [r.to_dict() for r in self.results]
        return data
