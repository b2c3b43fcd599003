"""
Tests for the SQLite evaluation tracker.

Verifies that:
- Prompts, models and test cases round-trip through the database
- Runs follow the allowed status transitions
- The sentinel score is stored as 0 and read back as None
- Older databases gain the result columns added since
"""

import sqlite3

import pytest

from dashbench.experiments.exceptions import RunNotFoundError, StorageError
from dashbench.experiments.records import ModelRef, RunStatus, StartRunRequest
from dashbench.experiments.tracker import EvaluationTracker, TrackerConfig


def _create_run(tracker, total=3, **kwargs):
    request = StartRunRequest(prompt_id=1, model_id="gen-model", **kwargs)
    return tracker.create_run(request, prompt_version=2, total_test_cases=total)


class TestInputs:
    """Tests for prompts, models and test cases."""

    def test_prompt_roundtrip(self, tracker):
        prompt = tracker.add_prompt("layers", "Build: {{output}}", version=4, description="v4")
        loaded = tracker.get_prompt(prompt.id)
        assert loaded == prompt
        assert tracker.get_prompt(999) is None

    def test_model_roundtrip_and_replace(self, tracker):
        model = ModelRef(id="gpt-4o", name="GPT-4o", provider="openai", provider_model="gpt-4o")
        tracker.add_model(model)
        assert tracker.get_model("gpt-4o") == model

        tracker.add_model(ModelRef(id="gpt-4o", name="Renamed", provider="openrouter", provider_model="openai/gpt-4o"))
        assert tracker.get_model("gpt-4o").provider == "openrouter"
        assert tracker.get_model("missing") is None

    def test_test_case_json_roundtrip(self, tracker):
        expected = {"layers": [{"kind": "WmsLayerDescription", "parameter_unit": "t_2m:C"}], "title": "Ünïcode"}
        created = tracker.add_test_case("Temp", "Show temperature", expected, description="d")
        [loaded] = tracker.get_test_cases()
        assert loaded.id == created.id
        assert loaded.expected_json == expected
        assert loaded.description == "d"
        assert loaded.is_active

    def test_active_filter_and_deactivate(self, tracker):
        first = tracker.add_test_case("A", "a", [])
        second = tracker.add_test_case("B", "b", [])
        tracker.add_test_case("C", "c", [], is_active=False)

        assert [tc.name for tc in tracker.get_test_cases()] == ["A", "B"]
        assert len(tracker.get_test_cases(active_only=False)) == 3

        assert tracker.deactivate_test_case(first.id)
        assert not tracker.deactivate_test_case(999)
        assert [tc.id for tc in tracker.get_test_cases()] == [second.id]

    def test_subset_by_ids(self, tracker):
        cases = [tracker.add_test_case(f"T{i}", "p", {}) for i in range(4)]
        tracker.deactivate_test_case(cases[1].id)
        subset = tracker.get_test_cases(ids=[cases[3].id, cases[1].id, cases[0].id])
        assert [tc.id for tc in subset] == [cases[0].id, cases[3].id]
        assert tracker.get_test_cases(ids=[]) == []


class TestRuns:
    """Tests for run records and transitions."""

    def test_create_run_is_pending(self, tracker):
        run = _create_run(tracker, name="nightly", judge_model_id="judge")
        loaded = tracker.get_run(run.id)
        assert loaded.status == RunStatus.PENDING
        assert loaded.completed_test_cases == 0
        assert loaded.average_score is None
        assert loaded.prompt_version == 2
        assert loaded.name == "nightly"
        assert loaded.judge_model_id == "judge"
        assert loaded.completed_at is None
        assert loaded.duration_ms is None

    def test_transition_is_conditional(self, tracker):
        run = _create_run(tracker)
        assert tracker.transition_run(run.id, (RunStatus.PENDING,), RunStatus.RUNNING)
        assert not tracker.transition_run(run.id, (RunStatus.PENDING,), RunStatus.RUNNING)
        assert tracker.get_run(run.id).completed_at is None

        assert tracker.transition_run(run.id, (RunStatus.RUNNING,), RunStatus.FAILED)
        failed = tracker.get_run(run.id)
        assert failed.status == RunStatus.FAILED
        assert failed.completed_at is not None
        assert failed.duration_ms >= 0

    def test_update_progress(self, tracker):
        run = _create_run(tracker, total=2)
        tracker.update_progress(run.id, 1, 8.0)
        partial = tracker.get_run(run.id)
        assert partial.completed_test_cases == 1
        assert partial.average_score == 8.0
        assert partial.status == RunStatus.PENDING
        assert partial.completed_at is None

        tracker.update_progress(run.id, 2, 7.0, RunStatus.COMPLETED)
        done = tracker.get_run(run.id)
        assert done.status == RunStatus.COMPLETED
        assert done.completed_at is not None

    def test_cancel_flag(self, tracker):
        run = _create_run(tracker)
        assert not tracker.is_cancel_requested(run.id)
        tracker.request_cancel(run.id)
        assert tracker.is_cancel_requested(run.id)
        assert tracker.get_run(run.id).cancel_requested

    def test_list_runs_newest_first(self, tracker):
        first = _create_run(tracker)
        second = _create_run(tracker)
        tracker.transition_run(first.id, (RunStatus.PENDING,), RunStatus.CANCELLED)
        assert [r.id for r in tracker.list_runs()] == [second.id, first.id]
        assert [r.id for r in tracker.list_runs(RunStatus.CANCELLED)] == [first.id]


class TestResults:
    """Tests for results and the read API."""

    def test_sentinel_roundtrip(self, tracker):
        run = _create_run(tracker)
        tracker.add_result(run.id, 1, 8, "good", generated_json={"layers": []}, judge_model_id="judge")
        failed = tracker.add_result(run.id, 2, None, "Error: boom")
        assert failed.comparison_score is None

        with sqlite3.connect(tracker.db_path) as conn:
            stored = [row[0] for row in conn.execute("SELECT comparison_score FROM evaluation_results ORDER BY id")]
        assert stored == [8, 0]

        results = tracker.get_results(run.id)
        assert [r.comparison_score for r in results] == [8, None]
        assert results[0].generated_json == {"layers": []}
        assert results[1].generated_json is None

    def test_raw_responses_can_be_dropped(self, tmp_path):
        tracker = EvaluationTracker(TrackerConfig(db_path=tmp_path / "slim.db", store_raw_responses=False))
        run = _create_run(tracker)
        tracker.add_result(run.id, 1, 5, "ok", raw_llm_response="{...}", raw_judge_response="<score>5</score>")
        [result] = tracker.get_results(run.id)
        assert result.raw_llm_response is None
        assert result.raw_judge_response == "<score>5</score>"

    def test_run_summary(self, tracker):
        run = _create_run(tracker)
        tracker.add_result(run.id, 1, 6, "ok")
        summary = tracker.get_run_summary(run.id)
        assert summary.run.id == run.id
        assert len(summary.results) == 1
        assert len(summary.scored_results) == 1

        data = summary.to_dict()
        assert data["status"] == "pending"
        assert data["results"][0]["comparison_score"] == 6

    def test_usage_and_rule_score_roundtrip(self, tracker):
        run = _create_run(tracker)
        details = {"overall_score": 0.8, "criteria": {"layer_count": {"score": 1.0}}}
        tracker.add_result(
            run.id, 1, 7, "ok", tokens_used=412, latency_ms=1830, rule_score=0.8, rule_details=details
        )
        tracker.add_result(run.id, 2, None, "Error: Generation failed: timeout", latency_ms=120000)

        first, second = tracker.get_results(run.id)
        assert (first.tokens_used, first.latency_ms, first.rule_score) == (412, 1830, 0.8)
        assert first.rule_details == details
        assert second.tokens_used is None
        assert second.rule_score is None
        assert second.rule_details is None

        summary = tracker.get_run_summary(run.id)
        assert summary.average_rule_score == 0.8
        assert summary.to_dict()["average_rule_score"] == 0.8

    def test_run_summary_unknown_run(self, tracker):
        with pytest.raises(RunNotFoundError):
            tracker.get_run_summary(42)


class TestSchemaUpgrade:
    """Databases created before the usage columns existed."""

    def test_missing_result_columns_added(self, tmp_path):
        db_path = tmp_path / "old.db"
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                "CREATE TABLE evaluation_results ("
                "id INTEGER PRIMARY KEY, run_id INTEGER NOT NULL, test_case_id INTEGER NOT NULL, "
                "generated_json TEXT, comparison_score REAL NOT NULL, comparison_details TEXT NOT NULL, "
                "judge_model_id TEXT, raw_judge_response TEXT, raw_llm_response TEXT, "
                "created_at TEXT NOT NULL)"
            )

        tracker = EvaluationTracker(TrackerConfig(db_path=db_path))
        with sqlite3.connect(db_path) as conn:
            columns = {row[1] for row in conn.execute("PRAGMA table_info(evaluation_results)")}
        assert {"tokens_used", "latency_ms", "rule_score", "rule_details"} <= columns

        run = _create_run(tracker)
        tracker.add_result(run.id, 1, 5, "ok", tokens_used=3)
        assert tracker.get_results(run.id)[0].tokens_used == 3


class TestStorageErrors:
    """Tests for sqlite error wrapping."""

    def test_unopenable_database(self, tmp_path):
        with pytest.raises(StorageError):
            EvaluationTracker(TrackerConfig(db_path=tmp_path / "missing_dir" / "bench.db"))
