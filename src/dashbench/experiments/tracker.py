"""
SQLite storage for prompts, models, test cases and evaluation runs.

Usage:
    tracker = EvaluationTracker(TrackerConfig(db_path=Path("dashbench.db")))
    prompt = tracker.add_prompt("layers-v1", "Build a dashboard for: {{output}}")
    tracker.add_test_case("Temperature", "Show me today's temperature map", {...})

    # Read API used for progress polling
    summary = tracker.get_run_summary(run_id)

A result's comparison_score is stored as 0 when no valid score could be
determined and read back as None. Valid scores are never below 1.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .exceptions import RunNotFoundError, StorageError
from .records import (
    EvaluationResult,
    EvaluationRun,
    ModelRef,
    PromptTemplate,
    RunStatus,
    RunSummary,
    StartRunRequest,
    TestCase,
)

logger = logging.getLogger(__name__)

SENTINEL_SCORE = 0

SCHEMA = """
-- Generation and judge prompt templates
CREATE TABLE IF NOT EXISTS prompts (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    template TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    description TEXT,
    created_at TEXT NOT NULL
);

-- Models reachable through a provider
CREATE TABLE IF NOT EXISTS models (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    provider TEXT NOT NULL,
    provider_model TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

-- Ground truth (user prompt, reference dashboard) pairs
CREATE TABLE IF NOT EXISTS test_cases (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    user_prompt TEXT NOT NULL,
    expected_json TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

-- One row per evaluation run
CREATE TABLE IF NOT EXISTS evaluation_runs (
    id INTEGER PRIMARY KEY,
    name TEXT,
    prompt_id INTEGER NOT NULL REFERENCES prompts(id),
    prompt_version INTEGER NOT NULL,
    model_id TEXT NOT NULL REFERENCES models(id),
    judge_prompt_id INTEGER REFERENCES prompts(id),
    judge_model_id TEXT,
    total_test_cases INTEGER NOT NULL,
    completed_test_cases INTEGER NOT NULL DEFAULT 0,
    average_score REAL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    cancel_requested INTEGER NOT NULL DEFAULT 0
);

-- One row per test case processed in a run (insert only)
CREATE TABLE IF NOT EXISTS evaluation_results (
    id INTEGER PRIMARY KEY,
    run_id INTEGER NOT NULL REFERENCES evaluation_runs(id),
    test_case_id INTEGER NOT NULL REFERENCES test_cases(id),
    generated_json TEXT,
    comparison_score REAL NOT NULL,
    comparison_details TEXT NOT NULL,
    judge_model_id TEXT,
    raw_judge_response TEXT,
    raw_llm_response TEXT,
    tokens_used INTEGER,
    latency_ms INTEGER,
    rule_score REAL,
    rule_details TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_results_run ON evaluation_results(run_id);
CREATE INDEX IF NOT EXISTS idx_runs_status ON evaluation_runs(status);
"""

# Result columns added after the first schema; older databases gain them on open
ADDED_RESULT_COLUMNS = {
    "tokens_used": "INTEGER",
    "latency_ms": "INTEGER",
    "rule_score": "REAL",
    "rule_details": "TEXT",
}


@dataclass
class TrackerConfig:
    """Configuration for the evaluation tracker."""

    db_path: Path = Path("dashbench.db")
    store_raw_responses: bool = True  # Set False to save space (responses can be large)


def _now() -> str:
    return datetime.now().isoformat()


def _dumps(value: Any) -> str | None:
    return json.dumps(value, ensure_ascii=False) if value is not None else None


def _loads(value: str | None) -> Any:
    return json.loads(value) if value is not None else None


class EvaluationTracker:
    """SQLite-backed storage collaborator.

    Every method opens its own connection, so one tracker can be shared by
    concurrently executing runs. Uses WAL mode for concurrent read/write.
    """

    def __init__(self, config: TrackerConfig | None = None):
        self.config = config or TrackerConfig()
        self.db_path = self.config.db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database with schema."""
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            existing = {row["name"] for row in conn.execute("PRAGMA table_info(evaluation_results)")}
            for column, sql_type in ADDED_RESULT_COLUMNS.items():
                if column not in existing:
                    logger.info(f"Adding evaluation_results.{column} to {self.db_path}")
                    conn.execute(f"ALTER TABLE evaluation_results ADD COLUMN {column} {sql_type}")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # Prompts and models
    # -------------------------------------------------------------------------

    def add_prompt(
        self,
        name: str,
        template: str,
        version: int = 1,
        description: str | None = None,
    ) -> PromptTemplate:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO prompts (name, template, version, description, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (name, template, version, description, _now()),
            )
            prompt_id = cursor.lastrowid
        return PromptTemplate(
            id=prompt_id, name=name, template=template, version=version, description=description
        )

    def get_prompt(self, prompt_id: int) -> PromptTemplate | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM prompts WHERE id = ?", (prompt_id,)).fetchone()
        if row is None:
            return None
        return PromptTemplate(
            id=row["id"],
            name=row["name"],
            template=row["template"],
            version=row["version"],
            description=row["description"],
        )

    def add_model(self, model: ModelRef) -> ModelRef:
        """Register a model. Re-registering an id replaces it."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO models (id, name, provider, provider_model, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (model.id, model.name, model.provider, model.provider_model, int(model.is_active), _now()),
            )
        return model

    def get_model(self, model_id: str) -> ModelRef | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM models WHERE id = ?", (model_id,)).fetchone()
        if row is None:
            return None
        return ModelRef(
            id=row["id"],
            name=row["name"],
            provider=row["provider"],
            provider_model=row["provider_model"],
            is_active=bool(row["is_active"]),
        )

    # -------------------------------------------------------------------------
    # Test cases
    # -------------------------------------------------------------------------

    def add_test_case(
        self,
        name: str,
        user_prompt: str,
        expected_json: Any,
        description: str | None = None,
        is_active: bool = True,
    ) -> TestCase:
        created_at = _now()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO test_cases (name, description, user_prompt, expected_json, is_active, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (name, description, user_prompt, _dumps(expected_json), int(is_active), created_at),
            )
            test_case_id = cursor.lastrowid
        return TestCase(
            id=test_case_id,
            name=name,
            user_prompt=user_prompt,
            expected_json=expected_json,
            description=description,
            is_active=is_active,
            created_at=created_at,
        )

    def get_test_cases(
        self,
        active_only: bool = True,
        ids: list[int] | None = None,
    ) -> list[TestCase]:
        """Get test cases in id order, optionally restricted to ``ids``."""
        sql = "SELECT * FROM test_cases"
        clauses: list[str] = []
        params: list[Any] = []
        if active_only:
            clauses.append("is_active = 1")
        if ids is not None:
            if not ids:
                return []
            clauses.append(f"id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            TestCase(
                id=row["id"],
                name=row["name"],
                user_prompt=row["user_prompt"],
                expected_json=_loads(row["expected_json"]),
                description=row["description"],
                is_active=bool(row["is_active"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def deactivate_test_case(self, test_case_id: int) -> bool:
        """Soft-delete a test case. Returns False if it does not exist."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE test_cases SET is_active = 0 WHERE id = ?", (test_case_id,)
            )
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Run management
    # -------------------------------------------------------------------------

    def create_run(
        self,
        request: StartRunRequest,
        prompt_version: int,
        total_test_cases: int,
    ) -> EvaluationRun:
        """Insert a run in ``pending`` state."""
        started_at = _now()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO evaluation_runs (
                    name, prompt_id, prompt_version, model_id, judge_prompt_id,
                    judge_model_id, total_test_cases, status, started_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request.name,
                    request.prompt_id,
                    prompt_version,
                    request.model_id,
                    request.judge_prompt_id,
                    request.judge_model_id,
                    total_test_cases,
                    RunStatus.PENDING.value,
                    started_at,
                ),
            )
            run_id = cursor.lastrowid
        logger.debug(f"Created run {run_id} with {total_test_cases} test cases")
        return EvaluationRun(
            id=run_id,
            name=request.name,
            prompt_id=request.prompt_id,
            prompt_version=prompt_version,
            model_id=request.model_id,
            judge_prompt_id=request.judge_prompt_id,
            judge_model_id=request.judge_model_id,
            status=RunStatus.PENDING,
            total_test_cases=total_test_cases,
            started_at=started_at,
        )

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> EvaluationRun:
        return EvaluationRun(
            id=row["id"],
            name=row["name"],
            prompt_id=row["prompt_id"],
            prompt_version=row["prompt_version"],
            model_id=row["model_id"],
            judge_prompt_id=row["judge_prompt_id"],
            judge_model_id=row["judge_model_id"],
            status=RunStatus(row["status"]),
            total_test_cases=row["total_test_cases"],
            completed_test_cases=row["completed_test_cases"],
            average_score=row["average_score"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            cancel_requested=bool(row["cancel_requested"]),
        )

    def get_run(self, run_id: int) -> EvaluationRun | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM evaluation_runs WHERE id = ?", (run_id,)).fetchone()
        return self._row_to_run(row) if row else None

    def list_runs(self, status: RunStatus | None = None) -> list[EvaluationRun]:
        """All runs, newest first."""
        with self._connect() as conn:
            if status is None:
                rows = conn.execute("SELECT * FROM evaluation_runs ORDER BY id DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM evaluation_runs WHERE status = ? ORDER BY id DESC",
                    (status.value,),
                ).fetchall()
        return [self._row_to_run(row) for row in rows]

    def transition_run(
        self,
        run_id: int,
        from_statuses: tuple[RunStatus, ...],
        to_status: RunStatus,
    ) -> bool:
        """Move a run to ``to_status`` if it is currently in one of ``from_statuses``.

        Terminal statuses also stamp ``completed_at``. Returns False when the
        run was not in an allowed state.
        """
        placeholders = ", ".join("?" for _ in from_statuses)
        completed_at = _now() if to_status.is_terminal else None
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE evaluation_runs
                SET status = ?, completed_at = COALESCE(?, completed_at)
                WHERE id = ? AND status IN ({placeholders})
                """,
                (to_status.value, completed_at, run_id, *(s.value for s in from_statuses)),
            )
            return cursor.rowcount > 0

    def request_cancel(self, run_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE evaluation_runs SET cancel_requested = 1 WHERE id = ?", (run_id,)
            )

    def is_cancel_requested(self, run_id: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT cancel_requested FROM evaluation_runs WHERE id = ?", (run_id,)
            ).fetchone()
        return bool(row and row["cancel_requested"])

    def update_progress(
        self,
        run_id: int,
        completed_test_cases: int,
        average_score: float | None,
        final_status: RunStatus | None = None,
    ) -> None:
        """Persist run progress, and the terminal status when given, in one statement."""
        completed_at = _now() if final_status is not None else None
        status = final_status.value if final_status is not None else None
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE evaluation_runs
                SET completed_test_cases = ?,
                    average_score = ?,
                    status = COALESCE(?, status),
                    completed_at = COALESCE(?, completed_at)
                WHERE id = ?
                """,
                (completed_test_cases, average_score, status, completed_at, run_id),
            )

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def add_result(
        self,
        run_id: int,
        test_case_id: int,
        comparison_score: float | None,
        comparison_details: str,
        generated_json: Any = None,
        judge_model_id: str | None = None,
        raw_judge_response: str | None = None,
        raw_llm_response: str | None = None,
        tokens_used: int | None = None,
        latency_ms: int | None = None,
        rule_score: float | None = None,
        rule_details: Any = None,
    ) -> EvaluationResult:
        """Insert a result. A None score is stored as the sentinel 0."""
        if not self.config.store_raw_responses:
            raw_llm_response = None
        created_at = _now()
        stored_score = SENTINEL_SCORE if comparison_score is None else comparison_score
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO evaluation_results (
                    run_id, test_case_id, generated_json, comparison_score,
                    comparison_details, judge_model_id, raw_judge_response,
                    raw_llm_response, tokens_used, latency_ms, rule_score,
                    rule_details, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    test_case_id,
                    _dumps(generated_json),
                    stored_score,
                    comparison_details,
                    judge_model_id,
                    raw_judge_response,
                    raw_llm_response,
                    tokens_used,
                    latency_ms,
                    rule_score,
                    _dumps(rule_details),
                    created_at,
                ),
            )
            result_id = cursor.lastrowid
        return EvaluationResult(
            id=result_id,
            run_id=run_id,
            test_case_id=test_case_id,
            comparison_score=comparison_score,
            comparison_details=comparison_details,
            generated_json=generated_json,
            judge_model_id=judge_model_id,
            raw_judge_response=raw_judge_response,
            raw_llm_response=raw_llm_response,
            tokens_used=tokens_used,
            latency_ms=latency_ms,
            rule_score=rule_score,
            rule_details=rule_details,
            created_at=created_at,
        )

    def get_results(self, run_id: int) -> list[EvaluationResult]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM evaluation_results WHERE run_id = ? ORDER BY id", (run_id,)
            ).fetchall()
        return [
            EvaluationResult(
                id=row["id"],
                run_id=row["run_id"],
                test_case_id=row["test_case_id"],
                comparison_score=(
                    None if row["comparison_score"] == SENTINEL_SCORE else row["comparison_score"]
                ),
                comparison_details=row["comparison_details"],
                generated_json=_loads(row["generated_json"]),
                judge_model_id=row["judge_model_id"],
                raw_judge_response=row["raw_judge_response"],
                raw_llm_response=row["raw_llm_response"],
                tokens_used=row["tokens_used"],
                latency_ms=row["latency_ms"],
                rule_score=row["rule_score"],
                rule_details=_loads(row["rule_details"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def get_run_summary(self, run_id: int) -> RunSummary:
        """Run record plus its results, for progress polling.

        Raises:
            RunNotFoundError: If the run does not exist
        """
        run = self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return RunSummary(run=run, results=self.get_results(run_id))
