"""
Evaluation run orchestrator.

Generates a dashboard for every selected test case, scores it with the
fixed rules of evaluation.rule_based, has a judge model compare it with the
reference, and keeps the run's progress record current:

    pending -> running -> completed | failed | cancelled

Runs execute on a thread pool owned by the runner; test cases within a run
are processed strictly one at a time. A failure while processing a test case
is recorded as a result without a score and never stops the run. Only
failures resolving the run's own inputs mark the whole run failed.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from dashbench.evaluation.judge_parser import parse_judge_response
from dashbench.evaluation.output_extractor import extract_json
from dashbench.evaluation.rule_based import RuleBasedEvaluation, evaluate_generation
from dashbench.evaluation.schema_repair import ValidationOptions, validate_json

from .config import BenchConfig
from .exceptions import ConfigurationError, InvalidRunTransitionError, RunNotFoundError, RunSetupError
from .llm_client import LLMClient, create_client, generate
from .prompts import render_generation_prompt, render_judge_prompt
from .records import (
    EvaluationRun,
    ModelRef,
    PromptTemplate,
    RunStatus,
    RunSummary,
    StartRunRequest,
    TestCase,
)
from .tracker import EvaluationTracker

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ModelRef], LLMClient]


def compute_average_score(scores: list[float | None]) -> float | None:
    """Mean of the valid scores; None scores are excluded, not counted as 0."""
    valid = [s for s in scores if s is not None]
    if not valid:
        return None
    return sum(valid) / len(valid)


@dataclass
class CaseOutcome:
    """What gets persisted for one test case."""

    score: float | None
    details: str
    generated_json: Any = None
    judge_model_id: str | None = None
    raw_judge_response: str | None = None
    raw_llm_response: str | None = None
    tokens_used: int | None = None
    latency_ms: int | None = None
    rule_score: float | None = None
    rule_details: dict | None = None


@dataclass
class _RunInputs:
    prompt: PromptTemplate
    model: ModelRef
    judge_template: str | None
    judge_model: ModelRef
    test_cases: list[TestCase]


class EvaluationRunner:
    """Starts, executes and cancels evaluation runs."""

    def __init__(
        self,
        tracker: EvaluationTracker,
        config: BenchConfig | None = None,
        client_factory: ClientFactory | None = None,
        max_concurrent_runs: int = 4,
        dry_run: bool = False,
    ):
        self.tracker = tracker
        self.config = config or BenchConfig()
        self.client_factory = client_factory or self._default_client_factory
        self.dry_run = dry_run
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_runs, thread_name_prefix="dashbench-run"
        )
        self._futures: dict[int, Future] = {}
        self._lock = threading.Lock()

    def _default_client_factory(self, model: ModelRef) -> LLMClient:
        return create_client(
            model,
            providers=self.config.providers,
            timeout=self.config.request_timeout,
            dry_run=self.dry_run,
        )

    def __enter__(self) -> EvaluationRunner:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def _resolve_inputs(self, request: StartRunRequest) -> _RunInputs:
        """Fetch everything a run needs. Raises RunSetupError if anything is missing."""
        prompt = self.tracker.get_prompt(request.prompt_id)
        if prompt is None:
            raise RunSetupError(f"Prompt {request.prompt_id} not found")

        model = self.tracker.get_model(request.model_id)
        if model is None:
            raise RunSetupError(f"Model {request.model_id} not found")

        judge_template = None
        if request.judge_prompt_id is not None:
            judge_prompt = self.tracker.get_prompt(request.judge_prompt_id)
            if judge_prompt is None:
                raise RunSetupError(f"Judge prompt {request.judge_prompt_id} not found")
            judge_template = judge_prompt.template

        if request.judge_model_id is not None:
            judge_model = self.tracker.get_model(request.judge_model_id)
            if judge_model is None:
                raise RunSetupError(f"Judge model {request.judge_model_id} not found")
        else:
            judge_model = self.config.default_judge()

        test_cases = self.tracker.get_test_cases(active_only=True, ids=request.test_case_ids)
        if not test_cases:
            raise RunSetupError("No active test cases found")

        return _RunInputs(
            prompt=prompt,
            model=model,
            judge_template=judge_template,
            judge_model=judge_model,
            test_cases=test_cases,
        )

    def _create_run(self, request: StartRunRequest) -> tuple[EvaluationRun, list[TestCase]]:
        inputs = self._resolve_inputs(request)
        run = self.tracker.create_run(request, inputs.prompt.version, len(inputs.test_cases))
        logger.info(
            f"Created run {run.id}: model={request.model_id}, prompt={request.prompt_id} "
            f"v{inputs.prompt.version}, {len(inputs.test_cases)} test cases"
        )
        return run, inputs.test_cases

    def start_run(self, request: StartRunRequest) -> EvaluationRun:
        """
        Create a pending run and execute it in the background.

        Returns immediately; poll ``get_run_summary`` or call ``wait``.

        Raises:
            RunSetupError: If the prompt, model, judge or test cases cannot be
                resolved. No run record is created in that case.
        """
        run, test_cases = self._create_run(request)
        future = self._executor.submit(self.execute_run, run.id, request, test_cases)
        with self._lock:
            self._futures[run.id] = future
        future.add_done_callback(lambda f: self._forget(run.id, f))
        return run

    def _forget(self, run_id: int, future: Future) -> None:
        with self._lock:
            self._futures.pop(run_id, None)
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Run {run_id} raised outside its own handling: {future.exception()}")

    def run_sync(self, request: StartRunRequest) -> RunSummary:
        """Create a run and execute it in the calling thread."""
        run, test_cases = self._create_run(request)
        self.execute_run(run.id, request, test_cases)
        return self.tracker.get_run_summary(run.id)

    def wait(self, run_id: int, timeout: float | None = None) -> RunSummary:
        """Block until a run started by this runner finishes."""
        with self._lock:
            future = self._futures.get(run_id)
        if future is not None:
            future.result(timeout=timeout)
            with self._lock:
                self._futures.pop(run_id, None)
        return self.tracker.get_run_summary(run_id)

    def cancel_run(self, run_id: int) -> EvaluationRun:
        """
        Request cancellation of a run.

        A pending run is cancelled immediately. A running run stops before its
        next test case; results already recorded are kept.

        Raises:
            RunNotFoundError: If the run does not exist
            InvalidRunTransitionError: If the run already finished
        """
        run = self.tracker.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        if run.status.is_terminal:
            raise InvalidRunTransitionError(f"Run {run_id} is already {run.status.value}")

        self.tracker.request_cancel(run_id)
        if self.tracker.transition_run(run_id, (RunStatus.PENDING,), RunStatus.CANCELLED):
            logger.info(f"Run {run_id} cancelled before it started")
        else:
            logger.info(f"Cancellation requested for run {run_id}")
        return self.tracker.get_run(run_id)

    def get_run_summary(self, run_id: int) -> RunSummary:
        return self.tracker.get_run_summary(run_id)

    def list_runs(self) -> list[EvaluationRun]:
        return self.tracker.list_runs()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute_run(
        self,
        run_id: int,
        request: StartRunRequest,
        test_cases: list[TestCase],
    ) -> None:
        """Process every test case of a pending run, sequentially."""
        if not self.tracker.transition_run(run_id, (RunStatus.PENDING,), RunStatus.RUNNING):
            logger.info(f"Run {run_id} is no longer pending, not starting it")
            return
        logger.info(f"Run {run_id} running")

        try:
            inputs = self._resolve_inputs(request)
            generator = self.client_factory(inputs.model)
            judge = self.client_factory(inputs.judge_model)
        except (RunSetupError, ConfigurationError) as e:
            logger.error(f"Run {run_id} failed during setup: {e}")
            self.tracker.transition_run(run_id, (RunStatus.RUNNING,), RunStatus.FAILED)
            return

        try:
            self._process_test_cases(run_id, inputs, generator, judge, test_cases)
        except Exception:
            logger.exception(f"Run {run_id} failed")
            self.tracker.transition_run(run_id, (RunStatus.RUNNING,), RunStatus.FAILED)

    def _process_test_cases(
        self,
        run_id: int,
        inputs: _RunInputs,
        generator: LLMClient,
        judge: LLMClient,
        test_cases: list[TestCase],
    ) -> None:
        total = len(test_cases)
        scores: list[float | None] = []

        for i, test_case in enumerate(test_cases):
            if self.tracker.is_cancel_requested(run_id):
                self.tracker.transition_run(run_id, (RunStatus.RUNNING,), RunStatus.CANCELLED)
                logger.info(f"Run {run_id} cancelled after {i}/{total} test cases")
                return

            logger.info(f"Run {run_id} - Test case {i + 1}/{total}: {test_case.name}")
            try:
                outcome = self.evaluate_test_case(
                    test_case,
                    inputs.prompt,
                    inputs.judge_template,
                    generator,
                    judge,
                    inputs.judge_model.id,
                )
            except Exception as e:
                logger.exception(f"Error processing test case {test_case.id}")
                outcome = CaseOutcome(score=None, details=f"Error: {e}")

            if outcome.score is None:
                logger.warning(f"    No score: {outcome.details.splitlines()[0]}")
            else:
                logger.info(f"    Score={outcome.score}")
            if outcome.rule_score is not None:
                logger.debug(f"    Rule score={outcome.rule_score:.2f}")

            self.tracker.add_result(
                run_id=run_id,
                test_case_id=test_case.id,
                comparison_score=outcome.score,
                comparison_details=outcome.details,
                generated_json=outcome.generated_json,
                judge_model_id=outcome.judge_model_id,
                raw_judge_response=outcome.raw_judge_response,
                raw_llm_response=outcome.raw_llm_response,
                tokens_used=outcome.tokens_used,
                latency_ms=outcome.latency_ms,
                rule_score=outcome.rule_score,
                rule_details=outcome.rule_details,
            )
            scores.append(outcome.score)
            completed = i + 1
            average = compute_average_score(scores)
            final_status = RunStatus.COMPLETED if completed == total else None
            self.tracker.update_progress(run_id, completed, average, final_status)

        average = compute_average_score(scores)
        avg_text = f"{average:.2f}" if average is not None else "n/a"
        logger.info(f"Run {run_id} completed: {total} test cases, average score {avg_text}")

    def evaluate_test_case(
        self,
        test_case: TestCase,
        prompt: PromptTemplate,
        judge_template: str | None,
        generator: LLMClient,
        judge: LLMClient,
        judge_model_id: str,
    ) -> CaseOutcome:
        """Generate, extract, optionally repair, score and judge one test case."""
        rendered = render_generation_prompt(prompt.template, test_case.user_prompt)
        generation = generate(
            generator,
            rendered,
            self.config.generation_settings(),
            json_mode=self.config.json_mode,
        )
        usage = {"tokens_used": generation.tokens_used, "latency_ms": generation.latency_ms}
        if not generation.success:
            return CaseOutcome(
                score=None, details=f"Error: Generation failed: {generation.error}", **usage
            )

        extraction = extract_json(generation.content)
        if not extraction.success:
            rules = self._rule_evaluation(test_case, None, generation.tokens_used, generation.latency_ms)
            return CaseOutcome(
                score=None,
                details=f"Error: JSON parsing failed: {extraction.error}",
                raw_llm_response=generation.content,
                rule_score=rules.overall_score,
                rule_details=rules.to_dict(),
                **usage,
            )

        generated = extraction.value
        if self.config.repair_generated:
            repaired = validate_json(
                json.dumps(generated),
                ValidationOptions(require_domain_structure=True),
            )
            if repaired.was_fixed:
                logger.debug(f"    Repaired generated document: {len(repaired.fixes)} fixes")
            generated = repaired.value

        rules = self._rule_evaluation(test_case, generated, generation.tokens_used, generation.latency_ms)
        usage.update(rule_score=rules.overall_score, rule_details=rules.to_dict())

        judge_prompt = render_judge_prompt(
            judge_template, test_case.user_prompt, test_case.expected_json, generated
        )
        judgement = generate(judge, judge_prompt, self.config.judge_settings())
        if not judgement.success:
            return CaseOutcome(
                score=None,
                details=f"Judge model error: {judgement.error}",
                generated_json=generated,
                judge_model_id=judge_model_id,
                raw_llm_response=generation.content,
                **usage,
            )

        verdict = parse_judge_response(judgement.content)
        return CaseOutcome(
            score=verdict.score,
            details=verdict.rationale,
            generated_json=generated,
            judge_model_id=judge_model_id,
            raw_judge_response=judgement.content,
            raw_llm_response=generation.content,
            **usage,
        )

    def _rule_evaluation(
        self, test_case: TestCase, generated: Any, tokens_used: int, latency_ms: int
    ) -> RuleBasedEvaluation:
        return evaluate_generation(
            test_case.user_prompt,
            generated,
            latency_ms=latency_ms,
            cost=self.config.generation_cost(tokens_used),
        )
