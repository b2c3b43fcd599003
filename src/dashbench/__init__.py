"""
dashbench - batch evaluation of LLM-generated weather dashboards.

Generates a dashboard configuration for every stored test case with the model
under test, has a judge model score it against the reference, and records
progress and results in SQLite.

Example:
    from dashbench.experiments import EvaluationRunner, EvaluationTracker, StartRunRequest

    tracker = EvaluationTracker()
    with EvaluationRunner(tracker) as runner:
        run = runner.start_run(StartRunRequest(prompt_id=1, model_id="gpt-4o"))
        summary = runner.wait(run.id)
    print(summary.run.average_score)
"""

__version__ = "0.1.0"
