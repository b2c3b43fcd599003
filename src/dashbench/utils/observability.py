"""
Observability utilities for evaluation runs.

Provides:
- Logging setup (rich console output, optional debug log file)
- A progress bar that follows a run by polling its progress record
- A results table for a finished run

Usage:
    from dashbench.utils.observability import setup_logging, watch_run

    setup_logging(verbose=args.verbose)
    run = runner.start_run(request)
    summary = watch_run(runner.tracker, run.id)
    print_run_summary(summary)
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from dashbench.experiments.records import RunSummary
from dashbench.experiments.tracker import EvaluationTracker

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0


def setup_logging(
    verbose: bool = False,
    log_file: Path | None = None,
    use_rich: bool = True,
    level: str = "INFO",
) -> None:
    """
    Configure logging for the CLI.

    Args:
        verbose: If True, show DEBUG level regardless of ``level``
        log_file: Optional path to write full logs (always DEBUG level)
        use_rich: Use rich for console output; plain stderr lines otherwise
        level: Console level name when not verbose
    """
    console_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = []

    if use_rich:
        console_handler: logging.Handler = RichHandler(
            level=console_level,
            show_time=True,
            show_path=verbose,
            markup=False,
            rich_tracebacks=True,
            console=Console(stderr=True),
        )
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        ))
    handlers.append(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
        ))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG,  # Capture everything, handlers filter
        handlers=handlers,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def watch_run(
    tracker: EvaluationTracker,
    run_id: int,
    poll_interval: float = POLL_INTERVAL,
    console: Console | None = None,
) -> RunSummary:
    """Show a progress bar for a run until it reaches a terminal status."""
    summary = tracker.get_run_summary(run_id)
    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console or Console(stderr=True),
    ) as progress:
        task = progress.add_task(f"Run {run_id}", total=summary.run.total_test_cases)
        while True:
            progress.update(
                task,
                completed=summary.run.completed_test_cases,
                description=f"Run {run_id} ({summary.run.status.value})",
            )
            if summary.run.status.is_terminal:
                break
            time.sleep(poll_interval)
            summary = tracker.get_run_summary(run_id)
    return summary


def print_run_summary(summary: RunSummary, console: Console | None = None) -> None:
    """Print a run's status line and a table of its results."""
    console = console or Console()
    run = summary.run
    average = f"{run.average_score:.2f}" if run.average_score is not None else "n/a"

    console.print(
        f"[bold]Run {run.id}[/bold] {run.name or ''} - {run.status.value}, "
        f"{run.completed_test_cases}/{run.total_test_cases} test cases, average score {average}"
    )
    if run.duration_ms is not None:
        console.print(f"Duration: {run.duration_ms / 1000:.1f}s")
    if summary.average_rule_score is not None:
        console.print(f"Rule-based score: {summary.average_rule_score:.0%}")

    if not summary.results:
        return

    table = Table(title="Results")
    table.add_column("Test case", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Rules", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Details", overflow="fold")
    for result in summary.results:
        score = "-" if result.comparison_score is None else f"{result.comparison_score:g}"
        style = "red" if result.comparison_score is None else None
        details = result.comparison_details.splitlines()[0] if result.comparison_details else ""
        rules = "-" if result.rule_score is None else f"{result.rule_score:.0%}"
        latency = "-" if result.latency_ms is None else f"{result.latency_ms / 1000:.1f}s"
        table.add_row(str(result.test_case_id), score, rules, latency, details[:120], style=style)
    console.print(table)
