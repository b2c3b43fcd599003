"""
Command-line interface for dashbench.

Supports:
- Registering prompts, models and test cases
- Starting, following, inspecting and cancelling evaluation runs
- Validating and repairing dashboard JSON files
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console

from .evaluation.dashboard_audit import audit_dashboard, repair_dashboard
from .evaluation.schema_repair import ValidationOptions, validate_json, validate_layer_json
from .experiments.config import BenchConfig, load_config
from .experiments.exceptions import DashbenchError
from .experiments.records import ModelRef, RunStatus, StartRunRequest
from .experiments.runner import EvaluationRunner
from .experiments.test_case_import import import_test_cases
from .experiments.tracker import EvaluationTracker, TrackerConfig
from .utils.observability import print_run_summary, setup_logging, watch_run

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config", "-c",
        help="Path to YAML config file",
    )
    common.add_argument(
        "--db",
        help="SQLite database (overrides config db_path)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )

    parser = argparse.ArgumentParser(
        prog="dashbench",
        description="Dashboard generation batch evaluation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Register inputs
  dashbench add-prompt --name layers-v1 --template-file prompts/layers.txt
  dashbench add-model --id gpt-4o --provider openai
  dashbench import data/test_cases/basic.yaml

  # Run an evaluation and follow its progress
  dashbench run --prompt-id 1 --model-id gpt-4o

  # Inspect runs
  dashbench list
  dashbench status 3 --json

  # Repair a generated dashboard
  dashbench validate output.json --audit --write
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", parents=[common], help="Run an evaluation")
    run_parser.add_argument("--prompt-id", type=int, required=True, help="Generation prompt ID")
    run_parser.add_argument("--model-id", required=True, help="Model under test")
    run_parser.add_argument("--judge-prompt-id", type=int, help="Judge prompt ID (default: built-in)")
    run_parser.add_argument("--judge-model-id", help="Judge model ID (default: from config)")
    run_parser.add_argument("--name", help="Run name")
    run_parser.add_argument(
        "--test-case",
        type=int,
        action="append",
        dest="test_case_ids",
        metavar="ID",
        help="Restrict the run to these test cases (repeatable)",
    )
    run_parser.add_argument("--dry-run", action="store_true", help="Use mock clients")
    run_parser.add_argument("--no-progress", action="store_true", help="Do not show a progress bar")

    # Status command
    status_parser = subparsers.add_parser("status", parents=[common], help="Show a run and its results")
    status_parser.add_argument("run_id", type=int, help="Run ID")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # List command
    list_parser = subparsers.add_parser("list", parents=[common], help="List runs, newest first")
    list_parser.add_argument(
        "--status", "-s",
        choices=[s.value for s in RunStatus],
        help="Filter by status",
    )
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Cancel command
    cancel_parser = subparsers.add_parser("cancel", parents=[common], help="Cancel a run")
    cancel_parser.add_argument("run_id", type=int, help="Run ID")

    # Import command
    import_parser = subparsers.add_parser("import", parents=[common], help="Import test cases")
    import_parser.add_argument("file", help="JSON or YAML file of test cases")

    # Add-prompt command
    prompt_parser = subparsers.add_parser("add-prompt", parents=[common], help="Register a prompt template")
    prompt_parser.add_argument("--name", required=True, help="Prompt name")
    template_group = prompt_parser.add_mutually_exclusive_group(required=True)
    template_group.add_argument("--template", help="Template text")
    template_group.add_argument("--template-file", help="File holding the template text")
    prompt_parser.add_argument("--version", type=int, default=1, help="Template version")
    prompt_parser.add_argument("--description", help="Description")

    # Add-model command
    model_parser = subparsers.add_parser("add-model", parents=[common], help="Register a model")
    model_parser.add_argument("--id", required=True, dest="model_id", help="Local model ID")
    model_parser.add_argument("--name", help="Display name (default: ID)")
    model_parser.add_argument(
        "--provider",
        required=True,
        choices=["openai", "openrouter", "anthropic", "google", "ollama", "mock"],
        help="Provider",
    )
    model_parser.add_argument("--provider-model", help="Provider model identifier (default: ID)")

    # Validate command
    validate_parser = subparsers.add_parser("validate", parents=[common], help="Validate and repair a JSON file")
    validate_parser.add_argument("file", help="JSON file")
    validate_parser.add_argument("--layers", action="store_true", help="File holds a bare layer array")
    validate_parser.add_argument("--audit", action="store_true", help="Also run the full dashboard audit")
    validate_parser.add_argument("--strict", action="store_true", help="Treat structural warnings as errors")
    validate_parser.add_argument("--write", action="store_true", help="Write <file>_fixed.json")

    return parser


def _load_config(args: argparse.Namespace) -> BenchConfig:
    config = load_config(args.config) if args.config else BenchConfig()
    if args.db:
        config.db_path = Path(args.db)
    return config


def _tracker(config: BenchConfig) -> EvaluationTracker:
    return EvaluationTracker(TrackerConfig(db_path=config.db_path))


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        config = _load_config(args)
        setup_logging(verbose=args.verbose, log_file=config.log_file, level=config.log_level)

        commands = {
            "run": cmd_run,
            "status": cmd_status,
            "list": cmd_list,
            "cancel": cmd_cancel,
            "import": cmd_import,
            "add-prompt": cmd_add_prompt,
            "add-model": cmd_add_model,
            "validate": cmd_validate,
        }
        return commands[args.command](args, config)
    except DashbenchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace, config: BenchConfig) -> int:
    """Start a run and wait for it to finish."""
    request = StartRunRequest(
        prompt_id=args.prompt_id,
        model_id=args.model_id,
        judge_prompt_id=args.judge_prompt_id,
        judge_model_id=args.judge_model_id,
        name=args.name,
        test_case_ids=args.test_case_ids,
    )
    tracker = _tracker(config)
    with EvaluationRunner(tracker, config, max_concurrent_runs=1, dry_run=args.dry_run) as runner:
        run = runner.start_run(request)
        print(f"Started run {run.id} ({run.total_test_cases} test cases)")
        if not args.no_progress:
            watch_run(tracker, run.id, poll_interval=0.5)
        summary = runner.wait(run.id)

    print_run_summary(summary)
    return 0 if summary.run.status == RunStatus.COMPLETED else 1


def cmd_status(args: argparse.Namespace, config: BenchConfig) -> int:
    """Show a run and its results."""
    summary = _tracker(config).get_run_summary(args.run_id)
    if args.json:
        print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_run_summary(summary)
    return 0


def cmd_list(args: argparse.Namespace, config: BenchConfig) -> int:
    """List runs."""
    status = RunStatus(args.status) if args.status else None
    runs = _tracker(config).list_runs(status)

    if not runs:
        print("No runs found.")
        return 0

    if args.json:
        print(json.dumps([run.to_dict() for run in runs], indent=2))
    else:
        print(f"\n{'ID':<6} {'Name':<24} {'Model':<24} {'Status':<10} {'Progress':<10} {'Avg':<6} {'Started':<20}")
        print("-" * 106)
        for run in runs:
            progress = f"{run.completed_test_cases}/{run.total_test_cases}"
            average = f"{run.average_score:.2f}" if run.average_score is not None else "-"
            print(
                f"{run.id:<6} "
                f"{(run.name or '')[:24]:<24} "
                f"{run.model_id[:24]:<24} "
                f"{run.status.value:<10} "
                f"{progress:<10} "
                f"{average:<6} "
                f"{run.started_at[:19]:<20}"
            )
    return 0


def cmd_cancel(args: argparse.Namespace, config: BenchConfig) -> int:
    """Request cancellation of a run."""
    runner = EvaluationRunner(_tracker(config), config, max_concurrent_runs=1)
    try:
        run = runner.cancel_run(args.run_id)
    finally:
        runner.shutdown()
    print(f"Run {run.id}: {run.status.value} (cancel requested)")
    return 0


def cmd_import(args: argparse.Namespace, config: BenchConfig) -> int:
    """Import test cases from a file."""
    imported = import_test_cases(_tracker(config), args.file)
    for test_case in imported:
        print(f"{test_case.id:<6} {test_case.name}")
    print(f"Imported {len(imported)} test cases")
    return 0


def cmd_add_prompt(args: argparse.Namespace, config: BenchConfig) -> int:
    """Register a prompt template."""
    template = args.template
    if args.template_file:
        template = Path(args.template_file).read_text(encoding="utf-8")
    prompt = _tracker(config).add_prompt(
        args.name, template, version=args.version, description=args.description
    )
    print(f"Added prompt {prompt.id}: {prompt.name} v{prompt.version}")
    return 0


def cmd_add_model(args: argparse.Namespace, config: BenchConfig) -> int:
    """Register a model."""
    model = _tracker(config).add_model(ModelRef(
        id=args.model_id,
        name=args.name or args.model_id,
        provider=args.provider,
        provider_model=args.provider_model or args.model_id,
    ))
    print(f"Added model {model.id} ({model.provider}: {model.provider_model})")
    return 0


def cmd_validate(args: argparse.Namespace, config: BenchConfig) -> int:
    """Validate, repair and optionally audit a JSON file."""
    console = Console()
    path = Path(args.file)
    text = path.read_text(encoding="utf-8")

    options = ValidationOptions(require_domain_structure=True, strict=args.strict)
    result = validate_layer_json(text, options) if args.layers else validate_json(text, options)

    for error in result.errors:
        console.print(f"[red]ERROR[/red] {error}", markup=True, highlight=False)
    for warning in result.warnings:
        console.print(f"[yellow]WARN[/yellow]  {warning}", markup=True, highlight=False)

    if not result.is_valid:
        console.print(f"[bold red]{path}: invalid[/bold red]")
        return 1

    output = result.fixed_text
    audit_ok = True
    if args.audit:
        document = result.value
        if args.write and isinstance(document, dict):
            document, fixes = repair_dashboard(document)
            for fix in fixes:
                console.print(f"[green]FIX[/green]   {fix}", highlight=False)
            output = json.dumps(document, indent=options.indent_size, ensure_ascii=False)
        report = audit_dashboard(document)
        for error in report.errors:
            console.print(f"[red]AUDIT[/red] {error}", highlight=False)
        for warning in report.warnings:
            console.print(f"[yellow]AUDIT[/yellow] {warning}", highlight=False)
        audit_ok = report.is_valid

    status = "valid (repaired)" if result.was_fixed else "valid"
    console.print(f"[bold green]{path}: {status}[/bold green]")

    if args.write:
        fixed_path = path.with_name(f"{path.stem}_fixed.json")
        fixed_path.write_text(output + "\n", encoding="utf-8")
        console.print(f"Wrote {fixed_path}")

    return 0 if audit_ok else 1


if __name__ == "__main__":
    sys.exit(main())
