"""Tests for the dashbench command line."""

import json
from pathlib import Path

import pytest

from dashbench.cli import build_parser, main

REPO_ROOT = Path(__file__).parent.parent
BASIC_CASES = REPO_ROOT / "data" / "test_cases" / "basic.yaml"


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "cli.db")


@pytest.fixture
def registered(db):
    """Database with a prompt, a mock model and the shipped test cases."""
    assert main(["add-prompt", "--db", db, "--name", "layers-v1", "--template", "Build: {{output}}"]) == 0
    assert main(["add-model", "--db", db, "--id", "mock-gen", "--provider", "mock"]) == 0
    assert main(["import", "--db", db, str(BASIC_CASES)]) == 0
    return db


class TestParser:
    """Tests for argument parsing."""

    def test_no_command(self, capsys):
        assert main([]) == 2
        assert "dashbench" in capsys.readouterr().out

    def test_run_arguments(self):
        args = build_parser().parse_args(
            ["run", "--prompt-id", "2", "--model-id", "gpt-4o", "--test-case", "4", "--test-case", "7"]
        )
        assert args.prompt_id == 2
        assert args.test_case_ids == [4, 7]
        assert args.judge_model_id is None

    def test_missing_required_argument(self):
        with pytest.raises(SystemExit) as exc:
            main(["run", "--model-id", "gpt-4o"])
        assert exc.value.code == 2

    def test_template_sources_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add-prompt", "--name", "p", "--template", "t", "--template-file", "f"])


class TestRegistration:
    """Tests for add-prompt, add-model and import."""

    def test_add_prompt(self, db, capsys):
        assert main(["add-prompt", "--db", db, "--name", "layers", "--template", "x {{output}}", "--version", "2"]) == 0
        assert "Added prompt 1: layers v2" in capsys.readouterr().out

    def test_add_prompt_from_file(self, db, capsys):
        template = REPO_ROOT / "prompts" / "layers_v1.txt"
        assert main(["add-prompt", "--db", db, "--name", "layers", "--template-file", str(template)]) == 0
        assert "Added prompt 1: layers v1" in capsys.readouterr().out

    def test_add_model_defaults(self, db, capsys):
        assert main(["add-model", "--db", db, "--id", "gpt-4o", "--provider", "openai"]) == 0
        assert "Added model gpt-4o (openai: gpt-4o)" in capsys.readouterr().out

    def test_import(self, db, capsys):
        assert main(["import", "--db", db, str(BASIC_CASES)]) == 0
        out = capsys.readouterr().out
        assert "Temperature Map Germany" in out
        assert "Imported 5 test cases" in out

    def test_import_missing_file(self, db, tmp_path, capsys):
        assert main(["import", "--db", db, str(tmp_path / "missing.yaml")]) == 1
        assert "Test case file not found" in capsys.readouterr().err


class TestRunCommands:
    """Tests for run, status, list and cancel."""

    def test_dry_run(self, registered, capsys):
        code = main(["run", "--db", registered, "--prompt-id", "1", "--model-id", "mock-gen",
                     "--dry-run", "--no-progress", "--name", "smoke"])
        assert code == 0
        assert "Started run 1 (5 test cases)" in capsys.readouterr().out

        assert main(["status", "--db", registered, "1", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["status"] == "completed"
        assert data["name"] == "smoke"
        assert data["completed_test_cases"] == 5
        assert data["average_score"] == 5
        assert len(data["results"]) == 5

        assert main(["list", "--db", registered, "--json"]) == 0
        [run] = json.loads(capsys.readouterr().out)
        assert run["id"] == 1

        # Finished runs cannot be cancelled
        assert main(["cancel", "--db", registered, "1"]) == 1
        assert "already completed" in capsys.readouterr().err

    def test_run_unknown_model(self, registered, capsys):
        code = main(["run", "--db", registered, "--prompt-id", "1", "--model-id", "nope", "--no-progress"])
        assert code == 1
        assert "Model nope not found" in capsys.readouterr().err

    def test_list_empty(self, db, capsys):
        assert main(["list", "--db", db]) == 0
        assert "No runs found." in capsys.readouterr().out

    def test_list_status_filter(self, registered, capsys):
        main(["run", "--db", registered, "--prompt-id", "1", "--model-id", "mock-gen", "--dry-run", "--no-progress"])
        capsys.readouterr()
        assert main(["list", "--db", registered, "--status", "failed"]) == 0
        assert "No runs found." in capsys.readouterr().out

    def test_status_unknown_run(self, db, capsys):
        assert main(["status", "--db", db, "9"]) == 1
        assert "Run 9 not found" in capsys.readouterr().err

    def test_cancel_unknown_run(self, db):
        assert main(["cancel", "--db", db, "9"]) == 1

    def test_missing_config_file(self, tmp_path, capsys):
        assert main(["list", "--config", str(tmp_path / "nope.yaml")]) == 1
        assert "Config not found" in capsys.readouterr().err


class TestValidateCommand:
    """Tests for validate."""

    def test_repairs_and_writes(self, tmp_path, sample_dashboard):
        sample_dashboard["tabs"][0]["maps"][0]["layers"][1]["model"] = "bogus"
        path = tmp_path / "out.json"
        path.write_text(json.dumps(sample_dashboard) + ",")

        # Trailing comma after the document is not recoverable
        assert main(["validate", str(path)]) == 1

        path.write_text(json.dumps(sample_dashboard).replace("]}]}]", "],}]}]"))
        assert main(["validate", str(path), "--write"]) == 0

        fixed = json.loads((tmp_path / "out_fixed.json").read_text())
        assert fixed["tabs"][0]["maps"][0]["layers"][1]["model"] == "mix"

    def test_layer_array(self, tmp_path):
        path = tmp_path / "layers.json"
        path.write_text('[{"kind": "IsolineLayerDescription"}]')
        assert main(["validate", str(path), "--layers", "--write"]) == 0
        fixed = json.loads((tmp_path / "layers_fixed.json").read_text())
        assert fixed == [{"kind": "IsoLinesLayerDescription"}]

    def test_strict_mode(self, tmp_path):
        path = tmp_path / "partial.json"
        path.write_text('{"title": "no tabs"}')
        assert main(["validate", str(path)]) == 0
        assert main(["validate", str(path), "--strict"]) == 1

    def test_audit_with_repair(self, tmp_path):
        path = tmp_path / "dash.json"
        path.write_text(json.dumps({
            "title": "Wind",
            "use_global_datetime": False,
            "id_account": 860,
            "time_created": "2025-06-18T06:30:00Z",
            "time_updated": "2025-06-18T06:30:00Z",
            "tabs": [{"maps": [{"layers": [
                {"kind": "BackgroundMapDescription", "style": "topographique", "opacity": 1, "show": True},
            ]}]}],
        }))
        # Audit alone reports the missing ids
        assert main(["validate", str(path), "--audit"]) == 1

        assert main(["validate", str(path), "--audit", "--write"]) == 0
        fixed = json.loads((tmp_path / "dash_fixed.json").read_text())
        assert fixed["id"] == 12000
        assert fixed["tab_active"] == 70000
