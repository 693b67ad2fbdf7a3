from __future__ import annotations

import json

import pytest
from click.testing import CliRunner
from fakes import FakeBackend

from review_rounds.cli import main as cli_main

SOLUTION = "function reverse(s) { return [...s].reverse().join(''); }"


@pytest.fixture()
def backends(monkeypatch):
    solver = FakeBackend("solver", [SOLUTION, SOLUTION])
    reviewer = FakeBackend("reviewer", ["Score: 6/10", "Score: 9/10"])
    monkeypatch.setattr(cli_main, "build_backends", lambda settings: (solver, reviewer))
    return solver, reviewer


def test_run_json_prints_result(backends):
    result = CliRunner().invoke(cli_main.cli, ["run", "reverse a string", "--rounds", "3", "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["status"] == "success"
    assert len(data["iterations"]) == 2
    assert data["bestSolution"]["round"] == 2
    solver, reviewer = backends
    assert solver.closed and reviewer.closed


def test_run_streams_to_console(backends):
    result = CliRunner().invoke(cli_main.cli, ["run", "reverse a string", "--rounds", "2"])

    assert result.exit_code == 0, result.output
    assert "Round 1/2" in result.output
    assert "Final Results" in result.output


def test_run_writes_artifacts(backends, tmp_path):
    result = CliRunner().invoke(
        cli_main.cli, ["run", "reverse a string", "--json", "--output-dir", str(tmp_path)]
    )

    assert result.exit_code == 0, result.output
    (run_dir,) = tmp_path.glob("run_*")
    assert (run_dir / "summary.json").exists()
    assert (run_dir / "best" / "best_solution.txt").read_text() == SOLUTION


def test_run_from_preset(backends):
    result = CliRunner().invoke(cli_main.cli, ["run", "--preset", "reverse_string", "--json"])

    assert result.exit_code == 0, result.output
    assert "reverses a string" in json.loads(result.output)["problem"]


def test_run_requires_problem():
    result = CliRunner().invoke(cli_main.cli, ["run"])

    assert result.exit_code == 2
    assert "Provide a PROBLEM argument or --preset" in result.output


def test_run_exits_nonzero_on_connection_failure(monkeypatch):
    solver = FakeBackend("solver", available=False)
    reviewer = FakeBackend("reviewer")
    monkeypatch.setattr(cli_main, "build_backends", lambda settings: (solver, reviewer))

    result = CliRunner().invoke(cli_main.cli, ["run", "p", "--json"])

    assert result.exit_code == 1
    assert '"status": "error"' in result.output


def test_list_problems():
    result = CliRunner().invoke(cli_main.cli, ["list-problems"])

    assert result.exit_code == 0
    assert "reverse_string" in result.output


def test_list_problems_tolerates_null_description(monkeypatch):
    monkeypatch.setattr(cli_main, "list_problems", lambda: ["bare"])
    monkeypatch.setattr(cli_main, "load_problem", lambda name: {"problem": "x", "description": None})

    result = CliRunner().invoke(cli_main.cli, ["list-problems"])

    assert result.exit_code == 0, result.output
    assert "bare" in result.output


def test_bad_config_file_is_a_usage_error(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("rounds: 3\n")

    result = CliRunner().invoke(cli_main.cli, ["run", "p", "--config", str(path)])

    assert result.exit_code == 2
    assert "rounds" in result.output
