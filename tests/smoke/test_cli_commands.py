"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work end to end
against a throwaway SQLite database.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def cli_env(tmp_path):
    """Environment pointing the CLI at a temporary database, no log file."""
    env = dict(os.environ)
    env["DATABASE_URL"] = f"sqlite:///{tmp_path / 'progress.db'}"
    env["LOG_FILE"] = ""
    env["LOG_LEVEL"] = "WARNING"
    env["COLUMNS"] = "200"
    return env


@pytest.fixture
def catalog_file(tmp_path, sample_catalog):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(sample_catalog), encoding="utf-8")
    return path


def run_cli_command(args: list[str], env: dict, timeout: int = 60) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m src.cli.main'
        env: Process environment
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    result = subprocess.run(
        [sys.executable, "-m", "src.cli.main", *args],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def seeded_env(cli_env, catalog_file):
    for args in (["init-db"], ["seed", str(catalog_file)], ["add-student", "s1", "--grade", "3"]):
        code, _, stderr = run_cli_command(args, cli_env)
        assert code == 0, f"{args} failed: {stderr}"
    return cli_env


class TestCLIHelp:
    def test_main_help(self, cli_env):
        code, stdout, stderr = run_cli_command(["--help"], cli_env)
        assert code == 0, f"Help failed: {stderr}"
        assert "recommend" in stdout
        assert "record-session" in stdout


class TestCLIFlow:
    def test_record_session(self, seeded_env):
        code, stdout, stderr = run_cli_command(
            ["record-session", "s1", "counting", "--subject", "math",
             "--attempted", "5", "--correct", "5", "--minutes", "15", "--session-id", "cli-1"],
            seeded_env,
        )
        assert code == 0, stderr
        assert "applied" in stdout
        assert "First Steps" in stdout

    def test_replay_exit_code(self, seeded_env):
        args = ["record-session", "s1", "counting", "--subject", "math", "--session-id", "cli-2"]
        assert run_cli_command(args, seeded_env)[0] == 0
        code, stdout, _ = run_cli_command(args, seeded_env)
        assert code == 1
        assert "duplicate" in stdout

    def test_recommend_json(self, seeded_env):
        code, stdout, stderr = run_cli_command(["recommend", "s1", "--json"], seeded_env)
        assert code == 0, stderr
        payload = json.loads(stdout)
        assert payload["total"] == 2
        assert payload["recommendations"][0]["topicId"] == "counting"

    @pytest.mark.parametrize(
        "args",
        [
            ["check-graph"],
            ["streak", "s1", "--today", "2024-03-04"],
            ["achievements", "s1", "--check"],
            ["progress", "s1"],
        ],
    )
    def test_read_commands(self, seeded_env, args):
        code, _, stderr = run_cli_command(args, seeded_env)
        assert code == 0, f"{args} failed: {stderr}"


class TestCLIErrors:
    def test_seed_rejects_cycle(self, cli_env, tmp_path, sample_catalog):
        sample_catalog["subjects"][0]["topics"][0]["prerequisites"] = ["fractions"]
        path = tmp_path / "cyclic.json"
        path.write_text(json.dumps(sample_catalog), encoding="utf-8")

        assert run_cli_command(["init-db"], cli_env)[0] == 0
        code, stdout, _ = run_cli_command(["seed", str(path)], cli_env)
        assert code == 2
        assert "cycle" in stdout
