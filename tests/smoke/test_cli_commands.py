"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

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
def database_url(tmp_path):
    """A file-backed SQLite database shared by the commands of one test."""
    return f"sqlite:///{tmp_path / 'study_engine.db'}"


def run_cli_command(args: list[str], database_url: str, timeout: int = 60) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        args: Arguments after 'python -m studyengine.cli.main'
        database_url: DATABASE_URL for the subprocess
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    env = {**os.environ, "DATABASE_URL": database_url, "COLUMNS": "200"}
    result = subprocess.run(
        [sys.executable, "-m", "studyengine.cli.main", *args],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return result.returncode, result.stdout, result.stderr


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, database_url):
        code, stdout, stderr = run_cli_command(["--help"], database_url)

        assert code == 0, f"Help failed: {stderr}"
        assert "config" in stdout
        assert "session" in stdout


class TestCLIConfig:
    """Test config commands against a fresh database."""

    def test_set_then_show(self, database_url):
        code, _, stderr = run_cli_command(["db", "init"], database_url)
        assert code == 0, f"db init failed: {stderr}"

        code, stdout, stderr = run_cli_command(
            ["config", "set", "course_default", "--course", "c1", "--cuecards", "15"],
            database_url,
        )
        assert code == 0, f"config set failed: {stderr}"
        assert "Saved course_default" in stdout

        code, stdout, stderr = run_cli_command(["config", "show", "--course", "c1"], database_url)
        assert code == 0, f"config show failed: {stderr}"
        assert "15" in stdout
        assert "course_default" in stdout

    def test_unknown_source_fails(self, database_url):
        run_cli_command(["db", "init"], database_url)
        code, stdout, _ = run_cli_command(
            ["config", "set", "department_default", "--course", "c1"], database_url
        )
        assert code == 1
        assert "Unknown source" in stdout


class TestCLISession:
    """Test session commands."""

    def test_plan_on_empty_course(self, database_url):
        run_cli_command(["db", "init"], database_url)
        code, stdout, stderr = run_cli_command(
            ["session", "plan", "--user", "alice", "--course", "c1", "--seed", "1"], database_url
        )
        assert code == 0, f"session plan failed: {stderr}"
        assert "0 of 0 items" in stdout

    def test_due_runs(self, database_url):
        run_cli_command(["db", "init"], database_url)
        code, stdout, stderr = run_cli_command(["session", "due", "--user", "alice"], database_url)
        assert code == 0, f"session due failed: {stderr}"
        assert "Items:" in stdout
