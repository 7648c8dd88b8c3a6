"""Tests for the ptyhost command line."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ptyhost import __version__
from ptyhost.cli import app

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX commands")

runner = CliRunner()


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestExec:
    def test_success_prints_stdout(self) -> None:
        result = runner.invoke(app, ["exec", "echo", "hello"])
        assert result.exit_code == 0
        assert "hello" in result.output

    def test_failure_exits_nonzero(self) -> None:
        result = runner.invoke(app, ["exec", "false"])
        assert result.exit_code == 1

    def test_missing_binary(self) -> None:
        result = runner.invoke(app, ["exec", "nonexistent-binary-xyz"])
        assert result.exit_code == 1


class TestRun:
    def test_streams_and_propagates_exit_code(self) -> None:
        result = runner.invoke(app, ["run", "sh", "-c", "echo streamed; exit 3"])
        assert result.exit_code == 3
        assert "streamed" in result.output

    def test_missing_binary_exits_127(self) -> None:
        result = runner.invoke(app, ["run", "nonexistent-binary-xyz"])
        assert result.exit_code == 127


class TestEnvs:
    def test_no_environments(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["envs", str(tmp_path)])
        assert result.exit_code == 0
        assert "No environments found" in result.output

    def test_lists_venv(self, tmp_path: Path) -> None:
        (tmp_path / ".venv" / "bin").mkdir(parents=True)
        (tmp_path / ".venv" / "bin" / "python").touch()
        result = runner.invoke(app, ["envs", str(tmp_path)])
        assert result.exit_code == 0
        assert "venv" in result.output
