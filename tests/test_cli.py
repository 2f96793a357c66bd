"""Smoke tests for the CLI.

These tests verify CLI behavior without network access or build tools.
"""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from conftest import write_recipe
from typer.testing import CliRunner

from autobuilder import __version__
from autobuilder.cli import app

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Run commands from an empty temporary directory."""
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield tmp_path
    root.handlers[:] = handlers
    root.setLevel(level)


def write_conf(root: Path, extra: str = "") -> Path:
    conf = root / "master.conf"
    conf.write_text(f"ROOT = ./state\nRETRY_LIMIT = 0\n{extra}")
    return conf


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Auto Builder" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestCLIInit:
    """Test the init command."""

    def test_creates_config_and_sample(self, workspace: Path) -> None:
        """init writes master.conf, state directories and the bc sample."""
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 0
        assert (workspace / "master.conf").is_file()
        assert (workspace / "auto-builder" / "sources").is_dir()
        assert (workspace / "auto-builder" / "packages" / "bc" / "desc.txt").is_file()

    def test_refuses_to_overwrite(self, workspace: Path) -> None:
        """A second init without --force fails."""
        (workspace / "master.conf").write_text("ROOT = /elsewhere\n")
        result = runner.invoke(app, ["init"])
        assert result.exit_code == 1
        assert (workspace / "master.conf").read_text() == "ROOT = /elsewhere\n"

    def test_order_after_init(self, workspace: Path) -> None:
        """The sample package resolves on its own."""
        runner.invoke(app, ["init"])
        result = runner.invoke(app, ["order", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"order": ["bc"], "unresolved": []}


class TestCLIConfigErrors:
    """Configuration problems exit with code 1."""

    def test_missing_config(self, workspace: Path) -> None:
        """run without master.conf exits 1."""
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 1

    def test_invalid_config(self, workspace: Path) -> None:
        """An invalid value exits 1."""
        write_conf(workspace, "PARALLELISM = 0\n")
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 1

    def test_no_packages(self, workspace: Path) -> None:
        """An empty recipe set exits 1."""
        write_conf(workspace)
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 1


class TestCLICommands:
    """Test run, build, order, status and clean."""

    def test_run_reports_failures_with_exit_zero(self, workspace: Path) -> None:
        """Package failures do not change the run's exit code."""
        write_conf(workspace)
        write_recipe(workspace / "state" / "packages", "x", URL="https://example.invalid/x.tgz")
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 0
        assert "0 succeeded, 1 failed" in result.stdout

    def test_build_unknown_package(self, workspace: Path) -> None:
        """Building an unknown package exits 1."""
        write_conf(workspace)
        write_recipe(workspace / "state" / "packages", "x")
        result = runner.invoke(app, ["build", "nope"])
        assert result.exit_code == 1

    def test_build_without_url_fails(self, workspace: Path) -> None:
        """A failed single build exits 1."""
        write_conf(workspace)
        write_recipe(workspace / "state" / "packages", "x")
        result = runner.invoke(app, ["build", "x"])
        assert result.exit_code == 1

    def test_order(self, workspace: Path) -> None:
        """order lists dependencies first."""
        write_conf(workspace)
        pkg_dir = workspace / "state" / "packages"
        write_recipe(pkg_dir, "app", BUILD_DEPS="lib")
        write_recipe(pkg_dir, "lib")
        result = runner.invoke(app, ["order", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["order"] == ["lib", "app"]

    def test_status_json(self, workspace: Path) -> None:
        """status lists known packages, artifacts and jobs."""
        write_conf(workspace)
        write_recipe(workspace / "state" / "packages", "x")
        result = runner.invoke(app, ["status", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {"packages": ["x"], "artifacts": [], "latest": {}, "jobs": []}

    def test_status_shows_latest_result(self, workspace: Path) -> None:
        """status reports each package's latest recorded outcome."""
        write_conf(workspace)
        write_recipe(workspace / "state" / "packages", "x")
        runner.invoke(app, ["build", "x"])

        result = runner.invoke(app, ["status", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["latest"] == {"x": "failed"}
        assert [j["status"] for j in data["jobs"]] == ["failed"]

    def test_clean(self, workspace: Path) -> None:
        """clean empties the work directory only."""
        write_conf(workspace)
        work = workspace / "state" / "work"
        (work / "old-job").mkdir(parents=True)
        (workspace / "state" / "artifacts").mkdir(parents=True)
        (workspace / "state" / "artifacts" / "keep.tar.zst").write_bytes(b"x")

        result = runner.invoke(app, ["clean"])
        assert result.exit_code == 0
        assert list(work.iterdir()) == []
        assert (workspace / "state" / "artifacts" / "keep.tar.zst").exists()

    def test_config_json(self, workspace: Path) -> None:
        """config --json prints effective settings."""
        write_conf(workspace, "PARALLELISM = 4\n")
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["parallelism"] == 4
        assert data["retry_limit"] == 0

    def test_verify_empty(self, workspace: Path) -> None:
        """verify succeeds with no artifacts."""
        write_conf(workspace)
        result = runner.invoke(app, ["verify"])
        assert result.exit_code == 0
