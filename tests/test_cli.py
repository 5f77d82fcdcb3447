"""
Command Line Tests
===================

Tests for scripts/run.py exit codes and output.
"""

import json
import logging
import shlex
import sys

import pytest
import yaml

from scripts import run as cli


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def write_config(site, data):
    path = site / "config" / "default.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


class TestArguments:
    """Test argument parsing."""

    def test_defaults(self):
        """Test the parser defaults."""
        args = cli.parse_args([])

        assert args.task is None
        assert args.production is False
        assert args.port is None
        assert args.backend is None

    def test_flags(self):
        """Test the build flags."""
        args = cli.parse_args(
            ["deploy", "--prod", "--port", "3000", "--open", "--branch", "pages",
             "--backend", "asyncio", "--max-workers", "2", "--timeout", "30", "--fail-fast"]
        )

        assert args.task == "deploy"
        assert args.production is True
        assert args.port == 3000
        assert args.open is True
        assert args.branch == "pages"
        assert args.backend == "asyncio"
        assert args.max_workers == 2
        assert args.timeout == 30.0
        assert args.fail_fast is True


class TestExitCodes:
    """Test main() exit codes."""

    def test_build_succeeds(self, site):
        """Test a successful build returns 0."""
        assert cli.main(["build", "--root", str(site)]) == 0
        assert (site / "dist" / "index.html").exists()

    def test_default_task_is_build(self, site):
        """Test running without a task name."""
        assert cli.main(["--root", str(site), "--backend", "asyncio"]) == 0
        assert (site / "dist").exists()

    def test_task_failure(self, site):
        """Test a failing step returns 1."""
        failing = f"{shlex.quote(sys.executable)} -c 'import sys; sys.exit(1)'"
        write_config(site, {"commands": {"lint_styles": failing}})

        assert cli.main(["lint", "--root", str(site)]) == 1

    def test_unknown_task(self, site):
        """Test an unknown task name returns 2."""
        assert cli.main(["publish", "--root", str(site)]) == 2

    def test_bad_configuration(self, site):
        """Test an invalid config file returns 2."""
        write_config(site, {"commands": {"minify": "uglify"}})
        assert cli.main(["build", "--root", str(site)]) == 2

    def test_missing_config_file(self, site):
        """Test an explicit config path that does not exist."""
        assert cli.main(["build", "--config", str(site / "nope.yaml")]) == 2

    def test_interrupted(self, site, monkeypatch):
        """Test Ctrl-C returns 130."""
        def interrupt(*args, **kwargs):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, "create_pipeline", interrupt)
        assert cli.main(["build", "--root", str(site)]) == 130


class TestOutput:
    """Test what the CLI prints and writes."""

    def test_tasks_listing(self, site, capsys):
        """Test --tasks prints every entry point tree."""
        assert cli.main(["--tasks", "--root", str(site)]) == 0
        out = capsys.readouterr().out

        for name in ("lint (parallel)", "compile (parallel)", "build (series)", "deploy (series)"):
            assert name in out

    def test_single_task_listing(self, site, capsys):
        """Test --tasks with a task name prints just that tree."""
        assert cli.main(["start", "--tasks", "--root", str(site)]) == 0
        out = capsys.readouterr().out

        assert "start (series)" in out
        assert "deploy (series)" not in out

    def test_report_file(self, site, tmp_path):
        """Test --report writes the execution report as JSON."""
        report_path = tmp_path / "reports" / "build.json"

        assert cli.main(["build", "--root", str(site), "--report", str(report_path)]) == 0

        data = json.loads(report_path.read_text())
        assert data["task"] == "build"
        assert data["status"] == "succeeded"
        assert any(r["path"] == "build/clean" for r in data["results"])

    def test_json_logs(self, site, capsys):
        """Test --log-json writes one JSON object per line."""
        assert cli.main(["clean", "--root", str(site), "--log-json"]) == 0

        lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
        records = [json.loads(line) for line in lines]

        assert records
        assert all({"level", "logger", "message"} <= set(r) for r in records)
        assert any("clean" in r["message"] for r in records)
