"""
Site Pipeline Tests
====================

Tests for the registered entry points and the default collaborators,
run against a small site in a temporary directory.
"""

import logging
import shlex
import sys
import threading
import time
from concurrent.futures import Future

import pytest

from siteflow.orchestration import TaskKind, TaskStatus, ThreadedExecutor, create_executor
from siteflow.pipeline import Collaborators, create_pipeline, load_settings
from siteflow.pipeline import collaborators as collaborators_module
from siteflow.pipeline.collaborators import (
    collect_files,
    copy_files,
    format_command,
    make_step_context,
    watch_groups,
)
from siteflow.pipeline.tasks import ENTRY_POINTS
from siteflow.utils.exceptions import ConfigurationError, TaskTimeoutError

PYTHON = shlex.quote(sys.executable)


def python_command(code: str, *args: str) -> str:
    return " ".join([PYTHON, "-c", shlex.quote(code), *args])


def wait_for(condition, timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while not condition():
        if time.time() > deadline:
            return False
        time.sleep(0.01)
    return True


class Calls:
    """Collaborators that only record which steps ran."""

    def __init__(self):
        self.steps = []
        self._lock = threading.Lock()

    def step(self, context):
        with self._lock:
            self.steps.append(context.step)

    def collaborators(self, **overrides):
        steps = {name: self.step for name in collaborators_module.STEP_LAYOUTS}
        steps.update(overrides)
        return Collaborators(**steps)


@pytest.fixture
def calls():
    return Calls()


class TestRegistration:
    """Test the shape of the registered tasks."""

    def test_entry_points_registered(self, settings):
        """Test every entry point and step is available."""
        registry = create_pipeline(settings)

        for name in ENTRY_POINTS:
            assert name in registry
        for name in collaborators_module.STEP_LAYOUTS:
            assert registry.get(name).is_atomic

    def test_compositions(self, settings):
        """Test the composite shapes."""
        registry = create_pipeline(settings)

        lint = registry.get("lint")
        assert lint.kind is TaskKind.PARALLEL
        assert [c.name for c in lint.children] == ["lint_styles", "lint_scripts"]

        compile_ = registry.get("compile")
        assert compile_.kind is TaskKind.PARALLEL
        assert [c.name for c in compile_.children] == ["style", "script", "page"]

        build = registry.get("build")
        assert build.kind is TaskKind.SERIES
        assert build.children[0].name == "clean"
        assets = build.children[1]
        assert assets.kind is TaskKind.PARALLEL
        assert [c.name for c in assets.children[1:]] == ["image", "font", "extra"]
        assert [c.name for c in assets.children[0].children] == ["compile", "useref"]

        assert [c.name for c in registry.get("serve").children] == ["compile", "dev_serve"]
        assert [c.name for c in registry.get("start").children] == ["build", "dist_serve"]
        assert [c.name for c in registry.get("deploy").children] == ["build", "upload"]

    def test_all_entry_points_validate(self, settings):
        """Test no entry point has cycles or missing names."""
        registry = create_pipeline(settings)
        for name in ENTRY_POINTS:
            registry.validate(name)

    def test_tree_listing(self, settings):
        """Test the build tree renders with descriptions."""
        text = create_pipeline(settings).tree("build")

        assert text.splitlines()[0].startswith("build (series)")
        assert "useref" in text


class TestOrdering:
    """Test the order steps run in."""

    def test_build_order(self, settings, calls):
        """Test clean first, useref after compile, assets in between."""
        registry = create_pipeline(settings, calls.collaborators())
        report = ThreadedExecutor().run("build", registry=registry)
        steps = calls.steps

        assert report.is_success
        assert steps[0] == "clean"
        assert sorted(steps) == sorted(
            ["clean", "style", "script", "page", "useref", "image", "font", "extra"]
        )
        assert steps.index("useref") > max(steps.index(s) for s in ("style", "script", "page"))

    def test_deploy_runs_upload_after_build(self, settings, calls):
        """Test deploy = series(build, upload)."""
        registry = create_pipeline(settings, calls.collaborators())
        report = ThreadedExecutor().run("deploy", registry=registry)

        assert report.is_success
        assert calls.steps[-1] == "upload"
        assert len(calls.steps) == 9

    def test_serve_compiles_first(self, settings, calls):
        """Test serve = series(compile, dev_serve)."""
        registry = create_pipeline(settings, calls.collaborators())
        ThreadedExecutor().run("serve", registry=registry)

        assert calls.steps[-1] == "dev_serve"
        assert set(calls.steps[:3]) == {"style", "script", "page"}

    def test_step_timeouts(self, site, calls):
        """Test timeouts.<step> bounds that one step."""
        settings = load_settings(root=site, timeouts__style=0.1)
        registry = create_pipeline(
            settings, calls.collaborators(style=lambda context: time.sleep(2))
        )

        assert registry.get("style").timeout == 0.1
        assert registry.get("script").timeout is None

        report = ThreadedExecutor().run("compile", registry=registry)

        assert report.failed_task == "style"
        assert isinstance(report.error, TaskTimeoutError)
        assert sorted(calls.steps) == ["page", "script"]

    def test_failure_stops_build(self, settings, calls):
        """Test a failing compile step keeps useref from running."""
        def broken(context):
            raise RuntimeError("syntax error in main.scss")

        registry = create_pipeline(settings, calls.collaborators(style=broken))
        report = ThreadedExecutor().run("build", registry=registry)

        assert not report.is_success
        assert report.failed_task == "style"
        assert "useref" not in calls.steps
        assert report.result("useref").status is TaskStatus.PENDING
        # Siblings of the failing branch still finish
        assert {"image", "font", "extra"} <= set(calls.steps)


class TestDefaultCollaborators:
    """Test the built-in steps on a real directory tree."""

    def test_build_copies_site(self, site, settings):
        """Test an end-to-end build without external commands."""
        registry = create_pipeline(settings)
        report = create_executor({"backend": "asyncio"}).run("build", registry=registry)
        dist = site / "dist"
        temp = site / "temp"

        assert report.is_success, report.summary()
        assert (temp / "assets" / "styles" / "main.scss").exists()
        assert (temp / "index.html").exists()
        assert (temp / ".siteflow" / "data.json").exists()
        assert (dist / "index.html").exists()
        assert (dist / "about.html").exists()
        assert (dist / "assets" / "scripts" / "main.js").exists()
        assert (dist / "assets" / "images" / "logo.png").exists()
        assert (dist / "assets" / "images" / "icons" / "star.svg").exists()
        assert (dist / "assets" / "fonts" / "site.woff").exists()
        assert (dist / "favicon.ico").exists()

    def test_clean(self, site, settings):
        """Test clean removes dist and temp."""
        (site / "dist" / "old").mkdir(parents=True)
        (site / "temp").mkdir()

        report = ThreadedExecutor().run("clean", registry=create_pipeline(settings))

        assert report.is_success
        assert not (site / "dist").exists()
        assert not (site / "temp").exists()

    def test_lint_without_commands(self, settings):
        """Test lint steps succeed when nothing is configured."""
        report = ThreadedExecutor().run("lint", registry=create_pipeline(settings))
        assert report.is_success

    def test_configured_command(self, site):
        """Test a transform step runs its command with placeholders."""
        code = (
            "import pathlib, sys; d = pathlib.Path(sys.argv[1]); "
            "d.mkdir(parents=True, exist_ok=True); "
            "(d / 'main.css').write_text(sys.argv[2])"
        )
        settings = load_settings(
            root=site, production=True,
            commands__style=python_command(code, "{dest}", "{production}"),
        )

        report = ThreadedExecutor().run("style", registry=create_pipeline(settings))

        assert report.is_success
        assert (site / "temp" / "main.css").read_text() == "true"

    def test_failing_command(self, site):
        """Test a non-zero exit fails the step."""
        settings = load_settings(
            root=site, commands__lint_scripts=python_command("import sys; sys.exit(4)"),
        )

        report = ThreadedExecutor().run("lint", registry=create_pipeline(settings))

        assert report.failed_task == "lint_scripts"
        assert report.error.details["returncode"] == 4
        assert report.result("lint_styles").is_success

    def test_upload_requires_command(self, settings, calls):
        """Test deploy fails cleanly without an upload command."""
        registry = create_pipeline(settings, calls.collaborators(upload=Collaborators.upload))
        report = ThreadedExecutor().run("deploy", registry=registry)

        assert report.failed_task == "upload"
        assert isinstance(report.error.cause, ConfigurationError)

    def test_upload_command_gets_branch(self, site, tmp_path):
        """Test {branch} and {dist} reach the upload command."""
        out = tmp_path / "upload.txt"
        code = "import sys, pathlib; pathlib.Path(sys.argv[1]).write_text(' '.join(sys.argv[2:]))"
        settings = load_settings(
            root=site, deploy__branch="pages",
            commands__upload=python_command(code, shlex.quote(str(out)), "{branch}", "{dist}"),
        )

        report = ThreadedExecutor().run("deploy", registry=create_pipeline(settings))

        assert report.is_success, report.summary()
        branch, dist = out.read_text().split(" ", 1)
        assert branch == "pages"
        assert dist == str(settings.dist_dir)

    def test_dev_serve_wiring(self, settings, monkeypatch):
        """Test the dev server gets temp, src, public, the routes and live reload."""
        started = {}

        class FakeServer:
            def __init__(self, directories, routes=None, **kwargs):
                started["directories"] = directories
                started["routes"] = routes
                started.update(kwargs)

            def start(self):
                future = Future()
                future.set_result(None)
                return future

        monkeypatch.setattr(collaborators_module, "PreviewServer", FakeServer)
        rebuilt = []
        registry = create_pipeline(settings, rebuild=rebuilt.append)

        report = ThreadedExecutor().run("dev_serve", registry=registry)

        assert report.is_success
        assert started["directories"] == [
            settings.temp_dir, settings.src_dir, settings.public_dir,
        ]
        assert started["routes"] == {"/node_modules": settings.resolve("node_modules")}
        assert started["port"] == 8080
        assert started["live_reload"] is True

    def test_changes_rebuild_and_reload(self, site, monkeypatch):
        """Test sources are re-run before a reload and assets only reload."""
        events = []
        finished = Future()

        class FakeServer:
            def __init__(self, directories, routes=None, **kwargs):
                pass

            def start(self):
                return finished

            def reload(self):
                events.append("reload")
                return 1

        monkeypatch.setattr(collaborators_module, "PreviewServer", FakeServer)
        settings = load_settings(root=site, watch__interval=0.02)
        context = make_step_context(
            settings, "dev_serve", rebuild=lambda step: events.append(step)
        )

        assert collaborators_module.dev_serve(context) is finished
        try:
            (site / "src" / "assets" / "styles" / "theme.scss").write_text("a {}")
            assert wait_for(lambda: events == ["style", "reload"])

            (site / "public" / "robots.txt").write_text("User-agent: *")
            assert wait_for(lambda: events == ["style", "reload", "reload"])
        finally:
            finished.set_result(None)

    def test_watch_groups(self, settings):
        """Test compile steps and reload-only asset groups are watched."""
        groups = watch_groups(settings)

        assert set(groups) == {"style", "script", "page", "images", "fonts", "public"}
        assert groups["style"] == [str(settings.src_dir / "assets/styles/*.scss")]
        assert groups["public"] == [str(settings.public_dir / "**")]


class TestHelpers:
    """Test collaborator helpers."""

    def test_collect_files(self, site):
        """Test recursive patterns and file filtering."""
        files = collect_files(site / "src", ["assets/images/**"])
        assert [str(f).replace("\\", "/") for f in files] == [
            "assets/images/icons/star.svg",
            "assets/images/logo.png",
        ]

    def test_collect_files_missing_root(self, tmp_path):
        """Test a missing source directory yields nothing."""
        assert collect_files(tmp_path / "nope", ["**"]) == []

    def test_format_command(self, settings):
        """Test placeholders are quoted and expanded."""
        context = make_step_context(settings, "style")
        args = format_command(context, "sass {files} {dest} --prod={production}")

        assert args[0] == "sass"
        assert args[-1] == "--prod=false"
        assert args[-2] == str(settings.temp_dir)
        assert any(a.endswith("main.scss") for a in args)

    def test_unknown_placeholder(self, settings):
        """Test typos in placeholders."""
        context = make_step_context(settings, "style")
        with pytest.raises(ConfigurationError):
            format_command(context, "sass {source}")

    def test_unknown_step(self, settings):
        """Test unknown step names."""
        with pytest.raises(ConfigurationError):
            make_step_context(settings, "minify")
        with pytest.raises(ConfigurationError):
            Collaborators().replace(minify=print)

    def test_replace(self):
        """Test swapping one collaborator."""
        custom = Collaborators().replace(style=print)
        assert custom.style is print
        assert custom.script is collaborators_module.transform

    def test_copy_is_timed(self, settings, caplog):
        """Test copy helpers log how long they took."""
        with caplog.at_level(logging.DEBUG, logger=collaborators_module.__name__):
            files = copy_files(make_step_context(settings, "font"))

        assert [f.name for f in files] == ["site.woff"]
        assert any(
            record.getMessage().startswith("copy_files: Execution time")
            for record in caplog.records
        )
