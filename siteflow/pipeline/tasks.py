"""
Pipeline Tasks Module
======================

Wires the collaborators into the named tasks a user runs.

Entry points:
    clean    remove dist and temp
    lint     parallel(lint_styles, lint_scripts)
    compile  parallel(style, script, page)
    build    series(clean, parallel(series(compile, useref), image, font, extra))
    serve    series(compile, dev_serve)
    start    series(build, dist_serve)
    deploy   series(build, upload)

Example Usage:
    >>> settings = load_settings(production=True)
    >>> registry = create_pipeline(settings)
    >>> report = create_executor(settings.executor).run("build", registry=registry)
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from siteflow.utils.logging import get_logger
from siteflow.orchestration.executor import TaskExecutor, create_executor
from siteflow.orchestration.graph import TaskRegistry
from siteflow.orchestration.task import Task, atomic, parallel, series
from siteflow.pipeline.collaborators import (
    STEP_LAYOUTS,
    Collaborators,
    StepContext,
    StepFunction,
    make_step_context,
)
from siteflow.pipeline.settings import BuildSettings

# Module logger
logger = get_logger(__name__)

ENTRY_POINTS = ("clean", "lint", "build", "serve", "compile", "start", "deploy")

STEP_DESCRIPTIONS = {
    "clean": "Remove dist and temp",
    "lint_styles": "Lint stylesheets",
    "lint_scripts": "Lint scripts",
    "style": "Compile styles into temp",
    "script": "Compile scripts into temp",
    "page": "Render pages into temp",
    "image": "Optimize images into dist",
    "font": "Copy fonts into dist",
    "extra": "Copy public files into dist",
    "useref": "Inject assets into pages and write them to dist",
    "dev_serve": "Serve temp, src and public with live reload",
    "dist_serve": "Serve dist",
    "upload": "Publish dist",
}


def bind_step(
    step: str,
    fn: StepFunction,
    context: StepContext,
    timeout: Optional[float] = None,
) -> Task:
    """Wrap a collaborator as an atomic task that receives its StepContext."""

    def run_step() -> Any:
        return fn(context)

    run_step.__name__ = step
    run_step.__qualname__ = step
    return atomic(
        run_step,
        name=step,
        timeout=timeout,
        description=STEP_DESCRIPTIONS.get(step, ""),
    )


def create_pipeline(
    settings: BuildSettings,
    collaborators: Optional[Collaborators] = None,
    executor: Optional[TaskExecutor] = None,
    rebuild: Optional[Callable[[str], Any]] = None,
) -> TaskRegistry:
    """
    Build the task registry for a site.

    Args:
        settings: Pipeline settings.
        collaborators: Step functions (defaults to the built-in ones).
        executor: Executor the dev server uses to re-run steps on change.
        rebuild: Replaces the dev server's re-run hook entirely.

    Returns:
        TaskRegistry holding every step and entry point.
    """
    collaborators = collaborators or Collaborators()
    registry = TaskRegistry("siteflow")

    if rebuild is None:
        rebuild_executor = executor or create_executor(settings.executor)

        def rebuild(step: str) -> Any:
            return rebuild_executor.run(step, registry=registry)

    for step in STEP_LAYOUTS:
        options = {"rebuild": rebuild} if step == "dev_serve" else {}
        context = make_step_context(settings, step, **options)
        registry.register(
            step,
            bind_step(
                step,
                collaborators.get(step),
                context,
                timeout=settings.timeouts.get(step),
            ),
        )

    registry.register(
        "lint",
        parallel("lint_styles", "lint_scripts", description="Lint styles and scripts"),
    )
    registry.register(
        "compile",
        parallel("style", "script", "page", description="Compile sources into temp"),
    )
    registry.register(
        "build",
        series(
            "clean",
            parallel(series("compile", "useref"), "image", "font", "extra"),
            description="Build the site into dist",
        ),
    )
    registry.register(
        "serve",
        series("compile", "dev_serve", description="Develop with a live preview"),
    )
    registry.register(
        "start",
        series("build", "dist_serve", description="Build, then serve dist"),
    )
    registry.register(
        "deploy",
        series("build", "upload", description="Build, then publish dist"),
    )

    logger.debug(
        f"Pipeline registered {len(registry)} tasks "
        f"(production={settings.production})"
    )
    return registry
