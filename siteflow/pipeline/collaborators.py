"""
Pipeline Collaborators Module
==============================

The atomic steps of the site pipeline.

Every step is a plain function that takes a StepContext and follows the
atomic task contract: return to finish, raise to fail, or return a handle
(a subprocess.Popen or a Future) that finishes later.

The defaults are deliberately thin. Transform steps run the external
command configured under `commands.<step>`, or copy the matching files
when none is configured. Projects swap in their own functions through
`Collaborators`.

Example Usage:
    >>> collaborators = Collaborators(style=compile_sass)
    >>> registry = create_pipeline(settings, collaborators)
"""

from __future__ import annotations

import dataclasses
import glob
import json
import os
import shlex
import shutil
import subprocess
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from siteflow.utils.logging import get_logger, log_execution_time
from siteflow.utils.exceptions import ConfigurationError
from siteflow.pipeline.settings import BuildSettings
from siteflow.pipeline.server import PreviewServer
from siteflow.pipeline.watch import PollingWatcher

# Module logger
logger = get_logger(__name__)

StepFunction = Callable[["StepContext"], Any]


# =============================================================================
# Step Layout
# =============================================================================

@dataclass(frozen=True)
class StepLayout:
    """Where a step reads from, where it writes to, and which files it takes."""
    source: str
    dest: str
    kinds: tuple = ()
    patterns: tuple = ()


# Directory attributes refer to BuildSettings fields
STEP_LAYOUTS: Dict[str, StepLayout] = {
    "clean": StepLayout(source="root", dest="root"),
    "lint_styles": StepLayout(source="src", dest="src", kinds=("styles",)),
    "lint_scripts": StepLayout(source="src", dest="src", kinds=("scripts",)),
    "style": StepLayout(source="src", dest="temp", kinds=("styles",)),
    "script": StepLayout(source="src", dest="temp", kinds=("scripts",)),
    "page": StepLayout(source="src", dest="temp", kinds=("pages",)),
    "image": StepLayout(source="src", dest="dist", kinds=("images",)),
    "font": StepLayout(source="src", dest="dist", kinds=("fonts",)),
    "extra": StepLayout(source="public", dest="dist", patterns=("**",)),
    "useref": StepLayout(source="temp", dest="dist", patterns=("**",)),
    "dev_serve": StepLayout(source="temp", dest="temp"),
    "dist_serve": StepLayout(source="dist", dest="dist"),
    "upload": StepLayout(source="dist", dest="dist"),
}

# Steps the development server re-runs when their sources change
WATCHED_STEPS = ("style", "script", "page")


@dataclass
class StepContext:
    """
    Everything one step needs, passed explicitly.

    Attributes:
        step: Step name.
        settings: Pipeline settings.
        source: Directory the step reads from.
        dest: Directory the step writes to.
        patterns: Glob patterns relative to `source`.
        options: Extra step options (e.g. the rebuild hook for dev_serve).
    """
    step: str
    settings: BuildSettings
    source: Path
    dest: Path
    patterns: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def command(self) -> Optional[str]:
        return self.settings.commands.get(self.step)

    @property
    def production(self) -> bool:
        return self.settings.production


def _directory(settings: BuildSettings, attribute: str) -> Path:
    if attribute == "root":
        return settings.root.resolve()
    return settings.resolve(getattr(settings, attribute))


def make_step_context(
    settings: BuildSettings,
    step: str,
    **options: Any,
) -> StepContext:
    """
    Create the StepContext for a named step.

    Raises:
        ConfigurationError: If the step is unknown or its patterns are missing.
    """
    try:
        layout = STEP_LAYOUTS[step]
    except KeyError:
        raise ConfigurationError(f"Unknown pipeline step '{step}'") from None

    patterns = list(layout.patterns) + settings.patterns(*layout.kinds)
    return StepContext(
        step=step,
        settings=settings,
        source=_directory(settings, layout.source),
        dest=_directory(settings, layout.dest),
        patterns=patterns,
        options=options,
    )


# =============================================================================
# Helpers
# =============================================================================

def collect_files(root: Path, patterns: List[str]) -> List[Path]:
    """
    Files under `root` matching any pattern, relative to `root`.

    `**` matches across directories.
    """
    if not root.is_dir():
        return []
    found = set()
    for pattern in patterns:
        for match in glob.glob(str(root / pattern), recursive=True):
            path = Path(match)
            if path.is_file():
                found.add(path.relative_to(root))
    return sorted(found)


@log_execution_time()
def copy_files(context: StepContext) -> List[Path]:
    """Copy matching files from source to dest, keeping relative paths."""
    files = collect_files(context.source, context.patterns)
    for relative in files:
        target = context.dest / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(context.source / relative, target)
    logger.debug(
        f"{context.step}: copied {len(files)} file(s) "
        f"from {context.source} to {context.dest}"
    )
    return files


@log_execution_time()
def write_template_data(context: StepContext) -> Path:
    """Write the page template data to a JSON file under the temp directory."""
    path = context.settings.temp_dir / ".siteflow" / "data.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(context.settings.data, f, indent=2, default=str)
    return path


def format_command(context: StepContext, template: str) -> List[str]:
    """
    Expand a command template into an argument list.

    Placeholders: {src}, {dest}, {files}, {production}, {branch}, {dist},
    {temp}, {data}. Substituted values are shell-quoted before splitting.

    Raises:
        ConfigurationError: On an unknown placeholder.
    """
    settings = context.settings
    files = collect_files(context.source, context.patterns)
    values = {
        "src": shlex.quote(str(context.source)),
        "dest": shlex.quote(str(context.dest)),
        "files": " ".join(shlex.quote(str(context.source / f)) for f in files),
        "production": "true" if settings.production else "false",
        "branch": shlex.quote(settings.branch),
        "dist": shlex.quote(str(settings.dist_dir)),
        "temp": shlex.quote(str(settings.temp_dir)),
        "data": "",
    }
    if "{data}" in template:
        values["data"] = shlex.quote(str(write_template_data(context)))
    try:
        return shlex.split(template.format(**values))
    except (KeyError, IndexError) as e:
        raise ConfigurationError(
            f"Unknown placeholder {e} in command for '{context.step}'",
            key=f"commands.{context.step}",
        ) from e


def run_command(context: StepContext, template: str) -> subprocess.Popen:
    """
    Start a configured command for a step.

    The returned process is the step's completion handle: the step
    finishes when it exits, and fails on a non-zero exit code.
    """
    args = format_command(context, template)
    if not args:
        raise ConfigurationError(
            f"Empty command for '{context.step}'", key=f"commands.{context.step}"
        )
    logger.info(f"{context.step}: {' '.join(args)}")
    env = dict(os.environ)
    env["SITEFLOW_STEP"] = context.step
    env["SITEFLOW_PRODUCTION"] = "1" if context.production else "0"
    return subprocess.Popen(args, cwd=str(context.settings.root), env=env)


# =============================================================================
# Default Steps
# =============================================================================

def clean(context: StepContext) -> None:
    """Remove the dist and temp directories."""
    for directory in (context.settings.dist_dir, context.settings.temp_dir):
        if directory.exists():
            shutil.rmtree(directory)
            logger.debug(f"Removed {directory}")


def lint(context: StepContext) -> Optional[subprocess.Popen]:
    """Run the configured linter, or skip with a log line."""
    if context.command:
        return run_command(context, context.command)
    logger.info(f"No command configured for '{context.step}', skipping")
    return None


def transform(context: StepContext) -> Any:
    """Run the configured transform command, or copy matching files."""
    if context.command:
        return run_command(context, context.command)
    copy_files(context)
    return None


def page(context: StepContext) -> Any:
    """Render pages with the configured command, or copy them."""
    if context.command:
        return run_command(context, context.command)
    copy_files(context)
    write_template_data(context)
    return None


def watch_groups(settings: BuildSettings) -> Dict[str, List[str]]:
    """Absolute glob patterns for every group the development server watches."""
    groups = {}
    for step in WATCHED_STEPS:
        context = make_step_context(settings, step)
        groups[step] = [str(context.source / pattern) for pattern in context.patterns]
    groups["images"] = [str(settings.src_dir / settings.pattern("images"))]
    groups["fonts"] = [str(settings.src_dir / settings.pattern("fonts"))]
    groups["public"] = [str(settings.public_dir / "**")]
    return groups


def dev_serve(context: StepContext) -> Future:
    """
    Serve temp, src and public with live reload.

    Changed styles, scripts and pages are re-run through the `rebuild`
    option before browsers reload; images, fonts and public files only
    trigger a reload. Finishes when the server is stopped.
    """
    settings = context.settings
    server = PreviewServer(
        directories=[settings.temp_dir, settings.src_dir, settings.public_dir],
        routes={
            prefix: settings.resolve(directory)
            for prefix, directory in settings.routes.items()
        },
        host=settings.host,
        port=settings.dev_port,
        open_browser=settings.open,
        live_reload=True,
    )
    finished = server.start()
    rebuild = context.options.get("rebuild")

    def on_change(group: str) -> None:
        if group in WATCHED_STEPS and rebuild is not None:
            rebuild(group)
        server.reload()

    watcher = PollingWatcher(
        root=settings.root,
        groups=watch_groups(settings),
        callback=on_change,
        interval=settings.watch_interval,
    )
    watcher.start()
    finished.add_done_callback(lambda _: watcher.stop())
    return finished


def dist_serve(context: StepContext) -> Future:
    """Serve the built dist directory. Finishes when the server is stopped."""
    settings = context.settings
    server = PreviewServer(
        directories=[settings.dist_dir],
        host=settings.host,
        port=settings.port,
        open_browser=settings.open,
    )
    return server.start()


def upload(context: StepContext) -> subprocess.Popen:
    """Publish dist with the configured upload command."""
    if not context.command:
        raise ConfigurationError(
            "No upload command configured; set commands.upload "
            "(placeholders: {dist}, {branch})",
            key="commands.upload",
        )
    logger.info(f"Deploying {context.settings.dist_dir} to '{context.settings.branch}'")
    return run_command(context, context.command)


# =============================================================================
# Collaborator Set
# =============================================================================

@dataclass
class Collaborators:
    """
    The function used for each atomic step.

    Example:
        >>> collaborators = Collaborators().replace(style=compile_sass)
    """
    clean: StepFunction = clean
    lint_styles: StepFunction = lint
    lint_scripts: StepFunction = lint
    style: StepFunction = transform
    script: StepFunction = transform
    page: StepFunction = page
    image: StepFunction = transform
    font: StepFunction = transform
    extra: StepFunction = transform
    useref: StepFunction = transform
    dev_serve: StepFunction = dev_serve
    dist_serve: StepFunction = dist_serve
    upload: StepFunction = upload

    def get(self, step: str) -> StepFunction:
        if step not in STEP_LAYOUTS:
            raise ConfigurationError(f"Unknown pipeline step '{step}'")
        return getattr(self, step)

    def replace(self, **steps: StepFunction) -> "Collaborators":
        """Copy with some steps swapped out."""
        unknown = set(steps) - set(STEP_LAYOUTS)
        if unknown:
            raise ConfigurationError(
                f"Unknown pipeline steps: {', '.join(sorted(unknown))}"
            )
        return dataclasses.replace(self, **steps)
