"""
Build Settings Module
======================

Typed view over the YAML configuration used by the site pipeline.

Example Usage:
    >>> settings = load_settings("config/default.yaml", production=True)
    >>> settings.dist_dir
    PosixPath('/path/to/project/dist')
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from siteflow.utils.config import Config, get_config_path, load_config
from siteflow.utils.exceptions import ConfigurationError


# Built-in defaults; a config file only needs to state what differs
DEFAULT_CONFIG: Dict[str, Any] = {
    "build": {
        "src": "src",
        "dist": "dist",
        "temp": "temp",
        "public": "public",
        "paths": {
            "styles": "assets/styles/*.scss",
            "scripts": "assets/scripts/*.js",
            "pages": "*.html",
            "images": "assets/images/**",
            "fonts": "assets/fonts/**",
        },
    },
    "production": False,
    "server": {
        "host": "127.0.0.1",
        "port": 2080,
        "dev_port": 8080,
        "open": False,
        "routes": {"/node_modules": "node_modules"},
    },
    "deploy": {
        "branch": "gh-pages",
    },
    "watch": {
        "interval": 0.5,
    },
    "commands": {},
    "timeouts": {},
    "executor": {
        "backend": "thread",
        "max_workers": None,
        "timeout": None,
        "fail_fast": False,
    },
    "data": {},
}

STEP_NAMES = (
    "clean",
    "lint_styles",
    "lint_scripts",
    "style",
    "script",
    "page",
    "image",
    "font",
    "extra",
    "useref",
    "upload",
)


def _read_timeouts(config: Config) -> Dict[str, float]:
    timeouts = dict(config.get("timeouts", {}) or {})
    config_path = str(config.path) if config.path else None

    unknown = set(timeouts) - set(STEP_NAMES)
    if unknown:
        raise ConfigurationError(
            f"Timeouts configured for unknown steps: {', '.join(sorted(unknown))}",
            config_path=config_path,
            key="timeouts",
        )

    parsed = {}
    for step, value in timeouts.items():
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            seconds = 0.0
        if seconds <= 0:
            raise ConfigurationError(
                f"Timeout for '{step}' must be a positive number of seconds, got {value!r}",
                config_path=config_path,
                key=f"timeouts.{step}",
            )
        parsed[step] = seconds
    return parsed


@dataclass
class BuildSettings:
    """
    Settings for one pipeline invocation.

    Attributes:
        root: Project directory all relative paths are resolved against.
        src: Source directory.
        dist: Output directory.
        temp: Intermediate directory for compiled styles, scripts and pages.
        public: Static files copied to dist as-is.
        paths: Glob patterns per asset kind, relative to `src`.
        production: Minify and optimize when collaborators support it.
        host: Preview server host.
        port: Port for serving dist.
        dev_port: Port for the development server.
        open: Open a browser when a server starts.
        routes: Extra URL prefix -> directory mappings for the dev server.
        branch: Branch the deploy step publishes to.
        watch_interval: Seconds between watcher polls.
        commands: External command template per step name.
        timeouts: Seconds a step may take before it fails, per step name.
        data: Template data handed to the page step.
        executor: Options for create_executor.
    """
    root: Path = field(default_factory=Path.cwd)
    src: str = "src"
    dist: str = "dist"
    temp: str = "temp"
    public: str = "public"
    paths: Dict[str, str] = field(default_factory=dict)
    production: bool = False
    host: str = "127.0.0.1"
    port: int = 2080
    dev_port: int = 8080
    open: bool = False
    routes: Dict[str, str] = field(default_factory=dict)
    branch: str = "gh-pages"
    watch_interval: float = 0.5
    commands: Dict[str, str] = field(default_factory=dict)
    timeouts: Dict[str, float] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    executor: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls,
        config: Config,
        root: Optional[Union[str, Path]] = None,
    ) -> "BuildSettings":
        """Build settings from a loaded Config."""
        unknown = set(config.get("commands", {}) or {}) - set(STEP_NAMES)
        if unknown:
            raise ConfigurationError(
                f"Commands configured for unknown steps: {', '.join(sorted(unknown))}",
                config_path=str(config.path) if config.path else None,
                key="commands",
            )

        data = dict(config.get("data", {}) or {})
        data.setdefault("date", datetime.now().isoformat(timespec="seconds"))

        return cls(
            root=Path(root) if root else Path.cwd(),
            src=config.get("build.src", "src"),
            dist=config.get("build.dist", "dist"),
            temp=config.get("build.temp", "temp"),
            public=config.get("build.public", "public"),
            paths=dict(config.get("build.paths", {}) or {}),
            production=bool(config.get("production", False)),
            host=config.get("server.host", "127.0.0.1"),
            port=int(config.get("server.port", 2080)),
            dev_port=int(config.get("server.dev_port", 8080)),
            open=bool(config.get("server.open", False)),
            routes=dict(config.get("server.routes", {}) or {}),
            branch=config.get("deploy.branch", "gh-pages"),
            watch_interval=float(config.get("watch.interval", 0.5)),
            commands=dict(config.get("commands", {}) or {}),
            timeouts=_read_timeouts(config),
            data=data,
            executor=dict(config.get("executor", {}) or {}),
        )

    def resolve(self, directory: str) -> Path:
        return (self.root / directory).resolve()

    @property
    def src_dir(self) -> Path:
        return self.resolve(self.src)

    @property
    def dist_dir(self) -> Path:
        return self.resolve(self.dist)

    @property
    def temp_dir(self) -> Path:
        return self.resolve(self.temp)

    @property
    def public_dir(self) -> Path:
        return self.resolve(self.public)

    def pattern(self, kind: str) -> str:
        try:
            return self.paths[kind]
        except KeyError:
            raise ConfigurationError(
                f"No path pattern configured for '{kind}'", key=f"build.paths.{kind}"
            ) from None

    def patterns(self, *kinds: str) -> List[str]:
        return [self.pattern(kind) for kind in kinds]


def load_settings(
    path: Optional[Union[str, Path]] = None,
    root: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> BuildSettings:
    """
    Load pipeline settings.

    Args:
        path: Config file; None looks for ./siteflow.yaml or ./config/default.yaml.
        root: Project directory (defaults to the current directory).
        **overrides: Dot-path overrides, e.g. {"server.port": 3000}. Keyword
            names use "__" for dots: server__port=3000.

    Returns:
        BuildSettings.
    """
    if path is None:
        path = get_config_path("default", base=root)
    dotted = {
        key.replace("__", "."): value
        for key, value in overrides.items()
        if value is not None
    }
    config = load_config(path, overrides=dotted, defaults=DEFAULT_CONFIG)
    return BuildSettings.from_config(config, root=root)

