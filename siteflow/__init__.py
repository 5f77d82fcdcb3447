"""
Siteflow Static Site Build Orchestrator
========================================

Declarative build pipelines for static sites: compile styles, scripts
and templated pages, copy assets, then serve or deploy the result.

This package provides:
    - Task composition with series and parallel groups
    - Threaded and asyncio executors with a single completion contract
    - Named task registries with cycle detection before anything runs
    - A ready-made site pipeline (clean, lint, build, serve, compile,
      start, deploy) over injectable collaborators

Example Usage:
    >>> from siteflow.pipeline import create_pipeline, load_settings
    >>> from siteflow.orchestration import create_executor
    >>> settings = load_settings("config/default.yaml")
    >>> registry = create_pipeline(settings)
    >>> report = create_executor(settings.executor).run("build", registry=registry)
    >>> print(report.summary())

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Siteflow Team"

# Package-level imports for convenience
from siteflow.utils.config import Config, load_config
from siteflow.utils.logging import setup_logging, get_logger
from siteflow.orchestration import parallel, run, series, task

__all__ = [
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
    "parallel",
    "run",
    "series",
    "task",
    "__version__",
]
