"""
Pipeline Module
================

The static-site pipeline built on the orchestrator.

Components:
    - BuildSettings / load_settings: typed settings from YAML and flags
    - Collaborators: the function behind each atomic step
    - create_pipeline: registry with clean, lint, build, serve, compile,
      start and deploy
    - PreviewServer / PollingWatcher: development server support

Example Usage:
    >>> from siteflow.pipeline import create_pipeline, load_settings
    >>> registry = create_pipeline(load_settings(production=True))
    >>> print(registry.tree("build"))
"""

from siteflow.pipeline.settings import BuildSettings, load_settings
from siteflow.pipeline.collaborators import Collaborators, StepContext
from siteflow.pipeline.server import PreviewServer
from siteflow.pipeline.watch import PollingWatcher
from siteflow.pipeline.tasks import ENTRY_POINTS, create_pipeline

__all__ = [
    "BuildSettings",
    "load_settings",
    "Collaborators",
    "StepContext",
    "PreviewServer",
    "PollingWatcher",
    "ENTRY_POINTS",
    "create_pipeline",
]
