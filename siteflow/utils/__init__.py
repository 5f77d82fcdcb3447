"""
Utility modules for siteflow.

This package provides common utilities used across the project:
    - config: Configuration loading and management
    - logging: Console/JSON logging setup
    - exceptions: Custom exception hierarchy
"""

from siteflow.utils.config import Config, load_config
from siteflow.utils.logging import setup_logging, get_logger
from siteflow.utils.exceptions import (
    SiteflowError,
    ConfigurationError,
    OrchestrationError,
    CompositionError,
    CycleError,
    TaskError,
    AtomicFailure,
    CompositeFailure,
)

__all__ = [
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
    "SiteflowError",
    "ConfigurationError",
    "OrchestrationError",
    "CompositionError",
    "CycleError",
    "TaskError",
    "AtomicFailure",
    "CompositeFailure",
]
