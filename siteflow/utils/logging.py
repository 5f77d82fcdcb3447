"""
Logging Module
===============

This module provides the logging setup used by the CLI and the orchestrator:
    - Colored console output via colorlog
    - Optional rotating log file
    - Structured JSON logging for CI and log aggregation
    - Execution timing decorator

Example Usage:
    >>> from siteflow.utils.logging import setup_logging, get_logger
    >>> setup_logging(level="DEBUG", log_file="logs/build.log")
    >>> logger = get_logger(__name__)
    >>> logger.info("Starting 'build'")
"""

from __future__ import annotations

import functools
import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

import colorlog


# Level to color mapping for colorlog
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "white,bg_red",
}


# =============================================================================
# Custom Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    Logging formatter that outputs structured JSON.

    Example output:
        {"timestamp": "2024-01-15T10:30:00", "level": "INFO", "message": "..."}
    """

    # Attributes every LogRecord carries; anything else came in via `extra=`
    STANDARD_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    }

    def __init__(
        self,
        include_extra: bool = True,
        timestamp_format: str = "%Y-%m-%dT%H:%M:%S.%f",
    ) -> None:
        """
        Initialize the JSON formatter.

        Args:
            include_extra: Include extra fields from log record.
            timestamp_format: Format string for timestamps.
        """
        super().__init__()
        self.include_extra = include_extra
        self.timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a single JSON line."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).strftime(
                self.timestamp_format
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extras = {
                k: v for k, v in record.__dict__.items()
                if k not in self.STANDARD_FIELDS and not k.startswith("_")
            }
            if extras:
                log_data["extra"] = extras

        return json.dumps(log_data, default=str)


# =============================================================================
# Logger Setup Functions
# =============================================================================

def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    json_format: bool = False,
    colorize: bool = True,
    include_timestamp: bool = True,
) -> None:
    """
    Set up the logging system.

    Configures the root logger with a console handler and, optionally,
    a rotating file handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to log file.
        json_format: Use JSON formatting (for CI).
        colorize: Use colored console output.
        include_timestamp: Include timestamps in log messages.

    Example:
        >>> setup_logging(level="DEBUG", log_file="logs/build.log")
        >>> setup_logging(level="INFO", json_format=True)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if include_timestamp:
        log_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        date_format = "%H:%M:%S"
    else:
        log_format = "%(levelname)-8s | %(name)s | %(message)s"
        date_format = None

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if json_format:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s" + log_format,
                datefmt=date_format,
                log_colors=LOG_COLORS,
                no_color=not colorize,
            )
        )

    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)

        if json_format:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(log_format, date_format))

        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)


# =============================================================================
# Logging Utilities
# =============================================================================

def log_execution_time(
    logger: Optional[logging.Logger] = None,
    level: int = logging.DEBUG,
    message: str = "Execution time: {elapsed:.3f}s",
) -> Callable:
    """
    Decorator that logs function execution time.

    Args:
        logger: Logger to use (defaults to function's module logger).
        level: Log level for timing messages.
        message: Message format (must include {elapsed}).

    Returns:
        Decorator function.

    Example:
        >>> @log_execution_time()
        ... def copy_tree(src, dest):
        ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            log = logger or get_logger(func.__module__)

            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = time.perf_counter() - start_time
                log.log(
                    logging.ERROR,
                    f"{func.__name__} failed after {elapsed:.3f}s: {e}"
                )
                raise
            elapsed = time.perf_counter() - start_time
            log.log(level, f"{func.__name__}: {message.format(elapsed=elapsed)}")
            return result

        return wrapper
    return decorator


def format_duration(seconds: float) -> str:
    """Render a duration the way build tools usually print it."""
    if seconds < 1:
        return f"{seconds * 1000:.0f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes)} min {secs:.0f} s"


def bind(logger: logging.Logger, **context: Any) -> logging.LoggerAdapter:
    """
    Attach fixed context (e.g. run_id) to every message of a logger.

    The context shows up under "extra" in JSON output.
    """
    return logging.LoggerAdapter(logger, context)

