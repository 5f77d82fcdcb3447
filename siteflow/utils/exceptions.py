"""
Custom Exception Hierarchy
===========================

This module defines the exception hierarchy for siteflow. Composition
problems are raised to the caller when a task tree is built or validated;
task failures travel inside an ExecutionReport instead of being raised.

Exception Hierarchy:
    SiteflowError (base)
    ├── ConfigurationError
    ├── OrchestrationError
    │   ├── CompositionError
    │   │   ├── CycleError
    │   │   └── UnknownTaskError
    │   └── ProtocolViolation
    └── TaskError
        ├── AtomicFailure
        │   └── TaskTimeoutError
        └── CompositeFailure

Example Usage:
    >>> from siteflow.utils.exceptions import CycleError
    >>> try:
    ...     registry.register("build", series("clean", "build"))
    ... except CycleError as e:
    ...     logger.error(f"Invalid pipeline: {e}")
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


# =============================================================================
# Base Exception
# =============================================================================

class SiteflowError(Exception):
    """
    Base exception for all siteflow errors.

    Attributes:
        message: Human-readable error message.
        code: Error code for programmatic handling.
        details: Additional error details dictionary.
        cause: The underlying exception that caused this error.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Error code (e.g., "CYCLE_ERROR").
            details: Additional context about the error.
            cause: The underlying exception.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self._default_code()
        self.details = details or {}
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def _default_code(self) -> str:
        """Generate default error code from class name."""
        # CamelCase -> UPPER_SNAKE_CASE
        name = self.__class__.__name__
        code = ""
        for i, char in enumerate(name):
            if char.isupper() and i > 0:
                code += "_"
            code += char.upper()
        return code

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to a JSON-friendly dictionary.

        Returns:
            Dictionary representation of the error.
        """
        result = {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation of the error."""
        parts = [f"[{self.code}] {self.message}"]
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"Details: {details_str}")
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)

    def __repr__(self) -> str:
        """Detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(SiteflowError):
    """
    Exception raised for configuration-related errors.

    This includes missing configuration files, unparsable YAML and
    settings that a collaborator needs but nobody provided.
    """

    def __init__(
        self,
        message: str,
        config_path: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize configuration error.

        Args:
            message: Error message.
            config_path: Path to the configuration file.
            key: The configuration key that caused the error.
            **kwargs: Additional arguments for base class.
        """
        details = kwargs.pop("details", {})
        if config_path:
            details["config_path"] = config_path
        if key:
            details["key"] = key
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# Orchestration Errors
# =============================================================================

class OrchestrationError(SiteflowError):
    """
    Base exception for errors in the orchestrator itself.
    """

    pass


class CompositionError(OrchestrationError):
    """
    Exception raised when a task tree is malformed.

    Raised while composing or validating, never while running.
    """

    def __init__(
        self,
        message: str,
        task_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if task_name:
            details["task_name"] = task_name
        super().__init__(message, details=details, **kwargs)


class CycleError(CompositionError):
    """
    Exception raised when a task contains itself, directly or transitively.

    Attributes:
        cycle: Task names along the cycle, first and last entries equal.
    """

    def __init__(self, cycle: Sequence[str], **kwargs: Any) -> None:
        self.cycle: List[str] = list(cycle)
        details = kwargs.pop("details", {})
        details["cycle"] = " -> ".join(self.cycle)
        super().__init__(
            f"Task '{self.cycle[0]}' contains itself",
            task_name=self.cycle[0],
            details=details,
            **kwargs,
        )


class UnknownTaskError(CompositionError):
    """
    Exception raised when a task reference names no registered task.
    """

    pass


class ProtocolViolation(OrchestrationError):
    """
    Recorded when an atomic task breaks the completion contract.

    The first completion signal stays authoritative. Later signals are
    ignored and listed on the ExecutionReport as violations.
    """

    def __init__(
        self,
        message: str,
        task_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if task_name:
            details["task_name"] = task_name
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# Task Errors
# =============================================================================

class TaskError(SiteflowError):
    """
    Base exception for task failures.

    Attributes:
        task_name: Name of the task that failed.
    """

    def __init__(
        self,
        message: str,
        task_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize task error.

        Args:
            message: Error message.
            task_name: Name of the failed task.
            **kwargs: Additional arguments.
        """
        self.task_name = task_name
        details = kwargs.pop("details", {})
        if task_name:
            details["task_name"] = task_name
        super().__init__(message, details=details, **kwargs)


class AtomicFailure(TaskError):
    """
    Exception recorded when an atomic task signals an error.
    """

    pass


class TaskTimeoutError(AtomicFailure):
    """
    Exception recorded when an atomic task never signals completion
    within its timeout.
    """

    def __init__(
        self,
        message: str,
        task_name: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if timeout is not None:
            details["timeout"] = timeout
        super().__init__(message, task_name=task_name, details=details, **kwargs)


class CompositeFailure(TaskError):
    """
    Exception recorded when a composite task fails because a child failed.

    Attributes:
        child: Name of the failing child.
        root: The AtomicFailure at the bottom of the chain.
    """

    def __init__(
        self,
        task_name: Optional[str],
        child: Optional[str],
        error: TaskError,
        **kwargs: Any,
    ) -> None:
        self.child = child
        self.root: AtomicFailure = (
            error.root if isinstance(error, CompositeFailure) else error
        )
        details = kwargs.pop("details", {})
        details["child"] = child
        super().__init__(
            f"Child '{child}' failed: {self.root.message}",
            task_name=task_name,
            details=details,
            cause=error,
            **kwargs,
        )


# =============================================================================
# Utility Functions
# =============================================================================

def wrap_exception(
    exception: BaseException,
    wrapper_class: type[SiteflowError] = SiteflowError,
    message: Optional[str] = None,
    **kwargs: Any,
) -> SiteflowError:
    """
    Wrap a standard exception in a siteflow exception.

    Args:
        exception: The original exception.
        wrapper_class: The wrapper exception class to use.
        message: Optional message override.
        **kwargs: Extra keyword arguments for the wrapper class.

    Returns:
        A wrapped exception instance.

    Example:
        >>> try:
        ...     shutil.rmtree("dist")
        ... except OSError as e:
        ...     raise wrap_exception(e, AtomicFailure, task_name="clean")
    """
    details = kwargs.pop("details", {})
    details["original_type"] = type(exception).__name__
    return wrapper_class(
        message=message or str(exception) or type(exception).__name__,
        cause=exception,
        details=details,
        **kwargs,
    )
