"""
Task Definition Module
=======================

This module provides the task values the orchestrator runs.

A task is one of three kinds:
    - ATOMIC: wraps a function that does the actual work
    - SERIES: children run strictly one after another
    - PARALLEL: children run concurrently

Tasks are immutable once built. Composites may name other tasks with a
string; those references are resolved through a TaskRegistry before a run.

Example Usage:
    >>> @task(name="style")
    ... def style(context):
    ...     compile_styles(context.params)
    >>>
    >>> compile = parallel(style, script, page, name="compile")
    >>> build = series("clean", parallel(series(compile, useref), image))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

from siteflow.utils.exceptions import CompositionError, CycleError, TaskError


# =============================================================================
# Enums
# =============================================================================

class TaskKind(Enum):
    """Shape of a task."""
    ATOMIC = "atomic"
    SERIES = "series"
    PARALLEL = "parallel"


class TaskStatus(Enum):
    """Task execution status."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Only used when a fail-fast parallel group stops unstarted work
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.SKIPPED)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TaskResult:
    """
    Outcome of one node of a task tree within a single run.

    Attributes:
        path: Slash-separated location of the node, e.g. "build/compile/style".
        name: Display name of the task.
        kind: Task kind.
        status: Execution status.
        error: Error if the node failed.
        start_time: Execution start time.
        end_time: Execution end time.
        duration: Execution duration in seconds.
    """
    path: str
    name: str
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[TaskError] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "error": self.error.to_dict() if self.error else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
        }

    @property
    def is_success(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED

    @property
    def is_failed(self) -> bool:
        return self.status == TaskStatus.FAILED


@dataclass
class TaskContext:
    """
    Context handed to an atomic task function that asks for one.

    Attributes:
        run_id: ID of the current run.
        task_name: Name of the current task.
        path: Location of the task inside the tree being run.
        params: Parameters given to the run.
    """
    run_id: str = ""
    task_name: str = ""
    path: str = ""
    params: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Task Classes
# =============================================================================

class TaskRef:
    """
    Reference to a registered task by name.

    Example:
        >>> build = series("clean", "compile")   # both become TaskRefs
    """

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        if not name:
            raise CompositionError("Task reference needs a name")
        self.name = name

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TaskRef) and other.name == self.name

    def __hash__(self) -> int:
        return hash(("TaskRef", self.name))

    def __repr__(self) -> str:
        return f"TaskRef({self.name!r})"


Child = Union["Task", TaskRef]


class Task:
    """
    A named unit of work.

    Atomic tasks carry a function; composite tasks carry an ordered,
    fixed tuple of children. Use `atomic`, `series` and `parallel` (or
    the `task` decorator) rather than calling this directly.

    Attributes:
        name: Task name, or None for anonymous tasks.
        kind: TaskKind.
        fn: Function run by an atomic task.
        children: Children of a composite task.
        timeout: Seconds an atomic task may take to signal completion.
        description: Human-readable description.
    """

    def __init__(
        self,
        kind: TaskKind,
        name: Optional[str] = None,
        fn: Optional[Callable[..., Any]] = None,
        children: Tuple[Child, ...] = (),
        timeout: Optional[float] = None,
        description: str = "",
    ) -> None:
        if kind is TaskKind.ATOMIC:
            if not callable(fn):
                raise CompositionError(
                    "Atomic task needs a callable", task_name=name
                )
            if children:
                raise CompositionError(
                    "Atomic task cannot have children", task_name=name
                )
        else:
            if fn is not None:
                raise CompositionError(
                    f"{kind.value} task cannot wrap a function", task_name=name
                )
            if not children:
                raise CompositionError(
                    f"{kind.value} needs at least one task", task_name=name
                )
        if timeout is not None and timeout <= 0:
            raise CompositionError("Timeout must be positive", task_name=name)

        self._kind = kind
        self._name = name
        self._fn = fn
        self._children = tuple(children)
        self._timeout = timeout
        self._description = description

    @property
    def kind(self) -> TaskKind:
        return self._kind

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def fn(self) -> Optional[Callable[..., Any]]:
        return self._fn

    @property
    def children(self) -> Tuple[Child, ...]:
        return self._children

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    @property
    def description(self) -> str:
        return self._description

    @property
    def is_atomic(self) -> bool:
        return self._kind is TaskKind.ATOMIC

    @property
    def display_name(self) -> str:
        """Name used in logs and reports."""
        if self._name:
            return self._name
        if self.is_atomic:
            return getattr(self._fn, "__name__", None) or "<anonymous>"
        return f"<{self._kind.value}>"

    def with_name(self, name: str) -> "Task":
        """Return a copy of this task under another name."""
        return Task(
            self._kind,
            name=name,
            fn=self._fn,
            children=self._children,
            timeout=self._timeout,
            description=self._description,
        )

    def refs(self) -> Iterator[TaskRef]:
        """Yield every TaskRef in this tree without resolving any."""
        for child in self._children:
            if isinstance(child, TaskRef):
                yield child
            else:
                yield from child.refs()

    def __repr__(self) -> str:
        if self.is_atomic:
            return f"Task(name={self.display_name!r}, kind=atomic)"
        return (
            f"Task(name={self.display_name!r}, kind={self._kind.value}, "
            f"children={len(self._children)})"
        )


# =============================================================================
# Composition Functions
# =============================================================================

def atomic(
    fn: Callable[..., Any],
    name: Optional[str] = None,
    timeout: Optional[float] = None,
    description: str = "",
) -> Task:
    """
    Wrap a function as an atomic task.

    Args:
        fn: Function to run. It may take a TaskContext and/or a `done`
            callback; see siteflow.orchestration.completion.
        name: Task name (defaults to anonymous; reports use fn.__name__).
        timeout: Seconds to wait for completion before failing.
        description: Human-readable description.
    """
    return Task(
        TaskKind.ATOMIC,
        name=name,
        fn=fn,
        timeout=timeout,
        description=description,
    )


def task(
    fn: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
    description: str = "",
):
    """
    Decorator form of `atomic`. The decorated name is bound to the Task.

    Example:
        >>> @task
        ... def clean():
        ...     shutil.rmtree("dist", ignore_errors=True)
        >>>
        >>> @task(name="upload", timeout=600)
        ... def upload(context):
        ...     ...
    """
    def deco(f: Callable[..., Any]) -> Task:
        return atomic(
            f,
            name=name or f.__name__,
            timeout=timeout,
            description=description or (f.__doc__ or "").strip().split("\n")[0],
        )

    if fn is not None:
        return deco(fn)
    return deco


def _coerce(item: Any) -> Child:
    """Turn a composition argument into a Task or TaskRef."""
    if isinstance(item, (Task, TaskRef)):
        return item
    if isinstance(item, str):
        return TaskRef(item)
    if callable(item):
        return atomic(item)
    raise CompositionError(
        f"Cannot compose {type(item).__name__!r}; "
        "expected a Task, a task name or a callable"
    )


def _compose(
    kind: TaskKind,
    items: Tuple[Any, ...],
    name: Optional[str],
    description: str,
) -> Task:
    children = tuple(_coerce(item) for item in items)
    composite = Task(kind, name=name, children=children, description=description)
    if name and any(ref.name == name for ref in composite.refs()):
        raise CycleError([name, name])
    return composite


def series(*tasks: Any, name: Optional[str] = None, description: str = "") -> Task:
    """
    Compose tasks that run strictly one after another.

    Child i+1 starts only after child i succeeded. The first failure
    stops the series; later children never start.

    Args:
        *tasks: Tasks, registered task names, or plain callables.
        name: Optional name for the composite.
        description: Human-readable description.
    """
    return _compose(TaskKind.SERIES, tasks, name, description)


def parallel(*tasks: Any, name: Optional[str] = None, description: str = "") -> Task:
    """
    Compose tasks that run concurrently.

    All children are started and all are awaited, even after one fails.
    The first failure recorded becomes the composite's error.

    Args:
        *tasks: Tasks, registered task names, or plain callables.
        name: Optional name for the composite.
        description: Human-readable description.
    """
    return _compose(TaskKind.PARALLEL, tasks, name, description)
