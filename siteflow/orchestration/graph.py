"""
Task Graph Module
==================

This module holds named tasks and validates task trees before they run.

Features:
    - Task registry with name lookup
    - Cycle detection at registration time
    - Reference resolution into plain task trees
    - Tree visualization

Example Usage:
    >>> registry = TaskRegistry()
    >>> registry.register("clean", clean)
    >>> registry.register("build", series("clean", compile))
    >>> print(registry.tree("build"))
"""

from __future__ import annotations

from typing import Callable, Dict, Iterator, List, Optional, Set, Union

from siteflow.utils.logging import get_logger
from siteflow.utils.exceptions import CompositionError, CycleError, UnknownTaskError
from siteflow.orchestration.task import Task, TaskRef, atomic

# Module logger
logger = get_logger(__name__)


# =============================================================================
# Cycle Detection
# =============================================================================

def find_cycle(
    root: Task,
    lookup: Callable[[str], Optional[Task]],
    root_name: Optional[str] = None,
) -> Optional[List[str]]:
    """
    Look for a reference path that leads a task back to itself.

    Only TaskRefs can close a cycle: Task values are immutable trees.
    Unresolvable references are ignored here; `check_resolved` reports them.

    Args:
        root: Task to start from.
        lookup: Maps a reference name to its task, or None.
        root_name: Name the root is (or is about to be) registered under.

    Returns:
        Names along the cycle with the first name repeated at the end,
        or None.
    """
    stack: List[str] = []
    finished: Set[str] = set()

    def visit_task(node: Task) -> Optional[List[str]]:
        for child in node.children:
            if isinstance(child, TaskRef):
                found = visit_ref(child.name)
            else:
                found = visit_task(child)
            if found:
                return found
        return None

    def visit_ref(name: str) -> Optional[List[str]]:
        if name in stack:
            return stack[stack.index(name):] + [name]
        if name in finished:
            return None
        target = lookup(name)
        if target is None:
            return None
        stack.append(name)
        found = visit_task(target)
        stack.pop()
        finished.add(name)
        return found

    if root_name:
        stack.append(root_name)
    return visit_task(root)


def check_resolved(
    root: Task,
    lookup: Callable[[str], Optional[Task]],
) -> None:
    """
    Raise UnknownTaskError if any reference reachable from root is missing.
    """
    seen: Set[str] = set()
    pending: List[Task] = [root]
    while pending:
        node = pending.pop()
        for child in node.children:
            if isinstance(child, Task):
                pending.append(child)
                continue
            if child.name in seen:
                continue
            seen.add(child.name)
            target = lookup(child.name)
            if target is None:
                raise UnknownTaskError(
                    f"Task '{child.name}' is not registered",
                    task_name=child.name,
                    details={"referenced_by": node.display_name},
                )
            pending.append(target)


# =============================================================================
# Task Registry
# =============================================================================

class TaskRegistry:
    """
    Name → task mapping used to resolve string references.

    Registering a task that reaches its own name through references
    raises CycleError right away, before anything can run it. Forward
    references to names not yet registered are allowed; they are checked
    by `validate` and `resolve`.

    Example:
        >>> registry = TaskRegistry()
        >>> registry.register("lint", parallel(lint_styles, lint_scripts))
        >>> registry.register("build", series("clean", "compile"))
        >>> registry.register("clean", clean)
        >>> registry.validate("build")
    """

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._tasks: Dict[str, Task] = {}

    def register(self, name: str, task: Union[Task, Callable]) -> Task:
        """
        Register a task under a name.

        Args:
            name: Name other tasks use to refer to it.
            task: Task, or a plain callable to wrap as an atomic task.

        Returns:
            The registered task (renamed to `name` if needed).

        Raises:
            CompositionError: If the name is already taken.
            CycleError: If the task refers back to `name`.
        """
        if not name:
            raise CompositionError("Registered tasks need a name")
        if name in self._tasks:
            raise CompositionError(
                f"Task '{name}' is already registered", task_name=name
            )
        if not isinstance(task, Task):
            if not callable(task):
                raise CompositionError(
                    f"Cannot register {type(task).__name__!r} as a task",
                    task_name=name,
                )
            task = atomic(task, name=name)
        if task.name != name:
            task = task.with_name(name)

        cycle = find_cycle(task, self._tasks.get, root_name=name)
        if cycle:
            raise CycleError(cycle)

        self._tasks[name] = task
        logger.debug(f"Registered task '{name}' in registry '{self.name}'")
        return task

    def get(self, name: str) -> Task:
        """
        Get a task by name.

        Raises:
            UnknownTaskError: If nothing is registered under `name`.
        """
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(
                f"Task '{name}' is not registered. "
                f"Available: {', '.join(sorted(self._tasks)) or 'none'}",
                task_name=name,
            ) from None

    def names(self) -> List[str]:
        """Registered names in registration order."""
        return list(self._tasks)

    def lookup(self, name: str) -> Optional[Task]:
        return self._tasks.get(name)

    def validate(self, task: Union[Task, str]) -> Task:
        """
        Check that a tree is runnable: no cycles, no missing references.

        Returns:
            The task (looked up if given by name).
        """
        if isinstance(task, str):
            task = self.get(task)
        cycle = find_cycle(task, self._tasks.get, root_name=task.name)
        if cycle:
            raise CycleError(cycle)
        check_resolved(task, self._tasks.get)
        return task

    def resolve(self, task: Union[Task, TaskRef, str]) -> Task:
        """
        Return a copy of the tree with every reference replaced by its task.

        Raises:
            CycleError, UnknownTaskError: If the tree is not runnable.
        """
        if isinstance(task, TaskRef):
            task = task.name
        root = self.validate(task)
        return resolve_refs(root, self._tasks.get)

    def tree(self, task: Union[Task, str]) -> str:
        """ASCII rendering of a task tree."""
        if isinstance(task, str):
            task = self.get(task)
        return render_tree(task, self._tasks.get)

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[str]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __repr__(self) -> str:
        return f"TaskRegistry(name='{self.name}', tasks={len(self._tasks)})"


# =============================================================================
# Tree Helpers
# =============================================================================

def resolve_refs(
    task: Task,
    lookup: Callable[[str], Optional[Task]],
) -> Task:
    """
    Replace references with the tasks they name, recursively.

    The caller must have validated the tree first.
    """
    if task.is_atomic or not any(True for _ in task.refs()):
        return task
    children = []
    for child in task.children:
        if isinstance(child, TaskRef):
            target = lookup(child.name)
            if target is None:
                raise UnknownTaskError(
                    f"Task '{child.name}' is not registered", task_name=child.name
                )
            child = target
        children.append(resolve_refs(child, lookup))
    return Task(
        task.kind,
        name=task.name,
        children=tuple(children),
        description=task.description,
    )


def ensure_resolved(task: Task) -> Task:
    """
    Raise if a tree still holds references; return it otherwise.
    """
    for ref in task.refs():
        raise UnknownTaskError(
            f"Task '{ref.name}' cannot be resolved without a registry",
            task_name=ref.name,
        )
    return task


def count_atomic(task: Task) -> int:
    """Number of atomic invocations a resolved tree performs."""
    if task.is_atomic:
        return 1
    return sum(count_atomic(child) for child in task.children)


def render_tree(
    task: Task,
    lookup: Optional[Callable[[str], Optional[Task]]] = None,
) -> str:
    """
    Render a task tree like:

        build (series)
        ├── clean
        └── <parallel>
            ├── image
            └── font
    """
    lines = [_label(task)]

    def walk(node: Task, prefix: str) -> None:
        for i, child in enumerate(node.children):
            last = i == len(node.children) - 1
            branch = "└── " if last else "├── "
            extension = "    " if last else "│   "
            if isinstance(child, TaskRef):
                target = lookup(child.name) if lookup else None
                if target is None:
                    lines.append(f"{prefix}{branch}{child.name} (unresolved)")
                    continue
                child = target
            lines.append(f"{prefix}{branch}{_label(child)}")
            walk(child, prefix + extension)

    walk(task, "")
    return "\n".join(lines)


def _label(task: Task) -> str:
    if task.is_atomic:
        label = task.display_name
    elif task.name:
        label = f"{task.name} ({task.kind.value})"
    else:
        label = task.display_name
    if task.description:
        label += f"  # {task.description}"
    return label
