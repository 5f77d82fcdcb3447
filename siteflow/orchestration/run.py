"""
Run State Module
=================

Per-run bookkeeping for the executors.

Components:
    - PlanNode: a resolved task placed at a unique path in the tree
    - RunContext: mutable state of one run, guarded by a lock
    - ExecutionReport: the immutable outcome handed back to the caller

A RunContext is created for each `run()` call and discarded once the
ExecutionReport is built, so runs of the same task tree never share state.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from siteflow.utils.exceptions import (
    AtomicFailure,
    CompositeFailure,
    OrchestrationError,
    ProtocolViolation,
    TaskError,
)
from siteflow.orchestration.task import Task, TaskKind, TaskResult, TaskStatus


# =============================================================================
# Plan
# =============================================================================

@dataclass
class PlanNode:
    """
    One occurrence of a task in the tree being run.

    The same Task value may appear several times in a tree; each
    occurrence gets its own node and path.
    """
    task: Task
    path: str
    children: List["PlanNode"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.task.display_name

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


def build_plan(task: Task, parent_path: str = "") -> PlanNode:
    """
    Lay a resolved task tree out as PlanNodes with unique paths.

    Sibling names that repeat get a "#index" suffix.
    """
    path = f"{parent_path}/{task.display_name}" if parent_path else task.display_name
    node = PlanNode(task=task, path=path)

    names = [child.display_name for child in task.children]
    for index, child in enumerate(task.children):
        if not isinstance(child, Task):
            raise OrchestrationError(
                f"Task tree under '{path}' still holds unresolved references"
            )
        child_node = build_plan(child, path)
        if names.count(child.display_name) > 1:
            _rebase(child_node, f"{child_node.path}#{index}")
        node.children.append(child_node)
    return node


def _rebase(node: PlanNode, new_path: str) -> None:
    old_path = node.path
    for descendant in node.walk():
        descendant.path = new_path + descendant.path[len(old_path):]


# =============================================================================
# Run Context
# =============================================================================

class RunContext:
    """
    Ephemeral state for one execution of a task tree.

    Every write goes through `_lock`, so children completing on different
    threads cannot lose updates. Each node moves PENDING -> RUNNING ->
    terminal exactly once.

    Attributes:
        run_id: Unique run identifier.
        plan: Root PlanNode.
        params: Parameters handed to task contexts.
        start_time: When the run started.
        results: TaskResult per node path, in tree order.
        violations: Protocol violations seen during the run.
    """

    def __init__(
        self,
        plan: PlanNode,
        params: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.run_id = run_id or str(uuid.uuid4())[:12]
        self.plan = plan
        self.params = dict(params or {})
        self.start_time = datetime.now()
        self.violations: List[ProtocolViolation] = []
        self._lock = threading.Lock()
        self._failed_nodes: Dict[int, PlanNode] = {}
        self.results: Dict[str, TaskResult] = {
            node.path: TaskResult(
                path=node.path,
                name=node.name,
                kind=node.task.kind,
            )
            for node in plan.walk()
        }

    def begin(self, node: PlanNode) -> TaskResult:
        """Mark a node RUNNING."""
        with self._lock:
            result = self.results[node.path]
            if result.status is not TaskStatus.PENDING:
                raise OrchestrationError(
                    f"Task '{node.path}' cannot start from state "
                    f"{result.status.value}"
                )
            result.status = TaskStatus.RUNNING
            result.start_time = datetime.now()
            return result

    def finish(
        self,
        node: PlanNode,
        error: Optional[TaskError] = None,
        skipped: bool = False,
    ) -> TaskResult:
        """Move a node to its terminal state."""
        with self._lock:
            result = self.results[node.path]
            if result.status.is_terminal:
                raise OrchestrationError(
                    f"Task '{node.path}' already finished as {result.status.value}"
                )
            if skipped:
                result.status = TaskStatus.SKIPPED
            elif error is not None:
                result.status = TaskStatus.FAILED
                result.error = error
                if node.task.is_atomic:
                    self._failed_nodes.setdefault(id(error), node)
            else:
                result.status = TaskStatus.SUCCEEDED
            result.end_time = datetime.now()
            if result.start_time is not None:
                result.duration = (
                    result.end_time - result.start_time
                ).total_seconds()
            return result

    def skip(self, node: PlanNode) -> None:
        """Mark a node that never started SKIPPED."""
        with self._lock:
            for descendant in node.walk():
                result = self.results[descendant.path]
                if result.status is TaskStatus.PENDING:
                    result.status = TaskStatus.SKIPPED

    def add_violation(self, violation: ProtocolViolation) -> None:
        with self._lock:
            self.violations.append(violation)

    def make_report(self) -> "ExecutionReport":
        """Freeze the run into an ExecutionReport."""
        end_time = datetime.now()
        with self._lock:
            root = self.results[self.plan.path]
            error = root.error
            atomic_error: Optional[AtomicFailure] = None
            if isinstance(error, CompositeFailure):
                atomic_error = error.root
            elif isinstance(error, AtomicFailure):
                atomic_error = error
            failed_node = (
                self._failed_nodes.get(id(atomic_error)) if atomic_error else None
            )
            status = (
                TaskStatus.SUCCEEDED
                if root.status is TaskStatus.SUCCEEDED
                else TaskStatus.FAILED
            )
            return ExecutionReport(
                run_id=self.run_id,
                task_name=self.plan.name,
                status=status,
                failed_task=failed_node.name if failed_node else None,
                failure_path=failed_node.path if failed_node else None,
                error=atomic_error,
                failure=error,
                results=[
                    _copy_result(result) for result in self.results.values()
                ],
                violations=list(self.violations),
                start_time=self.start_time,
                end_time=end_time,
                duration=(end_time - self.start_time).total_seconds(),
            )


def _copy_result(result: TaskResult) -> TaskResult:
    return TaskResult(
        path=result.path,
        name=result.name,
        kind=result.kind,
        status=result.status,
        error=result.error,
        start_time=result.start_time,
        end_time=result.end_time,
        duration=result.duration,
    )


# =============================================================================
# Execution Report
# =============================================================================

@dataclass(frozen=True)
class ExecutionReport:
    """
    Terminal outcome of running a top-level task.

    Attributes:
        run_id: Run identifier.
        task_name: Name of the task that was run.
        status: SUCCEEDED or FAILED.
        failed_task: Name of the first failing atomic task.
        failure_path: Full path of that task in the tree.
        error: The AtomicFailure it signalled.
        failure: The error recorded on the root (a CompositeFailure when
            the root is a composite).
        results: Per-node results in tree order.
        violations: Ignored duplicate completion signals.
        start_time: Run start time.
        end_time: Run end time.
        duration: Run duration in seconds.
    """
    run_id: str
    task_name: str
    status: TaskStatus
    failed_task: Optional[str] = None
    failure_path: Optional[str] = None
    error: Optional[AtomicFailure] = None
    failure: Optional[TaskError] = None
    results: List[TaskResult] = field(default_factory=list)
    violations: List[ProtocolViolation] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.status is TaskStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        """Process exit code for a CLI: 0 on success, 1 on failure."""
        return 0 if self.is_success else 1

    def result(self, path: str) -> TaskResult:
        """Result for a node path (or a unique task name)."""
        for result in self.results:
            if result.path == path:
                return result
        matches = [r for r in self.results if r.name == path]
        if len(matches) == 1:
            return matches[0]
        raise KeyError(path)

    def atomic_results(self) -> List[TaskResult]:
        return [r for r in self.results if r.kind is TaskKind.ATOMIC]

    def failure_chain(self) -> List[Tuple[str, str]]:
        """(task, message) pairs from the root failure down to the atomic one."""
        chain = []
        error: Optional[BaseException] = self.failure
        while isinstance(error, TaskError):
            chain.append((error.task_name or "?", error.message))
            if not isinstance(error, CompositeFailure):
                break
            error = error.cause
        return chain

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "run_id": self.run_id,
            "task": self.task_name,
            "status": self.status.value,
            "failed_task": self.failed_task,
            "failure_path": self.failure_path,
            "error": self.error.to_dict() if self.error else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "results": [r.to_dict() for r in self.results],
            "violations": [v.to_dict() for v in self.violations],
        }

    def summary(self) -> str:
        """One-line human summary."""
        if self.is_success:
            return f"'{self.task_name}' succeeded in {self.duration:.2f}s"
        return (
            f"'{self.task_name}' failed in {self.duration:.2f}s: "
            f"'{self.failure_path or self.failed_task}' "
            f"{self.error.message if self.error else 'failed'}"
        )
