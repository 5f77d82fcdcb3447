"""
Task Orchestration Module
==========================

Declarative task composition and execution for build pipelines.

Components:
    - Task: immutable task value (atomic, series or parallel)
    - series / parallel / task: composition helpers
    - TaskRegistry: named tasks, cycle detection, reference resolution
    - ThreadedExecutor / AsyncioExecutor: execution engines
    - ExecutionReport: outcome of a run

Example Usage:
    >>> from siteflow.orchestration import series, parallel, task, run
    >>>
    >>> @task
    ... def clean():
    ...     shutil.rmtree("dist", ignore_errors=True)
    >>>
    >>> build = series(clean, parallel(style, script, page))
    >>> report = run(build)
    >>> sys.exit(report.exit_code)
"""

from siteflow.orchestration.task import (
    Task,
    TaskContext,
    TaskKind,
    TaskRef,
    TaskResult,
    TaskStatus,
    atomic,
    parallel,
    series,
    task,
)
from siteflow.orchestration.graph import TaskRegistry
from siteflow.orchestration.completion import Completion
from siteflow.orchestration.run import ExecutionReport, RunContext
from siteflow.orchestration.executor import (
    AsyncioExecutor,
    TaskExecutor,
    ThreadedExecutor,
    create_executor,
    run,
)

__all__ = [
    "Task",
    "TaskContext",
    "TaskKind",
    "TaskRef",
    "TaskResult",
    "TaskStatus",
    "atomic",
    "parallel",
    "series",
    "task",
    "TaskRegistry",
    "Completion",
    "ExecutionReport",
    "RunContext",
    "AsyncioExecutor",
    "TaskExecutor",
    "ThreadedExecutor",
    "create_executor",
    "run",
]
