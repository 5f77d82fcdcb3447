"""
Task Executor Module
=====================

This module provides the engines that run task trees.

Features:
    - Thread-based execution (blocking `run`)
    - asyncio-based execution (`arun` coroutine, or blocking `run`)
    - Series: strictly ordered, stops at the first failure
    - Parallel: all children run to a terminal state, first failure wins
    - Optional bound on concurrently running atomic tasks
    - Optional per-task completion timeout
    - Optional fail-fast for parallel groups (off by default)

Example Usage:
    >>> executor = ThreadedExecutor()
    >>> report = executor.run(series(clean, parallel(style, script)))
    >>> if not report.is_success:
    ...     print(report.failed_task, report.error)
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union

from siteflow.utils.config import Config
from siteflow.utils.logging import bind, format_duration, get_logger
from siteflow.utils.exceptions import (
    AtomicFailure,
    CompositeFailure,
    OrchestrationError,
    TaskError,
    wrap_exception,
)
from siteflow.orchestration.completion import (
    Completion,
    call_task_function,
    is_coroutine_task,
    is_handle,
    settle,
    start_task_thread,
    uses_done_callback,
)
from siteflow.orchestration.graph import TaskRegistry, ensure_resolved
from siteflow.orchestration.run import ExecutionReport, PlanNode, RunContext, build_plan
from siteflow.orchestration.task import Task, TaskContext, TaskKind

# Module logger
logger = get_logger(__name__)

# Returned by a node that was stopped before it started
SKIPPED = object()

SkipCheck = Callable[[], bool]


def _never() -> bool:
    return False


# =============================================================================
# Abstract Executor
# =============================================================================

class TaskExecutor(ABC):
    """
    Abstract base class for task executors.

    Subclasses decide how children actually run concurrently; this class
    handles validation, the per-run context and the report.

    Attributes:
        timeout: Default completion timeout for atomic tasks (None: wait forever).
        fail_fast: Skip not-yet-started siblings once a parallel child fails.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        fail_fast: bool = False,
    ) -> None:
        if timeout is not None and timeout <= 0:
            raise OrchestrationError("Executor timeout must be positive")
        self.timeout = timeout
        self.fail_fast = fail_fast

    def prepare(
        self,
        task: Union[Task, str],
        registry: Optional[TaskRegistry] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> RunContext:
        """
        Validate a tree and create the context for one run of it.

        Raises:
            CompositionError: For cycles and unknown task references.
        """
        if registry is not None:
            root = registry.resolve(task)
        elif isinstance(task, str):
            raise OrchestrationError(
                f"Cannot run task '{task}' by name without a registry"
            )
        else:
            root = ensure_resolved(task)
        return RunContext(build_plan(root), params=params)

    def run(
        self,
        task: Union[Task, str],
        registry: Optional[TaskRegistry] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ExecutionReport:
        """
        Execute a task tree to completion.

        Args:
            task: Task, or a registered name when `registry` is given.
            registry: Registry used to resolve names.
            params: Parameters available to atomic tasks via their context.

        Returns:
            ExecutionReport with the outcome.
        """
        ctx = self.prepare(task, registry, params)
        log = bind(logger, run_id=ctx.run_id)
        log.info(f"Using {self.__class__.__name__} for '{ctx.plan.name}'")
        self._execute(ctx)
        report = ctx.make_report()
        self._log_report(report)
        return report

    @abstractmethod
    def _execute(self, ctx: RunContext) -> None:
        """Run ctx.plan to completion."""

    def _timeout_for(self, node: PlanNode) -> Optional[float]:
        return node.task.timeout if node.task.timeout is not None else self.timeout

    def _context_for(self, node: PlanNode, ctx: RunContext) -> TaskContext:
        return TaskContext(
            run_id=ctx.run_id,
            task_name=node.name,
            path=node.path,
            params=ctx.params,
        )

    def _completion_for(self, node: PlanNode, ctx: RunContext) -> Completion:
        return Completion(node.name, on_violation=ctx.add_violation)

    @staticmethod
    def _log_start(node: PlanNode) -> None:
        logger.info(f"Starting '{node.path}'...")

    @staticmethod
    def _log_finish(node: PlanNode, ctx: RunContext, error: Optional[TaskError]) -> None:
        duration = format_duration(ctx.results[node.path].duration)
        if error is None:
            logger.info(f"Finished '{node.path}' after {duration}")
        elif node.task.is_atomic:
            logger.error(f"'{node.path}' errored after {duration}: {error.message}")
        else:
            logger.debug(f"'{node.path}' failed after {duration}")

    @staticmethod
    def _log_report(report: ExecutionReport) -> None:
        if report.is_success:
            logger.info(report.summary())
        else:
            logger.error(report.summary())
        for violation in report.violations:
            logger.warning(f"Protocol violation: {violation.message}")

    @staticmethod
    def _composite_failure(node: PlanNode, child: PlanNode, error: TaskError) -> CompositeFailure:
        return CompositeFailure(node.name, child.name, error)


# =============================================================================
# Parallel Group State
# =============================================================================

class _GroupState:
    """
    Outstanding-children counter and first-error slot for one parallel group.

    Updated by whichever thread finishes a child, so all access holds a lock.
    """

    def __init__(self, outstanding: int) -> None:
        self.outstanding = outstanding
        self.first_error: Optional[TaskError] = None
        self.first_child: Optional[PlanNode] = None
        self.skipped = 0
        self._lock = threading.Lock()
        self.all_done = threading.Event()
        if outstanding == 0:
            self.all_done.set()

    def child_finished(self, child: PlanNode, outcome: Any) -> None:
        with self._lock:
            if outcome is SKIPPED:
                self.skipped += 1
            elif outcome is not None and self.first_error is None:
                self.first_error = outcome
                self.first_child = child
            self.outstanding -= 1
            if self.outstanding == 0:
                self.all_done.set()

    @property
    def failed(self) -> bool:
        with self._lock:
            return self.first_error is not None


# =============================================================================
# Threaded Executor
# =============================================================================

class ThreadedExecutor(TaskExecutor):
    """
    Executor that runs parallel children on threads.

    Each parallel group gets a pool with one worker per child, so nesting
    never starves a group. `max_workers` bounds how many atomic tasks are
    active at once across the whole run; composite tasks that are only
    waiting on children do not count.

    Example:
        >>> executor = ThreadedExecutor(max_workers=4, timeout=300)
        >>> report = executor.run("build", registry=registry)
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        fail_fast: bool = False,
    ) -> None:
        super().__init__(timeout=timeout, fail_fast=fail_fast)
        if max_workers is not None and max_workers < 1:
            raise OrchestrationError("max_workers must be at least 1")
        self.max_workers = max_workers

        logger.debug(
            f"ThreadedExecutor initialized: max_workers={max_workers}, "
            f"timeout={timeout}, fail_fast={fail_fast}"
        )

    def _execute(self, ctx: RunContext) -> None:
        slots = (
            threading.BoundedSemaphore(self.max_workers)
            if self.max_workers is not None
            else None
        )
        self._run_node(ctx.plan, ctx, slots, _never)

    def _run_node(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[threading.BoundedSemaphore],
        should_skip: SkipCheck,
    ) -> Any:
        """Run one node; returns None, a TaskError, or SKIPPED."""
        if node.task.kind is TaskKind.ATOMIC:
            return self._run_atomic(node, ctx, slots, should_skip)
        if should_skip():
            ctx.skip(node)
            return SKIPPED
        if node.task.kind is TaskKind.SERIES:
            return self._run_series(node, ctx, slots, should_skip)
        return self._run_parallel(node, ctx, slots, should_skip)

    def _run_atomic(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[threading.BoundedSemaphore],
        should_skip: SkipCheck,
    ) -> Any:
        if slots is not None:
            slots.acquire()
        try:
            if should_skip():
                ctx.skip(node)
                return SKIPPED

            ctx.begin(node)
            self._log_start(node)
            completion = self._completion_for(node, ctx)
            start_task_thread(node.task, self._context_for(node, ctx), completion)

            timeout = self._timeout_for(node)
            if not completion.wait(timeout):
                completion.time_out(timeout)
            error = completion.error

            ctx.finish(node, error)
            self._log_finish(node, ctx, error)
            return error
        finally:
            if slots is not None:
                slots.release()

    def _run_series(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[threading.BoundedSemaphore],
        should_skip: SkipCheck,
    ) -> Any:
        ctx.begin(node)
        self._log_start(node)
        for child in node.children:
            outcome = self._run_node(child, ctx, slots, should_skip)
            if outcome is SKIPPED:
                ctx.finish(node, skipped=True)
                ctx.skip(node)
                return SKIPPED
            if outcome is not None:
                error = self._composite_failure(node, child, outcome)
                ctx.finish(node, error)
                self._log_finish(node, ctx, error)
                return error
        ctx.finish(node)
        self._log_finish(node, ctx, None)
        return None

    def _run_parallel(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[threading.BoundedSemaphore],
        should_skip: SkipCheck,
    ) -> Any:
        ctx.begin(node)
        self._log_start(node)
        state = _GroupState(len(node.children))

        if self.fail_fast:
            def child_skip() -> bool:
                return state.failed or should_skip()
        else:
            child_skip = should_skip

        for child in node.children:
            # Daemon threads: an interrupted run must not wait on hung children
            threading.Thread(
                target=self._run_child,
                args=(child, ctx, slots, child_skip, state),
                name=f"siteflow-{child.path}",
                daemon=True,
            ).start()
        state.all_done.wait()

        if state.first_error is not None:
            error = self._composite_failure(node, state.first_child, state.first_error)
            ctx.finish(node, error)
            self._log_finish(node, ctx, error)
            return error
        if state.skipped:
            ctx.finish(node, skipped=True)
            return SKIPPED
        ctx.finish(node)
        self._log_finish(node, ctx, None)
        return None

    def _run_child(
        self,
        child: PlanNode,
        ctx: RunContext,
        slots: Optional[threading.BoundedSemaphore],
        should_skip: SkipCheck,
        state: "_GroupState",
    ) -> None:
        try:
            outcome = self._run_node(child, ctx, slots, should_skip)
        except Exception as e:
            # A bug in the orchestrator itself; surface it as the child's failure
            logger.exception(f"Internal error while running '{child.path}'")
            outcome = wrap_exception(e, AtomicFailure, task_name=child.name)
        state.child_finished(child, outcome)


# =============================================================================
# Asyncio Executor
# =============================================================================

class AsyncioExecutor(TaskExecutor):
    """
    Executor that runs the tree as coroutines on one event loop.

    Composite bookkeeping stays on the loop thread. Coroutine task
    functions are awaited on the loop; plain functions run on daemon
    threads and report back through their Completion.

    Example:
        >>> report = await AsyncioExecutor().arun(build)
        >>> report = AsyncioExecutor().run(build)   # from sync code
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        fail_fast: bool = False,
    ) -> None:
        super().__init__(timeout=timeout, fail_fast=fail_fast)
        if max_concurrency is not None and max_concurrency < 1:
            raise OrchestrationError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency

        logger.debug(
            f"AsyncioExecutor initialized: max_concurrency={max_concurrency}, "
            f"timeout={timeout}, fail_fast={fail_fast}"
        )

    def _execute(self, ctx: RunContext) -> None:
        asyncio.run(self._execute_async(ctx))

    async def arun(
        self,
        task: Union[Task, str],
        registry: Optional[TaskRegistry] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ExecutionReport:
        """Awaitable form of `run`, for callers already inside an event loop."""
        ctx = self.prepare(task, registry, params)
        bind(logger, run_id=ctx.run_id).info(
            f"Using {self.__class__.__name__} for '{ctx.plan.name}'"
        )
        await self._execute_async(ctx)
        report = ctx.make_report()
        self._log_report(report)
        return report

    async def _execute_async(self, ctx: RunContext) -> None:
        slots = (
            asyncio.Semaphore(self.max_concurrency)
            if self.max_concurrency is not None
            else None
        )
        await self._run_node(ctx.plan, ctx, slots, _never)

    async def _run_node(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[asyncio.Semaphore],
        should_skip: SkipCheck,
    ) -> Any:
        if node.task.kind is TaskKind.ATOMIC:
            return await self._run_atomic(node, ctx, slots, should_skip)
        if should_skip():
            ctx.skip(node)
            return SKIPPED
        if node.task.kind is TaskKind.SERIES:
            return await self._run_series(node, ctx, slots, should_skip)
        return await self._run_parallel(node, ctx, slots, should_skip)

    async def _run_atomic(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[asyncio.Semaphore],
        should_skip: SkipCheck,
    ) -> Any:
        if slots is not None:
            await slots.acquire()
        try:
            if should_skip():
                ctx.skip(node)
                return SKIPPED

            ctx.begin(node)
            self._log_start(node)
            completion = self._completion_for(node, ctx)
            signalled = self._completion_future(completion)
            context = self._context_for(node, ctx)

            runner = None
            if is_coroutine_task(node.task):
                runner = asyncio.ensure_future(
                    self._run_coroutine_task(node.task, context, completion)
                )
            else:
                start_task_thread(node.task, context, completion)

            timeout = self._timeout_for(node)
            try:
                await asyncio.wait_for(asyncio.shield(signalled), timeout)
            except asyncio.TimeoutError:
                completion.time_out(timeout)
                if runner is not None:
                    runner.cancel()
            error = completion.error

            ctx.finish(node, error)
            self._log_finish(node, ctx, error)
            return error
        finally:
            if slots is not None:
                slots.release()

    @staticmethod
    def _completion_future(completion: Completion) -> asyncio.Future:
        """Bridge a thread-safe Completion onto the running loop."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def on_done(_: Completion) -> None:
            loop.call_soon_threadsafe(_set_if_pending, future)

        completion.add_done_callback(on_done)
        return future

    @staticmethod
    async def _run_coroutine_task(
        task: Task,
        context: TaskContext,
        completion: Completion,
    ) -> None:
        try:
            result = await call_task_function(task, context, completion)
            if uses_done_callback(task.fn):
                return
            if is_handle(result):
                await asyncio.to_thread(settle, result, completion)
            else:
                completion.resolve()
        except asyncio.CancelledError:
            raise
        except (Exception, SystemExit) as e:
            completion.resolve(e)

    async def _run_series(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[asyncio.Semaphore],
        should_skip: SkipCheck,
    ) -> Any:
        ctx.begin(node)
        self._log_start(node)
        for child in node.children:
            outcome = await self._run_node(child, ctx, slots, should_skip)
            if outcome is SKIPPED:
                ctx.finish(node, skipped=True)
                ctx.skip(node)
                return SKIPPED
            if outcome is not None:
                error = self._composite_failure(node, child, outcome)
                ctx.finish(node, error)
                self._log_finish(node, ctx, error)
                return error
        ctx.finish(node)
        self._log_finish(node, ctx, None)
        return None

    async def _run_parallel(
        self,
        node: PlanNode,
        ctx: RunContext,
        slots: Optional[asyncio.Semaphore],
        should_skip: SkipCheck,
    ) -> Any:
        ctx.begin(node)
        self._log_start(node)

        # Loop-confined, so no lock
        outstanding = len(node.children)
        first: List[Any] = [None, None]  # [error, child]
        skipped = 0
        all_done = asyncio.Event()

        if self.fail_fast:
            def child_skip() -> bool:
                return first[0] is not None or should_skip()
        else:
            child_skip = should_skip

        def child_finished(child: PlanNode, fut: asyncio.Future) -> None:
            nonlocal outstanding, skipped
            outcome = self._outcome(fut, child)
            if outcome is SKIPPED:
                skipped += 1
            elif outcome is not None and first[0] is None:
                first[0], first[1] = outcome, child
            outstanding -= 1
            if outstanding == 0:
                all_done.set()

        for child in node.children:
            fut = asyncio.ensure_future(self._run_node(child, ctx, slots, child_skip))
            fut.add_done_callback(lambda f, child=child: child_finished(child, f))
        await all_done.wait()

        if first[0] is not None:
            error = self._composite_failure(node, first[1], first[0])
            ctx.finish(node, error)
            self._log_finish(node, ctx, error)
            return error
        if skipped:
            ctx.finish(node, skipped=True)
            return SKIPPED
        ctx.finish(node)
        self._log_finish(node, ctx, None)
        return None

    @staticmethod
    def _outcome(fut: asyncio.Future, child: PlanNode) -> Any:
        if fut.cancelled():
            return wrap_exception(
                asyncio.CancelledError(), AtomicFailure, task_name=child.name
            )
        exc = fut.exception()
        if exc is None:
            return fut.result()
        logger.error(f"Internal error while running '{child.path}': {exc!r}")
        return wrap_exception(exc, AtomicFailure, task_name=child.name)


def _set_if_pending(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


# =============================================================================
# Factory
# =============================================================================

def create_executor(config: Optional[Union[Dict[str, Any], Config]] = None) -> TaskExecutor:
    """
    Create an executor from configuration.

    Recognised keys: backend ("thread" or "asyncio"), max_workers,
    timeout, fail_fast.

    Example:
        >>> executor = create_executor({"backend": "asyncio", "max_workers": 8})
    """
    if config is None:
        config = {}
    if isinstance(config, Config):
        config = config.to_dict()

    backend = config.get("backend", "thread")
    # Values may arrive as strings from environment overrides
    max_workers = config.get("max_workers")
    if max_workers is not None:
        max_workers = int(max_workers)
    timeout = config.get("timeout")
    if timeout is not None:
        timeout = float(timeout)
    fail_fast = config.get("fail_fast", False)
    if isinstance(fail_fast, str):
        fail_fast = fail_fast.lower() in ("true", "1", "yes", "on")

    if backend == "thread":
        return ThreadedExecutor(
            max_workers=max_workers, timeout=timeout, fail_fast=fail_fast
        )
    elif backend == "asyncio":
        return AsyncioExecutor(
            max_concurrency=max_workers, timeout=timeout, fail_fast=fail_fast
        )
    else:
        raise OrchestrationError(f"Unsupported executor backend: {backend}")


def run(
    task: Union[Task, str],
    registry: Optional[TaskRegistry] = None,
    params: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> ExecutionReport:
    """
    Run a task tree with an executor built from `options`.

    Example:
        >>> report = run(series(a, parallel(b, c), d))
        >>> report = run("build", registry=registry, backend="asyncio")
    """
    return create_executor(options).run(task, registry=registry, params=params)
