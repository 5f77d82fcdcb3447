"""
Completion Signalling Module
=============================

An atomic task tells the orchestrator it is finished through exactly one
completion signal. This module turns the ways a task function can do that
into a single-resolution channel, `Completion`.

Accepted shapes for an atomic task function:
    - def clean(): ...                    returns -> done, raises -> error
    - def style(context): ...             same, receives a TaskContext
    - def serve(done): ...                calls done() or done(error) once
    - def upload(context, done): ...      both
    - async def fetch(context): ...       awaited
    - return a concurrent.futures.Future  done when the future settles
    - return a subprocess.Popen           done on exit, non-zero is an error
    - return an iterator / generator      done when drained (a "stream")

The first signal wins. Any later signal is ignored and recorded as a
ProtocolViolation.
"""

from __future__ import annotations

import asyncio
import collections
import concurrent.futures
import inspect
import subprocess
import threading
from collections.abc import Iterator
from typing import Any, Callable, List, Optional

from siteflow.utils.logging import get_logger
from siteflow.utils.exceptions import (
    AtomicFailure,
    ProtocolViolation,
    TaskError,
    TaskTimeoutError,
    wrap_exception,
)
from siteflow.orchestration.task import Task, TaskContext

# Module logger
logger = get_logger(__name__)

# Name of the callback parameter that switches a task to callback style
DONE_PARAMETER = "done"


class Completion:
    """
    One-shot result channel for a single atomic task invocation.

    Callable, so it can be handed to task functions as their `done`
    callback. Thread-safe: any thread may resolve it.

    Example:
        >>> completion = Completion("upload")
        >>> completion()             # success
        >>> completion(OSError())    # ignored, recorded as a violation
        >>> completion.error is None
        True
    """

    def __init__(
        self,
        task_name: str,
        on_violation: Optional[Callable[[ProtocolViolation], None]] = None,
    ) -> None:
        self.task_name = task_name
        self._on_violation = on_violation
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._resolved = False
        self._timed_out = False
        self._error: Optional[TaskError] = None
        self._callbacks: List[Callable[["Completion"], None]] = []
        self.violations: List[ProtocolViolation] = []

    def __call__(self, error: Optional[BaseException] = None) -> bool:
        return self.resolve(error)

    def resolve(self, error: Optional[BaseException] = None) -> bool:
        """
        Signal completion, with an error for failure.

        Returns:
            True if this was the first signal, False if it was ignored.
        """
        failure = self._to_failure(error) if error is not None else None
        return self._resolve(failure)

    def time_out(self, timeout: float) -> bool:
        """Resolve with a TaskTimeoutError unless already resolved."""
        failure = TaskTimeoutError(
            f"Task '{self.task_name}' did not complete within {timeout}s",
            task_name=self.task_name,
            timeout=timeout,
        )
        return self._resolve(failure, timed_out=True)

    def _resolve(self, failure: Optional[TaskError], timed_out: bool = False) -> bool:
        with self._lock:
            first = not self._resolved
            if first:
                self._resolved = True
                self._timed_out = timed_out
                self._error = failure
                callbacks, self._callbacks = self._callbacks, []
            else:
                late = self._timed_out or timed_out
                first_failed = self._error is not None

        if not first:
            if late:
                logger.debug(f"Task '{self.task_name}' signalled after its timeout")
            else:
                self._record_violation(failure, first_failed)
            return False

        self._event.set()
        for callback in callbacks:
            callback(self)
        return True

    def add_done_callback(self, callback: Callable[["Completion"], None]) -> None:
        """Run `callback(self)` on resolution, at once if already resolved."""
        with self._lock:
            if not self._resolved:
                self._callbacks.append(callback)
                return
        callback(self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until resolved. Returns False on timeout."""
        return self._event.wait(timeout)

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Optional[TaskError]:
        return self._error

    def _to_failure(self, error: BaseException) -> TaskError:
        if isinstance(error, TaskError):
            return error
        if not isinstance(error, BaseException):
            # done("message") style
            return AtomicFailure(str(error), task_name=self.task_name)
        return wrap_exception(error, AtomicFailure, task_name=self.task_name)

    def _record_violation(
        self, failure: Optional[TaskError], first_failed: bool
    ) -> None:
        first = "error" if first_failed else "success"
        second = "error" if failure is not None else "success"
        violation = ProtocolViolation(
            f"Task '{self.task_name}' signalled completion more than once "
            f"(first: {first}, ignored: {second})",
            task_name=self.task_name,
            cause=failure,
        )
        logger.warning(violation.message)
        self.violations.append(violation)
        if self._on_violation is not None:
            self._on_violation(violation)


# =============================================================================
# Calling Task Functions
# =============================================================================

def uses_done_callback(fn: Callable[..., Any]) -> bool:
    """True if the function declares a `done` parameter."""
    try:
        parameters = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    return DONE_PARAMETER in parameters


def wants_context(fn: Callable[..., Any]) -> bool:
    """
    True if the function takes a positional argument besides `done`.

    Parameters with defaults only count when named `context` or `ctx`.
    """
    try:
        parameters = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
    for param in parameters.values():
        if param.name == DONE_PARAMETER:
            continue
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            if param.default is inspect.Parameter.empty:
                return True
            return param.name in ("context", "ctx")
    return False


def call_task_function(
    task: Task,
    context: TaskContext,
    completion: Completion,
) -> Any:
    """Call an atomic task's function with the arguments it asks for."""
    fn = task.fn
    args = (context,) if wants_context(fn) else ()
    if uses_done_callback(fn):
        return fn(*args, **{DONE_PARAMETER: completion})
    return fn(*args)


def is_coroutine_task(task: Task) -> bool:
    fn = task.fn
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


def is_handle(result: Any) -> bool:
    """True if a return value must be waited on rather than taken as done."""
    return isinstance(
        result,
        (concurrent.futures.Future, subprocess.Popen, Iterator),
    ) or inspect.isawaitable(result)


def settle(result: Any, completion: Completion) -> None:
    """
    Resolve `completion` from a task function's return value.

    Blocks the calling thread while waiting on processes, streams and
    awaitables; futures resolve through a callback instead.
    """
    if isinstance(result, concurrent.futures.Future):
        def on_future_done(future: concurrent.futures.Future) -> None:
            if future.cancelled():
                completion.resolve(
                    AtomicFailure(
                        "Future was cancelled", task_name=completion.task_name
                    )
                )
            else:
                completion.resolve(future.exception())

        result.add_done_callback(on_future_done)
        return

    if isinstance(result, subprocess.Popen):
        returncode = result.wait()
        if returncode != 0:
            completion.resolve(
                AtomicFailure(
                    f"Process exited with code {returncode}",
                    task_name=completion.task_name,
                    details={"args": result.args, "returncode": returncode},
                )
            )
        else:
            completion.resolve()
        return

    if inspect.isawaitable(result):
        asyncio.run(_await(result))
        completion.resolve()
        return

    if isinstance(result, Iterator):
        # Drain without keeping items
        collections.deque(result, maxlen=0)
        completion.resolve()
        return

    completion.resolve()


async def _await(awaitable: Any) -> Any:
    return await awaitable


def run_task_body(
    task: Task,
    context: TaskContext,
    completion: Completion,
) -> None:
    """
    Call the task function and settle its result into `completion`.

    Runs on a worker thread. Errors are reported through the completion,
    never raised.
    """
    try:
        result = call_task_function(task, context, completion)
        if uses_done_callback(task.fn):
            if inspect.isawaitable(result):
                asyncio.run(_await(result))
            return
        settle(result, completion)
    except (Exception, SystemExit) as e:
        completion.resolve(e)


def start_task_thread(
    task: Task,
    context: TaskContext,
    completion: Completion,
) -> threading.Thread:
    """Run the task body on a daemon thread so a hung task never blocks exit."""
    thread = threading.Thread(
        target=run_task_body,
        args=(task, context, completion),
        name=f"siteflow-{context.path or task.display_name}",
        daemon=True,
    )
    thread.start()
    return thread
