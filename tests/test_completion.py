"""
Completion Signalling Tests
============================

Tests for the one-shot completion channel and for how task functions
are called and settled.
"""

import subprocess
import sys
import threading
from concurrent.futures import Future

import pytest

from siteflow.orchestration.completion import (
    Completion,
    is_handle,
    run_task_body,
    settle,
    uses_done_callback,
    wants_context,
)
from siteflow.orchestration.task import TaskContext, atomic
from siteflow.utils.exceptions import AtomicFailure, ProtocolViolation, TaskTimeoutError


def run_body(fn, completion=None):
    completion = completion or Completion(getattr(fn, "__name__", "task"))
    run_task_body(atomic(fn), TaskContext(task_name="task"), completion)
    return completion


class TestCompletion:
    """Test the one-shot completion channel."""

    def test_success(self):
        """Test a bare signal resolves successfully."""
        completion = Completion("clean")

        assert completion.resolve() is True
        assert completion.done
        assert completion.error is None

    def test_error_is_wrapped(self):
        """Test plain exceptions become AtomicFailures with their cause."""
        completion = Completion("style")
        cause = OSError("disk full")
        completion(cause)

        assert isinstance(completion.error, AtomicFailure)
        assert completion.error.cause is cause
        assert completion.error.task_name == "style"

    def test_atomic_failure_passes_through(self):
        """Test AtomicFailure instances are kept as they are."""
        completion = Completion("style")
        failure = AtomicFailure("bad input", task_name="style")
        completion(failure)

        assert completion.error is failure

    def test_message_signal(self):
        """Test done("message") is treated as a failure."""
        completion = Completion("lint")
        completion("3 problems")

        assert completion.error.message == "3 problems"

    def test_second_signal_is_ignored(self):
        """Test the first outcome stays and a violation is recorded."""
        seen = []
        completion = Completion("upload", on_violation=seen.append)

        assert completion() is True
        assert completion(RuntimeError("late")) is False

        assert completion.error is None
        assert len(completion.violations) == 1
        assert isinstance(seen[0], ProtocolViolation)
        assert "first: success, ignored: error" in seen[0].message

    def test_error_then_success_keeps_error(self):
        """Test a success after a failure does not clear it."""
        completion = Completion("upload")
        completion(RuntimeError("boom"))
        completion()

        assert completion.error.message == "boom"
        assert len(completion.violations) == 1

    def test_time_out(self):
        """Test a timeout resolves with TaskTimeoutError."""
        completion = Completion("serve")

        assert completion.time_out(0.5) is True
        assert isinstance(completion.error, TaskTimeoutError)
        assert completion.error.details["timeout"] == 0.5

    def test_late_signal_after_timeout_is_not_a_violation(self):
        """Test signals after a timeout are dropped quietly."""
        completion = Completion("serve")
        completion.time_out(0.5)
        completion()

        assert isinstance(completion.error, TaskTimeoutError)
        assert completion.violations == []

    def test_callbacks(self):
        """Test callbacks run once, also when added after resolution."""
        completion = Completion("clean")
        calls = []
        completion.add_done_callback(calls.append)
        completion()
        completion.add_done_callback(calls.append)

        assert calls == [completion, completion]

    def test_wait(self):
        """Test waiting for a signal from another thread."""
        completion = Completion("clean")
        assert completion.wait(0.01) is False

        threading.Timer(0.05, completion).start()
        assert completion.wait(5) is True

    def test_concurrent_signals_resolve_once(self):
        """Test racing signals produce exactly one outcome."""
        completion = Completion("race")
        barrier = threading.Barrier(8)

        def signal():
            barrier.wait()
            completion()

        threads = [threading.Thread(target=signal) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert completion.done
        assert len(completion.violations) == 7


class TestSignatures:
    """Test how task functions are inspected."""

    def test_wants_context(self):
        """Test which signatures receive a TaskContext."""
        assert not wants_context(lambda: None)
        assert wants_context(lambda context: None)
        assert wants_context(lambda ctx, done: None)
        assert not wants_context(lambda done: None)
        assert not wants_context(lambda verbose=False: None)
        assert wants_context(lambda context=None: None)

    def test_uses_done_callback(self):
        """Test the `done` parameter switches to callback style."""
        assert uses_done_callback(lambda done: None)
        assert not uses_done_callback(lambda context: None)

    def test_is_handle(self):
        """Test return values that are waited on."""
        assert is_handle(Future())
        assert is_handle(iter([]))
        assert not is_handle(None)
        assert not is_handle([1, 2])


class TestTaskBody:
    """Test running task functions into a Completion."""

    def test_return_is_success(self):
        """Test a normal return."""
        assert run_body(lambda: 42).error is None

    def test_raise_is_failure(self):
        """Test an exception."""
        def style():
            raise ValueError("syntax error")

        assert run_body(style).error.message == "syntax error"

    def test_system_exit_is_failure(self):
        """Test sys.exit inside a task does not escape."""
        def lint():
            sys.exit(2)

        assert isinstance(run_body(lint).error, AtomicFailure)

    def test_context_is_passed(self):
        """Test the TaskContext argument."""
        seen = []
        run_body(lambda context: seen.append(context.task_name))
        assert seen == ["task"]

    def test_done_callback(self):
        """Test callback-style tasks finish when they call done."""
        def upload(done):
            threading.Timer(0.05, done).start()

        completion = run_body(upload)
        assert completion.wait(5)
        assert completion.error is None

    def test_done_callback_with_error(self):
        """Test done(error)."""
        completion = run_body(lambda done: done(OSError("denied")))
        assert completion.error.message == "denied"

    def test_done_callback_called_twice(self):
        """Test a double call is recorded, not applied."""
        def upload(done):
            done()
            done(RuntimeError("again"))

        completion = run_body(upload)
        assert completion.error is None
        assert len(completion.violations) == 1

    def test_stream_is_drained(self):
        """Test iterator results finish when exhausted."""
        consumed = []

        def stream():
            for i in range(3):
                consumed.append(i)
                yield i

        assert run_body(stream).error is None
        assert consumed == [0, 1, 2]

    def test_stream_error(self):
        """Test errors while draining a stream."""
        def stream():
            yield 1
            raise IOError("write failed")

        assert run_body(stream).error.message == "write failed"

    def test_coroutine(self):
        """Test coroutine functions are awaited."""
        async def fetch():
            return 1

        assert run_body(fetch).error is None

    def test_process_exit_code(self):
        """Test a process handle fails on non-zero exit."""
        ok = run_body(lambda: subprocess.Popen([sys.executable, "-c", "pass"]))
        bad = run_body(
            lambda: subprocess.Popen([sys.executable, "-c", "import sys; sys.exit(3)"])
        )

        assert ok.error is None
        assert bad.error.details["returncode"] == 3


class TestSettle:
    """Test settling handles."""

    def test_future_success(self):
        """Test a future resolves the completion when it finishes."""
        future = Future()
        completion = Completion("image")
        settle(future, completion)

        assert not completion.done
        future.set_result(None)
        assert completion.done and completion.error is None

    def test_future_failure(self):
        """Test a failed future."""
        future = Future()
        completion = Completion("image")
        settle(future, completion)
        future.set_exception(RuntimeError("optimizer crashed"))

        assert completion.error.message == "optimizer crashed"

    def test_cancelled_future(self):
        """Test a cancelled future is a failure."""
        future = Future()
        completion = Completion("image")
        settle(future, completion)
        future.cancel()

        assert isinstance(completion.error, AtomicFailure)
