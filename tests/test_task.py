"""
Task Composition Tests
=======================

Tests for task values and the composition helpers.
"""

import pytest

from siteflow.orchestration.task import (
    Task,
    TaskKind,
    TaskRef,
    atomic,
    parallel,
    series,
    task,
)
from siteflow.utils.exceptions import CompositionError, CycleError


def noop():
    pass


class TestAtomic:
    """Test atomic task creation."""

    def test_atomic_wraps_callable(self):
        """Test atomic keeps the function and name."""
        t = atomic(noop, name="clean")

        assert t.kind is TaskKind.ATOMIC
        assert t.fn is noop
        assert t.name == "clean"
        assert t.children == ()
        assert t.is_atomic

    def test_display_name_falls_back_to_function_name(self):
        """Test anonymous atomic tasks are reported by function name."""
        assert atomic(noop).display_name == "noop"

    def test_atomic_requires_callable(self):
        """Test non-callables are rejected."""
        with pytest.raises(CompositionError):
            atomic("not callable")

    def test_timeout_must_be_positive(self):
        """Test zero or negative timeouts are rejected."""
        with pytest.raises(CompositionError):
            atomic(noop, timeout=0)

    def test_decorator_without_arguments(self):
        """Test @task uses the function name and docstring."""
        @task
        def style():
            """Compile styles."""

        assert isinstance(style, Task)
        assert style.name == "style"
        assert style.description == "Compile styles."

    def test_decorator_with_arguments(self):
        """Test @task(...) options."""
        @task(name="upload", timeout=30)
        def publish(context):
            pass

        assert publish.name == "upload"
        assert publish.timeout == 30


class TestComposition:
    """Test series and parallel composition."""

    def test_series_keeps_order(self):
        """Test children keep their declared order."""
        a, b, c = atomic(noop, name="a"), atomic(noop, name="b"), atomic(noop, name="c")
        s = series(a, b, c)

        assert s.kind is TaskKind.SERIES
        assert [child.name for child in s.children] == ["a", "b", "c"]

    def test_children_are_immutable(self):
        """Test the children tuple cannot be changed."""
        p = parallel(noop, noop)

        assert isinstance(p.children, tuple)
        with pytest.raises(AttributeError):
            p.children = ()

    def test_strings_become_references(self):
        """Test task names become TaskRefs."""
        s = series("clean", noop)

        assert s.children[0] == TaskRef("clean")
        assert s.children[1].is_atomic
        assert list(s.refs()) == [TaskRef("clean")]

    def test_nested_references_are_found(self):
        """Test refs() walks nested composites."""
        build = series("clean", parallel(series("compile", "useref"), "image"))

        assert {ref.name for ref in build.refs()} == {"clean", "compile", "useref", "image"}

    def test_empty_composite_is_rejected(self):
        """Test a composite needs at least one child."""
        with pytest.raises(CompositionError):
            series()
        with pytest.raises(CompositionError):
            parallel()

    def test_unsupported_child_is_rejected(self):
        """Test values that are not tasks, names or callables."""
        with pytest.raises(CompositionError):
            series(42)

    def test_self_reference_is_a_cycle(self):
        """Test a named composite that refers to its own name."""
        with pytest.raises(CycleError) as exc_info:
            series("clean", "build", name="build")

        assert exc_info.value.cycle == ["build", "build"]

    def test_with_name_returns_copy(self):
        """Test renaming leaves the original untouched."""
        original = parallel(noop, noop)
        renamed = original.with_name("compile")

        assert renamed.name == "compile"
        assert original.name is None
        assert renamed.children == original.children

    def test_display_name_of_anonymous_composite(self):
        """Test anonymous composites are labelled by kind."""
        assert series(noop).display_name == "<series>"
        assert parallel(noop).display_name == "<parallel>"
