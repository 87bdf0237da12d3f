"""Unit tests for nested execution contexts and output comparison."""

from __future__ import annotations

import pytest

from featurecheck.domain.models import FeatureArea
from featurecheck.errors import ContextStackError
from featurecheck.observability.contexts import LoggingContextManager, find_differences
from featurecheck.observability.sink import LogBuffer, LogLevel, StructuredPayload


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _manager(**kwargs: object) -> tuple[LoggingContextManager, LogBuffer, _FakeClock]:
    buffer = LogBuffer()
    clock = _FakeClock()
    manager = LoggingContextManager(buffer, clock=clock, **kwargs)  # type: ignore[arg-type]
    return manager, buffer, clock


def test_nested_contexts_link_parents_and_time_completion() -> None:
    manager, buffer, clock = _manager()
    outer = manager.create_context("Run all feature tests")
    inner = manager.create_context("Run test: Create goal", "goal-create")

    assert manager.depth == 2
    assert [context.id for context in manager.active_contexts()] == [outer, inner]
    current = manager.current
    assert current is not None
    assert current.parent_id == outer

    clock.now += 0.25
    completed = manager.complete_context(inner, True, {"attempt": 1})

    assert completed.success is True
    assert completed.end_time is not None
    assert completed.duration_ms == pytest.approx(250.0)
    assert manager.depth == 1

    messages = [entry.message for entry in manager.logs_for_context(inner)]
    assert messages == [
        f"Created execution context: {inner}",
        f"Completed execution context: {inner}",
    ]
    closing = buffer.entries(context_id=inner)[0]
    assert closing.level is LogLevel.INFO
    assert closing.parent_context_id == outer
    assert isinstance(closing.data, StructuredPayload)
    assert closing.data.fields["data"] == {"attempt": 1}


def test_out_of_order_completion_raises_and_keeps_stack() -> None:
    manager, _, _ = _manager()
    outer = manager.create_context("outer")
    inner = manager.create_context("inner")

    with pytest.raises(ContextStackError) as error:
        manager.complete_context(outer, True)

    assert error.value.top_id == inner
    assert [context.id for context in manager.active_contexts()] == [outer, inner]

    manager.complete_context(inner, True)
    manager.complete_context(outer, True)
    with pytest.raises(ContextStackError, match="no context is active"):
        manager.complete_context(outer, True)


def test_context_manager_marks_failure_when_body_raises() -> None:
    manager, _, _ = _manager()

    with pytest.raises(RuntimeError), manager.context("exploding", "boom"):
        raise RuntimeError("boom")

    assert manager.depth == 0
    (completed,) = manager.completed_contexts(target="boom")
    assert completed.success is False


def test_logging_to_unknown_context_warns_without_correlation() -> None:
    manager, buffer, _ = _manager()

    manager.log_step("ctx-missing", "Saving goal", area=FeatureArea.GOAL)

    (entry,) = buffer.entries()
    assert entry.level is LogLevel.WARNING
    assert entry.area is FeatureArea.GOAL
    assert entry.message == "Logging to unknown context: ctx-missing. Saving goal"
    assert entry.context_id is None


def test_log_test_output_reports_differences() -> None:
    manager, buffer, _ = _manager()
    context_id = manager.create_context("compare")

    assert manager.log_test_output(context_id, {"title": "Run"}, {"title": "Run"})
    assert not manager.log_test_output(context_id, {"title": "Run", "days": 3}, {"title": "Walk"})

    mismatch = buffer.entries(level=LogLevel.WARNING)[0]
    assert mismatch.message == "Test output does not match expected result"
    assert isinstance(mismatch.data, StructuredPayload)
    assert mismatch.data.fields["differences"] == {
        "title": {"expected": "Run", "actual": "Walk"},
        "days": {"expected": 3, "actual": "missing"},
    }


def test_completed_contexts_are_bounded() -> None:
    manager, _, _ = _manager(retained_contexts=2)
    ids = []
    for index in range(3):
        with manager.context(f"step {index}") as context_id:
            ids.append(context_id)

    assert [context.id for context in manager.completed_contexts()] == ids[1:]
    assert manager.logs_for_context(ids[0]) == ()


def test_find_differences_shapes() -> None:
    assert find_differences([1, 2], [1, 2]) == {}
    assert find_differences(1, "1") == {"type_expected": "number", "type_actual": "string"}
    assert find_differences(True, 1) == {"type_expected": "boolean", "type_actual": "number"}
    assert find_differences([1, 2], [1]) == {"length_expected": 2, "length_actual": 1}
    assert find_differences([1, {"a": 1}], [1, {"a": 2}]) == {
        "1": {"a": {"expected": 1, "actual": 2}}
    }
    assert find_differences({"a": 1}, {"a": 1, "extra": True}) == {}
