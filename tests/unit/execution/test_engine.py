"""Unit tests for the execution engine: outcomes, dependencies, deadlines, cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from structlog.testing import capture_logs

from featurecheck.domain.models import (
    FeatureArea,
    TestDefinition,
    TestOutcome,
    TestResult,
    TestStatus,
)
from featurecheck.errors import ContextStackError
from featurecheck.execution.engine import ExecutionEngine, TestRunContext
from featurecheck.observability.contexts import LoggingContextManager
from featurecheck.observability.sink import LogBuffer, LogLevel
from featurecheck.persistence.status_store import StatusStore
from featurecheck.registry.test_registry import TestRegistry
from featurecheck.utils.concurrency import CancellationToken


class _Harness:
    def __init__(self, *, default_timeout_seconds: float | None = None) -> None:
        self.registry = TestRegistry()
        self.buffer = LogBuffer()
        self.contexts = LoggingContextManager(self.buffer)
        self.store = StatusStore()
        self.engine = ExecutionEngine(
            self.registry,
            self.store,
            self.contexts,
            default_timeout_seconds=default_timeout_seconds,
        )

    def add(self, test_id: str, run: Callable[[TestRunContext], object], **fields: object) -> None:
        self.registry.register(
            TestDefinition(id=test_id, name=test_id, run=run, **fields)  # type: ignore[arg-type]
        )


def _returns(value: object) -> Callable[[TestRunContext], object]:
    def body(_: TestRunContext) -> object:
        return value

    return body


async def test_outcomes_map_to_statuses_and_errors() -> None:
    harness = _Harness()

    async def raises(_: TestRunContext) -> None:
        raise ValueError("title must not be empty")

    harness.add("returns-none", _returns(None))
    harness.add("returns-true", _returns(True))
    harness.add("returns-pass", _returns(TestOutcome.PASS))
    harness.add("returns-false", _returns(False))
    harness.add("returns-fail", _returns(TestOutcome.FAIL))
    harness.add("returns-int", _returns(42))
    harness.add("raises", raises)

    summary = await harness.engine.run_all()

    statuses = {result.test_id: result.status for result in summary.results}
    assert statuses == {
        "returns-none": TestStatus.PASSED,
        "returns-true": TestStatus.PASSED,
        "returns-pass": TestStatus.PASSED,
        "returns-false": TestStatus.FAILED,
        "returns-fail": TestStatus.FAILED,
        "returns-int": TestStatus.FAILED,
        "raises": TestStatus.FAILED,
    }
    errors = {result.test_id: result.error for result in summary.results}
    assert errors["returns-false"] == "Test returned false"
    assert errors["returns-int"] == "TypeError: unsupported test outcome of type int"
    assert errors["raises"] == "ValueError: title must not be empty"
    assert (summary.passed, summary.failed, summary.skipped) == (3, 4, 0)
    assert not summary.success
    assert harness.contexts.depth == 0


async def test_unmet_dependencies_skip_without_running_the_body() -> None:
    harness = _Harness()
    calls: list[str] = []

    def dependent(_: TestRunContext) -> bool:
        calls.append("dependent")
        return True

    harness.add("goal-list", dependent, dependencies=("goal-create", "storage-ready"))
    harness.add("goal-create", _returns(False))
    harness.add("storage-ready", _returns(True))

    summary = await harness.engine.run_all()

    assert [result.test_id for result in summary.results] == [
        "goal-create",
        "storage-ready",
        "goal-list",
    ]
    skipped = harness.store.get("goal-list")
    assert skipped is not None
    assert skipped.status is TestStatus.SKIPPED
    assert skipped.error == "Dependencies not met: goal-create"
    assert calls == []


async def test_unknown_test_id_records_failure() -> None:
    harness = _Harness()

    result = await harness.engine.run_test("ghost")

    assert result.status is TestStatus.FAILED
    assert result.error == 'Test with ID "ghost" not found in registry'
    assert harness.store.status_of("ghost") is TestStatus.FAILED


async def test_slow_async_body_times_out() -> None:
    harness = _Harness(default_timeout_seconds=5)

    async def slow(_: TestRunContext) -> bool:
        await asyncio.sleep(10)
        return True

    harness.add("slow", slow, timeout_seconds=0.05)

    result = await harness.engine.run_test("slow")

    assert result.status is TestStatus.FAILED
    assert result.error == "TimeoutError: test timed out after 0.05 seconds"
    errors = harness.buffer.entries(level=LogLevel.ERROR)
    assert errors[0].message == result.error


async def test_cancel_token_stops_before_next_test() -> None:
    harness = _Harness()
    token = CancellationToken()

    def first(_: TestRunContext) -> bool:
        token.cancel("user requested stop")
        return True

    harness.add("a-first", first)
    harness.add("b-second", _returns(True))
    harness.add("c-third", _returns(True))

    summary = await harness.engine.run_all(cancel_token=token)

    assert summary.cancelled
    assert [result.test_id for result in summary.results] == ["a-first"]
    assert summary.not_started == ("b-second", "c-third")
    assert harness.store.get("b-second") is None
    assert harness.contexts.depth == 0


async def test_cancelled_error_is_recorded_then_propagates() -> None:
    harness = _Harness()

    async def cancelled(_: TestRunContext) -> None:
        raise asyncio.CancelledError

    harness.add("cancelled", cancelled)

    with pytest.raises(asyncio.CancelledError):
        await harness.engine.run_test("cancelled")

    result = harness.store.get("cancelled")
    assert result is not None
    assert result.status is TestStatus.FAILED
    assert result.error == "CancelledError: test was cancelled while running"
    assert harness.contexts.depth == 0


async def test_failing_listener_does_not_break_recording() -> None:
    harness = _Harness()
    seen: list[TestResult] = []

    def broken(_: TestResult) -> None:
        raise RuntimeError("listener exploded")

    harness.engine.subscribe(broken)
    unsubscribe = harness.engine.subscribe(seen.append)
    harness.add("ok", _returns(True))

    with capture_logs() as logs:
        result = await harness.engine.run_test("ok")

    assert result.status is TestStatus.PASSED
    assert [item.status for item in seen] == [TestStatus.RUNNING, TestStatus.PASSED]
    assert any(log["event"] == "execution_listener_failed" for log in logs)

    unsubscribe()
    await harness.engine.run_test("ok")
    assert len(seen) == 2


async def test_contexts_left_open_by_a_body_are_closed_as_failed() -> None:
    harness = _Harness()
    leaked: list[str] = []

    def leaky(run_context: TestRunContext) -> bool:
        leaked.append(run_context.contexts.create_context("never completed"))
        return True

    harness.add("leaky", leaky)

    result = await harness.engine.run_test("leaky")

    assert result.status is TestStatus.PASSED
    assert harness.contexts.depth == 0
    (closed,) = [c for c in harness.contexts.completed_contexts() if c.id == leaked[0]]
    assert closed.success is False


async def test_body_completing_its_own_context_fails_without_touching_the_batch() -> None:
    harness = _Harness()

    def misuse(run_context: TestRunContext) -> bool:
        run_context.contexts.complete_context(run_context.context_id, True)
        return True

    harness.add("a-misuse", misuse)
    harness.add("b-after", _returns(True))

    with capture_logs() as logs:
        summary = await harness.engine.run_all()

    statuses = {result.test_id: result.status for result in summary.results}
    assert statuses == {"a-misuse": TestStatus.FAILED, "b-after": TestStatus.PASSED}
    misused = harness.store.get("a-misuse")
    assert misused is not None
    assert misused.error is not None
    assert misused.error.startswith("ContextStackError:")
    assert "completed by the test body" in misused.error
    assert harness.contexts.depth == 0
    assert not any(log["event"] == "execution_context_left_open" for log in logs)
    (batch,) = [c for c in harness.contexts.completed_contexts() if c.id == summary.context_id]
    assert batch.success is False


def test_unwinding_to_a_closed_context_leaves_outer_frames_open() -> None:
    harness = _Harness()
    outer = harness.contexts.create_context("outer")
    inner = harness.contexts.create_context("inner")
    harness.contexts.complete_context(inner, True)

    with pytest.raises(ContextStackError, match="not the top of the stack"):
        harness.engine._unwind_to(inner)

    assert [context.id for context in harness.contexts.active_contexts()] == [outer]


async def test_cancelled_batch_without_failures_completes_successfully() -> None:
    harness = _Harness()
    token = CancellationToken()

    def first(_: TestRunContext) -> bool:
        token.cancel("user requested stop")
        return True

    harness.add("a-first", first)
    harness.add("b-second", _returns(True))

    summary = await harness.engine.run_all(cancel_token=token)

    assert summary.cancelled
    (batch,) = [c for c in harness.contexts.completed_contexts() if c.id == summary.context_id]
    assert batch.success is True


async def test_sync_body_logs_under_its_context_and_area() -> None:
    harness = _Harness()

    def body(run_context: TestRunContext) -> bool:
        run_context.log_input({"title": "Run 5k"})
        run_context.log_step("Saving goal")
        return run_context.check_output({"saved": True}, {"saved": True})

    harness.add("goal-save", body, area=FeatureArea.GOAL, feature_name="Goal Creation")

    result = await harness.engine.run_test("goal-save")

    assert result.status is TestStatus.PASSED
    assert result.context_id is not None
    (completed,) = harness.contexts.completed_contexts(target="Goal Creation")
    assert completed.id == result.context_id
    steps = [
        entry
        for entry in harness.contexts.logs_for_context(result.context_id)
        if entry.area is FeatureArea.GOAL
    ]
    assert [entry.message for entry in steps] == [
        "Test input data",
        "Saving goal",
        "Test output matches expected result",
    ]


async def test_reset_results_clears_store() -> None:
    harness = _Harness()
    harness.add("ok", _returns(True))
    await harness.engine.run_all()

    harness.engine.reset_results()

    assert harness.store.status_of("ok") is TestStatus.NOT_STARTED


def test_negative_default_timeout_is_rejected() -> None:
    with pytest.raises(ValueError, match="default_timeout_seconds"):
        _Harness(default_timeout_seconds=-1)
