"""Execution engine: runs registered tests in dependency order and records outcomes."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from featurecheck.domain.ids import generate_run_id
from featurecheck.domain.models import (
    RunSummary,
    TestDefinition,
    TestOutcome,
    TestResult,
    TestStatus,
)
from featurecheck.errors import ContextStackError
from featurecheck.observability.contexts import LoggingContextManager
from featurecheck.observability.logging import correlation_scope
from featurecheck.observability.sink import LogLevel
from featurecheck.persistence.status_store import StatusStore
from featurecheck.registry.test_registry import TestRegistry
from featurecheck.utils.concurrency import CancellationToken, resolve_maybe_awaitable

ResultListener = Callable[[TestResult], None]

BATCH_CONTEXT_LABEL: Final[str] = "run_all"
FALSE_OUTCOME_MESSAGE: Final[str] = "Test returned false"


@dataclass(frozen=True, slots=True)
class TestRunContext:
    """Handle passed to a running test body."""

    __test__ = False

    test_id: str
    context_id: str
    definition: TestDefinition
    contexts: LoggingContextManager = field(repr=False, compare=False)

    def log_step(
        self,
        message: str,
        level: LogLevel | str = LogLevel.INFO,
        data: object = None,
    ) -> None:
        self.contexts.log_step(self.context_id, message, level, self.definition.area, data)

    def log_input(self, value: object) -> None:
        self.contexts.log_test_input(self.context_id, value, self.definition.area)

    def check_output(self, expected: object, actual: object) -> bool:
        """Log an expected/actual comparison and return whether they match."""
        return self.contexts.log_test_output(
            self.context_id, expected, actual, self.definition.area
        )


class ExecutionEngine:
    """Runs tests strictly one at a time and writes each result to the store.

    Exceptions raised by test bodies become ``FAILED`` results; only
    ``asyncio.CancelledError`` propagates, after the test's context is closed.
    """

    def __init__(
        self,
        registry: TestRegistry,
        store: StatusStore,
        contexts: LoggingContextManager,
        *,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds < 0:
            raise ValueError("default_timeout_seconds must be >= 0")
        self._registry = registry
        self._store = store
        self._contexts = contexts
        self._default_timeout_seconds = default_timeout_seconds or None
        self._listeners: list[ResultListener] = []
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> StatusStore:
        return self._store

    @property
    def contexts(self) -> LoggingContextManager:
        return self._contexts

    def subscribe(self, listener: ResultListener) -> Callable[[], None]:
        """Call ``listener`` after every recorded result; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset_results(self) -> None:
        self._store.clear()
        self._logger.info("execution_results_reset")

    async def run_test(self, test_id: str) -> TestResult:
        definition = self._registry.get(test_id)
        if definition is None:
            self._logger.warning("execution_test_not_registered", test_id=test_id)
            return self._record(
                TestResult(
                    test_id=test_id,
                    status=TestStatus.FAILED,
                    error=f'Test with ID "{test_id}" not found in registry',
                )
            )

        unmet = tuple(
            dependency
            for dependency in definition.dependencies
            if self._store.status_of(dependency) is not TestStatus.PASSED
        )
        if unmet:
            self._logger.info("execution_test_skipped", test_id=test_id, unmet=list(unmet))
            return self._record(
                TestResult(
                    test_id=test_id,
                    status=TestStatus.SKIPPED,
                    error=f"Dependencies not met: {', '.join(unmet)}",
                )
            )

        return await self._execute(definition)

    async def run_all(
        self,
        ids: Iterable[str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunSummary:
        """Run ``ids`` (default: every registered test) in dependency order.

        Once ``cancel_token`` is signalled no further test starts; the
        remaining ids are reported in ``not_started`` and left unrecorded.
        """
        order = self._registry.topological_order(ids)
        run_id = generate_run_id()
        start = time.perf_counter()
        results: list[TestResult] = []
        not_started: tuple[str, ...] = ()
        cancelled = False

        batch_id = self._contexts.create_context(BATCH_CONTEXT_LABEL, run_id)
        self._logger.info("execution_run_all_started", run_id=run_id, test_count=len(order))
        failed = 0
        try:
            with correlation_scope(run_id=run_id):
                for index, test_id in enumerate(order):
                    if cancel_token is not None and cancel_token.is_cancelled:
                        cancelled = True
                        not_started = order[index:]
                        break
                    result = await self.run_test(test_id)
                    results.append(result)
                    if result.status is TestStatus.FAILED:
                        failed += 1
        finally:
            self._close_if_open(batch_id, failed == 0)

        summary = RunSummary(
            results=tuple(results),
            passed=sum(1 for result in results if result.status is TestStatus.PASSED),
            failed=failed,
            skipped=sum(1 for result in results if result.status is TestStatus.SKIPPED),
            not_started=not_started,
            cancelled=cancelled,
            context_id=batch_id,
            duration_ms=_duration_ms(start),
        )
        self._logger.info(
            "execution_run_all_finished",
            run_id=run_id,
            passed=summary.passed,
            failed=summary.failed,
            skipped=summary.skipped,
            not_started=len(summary.not_started),
            cancelled=summary.cancelled,
            duration_ms=summary.duration_ms,
        )
        return summary

    async def _execute(self, definition: TestDefinition) -> TestResult:
        target = definition.feature_name or definition.area.value
        context_id = self._contexts.create_context(definition.id, target)
        status = TestStatus.FAILED
        try:
            self._record(
                TestResult(test_id=definition.id, status=TestStatus.RUNNING, context_id=context_id)
            )
            self._logger.info(
                "execution_test_started", test_id=definition.id, context_id=context_id
            )
            run_context = TestRunContext(
                test_id=definition.id,
                context_id=context_id,
                definition=definition,
                contexts=self._contexts,
            )
            timeout_seconds = definition.timeout_seconds or self._default_timeout_seconds

            start = time.perf_counter()
            error: str | None = None
            try:
                with correlation_scope(context_id=context_id, test_id=definition.id):
                    outcome = await resolve_maybe_awaitable(
                        definition.run(run_context), timeout_seconds
                    )
                status, error = _interpret_outcome(outcome)
            except TimeoutError:
                error = f"TimeoutError: test timed out after {timeout_seconds:g} seconds"
            except asyncio.CancelledError:
                self._record(
                    TestResult(
                        test_id=definition.id,
                        status=TestStatus.FAILED,
                        error="CancelledError: test was cancelled while running",
                        duration_ms=_duration_ms(start),
                        context_id=context_id,
                    )
                )
                raise
            except Exception as exc:  # noqa: BLE001
                error = f"{type(exc).__name__}: {exc}"

            if not self._is_open(context_id):
                status = TestStatus.FAILED
                error = (
                    f"ContextStackError: test context {context_id!r} "
                    "was completed by the test body"
                )
            if error is not None:
                self._contexts.log_step(context_id, error, LogLevel.ERROR, definition.area)
            result = self._record(
                TestResult(
                    test_id=definition.id,
                    status=status,
                    error=error,
                    duration_ms=_duration_ms(start),
                    context_id=context_id,
                )
            )
            self._logger.info(
                "execution_test_finished",
                test_id=definition.id,
                context_id=context_id,
                status=result.status.value,
                duration_ms=result.duration_ms,
                error=result.error,
            )
            return result
        finally:
            self._close_if_open(context_id, status is TestStatus.PASSED)

    def _record(self, result: TestResult) -> TestResult:
        self._store.record(result)
        for listener in tuple(self._listeners):
            try:
                listener(result)
            except Exception:  # noqa: BLE001
                self._logger.exception(
                    "execution_listener_failed",
                    test_id=result.test_id,
                    status=result.status.value,
                )
        return result

    def _unwind_to(self, context_id: str) -> None:
        """Close contexts a test body opened above ``context_id`` but never completed.

        Raises ``ContextStackError`` without touching the stack when
        ``context_id`` itself is no longer open.
        """
        if not self._is_open(context_id):
            current = self._contexts.current
            raise ContextStackError(context_id, None if current is None else current.id)
        while True:
            current = self._contexts.current
            if current is None or current.id == context_id:
                return
            self._logger.warning(
                "execution_context_left_open",
                context_id=current.id,
                expected_top=context_id,
            )
            self._contexts.complete_context(current.id, False)

    def _close_if_open(self, context_id: str, success: bool) -> None:
        if not self._is_open(context_id):
            self._logger.warning("execution_context_already_closed", context_id=context_id)
            return
        self._unwind_to(context_id)
        self._contexts.complete_context(context_id, success)

    def _is_open(self, context_id: str) -> bool:
        return any(context.id == context_id for context in self._contexts.active_contexts())


def _interpret_outcome(outcome: object) -> tuple[TestStatus, str | None]:
    if outcome is None or outcome is True or outcome is TestOutcome.PASS:
        return TestStatus.PASSED, None
    if outcome is False or outcome is TestOutcome.FAIL:
        return TestStatus.FAILED, FALSE_OUTCOME_MESSAGE
    return (
        TestStatus.FAILED,
        f"TypeError: unsupported test outcome of type {type(outcome).__name__}",
    )


def _duration_ms(start: float) -> float:
    return max(time.perf_counter() - start, 0.0) * 1000.0


__all__ = [
    "BATCH_CONTEXT_LABEL",
    "FALSE_OUTCOME_MESSAGE",
    "ExecutionEngine",
    "ResultListener",
    "TestRunContext",
]
