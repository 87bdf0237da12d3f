"""Nested execution contexts that correlate log entries with the work being traced."""

from __future__ import annotations

import dataclasses
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Final

from featurecheck.domain.ids import generate_context_id
from featurecheck.domain.models import (
    ExecutionContext,
    FeatureArea,
    JSONValue,
    utc_now,
)
from featurecheck.errors import ContextStackError
from featurecheck.observability.logging import normalize_json_value
from featurecheck.observability.sink import LogBuffer, LogEntry, LogLevel, LogSink, make_payload

DEFAULT_RETAINED_CONTEXTS: Final[int] = 1000

Clock = Callable[[], float]


class LoggingContextManager:
    """Stack of open execution contexts plus the logs recorded under each.

    Contexts must be completed in LIFO order. Completing anything other than
    the innermost open context raises ``ContextStackError`` and leaves the
    stack untouched.
    """

    def __init__(
        self,
        sink: LogSink | None = None,
        *,
        area: FeatureArea = FeatureArea.PERFORMANCE,
        retained_contexts: int = DEFAULT_RETAINED_CONTEXTS,
        clock: Clock = time.perf_counter,
    ) -> None:
        if retained_contexts <= 0:
            raise ValueError("retained_contexts must be > 0")
        self._sink: LogSink = sink if sink is not None else LogBuffer()
        self._area = area
        self._clock = clock
        self._lock = threading.RLock()
        self._stack: list[ExecutionContext] = []
        self._logs: dict[str, list[LogEntry]] = {}
        self._completed: deque[ExecutionContext] = deque()
        self._retained = retained_contexts

    @property
    def sink(self) -> LogSink:
        return self._sink

    @property
    def depth(self) -> int:
        with self._lock:
            return len(self._stack)

    @property
    def current(self) -> ExecutionContext | None:
        with self._lock:
            return self._stack[-1] if self._stack else None

    def create_context(self, label: str, target: str | None = None) -> str:
        """Open a context nested under the current one and return its id."""
        with self._lock:
            parent_id = self._stack[-1].id if self._stack else None
            context = ExecutionContext(
                id=generate_context_id(),
                label=label,
                target=target,
                parent_id=parent_id,
                start_time=utc_now(),
                started_monotonic=self._clock(),
            )
            self._stack.append(context)
            self._logs[context.id] = []
            self._record(
                context,
                LogLevel.DEBUG,
                self._area,
                f"Created execution context: {context.id}",
                {"label": label, "target": target},
            )
            return context.id

    def complete_context(
        self,
        context_id: str,
        success: bool,
        data: Mapping[str, object] | None = None,
    ) -> ExecutionContext:
        """Close the innermost context; it must be ``context_id``."""
        with self._lock:
            top = self._stack[-1] if self._stack else None
            if top is None or top.id != context_id:
                raise ContextStackError(context_id, None if top is None else top.id)

            self._stack.pop()
            elapsed_ms = max(0.0, (self._clock() - top.started_monotonic) * 1000.0)
            completed = dataclasses.replace(
                top,
                end_time=utc_now(),
                success=bool(success),
                duration_ms=elapsed_ms,
            )
            summary: dict[str, object] = {
                "label": completed.label,
                "target": completed.target,
                "duration_ms": round(elapsed_ms, 3),
                "success": completed.success,
            }
            if data:
                summary["data"] = dict(data)
            self._record(
                completed,
                LogLevel.INFO,
                self._area,
                f"Completed execution context: {context_id}",
                summary,
            )
            self._retain(completed)
            return completed

    @contextmanager
    def context(self, label: str, target: str | None = None) -> Iterator[str]:
        """Open a context for the ``with`` body; it fails if the body raises."""
        context_id = self.create_context(label, target)
        try:
            yield context_id
        except BaseException:
            self.complete_context(context_id, False)
            raise
        self.complete_context(context_id, True)

    def log_step(
        self,
        context_id: str,
        message: str,
        level: LogLevel | str = LogLevel.INFO,
        area: FeatureArea | None = None,
        data: object = None,
    ) -> None:
        """Record ``message`` under an open context.

        Unknown or already completed contexts still get the message, as a
        warning without context correlation.
        """
        resolved_area = area if area is not None else self._area
        with self._lock:
            context = self._find_active(context_id)
            if context is None:
                self._sink.emit(
                    LogEntry(
                        level=LogLevel.WARNING,
                        area=resolved_area,
                        message=f"Logging to unknown context: {context_id}. {message}",
                        data=make_payload(data),
                    )
                )
                return
            self._record(context, LogLevel.parse(level), resolved_area, message, data)

    def log_test_input(
        self, context_id: str, test_input: object, area: FeatureArea | None = None
    ) -> None:
        self.log_step(
            context_id, "Test input data", LogLevel.DEBUG, area, data={"input": test_input}
        )

    def log_test_output(
        self,
        context_id: str,
        expected: object,
        actual: object,
        area: FeatureArea | None = None,
    ) -> bool:
        """Log expected vs actual output; returns whether they matched."""
        if expected == actual:
            self.log_step(
                context_id,
                "Test output matches expected result",
                LogLevel.INFO,
                area,
                data={"expected": expected, "actual": actual},
            )
            return True
        self.log_step(
            context_id,
            "Test output does not match expected result",
            LogLevel.WARNING,
            area,
            data={
                "expected": expected,
                "actual": actual,
                "differences": find_differences(expected, actual),
            },
        )
        return False

    def logs_for_context(self, context_id: str) -> tuple[LogEntry, ...]:
        with self._lock:
            return tuple(self._logs.get(context_id, ()))

    def active_contexts(self) -> tuple[ExecutionContext, ...]:
        """Open contexts, outermost first."""
        with self._lock:
            return tuple(self._stack)

    def completed_contexts(self, target: str | None = None) -> tuple[ExecutionContext, ...]:
        """Recently completed contexts, oldest first, optionally for one target."""
        with self._lock:
            return tuple(
                context
                for context in self._completed
                if target is None or context.target == target
            )

    def _find_active(self, context_id: str) -> ExecutionContext | None:
        for context in reversed(self._stack):
            if context.id == context_id:
                return context
        return None

    def _record(
        self,
        context: ExecutionContext,
        level: LogLevel,
        area: FeatureArea,
        message: str,
        data: object,
    ) -> None:
        entry = LogEntry(
            level=level,
            area=area,
            message=message,
            data=make_payload(data),
            context_id=context.id,
            parent_context_id=context.parent_id,
        )
        self._logs.setdefault(context.id, []).append(entry)
        self._sink.emit(entry)

    def _retain(self, context: ExecutionContext) -> None:
        self._completed.append(context)
        while len(self._completed) > self._retained:
            evicted = self._completed.popleft()
            self._logs.pop(evicted.id, None)


def find_differences(expected: object, actual: object) -> dict[str, JSONValue]:
    """Describe how ``actual`` deviates from ``expected``; empty when equal.

    Mapping keys present only in ``actual`` are not reported.
    """
    expected_kind = _kind(expected)
    actual_kind = _kind(actual)
    if expected_kind != actual_kind:
        return {"type_expected": expected_kind, "type_actual": actual_kind}

    if isinstance(expected, (list, tuple)) and isinstance(actual, (list, tuple)):
        if len(expected) != len(actual):
            return {"length_expected": len(expected), "length_actual": len(actual)}
        differences: dict[str, JSONValue] = {}
        for index, (left, right) in enumerate(zip(expected, actual, strict=True)):
            nested = find_differences(left, right)
            if nested:
                differences[str(index)] = nested
        return differences

    if isinstance(expected, Mapping) and isinstance(actual, Mapping):
        differences = {}
        for key, value in expected.items():
            name = str(key)
            if key not in actual:
                differences[name] = {"expected": normalize_json_value(value), "actual": "missing"}
                continue
            nested = find_differences(value, actual[key])
            if nested:
                differences[name] = nested
        return differences

    if expected != actual:
        return {"expected": normalize_json_value(expected), "actual": normalize_json_value(actual)}
    return {}


def _kind(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


__all__ = [
    "DEFAULT_RETAINED_CONTEXTS",
    "LoggingContextManager",
    "find_differences",
]
