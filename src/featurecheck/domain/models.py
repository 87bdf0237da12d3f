"""Dataclass domain models for tests, results, features, and execution contexts."""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Final, NoReturn, Protocol, runtime_checkable

if TYPE_CHECKING:
    from featurecheck.execution.engine import TestRunContext

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TestBody = Callable[["TestRunContext"], object]

_MAX_TEXT: Final[int] = 8192


class TestStatus(StrEnum):
    """Per-test lifecycle state; ``passed``, ``failed`` and ``skipped`` are terminal."""

    __test__ = False

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_TEST_STATUSES


_TERMINAL_TEST_STATUSES: Final[frozenset[TestStatus]] = frozenset(
    {TestStatus.PASSED, TestStatus.FAILED, TestStatus.SKIPPED}
)


class TestOutcome(StrEnum):
    __test__ = False

    PASS = "pass"
    FAIL = "fail"


class FeatureTestStatus(StrEnum):
    """Rolled-up test status of a feature."""

    NOT_TESTED = "not_tested"
    PASSED = "passed"
    FAILED = "failed"
    PARTIALLY_PASSED = "partially_passed"
    SKIPPED = "skipped"


class FeatureArea(StrEnum):
    GOAL = "goal"
    PROGRESS = "progress"
    DASHBOARD = "dashboard"
    ANALYTICS = "analytics"
    ACHIEVEMENT = "achievement"
    SETTINGS = "settings"
    AUTH = "auth"
    API = "api"
    STORAGE = "storage"
    UI = "ui"
    NOTIFICATION = "notification"
    PERFORMANCE = "performance"


@dataclass(frozen=True, slots=True)
class TestDefinition:
    """Immutable registration record for one verification check."""

    __test__ = False

    id: str
    name: str
    run: TestBody
    description: str = ""
    area: FeatureArea = FeatureArea.UI
    feature_name: str | None = None
    dependencies: tuple[str, ...] = ()
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _as_str(self.id, "TestDefinition.id", max_len=256))
        object.__setattr__(self, "name", _as_str(self.name, "TestDefinition.name"))
        object.__setattr__(
            self,
            "description",
            _as_str(self.description, "TestDefinition.description", min_len=0),
        )
        if not callable(self.run):
            _fail("TestDefinition.run", "must be callable")
        object.__setattr__(self, "area", as_feature_area(self.area))
        if self.feature_name is not None:
            object.__setattr__(
                self,
                "feature_name",
                _as_str(self.feature_name, "TestDefinition.feature_name", max_len=256),
            )

        dependencies = _normalize_unique_ids(self.dependencies, "TestDefinition.dependencies")
        if self.id in dependencies:
            _fail("TestDefinition.dependencies", f"test {self.id!r} cannot depend on itself")
        object.__setattr__(self, "dependencies", dependencies)

        if self.timeout_seconds is not None:
            timeout = self.timeout_seconds
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
                _fail("TestDefinition.timeout_seconds", "must be a number")
            if not math.isfinite(timeout) or timeout <= 0:
                _fail("TestDefinition.timeout_seconds", "must be > 0 when provided")
            object.__setattr__(self, "timeout_seconds", float(timeout))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "area": self.area.value,
            "feature_name": self.feature_name,
            "dependencies": list(self.dependencies),
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass(frozen=True, slots=True)
class TestResult:
    """Latest recorded outcome of one test."""

    __test__ = False

    test_id: str
    status: TestStatus
    error: str | None = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=lambda: utc_now())
    context_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", TestStatus(self.status))
        if isinstance(self.duration_ms, bool) or not isinstance(self.duration_ms, (int, float)):
            _fail("TestResult.duration_ms", "must be a number")
        if not math.isfinite(self.duration_ms) or self.duration_ms < 0:
            _fail("TestResult.duration_ms", "must be a finite non-negative number")
        object.__setattr__(self, "duration_ms", float(self.duration_ms))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    def to_record(self) -> dict[str, JSONValue]:
        """Persisted ``{status, error, duration, timestamp}`` record."""

        return {
            "status": self.status.value,
            "error": self.error,
            "duration": self.duration_ms,
            "timestamp": to_iso8601(self.timestamp),
        }

    @classmethod
    def from_record(cls, test_id: str, record: Mapping[str, object]) -> TestResult:
        path = f"TestResult[{test_id}]"
        raw_status = record.get("status")
        try:
            status = TestStatus(str(raw_status))
        except ValueError:
            _fail(path, f"unknown status {raw_status!r}")
        raw_error = record.get("error")
        raw_duration = record.get("duration", 0.0)
        if isinstance(raw_duration, bool) or not isinstance(raw_duration, (int, float)):
            _fail(path, "duration must be a number")
        raw_timestamp = record.get("timestamp")
        if not isinstance(raw_timestamp, str):
            _fail(path, "timestamp must be an ISO-8601 string")
        return cls(
            test_id=test_id,
            status=status,
            error=None if raw_error is None else str(raw_error),
            duration_ms=float(raw_duration),
            timestamp=parse_iso8601(raw_timestamp),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        payload = {"test_id": self.test_id, **self.to_record()}
        payload["context_id"] = self.context_id
        return payload


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Aggregate of one ``run_all`` batch."""

    results: tuple[TestResult, ...]
    passed: int
    failed: int
    skipped: int
    not_started: tuple[str, ...] = ()
    cancelled: bool = False
    context_id: str | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def total(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "results": [result.to_dict() for result in self.results],
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "not_started": list(self.not_started),
            "cancelled": self.cancelled,
            "context_id": self.context_id,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class TestResultSummary:
    """Counts of latest outcomes for the tests of one feature."""

    __test__ = False

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    not_run: int = 0
    total: int = 0
    last_run: datetime | None = None

    @property
    def run_count(self) -> int:
        return self.passed + self.failed + self.skipped

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "not_run": self.not_run,
            "total": self.total,
            "last_run": None if self.last_run is None else to_iso8601(self.last_run),
        }


@dataclass(frozen=True, slots=True)
class NoteCategories:
    """Display partition of deduplicated feature notes."""

    implementation: tuple[str, ...] = ()
    test: tuple[str, ...] = ()
    manual: tuple[str, ...] = ()
    other: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "implementation": list(self.implementation),
            "test": list(self.test),
            "manual": list(self.manual),
            "other": list(self.other),
        }


@dataclass(frozen=True, slots=True)
class DiagnosticInfo:
    """Self-description returned by introspectable components."""

    component: str
    summary: str
    details: Mapping[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "component": self.component,
            "summary": self.summary,
            "details": dict(self.details),
        }


@runtime_checkable
class Introspectable(Protocol):
    """Capability of components that can describe their own health."""

    def describe_self(self) -> DiagnosticInfo: ...


@dataclass(frozen=True, slots=True)
class FeatureMetadata:
    """Declared facts about a feature, independent of any test outcome."""

    name: str
    implemented: bool = False
    tested: bool = False
    area: FeatureArea | None = None
    notes: tuple[str, ...] = ()
    last_verified: datetime | None = None


@dataclass(frozen=True, slots=True)
class FeatureStatus:
    """Derived, never persisted, view of a feature's verification state."""

    name: str
    implemented: bool
    notes: tuple[str, ...]
    area: FeatureArea
    test_status: FeatureTestStatus
    last_verified: datetime | None = None
    test_ids: tuple[str, ...] = ()
    summary: TestResultSummary = field(default_factory=TestResultSummary)
    notes_by_category: NoteCategories = field(default_factory=NoteCategories)
    diagnostics: DiagnosticInfo | None = None
    fuzzy_match: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "implemented": self.implemented,
            "notes": list(self.notes),
            "area": self.area.value,
            "test_status": self.test_status.value,
            "last_verified": (
                None if self.last_verified is None else to_iso8601(self.last_verified)
            ),
            "test_ids": list(self.test_ids),
            "summary": self.summary.to_dict(),
            "notes_by_category": self.notes_by_category.to_dict(),
            "diagnostics": None if self.diagnostics is None else self.diagnostics.to_dict(),
            "fuzzy_match": self.fuzzy_match,
        }


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """A traced span of execution; one per test run or batch run."""

    id: str
    label: str
    target: str | None
    start_time: datetime
    parent_id: str | None = None
    end_time: datetime | None = None
    success: bool | None = None
    started_monotonic: float = field(default=0.0, repr=False, compare=False)
    duration_ms: float | None = None

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "label": self.label,
            "target": self.target,
            "parent_id": self.parent_id,
            "start_time": to_iso8601(self.start_time),
            "end_time": None if self.end_time is None else to_iso8601(self.end_time),
            "success": self.success,
            "duration_ms": self.duration_ms,
        }


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime) -> datetime:
    if not isinstance(value, datetime):
        _fail("timestamp", f"expected datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_iso8601(value: datetime) -> str:
    """Render a timestamp as ISO-8601 with a ``Z`` suffix."""

    return ensure_utc(value).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso8601(text: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` or offset form) into an aware UTC datetime."""

    if not isinstance(text, str):
        _fail("timestamp", f"expected ISO-8601 string, got {type(text).__name__}")
    normalized = text.strip()
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"timestamp: invalid ISO-8601 value {text!r}") from exc
    return ensure_utc(parsed)


def as_feature_area(value: FeatureArea | str) -> FeatureArea:
    if isinstance(value, FeatureArea):
        return value
    if isinstance(value, str):
        try:
            return FeatureArea(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(item.value for item in FeatureArea)
    _fail("area", f"expected one of [{allowed}], got {value!r}")


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_str(value: object, path: str, *, min_len: int = 1, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _normalize_unique_ids(
    values: Sequence[str] | frozenset[str] | set[str], path: str
) -> tuple[str, ...]:
    if isinstance(values, (str, bytes)):
        _fail(path, "expected a collection of ids, not a string")
    normalized: set[str] = set()
    for index, item in enumerate(values):
        normalized.add(_as_str(item, f"{path}[{index}]", max_len=256))
    return tuple(sorted(normalized))


__all__ = [
    "DiagnosticInfo",
    "ExecutionContext",
    "FeatureArea",
    "FeatureMetadata",
    "FeatureStatus",
    "FeatureTestStatus",
    "Introspectable",
    "JSONScalar",
    "JSONValue",
    "NoteCategories",
    "RunSummary",
    "TestBody",
    "TestDefinition",
    "TestOutcome",
    "TestResult",
    "TestResultSummary",
    "TestStatus",
    "as_feature_area",
    "ensure_utc",
    "parse_iso8601",
    "to_iso8601",
    "utc_now",
]
