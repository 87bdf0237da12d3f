"""Unit tests for the latest-result-per-test status store."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from featurecheck.constants import TEST_RESULTS_KEY
from featurecheck.domain.models import TestResult, TestStatus
from featurecheck.persistence.kv_store import MemoryKeyValueStore, StateFileError
from featurecheck.persistence.status_store import StatusStore


def _result(test_id: str, status: TestStatus, **overrides: object) -> TestResult:
    fields: dict[str, object] = {
        "test_id": test_id,
        "status": status,
        "timestamp": datetime(2026, 5, 4, 9, 0, tzinfo=UTC),
    }
    fields.update(overrides)
    return TestResult(**fields)  # type: ignore[arg-type]


def test_record_replaces_previous_result_and_persists_immediately() -> None:
    backend = MemoryKeyValueStore()
    store = StatusStore(backend)

    store.record(_result("goal-create", TestStatus.FAILED, error="Test returned false"))
    store.record(_result("goal-create", TestStatus.PASSED, duration_ms=4.0))

    assert len(store) == 1
    assert store.status_of("goal-create") is TestStatus.PASSED
    persisted = backend.get(TEST_RESULTS_KEY)
    assert persisted == {
        "goal-create": {
            "status": "passed",
            "error": None,
            "duration": 4.0,
            "timestamp": "2026-05-04T09:00:00.000000Z",
        }
    }


def test_results_reload_from_backend() -> None:
    backend = MemoryKeyValueStore()
    StatusStore(backend).record(
        _result("auth-login", TestStatus.SKIPPED, error="Dependencies not met")
    )

    reloaded = StatusStore(backend)
    restored = reloaded.get("auth-login")
    assert restored is not None
    assert restored.status is TestStatus.SKIPPED
    assert restored.error == "Dependencies not met"
    assert reloaded.status_of("never-ran") is TestStatus.NOT_STARTED


def test_snapshot_is_read_only_and_clear_persists() -> None:
    backend = MemoryKeyValueStore()
    store = StatusStore(backend)
    store.record(_result("a", TestStatus.PASSED))

    snapshot = store.snapshot()
    with pytest.raises(TypeError):
        snapshot["b"] = _result("b", TestStatus.PASSED)  # type: ignore[index]

    store.clear()
    assert len(store) == 0
    assert "a" in snapshot
    assert backend.get(TEST_RESULTS_KEY) == {}


@pytest.mark.parametrize(
    "payload",
    [
        ["not", "an", "object"],
        {"a": "passed"},
        {"a": {"status": "exploded", "timestamp": "2026-01-01T00:00:00Z"}},
    ],
)
def test_corrupt_persisted_results_raise_state_file_error(payload: object) -> None:
    backend = MemoryKeyValueStore({TEST_RESULTS_KEY: payload})  # type: ignore[dict-item]

    with pytest.raises(StateFileError):
        StatusStore(backend)
