"""Latest-result-per-test store layered over a ``KeyValueStore``."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from types import MappingProxyType

from featurecheck.constants import TEST_RESULTS_KEY
from featurecheck.domain.models import JSONValue, TestResult, TestStatus
from featurecheck.persistence.kv_store import KeyValueStore, MemoryKeyValueStore, StateFileError


class StatusStore:
    """Holds at most one result per test id.

    Every write replaces the previous result for that id and is flushed to the
    backing store before the call returns, so a reader never observes a result
    that is not also persisted.
    """

    def __init__(self, backend: KeyValueStore | None = None) -> None:
        self._backend: KeyValueStore = backend if backend is not None else MemoryKeyValueStore()
        self._lock = threading.Lock()
        self._results: dict[str, TestResult] = _decode_results(self._backend.get(TEST_RESULTS_KEY))

    def record(self, result: TestResult) -> TestResult:
        with self._lock:
            self._results[result.test_id] = result
            self._persist_locked()
        return result

    def get(self, test_id: str) -> TestResult | None:
        with self._lock:
            return self._results.get(test_id)

    def status_of(self, test_id: str) -> TestStatus:
        """Last recorded status, ``NOT_STARTED`` for tests that never ran."""
        result = self.get(test_id)
        return TestStatus.NOT_STARTED if result is None else result.status

    def snapshot(self) -> Mapping[str, TestResult]:
        with self._lock:
            return MappingProxyType(dict(self._results))

    def clear(self) -> None:
        with self._lock:
            self._results.clear()
            self._persist_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def _persist_locked(self) -> None:
        payload: dict[str, JSONValue] = {
            test_id: result.to_record() for test_id, result in sorted(self._results.items())
        }
        self._backend.set(TEST_RESULTS_KEY, payload)


def _decode_results(raw: JSONValue | None) -> dict[str, TestResult]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise StateFileError(f"{TEST_RESULTS_KEY!r} must be an object of test results")

    results: dict[str, TestResult] = {}
    for test_id, record in raw.items():
        if not isinstance(record, dict):
            raise StateFileError(f"{TEST_RESULTS_KEY}[{test_id!r}] must be an object")
        try:
            results[test_id] = TestResult.from_record(test_id, record)
        except ValueError as exc:
            raise StateFileError(str(exc)) from exc
    return results


__all__ = ["StatusStore"]
