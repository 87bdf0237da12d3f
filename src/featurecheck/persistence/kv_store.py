"""Key/value persistence contract and reference backends."""

from __future__ import annotations

import copy
import json
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

from featurecheck.constants import STATE_SCHEMA_VERSION
from featurecheck.domain.models import JSONValue
from featurecheck.errors import FeatureCheckError
from featurecheck.utils.fs import read_text_if_exists, write_text_atomic

_RECORDS_KEY: Final[str] = "records"
_SCHEMA_KEY: Final[str] = "schema_version"


class StateFileError(FeatureCheckError, ValueError):
    """Raised when a persisted state file cannot be decoded."""


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal storage contract; values are JSON-compatible."""

    def get(self, key: str) -> JSONValue | None: ...

    def set(self, key: str, value: JSONValue) -> None: ...

    def append(self, key: str, entry: JSONValue) -> None: ...


class MemoryKeyValueStore:
    """Process-local store; values are deep-copied in and out."""

    def __init__(self, initial: Mapping[str, JSONValue] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, JSONValue] = {}
        if initial is not None:
            for key, value in initial.items():
                self._records[_validate_key(key)] = copy.deepcopy(value)

    def get(self, key: str) -> JSONValue | None:
        with self._lock:
            return copy.deepcopy(self._records.get(_validate_key(key)))

    def set(self, key: str, value: JSONValue) -> None:
        with self._lock:
            self._records[_validate_key(key)] = copy.deepcopy(value)

    def append(self, key: str, entry: JSONValue) -> None:
        key = _validate_key(key)
        with self._lock:
            self._records[key] = _appended(self._records.get(key), entry, key)

    def keys(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._records))

    def to_dict(self) -> dict[str, JSONValue]:
        with self._lock:
            return copy.deepcopy(self._records)


class JsonFileKeyValueStore(MemoryKeyValueStore):
    """Single JSON document on disk, rewritten atomically after every change."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        super().__init__(_load_records(self._path))

    @property
    def path(self) -> Path:
        return self._path

    def set(self, key: str, value: JSONValue) -> None:
        super().set(key, value)
        self._flush()

    def append(self, key: str, entry: JSONValue) -> None:
        super().append(key, entry)
        self._flush()

    def _flush(self) -> None:
        document = {_SCHEMA_KEY: STATE_SCHEMA_VERSION, _RECORDS_KEY: self.to_dict()}
        write_text_atomic(
            self._path,
            json.dumps(document, sort_keys=True, indent=2, ensure_ascii=False) + "\n",
        )


def _load_records(path: Path) -> dict[str, JSONValue]:
    try:
        text = read_text_if_exists(path)
        if text is None:
            return {}
        document = json.loads(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StateFileError(f"failed to read state file {path}: {exc}") from exc

    if not isinstance(document, dict):
        raise StateFileError(f"state file {path} must contain a JSON object")
    version = document.get(_SCHEMA_KEY)
    if version != STATE_SCHEMA_VERSION:
        raise StateFileError(
            f"state file {path} has unsupported schema_version {version!r}; "
            f"expected {STATE_SCHEMA_VERSION}"
        )
    records = document.get(_RECORDS_KEY, {})
    if not isinstance(records, dict):
        raise StateFileError(f"state file {path}: {_RECORDS_KEY!r} must be an object")
    return records


def _appended(current: JSONValue | None, entry: JSONValue, key: str) -> list[JSONValue]:
    if current is None:
        return [copy.deepcopy(entry)]
    if not isinstance(current, list):
        raise TypeError(f"cannot append to key {key!r}: stored value is not a list")
    return [*current, copy.deepcopy(entry)]


def _validate_key(key: str) -> str:
    if not isinstance(key, str) or not key:
        raise ValueError("store keys must be non-empty strings")
    return key


__all__ = [
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StateFileError",
]
