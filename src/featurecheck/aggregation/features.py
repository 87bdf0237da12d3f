"""Feature catalog: declared implementation/test flags and free-form notes."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from featurecheck.constants import (
    FEATURE_FLAGS_KEY,
    FEATURE_IMPLEMENTED_PREFIX,
    FEATURE_NOTES_KEY_PREFIX,
    FEATURE_REGISTERED_PREFIX,
    TEST_REGISTERED_PREFIX,
)
from featurecheck.domain.models import (
    FeatureArea,
    FeatureMetadata,
    JSONValue,
    as_feature_area,
    parse_iso8601,
    to_iso8601,
    utc_now,
)
from featurecheck.persistence.kv_store import KeyValueStore, MemoryKeyValueStore, StateFileError


@dataclass(slots=True)
class _FeatureRecord:
    implemented: bool = False
    tested: bool = False
    area: FeatureArea | None = None
    last_verified: datetime | None = None
    notes: list[str] = field(default_factory=list)

    def freeze(self, name: str) -> FeatureMetadata:
        return FeatureMetadata(
            name=name,
            implemented=self.implemented,
            tested=self.tested,
            area=self.area,
            notes=tuple(self.notes),
            last_verified=self.last_verified,
        )

    def flags(self) -> dict[str, JSONValue]:
        return {
            "implemented": self.implemented,
            "tested": self.tested,
            "area": None if self.area is None else self.area.value,
            "last_verified": None if self.last_verified is None else to_iso8601(self.last_verified),
        }


class FeatureCatalog:
    """Records what is known about each feature independent of test outcomes.

    Flags only ever move from false to true through registration; notes are
    append-only and persisted under ``feature_notes:<feature>``.
    """

    def __init__(self, store: KeyValueStore | None = None, *, logger: Any | None = None) -> None:
        self._store: KeyValueStore = store if store is not None else MemoryKeyValueStore()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = threading.RLock()
        self._features: dict[str, _FeatureRecord] = self._load()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._features

    def names(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._features)

    def get(self, name: str) -> FeatureMetadata | None:
        with self._lock:
            record = self._features.get(name)
            return None if record is None else record.freeze(name)

    def register_feature(
        self,
        name: str,
        implemented: bool = False,
        area: FeatureArea | str | None = None,
        tested: bool = False,
        notes: Iterable[str] | str | None = None,
    ) -> FeatureMetadata:
        """Create or merge a feature; existing true flags are never cleared."""
        name = _feature_name(name)
        with self._lock:
            record = self._features.setdefault(name, _FeatureRecord())
            record.implemented = record.implemented or implemented
            record.tested = record.tested or tested
            if area is not None:
                record.area = as_feature_area(area)
            self._append_locked(name, record, f"{FEATURE_REGISTERED_PREFIX} {name}", once=True)
            for note in _note_list(notes):
                self._append_locked(name, record, note)
            self._save_flags_locked()
            self._logger.info(
                "feature_registered",
                feature=name,
                implemented=record.implemented,
                tested=record.tested,
            )
            return record.freeze(name)

    def mark_feature_implemented(
        self, name: str, notes: Iterable[str] | str | None = None
    ) -> FeatureMetadata:
        name = _feature_name(name)
        with self._lock:
            record = self._ensure_locked(name)
            record.implemented = True
            record.last_verified = utc_now()
            self._append_locked(name, record, f"{FEATURE_IMPLEMENTED_PREFIX} {name}", once=True)
            for note in _note_list(notes):
                self._append_locked(name, record, note)
            self._save_flags_locked()
            self._logger.info("feature_implemented", feature=name)
            return record.freeze(name)

    def mark_feature_tested(
        self,
        name: str,
        passed: bool = True,
        notes: Iterable[str] | str | None = None,
    ) -> FeatureMetadata:
        """Record a manual verification outcome; notes get a PASSED/FAILED prefix."""
        name = _feature_name(name)
        verdict = "PASSED" if passed else "FAILED"
        with self._lock:
            record = self._ensure_locked(name)
            record.tested = passed
            record.last_verified = utc_now()
            for note in _note_list(notes):
                self._append_locked(name, record, f"Test {verdict}: {note}")
            self._save_flags_locked()
            if passed:
                self._logger.info("feature_test_passed", feature=name)
            else:
                self._logger.warning("feature_test_failed", feature=name)
            return record.freeze(name)

    def add_note(self, name: str, note: str) -> FeatureMetadata:
        name = _feature_name(name)
        with self._lock:
            record = self._ensure_locked(name)
            record.last_verified = utc_now()
            self._append_locked(name, record, note)
            self._save_flags_locked()
            return record.freeze(name)

    def note_test_registered(self, name: str, test_name: str) -> None:
        """Add the ``Test registered:`` note used to list a feature's tests."""
        name = _feature_name(name)
        with self._lock:
            record = self._ensure_locked(name)
            self._append_locked(name, record, f"{TEST_REGISTERED_PREFIX} {test_name}", once=True)
            self._save_flags_locked()

    def _ensure_locked(self, name: str) -> _FeatureRecord:
        record = self._features.get(name)
        if record is None:
            record = _FeatureRecord()
            self._features[name] = record
            self._append_locked(name, record, f"{FEATURE_REGISTERED_PREFIX} {name}", once=True)
        return record

    def _append_locked(
        self, name: str, record: _FeatureRecord, note: str, *, once: bool = False
    ) -> None:
        # ``once`` notes are stored at most one time per feature.
        text = note.strip()
        if not text or (once and text in record.notes):
            return
        record.notes.append(text)
        self._store.append(f"{FEATURE_NOTES_KEY_PREFIX}{name}", text)

    def _save_flags_locked(self) -> None:
        self._store.set(
            FEATURE_FLAGS_KEY,
            {name: record.flags() for name, record in self._features.items()},
        )

    def _load(self) -> dict[str, _FeatureRecord]:
        raw_flags = self._store.get(FEATURE_FLAGS_KEY)
        if raw_flags is None:
            return {}
        if not isinstance(raw_flags, dict):
            raise StateFileError(f"{FEATURE_FLAGS_KEY!r} must be an object")

        features: dict[str, _FeatureRecord] = {}
        for name, flags in raw_flags.items():
            if not isinstance(flags, dict):
                raise StateFileError(f"{FEATURE_FLAGS_KEY}[{name!r}] must be an object")
            raw_area = flags.get("area")
            raw_verified = flags.get("last_verified")
            raw_notes = self._store.get(f"{FEATURE_NOTES_KEY_PREFIX}{name}")
            try:
                features[name] = _FeatureRecord(
                    implemented=bool(flags.get("implemented", False)),
                    tested=bool(flags.get("tested", False)),
                    area=None if raw_area is None else as_feature_area(str(raw_area)),
                    last_verified=(
                        None if raw_verified is None else parse_iso8601(str(raw_verified))
                    ),
                    notes=[str(note) for note in raw_notes] if isinstance(raw_notes, list) else [],
                )
            except ValueError as exc:
                raise StateFileError(f"feature {name!r}: {exc}") from exc
        return features


def _feature_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("feature name must be a non-empty string")
    return name.strip()


def _note_list(notes: Iterable[str] | str | None) -> list[str]:
    if notes is None:
        return []
    if isinstance(notes, str):
        return [notes]
    return [str(note) for note in notes]


__all__ = ["FeatureCatalog"]
