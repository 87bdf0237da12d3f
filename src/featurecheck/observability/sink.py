"""Structured log entries and the sinks that receive them."""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Final, Protocol, runtime_checkable

from featurecheck.constants import DEFAULT_LOG_BUFFER_SIZE
from featurecheck.domain.models import (
    FeatureArea,
    JSONValue,
    as_feature_area,
    ensure_utc,
    parse_iso8601,
    to_iso8601,
    utc_now,
)
from featurecheck.observability.logging import DEFAULT_LOGGER_NAME, normalize_json_value


TRACE_LOGGER_NAME: Final[str] = f"{DEFAULT_LOGGER_NAME}.trace"


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]

    @property
    def stdlib_level(self) -> int:
        return _STDLIB_LEVELS[self]

    @classmethod
    def parse(cls, value: LogLevel | str) -> LogLevel:
        if isinstance(value, LogLevel):
            return value
        normalized = value.strip().lower()
        if normalized == "warn":
            return cls.WARNING
        return cls(normalized)


_LEVEL_RANKS: Final[dict[LogLevel, int]] = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3,
}
_STDLIB_LEVELS: Final[dict[LogLevel, int]] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True, slots=True)
class StructuredPayload:
    """Ordered key/value payload."""

    fields: Mapping[str, JSONValue]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def to_json(self) -> JSONValue:
        return dict(self.fields)


@dataclass(frozen=True, slots=True)
class TextPayload:
    text: str

    def to_json(self) -> JSONValue:
        return self.text


LogPayload = StructuredPayload | TextPayload


def make_payload(data: object) -> LogPayload | None:
    """Wrap arbitrary caller data in the matching ``LogPayload`` variant."""
    if data is None or isinstance(data, (StructuredPayload, TextPayload)):
        return data
    if isinstance(data, str):
        return TextPayload(data)
    normalized = normalize_json_value(data)
    if isinstance(normalized, dict):
        return StructuredPayload(normalized)
    return StructuredPayload({"value": normalized})


@dataclass(frozen=True, slots=True)
class LogEntry:
    level: LogLevel
    area: FeatureArea
    message: str
    data: LogPayload | None = None
    context_id: str | None = None
    parent_context_id: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "level", LogLevel.parse(self.level))
        object.__setattr__(self, "area", as_feature_area(self.area))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "level": self.level.value,
            "area": self.area.value,
            "message": self.message,
            "data": None if self.data is None else self.data.to_json(),
            "context_id": self.context_id,
            "parent_context_id": self.parent_context_id,
            "timestamp": to_iso8601(self.timestamp),
        }


@runtime_checkable
class LogSink(Protocol):
    def emit(self, entry: LogEntry) -> None: ...


class LogBuffer:
    """Bounded in-memory ring of recent entries, newest first."""

    def __init__(self, max_entries: int = DEFAULT_LOG_BUFFER_SIZE) -> None:
        if isinstance(max_entries, bool) or not isinstance(max_entries, int) or max_entries <= 0:
            raise ValueError("max_entries must be a positive integer")
        self._entries: deque[LogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def emit(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.appendleft(entry)

    def entries(
        self,
        *,
        level: LogLevel | str | None = None,
        area: FeatureArea | str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        context_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[LogEntry, ...]:
        """Return entries newest first.

        ``level`` is a minimum severity; ``since``/``until`` bound the timestamp
        inclusively.
        """
        min_rank = None if level is None else LogLevel.parse(level).rank
        wanted_area = None if area is None else as_feature_area(area)
        lower = None if since is None else ensure_utc(since)
        upper = None if until is None else ensure_utc(until)

        with self._lock:
            snapshot = tuple(self._entries)

        selected: list[LogEntry] = []
        for entry in snapshot:
            if min_rank is not None and entry.level.rank < min_rank:
                continue
            if wanted_area is not None and entry.area is not wanted_area:
                continue
            if lower is not None and entry.timestamp < lower:
                continue
            if upper is not None and entry.timestamp > upper:
                continue
            if context_id is not None and entry.context_id != context_id:
                continue
            selected.append(entry)
            if limit is not None and len(selected) >= limit:
                break
        return tuple(selected)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def export(self) -> list[JSONValue]:
        return [entry.to_dict() for entry in self.entries()]


class StdlibLogSink:
    """Forwards entries into the ``logging`` pipeline with correlation fields."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger if logger is not None else logging.getLogger(TRACE_LOGGER_NAME)

    def emit(self, entry: LogEntry) -> None:
        correlation: dict[str, str] = {}
        if entry.context_id is not None:
            correlation["context_id"] = entry.context_id
        if entry.parent_context_id is not None:
            correlation["parent_context_id"] = entry.parent_context_id
        extra: dict[str, object] = {"area": entry.area.value, "correlation": correlation}
        if entry.data is not None:
            extra["data"] = entry.data.to_json()
        self._logger.log(entry.level.stdlib_level, entry.message, extra=extra)


class FanOutSink:
    """Delivers each entry to every wrapped sink, in order."""

    def __init__(self, sinks: Iterable[LogSink]) -> None:
        self._sinks: tuple[LogSink, ...] = tuple(sinks)

    @property
    def sinks(self) -> tuple[LogSink, ...]:
        return self._sinks

    def emit(self, entry: LogEntry) -> None:
        for sink in self._sinks:
            sink.emit(entry)


def read_trace_log(path: str | Path) -> tuple[LogEntry, ...]:
    """Decode the entries ``StdlibLogSink`` wrote to a JSON-lines run log, oldest first.

    Records from other loggers and lines that do not decode (for example a
    line truncated by a crash) are skipped.
    """
    entries: list[LogEntry] = []
    with Path(path).open(encoding="utf-8") as handle:
        for line in handle:
            entry = _decode_trace_line(line)
            if entry is not None:
                entries.append(entry)
    return tuple(entries)


def _decode_trace_line(line: str) -> LogEntry | None:
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(event, dict) or event.get("logger") != TRACE_LOGGER_NAME:
        return None
    fields = event.get("fields")
    if not isinstance(fields, dict):
        fields = {}
    try:
        return LogEntry(
            level=str(event.get("level", LogLevel.INFO.value)),
            area=str(fields.get("area", FeatureArea.PERFORMANCE.value)),
            message=str(event.get("message", "")),
            data=make_payload(fields.get("data")),
            context_id=_optional_text(event.get("context_id")),
            parent_context_id=_optional_text(event.get("parent_context_id")),
            timestamp=parse_iso8601(str(event.get("timestamp", ""))),
        )
    except ValueError:
        return None


def _optional_text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


__all__ = [
    "TRACE_LOGGER_NAME",
    "FanOutSink",
    "LogBuffer",
    "LogEntry",
    "LogLevel",
    "LogPayload",
    "LogSink",
    "StdlibLogSink",
    "StructuredPayload",
    "TextPayload",
    "make_payload",
    "read_trace_log",
]
