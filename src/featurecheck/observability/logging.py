"""Per-run JSON-lines logging.

Records are handed to a bounded queue on the calling thread and written by a
``QueueListener`` thread, so a slow disk never stalls a test body. Each line
is one JSON object with the correlation keys (run, context, test, feature) at
the top level and any other ``extra=`` values under ``"fields"``.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, cast

import structlog

from featurecheck.domain.models import JSONValue

DEFAULT_LOGGER_NAME: Final[str] = "featurecheck"
LOG_FILENAME: Final[str] = "featurecheck.jsonl"
REDACTED_VALUE: Final[str] = "***REDACTED***"

CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "run_id",
    "context_id",
    "parent_context_id",
    "test_id",
    "feature",
)

_SECRET_KEY_HINTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "session_id",
)
_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)(\s*[:=]\s*)[^\s,;]+"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_BUILTINS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "taskName", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "featurecheck_correlation", default=()
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one run writes its log."""

    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_to_stdout: bool = False
    redact_secrets: bool = True
    queue_size: int = 4096

    @classmethod
    def from_observability(cls, section: Mapping[str, object], *, run_id: str) -> LoggingConfig:
        """Build from the ``[observability]`` section of ``featurecheck.toml``."""
        log_dir = section.get("log_dir") or "logs"
        level = section.get("log_level") or "INFO"
        return cls(
            run_id=run_id,
            base_log_dir=log_dir if isinstance(log_dir, (str, Path)) else "logs",
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
            redact_secrets=bool(section.get("redact_secrets", True)),
        )


class _NonBlockingQueueHandler(logging.handlers.QueueHandler):
    """Binds correlation on the emitting thread; drops records when the queue is full."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._drop_lock = threading.Lock()
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see this task's contextvars.
        merged = current_correlation()
        explicit = getattr(record, "correlation", None)
        if isinstance(explicit, Mapping):
            merged.update(_string_pairs(explicit))
        record.correlation = merged
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._drop_lock:
                self.dropped += 1


class JsonLineFormatter(logging.Formatter):
    """Render a record as one compact JSON object with sorted keys."""

    def __init__(self, *, run_id: str, redact: bool = True) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _utc_stamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": self._scrub(record.getMessage()),
        }
        event.update(self._correlation_of(record))

        extras = {
            key: normalize_json_value(value)
            for key, value in vars(record).items()
            if key not in _RECORD_BUILTINS and key not in CORRELATION_KEYS and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._scrub(extras)
        if record.exc_info:
            event["exception"] = self._scrub(self.formatException(record.exc_info))
        if record.stack_info:
            event["stack"] = self._scrub(record.stack_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _correlation_of(self, record: logging.LogRecord) -> dict[str, str]:
        fields = {"run_id": self._run_id}
        bound = getattr(record, "correlation", None)
        if isinstance(bound, Mapping):
            fields.update(_string_pairs(bound))
        # structlog key/values arrive as plain record attributes.
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                fields[key] = value.strip()
        return fields

    def _scrub(self, value: JSONValue) -> JSONValue:
        return default_log_redactor(value) if self._redact else value


class StructuredLoggingHandle:
    """An installed run log; ``shutdown`` drains the queue and closes files."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: _NonBlockingQueueHandler,
        listener: logging.handlers.QueueListener,
        outputs: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._outputs = outputs
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.logger.removeHandler(self._queue_handler)
            # stop() enqueues a sentinel without blocking; wait for room first.
            while self._queue_handler.queue.full():
                time.sleep(0.005)
            self._listener.stop()
            for output in self._outputs:
                output.flush()
                output.close()


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Send ``config.logger_name`` records to ``<base_log_dir>/<run_id>/featurecheck.jsonl``.

    Replaces whatever handle was installed before in this process.
    """
    global _active, _atexit_hooked
    run_id = config.run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be a positive integer")
    level = parse_log_level(config.level)
    shutdown_logging()

    log_path = Path(config.base_log_dir) / run_id / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = JsonLineFormatter(run_id=run_id, redact=config.redact_secrets)
    outputs: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        outputs.append(logging.StreamHandler())
    for output in outputs:
        output.setLevel(level)
        output.setFormatter(formatter)

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _NonBlockingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *outputs, respect_handler_level=True)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(queue_handler)
    listener.start()

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        outputs=tuple(outputs),
    )
    with _active_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle``, or the most recently installed one."""
    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def current_correlation() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block.

    A ``None`` value unbinds that key for the duration of the block.
    """
    state = current_correlation()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        else:
            state[key] = value
    token = _correlation.set(tuple(state.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: JSONValue, key: str | None = None) -> JSONValue:
    """Mask values under secret-looking keys and inline credentials in strings."""
    if key is not None and any(hint in key.lower() for hint in _SECRET_KEY_HINTS):
        return REDACTED_VALUE
    if isinstance(value, str):
        masked = _INLINE_SECRET.sub(lambda match: f"{match[1]}{match[2]}{REDACTED_VALUE}", value)
        return _BEARER.sub(f"Bearer {REDACTED_VALUE}", masked)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {name: default_log_redactor(item, name) for name, item in value.items()}
    return value


def parse_log_level(value: int | str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"unsupported logging level {value!r}")
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return level


def normalize_json_value(value: object) -> JSONValue:
    """Coerce arbitrary values into JSON-compatible data deterministically."""
    match value:
        case None | bool() | int() | str():
            return value
        case float():
            return value if math.isfinite(value) else str(value)
        case datetime():
            stamp = value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
            return stamp.isoformat(timespec="microseconds").replace("+00:00", "Z")
        case Path():
            return value.as_posix()
        case bytes():
            return value.decode("utf-8", errors="replace")
        case Mapping():
            return {str(key): normalize_json_value(item) for key, item in value.items()}
        case list() | tuple():
            return [normalize_json_value(item) for item in value]
        case set() | frozenset():
            items = [normalize_json_value(item) for item in value]
            return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
    return repr(value)


def configure_structlog() -> None:
    """Route ``structlog`` component events into the stdlib ``logging`` pipeline.

    Event names become the record message and bound key/values become
    ``extra`` fields, so they land in the JSON-lines run log instead of stdout.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _utc_stamp(epoch_seconds: float) -> str:
    stamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _string_pairs(pairs: Mapping[object, object]) -> dict[str, str]:
    return {
        key.strip(): value.strip()
        for key, value in pairs.items()
        if isinstance(key, str) and isinstance(value, str) and key.strip() and value.strip()
    }


__all__ = [
    "CORRELATION_KEYS",
    "DEFAULT_LOGGER_NAME",
    "LOG_FILENAME",
    "REDACTED_VALUE",
    "JsonLineFormatter",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "default_log_redactor",
    "normalize_json_value",
    "parse_log_level",
    "setup_structured_logging",
    "shutdown_logging",
]
