"""
featurecheck: unit tests for observability logging

Purpose
- Validate JSON-lines run logs with redaction, correlation fields, and queue-backed delivery.

What this test file should cover
- Redaction of secret-looking keys and inline credentials.
- Correlation fields from scopes and from trace entries.
- Queue drain on shutdown.
- structlog events routed into the run log.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from featurecheck.domain.models import FeatureArea
from featurecheck.observability.logging import (
    REDACTED_VALUE,
    LoggingConfig,
    configure_structlog,
    correlation_scope,
    current_correlation,
    default_log_redactor,
    normalize_json_value,
    parse_log_level,
    setup_structured_logging,
    shutdown_logging,
)
from featurecheck.observability.sink import (
    TRACE_LOGGER_NAME,
    LogEntry,
    LogLevel,
    StdlibLogSink,
    make_payload,
    read_trace_log,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"featurecheck.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_json_lines_redact_secrets_and_keep_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-redaction", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(test_id="goal-create", feature="Goal Creation"):
        logger.info(
            "payload token=tok-FAKE and Bearer abc.def",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["run_id"] == "run-redaction"
    assert event["test_id"] == "goal-create"
    assert event["feature"] == "Goal Creation"
    assert event["fields"] == {"nested": {"password": REDACTED_VALUE, "safe": "ok"}}

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "abc.def" not in line
    assert "hunter2" not in line


def test_shutdown_drains_queue(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-flush", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)
    for index in range(200):
        logger.info("message %s", index)

    shutdown_logging(handle)

    assert handle.is_shutdown
    assert handle.dropped_records == 0
    assert len(handle.log_path.read_text(encoding="utf-8").splitlines()) == 200


def test_trace_entries_round_trip_through_run_log(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-trace", base_log_dir=tmp_path, level="DEBUG")
    )
    StdlibLogSink().emit(
        LogEntry(
            level=LogLevel.WARNING,
            area=FeatureArea.GOAL,
            message="Test output does not match expected result",
            data=make_payload({"expected": 1, "actual": 2}),
            context_id="ctx-child",
            parent_context_id="ctx-parent",
        )
    )
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["logger"] == TRACE_LOGGER_NAME
    assert event["context_id"] == "ctx-child"
    assert event["parent_context_id"] == "ctx-parent"
    assert event["fields"] == {"area": "goal", "data": {"expected": 1, "actual": 2}}

    (entry,) = read_trace_log(handle.log_path)
    assert entry.level is LogLevel.WARNING
    assert entry.area is FeatureArea.GOAL
    assert entry.context_id == "ctx-child"


def test_structlog_events_land_in_run_log(tmp_path: Path) -> None:
    configure_structlog()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-structlog", base_log_dir=tmp_path)
    )

    structlog.get_logger("featurecheck.tests.structlog").info(
        "test_registered", test_id="goal-create", api_key="sk-FAKE"
    )
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "test_registered"
    assert event["test_id"] == "goal-create"
    assert event["fields"] == {"api_key": REDACTED_VALUE}


def test_correlation_scope_resets_on_exit() -> None:
    with correlation_scope(run_id="run-1"):
        with correlation_scope(test_id="a", run_id=None):
            assert current_correlation() == {"test_id": "a"}
        assert current_correlation() == {"run_id": "run-1"}
    assert current_correlation() == {}


def test_helpers() -> None:
    assert parse_log_level("warning") == logging.WARNING
    with pytest.raises(ValueError, match="unsupported logging level"):
        parse_log_level("loud")

    assert normalize_json_value({"items": {3, 1}, "ratio": float("nan")}) == {
        "items": [1, 3],
        "ratio": "nan",
    }
    assert default_log_redactor(["password=hunter2"]) == [f"password={REDACTED_VALUE}"]
