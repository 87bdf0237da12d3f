"""Command-line interface router for featurecheck."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from featurecheck.aggregation.manifest import ManifestError
from featurecheck.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from featurecheck.domain.ids import generate_run_id, is_run_id
from featurecheck.domain.models import FeatureStatus, TestResult, TestStatus, to_iso8601
from featurecheck.errors import FeatureCheckError
from featurecheck.observability.logging import (
    LOG_FILENAME,
    LoggingConfig,
    configure_structlog,
    setup_structured_logging,
    shutdown_logging,
)
from featurecheck.observability.sink import LogBuffer, LogLevel, read_trace_log
from featurecheck.orchestrator import Orchestrator
from featurecheck.persistence.kv_store import StateFileError
from featurecheck.ui.render import CLIRenderer, create_renderer

_INTERRUPTED_EXIT_CODE: Final[int] = 130


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="featurecheck",
        description=(
            "featurecheck: feature verification and test orchestration.\n\n"
            "Common workflows:\n"
            "  featurecheck tests              List registered tests\n"
            "  featurecheck run-all            Run every test in dependency order\n"
            "  featurecheck features           Show the feature status board\n"
            "  featurecheck logs --level warn  Show trace logs of the latest run\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to featurecheck TOML config (default: ./featurecheck.toml if present).",
    )
    common.add_argument(
        "--state-file",
        default=None,
        help="Override paths.state_file.",
    )
    common.add_argument(
        "--module",
        dest="modules",
        action="append",
        default=None,
        help="Test module exposing register_tests(orchestrator); repeatable.",
    )
    common.add_argument(
        "--no-builtin-checks",
        action="store_true",
        default=False,
        help="Do not register the built-in self checks.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    tests_parser = subparsers.add_parser(
        "tests",
        parents=[common],
        help="List registered tests with their latest status",
    )
    tests_parser.add_argument("--area", default=None, help="Only tests of this feature area.")
    tests_parser.set_defaults(handler=_cmd_tests)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run one test",
        description=(
            "Run a single registered test. Dependencies are not run unless\n"
            "--with-dependencies is given; unmet dependencies skip the test.\n\n"
            "Examples:\n"
            "  featurecheck run goal-create\n"
            "  featurecheck run goal-create --with-dependencies\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("test_id", help="Registered test id.")
    run_parser.add_argument(
        "--with-dependencies",
        action="store_true",
        default=False,
        help="Run the test's transitive dependencies first.",
    )
    run_parser.add_argument("--timeout", type=float, default=None, help="Default timeout (s).")
    run_parser.set_defaults(handler=_cmd_run)

    run_all_parser = subparsers.add_parser(
        "run-all",
        parents=[common],
        help="Run tests in dependency order",
        description=(
            "Run every registered test (or the given ids) in dependency order.\n"
            "Exits with status 1 when any test failed.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_all_parser.add_argument("test_ids", nargs="*", help="Optional subset of test ids.")
    run_all_parser.add_argument(
        "--timeout", type=float, default=None, help="Default timeout (s)."
    )
    run_all_parser.set_defaults(handler=_cmd_run_all)

    features_parser = subparsers.add_parser(
        "features",
        parents=[common],
        help="Show the feature verification status board",
    )
    features_parser.set_defaults(handler=_cmd_features)

    feature_parser = subparsers.add_parser(
        "feature",
        parents=[common],
        help="Show one feature with its tests and categorized notes",
    )
    feature_parser.add_argument("name", help="Feature name.")
    feature_parser.set_defaults(handler=_cmd_feature)

    logs_parser = subparsers.add_parser(
        "logs",
        parents=[common],
        help="Show execution-context logs of a recorded run",
        description=(
            "Read the trace entries of a run log, newest first.\n\n"
            "Examples:\n"
            "  featurecheck logs --level warning --limit 20\n"
            "  featurecheck logs --area goal --run run-01J...\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    logs_parser.add_argument("--run", dest="run_id", default=None, help="Run id (default: latest).")
    logs_parser.add_argument("--level", default=None, help="Minimum level.")
    logs_parser.add_argument("--area", default=None, help="Only entries of this feature area.")
    logs_parser.add_argument("--limit", type=int, default=50, help="Maximum entries (default 50).")
    logs_parser.set_defaults(handler=_cmd_logs)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the redacted effective config",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    configure_structlog()
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


def cli_entrypoint() -> None:
    """Console-script entrypoint."""

    raise SystemExit(run_cli())


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_tests(args: argparse.Namespace) -> int:
    orchestrator, _ = _open_session(args)
    results = orchestrator.get_test_results()
    definitions = orchestrator.get_registered_tests()
    area = _optional_str(getattr(args, "area", None))
    if area is not None:
        try:
            definitions = orchestrator.get_tests_by_area(area)
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=2) from exc

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "tests",
                "tests": [
                    {**definition.to_dict(), "status": _status_text(results.get(definition.id))}
                    for definition in definitions
                ],
            }
        )
        return 0

    renderer = _get_renderer(args)
    if not definitions:
        renderer.text("No tests registered.")
        return 0
    renderer.table(
        ["ID", "Name", "Feature", "Area", "Depends on", "Status"],
        [
            [
                definition.id,
                definition.name,
                definition.feature_name or "-",
                definition.area.value,
                ", ".join(definition.dependencies) or "-",
                _status_text(results.get(definition.id)),
            ]
            for definition in definitions
        ],
        status_column=5,
    )
    unresolved = orchestrator.get_unresolved_dependencies()
    if unresolved:
        renderer.section("Unresolved dependencies:")
        renderer.items(
            [f"{test_id}: {', '.join(missing)}" for test_id, missing in unresolved.items()]
        )
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    orchestrator, config = _open_session(args)
    test_id = _require_str(getattr(args, "test_id", None), "test_id")

    with _run_logging(config) as run_id:
        if _flag(args, "with_dependencies") and orchestrator.has_test(test_id):
            ids = (*orchestrator.get_dependencies(test_id), test_id)
            summary = _run_async(orchestrator.run_all_feature_tests(ids))
            results: tuple[TestResult, ...] = summary.results
        else:
            results = (_run_async(orchestrator.run_feature_test(test_id)),)
    target = results[-1] if results else None

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "run",
                "run_id": run_id,
                "result": None if target is None else target.to_dict(),
                "results": [result.to_dict() for result in results],
            }
        )
    else:
        renderer = _get_renderer(args)
        for result in results:
            _render_result(renderer, result)
    return 1 if any(result.status is TestStatus.FAILED for result in results) else 0


def _cmd_run_all(args: argparse.Namespace) -> int:
    orchestrator, config = _open_session(args)
    test_ids = _string_sequence(getattr(args, "test_ids", None))

    with _run_logging(config) as run_id:
        summary = _run_async(orchestrator.run_all_feature_tests(test_ids or None))

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "run-all",
                "run_id": run_id,
                "summary": summary.to_dict(),
                "state": orchestrator.export_state(),
            }
        )
        return 0 if summary.success else 1

    renderer = _get_renderer(args)
    for result in summary.results:
        _render_result(renderer, result)
    renderer.section("Summary:")
    renderer.kv("Passed", summary.passed)
    renderer.kv("Failed", summary.failed)
    renderer.kv("Skipped", summary.skipped)
    renderer.kv("Duration", f"{summary.duration_ms:.1f} ms")
    renderer.kv("Run id", run_id)
    if summary.not_started:
        renderer.warning(f"not started: {', '.join(summary.not_started)}")
    return 0 if summary.success else 1


def _cmd_features(args: argparse.Namespace) -> int:
    orchestrator, _ = _open_session(args)
    statuses = orchestrator.get_feature_verification_status()

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "features",
                "features": {name: status.to_dict() for name, status in statuses.items()},
            }
        )
        return 0

    renderer = _get_renderer(args)
    if not statuses:
        renderer.text("No features known.")
        return 0
    renderer.table(
        ["Feature", "Area", "Implemented", "Tests", "Passed", "Last verified"],
        [
            [
                name,
                status.area.value,
                "yes" if status.implemented else "no",
                status.test_status.value,
                f"{status.summary.passed}/{status.summary.total}",
                _timestamp_text(status),
            ]
            for name, status in statuses.items()
        ],
        status_column=3,
    )
    return 0


def _cmd_feature(args: argparse.Namespace) -> int:
    orchestrator, _ = _open_session(args)
    name = _require_str(getattr(args, "name", None), "name")
    status = orchestrator.get_feature_status(name)

    if _flag(args, "json"):
        _emit_json({"command": "feature", "feature": status.to_dict()})
        return 0

    renderer = _get_renderer(args)
    renderer.heading(status.name)
    renderer.kv("Area", status.area.value)
    renderer.kv("Implemented", "yes" if status.implemented else "no")
    renderer.kv("Test status", status.test_status.value)
    renderer.kv("Last verified", _timestamp_text(status))
    if status.fuzzy_match:
        renderer.warning("tests matched by name similarity, not by explicit association")

    results = orchestrator.get_test_results()
    renderer.table(
        ["Test", "Status", "Error"],
        [
            [test_id, _status_text(results.get(test_id)), _error_text(results.get(test_id))]
            for test_id in status.test_ids
        ],
        title="Tests:",
        status_column=1,
    )
    categories = status.notes_by_category
    for title, notes in (
        ("Implementation notes:", categories.implementation),
        ("Test notes:", categories.test),
        ("Manual tests:", categories.manual),
        ("Other notes:", categories.other),
    ):
        if notes:
            renderer.section(title)
            renderer.items(list(notes))
    if status.diagnostics is not None:
        renderer.section("Diagnostics:")
        renderer.text(f"  {status.diagnostics.summary}")
        if renderer.verbose:
            renderer.text(json.dumps(status.diagnostics.to_dict(), indent=2, sort_keys=True))
    return 0


def _cmd_logs(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    log_dir = Path(config["observability"]["log_dir"])
    run_id = _optional_str(getattr(args, "run_id", None))
    log_path = _resolve_run_log(log_dir, run_id)

    limit = getattr(args, "limit", None)
    if not isinstance(limit, int) or limit <= 0:
        raise CLIError("--limit must be a positive integer", exit_code=2)

    entries = read_trace_log(log_path)
    buffer = LogBuffer(max(len(entries), 1))
    for entry in entries:
        buffer.emit(entry)
    try:
        selected = buffer.entries(
            level=_optional_str(getattr(args, "level", None)),
            area=_optional_str(getattr(args, "area", None)),
            limit=limit,
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "logs",
                "run_id": log_path.parent.name,
                "entries": [entry.to_dict() for entry in selected],
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Run", log_path.parent.name)
    if not selected:
        renderer.text("No matching log entries.")
        return 0
    renderer.table(
        ["Time", "Level", "Area", "Context", "Message"],
        [
            [
                to_iso8601(entry.timestamp),
                entry.level.value,
                entry.area.value,
                entry.context_id or "-",
                entry.message,
            ]
            for entry in selected
        ],
    )
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = redact_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _render_result(renderer: CLIRenderer, result: TestResult) -> None:
    label = f"{result.test_id} ({result.duration_ms:.1f} ms)"
    if result.status is TestStatus.PASSED:
        renderer.ok(label)
    elif result.status is TestStatus.SKIPPED:
        renderer.text(f"  SKIP  {label}: {result.error}", style="yellow")
    else:
        renderer.fail(f"{label}: {result.error}")


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {
        "paths.state_file": _optional_str(getattr(args, "state_file", None)),
        "execution.default_timeout_seconds": getattr(args, "timeout", None),
    }
    modules = getattr(args, "modules", None)
    if modules:
        overrides["execution.test_modules"] = list(_string_sequence(modules))
    if _flag(args, "no_builtin_checks"):
        overrides["execution.include_builtin_checks"] = False

    try:
        return load_config(
            _optional_str(getattr(args, "config_path", None)),
            cli_overrides=overrides,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _open_session(args: argparse.Namespace) -> tuple[Orchestrator, dict[str, Any]]:
    config = _load_effective_config(args)
    try:
        orchestrator = Orchestrator.from_config(config)
    except (ManifestError, StateFileError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    except FeatureCheckError as exc:
        raise CLIError(f"failed to register tests: {exc}", exit_code=2) from exc
    return orchestrator, config


@contextmanager
def _run_logging(config: Mapping[str, Any]) -> Iterator[str]:
    """Structured JSON-lines logging for the duration of one run command."""

    run_id = generate_run_id()
    handle = setup_structured_logging(
        LoggingConfig.from_observability(config["observability"], run_id=run_id)
    )
    try:
        yield run_id
    finally:
        shutdown_logging(handle)


def _run_async(awaitable: Any) -> Any:
    try:
        return asyncio.run(awaitable)
    except KeyboardInterrupt as exc:
        raise CLIError("interrupted", exit_code=_INTERRUPTED_EXIT_CODE) from exc


def _resolve_run_log(log_dir: Path, run_id: str | None) -> Path:
    if run_id is not None:
        if not is_run_id(run_id):
            raise CLIError(f"not a run id: {run_id!r}", exit_code=2)
        candidate = log_dir / run_id / LOG_FILENAME
        if not candidate.is_file():
            raise CLIError(f"no log found for run {run_id!r} under {log_dir}", exit_code=2)
        return candidate
    candidates = (
        sorted(path for path in log_dir.glob(f"*/{LOG_FILENAME}") if is_run_id(path.parent.name))
        if log_dir.is_dir()
        else []
    )
    if not candidates:
        raise CLIError(f"no run logs found under {log_dir}", exit_code=2)
    # Run ids are ULID based, so lexical order is creation order.
    return candidates[-1]


def _status_text(result: TestResult | None) -> str:
    return TestStatus.NOT_STARTED.value if result is None else result.status.value


def _error_text(result: TestResult | None) -> str:
    return "" if result is None or result.error is None else result.error


def _timestamp_text(status: FeatureStatus) -> str:
    return "-" if status.last_verified is None else to_iso8601(status.last_verified)


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _string_sequence(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        cleaned = value.strip()
        return () if not cleaned else (cleaned,)
    if not isinstance(value, Sequence):
        raise CLIError("invalid sequence argument", exit_code=2)

    parsed: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise CLIError("invalid sequence argument", exit_code=2)
        cleaned = item.strip()
        if cleaned:
            parsed.append(cleaned)
    return tuple(parsed)


__all__ = [
    "CLIError",
    "build_parser",
    "cli_entrypoint",
    "main",
    "run_cli",
]


if __name__ == "__main__":
    raise SystemExit(run_cli())
