"""Typed schema, defaults, and strict validation for ``featurecheck.toml``."""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from featurecheck.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_LOG_BUFFER_SIZE,
    DEFAULT_LOG_DIR,
    DEFAULT_STATE_FILE,
)
from featurecheck.errors import FeatureCheckError

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_MODULE_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$"
)
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = ("secret", "token", "password", "api_key", "credential")
_REDACTED: Final[str] = "<redacted>"

# Path fields resolved relative to the config file's directory; empty means unset.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "state_file"),
    ("paths", "feature_manifest"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ExecutionConfig(TypedDict):
    default_timeout_seconds: float
    include_builtin_checks: bool
    test_modules: list[str]


class PathsConfig(TypedDict):
    state_file: str
    feature_manifest: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool
    log_buffer_size: int


class FeatureCheckConfig(TypedDict):
    meta: MetaConfig
    execution: ExecutionConfig
    paths: PathsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[FeatureCheckConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "execution": {
        "default_timeout_seconds": 0.0,
        "include_builtin_checks": True,
        "test_modules": [],
    },
    "paths": {
        "state_file": DEFAULT_STATE_FILE,
        "feature_manifest": "",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": DEFAULT_LOG_DIR,
        "log_to_stdout": False,
        "redact_secrets": True,
        "log_buffer_size": DEFAULT_LOG_BUFFER_SIZE,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(FeatureCheckError, ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = (
            "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
            or "unknown validation failure"
        )
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


_FieldParser = Callable[[object, str, _IssueCollector], object | None]


def default_config() -> FeatureCheckConfig:
    """Return a deep copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; lists are replaced, not merged."""
    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key in sorted(overlay):
        value = overlay[key]
        existing = merged.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            merged[key] = merge_config(existing, value)
        elif isinstance(value, Mapping):
            merged[key] = merge_config({}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete config and return issues with dotted paths."""
    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown(config, _SECTIONS.keys(), "", issues)
    normalized: dict[str, Any] = {}
    for section, fields in _SECTIONS.items():
        raw_section = config.get(section)
        if raw_section is None:
            issues.add(section, "missing required section")
            continue
        if not isinstance(raw_section, Mapping):
            issues.add(section, f"expected object, got {type(raw_section).__name__}")
            continue
        _reject_unknown(raw_section, fields.keys(), section, issues)
        out: dict[str, Any] = {}
        for key, parser in fields.items():
            field_path = f"{section}.{key}"
            if key not in raw_section:
                issues.add(field_path, "missing required field")
                continue
            parsed = parser(raw_section[key], field_path, issues)
            if parsed is not None:
                out[key] = parsed
        normalized[section] = out

    version = normalized.get("meta", {}).get("schema_version")
    if version is not None and version != CONFIG_SCHEMA_VERSION:
        issues.add(
            "meta.schema_version",
            f"schema version {version} is not supported; expected {CONFIG_SCHEMA_VERSION}",
        )

    found = issues.items()
    return ConfigValidationResult(config=None if found else normalized, issues=found)


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Deterministic copy with sensitive-looking keys masked."""
    redacted = _redact(config)
    return redacted if isinstance(redacted, dict) else {}


def _redact(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            key: _REDACTED
            if isinstance(value[key], str) and _is_sensitive(key)
            else _redact(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def _is_sensitive(key: object) -> bool:
    return any(term in str(key).lower() for term in _SENSITIVE_KEY_TERMS)


def _reject_unknown(
    payload: Mapping[str, object], allowed: Iterable[str], path: str, issues: _IssueCollector
) -> None:
    allowed_keys = set(allowed)
    for key in sorted(str(key) for key in payload):
        if key not in allowed_keys:
            issues.add(f"{path}.{key}" if path else key, "unknown field")


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _int_at_least(minimum: int) -> _FieldParser:
    def parse(value: object, path: str, issues: _IssueCollector) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {type(value).__name__}")
            return None
        if value < minimum:
            issues.add(path, f"must be >= {minimum}")
            return None
        return value

    return parse


def _as_timeout(value: object, path: str, issues: _IssueCollector) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed) or parsed < 0:
        issues.add(path, "must be a finite number >= 0 (0 disables timeouts)")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    if "\x00" in value:
        issues.add(path, "must not contain NUL bytes")
        return None
    return value.strip()


def _as_required_path(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_path_text(value, path, issues)
    if parsed is not None and not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_log_level(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str) or value.strip().upper() not in LOG_LEVELS:
        issues.add(path, f"invalid value {value!r}; expected one of: {', '.join(LOG_LEVELS)}")
        return None
    return value.strip().upper()


def _as_module_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected list of module names, got {type(value).__name__}")
        return None
    modules: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not _MODULE_NAME_PATTERN.fullmatch(item.strip()):
            issues.add(f"{path}[{index}]", f"invalid module name {item!r}")
            continue
        if item.strip() not in modules:
            modules.append(item.strip())
    return modules


_SECTIONS: Final[dict[str, dict[str, _FieldParser]]] = {
    "meta": {"schema_version": _int_at_least(1)},
    "execution": {
        "default_timeout_seconds": _as_timeout,
        "include_builtin_checks": _as_bool,
        "test_modules": _as_module_list,
    },
    "paths": {
        "state_file": _as_required_path,
        "feature_manifest": _as_path_text,
    },
    "observability": {
        "log_level": _as_log_level,
        "log_dir": _as_required_path,
        "log_to_stdout": _as_bool,
        "redact_secrets": _as_bool,
        "log_buffer_size": _int_at_least(1),
    },
}


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ExecutionConfig",
    "FeatureCheckConfig",
    "MetaConfig",
    "ObservabilityConfig",
    "PathsConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
