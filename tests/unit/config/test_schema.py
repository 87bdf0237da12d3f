"""
featurecheck: unit tests for config schema validation

Purpose
- Validate strict config schema behavior, structured errors, merging, and redaction.

What this test file should cover
- Defaults validate successfully.
- Unknown keys and invalid types are rejected with dotted paths.
- Merging replaces lists and never mutates its inputs.
- Redaction is recursive and non-destructive.
"""

from __future__ import annotations

import pytest

from featurecheck.config.schema import (
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)


def _issue_paths(config: object) -> set[str]:
    return {issue.path for issue in validate_config(config).issues}


def test_defaults_validate_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["execution"]["include_builtin_checks"] is True
    assert result.config["observability"]["log_buffer_size"] == 1000


def test_unknown_keys_and_bad_types_report_dotted_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "extra": {},
            "execution": {"default_timeout_seconds": -1, "turbo": True},
            "observability": {"log_level": "LOUD", "log_buffer_size": 0},
            "paths": {"state_file": "  "},
        },
    )

    assert _issue_paths(config) == {
        "extra",
        "execution.turbo",
        "execution.default_timeout_seconds",
        "observability.log_level",
        "observability.log_buffer_size",
        "paths.state_file",
    }


def test_missing_sections_and_fields_are_reported() -> None:
    config = default_config()
    del config["paths"]  # type: ignore[misc]
    del config["execution"]["test_modules"]  # type: ignore[misc]

    assert _issue_paths(config) == {"paths", "execution.test_modules"}
    assert _issue_paths(["not", "a", "mapping"]) == {"<root>"}


def test_module_names_are_validated_and_deduplicated() -> None:
    config = merge_config(
        default_config(),
        {"execution": {"test_modules": ["app.checks", " app.checks ", "not a module"]}},
    )

    result = validate_config(config)
    assert [issue.path for issue in result.issues] == ["execution.test_modules[2]"]

    config["execution"]["test_modules"] = ["app.checks", " app.checks "]
    assert assert_valid_config(config)["execution"]["test_modules"] == ["app.checks"]


def test_log_level_is_normalized_and_schema_version_checked() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": "debug"}})
    assert assert_valid_config(config)["observability"]["log_level"] == "DEBUG"

    future = merge_config(default_config(), {"meta": {"schema_version": 2}})
    with pytest.raises(ConfigValidationError, match="meta.schema_version"):
        assert_valid_config(future)


def test_merge_replaces_lists_and_leaves_inputs_untouched() -> None:
    base = {"execution": {"test_modules": ["a"], "include_builtin_checks": True}}
    overlay = {"execution": {"test_modules": ["b"]}}

    merged = merge_config(base, overlay)

    assert merged == {"execution": {"test_modules": ["b"], "include_builtin_checks": True}}
    assert base["execution"]["test_modules"] == ["a"]


def test_redaction_is_recursive_and_non_destructive() -> None:
    config = {"providers": {"api_key": "sk-FAKE", "nested": [{"token": "t"}]}, "name": "x"}

    redacted = redact_config(config)

    assert redacted == {
        "name": "x",
        "providers": {"api_key": "<redacted>", "nested": [{"token": "<redacted>"}]},
    }
    assert config["providers"]["api_key"] == "sk-FAKE"
