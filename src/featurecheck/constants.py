"""Stable constants shared across featurecheck components."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_SCHEMA_VERSION: Final[int] = 1

# Key/value namespaces for persisted state.
TEST_RESULTS_KEY: Final[str] = "featurecheck.test_results"
FEATURE_NOTES_KEY_PREFIX: Final[str] = "featurecheck.feature_notes:"
FEATURE_FLAGS_KEY: Final[str] = "featurecheck.feature_flags"

# Defaults.
DEFAULT_CONFIG_FILE: Final[str] = "featurecheck.toml"
DEFAULT_STATE_FILE: Final[str] = "state/featurecheck.json"
DEFAULT_LOG_DIR: Final[str] = "logs/"
DEFAULT_LOG_BUFFER_SIZE: Final[int] = 1000

# Feature that the built-in self checks are associated with.
DEBUG_INFRASTRUCTURE_FEATURE: Final[str] = "Debug Infrastructure"

# Note prefixes used when partitioning feature notes for display.
FEATURE_REGISTERED_PREFIX: Final[str] = "Feature registered:"
FEATURE_IMPLEMENTED_PREFIX: Final[str] = "Feature implemented:"
TEST_REGISTERED_PREFIX: Final[str] = "Test registered:"
MANUAL_TEST_PREFIX: Final[str] = "Manual test:"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEBUG_INFRASTRUCTURE_FEATURE",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_LOG_BUFFER_SIZE",
    "DEFAULT_LOG_DIR",
    "DEFAULT_STATE_FILE",
    "FEATURE_FLAGS_KEY",
    "FEATURE_IMPLEMENTED_PREFIX",
    "FEATURE_NOTES_KEY_PREFIX",
    "FEATURE_REGISTERED_PREFIX",
    "MANUAL_TEST_PREFIX",
    "STATE_SCHEMA_VERSION",
    "TEST_REGISTERED_PREFIX",
    "TEST_RESULTS_KEY",
]
