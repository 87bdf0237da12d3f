"""Persistence: key/value contract, reference backends, and the status store."""

from featurecheck.persistence.kv_store import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    StateFileError,
)
from featurecheck.persistence.status_store import StatusStore

__all__ = [
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StateFileError",
    "StatusStore",
]
