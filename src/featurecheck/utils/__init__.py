"""Shared utilities."""

from featurecheck.utils.concurrency import (
    CancellationToken,
    resolve_maybe_awaitable,
    run_with_timeout,
)
from featurecheck.utils.fs import read_text_if_exists, write_text_atomic

__all__ = [
    "CancellationToken",
    "read_text_if_exists",
    "resolve_maybe_awaitable",
    "run_with_timeout",
    "write_text_atomic",
]
