"""Async primitives for cooperative cancellation and deadlines."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag carrying the first reason it was given.

    Checked by the execution engine between tests; signalling it never
    interrupts a test that is already running.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._cancelled:
            self._reason = reason
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason


async def run_with_timeout(coroutine: Awaitable[T], timeout_seconds: float) -> T:
    """Await ``coroutine`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` when the deadline passes; the work is cancelled
    and awaited before the error propagates.
    """
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    work: asyncio.Future[T] = asyncio.ensure_future(coroutine)
    try:
        done, _ = await asyncio.wait({work}, timeout=timeout_seconds)
        if work in done:
            return work.result()
        raise TimeoutError(f"operation timed out after {timeout_seconds:g} seconds")
    finally:
        if not work.done():
            work.cancel()
            with suppress(asyncio.CancelledError):
                await work


async def resolve_maybe_awaitable(
    value: T | Awaitable[T], timeout_seconds: float | None = None
) -> T:
    """Await ``value`` when it is awaitable, optionally under a deadline.

    Plain values are returned unchanged; a deadline only applies to awaitables.
    """
    if not inspect.isawaitable(value):
        return value
    if timeout_seconds is None:
        return await value
    return await run_with_timeout(value, timeout_seconds)


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects that were never scheduled so CPython does not
    # warn "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "resolve_maybe_awaitable",
    "run_with_timeout",
]
