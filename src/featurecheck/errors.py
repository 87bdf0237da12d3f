"""Exception taxonomy shared across featurecheck components."""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class FeatureCheckError(Exception):
    """Base class for all featurecheck errors."""


class DuplicateTestId(FeatureCheckError, ValueError):
    """Raised when a test id is registered twice."""

    test_id: str

    def __init__(self, test_id: str) -> None:
        self.test_id = test_id
        super().__init__(f"test id {test_id!r} is already registered")


class CyclicDependency(FeatureCheckError, ValueError):
    """Raised when a dependency set would close a cycle in the test graph."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Test dependency graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Test dependency graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class ContextStackError(FeatureCheckError, RuntimeError):
    """Raised when execution contexts are completed out of LIFO order."""

    context_id: str
    top_id: str | None

    def __init__(self, context_id: str, top_id: str | None) -> None:
        self.context_id = context_id
        self.top_id = top_id
        if top_id is None:
            message = f"cannot complete context {context_id!r}: no context is active"
        else:
            message = (
                f"cannot complete context {context_id!r}: "
                f"it is not the top of the stack (top is {top_id!r})"
            )
        super().__init__(message)


class ModuleLoadError(FeatureCheckError, ImportError):
    """Raised when a configured test module cannot be imported or has no hook."""


__all__ = [
    "ContextStackError",
    "CyclicDependency",
    "DuplicateTestId",
    "FeatureCheckError",
    "ModuleLoadError",
]
