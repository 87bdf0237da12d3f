"""Execution engine public API."""

from featurecheck.execution.engine import ExecutionEngine, ResultListener, TestRunContext

__all__ = ["ExecutionEngine", "ResultListener", "TestRunContext"]
