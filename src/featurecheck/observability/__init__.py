"""Observability: execution contexts, log sinks, and structured logging setup."""

from featurecheck.observability.contexts import LoggingContextManager, find_differences
from featurecheck.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    setup_structured_logging,
    shutdown_logging,
)
from featurecheck.observability.sink import (
    FanOutSink,
    LogBuffer,
    LogEntry,
    LogLevel,
    LogPayload,
    LogSink,
    StdlibLogSink,
    StructuredPayload,
    TextPayload,
    read_trace_log,
)

__all__ = [
    "FanOutSink",
    "LogBuffer",
    "LogEntry",
    "LogLevel",
    "LogPayload",
    "LogSink",
    "LoggingConfig",
    "LoggingContextManager",
    "StdlibLogSink",
    "StructuredLoggingHandle",
    "StructuredPayload",
    "TextPayload",
    "configure_structlog",
    "correlation_scope",
    "find_differences",
    "read_trace_log",
    "setup_structured_logging",
    "shutdown_logging",
]
