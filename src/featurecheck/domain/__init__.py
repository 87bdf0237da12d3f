"""Domain types shared across featurecheck components; free of IO side effects."""

from featurecheck.domain.models import (
    DiagnosticInfo,
    ExecutionContext,
    FeatureArea,
    FeatureMetadata,
    FeatureStatus,
    FeatureTestStatus,
    Introspectable,
    NoteCategories,
    RunSummary,
    TestDefinition,
    TestOutcome,
    TestResult,
    TestResultSummary,
    TestStatus,
)

__all__ = [
    "DiagnosticInfo",
    "ExecutionContext",
    "FeatureArea",
    "FeatureMetadata",
    "FeatureStatus",
    "FeatureTestStatus",
    "Introspectable",
    "NoteCategories",
    "RunSummary",
    "TestDefinition",
    "TestOutcome",
    "TestResult",
    "TestResultSummary",
    "TestStatus",
]
