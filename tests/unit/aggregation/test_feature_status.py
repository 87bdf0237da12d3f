"""Unit tests for per-feature status aggregation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from featurecheck.aggregation.feature_status import (
    FeatureStatusAggregator,
    categorize_notes,
    dedupe_notes,
    describe_components,
    determine_feature_area,
    determine_test_status,
    summarize_results,
)
from featurecheck.aggregation.features import FeatureCatalog
from featurecheck.domain.models import (
    DiagnosticInfo,
    FeatureArea,
    FeatureTestStatus,
    TestDefinition,
    TestResult,
    TestResultSummary,
    TestStatus,
)
from featurecheck.persistence.status_store import StatusStore
from featurecheck.registry.test_registry import TestRegistry

_T0 = datetime(2026, 7, 1, 10, 0, tzinfo=UTC)


def _result(test_id: str, status: TestStatus, minutes: int = 0) -> TestResult:
    return TestResult(test_id=test_id, status=status, timestamp=_T0 + timedelta(minutes=minutes))


class _Component:
    def __init__(self, name: str) -> None:
        self.name = name

    def describe_self(self) -> DiagnosticInfo:
        return DiagnosticInfo(component=self.name, summary=f"{self.name} healthy")


def test_summarize_counts_running_and_missing_as_not_run() -> None:
    results = {
        "a": _result("a", TestStatus.PASSED, minutes=1),
        "b": _result("b", TestStatus.FAILED, minutes=3),
        "c": _result("c", TestStatus.RUNNING, minutes=9),
        "d": _result("d", TestStatus.SKIPPED, minutes=2),
    }

    summary = summarize_results(["a", "b", "c", "d", "e"], results)

    assert (summary.passed, summary.failed, summary.skipped, summary.not_run) == (1, 1, 1, 2)
    assert summary.total == 5
    assert summary.last_run == _T0 + timedelta(minutes=3)


@pytest.mark.parametrize(
    ("summary", "expected"),
    [
        (TestResultSummary(), FeatureTestStatus.NOT_TESTED),
        (TestResultSummary(not_run=2, total=2), FeatureTestStatus.NOT_TESTED),
        (TestResultSummary(passed=3, failed=1, total=4), FeatureTestStatus.FAILED),
        (TestResultSummary(passed=2, total=2), FeatureTestStatus.PASSED),
        (TestResultSummary(passed=1, skipped=1, total=2), FeatureTestStatus.PARTIALLY_PASSED),
        (TestResultSummary(passed=1, not_run=1, total=2), FeatureTestStatus.PARTIALLY_PASSED),
        (TestResultSummary(skipped=2, total=2), FeatureTestStatus.SKIPPED),
        (TestResultSummary(skipped=1, not_run=1, total=2), FeatureTestStatus.SKIPPED),
    ],
)
def test_status_precedence(summary: TestResultSummary, expected: FeatureTestStatus) -> None:
    assert determine_test_status(summary) is expected


def test_area_keywords_follow_declared_order() -> None:
    assert determine_feature_area("Goal Dashboard") is FeatureArea.GOAL
    assert determine_feature_area("Progress Chart") is FeatureArea.PROGRESS
    assert determine_feature_area("Weekly chart") is FeatureArea.ANALYTICS
    assert determine_feature_area("Login form") is FeatureArea.AUTH
    assert determine_feature_area("Something else") is FeatureArea.UI


def test_notes_are_deduplicated_and_partitioned() -> None:
    notes = [
        "Feature registered: Goal Creation",
        "Test registered: Create goal",
        "Manual test: created a goal on mobile",
        "Feature registered: Goal Creation",
        "Needs design review",
    ]

    assert len(dedupe_notes(notes)) == 4
    categories = categorize_notes(notes)
    assert categories.implementation == ("Feature registered: Goal Creation",)
    assert categories.test == ("Test registered: Create goal",)
    assert categories.manual == ("created a goal on mobile",)
    assert categories.other == ("Needs design review",)


def test_describe_components_merges_multiple_diagnostics() -> None:
    assert describe_components("Goal Creation", []) is None

    single = describe_components("Goal Creation", [_Component("store")])
    assert single is not None
    assert single.component == "store"

    merged = describe_components("Goal Creation", [_Component("store"), _Component("api")])
    assert merged is not None
    assert merged.component == "feature:Goal Creation"
    assert merged.summary == "store healthy; api healthy"
    assert set(merged.details) == {"store", "api"}


def _aggregator() -> tuple[FeatureStatusAggregator, TestRegistry, StatusStore, FeatureCatalog]:
    registry = TestRegistry()
    store = StatusStore()
    catalog = FeatureCatalog()
    return FeatureStatusAggregator(registry, store, catalog), registry, store, catalog


def test_passing_test_marks_feature_implemented() -> None:
    aggregator, registry, store, catalog = _aggregator()
    registry.register(
        TestDefinition(id="goal-create", name="Create goal", run=bool, feature_name="Goal Creation")
    )
    registry.register(
        TestDefinition(id="goal-list", name="List goals", run=bool, feature_name="Goal Creation")
    )
    catalog.register_feature("Goal Creation", implemented=False)
    store.record(_result("goal-create", TestStatus.PASSED))

    status = aggregator.compute_feature_status("Goal Creation")

    assert status.implemented is True
    assert status.test_status is FeatureTestStatus.PARTIALLY_PASSED
    assert status.area is FeatureArea.GOAL
    assert status.test_ids == ("goal-create", "goal-list")
    assert status.last_verified == _T0
    assert not status.fuzzy_match


def test_explicit_related_tests_and_fuzzy_fallback() -> None:
    aggregator, registry, store, _ = _aggregator()
    registry.register(TestDefinition(id="progress-chart", name="Progress chart", run=bool))
    store.record(_result("progress-chart", TestStatus.FAILED))

    fuzzy = aggregator.compute_feature_status("Progress")
    assert fuzzy.fuzzy_match
    assert fuzzy.test_status is FeatureTestStatus.FAILED
    assert fuzzy.implemented is False

    explicit = aggregator.compute_feature_status("Progress", related_tests=[])
    assert explicit.test_status is FeatureTestStatus.NOT_TESTED
    assert explicit.notes == ()


def test_all_statuses_covers_catalog_registry_and_components() -> None:
    aggregator, registry, _, catalog = _aggregator()
    catalog.register_feature("Dark Mode", area="settings")
    registry.register(TestDefinition(id="login", name="Login", run=bool, feature_name="Login"))
    aggregator.register_component("Diagnostics", _Component("engine"))

    statuses = aggregator.all_statuses()

    assert tuple(statuses) == ("Dark Mode", "Diagnostics", "Login")
    diagnostics = statuses["Diagnostics"].diagnostics
    assert diagnostics is not None
    assert diagnostics.summary == "engine healthy"

    with pytest.raises(TypeError, match="describe_self"):
        aggregator.register_component("Broken", object())  # type: ignore[arg-type]
