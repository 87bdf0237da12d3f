"""Roll per-test results up into per-feature status views."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Final

from featurecheck.aggregation.features import FeatureCatalog
from featurecheck.domain.models import (
    DiagnosticInfo,
    FeatureArea,
    FeatureStatus,
    FeatureTestStatus,
    Introspectable,
    JSONValue,
    NoteCategories,
    TestResult,
    TestResultSummary,
    TestStatus,
)
from featurecheck.persistence.status_store import StatusStore
from featurecheck.registry.test_registry import TestRegistry

# First matching keyword wins; order matters ("goal dashboard" is a goal feature).
AREA_KEYWORDS: Final[tuple[tuple[tuple[str, ...], FeatureArea], ...]] = (
    (("goal",), FeatureArea.GOAL),
    (("progress",), FeatureArea.PROGRESS),
    (("dashboard",), FeatureArea.DASHBOARD),
    (("analytics", "chart"), FeatureArea.ANALYTICS),
    (("achievement", "badge"), FeatureArea.ACHIEVEMENT),
    (("settings",), FeatureArea.SETTINGS),
    (("auth", "login"), FeatureArea.AUTH),
    (("api",), FeatureArea.API),
    (("storage", "database"), FeatureArea.STORAGE),
    (("ui", "component"), FeatureArea.UI),
    (("notification",), FeatureArea.NOTIFICATION),
    (("performance",), FeatureArea.PERFORMANCE),
)
DEFAULT_AREA: Final[FeatureArea] = FeatureArea.UI

_IMPLEMENTATION_NOTE: Final[re.Pattern[str]] = re.compile(r"^feature (registered|implemented)", re.I)
_TEST_NOTE: Final[re.Pattern[str]] = re.compile(r"^test registered", re.I)
_MANUAL_NOTE: Final[re.Pattern[str]] = re.compile(r"^manual test", re.I)
_MANUAL_PREFIX: Final[re.Pattern[str]] = re.compile(r"^manual test:\s*", re.I)


def determine_feature_area(name: str) -> FeatureArea:
    """Best-effort area guess from a feature name; advisory only."""
    lowered = name.lower()
    for keywords, area in AREA_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return area
    return DEFAULT_AREA


def summarize_results(
    test_ids: Iterable[str], results: Mapping[str, TestResult]
) -> TestResultSummary:
    """Count latest outcomes; running or never-run tests count as ``not_run``."""
    passed = failed = skipped = not_run = total = 0
    last_run = None
    for test_id in test_ids:
        total += 1
        result = results.get(test_id)
        status = TestStatus.NOT_STARTED if result is None else result.status
        if status is TestStatus.PASSED:
            passed += 1
        elif status is TestStatus.FAILED:
            failed += 1
        elif status is TestStatus.SKIPPED:
            skipped += 1
        else:
            not_run += 1
        if result is not None and status.is_terminal:
            if last_run is None or result.timestamp > last_run:
                last_run = result.timestamp
    return TestResultSummary(
        passed=passed,
        failed=failed,
        skipped=skipped,
        not_run=not_run,
        total=total,
        last_run=last_run,
    )


def determine_test_status(summary: TestResultSummary) -> FeatureTestStatus:
    """Apply ``failed > passed > partially_passed > skipped > not_tested``."""
    if summary.total == 0 or summary.run_count == 0:
        return FeatureTestStatus.NOT_TESTED
    if summary.failed > 0:
        return FeatureTestStatus.FAILED
    if summary.passed == summary.total:
        return FeatureTestStatus.PASSED
    if summary.passed > 0:
        return FeatureTestStatus.PARTIALLY_PASSED
    if summary.skipped == summary.run_count:
        return FeatureTestStatus.SKIPPED
    return FeatureTestStatus.NOT_TESTED


def dedupe_notes(notes: Iterable[str]) -> tuple[str, ...]:
    """Exact-string deduplication keeping first occurrences in order."""
    return tuple(dict.fromkeys(notes))


def categorize_notes(notes: Iterable[str]) -> NoteCategories:
    implementation: list[str] = []
    test: list[str] = []
    manual: list[str] = []
    other: list[str] = []
    for note in dedupe_notes(notes):
        if _IMPLEMENTATION_NOTE.match(note):
            implementation.append(note)
        elif _TEST_NOTE.match(note):
            test.append(note)
        elif _MANUAL_NOTE.match(note):
            manual.append(_MANUAL_PREFIX.sub("", note, count=1))
        else:
            other.append(note)
    return NoteCategories(
        implementation=tuple(implementation),
        test=tuple(test),
        manual=tuple(manual),
        other=tuple(other),
    )


def describe_components(
    feature_name: str, components: Sequence[Introspectable]
) -> DiagnosticInfo | None:
    """Collect ``describe_self`` output from a feature's introspectable components."""
    infos = [component.describe_self() for component in components]
    if not infos:
        return None
    if len(infos) == 1:
        return infos[0]
    details: dict[str, JSONValue] = {info.component: info.to_dict() for info in infos}
    return DiagnosticInfo(
        component=f"feature:{feature_name}",
        summary="; ".join(info.summary for info in infos),
        details=details,
    )


class FeatureStatusAggregator:
    """Derives ``FeatureStatus`` on demand from the registry, store, and catalog."""

    def __init__(
        self,
        registry: TestRegistry,
        store: StatusStore,
        catalog: FeatureCatalog,
    ) -> None:
        self._registry = registry
        self._store = store
        self._catalog = catalog
        self._components: dict[str, list[Introspectable]] = {}

    def register_component(self, feature_name: str, component: Introspectable) -> None:
        if not isinstance(component, Introspectable):
            raise TypeError(
                f"component {type(component).__name__} does not implement describe_self()"
            )
        bucket = self._components.setdefault(feature_name, [])
        if component not in bucket:
            bucket.append(component)

    def feature_names(self) -> tuple[str, ...]:
        names = dict.fromkeys(self._catalog.names())
        names.update(dict.fromkeys(self._registry.feature_names()))
        names.update(dict.fromkeys(self._components))
        return tuple(sorted(names))

    def compute_feature_status(
        self,
        feature_name: str,
        related_tests: Sequence[str] | None = None,
        *,
        results: Mapping[str, TestResult] | None = None,
    ) -> FeatureStatus:
        """Build the status of one feature.

        ``related_tests`` defaults to the registry's association for the
        feature; ``results`` defaults to a fresh store snapshot.
        """
        fuzzy = False
        if related_tests is None:
            match = self._registry.get_tests_for_feature(feature_name)
            related_tests = match.test_ids
            fuzzy = not match.exact
        snapshot = results if results is not None else self._store.snapshot()

        summary = summarize_results(related_tests, snapshot)
        test_status = determine_test_status(summary)
        metadata = self._catalog.get(feature_name)

        implemented = metadata.implemented if metadata is not None else False
        if summary.passed > 0 or test_status is FeatureTestStatus.PARTIALLY_PASSED:
            implemented = True

        area = metadata.area if metadata is not None and metadata.area is not None else None
        if area is None:
            area = determine_feature_area(feature_name)

        notes = dedupe_notes(metadata.notes) if metadata is not None else ()
        candidates = [
            stamp
            for stamp in (
                None if metadata is None else metadata.last_verified,
                summary.last_run,
            )
            if stamp is not None
        ]
        return FeatureStatus(
            name=feature_name,
            implemented=implemented,
            notes=notes,
            area=area,
            test_status=test_status,
            last_verified=max(candidates) if candidates else None,
            test_ids=tuple(related_tests),
            summary=summary,
            notes_by_category=categorize_notes(notes),
            diagnostics=describe_components(feature_name, self._components.get(feature_name, ())),
            fuzzy_match=fuzzy,
        )

    def all_statuses(self) -> Mapping[str, FeatureStatus]:
        """Status of every known feature, computed against one store snapshot."""
        snapshot = self._store.snapshot()
        return MappingProxyType(
            {
                name: self.compute_feature_status(name, results=snapshot)
                for name in self.feature_names()
            }
        )


__all__ = [
    "AREA_KEYWORDS",
    "DEFAULT_AREA",
    "FeatureStatusAggregator",
    "categorize_notes",
    "dedupe_notes",
    "describe_components",
    "determine_feature_area",
    "determine_test_status",
    "summarize_results",
]
