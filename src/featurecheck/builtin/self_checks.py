"""Built-in checks that exercise the session's own logging, registry, and result store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from featurecheck.constants import DEBUG_INFRASTRUCTURE_FEATURE
from featurecheck.domain.models import FeatureArea, TestDefinition, TestStatus
from featurecheck.observability.contexts import find_differences
from featurecheck.observability.sink import LogLevel

if TYPE_CHECKING:
    from featurecheck.execution.engine import TestRunContext
    from featurecheck.orchestrator import Orchestrator

CONTEXT_NESTING_CHECK: Final[str] = "debug-context-nesting"
LOG_BUFFER_CHECK: Final[str] = "debug-log-buffer"
OUTPUT_DIFF_CHECK: Final[str] = "debug-output-diff"
REGISTRY_ORDER_CHECK: Final[str] = "debug-registry-order"
STATUS_STORE_CHECK: Final[str] = "debug-status-store"

SELF_CHECK_IDS: Final[tuple[str, ...]] = (
    CONTEXT_NESTING_CHECK,
    LOG_BUFFER_CHECK,
    OUTPUT_DIFF_CHECK,
    REGISTRY_ORDER_CHECK,
    STATUS_STORE_CHECK,
)


def build_self_checks(orchestrator: Orchestrator) -> tuple[TestDefinition, ...]:
    """Definitions for the self-check suite, bound to ``orchestrator``."""

    def context_nesting(ctx: TestRunContext) -> bool:
        contexts = ctx.contexts
        depth = contexts.depth
        child_id = contexts.create_context("self-check child", DEBUG_INFRASTRUCTURE_FEATURE)
        child = contexts.current
        nested_ok = child is not None and child.id == child_id and child.parent_id == ctx.context_id
        completed = contexts.complete_context(child_id, True)
        ctx.log_step("nested context completed", data={"duration_ms": completed.duration_ms})
        return nested_ok and contexts.depth == depth and completed.success is True

    def log_buffer(ctx: TestRunContext) -> bool:
        marker = f"self-check marker {ctx.context_id}"
        ctx.log_step(marker, LogLevel.DEBUG)
        entries = orchestrator.log_buffer.entries(context_id=ctx.context_id, limit=50)
        return any(entry.message == marker for entry in entries)

    def output_diff(ctx: TestRunContext) -> bool:
        expected = {"name": "goal", "tags": ["a", "b"], "count": 2}
        actual = {"name": "goal", "tags": ["a", "c"]}
        ctx.log_input({"expected": expected, "actual": actual})
        differences = find_differences(expected, actual)
        return (
            ctx.check_output(expected, dict(expected))
            and set(differences) == {"tags", "count"}
            and differences["count"] == {"expected": 2, "actual": "missing"}
        )

    def registry_order(ctx: TestRunContext) -> bool:
        order = orchestrator.get_execution_order(SELF_CHECK_IDS)
        ctx.log_step("self-check order", data={"order": list(order)})
        return order.index(REGISTRY_ORDER_CHECK) < order.index(STATUS_STORE_CHECK) and set(
            order
        ) == set(SELF_CHECK_IDS)

    def status_store(ctx: TestRunContext) -> bool:
        return (
            orchestrator.get_test_status(REGISTRY_ORDER_CHECK) is TestStatus.PASSED
            and orchestrator.get_test_status(ctx.test_id) is TestStatus.RUNNING
        )

    return (
        TestDefinition(
            id=CONTEXT_NESTING_CHECK,
            name="Execution context nesting",
            run=context_nesting,
            description="Nested contexts record their parent and unwind in LIFO order",
            area=FeatureArea.PERFORMANCE,
            feature_name=DEBUG_INFRASTRUCTURE_FEATURE,
        ),
        TestDefinition(
            id=LOG_BUFFER_CHECK,
            name="Log buffer capture",
            run=log_buffer,
            description="Steps logged in a context are retrievable from the log buffer",
            dependencies=(CONTEXT_NESTING_CHECK,),
            area=FeatureArea.PERFORMANCE,
            feature_name=DEBUG_INFRASTRUCTURE_FEATURE,
        ),
        TestDefinition(
            id=OUTPUT_DIFF_CHECK,
            name="Output difference report",
            run=output_diff,
            description="Expected/actual comparison reports changed and missing keys",
            area=FeatureArea.PERFORMANCE,
            feature_name=DEBUG_INFRASTRUCTURE_FEATURE,
        ),
        TestDefinition(
            id=REGISTRY_ORDER_CHECK,
            name="Registry dependency order",
            run=registry_order,
            description="Dependencies are ordered before their dependents",
            area=FeatureArea.PERFORMANCE,
            feature_name=DEBUG_INFRASTRUCTURE_FEATURE,
        ),
        TestDefinition(
            id=STATUS_STORE_CHECK,
            name="Status store bookkeeping",
            run=status_store,
            description="Results of dependencies are visible while a test runs",
            dependencies=(REGISTRY_ORDER_CHECK,),
            area=FeatureArea.PERFORMANCE,
            feature_name=DEBUG_INFRASTRUCTURE_FEATURE,
        ),
    )


def register_self_checks(orchestrator: Orchestrator) -> tuple[TestDefinition, ...]:
    """Register the suite and the orchestrator as the feature's introspectable component."""
    definitions = build_self_checks(orchestrator)
    for definition in definitions:
        orchestrator.register(definition)
    orchestrator.register_feature(
        DEBUG_INFRASTRUCTURE_FEATURE, implemented=True, area=FeatureArea.PERFORMANCE
    )
    orchestrator.register_component(DEBUG_INFRASTRUCTURE_FEATURE, orchestrator)
    return definitions


__all__ = [
    "CONTEXT_NESTING_CHECK",
    "LOG_BUFFER_CHECK",
    "OUTPUT_DIFF_CHECK",
    "REGISTRY_ORDER_CHECK",
    "SELF_CHECK_IDS",
    "STATUS_STORE_CHECK",
    "build_self_checks",
    "register_self_checks",
]
