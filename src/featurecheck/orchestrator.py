"""Session facade wiring registry, engine, contexts, store, and feature aggregation."""

from __future__ import annotations

import importlib
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

import structlog

from featurecheck.aggregation.feature_status import FeatureStatusAggregator
from featurecheck.aggregation.features import FeatureCatalog
from featurecheck.aggregation.manifest import FeatureManifest, load_manifest
from featurecheck.builtin.self_checks import register_self_checks
from featurecheck.constants import STATE_SCHEMA_VERSION
from featurecheck.domain.models import (
    DiagnosticInfo,
    FeatureArea,
    FeatureMetadata,
    FeatureStatus,
    Introspectable,
    JSONValue,
    RunSummary,
    TestBody,
    TestDefinition,
    TestResult,
    TestStatus,
    as_feature_area,
    to_iso8601,
    utc_now,
)
from featurecheck.errors import ModuleLoadError
from featurecheck.execution.engine import ExecutionEngine, ResultListener
from featurecheck.observability.contexts import LoggingContextManager
from featurecheck.observability.sink import FanOutSink, LogBuffer, LogSink, StdlibLogSink
from featurecheck.persistence.kv_store import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from featurecheck.persistence.status_store import StatusStore
from featurecheck.registry.test_registry import FeatureTestMatch, TestRegistry
from featurecheck.utils.concurrency import CancellationToken

_BodyT = TypeVar("_BodyT", bound=Callable[..., object])

REGISTER_HOOK_NAME = "register_tests"


class Orchestrator:
    """One verification session: register tests, run them, and report feature status.

    Build one per process (``from_config``) or per test case (direct
    construction with the in-memory defaults).
    """

    def __init__(
        self,
        *,
        store: KeyValueStore | None = None,
        log_buffer: LogBuffer | None = None,
        extra_sinks: Iterable[LogSink] = (),
        forward_to_logging: bool = True,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._kv: KeyValueStore = store if store is not None else MemoryKeyValueStore()
        self._log_buffer = log_buffer if log_buffer is not None else LogBuffer()

        sinks: list[LogSink] = [self._log_buffer]
        if forward_to_logging:
            sinks.append(StdlibLogSink())
        sinks.extend(extra_sinks)

        self._registry = TestRegistry()
        self._store = StatusStore(self._kv)
        self._catalog = FeatureCatalog(self._kv, logger=self._logger)
        self._contexts = LoggingContextManager(FanOutSink(sinks))
        self._engine = ExecutionEngine(
            self._registry,
            self._store,
            self._contexts,
            default_timeout_seconds=default_timeout_seconds,
            logger=self._logger,
        )
        self._aggregator = FeatureStatusAggregator(self._registry, self._store, self._catalog)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, logger: Any | None = None) -> Orchestrator:
        """Build a session from a validated effective config (see ``load_config``)."""
        execution = config["execution"]
        paths = config["paths"]
        observability = config["observability"]

        orchestrator = cls(
            store=JsonFileKeyValueStore(paths["state_file"]),
            log_buffer=LogBuffer(observability["log_buffer_size"]),
            default_timeout_seconds=execution["default_timeout_seconds"],
            logger=logger,
        )
        if paths["feature_manifest"]:
            orchestrator.apply_manifest(load_manifest(paths["feature_manifest"]))
        if execution["include_builtin_checks"]:
            register_self_checks(orchestrator)
        for module_name in execution["test_modules"]:
            orchestrator.load_test_module(module_name)
        return orchestrator

    # -- components -----------------------------------------------------------------

    # The registry, status store, and feature catalog are written only through this facade.
    @property
    def contexts(self) -> LoggingContextManager:
        return self._contexts

    @property
    def log_buffer(self) -> LogBuffer:
        return self._log_buffer

    # -- registration ---------------------------------------------------------------

    def register(self, definition: TestDefinition) -> TestDefinition:
        """Register ``definition``; raises ``DuplicateTestId`` or ``CyclicDependency``."""
        self._registry.register(definition)
        if definition.feature_name is not None:
            self._catalog.note_test_registered(definition.feature_name, definition.name)
        self._logger.info(
            "test_registered",
            test_id=definition.id,
            feature=definition.feature_name,
            dependencies=list(definition.dependencies),
        )
        return definition

    def register_test(
        self,
        id: str,
        name: str,
        run: TestBody,
        *,
        description: str = "",
        area: FeatureArea | str = FeatureArea.UI,
        feature_name: str | None = None,
        dependencies: Iterable[str] = (),
        timeout_seconds: float | None = None,
    ) -> TestDefinition:
        return self.register(
            TestDefinition(
                id=id,
                name=name,
                run=run,
                description=description,
                area=as_feature_area(area),
                feature_name=feature_name,
                dependencies=tuple(dependencies),
                timeout_seconds=timeout_seconds,
            )
        )

    def feature_test(
        self,
        id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        area: FeatureArea | str = FeatureArea.UI,
        feature_name: str | None = None,
        dependencies: Iterable[str] = (),
        timeout_seconds: float | None = None,
    ) -> Callable[[_BodyT], _BodyT]:
        """Decorator form of ``register_test``; the function is returned unchanged.

        ``name`` defaults to the function name and ``description`` to the first
        line of its docstring.
        """

        def decorator(func: _BodyT) -> _BodyT:
            doc_lines = (func.__doc__ or "").strip().splitlines()
            summary = doc_lines[0] if doc_lines else ""
            self.register_test(
                id,
                name if name is not None else func.__name__.replace("_", " "),
                func,
                description=description if description is not None else summary,
                area=area,
                feature_name=feature_name,
                dependencies=dependencies,
                timeout_seconds=timeout_seconds,
            )
            return func

        return decorator

    def register_component(self, feature_name: str, component: Introspectable) -> None:
        self._aggregator.register_component(feature_name, component)

    def apply_manifest(self, manifest: FeatureManifest) -> None:
        """Declare the manifest's features and map their listed tests onto them."""
        for feature in manifest.features:
            self._catalog.register_feature(
                feature.name,
                implemented=feature.implemented,
                area=feature.area,
                notes=feature.notes,
            )
            if feature.tests:
                self._registry.associate(feature.name, feature.tests)
        self._logger.info(
            "manifest_applied",
            source=None if manifest.source is None else str(manifest.source),
            features=len(manifest.features),
        )

    def load_test_module(self, module_name: str) -> None:
        """Import ``module_name`` and call its ``register_tests(orchestrator)`` hook."""
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            raise ModuleLoadError(f"cannot import test module {module_name!r}: {exc}") from exc
        hook = getattr(module, REGISTER_HOOK_NAME, None)
        if not callable(hook):
            raise ModuleLoadError(
                f"test module {module_name!r} does not define {REGISTER_HOOK_NAME}(orchestrator)"
            )
        before = len(self._registry)
        hook(self)
        self._logger.info(
            "test_module_loaded",
            module=module_name,
            registered=len(self._registry) - before,
        )

    # -- execution ------------------------------------------------------------------

    async def run_feature_test(self, test_id: str) -> TestResult:
        return await self._engine.run_test(test_id)

    async def run_all_feature_tests(
        self,
        ids: Iterable[str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunSummary:
        return await self._engine.run_all(ids, cancel_token)

    def subscribe(self, listener: ResultListener) -> Callable[[], None]:
        return self._engine.subscribe(listener)

    def reset_results(self) -> None:
        self._engine.reset_results()

    # -- queries --------------------------------------------------------------------

    def get_test_results(self) -> Mapping[str, TestResult]:
        return self._store.snapshot()

    def get_registered_tests(self) -> tuple[TestDefinition, ...]:
        return self._registry.definitions()

    def get_feature_verification_status(self) -> Mapping[str, FeatureStatus]:
        return self._aggregator.all_statuses()

    def get_feature_status(self, feature_name: str) -> FeatureStatus:
        return self._aggregator.compute_feature_status(feature_name)

    def get_tests_for_feature(self, feature_name: str) -> FeatureTestMatch:
        return self._registry.get_tests_for_feature(feature_name)

    def get_tests_by_area(self, area: FeatureArea | str) -> tuple[TestDefinition, ...]:
        return self._registry.tests_by_area(area)

    def has_test(self, test_id: str) -> bool:
        return test_id in self._registry

    def get_test_status(self, test_id: str) -> TestStatus:
        """Latest status of ``test_id``; ``NOT_STARTED`` when it has no result yet."""
        return self._store.status_of(test_id)

    def get_execution_order(self, ids: Iterable[str] | None = None) -> tuple[str, ...]:
        """Dependency-first order of ``ids``, or of every registered test."""
        return self._registry.topological_order(ids)

    def get_dependencies(self, test_id: str) -> tuple[str, ...]:
        """Every test ``test_id`` depends on, directly or transitively."""
        return self._registry.graph.transitive_dependencies(test_id)

    def get_unresolved_dependencies(self) -> Mapping[str, tuple[str, ...]]:
        return self._registry.unresolved_dependencies()

    def get_feature_metadata(self, name: str) -> FeatureMetadata | None:
        return self._catalog.get(name)

    # -- feature metadata -----------------------------------------------------------

    def register_feature(
        self,
        name: str,
        implemented: bool = False,
        area: FeatureArea | str | None = None,
        tested: bool = False,
        notes: Iterable[str] | str | None = None,
    ) -> FeatureMetadata:
        return self._catalog.register_feature(
            name, implemented=implemented, area=area, tested=tested, notes=notes
        )

    def mark_feature_implemented(
        self, name: str, notes: Iterable[str] | str | None = None
    ) -> FeatureMetadata:
        return self._catalog.mark_feature_implemented(name, notes)

    def mark_feature_tested(
        self,
        name: str,
        passed: bool = True,
        notes: Iterable[str] | str | None = None,
    ) -> FeatureMetadata:
        return self._catalog.mark_feature_tested(name, passed, notes)

    def add_feature_note(self, name: str, note: str) -> FeatureMetadata:
        return self._catalog.add_note(name, note)

    # -- reporting ------------------------------------------------------------------

    def describe_self(self) -> DiagnosticInfo:
        results = self._store.snapshot()
        unresolved = self._registry.unresolved_dependencies()
        return DiagnosticInfo(
            component="orchestrator",
            summary=(
                f"{len(self._registry)} tests registered, {len(results)} results recorded, "
                f"{self._contexts.depth} open contexts"
            ),
            details={
                "registered_tests": len(self._registry),
                "recorded_results": len(results),
                "open_contexts": self._contexts.depth,
                "buffered_log_entries": len(self._log_buffer),
                "unresolved_dependencies": {
                    test_id: list(missing) for test_id, missing in unresolved.items()
                },
            },
        )

    def export_state(self) -> dict[str, JSONValue]:
        """JSON-ready snapshot of tests, latest results, and feature statuses."""
        statuses = self.get_feature_verification_status()
        return {
            "schema_version": STATE_SCHEMA_VERSION,
            "exported_at": to_iso8601(utc_now()),
            "tests": [definition.to_dict() for definition in self._registry.definitions()],
            "results": {
                test_id: result.to_dict() for test_id, result in self._store.snapshot().items()
            },
            "features": {name: status.to_dict() for name, status in statuses.items()},
        }


__all__ = ["REGISTER_HOOK_NAME", "Orchestrator"]
