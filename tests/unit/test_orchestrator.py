"""Unit tests for the orchestrator session facade."""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from featurecheck.config.loader import load_config
from featurecheck.domain.models import FeatureArea, TestStatus
from featurecheck.errors import DuplicateTestId, ModuleLoadError
from featurecheck.execution.engine import TestRunContext
from featurecheck.orchestrator import Orchestrator
from featurecheck.persistence.kv_store import MemoryKeyValueStore

if TYPE_CHECKING:
    from pathlib import Path


def _write_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, body: str) -> str:
    name = f"featurecheck_checks_{uuid4().hex}"
    (tmp_path / f"{name}.py").write_text(body, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, name, raising=False)
    return name


def test_feature_test_decorator_defaults_name_and_description() -> None:
    orchestrator = Orchestrator(forward_to_logging=False)

    @orchestrator.feature_test("goal-create", area="goal", feature_name="Goal Creation")
    def create_goal(ctx: TestRunContext) -> bool:
        """Creating a goal persists it.

        Longer explanation that is not part of the description.
        """
        return True

    (definition,) = orchestrator.get_registered_tests()
    assert definition.name == "create goal"
    assert definition.description == "Creating a goal persists it."
    assert definition.area is FeatureArea.GOAL
    assert create_goal.__name__ == "create_goal"

    metadata = orchestrator.get_feature_metadata("Goal Creation")
    assert metadata is not None
    assert "Test registered: create goal" in metadata.notes


def test_duplicate_registration_propagates() -> None:
    orchestrator = Orchestrator(forward_to_logging=False)
    orchestrator.register_test("a", "A", lambda _: True)

    with pytest.raises(DuplicateTestId):
        orchestrator.register_test("a", "Again", lambda _: True)


def test_load_test_module_calls_register_hook(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    module_name = _write_module(
        tmp_path,
        monkeypatch,
        "def register_tests(orchestrator):\n"
        "    orchestrator.register_test('from-module', 'From module', lambda ctx: True)\n",
    )
    orchestrator = Orchestrator(forward_to_logging=False)

    orchestrator.load_test_module(module_name)

    assert orchestrator.has_test("from-module")


def test_load_test_module_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    orchestrator = Orchestrator(forward_to_logging=False)
    with pytest.raises(ModuleLoadError, match="cannot import"):
        orchestrator.load_test_module(f"missing_module_{uuid4().hex}")

    hookless = _write_module(tmp_path, monkeypatch, "VALUE = 1\n")
    with pytest.raises(ModuleLoadError, match="does not define register_tests"):
        orchestrator.load_test_module(hookless)


def test_from_config_wires_state_manifest_and_modules(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    module_name = _write_module(
        tmp_path,
        monkeypatch,
        "def register_tests(orchestrator):\n"
        "    orchestrator.register_test(\n"
        "        'goal-create-form', 'Create goal form', lambda ctx: True\n"
        "    )\n",
    )
    (tmp_path / "features.yaml").write_text(
        "features:\n  - name: Goal Creation\n    area: goal\n    tests: [goal-create-form]\n",
        encoding="utf-8",
    )
    config_path = tmp_path / "featurecheck.toml"
    config_path.write_text(
        "[paths]\n"
        'state_file = "state.json"\n'
        'feature_manifest = "features.yaml"\n'
        "[execution]\n"
        "include_builtin_checks = false\n"
        f'test_modules = ["{module_name}"]\n',
        encoding="utf-8",
    )
    config = load_config(config_path, environ={})

    orchestrator = Orchestrator.from_config(config)

    registered = orchestrator.get_registered_tests()
    assert [definition.id for definition in registered] == ["goal-create-form"]
    match = orchestrator.get_tests_for_feature("Goal Creation")
    assert match.exact
    assert match.test_ids == ("goal-create-form",)
    document = json.loads((tmp_path / "state.json").read_text(encoding="utf-8"))
    assert "featurecheck.feature_flags" in document["records"]


async def test_results_persist_across_sessions_sharing_a_store() -> None:
    store = MemoryKeyValueStore()
    first = Orchestrator(store=store, forward_to_logging=False)
    first.register_test("auth-login", "Login", lambda _: True, area="auth")
    await first.run_all_feature_tests()

    second = Orchestrator(store=store, forward_to_logging=False)

    result = second.get_test_results()["auth-login"]
    assert result.status is TestStatus.PASSED
    assert result.context_id is None


async def test_describe_self_and_export_state() -> None:
    orchestrator = Orchestrator(forward_to_logging=False)
    orchestrator.register_test("b", "B", lambda _: False, dependencies=["a", "c"])
    orchestrator.register_test("a", "A", lambda _: True, feature_name="Alpha")
    await orchestrator.run_all_feature_tests(["a"])

    info = orchestrator.describe_self()
    assert info.summary == "2 tests registered, 1 results recorded, 0 open contexts"
    assert info.details["unresolved_dependencies"] == {"b": ["c"]}

    state = orchestrator.export_state()
    assert state["schema_version"] == 1
    assert [test["id"] for test in state["tests"]] == ["b", "a"]  # type: ignore[index,union-attr]
    assert set(state["results"]) == {"a"}  # type: ignore[arg-type]
    assert set(state["features"]) == {"Alpha"}  # type: ignore[arg-type]
    json.dumps(state)


async def test_feature_metadata_and_reset() -> None:
    orchestrator = Orchestrator(forward_to_logging=False)
    orchestrator.register_feature("Dark Mode", area="settings")
    orchestrator.mark_feature_implemented("Dark Mode", notes="toggle shipped")
    orchestrator.mark_feature_tested("Dark Mode", passed=True)
    orchestrator.add_feature_note("Dark Mode", "Manual test: switched theme twice")
    orchestrator.register_test("x", "X", lambda _: True)
    await orchestrator.run_feature_test("x")

    seen: list[str] = []
    unsubscribe = orchestrator.subscribe(lambda result: seen.append(result.status.value))
    await orchestrator.run_feature_test("x")
    unsubscribe()
    orchestrator.reset_results()

    status = orchestrator.get_feature_status("Dark Mode")
    assert status.implemented
    assert status.notes_by_category.manual == ("switched theme twice",)
    assert "toggle shipped" in status.notes_by_category.other
    assert seen == ["running", "passed"]
    assert orchestrator.get_test_results() == {}


async def test_session_state_is_exposed_through_read_only_queries() -> None:
    orchestrator = Orchestrator(forward_to_logging=False)
    orchestrator.register_test("storage-ready", "Storage", lambda _: True, area="storage")
    orchestrator.register_test(
        "goal-create",
        "Create goal",
        lambda _: True,
        area="goal",
        feature_name="Goal Creation",
        dependencies=["storage-ready", "sync-ready"],
    )
    await orchestrator.run_feature_test("storage-ready")

    for name in ("registry", "store", "catalog"):
        assert not hasattr(orchestrator, name)
    assert orchestrator.has_test("goal-create")
    assert not orchestrator.has_test("sync-ready")
    assert orchestrator.get_test_status("storage-ready") is TestStatus.PASSED
    assert orchestrator.get_test_status("goal-create") is TestStatus.NOT_STARTED
    assert orchestrator.get_execution_order() == ("storage-ready", "goal-create")
    assert orchestrator.get_dependencies("goal-create") == ("storage-ready", "sync-ready")
    assert dict(orchestrator.get_unresolved_dependencies()) == {"goal-create": ("sync-ready",)}
    assert [d.id for d in orchestrator.get_tests_by_area(FeatureArea.GOAL)] == ["goal-create"]
    assert orchestrator.get_feature_metadata("Goal Creation") is not None

    results = orchestrator.get_test_results()
    with pytest.raises(TypeError):
        results["goal-create"] = results["storage-ready"]  # type: ignore[index]
    assert orchestrator.get_test_status("goal-create") is TestStatus.NOT_STARTED
