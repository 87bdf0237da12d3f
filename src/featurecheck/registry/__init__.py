"""Test registry and dependency graph."""

from featurecheck.registry.dependency_graph import DependencyGraph
from featurecheck.registry.test_registry import FeatureTestMatch, TestRegistry

__all__ = ["DependencyGraph", "FeatureTestMatch", "TestRegistry"]
