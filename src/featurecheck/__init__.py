"""
featurecheck: feature verification and test orchestration.

Package root. Holds the test registry, dependency-aware execution engine,
status store, logging contexts, and feature status aggregation that back a
debug dashboard.

Importing the package has no side effects (no config loading, no logging
setup); construct an ``featurecheck.orchestrator.Orchestrator`` explicitly.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
