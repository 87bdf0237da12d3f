"""Deterministic dependency graph over test ids."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from heapq import heapify, heappop, heappush

from featurecheck.errors import CyclicDependency


class DependencyGraph:
    """Directed graph where an edge ``test -> dependency`` means "runs after".

    Nodes may be referenced as dependencies before they are declared; such
    forward references exist as nodes with no outgoing edges of their own.
    """

    __slots__ = ("_nodes", "_dependencies")

    def __init__(self) -> None:
        self._nodes: set[str] = set()
        self._dependencies: dict[str, set[str]] = {}

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def add_node(self, node_id: str) -> None:
        """Add a node if it does not already exist."""
        self._validate_node_id(node_id)
        if node_id in self._nodes:
            return
        self._nodes.add(node_id)
        self._dependencies[node_id] = set()

    def add_dependencies(self, node_id: str, dependencies: Iterable[str]) -> None:
        """Declare ``node_id`` as depending on each of ``dependencies``.

        Raises ``CyclicDependency`` without mutating the graph when the new
        edges would close a cycle.
        """
        pending = tuple(dependencies)
        cycles = self.cycles_with({node_id: pending})
        if cycles:
            raise CyclicDependency(cycles)

        self.add_node(node_id)
        for dependency in pending:
            self.add_node(dependency)
            self._dependencies[node_id].add(dependency)

    def transitive_dependencies(self, node_id: str) -> tuple[str, ...]:
        """Return every test ``node_id`` depends on, directly or indirectly."""
        self._assert_node_exists(node_id)
        visited: set[str] = set()
        pending: list[str] = list(self._dependencies[node_id])
        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(dep for dep in self._dependencies[node] if dep not in visited)
        return tuple(sorted(visited))

    def cycles_with(
        self, pending: Mapping[str, Sequence[str]]
    ) -> tuple[tuple[str, ...], ...]:
        """Detect cycles in the graph overlaid with ``pending`` edges.

        Iterative depth-first search with white/gray/black coloring; reaching a
        gray node closes a cycle.
        """
        nodes: set[str] = set(self._nodes)
        for node_id, dependencies in pending.items():
            nodes.add(node_id)
            nodes.update(dependencies)

        def successors(node: str) -> Iterator[str]:
            merged = set(self._dependencies.get(node, ()))
            merged.update(pending.get(node, ()))
            return iter(sorted(merged))

        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(nodes):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, successors(start))]

            while frames:
                node, child_iter = frames[-1]
                try:
                    child = next(child_iter)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, successors(child)))
                elif child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def topological_order(self, ids: Iterable[str]) -> tuple[str, ...]:
        """Order ``ids`` so each appears after its in-set dependencies.

        Ties are broken by the caller's order. Duplicate ids keep their first
        position. Raises ``CyclicDependency`` if the induced subgraph is cyclic.
        """
        position: dict[str, int] = {}
        for node_id in ids:
            position.setdefault(node_id, len(position))

        indegree: dict[str, int] = {}
        dependents: dict[str, list[str]] = {node_id: [] for node_id in position}
        for node_id in position:
            in_set = [dep for dep in self._dependencies.get(node_id, ()) if dep in position]
            indegree[node_id] = len(in_set)
            for dependency in in_set:
                dependents[dependency].append(node_id)

        ready: list[tuple[int, str]] = [
            (position[node_id], node_id) for node_id, degree in indegree.items() if degree == 0
        ]
        heapify(ready)

        order: list[str] = []
        while ready:
            _, node_id = heappop(ready)
            order.append(node_id)
            for dependent in dependents[node_id]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heappush(ready, (position[dependent], dependent))

        if len(order) != len(position):
            remaining = set(position).difference(order)
            induced = {
                node_id: tuple(
                    dep for dep in self._dependencies.get(node_id, ()) if dep in remaining
                )
                for node_id in remaining
            }
            raise CyclicDependency(_subgraph_cycles(induced))

        return tuple(order)

    @staticmethod
    def _validate_node_id(node_id: str) -> None:
        if not isinstance(node_id, str) or not node_id:
            raise ValueError("Test id must be a non-empty string.")

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise KeyError(f"Unknown test id: {node_id}")


def _subgraph_cycles(adjacency: Mapping[str, Sequence[str]]) -> tuple[tuple[str, ...], ...]:
    graph = DependencyGraph()
    return graph.cycles_with(adjacency)


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])

    best = core
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        if rotated < best:
            best = rotated
    return best + (best[0],)


__all__ = ["DependencyGraph"]
