"""Table dependency graph with topological ordering and cycle rejection."""

from __future__ import annotations

from collections import deque

from tablecalc._types import CycleError


class DependencyGraph:
    """Tracks which derived (merged) tables read from which tables.

    An edge ``source -> derived`` means *derived* was built from *source*.
    """

    __slots__ = ("dependencies", "dependents")

    def __init__(self) -> None:
        # table -> set of tables it was built from
        self.dependencies: dict[str, set[str]] = {}
        # table -> set of tables built from it (reverse edges)
        self.dependents: dict[str, set[str]] = {}

    def add_edge(self, derived: str, source: str) -> None:
        """Record that *derived* reads *source*. Raises CycleError on a cycle."""
        if self.would_create_cycle(derived, {source}):
            raise CycleError(f"Merging {source!r} into {derived!r} would create a cycle")
        self.dependencies.setdefault(derived, set()).add(source)
        self.dependents.setdefault(source, set()).add(derived)

    def would_create_cycle(self, derived: str, sources: set[str]) -> bool:
        """True if *derived* reading *sources* closes a loop."""
        if derived in sources:
            return True
        # A cycle exists if derived is already upstream of any source
        queue: deque[str] = deque(sources)
        seen: set[str] = set(sources)
        while queue:
            table = queue.popleft()
            for upstream in self.dependencies.get(table, set()):
                if upstream == derived:
                    return True
                if upstream not in seen:
                    seen.add(upstream)
                    queue.append(upstream)
        return False

    def clear_dependencies(self, derived: str) -> None:
        """Drop the edges into *derived*, keeping the ones out of it."""
        for source in self.dependencies.pop(derived, set()):
            self.dependents.get(source, set()).discard(derived)

    def remove_table(self, table: str) -> None:
        """Drop *table* and every edge touching it."""
        for source in self.dependencies.pop(table, set()):
            self.dependents.get(source, set()).discard(table)
        for derived in self.dependents.pop(table, set()):
            self.dependencies.get(derived, set()).discard(table)

    def direct_dependents(self, table: str) -> set[str]:
        return set(self.dependents.get(table, set()))

    def tables(self) -> set[str]:
        return set(self.dependencies) | set(self.dependents)

    def topological_order(self) -> list[str]:
        """Return every table in build order (Kahn's algorithm).

        Ties are broken by name so the order is deterministic.
        Raises CycleError if the graph contains a cycle.
        """
        nodes = self.tables()
        if not nodes:
            return []

        in_degree: dict[str, int] = {
            t: len(self.dependencies.get(t, set()) & nodes) for t in nodes
        }
        queue: deque[str] = deque(sorted(t for t in nodes if in_degree[t] == 0))

        order: list[str] = []
        while queue:
            table = queue.popleft()
            order.append(table)
            for dep in sorted(self.dependents.get(table, set())):
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        if len(order) != len(nodes):
            missing = nodes - set(order)
            raise CycleError(f"Dependency cycle detected involving: {sorted(missing)}")

        return order

    def affected_tables(self, changed: set[str]) -> list[str]:
        """All tables downstream of *changed*, in topological order.

        Uses BFS on the dependents graph, then filters to topological order.
        """
        affected: set[str] = set()
        queue: deque[str] = deque(changed)
        visited: set[str] = set(changed)

        while queue:
            table = queue.popleft()
            for dep in self.dependents.get(table, set()):
                if dep not in visited:
                    visited.add(dep)
                    affected.add(dep)
                    queue.append(dep)

        full_order = self.topological_order()
        return [t for t in full_order if t in affected]

    def max_depth(self, roots: set[str]) -> int:
        """Longest dependency chain from *roots* through derived tables."""
        if not roots:
            return 0

        depth: dict[str, int] = {r: 0 for r in roots}
        queue: deque[str] = deque(roots)
        max_d = 0

        while queue:
            table = queue.popleft()
            current_depth = depth[table]
            for dep in self.dependents.get(table, set()):
                new_depth = current_depth + 1
                if dep not in depth or new_depth > depth[dep]:
                    depth[dep] = new_depth
                    max_d = max(max_d, new_depth)
                    queue.append(dep)

        return max_d
