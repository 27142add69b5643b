"""
Dependency Graph Builder - resolves attribute references into a DAG.

This is the structural half of planning:
1. Validate resource identities are unique
2. Validate every reference and ``depends_on`` names a declared resource
3. Reject self-references
4. Depth-first traversal: report the full cycle, or emit a topological order

Design Principles:
- Pure functions (testable, deterministic)
- An edge points from the referencing resource to the referenced one
- Declaration order is preserved wherever dependencies allow
- A cyclic configuration builds nothing
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence

import structlog

from groundwork.config.model import Resource
from groundwork.core.errors import (
    CyclicDependencyError,
    DuplicateIdentityError,
    UnknownReferenceError,
)

logger = structlog.get_logger()


def topological_sort(nodes: Sequence[str], edges: Mapping[str, Sequence[str]]) -> list[str]:
    """
    Order ``nodes`` so every node follows the nodes it points to.

    Uses depth-first search with three-color marking:
    - WHITE (0): Unvisited
    - GRAY (1): Currently visiting (on current path)
    - BLACK (2): Finished visiting

    Encountering a GRAY node means the active path closed on itself; the
    cycle from that node back to itself is reported.  Post-order emission
    yields dependencies first and otherwise keeps the order of ``nodes``.
    Edges to nodes outside ``nodes`` are ignored.

    Raises:
        CyclicDependencyError: With the full cycle, e.g. ``[a, b, a]``.
    """
    WHITE, GRAY, BLACK = 0, 1, 2

    color = {n: WHITE for n in nodes}
    path: list[str] = []
    order: list[str] = []

    def dfs(node: str) -> None:
        color[node] = GRAY
        path.append(node)

        for neighbor in edges.get(node, ()):
            if neighbor not in color:
                continue
            if color[neighbor] == GRAY:
                cycle_start = path.index(neighbor)
                raise CyclicDependencyError(path[cycle_start:] + [neighbor])
            if color[neighbor] == WHITE:
                dfs(neighbor)

        color[node] = BLACK
        path.pop()
        order.append(node)

    for node in nodes:
        if color[node] == WHITE:
            dfs(node)

    return order


class DependencyGraph:
    """
    Directed acyclic graph of declared resources.

    Nodes are resource addresses (``type.name``); ``dependencies_of(a)``
    lists what ``a`` references.  Instances are only produced by
    :func:`build` and are read-only afterwards.
    """

    def __init__(
        self,
        resources: Mapping[str, Resource],
        dependencies: Mapping[str, tuple[str, ...]],
        order: Sequence[str],
    ):
        self._resources = dict(resources)
        self._deps = dict(dependencies)
        self._order = tuple(order)
        dependents: dict[str, list[str]] = {a: [] for a in self._order}
        for address in self._order:
            for dep in self._deps[address]:
                dependents[dep].append(address)
        self._dependents = {a: tuple(d) for a, d in dependents.items()}

    def __contains__(self, address: object) -> bool:
        return address in self._resources

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    @property
    def resources(self) -> dict[str, Resource]:
        return dict(self._resources)

    def resource(self, address: str) -> Resource:
        return self._resources[address]

    def dependencies_of(self, address: str) -> tuple[str, ...]:
        return self._deps[address]

    def dependents_of(self, address: str) -> tuple[str, ...]:
        return self._dependents[address]

    def topological_order(self) -> list[str]:
        """Dependencies before dependents."""
        return list(self._order)

    def reverse_topological_order(self) -> list[str]:
        """Dependents before dependencies."""
        return list(reversed(self._order))

    def ancestors_of(self, address: str) -> set[str]:
        """Every address reachable by following dependencies."""
        seen: set[str] = set()
        stack = list(self._deps[address])
        while stack:
            node = stack.pop()
            if node not in seen:
                seen.add(node)
                stack.extend(self._deps[node])
        return seen

    def independent(self, a: str, b: str) -> bool:
        """True when no path connects ``a`` and ``b`` in either direction."""
        if a == b:
            return False
        return b not in self.ancestors_of(a) and a not in self.ancestors_of(b)

    def to_dot(self) -> str:
        """Graphviz rendering; edges point at dependencies."""
        lines = ["digraph groundwork {", "  rankdir=LR;"]
        for address in self._order:
            lines.append(f'  "{address}";')
        for address in self._order:
            for dep in self._deps[address]:
                lines.append(f'  "{address}" -> "{dep}";')
        lines.append("}")
        return "\n".join(lines)


class GraphBuilder:
    """
    Builds a :class:`DependencyGraph` from declared resources.

    Stateless: each ``build()`` call is independent.

    Example:
        graph = GraphBuilder().build(config.resources)
        graph.topological_order()
        # ['container_registry.registry', 'user_identity.deployer', ...]
    """

    def build(self, resources: Iterable[Resource]) -> DependencyGraph:
        """
        Resolve references into edges and validate acyclicity.

        Raises:
            DuplicateIdentityError: Two resources share an address
            UnknownReferenceError: A reference names an undeclared resource
            CyclicDependencyError: Self-reference or cycle, with the cycle path
        """
        by_address: dict[str, Resource] = {}
        for resource in resources:
            if resource.address in by_address:
                raise DuplicateIdentityError(resource.address)
            by_address[resource.address] = resource

        deps = self._collect_dependencies(by_address)
        order = topological_sort(list(by_address), deps)

        logger.debug(
            "graph.built",
            resources=len(by_address),
            edges=sum(len(d) for d in deps.values()),
        )
        return DependencyGraph(by_address, deps, order)

    def _collect_dependencies(self, by_address: Mapping[str, Resource]) -> dict[str, tuple[str, ...]]:
        deps: dict[str, tuple[str, ...]] = {}
        for address, resource in by_address.items():
            targets = resource.dependency_addresses()
            for target in targets:
                if target == address:
                    raise CyclicDependencyError([address, address])
                if target not in by_address:
                    raise UnknownReferenceError(address, target)
            deps[address] = tuple(targets)
        return deps


def build(resources: Iterable[Resource]) -> DependencyGraph:
    """Module-level shortcut for ``GraphBuilder().build(resources)``."""
    return GraphBuilder().build(resources)
