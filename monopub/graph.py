"""Dependency graph of the workspace packages.

Packages must be published in dependency order so that when package A
depends on package B, B is available on the registry before A. The graph
is an arena of PackageNodes keyed by name; edges only ever connect
packages that are present in the graph.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Literal

from .errors import CycleError
from .models import PackageNode

GraphType = Literal["dependencies", "all"]


class DependencyGraph:
    """Packages and their local dependency edges.

    Args:
        nodes: Workspace packages, in declaration order.
        graph_type: "dependencies" leaves devDependencies out of the edge
            set (fewer cycles, better ordering); "all" includes them.
    """

    def __init__(
        self, nodes: Iterable[PackageNode], graph_type: GraphType = "dependencies"
    ) -> None:
        self.graph_type = graph_type
        self._nodes: dict[str, PackageNode] = {}
        for node in nodes:
            if node.name in self._nodes:
                raise ValueError(f"Duplicate package name: {node.name}")
            self._nodes[node.name] = node

        self._edges: dict[str, list[str]] = {}
        for name, node in self._nodes.items():
            deps: list[str] = []
            for spec in node.local_dependencies:
                if spec.name == name or spec.name not in self._nodes:
                    continue
                if graph_type == "dependencies" and spec.field == "devDependencies":
                    continue
                if spec.name not in deps:
                    deps.append(spec.name)
            self._edges[name] = deps

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[PackageNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def names(self) -> list[str]:
        return list(self._nodes)

    def get(self, name: str) -> PackageNode:
        return self._nodes[name]

    def dependencies_of(self, name: str) -> list[str]:
        return list(self._edges[name])

    def dependents_of(self, name: str) -> list[str]:
        return [n for n, deps in self._edges.items() if name in deps]

    def snapshot(self, names: Iterable[str] | None = None) -> dict[str, PackageNode]:
        """Deep copies of the selected nodes for read-only stages."""
        selected = self.names if names is None else list(names)
        return {n: self._nodes[n].model_copy(deep=True) for n in selected}


def find_cycles(
    graph: DependencyGraph, names: Iterable[str] | None = None
) -> list[list[str]]:
    """Find dependency cycles among the selected packages.

    Uses Tarjan's strongly-connected-components algorithm on the subgraph
    induced by ``names``.

    Returns:
        One list of member names per cycle, each in declaration order.
    """
    if names is None:
        selected = graph.names
    else:
        wanted = set(names)
        selected = [n for n in graph.names if n in wanted]
    members = set(selected)
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[set[str]] = []

    def visit(node: str) -> None:
        index[node] = lowlink[node] = len(index)
        stack.append(node)
        on_stack.add(node)
        for dep in graph.dependencies_of(node):
            if dep not in members:
                continue
            if dep not in index:
                visit(dep)
                lowlink[node] = min(lowlink[node], lowlink[dep])
            elif dep in on_stack:
                lowlink[node] = min(lowlink[node], index[dep])
        if lowlink[node] == index[node]:
            component: set[str] = set()
            while True:
                top = stack.pop()
                on_stack.discard(top)
                component.add(top)
                if top == node:
                    break
            if len(component) > 1:
                components.append(component)

    for name in selected:
        if name not in index:
            visit(name)

    order = {name: i for i, name in enumerate(graph.names)}
    cycles = [sorted(c, key=order.__getitem__) for c in components]
    return sorted(cycles, key=lambda c: order[c[0]])


def topo_sort(graph: DependencyGraph, names: Iterable[str] | None = None) -> list[str]:
    """Topologically sort packages by their local dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come
    before dependents. Packages that become ready together are sorted
    alphabetically for deterministic output.

    Args:
        graph: The workspace dependency graph.
        names: Packages to sort. Edges to packages outside this selection
            are ignored. Defaults to every package in the graph.

    Returns:
        List of package names (dependencies first).

    Raises:
        CycleError: If a dependency cycle is detected.

    Example:
        If A depends on B, and B depends on C:
        topo_sort(graph) → [C, B, A]
    """
    selected = graph.names if names is None else list(names)
    members = set(selected)

    # Count incoming edges (dependencies) for each package
    in_degree = {n: 0 for n in selected}
    # Track reverse dependencies (who depends on each package)
    reverse_deps: dict[str, list[str]] = {n: [] for n in selected}

    for name in selected:
        for dep in graph.dependencies_of(name):
            # Only count dependencies within the selection
            if dep in members:
                in_degree[name] += 1
                reverse_deps[dep].append(name)

    queue = sorted(n for n, d in in_degree.items() if d == 0)
    order: list[str] = []

    while queue:
        node = queue.pop(0)
        order.append(node)
        for dependent in sorted(reverse_deps[node]):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    # If we didn't process all packages, there must be a cycle
    if len(order) != len(selected):
        remaining = [n for n in selected if n not in set(order)]
        cyclic = [m for cycle in find_cycles(graph, remaining) for m in cycle]
        raise CycleError(cyclic or remaining)

    return order
