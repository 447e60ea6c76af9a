"""Dependency graph over schema objects.

Nodes live in a flat list and are addressed by integer id; edges are
``(dependent_id, dependency_id)`` pairs.  A node's key is
``"<category>:<identity>"``, e.g. ``"table:users"`` or
``"function:touch_updated_at()"``.

Edge rules (dependent -> dependency):

- index -> table
- trigger -> table, trigger -> function (resolved by function name)
- policy -> table
- table -> referenced table (foreign key)
- table -> enum type used by a column
- view -> referenced tables/views (best effort)

Usage:
    from schema_planner.migration.graph import build_graph

    graph = build_graph(target.all_objects(), removed=dropped_objects)
    if graph.has_circular_dependencies():
        print(" -> ".join(graph.find_cycle()))
    else:
        order = graph.get_execution_order()
"""

import heapq
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from schema_planner.schema.models import (
    Diagnostic,
    DependencyRef,
    ObjectCategory,
    SchemaObject,
    category_rank,
)

logger = logging.getLogger(__name__)


class CircularDependencyError(Exception):
    """Raised when an execution order is requested from a cyclic graph.

    Attributes:
        cycle: Node keys along the cycle; the first key is repeated at the end.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Circular dependency: {' -> '.join(cycle)}")


@dataclass(frozen=True)
class GraphNode:
    """A schema object in the graph.

    Attributes:
        id: Stable index into ``DependencyGraph.nodes``.
        key: ``"<category>:<identity>"``.
        category: Object category.
        name: Object identity.
        removed: True when the object exists only in the current schema.
    """

    id: int
    key: str
    category: ObjectCategory
    name: str
    removed: bool = False

    @property
    def sort_key(self) -> tuple[int, str]:
        return (category_rank(self.category), self.name)


def node_key(category: ObjectCategory, identity: str) -> str:
    """Graph key for an object of *category* with *identity*."""
    return f"{category.value}:{identity}"


@dataclass
class DependencyGraph:
    """Arena graph: nodes by id, edges as (dependent, dependency) id pairs."""

    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[tuple[int, int]] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    _ids: dict[str, int] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, key: object) -> bool:
        return key in self._ids

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, category: ObjectCategory, identity: str, removed: bool = False) -> int:
        """Add a node and return its id; an existing key returns its id."""
        key = node_key(category, identity)
        if key in self._ids:
            return self._ids[key]
        node = GraphNode(id=len(self.nodes), key=key, category=category, name=identity, removed=removed)
        self.nodes.append(node)
        self._ids[key] = node.id
        return node.id

    def add_edge(self, dependent: int, dependency: int) -> None:
        """Record that *dependent* must come after *dependency*."""
        if dependent == dependency:
            return
        if (dependent, dependency) not in self.edges:
            self.edges.append((dependent, dependency))

    def id_for(self, key: str) -> int | None:
        return self._ids.get(key)

    def node(self, key: str) -> GraphNode:
        """Return the node for *key*; raises ``KeyError`` if absent."""
        return self.nodes[self._ids[key]]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _adjacency(self) -> tuple[dict[int, set[int]], dict[int, set[int]]]:
        dependencies: dict[int, set[int]] = {n.id: set() for n in self.nodes}
        dependents: dict[int, set[int]] = {n.id: set() for n in self.nodes}
        for dependent, dependency in self.edges:
            dependencies[dependent].add(dependency)
            dependents[dependency].add(dependent)
        return dependencies, dependents

    def _sorted_keys(self, ids: Iterable[int]) -> list[str]:
        return [n.key for n in sorted((self.nodes[i] for i in ids), key=lambda n: n.sort_key)]

    def dependencies_of(self, key: str) -> list[str]:
        """Keys of the nodes *key* directly depends on."""
        node_id = self._ids[key]
        return self._sorted_keys(dep for src, dep in self.edges if src == node_id)

    def dependents_of(self, key: str) -> list[str]:
        """Keys of the nodes that directly depend on *key*."""
        node_id = self._ids[key]
        return self._sorted_keys(src for src, dep in self.edges if dep == node_id)

    def get_independent_nodes(self) -> list[str]:
        """Nodes without dependencies, safe to create in parallel."""
        dependencies, _ = self._adjacency()
        return self._sorted_keys(i for i, deps in dependencies.items() if not deps)

    def get_terminal_nodes(self) -> list[str]:
        """Nodes nothing depends on, the leaf-cleanup candidates."""
        _, dependents = self._adjacency()
        return self._sorted_keys(i for i, deps in dependents.items() if not deps)

    def find_cycle(self) -> list[str] | None:
        """Return one cycle as a key path (first key repeated last), or None."""
        dependencies, _ = self._adjacency()
        visited: set[int] = set()
        on_path: list[int] = []
        on_path_set: set[int] = set()

        def visit(node_id: int) -> list[int] | None:
            visited.add(node_id)
            on_path.append(node_id)
            on_path_set.add(node_id)
            for dep in sorted(dependencies[node_id], key=lambda i: self.nodes[i].sort_key):
                if dep in on_path_set:
                    return on_path[on_path.index(dep) :] + [dep]
                if dep not in visited:
                    found = visit(dep)
                    if found:
                        return found
            on_path.pop()
            on_path_set.discard(node_id)
            return None

        for node in sorted(self.nodes, key=lambda n: n.sort_key):
            if node.id not in visited:
                cycle = visit(node.id)
                if cycle:
                    return [self.nodes[i].key for i in cycle]
        return None

    def has_circular_dependencies(self) -> bool:
        """True if the graph contains at least one cycle."""
        return self.find_cycle() is not None

    def get_execution_order(self) -> list[str]:
        """Topological order of node keys, dependencies first.

        Ties are broken by category precedence, then identity ascending,
        so the order is deterministic.

        Raises:
            CircularDependencyError: If the graph has a cycle.
        """
        dependencies, dependents = self._adjacency()
        remaining = {node_id: len(deps) for node_id, deps in dependencies.items()}
        ready = [(*self.nodes[i].sort_key, i) for i, count in remaining.items() if count == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            *_, node_id = heapq.heappop(ready)
            order.append(self.nodes[node_id].key)
            for dependent in dependents[node_id]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, (*self.nodes[dependent].sort_key, dependent))

        if len(order) < len(self.nodes):
            cycle = self.find_cycle() or []
            raise CircularDependencyError(cycle)
        return order

    @property
    def warnings(self) -> list[str]:
        """Graph warnings (dangling edges, unresolved references) as text."""
        return [d.message for d in self.diagnostics if d.severity == "warning"]

    def to_dict(self) -> dict:
        """Serializable form: nodes and edges as key pairs."""
        return {
            "nodes": [
                {"id": n.id, "key": n.key, "category": n.category.value, "removed": n.removed} for n in self.nodes
            ],
            "edges": [[self.nodes[a].key, self.nodes[b].key] for a, b in self.edges],
        }


# ------------------------------------------------------------------
# Reference resolution
# ------------------------------------------------------------------


class _Resolver:
    """Resolves ``DependencyRef`` names to node ids."""

    def __init__(self, graph: DependencyGraph):
        self.graph = graph
        self.functions_by_name: dict[str, int] = {}
        self.relations_by_short_name: dict[str, list[int]] = {}
        for node in sorted(graph.nodes, key=lambda n: n.sort_key):
            if node.category == ObjectCategory.FUNCTION:
                self.functions_by_name.setdefault(node.name.split("(")[0], node.id)
            elif node.category in (ObjectCategory.TABLE, ObjectCategory.VIEW):
                short = node.name.rsplit(".", 1)[-1]
                self.relations_by_short_name.setdefault(short, []).append(node.id)

    def _exact(self, category: ObjectCategory, name: str) -> int | None:
        return self.graph.id_for(node_key(category, name))

    def resolve(self, ref: DependencyRef) -> int | None:
        if ref.category == ObjectCategory.FUNCTION:
            return self.functions_by_name.get(ref.name.split("(")[0])
        if ref.category == ObjectCategory.TYPE:
            return self._exact(ObjectCategory.TYPE, ref.name.removesuffix("[]"))

        categories = [ref.category] if ref.category else [ObjectCategory.TABLE, ObjectCategory.VIEW]
        for category in categories:
            found = self._exact(category, ref.name)
            if found is not None:
                return found

        # Schema-qualified reference to an unqualified object, or vice versa
        candidates = [
            i
            for i in self.relations_by_short_name.get(ref.name.rsplit(".", 1)[-1], [])
            if self.graph.nodes[i].category in categories
        ]
        if len(candidates) == 1:
            return candidates[0]
        return None


# ------------------------------------------------------------------
# Builder
# ------------------------------------------------------------------


def build_graph(objects: Iterable[SchemaObject], removed: Iterable[SchemaObject] = ()) -> DependencyGraph:
    """Build the dependency graph for *objects*.

    Args:
        objects: Objects of the target schema.
        removed: Objects that exist only in the current schema (being
            dropped).  They are added as removed nodes so that surviving
            objects still pointing at them are reported as dangling.

    Returns:
        ``DependencyGraph`` whose ``diagnostics`` hold dangling-edge and
        unresolved-reference warnings.

    Examples:
        >>> from schema_planner.schema.models import ColumnSchema, IndexSchema, TableSchema
        >>> users = TableSchema(name="users", columns=(ColumnSchema(name="id", data_type="uuid"),))
        >>> idx = IndexSchema(name="users_id_idx", table="users", columns=("id",))
        >>> build_graph([idx, users]).get_execution_order()
        ['table:users', 'index:users_id_idx']
    """
    graph = DependencyGraph()
    items = [(obj, False) for obj in objects] + [(obj, True) for obj in removed]
    for obj, is_removed in items:
        graph.add_node(obj.category, obj.identity, removed=is_removed)

    resolver = _Resolver(graph)
    for obj, is_removed in items:
        source = graph.node(node_key(obj.category, obj.identity))
        for ref in obj.dependencies():
            target_id = resolver.resolve(ref)
            if target_id is None:
                if ref.required:
                    kind = ref.category.value if ref.category else "relation"
                    graph.diagnostics.append(
                        Diagnostic(
                            stage="graph",
                            message=f"{obj.identity} references unknown {kind} {ref.name} ({ref.reason})",
                            identity=obj.identity,
                        )
                    )
                continue
            target = graph.nodes[target_id]
            if target.id == source.id:
                continue
            if target.removed and not is_removed:
                graph.diagnostics.append(
                    Diagnostic(
                        stage="graph",
                        message=f"{obj.identity} {ref.reason} edge to {target.name} dangles: {target.name} is removed",
                        identity=obj.identity,
                    )
                )
            graph.add_edge(source.id, target.id)

    logger.debug("Built dependency graph: %d nodes, %d edges", len(graph.nodes), len(graph.edges))
    return graph
