"""
spec-trace — reference graph

File: src/spec_trace/planning/reference_graph.py

Purpose
- Links every identifier of one project (requirements, scenarios, plan items,
  tasks, tests) into a single directed acyclic graph whose edges point
  downstream.

What should be included in this file
- Arena layout: nodes in a tuple, an id -> position index and edges as
  ``(source_index, target_index, kind)`` triples.
- Deterministic Kahn topological sort with a min-heap and iterative DFS cycle
  reporting.
- Coverage and trace queries consumed by the pipeline and the compliance
  checker.

Functional requirements
- A build either completes or raises; no partially linked graph escapes.
- Immutable after construction; rebuilt from scratch for every run.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import StrEnum
from heapq import heapify, heappop, heappush

from spec_trace.domain.ids import IdCategory, REQUIREMENT_CATEGORIES
from spec_trace.domain.models import (
    Document,
    Entity,
    PlanItem,
    Requirement,
    Task,
    UserScenario,
)
from spec_trace.errors import CycleError, DanglingReferenceError, DuplicateIdentifierError


class EdgeKind(StrEnum):
    IMPLEMENTS = "implements"
    DERIVED_FROM = "derived_from"
    VERIFIED_BY = "verified_by"
    DEPENDS_ON = "depends_on"
    MOTIVATES = "motivates"


class CoverageKind(StrEnum):
    REQUIREMENT = "requirement"
    PLAN_ITEM = "plan_item"
    TASK = "task"


@dataclass(frozen=True, slots=True)
class GraphNode:
    """One identifier in the graph; ``entity`` is ``None`` for test leaves."""

    id: str
    kind: IdCategory
    entity: Entity | None = None
    path: str | None = None

    @property
    def is_orphaned(self) -> bool:
        return _is_orphaned(self.entity)


@dataclass(frozen=True, slots=True)
class GraphEdge:
    source: str
    target: str
    kind: EdgeKind

    def to_list(self) -> list[str]:
        return [self.source, self.target, self.kind.value]


@dataclass(frozen=True, slots=True)
class OrphanReference:
    """Reference from an orphaned entity whose target no longer exists."""

    source: str
    target: str
    field: str


@dataclass(frozen=True, slots=True)
class TraceResult:
    id: str
    kind: IdCategory
    upstream: tuple[str, ...]
    downstream: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "upstream": list(self.upstream),
            "downstream": list(self.downstream),
        }


class ReferenceGraph:
    """Immutable downstream-pointing graph over all project identifiers."""

    __slots__ = (
        "_nodes",
        "_index",
        "_edges",
        "_children",
        "_parents",
        "_order",
        "_orphan_references",
    )

    def __init__(
        self,
        nodes: Sequence[GraphNode],
        edges: Iterable[tuple[int, int, EdgeKind]],
        orphan_references: Iterable[OrphanReference] = (),
    ) -> None:
        self._nodes: tuple[GraphNode, ...] = tuple(nodes)
        self._index: dict[str, int] = {node.id: position for position, node in enumerate(self._nodes)}
        if len(self._index) != len(self._nodes):
            raise ValueError("graph nodes must have unique identifiers")

        unique_edges: dict[tuple[int, int, EdgeKind], None] = {}
        for edge in edges:
            source, target, _kind = edge
            if not (0 <= source < len(self._nodes) and 0 <= target < len(self._nodes)):
                raise ValueError(f"edge {edge!r} references an unknown node position")
            unique_edges[edge] = None
        self._edges: tuple[tuple[int, int, EdgeKind], ...] = tuple(unique_edges)

        children: list[list[tuple[int, EdgeKind]]] = [[] for _ in self._nodes]
        parents: list[list[tuple[int, EdgeKind]]] = [[] for _ in self._nodes]
        for source, target, kind in self._edges:
            children[source].append((target, kind))
            parents[target].append((source, kind))
        self._children: tuple[tuple[tuple[int, EdgeKind], ...], ...] = tuple(
            tuple(item) for item in children
        )
        self._parents: tuple[tuple[tuple[int, EdgeKind], ...], ...] = tuple(
            tuple(item) for item in parents
        )
        self._orphan_references: tuple[OrphanReference, ...] = tuple(
            sorted(orphan_references, key=lambda ref: (ref.source, ref.field, ref.target))
        )
        self._order: tuple[str, ...] = self._topological_sort()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, documents: Iterable[Document]) -> ReferenceGraph:
        """
        Link ``documents`` into a graph.

        Raises ``DuplicateIdentifierError`` for an identifier declared twice,
        ``DanglingReferenceError`` for a reference to an unknown identifier
        (unless the referring entity is orphaned) and ``CycleError`` when the
        links form a cycle.
        """
        nodes: list[GraphNode] = []
        owners: dict[str, str] = {}
        for document in documents:
            for entity in document.entities:
                first = owners.get(entity.id)
                if first is not None:
                    raise DuplicateIdentifierError(
                        path=document.path,
                        location=entity.id,
                        identifier=entity.id,
                        other=first,
                    )
                owners[entity.id] = document.path
                nodes.append(
                    GraphNode(id=entity.id, kind=entity.category, entity=entity, path=document.path)
                )

        # Test identifiers only exist as leaves declared by tasks.
        for node in tuple(nodes):
            if isinstance(node.entity, Task):
                for test_id in node.entity.tests:
                    if test_id not in owners:
                        owners[test_id] = node.path or ""
                        nodes.append(GraphNode(id=test_id, kind=IdCategory.TEST, path=node.path))

        index = {node.id: position for position, node in enumerate(nodes)}
        edges: list[tuple[int, int, EdgeKind]] = []
        orphan_references: list[OrphanReference] = []
        for position, node in enumerate(nodes):
            entity = node.entity
            if entity is None:
                continue
            for field_name, target in entity.references():
                target_position = index.get(target)
                if target_position is None:
                    if _is_orphaned(entity):
                        orphan_references.append(
                            OrphanReference(source=entity.id, target=target, field=field_name)
                        )
                        continue
                    raise DanglingReferenceError(source=entity.id, target=target, field=field_name)
                edges.append(_edge_for(entity, field_name, position, target_position))
            if isinstance(entity, Task):
                for test_id in entity.tests:
                    edges.append((position, index[test_id], EdgeKind.VERIFIED_BY))

        return cls(nodes, edges, orphan_references)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> tuple[GraphNode, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[GraphEdge, ...]:
        """All edges in deterministic ``(source, target, kind)`` order."""
        resolved = (
            GraphEdge(self._nodes[source].id, self._nodes[target].id, kind)
            for source, target, kind in self._edges
        )
        return tuple(sorted(resolved, key=lambda edge: (edge.source, edge.target, edge.kind.value)))

    @property
    def orphan_references(self) -> tuple[OrphanReference, ...]:
        return self._orphan_references

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: str) -> GraphNode:
        return self._nodes[self._position(node_id)]

    def kind_of(self, node_id: str) -> IdCategory:
        return self.node(node_id).kind

    def entity(self, node_id: str) -> Entity | None:
        return self.node(node_id).entity

    def nodes_of(self, *kinds: IdCategory) -> tuple[GraphNode, ...]:
        wanted = set(kinds)
        return tuple(node for node in self._nodes if node.kind in wanted)

    def children(self, node_id: str, kind: EdgeKind | None = None) -> tuple[str, ...]:
        """Direct downstream neighbours, optionally restricted to one edge kind."""
        position = self._position(node_id)
        return tuple(
            sorted(
                self._nodes[target].id
                for target, edge_kind in self._children[position]
                if kind is None or edge_kind is kind
            )
        )

    def parents(self, node_id: str, kind: EdgeKind | None = None) -> tuple[str, ...]:
        """Direct upstream neighbours, optionally restricted to one edge kind."""
        position = self._position(node_id)
        return tuple(
            sorted(
                self._nodes[source].id
                for source, edge_kind in self._parents[position]
                if kind is None or edge_kind is kind
            )
        )

    def topological_order(self) -> tuple[str, ...]:
        return self._order

    def coverage(self, kind: CoverageKind | str) -> tuple[str, ...]:
        """
        Return the identifiers missing their downstream link.

        ``requirement``: F/NF requirements no live plan item implements.
        ``plan_item``: non-orphaned plan items without a live task.
        ``task``: non-orphaned tasks that declare no test.
        """
        resolved = CoverageKind(kind)
        missing: list[str] = []
        if resolved is CoverageKind.REQUIREMENT:
            for node in self.nodes_of(*sorted(REQUIREMENT_CATEGORIES)):
                if not self._live_neighbours(node.id, EdgeKind.IMPLEMENTS):
                    missing.append(node.id)
        elif resolved is CoverageKind.PLAN_ITEM:
            for node in self.nodes_of(IdCategory.PLAN_ITEM):
                if node.is_orphaned:
                    continue
                if not self._live_neighbours(node.id, EdgeKind.DERIVED_FROM):
                    missing.append(node.id)
        else:
            for node in self.nodes_of(IdCategory.TASK):
                if node.is_orphaned:
                    continue
                if not self.children(node.id, EdgeKind.VERIFIED_BY):
                    missing.append(node.id)
        return tuple(sorted(missing))

    def trace(self, node_id: str) -> TraceResult:
        """Upstream and downstream transitive closure of ``node_id``."""
        position = self._position(node_id)
        return TraceResult(
            id=node_id,
            kind=self._nodes[position].kind,
            upstream=self._closure(position, upstream=True),
            downstream=self._closure(position, upstream=False),
        )

    def to_dict(self) -> dict[str, object]:
        """Serialize to a stable JSON-friendly mapping."""
        return {
            "nodes": [
                {"id": node.id, "kind": node.kind.value}
                for node in sorted(self._nodes, key=lambda item: item.id)
            ],
            "edges": [edge.to_list() for edge in self.edges],
            "orphan_references": [
                {"source": ref.source, "target": ref.target, "field": ref.field}
                for ref in self._orphan_references
            ],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _position(self, node_id: str) -> int:
        try:
            return self._index[node_id]
        except KeyError:
            raise KeyError(f"Unknown node: {node_id}") from None

    def _live_neighbours(self, node_id: str, kind: EdgeKind) -> tuple[str, ...]:
        return tuple(
            child for child in self.children(node_id, kind) if not self.node(child).is_orphaned
        )

    def _closure(self, position: int, *, upstream: bool) -> tuple[str, ...]:
        adjacency = self._parents if upstream else self._children
        visited: set[int] = set()
        pending: list[int] = [neighbour for neighbour, _kind in adjacency[position]]

        while pending:
            current = pending.pop()
            if current in visited:
                continue
            visited.add(current)
            for neighbour, _kind in adjacency[current]:
                if neighbour not in visited:
                    pending.append(neighbour)

        return tuple(sorted(self._nodes[item].id for item in visited))

    def _sorted_children(self, position: int) -> list[str]:
        return sorted({self._nodes[target].id for target, _kind in self._children[position]})

    def _topological_sort(self) -> tuple[str, ...]:
        indegree: dict[str, int] = {node.id: 0 for node in self._nodes}
        for node in self._nodes:
            for child in self._sorted_children(self._index[node.id]):
                indegree[child] += 1
        ready: list[str] = [node_id for node_id, degree in indegree.items() if degree == 0]
        heapify(ready)

        order: list[str] = []
        while ready:
            node_id = heappop(ready)
            order.append(node_id)

            for child in self._sorted_children(self._index[node_id]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, child)

        if len(order) != len(self._nodes):
            raise CycleError(self._detect_cycles())

        return tuple(order)

    def _detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return canonical closed cycle paths, e.g. ``("F001", "F002", "F001")``."""
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._index):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = len(stack) - 1
            frames: list[tuple[str, Iterator[str]]] = [
                (start, iter(self._sorted_children(self._index[start])))
            ]

            while frames:
                node_id, child_iter = frames[-1]

                try:
                    child = next(child_iter)
                except StopIteration:
                    frames.pop()
                    state[node_id] = 2
                    stack.pop()
                    del stack_index[node_id]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, iter(self._sorted_children(self._index[child]))))
                    continue

                if child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))


def _edge_for(
    entity: Entity, field_name: str, position: int, target_position: int
) -> tuple[int, int, EdgeKind]:
    # Authored references point upstream; graph edges point downstream.
    if isinstance(entity, UserScenario):
        return (position, target_position, EdgeKind.MOTIVATES)
    if isinstance(entity, Task):
        return (target_position, position, EdgeKind.DERIVED_FROM)
    if isinstance(entity, PlanItem) and field_name == "implements":
        return (target_position, position, EdgeKind.IMPLEMENTS)
    if isinstance(entity, (PlanItem, Requirement)) and field_name == "depends_on":
        return (target_position, position, EdgeKind.DEPENDS_ON)
    raise ValueError(f"unsupported reference field {field_name!r} on {entity.id}")


def _is_orphaned(entity: Entity | None) -> bool:
    return isinstance(entity, (PlanItem, Task)) and entity.is_orphaned


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    if len(cycle) < 2:
        raise ValueError("Cycle path must contain at least two nodes.")

    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])

    best = core
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        if rotated < best:
            best = rotated

    return best + (best[0],)


__all__ = [
    "CoverageKind",
    "EdgeKind",
    "GraphEdge",
    "GraphNode",
    "OrphanReference",
    "ReferenceGraph",
    "TraceResult",
]
