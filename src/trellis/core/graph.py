"""In-memory knowledge graph store.

KnowledgeGraph keeps typed entities and directed relationships in memory,
maintains a directed adjacency list and answers lookups by linear scan.
Path search and similarity scoring live in graph_ops; the methods here that
expose them only delegate and report latency.
"""

import logging
import time
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from trellis.core import graph_ops
from trellis.core.types import (
    Edge,
    EdgeKind,
    GraphPath,
    GraphQuery,
    GraphStatistics,
    Node,
    NodeType,
    PathSearchResult,
    QueryResult,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

QueryObserver = Callable[[float], None]


def _matches(properties: dict[str, Any], criteria: dict[str, Any] | None) -> bool:
    if not criteria:
        return True
    return all(properties.get(key) == value for key, value in criteria.items())


class KnowledgeGraph:
    """Typed, directed multigraph held in memory.

    Nodes are keyed by id and edges by their derived ``source-type-target``
    id, so adding the same triple twice updates a single edge. Adding a node
    or edge that already exists replaces it and moves its lastUpdated
    timestamp strictly forward.

    Args:
        on_query: Called with the latency in milliseconds of every query
            and path search.
        clock: Source of the current time, for tests.
    """

    def __init__(
        self,
        on_query: QueryObserver | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._adjacency: dict[str, set[str]] = {}
        self._pairs: dict[tuple[str, str], list[str]] = {}
        self._on_query = on_query
        self._clock = clock or (lambda: datetime.now(UTC))

    def set_query_observer(self, on_query: QueryObserver | None) -> None:
        self._on_query = on_query

    def _stamp(self, previous: str | None) -> str:
        """Timestamp for an upsert, strictly later than the previous one."""
        now = self._clock()
        if previous:
            try:
                last = parse_timestamp(previous)
            except ValueError:
                last = None
            if last is not None and now <= last:
                now = last + timedelta(microseconds=1)
        return format_timestamp(now)

    def _observe(self, started: float) -> None:
        if self._on_query is not None:
            self._on_query((time.perf_counter() - started) * 1000)

    # Mutation

    def add_node(self, node: Node) -> Node:
        """Insert or replace a node.

        Returns:
            The stored node, with lastUpdated set.
        """
        previous = self._nodes.get(node.id)
        stored = Node(
            id=node.id,
            type=node.type,
            label=node.label,
            properties=dict(node.properties),
            weight=node.weight,
            last_updated=self._stamp(previous.last_updated if previous else None),
        )
        self._nodes[node.id] = stored
        self._adjacency.setdefault(node.id, set())
        return stored

    def add_edge(self, edge: Edge) -> Edge:
        """Insert or replace an edge keyed by source, type and target.

        Endpoints are not required to exist; dangling edges are reported by
        the integrity and health checks.

        Returns:
            The stored edge, with lastUpdated set.
        """
        previous = self._edges.get(edge.id)
        stored = Edge(
            source=edge.source,
            target=edge.target,
            type=edge.type,
            weight=edge.weight,
            confidence=edge.confidence,
            properties=dict(edge.properties),
            last_updated=self._stamp(previous.last_updated if previous else None),
        )
        if previous is None:
            self._pairs.setdefault((edge.source, edge.target), []).append(stored.id)
        self._edges[stored.id] = stored
        self._adjacency.setdefault(edge.source, set()).add(edge.target)
        self._adjacency.setdefault(edge.target, set())
        return stored

    def remove_edge(self, edge_id: str) -> bool:
        """Remove one edge. Returns False when it did not exist."""
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return False
        pair = (edge.source, edge.target)
        remaining = [eid for eid in self._pairs.get(pair, []) if eid != edge_id]
        if remaining:
            self._pairs[pair] = remaining
        else:
            self._pairs.pop(pair, None)
            self._adjacency.get(edge.source, set()).discard(edge.target)
        return True

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every edge touching it.

        Returns:
            False when the node did not exist.
        """
        if self._nodes.pop(node_id, None) is None:
            return False
        incident = [
            edge_id
            for edge_id, edge in self._edges.items()
            if edge.source == node_id or edge.target == node_id
        ]
        for edge_id in incident:
            self.remove_edge(edge_id)
        self._adjacency.pop(node_id, None)
        for neighbors in self._adjacency.values():
            neighbors.discard(node_id)
        logger.debug("Removed node %s and %d edges", node_id, len(incident))
        return True

    def load(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        """Replace the graph contents with stored records, keeping their timestamps."""
        self.clear()
        for node in nodes:
            self._nodes[node.id] = node
            self._adjacency.setdefault(node.id, set())
        for edge in edges:
            if edge.id not in self._edges:
                self._pairs.setdefault((edge.source, edge.target), []).append(edge.id)
            self._edges[edge.id] = edge
            self._adjacency.setdefault(edge.source, set()).add(edge.target)
            self._adjacency.setdefault(edge.target, set())

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()
        self._adjacency.clear()
        self._pairs.clear()

    # Lookup

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Edge | None:
        return self._edges.get(edge_id)

    def get_all_nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def get_all_edges(self) -> list[Edge]:
        return list(self._edges.values())

    def get_connections(self, node_id: str) -> list[str]:
        """IDs of nodes this node has an outgoing edge to."""
        return list(self._adjacency.get(node_id, ()))

    def find_edge(self, source_id: str, target_id: str) -> Edge | None:
        """First edge inserted from source to target, if any."""
        edge_ids = self._pairs.get((source_id, target_id))
        if not edge_ids:
            return None
        return self._edges[edge_ids[0]]

    def find_nodes(
        self,
        type: NodeType | None = None,
        properties: dict[str, Any] | None = None,
    ) -> list[Node]:
        """Nodes matching a type and exact property values."""
        return [
            node
            for node in self._nodes.values()
            if (type is None or node.type == type) and _matches(node.properties, properties)
        ]

    def find_node(
        self,
        type: NodeType | None = None,
        properties: dict[str, Any] | None = None,
    ) -> Node | None:
        """First node matching a type and exact property values."""
        for node in self._nodes.values():
            if (type is None or node.type == type) and _matches(node.properties, properties):
                return node
        return None

    def find_edges(
        self,
        source: str | None = None,
        target: str | None = None,
        type: EdgeKind | None = None,
        properties: dict[str, Any] | None = None,
    ) -> list[Edge]:
        """Edges matching any combination of endpoints, type and properties."""
        return [
            edge
            for edge in self._edges.values()
            if (source is None or edge.source == source)
            and (target is None or edge.target == target)
            and (type is None or edge.type == type)
            and _matches(edge.properties, properties)
        ]

    # Queries

    def query(self, query: GraphQuery, max_paths: int = 1000) -> QueryResult:
        """Filter nodes and edges, and enumerate paths when a start node is given."""
        started = time.perf_counter()
        nodes = list(self._nodes.values())
        edges = list(self._edges.values())

        if query.node_types is not None:
            nodes = [n for n in nodes if n.type in query.node_types]
        if query.edge_types is not None:
            edges = [e for e in edges if e.type in query.edge_types]
        if query.properties:
            nodes = [n for n in nodes if _matches(n.properties, query.properties)]
        if query.min_weight is not None:
            nodes = [n for n in nodes if n.weight >= query.min_weight]
            edges = [e for e in edges if e.weight >= query.min_weight]

        paths: tuple[GraphPath, ...] = ()
        if query.start_node and query.max_depth:
            result = graph_ops.find_paths(
                self,
                query.start_node,
                edge_types=query.edge_types,
                max_depth=query.max_depth,
                max_paths=max_paths,
            )
            paths = result.paths

        self._observe(started)
        return QueryResult(nodes=tuple(nodes), edges=tuple(edges), paths=paths)

    def find_path(self, source_id: str, target_id: str, max_depth: int = 5) -> GraphPath | None:
        """Breadth-first path from source to target. See graph_ops.find_path."""
        started = time.perf_counter()
        try:
            return graph_ops.find_path(self, source_id, target_id, max_depth)
        finally:
            self._observe(started)

    def find_paths(
        self,
        start_id: str,
        end_id: str | None = None,
        edge_types: Iterable[EdgeKind] | None = None,
        max_depth: int = 3,
        max_paths: int = 1000,
    ) -> PathSearchResult:
        """Depth-first path enumeration. See graph_ops.find_paths."""
        started = time.perf_counter()
        try:
            return graph_ops.find_paths(
                self,
                start_id,
                end_id,
                tuple(edge_types) if edge_types is not None else None,
                max_depth,
                max_paths,
            )
        finally:
            self._observe(started)

    def get_statistics(self) -> GraphStatistics:
        """Counts by type, mean out-degree and the ten most connected nodes."""
        nodes_by_type = Counter(node.type.value for node in self._nodes.values())
        edges_by_type = Counter(edge.type.value for edge in self._edges.values())
        degrees = sorted(
            ((node_id, len(neighbors)) for node_id, neighbors in self._adjacency.items()),
            key=lambda item: item[1],
            reverse=True,
        )
        average = sum(d for _, d in degrees) / len(degrees) if degrees else 0.0
        return GraphStatistics(
            node_count=len(self._nodes),
            edge_count=len(self._edges),
            nodes_by_type=dict(nodes_by_type),
            edges_by_type=dict(edges_by_type),
            average_connectivity=average,
            most_connected_nodes=tuple(degrees[:10]),
        )

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes
