"""Tests for the in-memory KnowledgeGraph."""

import pytest

from tests.conftest import FakeClock
from trellis.core.graph import KnowledgeGraph
from trellis.core.types import (
    CustomEdgeType,
    Edge,
    EdgeType,
    GraphQuery,
    Node,
    NodeType,
    parse_timestamp,
)


def _tech(node_id: str, **properties: object) -> Node:
    return Node(id=node_id, type=NodeType.TECHNOLOGY, label=node_id, properties=dict(properties))


class TestAddNode:
    """Tests for node upsert."""

    def test_add_node_sets_last_updated(self, graph: KnowledgeGraph) -> None:
        stored = graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="P1"))

        assert stored.last_updated == "2024-06-01T12:00:00.000000Z"
        assert graph.get_node("p1") == stored

    def test_upsert_replaces_and_advances_timestamp(
        self, graph: KnowledgeGraph, clock: FakeClock
    ) -> None:
        """Re-adding a node replaces it; lastUpdated strictly increases."""
        first = graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="Old"))
        clock.advance(seconds=5)
        second = graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="New"))

        assert len(graph) == 1
        assert graph.get_node("p1").label == "New"
        assert parse_timestamp(second.last_updated) > parse_timestamp(first.last_updated)

    def test_upsert_within_same_instant_still_advances(self, graph: KnowledgeGraph) -> None:
        """A frozen clock must not produce equal timestamps on upsert."""
        first = graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="P1"))
        second = graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="P1"))

        assert parse_timestamp(second.last_updated) > parse_timestamp(first.last_updated)


class TestAddEdge:
    """Tests for edge upsert and removal."""

    def test_same_triple_is_one_edge(self, graph: KnowledgeGraph) -> None:
        """Two edges with the same source, type and target collapse to one."""
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.USES, weight=1.0))
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.USES, weight=3.0))

        edges = graph.get_all_edges()
        assert len(edges) == 1
        assert edges[0].id == "A-uses-B"
        assert edges[0].weight == 3.0

    def test_different_types_are_distinct_edges(self, graph: KnowledgeGraph) -> None:
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.USES))
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.DEPENDS_ON))

        assert len(graph.get_all_edges()) == 2
        assert graph.find_edge("A", "B").type == EdgeType.USES
        assert graph.get_connections("A") == ["B"]

    def test_remove_one_of_parallel_edges_keeps_adjacency(self, graph: KnowledgeGraph) -> None:
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.USES))
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.DEPENDS_ON))

        assert graph.remove_edge("A-uses-B") is True

        assert graph.get_connections("A") == ["B"]
        assert graph.find_edge("A", "B").type == EdgeType.DEPENDS_ON

    def test_remove_last_edge_drops_adjacency(self, graph: KnowledgeGraph) -> None:
        graph.add_edge(Edge(source="A", target="B", type=EdgeType.USES))

        graph.remove_edge("A-uses-B")

        assert graph.get_connections("A") == []
        assert graph.remove_edge("A-uses-B") is False

    def test_custom_edge_type_is_queryable(self, graph: KnowledgeGraph) -> None:
        custom = CustomEdgeType("project_deployed_with:2024-01-01")
        graph.add_edge(Edge(source="p", target="t", type=custom))

        assert graph.find_edges(type=custom)[0].id == "p-project_deployed_with:2024-01-01-t"


class TestRemoveNode:
    """Tests for cascading node removal."""

    def test_remove_node_removes_incident_edges(self, graph: KnowledgeGraph) -> None:
        for node_id in ("a", "b", "c"):
            graph.add_node(_tech(node_id))
        graph.add_edge(Edge(source="a", target="b", type=EdgeType.DEPENDS_ON))
        graph.add_edge(Edge(source="b", target="c", type=EdgeType.DEPENDS_ON))
        graph.add_edge(Edge(source="a", target="c", type=EdgeType.DEPENDS_ON))

        assert graph.remove_node("b") is True

        assert "b" not in graph
        assert [e.id for e in graph.get_all_edges()] == ["a-depends_on-c"]
        assert graph.get_connections("a") == ["c"]

    def test_remove_missing_node_returns_false(self, graph: KnowledgeGraph) -> None:
        assert graph.remove_node("ghost") is False


class TestFindNodes:
    """Tests for node and edge lookup."""

    def test_find_nodes_by_type_and_properties(self, graph: KnowledgeGraph) -> None:
        graph.add_node(_tech("react", category="framework"))
        graph.add_node(_tech("python", category="language"))
        graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="p1"))

        found = graph.find_nodes(type=NodeType.TECHNOLOGY, properties={"category": "language"})

        assert [n.id for n in found] == ["python"]
        assert graph.find_node(type=NodeType.PROJECT).id == "p1"
        assert graph.find_node(properties={"category": "none"}) is None

    def test_find_edges_by_endpoint(self, project_graph: KnowledgeGraph) -> None:
        assert [e.id for e in project_graph.find_edges(source="p1")] == ["p1-uses-ts"]
        assert project_graph.find_edges(target="p1") == []


class TestQuery:
    """Tests for KnowledgeGraph.query()."""

    def test_filters_by_node_type_and_weight(self, graph: KnowledgeGraph) -> None:
        graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="p1", weight=0.2))
        graph.add_node(Node(id="p2", type=NodeType.PROJECT, label="p2", weight=0.9))
        graph.add_node(_tech("t"))

        result = graph.query(GraphQuery(node_types=(NodeType.PROJECT,), min_weight=0.5))

        assert [n.id for n in result.nodes] == ["p2"]

    def test_enumerates_paths_from_start_node(self, project_graph: KnowledgeGraph) -> None:
        result = project_graph.query(GraphQuery(start_node="p1", max_depth=2))

        assert len(result.paths) == 1
        assert [n.id for n in result.paths[0].nodes] == ["p1", "ts"]

    def test_reports_latency_to_observer(self, project_graph: KnowledgeGraph) -> None:
        samples: list[float] = []
        project_graph.set_query_observer(samples.append)

        project_graph.query(GraphQuery())
        project_graph.find_path("p1", "ts")

        assert len(samples) == 2
        assert all(s >= 0 for s in samples)


class TestStatistics:
    """Tests for get_statistics()."""

    def test_counts_and_connectivity(self, project_graph: KnowledgeGraph) -> None:
        stats = project_graph.get_statistics()

        assert stats.node_count == 2
        assert stats.edge_count == 1
        assert stats.nodes_by_type == {"project": 1, "technology": 1}
        assert stats.edges_by_type == {"uses": 1}
        assert stats.average_connectivity == pytest.approx(0.5)
        assert stats.most_connected_nodes[0] == ("p1", 1)

    def test_empty_graph(self, graph: KnowledgeGraph) -> None:
        stats = graph.get_statistics()

        assert stats.node_count == 0
        assert stats.average_connectivity == 0.0
