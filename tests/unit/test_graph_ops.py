"""Tests for graph algorithms: path search, similarity and recommendation."""

from datetime import UTC, datetime, timedelta

import pytest

from trellis.core.constants import QUERY_NODE_PREFIX
from trellis.core.graph import KnowledgeGraph
from trellis.core.graph_ops import (
    calculate_feature_similarity,
    calculate_path_confidence,
    calculate_project_similarity,
    compute_project_similarity,
    extract_neighborhood,
    find_path,
    find_paths,
    find_similar_projects,
    generate_reasoning,
    get_graph_based_recommendation,
)
from trellis.core.types import Edge, EdgeType, GraphPath, Node, NodeType, format_timestamp


def _chain(graph: KnowledgeGraph, ids: list[str]) -> None:
    """Add nodes and a depends_on chain ids[0] -> ids[1] -> ..."""
    for node_id in ids:
        graph.add_node(Node(id=node_id, type=NodeType.TECHNOLOGY, label=node_id))
    for source, target in zip(ids, ids[1:], strict=False):
        graph.add_edge(Edge(source=source, target=target, type=EdgeType.DEPENDS_ON))


def _project(graph: KnowledgeGraph, project_id: str, techs: list[str], **props: object) -> None:
    graph.add_node(Node(id=project_id, type=NodeType.PROJECT, label=project_id, properties=props))
    for tech in techs:
        graph.add_node(Node(id=tech, type=NodeType.TECHNOLOGY, label=tech))
        graph.add_edge(Edge(source=project_id, target=tech, type=EdgeType.USES))


class TestFindPath:
    """Tests for breadth-first find_path()."""

    def test_single_hop_path(self, project_graph: KnowledgeGraph) -> None:
        """p1 -uses-> ts gives a 2-node path with the edge's confidence."""
        path = find_path(project_graph, "p1", "ts")

        assert path is not None
        assert [n.id for n in path.nodes] == ["p1", "ts"]
        assert path.confidence == pytest.approx(0.9)
        assert path.total_weight == pytest.approx(1.0)

    def test_source_equals_target(self, project_graph: KnowledgeGraph) -> None:
        path = find_path(project_graph, "p1", "p1")

        assert path is not None
        assert len(path.nodes) == 1
        assert path.edges == ()

    def test_missing_endpoint_returns_none(self, project_graph: KnowledgeGraph) -> None:
        assert find_path(project_graph, "p1", "ghost") is None
        assert find_path(project_graph, "ghost", "p1") is None

    def test_direction_is_respected(self, project_graph: KnowledgeGraph) -> None:
        assert find_path(project_graph, "ts", "p1") is None

    def test_max_depth_bounds_nodes(self, graph: KnowledgeGraph) -> None:
        """A chain of 4 nodes is found with max_depth 4 but not 3."""
        _chain(graph, ["a", "b", "c", "d"])

        assert find_path(graph, "a", "d", max_depth=3) is None
        path = find_path(graph, "a", "d", max_depth=4)
        assert path is not None
        assert len(path.nodes) == 4

    def test_finds_shortest_in_hops(self, graph: KnowledgeGraph) -> None:
        _chain(graph, ["a", "b", "c"])
        graph.add_edge(Edge(source="a", target="c", type=EdgeType.DEPENDS_ON))

        path = find_path(graph, "a", "c")

        assert [n.id for n in path.nodes] == ["a", "c"]

    def test_cycles_terminate(self, graph: KnowledgeGraph) -> None:
        _chain(graph, ["a", "b", "c"])
        graph.add_edge(Edge(source="c", target="a", type=EdgeType.DEPENDS_ON))
        graph.add_node(Node(id="z", type=NodeType.TECHNOLOGY, label="z"))

        assert find_path(graph, "a", "z", max_depth=10) is None


class TestFindPaths:
    """Tests for depth-first path enumeration."""

    def test_enumerates_all_prefixes_from_start(self, graph: KnowledgeGraph) -> None:
        _chain(graph, ["a", "b", "c"])

        result = find_paths(graph, "a", max_depth=3)

        ends = sorted(p.nodes[-1].id for p in result.paths)
        assert ends == ["b", "c"]
        assert max(len(p.nodes) for p in result.paths) == 3
        assert all(p.nodes[0].id == "a" for p in result.paths)
        assert result.truncated is False

    def test_max_depth_bounds_nodes(self, graph: KnowledgeGraph) -> None:
        """max_depth counts nodes, the same way find_path does."""
        _chain(graph, ["a", "b", "c", "d"])

        result = find_paths(graph, "a", max_depth=2)

        assert [tuple(n.id for n in p.nodes) for p in result.paths] == [("a", "b")]

    def test_same_depth_as_find_path(self, graph: KnowledgeGraph) -> None:
        _chain(graph, ["a", "b", "c"])

        longest = max(len(p.nodes) for p in find_paths(graph, "a", max_depth=3).paths)
        path = find_path(graph, "a", "c", max_depth=3)

        assert path is not None
        assert longest == len(path.nodes) == 3

    def test_end_node_filters_paths(self, graph: KnowledgeGraph) -> None:
        """Two routes a->b->d and a->c->d are both found."""
        _chain(graph, ["a", "b", "d"])
        graph.add_node(Node(id="c", type=NodeType.TECHNOLOGY, label="c"))
        graph.add_edge(Edge(source="a", target="c", type=EdgeType.DEPENDS_ON))
        graph.add_edge(Edge(source="c", target="d", type=EdgeType.DEPENDS_ON))

        result = find_paths(graph, "a", end_id="d", max_depth=3)

        routes = sorted(tuple(n.id for n in p.nodes) for p in result.paths)
        assert routes == [("a", "b", "d"), ("a", "c", "d")]

    def test_edge_type_filter(self, graph: KnowledgeGraph) -> None:
        _project(graph, "p", ["t"])
        graph.add_node(Node(id="o", type=NodeType.OUTCOME, label="o"))
        graph.add_edge(Edge(source="p", target="o", type=EdgeType.RESULTS_IN))

        result = find_paths(graph, "p", edge_types=[EdgeType.RESULTS_IN], max_depth=2)

        assert [p.nodes[-1].id for p in result.paths] == ["o"]

    def test_budget_truncates(self, graph: KnowledgeGraph) -> None:
        """A dense graph with a small budget stops at exactly the budget."""
        ids = [f"n{i}" for i in range(6)]
        for node_id in ids:
            graph.add_node(Node(id=node_id, type=NodeType.TECHNOLOGY, label=node_id))
        for source in ids:
            for target in ids:
                if source != target:
                    graph.add_edge(Edge(source=source, target=target, type=EdgeType.REFERENCES))

        result = find_paths(graph, "n0", max_depth=4, max_paths=10)

        assert len(result.paths) == 10
        assert result.truncated is True

    def test_missing_start_returns_empty(self, graph: KnowledgeGraph) -> None:
        result = find_paths(graph, "ghost")

        assert result.paths == ()
        assert result.truncated is False


class TestExtractNeighborhood:
    """Tests for undirected neighborhood extraction."""

    def test_depth_zero_returns_focal_only(self, project_graph: KnowledgeGraph) -> None:
        result = extract_neighborhood(project_graph, "p1", depth=0)

        assert [n.id for n in result.nodes] == ["p1"]
        assert result.edges == ()

    def test_follows_incoming_edges(self, project_graph: KnowledgeGraph) -> None:
        result = extract_neighborhood(project_graph, "ts", depth=1)

        assert {n.id for n in result.nodes} == {"p1", "ts"}
        assert len(result.edges) == 1

    def test_depth_limits_hops(self, graph: KnowledgeGraph) -> None:
        _chain(graph, ["a", "b", "c", "d"])

        result = extract_neighborhood(graph, "a", depth=2)

        assert {n.id for n in result.nodes} == {"a", "b", "c"}

    def test_negative_depth_raises(self, project_graph: KnowledgeGraph) -> None:
        with pytest.raises(ValueError):
            extract_neighborhood(project_graph, "p1", depth=-1)

    def test_missing_focal_raises(self, project_graph: KnowledgeGraph) -> None:
        with pytest.raises(KeyError):
            extract_neighborhood(project_graph, "ghost")


class TestProjectSimilarity:
    """Tests for Jaccard technology similarity."""

    def test_jaccard_ratio(self, graph: KnowledgeGraph) -> None:
        """Similarity is shared technologies over all technologies used."""
        _project(graph, "p1", ["ts", "react"])
        _project(graph, "p2", ["ts", "react", "vue"])
        _project(graph, "p3", ["ts", "vue"])

        assert calculate_project_similarity(graph, "p1", "p2") == pytest.approx(2 / 3)
        assert calculate_project_similarity(graph, "p1", "p3") == pytest.approx(1 / 3)

    def test_shared_technologies_score_half(self, graph: KnowledgeGraph) -> None:
        """Two shared technologies out of four gives 0.5."""
        _project(graph, "p1", ["ts", "react"])
        _project(graph, "p2", ["ts", "react", "vue", "go"])

        assert calculate_project_similarity(graph, "p1", "p2") == pytest.approx(0.5)

    def test_no_technologies_scores_zero(self, graph: KnowledgeGraph) -> None:
        _project(graph, "p1", [])
        _project(graph, "p2", [])

        assert calculate_project_similarity(graph, "p1", "p2") == 0.0

    def test_compute_adds_similar_to_above_threshold(self, graph: KnowledgeGraph) -> None:
        _project(graph, "p1", ["ts", "react"])
        _project(graph, "p2", ["ts", "react"])
        _project(graph, "p3", ["go"])

        written = compute_project_similarity(graph, threshold=0.7)

        assert written == 1
        edge = graph.find_edges(type=EdgeType.SIMILAR_TO)[0]
        assert (edge.source, edge.target) == ("p1", "p2")
        assert edge.confidence == pytest.approx(1.0)


class TestFeatureSimilarity:
    """Tests for weighted feature similarity."""

    def test_language_and_framework_match(self) -> None:
        score = calculate_feature_similarity(
            {"language": "typescript", "framework": "react"},
            {"language": "typescript", "framework": "react", "size": "large"},
        )

        assert score == pytest.approx(0.7)

    def test_unset_query_fields_do_not_count(self) -> None:
        assert calculate_feature_similarity({}, {"language": None}) == 0.0

    def test_find_similar_projects_excludes_and_ranks(self, graph: KnowledgeGraph) -> None:
        _project(graph, "exact", [], language="ts", framework="react")
        _project(graph, "partial", [], language="ts")
        _project(graph, "query", [], language="ts", framework="react")

        similar = find_similar_projects(
            graph, {"language": "ts", "framework": "react"}, threshold=0.6, exclude={"query"}
        )

        assert [p.id for p in similar] == ["exact"]


class TestPathConfidence:
    """Tests for recommendation path scoring."""

    def test_fresh_single_hop_keeps_confidence(self) -> None:
        now = datetime(2024, 1, 1, tzinfo=UTC)
        stamp = format_timestamp(now)
        a = Node(id="a", type=NodeType.PROJECT, label="a", last_updated=stamp)
        b = Node(id="b", type=NodeType.TECHNOLOGY, label="b", last_updated=stamp)
        path = GraphPath(nodes=(a,)).extend(Edge("a", "b", EdgeType.USES, confidence=0.8), b)

        assert calculate_path_confidence(path, now=now) == pytest.approx(0.8)

    def test_age_decays_confidence(self) -> None:
        now = datetime(2024, 1, 31, tzinfo=UTC)
        stamp = format_timestamp(now - timedelta(days=30))
        a = Node(id="a", type=NodeType.PROJECT, label="a", last_updated=stamp)
        b = Node(id="b", type=NodeType.TECHNOLOGY, label="b", last_updated=stamp)
        path = GraphPath(nodes=(a,)).extend(Edge("a", "b", EdgeType.USES, confidence=1.0), b)

        confidence = calculate_path_confidence(path, now=now, decay_days=30)

        assert confidence == pytest.approx(0.3679, abs=1e-3)


class TestRecommendation:
    """Tests for graph-based recommendation."""

    def _graph(self, graph: KnowledgeGraph) -> KnowledgeGraph:
        graph.add_node(
            Node(
                id="project:a",
                type=NodeType.PROJECT,
                label="a",
                properties={"language": "typescript", "framework": "react"},
            )
        )
        graph.add_node(Node(id="tech:docusaurus", type=NodeType.TECHNOLOGY, label="docusaurus"))
        graph.add_node(Node(id="tech:hugo", type=NodeType.TECHNOLOGY, label="hugo"))
        graph.add_edge(
            Edge(
                source="project:a",
                target="tech:docusaurus",
                type=EdgeType.RECOMMENDS,
                weight=0.9,
                confidence=0.8,
            )
        )
        return graph

    def test_recommends_reachable_candidate(self, graph: KnowledgeGraph) -> None:
        self._graph(graph)

        recommendations = get_graph_based_recommendation(
            graph,
            {"language": "typescript", "framework": "react"},
            ["docusaurus", "hugo", "unknown"],
        )

        assert [r.technology.id for r in recommendations] == ["tech:docusaurus"]
        assert recommendations[0].reasoning == ("Successfully used docusaurus (score: 0.9)",)

    def test_query_node_is_removed(self, graph: KnowledgeGraph) -> None:
        self._graph(graph)

        before = {n.id for n in graph.get_all_nodes()}

        get_graph_based_recommendation(graph, {"language": "typescript"}, ["docusaurus"])

        assert {n.id for n in graph.get_all_nodes()} == before
        assert not any(n.id.startswith(QUERY_NODE_PREFIX) for n in graph.get_all_nodes())

    def test_existing_node_with_prefix_id_survives(self, graph: KnowledgeGraph) -> None:
        self._graph(graph)
        _project(graph, QUERY_NODE_PREFIX, ["tech:docusaurus"], language="typescript")
        edge_count = len(graph.get_all_edges())

        get_graph_based_recommendation(graph, {"language": "typescript"}, ["docusaurus"])

        assert QUERY_NODE_PREFIX in graph
        assert len(graph.get_all_edges()) == edge_count

    def test_reasoning_describes_hops(self) -> None:
        a = Node(id="a", type=NodeType.PROJECT, label="A")
        b = Node(id="b", type=NodeType.PROJECT, label="B")
        o = Node(id="o", type=NodeType.OUTCOME, label="o", properties={"status": "success"})
        path = (
            GraphPath(nodes=(a,))
            .extend(Edge("a", "b", EdgeType.SIMILAR_TO, confidence=0.75), b)
            .extend(Edge("b", "o", EdgeType.RESULTS_IN), o)
        )

        assert generate_reasoning(path) == (
            "Similar to A (75% similarity)",
            "Resulted in success deployment",
        )
