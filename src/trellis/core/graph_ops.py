"""Graph algorithms for Trellis.

Path search, similarity scoring and recommendation over a KnowledgeGraph.
This module must NOT import from cli/ or viz/ - it's pure graph logic.
"""

import logging
import math
import uuid
from collections import deque
from collections.abc import Collection, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from trellis.core.constants import (
    FEATURE_WEIGHT_COMPLEXITY,
    FEATURE_WEIGHT_FRAMEWORK,
    FEATURE_WEIGHT_LANGUAGE,
    FEATURE_WEIGHT_SIZE,
    QUERY_NODE_PREFIX,
)
from trellis.core.types import (
    Edge,
    EdgeKind,
    EdgeType,
    GraphPath,
    Node,
    NodeType,
    PathSearchResult,
    QueryResult,
    Recommendation,
    parse_timestamp,
)

if TYPE_CHECKING:
    from trellis.core.graph import KnowledgeGraph

logger = logging.getLogger(__name__)


def find_path(
    graph: "KnowledgeGraph",
    source_id: str,
    target_id: str,
    max_depth: int = 5,
) -> GraphPath | None:
    """Find the first path from source to target by breadth-first search.

    The first path to reach the target wins; it is not necessarily the
    heaviest or most confident. Weight is summed and confidence multiplied
    along the way.

    Args:
        graph: The graph to search.
        source_id: ID of the start node.
        target_id: ID of the node to reach.
        max_depth: Maximum number of nodes on the returned path.

    Returns:
        The path, or None when either node is missing or the target is
        not reachable within max_depth nodes.
    """
    source = graph.get_node(source_id)
    if source is None or graph.get_node(target_id) is None:
        return None

    visited: set[str] = set()
    queue: deque[tuple[str, GraphPath]] = deque([(source_id, GraphPath(nodes=(source,)))])

    while queue:
        node_id, path = queue.popleft()
        if node_id == target_id:
            return path
        if len(path.nodes) >= max_depth:
            continue

        visited.add(node_id)
        for neighbor_id in graph.get_connections(node_id):
            if neighbor_id in visited:
                continue
            edge = graph.find_edge(node_id, neighbor_id)
            neighbor = graph.get_node(neighbor_id)
            if edge is not None and neighbor is not None:
                queue.append((neighbor_id, path.extend(edge, neighbor)))

    return None


def find_paths(
    graph: "KnowledgeGraph",
    start_id: str,
    end_id: str | None = None,
    edge_types: Collection[EdgeKind] | None = None,
    max_depth: int = 3,
    max_paths: int = 1000,
) -> PathSearchResult:
    """Enumerate simple paths from a start node by depth-first search.

    Each branch carries its own copy of the visited set, so the number of
    paths can grow exponentially with depth. Enumeration stops once
    max_paths paths have been collected.

    Args:
        graph: The graph to search.
        start_id: ID of the start node.
        end_id: When set, only paths ending at this node are returned.
        edge_types: When set, only edges of these types are followed.
        max_depth: Maximum number of nodes per path, start node included.
        max_paths: Path budget.

    Returns:
        PathSearchResult whose truncated flag is set when the budget was hit.
    """
    start = graph.get_node(start_id)
    if start is None or max_depth < 1:
        return PathSearchResult()

    allowed = set(edge_types) if edge_types is not None else None
    paths: list[GraphPath] = []
    truncated = False

    def explore(node_id: str, path: GraphPath, visited: set[str]) -> None:
        nonlocal truncated
        if len(path.nodes) >= max_depth:
            return
        visited.add(node_id)
        for neighbor_id in graph.get_connections(node_id):
            if truncated:
                return
            if neighbor_id in visited:
                continue
            edge = _first_edge(graph, node_id, neighbor_id, allowed)
            neighbor = graph.get_node(neighbor_id)
            if edge is None or neighbor is None:
                continue

            extended = path.extend(edge, neighbor)
            if end_id is None or neighbor_id == end_id:
                if len(paths) >= max_paths:
                    truncated = True
                    return
                paths.append(extended)
            if neighbor_id != end_id:
                explore(neighbor_id, extended, set(visited))

    explore(start_id, GraphPath(nodes=(start,)), set())

    if truncated:
        logger.debug("Path enumeration from %s stopped at %d paths", start_id, max_paths)
    return PathSearchResult(paths=tuple(paths), truncated=truncated)


def _first_edge(
    graph: "KnowledgeGraph",
    source_id: str,
    target_id: str,
    allowed: set[EdgeKind] | None,
) -> Edge | None:
    if allowed is None:
        return graph.find_edge(source_id, target_id)
    for edge in graph.find_edges(source=source_id, target=target_id):
        if edge.type in allowed:
            return edge
    return None


def extract_neighborhood(
    graph: "KnowledgeGraph",
    focal_id: str,
    depth: int = 2,
) -> QueryResult:
    """Extract the subgraph within `depth` hops of a focal node.

    Edges are followed in both directions for neighborhood discovery.

    Args:
        graph: The full graph to extract from.
        focal_id: ID of the center node.
        depth: Maximum number of hops from focal node (default: 2).

    Returns:
        QueryResult with the neighborhood nodes and the edges among them.

    Raises:
        ValueError: If depth is negative.
        KeyError: If the focal node does not exist.
    """
    if depth < 0:
        raise ValueError("Depth must be non-negative")
    focal = graph.get_node(focal_id)
    if focal is None:
        raise KeyError(focal_id)

    adjacency: dict[str, set[str]] = {}
    for edge in graph.get_all_edges():
        adjacency.setdefault(edge.source, set()).add(edge.target)
        adjacency.setdefault(edge.target, set()).add(edge.source)

    visited: set[str] = {focal_id}
    queue: deque[tuple[str, int]] = deque([(focal_id, 0)])
    while queue:
        node_id, current_depth = queue.popleft()
        if current_depth >= depth:
            continue
        for neighbor_id in adjacency.get(node_id, set()):
            if neighbor_id not in visited:
                visited.add(neighbor_id)
                queue.append((neighbor_id, current_depth + 1))

    nodes = tuple(n for n in graph.get_all_nodes() if n.id in visited)
    edges = tuple(
        e for e in graph.get_all_edges() if e.source in visited and e.target in visited
    )
    return QueryResult(nodes=nodes, edges=edges)


def get_connected_technologies(graph: "KnowledgeGraph", project_id: str) -> set[str]:
    """IDs of technology nodes directly reachable from a project."""
    technologies = set()
    for neighbor_id in graph.get_connections(project_id):
        neighbor = graph.get_node(neighbor_id)
        if neighbor is not None and neighbor.type == NodeType.TECHNOLOGY:
            technologies.add(neighbor_id)
    return technologies


def calculate_project_similarity(graph: "KnowledgeGraph", project1: str, project2: str) -> float:
    """Jaccard similarity of the technologies two projects use.

    Returns:
        |A ∩ B| / |A ∪ B|, or 0.0 when neither project uses any technology.
    """
    techs1 = get_connected_technologies(graph, project1)
    techs2 = get_connected_technologies(graph, project2)
    union = techs1 | techs2
    if not union:
        return 0.0
    return len(techs1 & techs2) / len(union)


def compute_project_similarity(graph: "KnowledgeGraph", threshold: float = 0.7) -> int:
    """Insert similar_to edges between projects whose similarity exceeds threshold.

    Returns:
        Number of similar_to edges written.
    """
    projects = graph.find_nodes(type=NodeType.PROJECT)
    written = 0
    for i, first in enumerate(projects):
        for second in projects[i + 1 :]:
            similarity = calculate_project_similarity(graph, first.id, second.id)
            if similarity > threshold:
                graph.add_edge(
                    Edge(
                        source=first.id,
                        target=second.id,
                        type=EdgeType.SIMILAR_TO,
                        weight=similarity,
                        confidence=similarity,
                        properties={"similarity": similarity},
                    )
                )
                written += 1
    return written


def calculate_feature_similarity(features: Mapping[str, Any], properties: Mapping[str, Any]) -> float:
    """Weighted agreement between query features and a project's properties.

    Matching language scores 0.4, framework 0.3, size 0.2 and complexity 0.1.
    A field only counts when the query actually sets it.
    """
    score = 0.0
    for key, weight in (
        ("language", FEATURE_WEIGHT_LANGUAGE),
        ("framework", FEATURE_WEIGHT_FRAMEWORK),
        ("size", FEATURE_WEIGHT_SIZE),
        ("complexity", FEATURE_WEIGHT_COMPLEXITY),
    ):
        value = features.get(key)
        if value is not None and value == properties.get(key):
            score += weight
    return score


def find_similar_projects(
    graph: "KnowledgeGraph",
    features: Mapping[str, Any],
    threshold: float = 0.6,
    limit: int = 5,
    exclude: Collection[str] = (),
) -> list[Node]:
    """Projects whose properties best match the query features.

    Returns:
        Up to `limit` projects scoring above threshold, best first.
    """
    scored = []
    for project in graph.find_nodes(type=NodeType.PROJECT):
        if project.id in exclude:
            continue
        similarity = calculate_feature_similarity(features, project.properties)
        if similarity > threshold:
            scored.append((similarity, project))
    scored.sort(key=lambda item: item[0], reverse=True)
    return [project for _, project in scored[:limit]]


def generate_reasoning(path: GraphPath) -> tuple[str, ...]:
    """Describe each hop of a recommendation path in plain words."""
    reasoning = []
    for i, edge in enumerate(path.edges):
        source = path.nodes[i]
        target = path.nodes[i + 1]
        if edge.type == EdgeType.SIMILAR_TO:
            reasoning.append(f"Similar to {source.label} ({edge.confidence * 100:.0f}% similarity)")
        elif edge.type == EdgeType.RECOMMENDS:
            reasoning.append(f"Successfully used {target.label} (score: {edge.weight:.1f})")
        elif edge.type == EdgeType.RESULTS_IN:
            status = target.properties.get("status", "unknown")
            reasoning.append(f"Resulted in {status} deployment")
        elif edge.type == EdgeType.USES:
            reasoning.append(f"Uses {target.label}")
    return tuple(reasoning)


def calculate_path_confidence(
    path: GraphPath,
    now: datetime | None = None,
    decay_days: float = 30.0,
) -> float:
    """Rank a path by confidence, favouring short paths and recent nodes.

    confidence / max(hops, 1) * exp(-average_age_days / decay_days), capped at 1.
    Nodes without a parseable timestamp count as fresh.
    """
    if now is None:
        now = datetime.now(UTC)

    confidence = path.confidence / max(len(path.edges), 1)

    ages = []
    for node in path.nodes:
        try:
            updated = parse_timestamp(node.last_updated)
        except ValueError:
            updated = now
        ages.append(max((now - updated).total_seconds(), 0.0))
    if ages:
        average_days = sum(ages) / len(ages) / 86400
        confidence *= math.exp(-average_days / decay_days)

    return min(confidence, 1.0)


def get_graph_based_recommendation(
    graph: "KnowledgeGraph",
    features: Mapping[str, Any],
    candidates: Collection[str],
    similarity_threshold: float = 0.6,
    similar_limit: int = 5,
    decay_days: float = 30.0,
    max_depth: int = 5,
) -> list[Recommendation]:
    """Recommend candidate technologies reachable from similar projects.

    A temporary project node carrying the query features is inserted for
    the duration of the call under a fresh id, and always removed afterwards.

    Args:
        graph: The graph to search.
        features: Query project features (language, framework, size, complexity).
        candidates: Technology names; each maps to node ``tech:<name>``.
        similarity_threshold: Minimum feature similarity for a seed project.
        similar_limit: Maximum number of seed projects.
        decay_days: Age decay constant for path confidence.
        max_depth: Path length bound.

    Returns:
        Recommendations sorted by adjusted confidence, highest first.
    """
    query_id = f"{QUERY_NODE_PREFIX}:{uuid.uuid4().hex}"
    graph.add_node(
        Node(
            id=query_id,
            type=NodeType.PROJECT,
            label="Query Project",
            properties=dict(features),
        )
    )
    try:
        similar = find_similar_projects(
            graph,
            features,
            threshold=similarity_threshold,
            limit=similar_limit,
            exclude={query_id},
        )
        logger.debug("Found %d similar projects for recommendation", len(similar))

        now = datetime.now(UTC)
        recommendations = []
        for name in candidates:
            technology = graph.get_node(f"tech:{name}")
            if technology is None:
                continue
            for project in similar:
                path = graph.find_path(project.id, technology.id, max_depth)
                if path is None:
                    continue
                recommendations.append(
                    Recommendation(
                        technology=technology,
                        path=path,
                        reasoning=generate_reasoning(path),
                        confidence=calculate_path_confidence(path, now, decay_days),
                    )
                )
    finally:
        graph.remove_node(query_id)

    recommendations.sort(key=lambda r: r.confidence, reverse=True)
    return recommendations
