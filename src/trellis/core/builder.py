"""Mine an event log into the knowledge graph.

GraphBuilder turns analysis, recommendation and deployment events into
project, technology and outcome nodes, then derives similarity and
dependency relationships and reweights the graph from observed outcomes.
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from trellis.core import graph_ops
from trellis.core.config import DEFAULT_CONFIG, TrellisConfig
from trellis.core.constants import TECHNOLOGY_DEPENDENCIES
from trellis.core.graph import KnowledgeGraph
from trellis.core.types import Edge, EdgeType, MemoryEntry, Node, NodeType

logger = logging.getLogger(__name__)

# Static popularity prior for well-known technologies
TECHNOLOGY_POPULARITY: dict[str, float] = {
    "javascript": 0.9,
    "typescript": 0.8,
    "python": 0.8,
    "react": 0.9,
    "vue": 0.7,
    "angular": 0.6,
    "go": 0.7,
    "ruby": 0.5,
    "rust": 0.6,
}
DEFAULT_POPULARITY = 0.3


def technology_popularity(name: str) -> float:
    return TECHNOLOGY_POPULARITY.get(name.lower(), DEFAULT_POPULARITY)


def _nested(data: dict, key: str, field: str) -> Any:
    """Return data[key][field], or None when data[key] is not a mapping."""
    section = data.get(key)
    if not isinstance(section, dict):
        if section is not None:
            logger.debug("Ignoring non-mapping %s value: %r", key, section)
        return None
    return section.get(field)


@dataclass(frozen=True)
class BuildSummary:
    """What a build pass added to the graph."""

    entries_processed: int
    node_count: int
    edge_count: int
    similarity_edges: int
    dependency_edges: int


class GraphBuilder:
    """Build a KnowledgeGraph from event log entries.

    Node and edge ids follow ``project:<id>``, ``tech:<name>`` and
    ``outcome:<status>:<ssg>``, so rebuilding from the same log upserts the
    same records.
    """

    def __init__(self, graph: KnowledgeGraph, config: TrellisConfig = DEFAULT_CONFIG) -> None:
        self.graph = graph
        self.config = config

    def build(self, entries: Iterable[MemoryEntry]) -> BuildSummary:
        """Process entries in timestamp order, then derive relationships.

        Returns:
            Summary of the resulting graph.
        """
        ordered = sorted(entries, key=lambda entry: entry.moment)
        for entry in ordered:
            self.process_entry(entry)

        similarity_edges = graph_ops.compute_project_similarity(
            self.graph, self.config.similarity_threshold
        )
        dependency_edges = self._compute_technology_dependencies()
        self._strengthen_success_patterns()
        self._update_weights()

        stats = self.graph.get_statistics()
        logger.info(
            "Built graph from %d entries: %d nodes, %d edges",
            len(ordered),
            stats.node_count,
            stats.edge_count,
        )
        return BuildSummary(
            entries_processed=len(ordered),
            node_count=stats.node_count,
            edge_count=stats.edge_count,
            similarity_edges=similarity_edges,
            dependency_edges=dependency_edges,
        )

    def process_entry(self, entry: MemoryEntry) -> None:
        """Extract nodes and edges from one entry. Entries without a project are ignored."""
        project_id = entry.project_id
        if not project_id:
            return

        data = entry.data
        language = _nested(data, "language", "primary")
        framework = _nested(data, "framework", "name")

        # Later entries must not erase features learned from earlier ones
        existing = self.graph.get_node(f"project:{project_id}")
        properties = dict(existing.properties) if existing else {}
        if entry.metadata.get("repository") or "repository" not in properties:
            properties["repository"] = entry.metadata.get("repository")
        properties["lastActivity"] = entry.timestamp
        if entry.type == "analysis" and language:
            properties["language"] = language
        if framework:
            properties["framework"] = framework

        project = self.graph.add_node(
            Node(
                id=f"project:{project_id}",
                type=NodeType.PROJECT,
                label=project_id,
                properties=properties,
            )
        )

        if entry.type == "analysis" and language:
            self._link_technology(
                project.id,
                language,
                {"category": "language", "popularity": technology_popularity(language)},
                confidence=0.9,
            )

        if framework:
            self._link_technology(
                project.id,
                framework,
                {"category": "framework", "version": _nested(data, "framework", "version")},
                confidence=0.8,
            )

        recommended = data.get("recommended")
        if entry.type == "recommendation" and recommended:
            technology = self.graph.add_node(
                Node(
                    id=f"tech:{recommended}",
                    type=NodeType.TECHNOLOGY,
                    label=recommended,
                    properties={"category": "ssg", "score": data.get("score")},
                )
            )
            self.graph.add_edge(
                Edge(
                    source=project.id,
                    target=technology.id,
                    type=EdgeType.RECOMMENDS,
                    weight=data.get("score") or 1.0,
                    confidence=data.get("confidence") or 0.5,
                    properties={"source": "recommendation", "reasoning": data.get("reasoning")},
                )
            )

        if entry.type == "deployment":
            status = data.get("status")
            ssg = entry.metadata.get("ssg")
            outcome = self.graph.add_node(
                Node(
                    id=f"outcome:{status}:{ssg}",
                    type=NodeType.OUTCOME,
                    label=f"{status} with {ssg}",
                    properties={"status": status, "ssg": ssg, "duration": data.get("duration")},
                    weight=1.0 if status == "success" else 0.5,
                )
            )
            self.graph.add_edge(
                Edge(
                    source=project.id,
                    target=outcome.id,
                    type=EdgeType.RESULTS_IN,
                    properties={"timestamp": entry.timestamp, "details": data.get("details")},
                )
            )

    def _link_technology(
        self,
        project_id: str,
        name: str,
        properties: dict,
        confidence: float,
    ) -> None:
        technology = self.graph.add_node(
            Node(id=f"tech:{name}", type=NodeType.TECHNOLOGY, label=name, properties=properties)
        )
        self.graph.add_edge(
            Edge(
                source=project_id,
                target=technology.id,
                type=EdgeType.USES,
                confidence=confidence,
                properties={"source": "analysis"},
            )
        )

    def _compute_technology_dependencies(self) -> int:
        written = 0
        for technology, dependencies in TECHNOLOGY_DEPENDENCIES.items():
            source_id = f"tech:{technology}"
            if source_id not in self.graph:
                continue
            for dependency in dependencies:
                target_id = f"tech:{dependency}"
                if target_id not in self.graph:
                    continue
                self.graph.add_edge(
                    Edge(
                        source=source_id,
                        target=target_id,
                        type=EdgeType.DEPENDS_ON,
                        weight=0.8,
                        confidence=0.9,
                        properties={"computed": True, "dependency_type": "runtime"},
                    )
                )
                written += 1
        return written

    def _strengthen_success_patterns(self) -> None:
        """Boost recommends edges that led to a successful deployment."""
        successes = self.graph.find_nodes(type=NodeType.OUTCOME, properties={"status": "success"})
        for outcome in successes:
            ssg = outcome.properties.get("ssg")
            for incoming in self.graph.find_edges(target=outcome.id):
                source = self.graph.get_node(incoming.source)
                if source is None or source.type != NodeType.PROJECT:
                    continue
                edge = self.graph.get_edge(f"{source.id}-{EdgeType.RECOMMENDS.value}-tech:{ssg}")
                if edge is None:
                    continue
                self.graph.add_edge(
                    Edge(
                        source=edge.source,
                        target=edge.target,
                        type=edge.type,
                        weight=min(edge.weight * 1.2, 2.0),
                        confidence=min(edge.confidence * 1.1, 1.0),
                        properties=edge.properties,
                    )
                )

    def _update_weights(self) -> None:
        """Scale node weight by out-degree and recommends edges by success rate."""
        for node in self.graph.get_all_nodes():
            connections = len(self.graph.get_connections(node.id))
            self.graph.add_node(
                Node(
                    id=node.id,
                    type=node.type,
                    label=node.label,
                    properties=node.properties,
                    weight=math.log10(connections + 1),
                )
            )

        for edge in self.graph.find_edges(type=EdgeType.RECOMMENDS):
            target = self.graph.get_node(edge.target)
            if target is None or target.type != NodeType.TECHNOLOGY:
                continue
            success_rate = self.success_rate(target.id)
            if success_rate == 0:
                continue
            self.graph.add_edge(
                Edge(
                    source=edge.source,
                    target=edge.target,
                    type=edge.type,
                    weight=edge.weight * (1 + success_rate),
                    confidence=edge.confidence,
                    properties=edge.properties,
                )
            )

    def success_rate(self, technology_id: str) -> float:
        """Fraction of deployment outcomes with this technology that succeeded."""
        name = technology_id.removeprefix("tech:")
        outcomes = self.graph.find_nodes(type=NodeType.OUTCOME, properties={"ssg": name})
        if not outcomes:
            return 0.0
        successes = sum(1 for o in outcomes if o.properties.get("status") == "success")
        return successes / len(outcomes)
