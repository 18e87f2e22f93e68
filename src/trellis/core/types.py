"""Core data types for Trellis.

These types define the knowledge graph schema, the query and path
structures built on top of it, and the event log records it is mined from.
Graph records are immutable dataclasses; upserts replace the stored instance.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal


class NodeType(str, Enum):
    """Entity types that may appear in the knowledge graph."""

    PROJECT = "project"
    TECHNOLOGY = "technology"
    PATTERN = "pattern"
    USER = "user"
    OUTCOME = "outcome"
    RECOMMENDATION = "recommendation"
    CONFIGURATION = "configuration"
    DOCUMENTATION = "documentation"
    CODE_FILE = "code_file"
    DOCUMENTATION_SECTION = "documentation_section"
    LINK_VALIDATION = "link_validation"
    SYNC_EVENT = "sync_event"
    DOCUMENTATION_FRESHNESS_EVENT = "documentation_freshness_event"
    DOCUMENTATION_EXAMPLE = "documentation_example"
    EXAMPLE_VALIDATION = "example_validation"
    CALL_GRAPH = "call_graph"


class EdgeType(str, Enum):
    """Well-known relationship types."""

    USES = "uses"
    SIMILAR_TO = "similar_to"
    DEPENDS_ON = "depends_on"
    RECOMMENDS = "recommends"
    RESULTS_IN = "results_in"
    CREATED_BY = "created_by"
    PROJECT_USES_TECHNOLOGY = "project_uses_technology"
    USER_PREFERS_SSG = "user_prefers_ssg"
    PROJECT_DEPLOYED_WITH = "project_deployed_with"
    DOCUMENTS = "documents"
    REFERENCES = "references"
    OUTDATED_FOR = "outdated_for"
    HAS_LINK_VALIDATION = "has_link_validation"
    REQUIRES_FIX = "requires_fix"
    PROJECT_HAS_FRESHNESS_EVENT = "project_has_freshness_event"
    HAS_EXAMPLE = "has_example"
    VALIDATES = "validates"
    HAS_CALL_GRAPH = "has_call_graph"


@dataclass(frozen=True)
class CustomEdgeType:
    """A relationship type outside the EdgeType enum.

    Covers application-defined subtypes such as
    ``project_deployed_with:2024-01-01``.
    """

    value: str

    def __str__(self) -> str:
        return self.value


EdgeKind = EdgeType | CustomEdgeType

_EDGE_TYPE_VALUES: frozenset[str] = frozenset(t.value for t in EdgeType)


def parse_edge_type(value: str | EdgeKind) -> EdgeKind:
    """Map a raw relationship type to EdgeType or CustomEdgeType.

    Args:
        value: Raw string, or an already parsed edge kind.

    Returns:
        The enum member when the value is well-known, a CustomEdgeType otherwise.

    Examples:
        >>> parse_edge_type("uses")
        <EdgeType.USES: 'uses'>
        >>> parse_edge_type("project_deployed_with:2024-01-01")
        CustomEdgeType(value='project_deployed_with:2024-01-01')
    """
    if isinstance(value, (EdgeType, CustomEdgeType)):
        return value
    if value in _EDGE_TYPE_VALUES:
        return EdgeType(value)
    return CustomEdgeType(value)


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with microseconds and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts the trailing ``Z`` form written by JavaScript and by this package.
    Naive values are treated as UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp.
    """
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return format_timestamp(datetime.now(UTC))


@dataclass(frozen=True)
class Node:
    """An entity in the knowledge graph.

    Attributes:
        id: Unique identifier, namespaced by convention (``project:<id>``, ``tech:<name>``).
        type: The entity type.
        label: Human-readable label.
        properties: Free-form attributes.
        weight: Importance of the node, recomputed from connectivity.
        last_updated: ISO-8601 timestamp of the last upsert.
    """

    id: str
    type: NodeType
    label: str
    properties: dict[str, Any] = field(default_factory=dict)
    weight: float = 1.0
    last_updated: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk record shape."""
        return {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "properties": self.properties,
            "weight": self.weight,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        """Deserialize an on-disk record.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If the entity type is unknown.
        """
        return cls(
            id=data["id"],
            type=NodeType(data["type"]),
            label=data["label"],
            properties=data.get("properties") or {},
            weight=float(data.get("weight", 1.0)),
            last_updated=data.get("lastUpdated", ""),
        )


@dataclass(frozen=True)
class Edge:
    """A directed relationship between two nodes.

    The identifier is derived from source, type and target, so two edges
    with the same triple are the same edge.

    Attributes:
        source: ID of the source node.
        target: ID of the target node.
        type: Relationship type.
        weight: Strength of the relationship.
        confidence: Confidence score, nominally in [0, 1].
        properties: Free-form attributes.
        last_updated: ISO-8601 timestamp of the last upsert.
    """

    source: str
    target: str
    type: EdgeKind
    weight: float = 1.0
    confidence: float = 1.0
    properties: dict[str, Any] = field(default_factory=dict)
    last_updated: str = ""

    @property
    def id(self) -> str:
        return f"{self.source}-{self.type.value}-{self.target}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk record shape."""
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
            "weight": self.weight,
            "confidence": self.confidence,
            "properties": self.properties,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Edge":
        """Deserialize an on-disk record. The stored ``id`` is ignored.

        Raises:
            KeyError: If a required field is missing.
        """
        return cls(
            source=data["source"],
            target=data["target"],
            type=parse_edge_type(data["type"]),
            weight=float(data.get("weight", 1.0)),
            confidence=float(data.get("confidence", 1.0)),
            properties=data.get("properties") or {},
            last_updated=data.get("lastUpdated", ""),
        )


@dataclass(frozen=True)
class GraphPath:
    """A walk through the graph.

    Attributes:
        nodes: Nodes visited, starting with the source.
        edges: Edges traversed; always one fewer than nodes.
        total_weight: Sum of edge weights.
        confidence: Product of edge confidences.
    """

    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...] = ()
    total_weight: float = 0.0
    confidence: float = 1.0

    def extend(self, edge: Edge, node: Node) -> "GraphPath":
        """Return a new path with one more hop."""
        return GraphPath(
            nodes=(*self.nodes, node),
            edges=(*self.edges, edge),
            total_weight=self.total_weight + edge.weight,
            confidence=self.confidence * edge.confidence,
        )


@dataclass(frozen=True)
class PathSearchResult:
    """Paths enumerated from a start node.

    Attributes:
        paths: The paths found, in discovery order.
        truncated: True when enumeration stopped at the path budget.
    """

    paths: tuple[GraphPath, ...] = ()
    truncated: bool = False


@dataclass(frozen=True)
class GraphQuery:
    """Filter over nodes and edges, optionally with path enumeration.

    Attributes:
        node_types: Keep only nodes of these types (all when None).
        edge_types: Keep only edges of these types (all when None).
        properties: Exact-match property filters applied to nodes.
        min_weight: Drop nodes lighter than this.
        start_node: Enumerate paths from this node when max_depth is set.
        max_depth: Depth bound for path enumeration.
    """

    node_types: tuple[NodeType, ...] | None = None
    edge_types: tuple[EdgeKind, ...] | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    min_weight: float | None = None
    start_node: str | None = None
    max_depth: int | None = None


@dataclass(frozen=True)
class QueryResult:
    """Nodes, edges and optional paths selected by a GraphQuery."""

    nodes: tuple[Node, ...] = ()
    edges: tuple[Edge, ...] = ()
    paths: tuple[GraphPath, ...] = ()


@dataclass(frozen=True)
class GraphStatistics:
    """Aggregate counts describing the in-memory graph.

    Attributes:
        node_count: Number of nodes.
        edge_count: Number of edges.
        nodes_by_type: Node counts keyed by type value.
        edges_by_type: Edge counts keyed by type value.
        average_connectivity: Mean out-degree.
        most_connected_nodes: Up to ten (node id, out-degree) pairs, highest first.
    """

    node_count: int
    edge_count: int
    nodes_by_type: dict[str, int] = field(default_factory=dict)
    edges_by_type: dict[str, int] = field(default_factory=dict)
    average_connectivity: float = 0.0
    most_connected_nodes: tuple[tuple[str, int], ...] = ()


@dataclass(frozen=True)
class Recommendation:
    """A candidate technology reached from a similar project.

    Attributes:
        technology: The recommended technology node.
        path: Path from the similar project to the technology.
        reasoning: Human-readable explanation, one line per hop.
        confidence: Path confidence adjusted for length and age.
    """

    technology: Node
    path: GraphPath
    reasoning: tuple[str, ...]
    confidence: float


EntryType = Literal["analysis", "recommendation", "deployment", "configuration", "interaction"]


@dataclass(frozen=True)
class MemoryEntry:
    """A single record of the external event log.

    Attributes:
        id: Unique entry identifier.
        timestamp: ISO-8601 time the event happened.
        type: Kind of event.
        data: Event payload.
        metadata: Context such as projectId, repository, ssg and tags.
        tags: Free-form labels.
    """

    id: str
    timestamp: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    tags: tuple[str, ...] = ()

    @property
    def project_id(self) -> str | None:
        return self.metadata.get("projectId")

    @property
    def moment(self) -> datetime:
        return parse_timestamp(self.timestamp)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryEntry":
        """Build an entry from a raw log record.

        Raises:
            KeyError: If id, timestamp or type is missing.
        """
        metadata = data.get("metadata") or {}
        tags = data.get("tags") or metadata.get("tags") or ()
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            type=data["type"],
            data=data.get("data") or {},
            metadata=metadata,
            tags=tuple(tags),
        )
