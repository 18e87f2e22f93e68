"""Health monitoring for the knowledge graph.

HealthMonitor combines data quality, graph structure and performance into
a 0-100 score, runs a fixed set of issue detectors, ranks remediation
recommendations and keeps a JSONL history of past scores so that trends
can be reported.
"""

import json
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Literal

import networkx as nx

from trellis.core.config import DEFAULT_CONFIG, TrellisConfig
from trellis.core.constants import (
    CLUSTERING_SAMPLE_SIZE,
    HEALTH_HISTORY_FILE_NAME,
    HEALTH_WEIGHT_DATA_QUALITY,
    HEALTH_WEIGHT_PERFORMANCE,
    HEALTH_WEIGHT_STRUCTURE,
    PATH_LENGTH_SAMPLE_SIZE,
    QUERY_SAMPLE_LIMIT,
)
from trellis.core.graph import KnowledgeGraph
from trellis.core.persistence import GraphStorage
from trellis.core.types import Edge, EdgeType, Node, NodeType, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

Severity = Literal["critical", "high", "medium", "low"]
Priority = Literal["high", "medium", "low"]
Trend = Literal["improving", "stable", "degrading"]

SEVERITY_ORDER: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}
PRIORITY_ORDER: dict[str, int] = {"high": 0, "medium": 1, "low": 2}

# No index is maintained, so index efficiency is a fixed estimate
INDEX_EFFICIENCY = 0.8
MEGABYTE = 1024 * 1024
TREND_DAYS = 7
GROWTH_DAYS = 30


@dataclass(frozen=True)
class DataQualityMetrics:
    score: int
    stale_node_count: int
    orphaned_edge_count: int
    duplicate_count: int
    confidence_average: float
    completeness_score: float
    total_nodes: int
    total_edges: int


@dataclass(frozen=True)
class StructureHealthMetrics:
    score: int
    isolated_node_count: int
    clustering_coefficient: float
    average_path_length: float
    density_score: float
    connected_components: int


@dataclass(frozen=True)
class PerformanceMetrics:
    score: int
    avg_query_time: float
    storage_size: int
    growth_rate: float
    index_efficiency: float


@dataclass(frozen=True)
class HealthTrends:
    health_trend: Trend = "stable"
    quality_trend: Trend = "stable"
    node_growth_rate: float = 0.0
    edge_growth_rate: float = 0.0


@dataclass(frozen=True)
class HealthIssue:
    id: str
    severity: Severity
    category: Literal["integrity", "performance", "quality", "structure"]
    description: str
    remediation: str
    detected_at: str
    auto_fixable: bool = False
    affected_entities: tuple[str, ...] = ()


@dataclass(frozen=True)
class HealthRecommendation:
    id: str
    priority: Priority
    action: str
    expected_impact: int
    effort: Literal["low", "medium", "high"]
    category: str


@dataclass(frozen=True)
class HealthReport:
    """Full health assessment of the graph at one point in time."""

    timestamp: str
    overall_health: int
    data_quality: DataQualityMetrics
    structure_health: StructureHealthMetrics
    performance: PerformanceMetrics
    trends: HealthTrends
    issues: tuple[HealthIssue, ...] = ()
    recommendations: tuple[HealthRecommendation, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class HealthHistoryEntry:
    """One line of the health history file."""

    timestamp: str
    overall_health: int
    data_quality: int
    structure_health: int
    performance: int
    node_count: int
    edge_count: int
    storage_size: int = 0

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "overallHealth": self.overall_health,
            "dataQuality": self.data_quality,
            "structureHealth": self.structure_health,
            "performance": self.performance,
            "nodeCount": self.node_count,
            "edgeCount": self.edge_count,
            "storageSize": self.storage_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HealthHistoryEntry":
        return cls(
            timestamp=data["timestamp"],
            overall_health=int(data["overallHealth"]),
            data_quality=int(data["dataQuality"]),
            structure_health=int(data["structureHealth"]),
            performance=int(data["performance"]),
            node_count=int(data["nodeCount"]),
            edge_count=int(data["edgeCount"]),
            storage_size=int(data.get("storageSize", 0)),
        )


class PerformanceTracker:
    """Rolling window of query latencies in milliseconds."""

    def __init__(self, max_samples: int = QUERY_SAMPLE_LIMIT) -> None:
        self._samples: deque[float] = deque(maxlen=max_samples)

    def track_query(self, time_ms: float) -> None:
        self._samples.append(time_ms)

    def average_query_time(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


@dataclass(frozen=True)
class MetricSnapshot:
    """Component metrics handed to the issue detectors."""

    data_quality: DataQualityMetrics
    structure_health: StructureHealthMetrics
    performance: PerformanceMetrics


IssueDetector = Callable[[MetricSnapshot, str], list[HealthIssue]]


def _detect_orphaned_edges(metrics: MetricSnapshot, now: str) -> list[HealthIssue]:
    count = metrics.data_quality.orphaned_edge_count
    if count <= 10:
        return []
    return [
        HealthIssue(
            id="orphaned_edges_high",
            severity="high",
            category="integrity",
            description=f"Found {count} orphaned relationships",
            remediation="Remove orphaned relationships with `trellis health --fix`",
            detected_at=now,
            auto_fixable=True,
        )
    ]


def _detect_stale_data(metrics: MetricSnapshot, now: str) -> list[HealthIssue]:
    count = metrics.data_quality.stale_node_count
    if count <= 20:
        return []
    return [
        HealthIssue(
            id="stale_data_high",
            severity="medium",
            category="quality",
            description=f"{count} nodes haven't been updated recently",
            remediation="Re-analyze stale projects to refresh data",
            detected_at=now,
        )
    ]


def _detect_low_completeness(metrics: MetricSnapshot, now: str) -> list[HealthIssue]:
    completeness = metrics.data_quality.completeness_score
    if completeness >= 0.7:
        return []
    return [
        HealthIssue(
            id="low_completeness",
            severity="high",
            category="quality",
            description=f"Completeness score is {round(completeness * 100)}%",
            remediation="Review projects for missing relationships",
            detected_at=now,
        )
    ]


def _detect_isolated_nodes(metrics: MetricSnapshot, now: str) -> list[HealthIssue]:
    isolated = metrics.structure_health.isolated_node_count
    if isolated <= metrics.data_quality.total_nodes * 0.05:
        return []
    return [
        HealthIssue(
            id="isolated_nodes_high",
            severity="medium",
            category="structure",
            description=f"{isolated} nodes are isolated (no connections)",
            remediation="Review and connect isolated nodes",
            detected_at=now,
        )
    ]


def _detect_duplicates(metrics: MetricSnapshot, now: str) -> list[HealthIssue]:
    count = metrics.data_quality.duplicate_count
    if count <= 0:
        return []
    return [
        HealthIssue(
            id="duplicate_entities",
            severity="critical",
            category="integrity",
            description=f"Found {count} duplicate entities",
            remediation="Merge duplicate entities",
            detected_at=now,
        )
    ]


DEFAULT_DETECTORS: tuple[IssueDetector, ...] = (
    _detect_orphaned_edges,
    _detect_stale_data,
    _detect_low_completeness,
    _detect_isolated_nodes,
    _detect_duplicates,
)


def calculate_completeness(nodes: list[Node], edges: list[Edge]) -> float:
    """Share of expected project relationships that are present.

    Every project is expected to use a technology; projects flagged hasDocs
    are also expected to depend on a documentation section.
    """
    projects = [n for n in nodes if n.type == NodeType.PROJECT]
    if not projects:
        return 1.0

    node_types = {n.id: n.type for n in nodes}
    technology_edges = {EdgeType.USES, EdgeType.PROJECT_USES_TECHNOLOGY}
    expected = 0
    found = 0
    for project in projects:
        outgoing = [e for e in edges if e.source == project.id]
        expected += 1
        if any(e.type in technology_edges for e in outgoing):
            found += 1
        if project.properties.get("hasDocs"):
            expected += 1
            if any(
                e.type == EdgeType.DEPENDS_ON
                and node_types.get(e.target) == NodeType.DOCUMENTATION_SECTION
                for e in outgoing
            ):
                found += 1
    return found / expected


def calculate_clustering_coefficient(nodes: list[Node], edges: list[Edge]) -> float:
    """Mean local clustering over the first nodes, using directed out-neighbours.

    A pair of neighbours (a, b) closes a triangle when a has an edge to b.
    """
    if len(nodes) < 3:
        return 0.0

    adjacency: dict[str, set[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, set()).add(edge.target)

    total = 0.0
    counted = 0
    for node in nodes[:CLUSTERING_SAMPLE_SIZE]:
        neighbors = list(adjacency.get(node.id, ()))
        if len(neighbors) < 2:
            continue
        possible = len(neighbors) * (len(neighbors) - 1) / 2
        triangles = sum(
            1
            for i, first in enumerate(neighbors)
            for second in neighbors[i + 1 :]
            if second in adjacency.get(first, ())
        )
        total += triangles / possible
        counted += 1
    return total / counted if counted else 0.0


def to_networkx(nodes: list[Node], edges: list[Edge]) -> nx.DiGraph:
    """Directed networkx view of the graph, dropping edges with missing endpoints."""
    digraph = nx.DiGraph()
    for node in nodes:
        digraph.add_node(node.id)
    for edge in edges:
        if edge.source in digraph and edge.target in digraph:
            digraph.add_edge(edge.source, edge.target)
    return digraph


def calculate_average_path_length(digraph: nx.DiGraph, sample: list[str]) -> float:
    """Mean BFS distance to every reachable node from each sampled start."""
    total = 0
    count = 0
    for start in sample:
        for distance in nx.single_source_shortest_path_length(digraph, start).values():
            if distance > 0:
                total += distance
                count += 1
    return total / count if count else 0.0


def remove_orphaned_edges(graph: KnowledgeGraph) -> int:
    """Delete edges whose source or target node does not exist.

    Returns:
        Number of edges removed.
    """
    orphaned = [
        edge.id
        for edge in graph.get_all_edges()
        if graph.get_node(edge.source) is None or graph.get_node(edge.target) is None
    ]
    for edge_id in orphaned:
        graph.remove_edge(edge_id)
    if orphaned:
        logger.info("Removed %d orphaned edges", len(orphaned))
    return len(orphaned)


def _trend(diff: float) -> Trend:
    if diff > 5:
        return "improving"
    if diff < -5:
        return "degrading"
    return "stable"


class HealthMonitor:
    """Score the graph and keep a history of scores.

    Args:
        storage_dir: Directory holding health-history.jsonl.
        config: Thresholds (stale node age, history retention).
        clock: Source of the current time, for tests.
    """

    def __init__(
        self,
        storage_dir: Path,
        config: TrellisConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] | None = None,
        detectors: tuple[IssueDetector, ...] = DEFAULT_DETECTORS,
    ) -> None:
        self.history_path = storage_dir / HEALTH_HISTORY_FILE_NAME
        self.config = config
        self.tracker = PerformanceTracker()
        self.detectors = detectors
        self._clock = clock or (lambda: datetime.now(UTC))

    def track_query(self, time_ms: float) -> None:
        """Record one query latency. Suitable as a KnowledgeGraph query observer."""
        self.tracker.track_query(time_ms)

    def calculate_health(self, graph: KnowledgeGraph, storage: GraphStorage) -> HealthReport:
        """Compute a full report and append it to the history."""
        now = self._clock()
        timestamp = format_timestamp(now)

        data_quality = self._data_quality(graph, storage, now)
        structure = self._structure_health(graph)
        performance = self._performance(storage, now)

        overall = round(
            data_quality.score * HEALTH_WEIGHT_DATA_QUALITY
            + structure.score * HEALTH_WEIGHT_STRUCTURE
            + performance.score * HEALTH_WEIGHT_PERFORMANCE
        )

        snapshot = MetricSnapshot(data_quality, structure, performance)
        issues = self._detect_issues(snapshot, timestamp)
        recommendations = self._recommendations(issues, snapshot)
        trends = self._trends(overall, data_quality.score, now)

        report = HealthReport(
            timestamp=timestamp,
            overall_health=overall,
            data_quality=data_quality,
            structure_health=structure,
            performance=performance,
            trends=trends,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
        )
        self._track_history(report, now)
        return report

    def _data_quality(
        self, graph: KnowledgeGraph, storage: GraphStorage, now: datetime
    ) -> DataQualityMetrics:
        integrity = storage.verify_integrity()
        nodes = graph.get_all_nodes()
        edges = graph.get_all_edges()

        cutoff = now - timedelta(days=self.config.stale_node_days)
        stale = 0
        for node in nodes:
            try:
                if parse_timestamp(node.last_updated) < cutoff:
                    stale += 1
            except ValueError:
                stale += 1

        orphaned = len(integrity.orphaned_edges)
        duplicates = len(integrity.duplicate_ids)
        confidence_average = (
            sum(e.confidence for e in edges) / len(edges) if edges else 1.0
        )
        completeness = calculate_completeness(nodes, edges)

        stale_pct = stale / max(len(nodes), 1) * 100
        orphan_pct = orphaned / max(len(edges), 1) * 100
        deductions = stale_pct * 0.3 + orphan_pct * 0.5 + duplicates * 10
        score = max(0.0, min(100.0, 100 - deductions + (completeness - 0.5) * 50))

        return DataQualityMetrics(
            score=round(score),
            stale_node_count=stale,
            orphaned_edge_count=orphaned,
            duplicate_count=duplicates,
            confidence_average=confidence_average,
            completeness_score=completeness,
            total_nodes=len(nodes),
            total_edges=len(edges),
        )

    def _structure_health(self, graph: KnowledgeGraph) -> StructureHealthMetrics:
        nodes = graph.get_all_nodes()
        edges = graph.get_all_edges()

        connected = {e.source for e in edges} | {e.target for e in edges}
        isolated = sum(1 for n in nodes if n.id not in connected)

        clustering = calculate_clustering_coefficient(nodes, edges)
        digraph = to_networkx(nodes, edges)
        sample = [n.id for n in nodes[:PATH_LENGTH_SAMPLE_SIZE]]
        average_path = calculate_average_path_length(digraph, sample)

        max_edges = len(nodes) * (len(nodes) - 1) / 2
        density = len(edges) / max_edges if max_edges > 0 else 0.0
        components = nx.number_weakly_connected_components(digraph) if nodes else 0

        isolated_pct = isolated / max(len(nodes), 1) * 100
        score = max(
            0.0,
            min(100.0, 100 - isolated_pct * 0.5 + clustering * 20 - (components - 1) * 5),
        )
        return StructureHealthMetrics(
            score=round(score),
            isolated_node_count=isolated,
            clustering_coefficient=clustering,
            average_path_length=average_path,
            density_score=density,
            connected_components=components,
        )

    def _performance(self, storage: GraphStorage, now: datetime) -> PerformanceMetrics:
        stats = storage.get_statistics()
        avg_query = self.tracker.average_query_time()
        size = stats.total_size

        query_score = 100.0 if avg_query < 10 else max(0.0, 100 - avg_query)
        size_score = 100.0 if size < 10 * MEGABYTE else max(0.0, 100 - size / MEGABYTE)
        score = round(query_score * 0.5 + size_score * 0.3 + INDEX_EFFICIENCY * 100 * 0.2)

        return PerformanceMetrics(
            score=score,
            avg_query_time=avg_query,
            storage_size=size,
            growth_rate=self._storage_growth_rate(size, now),
            index_efficiency=INDEX_EFFICIENCY,
        )

    def _storage_growth_rate(self, current_size: int, now: datetime) -> float:
        """Bytes per day since the oldest record of the last 30 days."""
        history = self.get_health_history(GROWTH_DAYS)
        if not history:
            return 0.0
        oldest = history[-1]
        days = max(1.0, (now - parse_timestamp(oldest.timestamp)).total_seconds() / 86400)
        return (current_size - oldest.storage_size) / days

    def _detect_issues(self, snapshot: MetricSnapshot, timestamp: str) -> list[HealthIssue]:
        issues = [issue for detector in self.detectors for issue in detector(snapshot, timestamp)]
        issues.sort(key=lambda i: SEVERITY_ORDER[i.severity])
        return issues

    @staticmethod
    def _recommendations(
        issues: list[HealthIssue], snapshot: MetricSnapshot
    ) -> list[HealthRecommendation]:
        recommendations = [
            HealthRecommendation(
                id=f"fix_{issue.id}",
                priority="high",
                action=issue.remediation,
                expected_impact=20 if issue.severity == "critical" else 10,
                effort="low",
                category=issue.category,
            )
            for issue in issues
            if issue.severity in ("critical", "high") and issue.auto_fixable
        ]

        quality = snapshot.data_quality
        if quality.score < 70:
            if quality.stale_node_count > 10:
                recommendations.append(
                    HealthRecommendation(
                        id="refresh_stale_data",
                        priority="medium",
                        action=f"Re-analyze {quality.stale_node_count} stale projects to refresh data",
                        expected_impact=15,
                        effort="medium",
                        category="data_quality",
                    )
                )
            if quality.orphaned_edge_count > 5:
                recommendations.append(
                    HealthRecommendation(
                        id="cleanup_orphaned_edges",
                        priority="high",
                        action="Run automated cleanup to remove orphaned relationships",
                        expected_impact=10,
                        effort="low",
                        category="data_quality",
                    )
                )

        structure = snapshot.structure_health
        if structure.score < 70 and structure.isolated_node_count > 0:
            recommendations.append(
                HealthRecommendation(
                    id="connect_isolated_nodes",
                    priority="medium",
                    action=f"Review and connect {structure.isolated_node_count} isolated nodes",
                    expected_impact=8,
                    effort="medium",
                    category="structure",
                )
            )

        performance = snapshot.performance
        if performance.score < 70 and performance.storage_size > 50 * MEGABYTE:
            recommendations.append(
                HealthRecommendation(
                    id="optimize_storage",
                    priority="medium",
                    action="Archive or compress old knowledge graph data",
                    expected_impact=12,
                    effort="high",
                    category="performance",
                )
            )

        recommendations.sort(key=lambda r: (PRIORITY_ORDER[r.priority], -r.expected_impact))
        return recommendations[:5]

    def _trends(self, overall: int, quality: int, now: datetime) -> HealthTrends:
        history = self.get_health_history(TREND_DAYS, now)
        if len(history) < 2:
            return HealthTrends()

        health_avg = sum(h.overall_health for h in history) / len(history)
        quality_avg = sum(h.data_quality for h in history) / len(history)

        newest = history[0]
        oldest = history[-1]
        span = parse_timestamp(newest.timestamp) - parse_timestamp(oldest.timestamp)
        days = max(1.0, span.total_seconds() / 86400)

        return HealthTrends(
            health_trend=_trend(overall - health_avg),
            quality_trend=_trend(quality - quality_avg),
            node_growth_rate=round((newest.node_count - oldest.node_count) / days, 1),
            edge_growth_rate=round((newest.edge_count - oldest.edge_count) / days, 1),
        )

    # History

    def get_health_history(self, days: int, now: datetime | None = None) -> list[HealthHistoryEntry]:
        """History records from the last `days` days, newest first."""
        if not self.history_path.exists():
            return []
        cutoff = (now or self._clock()) - timedelta(days=days)

        history = []
        with open(self.history_path, encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entry = HealthHistoryEntry.from_dict(json.loads(stripped))
                    moment = parse_timestamp(entry.timestamp)
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping invalid health history line: %s", e)
                    continue
                if moment >= cutoff:
                    history.append(entry)
        history.reverse()
        return history

    def _track_history(self, report: HealthReport, now: datetime) -> None:
        """Append the report and drop records older than the retention window.

        History is advisory; failures are logged and never raised.
        """
        entry = HealthHistoryEntry(
            timestamp=report.timestamp,
            overall_health=report.overall_health,
            data_quality=report.data_quality.score,
            structure_health=report.structure_health.score,
            performance=report.performance.score,
            node_count=report.data_quality.total_nodes,
            edge_count=report.data_quality.total_edges,
            storage_size=report.performance.storage_size,
        )
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
            self._prune_history(now)
        except OSError as e:
            logger.warning("Failed to track health history: %s", e)

    def _prune_history(self, now: datetime) -> None:
        kept = list(reversed(self.get_health_history(self.config.history_retention_days, now)))
        temp_path = self.history_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                for entry in kept:
                    f.write(json.dumps(entry.to_dict()) + "\n")
            temp_path.replace(self.history_path)
        finally:
            try:
                if temp_path.exists():
                    temp_path.unlink()
            except OSError:
                pass
