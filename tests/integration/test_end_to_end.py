"""End-to-end tests across storage, graph, temporal engine and health monitor."""

from datetime import timedelta
from pathlib import Path

import pytest

from tests.conftest import FIXED_NOW, FakeClock, daily_counts, make_entry, write_event_log
from trellis.core.context import TrellisContext
from trellis.core.eventlog import JsonlEventLog
from trellis.core.graph import KnowledgeGraph
from trellis.core.graph_ops import get_graph_based_recommendation
from trellis.core.health import HealthMonitor
from trellis.core.persistence import GraphStorage
from trellis.core.temporal import TemporalEngine, TemporalQuery
from trellis.core.timeseries import TimeWindow


class TestPersistenceRoundTrip:
    """A graph written to disk reads back identically in a fresh process."""

    def test_project_uses_technology(
        self, project_graph: KnowledgeGraph, storage: GraphStorage
    ) -> None:
        storage.save_graph(project_graph.get_all_nodes(), project_graph.get_all_edges())

        reloaded = KnowledgeGraph()
        reloaded.load(*GraphStorage(storage.storage_dir).load_graph())

        stats = reloaded.get_statistics()
        assert stats.node_count == 2
        assert stats.edge_count == 1
        path = reloaded.find_path("p1", "ts")
        assert path is not None
        assert path.confidence == pytest.approx(0.9)
        assert reloaded.get_all_nodes() == project_graph.get_all_nodes()

    def test_restore_after_bad_write(
        self, project_graph: KnowledgeGraph, storage: GraphStorage
    ) -> None:
        storage.save_graph(project_graph.get_all_nodes(), project_graph.get_all_edges())
        storage.save_relationships([])

        storage.restore_from_backup("relationships")

        assert [e.id for e in storage.load_relationships()] == ["p1-uses-ts"]
        assert storage.verify_integrity().valid


class TestEventLogToGraph:
    """Building from an event log, then querying the result."""

    def test_build_recommend_and_score(self, tmp_path: Path) -> None:
        entries = [
            make_entry(
                FIXED_NOW - timedelta(days=3),
                project="docs-site",
                data={"language": {"primary": "javascript"}, "framework": {"name": "react"}},
            ),
            make_entry(
                FIXED_NOW - timedelta(days=2),
                entry_type="recommendation",
                project="docs-site",
                data={"recommended": "docusaurus", "score": 0.9, "confidence": 0.8},
            ),
            make_entry(
                FIXED_NOW - timedelta(days=1),
                entry_type="deployment",
                project="docs-site",
                data={"status": "success"},
                ssg="docusaurus",
            ),
        ]
        events = tmp_path / "events"
        write_event_log(events, entries)

        with TrellisContext(tmp_path / "kg", event_log=JsonlEventLog(events)) as context:
            summary = context.rebuild()
            recommendations = get_graph_based_recommendation(
                context.graph,
                {"language": "javascript", "framework": "react"},
                ["docusaurus", "hugo"],
            )
            report = context.health.calculate_health(context.graph, context.storage)

        assert summary.entries_processed == 3
        assert [r.technology.id for r in recommendations] == ["tech:docusaurus"]
        assert recommendations[0].path.nodes[0].id == "project:docs-site"
        assert "temp_query" not in {n.id for n in GraphStorage(tmp_path / "kg").load_entities()}
        assert report.data_quality.completeness_score == 1.0
        assert 0 <= report.overall_health <= 100


class TestTemporalOverEventLog:
    """Temporal analysis reading the same files the builder reads."""

    def test_weekly_cycle_from_files(self, tmp_path: Path, clock: FakeClock) -> None:
        start = FIXED_NOW.replace(hour=0) - timedelta(days=28)
        write_event_log(tmp_path, daily_counts(start, [6, 1, 1, 1, 1, 1, 1] * 4))
        engine = TemporalEngine(JsonlEventLog(tmp_path), clock=clock)
        query = TemporalQuery(time_range=TimeWindow(start, start + timedelta(days=28)))

        patterns = engine.analyze_temporal_patterns(query)
        prediction = engine.predict_future_activity(query)

        assert any(p.type == "periodic" and p.period == timedelta(days=7) for p in patterns)
        assert prediction.next_activity.time_range.start == start + timedelta(days=28)
        assert prediction.next_activity.confidence > 0

    def test_health_history_across_runs(
        self, project_graph: KnowledgeGraph, storage: GraphStorage, clock: FakeClock
    ) -> None:
        storage.save_graph(project_graph.get_all_nodes(), project_graph.get_all_edges())
        monitor = HealthMonitor(storage.storage_dir, clock=clock)

        for _ in range(3):
            monitor.calculate_health(project_graph, storage)
            clock.advance(days=1)

        history = HealthMonitor(storage.storage_dir, clock=clock).get_health_history(7)
        assert len(history) == 3
        assert history[0].timestamp > history[-1].timestamp
