"""Pytest configuration and shared fixtures.

Provides a controllable clock, graph and storage fixtures, and a small
factory for event log entries.
"""

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from trellis.core.graph import KnowledgeGraph
from trellis.core.persistence import GraphStorage
from trellis.core.types import Edge, EdgeType, MemoryEntry, Node, NodeType, format_timestamp

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """A frozen clock at 2024-06-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def graph(clock: FakeClock) -> KnowledgeGraph:
    """An empty graph on the frozen clock."""
    return KnowledgeGraph(clock=clock)


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    return tmp_path / "kg"


@pytest.fixture
def storage(storage_dir: Path) -> GraphStorage:
    """Initialized storage in a temporary directory."""
    store = GraphStorage(storage_dir)
    store.initialize()
    return store


@pytest.fixture
def project_graph(graph: KnowledgeGraph) -> KnowledgeGraph:
    """Project p1 using TypeScript, the smallest useful graph."""
    graph.add_node(Node(id="p1", type=NodeType.PROJECT, label="P1"))
    graph.add_node(Node(id="ts", type=NodeType.TECHNOLOGY, label="TypeScript"))
    graph.add_edge(Edge(source="p1", target="ts", type=EdgeType.USES, confidence=0.9))
    return graph


def make_entry(
    moment: datetime,
    entry_type: str = "analysis",
    project: str | None = "proj",
    data: dict | None = None,
    entry_id: str | None = None,
    **metadata: object,
) -> MemoryEntry:
    """Build an event log entry at a given moment."""
    meta = dict(metadata)
    if project is not None:
        meta["projectId"] = project
    return MemoryEntry(
        id=entry_id or f"{entry_type}-{moment.isoformat()}",
        timestamp=format_timestamp(moment),
        type=entry_type,
        data=data or {},
        metadata=meta,
    )


@pytest.fixture
def entry_factory() -> Callable[..., MemoryEntry]:
    return make_entry


def daily_counts(start: datetime, counts: list[int], hour: int = 12) -> list[MemoryEntry]:
    """Entries producing `counts[i]` events on day i after start."""
    entries = []
    for day, count in enumerate(counts):
        moment = start + timedelta(days=day, hours=hour)
        for n in range(count):
            entries.append(
                make_entry(moment + timedelta(minutes=n), entry_id=f"e-{day}-{n}")
            )
    return entries


def write_event_log(directory: Path, entries: list[MemoryEntry]) -> Path:
    """Write entries as one JSONL file in directory."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "events.jsonl"
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            record = {
                "id": entry.id,
                "timestamp": entry.timestamp,
                "type": entry.type,
                "data": entry.data,
                "metadata": entry.metadata,
            }
            f.write(json.dumps(record) + "\n")
    return path
