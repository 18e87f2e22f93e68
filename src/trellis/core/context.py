"""Wiring of storage, graph, temporal engine and health monitor.

TrellisContext owns one storage directory and the components that work on
it. Nothing here is a module-level singleton; callers create a context,
open it, and close it when done (or use it as a context manager).
"""

import logging
from pathlib import Path

from trellis.core.builder import BuildSummary, GraphBuilder
from trellis.core.config import DEFAULT_CONFIG, TrellisConfig
from trellis.core.eventlog import EventLog, InMemoryEventLog
from trellis.core.exceptions import TrellisError
from trellis.core.graph import KnowledgeGraph
from trellis.core.health import HealthMonitor
from trellis.core.persistence import GraphStorage, ensure_storage_directory, get_storage_dir
from trellis.core.temporal import TemporalEngine

logger = logging.getLogger(__name__)


class TrellisContext:
    """Open knowledge graph plus the engines bound to it.

    Args:
        storage_dir: Storage directory; defaults to TRELLIS_STORAGE_DIR or
            the XDG data directory.
        config: Runtime configuration.
        event_log: Event source for builds and temporal analysis. Defaults
            to an empty in-memory log.
    """

    def __init__(
        self,
        storage_dir: Path | None = None,
        config: TrellisConfig = DEFAULT_CONFIG,
        event_log: EventLog | None = None,
    ) -> None:
        self.storage_dir = storage_dir or get_storage_dir()
        self.config = config
        self.event_log = event_log if event_log is not None else InMemoryEventLog()
        self._storage = GraphStorage(self.storage_dir, config)
        self._graph = KnowledgeGraph()
        self._temporal = TemporalEngine(self.event_log, config)
        self._health = HealthMonitor(self.storage_dir, config)
        self._opened = False

    def open(self) -> "TrellisContext":
        """Create the storage directory if needed and load the stored graph."""
        ensure_storage_directory(self.storage_dir)
        self._storage.initialize()
        nodes, edges = self._storage.load_graph()
        self._graph.load(nodes, edges)
        self._graph.set_query_observer(self._health.track_query)
        self._opened = True
        logger.debug(
            "Opened graph at %s: %d nodes, %d edges", self.storage_dir, len(nodes), len(edges)
        )
        return self

    def _require_open(self) -> None:
        if not self._opened:
            raise TrellisError("Context is not open; call open() first")

    @property
    def graph(self) -> KnowledgeGraph:
        self._require_open()
        return self._graph

    @property
    def storage(self) -> GraphStorage:
        return self._storage

    @property
    def temporal(self) -> TemporalEngine:
        return self._temporal

    @property
    def health(self) -> HealthMonitor:
        return self._health

    def save(self) -> None:
        """Write the in-memory graph to storage."""
        self._require_open()
        self._storage.save_graph(self._graph.get_all_nodes(), self._graph.get_all_edges())

    def rebuild(self) -> BuildSummary:
        """Replace the graph with one built from the event log and save it."""
        self._require_open()
        self._graph.clear()
        summary = GraphBuilder(self._graph, self.config).build(self.event_log.entries())
        self._temporal.clear_caches()
        self.save()
        return summary

    def close(self) -> None:
        self._graph.set_query_observer(None)
        self._opened = False

    def __enter__(self) -> "TrellisContext":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
