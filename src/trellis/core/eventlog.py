"""Read-only access to the external event log.

The event log is a directory of JSONL files, one MemoryEntry per line.
This package never writes to it.
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

from trellis.core.exceptions import PersistenceError
from trellis.core.types import MemoryEntry, parse_timestamp

logger = logging.getLogger(__name__)


class EventLog(Protocol):
    """Anything that can list event log entries."""

    def entries(self) -> list[MemoryEntry]: ...


class InMemoryEventLog:
    """Event log backed by a list, for embedding and tests."""

    def __init__(self, entries: Iterable[MemoryEntry] = ()) -> None:
        self._entries = list(entries)

    def append(self, entry: MemoryEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> list[MemoryEntry]:
        return list(self._entries)


class JsonlEventLog:
    """Event log read from every ``*.jsonl`` file in a directory.

    Lines that are not valid JSON, or lack id, timestamp or type, or carry an
    unparseable timestamp, are logged and skipped.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def entries(self) -> list[MemoryEntry]:
        if not self.directory.exists():
            return []
        if not self.directory.is_dir():
            raise PersistenceError(f"Event log path {self.directory} is not a directory")

        entries = []
        for path in sorted(self.directory.glob("*.jsonl")):
            try:
                with open(path, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                raise PersistenceError(f"Failed to read event log {path}: {e}") from e

            for line_no, line in enumerate(lines, start=1):
                stripped = line.strip()
                if not stripped or stripped.startswith("#"):
                    continue
                try:
                    entry = MemoryEntry.from_dict(json.loads(stripped))
                    parse_timestamp(entry.timestamp)
                except (json.JSONDecodeError, KeyError, TypeError, AttributeError, ValueError) as e:
                    logger.warning("Skipping invalid event at %s:%d: %s", path, line_no, e)
                    continue
                entries.append(entry)

        logger.debug("Read %d events from %s", len(entries), self.directory)
        return entries
