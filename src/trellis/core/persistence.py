"""Persistence layer for the Trellis knowledge graph.

Entities and relationships live in two JSONL files inside a storage
directory. Each file starts with a marker line so that a file which was not
written by this layer is never overwritten. Writes go to a temp file that is
flushed, fsynced and renamed over the target. Before every overwrite a copy
of the previous file is kept under ``backups/``.

The storage directory is ~/.local/share/trellis/ by default, respecting
TRELLIS_STORAGE_DIR and then XDG_DATA_HOME when set.
"""

import hashlib
import json
import logging
import os
import shutil
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from trellis.core.config import DEFAULT_CONFIG, TrellisConfig
from trellis.core.constants import (
    BACKUP_DIR_NAME,
    COMMIT_FILE_NAME,
    ENTITY_FILE_NAME,
    ENTITY_MARKER,
    ENTITY_MARKER_PREFIX,
    RELATIONSHIP_FILE_NAME,
    RELATIONSHIP_MARKER,
    RELATIONSHIP_MARKER_PREFIX,
    SCHEMA_VERSION,
    STORAGE_DIR_ENV,
)
from trellis.core.exceptions import BackupNotFoundError, MarkerMismatchError, PersistenceError
from trellis.core.types import Edge, Node, format_timestamp, utc_now_iso

logger = logging.getLogger(__name__)

FileKind = Literal["entities", "relationships"]


def get_xdg_data_home() -> Path:
    """Get XDG data home directory for Trellis.

    Returns ~/.local/share/trellis/ by default.
    Respects XDG_DATA_HOME environment variable when set.

    Returns:
        Path to Trellis's data directory.
    """
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        base = Path(xdg_data_home)
    else:
        base = Path.home() / ".local" / "share"
    return base / "trellis"


def get_storage_dir() -> Path:
    """Resolve the knowledge graph storage directory.

    TRELLIS_STORAGE_DIR wins over the XDG data directory.
    """
    override = os.environ.get(STORAGE_DIR_ENV)
    if override:
        return Path(override)
    return get_xdg_data_home()


def ensure_storage_directory(storage_dir: Path) -> Path:
    """Ensure storage and backup directories exist.

    Sets permissions on the storage directory to 700 (owner only).

    Returns:
        Path to the created/existing storage directory.
    """
    storage_dir.mkdir(parents=True, exist_ok=True)
    storage_dir.chmod(0o700)
    (storage_dir / BACKUP_DIR_NAME).mkdir(exist_ok=True)
    return storage_dir


def _file_digest(path: Path) -> str | None:
    if not path.exists():
        return None
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass(frozen=True)
class IntegrityReport:
    """Result of an integrity check over the stored graph.

    Attributes:
        valid: True when there are no errors. Warnings do not invalidate.
        errors: Human-readable error messages (duplicate entity ids).
        warnings: Human-readable warnings (orphaned relationships, mixed commits).
        orphaned_edges: IDs of relationships whose source or target is missing.
        duplicate_ids: Entity IDs that occur more than once.
    """

    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    orphaned_edges: tuple[str, ...] = ()
    duplicate_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class StorageStatistics:
    """Counts and sizes of the stored graph files."""

    entity_count: int
    relationship_count: int
    last_modified: str | None
    schema_version: str
    entity_file_size: int
    relationship_file_size: int

    @property
    def total_size(self) -> int:
        return self.entity_file_size + self.relationship_file_size


class GraphStorage:
    """JSONL storage for knowledge graph entities and relationships.

    Single writer only. Files written by this class always begin with a
    marker line; existing files without the matching marker are refused.

    File layout::

        <storage_dir>/knowledge-graph-entities.jsonl
        <storage_dir>/knowledge-graph-relationships.jsonl
        <storage_dir>/knowledge-graph.commit.json
        <storage_dir>/backups/entities-<timestamp>.jsonl
        <storage_dir>/backups/relationships-<timestamp>.jsonl
    """

    def __init__(self, storage_dir: Path, config: TrellisConfig = DEFAULT_CONFIG) -> None:
        self.storage_dir = storage_dir
        self.config = config
        self.entity_path = storage_dir / ENTITY_FILE_NAME
        self.relationship_path = storage_dir / RELATIONSHIP_FILE_NAME
        self.commit_path = storage_dir / COMMIT_FILE_NAME
        self.backup_dir = storage_dir / BACKUP_DIR_NAME

    def _paths(self, kind: FileKind) -> tuple[Path, str, str]:
        if kind == "entities":
            return self.entity_path, ENTITY_MARKER, ENTITY_MARKER_PREFIX
        if kind == "relationships":
            return self.relationship_path, RELATIONSHIP_MARKER, RELATIONSHIP_MARKER_PREFIX
        raise ValueError(f"Unknown storage kind '{kind}'. Must be 'entities' or 'relationships'")

    def initialize(self) -> None:
        """Create the storage layout and verify existing files.

        Missing files are created holding only their marker line.

        Raises:
            MarkerMismatchError: If an existing file lacks the expected marker.
            PersistenceError: If the directory or files cannot be created.
        """
        try:
            ensure_storage_directory(self.storage_dir)
            for kind in ("entities", "relationships"):
                path, marker, prefix = self._paths(kind)
                if path.exists():
                    self._check_marker(path, prefix)
                else:
                    path.write_text(marker + "\n", encoding="utf-8")
                    logger.debug("Created %s", path)
        except OSError as e:
            raise PersistenceError(f"Failed to initialize storage at {self.storage_dir}: {e}") from e

    def _check_marker(self, path: Path, prefix: str) -> None:
        """Refuse to touch a file that was not written by this layer."""
        with open(path, encoding="utf-8", errors="replace") as f:
            first_line = f.readline().strip()
        if not first_line.startswith(prefix):
            raise MarkerMismatchError(
                f"File {path} is not a DocuMCP knowledge graph file. "
                "Refusing to overwrite to prevent data loss."
            )

    def save_entities(self, nodes: Iterable[Node]) -> None:
        """Replace the entity file with the given nodes.

        Raises:
            MarkerMismatchError: If the existing file lacks the entity marker.
            PersistenceError: If the write fails.
        """
        self._write_records("entities", (node.to_dict() for node in nodes))

    def save_relationships(self, edges: Iterable[Edge]) -> None:
        """Replace the relationship file with the given edges.

        Raises:
            MarkerMismatchError: If the existing file lacks the relationship marker.
            PersistenceError: If the write fails.
        """
        self._write_records("relationships", (edge.to_dict() for edge in edges))

    def _write_records(self, kind: FileKind, records: Iterable[dict[str, Any]]) -> None:
        path, marker, prefix = self._paths(kind)
        if path.exists():
            self._check_marker(path, prefix)
            if self.config.backup_on_write:
                self._backup_file(path, kind)

        self.storage_dir.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(marker + "\n")
                for record in records:
                    f.write(json.dumps(record, ensure_ascii=False) + "\n")
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(path)  # Atomic on POSIX
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save {kind} to {path}: {e}") from e
        finally:
            # Clean up temp file if it still exists
            try:
                if temp_path.exists():
                    temp_path.unlink()
            except OSError:
                pass
        logger.debug("Saved %s to %s", kind, path)

    def load_entities(self) -> list[Node]:
        """Load all entities. Malformed lines are logged and skipped.

        Returns:
            Entities in file order, duplicates included. Empty when the file is missing.
        """
        nodes = []
        for line_no, data in self._read_records(self.entity_path):
            try:
                if self.config.validate_on_read:
                    self._validate(data, ("id", "type", "label"))
                nodes.append(Node.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping invalid entity at %s:%d: %s", self.entity_path, line_no, e)
        return nodes

    def load_relationships(self) -> list[Edge]:
        """Load all relationships. Malformed lines are logged and skipped.

        Returns:
            Relationships in file order. Empty when the file is missing.
        """
        edges = []
        for line_no, data in self._read_records(self.relationship_path):
            try:
                if self.config.validate_on_read:
                    self._validate(data, ("id", "source", "target", "type"))
                edges.append(Edge.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping invalid relationship at %s:%d: %s", self.relationship_path, line_no, e
                )
        return edges

    @staticmethod
    def _validate(data: dict[str, Any], required: tuple[str, ...]) -> None:
        missing = [key for key in required if not data.get(key)]
        if missing:
            raise ValueError(f"missing required fields: {', '.join(missing)}")

    def _read_records(self, path: Path) -> list[tuple[int, dict[str, Any]]]:
        if not path.exists():
            return []
        records = []
        try:
            with open(path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    stripped = line.strip()
                    if not stripped or stripped.startswith("#"):
                        continue
                    try:
                        data = json.loads(stripped)
                    except json.JSONDecodeError as e:
                        logger.warning("Skipping malformed line at %s:%d: %s", path, line_no, e)
                        continue
                    if not isinstance(data, dict):
                        logger.warning("Skipping non-object line at %s:%d", path, line_no)
                        continue
                    records.append((line_no, data))
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e
        return records

    def save_graph(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        """Save entities, then relationships, then the commit record.

        The two files are written one after the other. If the process dies
        between the renames the commit record still describes the previous
        pair, which verify_integrity reports as a mixed generation.
        """
        self.save_entities(nodes)
        self.save_relationships(edges)
        self._write_commit()

    def load_graph(self) -> tuple[list[Node], list[Edge]]:
        """Load entities and relationships.

        Returns:
            Tuple of (entities, relationships).
        """
        if self._commit_mismatch():
            logger.warning(
                "Knowledge graph files in %s do not match the last commit record", self.storage_dir
            )
        return self.load_entities(), self.load_relationships()

    def _read_commit(self) -> dict[str, Any] | None:
        if not self.commit_path.exists():
            return None
        try:
            with open(self.commit_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Commit record corrupted, ignoring: %s", e)
            return None
        return data if isinstance(data, dict) else None

    def _write_commit(self) -> None:
        previous = self._read_commit() or {}
        record = {
            "generation": int(previous.get("generation", 0)) + 1,
            "committedAt": utc_now_iso(),
            "entities": _file_digest(self.entity_path),
            "relationships": _file_digest(self.relationship_path),
        }
        temp_path = self.commit_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.commit_path)
        except OSError as e:
            raise PersistenceError(f"Failed to write commit record: {e}") from e
        finally:
            try:
                if temp_path.exists():
                    temp_path.unlink()
            except OSError:
                pass

    def _commit_mismatch(self) -> bool:
        commit = self._read_commit()
        if commit is None:
            return False
        return commit.get("entities") != _file_digest(self.entity_path) or commit.get(
            "relationships"
        ) != _file_digest(self.relationship_path)

    def _backup_file(self, path: Path, kind: FileKind) -> None:
        """Copy the current file into backups/ and prune old copies.

        Failures are logged; a failed backup never blocks the write.
        """
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            stamp = format_timestamp(datetime.now(UTC)).replace(":", "-").replace(".", "-")
            backup_path = self.backup_dir / f"{kind}-{stamp}.jsonl"
            suffix = 1
            while backup_path.exists():
                backup_path = self.backup_dir / f"{kind}-{stamp}-{suffix}.jsonl"
                suffix += 1
            shutil.copyfile(path, backup_path)
            logger.debug("Backed up %s to %s", path, backup_path)
        except OSError as e:
            logger.warning("Failed to back up %s: %s", path, e)
            return
        self._prune_backups(kind)

    def _prune_backups(self, kind: FileKind) -> None:
        for stale in self.list_backups(kind)[self.config.backup_keep_count :]:
            try:
                stale.unlink()
            except OSError as e:
                logger.warning("Failed to remove old backup %s: %s", stale, e)

    def list_backups(self, kind: FileKind) -> list[Path]:
        """List backups of one kind, newest first."""
        self._paths(kind)
        if not self.backup_dir.exists():
            return []
        candidates = [p for p in self.backup_dir.glob(f"{kind}-*.jsonl") if p.is_file()]
        return sorted(candidates, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def restore_from_backup(self, kind: FileKind, timestamp: str | None = None) -> Path:
        """Restore a file from its newest backup, or the one matching timestamp.

        Args:
            kind: "entities" or "relationships".
            timestamp: Substring of the backup file name to select.

        Returns:
            The backup that was restored.

        Raises:
            BackupNotFoundError: If no backup matches.
            PersistenceError: If the copy fails.
        """
        path, _, _ = self._paths(kind)
        backups = self.list_backups(kind)
        if timestamp is not None:
            backups = [b for b in backups if timestamp in b.name]
        if not backups:
            detail = f" matching '{timestamp}'" if timestamp else ""
            raise BackupNotFoundError(f"No {kind} backup found{detail} in {self.backup_dir}")

        source = backups[0]
        temp_path = path.with_suffix(".tmp")
        try:
            shutil.copyfile(source, temp_path)
            temp_path.replace(path)
        except OSError as e:
            raise PersistenceError(f"Failed to restore {kind} from {source}: {e}") from e
        finally:
            try:
                if temp_path.exists():
                    temp_path.unlink()
            except OSError:
                pass
        logger.info("Restored %s from %s", kind, source.name)
        return source

    def get_statistics(self) -> StorageStatistics:
        """Counts, sizes and last modification time of the stored files."""
        entities = self.load_entities()
        relationships = self.load_relationships()

        mtimes = []
        sizes = {}
        for kind, path in (("entities", self.entity_path), ("relationships", self.relationship_path)):
            if path.exists():
                stat = path.stat()
                mtimes.append(stat.st_mtime)
                sizes[kind] = stat.st_size
            else:
                sizes[kind] = 0

        last_modified = (
            format_timestamp(datetime.fromtimestamp(max(mtimes), tz=UTC)) if mtimes else None
        )
        return StorageStatistics(
            entity_count=len(entities),
            relationship_count=len(relationships),
            last_modified=last_modified,
            schema_version=SCHEMA_VERSION,
            entity_file_size=sizes["entities"],
            relationship_file_size=sizes["relationships"],
        )

    def verify_integrity(self) -> IntegrityReport:
        """Check the stored graph for orphans, duplicates and mixed commits.

        Orphaned relationships are warnings. Duplicate entity ids are errors.
        A failure to read the files is reported as an error, not raised.
        """
        errors: list[str] = []
        warnings: list[str] = []
        orphaned: list[str] = []

        try:
            entities, relationships = self.load_graph()
        except PersistenceError as e:
            return IntegrityReport(valid=False, errors=(f"Integrity check failed: {e}",))

        entity_ids = {entity.id for entity in entities}
        for edge in relationships:
            is_orphan = False
            if edge.source not in entity_ids:
                warnings.append(
                    f"Relationship {edge.id} references missing source entity: {edge.source}"
                )
                is_orphan = True
            if edge.target not in entity_ids:
                warnings.append(
                    f"Relationship {edge.id} references missing target entity: {edge.target}"
                )
                is_orphan = True
            if is_orphan:
                orphaned.append(edge.id)

        counts = Counter(entity.id for entity in entities)
        duplicates = [entity_id for entity_id, count in counts.items() if count > 1]
        for entity_id in duplicates:
            errors.append(f"Duplicate entity ID found: {entity_id} ({counts[entity_id]} instances)")

        if self._commit_mismatch():
            warnings.append(
                "Entity and relationship files do not match the last commit record "
                "(mixed generations after an interrupted save)"
            )

        return IntegrityReport(
            valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            orphaned_edges=tuple(orphaned),
            duplicate_ids=tuple(duplicates),
        )

    def export_as_json(self) -> str:
        """Export the stored graph as one JSON document for inspection."""
        entities, relationships = self.load_graph()
        return json.dumps(
            {
                "metadata": {
                    "version": SCHEMA_VERSION,
                    "exportDate": utc_now_iso(),
                    "entityCount": len(entities),
                    "relationshipCount": len(relationships),
                },
                "entities": [entity.to_dict() for entity in entities],
                "relationships": [edge.to_dict() for edge in relationships],
            },
            indent=2,
            ensure_ascii=False,
        )
