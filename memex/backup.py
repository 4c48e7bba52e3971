"""
Backup/restore: versioned JSON snapshots of the whole memory store.

Snapshot layout (interchange format, camelCase on the wire):
    {"version": 1, "exportedAt": <ms>, "memoryCount": N,
     "memories": [{"id", "url", "title", "content", "summary", "tags",
                   "embedding", "createdAt"}, ...]}
Only version 1 is accepted; there is no migration path for other versions.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from memex.config import CONFIG
from memex.errors import InvalidBackupFormat, UnsupportedBackupVersion
from memex.models import ImportResult, MemoryRecord
from memex.utils import backup_filename, now_ms
from memex.vector_db import MemoryStore

SNAPSHOT_VERSION = CONFIG.backup_version
ImportMode = Literal["replace", "merge"]


class BackupMemory(BaseModel):
    """One memory inside a snapshot (full embedding included)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    url: str
    title: str = ""
    content: str = ""
    summary: str = ""
    tags: list[str] = Field(default_factory=list)
    embedding: list[float]
    created_at: int = Field(alias="createdAt")

    @classmethod
    def from_record(cls, record: MemoryRecord) -> BackupMemory:
        return cls(
            id=record.id or "",
            url=record.url,
            title=record.title,
            content=record.content,
            summary=record.summary,
            tags=list(record.tags),
            embedding=[float(x) for x in record.embedding],
            created_at=record.created_at or 0,
        )

    def to_record(self) -> MemoryRecord:
        return MemoryRecord(
            id=self.id,
            url=self.url,
            title=self.title,
            content=self.content,
            summary=self.summary,
            tags=list(self.tags),
            embedding=self.embedding,
            created_at=self.created_at,
        )


class Snapshot(BaseModel):
    """A complete, versioned export of the memory store."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = SNAPSHOT_VERSION
    exported_at: int = Field(alias="exportedAt")
    memory_count: int = Field(alias="memoryCount")
    memories: list[BackupMemory]

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)


# =============================================================================
# Export
# =============================================================================


async def export_snapshot(store: MemoryStore) -> Snapshot:
    """Every record, with full embedding, in store order."""
    memories = [BackupMemory.from_record(r) for r in await store.records()]
    snapshot = Snapshot(
        version=SNAPSHOT_VERSION,
        exported_at=now_ms(),
        memory_count=len(memories),
        memories=memories,
    )
    print(f"[backup] Exported {len(memories)} memories", file=sys.stderr)
    return snapshot


# =============================================================================
# Import
# =============================================================================


def validate_snapshot(data: Snapshot | dict[str, Any]) -> tuple[int, list[Any]]:
    """Check version and shape. Returns (version, raw memory entries).

    Individual memories are validated later, one by one, so a single bad
    entry is skipped instead of failing the whole import.
    """
    if isinstance(data, Snapshot):
        if data.version != SNAPSHOT_VERSION:
            raise UnsupportedBackupVersion(data.version)
        return data.version, list(data.memories)
    if not isinstance(data, dict):
        raise InvalidBackupFormat("Invalid backup file format: expected a JSON object")
    version = data.get("version")
    if version != SNAPSHOT_VERSION or isinstance(version, bool):
        raise UnsupportedBackupVersion(version)
    memories = data.get("memories")
    if not isinstance(memories, list):
        raise InvalidBackupFormat("Invalid backup file format: 'memories' must be an array")
    return version, memories


async def import_snapshot(
    store: MemoryStore,
    snapshot: Snapshot | dict[str, Any],
    mode: ImportMode = "merge",
) -> ImportResult:
    """Restore memories from a snapshot.

    replace: clear the store, then insert every snapshot record verbatim.
    merge:   insert records whose URL is not already stored; count the rest as skipped.
    Records that fail to insert are counted as skipped; the import continues.
    """
    if mode not in ("replace", "merge"):
        return ImportResult(False, 0, 0, f"Error: Invalid import mode '{mode}'. Valid: replace, merge")
    try:
        _, entries = validate_snapshot(snapshot)
    except (InvalidBackupFormat, UnsupportedBackupVersion) as e:
        print(f"[backup] Import rejected: {e}", file=sys.stderr)
        return ImportResult(False, 0, 0, str(e))

    if mode == "replace":
        await store.clear_all(flush=False)
        print("[backup] Existing memories cleared for replace mode", file=sys.stderr)

    imported = 0
    skipped = 0
    for entry in entries:
        try:
            memory = entry if isinstance(entry, BackupMemory) else BackupMemory.model_validate(entry)
            if mode == "merge" and await store.exists_by_url(memory.url):
                skipped += 1
                continue
            await store.insert(memory.to_record(), flush=False)
            imported += 1
        except (ValidationError, ValueError) as e:
            entry_id = entry.get("id") if isinstance(entry, dict) else getattr(entry, "id", "?")
            print(f"[backup] Failed to import memory {entry_id}: {e}", file=sys.stderr)
            skipped += 1

    await store.flush()
    print(f"[backup] Imported {imported} memories, skipped {skipped}", file=sys.stderr)

    message = f"Restored {imported} memories."
    if skipped:
        message += f" ({skipped} skipped)"
    return ImportResult(True, imported, skipped, message)


# =============================================================================
# Files
# =============================================================================


def write_backup(snapshot: Snapshot, directory: Path | None = None) -> Path:
    """Write a snapshot as memex-backup-<date>.json in directory."""
    directory = Path(directory or CONFIG.backup_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / backup_filename()
    path.write_text(snapshot.to_json(), encoding="utf-8")
    print(f"[backup] Wrote backup: {path}", file=sys.stderr)
    return path


def read_backup(path: Path) -> dict[str, Any]:
    """Load a backup file as raw JSON (validated on import)."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidBackupFormat(f"Invalid backup file format: {e}") from e
    if not isinstance(data, dict):
        raise InvalidBackupFormat("Invalid backup file format: expected a JSON object")
    return data
