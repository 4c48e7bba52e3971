#!/usr/bin/env python3
"""
Export or import memex backups from the command line.

Usage:
    memex-backup export [--out DIR]                          # Write memex-backup-<date>.json
    memex-backup import FILE --mode merge --dry-run          # Preview an import
    memex-backup import FILE --mode replace                  # Apply an import
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from memex.backup import export_snapshot, import_snapshot, read_backup, validate_snapshot, write_backup
from memex.config import CONFIG
from memex.errors import BackupError
from memex.storage import LanceKeyValueStorage
from memex.vector_db import MemoryStore


def open_store() -> MemoryStore:
    return MemoryStore(LanceKeyValueStorage(CONFIG.db_path, CONFIG.kv_table_name), CONFIG)


async def export_backup(out_dir: Path | None) -> Path:
    store = open_store()
    snapshot = await export_snapshot(store)
    path = write_backup(snapshot, out_dir)
    print(f"✓ Exported {snapshot.memory_count} memories to {path}")
    return path


async def import_backup(path: Path, mode: str, dry_run: bool = True) -> int:
    """Import a backup file. Returns a process exit code."""
    try:
        data = read_backup(path)
        _, entries = validate_snapshot(data)
    except FileNotFoundError:
        print(f"Error: Backup file not found: {path}")
        return 1
    except BackupError as e:
        print(f"Error: {e}")
        return 1

    store = open_store()
    print(f"Opening store: {CONFIG.db_path}")
    existing = await store.count()

    # Preview what the import would do
    urls = [e.get("url") for e in entries if isinstance(e, dict)]
    duplicates = [u for u in urls if u and await store.exists_by_url(u)]

    print("=" * 70)
    print("IMPORT PLAN")
    print("=" * 70)
    print(f"\nBackup: {path} ({len(entries)} memories)")
    print(f"Store:  {existing} memories")
    print(f"Mode:   {mode}")
    if mode == "replace":
        print(f"\n  {existing} existing memories will be deleted")
        print(f"  {len(entries)} memories will be restored")
    else:
        print(f"\n  {len(duplicates)} memories already stored (will be skipped)")
        print(f"  {len(entries) - len(duplicates)} new memories will be added")
    print("\n" + "=" * 70)

    if dry_run:
        print("\n⚠ DRY RUN MODE - No changes applied")
        print("Run without --dry-run to apply import")
        return 0

    result = await import_snapshot(store, data, mode)  # type: ignore[arg-type]
    if not result.success:
        print(f"Error: {result.message}")
        return 1
    print(f"\n✓ {result.message}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Export or import memex memory backups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  memex-backup export --out ~/backups
  memex-backup import memex-backup-2026-01-31.json --dry-run
  memex-backup import memex-backup-2026-01-31.json --mode replace
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    export_cmd = sub.add_parser("export", help="Write all memories to a backup file")
    export_cmd.add_argument("--out", type=Path, default=None, help="Output directory")

    import_cmd = sub.add_parser("import", help="Restore memories from a backup file")
    import_cmd.add_argument("file", type=Path)
    import_cmd.add_argument("--mode", choices=["merge", "replace"], default="merge")
    import_cmd.add_argument("--dry-run", action="store_true", help="Preview changes without applying them")

    args = parser.parse_args()

    try:
        if args.command == "export":
            asyncio.run(export_backup(args.out))
        else:
            sys.exit(asyncio.run(import_backup(args.file, args.mode, dry_run=args.dry_run)))
    except KeyboardInterrupt:
        print("\n\nCancelled")
        sys.exit(1)


if __name__ == "__main__":
    main()
