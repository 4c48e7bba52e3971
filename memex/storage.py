"""
Key-value blob storage.

The memory store persists itself as a single opaque blob under a fixed key
("vector_db"). Other keys (e.g. "chat_sessions") belong to collaborators and
are never interpreted here.
"""

from __future__ import annotations

import sys
import threading
from datetime import datetime
from pathlib import Path

import lancedb
import pyarrow as pa

from memex.errors import PersistenceWriteFailure

KV_SCHEMA = pa.schema(
    [
        pa.field("key", pa.string(), nullable=False),
        pa.field("value", pa.large_binary()),
        pa.field("updated_at", pa.string()),
    ]
)


def _escape_filter_value(value: str) -> str:
    """Escape single quotes in filter values to prevent injection."""
    return value.replace("'", "''")


class KeyValueStorage:
    """Interface: synchronous get/set/delete of byte blobs."""

    def get(self, key: str) -> bytes | None:
        raise NotImplementedError

    def set(self, key: str, value: bytes) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def keys(self) -> list[str]:
        raise NotImplementedError


class InMemoryKeyValueStorage(KeyValueStorage):
    """Dict-backed storage for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data)


class LanceKeyValueStorage(KeyValueStorage):
    """Blobs kept as rows of a LanceDB table: {key, value, updated_at}."""

    def __init__(self, db_path: Path, table_name: str = "kv_store"):
        self.db_path = Path(db_path)
        self.table_name = table_name
        self._lock = threading.RLock()  # RLock allows reentrant calls (table -> db)
        self._db: lancedb.DBConnection | None = None
        self._table: lancedb.table.Table | None = None

    def _get_db(self) -> lancedb.DBConnection:
        """Get or create LanceDB connection (thread-safe)."""
        if self._db is None:
            with self._lock:
                if self._db is None:  # Double-check after acquiring lock
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                    self._db = lancedb.connect(str(self.db_path))
        return self._db

    def _get_table(self) -> lancedb.table.Table:
        """Get or create the key-value table (thread-safe)."""
        if self._table is None:
            with self._lock:
                if self._table is None:  # Double-check after acquiring lock
                    db = self._get_db()
                    try:
                        self._table = db.open_table(self.table_name)
                    except Exception:
                        try:
                            table_names = db.list_tables()
                            table_names = getattr(table_names, "tables", table_names)
                        except AttributeError:
                            table_names = db.table_names()
                        except Exception:
                            table_names = []
                        if self.table_name in table_names:
                            raise
                        self._table = db.create_table(self.table_name, schema=KV_SCHEMA)
        return self._table

    def get(self, key: str) -> bytes | None:
        table = self._get_table()
        rows = table.search().where(f"key = '{_escape_filter_value(key)}'").limit(1).to_list()
        if not rows:
            return None
        return rows[0]["value"]

    def set(self, key: str, value: bytes) -> None:
        row = pa.table(
            {
                "key": [key],
                "value": [bytes(value)],
                "updated_at": [datetime.now().isoformat()],
            },
            schema=KV_SCHEMA,
        )
        try:
            with self._lock:
                table = self._get_table()
                (
                    table.merge_insert("key")
                    .when_matched_update_all()
                    .when_not_matched_insert_all()
                    .execute(row)
                )
        except Exception as e:
            raise PersistenceWriteFailure(f"Failed to write '{key}' to {self.db_path}: {e}") from e

    def delete(self, key: str) -> bool:
        with self._lock:
            table = self._get_table()
            existed = self.get(key) is not None
            if existed:
                table.delete(f"key = '{_escape_filter_value(key)}'")
        return existed

    def keys(self) -> list[str]:
        table = self._get_table()
        try:
            return table.to_arrow().column("key").to_pylist()
        except Exception as e:
            print(f"[storage] Listing keys failed: {e}", file=sys.stderr)
            return []
