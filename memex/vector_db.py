"""
Memory store: the persisted collection of MemoryRecords.

The whole store is serialized to one Arrow IPC stream (fixed-size float32
list column for embeddings, so vectors round-trip exactly) and written to
key-value storage under CONFIG.store_key after every mutation. On first use
the store rehydrates from that key, or starts empty.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterable

import numpy as np
import pyarrow as pa

from memex.config import CONFIG, Config
from memex.errors import DuplicateMemoryId, InvalidMemoryRecord, PersistenceWriteFailure
from memex.models import MemoryItem, MemoryRecord
from memex.storage import KeyValueStorage
from memex.utils import generate_id, now_ms

FORMAT_VERSION = "1"
_FORMAT_KEY = b"memex.format"
_DIM_KEY = b"memex.dim"


# =============================================================================
# Blob codec
# =============================================================================


def record_schema(dim: int) -> pa.Schema:
    """MemoryRecord's Arrow schema with a fixed-size float32 embedding column."""
    schema = MemoryRecord.to_arrow_schema()
    index = schema.get_field_index("embedding")
    schema = schema.set(index, pa.field("embedding", pa.list_(pa.float32(), dim)))
    return schema.with_metadata({_FORMAT_KEY: FORMAT_VERSION, _DIM_KEY: str(dim)})


def serialize_records(records: Iterable[MemoryRecord], dim: int) -> bytes:
    """Encode records as an Arrow IPC stream with format/dimension metadata."""
    schema = record_schema(dim)
    table = pa.Table.from_pylist([r.model_dump() for r in records], schema=schema)
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, schema) as writer:
        writer.write_table(table)
    return sink.getvalue().to_pybytes()


def deserialize_records(blob: bytes, dim: int) -> list[MemoryRecord]:
    """Decode a blob written by serialize_records."""
    table = pa.ipc.open_stream(pa.BufferReader(blob)).read_all()
    metadata = table.schema.metadata or {}
    version = metadata.get(_FORMAT_KEY, b"").decode()
    if version != FORMAT_VERSION:
        raise InvalidMemoryRecord(f"Unknown store format '{version}'")
    stored_dim = int(metadata.get(_DIM_KEY, str(dim).encode()))
    if stored_dim != dim:
        raise InvalidMemoryRecord(f"Store embedding dimension {stored_dim} != configured {dim}")
    return [MemoryRecord(**row) for row in table.to_pylist()]


# =============================================================================
# Store
# =============================================================================


class MemoryStore:
    """In-process memory collection with whole-store persistence.

    Not transactional: concurrent mutations interleave at await points and the
    last flush wins. Flushes are serialized so the newest state is what lands.
    """

    def __init__(self, storage: KeyValueStorage, config: Config = CONFIG):
        self.storage = storage
        self.config = config
        self.key = config.store_key
        self.dim = config.embedding_dim
        self._records: dict[str, MemoryRecord] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._index: tuple[list[MemoryRecord], np.ndarray] | None = None

    @classmethod
    async def open(cls, storage: KeyValueStorage, config: Config = CONFIG) -> MemoryStore:
        store = cls(storage, config)
        await store.load()
        return store

    async def load(self) -> None:
        """Rehydrate from storage (once). Unreadable state starts an empty store."""
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            records: list[MemoryRecord] = []
            try:
                blob = await asyncio.to_thread(self.storage.get, self.key)
                if blob:
                    print("[vector-db] Loading existing store from storage...", file=sys.stderr)
                    records = deserialize_records(blob, self.dim)
                else:
                    print("[vector-db] Creating new store", file=sys.stderr)
            except Exception as e:
                print(f"[vector-db] Failed to load store, starting empty: {e}", file=sys.stderr)
                records = []
            self._records = {r.id: r for r in records if r.id}
            self._index = None
            self._loaded = True
            print(f"[vector-db] Store ready ({len(self._records)} memories)", file=sys.stderr)

    async def flush(self) -> bool:
        """Write the whole store to storage. Write errors are logged, not raised."""
        async with self._flush_lock:
            blob = serialize_records(self._records.values(), self.dim)
            try:
                await asyncio.to_thread(self.storage.set, self.key, blob)
            except PersistenceWriteFailure as e:
                print(f"[vector-db] Failed to persist store: {e}", file=sys.stderr)
                return False
        return True

    def _invalidate(self) -> None:
        self._index = None

    # -- mutations ------------------------------------------------------------

    async def insert(self, record: MemoryRecord, flush: bool = True) -> str:
        """Add a record; assigns id/created_at when absent. Returns the id."""
        await self.load()
        if len(record.embedding) != self.dim:
            raise InvalidMemoryRecord(
                f"Embedding dimension {len(record.embedding)} != {self.dim}"
            )
        record_id = record.id or generate_id("mem")
        if record_id in self._records:
            raise DuplicateMemoryId(f"Memory {record_id} already exists")

        stored = record.model_copy(
            update={
                "id": record_id,
                "created_at": record.created_at if record.created_at is not None else now_ms(),
                "content": record.content[: self.config.max_content_length],
                "tags": list(record.tags),
            }
        )
        self._records[record_id] = stored
        self._invalidate()
        if flush:
            await self.flush()
        print(f"[vector-db] Memory added: {record_id} {stored.title!r} tags={stored.tags}", file=sys.stderr)
        return record_id

    async def delete(self, memory_id: str) -> bool:
        """Remove a record. Returns whether one was actually removed."""
        await self.load()
        if self._records.pop(memory_id, None) is None:
            return False
        self._invalidate()
        await self.flush()
        print(f"[vector-db] Memory deleted: {memory_id}", file=sys.stderr)
        return True

    async def clear_all(self, flush: bool = True) -> None:
        """Replace the store with an empty one."""
        await self.load()
        self._records = {}
        self._invalidate()
        if flush:
            await self.flush()
        print("[vector-db] All memories cleared", file=sys.stderr)

    # -- reads ----------------------------------------------------------------

    async def count(self) -> int:
        await self.load()
        return len(self._records)

    async def get(self, memory_id: str) -> MemoryRecord | None:
        await self.load()
        return self._records.get(memory_id)

    async def records(self) -> list[MemoryRecord]:
        """Full records in store (insertion) order."""
        await self.load()
        return list(self._records.values())

    async def get_all(self) -> list[MemoryItem]:
        """Summary projection, newest first."""
        await self.load()
        items = [r.to_item() for r in self._records.values()]
        return sorted(items, key=lambda m: m.created_at, reverse=True)

    async def get_all_with_embeddings(self) -> list[MemoryItem]:
        """Summary projection with embeddings, newest first."""
        await self.load()
        items = [r.to_item(with_embedding=True) for r in self._records.values()]
        return sorted(items, key=lambda m: m.created_at, reverse=True)

    async def exists_by_url(self, url: str) -> bool:
        await self.load()
        return any(r.url == url for r in self._records.values())

    async def search_by_tag(self, tag: str, limit: int = 100) -> list[MemoryItem]:
        """Memories carrying a tag (case-insensitive exact match), newest first."""
        await self.load()
        wanted = tag.strip().lower()
        items = [
            r.to_item()
            for r in self._records.values()
            if any(t.lower() == wanted for t in r.tags)
        ]
        items.sort(key=lambda m: m.created_at, reverse=True)
        return items[:limit]

    async def vector_index(self) -> tuple[list[MemoryRecord], np.ndarray]:
        """Records in store order plus their (n, D) float32 embedding matrix."""
        await self.load()
        if self._index is None:
            records = list(self._records.values())
            if records:
                matrix = np.asarray([r.embedding for r in records], dtype=np.float32)
            else:
                matrix = np.zeros((0, self.dim), dtype=np.float32)
            self._index = (records, matrix)
        return self._index
