"""Tests for the memory store and its Arrow blob codec."""

import dataclasses

import numpy as np
import pytest

from conftest import DIM, basis
from memex.errors import DuplicateMemoryId, InvalidMemoryRecord, PersistenceWriteFailure
from memex.models import MemoryRecord
from memex.storage import InMemoryKeyValueStorage
from memex.vector_db import MemoryStore, deserialize_records, serialize_records


class FailingWriteStorage(InMemoryKeyValueStorage):
    def set(self, key, value):
        raise PersistenceWriteFailure("read-only storage")


class CountingStorage(InMemoryKeyValueStorage):
    def __init__(self):
        super().__init__()
        self.writes = 0

    def set(self, key, value):
        self.writes += 1
        super().set(key, value)


# =============================================================================
# Codec
# =============================================================================


class TestCodec:
    def test_embeddings_round_trip(self, make_record):
        record = make_record("https://a", "vectors survive a save/load cycle", id="mem_1", created_at=5)
        [decoded] = deserialize_records(serialize_records([record], DIM), DIM)
        assert decoded.id == "mem_1"
        assert decoded.created_at == 5
        assert np.allclose(decoded.embedding, record.embedding, atol=1e-6)

    def test_dimension_mismatch_rejected(self):
        blob = serialize_records([], DIM)
        with pytest.raises(InvalidMemoryRecord, match="dimension"):
            deserialize_records(blob, DIM + 1)


# =============================================================================
# Mutations
# =============================================================================


class TestInsert:
    async def test_assigns_id_and_created_at(self, store, make_record):
        memory_id = await store.insert(make_record("https://a", "first page"))
        assert memory_id.startswith("mem_")
        record = await store.get(memory_id)
        assert record.created_at > 0
        assert await store.count() == 1

    async def test_keeps_given_id_and_timestamp(self, store, make_record):
        memory_id = await store.insert(make_record("https://a", "x", id="mem_fixed", created_at=42))
        assert memory_id == "mem_fixed"
        assert (await store.get("mem_fixed")).created_at == 42

    async def test_duplicate_id_rejected(self, store, make_record):
        await store.insert(make_record("https://a", "x", id="mem_1"))
        with pytest.raises(DuplicateMemoryId):
            await store.insert(make_record("https://b", "y", id="mem_1"))
        assert await store.count() == 1

    async def test_wrong_dimension_rejected(self, store):
        record = MemoryRecord(url="https://a", embedding=[0.1, 0.2, 0.3])
        with pytest.raises(InvalidMemoryRecord):
            await store.insert(record)
        assert await store.count() == 0

    async def test_content_truncated(self, store, make_record, config):
        memory_id = await store.insert(make_record("https://a", "z" * (config.max_content_length + 50)))
        assert len((await store.get(memory_id)).content) == config.max_content_length

    async def test_tags_keep_order_and_duplicates(self, store, make_record):
        memory_id = await store.insert(make_record("https://a", "x", tags=["b", "a", "b"]))
        assert (await store.get(memory_id)).tags == ["b", "a", "b"]


class TestDelete:
    async def test_delete_then_count(self, store, make_record):
        first = await store.insert(make_record("https://a", "one"))
        await store.insert(make_record("https://b", "two"))
        assert await store.delete(first) is True
        assert await store.count() == 1
        assert await store.delete(first) is False
        assert await store.count() == 1

    async def test_clear_all(self, store, make_record):
        await store.insert(make_record("https://a", "one"))
        await store.clear_all()
        assert await store.count() == 0
        assert await store.get_all() == []


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    async def test_reload_from_storage(self, storage, config, make_record):
        store = MemoryStore(storage, config)
        record = make_record("https://a", "persist me", tags=["keep"])
        memory_id = await store.insert(record)

        reloaded = await MemoryStore.open(storage, config)
        assert await reloaded.count() == 1
        loaded = await reloaded.get(memory_id)
        assert loaded.tags == ["keep"]
        assert np.allclose(loaded.embedding, record.embedding, atol=1e-6)

    async def test_configured_dimension(self, storage, config):
        """The store follows its Config's dimension, not the process default."""
        small = dataclasses.replace(config, embedding_dim=8)
        store = MemoryStore(storage, small)
        memory_id = await store.insert(MemoryRecord(url="https://a", embedding=basis(2, dim=8)))

        reloaded = await MemoryStore.open(storage, small)
        assert (await reloaded.get(memory_id)).embedding == pytest.approx(basis(2, dim=8))
        with pytest.raises(InvalidMemoryRecord):
            await store.insert(MemoryRecord(url="https://b", embedding=basis(2)))

    async def test_unreadable_blob_starts_empty(self, storage, config):
        storage.set(config.store_key, b"not an arrow stream")
        store = MemoryStore(storage, config)
        assert await store.count() == 0

    async def test_write_failure_keeps_memory(self, config, make_record):
        """A failed flush is logged; the in-memory store still has the record."""
        store = MemoryStore(FailingWriteStorage(), config)
        memory_id = await store.insert(make_record("https://a", "x"))
        assert await store.get(memory_id) is not None
        assert await store.flush() is False

    async def test_flush_deferred(self, config, make_record):
        storage = CountingStorage()
        store = MemoryStore(storage, config)
        for i in range(3):
            await store.insert(make_record(f"https://{i}", "x"), flush=False)
        assert storage.writes == 0
        assert await store.flush() is True
        assert storage.writes == 1


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    async def test_get_all_newest_first(self, store, make_record):
        await store.insert(make_record("https://old", "x", id="old", created_at=1000))
        await store.insert(make_record("https://new", "x", id="new", created_at=2000))
        items = await store.get_all()
        assert [m.id for m in items] == ["new", "old"]
        assert items[0].embedding is None
        assert "embedding" not in items[0].to_dict()

    async def test_get_all_with_embeddings(self, store, make_record):
        await store.insert(make_record("https://a", "x", embedding=basis(3)))
        [item] = await store.get_all_with_embeddings()
        assert item.embedding == pytest.approx(basis(3))

    async def test_exists_by_url(self, store, make_record):
        await store.insert(make_record("https://a", "x"))
        assert await store.exists_by_url("https://a")
        assert not await store.exists_by_url("https://b")

    async def test_search_by_tag(self, store, make_record):
        await store.insert(make_record("https://a", "x", tags=["Python"], created_at=1))
        await store.insert(make_record("https://b", "x", tags=["rust"], created_at=2))
        await store.insert(make_record("https://c", "x", tags=["python", "ml"], created_at=3))
        items = await store.search_by_tag("python")
        assert [m.url for m in items] == ["https://c", "https://a"]
        assert len(await store.search_by_tag("python", limit=1)) == 1

    async def test_vector_index_tracks_mutations(self, store, make_record):
        records, matrix = await store.vector_index()
        assert records == [] and matrix.shape == (0, DIM)
        memory_id = await store.insert(make_record("https://a", "x"))
        records, matrix = await store.vector_index()
        assert matrix.shape == (1, DIM)
        await store.delete(memory_id)
        records, matrix = await store.vector_index()
        assert records == []
