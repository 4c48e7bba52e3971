"""
Shared fixtures: isolated config, in-memory storage, hash embeddings.

Tests never download models or touch ~/.memex; the hash backend gives
deterministic vectors where texts sharing words are similar.
"""

import dataclasses

import numpy as np
import pytest

from memex.config import CONFIG
from memex.embedding_client import EmbeddingClient
from memex.embeddings import Embedder, HashBackend
from memex.models import MemoryRecord
from memex.service import MemoryService
from memex.storage import InMemoryKeyValueStorage
from memex.vector_db import MemoryStore

DIM = CONFIG.embedding_dim


def basis(i: int, dim: int = DIM) -> list[float]:
    """Unit vector along axis i."""
    v = np.zeros(dim)
    v[i] = 1.0
    return v.tolist()


@pytest.fixture
def config(tmp_path):
    return dataclasses.replace(
        CONFIG,
        embedding_provider="hash",
        db_path=tmp_path / "lancedb",
        backup_dir=tmp_path / "backups",
        request_timeout=5.0,
        init_timeout=5.0,
    )


@pytest.fixture
def storage():
    return InMemoryKeyValueStorage()


@pytest.fixture
def store(storage, config):
    return MemoryStore(storage, config)


@pytest.fixture
def embedder(config):
    """Initialized hash embedder."""
    e = Embedder(config, HashBackend(config.embedding_dim))
    e.init()
    return e


@pytest.fixture
def make_record(embedder):
    """Factory: MemoryRecord embedded from its text (or an explicit vector)."""

    def _make(url, text="", title=None, tags=(), created_at=None, id=None, embedding=None):
        if embedding is None:
            embedding = embedder.embed_document(text or url).tolist()
        return MemoryRecord(
            id=id,
            url=url,
            title=title if title is not None else url,
            content=text,
            summary=text[:50],
            tags=list(tags),
            embedding=embedding,
            created_at=created_at,
        )

    return _make


@pytest.fixture
async def service(config, storage):
    """Started service over in-memory storage with hash embeddings."""
    client = EmbeddingClient(config, Embedder(config, HashBackend(config.embedding_dim)))
    svc = MemoryService(config, storage=storage, embeddings=client)
    await svc.start()
    yield svc
    svc.close()
