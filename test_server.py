#!/usr/bin/env python3
"""
Test suite for the Memex Memory MCP Server tools.

Run with: pytest test_server.py -v
"""

import json

import pytest

import memex.server as server_module
from memex.embedding_client import EmbeddingClient
from memex.embeddings import Embedder, EmbeddingBackend
from memex.server import (
    memory_export,
    memory_forget,
    memory_forget_all,
    memory_health,
    memory_import,
    memory_list,
    memory_recall,
    memory_related,
    memory_remember,
    memory_stats,
)
from memex.service import MemoryService


class UnloadableBackend(EmbeddingBackend):
    name = "local"

    def load(self):
        raise ImportError("sentence-transformers is not installed")


PAGE = (
    "LanceDB is an embedded vector database. It stores embeddings next to the data "
    "and supports hybrid search that mixes vector similarity with keyword filters."
)


@pytest.fixture(autouse=True)
async def setup_service(service):
    """Point the server at an isolated in-memory service."""
    server_module._service = service
    yield
    server_module._service = None


# =============================================================================
# Remember
# =============================================================================


class TestMemoryRemember:
    """Tests for memory_remember tool."""

    async def test_remember_basic(self):
        result = await memory_remember(url="https://lancedb.dev", title="LanceDB", content=PAGE, tags=["db"])
        assert 'Remembered "LanceDB"!' in result
        assert "ID: mem_" in result

    async def test_remember_empty_content_fails(self):
        result = await memory_remember(url="https://x", title="X", content="   ")
        assert "Error" in result

    async def test_remember_same_url_twice(self):
        await memory_remember(url="https://lancedb.dev", title="LanceDB", content=PAGE)
        result = await memory_remember(url="https://lancedb.dev", title="LanceDB", content=PAGE)
        assert result == "This page is already remembered."


# =============================================================================
# Recall
# =============================================================================


class TestMemoryRecall:
    """Tests for memory_recall tool."""

    async def test_recall_hybrid(self):
        await memory_remember(url="https://lancedb.dev", title="LanceDB", content=PAGE, tags=["db"])
        result = await memory_recall("vector database")
        assert "Found 1 memories (hybrid (vector + keyword))" in result
        assert "https://lancedb.dev" in result
        assert "Tags: db" in result
        assert "Relevance:" in result

    async def test_recall_nothing(self):
        result = await memory_recall("anything")
        assert result == "No memories found for 'anything'"

    async def test_recall_empty_query_fails(self):
        assert "Error" in await memory_recall("  ")

    async def test_recall_limit_validation(self):
        assert "must be positive" in await memory_recall("x", limit=0)
        assert "cannot exceed" in await memory_recall("x", limit=51)


class TestMemoryRelated:
    """Tests for memory_related tool."""

    async def test_related(self):
        await memory_remember(url="https://lancedb.dev", title="LanceDB", content=PAGE)
        result = await memory_related(url="https://elsewhere", content=PAGE)
        assert result.startswith("1 related memories:")
        assert "LanceDB (https://lancedb.dev)" in result

    async def test_no_related(self):
        assert await memory_related(url="https://elsewhere", content=PAGE) == "No related memories."


# =============================================================================
# List / Forget
# =============================================================================


class TestMemoryList:
    """Tests for memory_list tool."""

    async def test_list_empty(self):
        assert await memory_list() == "No memories stored yet."

    async def test_list_and_filter_by_tag(self):
        await memory_remember(url="https://a", title="A", content=PAGE, tags=["db"])
        await memory_remember(url="https://b", title="B", content=PAGE, tags=["misc"])
        assert (await memory_list()).startswith("2 memories:")
        tagged = await memory_list(tag="DB")
        assert tagged.startswith("1 memories:")
        assert "A [db]" in tagged
        assert await memory_list(tag="none") == "No memories tagged 'none'"


class TestMemoryForget:
    """Tests for memory_forget and memory_forget_all tools."""

    async def test_forget(self):
        saved = await memory_remember(url="https://a", title="A", content=PAGE)
        memory_id = saved.split("ID: ")[1].strip()
        assert await memory_forget(memory_id) == f"Deleted memory {memory_id}"
        assert await memory_forget(memory_id) == f"Memory {memory_id} not found"

    async def test_forget_all_requires_confirm(self):
        await memory_remember(url="https://a", title="A", content=PAGE)
        assert "Error" in await memory_forget_all()
        assert await memory_forget_all(confirm=True) == "Deleted 1 memories"
        assert await memory_list() == "No memories stored yet."


# =============================================================================
# Backup
# =============================================================================


class TestMemoryBackup:
    """Tests for memory_export and memory_import tools."""

    async def test_export_then_import(self, tmp_path):
        await memory_remember(url="https://a", title="A", content=PAGE)
        result = await memory_export(directory=str(tmp_path))
        assert result.startswith("Exported 1 memories to ")
        path = result.removeprefix("Exported 1 memories to ")
        assert json.loads(open(path).read())["memoryCount"] == 1

        await memory_forget_all(confirm=True)
        assert await memory_import(path, mode="replace") == "Restored 1 memories."
        assert await memory_import(path) == "Restored 0 memories. (1 skipped)"

    async def test_import_invalid_mode(self, tmp_path):
        assert "Invalid mode" in await memory_import(str(tmp_path / "x.json"), mode="append")

    async def test_import_missing_file(self, tmp_path):
        assert "Backup file not found" in await memory_import(str(tmp_path / "missing.json"))

    async def test_import_bad_version(self, tmp_path):
        path = tmp_path / "v2.json"
        path.write_text(json.dumps({"version": 2, "memories": []}))
        assert await memory_import(str(path)) == "Error: Unsupported backup version: 2"


# =============================================================================
# Stats / Health
# =============================================================================


class TestMemoryStats:
    """Tests for memory_stats and memory_health tools."""

    async def test_stats_empty(self):
        assert await memory_stats() == "No memories stored yet."

    async def test_stats(self):
        await memory_remember(url="https://a", title="A", content=PAGE, tags=["db", "search"])
        await memory_remember(url="https://b", title="B", content=PAGE, tags=["db"])
        result = await memory_stats()
        assert "Total: 2 memories" in result
        assert "db: 2" in result
        assert "search: 1" in result

    async def test_health(self):
        result = await memory_health()
        assert "Total memories: 0" in result
        assert "Embeddings: ready (hash" in result
        assert "Hybrid" in result

    async def test_health_reports_embedding_failure(self, config, storage):
        """A runtime that failed to load is visible, not a silent keyword-only mode."""
        client = EmbeddingClient(config, Embedder(config, UnloadableBackend()))
        broken = MemoryService(config, storage=storage, embeddings=client)
        assert await broken.start() is False
        server_module._service = broken
        try:
            result = await memory_health()
            assert "Embeddings: error" in result
            assert "Search: Keyword only" in result
            assert "Embedding error: " in result
            assert "sentence-transformers is not installed" in result
        finally:
            broken.close()
