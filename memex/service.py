"""
Memory service: the application root.

Owns one storage backend, memory store, retrieval engine, embedding client and
summarizer, and exposes the collaborator-facing API. "remember" and "recall"
report failure through return values, never exceptions: recall degrades from
hybrid search to keyword search to an empty list.
"""

from __future__ import annotations

import sys
from typing import Any

from memex.backup import ImportMode, Snapshot, export_snapshot, import_snapshot
from memex.config import CONFIG, Config
from memex.embedding_client import EmbeddingClient
from memex.models import ImportResult, MemoryItem, MemoryRecord, RankedResult, RememberResult
from memex.retrieval import RetrievalEngine
from memex.storage import KeyValueStorage, LanceKeyValueStorage
from memex.summarizer import Summarizer, fallback_summary
from memex.vector_db import MemoryStore


class MemoryService:
    """remember / recall / list / forget / backup for one user's memories."""

    def __init__(
        self,
        config: Config = CONFIG,
        storage: KeyValueStorage | None = None,
        embeddings: EmbeddingClient | None = None,
        summarizer: Summarizer | None = None,
    ):
        self.config = config
        self.storage = storage or LanceKeyValueStorage(config.db_path, config.kv_table_name)
        self.store = MemoryStore(self.storage, config)
        self.engine = RetrievalEngine(self.store, config)
        self.embeddings = embeddings or EmbeddingClient(config)
        self.summarizer = summarizer or Summarizer(config)

    @property
    def is_ready(self) -> bool:
        return self.embeddings.is_ready

    async def start(self) -> bool:
        """Load the store and initialize embeddings. Returns embedding readiness."""
        await self.store.load()
        ready = await self.embeddings.init()
        if not ready:
            print("[memex] Embeddings unavailable, recall will use keyword search only", file=sys.stderr)
        return ready

    def close(self) -> None:
        self.embeddings.close()

    # -- remember -------------------------------------------------------------

    async def remember_page(
        self,
        url: str,
        title: str,
        content: str,
        summary: str | None = None,
        tags: list[str] | None = None,
        summarize: bool = False,
    ) -> RememberResult:
        """Embed and store a page, unless its URL is already remembered."""
        if not url.strip():
            return RememberResult(False, "Error: url is required")
        if not self.embeddings.is_ready:
            return RememberResult(False, "Memory system is not ready.")

        try:
            if await self.store.exists_by_url(url):
                return RememberResult(False, "This page is already remembered.")

            print(f"[memex] Generating document embedding for {url}", file=sys.stderr)
            embedding = await self.embeddings.embed_document(content)

            tags = list(tags or [])
            if summary is None and summarize:
                result = await self.summarizer.summarize(title, content)
                summary = result["summary"]
                tags = tags or result.get("tags", [])
            summary = summary or fallback_summary(content, self.config.summary_length)

            record = MemoryRecord(
                url=url,
                title=title,
                content=content,
                summary=summary,
                tags=tags,
                embedding=embedding,
            )
            memory_id = await self.store.insert(record)
        except Exception as e:
            print(f"[memex] Remember failed: {e}", file=sys.stderr)
            return RememberResult(False, f"Save failed: {e}")

        return RememberResult(True, f'Remembered "{title}"!', memory_id)

    # -- recall ---------------------------------------------------------------

    async def recall_memories(self, query: str, limit: int = CONFIG.default_limit) -> list[RankedResult]:
        """Hybrid search with graceful degradation. Never raises.

        Not ready -> keyword search; hybrid failure -> keyword search;
        keyword failure -> []. A blank query returns [] before any search,
        and limit is clamped to config.max_limit, so in those two cases the
        result differs from calling keyword_search(query, limit) directly.
        """
        if not query.strip():
            return []
        limit = max(0, min(limit, self.config.max_limit))

        if not self.embeddings.is_ready:
            print("[memex] Embedding not ready, falling back to keyword search", file=sys.stderr)
            return await self._keyword_fallback(query, limit)

        try:
            query_vector = await self.embeddings.embed_text(query)
            return await self.engine.hybrid_search(query, query_vector, limit)
        except Exception as e:
            print(f"[memex] Hybrid recall failed, falling back to keyword search: {e}", file=sys.stderr)
            return await self._keyword_fallback(query, limit)

    async def _keyword_fallback(self, query: str, limit: int) -> list[RankedResult]:
        try:
            return await self.engine.keyword_search(query, limit)
        except Exception as e:
            print(f"[memex] Keyword search also failed: {e}", file=sys.stderr)
            return []

    async def find_related(self, url: str, content: str) -> list[RankedResult]:
        """Past memories related to the page being browsed (excluding the page itself)."""
        if len(content) < self.config.serendipity_min_content:
            return []
        results = await self.recall_memories(
            content[: self.config.recall_query_length], self.config.related_limit
        )
        related = [
            r for r in results if r.score >= self.config.serendipity_threshold and r.url != url
        ]
        if related:
            print(f"[memex] Found {len(related)} related memories for {url}", file=sys.stderr)
        return related[: self.config.max_related_display]

    @staticmethod
    def format_memories_for_prompt(memories: list[RankedResult]) -> str:
        """Render recalled memories as a context block for an LLM prompt."""
        if not memories:
            return ""
        formatted = "\n\n".join(
            f'[Memory {i}] "{m.title}"\nURL: {m.url}\nContent: {m.summary}\nRelevance: {round(m.score * 100)}%'
            for i, m in enumerate(memories, 1)
        )
        return (
            "[Related memories]\n"
            "These pages, saved earlier by the user, relate to the question.\n"
            "Use them when answering.\n\n"
            f"{formatted}\n\n"
        )

    # -- listing / forgetting -------------------------------------------------

    async def list_memories(self) -> list[MemoryItem]:
        try:
            return await self.store.get_all()
        except Exception as e:
            print(f"[memex] List memories failed: {e}", file=sys.stderr)
            return []

    async def get_memories_with_embeddings(self) -> list[MemoryItem]:
        return await self.store.get_all_with_embeddings()

    async def memories_by_tag(self, tag: str, limit: int = 100) -> list[MemoryItem]:
        return await self.store.search_by_tag(tag, limit)

    async def count(self) -> int:
        return await self.store.count()

    async def forget_memory(self, memory_id: str) -> bool:
        try:
            return await self.store.delete(memory_id)
        except Exception as e:
            print(f"[memex] Delete failed: {e}", file=sys.stderr)
            return False

    async def forget_all(self) -> None:
        await self.store.clear_all()

    # -- backup ---------------------------------------------------------------

    async def export_memories(self) -> Snapshot:
        return await export_snapshot(self.store)

    async def import_memories(
        self, snapshot: Snapshot | dict[str, Any], mode: ImportMode = "merge"
    ) -> ImportResult:
        return await import_snapshot(self.store, snapshot, mode)
