"""
Retrieval engine: vector, keyword, and hybrid (weighted fusion) search.

Hybrid search runs both searches concurrently and fuses by memory id:
    vector-only hit   score = v * 0.7
    keyword-only hit  score = k * 0.3
    both              score = v * 0.7 + k * 0.3
Equal scores are ordered by created_at (newest first), then id.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from memex.config import CONFIG, Config
from memex.embeddings import cosine_similarity
from memex.models import MemoryItem, RankedResult
from memex.vector_db import MemoryStore


def rank_key(result: RankedResult) -> tuple[float, int, str]:
    """Sort key: score desc, created_at desc, id asc."""
    return (-result.score, -result.created_at, result.id)


@dataclass(slots=True)
class SimilarityLink:
    source: str
    target: str
    similarity: float


class RetrievalEngine:
    """Ranks stored memories against a query."""

    def __init__(self, store: MemoryStore, config: Config = CONFIG):
        self.store = store
        self.config = config

    async def vector_search(
        self,
        query_vector: Sequence[float],
        limit: int = CONFIG.default_limit,
        similarity_floor: float = CONFIG.search_similarity_floor,
    ) -> list[RankedResult]:
        """Cosine similarity against every stored embedding."""
        records, matrix = await self.store.vector_index()
        if not records or limit <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []
        row_norms = np.linalg.norm(matrix, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(row_norms > 0, matrix @ query / (row_norms * query_norm), 0.0)

        hits = [
            RankedResult.from_record(record, float(score))
            for record, score in zip(records, scores)
            if score >= similarity_floor
        ]
        hits.sort(key=rank_key)
        return hits[:limit]

    async def keyword_search(self, query: str, limit: int = CONFIG.default_limit) -> list[RankedResult]:
        """Case-insensitive substring match over title, content, summary, and tags.

        A linear scan rather than a term index, so non-ASCII scripts match
        reliably. Scores are positional (1.0, 0.95, 0.90, ...) in store order.
        """
        if limit <= 0:
            return []
        needle = query.lower()
        step = self.config.keyword_score_step
        matches: list[RankedResult] = []
        for record in await self.store.records():
            haystacks = (
                record.title.lower(),
                record.content.lower(),
                record.summary.lower(),
                " ".join(record.tags).lower(),
            )
            if any(needle in text for text in haystacks):
                matches.append(RankedResult.from_record(record, 1 - len(matches) * step))
                if len(matches) >= limit:
                    break
        return matches

    async def hybrid_search(
        self,
        query: str,
        query_vector: Sequence[float],
        limit: int = CONFIG.default_limit,
    ) -> list[RankedResult]:
        """Weighted fusion of vector (floor 0.3) and keyword results."""
        vector_results, keyword_results = await asyncio.gather(
            self.vector_search(query_vector, limit, self.config.hybrid_similarity_floor),
            self.keyword_search(query, limit),
        )
        return fuse_results(
            vector_results,
            keyword_results,
            limit,
            vector_weight=self.config.vector_weight,
            keyword_weight=self.config.keyword_weight,
        )

    async def similarity_links(
        self,
        items: Sequence[MemoryItem] | None = None,
        threshold: float = CONFIG.graph_similarity_threshold,
    ) -> list[SimilarityLink]:
        """Pairwise links between memories whose embeddings are at least threshold similar."""
        if items is None:
            items = await self.store.get_all_with_embeddings()
        with_vectors = [m for m in items if m.embedding]
        links = []
        for i, a in enumerate(with_vectors):
            for b in with_vectors[i + 1 :]:
                similarity = cosine_similarity(a.embedding, b.embedding)
                if similarity >= threshold:
                    links.append(SimilarityLink(a.id, b.id, similarity))
        return links


def fuse_results(
    vector_results: Sequence[RankedResult],
    keyword_results: Sequence[RankedResult],
    limit: int,
    vector_weight: float = CONFIG.vector_weight,
    keyword_weight: float = CONFIG.keyword_weight,
) -> list[RankedResult]:
    """Merge two ranked lists by id with fixed weights."""
    fused: dict[str, RankedResult] = {}

    for result in vector_results:
        fused[result.id] = result.with_score(result.score * vector_weight)

    for result in keyword_results:
        existing = fused.get(result.id)
        if existing is not None:
            existing.score += result.score * keyword_weight
        else:
            fused[result.id] = result.with_score(result.score * keyword_weight)

    return sorted(fused.values(), key=rank_key)[:limit]
