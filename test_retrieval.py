"""Tests for vector, keyword, and hybrid retrieval."""

import pytest

from conftest import basis
from memex.models import RankedResult
from memex.retrieval import RetrievalEngine, fuse_results


def ranked(id, score, created_at=0):
    return RankedResult(
        id=id, url=f"https://{id}", title=id, content="", summary="", tags=[], score=score, created_at=created_at
    )


@pytest.fixture
def engine(store, config):
    return RetrievalEngine(store, config)


class TestFusion:
    def test_weighted_fusion_arithmetic(self):
        """Vector 0.8 + keyword 1.0 -> 0.86; keyword-only 0.9 -> 0.27."""
        fused = fuse_results([ranked("A", 0.8)], [ranked("A", 1.0), ranked("B", 0.9)], limit=5)
        assert [r.id for r in fused] == ["A", "B"]
        assert fused[0].score == pytest.approx(0.86)
        assert fused[1].score == pytest.approx(0.27)

    def test_inputs_not_mutated(self):
        vector = [ranked("A", 0.8)]
        fuse_results(vector, [ranked("A", 1.0)], limit=5)
        assert vector[0].score == 0.8

    def test_limit_applied_after_fusion(self):
        fused = fuse_results([ranked("A", 0.9), ranked("B", 0.5)], [ranked("C", 1.0)], limit=2)
        assert [r.id for r in fused] == ["A", "B"]

    def test_ties_newest_first_then_id(self):
        fused = fuse_results(
            [ranked("b", 0.5, created_at=10), ranked("a", 0.5, created_at=10), ranked("c", 0.5, created_at=20)],
            [],
            limit=5,
        )
        assert [r.id for r in fused] == ["c", "a", "b"]


class TestVectorSearch:
    async def test_similarity_floor(self, store, engine, make_record):
        await store.insert(make_record("https://x", "x", id="x", embedding=basis(0)))
        await store.insert(make_record("https://y", "y", id="y", embedding=basis(1)))
        results = await engine.vector_search(basis(0), limit=5, similarity_floor=0.5)
        assert [r.id for r in results] == ["x"]
        assert results[0].score == pytest.approx(1.0)

    async def test_zero_query_vector(self, store, engine, make_record):
        await store.insert(make_record("https://x", "x", embedding=basis(0)))
        assert await engine.vector_search([0.0] * len(basis(0))) == []

    async def test_equal_scores_newest_first(self, store, engine, make_record):
        await store.insert(make_record("https://old", "x", id="old", created_at=1, embedding=basis(2)))
        await store.insert(make_record("https://new", "x", id="new", created_at=2, embedding=basis(2)))
        results = await engine.vector_search(basis(2), limit=5)
        assert [r.id for r in results] == ["new", "old"]

    async def test_empty_store(self, engine):
        assert await engine.vector_search(basis(0)) == []


class TestKeywordSearch:
    async def test_positional_scores_in_store_order(self, store, engine, make_record):
        for i in range(3):
            await store.insert(make_record(f"https://{i}", f"page {i} about Python", id=f"m{i}"))
        results = await engine.keyword_search("python", limit=5)
        assert [r.id for r in results] == ["m0", "m1", "m2"]
        assert [r.score for r in results] == pytest.approx([1.0, 0.95, 0.90])

    async def test_matches_title_summary_and_tags(self, store, engine, make_record):
        await store.insert(make_record("https://t", "nothing", title="Rust Book", id="t"))
        await store.insert(make_record("https://g", "nothing", tags=["rustlang"], id="g"))
        await store.insert(make_record("https://n", "nothing", id="n"))
        results = await engine.keyword_search("RUST", limit=5)
        assert {r.id for r in results} == {"t", "g"}

    async def test_non_ascii_substring(self, store, engine, make_record):
        await store.insert(make_record("https://jp", "今日は機械学習について学びました。", id="jp"))
        results = await engine.keyword_search("機械学習", limit=5)
        assert [r.id for r in results] == ["jp"]

    async def test_limit(self, store, engine, make_record):
        for i in range(4):
            await store.insert(make_record(f"https://{i}", "common"))
        assert len(await engine.keyword_search("common", limit=2)) == 2
        assert await engine.keyword_search("common", limit=0) == []


class TestHybridSearch:
    async def test_both_hits_outrank_single_hits(self, store, engine, make_record):
        await store.insert(make_record("https://both", "quantum notes", id="both", embedding=basis(0)))
        await store.insert(make_record("https://vec", "other notes", id="vec", embedding=basis(0)))
        await store.insert(make_record("https://kw", "quantum again", id="kw", embedding=basis(1)))
        results = await engine.hybrid_search("quantum", basis(0), limit=5)
        scores = {r.id: r.score for r in results}
        assert [r.id for r in results][0] == "both"
        assert scores["both"] == pytest.approx(1.0)
        assert scores["vec"] == pytest.approx(0.7)
        assert scores["kw"] == pytest.approx(0.95 * 0.3)


class TestSimilarityLinks:
    async def test_links_above_threshold(self, store, engine, make_record):
        await store.insert(make_record("https://a", "x", id="a", embedding=basis(0)))
        await store.insert(make_record("https://b", "x", id="b", embedding=basis(0)))
        await store.insert(make_record("https://c", "x", id="c", embedding=basis(1)))
        links = await engine.similarity_links(threshold=0.5)
        assert len(links) == 1
        assert {links[0].source, links[0].target} == {"a", "b"}
        assert links[0].similarity == pytest.approx(1.0)
