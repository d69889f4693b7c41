#!/usr/bin/env python3
"""
Tests for the RAG engine: initialization state machine, semantic retrieval,
keyword fallback and context formatting.
"""

import asyncio
import logging
import time
from unittest.mock import patch

import pytest

from portfolio_rag.models.knowledge import DocumentMetadata, DocumentType, SearchResult, StoredDocument
from portfolio_rag.rag.embedder import BaseEmbeddingClient
from portfolio_rag.rag.errors import EmbeddingRequestFailed
from portfolio_rag.rag.retriever import CONTEXT_HEADER, RAGEngine, RAGState
from portfolio_rag.rag.vector_store import VectorStore

DOCS = [
    StoredDocument(
        id="skill-programming-python",
        content="Skill: Python. Category: Programming Languages. Proficiency: 97%. FastAPI, NumPy, asyncio",
        metadata=DocumentMetadata(title="Python", type=DocumentType.SKILL, category="programming"),
        embedding=[1.0, 0.0, 0.0],
    ),
    StoredDocument(
        id="project-drone-swarm",
        content="Project: Drone Swarm\nTechnologies: ROS 2, PX4\nDescription: Cooperative drones.",
        metadata=DocumentMetadata(title="Drone Swarm", type=DocumentType.PROJECT),
        embedding=[0.0, 1.0, 0.0],
    ),
    StoredDocument(
        id="persona-identity",
        content="About Srujan:\nRole: AI/ML Engineer & Robotics Specialist",
        metadata=DocumentMetadata(title="About Srujan", type=DocumentType.PERSONA),
        embedding=[0.0, 0.0, 1.0],
    ),
]


class FakeEmbedder(BaseEmbeddingClient):
    """Returns a fixed vector per query, or raises / stalls when told to."""

    def __init__(self, vector=None, error=None, delay=0.0, configured=True):
        super().__init__(dimensions=0)
        self.vector = vector or [1.0, 0.0, 0.0]
        self.error = error
        self.delay = delay
        self.configured = configured
        self.calls = 0

    @property
    def is_configured(self):
        return self.configured

    async def embed(self, text):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.vector)


def write_cache(path, docs=DOCS):
    store = VectorStore(cache_path=path)
    store.upsert_many(docs)
    store.save_cache()


@pytest.fixture
def cache_path(tmp_path):
    path = tmp_path / "embeddings-cache.json"
    write_cache(path)
    return path


def make_engine(cache_path, embedder=None, **kwargs):
    return RAGEngine(VectorStore(cache_path=cache_path), embedder or FakeEmbedder(), **kwargs)


# ── Initialization ──

def test_initialize_loads_cache(cache_path):
    engine = make_engine(cache_path)
    assert engine.state == RAGState.UNINITIALIZED

    state = asyncio.run(engine.initialize())

    assert state == RAGState.READY
    assert engine.status() == {"state": "ready", "initialized": True, "document_count": 3}


def test_initialize_is_single_flight(cache_path):
    """Concurrent callers share one cache load."""
    engine = make_engine(cache_path)

    async def run():
        with patch.object(engine.store, "load_cache", wraps=engine.store.load_cache) as load:
            states = await asyncio.gather(*(engine.initialize() for _ in range(5)))
            await engine.initialize()
        return states, load.call_count

    states, load_calls = asyncio.run(run())
    assert states == [RAGState.READY] * 5
    assert load_calls == 1


def test_failed_initialization_can_retry(cache_path):
    engine = make_engine(cache_path)
    real_load = engine.store.load_cache

    async def run():
        with patch.object(engine.store, "load_cache", side_effect=[OSError("disk gone"), real_load()]):
            with pytest.raises(OSError):
                await engine.initialize()
            assert engine.state == RAGState.UNINITIALIZED
            return await engine.initialize()

    assert asyncio.run(run()) == RAGState.READY


def test_missing_cache_without_credential_is_degraded(tmp_path, caplog):
    engine = make_engine(tmp_path / "missing.json", FakeEmbedder(configured=False))
    with caplog.at_level(logging.WARNING):
        assert asyncio.run(engine.initialize()) == RAGState.DEGRADED
    assert "not configured" in caplog.text


def test_missing_cache_with_credential_is_degraded(tmp_path, caplog):
    engine = make_engine(tmp_path / "missing.json")
    with caplog.at_level(logging.WARNING):
        assert asyncio.run(engine.initialize()) == RAGState.DEGRADED
    assert "generate_embeddings.py" in caplog.text


def test_reinitialize_picks_up_new_cache(cache_path):
    engine = make_engine(cache_path)

    async def run():
        await engine.initialize()
        write_cache(cache_path, DOCS[:1])
        await engine.reinitialize()

    asyncio.run(run())
    assert engine.store.count() == 1
    assert engine.state == RAGState.READY


def test_reinitialize_recovers_from_failed_in_flight_load(cache_path):
    engine = make_engine(cache_path)
    real_load = engine.store.load_cache
    calls = []

    def flaky_load():
        calls.append(1)
        if len(calls) == 1:
            time.sleep(0.05)
            raise OSError("disk gone")
        return real_load()

    async def run():
        with patch.object(engine.store, "load_cache", side_effect=flaky_load):
            first = asyncio.ensure_future(engine.initialize())
            await asyncio.sleep(0)
            state = await engine.reinitialize()
            with pytest.raises(OSError):
                await first
            return state

    assert asyncio.run(run()) == RAGState.READY
    assert engine.state == RAGState.READY
    assert engine.store.count() == len(DOCS)
    assert len(calls) == 2, "Reload should run after the failed attempt"


# ── Retrieval ──

def test_python_question_ranks_python_skill_first(cache_path):
    embedder = FakeEmbedder(vector=[0.9, 0.1, 0.0])
    engine = make_engine(cache_path, embedder)

    results = asyncio.run(engine.retrieve("What Python experience do you have?", top_k=3))

    assert results[0].document.id == "skill-programming-python"
    assert results[0].score > results[1].score
    assert embedder.calls == 1


def test_invalid_credential_falls_back_to_keyword(cache_path, caplog):
    embedder = FakeEmbedder(error=EmbeddingRequestFailed("Embedding API failed: 401", status_code=401))
    engine = make_engine(cache_path, embedder)

    with caplog.at_level(logging.WARNING):
        results = asyncio.run(engine.retrieve("What languages do you use?"))

    assert [r.document.id for r in results] == ["skill-programming-python"]
    assert results[0].score == pytest.approx(0.5 + 0.1 * 1)
    assert any("python" in r.document.content.lower() for r in results)
    assert "keyword search" in caplog.text


def test_keyword_fallback_scores_metadata(cache_path):
    engine = make_engine(cache_path, FakeEmbedder(error=EmbeddingRequestFailed("down")))
    results = asyncio.run(engine.retrieve("python experience"))
    # content match plus title match
    assert results[0].score == pytest.approx(0.5 + 0.1 * 1.5)


def test_empty_store_returns_nothing(tmp_path):
    path = tmp_path / "empty.json"
    write_cache(path, [])
    embedder = FakeEmbedder()
    engine = make_engine(path, embedder)

    results = asyncio.run(engine.retrieve("anything at all"))

    assert results == []
    assert engine.format_context(results) == ""
    assert engine.state == RAGState.READY
    assert embedder.calls == 0


def test_blank_query_returns_nothing(cache_path):
    embedder = FakeEmbedder()
    engine = make_engine(cache_path, embedder)
    assert asyncio.run(engine.retrieve("   ")) == []
    assert embedder.calls == 0


def test_degraded_uses_keyword_only(tmp_path):
    embedder = FakeEmbedder()
    store = VectorStore(cache_path=tmp_path / "missing.json")
    store.upsert_many(DOCS)
    engine = RAGEngine(store, embedder)

    results = asyncio.run(engine.retrieve("drone swarm"))

    assert engine.state == RAGState.DEGRADED
    assert [r.document.id for r in results] == ["project-drone-swarm"]
    assert embedder.calls == 0


def test_min_score_cutoff_falls_back_to_keyword(cache_path):
    """When nothing clears the cutoff, keyword results are returned instead."""
    engine = make_engine(cache_path, FakeEmbedder(vector=[1.0, 1.0, 1.0]), min_score=0.9)
    results = asyncio.run(engine.retrieve("python"))
    assert [r.document.id for r in results] == ["skill-programming-python"]


def test_min_score_cutoff_filters_weak_matches(cache_path):
    engine = make_engine(cache_path, FakeEmbedder(vector=[0.9, 0.1, 0.0]), min_score=0.5)
    results = asyncio.run(engine.retrieve("python"))
    assert [r.document.id for r in results] == ["skill-programming-python"]


def test_no_cutoff_by_default(cache_path):
    engine = make_engine(cache_path, FakeEmbedder(vector=[0.9, 0.1, 0.0]))
    assert len(asyncio.run(engine.retrieve("python"))) == 3


def test_query_timeout_falls_back_to_keyword(cache_path):
    engine = make_engine(cache_path, FakeEmbedder(delay=1.0), query_timeout=0.01)
    results = asyncio.run(engine.retrieve("drone"))
    assert [r.document.id for r in results] == ["project-drone-swarm"]


def test_dimension_mismatch_falls_back_to_keyword(cache_path, caplog):
    engine = make_engine(cache_path, FakeEmbedder(vector=[1.0, 0.0]))
    with caplog.at_level(logging.ERROR):
        results = asyncio.run(engine.retrieve("python"))
    assert [r.document.id for r in results] == ["skill-programming-python"]
    assert "does not match" in caplog.text


def test_uses_default_top_k(cache_path):
    engine = make_engine(cache_path, top_k=2)
    assert len(asyncio.run(engine.retrieve("python"))) == 2


# ── Context formatting ──

def test_format_context_blocks():
    engine = RAGEngine(VectorStore(), FakeEmbedder(), owner_name="Srujan")
    results = [SearchResult(document=DOCS[0], score=0.987654), SearchResult(document=DOCS[1], score=0.5)]

    context = engine.format_context(results)

    assert context.startswith(CONTEXT_HEADER)
    assert "[Source 1: Python (skill)]\n" + DOCS[0].content in context
    assert "[Source 2: Drone Swarm (project)]" in context
    assert context.index("[Source 1") < context.index("---") < context.index("[Source 2")
    assert "Srujan" in context
    assert "0.98" not in context
    assert "skill-programming-python" not in context


def test_format_context_max_chars_keeps_first_block():
    engine = RAGEngine(VectorStore(), FakeEmbedder())
    results = [SearchResult(document=d, score=1.0) for d in DOCS]

    context = engine.format_context(results, max_chars=10)

    assert "[Source 1:" in context
    assert "[Source 2:" not in context


def test_format_context_max_chars_covers_whole_block():
    engine = RAGEngine(VectorStore(), FakeEmbedder())
    results = [SearchResult(document=d, score=1.0) for d in DOCS]
    two_blocks = engine.format_context(results[:2])

    context = engine.format_context(results, max_chars=len(two_blocks))
    assert context == two_blocks
    assert len(context) <= len(two_blocks)

    context = engine.format_context(results, max_chars=len(two_blocks) - 1)
    assert "[Source 1:" in context
    assert "[Source 2:" not in context


def test_get_context(cache_path):
    engine = make_engine(cache_path, FakeEmbedder(vector=[0.0, 1.0, 0.0]))
    context = asyncio.run(engine.get_context("drones", top_k=1))
    assert "[Source 1: Drone Swarm (project)]" in context
    assert "[Source 2" not in context


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
