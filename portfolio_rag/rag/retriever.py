"""
Retriever module: the query-time side of the RAG engine.

Owns the vector store and the embedding client, loads the precomputed
embeddings once, and turns a visitor question into a context block for the
chat model. Semantic search is used when the cache and the embedding API are
both usable; every failure on that path degrades to keyword search instead of
raising, so a chat turn is never blocked by retrieval.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .. import config
from ..models.knowledge import SearchResult
from .embedder import BaseEmbeddingClient
from .errors import DimensionMismatch
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Relevant information from the portfolio knowledge base:"
CONTEXT_SEPARATOR = "\n\n---\n\n"


class RAGState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DEGRADED = "degraded"


class RAGEngine:
    """Retrieval orchestrator, constructed once at start-up and shared by handlers."""

    def __init__(
        self,
        store: VectorStore,
        embedder: BaseEmbeddingClient,
        top_k: int = 5,
        min_score: Optional[float] = None,
        query_timeout: Optional[float] = None,
        owner_name: Optional[str] = None,
    ):
        """
        Args:
            store: Vector store holding the embedded documents.
            embedder: Client used to embed queries.
            top_k: Default number of results per query.
            min_score: Optional cosine cutoff for semantic results. None keeps
                every result.
            query_timeout: Seconds allowed for the query embedding call.
                None or 0 waits indefinitely.
            owner_name: Name used in the grounding instruction.
        """
        self.store = store
        self.embedder = embedder
        self.top_k = top_k
        self.min_score = min_score
        self.query_timeout = query_timeout
        self.owner_name = owner_name or config.PORTFOLIO_OWNER_NAME
        self.state = RAGState.UNINITIALIZED
        self._init_task: Optional[asyncio.Task] = None

    # ── Initialization ──

    async def initialize(self) -> RAGState:
        """Load the embeddings cache once.

        Concurrent callers share one in-flight attempt. A failed attempt is
        forgotten so the next call retries.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._do_initialize())

        task = self._init_task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
                self.state = RAGState.UNINITIALIZED
            raise

    async def _do_initialize(self) -> RAGState:
        self.state = RAGState.INITIALIZING
        logger.info("[RETRIEVER] Initializing RAG engine...")

        loaded = await asyncio.to_thread(self.store.load_cache)

        if loaded:
            self.state = RAGState.READY
            logger.info(f"[RETRIEVER] RAG ready with {self.store.count()} documents")
        elif not self.embedder.is_configured:
            self.state = RAGState.DEGRADED
            logger.warning(
                f"[RETRIEVER] {self.embedder.credential_name} not configured, using keyword search only"
            )
        else:
            self.state = RAGState.DEGRADED
            logger.warning(
                "[RETRIEVER] No embeddings cache found. Run generate_embeddings.py to build it. "
                "Using keyword search only"
            )
        return self.state

    async def reinitialize(self) -> RAGState:
        """Drop the loaded documents and load the cache again."""
        try:
            if self._init_task is not None and not self._init_task.done():
                await asyncio.shield(self._init_task)
        except Exception as e:
            logger.warning(f"[RETRIEVER] In-flight initialization failed before reload: {type(e).__name__}: {e}")
        finally:
            self.store.clear()
            self._init_task = None
            self.state = RAGState.UNINITIALIZED
        return await self.initialize()

    # ── Retrieval ──

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """Find the documents most relevant to a query.

        Never raises for provider failures: any problem with the semantic path
        falls back to keyword search.
        """
        top_k = self.top_k if top_k is None else top_k
        await self.initialize()

        if self.store.count() == 0 or not query or not query.strip():
            return []

        if self.state == RAGState.DEGRADED:
            return self.store.search_by_keyword(query, top_k)

        try:
            query_vector = await self._embed_query(query)
        except Exception as e:
            logger.warning(f"[RETRIEVER] Query embedding failed, using keyword search: {type(e).__name__}: {e}")
            return self.store.search_by_keyword(query, top_k)

        try:
            results = self.store.search(query_vector, top_k)
        except DimensionMismatch as e:
            logger.error(f"[RETRIEVER] Query vector does not match the cache, using keyword search: {e}")
            return self.store.search_by_keyword(query, top_k)

        if self.min_score is not None:
            results = [r for r in results if r.score >= self.min_score]

        if not results:
            logger.info("[RETRIEVER] No semantic results, using keyword search")
            return self.store.search_by_keyword(query, top_k)

        logger.info(
            f"[RETRIEVER] Retrieved {len(results)} documents for query "
            f"(top: {results[0].document.id} @ {results[0].score:.3f})"
        )
        return results

    async def _embed_query(self, query: str) -> List[float]:
        if self.query_timeout:
            return await asyncio.wait_for(self.embedder.embed(query), timeout=self.query_timeout)
        return await self.embedder.embed(query)

    def format_context(self, results: List[SearchResult], max_chars: Optional[int] = None) -> str:
        """Render ranked results as a context block for the chat model.

        Blocks are numbered in rank order and carry the title and type only.
        With max_chars, the whole returned string (header, separators and
        footer included) stays within the limit: blocks stop before the one
        that would exceed it. The first block is always kept, so a limit
        smaller than header, footer and one block is exceeded.
        """
        if not results:
            return ""

        footer = (
            f"Use the information above to answer the question as {self.owner_name}. "
            "If the answer is not covered there, say so instead of guessing."
        )
        blocks: List[str] = []
        used = len(CONTEXT_HEADER) + len(footer) + 2 * len("\n\n")
        for i, result in enumerate(results, start=1):
            meta = result.document.metadata
            block = f"[Source {i}: {meta.title} ({meta.type.value})]\n{result.document.content}"
            cost = len(block) + (len(CONTEXT_SEPARATOR) if blocks else 0)
            if max_chars and blocks and used + cost > max_chars:
                break
            blocks.append(block)
            used += cost

        body = CONTEXT_SEPARATOR.join(blocks)
        return f"{CONTEXT_HEADER}\n\n{body}\n\n{footer}"

    async def get_context(self, query: str, top_k: Optional[int] = None, max_chars: Optional[int] = None) -> str:
        """Retrieve and format in one call."""
        results = await self.retrieve(query, top_k)
        if max_chars is None:
            max_chars = config.RAG_MAX_CONTEXT_CHARS or None
        return self.format_context(results, max_chars=max_chars)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "initialized": self.state in (RAGState.READY, RAGState.DEGRADED),
            "document_count": self.store.count(),
        }
