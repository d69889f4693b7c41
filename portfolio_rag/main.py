# Entry point for the FastAPI app
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

from . import config
from .rag.embedder import get_embedding_client
from .rag.retriever import RAGEngine
from .rag.vector_store import VectorStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_engine() -> RAGEngine:
    """Construct the RAG engine from configuration."""
    return RAGEngine(
        store=VectorStore(config.RAG_CACHE_PATH),
        embedder=get_embedding_client(),
        top_k=config.RAG_TOP_K,
        min_score=config.RAG_MIN_SCORE,
        query_timeout=config.RAG_QUERY_TIMEOUT_SECONDS or None,
    )


def create_app(engine: Optional[RAGEngine] = None) -> FastAPI:
    """Build the API. The engine is created once at startup unless one is injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rag = engine or build_engine()
        app.state.rag = rag
        # Warm the cache in the background; requests await the same attempt
        init_task = asyncio.ensure_future(rag.initialize())
        logger.info("[API] RAG engine created, initialization started")
        yield
        if not init_task.done():
            init_task.cancel()
        elif not init_task.cancelled() and init_task.exception() is not None:
            logger.error(f"[API] RAG initialization failed: {init_task.exception()}")

    app = FastAPI(title="Portfolio RAG", lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/rag/status")
    async def rag_status(request: Request):
        rag: RAGEngine = request.app.state.rag
        return {**rag.status(), "store": rag.store.stats()}

    @app.post("/rag/context")
    async def rag_context(request: Request):
        """Return the context block and its sources for a visitor question."""
        try:
            data = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Body must be JSON")

        query = data.get("query") if isinstance(data, dict) else None
        if not isinstance(query, str):
            raise HTTPException(status_code=400, detail="query must be a string")

        top_k = data.get("top_k")
        if top_k is not None and (isinstance(top_k, bool) or not isinstance(top_k, int)):
            raise HTTPException(status_code=400, detail="top_k must be an integer")

        rag: RAGEngine = request.app.state.rag
        try:
            results = await rag.retrieve(query, top_k)
        except Exception as e:
            # Retrieval problems must not break the chat turn
            logger.exception(f"[API] Retrieval failed: {e}")
            results = []

        context = rag.format_context(results, max_chars=config.RAG_MAX_CONTEXT_CHARS or None)
        sources = [
            {"title": r.document.metadata.title, "type": r.document.metadata.type.value}
            for r in results
        ]
        logger.info(f"[API] Context built from {len(sources)} sources")
        return {"context": context, "sources": sources}

    return app


app = create_app()
