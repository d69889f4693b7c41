"""
Offline index build: knowledge source -> documents -> embeddings -> cache file.

Run it whenever data/knowledge.json or the project docs change. Never called
on the request path.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .. import config
from ..models.knowledge import StoredDocument
from .document_builder import build_knowledge_base, load_knowledge_source, summarize_documents
from .document_parser import parse_documents_in_directory
from .embedder import BaseEmbeddingClient, get_embedding_client
from .errors import EmbeddingRequestFailed, EmbeddingUnavailable
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

# Status codes worth another attempt: rate limiting and server-side failures
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def _is_retryable(exception: BaseException) -> bool:
    """Transport failures and rate limit / server errors. Auth errors are final."""
    if not isinstance(exception, EmbeddingRequestFailed):
        return False
    return exception.status_code is None or exception.status_code in RETRYABLE_STATUS_CODES


async def _embed_with_retry(
    embedder: BaseEmbeddingClient,
    texts: Sequence[str],
    max_attempts: int,
) -> List[List[float]]:
    @retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=config.EMBED_RETRY_MIN_WAIT, max=config.EMBED_RETRY_MAX_WAIT),
        retry=retry_if_exception(_is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _embed_all():
        return await embedder.embed_batch(texts)

    return await _embed_all()


async def build_index(
    source_path: Optional[Union[str, Path]] = None,
    store: Optional[VectorStore] = None,
    embedder: Optional[BaseEmbeddingClient] = None,
    project_docs_dir: Optional[Union[str, Path]] = None,
    max_attempts: Optional[int] = None,
) -> int:
    """Build every knowledge document, embed it and write the cache.

    A batch that fails with a retryable provider error is embedded again from
    the start, up to `max_attempts` times in total.

    Returns:
        Number of documents cached.

    Raises:
        EmbeddingUnavailable: No credential for the embedding provider.
        EmbeddingError: Embedding failed for good (nothing is written).
        OSError: The source could not be read or the cache could not be written.
    """
    embedder = embedder or get_embedding_client()
    if not embedder.is_configured:
        raise EmbeddingUnavailable(f"{embedder.credential_name} is required to generate embeddings")

    store = store or VectorStore()
    source_path = source_path or config.KNOWLEDGE_SOURCE_PATH
    project_docs_dir = project_docs_dir or config.PROJECT_DOCS_DIR
    max_attempts = max_attempts or config.EMBED_MAX_ATTEMPTS

    logger.info(f"[INDEXER] Loading knowledge source from {source_path}")
    source = load_knowledge_source(str(source_path))
    project_files = parse_documents_in_directory(project_docs_dir)

    documents = build_knowledge_base(source, project_files)
    summary = summarize_documents(documents)
    logger.info(f"[INDEXER] Embedding {summary['total']} documents {summary['by_type']}")

    embeddings = await _embed_with_retry(embedder, [doc.content for doc in documents], max_attempts)

    store.clear()
    store.upsert_many([
        StoredDocument.from_knowledge(doc, embedding)
        for doc, embedding in zip(documents, embeddings)
    ])
    store.save_cache()

    logger.info(f"[INDEXER] Index complete: {store.count()} documents cached at {store.cache_path}")
    return store.count()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    count = asyncio.run(build_index())
    print(f"\nDone! Cached {count} documents.")
