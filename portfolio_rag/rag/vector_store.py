"""
In-memory vector store with a JSON file cache.

Holds the embedded knowledge documents, ranks them by cosine similarity for
semantic search or by term overlap for the keyword fallback, and persists the
whole set to a single JSON file produced by the offline build.

Search is a brute-force linear scan; the portfolio corpus is a few hundred
documents at most.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .. import config
from ..models.knowledge import DocumentType, SearchResult, StoredDocument
from .embedder import cosine_similarity
from .errors import DimensionMismatch

logger = logging.getLogger(__name__)

# Keyword tokens of this length or shorter are ignored ("the", "and", "is", ...)
MIN_KEYWORD_LENGTH = 3
KEYWORD_BASE_SCORE = 0.5
KEYWORD_SCORE_STEP = 0.1


class VectorStore:
    """Ordered collection of StoredDocuments keyed by id."""

    def __init__(self, cache_path: Optional[Union[str, Path]] = None):
        self.cache_path = Path(cache_path or config.RAG_CACHE_PATH)
        self._documents: List[StoredDocument] = []
        self._lock = threading.Lock()

    @property
    def dimensions(self) -> Optional[int]:
        """Vector length shared by every stored document, None when empty."""
        if not self._documents:
            return None
        return len(self._documents[0].embedding)

    # ── Mutation ──

    def upsert(self, document: StoredDocument) -> None:
        """Insert a document, replacing in place any document with the same id.

        Raises:
            ValueError: If the embedding is empty.
            DimensionMismatch: If the embedding length differs from the store's.
        """
        if not document.embedding:
            raise ValueError(f"Document {document.id!r} has an empty embedding")

        with self._lock:
            dims = self.dimensions
            for index, existing in enumerate(self._documents):
                if existing.id == document.id:
                    # A lone document may be replaced with any dimensionality
                    if dims is not None and len(self._documents) > 1 and len(document.embedding) != dims:
                        raise DimensionMismatch(
                            f"Document {document.id!r} has {len(document.embedding)} dimensions, store has {dims}"
                        )
                    self._documents[index] = document
                    return

            if dims is not None and len(document.embedding) != dims:
                raise DimensionMismatch(
                    f"Document {document.id!r} has {len(document.embedding)} dimensions, store has {dims}"
                )
            self._documents.append(document)

    def upsert_many(self, documents: List[StoredDocument]) -> None:
        """Upsert each document in order. Not atomic as a batch."""
        for document in documents:
            self.upsert(document)

    def clear(self) -> None:
        with self._lock:
            self._documents = []

    # ── Lookup ──

    def count(self) -> int:
        return len(self._documents)

    def contains(self, doc_id: str) -> bool:
        return any(doc.id == doc_id for doc in self._documents)

    def get(self, doc_id: str) -> Optional[StoredDocument]:
        for doc in self._documents:
            if doc.id == doc_id:
                return doc
        return None

    def all_documents(self) -> List[StoredDocument]:
        return list(self._documents)

    def stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for doc in self._documents:
            key = doc.metadata.type.value
            by_type[key] = by_type.get(key, 0) + 1
        return {
            "total_documents": len(self._documents),
            "documents_by_type": by_type,
            "dimensions": self.dimensions,
            "cache_path": str(self.cache_path),
        }

    # ── Search ──

    def search(
        self,
        query_vector: List[float],
        top_k: int = 5,
        type_filter: Optional[DocumentType] = None,
    ) -> List[SearchResult]:
        """Rank documents by cosine similarity to the query vector.

        Ties keep insertion order. `top_k <= 0` returns nothing.

        Raises:
            DimensionMismatch: If the query length differs from the stored vectors.
        """
        if top_k <= 0:
            return []

        candidates = self.all_documents()
        if type_filter is not None:
            candidates = [d for d in candidates if d.metadata.type == type_filter]

        results = [
            SearchResult(document=doc, score=cosine_similarity(query_vector, doc.embedding))
            for doc in candidates
        ]
        # sort() is stable, so equal scores stay in insertion order
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    def search_by_keyword(self, query_text: str, top_k: int = 5) -> List[SearchResult]:
        """Rank documents by how many query terms they contain.

        Each term longer than three characters scores 1 when it appears in the
        content and 0.5 when it appears in the serialized metadata. Documents
        with no match are left out. The raw score is mapped to 0.5 + 0.1 * raw.
        """
        if top_k <= 0:
            return []

        terms = [t for t in query_text.lower().split() if len(t) > MIN_KEYWORD_LENGTH]
        if not terms:
            return []

        results = []
        for doc in self.all_documents():
            content = doc.content.lower()
            metadata = json.dumps(doc.metadata.to_dict(), ensure_ascii=False).lower()

            raw = 0.0
            for term in terms:
                if term in content:
                    raw += 1
                if term in metadata:
                    raw += 0.5

            if raw > 0:
                results.append(SearchResult(document=doc, score=KEYWORD_BASE_SCORE + KEYWORD_SCORE_STEP * raw))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    # ── Persistence ──

    def save_cache(self) -> None:
        """Write every document to the cache file as a pretty-printed JSON array.

        Goes through a temporary file in the same directory and an atomic
        rename, so readers never see a half-written cache. I/O errors propagate.
        """
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        data = [doc.to_dict() for doc in self.all_documents()]

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.cache_path.parent), prefix=self.cache_path.name, suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.cache_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.info(f"[VECTOR_STORE] Saved {len(data)} documents to {self.cache_path}")

    def load_cache(self) -> bool:
        """Replace the in-memory set with the cache file contents.

        Returns:
            True on success. False when the file is missing or unusable, in
            which case the store is left unchanged.
        """
        if not self.cache_path.exists():
            logger.info(f"[VECTOR_STORE] No embeddings cache at {self.cache_path}")
            return False

        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"[VECTOR_STORE] Could not read embeddings cache {self.cache_path}: {e}")
            return False

        if not isinstance(data, list):
            logger.error(f"[VECTOR_STORE] Embeddings cache {self.cache_path} is not a JSON array")
            return False

        try:
            documents = [StoredDocument.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"[VECTOR_STORE] Malformed document in embeddings cache: {e}")
            return False

        dims = {len(doc.embedding) for doc in documents}
        if len(dims) > 1 or 0 in dims:
            logger.error(f"[VECTOR_STORE] Embeddings cache mixes vector sizes {sorted(dims)}")
            return False

        by_id = {}
        for doc in documents:
            if doc.id in by_id:
                logger.warning(f"[VECTOR_STORE] Duplicate document id {doc.id!r} in embeddings cache, keeping the last one")
            by_id[doc.id] = doc
        documents = list(by_id.values())

        with self._lock:
            self._documents = documents

        logger.info(f"[VECTOR_STORE] Loaded {len(documents)} documents from cache")
        return True
