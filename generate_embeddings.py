#!/usr/bin/env python3
"""
Generate the portfolio embeddings cache.

Usage:
    python generate_embeddings.py [source.json] [cache.json]

Defaults come from KNOWLEDGE_SOURCE_PATH and RAG_CACHE_PATH. Requires the
credential for the configured EMBEDDING_PROVIDER (GEMINI_API_KEY by default).
"""

import asyncio
import logging
import sys

from portfolio_rag import config
from portfolio_rag.rag.errors import EmbeddingError
from portfolio_rag.rag.indexer import build_index
from portfolio_rag.rag.vector_store import VectorStore


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    source_path = argv[0] if len(argv) > 0 else config.KNOWLEDGE_SOURCE_PATH
    cache_path = argv[1] if len(argv) > 1 else config.RAG_CACHE_PATH

    print("=== Portfolio Embeddings Generator ===")
    print(f"Provider: {config.EMBEDDING_PROVIDER} ({config.EMBEDDING_MODEL})")
    print(f"Source:   {source_path}")
    print(f"Cache:    {cache_path}")
    print()

    try:
        count = asyncio.run(build_index(source_path=source_path, store=VectorStore(cache_path)))
    except EmbeddingError as e:
        print(f"❌ Embedding failed: {e}")
        return 1
    except (OSError, ValueError) as e:
        print(f"❌ Build failed: {e}")
        return 1

    print(f"\n✅ Done! Cached {count} documents.")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    sys.exit(main())
