"""
Embedder module for turning text into embedding vectors.

Wraps the external embedding API (Google text-embedding-004 by default,
OpenAI embeddings as an alternative provider) and isolates its failure modes
behind the EmbeddingError family. Also exposes the batch helper used by the
offline indexer, which paces requests to stay under the provider rate limit,
and the cosine similarity used by the vector store.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import numpy as np
import openai
from openai import AsyncOpenAI

from .. import config
from .errors import (
    DimensionMismatch,
    EmbeddingError,
    EmbeddingRequestFailed,
    EmbeddingResponseInvalid,
    EmbeddingUnavailable,
)

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 when either vector has zero magnitude: an all-zero embedding
    is a valid but useless API response, not an error.

    Raises:
        DimensionMismatch: If the vectors have different lengths.
    """
    if len(a) != len(b):
        raise DimensionMismatch(f"Vectors must have same dimensions ({len(a)} != {len(b)})")

    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


class BaseEmbeddingClient(ABC):
    """Common batching and validation for embedding providers.

    Subclasses implement `embed` (one API call, no retries) and
    `is_configured`. Retry policy belongs to the caller.
    """

    credential_name = "API key"

    def __init__(
        self,
        dimensions: Optional[int] = None,
        batch_size: Optional[int] = None,
        batch_pause: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        Args:
            dimensions: Expected vector length. 0 disables the length check.
            batch_size: Texts embedded concurrently per group in embed_batch.
            batch_pause: Seconds to wait between groups.
            sleep: Coroutine used for the pause (injectable for tests).
        """
        self.dimensions = config.EMBEDDING_DIMENSIONS if dimensions is None else dimensions
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE
        self.batch_pause = config.EMBED_BATCH_PAUSE_MS / 1000 if batch_pause is None else batch_pause
        self._sleep = sleep or asyncio.sleep

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """True when a credential is available."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text with one API call."""

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed many texts in paced groups, preserving input order.

        Each group of `batch_size` texts is sent concurrently; groups are
        separated by `batch_pause` seconds. If any item fails the whole call
        fails with the first failure in input order. Callers that need
        partial success should call `embed` per text.
        """
        texts = list(texts)
        vectors: List[List[float]] = []

        for start in range(0, len(texts), self.batch_size):
            group = texts[start:start + self.batch_size]
            logger.info(
                f"[EMBEDDER] Processing {start + 1}-{start + len(group)} of {len(texts)}..."
            )

            results = await asyncio.gather(
                *(self.embed(text) for text in group),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            vectors.extend(results)

            if start + self.batch_size < len(texts):
                await self._sleep(self.batch_pause)

        return vectors

    async def health_check(self) -> Dict[str, Any]:
        """Report whether the embedding API can be used right now. Never raises."""
        if not self.is_configured:
            return {"available": False, "message": f"{self.credential_name} not configured"}

        try:
            await self.embed("test")
        except EmbeddingError as e:
            return {"available": False, "message": str(e)}

        return {"available": True, "message": "Embedding API is working"}

    def _validate_vector(self, values: Any) -> List[float]:
        if not isinstance(values, list) or not values:
            raise EmbeddingResponseInvalid("Invalid embedding response: missing vector")

        if any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in values):
            raise EmbeddingResponseInvalid("Invalid embedding response: non-numeric values")

        if self.dimensions and len(values) != self.dimensions:
            raise EmbeddingResponseInvalid(
                f"Invalid embedding response: expected {self.dimensions} dimensions, got {len(values)}"
            )

        return [float(v) for v in values]


class GeminiEmbeddingClient(BaseEmbeddingClient):
    """Google Generative Language `embedContent` client over httpx."""

    credential_name = "GEMINI_API_KEY"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = config.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or config.EMBEDDING_MODEL
        self.api_url = api_url or config.EMBEDDING_API_URL
        self.timeout = timeout or config.EMBEDDING_TIMEOUT_SECONDS
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def embed(self, text: str) -> List[float]:
        """Generate the embedding for a single text.

        Raises:
            EmbeddingUnavailable: GEMINI_API_KEY is not configured.
            EmbeddingRequestFailed: Non-success status or transport failure.
            EmbeddingResponseInvalid: Body is not a vector of the expected shape.
        """
        if not self.api_key:
            raise EmbeddingUnavailable("GEMINI_API_KEY is required for embeddings")

        payload = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
        }
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"[EMBEDDER] Embedding API error {status}: {e.response.text[:200]}")
            raise EmbeddingRequestFailed(f"Embedding API failed: {status}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.error(f"[EMBEDDER] Embedding request failed: {type(e).__name__}: {e}")
            raise EmbeddingRequestFailed(f"Embedding request failed: {type(e).__name__}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingResponseInvalid("Invalid embedding response: body is not JSON") from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        values = embedding.get("values") if isinstance(embedding, dict) else None
        return self._validate_vector(values)


class OpenAIEmbeddingClient(BaseEmbeddingClient):
    """OpenAI embeddings client (alternative provider)."""

    credential_name = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = config.OPENAI_API_KEY if api_key is None else api_key
        self.model = model or config.EMBEDDING_MODEL
        self.timeout = timeout or config.EMBEDDING_TIMEOUT_SECONDS
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_openai_client(self) -> AsyncOpenAI:
        """Get an AsyncOpenAI client using the configured API key.

        Raises:
            EmbeddingUnavailable: If OPENAI_API_KEY is not set.
        """
        if self._client is None:
            if not self.api_key:
                raise EmbeddingUnavailable("OPENAI_API_KEY is required for embeddings")
            # Retries are the caller's policy, not the client's
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    async def embed(self, text: str) -> List[float]:
        client = self._get_openai_client()

        request: Dict[str, Any] = {"model": self.model, "input": text}
        if self.dimensions:
            request["dimensions"] = self.dimensions

        try:
            response = await client.embeddings.create(**request)
        except openai.APIStatusError as e:
            logger.error(f"[EMBEDDER] OpenAI embedding error {e.status_code}: {e.message}")
            raise EmbeddingRequestFailed(
                f"Embedding API failed: {e.status_code}", status_code=e.status_code
            ) from e
        except openai.APIError as e:
            logger.error(f"[EMBEDDER] OpenAI embedding request failed: {type(e).__name__}")
            raise EmbeddingRequestFailed(f"Embedding request failed: {type(e).__name__}") from e

        try:
            values = response.data[0].embedding
        except (AttributeError, IndexError, TypeError) as e:
            raise EmbeddingResponseInvalid("Invalid embedding response: missing data") from e

        return self._validate_vector(values)


def get_embedding_client(provider: Optional[str] = None) -> BaseEmbeddingClient:
    """Build the embedding client selected by EMBEDDING_PROVIDER."""
    provider = (provider or config.EMBEDDING_PROVIDER).lower()
    if provider == "gemini":
        return GeminiEmbeddingClient()
    if provider == "openai":
        return OpenAIEmbeddingClient()
    raise ValueError(f"Unknown embedding provider: {provider}")
