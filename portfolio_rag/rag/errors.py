"""
Error taxonomy for the RAG engine.

Everything raised by the embedding clients derives from EmbeddingError so the
retriever can catch the whole family at its boundary and degrade to keyword
search. DimensionMismatch is a programmer error and stays outside that family.
"""

from typing import Optional


class EmbeddingError(Exception):
    """Base class for embedding client failures."""


class ConfigurationError(EmbeddingError):
    """The embedding path is not configured (missing credential)."""


class EmbeddingUnavailable(ConfigurationError):
    """No credential is configured for the embedding provider."""


class TransientProviderError(EmbeddingError):
    """The provider failed in a way a later call may not."""


class EmbeddingRequestFailed(TransientProviderError):
    """Non-success HTTP status, transport failure or timeout."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingResponseInvalid(TransientProviderError):
    """The response could not be parsed into a vector of the expected shape."""


class DimensionMismatch(ValueError):
    """Two vectors of different lengths were compared or mixed in one store."""
