"""
Exceptions - Error hierarchy for the hybrid search engine

Part of the Hybrid Search Engine.

Degraded conditions (missing vectors, unavailable embeddings) are absorbed by
the engine and reported on the response; only structural problems surface to
callers as exceptions.

License: MIT
"""

from typing import Optional


class HybridSearchError(Exception):
    """Base exception for all hybrid search engine errors."""


class EmptyQuery(HybridSearchError, ValueError):
    """Raised when a query is blank or whitespace-only."""

    def __init__(self, message: str = "Query cannot be empty"):
        super().__init__(message)


class DuplicateDocumentId(HybridSearchError):
    """Raised when inserting a document whose identifier is already indexed."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' is already indexed")


class DocumentNotFound(HybridSearchError, KeyError):
    """Raised when removing or fetching a document that is not indexed."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(document_id)

    def __str__(self) -> str:
        return f"Document '{self.document_id}' not found"


class DimensionMismatch(HybridSearchError, ValueError):
    """Raised when an embedding does not match the configured dimension."""

    def __init__(self, expected: int, actual: int, document_id: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        self.document_id = document_id
        target = f"document '{document_id}'" if document_id else "query"
        super().__init__(
            f"Embedding dimension mismatch for {target}: expected {expected}, got {actual}"
        )


class EmbeddingUnavailable(HybridSearchError):
    """Raised when the embedding provider fails or times out."""

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)


class IndexCorruption(HybridSearchError):
    """Raised when an index invariant violation blocks further writes."""


class ConfigurationError(HybridSearchError, ValueError):
    """Raised when engine configuration or search options are invalid."""


class EngineClosed(HybridSearchError, RuntimeError):
    """Raised when an operation is attempted on a closed engine."""

    def __init__(self, message: str = "Search engine has been closed"):
        super().__init__(message)


class NonFiniteEmbedding(HybridSearchError, ValueError):
    """Raised when an embedding contains NaN or infinite values."""

    def __init__(self, document_id: Optional[str] = None):
        self.document_id = document_id
        target = f"document '{document_id}'" if document_id else "query"
        super().__init__(f"Embedding for {target} contains non-finite values")
