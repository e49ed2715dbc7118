"""
Core Search Components - Fundamental building blocks of the engine

This module contains:
- Text tokenization
- Data models for documents, options and results
- The reader-writer locked inverted index
- Embedding provider and document store interfaces

License: MIT
"""

from .tokenizer import Tokenizer, tokenize, DEFAULT_STOPWORDS
from .models import (
    Document,
    Candidate,
    ScoredResult,
    FusionWeights,
    SearchOptions,
    ResolvedOptions,
    CacheEntry,
    SearchState,
    RetrievalOutcome,
    SearchResponse,
)
from .index import InvertedIndex, IndexReader
from .embedding_generator import (
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    CallableEmbeddingProvider,
)
from .document_store import DocumentStoreBase, InMemoryDocumentStore

__all__ = [
    "Tokenizer",
    "tokenize",
    "DEFAULT_STOPWORDS",
    "Document",
    "Candidate",
    "ScoredResult",
    "FusionWeights",
    "SearchOptions",
    "ResolvedOptions",
    "CacheEntry",
    "SearchState",
    "RetrievalOutcome",
    "SearchResponse",
    "InvertedIndex",
    "IndexReader",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "CallableEmbeddingProvider",
    "DocumentStoreBase",
    "InMemoryDocumentStore",
]
