"""
Hybrid Search Engine - Deterministic hybrid retrieval with semantic result caching

Given a text query, the engine fuses BM25 keyword relevance with embedding
similarity, relaxes similarity thresholds progressively until enough results
are found, and reuses results of sufficiently similar earlier queries.

Components:
- Tokenizer and reader-writer locked inverted index
- BM25 and cosine scorers, min-max weighted fusion
- Progressive threshold retriever (explicit state machine)
- Semantic result cache with TTL, LRU eviction and single-flight

License: MIT
"""

__version__ = "1.0.0"

# Core exports
from .core.tokenizer import Tokenizer, tokenize
from .core.models import (
    Document,
    ScoredResult,
    FusionWeights,
    SearchOptions,
    SearchState,
    SearchResponse,
    CacheEntry,
)
from .core.index import InvertedIndex
from .core.embedding_generator import (
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    CallableEmbeddingProvider,
)
from .core.document_store import DocumentStoreBase, InMemoryDocumentStore

# Retrieval exports
from .retrieval.bm25 import BM25Scorer
from .retrieval.vector import VectorScorer, cosine_similarity
from .retrieval.fusion import FusionRanker
from .retrieval.progressive import ProgressiveRetriever

# Infrastructure exports
from .infrastructure.cache import SemanticResultCache
from .infrastructure.concurrency import CancellationToken, ReadWriteLock
from .infrastructure.single_flight import SingleFlight

# Configuration exports
from .config import EngineConfig, ConfigManager, build_config, get_config, get_config_manager

# Errors
from .exceptions import (
    HybridSearchError,
    EmptyQuery,
    DuplicateDocumentId,
    DocumentNotFound,
    DimensionMismatch,
    NonFiniteEmbedding,
    EmbeddingUnavailable,
    IndexCorruption,
    ConfigurationError,
    EngineClosed,
)

# Engine
from .engine import SearchEngine

__all__ = [
    # Core
    "Tokenizer",
    "tokenize",
    "Document",
    "ScoredResult",
    "FusionWeights",
    "SearchOptions",
    "SearchState",
    "SearchResponse",
    "CacheEntry",
    "InvertedIndex",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "CallableEmbeddingProvider",
    "DocumentStoreBase",
    "InMemoryDocumentStore",
    # Retrieval
    "BM25Scorer",
    "VectorScorer",
    "cosine_similarity",
    "FusionRanker",
    "ProgressiveRetriever",
    # Infrastructure
    "SemanticResultCache",
    "CancellationToken",
    "ReadWriteLock",
    "SingleFlight",
    # Configuration
    "EngineConfig",
    "ConfigManager",
    "build_config",
    "get_config",
    "get_config_manager",
    # Errors
    "HybridSearchError",
    "EmptyQuery",
    "DuplicateDocumentId",
    "DocumentNotFound",
    "DimensionMismatch",
    "NonFiniteEmbedding",
    "EmbeddingUnavailable",
    "IndexCorruption",
    "ConfigurationError",
    "EngineClosed",
    # Engine
    "SearchEngine",
]
