"""
Data Models - Documents, options, scored results and cache entries

Part of the Hybrid Search Engine.

License: MIT
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config import EngineConfig, validate_thresholds
from ..utils.helpers import generate_hash, stable_json


@dataclass(frozen=True, eq=False)
class Document:
    """
    An indexed document.

    Immutable once indexed; the index replaces or removes documents, it never
    edits them.
    """

    id: str
    term_frequencies: Mapping[str, int]
    length: int
    embedding: Optional[np.ndarray] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_tokens(
        cls,
        document_id: str,
        tokens: Sequence[str],
        embedding: Optional[Sequence[float]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "Document":
        """
        Build a document from its token sequence.

        Args:
            document_id: Unique, stable identifier
            tokens: Normalized tokens of the document text
            embedding: Optional document embedding
            metadata: Opaque caller metadata

        Returns:
            Document with term frequencies and length computed
        """
        vector = None
        if embedding is not None:
            vector = np.asarray(embedding, dtype=np.float64)
            vector.setflags(write=False)

        return cls(
            id=document_id,
            term_frequencies=MappingProxyType(dict(Counter(tokens))),
            length=len(tokens),
            embedding=vector,
            metadata=MappingProxyType(dict(metadata or {})),
        )

    def __repr__(self) -> str:
        return (
            f"Document(id='{self.id}', length={self.length}, "
            f"terms={len(self.term_frequencies)}, embedded={self.embedding is not None})"
        )


@dataclass(frozen=True)
class Candidate:
    """Raw per-document signals gathered for one query."""

    document_id: str
    bm25_score: float = 0.0
    vector_score: Optional[float] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredResult:
    """
    A ranked search result.

    Results are ordered by fused score descending with ties broken by
    ascending document id.
    """

    document_id: str
    bm25_score: float
    vector_score: Optional[float]
    fused_score: float
    rank: int
    metadata: Mapping[str, Any] = field(default_factory=dict)
    snippet: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "document_id": self.document_id,
            "fused_score": self.fused_score,
            "bm25_score": self.bm25_score,
            "vector_score": self.vector_score,
            "rank": self.rank,
            "metadata": dict(self.metadata),
            "snippet": self.snippet,
        }

    def __repr__(self) -> str:
        return (
            f"ScoredResult(id='{self.document_id}', rank={self.rank}, "
            f"fused={self.fused_score:.3f})"
        )


class FusionWeights(BaseModel):
    """Relative weight of the keyword and vector signals."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    bm25: float = Field(default=0.7, ge=0.0)
    vector: float = Field(default=0.3, ge=0.0)

    @model_validator(mode="after")
    def validate_not_both_zero(self) -> "FusionWeights":
        if self.bm25 == 0 and self.vector == 0:
            raise ValueError("At least one fusion weight must be positive")
        return self


class SearchOptions(BaseModel):
    """
    Per-query retrieval options.

    Unset fields fall back to the engine configuration.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    k: Optional[int] = Field(default=None, ge=1, description="Maximum results desired")
    min_results: Optional[int] = Field(default=None, ge=0, description="Minimum acceptable results")
    thresholds: Optional[List[float]] = Field(default=None, description="Descending similarity tiers")
    weights: Optional[FusionWeights] = None
    embed_docs_inline: bool = Field(
        default=True, description="Embed the query synchronously via the provider"
    )
    query_embedding: Optional[List[float]] = Field(
        default=None, description="Precomputed query embedding"
    )

    @field_validator("thresholds")
    @classmethod
    def check_thresholds(cls, v: Optional[List[float]]) -> Optional[List[float]]:
        if v is None:
            return v
        errors = validate_thresholds(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v

    @field_validator("query_embedding")
    @classmethod
    def check_query_embedding(cls, v: Optional[List[float]]) -> Optional[List[float]]:
        if v is not None and len(v) == 0:
            raise ValueError("Query embedding cannot be empty")
        return v


@dataclass(frozen=True)
class ResolvedOptions:
    """Search options merged with engine defaults."""

    k: int
    min_results: int
    thresholds: Tuple[float, ...]
    bm25_weight: float
    vector_weight: float
    embed_docs_inline: bool = True
    query_embedding: Optional[Tuple[float, ...]] = None

    @classmethod
    def resolve(cls, options: SearchOptions, config: EngineConfig) -> "ResolvedOptions":
        """
        Merge per-query options with configuration defaults.

        Raises:
            ValueError: If min_results exceeds k after merging
        """
        k = options.k if options.k is not None else config.retrieval.k
        min_results = (
            options.min_results
            if options.min_results is not None
            else min(config.retrieval.min_results, k)
        )
        if min_results > k:
            raise ValueError(f"min_results ({min_results}) cannot exceed k ({k})")

        thresholds = options.thresholds or config.retrieval.thresholds
        if options.weights is not None:
            bm25_weight, vector_weight = options.weights.bm25, options.weights.vector
        else:
            bm25_weight = config.fusion.bm25_weight
            vector_weight = config.fusion.vector_weight

        embedding = None
        if options.query_embedding is not None:
            embedding = tuple(float(x) for x in options.query_embedding)

        return cls(
            k=k,
            min_results=min_results,
            thresholds=tuple(thresholds),
            bm25_weight=bm25_weight,
            vector_weight=vector_weight,
            embed_docs_inline=options.embed_docs_inline,
            query_embedding=embedding,
        )

    @property
    def cache_key(self) -> str:
        """Fingerprint of the options that affect ranking."""
        payload = {
            "k": self.k,
            "min_results": self.min_results,
            "thresholds": list(self.thresholds),
            "weights": [self.bm25_weight, self.vector_weight],
        }
        return generate_hash(stable_json(payload))[:16]


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached result set keyed by query embedding.

    Entries are never mutated in place; refreshing the access time replaces
    the entry wholesale.
    """

    entry_id: str
    key_embedding: Optional[np.ndarray]
    results: Tuple[ScoredResult, ...]
    inserted_at: float
    expires_at: float
    last_access: float
    fingerprint: Optional[str] = None
    options_key: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SearchState(str, Enum):
    """States of the progressive threshold retriever."""

    SEARCHING = "searching"
    FOUND = "found"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RetrievalOutcome:
    """Terminal result of one progressive retrieval run."""

    state: SearchState
    results: Tuple[ScoredResult, ...]
    tier_index: Optional[int]
    threshold: Optional[float]
    thresholds_visited: Tuple[float, ...]
    vector_signal: bool


@dataclass(frozen=True)
class SearchResponse:
    """
    Ordered results plus observability metadata for one query.

    Iterating or indexing a response walks its results.
    """

    query_id: str
    results: Tuple[ScoredResult, ...]
    state: SearchState
    tier_index: Optional[int] = None
    threshold: Optional[float] = None
    thresholds_visited: Tuple[float, ...] = ()
    cached: bool = False
    cache_type: Optional[str] = None
    cache_similarity: Optional[float] = None
    shared: bool = False
    degraded: bool = False
    degraded_reasons: Tuple[str, ...] = ()
    excluded_documents: Tuple[str, ...] = ()
    query_time: float = 0.0

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, index):
        return self.results[index]

    @property
    def document_ids(self) -> List[str]:
        return [result.document_id for result in self.results]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "query_id": self.query_id,
            "results": [result.to_dict() for result in self.results],
            "state": self.state.value,
            "tier_index": self.tier_index,
            "threshold": self.threshold,
            "thresholds_visited": list(self.thresholds_visited),
            "cached": self.cached,
            "cache_type": self.cache_type,
            "cache_similarity": self.cache_similarity,
            "shared": self.shared,
            "degraded": self.degraded,
            "degraded_reasons": list(self.degraded_reasons),
            "excluded_documents": list(self.excluded_documents),
            "query_time": self.query_time,
        }
