"""
Search Engine - Hybrid retrieval with progressive thresholds and semantic caching

Part of the Hybrid Search Engine.

Query pipeline:
1. Exact cache tier (normalized query + options fingerprint)
2. Join an identical in-flight search, if one is running
3. Query embedding through the provider, bounded by a timeout
4. Semantic cache tier (nearest cached query embedding)
5. Single-flight leader: BM25 + vector scoring under the index read lock,
   then progressive threshold retrieval and fusion
6. Eligible results are stored back into the cache

Embedding and document store calls never run while the index or cache lock
is held. Embedding failures degrade the query to keyword-only retrieval
instead of failing it.

License: MIT
"""

import asyncio
import functools
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import numpy as np
from pydantic import ValidationError

from .config import EngineConfig, build_config, config_to_dict, validate_config
from .core.document_store import DocumentStoreBase, InMemoryDocumentStore
from .core.embedding_generator import EmbeddingProvider
from .core.index import InvertedIndex
from .core.models import (
    Candidate,
    Document,
    ResolvedOptions,
    RetrievalOutcome,
    SearchOptions,
    SearchResponse,
    SearchState,
)
from .core.tokenizer import Tokenizer
from .exceptions import (
    ConfigurationError,
    DimensionMismatch,
    EmbeddingUnavailable,
    EmptyQuery,
    EngineClosed,
    NonFiniteEmbedding,
)
from .infrastructure.cache import CacheHit, SemanticResultCache, query_fingerprint
from .infrastructure.concurrency import CancellationToken
from .infrastructure.monitoring import (
    PerformanceMonitor,
    embedding_duration_tracker,
    query_duration_tracker,
    record_cache_hit,
    record_degraded,
    record_error,
    record_threshold_tier,
    set_indexed_documents,
    setup_prometheus_metrics,
)
from .infrastructure.single_flight import SingleFlight
from .retrieval.bm25 import BM25Scorer
from .retrieval.fusion import FusionRanker
from .retrieval.progressive import ProgressiveRetriever
from .retrieval.vector import VectorScorer
from .utils.helpers import Timer, create_unique_id

logger = logging.getLogger(__name__)

# Transient conditions whose results must not be cached
UNCACHEABLE_REASONS = frozenset([
    "embedding_unavailable",
    "embedding_timeout",
    "query_dimension_mismatch",
    "invalid_query_embedding",
])

OptionsLike = Union[SearchOptions, Dict[str, Any], None]


class SearchEngine:
    """
    Hybrid search engine owning one index, one result cache and one
    embedding executor.

    Engines are fully isolated from each other, each with its own
    performance monitor; nothing is shared through module-level state except
    the optional Prometheus collectors.

    Usage:
        with SearchEngine(build_config(), provider) as engine:
            doc_id = engine.index_document("the cat sat")
            response = engine.search("cat")
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        document_store: Optional[DocumentStoreBase] = None,
        clock=time.time,
    ):
        """
        Initialize the engine.

        Args:
            config: Validated engine configuration (defaults when omitted)
            embedding_provider: Source of query and document embeddings
            document_store: Store for raw text and metadata
            clock: Time source for cache expiry

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = config or build_config()
        validate_config(self.config)

        if (
            embedding_provider is not None
            and embedding_provider.dimension != self.config.embedding.dimension
        ):
            raise ConfigurationError(
                f"Embedding provider dimension {embedding_provider.dimension} does not match "
                f"configured dimension {self.config.embedding.dimension}"
            )

        self.tokenizer = Tokenizer(
            stopwords=self.config.tokenizer.stopwords,
            stemming=self.config.tokenizer.stemming,
        )
        self.index = InvertedIndex()
        self.bm25 = BM25Scorer(k1=self.config.bm25.k1, b=self.config.bm25.b)
        self.vector_scorer = VectorScorer(self.config.embedding.dimension)
        self.ranker = FusionRanker(
            bm25_weight=self.config.fusion.bm25_weight,
            vector_weight=self.config.fusion.vector_weight,
        )
        self.retriever = ProgressiveRetriever(self.ranker)
        self.cache = SemanticResultCache(
            similarity_threshold=self.config.cache.similarity_threshold,
            ttl_seconds=self.config.cache.ttl_seconds,
            max_entries=self.config.cache.max_entries,
            enabled=self.config.cache.enabled,
            clock=clock,
        )
        self.flights = SingleFlight(self.config.cache.similarity_threshold)

        self.embedding_provider = (
            embedding_provider if self.config.embedding.enabled else None
        )
        # An empty store is falsy (it defines __len__)
        self.document_store = (
            document_store if document_store is not None else InMemoryDocumentStore()
        )
        self.performance = PerformanceMonitor()

        self._embedding_executor = ThreadPoolExecutor(
            max_workers=self.config.embedding.max_workers,
            thread_name_prefix="hybrid-search-embed",
        )
        self._query_executor: Optional[ThreadPoolExecutor] = None

        self._state_lock = threading.Lock()
        self._closed = False
        self._counters = {
            "queries": 0,
            "cache_hits": 0,
            "shared": 0,
            "degraded": 0,
            "cancelled": 0,
        }

        if self.config.monitoring.prometheus_enabled:
            setup_prometheus_metrics()

        logger.info(
            f"Search engine initialized (environment={self.config.environment}, "
            f"embeddings={'on' if self.embedding_provider else 'off'})"
        )

    # Lifecycle

    def close(self) -> None:
        """Stop accepting work and fail searches still waiting on a leader."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        self.flights.close()
        self._embedding_executor.shutdown(wait=False)
        if self._query_executor is not None:
            self._query_executor.shutdown(wait=False)

        logger.info("Search engine closed")

    @property
    def closed(self) -> bool:
        with self._state_lock:
            return self._closed

    def __enter__(self) -> "SearchEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self.closed:
            raise EngineClosed()

    # Indexing

    def index_document(
        self,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        embedding: Optional[List[float]] = None,
        document_id: Optional[str] = None,
    ) -> str:
        """
        Tokenize and index one document.

        Text beyond the configured maximum length is dropped. A ``title`` in
        metadata is prepended to the indexed and embedded text.

        Args:
            text: Document text
            metadata: Opaque caller metadata
            embedding: Precomputed document embedding
            document_id: Caller-chosen identifier (generated when omitted)

        Returns:
            Identifier of the indexed document

        Raises:
            DuplicateDocumentId: If the identifier is already indexed
            IndexCorruption: If the index is in read-only mode
            EngineClosed: If the engine has been closed
        """
        self._ensure_open()

        metadata = dict(metadata or {})
        content = (text or "")[: self.config.tokenizer.max_document_length]
        title = metadata.get("title")
        indexed_text = f"{title}\n{content}" if title else content

        document_id = document_id or create_unique_id("doc")

        if embedding is None and self.embedding_provider and self.config.embedding.embed_documents:
            if indexed_text.strip():
                try:
                    embedding = self._embed(indexed_text)
                except EmbeddingUnavailable as e:
                    logger.warning(f"Indexing '{document_id}' without embedding: {e}")

        if embedding is not None and len(embedding) != self.config.embedding.dimension:
            logger.warning(
                f"Document '{document_id}' embedding has dimension {len(embedding)}, "
                f"expected {self.config.embedding.dimension}; it will be excluded from vector scoring"
            )
        elif embedding is not None and not np.isfinite(np.asarray(embedding, dtype=np.float64)).all():
            logger.warning(
                f"Document '{document_id}' embedding contains non-finite values; "
                f"it will be excluded from vector scoring"
            )

        document = Document.from_tokens(
            document_id,
            self.tokenizer(indexed_text),
            embedding=embedding,
            metadata=metadata,
        )

        self.index.insert(document)
        try:
            self.document_store.put(document_id, content, metadata)
        except Exception:
            self.index.remove(document_id)
            raise

        self._after_ingestion()
        logger.debug(f"Indexed document '{document_id}'")
        return document_id

    def remove_document(self, document_id: str) -> None:
        """
        Remove a document from the index and the document store.

        Raises:
            DocumentNotFound: If the document is not indexed
            IndexCorruption: If the index is in read-only mode
        """
        self._ensure_open()

        self.index.remove(document_id)
        try:
            self.document_store.delete(document_id)
        finally:
            self._after_ingestion()

    def _after_ingestion(self) -> None:
        # Cached rankings describe the previous corpus
        self.cache.clear()
        set_indexed_documents(len(self.index))

    def verify_index(self) -> List[str]:
        """Check index invariants; any problem switches the index to read-only."""
        problems = self.index.verify()
        if problems:
            record_error("corruption", "index")
        return problems

    def repair_index(self) -> None:
        """Rebuild the index postings and restore write access."""
        self.index.repair()
        self.cache.clear()

    # Search

    def search(
        self,
        query: str,
        options: OptionsLike = None,
        cancel_token: Optional[CancellationToken] = None,
        **overrides: Any,
    ) -> SearchResponse:
        """
        Search the index.

        Args:
            query: Query text
            options: SearchOptions or a dict of option fields
            cancel_token: Checked before each threshold tier
            **overrides: Option fields given as keywords

        Returns:
            SearchResponse with ranked results and retrieval metadata

        Raises:
            EmptyQuery: If the query is blank
            ConfigurationError: If the options are invalid
            EngineClosed: If the engine has been closed
        """
        self._ensure_open()

        if not query or not query.strip():
            raise EmptyQuery()

        resolved = self._resolve_options(options, overrides)
        query_id = create_unique_id("q")
        labels = {"outcome": "unknown"}

        with query_duration_tracker(labels, self.performance), Timer("search") as timer:
            response = self._search(query, resolved, cancel_token, query_id)
            labels["outcome"] = "cached" if response.cached else response.state.value

        response = replace(response, query_time=timer.elapsed_time)
        self._count(response)

        logger.info(
            f"Search completed in {timer.elapsed_time:.3f}s: {len(response)} results "
            f"(state={response.state.value}, tier={response.tier_index}, "
            f"cached={response.cached}, shared={response.shared})",
            extra={
                "query_id": query_id,
                "tier": response.tier_index,
                "processing_time": timer.elapsed_time,
            },
        )
        return response

    async def asearch(
        self,
        query: str,
        options: OptionsLike = None,
        cancel_token: Optional[CancellationToken] = None,
        **overrides: Any,
    ) -> SearchResponse:
        """Run search() in the engine's query thread pool."""
        self._ensure_open()

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            self._get_query_executor(),
            functools.partial(self.search, query, options, cancel_token, **overrides),
        )

    def _get_query_executor(self) -> ThreadPoolExecutor:
        with self._state_lock:
            if self._closed:
                raise EngineClosed()
            if self._query_executor is None:
                self._query_executor = ThreadPoolExecutor(
                    max_workers=self.config.query_workers,
                    thread_name_prefix="hybrid-search-query",
                )
            return self._query_executor

    def _resolve_options(self, options: OptionsLike, overrides: Dict[str, Any]) -> ResolvedOptions:
        try:
            if options is None:
                options = SearchOptions(**overrides)
            elif isinstance(options, dict):
                options = SearchOptions(**{**options, **overrides})
            elif overrides:
                options = options.model_copy(update=overrides)
                options = SearchOptions(**options.model_dump())
            return ResolvedOptions.resolve(options, self.config)
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"Invalid search options: {e}") from e

    def _search(
        self,
        query: str,
        resolved: ResolvedOptions,
        cancel_token: Optional[CancellationToken],
        query_id: str,
    ) -> SearchResponse:
        fingerprint = query_fingerprint(query, resolved.cache_key)

        # Exact tier needs no embedding
        hit = self.cache.lookup(fingerprint=fingerprint, record_miss=False)
        if hit is not None:
            return self._from_cache(hit, query_id)

        pending = self.flights.join(fingerprint)
        if pending is not None:
            shared = self._await_shared(pending, query_id)
            if shared is not None:
                return shared

        embedding, reasons = self._query_embedding(query, resolved)

        hit = self.cache.lookup(query_embedding=embedding, options_key=resolved.cache_key)
        if hit is not None:
            return self._from_cache(hit, query_id)

        future, leader = self.flights.begin(
            fingerprint, group=resolved.cache_key, embedding=embedding
        )
        if not leader:
            shared = self._await_shared(future, query_id)
            if shared is not None:
                return shared
            return self._compute(query, resolved, embedding, reasons, cancel_token, query_id)

        # Read before the index so an ingestion during retrieval blocks the store
        generation = self.cache.generation
        try:
            response = self._compute(query, resolved, embedding, reasons, cancel_token, query_id)
            self._store(response, embedding, fingerprint, resolved, generation)
        except BaseException as e:
            self.flights.finish(fingerprint, error=e)
            raise
        self.flights.finish(fingerprint, result=response)
        return response

    def _await_shared(self, future, query_id: str) -> Optional[SearchResponse]:
        """Wait for a leader; None means the caller must compute on its own."""
        response: SearchResponse = future.result()
        if response.state is SearchState.CANCELLED:
            # The leader's cancellation does not apply to this caller
            return None
        record_cache_hit("shared")
        return replace(response, query_id=query_id, shared=True)

    def _query_embedding(
        self, query: str, resolved: ResolvedOptions
    ) -> Tuple[Optional[np.ndarray], List[str]]:
        """Obtain and validate the query embedding outside any lock."""
        if resolved.query_embedding is not None:
            vector = resolved.query_embedding
        elif self.embedding_provider is None or not resolved.embed_docs_inline:
            return None, []
        else:
            try:
                vector = self._embed(query)
            except EmbeddingUnavailable as e:
                reason = "embedding_timeout" if e.timed_out else "embedding_unavailable"
                logger.warning(f"Falling back to keyword-only search: {e}")
                return None, [reason]

        try:
            return self.vector_scorer.validate(vector), []
        except DimensionMismatch as e:
            logger.warning(f"Falling back to keyword-only search: {e}")
            return None, ["query_dimension_mismatch"]
        except NonFiniteEmbedding as e:
            logger.warning(f"Falling back to keyword-only search: {e}")
            return None, ["invalid_query_embedding"]

    def _embed(self, text: str) -> List[float]:
        """
        Call the embedding provider with a timeout.

        Raises:
            EmbeddingUnavailable: If the provider fails or times out
        """
        timeout = self.config.embedding.timeout
        try:
            future = self._embedding_executor.submit(self.embedding_provider.embed, text)
        except RuntimeError as e:
            raise EmbeddingUnavailable(f"Embedding executor unavailable: {e}") from e

        try:
            with embedding_duration_tracker(self.performance):
                return future.result(timeout=timeout)
        except FuturesTimeoutError as e:
            future.cancel()
            record_error("timeout", "embedding")
            raise EmbeddingUnavailable(
                f"Embedding provider timed out after {timeout}s", timed_out=True
            ) from e
        except Exception as e:
            record_error("provider", "embedding")
            raise EmbeddingUnavailable(f"Embedding provider failed: {e}") from e

    def _compute(
        self,
        query: str,
        resolved: ResolvedOptions,
        embedding: Optional[np.ndarray],
        reasons: List[str],
        cancel_token: Optional[CancellationToken],
        query_id: str,
    ) -> SearchResponse:
        reasons = list(reasons)
        tokens = self.tokenizer(query)

        with self.index.reading() as reader:
            bm25_scores = self.bm25.score(tokens, reader)
            vector_scores: Dict[str, float] = {}
            excluded: List[str] = []
            if embedding is not None:
                vector_scores, excluded = self.vector_scorer.score(embedding, reader.documents())

            candidate_ids = sorted(set(bm25_scores) | set(vector_scores))
            candidates = [
                Candidate(
                    document_id=document_id,
                    bm25_score=bm25_scores.get(document_id, 0.0),
                    vector_score=vector_scores.get(document_id),
                    metadata=reader.get(document_id).metadata,
                )
                for document_id in candidate_ids
            ]
            read_only = reader.read_only

        vector_signal = bool(vector_scores)
        if embedding is not None and not vector_signal:
            reasons.append("no_vector_signal")
        if read_only:
            reasons.append("index_read_only")

        outcome = self.retriever.retrieve(
            candidates,
            thresholds=resolved.thresholds,
            k=resolved.k,
            min_results=resolved.min_results,
            vector_signal=vector_signal,
            bm25_weight=resolved.bm25_weight,
            vector_weight=resolved.vector_weight,
            cancel_token=cancel_token,
        )

        for reason in reasons:
            record_degraded(reason)
        record_threshold_tier(outcome.tier_index)

        return SearchResponse(
            query_id=query_id,
            results=self._with_snippets(outcome),
            state=outcome.state,
            tier_index=outcome.tier_index,
            threshold=outcome.threshold,
            thresholds_visited=outcome.thresholds_visited,
            degraded=bool(reasons),
            degraded_reasons=tuple(reasons),
            excluded_documents=tuple(excluded),
        )

    def _with_snippets(self, outcome: RetrievalOutcome):
        length = self.config.retrieval.snippet_length
        results = []
        for result in outcome.results:
            record = self.document_store.get(result.document_id)
            snippet = record["text"][:length] if record else ""
            results.append(replace(result, snippet=snippet))
        return tuple(results)

    # Cache plumbing

    def _store(
        self,
        response: SearchResponse,
        embedding: Optional[np.ndarray],
        fingerprint: str,
        resolved: ResolvedOptions,
        generation: Optional[int] = None,
    ) -> None:
        if response.state is SearchState.CANCELLED:
            return
        if UNCACHEABLE_REASONS.intersection(response.degraded_reasons):
            return

        self.cache.put(
            embedding,
            response.results,
            fingerprint=fingerprint,
            options_key=resolved.cache_key,
            metadata={
                "state": response.state.value,
                "tier_index": response.tier_index,
                "threshold": response.threshold,
                "thresholds_visited": response.thresholds_visited,
                "degraded_reasons": response.degraded_reasons,
                "excluded_documents": response.excluded_documents,
            },
            expected_generation=generation,
        )

    def _from_cache(self, hit: CacheHit, query_id: str) -> SearchResponse:
        meta = hit.entry.metadata
        reasons = tuple(meta.get("degraded_reasons", ()))
        return SearchResponse(
            query_id=query_id,
            results=hit.entry.results,
            state=SearchState(meta.get("state", SearchState.FOUND.value)),
            tier_index=meta.get("tier_index"),
            threshold=meta.get("threshold"),
            thresholds_visited=tuple(meta.get("thresholds_visited", ())),
            cached=True,
            cache_type=hit.cache_type,
            cache_similarity=hit.similarity,
            degraded=bool(reasons),
            degraded_reasons=reasons,
            excluded_documents=tuple(meta.get("excluded_documents", ())),
        )

    # Observability

    def _count(self, response: SearchResponse) -> None:
        with self._state_lock:
            self._counters["queries"] += 1
            if response.cached:
                self._counters["cache_hits"] += 1
            if response.shared:
                self._counters["shared"] += 1
            if response.degraded:
                self._counters["degraded"] += 1
            if response.state is SearchState.CANCELLED:
                self._counters["cancelled"] += 1

    def health_check(self) -> Dict[str, Any]:
        """
        Check the health of the engine and its collaborators.

        Returns:
            Dictionary with health status
        """
        index_stats = self.index.get_stats()
        provider_ok = None
        if self.embedding_provider is not None and not self.closed:
            try:
                provider_ok = self._embedding_executor.submit(
                    self.embedding_provider.ping
                ).result(timeout=self.config.embedding.timeout)
            except Exception as e:
                logger.warning(f"Embedding provider health check failed: {str(e)}")
                provider_ok = False

        try:
            store_ok = self.document_store.ping()
        except Exception as e:
            logger.warning(f"Document store health check failed: {str(e)}")
            store_ok = False

        healthy = (
            not self.closed
            and not index_stats["read_only"]
            and store_ok
            and provider_ok is not False
        )

        return {
            "healthy": healthy,
            "closed": self.closed,
            "index": index_stats,
            "cache": self.cache.get_cache_stats(),
            "embedding_provider": provider_ok,
            "document_store": store_ok,
            "in_flight": self.flights.in_flight,
        }

    def get_stats(self) -> Dict[str, Any]:
        """
        Get engine statistics.

        Returns:
            Dictionary with configuration, counters and component stats
        """
        with self._state_lock:
            counters = dict(self._counters)

        return {
            "config": config_to_dict(self.config),
            "queries": counters,
            "index": self.index.get_stats(),
            "cache": self.cache.get_cache_stats(),
            "performance": self.performance.get_performance_summary(),
        }
