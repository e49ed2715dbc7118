"""
Unit Tests for SearchEngine

Tests the end-to-end query pipeline including:
- Keyword-only and hybrid retrieval
- Progressive threshold outcomes
- Degradation when embeddings are unavailable
- Exact and semantic cache hits, invalidation on ingestion
- Collapsing of concurrent identical searches
- Cancellation, read-only mode and lifecycle
"""

import math
import threading
import pytest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock, patch

from hybrid_search.core import CallableEmbeddingProvider, EmbeddingProvider, SearchOptions
from hybrid_search.core.document_store import InMemoryDocumentStore
from hybrid_search.core.models import SearchState
from hybrid_search.engine import SearchEngine
from hybrid_search.exceptions import (
    ConfigurationError,
    DocumentNotFound,
    DuplicateDocumentId,
    EmptyQuery,
    EngineClosed,
    IndexCorruption,
)
from hybrid_search.infrastructure.concurrency import CancellationToken


class BlockingDocumentStore(InMemoryDocumentStore):
    """In-memory store whose get() can be held open to widen race windows."""

    def __init__(self):
        super().__init__()
        self.block = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def get(self, document_id):
        if self.block:
            self.entered.set()
            self.release.wait(timeout=5)
        return super().get(document_id)


class TestKeywordSearch:
    """Test cases for search without embeddings."""

    def test_bm25_scenario(self, keyword_engine):
        response = keyword_engine.search("cat")

        assert response.document_ids == ["doc0"]
        assert response[0].bm25_score == pytest.approx(math.log(8 / 3))
        assert response[0].vector_score is None
        assert response[0].rank == 1
        assert response.state is SearchState.EXHAUSTED
        assert response.tier_index is None
        assert response.thresholds_visited == ()
        assert response.degraded is False

    def test_found_when_min_results_met(self, keyword_engine):
        response = keyword_engine.search("cat", min_results=1)

        assert response.state is SearchState.FOUND

    def test_no_matches(self, keyword_engine):
        response = keyword_engine.search("zebra")

        assert len(response) == 0
        assert response.state is SearchState.EXHAUSTED

    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    def test_empty_query_rejected_before_index_access(self, keyword_engine, query):
        keyword_engine.index.reading = Mock(side_effect=AssertionError("index touched"))

        with pytest.raises(EmptyQuery):
            keyword_engine.search(query)

    def test_stopword_only_query_returns_nothing(self, keyword_engine):
        assert len(keyword_engine.search("the and")) == 0

    def test_snippets_come_from_document_store(self, keyword_engine):
        response = keyword_engine.search("dog")

        assert response[0].snippet == "the dog ran"
        assert response[0].metadata == {"position": 1}

    def test_deterministic_across_engines(self, make_config, sample_documents):
        rankings = []
        for _ in range(2):
            with SearchEngine(make_config()) as engine:
                for i, text in enumerate(sample_documents):
                    engine.index_document(text, document_id=f"doc{i}")
                response = engine.search("cat dog ran", k=3, min_results=0)
                rankings.append([(r.document_id, r.fused_score) for r in response])

        assert rankings[0] == rankings[1]


class TestIndexing:
    """Test cases for document ingestion."""

    def test_generated_identifier(self, keyword_engine):
        document_id = keyword_engine.index_document("fresh text")

        assert document_id.startswith("doc_")
        assert document_id in keyword_engine.index

    def test_duplicate_identifier(self, keyword_engine):
        with pytest.raises(DuplicateDocumentId):
            keyword_engine.index_document("again", document_id="doc0")

        assert keyword_engine.document_store.get("doc0")["text"] == "the cat sat"

    def test_remove_document(self, keyword_engine):
        keyword_engine.remove_document("doc0")

        assert len(keyword_engine.search("cat")) == 0
        assert keyword_engine.document_store.get("doc0") is None
        with pytest.raises(DocumentNotFound):
            keyword_engine.remove_document("doc0")

    def test_injected_empty_document_store_is_used(self, make_config):
        store = InMemoryDocumentStore()

        with SearchEngine(make_config(), document_store=store) as engine:
            engine.index_document("the cat sat", document_id="d")

            assert engine.document_store is store
            assert len(store) == 1
            assert store.get("d")["text"] == "the cat sat"

    def test_failed_store_delete_still_invalidates_cache(self, keyword_engine):
        keyword_engine.search("cat")
        assert len(keyword_engine.cache) == 1

        with patch.object(
            keyword_engine.document_store, "delete", side_effect=IOError("store offline")
        ):
            with pytest.raises(IOError):
                keyword_engine.remove_document("doc0")

        assert len(keyword_engine.cache) == 0
        response = keyword_engine.search("cat")
        assert response.cached is False
        assert response.document_ids == []

    def test_title_is_searchable_but_not_in_snippet(self, keyword_engine):
        keyword_engine.index_document("body text here", metadata={"title": "Zebra"}, document_id="z")

        response = keyword_engine.search("zebra")

        assert response.document_ids == ["z"]
        assert response[0].snippet == "body text here"
        assert response[0].metadata == {"title": "Zebra"}

    def test_text_capped_at_max_length(self, make_config):
        with SearchEngine(make_config({"tokenizer": {"max_document_length": 10}})) as engine:
            engine.index_document("aaaa bbbb cccc dddd", document_id="long")

            assert len(engine.search("dddd")) == 0
            assert engine.search("bbbb").document_ids == ["long"]
            assert engine.document_store.get("long")["text"] == "aaaa bbbb "

    def test_snippet_length(self, make_config):
        with SearchEngine(make_config({"retrieval": {"snippet_length": 7}})) as engine:
            engine.index_document("the cat sat on the mat", document_id="d")

            assert engine.search("cat")[0].snippet == "the cat"

    def test_documents_embedded_on_ingestion(self, make_config, mock_embedding_provider):
        with SearchEngine(make_config(), embedding_provider=mock_embedding_provider) as engine:
            engine.index_document("the cat sat", document_id="d", metadata={"title": "Cats"})

            mock_embedding_provider.embed.assert_called_once_with("Cats\nthe cat sat")
            assert engine.index.get_document("d").embedding.tolist() == [2.0, 0.0, 1.0]

    def test_precomputed_embedding_skips_provider(self, make_config, mock_embedding_provider):
        with SearchEngine(make_config(), embedding_provider=mock_embedding_provider) as engine:
            engine.index_document("the cat sat", embedding=[1.0, 0.0, 1.0])

            mock_embedding_provider.embed.assert_not_called()

    def test_provider_dimension_must_match(self, make_config):
        provider = CallableEmbeddingProvider(lambda text: [0.0] * 5, dimension=5)

        with pytest.raises(ConfigurationError):
            SearchEngine(make_config(), embedding_provider=provider)


class TestHybridSearch:
    """Test cases for search with embeddings."""

    def test_found_in_first_tier(self, hybrid_engine):
        response = hybrid_engine.search("cat", min_results=2)

        assert response.state is SearchState.FOUND
        assert response.tier_index == 0
        assert response.threshold == 0.75
        assert response.thresholds_visited == (0.75,)
        assert response.document_ids == ["doc0", "doc2"]
        assert response[0].vector_score == pytest.approx(1.0)
        assert response[1].vector_score == pytest.approx(2 / math.sqrt(6))
        assert response[0].fused_score == pytest.approx(1.0)

    def test_exhausts_all_tiers(self, hybrid_engine):
        response = hybrid_engine.search("cat")

        assert response.state is SearchState.EXHAUSTED
        assert response.tier_index == 3
        assert response.thresholds_visited == (0.75, 0.70, 0.65, 0.60)
        # doc1 has similarity 0.5, below every tier
        assert response.document_ids == ["doc0", "doc2"]

    def test_custom_thresholds(self, hybrid_engine):
        response = hybrid_engine.search("cat", thresholds=[0.9, 0.4])

        assert response.state is SearchState.FOUND
        assert response.tier_index == 1
        assert set(response.document_ids) == {"doc0", "doc1", "doc2"}

    def test_vector_only_weights(self, hybrid_engine):
        response = hybrid_engine.search(
            "dog", thresholds=[0.4], min_results=0, weights={"bm25": 0.0, "vector": 1.0}
        )

        assert response.document_ids[0] == "doc1"

    def test_precomputed_query_embedding(self, make_config, mock_embedding_provider):
        with SearchEngine(make_config(), embedding_provider=mock_embedding_provider) as engine:
            engine.index_document("the cat sat", embedding=[1.0, 0.0, 1.0], document_id="d")

            response = engine.search("cat", query_embedding=[1.0, 0.0, 1.0], min_results=1)

            mock_embedding_provider.embed.assert_not_called()
            assert response[0].vector_score == pytest.approx(1.0)

    def test_inline_embedding_disabled(self, hybrid_engine):
        response = hybrid_engine.search("cat", embed_docs_inline=False)

        assert response.degraded is False
        assert response.tier_index is None
        assert response.document_ids == ["doc0"]

    def test_document_dimension_mismatch_excluded(self, hybrid_engine):
        hybrid_engine.index_document("cat food", embedding=[1.0, 0.0], document_id="bad")

        response = hybrid_engine.search("cat", min_results=1)

        assert response.excluded_documents == ("bad",)
        # Still reachable through keyword evidence
        assert "bad" in response.document_ids
        bad = next(r for r in response if r.document_id == "bad")
        assert bad.vector_score is None


    def test_non_finite_document_embedding_excluded(self, hybrid_engine):
        hybrid_engine.index_document(
            "cat food", embedding=[math.nan, 0.0, 1.0], document_id="nan"
        )

        response = hybrid_engine.search(
            "cat", min_results=1, weights={"bm25": 0.0, "vector": 1.0}
        )

        assert response.excluded_documents == ("nan",)
        nan_result = next(r for r in response if r.document_id == "nan")
        assert nan_result.vector_score is None
        assert response.document_ids[0] == "doc0"


class TestDegradation:

    """Test cases for keyword-only fallback."""

    def test_provider_failure(self, make_config, sample_documents):
        provider = Mock(spec=EmbeddingProvider)
        provider.dimension = 3
        provider.embed.side_effect = RuntimeError("provider down")

        with SearchEngine(make_config(), embedding_provider=provider) as engine:
            for i, text in enumerate(sample_documents):
                engine.index_document(text, document_id=f"doc{i}")

            response = engine.search("cat")

            assert response.document_ids == ["doc0"]
            assert response.degraded is True
            assert response.degraded_reasons == ("embedding_unavailable",)
            # Degraded results are not cached
            assert engine.search("cat").cached is False

    def test_provider_timeout(self, make_config):
        release = threading.Event()

        def slow_embed(text):
            release.wait(timeout=5)
            return [1.0, 0.0, 1.0]

        provider = CallableEmbeddingProvider(slow_embed, dimension=3)
        engine = SearchEngine(make_config({"embedding": {"timeout": 0.05}}), embedding_provider=provider)
        try:
            engine.index_document("the cat sat", embedding=[1.0, 0.0, 1.0], document_id="doc0")

            response = engine.search("cat")

            assert response.degraded_reasons == ("embedding_timeout",)
            assert response.document_ids == ["doc0"]
        finally:
            release.set()
            engine.close()

    def test_query_dimension_mismatch(self, hybrid_engine):
        response = hybrid_engine.search("cat", query_embedding=[1.0, 0.0])

        assert response.degraded_reasons == ("query_dimension_mismatch",)
        assert response.document_ids == ["doc0"]
        assert response.tier_index is None

    @pytest.mark.parametrize("value", [math.nan, math.inf])
    def test_non_finite_query_embedding(self, hybrid_engine, value):
        response = hybrid_engine.search("cat", query_embedding=[value, 0.0, 1.0])

        assert response.degraded_reasons == ("invalid_query_embedding",)
        assert response.document_ids == ["doc0"]
        assert response.tier_index is None
        assert hybrid_engine.search("cat", query_embedding=[value, 0.0, 1.0]).cached is False

    def test_no_vector_signal(self, make_config, keyword_provider, sample_documents):
        config = make_config({"embedding": {"embed_documents": False}})
        with SearchEngine(config, embedding_provider=keyword_provider) as engine:
            for i, text in enumerate(sample_documents):
                engine.index_document(text, document_id=f"doc{i}")

            response = engine.search("cat")

            assert response.degraded_reasons == ("no_vector_signal",)
            assert response.document_ids == ["doc0"]
            assert engine.search("cat").cached is True

    def test_keyword_only_engine_is_not_degraded(self, keyword_engine):
        assert keyword_engine.search("cat").degraded is False


class TestResultCaching:
    """Test cases for cache integration."""

    def test_exact_repeat_is_cached(self, hybrid_engine):
        first = hybrid_engine.search("cat")
        second = hybrid_engine.search("  CAT ")

        assert first.cached is False
        assert second.cached is True
        assert second.cache_type == "exact"
        assert second.document_ids == first.document_ids
        assert second.state is first.state
        assert second.thresholds_visited == first.thresholds_visited
        assert second.query_id != first.query_id

    def test_similar_query_hits_semantic_tier(self, hybrid_engine):
        first = hybrid_engine.search("cat")
        similar = hybrid_engine.search("cat cat")

        assert similar.cached is True
        assert similar.cache_type == "semantic"
        assert similar.cache_similarity == pytest.approx(3 / math.sqrt(10))
        assert similar.document_ids == first.document_ids

    def test_different_options_do_not_share_entries(self, hybrid_engine):
        hybrid_engine.search("cat")

        assert hybrid_engine.search("cat", k=1, min_results=1).cached is False

    def test_ingestion_invalidates_cache(self, hybrid_engine):
        hybrid_engine.search("cat")
        hybrid_engine.index_document("another cat", document_id="doc3")

        response = hybrid_engine.search("cat")

        assert response.cached is False
        assert "doc3" in response.document_ids

    def test_removal_invalidates_cache(self, hybrid_engine):
        hybrid_engine.search("cat")
        hybrid_engine.remove_document("doc0")

        response = hybrid_engine.search("cat")

        assert response.cached is False
        assert "doc0" not in response.document_ids

    def test_cache_expiry(self, hybrid_engine, fake_clock):
        hybrid_engine.search("cat")
        fake_clock.advance(7200)

        assert hybrid_engine.search("cat").cached is False

    def test_cache_disabled(self, make_config, sample_documents):
        with SearchEngine(make_config({"cache": {"enabled": False}})) as engine:
            engine.index_document("the cat sat", document_id="doc0")
            engine.search("cat")

            assert engine.search("cat").cached is False


class TestConcurrentSearch:
    """Test cases for concurrent callers."""

    def test_identical_searches_collapse(self, keyword_engine):
        callers = 6
        compute_calls = []
        computing = threading.Event()
        release = threading.Event()
        waiting = threading.Semaphore(0)

        original_compute = keyword_engine._compute
        original_await = keyword_engine._await_shared

        def slow_compute(*args, **kwargs):
            compute_calls.append(1)
            computing.set()
            release.wait(timeout=5)
            return original_compute(*args, **kwargs)

        def counting_await(future, query_id):
            waiting.release()
            return original_await(future, query_id)

        keyword_engine._compute = slow_compute
        keyword_engine._await_shared = counting_await

        with ThreadPoolExecutor(max_workers=callers) as executor:
            futures = [executor.submit(keyword_engine.search, "cat") for _ in range(callers)]
            assert computing.wait(timeout=5)
            for _ in range(callers - 1):
                assert waiting.acquire(timeout=5)
            release.set()
            responses = [f.result(timeout=5) for f in futures]

        assert len(compute_calls) == 1
        assert sorted(r.shared for r in responses) == [False] + [True] * (callers - 1)
        assert all(r.document_ids == ["doc0"] for r in responses)
        assert len({r.query_id for r in responses}) == callers
        assert keyword_engine.get_stats()["queries"]["shared"] == callers - 1

    def test_ingestion_during_search_does_not_leave_stale_cache(self, make_config):
        store = BlockingDocumentStore()

        with SearchEngine(make_config(), document_store=store) as engine:
            engine.index_document("the cat sat", document_id="doc0")

            store.block = True
            with ThreadPoolExecutor(max_workers=1) as executor:
                pending = executor.submit(engine.search, "cat", k=5, min_results=1)
                # Leader has ranked and is fetching snippets
                assert store.entered.wait(timeout=5)
                store.block = False
                engine.index_document("cat cat cat", document_id="doc1")
                store.release.set()
                first = pending.result(timeout=5)

            assert first.document_ids == ["doc0"]
            assert len(engine.cache) == 0

            response = engine.search("cat", k=5, min_results=1)

            assert response.cached is False
            assert "doc1" in response.document_ids

    def test_concurrent_search_and_ingestion(self, keyword_engine):
        def ingest(i):
            keyword_engine.index_document(f"cat number {i}", document_id=f"extra{i:02d}")

        def query(_):
            response = keyword_engine.search("cat", k=50, min_results=0)
            assert len(set(response.document_ids)) == len(response)

        with ThreadPoolExecutor(max_workers=8) as executor:
            jobs = [executor.submit(ingest, i) for i in range(20)]
            jobs += [executor.submit(query, i) for i in range(20)]
            for job in jobs:
                job.result(timeout=10)

        assert len(keyword_engine.search("cat", k=50, min_results=0)) == 21
        assert keyword_engine.verify_index() == []


class TestCancellation:
    """Test cases for cooperative cancellation."""

    def test_cancelled_search(self, hybrid_engine):
        token = CancellationToken()
        token.cancel()

        response = hybrid_engine.search("cat", cancel_token=token)

        assert response.state is SearchState.CANCELLED
        assert response.results == ()
        # Cancelled outcomes are never cached
        follow_up = hybrid_engine.search("cat")
        assert follow_up.cached is False
        assert follow_up.state is SearchState.EXHAUSTED


class TestReadOnlyMode:
    """Test cases for index corruption handling."""

    def test_corruption_degrades_search_and_blocks_writes(self, keyword_engine):
        keyword_engine.index._postings["cat"].clear()

        assert keyword_engine.verify_index()

        response = keyword_engine.search("dog")
        assert response.document_ids == ["doc1"]
        assert "index_read_only" in response.degraded_reasons

        with pytest.raises(IndexCorruption):
            keyword_engine.index_document("new cat")
        assert keyword_engine.health_check()["healthy"] is False

        keyword_engine.repair_index()

        assert keyword_engine.search("cat").document_ids == ["doc0"]
        keyword_engine.index_document("new cat", document_id="doc9")
        assert keyword_engine.health_check()["healthy"] is True


class TestOptions:
    """Test cases for option validation."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"k": 0},
            {"k": 2, "min_results": 5},
            {"thresholds": [0.5, 0.7]},
            {"thresholds": []},
            {"weights": {"bm25": 0.0, "vector": 0.0}},
            {"unknown": True},
        ],
    )
    def test_invalid_options(self, keyword_engine, overrides):
        with pytest.raises(ConfigurationError):
            keyword_engine.search("cat", **overrides)

    def test_options_object_with_overrides(self, keyword_engine):
        response = keyword_engine.search("cat", SearchOptions(k=5), min_results=1)

        assert response.state is SearchState.FOUND

    def test_options_dict(self, keyword_engine):
        response = keyword_engine.search("cat", {"k": 1, "min_results": 1})

        assert len(response) == 1


class TestLifecycle:
    """Test cases for engine lifecycle and observability."""

    def test_closed_engine_rejects_work(self, make_config):
        engine = SearchEngine(make_config())
        engine.close()
        engine.close()

        assert engine.closed is True
        with pytest.raises(EngineClosed):
            engine.search("cat")
        with pytest.raises(EngineClosed):
            engine.index_document("cat")

    def test_context_manager_closes(self, make_config):
        with SearchEngine(make_config()) as engine:
            pass

        assert engine.closed is True

    @pytest.mark.asyncio
    async def test_asearch(self, keyword_engine):
        response = await keyword_engine.asearch("cat", min_results=1)

        assert response.document_ids == ["doc0"]
        assert response.state is SearchState.FOUND

    @pytest.mark.asyncio
    async def test_asearch_after_close(self, make_config):
        engine = SearchEngine(make_config())
        engine.close()

        with pytest.raises(EngineClosed):
            await engine.asearch("cat")

    def test_health_check(self, hybrid_engine):
        health = hybrid_engine.health_check()

        assert health["healthy"] is True
        assert health["embedding_provider"] is True
        assert health["document_store"] is True
        assert health["index"]["document_count"] == 3
        assert health["in_flight"] == 0

    def test_health_check_failing_provider(self, make_config, mock_embedding_provider):
        mock_embedding_provider.ping.side_effect = RuntimeError("unreachable")

        with SearchEngine(make_config(), embedding_provider=mock_embedding_provider) as engine:
            health = engine.health_check()

        assert health["healthy"] is False
        assert health["embedding_provider"] is False

    def test_get_stats(self, keyword_engine):
        keyword_engine.search("cat")
        keyword_engine.search("cat")

        stats = keyword_engine.get_stats()

        assert stats["queries"]["queries"] == 2
        assert stats["queries"]["cache_hits"] == 1
        assert stats["cache"]["hits"]["exact"] == 1
        assert stats["index"]["document_count"] == 3
        assert stats["config"]["embedding"]["dimension"] == 3

    def test_performance_stats_are_per_engine(self, make_config):
        with SearchEngine(make_config()) as busy, SearchEngine(make_config()) as idle:
            busy.index_document("the cat sat")
            busy.search("cat")
            busy.search("dog")

            busy_perf = busy.get_stats()["performance"]
            idle_perf = idle.get_stats()["performance"]

        assert busy_perf["query_duration"]["count"] == 2
        assert idle_perf == {"error": "No measurements available"}

    def test_query_time_recorded(self, keyword_engine):
        assert keyword_engine.search("cat").query_time >= 0.0

    def test_embedding_disabled_ignores_provider(self, make_config, mock_embedding_provider):
        config = make_config({"embedding": {"enabled": False}})
        with SearchEngine(config, embedding_provider=mock_embedding_provider) as engine:
            engine.index_document("the cat sat")
            engine.search("cat")

        mock_embedding_provider.embed.assert_not_called()
