"""
Unit Tests for ProgressiveRetriever

Tests the threshold relaxation state machine including:
- Tier order and early termination
- Exhaustion of all tiers
- Cancellation before and between tiers
- Keyword-only single pass
- Tier filtering of documents without embeddings
"""

import pytest

from hybrid_search.core.models import Candidate, SearchState
from hybrid_search.infrastructure.concurrency import CancellationToken
from hybrid_search.retrieval.fusion import FusionRanker
from hybrid_search.retrieval.progressive import ProgressiveRetriever

THRESHOLDS = (0.75, 0.70, 0.65, 0.60)


class TestProgressiveRetriever:
    """Test cases for ProgressiveRetriever."""

    @pytest.fixture
    def transitions(self):
        return []

    @pytest.fixture
    def retriever(self, transitions):
        return ProgressiveRetriever(
            FusionRanker(), on_transition=lambda *args: transitions.append(args)
        )

    @pytest.fixture
    def candidates(self):
        return [
            Candidate("a", bm25_score=1.0, vector_score=0.90),
            Candidate("b", bm25_score=0.5, vector_score=0.72),
            Candidate("c", bm25_score=0.0, vector_score=0.68),
            Candidate("d", bm25_score=2.0, vector_score=0.50),
        ]

    def test_stops_at_first_satisfying_tier(self, retriever, candidates, transitions):
        outcome = retriever.retrieve(candidates, THRESHOLDS, k=10, min_results=3, vector_signal=True)

        assert outcome.state is SearchState.FOUND
        assert outcome.tier_index == 2
        assert outcome.threshold == 0.65
        assert outcome.thresholds_visited == (0.75, 0.70, 0.65)
        assert sorted(outcome.results[i].document_id for i in range(3)) == ["a", "b", "c"]
        assert transitions == [
            (SearchState.SEARCHING, SearchState.SEARCHING, 1),
            (SearchState.SEARCHING, SearchState.SEARCHING, 2),
            (SearchState.SEARCHING, SearchState.FOUND, 2),
        ]

    def test_first_tier_sufficient(self, retriever, candidates):
        outcome = retriever.retrieve(candidates, THRESHOLDS, k=10, min_results=1, vector_signal=True)

        assert outcome.state is SearchState.FOUND
        assert outcome.tier_index == 0
        assert outcome.thresholds_visited == (0.75,)
        assert [r.document_id for r in outcome.results] == ["a"]

    def test_min_results_zero_found_immediately(self, retriever):
        outcome = retriever.retrieve([], THRESHOLDS, k=10, min_results=0, vector_signal=True)

        assert outcome.state is SearchState.FOUND
        assert outcome.tier_index == 0
        assert outcome.results == ()

    def test_exhausted_after_last_tier(self, retriever, candidates, transitions):
        outcome = retriever.retrieve(candidates, THRESHOLDS, k=10, min_results=4, vector_signal=True)

        assert outcome.state is SearchState.EXHAUSTED
        assert outcome.tier_index == 3
        assert outcome.threshold == 0.60
        assert outcome.thresholds_visited == THRESHOLDS
        assert {r.document_id for r in outcome.results} == {"a", "b", "c"}
        assert transitions[-1] == (SearchState.SEARCHING, SearchState.EXHAUSTED, 3)

    def test_results_capped_at_k(self, retriever, candidates):
        outcome = retriever.retrieve(candidates, THRESHOLDS, k=2, min_results=2, vector_signal=True)

        assert outcome.state is SearchState.FOUND
        assert outcome.tier_index == 1
        assert len(outcome.results) == 2

    def test_visited_thresholds_strictly_descending(self, retriever, candidates):
        outcome = retriever.retrieve(candidates, THRESHOLDS, k=10, min_results=4, vector_signal=True)
        visited = outcome.thresholds_visited

        assert all(a > b for a, b in zip(visited, visited[1:]))

    def test_cancelled_before_first_tier(self, retriever, candidates, transitions):
        token = CancellationToken()
        token.cancel()

        outcome = retriever.retrieve(
            candidates, THRESHOLDS, k=10, min_results=3, vector_signal=True, cancel_token=token
        )

        assert outcome.state is SearchState.CANCELLED
        assert outcome.results == ()
        assert outcome.tier_index is None
        assert outcome.thresholds_visited == ()
        assert transitions == [(SearchState.SEARCHING, SearchState.CANCELLED, None)]

    def test_cancelled_between_tiers_keeps_last_pass(self, candidates):
        token = CancellationToken()

        def cancel_on_relax(current, target, tier_index):
            if target is SearchState.SEARCHING:
                token.cancel()

        retriever = ProgressiveRetriever(FusionRanker(), on_transition=cancel_on_relax)
        outcome = retriever.retrieve(
            candidates, THRESHOLDS, k=10, min_results=3, vector_signal=True, cancel_token=token
        )

        assert outcome.state is SearchState.CANCELLED
        assert outcome.tier_index == 0
        assert outcome.thresholds_visited == (0.75,)
        assert [r.document_id for r in outcome.results] == ["a"]

    def test_no_vector_signal_runs_single_pass(self, retriever, transitions):
        candidates = [
            Candidate("x", bm25_score=2.0),
            Candidate("y", bm25_score=1.0),
        ]

        outcome = retriever.retrieve(candidates, THRESHOLDS, k=10, min_results=3, vector_signal=False)

        assert outcome.state is SearchState.EXHAUSTED
        assert outcome.tier_index is None
        assert outcome.threshold is None
        assert outcome.thresholds_visited == ()
        assert [r.document_id for r in outcome.results] == ["x", "y"]
        assert transitions == [(SearchState.SEARCHING, SearchState.EXHAUSTED, 0)]

    def test_no_vector_signal_found(self, retriever):
        outcome = retriever.retrieve(
            [Candidate("x", bm25_score=2.0)], THRESHOLDS, k=10, min_results=1, vector_signal=False
        )

        assert outcome.state is SearchState.FOUND
        assert outcome.vector_signal is False

    def test_requires_thresholds(self, retriever):
        with pytest.raises(ValueError):
            retriever.retrieve([], (), k=10, min_results=1, vector_signal=True)


class TestFilterTier:
    """Test cases for tier filtering."""

    def test_threshold_is_inclusive(self):
        kept = ProgressiveRetriever.filter_tier([Candidate("a", 0.0, 0.7)], 0.7)
        assert [c.document_id for c in kept] == ["a"]

    def test_unembedded_documents_need_keyword_evidence(self):
        candidates = [
            Candidate("keyword", bm25_score=1.5, vector_score=None),
            Candidate("nothing", bm25_score=0.0, vector_score=None),
            Candidate("low", bm25_score=3.0, vector_score=0.1),
        ]

        kept = ProgressiveRetriever.filter_tier(candidates, 0.5)

        assert [c.document_id for c in kept] == ["keyword"]
