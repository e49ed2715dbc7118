"""
Progressive Threshold Retriever - Relax similarity tiers until enough results

Part of the Hybrid Search Engine.

The relaxation loop is an explicit state machine:

    SEARCHING(i) --count >= min_results--------------> FOUND
    SEARCHING(i) --short, i + 1 < len(thresholds)----> SEARCHING(i + 1)
    SEARCHING(i) --short, last tier------------------> EXHAUSTED
    SEARCHING(i) --cancellation requested------------> CANCELLED

Cancellation is checked before every tier, and a cancelled run returns the
results of the last completed pass. Tiers are visited strictly in the
configured descending order and never revisited.

License: MIT
"""

from typing import Callable, List, Optional, Sequence, Tuple
import logging

from ..core.models import Candidate, RetrievalOutcome, ScoredResult, SearchState
from ..infrastructure.concurrency import CancellationToken
from .fusion import FusionRanker

logger = logging.getLogger(__name__)

TransitionHook = Callable[[SearchState, SearchState, Optional[int]], None]


class ProgressiveRetriever:
    """
    Run fusion passes at decreasing similarity thresholds.

    Without any vector signal a threshold cannot change the candidate pool,
    so a single unfiltered pass decides between FOUND and EXHAUSTED.
    """

    def __init__(self, ranker: FusionRanker, on_transition: Optional[TransitionHook] = None):
        """
        Initialize the retriever.

        Args:
            ranker: Fusion ranker used for every pass
            on_transition: Optional hook called with (from_state, to_state, tier_index)
        """
        self.ranker = ranker
        self.on_transition = on_transition

    def retrieve(
        self,
        candidates: Sequence[Candidate],
        thresholds: Sequence[float],
        k: int,
        min_results: int,
        vector_signal: bool,
        bm25_weight: Optional[float] = None,
        vector_weight: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RetrievalOutcome:
        """
        Drive the state machine to a terminal state.

        Args:
            candidates: Union of keyword-matching and vector-scored documents
            thresholds: Strictly descending similarity tiers
            k: Maximum results per pass
            min_results: Result count that ends the search
            vector_signal: Whether the query has a usable embedding
            bm25_weight: Keyword weight override
            vector_weight: Vector weight override
            cancel_token: Checked before each tier

        Returns:
            RetrievalOutcome in state FOUND, EXHAUSTED or CANCELLED
        """
        if not thresholds:
            raise ValueError("At least one threshold is required")

        state = SearchState.SEARCHING
        tier_index = 0
        results: Tuple[ScoredResult, ...] = ()
        completed_tier: Optional[int] = None
        visited: List[float] = []

        while state is SearchState.SEARCHING:
            if cancel_token is not None and cancel_token.is_cancelled():
                state = self._transition(state, SearchState.CANCELLED, completed_tier)
                break

            threshold = thresholds[tier_index]
            if vector_signal:
                visited.append(threshold)
                pool = self.filter_tier(candidates, threshold)
            else:
                pool = list(candidates)

            results = tuple(
                self.ranker.rank(
                    pool, limit=k, bm25_weight=bm25_weight, vector_weight=vector_weight
                )
            )
            completed_tier = tier_index
            logger.debug(
                f"Tier {tier_index} (threshold={threshold}) produced {len(results)} results"
            )

            if len(results) >= min_results:
                state = self._transition(state, SearchState.FOUND, tier_index)
            elif vector_signal and tier_index + 1 < len(thresholds):
                tier_index += 1
                self._transition(state, SearchState.SEARCHING, tier_index)
            else:
                state = self._transition(state, SearchState.EXHAUSTED, tier_index)

        # Keyword-only passes are not tied to a tier
        if vector_signal and completed_tier is not None:
            tier, threshold = completed_tier, thresholds[completed_tier]
        else:
            tier, threshold = None, None

        return RetrievalOutcome(
            state=state,
            results=results,
            tier_index=tier,
            threshold=threshold,
            thresholds_visited=tuple(visited),
            vector_signal=vector_signal,
        )

    @staticmethod
    def filter_tier(candidates: Sequence[Candidate], threshold: float) -> List[Candidate]:
        """
        Restrict candidates to one similarity tier.

        Documents with a vector score must reach the threshold. Documents
        without one keep their place only on keyword evidence.
        """
        return [
            c for c in candidates
            if (c.vector_score is not None and c.vector_score >= threshold)
            or (c.vector_score is None and c.bm25_score > 0)
        ]

    def _transition(
        self, current: SearchState, target: SearchState, tier_index: Optional[int]
    ) -> SearchState:
        if self.on_transition is not None:
            self.on_transition(current, target, tier_index)
        return target
