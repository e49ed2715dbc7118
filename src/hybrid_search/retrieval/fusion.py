"""
Fusion Ranker - Weighted combination of keyword and vector relevance

Part of the Hybrid Search Engine.

Both raw signals are min-max normalized over the candidate set of the
current pass, then combined:

    fused = w_bm25 * normalized_bm25 + w_vector * normalized_vector

Candidates without a vector score contribute 0 on the vector side. Results
are ordered by fused score descending, ties broken by ascending document id.

License: MIT
"""

from typing import List, Optional, Sequence
import logging

from ..core.models import Candidate, ScoredResult

logger = logging.getLogger(__name__)


def normalize_scores(scores: Sequence[float]) -> List[float]:
    """
    Normalize scores to [0, 1] range using min-max normalization.

    When every score is the same the range is zero; positive values then
    map to 1.0 and the rest to 0.0.

    Args:
        scores: Raw scores

    Returns:
        List of normalized scores in input order
    """
    if not scores:
        return []

    min_score = min(scores)
    max_score = max(scores)
    score_range = max_score - min_score

    if score_range == 0:
        return [1.0 if max_score > 0 else 0.0] * len(scores)

    return [(score - min_score) / score_range for score in scores]


class FusionRanker:
    """
    Merge BM25 and vector scores into one ordered result list.

    Weights need not sum to 1, though keeping them summed to 1 keeps fused
    scores in [0, 1].
    """

    def __init__(self, bm25_weight: float = 0.7, vector_weight: float = 0.3):
        """
        Initialize the ranker.

        Args:
            bm25_weight: Default weight of the normalized keyword score
            vector_weight: Default weight of the normalized vector score
        """
        if bm25_weight < 0 or vector_weight < 0:
            raise ValueError("Fusion weights must be non-negative")
        if bm25_weight == 0 and vector_weight == 0:
            raise ValueError("At least one fusion weight must be positive")

        self.bm25_weight = bm25_weight
        self.vector_weight = vector_weight

        if abs(bm25_weight + vector_weight - 1.0) > 0.01:
            logger.debug(f"Fusion weights don't sum to 1.0: {bm25_weight + vector_weight}")

    def rank(
        self,
        candidates: Sequence[Candidate],
        limit: Optional[int] = None,
        bm25_weight: Optional[float] = None,
        vector_weight: Optional[float] = None,
    ) -> List[ScoredResult]:
        """
        Fuse and rank candidates.

        Args:
            candidates: Candidates of one retrieval pass
            limit: Keep at most this many results after ranking
            bm25_weight: Override of the keyword weight
            vector_weight: Override of the vector weight

        Returns:
            Ranked results with 1-based ranks
        """
        if not candidates:
            return []

        w_bm25 = self.bm25_weight if bm25_weight is None else bm25_weight
        w_vector = self.vector_weight if vector_weight is None else vector_weight

        bm25_normalized = normalize_scores([c.bm25_score for c in candidates])

        with_vector = [c for c in candidates if c.vector_score is not None]
        vector_normalized = dict(
            zip(
                (c.document_id for c in with_vector),
                normalize_scores([c.vector_score for c in with_vector]),
            )
        )

        fused = []
        for candidate, n_bm25 in zip(candidates, bm25_normalized):
            n_vector = vector_normalized.get(candidate.document_id, 0.0)
            fused.append((w_bm25 * n_bm25 + w_vector * n_vector, candidate))

        fused.sort(key=lambda item: (-item[0], item[1].document_id))
        if limit is not None:
            fused = fused[:limit]

        return [
            ScoredResult(
                document_id=candidate.document_id,
                bm25_score=candidate.bm25_score,
                vector_score=candidate.vector_score,
                fused_score=score,
                rank=position,
                metadata=candidate.metadata,
            )
            for position, (score, candidate) in enumerate(fused, start=1)
        ]
