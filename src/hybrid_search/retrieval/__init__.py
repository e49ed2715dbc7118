"""
Retrieval Components - Scoring, fusion and progressive relaxation

This module implements:
- BM25 keyword scoring
- Cosine vector scoring
- Min-max weighted score fusion
- The progressive threshold state machine

License: MIT
"""

from .bm25 import BM25Scorer
from .vector import VectorScorer, cosine_similarity
from .fusion import FusionRanker, normalize_scores
from .progressive import ProgressiveRetriever

__all__ = [
    "BM25Scorer",
    "VectorScorer",
    "cosine_similarity",
    "FusionRanker",
    "normalize_scores",
    "ProgressiveRetriever",
]
