"""
Vector Scorer - Cosine similarity between query and document embeddings

Part of the Hybrid Search Engine.

License: MIT
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np

from ..core.models import Document
from ..exceptions import DimensionMismatch, NonFiniteEmbedding

logger = logging.getLogger(__name__)

Vector = Union[Sequence[float], np.ndarray]


def cosine_similarity(u: np.ndarray, v: np.ndarray) -> float:
    """
    Cosine of the angle between two vectors.

    Returns 0.0 when either vector has zero norm or contains non-finite
    values. The result is clamped to [-1, 1] to absorb floating-point drift.
    """
    norm_u = np.linalg.norm(u)
    norm_v = np.linalg.norm(v)
    if not (np.isfinite(norm_u) and np.isfinite(norm_v)):
        return 0.0
    if norm_u == 0 or norm_v == 0:
        return 0.0
    value = float(np.dot(u, v) / (norm_u * norm_v))
    return max(-1.0, min(1.0, value))


class VectorScorer:
    """Cosine scorer bound to the configured embedding dimension."""

    def __init__(self, dimension: int):
        if dimension < 1:
            raise ValueError(f"Embedding dimension must be at least 1, got {dimension}")
        self.dimension = dimension

    def validate(self, vector: Vector, document_id: Optional[str] = None) -> np.ndarray:
        """
        Coerce a vector to a finite float array of the configured dimension.

        Raises:
            DimensionMismatch: If the vector length differs from the dimension
            NonFiniteEmbedding: If the vector contains NaN or infinity
        """
        array = np.asarray(vector, dtype=np.float64).ravel()
        if array.shape[0] != self.dimension:
            raise DimensionMismatch(self.dimension, array.shape[0], document_id)
        if not np.isfinite(array).all():
            raise NonFiniteEmbedding(document_id)
        return array

    def similarity(self, query_embedding: Vector, document_embedding: Vector) -> float:
        """Cosine similarity after validating both vectors."""
        return cosine_similarity(
            self.validate(query_embedding), self.validate(document_embedding)
        )

    def score(
        self, query_embedding: np.ndarray, documents: Iterable[Document]
    ) -> Tuple[Dict[str, float], List[str]]:
        """
        Score every embedded document against a validated query embedding.

        Args:
            query_embedding: Query vector, already validated
            documents: Documents to score; those without an embedding are skipped

        Returns:
            Tuple of (document id -> similarity, ids excluded as unusable)
        """
        scores: Dict[str, float] = {}
        excluded: List[str] = []

        for document in documents:
            if document.embedding is None:
                continue
            try:
                embedding = self.validate(document.embedding, document.id)
            except (DimensionMismatch, NonFiniteEmbedding) as e:
                logger.debug(str(e))
                excluded.append(document.id)
                continue
            scores[document.id] = cosine_similarity(query_embedding, embedding)

        if excluded:
            logger.warning(
                f"Excluded {len(excluded)} documents from vector scoring "
                f"(dimension mismatch or non-finite values)"
            )

        return scores, sorted(excluded)
