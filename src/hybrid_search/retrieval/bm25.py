"""
BM25 Scorer - Keyword relevance over the inverted index

Part of the Hybrid Search Engine.

Okapi BM25:
    score(Q, d) = sum over t in Q of IDF(t) * f(t,d) * (k1 + 1)
                  / (f(t,d) + k1 * (1 - b + b * |d| / avgdl))
    IDF(t)      = ln((N - n(t) + 0.5) / (n(t) + 0.5) + 1)

Each distinct query term counts once, so repeating a word in the query does
not inflate its weight. Terms absent from the index contribute zero.

License: MIT
"""

import math
from typing import Dict, Iterable, List
import logging

from ..core.index import IndexReader

logger = logging.getLogger(__name__)


class BM25Scorer:
    """
    Score documents against a tokenized query with Okapi BM25.

    Ordering of equal scores is left to the fusion ranker.
    """

    def __init__(self, k1: float = 1.2, b: float = 0.75):
        """
        Initialize the scorer.

        Args:
            k1: Term frequency saturation
            b: Document length normalization strength
        """
        if k1 < 0:
            raise ValueError(f"k1 must be non-negative, got {k1}")
        if not 0.0 <= b <= 1.0:
            raise ValueError(f"b must be between 0 and 1, got {b}")
        self.k1 = k1
        self.b = b

    @staticmethod
    def idf(document_count: int, document_frequency: int) -> float:
        """Inverse document frequency, always positive."""
        return math.log(
            (document_count - document_frequency + 0.5) / (document_frequency + 0.5) + 1.0
        )

    def term_score(
        self, term_frequency: int, document_length: int, average_length: float, idf: float
    ) -> float:
        """
        BM25 contribution of one term to one document.

        Args:
            term_frequency: f(t, d)
            document_length: |d| in tokens
            average_length: Average document length across the index
            idf: Precomputed IDF of the term

        Returns:
            Term contribution (0.0 when the term does not occur)
        """
        if term_frequency <= 0:
            return 0.0

        avgdl = average_length if average_length > 0 else 1.0
        numerator = term_frequency * (self.k1 + 1.0)
        denominator = term_frequency + self.k1 * (
            1.0 - self.b + self.b * document_length / avgdl
        )
        return idf * numerator / denominator

    def score(self, query_terms: Iterable[str], reader: IndexReader) -> Dict[str, float]:
        """
        Score every document that contains at least one query term.

        Args:
            query_terms: Normalized query tokens
            reader: Index view held under a read lock

        Returns:
            Mapping of document id to BM25 score (documents without a
            matching term are absent)
        """
        terms = _unique(query_terms)
        if not terms or reader.document_count == 0:
            return {}

        document_count = reader.document_count
        average_length = reader.average_length
        scores: Dict[str, float] = {}

        for term in terms:
            document_frequency, postings = reader.term_stats(term)
            if document_frequency == 0:
                continue

            idf = self.idf(document_count, document_frequency)
            for document_id, term_frequency in postings:
                document = reader.get(document_id)
                contribution = self.term_score(
                    term_frequency, document.length, average_length, idf
                )
                scores[document_id] = scores.get(document_id, 0.0) + contribution

        logger.debug(f"BM25 scored {len(scores)} documents for {len(terms)} query terms")
        return scores


def _unique(terms: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(terms))
