"""
Tokenizer - Text normalization for keyword indexing and querying

Part of the Hybrid Search Engine.

Tokenization pipeline:
1. Lowercase conversion
2. Every character outside [a-z0-9] and whitespace becomes a space
3. Split on whitespace
4. Filter stopwords (built-in English list or a custom list)
5. Optional Snowball stemming ("cats" -> "cat")

License: MIT
"""

import re
from typing import Callable, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)

# English stopwords (Lucene/Elasticsearch standard list)
DEFAULT_STOPWORDS = frozenset([
    "a", "an", "and", "are", "as", "at", "be", "but", "by",
    "for", "if", "in", "into", "is", "it",
    "no", "not", "of", "on", "or", "such",
    "that", "the", "their", "then", "there", "these",
    "they", "this", "to", "was", "will", "with",
])

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")


def tokenize(
    text: str,
    stopwords: Iterable[str] = DEFAULT_STOPWORDS,
    stemmer: Optional[Callable[[str], str]] = None,
) -> List[str]:
    """
    Normalize raw text into an ordered token sequence.

    Args:
        text: Input text to tokenize
        stopwords: Words to drop after normalization
        stemmer: Optional callable reducing a token to its stem

    Returns:
        List of normalized tokens; empty for empty or whitespace-only text

    Examples:
        >>> tokenize("The cat sat!")
        ['cat', 'sat']
        >>> tokenize("   ")
        []
    """
    if not text:
        return []

    stop = stopwords if isinstance(stopwords, (set, frozenset)) else frozenset(stopwords)

    normalized = _NON_ALPHANUMERIC.sub(" ", text.lower())
    tokens = [token for token in normalized.split() if token not in stop]

    if stemmer is not None:
        tokens = [stemmer(token) for token in tokens]

    return tokens


class Tokenizer:
    """
    Configured tokenizer shared by indexing and querying.

    The same instance must be used on both sides so that document and query
    tokens live in the same vocabulary.
    """

    def __init__(self, stopwords: Optional[Iterable[str]] = None, stemming: bool = False):
        """
        Initialize the tokenizer.

        Args:
            stopwords: Custom stopword list; None selects the built-in list
            stemming: Apply Snowball stemming to every token
        """
        if stopwords is None:
            self.stopwords = DEFAULT_STOPWORDS
        else:
            self.stopwords = frozenset(word.lower() for word in stopwords)
        self.stemming = stemming
        self._stemmer = None

    @property
    def stemmer(self) -> Optional[Callable[[str], str]]:
        """Lazy initialization of the Snowball stemmer."""
        if not self.stemming:
            return None

        if self._stemmer is None:
            try:
                from nltk.stem.snowball import SnowballStemmer
            except ImportError:
                raise ImportError("nltk is required for stemming. Install with: pip install nltk")

            self._stemmer = SnowballStemmer("english").stem
            logger.debug("Snowball stemmer initialized")

        return self._stemmer

    def tokenize(self, text: str) -> List[str]:
        """Tokenize ``text`` with this tokenizer's stopwords and stemming."""
        return tokenize(text, self.stopwords, self.stemmer)

    def __call__(self, text: str) -> List[str]:
        return self.tokenize(text)

    def __repr__(self) -> str:
        return f"Tokenizer(stopwords={len(self.stopwords)}, stemming={self.stemming})"
