"""
Inverted Index - Per-document term statistics and term postings

Part of the Hybrid Search Engine.

The index exclusively owns document statistics. Mutations go through
insert/remove under an exclusive write lock, so N and the average document
length are always observed together with the postings they describe.

License: MIT
"""

import bisect
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

from ..exceptions import DocumentNotFound, DuplicateDocumentId, IndexCorruption
from ..infrastructure.concurrency import ReadWriteLock
from .models import Document

logger = logging.getLogger(__name__)

Posting = Tuple[str, int]


class IndexReader:
    """
    Read-only view of an index, valid while its read lock is held.

    Obtain one through ``InvertedIndex.reading()``; do not keep it past the
    ``with`` block.
    """

    def __init__(self, index: "InvertedIndex"):
        self._index = index

    @property
    def document_count(self) -> int:
        return len(self._index._documents)

    @property
    def average_length(self) -> float:
        return self._index._average_length

    @property
    def read_only(self) -> bool:
        return self._index.read_only

    def term_stats(self, term: str) -> Tuple[int, Tuple[Posting, ...]]:
        postings = self._index._postings.get(term, [])
        return len(postings), tuple(postings)

    def document_frequency(self, term: str) -> int:
        return len(self._index._postings.get(term, ()))

    def get(self, document_id: str) -> Optional[Document]:
        return self._index._documents.get(document_id)

    def documents(self) -> Iterator[Document]:
        return iter(list(self._index._documents.values()))

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._index._documents


class InvertedIndex:
    """
    Thread-safe inverted index for BM25 scoring.

    Holds document count N, the running average document length and a
    mapping term -> postings list of (document_id, term_frequency) sorted by
    document id. Postings never contain duplicate document ids.

    When an invariant violation is detected the index switches to read-only
    mode: writes raise IndexCorruption, reads keep working until repair().
    """

    def __init__(self):
        """Initialize an empty index."""
        self._documents: Dict[str, Document] = {}
        self._postings: Dict[str, List[Posting]] = {}
        self._total_length = 0
        self._average_length = 0.0
        self._lock = ReadWriteLock()

        self._state_lock = threading.Lock()
        self._read_only = False
        self._corruption_reason: Optional[str] = None

    # Writes

    def insert(self, document: Document) -> None:
        """
        Add a document's token statistics to the index.

        Args:
            document: Document to index

        Raises:
            DuplicateDocumentId: If the identifier already exists (index unchanged)
            IndexCorruption: If the index is in read-only mode
        """
        with self._lock.write_locked():
            self._ensure_writable()

            if document.id in self._documents:
                raise DuplicateDocumentId(document.id)

            for term, frequency in document.term_frequencies.items():
                postings = self._postings.setdefault(term, [])
                bisect.insort(postings, (document.id, frequency))

            self._documents[document.id] = document
            self._total_length += document.length
            self._recompute_average()

        logger.debug(f"Indexed document '{document.id}' ({document.length} tokens)")

    def remove(self, document_id: str) -> Document:
        """
        Remove a document and its postings from the index.

        Args:
            document_id: Identifier of the document to remove

        Returns:
            The removed document

        Raises:
            DocumentNotFound: If the document is not indexed
            IndexCorruption: If the index is read-only or a posting is missing
        """
        with self._lock.write_locked():
            self._ensure_writable()

            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFound(document_id)

            missing = [
                term for term in document.term_frequencies
                if self._find_posting(term, document_id) is None
            ]
            if missing:
                reason = (
                    f"Document '{document_id}' missing from postings of "
                    f"{len(missing)} term(s): {', '.join(sorted(missing)[:5])}"
                )
                self._mark_corrupted(reason)
                raise IndexCorruption(reason)

            for term in document.term_frequencies:
                postings = self._postings[term]
                del postings[self._find_posting(term, document_id)]
                if not postings:
                    del self._postings[term]

            del self._documents[document_id]
            self._total_length -= document.length
            self._recompute_average()

        logger.debug(f"Removed document '{document_id}'")
        return document

    def repair(self) -> None:
        """Rebuild postings and statistics from per-document term frequencies."""
        with self._lock.write_locked():
            postings: Dict[str, List[Posting]] = {}
            for document_id in sorted(self._documents):
                document = self._documents[document_id]
                for term, frequency in document.term_frequencies.items():
                    postings.setdefault(term, []).append((document_id, frequency))

            self._postings = postings
            self._total_length = sum(doc.length for doc in self._documents.values())
            self._recompute_average()

            with self._state_lock:
                was_read_only = self._read_only
                self._read_only = False
                self._corruption_reason = None

        if was_read_only:
            logger.info("Index repaired; write access restored")

    # Reads

    @contextmanager
    def reading(self) -> Iterator[IndexReader]:
        """Hold shared read access and yield a consistent view of the index."""
        with self._lock.read_locked():
            yield IndexReader(self)

    def term_stats(self, term: str) -> Tuple[int, Tuple[Posting, ...]]:
        """
        Get statistics for a single term.

        Args:
            term: Normalized term

        Returns:
            Tuple of (document_frequency, postings sorted by document id)
        """
        with self.reading() as reader:
            return reader.term_stats(term)

    def get_document(self, document_id: str) -> Document:
        """Return an indexed document or raise DocumentNotFound."""
        with self.reading() as reader:
            document = reader.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    @property
    def document_count(self) -> int:
        with self._lock.read_locked():
            return len(self._documents)

    @property
    def average_length(self) -> float:
        with self._lock.read_locked():
            return self._average_length

    @property
    def read_only(self) -> bool:
        with self._state_lock:
            return self._read_only

    @property
    def corruption_reason(self) -> Optional[str]:
        with self._state_lock:
            return self._corruption_reason

    def __len__(self) -> int:
        return self.document_count

    def __contains__(self, document_id: object) -> bool:
        with self._lock.read_locked():
            return document_id in self._documents

    # Integrity

    def verify(self) -> List[str]:
        """
        Check the index invariants.

        Any violation switches the index to read-only mode.

        Returns:
            List of problems found (empty when the index is healthy)
        """
        problems: List[str] = []

        with self._lock.read_locked():
            expected_df: Dict[str, int] = {}
            for document in self._documents.values():
                for term in document.term_frequencies:
                    expected_df[term] = expected_df.get(term, 0) + 1

            for term, postings in self._postings.items():
                ids = [document_id for document_id, _ in postings]
                if ids != sorted(ids):
                    problems.append(f"Postings for '{term}' are not sorted by document id")
                if len(ids) != len(set(ids)):
                    problems.append(f"Postings for '{term}' contain duplicate document ids")
                for document_id, frequency in postings:
                    document = self._documents.get(document_id)
                    if document is None:
                        problems.append(f"Postings for '{term}' reference unknown '{document_id}'")
                    elif document.term_frequencies.get(term) != frequency:
                        problems.append(
                            f"Term frequency of '{term}' in '{document_id}' does not match postings"
                        )
                if expected_df.get(term, 0) != len(postings):
                    problems.append(
                        f"Document frequency of '{term}' is {len(postings)}, "
                        f"expected {expected_df.get(term, 0)}"
                    )

            for term in expected_df:
                if term not in self._postings:
                    problems.append(f"Term '{term}' has no postings list")

            total_length = sum(doc.length for doc in self._documents.values())
            if total_length != self._total_length:
                problems.append(
                    f"Total length is {self._total_length}, expected {total_length}"
                )

        if problems:
            self._mark_corrupted(problems[0])

        return problems

    def get_stats(self) -> Dict[str, Any]:
        """
        Get index statistics.

        Returns:
            Dictionary with index statistics
        """
        with self._lock.read_locked():
            stats = {
                "document_count": len(self._documents),
                "term_count": len(self._postings),
                "average_length": self._average_length,
                "embedded_documents": sum(
                    1 for doc in self._documents.values() if doc.embedding is not None
                ),
            }
        with self._state_lock:
            stats["read_only"] = self._read_only
            stats["corruption_reason"] = self._corruption_reason
        return stats

    # Internals (callers hold the write lock)

    def _find_posting(self, term: str, document_id: str) -> Optional[int]:
        postings = self._postings.get(term)
        if not postings:
            return None
        position = bisect.bisect_left(postings, (document_id,))
        if position < len(postings) and postings[position][0] == document_id:
            return position
        return None

    def _recompute_average(self) -> None:
        count = len(self._documents)
        self._average_length = self._total_length / count if count else 0.0

    def _ensure_writable(self) -> None:
        with self._state_lock:
            if self._read_only:
                raise IndexCorruption(
                    f"Index is read-only until repaired: {self._corruption_reason}"
                )

    def _mark_corrupted(self, reason: str) -> None:
        with self._state_lock:
            already = self._read_only
            self._read_only = True
            self._corruption_reason = reason
        if not already:
            logger.error(f"Index corruption detected, switching to read-only mode: {reason}")
