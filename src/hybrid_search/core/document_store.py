"""
Document Store - Persistent storage for indexed document text and metadata

Part of the Hybrid Search Engine.

The index only keeps token statistics. Raw text and caller metadata live in
an injected store so that snippets can be rendered for results. Store calls
may block, so the engine never invokes them while holding the index lock.

License: MIT
"""

from typing import Any, Dict, Optional
import logging
import threading
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class DocumentStoreBase(ABC):
    """Abstract base class for document stores."""

    @abstractmethod
    def put(self, document_id: str, text: str, metadata: Dict[str, Any]) -> None:
        """Store a document's text and metadata."""
        pass

    @abstractmethod
    def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Return ``{"text": ..., "metadata": ...}`` or None if unknown."""
        pass

    @abstractmethod
    def delete(self, document_id: str) -> None:
        """Delete a document if present."""
        pass

    @abstractmethod
    def ping(self) -> bool:
        """Check if the document store is healthy."""
        pass


class InMemoryDocumentStore(DocumentStoreBase):
    """Dictionary-backed store, the default for a single-process engine."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, document_id: str, text: str, metadata: Dict[str, Any]) -> None:
        with self._lock:
            self._records[document_id] = {"text": text, "metadata": dict(metadata)}

    def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(document_id)
            if record is None:
                return None
            return {"text": record["text"], "metadata": dict(record["metadata"])}

    def delete(self, document_id: str) -> None:
        with self._lock:
            self._records.pop(document_id, None)

    def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
