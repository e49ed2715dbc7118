"""
Semantic Result Cache - Similarity-keyed caching of ranked result sets

Part of the Hybrid Search Engine.

Lookups go through two tiers:
1. Exact: a fingerprint of the normalized query text and its options
2. Semantic: the stored entry whose key embedding is most similar to the
   query embedding, if that similarity reaches the configured threshold

Entries live in an immutable, versioned snapshot. Lookups read the current
snapshot without locking; insertions, evictions and access-time refreshes
build a new snapshot under a lock and publish it in one assignment.

License: MIT
"""

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Sequence
import logging
import threading
import time

import numpy as np

from ..core.models import CacheEntry, ScoredResult
from ..utils.helpers import create_unique_id, generate_hash
from .monitoring import record_cache_eviction, record_cache_hit, record_cache_miss

logger = logging.getLogger(__name__)


def normalize_query(query: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join(query.lower().split())


def query_fingerprint(query: str, options_key: Optional[str] = None) -> str:
    """
    Generate the exact-match key for a query.

    Args:
        query: Raw query text
        options_key: Fingerprint of the options that affect ranking

    Returns:
        16 hex character fingerprint
    """
    key_parts = [normalize_query(query)]
    if options_key:
        key_parts.append(options_key)
    return generate_hash("|".join(key_parts))[:16]


def unit_vector(vector: Any) -> Optional[np.ndarray]:
    """Return ``vector`` scaled to unit length, or None for a zero vector."""
    array = np.asarray(vector, dtype=np.float64).ravel()
    norm = np.linalg.norm(array)
    if norm == 0 or not np.isfinite(norm):
        return None
    unit = array / norm
    unit.setflags(write=False)
    return unit


@dataclass(frozen=True)
class CacheHit:
    """A successful lookup: the entry plus how it was matched."""

    entry: CacheEntry
    similarity: float
    cache_type: str  # "exact" or "semantic"


class _Snapshot(NamedTuple):
    version: int
    entries: Mapping[str, CacheEntry]
    fingerprints: Mapping[str, str]


class SemanticResultCache:
    """
    In-process cache of ranked results keyed by query embedding.

    Entries expire after ``ttl_seconds``. When the cache is full, expired
    entries are purged first and then the least-recently-accessed entry is
    evicted, so the cache never holds more than ``max_entries``.
    """

    def __init__(
        self,
        similarity_threshold: float = 0.85,
        ttl_seconds: float = 7200,
        max_entries: int = 1000,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            similarity_threshold: Minimum cosine similarity for a semantic hit
            ttl_seconds: Time-to-live of each entry
            max_entries: Capacity
            enabled: When False every lookup misses and stores are ignored
            clock: Time source, injectable for tests
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.similarity_threshold = similarity_threshold
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock

        self._lock = threading.Lock()
        self._snapshot = _Snapshot(0, MappingProxyType({}), MappingProxyType({}))
        # Bumped by clear(); puts computed before a clear are rejected
        self._generation = 0

        self._stats_lock = threading.Lock()
        self._hits = {"exact": 0, "semantic": 0}
        self._misses = 0
        self._evictions = {"ttl": 0, "capacity": 0}

    # Lookups

    def get(
        self, query_embedding: Any, options_key: Optional[str] = None
    ) -> Optional[CacheEntry]:
        """
        Find the most similar live entry.

        Args:
            query_embedding: Query vector
            options_key: Only entries stored with the same options match

        Returns:
            The matching entry or None on a miss
        """
        hit = self.lookup(query_embedding=query_embedding, options_key=options_key)
        return hit.entry if hit else None

    def lookup(
        self,
        query_embedding: Any = None,
        fingerprint: Optional[str] = None,
        options_key: Optional[str] = None,
        record_miss: bool = True,
    ) -> Optional[CacheHit]:
        """
        Look up a query through the exact tier, then the semantic tier.

        Args:
            query_embedding: Query vector (semantic tier skipped when None)
            fingerprint: Exact-match key (exact tier skipped when None)
            options_key: Options fingerprint entries must share
            record_miss: Count a miss in the statistics (False for a
                partial lookup that will be followed by another)

        Returns:
            CacheHit or None on a miss
        """
        if not self.enabled:
            return None

        snapshot = self._snapshot
        now = self._clock()

        if fingerprint is not None:
            entry_id = snapshot.fingerprints.get(fingerprint)
            entry = snapshot.entries.get(entry_id) if entry_id else None
            if entry is not None:
                if entry.is_expired(now):
                    self._discard(entry.entry_id, reason="ttl")
                else:
                    return self._hit(entry, 1.0, "exact", now)

        if query_embedding is not None:
            match = self._best_match(snapshot, query_embedding, options_key, now)
            if match is not None:
                entry, similarity = match
                return self._hit(entry, similarity, "semantic", now)

        if record_miss:
            with self._stats_lock:
                self._misses += 1
            record_cache_miss()
            logger.debug("Cache miss")
        return None

    def _best_match(self, snapshot: _Snapshot, query_embedding: Any, options_key, now):
        query = unit_vector(query_embedding)
        if query is None:
            return None

        best_entry = None
        best_score = self.similarity_threshold
        for entry in snapshot.entries.values():
            if entry.key_embedding is None or entry.is_expired(now):
                continue
            if entry.options_key != options_key:
                continue
            if entry.key_embedding.shape != query.shape:
                continue
            score = float(np.dot(entry.key_embedding, query))
            if score >= best_score and (best_entry is None or score > best_score):
                best_entry = entry
                best_score = score

        if best_entry is None:
            return None
        return best_entry, min(best_score, 1.0)

    def _hit(self, entry: CacheEntry, similarity: float, cache_type: str, now: float) -> CacheHit:
        entry = self._touch(entry, now)
        with self._stats_lock:
            self._hits[cache_type] += 1
        record_cache_hit(cache_type)
        logger.debug(
            f"Cache {cache_type} hit for entry {entry.entry_id} (similarity={similarity:.3f})"
        )
        return CacheHit(entry=entry, similarity=similarity, cache_type=cache_type)

    def _touch(self, entry: CacheEntry, now: float) -> CacheEntry:
        """Replace ``entry`` with a copy carrying a fresh access time."""
        refreshed = replace(entry, last_access=now)
        with self._lock:
            current = self._snapshot
            if current.entries.get(entry.entry_id) is not entry:
                # Already replaced or evicted by another thread
                return refreshed
            entries = dict(current.entries)
            entries[entry.entry_id] = refreshed
            self._publish(entries, dict(current.fingerprints))
        return refreshed

    # Mutations

    def put(
        self,
        query_embedding: Any,
        results: Sequence[ScoredResult],
        fingerprint: Optional[str] = None,
        options_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        expected_generation: Optional[int] = None,
    ) -> Optional[CacheEntry]:
        """
        Store a result set.

        Args:
            query_embedding: Key vector (None stores an exact-tier-only entry)
            results: Ranked results to cache
            fingerprint: Exact-match key
            options_key: Options fingerprint
            metadata: Extra envelope data to return with hits
            expected_generation: Generation read before the results were
                computed; the put is dropped if the cache was cleared since

        Returns:
            The stored entry, or None when nothing was stored
        """
        if not self.enabled:
            return None

        key_embedding = unit_vector(query_embedding) if query_embedding is not None else None
        if key_embedding is None and fingerprint is None:
            logger.debug("Not caching result without a usable key")
            return None

        now = self._clock()
        entry = CacheEntry(
            entry_id=create_unique_id("cache"),
            key_embedding=key_embedding,
            results=tuple(results),
            inserted_at=now,
            expires_at=now + self.ttl_seconds,
            last_access=now,
            fingerprint=fingerprint,
            options_key=options_key,
            metadata=MappingProxyType(dict(metadata or {})),
        )

        expired_count = 0
        evicted_id = None
        with self._lock:
            if expected_generation is not None and expected_generation != self._generation:
                logger.debug(
                    f"Not caching results computed at generation {expected_generation} "
                    f"(current {self._generation})"
                )
                return None

            current = self._snapshot
            entries = dict(current.entries)
            fingerprints = dict(current.fingerprints)

            if fingerprint is not None and fingerprint in fingerprints:
                entries.pop(fingerprints.pop(fingerprint), None)

            if len(entries) >= self.max_entries:
                expired_count = self._drop_expired(entries, fingerprints, now)

            if len(entries) >= self.max_entries:
                evicted_id = min(
                    entries.values(), key=lambda e: (e.last_access, e.inserted_at)
                ).entry_id
                self._drop(entries, fingerprints, evicted_id)

            entries[entry.entry_id] = entry
            if fingerprint is not None:
                fingerprints[fingerprint] = entry.entry_id
            self._publish(entries, fingerprints)

        self._count_evictions("ttl", expired_count)
        if evicted_id is not None:
            self._count_evictions("capacity", 1)
            logger.debug(f"Evicted least recently used cache entry {evicted_id}")

        logger.debug(f"Cached {len(entry.results)} results as entry {entry.entry_id}")
        return entry

    def purge_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            entries = dict(self._snapshot.entries)
            fingerprints = dict(self._snapshot.fingerprints)
            removed = self._drop_expired(entries, fingerprints, now)
            if removed:
                self._publish(entries, fingerprints)

        self._count_evictions("ttl", removed)
        if removed:
            logger.debug(f"Purged {removed} expired cache entries")
        return removed

    def clear(self) -> int:
        """
        Invalidate all cached entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = len(self._snapshot.entries)
            self._generation += 1
            self._publish({}, {})

        if removed:
            logger.info(f"Invalidated {removed} cache entries")
        return removed

    def _discard(self, entry_id: str, reason: str) -> None:
        with self._lock:
            if entry_id not in self._snapshot.entries:
                return
            entries = dict(self._snapshot.entries)
            fingerprints = dict(self._snapshot.fingerprints)
            self._drop(entries, fingerprints, entry_id)
            self._publish(entries, fingerprints)
        self._count_evictions(reason, 1)

    # Helpers (callers hold self._lock)

    def _publish(self, entries: Dict[str, CacheEntry], fingerprints: Dict[str, str]) -> None:
        self._snapshot = _Snapshot(
            self._snapshot.version + 1,
            MappingProxyType(entries),
            MappingProxyType(fingerprints),
        )

    @staticmethod
    def _drop(entries: Dict[str, CacheEntry], fingerprints: Dict[str, str], entry_id: str) -> None:
        entry = entries.pop(entry_id)
        if entry.fingerprint is not None and fingerprints.get(entry.fingerprint) == entry_id:
            del fingerprints[entry.fingerprint]

    def _drop_expired(self, entries, fingerprints, now: float) -> int:
        expired = [entry_id for entry_id, entry in entries.items() if entry.is_expired(now)]
        for entry_id in expired:
            self._drop(entries, fingerprints, entry_id)
        return len(expired)

    def _count_evictions(self, reason: str, count: int) -> None:
        if not count:
            return
        with self._stats_lock:
            self._evictions[reason] += count
        record_cache_eviction(reason, count)

    # Introspection

    @property
    def version(self) -> int:
        """Snapshot version, bumped on every published mutation."""
        return self._snapshot.version

    @property
    def generation(self) -> int:
        """Invalidation generation, bumped on every clear()."""
        with self._lock:
            return self._generation

    def __len__(self) -> int:
        return len(self._snapshot.entries)

    def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get cache performance statistics.

        Returns:
            Dictionary with cache statistics
        """
        snapshot = self._snapshot
        with self._stats_lock:
            hits = dict(self._hits)
            misses = self._misses
            evictions = dict(self._evictions)

        total_hits = sum(hits.values())
        lookups = total_hits + misses
        return {
            'enabled': self.enabled,
            'total_entries': len(snapshot.entries),
            'max_entries': self.max_entries,
            'cache_utilization': (len(snapshot.entries) / self.max_entries) * 100,
            'hits': hits,
            'misses': misses,
            'hit_rate': total_hits / lookups if lookups else 0.0,
            'evictions': evictions,
            'similarity_threshold': self.similarity_threshold,
            'ttl_seconds': self.ttl_seconds,
            'version': snapshot.version,
        }
