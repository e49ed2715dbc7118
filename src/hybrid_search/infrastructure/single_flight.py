"""
Single-Flight - Collapse concurrent identical searches into one computation

Part of the Hybrid Search Engine.

The first caller for a key becomes the leader and computes; callers that
arrive while it runs subscribe to the leader's Future. Followers also join a
leader whose query embedding is highly similar to theirs, provided both were
issued with the same options.

License: MIT
"""

from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
import logging
import threading

import numpy as np

from ..exceptions import EngineClosed
from .cache import unit_vector

logger = logging.getLogger(__name__)


@dataclass
class _Flight:
    key: str
    group: Optional[str]
    embedding: Optional[np.ndarray]
    future: Future


class SingleFlight:
    """
    Registry of in-flight computations.

    Examples:
        >>> flights = SingleFlight()
        >>> value, shared = flights.do("q", lambda: 42)
        >>> value, shared
        (42, False)
    """

    def __init__(self, similarity_threshold: float = 0.85):
        self.similarity_threshold = similarity_threshold
        self._lock = threading.Lock()
        self._flights: Dict[str, _Flight] = {}
        self._closed = False

    def join(self, key: str) -> Optional[Future]:
        """Return the Future of an in-flight computation for ``key``, if any."""
        with self._lock:
            if self._closed:
                raise EngineClosed()
            flight = self._flights.get(key)
            return flight.future if flight else None

    def begin(
        self, key: str, group: Optional[str] = None, embedding: Any = None
    ) -> Tuple[Future, bool]:
        """
        Register interest in a computation.

        Args:
            key: Exact key of the computation
            group: Only flights in the same group are joined by similarity
            embedding: Query vector used for similarity joining

        Returns:
            Tuple of (future, is_leader). A leader must call finish().
        """
        query = unit_vector(embedding) if embedding is not None else None

        with self._lock:
            if self._closed:
                raise EngineClosed()

            flight = self._flights.get(key)
            if flight is None and query is not None:
                flight = self._similar_flight(query, group)
            if flight is not None:
                logger.debug(f"Joining in-flight search {flight.key}")
                return flight.future, False

            future: Future = Future()
            self._flights[key] = _Flight(key, group, query, future)
            return future, True

    def _similar_flight(self, query: np.ndarray, group: Optional[str]) -> Optional[_Flight]:
        best = None
        best_score = self.similarity_threshold
        for flight in self._flights.values():
            if flight.embedding is None or flight.group != group:
                continue
            if flight.embedding.shape != query.shape:
                continue
            score = float(np.dot(flight.embedding, query))
            if score >= best_score and (best is None or score > best_score):
                best = flight
                best_score = score
        return best

    def finish(
        self, key: str, result: Any = None, error: Optional[BaseException] = None
    ) -> None:
        """
        Publish the leader's outcome and retire the flight.

        Args:
            key: Key passed to begin()
            result: Computed value
            error: Exception to deliver to followers instead of a value
        """
        with self._lock:
            flight = self._flights.get(key)

        if flight is not None and not flight.future.done():
            try:
                if error is not None:
                    flight.future.set_exception(error)
                else:
                    flight.future.set_result(result)
            except InvalidStateError:
                # close() failed the flight first
                logger.debug(f"Flight {key} was already resolved")

        with self._lock:
            if self._flights.get(key) is flight:
                self._flights.pop(key, None)

    def do(
        self,
        key: str,
        fn: Callable[[], Any],
        group: Optional[str] = None,
        embedding: Any = None,
    ) -> Tuple[Any, bool]:
        """
        Run ``fn`` once for concurrent callers of the same key.

        Returns:
            Tuple of (value, shared) where shared is True for followers

        Raises:
            Whatever ``fn`` raised, for the leader and every follower
        """
        future, leader = self.begin(key, group, embedding)
        if not leader:
            return future.result(), True

        try:
            value = fn()
        except BaseException as e:
            self.finish(key, error=e)
            raise
        self.finish(key, result=value)
        return value, False

    def close(self) -> int:
        """
        Reject new flights and fail every pending one with EngineClosed.

        Returns:
            Number of pending flights failed
        """
        with self._lock:
            self._closed = True
            flights = list(self._flights.values())
            self._flights.clear()

        failed = 0
        for flight in flights:
            if flight.future.done():
                continue
            try:
                flight.future.set_exception(EngineClosed())
                failed += 1
            except InvalidStateError:
                logger.debug(f"Flight {flight.key} resolved while closing")

        if failed:
            logger.info(f"Failed {failed} pending searches on close")
        return failed

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._flights)
