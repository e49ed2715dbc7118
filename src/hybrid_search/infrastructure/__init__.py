"""
Engine Infrastructure - Caching, concurrency and operational tools

This module provides:
- The semantic result cache and single-flight coordination
- Reader-writer locking and cooperative cancellation
- Prometheus metrics and structured logging configuration

License: MIT
"""

from .concurrency import ReadWriteLock, CancellationToken
from .cache import SemanticResultCache, CacheHit, query_fingerprint
from .single_flight import SingleFlight
from .monitoring import (
    setup_prometheus_metrics,
    query_duration_tracker,
    embedding_duration_tracker,
    PerformanceMonitor,
)
from .logging_config import (
    setup_logging,
    setup_production_logging,
    setup_development_logging,
    JSONFormatter,
)

__all__ = [
    "ReadWriteLock",
    "CancellationToken",
    "SemanticResultCache",
    "CacheHit",
    "query_fingerprint",
    "SingleFlight",
    "setup_prometheus_metrics",
    "query_duration_tracker",
    "embedding_duration_tracker",
    "PerformanceMonitor",
    "setup_logging",
    "setup_production_logging",
    "setup_development_logging",
    "JSONFormatter",
]
