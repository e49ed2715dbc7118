"""
Monitoring - Prometheus metrics and performance tracking

Part of the Hybrid Search Engine.

Metrics are created lazily by setup_prometheus_metrics(); until then every
recording helper is a no-op, so engines built in tests never touch the
Prometheus registry unless asked to.

License: MIT
"""

from typing import Dict, Any, Optional, List
import time
import logging
import threading
from collections import deque
from contextlib import contextmanager

logger = logging.getLogger(__name__)

# Prometheus metrics (initialized lazily)
_metrics_initialized = False
QUERY_DURATION = None
EMBEDDING_DURATION = None
CACHE_HITS = None
CACHE_MISSES = None
CACHE_EVICTIONS = None
DEGRADED_QUERIES = None
THRESHOLD_TIER = None
INDEXED_DOCUMENTS = None
ERROR_COUNT = None


def setup_prometheus_metrics(registry=None) -> bool:
    """
    Initialize Prometheus metrics for the search engine.

    Safe to call repeatedly; only the first call registers collectors.

    Args:
        registry: Prometheus CollectorRegistry (default global registry)

    Returns:
        True if metrics are available
    """
    global _metrics_initialized
    global QUERY_DURATION, EMBEDDING_DURATION, CACHE_HITS, CACHE_MISSES
    global CACHE_EVICTIONS, DEGRADED_QUERIES, THRESHOLD_TIER, INDEXED_DOCUMENTS
    global ERROR_COUNT

    if _metrics_initialized:
        return True

    try:
        from prometheus_client import REGISTRY, Counter, Gauge, Histogram

        registry = registry or REGISTRY

        QUERY_DURATION = Histogram(
            "hybrid_search_query_duration_seconds",
            "Search duration in seconds",
            ["outcome"],
            registry=registry,
        )

        EMBEDDING_DURATION = Histogram(
            "hybrid_search_embedding_duration_seconds",
            "Embedding provider call duration in seconds",
            registry=registry,
        )

        # Cache metrics
        CACHE_HITS = Counter(
            "hybrid_search_cache_hits_total", "Total cache hits", ["kind"], registry=registry
        )

        CACHE_MISSES = Counter(
            "hybrid_search_cache_misses_total", "Total cache misses", registry=registry
        )

        CACHE_EVICTIONS = Counter(
            "hybrid_search_cache_evictions_total",
            "Total cache evictions",
            ["reason"],
            registry=registry,
        )

        # Retrieval quality metrics
        DEGRADED_QUERIES = Counter(
            "hybrid_search_degraded_queries_total",
            "Queries answered with reduced signal",
            ["reason"],
            registry=registry,
        )

        THRESHOLD_TIER = Histogram(
            "hybrid_search_threshold_tier",
            "Threshold tier index that satisfied a query",
            buckets=(0, 1, 2, 3, 4, 5, 8),
            registry=registry,
        )

        INDEXED_DOCUMENTS = Gauge(
            "hybrid_search_indexed_documents", "Number of indexed documents", registry=registry
        )

        # Error metrics
        ERROR_COUNT = Counter(
            "hybrid_search_errors_total",
            "Total errors",
            ["error_type", "component"],
            registry=registry,
        )

        _metrics_initialized = True
        logger.info("Prometheus metrics initialized")
        return True

    except ImportError:
        logger.warning("prometheus_client not available. Metrics disabled.")
    except Exception as e:
        logger.error(f"Failed to initialize metrics: {str(e)}")

    return False


@contextmanager
def query_duration_tracker(
    outcome_holder: Optional[Dict[str, str]] = None,
    monitor: Optional["PerformanceMonitor"] = None,
):
    """
    Context manager to track search duration.

    Args:
        outcome_holder: Dict whose "outcome" key is read on exit for labeling
        monitor: Performance monitor that also receives the measurement

    Usage:
        labels = {"outcome": "found"}
        with query_duration_tracker(labels):
            # Run search, update labels["outcome"]
            pass
    """
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        outcome = (outcome_holder or {}).get("outcome", "unknown")
        if QUERY_DURATION:
            QUERY_DURATION.labels(outcome=outcome).observe(duration)
        if monitor is not None:
            monitor.record_measurement("query_duration", duration, {"outcome": outcome})


@contextmanager
def embedding_duration_tracker(monitor: Optional["PerformanceMonitor"] = None):
    """Context manager to track embedding provider duration."""
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        if EMBEDDING_DURATION:
            EMBEDDING_DURATION.observe(duration)
        if monitor is not None:
            monitor.record_measurement("embedding_duration", duration)


def record_cache_hit(kind: str = "semantic"):
    """Record a cache hit (exact, semantic or shared)."""
    if CACHE_HITS:
        CACHE_HITS.labels(kind=kind).inc()


def record_cache_miss():
    """Record a cache miss."""
    if CACHE_MISSES:
        CACHE_MISSES.inc()


def record_cache_eviction(reason: str, count: int = 1):
    """Record cache evictions (ttl or capacity)."""
    if CACHE_EVICTIONS and count:
        CACHE_EVICTIONS.labels(reason=reason).inc(count)


def record_degraded(reason: str):
    """Record a query answered with reduced signal."""
    if DEGRADED_QUERIES:
        DEGRADED_QUERIES.labels(reason=reason).inc()


def record_threshold_tier(tier_index: Optional[int]):
    """Record which threshold tier satisfied a query."""
    if THRESHOLD_TIER and tier_index is not None:
        THRESHOLD_TIER.observe(tier_index)


def set_indexed_documents(count: int):
    """Publish the current index size."""
    if INDEXED_DOCUMENTS:
        INDEXED_DOCUMENTS.set(count)


def record_error(error_type: str, component: str):
    """
    Record an error occurrence.

    Args:
        error_type: Type of error (e.g., 'timeout', 'corruption', 'provider')
        component: Component where error occurred (e.g., 'embedding', 'index')
    """
    if ERROR_COUNT:
        ERROR_COUNT.labels(error_type=error_type, component=component).inc()


class PerformanceMonitor:
    """
    Sliding-window latency tracking with threshold alerts.
    """

    def __init__(self, measurement_window: int = 300):
        """Initialize the performance monitor."""
        self.alert_thresholds = {
            "query_duration": 1.0,  # seconds
            "embedding_duration": 2.0,  # seconds
        }
        self.measurement_window = measurement_window
        self._lock = threading.Lock()
        self._measurements: deque = deque()

    def record_measurement(
        self, metric_name: str, value: float, labels: Optional[Dict[str, str]] = None
    ):
        """
        Record a performance measurement.

        Args:
            metric_name: Name of the metric
            value: Measured value
            labels: Optional labels for the measurement
        """
        now = time.time()
        measurement = {
            "timestamp": now,
            "metric": metric_name,
            "value": value,
            "labels": labels or {},
        }

        cutoff_time = now - self.measurement_window
        with self._lock:
            self._measurements.append(measurement)
            while self._measurements and self._measurements[0]["timestamp"] <= cutoff_time:
                self._measurements.popleft()

        self._check_alerts(metric_name, value)

    def _check_alerts(self, metric_name: str, value: float):
        threshold = self.alert_thresholds.get(metric_name)

        if threshold is None:
            return

        if value > threshold:
            logger.warning(
                f"Performance alert: {metric_name} = {value:.3f} exceeds threshold {threshold:.3f}"
            )

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get performance summary for the current measurement window.

        Returns:
            Dictionary with performance statistics
        """
        cutoff_time = time.time() - self.measurement_window
        with self._lock:
            measurements = [m for m in self._measurements if m["timestamp"] > cutoff_time]
        if not measurements:
            return {"error": "No measurements available"}

        # Group measurements by metric
        metrics: Dict[str, List[float]] = {}
        for measurement in measurements:
            metrics.setdefault(measurement["metric"], []).append(measurement["value"])

        summary: Dict[str, Any] = {}
        for metric_name, values in metrics.items():
            summary[metric_name] = {
                "count": len(values),
                "avg": sum(values) / len(values),
                "min": min(values),
                "max": max(values),
                "p95": self._percentile(values, 0.95),
                "p99": self._percentile(values, 0.99),
            }

        summary["measurement_window_seconds"] = self.measurement_window
        summary["total_measurements"] = len(measurements)

        return summary

    def _percentile(self, values: list, percentile: float) -> float:
        if not values:
            return 0.0

        sorted_values = sorted(values)
        index = int(percentile * len(sorted_values))
        index = min(index, len(sorted_values) - 1)

        return sorted_values[index]

    def set_alert_threshold(self, metric_name: str, threshold: float):
        """
        Set alert threshold for a metric.

        Args:
            metric_name: Name of the metric
            threshold: Alert threshold value
        """
        self.alert_thresholds[metric_name] = threshold
        logger.info(f"Alert threshold set: {metric_name} = {threshold}")

