"""Prometheus metrics for the query layer."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all query layer metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Query metrics
        self.queries_total = Counter(
            "idb_queries_total",
            "Total number of queries executed",
            ["operation", "status"],  # status: success, error
            registry=self._registry,
        )

        self.query_latency_seconds = Histogram(
            "idb_query_latency_seconds",
            "Query latency in seconds",
            ["operation"],  # select, insert, update, delete, count, last
            buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
            registry=self._registry,
        )

        self.access_paths_total = Counter(
            "idb_access_paths_total",
            "Access paths chosen for select queries",
            ["path"],  # primary_key, index_point, index_range, full_scan
            registry=self._registry,
        )

        self.records_returned_total = Counter(
            "idb_records_returned_total",
            "Total records returned by select queries",
            registry=self._registry,
        )

        # Transaction metrics
        self.transactions_total = Counter(
            "idb_transactions_total",
            "Total number of transactions",
            ["mode", "status"],  # status: commit, abort
            registry=self._registry,
        )

        self.transactions_active = Gauge(
            "idb_transactions_active",
            "Number of open transactions",
            registry=self._registry,
        )

        # Cursor metrics
        self.cursors_opened_total = Counter(
            "idb_cursors_opened_total",
            "Total cursors opened",
            ["source"],  # store, index
            registry=self._registry,
        )

        self.cursors_active = Gauge(
            "idb_cursors_active",
            "Number of open cursors",
            registry=self._registry,
        )

        # Server info
        self.info = Info(
            "idb_query",
            "Query layer information",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """The collector registry the metrics are registered with."""
        return self._registry


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from idb_query import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
