"""
Prometheus metrics for monitoring changelog aggregation.

Defines and exposes metrics for:
- Per-source fetch outcomes (releases, commit fallback, error)
- HTTP retries and rate-limit waits
- Cache lookups (hit, snapshot promotion, miss)
- Stale-while-error fallbacks
- Aggregation latency

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    start_http_server,
)

from changelog_hub.config.settings import get_settings
from changelog_hub.ingestion.schemas import Provider

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the aggregation pipeline.

    Usage:
        metrics = get_metrics()
        metrics.record_source_fetch(Provider.GITHUB, "release")
        metrics.record_cache_lookup("hit")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.source_fetches = Counter(
            "changelog_hub_source_fetches_total",
            "Per-source fetch outcomes",
            ["provider", "outcome"],  # outcome: release, commit, empty, error
        )

        self.http_retries = Counter(
            "changelog_hub_http_retries_total",
            "HTTP retries performed by the retry client",
            ["reason"],  # reason: network, rate_limit, server_error
        )

        self.cache_lookups = Counter(
            "changelog_hub_cache_lookups_total",
            "Changelog cache lookups",
            ["result"],  # result: hit, snapshot, miss
        )

        self.snapshot_fallbacks = Counter(
            "changelog_hub_snapshot_fallbacks_total",
            "Aggregations served from the last good snapshot after total failure",
        )

        self.aggregation_latency = Histogram(
            "changelog_hub_aggregation_latency_seconds",
            "Time to fan out to all sources of a page and merge the results",
            buckets=LATENCY_BUCKETS,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_source_fetch(self, provider: Provider | str, outcome: str) -> None:
        """
        Record the outcome of one source fetch.

        Args:
            provider: Provider of the source
            outcome: release, commit, empty or error
        """
        provider_str = provider.value if isinstance(provider, Provider) else provider
        self.source_fetches.labels(provider=provider_str, outcome=outcome).inc()

    def record_retry(self, reason: str) -> None:
        """Record one retry attempt by the HTTP layer."""
        self.http_retries.labels(reason=reason).inc()

    def record_cache_lookup(self, result: str) -> None:
        """Record a cache lookup result (hit, snapshot, miss)."""
        self.cache_lookups.labels(result=result).inc()

    def record_snapshot_fallback(self) -> None:
        """Record a stale-while-error response."""
        self.snapshot_fallbacks.inc()

    def record_aggregation_latency(self, latency: float) -> None:
        """Record end-to-end aggregation latency in seconds."""
        self.aggregation_latency.observe(latency)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
