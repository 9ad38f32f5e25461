"""Observability layer - logging and metrics."""

from changelog_hub.observability.logging import setup_logging
from changelog_hub.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
