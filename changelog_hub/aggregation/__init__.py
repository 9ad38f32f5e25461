"""Changelog aggregation - fan-out, merge, cache and snapshot fallback."""

from changelog_hub.aggregation.cache import CacheEntry, ChangelogCache
from changelog_hub.aggregation.config import AggregationConfig
from changelog_hub.aggregation.service import (
    ChangelogService,
    ReleaseFetcher,
    SnapshotStore,
    SourceConfigProvider,
)

__all__ = [
    "AggregationConfig",
    "CacheEntry",
    "ChangelogCache",
    "ChangelogService",
    "ReleaseFetcher",
    "SnapshotStore",
    "SourceConfigProvider",
]
