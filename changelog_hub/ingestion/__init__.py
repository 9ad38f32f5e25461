"""Data ingestion module - provider adapters, retry client, and schemas."""

from changelog_hub.ingestion.schemas import (
    AggregatedRelease,
    FetchResult,
    Provider,
    ReleaseKind,
    SourceConfig,
    SourceFetchError,
    UnifiedChangelog,
)

__all__ = [
    "Provider",
    "ReleaseKind",
    "SourceConfig",
    "AggregatedRelease",
    "SourceFetchError",
    "UnifiedChangelog",
    "FetchResult",
]
