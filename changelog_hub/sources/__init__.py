"""Source configuration storage."""

from changelog_hub.sources.repository import (
    SourcesRepository,
    normalize_provider,
    source_from_dict,
)

__all__ = ["SourcesRepository", "normalize_provider", "source_from_dict"]
