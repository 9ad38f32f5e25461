"""Storage layer - PostgreSQL connection pool."""

from changelog_hub.storage.database import Database

__all__ = ["Database"]
