"""Persisted last-good changelog snapshots."""

from changelog_hub.snapshots.repository import SnapshotRepository, parse_snapshot

__all__ = ["SnapshotRepository", "parse_snapshot"]
