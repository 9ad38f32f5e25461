"""
In-memory changelog cache.

Process-scoped, keyed by page id. Created with the ChangelogService and
cleared only through invalidate(); durability across restarts is the
snapshot store's job, not this cache's.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from changelog_hub.ingestion.schemas import UnifiedChangelog


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload and the monotonic time it stops being fresh."""

    expires_at: float
    payload: UnifiedChangelog


class ChangelogCache:
    """TTL map of page id to UnifiedChangelog.

    Entries are returned as the same object that was stored, so a hit is
    identical to the payload served on the miss that populated it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, page_id: str) -> UnifiedChangelog | None:
        """Return the cached payload if present and unexpired."""
        entry = self._entries.get(page_id)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            return None
        return entry.payload

    def set(self, page_id: str, payload: UnifiedChangelog, ttl: float) -> None:
        self._entries[page_id] = CacheEntry(
            expires_at=self._clock() + ttl,
            payload=payload,
        )

    def invalidate(self, page_id: str | None = None) -> None:
        """Drop one page's entry, or every entry when page_id is None."""
        if page_id is None:
            self._entries.clear()
        else:
            self._entries.pop(page_id, None)

    def __contains__(self, page_id: str) -> bool:
        return self.get(page_id) is not None

    def __len__(self) -> int:
        return len(self._entries)
