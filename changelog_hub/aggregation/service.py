"""
Unified changelog aggregation.

ChangelogService answers "what is the feed for page X" by consulting, in
order: the in-memory cache, the persisted snapshot (when it is still inside
the cache window), and finally a concurrent fan-out to every enabled source.

Per-source failures never escape: each one becomes a SourceFetchError next to
whatever releases the other sources produced. When a run produces nothing but
errors and an earlier snapshot has releases, the snapshot's releases are
served with the new errors (stale-while-error) and the snapshot is left as is.
"""

import asyncio
import functools
import time
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import httpx
import structlog

from changelog_hub.aggregation.cache import ChangelogCache
from changelog_hub.aggregation.config import AggregationConfig
from changelog_hub.config.settings import get_settings
from changelog_hub.ingestion.http_client import NetworkError
from changelog_hub.ingestion.schemas import (
    FetchResult,
    SourceConfig,
    SourceFetchError,
    UnifiedChangelog,
    utc_now,
)
from changelog_hub.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


class SourceConfigProvider(Protocol):
    """Supplies the enabled sources of a page."""

    async def list_enabled_sources(self, page_id: str) -> list[SourceConfig]: ...


class SnapshotStore(Protocol):
    """Durable last-good payload per page."""

    async def get_snapshot(self, page_id: str) -> UnifiedChangelog | None: ...

    async def save_snapshot(self, page_id: str, payload: UnifiedChangelog) -> None: ...


class ReleaseFetcher(Protocol):
    """Fetches one source; AdapterRegistry is the production implementation."""

    async def fetch_releases(self, source: SourceConfig) -> FetchResult: ...


class ChangelogService:
    """
    Aggregates configured sources into one cached feed per page.

    Page lifecycle: COLD -> FRESH on a successful aggregation, FRESH -> STALE
    once the cache window passes, STALE -> FRESH on the next request. A forced
    refresh skips both the cache and the persisted snapshot.

    Concurrent refreshes of one page share a single in-flight aggregation
    unless AggregationConfig.single_flight is off.

    Usage:
        async with RetryClient() as client:
            service = ChangelogService(
                sources=SourcesRepository(db),
                snapshots=SnapshotRepository(db),
                adapters=AdapterRegistry(client),
            )
            changelog = await service.get_unified_changelog("page_default")
    """

    def __init__(
        self,
        sources: SourceConfigProvider,
        snapshots: SnapshotStore,
        adapters: ReleaseFetcher,
        cache: ChangelogCache | None = None,
        config: AggregationConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sources = sources
        self._snapshots = snapshots
        self._adapters = adapters
        self._cache = cache or ChangelogCache()
        self._config = config or AggregationConfig()
        self._clock = clock
        self._default_page_id = get_settings().default_page_id
        self._in_flight: dict[str, asyncio.Task[UnifiedChangelog]] = {}
        self._metrics = get_metrics()

    @property
    def cache(self) -> ChangelogCache:
        return self._cache

    async def get_unified_changelog(
        self,
        page_id: str | None = None,
        force_refresh: bool = False,
    ) -> UnifiedChangelog:
        """
        Return the unified changelog for a page.

        Args:
            page_id: Page to aggregate (default page from settings if None)
            force_refresh: Skip the cache and the fresh-snapshot shortcut

        Returns:
            UnifiedChangelog; never raises because of a failing source
        """
        page_id = page_id or self._default_page_id

        if not force_refresh:
            cached = self._cache.get(page_id)
            if cached is not None:
                logger.debug("Changelog cache hit", page_id=page_id)
                self._metrics.record_cache_lookup("hit")
                return cached

        snapshot = await self._load_snapshot(page_id)

        if not force_refresh and snapshot is not None and self._is_fresh(snapshot):
            logger.debug(
                "Promoting persisted snapshot",
                page_id=page_id,
                fetched_at=snapshot.fetched_at.isoformat(),
            )
            self._metrics.record_cache_lookup("snapshot")
            self._cache.set(page_id, snapshot, self._config.cache_window_seconds)
            return snapshot

        self._metrics.record_cache_lookup("miss")
        return await self._aggregate_once(page_id, snapshot)

    def invalidate(self, page_id: str | None = None) -> None:
        """
        Drop cached payloads for one page, or for all pages.

        The persisted snapshot is untouched; it only changes on a successful
        re-aggregation.
        """
        self._cache.invalidate(page_id)
        logger.info("Changelog cache invalidated", page_id=page_id or "*")

    # ── Aggregation ─────────────────────────────────────────────

    async def _aggregate_once(
        self,
        page_id: str,
        snapshot: UnifiedChangelog | None,
    ) -> UnifiedChangelog:
        if not self._config.single_flight:
            return await self._aggregate(page_id, snapshot)

        task = self._in_flight.get(page_id)
        if task is None:
            task = asyncio.create_task(
                self._aggregate(page_id, snapshot),
                name=f"aggregate:{page_id}",
            )
            self._in_flight[page_id] = task
            task.add_done_callback(functools.partial(self._forget_in_flight, page_id))
        else:
            logger.debug("Joining in-flight aggregation", page_id=page_id)

        # A cancelled caller must not cancel the run other callers are awaiting
        return await asyncio.shield(task)

    def _forget_in_flight(self, page_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(page_id) is task:
            del self._in_flight[page_id]

    async def _aggregate(
        self,
        page_id: str,
        snapshot: UnifiedChangelog | None,
    ) -> UnifiedChangelog:
        start_time = time.perf_counter()
        sources = await self._sources.list_enabled_sources(page_id)

        logger.info("Aggregating changelog", page_id=page_id, sources=len(sources))

        results = await asyncio.gather(*(self._fetch_source(source) for source in sources))

        releases = []
        errors: list[SourceFetchError] = []
        for source, result in zip(sources, results):
            releases.extend(result.releases)
            if result.error:
                errors.append(
                    SourceFetchError(
                        source_id=source.id,
                        source_name=source.display_name,
                        repository=source.repository,
                        message=result.error,
                    )
                )

        # Stable: ties keep source order
        releases.sort(key=lambda release: release.published_at, reverse=True)

        payload = UnifiedChangelog(
            fetched_at=self._clock(),
            releases=releases,
            errors=errors,
        )

        if not releases and errors and snapshot is not None and snapshot.releases:
            logger.warning(
                "All sources failed, serving last good snapshot",
                page_id=page_id,
                errors=len(errors),
                snapshot_fetched_at=snapshot.fetched_at.isoformat(),
            )
            self._metrics.record_snapshot_fallback()
            payload = snapshot.model_copy(update={"errors": errors})
        else:
            await self._save_snapshot(page_id, payload)

        self._cache.set(page_id, payload, self._config.cache_window_seconds)

        latency = time.perf_counter() - start_time
        self._metrics.record_aggregation_latency(latency)
        logger.info(
            "Changelog aggregated",
            page_id=page_id,
            releases=len(payload.releases),
            errors=len(errors),
            latency_ms=round(latency * 1000, 1),
        )
        return payload

    async def _fetch_source(self, source: SourceConfig) -> FetchResult:
        try:
            return await self._adapters.fetch_releases(source)
        except NetworkError as e:
            message = str(e)
        except httpx.TransportError as e:
            message = f"Network error: {e}"
        except Exception as e:
            logger.error(
                "Unexpected source failure",
                source_id=source.id,
                provider=source.provider.value,
                error=str(e),
                exc_info=True,
            )
            message = f"Unexpected error: {e}"

        logger.warning("Source fetch failed", source_id=source.id, error=message)
        self._metrics.record_source_fetch(source.provider, "error")
        return FetchResult.failure(message)

    # ── Snapshot collaborator ───────────────────────────────────

    def _is_fresh(self, snapshot: UnifiedChangelog) -> bool:
        age = (self._clock() - snapshot.fetched_at).total_seconds()
        return 0 <= age < self._config.cache_window_seconds

    async def _load_snapshot(self, page_id: str) -> UnifiedChangelog | None:
        try:
            return await self._snapshots.get_snapshot(page_id)
        except Exception as e:
            logger.error("Failed to load snapshot", page_id=page_id, error=str(e), exc_info=True)
            return None

    async def _save_snapshot(self, page_id: str, payload: UnifiedChangelog) -> None:
        try:
            await self._snapshots.save_snapshot(page_id, payload)
        except Exception as e:
            logger.error("Failed to save snapshot", page_id=page_id, error=str(e), exc_info=True)
