"""Database repository for configured repository sources."""

import logging
import uuid
from collections.abc import Callable
from typing import Any

from changelog_hub.config.settings import get_settings
from changelog_hub.ingestion.schemas import Provider, SourceConfig
from changelog_hub.storage.database import Database

logger = logging.getLogger(__name__)

MIN_RELEASES_LIMIT = 1
MAX_RELEASES_LIMIT = 25

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS repo_sources (
    id              TEXT PRIMARY KEY,
    page_id         TEXT NOT NULL,
    display_name    TEXT NOT NULL,
    provider        TEXT NOT NULL DEFAULT 'github',
    owner           TEXT NOT NULL,
    repo            TEXT NOT NULL,
    base_url        TEXT,
    is_private      BOOLEAN NOT NULL DEFAULT FALSE,
    token_encrypted TEXT,
    enabled         BOOLEAN NOT NULL DEFAULT TRUE,
    releases_limit  INTEGER NOT NULL DEFAULT 8,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_repo_sources_page_enabled
    ON repo_sources(page_id, enabled);
"""

_SELECT_COLUMNS = """
    id, page_id, display_name, provider, owner, repo, base_url,
    is_private, token_encrypted, enabled, releases_limit
"""

_UPSERT_SQL = """
INSERT INTO repo_sources (
    id, page_id, display_name, provider, owner, repo, base_url,
    is_private, token_encrypted, enabled, releases_limit
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
ON CONFLICT (id) DO UPDATE SET
    page_id = EXCLUDED.page_id,
    display_name = EXCLUDED.display_name,
    provider = EXCLUDED.provider,
    owner = EXCLUDED.owner,
    repo = EXCLUDED.repo,
    base_url = EXCLUDED.base_url,
    is_private = EXCLUDED.is_private,
    token_encrypted = EXCLUDED.token_encrypted,
    enabled = EXCLUDED.enabled,
    releases_limit = EXCLUDED.releases_limit,
    updated_at = NOW()
"""

_BULK_UPSERT_SQL = """
INSERT INTO repo_sources (
    id, page_id, display_name, provider, owner, repo, base_url,
    is_private, token_encrypted, enabled, releases_limit
)
SELECT * FROM unnest(
    $1::text[], $2::text[], $3::text[], $4::text[], $5::text[], $6::text[],
    $7::text[], $8::boolean[], $9::text[], $10::boolean[], $11::integer[]
)
ON CONFLICT (id) DO UPDATE SET
    page_id = EXCLUDED.page_id,
    display_name = EXCLUDED.display_name,
    provider = EXCLUDED.provider,
    owner = EXCLUDED.owner,
    repo = EXCLUDED.repo,
    base_url = EXCLUDED.base_url,
    is_private = EXCLUDED.is_private,
    token_encrypted = EXCLUDED.token_encrypted,
    enabled = EXCLUDED.enabled,
    releases_limit = EXCLUDED.releases_limit,
    updated_at = NOW()
"""

TokenDecoder = Callable[[str], str | None]


def normalize_provider(value: str | None) -> Provider:
    """Map a stored provider string to Provider; unknown values mean GitHub."""
    if not value:
        return Provider.GITHUB
    try:
        return Provider(value.strip().lower())
    except ValueError:
        return Provider.GITHUB


def clamp_releases_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError, OverflowError):
        return 8
    return min(MAX_RELEASES_LIMIT, max(MIN_RELEASES_LIMIT, limit))


def source_from_dict(entry: dict[str, Any]) -> SourceConfig:
    """
    Build a SourceConfig from a loosely-typed mapping (seed files, admin input).

    Accepts snake_case or camelCase keys. A missing id is generated, a missing
    page id means the default page, and provider and releases limit are
    normalized the same way stored rows are.
    """
    data = dict(entry)
    data["id"] = data.get("id") or f"src_{uuid.uuid4().hex[:12]}"
    page_id = data.pop("pageId", None) or data.get("page_id")
    data["page_id"] = page_id or get_settings().default_page_id
    data["provider"] = normalize_provider(data.get("provider"))
    limit = data.pop("releasesLimit", None)
    if limit is None:
        limit = data.get("releases_limit", 8)
    data["releases_limit"] = clamp_releases_limit(limit)
    return SourceConfig.model_validate(data)


class SourcesRepository:
    """CRUD operations for the repo_sources table.

    Tokens are stored in the token_encrypted column as-is; an optional
    token_decoder turns the stored value back into a usable token when
    sources are listed for fetching.
    """

    def __init__(self, database: Database, token_decoder: TokenDecoder | None = None) -> None:
        self._db = database
        self._token_decoder = token_decoder

    async def create_table(self) -> None:
        """Create the repo_sources table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("repo_sources table ensured")

    async def list_enabled_sources(self, page_id: str) -> list[SourceConfig]:
        """Enabled sources of a page, with decoded tokens, ordered by display name."""
        rows = await self._db.fetch(
            f"SELECT {_SELECT_COLUMNS} FROM repo_sources "
            "WHERE enabled = TRUE AND page_id = $1 ORDER BY display_name ASC",
            page_id,
        )
        return [self._record_to_source(row) for row in rows]

    async def list_sources(self, page_id: str | None = None) -> list[SourceConfig]:
        """All sources (enabled or not), optionally limited to one page."""
        if page_id and page_id.strip():
            rows = await self._db.fetch(
                f"SELECT {_SELECT_COLUMNS} FROM repo_sources "
                "WHERE page_id = $1 ORDER BY display_name ASC",
                page_id.strip(),
            )
        else:
            rows = await self._db.fetch(
                f"SELECT {_SELECT_COLUMNS} FROM repo_sources ORDER BY display_name ASC"
            )
        return [self._record_to_source(row) for row in rows]

    async def upsert(self, source: SourceConfig) -> None:
        """Insert or update a single source."""
        await self._db.execute(_UPSERT_SQL, *self._source_to_args(source))

    async def bulk_upsert(self, sources: list[SourceConfig]) -> int:
        """Insert or update multiple sources in one statement.

        Returns the number of sources processed.
        """
        if not sources:
            return 0

        rows = [self._source_to_args(source) for source in sources]
        columns = [list(column) for column in zip(*rows)]
        await self._db.execute(_BULK_UPSERT_SQL, *columns)
        logger.info("Bulk upserted %d sources", len(sources))
        return len(sources)

    @staticmethod
    def _source_to_args(source: SourceConfig) -> tuple:
        return (
            source.id,
            source.page_id,
            source.display_name,
            source.provider.value,
            source.owner,
            source.repo,
            source.base_url,
            source.is_private,
            source.token,
            source.enabled,
            source.releases_limit,
        )

    def _decode_token(self, source_id: str, stored: str | None) -> str | None:
        if not stored:
            return None
        if self._token_decoder is None:
            return stored
        try:
            return self._token_decoder(stored)
        except ValueError as e:
            logger.warning(f"Could not decode token for source {source_id}: {e}")
            return None

    def _record_to_source(self, record) -> SourceConfig:
        """Convert an asyncpg Record to a SourceConfig."""
        return SourceConfig(
            id=record["id"],
            page_id=record["page_id"],
            display_name=record["display_name"],
            provider=normalize_provider(record["provider"]),
            owner=record["owner"],
            repo=record["repo"],
            base_url=record["base_url"],
            is_private=bool(record["is_private"]),
            token=self._decode_token(record["id"], record["token_encrypted"]),
            enabled=bool(record["enabled"]),
            releases_limit=clamp_releases_limit(record["releases_limit"]),
        )
