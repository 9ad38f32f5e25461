"""Database repository for persisted last-good changelog snapshots."""

import json
import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from changelog_hub.ingestion.schemas import UnifiedChangelog
from changelog_hub.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS changelog_snapshots (
    page_id     TEXT PRIMARY KEY,
    fetched_at  TIMESTAMPTZ NOT NULL,
    payload     JSONB NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_UPSERT_SQL = """
INSERT INTO changelog_snapshots (page_id, fetched_at, payload, updated_at)
VALUES ($1, $2, $3::jsonb, NOW())
ON CONFLICT (page_id) DO UPDATE SET
    fetched_at = EXCLUDED.fetched_at,
    payload = EXCLUDED.payload,
    updated_at = NOW()
"""


def parse_snapshot(payload: Any, fetched_at: datetime | None = None) -> UnifiedChangelog | None:
    """
    Parse a stored payload into a UnifiedChangelog.

    Returns None when the payload is not a JSON object with `releases` and
    `errors` arrays or fails validation. A payload without its own
    `fetchedAt` takes the row's fetched_at column.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None

    if not isinstance(payload, dict):
        return None
    if not isinstance(payload.get("releases"), list) or not isinstance(payload.get("errors"), list):
        return None

    data = dict(payload)
    if not isinstance(data.get("fetchedAt"), str) and fetched_at is not None:
        data["fetchedAt"] = fetched_at

    try:
        return UnifiedChangelog.model_validate(data)
    except ValidationError:
        return None


class SnapshotRepository:
    """Read and upsert the changelog_snapshots table (one row per page)."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the changelog_snapshots table (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("changelog_snapshots table ensured")

    async def get_snapshot(self, page_id: str) -> UnifiedChangelog | None:
        row = await self._db.fetchrow(
            "SELECT page_id, fetched_at, payload FROM changelog_snapshots WHERE page_id = $1",
            page_id,
        )
        if row is None:
            return None

        snapshot = parse_snapshot(row["payload"], row["fetched_at"])
        if snapshot is None:
            logger.warning(f"Ignoring unreadable snapshot for page {page_id}")
        return snapshot

    async def save_snapshot(self, page_id: str, payload: UnifiedChangelog) -> None:
        """Store a payload as the page's last good snapshot (last writer wins)."""
        await self._db.execute(
            _UPSERT_SQL,
            page_id,
            payload.fetched_at,
            json.dumps(payload.to_json_dict()),
        )
        logger.debug(f"Saved snapshot for page {page_id} ({len(payload.releases)} releases)")
