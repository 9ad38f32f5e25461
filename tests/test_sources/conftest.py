"""Shared fixtures for sources tests."""

from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def mock_database() -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="INSERT 0 1")
    return db


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for a repo_sources row."""
    return {
        "id": "src_gh",
        "page_id": "page_default",
        "display_name": "Hello World",
        "provider": "github",
        "owner": "octo",
        "repo": "hello",
        "base_url": None,
        "is_private": False,
        "token_encrypted": None,
        "enabled": True,
        "releases_limit": 8,
    }
