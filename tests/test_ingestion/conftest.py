"""Shared fixtures for adapter tests."""

import pytest

from changelog_hub.ingestion.http_client import RetryClient

FIXED_NOW = 1_700_000_000.0


@pytest.fixture
def fetch_with(fast_policy, recording_sleep):
    """
    Run one adapter's fetch_releases against mocked HTTP.

    Usage:
        result = await fetch_with(GitHubAdapter, source)
    """

    async def run(adapter_cls, source):
        async with RetryClient(fast_policy, sleep=recording_sleep, clock=lambda: FIXED_NOW) as client:
            adapter = adapter_cls(client, user_agent="changelog-hub-test")
            return await adapter.fetch_releases(source)

    return run


@pytest.fixture
def adapter_for(fast_policy):
    """Build an adapter over an unopened client (for pure URL/header tests)."""

    def build(adapter_cls):
        return adapter_cls(RetryClient(fast_policy), user_agent="changelog-hub-test")

    return build
