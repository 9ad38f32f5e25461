"""Tests for the Gitea adapter."""

import httpx
import pytest
import respx

from changelog_hub.ingestion.gitea_adapter import GiteaAdapter
from changelog_hub.ingestion.schemas import Provider, ReleaseKind

BASE = "https://gitea.example.com/api/v1/repos/infra/tools"


@pytest.fixture
def gitea_source(make_source):
    return make_source(
        id="gt_1",
        provider=Provider.GITEA,
        owner="infra",
        repo="tools",
        base_url="https://gitea.example.com",
        releases_limit=5,
    )


class TestUrlResolution:
    """Tests for Gitea base URL resolution."""

    def test_default_instance(self, adapter_for, make_source):
        """Should default to gitea.com."""
        adapter = adapter_for(GiteaAdapter)
        source = make_source(provider=Provider.GITEA)

        assert adapter.api_base_url(source) == "https://gitea.com/api/v1"
        assert adapter.web_base_url(source) == "https://gitea.com"

    def test_api_shaped_base_passes_through(self, adapter_for, make_source):
        """Should keep a base URL that already ends in /api/v1."""
        adapter = adapter_for(GiteaAdapter)
        source = make_source(provider=Provider.GITEA, base_url="https://code.example.org/api/v1")

        assert adapter.api_base_url(source) == "https://code.example.org/api/v1"
        assert adapter.web_base_url(source) == "https://code.example.org"

    def test_token_header(self, adapter_for, gitea_source):
        """Should send the token with the token scheme."""
        headers = adapter_for(GiteaAdapter).build_headers(
            gitea_source.model_copy(update={"token": "abc"})
        )
        assert headers["Authorization"] == "token abc"


class TestFetchReleases:
    """Tests for Gitea release fetching and commit fallback."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_releases_use_limit_param(self, fetch_with, gitea_source):
        """Should request releases with the limit parameter."""
        route = respx.get(f"{BASE}/releases").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {
                        "id": 44,
                        "tag_name": "v0.9.0",
                        "name": "v0.9.0",
                        "body": "Beta",
                        "html_url": "https://gitea.example.com/infra/tools/releases/tag/v0.9.0",
                        "prerelease": True,
                        "draft": False,
                        "published_at": "2024-02-02T02:02:02Z",
                    }
                ],
            )
        )

        result = await fetch_with(GiteaAdapter, gitea_source)

        params = route.calls[0].request.url.params
        assert params["limit"] == "5"
        assert "per_page" not in params
        assert result.releases[0].id == "gt_1:44"
        assert result.releases[0].prerelease is True
        assert result.releases[0].provider is Provider.GITEA

    @pytest.mark.asyncio
    @respx.mock
    async def test_commit_fallback(self, fetch_with, gitea_source):
        """Should fall back to commits when the releases endpoint fails."""
        respx.get(f"{BASE}/releases").mock(return_value=httpx.Response(404, text="not found"))
        commits = respx.get(f"{BASE}/commits").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {
                        "sha": "1234567890abcdef",
                        "html_url": "https://gitea.example.com/infra/tools/commit/1234567890abcdef",
                        "commit": {
                            "message": "Bump deps\n\n* lib 1.2",
                            "author": {"date": "2024-01-01T00:00:00Z"},
                        },
                    }
                ],
            )
        )

        result = await fetch_with(GiteaAdapter, gitea_source)

        assert commits.calls[0].request.url.params["limit"] == "5"
        commit = result.releases[0]
        assert commit.kind is ReleaseKind.COMMIT
        assert commit.tag_name == "1234567"
        assert commit.body_excerpt == "Bump deps lib 1.2"

    @pytest.mark.asyncio
    @respx.mock
    async def test_403_rate_limit_body_still_falls_back(self, fetch_with, gitea_source):
        """Should fall back to commits on 403, since only 429 signals a Gitea rate limit."""
        respx.get(f"{BASE}/releases").mock(
            return_value=httpx.Response(403, text="rate limit? no, forbidden")
        )
        commits = respx.get(f"{BASE}/commits").mock(return_value=httpx.Response(200, json=[]))

        result = await fetch_with(GiteaAdapter, gitea_source)

        assert commits.called
        assert result.error == "Gitea API 403: rate limit? no, forbidden"

    @pytest.mark.asyncio
    @respx.mock
    async def test_429_skips_fallback(self, fetch_with, gitea_source):
        """Should report a 429 without trying the commit fallback."""
        respx.get(f"{BASE}/releases").mock(
            return_value=httpx.Response(429, headers={"retry-after": "600"}, text="Too Many Requests")
        )
        commits = respx.get(f"{BASE}/commits").mock(return_value=httpx.Response(200, json=[]))

        result = await fetch_with(GiteaAdapter, gitea_source)

        assert not commits.called
        assert result.error == "Gitea API 429: Too Many Requests"
