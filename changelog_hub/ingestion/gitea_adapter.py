"""
Gitea adapter.

Gitea (and Forgejo) expose GitHub-shaped release and commit payloads under
`/api/v1`, so record mapping is inherited from the GitHub adapter. Page size
is passed as `limit` and only 429 counts as a rate-limit signal.
"""

import httpx

from changelog_hub.ingestion.base_adapter import BaseProviderAdapter, ensure_suffix, strip_suffix
from changelog_hub.ingestion.github_adapter import GitHubAdapter
from changelog_hub.ingestion.schemas import Provider, SourceConfig

GITEA_DEFAULT_URL = "https://gitea.com"
GITEA_API_SUFFIX = "/api/v1"


class GiteaAdapter(GitHubAdapter):
    """Adapter for gitea.com and self-hosted Gitea instances."""

    page_size_param = "limit"

    @property
    def provider(self) -> Provider:
        return Provider.GITEA

    def api_base_url(self, source: SourceConfig) -> str:
        return ensure_suffix(source.base_url or GITEA_DEFAULT_URL, GITEA_API_SUFFIX)

    def web_base_url(self, source: SourceConfig) -> str:
        return strip_suffix(source.base_url or GITEA_DEFAULT_URL, GITEA_API_SUFFIX)

    def auth_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"token {token}"}

    def is_rate_limited(self, response: httpx.Response) -> bool:
        return BaseProviderAdapter.is_rate_limited(self, response)
