"""
GitHub adapter.

Lists formal releases from `repos/{owner}/{repo}/releases` and falls back to
the default branch's commit history when a repository has none. GitHub
Enterprise instances are supported through SourceConfig.base_url.

GitHub signals quota exhaustion with 403 as well as 429, so a 403 whose body
mentions the rate limit also suppresses the commit fallback.
"""

import re
from typing import Any

import httpx

from changelog_hub.ingestion.base_adapter import (
    BaseProviderAdapter,
    ensure_suffix,
    has_release_identity,
    strip_suffix,
)
from changelog_hub.ingestion.normalizer import parse_timestamp
from changelog_hub.ingestion.schemas import AggregatedRelease, Provider, SourceConfig

GITHUB_API_URL = "https://api.github.com"
GITHUB_WEB_URL = "https://github.com"
ENTERPRISE_API_SUFFIX = "/api/v3"

_GITHUB_DOT_COM = re.compile(r"^https?://github\.com$", re.IGNORECASE)


class GitHubAdapter(BaseProviderAdapter):
    """
    Adapter for github.com and GitHub Enterprise.

    Base URL handling:
        None, "https://github.com", any api.github.com URL -> public API
        "https://ghe.example.com/api/v3"                   -> used as is
        "https://ghe.example.com"                          -> + "/api/v3"
    """

    @property
    def provider(self) -> Provider:
        return Provider.GITHUB

    def api_base_url(self, source: SourceConfig) -> str:
        base = source.base_url
        if not base or _GITHUB_DOT_COM.match(base) or "api.github.com" in base:
            return GITHUB_API_URL
        return ensure_suffix(base, ENTERPRISE_API_SUFFIX)

    def web_base_url(self, source: SourceConfig) -> str:
        base = source.base_url
        if not base or "api.github.com" in base:
            return GITHUB_WEB_URL
        return strip_suffix(base, ENTERPRISE_API_SUFFIX)

    def is_rate_limited(self, response: httpx.Response) -> bool:
        if response.status_code == 403:
            return "rate limit" in response.text.lower()
        return super().is_rate_limited(response)

    def _repo_url(self, source: SourceConfig, resource: str) -> str:
        return f"{self.api_base_url(source)}/repos/{source.owner}/{source.repo}/{resource}"

    async def _fetch_release_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        payload = await self._get_list(
            source,
            self._repo_url(source, "releases"),
            params={self.page_size_param: self.page_size(source)},
        )
        return [
            self._transform_release(source, item)
            for item in payload
            if has_release_identity(item, "published_at")
        ]

    async def _fetch_commit_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        payload = await self._get_list(
            source,
            self._repo_url(source, "commits"),
            params={self.page_size_param: self.page_size(source)},
        )
        return [self._transform_commit(source, item) for item in payload if item.get("sha")]

    def _transform_release(self, source: SourceConfig, raw: dict[str, Any]) -> AggregatedRelease:
        tag_name = raw.get("tag_name") or ""
        return self._release_record(
            source,
            native_id=raw.get("id") or tag_name,
            tag_name=tag_name,
            name=raw.get("name"),
            body=raw.get("body"),
            html_url=raw.get("html_url") or "",
            published_at=parse_timestamp(raw.get("published_at")),
            prerelease=bool(raw.get("prerelease")),
            draft=bool(raw.get("draft")),
        )

    def _transform_commit(self, source: SourceConfig, raw: dict[str, Any]) -> AggregatedRelease:
        sha = raw["sha"]
        commit = raw.get("commit") or {}
        author = commit.get("author") or {}
        return self._commit_record(
            source,
            sha=sha,
            short_hash=sha[: self.short_hash_length],
            message=commit.get("message"),
            html_url=raw.get("html_url") or "",
            published_at=parse_timestamp(author.get("date")),
        )
