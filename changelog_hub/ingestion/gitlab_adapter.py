"""
GitLab adapter.

Projects are addressed by their URL-encoded path ("group/project" becomes
"group%2Fproject"), so nested groups work without a numeric project id.
GitLab releases carry no numeric id; the tag name is the native identifier.
"""

from typing import Any
from urllib.parse import quote

from changelog_hub.ingestion.base_adapter import (
    BaseProviderAdapter,
    ensure_suffix,
    has_release_identity,
    strip_suffix,
)
from changelog_hub.ingestion.http_client import parse_gitlab_rate_limit
from changelog_hub.ingestion.normalizer import parse_timestamp
from changelog_hub.ingestion.schemas import AggregatedRelease, Provider, SourceConfig

GITLAB_DEFAULT_URL = "https://gitlab.com"
GITLAB_API_SUFFIX = "/api/v4"


class GitLabAdapter(BaseProviderAdapter):
    """Adapter for gitlab.com and self-managed GitLab."""

    short_hash_length = 8
    rate_limit_parser = staticmethod(parse_gitlab_rate_limit)

    @property
    def provider(self) -> Provider:
        return Provider.GITLAB

    def api_base_url(self, source: SourceConfig) -> str:
        return ensure_suffix(source.base_url or GITLAB_DEFAULT_URL, GITLAB_API_SUFFIX)

    def web_base_url(self, source: SourceConfig) -> str:
        return strip_suffix(source.base_url or GITLAB_DEFAULT_URL, GITLAB_API_SUFFIX)

    def auth_headers(self, token: str) -> dict[str, str]:
        return {"PRIVATE-TOKEN": token}

    def _project_url(self, source: SourceConfig, resource: str) -> str:
        project_id = quote(f"{source.owner}/{source.repo}", safe="")
        return f"{self.api_base_url(source)}/projects/{project_id}/{resource}"

    async def _fetch_release_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        payload = await self._get_list(
            source,
            self._project_url(source, "releases"),
            params={self.page_size_param: self.page_size(source)},
        )
        web_base = self.web_base_url(source)
        return [
            self._transform_release(source, item, web_base)
            for item in payload
            if has_release_identity(item, "released_at")
        ]

    async def _fetch_commit_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        payload = await self._get_list(
            source,
            self._project_url(source, "repository/commits"),
            params={self.page_size_param: self.page_size(source)},
        )
        return [self._transform_commit(source, item) for item in payload if item.get("id")]

    def _transform_release(
        self,
        source: SourceConfig,
        raw: dict[str, Any],
        web_base: str,
    ) -> AggregatedRelease:
        tag_name = raw.get("tag_name") or ""
        return self._release_record(
            source,
            native_id=tag_name,
            tag_name=tag_name,
            name=raw.get("name"),
            body=raw.get("description"),
            html_url=f"{web_base}/{source.owner}/{source.repo}/-/releases/{tag_name}",
            published_at=parse_timestamp(raw.get("released_at") or raw.get("created_at")),
        )

    def _transform_commit(self, source: SourceConfig, raw: dict[str, Any]) -> AggregatedRelease:
        commit_id = raw["id"]
        short_hash = (raw.get("short_id") or commit_id)[: self.short_hash_length]
        return self._commit_record(
            source,
            sha=commit_id,
            short_hash=short_hash,
            message=raw.get("message"),
            title=raw.get("title"),
            html_url=raw.get("web_url") or "",
            published_at=parse_timestamp(raw.get("authored_date")),
        )
