"""
Bitbucket adapter (commit-only).

Bitbucket has no releases API, so entries always come from commit history.
Two deployments are supported and told apart by the resolved API base:

- Cloud (`https://api.bitbucket.org/2.0`):
  `repositories/{workspace}/{repo}/commits?pagelen=N`, commit URL from
  `links.html.href`, date from `date`.
- Server / Data Center (`.../rest/api/1.0`):
  `projects/{project}/repos/{repo}/commits?limit=N`, commit URL from the first
  `links.self[].href`, date from `authorTimestamp` (epoch milliseconds).
"""

import base64
import logging
import re
from typing import Any
from urllib.parse import quote

from changelog_hub.ingestion.base_adapter import (
    UNEXPECTED_SHAPE,
    BaseProviderAdapter,
    ensure_suffix,
)
from changelog_hub.ingestion.http_client import ApiError
from changelog_hub.ingestion.normalizer import parse_epoch_millis, parse_timestamp
from changelog_hub.ingestion.schemas import AggregatedRelease, Provider, SourceConfig

logger = logging.getLogger(__name__)

BITBUCKET_CLOUD_API_URL = "https://api.bitbucket.org/2.0"
BITBUCKET_CLOUD_WEB_URL = "https://bitbucket.org"
BITBUCKET_SERVER_API_SUFFIX = "/rest/api/1.0"
MAX_PAGE_SIZE = 100

_SERVER_API = re.compile(r"/rest/api/\d+\.\d+$", re.IGNORECASE)


def is_server_api_base(api_base: str) -> bool:
    """True when an API base targets Bitbucket Server / Data Center."""
    return bool(_SERVER_API.search(api_base))


class BitbucketAdapter(BaseProviderAdapter):
    """
    Adapter for Bitbucket Cloud and Bitbucket Server.

    Base URL handling:
        None                                  -> Cloud API
        "https://api.bitbucket.org[/2.0]"     -> Cloud API ("/2.0" ensured)
        ".../rest/api/<major>.<minor>"        -> Server API, used as is
        any other bitbucket.org URL           -> Cloud API
        any other host                        -> Server, + "/rest/api/1.0"
    """

    supports_releases = False
    short_hash_length = 8

    @property
    def provider(self) -> Provider:
        return Provider.BITBUCKET

    def api_base_url(self, source: SourceConfig) -> str:
        base = source.base_url
        if not base:
            return BITBUCKET_CLOUD_API_URL
        if "api.bitbucket.org" in base:
            return ensure_suffix(base, "/2.0")
        if is_server_api_base(base):
            return base
        if "bitbucket.org" in base:
            return BITBUCKET_CLOUD_API_URL
        return f"{base}{BITBUCKET_SERVER_API_SUFFIX}"

    def web_base_url(self, source: SourceConfig) -> str:
        base = source.base_url
        if not base or "api.bitbucket.org" in base:
            return BITBUCKET_CLOUD_WEB_URL
        if is_server_api_base(base):
            return _SERVER_API.sub("", base)
        return base.removesuffix("/2.0")

    def auth_headers(self, token: str) -> dict[str, str]:
        # "user:app_password" pairs use basic auth, anything else is a bearer token
        if ":" in token:
            encoded = base64.b64encode(token.encode("utf-8")).decode("ascii")
            return {"Authorization": f"Basic {encoded}"}
        return super().auth_headers(token)

    def page_size(self, source: SourceConfig) -> int:
        return min(MAX_PAGE_SIZE, max(1, source.releases_limit))

    async def _fetch_commit_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        api_base = self.api_base_url(source)
        server = is_server_api_base(api_base)

        if server:
            url = (
                f"{api_base}/projects/{quote(source.owner, safe='')}"
                f"/repos/{quote(source.repo, safe='')}/commits"
            )
            params = {"limit": self.page_size(source)}
        else:
            url = f"{api_base}/repositories/{source.owner}/{source.repo}/commits"
            params = {"pagelen": self.page_size(source)}

        logger.debug(f"Fetching Bitbucket {'Server' if server else 'Cloud'} commits from {url}")
        payload = await self._get_json(source, url, params)
        if not isinstance(payload, dict):
            raise ApiError(self.provider, 200, UNEXPECTED_SHAPE)

        values = payload.get("values") or []
        if not isinstance(values, list):
            raise ApiError(self.provider, 200, UNEXPECTED_SHAPE)

        web_base = self.web_base_url(source)
        transform = self._transform_server_commit if server else self._transform_cloud_commit
        return [
            transform(source, item, web_base)
            for item in values
            if isinstance(item, dict) and item.get("id" if server else "hash")
        ]

    def _transform_cloud_commit(
        self,
        source: SourceConfig,
        raw: dict[str, Any],
        web_base: str,
    ) -> AggregatedRelease:
        commit_hash = raw["hash"]
        html_link = ((raw.get("links") or {}).get("html") or {}).get("href")
        return self._commit_record(
            source,
            sha=commit_hash,
            short_hash=commit_hash[: self.short_hash_length],
            message=raw.get("message"),
            html_url=html_link or f"{web_base}/{source.owner}/{source.repo}/commits/{commit_hash}",
            published_at=parse_timestamp(raw.get("date")),
        )

    def _transform_server_commit(
        self,
        source: SourceConfig,
        raw: dict[str, Any],
        web_base: str,
    ) -> AggregatedRelease:
        commit_id = raw["id"]
        self_links = (raw.get("links") or {}).get("self") or []
        html_link = self_links[0].get("href") if self_links and isinstance(self_links[0], dict) else None
        fallback_url = f"{web_base}/projects/{source.owner}/repos/{source.repo}/commits/{commit_id}"
        return self._commit_record(
            source,
            sha=commit_id,
            short_hash=(raw.get("displayId") or commit_id)[: self.short_hash_length],
            message=raw.get("message"),
            html_url=html_link or fallback_url,
            published_at=parse_epoch_millis(raw.get("authorTimestamp")),
        )
