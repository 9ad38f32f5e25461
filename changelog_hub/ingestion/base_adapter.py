"""
Base adapter interface and shared functionality for provider adapters.

Each provider adapter turns one SourceConfig into a FetchResult. The base
class provides:
- Header construction (user agent plus provider-native auth)
- JSON requests through the shared RetryClient
- The releases-then-commit-fallback control flow
- Record construction and metrics tracking

Adapters raise the HTTPClientError family internally. fetch_releases() is the
boundary where those errors become the FetchResult.error string; nothing
raised by the HTTP layer escapes it.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx

from changelog_hub.config.settings import get_settings
from changelog_hub.ingestion.http_client import (
    ApiError,
    FallbackExhausted,
    HTTPClientError,
    RateLimitExceeded,
    RetryClient,
    RetryPolicy,
    parse_standard_rate_limit,
)
from changelog_hub.ingestion.normalizer import (
    COMMIT_EXCERPT_LIMIT,
    RELEASE_EXCERPT_LIMIT,
    build_commit_id,
    build_release_id,
    excerpt,
    first_line,
)
from changelog_hub.ingestion.schemas import (
    AggregatedRelease,
    FetchResult,
    Provider,
    ReleaseKind,
    SourceConfig,
)
from changelog_hub.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

INVALID_JSON = "invalid JSON payload"
UNEXPECTED_SHAPE = "unexpected payload shape"


def strip_suffix(base: str, suffix: str) -> str:
    return base[: -len(suffix)] if base.endswith(suffix) else base


def ensure_suffix(base: str, suffix: str) -> str:
    return base if base.endswith(suffix) else f"{base}{suffix}"


class BaseProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses must implement:
        - provider: Provider enum value
        - api_base_url() / web_base_url(): URL resolution for a source
        - _fetch_commit_records(): recent commits as kind="commit" records
        - _fetch_release_records(): formal releases, unless the provider
          is commit-only (supports_releases = False)

    The base class handles:
        - Commit fallback when releases are missing or the request fails
        - Suppressing the fallback for unambiguous rate-limit responses
        - Converting raised errors into FetchResult.error
    """

    supports_releases: bool = True
    short_hash_length: int = 7
    page_size_param: str = "per_page"
    rate_limit_parser = staticmethod(parse_standard_rate_limit)

    def __init__(
        self,
        client: RetryClient,
        policy: RetryPolicy | None = None,
        user_agent: str | None = None,
    ):
        """
        Initialize adapter.

        Args:
            client: Shared retry client (must be entered)
            policy: Retry policy; the client's default if None. The provider's
                rate-limit header parser is applied on top.
            user_agent: User-Agent header; from settings if None
        """
        self._client = client
        self._policy = (policy or client.policy).with_parser(self.rate_limit_parser)
        self._user_agent = user_agent or get_settings().user_agent
        self._metrics = get_metrics()

    @property
    @abstractmethod
    def provider(self) -> Provider:
        """Return the provider this adapter handles."""
        ...

    @property
    def name(self) -> str:
        """Human-readable adapter name."""
        return f"{self.provider.value}_adapter"

    @abstractmethod
    def api_base_url(self, source: SourceConfig) -> str:
        """Resolve the REST API base for a source (no trailing slash)."""
        ...

    @abstractmethod
    def web_base_url(self, source: SourceConfig) -> str:
        """Resolve the browsable web base for a source (no trailing slash)."""
        ...

    def auth_headers(self, token: str) -> dict[str, str]:
        """Provider-native authorization header for a token."""
        return {"Authorization": f"Bearer {token}"}

    def build_headers(self, source: SourceConfig) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }
        if source.token:
            headers.update(self.auth_headers(source.token))
        return headers

    def page_size(self, source: SourceConfig) -> int:
        return source.releases_limit

    def is_rate_limited(self, response: httpx.Response) -> bool:
        """
        Whether a non-2xx response is an unambiguous quota signal.

        Rate-limited sources skip the commit fallback so the exhausted token
        is not spent again on the commits endpoint.
        """
        return response.status_code == 429

    async def _fetch_release_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        raise NotImplementedError(f"{self.name} does not list releases")

    @abstractmethod
    async def _fetch_commit_records(self, source: SourceConfig) -> list[AggregatedRelease]:
        ...

    async def fetch_releases(self, source: SourceConfig) -> FetchResult:
        """
        Fetch changelog entries for one source.

        This is the main entry point called by the aggregation service.

        Returns:
            FetchResult with either the entries or a human-readable error
        """
        try:
            releases = await self._collect(source)
        except HTTPClientError as e:
            logger.warning(f"{self.name} failed for {source.repository}: {e}")
            self._metrics.record_source_fetch(self.provider, "error")
            return FetchResult.failure(str(e))

        if not releases:
            outcome = "empty"
        else:
            outcome = releases[0].kind.value
        self._metrics.record_source_fetch(self.provider, outcome)

        logger.debug(f"{self.name} fetched {len(releases)} {outcome} entries for {source.repository}")
        return FetchResult(releases=releases)

    async def _collect(self, source: SourceConfig) -> list[AggregatedRelease]:
        if not self.supports_releases:
            return await self._fetch_commit_records(source)

        try:
            releases = await self._fetch_release_records(source)
        except RateLimitExceeded:
            raise
        except ApiError as e:
            logger.info(f"Releases unavailable for {source.repository} ({e}), falling back to commits")
            return await self._commit_fallback(source, primary=e)

        if releases:
            return releases

        logger.info(f"No releases for {source.repository}, falling back to commits")
        return await self._commit_fallback(source, primary=None)

    async def _commit_fallback(
        self,
        source: SourceConfig,
        primary: ApiError | None,
    ) -> list[AggregatedRelease]:
        try:
            commits = await self._fetch_commit_records(source)
        except HTTPClientError as e:
            raise FallbackExhausted(primary, e) from e

        if commits or primary is None:
            return commits
        raise FallbackExhausted(primary, None)

    async def _get_json(
        self,
        source: SourceConfig,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        GET a JSON document.

        Raises:
            RateLimitExceeded: Non-2xx response that is_rate_limited() accepts
            ApiError: Any other non-2xx response, or a non-JSON body
            NetworkError: Transport failures exhausted all retries
        """
        response = await self._client.execute(
            url,
            params=params,
            headers=self.build_headers(source),
            policy=self._policy,
        )

        if not response.is_success:
            if self.is_rate_limited(response):
                raise RateLimitExceeded.from_response(self.provider, response)
            raise ApiError.from_response(self.provider, response)

        try:
            return response.json()
        except ValueError:
            raise ApiError(self.provider, response.status_code, INVALID_JSON)

    async def _get_list(
        self,
        source: SourceConfig,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """GET a JSON array of objects; non-object items are skipped."""
        payload = await self._get_json(source, url, params)
        if not isinstance(payload, list):
            raise ApiError(self.provider, 200, UNEXPECTED_SHAPE)
        return [item for item in payload if isinstance(item, dict)]

    # Record construction

    def _release_record(
        self,
        source: SourceConfig,
        *,
        native_id: str | int,
        tag_name: str,
        name: str | None,
        body: str | None,
        html_url: str,
        published_at: datetime,
        prerelease: bool = False,
        draft: bool = False,
    ) -> AggregatedRelease:
        body = body or ""
        return AggregatedRelease(
            id=build_release_id(source.id, native_id),
            source_id=source.id,
            source_name=source.display_name,
            provider=source.provider,
            repository=source.repository,
            kind=ReleaseKind.RELEASE,
            tag_name=tag_name,
            name=name or tag_name,
            body=body,
            body_excerpt=excerpt(body, RELEASE_EXCERPT_LIMIT),
            html_url=html_url,
            prerelease=prerelease,
            draft=draft,
            published_at=published_at,
        )

    def _commit_record(
        self,
        source: SourceConfig,
        *,
        sha: str,
        short_hash: str,
        message: str | None,
        html_url: str,
        published_at: datetime,
        title: str | None = None,
    ) -> AggregatedRelease:
        message = (message or "").strip()
        name = (title or "").strip() or first_line(message) or f"Commit {short_hash}"
        return AggregatedRelease(
            id=build_commit_id(source.id, sha),
            source_id=source.id,
            source_name=source.display_name,
            provider=source.provider,
            repository=source.repository,
            kind=ReleaseKind.COMMIT,
            tag_name=short_hash,
            name=name,
            body=message,
            body_excerpt=excerpt(message, COMMIT_EXCERPT_LIMIT),
            html_url=html_url,
            published_at=published_at,
        )


def has_release_identity(item: dict[str, Any], date_field: str) -> bool:
    """Release records need at least one of a date, a name or a tag."""
    return bool(item.get(date_field) or item.get("name") or item.get("tag_name"))
