"""
Canonical changelog schema shared by adapters, the orchestrator and storage.

CRITICAL: the camelCase JSON produced by UnifiedChangelog.to_json_dict() is the
boundary contract read by presentation and API layers, and it is also the
shape persisted in snapshots. Do not rename aliases without migrating stored
snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Provider(str, Enum):
    """Supported source-control hosting providers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    GITEA = "gitea"

    @property
    def label(self) -> str:
        """Capitalized name used in error messages ("Github", "Gitlab", ...)."""
        return self.value[0].upper() + self.value[1:]


class ReleaseKind(str, Enum):
    """Whether an entry is a formal release or synthesized from a commit."""

    RELEASE = "release"
    COMMIT = "commit"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceConfig(_CamelModel):
    """
    One configured repository contributing to a page's feed.

    Immutable for the duration of a fetch. Owned by the configuration layer.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str = Field(..., min_length=1, description="Source identifier")
    page_id: str = Field(..., min_length=1, description="Page this source feeds")
    display_name: str = Field(..., description="Human-readable source name")
    provider: Provider = Field(..., description="Hosting provider")
    owner: str = Field(..., min_length=1, description="Owner, group, workspace or project key")
    repo: str = Field(..., min_length=1, description="Repository slug")
    base_url: str | None = Field(
        default=None,
        description="Self-hosted instance URL (web or API shaped)",
    )
    is_private: bool = False
    token: str | None = Field(default=None, repr=False, description="Access token")
    enabled: bool = True
    releases_limit: int = Field(default=8, ge=1, le=25)

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, v: str | None) -> str | None:
        """Trim whitespace and trailing slashes; blank becomes None."""
        if v is None:
            return None
        trimmed = v.strip().rstrip("/")
        return trimmed or None

    @property
    def repository(self) -> str:
        """Repository label in "owner/repo" form."""
        return f"{self.owner}/{self.repo}"


class AggregatedRelease(_CamelModel):
    """
    A single normalized feed entry.

    The id is derived from the source id and the provider-native identifier,
    so repeated fetches of the same release or commit produce the same id.
    """

    id: str = Field(
        ...,
        description="{source_id}:{native_id} or {source_id}:commit:{sha}",
        examples=["src_1:1234567", "src_1:commit:9fceb02d0ae598e95dc970b74767f19372d61af8"],
    )
    source_id: str
    source_name: str
    provider: Provider
    repository: str = Field(..., description='Repository label in "owner/repo" form')
    kind: ReleaseKind
    tag_name: str
    name: str
    body: str = ""
    body_excerpt: str = ""
    html_url: str = ""
    prerelease: bool = False
    draft: bool = False
    published_at: datetime = Field(
        default=EPOCH,
        description="UTC publication time; commits without an author date use the Unix epoch",
    )

    @field_validator("published_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return _ensure_utc(v)


class SourceFetchError(_CamelModel):
    """A per-source failure recorded alongside whatever data could be fetched."""

    source_id: str
    source_name: str
    repository: str
    message: str


class UnifiedChangelog(_CamelModel):
    """
    The aggregated feed for one page.

    Releases are ordered newest first by published_at.
    """

    fetched_at: datetime = Field(default_factory=utc_now)
    releases: list[AggregatedRelease] = Field(default_factory=list)
    errors: list[SourceFetchError] = Field(default_factory=list)

    @field_validator("fetched_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC."""
        return _ensure_utc(v)

    def to_json_dict(self) -> dict:
        """Serialize to the camelCase JSON boundary shape."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class FetchResult:
    """Outcome of fetching one source: entries plus an optional error message."""

    releases: list[AggregatedRelease] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def failure(cls, message: str) -> "FetchResult":
        return cls(releases=[], error=message)
