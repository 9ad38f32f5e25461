"""
Text and identifier normalization shared by all provider adapters.

All functions are pure: markdown stripping, excerpting, deterministic id
construction, timestamp parsing and API error formatting.
"""

import re
from datetime import datetime, timezone
from typing import Any

from changelog_hub.ingestion.schemas import EPOCH, Provider

RELEASE_EXCERPT_LIMIT = 480
COMMIT_EXCERPT_LIMIT = 360
ERROR_DETAIL_LIMIT = 140

_FENCED_CODE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_IMAGE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_PUNCTUATION = re.compile(r"[*_>#~-]")
_WHITESPACE = re.compile(r"\s+")


def markdown_to_plain_text(value: str) -> str:
    """
    Strip markdown formatting and collapse whitespace.

    Fenced code blocks and images are dropped, inline code keeps its text,
    links keep their label, and emphasis/heading/quote/list punctuation is
    replaced by spaces.
    """
    text = _FENCED_CODE.sub(" ", value)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _IMAGE.sub("", text)
    text = _LINK.sub(r"\1", text)
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def excerpt(value: str, limit: int) -> str:
    """Plain-text excerpt of markdown, at most `limit` characters."""
    return markdown_to_plain_text(value)[:limit]


def first_line(message: str) -> str:
    """First line of a commit message, stripped."""
    return message.strip().split("\n", 1)[0].strip()


def build_release_id(source_id: str, release_id: str | int) -> str:
    return f"{source_id}:{release_id}"


def build_commit_id(source_id: str, sha: str) -> str:
    return f"{source_id}:commit:{sha}"


def format_api_error(provider: Provider, status: int, detail: str) -> str:
    """
    Build the user-facing message for a non-2xx provider response.

    Only the first 140 characters of the body are kept so large error pages
    never end up in the feed.

    Example:
        >>> format_api_error(Provider.GITHUB, 404, '{"message":"Not Found"}')
        'Github API 404: {"message":"Not Found"}'
    """
    snippet = detail[:ERROR_DETAIL_LIMIT].strip()
    if snippet:
        return f"{provider.label} API {status}: {snippet}"
    return f"{provider.label} API returned {status}"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp from a provider payload.

    Missing or unparseable values map to the Unix epoch so entries without a
    date sort last instead of failing the whole source.
    """
    if not value or not isinstance(value, str):
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_epoch_millis(value: Any) -> datetime:
    """Parse an epoch-milliseconds timestamp (Bitbucket Server)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        return EPOCH
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return EPOCH
