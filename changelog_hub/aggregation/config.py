"""Configuration for the aggregation service."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AggregationConfig(BaseSettings):
    """Settings for the unified changelog cache and refresh behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGELOG_",
        case_sensitive=False,
        extra="ignore",
    )

    cache_window_seconds: float = Field(
        default=180.0,
        ge=0,
        description="How long an aggregated payload (in memory or persisted) counts as fresh",
    )
    single_flight: bool = Field(
        default=True,
        description="Collapse concurrent refreshes of the same page into one upstream run",
    )
