"""
Provider dispatch.

The set of providers is closed: exactly one adapter per Provider value, all
sharing one RetryClient (and therefore one connection pool).
"""

from changelog_hub.ingestion.base_adapter import BaseProviderAdapter
from changelog_hub.ingestion.bitbucket_adapter import BitbucketAdapter
from changelog_hub.ingestion.gitea_adapter import GiteaAdapter
from changelog_hub.ingestion.github_adapter import GitHubAdapter
from changelog_hub.ingestion.gitlab_adapter import GitLabAdapter
from changelog_hub.ingestion.http_client import RetryClient, RetryPolicy
from changelog_hub.ingestion.schemas import FetchResult, Provider, SourceConfig

ADAPTER_CLASSES: dict[Provider, type[BaseProviderAdapter]] = {
    Provider.GITHUB: GitHubAdapter,
    Provider.GITLAB: GitLabAdapter,
    Provider.GITEA: GiteaAdapter,
    Provider.BITBUCKET: BitbucketAdapter,
}


class AdapterRegistry:
    """
    Maps each provider to its adapter.

    Usage:
        async with RetryClient() as client:
            registry = AdapterRegistry(client)
            result = await registry.fetch_releases(source)
    """

    def __init__(
        self,
        client: RetryClient,
        policy: RetryPolicy | None = None,
        user_agent: str | None = None,
    ):
        self._adapters: dict[Provider, BaseProviderAdapter] = {
            provider: adapter_cls(client, policy=policy, user_agent=user_agent)
            for provider, adapter_cls in ADAPTER_CLASSES.items()
        }

    def for_provider(self, provider: Provider | str) -> BaseProviderAdapter:
        """
        Get the adapter for a provider.

        Raises:
            KeyError: If the provider is not one of the supported four
        """
        try:
            return self._adapters[Provider(provider)]
        except (KeyError, ValueError):
            raise KeyError(f"No adapter registered for provider {provider!r}") from None

    async def fetch_releases(self, source: SourceConfig) -> FetchResult:
        return await self.for_provider(source.provider).fetch_releases(source)
