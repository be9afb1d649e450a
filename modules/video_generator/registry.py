"""
Provider registry.

Lookup table from provider id to adapter. Adapters are built on first use so
a provider with missing credentials only fails the jobs routed to it.
"""
from typing import Callable, Dict, Iterable, List, Optional

from shared.errors import ConfigError
from shared.logging import get_logger
from shared.models.generation import ProviderProfile

from .providers import PROVIDER_BACKENDS, VideoProvider

logger = get_logger("video_generator.registry")

ProviderFactory = Callable[[ProviderProfile], VideoProvider]


class ProviderRegistry:
    """Provider adapters keyed by provider id."""

    def __init__(
        self,
        profiles: Iterable[ProviderProfile],
        factories: Optional[Dict[str, ProviderFactory]] = None,
    ):
        self._profiles: Dict[str, ProviderProfile] = {p.id: p for p in profiles}
        self._factories: Dict[str, ProviderFactory] = dict(factories or PROVIDER_BACKENDS)
        self._providers: Dict[str, VideoProvider] = {}

    @property
    def profiles(self) -> List[ProviderProfile]:
        return list(self._profiles.values())

    def profile(self, provider_id: str) -> ProviderProfile:
        try:
            return self._profiles[provider_id]
        except KeyError:
            raise ConfigError(f"Unknown provider: {provider_id}", provider_id=provider_id) from None

    def register(self, provider: VideoProvider) -> None:
        """Install a ready-made adapter (and its profile)."""
        self._profiles[provider.provider_id] = provider.profile
        self._providers[provider.provider_id] = provider

    def get(self, provider_id: str) -> VideoProvider:
        """
        Adapter for ``provider_id``.

        Raises:
            ConfigError: Unknown provider, unknown backend or missing credentials
        """
        if provider_id in self._providers:
            return self._providers[provider_id]
        profile = self.profile(provider_id)
        factory = self._factories.get(profile.backend)
        if factory is None:
            raise ConfigError(f"No adapter for backend {profile.backend}", provider_id=provider_id)
        provider = factory(profile)
        self._providers[provider_id] = provider
        logger.info(f"Initialized provider {provider_id}", extra={"provider_id": provider_id, "backend": profile.backend})
        return provider

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._profiles

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
        self._providers.clear()
