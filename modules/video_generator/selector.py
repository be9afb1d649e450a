"""
Provider selection policy.

Cheapest compatible provider first; a capability failure earns exactly one
fallback to the next-cheapest compatible provider.
"""
from typing import Iterable, List, Optional

from shared.errors import UnsupportedRequestError, ValidationError
from shared.models.generation import GenerationRequest, ProviderProfile


def is_compatible(profile: ProviderProfile, request: GenerationRequest) -> bool:
    """Whether ``profile`` can serve ``request`` at all."""
    return (
        request.target_duration_seconds <= profile.max_duration_seconds
        and request.resolution in profile.supported_resolutions
        and request.aspect_ratio in profile.supported_aspect_ratios
        and all(profile.supports(c) for c in request.required_capabilities)
    )


def rank_providers(request: GenerationRequest, profiles: Iterable[ProviderProfile]) -> List[ProviderProfile]:
    """Compatible profiles ordered by cost, ties kept in declared order."""
    indexed = [(i, p) for i, p in enumerate(profiles) if is_compatible(p, request)]
    return [p for _, p in sorted(indexed, key=lambda item: (item[1].cost_per_second, item[0]))]


def select_provider(request: GenerationRequest, profiles: List[ProviderProfile]) -> ProviderProfile:
    """
    Choose the provider for a new job.

    A provider hint is honored even when incompatible; the adapter then
    rejects it with a capability error and the job falls back once.

    Raises:
        ValidationError: Hint names an unknown provider
        UnsupportedRequestError: No provider can serve the request
    """
    if request.provider_hint:
        for profile in profiles:
            if profile.id == request.provider_hint:
                return profile
        raise ValidationError(f"Unknown provider hint: {request.provider_hint}")

    ranked = rank_providers(request, profiles)
    if not ranked:
        raise UnsupportedRequestError(
            f"No provider supports {request.target_duration_seconds}s at {request.resolution} "
            f"({request.aspect_ratio})"
        )
    return ranked[0]


def select_fallback(
    request: GenerationRequest,
    profiles: List[ProviderProfile],
    exclude: str,
) -> Optional[ProviderProfile]:
    """Next-cheapest compatible provider other than ``exclude``, if any."""
    for profile in rank_providers(request, profiles):
        if profile.id != exclude:
            return profile
    return None
