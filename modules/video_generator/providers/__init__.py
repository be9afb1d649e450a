"""
Provider adapters, one per external generation backend.
"""

from .base import JobHandle, ProviderStatus, VideoProvider, classify_failure
from .kling import KlingProvider
from .replicate_provider import ReplicateProvider
from .runway import RunwayProvider

# Adapter class per ProviderProfile.backend
PROVIDER_BACKENDS = {
    "replicate": ReplicateProvider,
    "kling": KlingProvider,
    "runway": RunwayProvider,
}

__all__ = [
    "JobHandle",
    "KlingProvider",
    "PROVIDER_BACKENDS",
    "ProviderStatus",
    "ReplicateProvider",
    "RunwayProvider",
    "VideoProvider",
    "classify_failure",
]
