"""
Video Generator module.

Provider abstraction layer: adapters per backend, the registry, the selection
policy and the per-job driver.
"""

from modules.video_generator.config import load_provider_profiles
from modules.video_generator.generator import JobRunner
from modules.video_generator.registry import ProviderRegistry
from modules.video_generator.selector import select_fallback, select_provider

__all__ = [
    "JobRunner",
    "ProviderRegistry",
    "load_provider_profiles",
    "select_fallback",
    "select_provider",
]
