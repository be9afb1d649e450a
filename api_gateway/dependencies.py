"""
FastAPI dependencies.

Process-wide singletons for the orchestration core. Each builder is cached so
every request shares one registry, one batch manager (and so one concurrency
ledger) and one assembler. Tests replace them through
``app.dependency_overrides``.
"""

from functools import lru_cache

from shared.config import settings
from shared.logging import get_logger
from shared.storage import EpisodeStore, create_episode_store
from modules.batch_manager import BatchManager
from modules.composer import CompositionEngine
from modules.episode_assembler import EpisodeAssembler, HttpAudioClient, InMemoryShotSource, ShotSource
from modules.video_generator import ProviderRegistry, load_provider_profiles

logger = get_logger("api_gateway.dependencies")


@lru_cache
def get_registry() -> ProviderRegistry:
    profiles = load_provider_profiles(settings.provider_profiles_path)
    logger.info(f"Loaded {len(profiles)} provider profiles", extra={"providers": [p.id for p in profiles]})
    return ProviderRegistry(profiles)


@lru_cache
def get_batch_manager() -> BatchManager:
    return BatchManager(get_registry())


@lru_cache
def get_episode_store() -> EpisodeStore:
    return create_episode_store()


@lru_cache
def get_shot_source() -> ShotSource:
    """Shots are pushed in by the upstream image pipeline through ``put_shots``."""
    return InMemoryShotSource()


@lru_cache
def get_assembler() -> EpisodeAssembler:
    return EpisodeAssembler(
        shot_source=get_shot_source(),
        audio=HttpAudioClient(),
        store=get_episode_store(),
        batch_manager=get_batch_manager(),
        engine=CompositionEngine(),
    )
