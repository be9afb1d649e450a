"""
Data models for the episode generation pipeline.

This module exports all Pydantic models used across pipeline modules.
"""

from .generation import (
    BatchProgress,
    CapabilityFlags,
    GenerationJob,
    GenerationRequest,
    JobStatus,
    ProviderProfile,
)
from .timeline import (
    AudioClip,
    AudioTrack,
    Clip,
    FilterEffect,
    KenBurnsEffect,
    NormalizedRect,
    Timeline,
    Transition,
    VideoTrack,
)
from .render import OutputSettings, RenderJob, RenderStatus
from .episode import (
    AudioAsset,
    CompositionOutput,
    CompositionState,
    DialogueAsset,
    DialogueLine,
    EpisodeComposition,
    GenerationPhase,
    ProgressEvent,
    Shot,
    WordTimestamp,
)

__all__ = [
    # Generation models
    "BatchProgress",
    "CapabilityFlags",
    "GenerationJob",
    "GenerationRequest",
    "JobStatus",
    "ProviderProfile",
    # Timeline models
    "AudioClip",
    "AudioTrack",
    "Clip",
    "FilterEffect",
    "KenBurnsEffect",
    "NormalizedRect",
    "Timeline",
    "Transition",
    "VideoTrack",
    # Render models
    "OutputSettings",
    "RenderJob",
    "RenderStatus",
    # Episode models
    "AudioAsset",
    "CompositionOutput",
    "CompositionState",
    "DialogueAsset",
    "DialogueLine",
    "EpisodeComposition",
    "GenerationPhase",
    "ProgressEvent",
    "Shot",
    "WordTimestamp",
]
