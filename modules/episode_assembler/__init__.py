"""
Episode Assembler module.

Turns an episode's shots into a finished video: generates missing clips,
synthesizes dialogue and music, builds the timeline and renders it.
"""

from modules.episode_assembler.audio_client import HttpAudioClient
from modules.episode_assembler.collaborators import AudioCollaborator, InMemoryShotSource, ShotSource
from modules.episode_assembler.process import EpisodeAssembler
from modules.episode_assembler.timeline_builder import build_timeline

__all__ = [
    "AudioCollaborator",
    "EpisodeAssembler",
    "HttpAudioClient",
    "InMemoryShotSource",
    "ShotSource",
    "build_timeline",
]
