"""
Collaborator interfaces for episode assembly.

The assembler reads shots from an upstream image pipeline and asks an audio
service for dialogue, music and lip-sync. Both are injected so they can be swapped
for HTTP clients, database readers or test doubles.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from shared.errors import ValidationError
from shared.models.episode import AudioAsset, DialogueAsset, DialogueLine, Shot


class ShotSource(ABC):
    """Upstream provider of an episode's shots."""

    @abstractmethod
    async def fetch_shots(self, episode_id: str) -> List[Shot]:
        """All shots of ``episode_id`` in any order."""


class AudioCollaborator(ABC):
    """Speech and music synthesis, plus lip-sync of voiced shots."""

    @abstractmethod
    async def synthesize_dialogue(self, line: DialogueLine, mood_tags: List[str]) -> AudioAsset:
        """Voice one dialogue line with the character's voice."""

    @abstractmethod
    async def synthesize_music(
        self,
        scene_id: str,
        mood_tags: List[str],
        duration_seconds: float,
        intensity: float,
    ) -> AudioAsset:
        """Score one scene."""

    async def synthesize_lip_sync(self, video_url: str, dialogue: List[DialogueAsset]) -> str:
        """
        Re-time the mouths in ``video_url`` to the shot's voiced lines.

        Returns the lip-synced clip URL. Services without lip-sync keep the
        clip as it is.
        """
        return video_url

    async def aclose(self) -> None:
        """Release network resources, if any."""


class InMemoryShotSource(ShotSource):
    """Shots registered in process, keyed by episode id."""

    def __init__(self, episodes: Optional[Dict[str, Iterable[Shot]]] = None):
        self._episodes: Dict[str, List[Shot]] = {
            episode_id: list(shots) for episode_id, shots in (episodes or {}).items()
        }

    def put_shots(self, episode_id: str, shots: Iterable[Shot]) -> None:
        self._episodes[episode_id] = list(shots)

    async def fetch_shots(self, episode_id: str) -> List[Shot]:
        if episode_id not in self._episodes:
            raise ValidationError(f"Unknown episode: {episode_id}")
        return [shot.model_copy(deep=True) for shot in self._episodes[episode_id]]
