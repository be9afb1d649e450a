"""
HTTP client for the audio synthesis service.

POST /v1/dialogue and POST /v1/music both answer with
``{audio_url, duration_seconds, words: [{word, start, end}]}``. POST
/v1/lip-sync takes a shot clip and its voiced lines and answers with
``{video_url}``.
"""
from typing import Any, Dict, List, Optional

import httpx

from shared.config import settings
from shared.errors import ConfigError, ValidationError
from shared.logging import get_logger
from shared.models.episode import AudioAsset, DialogueAsset, DialogueLine, WordTimestamp
from shared.retry import RetryOptions, classify_http_error, execute

from .collaborators import AudioCollaborator

logger = get_logger("episode_assembler.audio_client")


def parse_audio_response(data: Dict[str, Any]) -> AudioAsset:
    """
    Build an AudioAsset from a service response.

    Raises:
        ValidationError: Response lacks the audio URL or duration
    """
    if not data.get("audio_url") or not data.get("duration_seconds"):
        raise ValidationError(f"Audio service returned an incomplete asset: {data}")
    return AudioAsset(
        url=data["audio_url"],
        duration_seconds=float(data["duration_seconds"]),
        words=[WordTimestamp(**word) for word in data.get("words") or []],
    )


class HttpAudioClient(AudioCollaborator):
    """AudioCollaborator backed by the audio service REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_options: Optional[RetryOptions] = None,
    ):
        base_url = base_url or settings.audio_service_url
        if not base_url:
            raise ConfigError("AUDIO_SERVICE_URL is required")
        api_key = api_key or settings.audio_service_api_key
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=settings.provider_request_timeout,
            transport=transport,
        )
        self.retry_options = retry_options

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async def call() -> Dict[str, Any]:
            try:
                response = await self.http.post(path, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise classify_http_error(e) from e
            return response.json()

        return await execute(call, self.retry_options or RetryOptions.from_settings(f"audio{path}"))

    async def synthesize_dialogue(self, line: DialogueLine, mood_tags: List[str]) -> AudioAsset:
        asset = parse_audio_response(await self._post("/v1/dialogue", {
            "line_id": line.line_id,
            "character_id": line.character_id,
            "voice_id": line.voice_id,
            "text": line.text,
            "mood_tags": sorted(set(line.mood_tags) | set(mood_tags)),
        }))
        logger.info(
            f"Synthesized dialogue line {line.line_id} ({asset.duration_seconds:.2f}s)",
            extra={"line_id": line.line_id, "voice_id": line.voice_id}
        )
        return asset

    async def synthesize_music(
        self,
        scene_id: str,
        mood_tags: List[str],
        duration_seconds: float,
        intensity: float,
    ) -> AudioAsset:
        asset = parse_audio_response(await self._post("/v1/music", {
            "scene_id": scene_id,
            "mood_tags": mood_tags,
            "duration_seconds": duration_seconds,
            "intensity": intensity,
        }))
        logger.info(
            f"Synthesized music for scene {scene_id} ({asset.duration_seconds:.2f}s)",
            extra={"scene_id": scene_id}
        )
        return asset

    async def synthesize_lip_sync(self, video_url: str, dialogue: List[DialogueAsset]) -> str:
        if not dialogue:
            return video_url
        shot_id = dialogue[0].shot_id
        data = await self._post("/v1/lip-sync", {
            "shot_id": shot_id,
            "video_url": video_url,
            "lines": [
                {
                    "line_id": line.line_id,
                    "audio_url": line.asset.url,
                    "start_offset": line.start_offset,
                    "words": [word.model_dump() for word in line.asset.words],
                }
                for line in sorted(dialogue, key=lambda d: d.start_offset)
            ],
        })
        if not data.get("video_url"):
            raise ValidationError(f"Lip-sync service returned no video for shot {shot_id}: {data}")
        logger.info(f"Lip-synced shot {shot_id}", extra={"shot_id": shot_id, "lines": len(dialogue)})
        return data["video_url"]

    async def aclose(self) -> None:
        await self.http.aclose()
