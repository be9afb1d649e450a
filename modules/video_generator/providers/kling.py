"""
Kling backend.

Direct REST API. Task statuses: submitted, processing, succeed, failed.
Errors come back as a numeric ``code`` in the JSON envelope.
"""
from typing import Any, Dict, Optional

import httpx

from shared.config import settings
from shared.errors import (
    ConfigError,
    ContentPolicyError,
    GenerationError,
    PipelineError,
    QuotaExhaustedError,
    RateLimitError,
    RetryableError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models.generation import GenerationRequest, JobStatus, ProviderProfile
from modules.prompt_optimizer import ProviderPrompt

from .base import JobHandle, ProviderStatus, classify_failure
from .http import HttpVideoProvider

logger = get_logger("video_generator.kling")

TASK_PATH = "/v1/videos/image2video"

STATUS_MAP = {
    "submitted": JobStatus.SUBMITTED,
    "processing": JobStatus.POLLING,
    "succeed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
}

# Camera control presets accepted by the API
CAMERA_PRESETS = {
    "zoom in": "forward_up",
    "zoom out": "down_back",
    "pan left": "left_turn_forward",
    "pan right": "right_turn_forward",
}


def error_for_code(code: int, message: str, provider_id: str) -> PipelineError:
    """Translate a Kling envelope code."""
    if code in (1000, 1001, 1002, 1003, 1004):
        return ConfigError(f"Kling authentication failed ({code}): {message}", provider_id=provider_id)
    if code in (1100, 1101, 1102):
        return QuotaExhaustedError(f"Kling account issue ({code}): {message}", provider_id=provider_id)
    if code == 1301:
        return ContentPolicyError(f"Kling content policy ({code}): {message}", provider_id=provider_id)
    if code in (1302, 1303, 1304):
        return RateLimitError(f"Kling rate limit ({code}): {message}", provider_id=provider_id)
    if 1200 <= code < 1300:
        return ValidationError(f"Kling rejected parameters ({code}): {message}", provider_id=provider_id)
    if code >= 5000:
        return RetryableError(f"Kling server error ({code}): {message}", provider_id=provider_id)
    return classify_failure(f"{code} {message}", provider_id)


class KlingProvider(HttpVideoProvider):
    """Kling image-to-video API."""

    def __init__(
        self,
        profile: ProviderProfile,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = api_key or settings.kling_api_key
        if not api_key:
            raise ConfigError("KLING_API_KEY is required", provider_id=profile.id)
        super().__init__(
            profile,
            base_url=settings.kling_base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def _call(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = await self.request_json(method, path, json=json)
        code = body.get("code", 0)
        if code != 0:
            raise error_for_code(code, body.get("message", ""), self.provider_id)
        return body.get("data") or {}

    def build_payload(self, request: GenerationRequest, prompt: ProviderPrompt) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model_name": self.profile.model,
            "image": request.source_image_ref,
            "prompt": prompt.text,
            "duration": str(self.backend_duration(request.target_duration_seconds)),
            "mode": "pro" if request.resolution == "1080p" else "std",
        }
        if prompt.negative_prompt:
            payload["negative_prompt"] = prompt.negative_prompt
        camera = request.camera_instruction.lower()
        for move, preset in CAMERA_PRESETS.items():
            if move in camera:
                payload["camera_control"] = {"type": preset}
                break
        return payload

    async def submit(self, request: GenerationRequest, prompt: ProviderPrompt) -> JobHandle:
        self.validate_request(request)
        data = await self._call("POST", TASK_PATH, json=self.build_payload(request, prompt))
        task_id = data.get("task_id")
        if not task_id:
            raise GenerationError("Kling returned no task_id", provider_id=self.provider_id)
        logger.info(f"Submitted Kling task {task_id}", extra={"provider_id": self.provider_id, "task_id": task_id})
        return JobHandle(provider_id=self.provider_id, remote_id=task_id)

    async def poll_status(self, handle: JobHandle) -> ProviderStatus:
        data = await self._call("GET", f"{TASK_PATH}/{handle.remote_id}")
        raw_status = data.get("task_status")
        status = STATUS_MAP.get(raw_status)
        if status is None:
            raise GenerationError(f"Unknown Kling status {raw_status!r}", provider_id=self.provider_id)
        if status == JobStatus.COMPLETED:
            handle.data["result"] = data.get("task_result") or {}
        error = None
        if status == JobStatus.FAILED:
            error = classify_failure(data.get("task_status_msg", "unknown failure"), self.provider_id)
        return ProviderStatus(status=status, error=error)

    async def fetch_result(self, handle: JobHandle) -> str:
        result = handle.data.get("result")
        if result is None:
            data = await self._call("GET", f"{TASK_PATH}/{handle.remote_id}")
            result = data.get("task_result") or {}
        videos = result.get("videos") or []
        if not videos or not videos[0].get("url"):
            raise GenerationError(f"Kling task {handle.remote_id} has no video", provider_id=self.provider_id)
        return videos[0]["url"]

    async def cancel(self, handle: JobHandle) -> None:
        # The Kling API has no cancel endpoint; the task runs to completion remotely
        logger.info(
            f"Kling task {handle.remote_id} cannot be cancelled remotely, abandoning it",
            extra={"provider_id": self.provider_id, "task_id": handle.remote_id}
        )
