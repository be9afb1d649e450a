"""
Runway backend.

Task statuses: PENDING, THROTTLED, RUNNING, SUCCEEDED, FAILED, CANCELLED.
Failures carry a ``failureCode``; SAFETY codes are content-policy
rejections, INTERNAL codes are transient.
"""
from typing import Any, Dict, Optional

import httpx

from shared.config import settings
from shared.errors import (
    ConfigError,
    ContentPolicyError,
    GenerationError,
    PipelineError,
    RetryableError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models.generation import GenerationRequest, JobStatus, ProviderProfile
from modules.prompt_optimizer import ProviderPrompt

from .base import JobHandle, ProviderStatus, classify_failure
from .http import HttpVideoProvider

logger = get_logger("video_generator.runway")

STATUS_MAP = {
    "PENDING": JobStatus.SUBMITTED,
    "THROTTLED": JobStatus.SUBMITTED,
    "RUNNING": JobStatus.POLLING,
    "SUCCEEDED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
    "CANCELLED": JobStatus.CANCELLED,
}

# Output ratio per (resolution, aspect ratio)
RATIOS = {
    ("720p", "16:9"): "1280:720",
    ("720p", "9:16"): "720:1280",
    ("720p", "1:1"): "960:960",
}


def error_for_failure(code: Optional[str], message: str, provider_id: str) -> PipelineError:
    code = (code or "").upper()
    if "SAFETY" in code:
        return ContentPolicyError(f"Runway content policy ({code}): {message}", provider_id=provider_id)
    if code.startswith("INTERNAL"):
        return RetryableError(f"Runway internal error ({code}): {message}", provider_id=provider_id)
    if code.startswith("ASSET") or code.startswith("INPUT"):
        return ValidationError(f"Runway rejected input ({code}): {message}", provider_id=provider_id)
    return classify_failure(f"{code} {message}".strip(), provider_id)


class RunwayProvider(HttpVideoProvider):
    """Runway image-to-video API."""

    def __init__(
        self,
        profile: ProviderProfile,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = api_key or settings.runway_api_key
        if not api_key:
            raise ConfigError("RUNWAY_API_KEY is required", provider_id=profile.id)
        super().__init__(
            profile,
            base_url=settings.runway_base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "X-Runway-Version": settings.runway_api_version,
            },
            transport=transport,
        )

    def build_payload(self, request: GenerationRequest, prompt: ProviderPrompt) -> Dict[str, Any]:
        return {
            "model": self.profile.model,
            "promptImage": request.source_image_ref,
            "promptText": prompt.text,
            "duration": self.backend_duration(request.target_duration_seconds),
            "ratio": RATIOS.get((request.resolution, request.aspect_ratio), "1280:720"),
        }

    async def submit(self, request: GenerationRequest, prompt: ProviderPrompt) -> JobHandle:
        self.validate_request(request)
        body = await self.request_json("POST", "/v1/image_to_video", json=self.build_payload(request, prompt))
        task_id = body.get("id")
        if not task_id:
            raise GenerationError("Runway returned no task id", provider_id=self.provider_id)
        logger.info(f"Submitted Runway task {task_id}", extra={"provider_id": self.provider_id, "task_id": task_id})
        return JobHandle(provider_id=self.provider_id, remote_id=task_id)

    async def poll_status(self, handle: JobHandle) -> ProviderStatus:
        body = await self.request_json("GET", f"/v1/tasks/{handle.remote_id}")
        status = STATUS_MAP.get(body.get("status"))
        if status is None:
            raise GenerationError(f"Unknown Runway status {body.get('status')!r}", provider_id=self.provider_id)
        if status == JobStatus.COMPLETED:
            handle.data["output"] = body.get("output") or []
        error = None
        if status == JobStatus.FAILED:
            error = error_for_failure(body.get("failureCode"), body.get("failure", ""), self.provider_id)
        return ProviderStatus(status=status, progress=body.get("progress"), error=error)

    async def fetch_result(self, handle: JobHandle) -> str:
        output = handle.data.get("output")
        if output is None:
            body = await self.request_json("GET", f"/v1/tasks/{handle.remote_id}")
            output = body.get("output") or []
        if not output:
            raise GenerationError(f"Runway task {handle.remote_id} has no output", provider_id=self.provider_id)
        return output[0]

    async def cancel(self, handle: JobHandle) -> None:
        await self.request_json("DELETE", f"/v1/tasks/{handle.remote_id}")
