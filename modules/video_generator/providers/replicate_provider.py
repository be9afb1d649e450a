"""
Replicate backend.

Uses the replicate SDK (blocking calls moved off the event loop). Replicate
statuses: starting, processing, succeeded, failed, canceled.
"""
from typing import Any, Dict, Optional

import replicate
from replicate.exceptions import ModelError, ReplicateError

from shared.config import settings
from shared.errors import (
    ConfigError,
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

from .base import JobHandle, ProviderStatus, VideoProvider, classify_failure, run_blocking

logger = get_logger("video_generator.replicate")

STATUS_MAP = {
    "starting": JobStatus.SUBMITTED,
    "processing": JobStatus.POLLING,
    "succeeded": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.CANCELLED,
}


def extract_output_url(output: Any) -> Optional[str]:
    """Replicate output may be a URL, a FileOutput or a list of either."""
    if isinstance(output, (list, tuple)):
        output = output[0] if output else None
    if output is None:
        return None
    if isinstance(output, str):
        return output
    url = getattr(output, "url", None)
    return str(url) if url else None


class ReplicateProvider(VideoProvider):
    """Image-to-video models hosted on Replicate."""

    def __init__(self, profile: ProviderProfile, client: Optional[replicate.Client] = None):
        super().__init__(profile)
        if client is None:
            if not settings.replicate_api_token:
                raise ConfigError("REPLICATE_API_TOKEN is required", provider_id=profile.id)
            client = replicate.Client(api_token=settings.replicate_api_token)
        self.client = client

    def build_input(self, request: GenerationRequest, prompt: ProviderPrompt) -> Dict[str, Any]:
        """Map the generic request onto the model's input fields."""
        names = self.profile.parameter_names
        payload: Dict[str, Any] = {names.get("prompt", "prompt"): prompt.text}
        payload[names.get("image", "image")] = request.source_image_ref
        if "duration" in names:
            payload[names["duration"]] = self.backend_duration(request.target_duration_seconds)
        if "resolution" in names:
            payload[names["resolution"]] = request.resolution
        if "negative_prompt" in names and prompt.negative_prompt:
            payload[names["negative_prompt"]] = prompt.negative_prompt
        if "aspect_ratio" in names:
            payload[names["aspect_ratio"]] = request.aspect_ratio
        return payload

    def _translate(self, error: Exception) -> PipelineError:
        if isinstance(error, ModelError):
            return classify_failure(str(error), self.provider_id)
        status = getattr(error, "status", None)
        if isinstance(error, ReplicateError) and status is not None:
            if status == 429:
                return RateLimitError(f"Replicate rate limit: {error}", provider_id=self.provider_id)
            if status >= 500:
                return RetryableError(f"Replicate server error: {error}", provider_id=self.provider_id)
            if status == 402:
                return QuotaExhaustedError(f"Replicate billing: {error}", provider_id=self.provider_id)
            if status in (401, 403):
                return ConfigError(f"Replicate rejected credentials: {error}", provider_id=self.provider_id)
            if status in (400, 404, 422):
                return ValidationError(f"Replicate rejected input: {error}", provider_id=self.provider_id)
        return classify_failure(str(error), self.provider_id)

    async def submit(self, request: GenerationRequest, prompt: ProviderPrompt) -> JobHandle:
        self.validate_request(request)
        payload = self.build_input(request, prompt)
        try:
            prediction = await run_blocking(
                lambda: self.client.predictions.create(model=self.profile.model, input=payload)
            )
        except Exception as e:
            raise self._translate(e) from e

        logger.info(
            f"Submitted prediction {prediction.id} to {self.profile.model}",
            extra={"provider_id": self.provider_id, "prediction_id": prediction.id}
        )
        return JobHandle(provider_id=self.provider_id, remote_id=prediction.id)

    async def poll_status(self, handle: JobHandle) -> ProviderStatus:
        try:
            prediction = await run_blocking(lambda: self.client.predictions.get(handle.remote_id))
        except Exception as e:
            raise self._translate(e) from e

        status = STATUS_MAP.get(prediction.status)
        if status is None:
            raise GenerationError(
                f"Unknown Replicate status {prediction.status!r}", provider_id=self.provider_id
            )
        if status == JobStatus.COMPLETED:
            handle.data["output"] = prediction.output
        error = None
        if status == JobStatus.FAILED:
            error = classify_failure(str(prediction.error), self.provider_id)
        return ProviderStatus(status=status, error=error)

    async def fetch_result(self, handle: JobHandle) -> str:
        output = handle.data.get("output")
        if output is None:
            try:
                prediction = await run_blocking(lambda: self.client.predictions.get(handle.remote_id))
            except Exception as e:
                raise self._translate(e) from e
            output = prediction.output
        url = extract_output_url(output)
        if not url:
            raise GenerationError(
                f"Prediction {handle.remote_id} returned no video output", provider_id=self.provider_id
            )
        return url

    async def cancel(self, handle: JobHandle) -> None:
        try:
            await run_blocking(lambda: self.client.predictions.cancel(handle.remote_id))
        except Exception as e:
            raise self._translate(e) from e
