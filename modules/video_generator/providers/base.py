"""
Provider interface.

Every generation backend implements submit/poll_status/fetch_result/cancel
and translates its own status and error vocabulary into JobStatus and the
shared error taxonomy. Nothing backend-specific leaves an adapter.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from shared.errors import (
    ContentPolicyError,
    GenerationError,
    PipelineError,
    QuotaExhaustedError,
    RateLimitError,
    RetryableError,
    UnsupportedRequestError,
)
from shared.logging import get_logger
from shared.models.generation import GenerationRequest, JobStatus, ProviderProfile
from modules.prompt_optimizer import ProviderPrompt

logger = get_logger("video_generator.providers")


@dataclass
class JobHandle:
    """Opaque reference to one remote generation."""

    provider_id: str
    remote_id: str
    submitted_at: float = field(default_factory=time.monotonic)
    # Adapter-private state (e.g. output already seen while polling)
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderStatus:
    """Normalized poll result."""

    status: JobStatus
    progress: Optional[float] = None
    error: Optional[PipelineError] = None


def classify_failure(message: str, provider_id: Optional[str] = None) -> PipelineError:
    """
    Map a provider failure message to the error taxonomy.

    Rate limits, timeouts, network faults and provider-side internal errors
    are transient; content moderation and unsupported parameters are
    capability errors; exhausted credits are fatal.
    """
    text = (message or "").lower()
    if "rate limit" in text or "429" in text or "too many requests" in text:
        return RateLimitError(f"Rate limited: {message}", provider_id=provider_id)
    if "timeout" in text or "timed out" in text:
        return RetryableError(f"Timeout: {message}", provider_id=provider_id)
    if any(k in text for k in ("network", "connection", "econnreset")):
        return RetryableError(f"Network error: {message}", provider_id=provider_id)
    if any(k in text for k in ("internal error", "try again", "overloaded", "unavailable", "502", "503", "500")):
        return RetryableError(f"Provider error (transient): {message}", provider_id=provider_id)
    if any(k in text for k in ("nsfw", "sensitive", "content policy", "moderation", "safety", "flagged")):
        return ContentPolicyError(f"Content policy rejection: {message}", provider_id=provider_id)
    if any(k in text for k in ("unsupported", "not supported", "invalid duration", "invalid resolution")):
        return UnsupportedRequestError(f"Unsupported request: {message}", provider_id=provider_id)
    if any(k in text for k in ("quota", "insufficient credit", "billing", "payment required", "balance")):
        return QuotaExhaustedError(f"Quota exhausted: {message}", provider_id=provider_id)
    return GenerationError(f"Generation failed: {message}", provider_id=provider_id)


class VideoProvider(ABC):
    """One external video generation backend."""

    def __init__(self, profile: ProviderProfile):
        self.profile = profile

    @property
    def provider_id(self) -> str:
        return self.profile.id

    def validate_request(self, request: GenerationRequest) -> None:
        """
        Check the request against the profile before any network call.

        Raises:
            UnsupportedRequestError: Duration, resolution, aspect ratio or
                capability is outside what this provider supports
        """
        profile = self.profile
        if request.target_duration_seconds > profile.max_duration_seconds:
            raise UnsupportedRequestError(
                f"{profile.id} supports at most {profile.max_duration_seconds}s, "
                f"requested {request.target_duration_seconds}s",
                provider_id=profile.id,
            )
        if request.resolution not in profile.supported_resolutions:
            raise UnsupportedRequestError(
                f"{profile.id} does not support {request.resolution} "
                f"(supported: {', '.join(profile.supported_resolutions)})",
                provider_id=profile.id,
            )
        if request.aspect_ratio not in profile.supported_aspect_ratios:
            raise UnsupportedRequestError(
                f"{profile.id} does not support aspect ratio {request.aspect_ratio}",
                provider_id=profile.id,
            )
        for capability in request.required_capabilities:
            if not profile.supports(capability):
                raise UnsupportedRequestError(
                    f"{profile.id} lacks capability {capability}",
                    provider_id=profile.id,
                )

    def backend_duration(self, target: float) -> int:
        """Smallest accepted duration covering ``target``."""
        durations = sorted(self.profile.supported_durations)
        for duration in durations:
            if duration >= target:
                return duration
        if durations:
            return durations[-1]
        return max(1, int(round(min(target, self.profile.max_duration_seconds))))

    @abstractmethod
    async def submit(self, request: GenerationRequest, prompt: ProviderPrompt) -> JobHandle:
        """Start a remote generation."""

    @abstractmethod
    async def poll_status(self, handle: JobHandle) -> ProviderStatus:
        """Fetch and normalize the current remote status."""

    @abstractmethod
    async def fetch_result(self, handle: JobHandle) -> str:
        """Return the URL of the finished video."""

    @abstractmethod
    async def cancel(self, handle: JobHandle) -> None:
        """Ask the backend to stop the generation."""

    async def aclose(self) -> None:
        """Release network resources."""


async def run_blocking(func: Callable[[], Any]) -> Any:
    """Run a blocking SDK call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)
