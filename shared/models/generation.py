"""
Video generation data models.

Defines GenerationRequest, ProviderProfile, GenerationJob and BatchProgress.
"""

import hashlib
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CapabilityFlags(BaseModel):
    """Optional features a provider supports."""

    model_config = ConfigDict(frozen=True)

    audio: bool = False
    lip_sync: bool = False
    motion_brush: bool = False
    interpolation: bool = False


class ProviderProfile(BaseModel):
    """Static description of one generation backend."""

    model_config = ConfigDict(frozen=True)

    id: str
    tier: Literal["budget", "standard", "premium"]
    max_duration_seconds: float = Field(ge=0)
    supported_resolutions: List[str]
    max_concurrent_jobs: int = Field(ge=1)
    cost_per_second: Decimal = Field(ge=0)
    capability_flags: CapabilityFlags = Field(default_factory=CapabilityFlags)
    backend: Literal["replicate", "kling", "runway"] = "replicate"
    model: str = Field(description="Backend model identifier (e.g. replicate owner/name)")
    supported_aspect_ratios: List[str] = Field(default_factory=lambda: ["16:9", "9:16", "1:1"])
    supported_durations: List[int] = Field(
        default_factory=list,
        description="Discrete durations the backend accepts; empty means continuous"
    )
    parameter_names: Dict[str, str] = Field(
        default_factory=dict,
        description="Backend input field names keyed by prompt, image, duration, resolution, negative_prompt"
    )

    def supports(self, capability: str) -> bool:
        return bool(getattr(self.capability_flags, capability, False))

    @field_serializer("cost_per_second")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)


class GenerationRequest(BaseModel):
    """Request to turn one shot's still image into a video clip. Immutable."""

    model_config = ConfigDict(frozen=True)

    shot_id: str
    source_image_ref: str
    target_duration_seconds: float = Field(gt=0)
    motion_description: str
    camera_instruction: str = ""
    negative_prompt: str = ""
    provider_hint: Optional[str] = None
    resolution: str = "720p"
    aspect_ratio: str = "16:9"
    mood: str = ""
    required_capabilities: Tuple[str, ...] = Field(
        default=(),
        description="Capability flag names the provider must support, e.g. ('lip_sync',)"
    )

    @field_validator("required_capabilities", mode="before")
    @classmethod
    def to_tuple(cls, v):
        return tuple(v or ())

    @property
    def idempotency_key(self) -> str:
        """Stable digest of the request contents."""
        return hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()


class JobStatus(str, Enum):
    QUEUED = "queued"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
IN_FLIGHT_STATUSES = frozenset({JobStatus.SUBMITTED, JobStatus.POLLING})

_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.SUBMITTED: 1,
    JobStatus.POLLING: 2,
    JobStatus.COMPLETED: 3,
    JobStatus.FAILED: 3,
    JobStatus.CANCELLED: 3,
}


class GenerationJob(BaseModel):
    """One request's journey through a provider."""

    id: UUID = Field(default_factory=uuid4)
    request: GenerationRequest
    provider_id: str
    status: JobStatus = JobStatus.QUEUED
    attempts: int = Field(default=0, ge=0, description="Provider submissions made")
    result_asset_url: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    fallback_provider_id: Optional[str] = None
    prompt_score: Optional[int] = None
    estimated_cost: Decimal = Decimal("0")
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def shot_id(self) -> str:
        return self.request.shot_id

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, status: JobStatus) -> bool:
        """
        Move forward to ``status``.

        Returns False (and changes nothing) when the job is already at or past
        that point, so states are never revisited.
        """
        if self.status.is_terminal or status.rank <= self.status.rank:
            return False
        self.status = status
        if status.is_terminal:
            self.completed_at = utcnow()
        return True

    def complete(self, asset_url: str) -> None:
        if self.advance(JobStatus.COMPLETED):
            self.result_asset_url = asset_url

    def fail(self, kind: str, message: str) -> None:
        if self.advance(JobStatus.FAILED):
            self.error_kind = kind
            self.error_message = message

    def mark_cancelled(self) -> None:
        if self.advance(JobStatus.CANCELLED):
            self.error_kind = "cancelled"

    @field_serializer("id")
    def serialize_uuid(self, value: UUID) -> str:
        """Serialize UUID to string."""
        return str(value)

    @field_serializer("estimated_cost")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)

    @field_serializer("created_at", "completed_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        return value.isoformat() if value else None


class BatchProgress(BaseModel):
    """Point-in-time counts for one BatchRun."""

    queued: int = 0
    in_flight: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0

    @property
    def finished(self) -> bool:
        return self.completed + self.failed + self.cancelled == self.total

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return int((self.completed + self.failed + self.cancelled) * 100 / self.total)
