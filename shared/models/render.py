"""
Render data models.

Defines OutputSettings and the RenderJob state machine.
"""

import asyncio
from enum import Enum
from typing import Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, PrivateAttr, field_serializer

from shared.models.timeline import Timeline


class OutputSettings(BaseModel):
    """Final encode parameters."""

    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)
    fps: int = Field(default=24, gt=0)
    video_bitrate: str = "4000k"
    audio_bitrate: str = "192k"
    format: Literal["mp4", "webm", "mov"] = "mp4"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


class RenderStatus(str, Enum):
    PENDING = "pending"
    BUILDING_CONCAT = "building_concat"
    BUILDING_AUDIO_MIX = "building_audio_mix"
    BUILDING_GRADE = "building_grade"
    ENCODING = "encoding"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStatus.COMPLETED, RenderStatus.FAILED, RenderStatus.CANCELLED)


# Stage order; terminal states sit after every stage
RENDER_STAGES = (
    RenderStatus.PENDING,
    RenderStatus.BUILDING_CONCAT,
    RenderStatus.BUILDING_AUDIO_MIX,
    RenderStatus.BUILDING_GRADE,
    RenderStatus.ENCODING,
)


class RenderJob(BaseModel):
    """One invocation of the composition engine."""

    id: UUID = Field(default_factory=uuid4)
    timeline: Timeline
    output_settings: OutputSettings = Field(default_factory=OutputSettings)
    color_grade: str = "neutral"
    status: RenderStatus = RenderStatus.PENDING
    progress_percent: float = Field(default=0.0, ge=0, le=100)
    output_path: Optional[str] = None
    work_dir: Optional[str] = None
    failed_stage: Optional[RenderStatus] = None
    error: Optional[str] = None

    _task: Optional[asyncio.Task] = PrivateAttr(default=None)
    _cancel_requested: bool = PrivateAttr(default=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def enter_stage(self, stage: RenderStatus) -> None:
        if self.is_terminal:
            raise ValueError(f"Render job {self.id} already {self.status.value}")
        if RENDER_STAGES.index(stage) <= RENDER_STAGES.index(self.status):
            raise ValueError(f"Cannot move render job from {self.status.value} to {stage.value}")
        self.status = stage

    def report_progress(self, percent: float) -> None:
        """Progress only moves forward and freezes once the job is terminal."""
        if self.is_terminal:
            return
        self.progress_percent = max(self.progress_percent, min(100.0, round(percent, 2)))

    def mark_completed(self, output_path: str) -> None:
        self.status = RenderStatus.COMPLETED
        self.progress_percent = 100.0
        self.output_path = output_path

    def mark_failed(self, error: str) -> None:
        if self.is_terminal:
            return
        self.failed_stage = self.status
        self.status = RenderStatus.FAILED
        self.error = error

    def mark_cancelled(self) -> None:
        if self.is_terminal:
            return
        self.status = RenderStatus.CANCELLED

    def attach_task(self, task: Optional[asyncio.Task]) -> None:
        self._task = task

    def cancel(self) -> bool:
        """Request cancellation of the running render. Returns False if nothing is running."""
        if self.is_terminal or self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        self._task.cancel()
        return True

    @field_serializer("id")
    def serialize_uuid(self, value: UUID) -> str:
        """Serialize UUID to string."""
        return str(value)

    def snapshot(self) -> dict:
        """Status fields without the timeline, for persistence."""
        return self.model_dump(mode="json", exclude={"timeline"})
