"""
Episode assembly data models.

Shots handed over by the upstream image collaborator, audio assets returned
by the audio collaborator, and the persisted composition document.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_serializer

from shared.models.generation import BatchProgress, utcnow
from shared.models.timeline import Effect, Transition


class DialogueLine(BaseModel):
    """One spoken line within a shot."""

    line_id: str
    character_id: str
    voice_id: str
    text: str
    start_offset: float = Field(default=0.0, ge=0, description="Seconds from shot start")
    mood_tags: List[str] = Field(default_factory=list)


class Shot(BaseModel):
    """Narrative unit with a resolved still image and, eventually, a video clip."""

    shot_id: str
    scene_id: str
    order: int
    source_image_url: Optional[str] = None
    duration_seconds: float = Field(default=5.0, gt=0)
    motion_description: str = ""
    camera_instruction: str = ""
    negative_prompt: str = ""
    provider_hint: Optional[str] = None
    mood_tags: List[str] = Field(default_factory=list)
    video_url: Optional[str] = None
    dialogue: List[DialogueLine] = Field(default_factory=list)
    score_intensity: float = Field(default=0.0, ge=0, le=1, description="How much the scene needs music")
    transition_in: Optional[Transition] = None
    effects: List[Effect] = Field(default_factory=list)
    animation_type: Optional[Literal["zoom_in", "zoom_out", "pan_left", "pan_right", "static"]] = None
    resolution: str = "720p"


class WordTimestamp(BaseModel):
    word: str
    start: float = Field(ge=0)
    end: float = Field(ge=0)


class AudioAsset(BaseModel):
    """Synthesized audio returned by the audio collaborator."""

    url: str
    duration_seconds: float = Field(gt=0)
    words: List[WordTimestamp] = Field(default_factory=list)

    @property
    def spoken_duration(self) -> float:
        """Duration up to the last word, falling back to the asset length."""
        if self.words:
            return min(self.duration_seconds, max(w.end for w in self.words))
        return self.duration_seconds


class DialogueAsset(BaseModel):
    line_id: str
    shot_id: str
    start_offset: float = 0.0
    asset: AudioAsset


class GenerationPhase(str, Enum):
    FETCH_SHOTS = "fetch_shots"
    GENERATE_VIDEO = "generate_video"
    SYNTHESIZE_AUDIO = "synthesize_audio"
    BUILD_TIMELINE = "build_timeline"
    RENDER = "render"
    PERSIST = "persist"

    @property
    def number(self) -> int:
        return list(GenerationPhase).index(self) + 1


class CompositionState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressEvent(BaseModel):
    episode_id: str
    phase: GenerationPhase
    percent: int = Field(ge=0, le=100)
    message: Optional[str] = None


class EpisodeComposition(BaseModel):
    """Persisted composition state for one episode."""

    episode_id: str
    state: CompositionState = CompositionState.PENDING
    phase: Optional[GenerationPhase] = None
    failed_phase: Optional[GenerationPhase] = None
    error: Optional[Dict] = None
    shot_videos: Dict[str, str] = Field(default_factory=dict)
    failed_shots: List[str] = Field(default_factory=list)
    shot_audio: Dict[str, List[DialogueAsset]] = Field(default_factory=dict)
    lip_sync_videos: Dict[str, str] = Field(default_factory=dict)
    scene_music: Dict[str, AudioAsset] = Field(default_factory=dict)
    batch_progress: Optional[BatchProgress] = None
    render: Optional[Dict] = None
    output_path: Optional[str] = None
    duration_seconds: Optional[float] = None
    total_cost: Decimal = Decimal("0")
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def failure_label(self) -> Optional[str]:
        if self.failed_phase is None:
            return None
        return f"failed at phase {self.failed_phase.number} ({self.failed_phase.value})"

    @field_serializer("total_cost")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)

    @field_serializer("updated_at")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime to ISO format string."""
        return value.isoformat()


class CompositionOutput(BaseModel):
    """Result of assembling one episode."""

    episode_id: str
    output_path: str
    duration_seconds: float
    clip_count: int
    failed_shots: List[str] = Field(default_factory=list)
    total_cost: Decimal = Decimal("0")
    cached: bool = False

    @field_serializer("total_cost")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)
