"""
Timeline data models.

Declarative description of an assembled episode: video tracks of clips with
transitions and effects, plus audio tracks of gain-adjusted clips.

Overlap formula: a non-cut transition of duration T between two adjacent
clips (the second starts exactly where the first ends) overlaps
min(T, first.duration, second.duration) seconds in the rendered output.
The rendered duration of a video track is its track duration minus the sum of
those overlaps.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field, model_validator

from shared.errors import ValidationError

# Tolerance for floating point offsets
EPSILON = 1e-6

TransitionType = Literal[
    "cut", "crossfade", "fade_black", "wipe_left", "wipe_right", "wipe_up", "wipe_down"
]
Easing = Literal["linear", "ease_in", "ease_out", "ease_in_out"]


class Transition(BaseModel):
    """Transition into or out of a clip."""

    type: TransitionType = "cut"
    duration_seconds: float = Field(default=0.0, ge=0)

    @property
    def overlaps(self) -> bool:
        return self.type != "cut" and self.duration_seconds > 0


CUT = Transition()


class NormalizedRect(BaseModel):
    """Crop rectangle in [0, 1] source coordinates."""

    x: float = Field(default=0.0, ge=0, le=1)
    y: float = Field(default=0.0, ge=0, le=1)
    width: float = Field(default=1.0, gt=0, le=1)
    height: float = Field(default=1.0, gt=0, le=1)

    @model_validator(mode="after")
    def check_bounds(self) -> "NormalizedRect":
        if self.x + self.width > 1 + EPSILON or self.y + self.height > 1 + EPSILON:
            raise ValidationError(f"Crop rectangle leaves the frame: {self}")
        return self


class KenBurnsEffect(BaseModel):
    """Pan/zoom from one crop rectangle to another over the clip."""

    type: Literal["ken_burns"] = "ken_burns"
    start_rect: NormalizedRect = Field(default_factory=NormalizedRect)
    end_rect: NormalizedRect = Field(default_factory=NormalizedRect)
    easing: Easing = "ease_in_out"


class FilterEffect(BaseModel):
    """Single-filter look applied to one clip."""

    type: Literal["vignette", "film_grain", "blur", "sharpen", "sepia", "black_and_white"]
    intensity: float = Field(default=0.5, ge=0, le=1)


Effect = Annotated[Union[KenBurnsEffect, FilterEffect], Field(discriminator="type")]


class Clip(BaseModel):
    """Video clip placed on a track."""

    source_asset_url: str
    start_offset: float = Field(ge=0)
    duration_seconds: float = Field(gt=0)
    transition_in: Transition = Field(default_factory=Transition)
    transition_out: Transition = Field(default_factory=Transition)
    effects: List[Effect] = Field(default_factory=list)
    shot_id: Optional[str] = None

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration_seconds


class AudioClip(BaseModel):
    """Audio clip placed on a track."""

    source_asset_url: str
    start_offset: float = Field(ge=0)
    duration_seconds: float = Field(gt=0)
    gain_db: float = 0.0

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration_seconds


def _check_no_overlap(clips, track_name: str) -> None:
    for previous, current in zip(clips, clips[1:]):
        if previous.end_offset > current.start_offset + EPSILON:
            raise ValidationError(
                f"{track_name}: clip at {current.start_offset}s overlaps clip ending at "
                f"{previous.end_offset}s"
            )


def transition_between(previous: Clip, current: Clip) -> Transition:
    """The incoming clip's transition wins unless it is a plain cut."""
    if current.transition_in.type != "cut":
        return current.transition_in
    return previous.transition_out


class VideoTrack(BaseModel):
    """Ordered, non-overlapping sequence of video clips."""

    clips: List[Clip] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_clips(self) -> "VideoTrack":
        _check_no_overlap(self.clips, "video track")
        return self

    @property
    def duration_seconds(self) -> float:
        return max((clip.end_offset for clip in self.clips), default=0.0)

    def overlap_seconds(self, index: int) -> float:
        """Overlap between clip ``index - 1`` and clip ``index``."""
        if index <= 0 or index >= len(self.clips):
            return 0.0
        previous, current = self.clips[index - 1], self.clips[index]
        if current.start_offset - previous.end_offset > EPSILON:
            return 0.0
        transition = transition_between(previous, current)
        if not transition.overlaps:
            return 0.0
        return min(transition.duration_seconds, previous.duration_seconds, current.duration_seconds)

    def rendered_offsets(self) -> List[float]:
        """Start time of each clip in the rendered output."""
        offsets = []
        shift = 0.0
        for index, clip in enumerate(self.clips):
            shift += self.overlap_seconds(index)
            offsets.append(clip.start_offset - shift)
        return offsets

    @property
    def rendered_duration_seconds(self) -> float:
        total_overlap = sum(self.overlap_seconds(i) for i in range(len(self.clips)))
        return max(0.0, self.duration_seconds - total_overlap)


class AudioTrack(BaseModel):
    """Ordered, non-overlapping sequence of audio clips."""

    kind: Literal["dialogue", "music", "sfx"] = "dialogue"
    gain_db: float = 0.0
    clips: List[AudioClip] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_clips(self) -> "AudioTrack":
        _check_no_overlap(self.clips, f"{self.kind} track")
        return self

    @property
    def duration_seconds(self) -> float:
        return max((clip.end_offset for clip in self.clips), default=0.0)


class Timeline(BaseModel):
    """Declarative episode: video tracks composited in order plus mixed audio tracks."""

    video_tracks: List[VideoTrack] = Field(default_factory=list)
    audio_tracks: List[AudioTrack] = Field(default_factory=list)

    @computed_field
    @property
    def total_duration_seconds(self) -> float:
        video = max((t.rendered_duration_seconds for t in self.video_tracks), default=0.0)
        audio = max((t.duration_seconds for t in self.audio_tracks), default=0.0)
        return round(max(video, audio), 6)

    @property
    def primary_track(self) -> VideoTrack:
        if not self.video_tracks or not self.video_tracks[0].clips:
            raise ValidationError("Timeline has no video clips")
        return self.video_tracks[0]

    def audio_clip_count(self) -> int:
        return sum(len(track.clips) for track in self.audio_tracks)
