"""
Composer configuration.

Color-grade presets, output presets, transition names and per-format codecs.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from shared.errors import ValidationError
from shared.models.render import OutputSettings, RenderStatus


@dataclass(frozen=True)
class ColorGrade:
    """Look applied to the whole episode."""

    contrast: float = 1.0
    saturation: float = 1.0
    brightness: float = 0.0  # eq brightness offset, -1..1
    black_level: float = 0.0  # colorlevels input black point, 0..1
    tint: Optional[Tuple[float, float, float]] = None  # colorbalance shadows r/g/b
    vignette: float = 0.0  # 0 disables


COLOR_GRADES: Dict[str, ColorGrade] = {
    "neutral": ColorGrade(),
    "noir": ColorGrade(contrast=1.35, saturation=0.0, brightness=-0.03, black_level=0.06, vignette=0.5),
    "warm_amber": ColorGrade(
        contrast=1.1, saturation=0.85, brightness=-0.05, black_level=0.03,
        tint=(0.0, -0.025, -0.075), vignette=0.5,
    ),
    "cold_steel": ColorGrade(
        contrast=1.3, saturation=0.9, black_level=0.04,
        tint=(-0.025, 0.0, 0.05), vignette=0.2,
    ),
    "flashback": ColorGrade(
        contrast=0.9, saturation=0.5, brightness=0.1,
        tint=(0.0, 0.0, -0.05), vignette=0.6,
    ),
    "combat": ColorGrade(
        contrast=1.4, saturation=1.1, brightness=-0.05, black_level=0.05,
        tint=(0.0, -0.025, -0.025), vignette=0.3,
    ),
    "emotional": ColorGrade(
        saturation=0.8, brightness=-0.1,
        tint=(-0.025, -0.025, 0.0), vignette=0.4,
    ),
}

OUTPUT_PRESETS: Dict[str, OutputSettings] = {
    "preview": OutputSettings(width=854, height=480, fps=24, video_bitrate="1500k", audio_bitrate="128k"),
    "standard": OutputSettings(width=1280, height=720, fps=24, video_bitrate="4000k"),
    "high": OutputSettings(width=1920, height=1080, fps=24, video_bitrate="8000k"),
    "cinema": OutputSettings(width=3840, height=2160, fps=24, video_bitrate="20000k", audio_bitrate="320k"),
}

# Timeline transition type -> ffmpeg xfade transition name
XFADE_TRANSITIONS: Dict[str, str] = {
    "crossfade": "fade",
    "fade_black": "fadeblack",
    "wipe_left": "wipeleft",
    "wipe_right": "wiperight",
    "wipe_up": "wipeup",
    "wipe_down": "wipedown",
}

# Container -> (video codec, audio codec)
FORMAT_CODECS: Dict[str, Tuple[str, str]] = {
    "mp4": ("libx264", "aac"),
    "mov": ("libx264", "aac"),
    "webm": ("libvpx-vp9", "libopus"),
}

# Share of overall render progress owned by each stage
STAGE_WINDOWS: Dict[RenderStatus, Tuple[float, float]] = {
    RenderStatus.BUILDING_CONCAT: (0.0, 35.0),
    RenderStatus.BUILDING_AUDIO_MIX: (35.0, 55.0),
    RenderStatus.BUILDING_GRADE: (55.0, 75.0),
    RenderStatus.ENCODING: (75.0, 100.0),
}

AUDIO_SAMPLE_RATE = 48000
INTERMEDIATE_CRF = 18
STILL_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")


def get_color_grade(name: str) -> ColorGrade:
    try:
        return COLOR_GRADES[name]
    except KeyError:
        raise ValidationError(
            f"Unknown color grade: {name} (expected one of {', '.join(COLOR_GRADES)})"
        ) from None


def get_output_preset(name: str) -> OutputSettings:
    """Copy of a named output preset."""
    try:
        return OUTPUT_PRESETS[name].model_copy()
    except KeyError:
        raise ValidationError(
            f"Unknown output preset: {name} (expected one of {', '.join(OUTPUT_PRESETS)})"
        ) from None
