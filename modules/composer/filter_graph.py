"""
Video filter graph for the concat stage.

Each clip gets a normalization chain (trim, scale/pad to the output frame,
fps, pixel format) followed by its effects. Adjacent clips are then joined
left to right: ``concat`` for cuts, ``xfade`` for overlapping transitions.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from shared.models.render import OutputSettings
from shared.models.timeline import (
    EPSILON,
    Clip,
    FilterEffect,
    KenBurnsEffect,
    VideoTrack,
    transition_between,
)

from .config import STILL_IMAGE_EXTENSIONS, XFADE_TRANSITIONS

# Easing curves over the progress expression {p} in [0, 1]
EASING_EXPRESSIONS = {
    "linear": "{p}",
    "ease_in": "{p}*{p}",
    "ease_out": "1-(1-{p})*(1-{p})",
    "ease_in_out": "if(lt({p},0.5),2*{p}*{p},1-pow(-2*{p}+2,2)/2)",
}

SEPIA_MATRIX = (
    0.393, 0.769, 0.189,
    0.349, 0.686, 0.168,
    0.272, 0.534, 0.131,
)
IDENTITY_MATRIX = (
    1.0, 0.0, 0.0,
    0.0, 1.0, 0.0,
    0.0, 0.0, 1.0,
)


def fmt(value: float) -> str:
    """Compact decimal for filter arguments."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


@dataclass
class FilterGraph:
    """ffmpeg input arguments plus the filter_complex that consumes them."""

    inputs: List[str] = field(default_factory=list)
    chains: List[str] = field(default_factory=list)
    output_label: str = ""
    duration: float = 0.0

    @property
    def filter_complex(self) -> str:
        return ";".join(self.chains)


def ken_burns_filter(effect: KenBurnsEffect, duration: float, output: OutputSettings) -> str:
    """zoompan moving from start_rect to end_rect; zoom follows rect width."""
    frames = max(1, round(duration * output.fps))
    progress = f"min(on/{frames - 1},1)" if frames > 1 else "1"
    eased = "(" + EASING_EXPRESSIONS[effect.easing].format(p=progress) + ")"

    start, end = effect.start_rect, effect.end_rect
    width = f"({fmt(start.width)}+{fmt(end.width - start.width)}*{eased})"
    x = f"iw*({fmt(start.x)}+{fmt(end.x - start.x)}*{eased})"
    y = f"ih*({fmt(start.y)}+{fmt(end.y - start.y)}*{eased})"
    return (
        f"zoompan=z='1/{width}':x='{x}':y='{y}'"
        f":d=1:s={output.width}x{output.height}:fps={output.fps}"
    )


def effect_filter(effect: FilterEffect) -> str:
    strength = effect.intensity
    if effect.type == "vignette":
        return f"vignette=angle={fmt(0.1 + 0.7 * strength)}"
    if effect.type == "film_grain":
        return f"noise=alls={round(4 + 36 * strength)}:allf=t+u"
    if effect.type == "blur":
        return f"gblur=sigma={fmt(0.5 + 9.5 * strength)}"
    if effect.type == "sharpen":
        return f"unsharp=5:5:{fmt(0.3 + 1.7 * strength)}"
    if effect.type == "sepia":
        # Blend toward the sepia matrix by intensity
        coefficients = [
            fmt(identity + (sepia - identity) * strength)
            for identity, sepia in zip(IDENTITY_MATRIX, SEPIA_MATRIX)
        ]
        rows = [coefficients[i:i + 3] + ["0"] for i in range(0, 9, 3)]
        return "colorchannelmixer=" + ":".join(c for row in rows for c in row)
    if effect.type == "black_and_white":
        return f"hue=s={fmt(1 - strength)}"
    raise ValueError(f"Unknown effect type: {effect.type}")


def is_still_image(path: Path) -> bool:
    return path.suffix.lower() in STILL_IMAGE_EXTENSIONS


def clip_chain(
    index: int,
    clip: Clip,
    output: OutputSettings,
    pad_before: float = 0.0,
    pad_after: float = 0.0,
    fade_in: float = 0.0,
    fade_out: float = 0.0,
) -> str:
    """Normalization plus effects for input ``index``, labelled ``v{index}``."""
    duration = clip.duration_seconds
    parts = [
        f"trim=duration={fmt(duration)}",
        "setpts=PTS-STARTPTS",
        f"scale={output.width}:{output.height}:force_original_aspect_ratio=decrease",
        f"pad={output.width}:{output.height}:(ow-iw)/2:(oh-ih)/2:color=black",
        "setsar=1",
        f"fps={output.fps}",
        "format=yuv420p",
    ]
    for effect in clip.effects:
        if isinstance(effect, KenBurnsEffect):
            parts.append(ken_burns_filter(effect, duration, output))
        else:
            parts.append(effect_filter(effect))
    if fade_in > 0:
        parts.append(f"fade=t=in:st=0:d={fmt(min(fade_in, duration))}")
    if fade_out > 0:
        fade_out = min(fade_out, duration)
        parts.append(f"fade=t=out:st={fmt(duration - fade_out)}:d={fmt(fade_out)}")
    if pad_before > EPSILON or pad_after > EPSILON:
        parts.append(
            f"tpad=start_duration={fmt(pad_before)}:stop_duration={fmt(pad_after)}:color=black"
        )
    return f"[{index}:v]{','.join(parts)}[v{index}]"


def build_video_graph(track: VideoTrack, sources: Dict[str, Path], output: OutputSettings) -> FilterGraph:
    """
    Filter graph rendering ``track`` into a single video stream.

    Leading and inter-clip gaps are filled with black. The episode opens
    with the first clip's transition_in and closes with the last clip's
    transition_out as fades from and to black.

    Args:
        track: Video track to render
        sources: Local file for each clip's source_asset_url
        output: Frame size and rate

    Returns:
        FilterGraph whose output label carries the joined stream
    """
    graph = FilterGraph()
    clips = track.clips
    lengths: List[float] = []

    for index, clip in enumerate(clips):
        path = sources[clip.source_asset_url]
        if is_still_image(path):
            graph.inputs += [
                "-loop", "1",
                "-framerate", str(output.fps),
                "-t", fmt(clip.duration_seconds),
                "-i", str(path),
            ]
        else:
            graph.inputs += ["-i", str(path)]

        pad_before = clip.start_offset if index == 0 else 0.0
        pad_after = 0.0
        if index + 1 < len(clips):
            pad_after = max(0.0, clips[index + 1].start_offset - clip.end_offset)

        fade_in = clip.transition_in.duration_seconds if index == 0 and clip.transition_in.overlaps else 0.0
        fade_out = (
            clip.transition_out.duration_seconds
            if index == len(clips) - 1 and clip.transition_out.overlaps
            else 0.0
        )
        graph.chains.append(clip_chain(index, clip, output, pad_before, pad_after, fade_in, fade_out))
        lengths.append(pad_before + clip.duration_seconds + pad_after)

    label = "v0"
    length = lengths[0]
    for index in range(1, len(clips)):
        out = f"j{index}"
        overlap = track.overlap_seconds(index)
        if overlap > 0:
            transition = transition_between(clips[index - 1], clips[index])
            name = XFADE_TRANSITIONS.get(transition.type, "fade")
            graph.chains.append(
                f"[{label}][v{index}]xfade=transition={name}"
                f":duration={fmt(overlap)}:offset={fmt(length - overlap)}[{out}]"
            )
            length += lengths[index] - overlap
        else:
            graph.chains.append(f"[{label}][v{index}]concat=n=2:v=1:a=0[{out}]")
            length += lengths[index]
        label = out

    graph.output_label = label
    graph.duration = length
    return graph
