"""
Audio mix graph for composer module.

Every audio clip is trimmed, gain-adjusted (clip gain plus track gain) and
delayed to its timeline offset, then all clips are summed with amix. A
timeline without audio gets a silent bed so later stages always have an
audio stream to mux.
"""
from pathlib import Path
from typing import Dict

from shared.models.timeline import Timeline

from .config import AUDIO_SAMPLE_RATE
from .filter_graph import FilterGraph, fmt


def silence_graph(duration: float) -> FilterGraph:
    return FilterGraph(
        inputs=[
            "-f", "lavfi",
            "-t", fmt(duration),
            "-i", f"anullsrc=channel_layout=stereo:sample_rate={AUDIO_SAMPLE_RATE}",
        ],
        chains=["[0:a]anull[aout]"],
        output_label="aout",
        duration=duration,
    )


def build_audio_graph(timeline: Timeline, sources: Dict[str, Path], duration: float) -> FilterGraph:
    """
    Mix every audio track of ``timeline`` into one stereo stream.

    Args:
        timeline: Timeline whose audio tracks are mixed
        sources: Local file for each clip's source_asset_url
        duration: Length of the mix, padded with silence

    Returns:
        FilterGraph labelled ``aout``
    """
    entries = [(track, clip) for track in timeline.audio_tracks for clip in track.clips]
    if not entries:
        return silence_graph(duration)

    graph = FilterGraph(output_label="aout", duration=duration)
    for index, (track, clip) in enumerate(entries):
        graph.inputs += ["-i", str(sources[clip.source_asset_url])]
        delay_ms = round(clip.start_offset * 1000)
        graph.chains.append(
            f"[{index}:a]atrim=duration={fmt(clip.duration_seconds)},asetpts=PTS-STARTPTS,"
            f"aformat=sample_rates={AUDIO_SAMPLE_RATE}:channel_layouts=stereo,"
            f"volume={fmt(clip.gain_db + track.gain_db)}dB,"
            f"adelay={delay_ms}|{delay_ms}[a{index}]"
        )

    labels = "".join(f"[a{i}]" for i in range(len(entries)))
    # normalize=0 keeps each input at its own gain instead of dividing by N
    graph.chains.append(f"{labels}amix=inputs={len(entries)}:duration=longest:normalize=0,apad[aout]")
    return graph
