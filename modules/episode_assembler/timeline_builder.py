"""
Timeline construction from episode shots and synthesized audio.

Shots are laid end to end in narrative order. Transitions come from the shot
when it declares one, otherwise from settings (a scene transition at scene
boundaries, the default transition elsewhere). Audio is placed in rendered
time, after transition overlaps are taken out.
"""
from typing import Dict, Iterable, List, Optional

from shared.config import settings
from shared.models.episode import AudioAsset, DialogueAsset, Shot
from shared.models.timeline import (
    CUT,
    EPSILON,
    AudioClip,
    AudioTrack,
    Clip,
    KenBurnsEffect,
    NormalizedRect,
    Timeline,
    Transition,
    VideoTrack,
)

FULL_FRAME = NormalizedRect()
INSET_FRAME = NormalizedRect(x=0.05, y=0.05, width=0.9, height=0.9)

KEN_BURNS_PRESETS: Dict[str, KenBurnsEffect] = {
    "zoom_in": KenBurnsEffect(start_rect=FULL_FRAME, end_rect=INSET_FRAME),
    "zoom_out": KenBurnsEffect(start_rect=INSET_FRAME, end_rect=FULL_FRAME),
    "pan_left": KenBurnsEffect(
        start_rect=NormalizedRect(x=0.1, y=0.05, width=0.9, height=0.9),
        end_rect=NormalizedRect(x=0.0, y=0.05, width=0.9, height=0.9),
        easing="linear",
    ),
    "pan_right": KenBurnsEffect(
        start_rect=NormalizedRect(x=0.0, y=0.05, width=0.9, height=0.9),
        end_rect=NormalizedRect(x=0.1, y=0.05, width=0.9, height=0.9),
        easing="linear",
    ),
}


def make_transition(transition_type: str, duration: float) -> Transition:
    if transition_type == "cut":
        return CUT
    return Transition(type=transition_type, duration_seconds=duration)


def default_effects(shot: Shot) -> list:
    """Explicit effects win; otherwise derive a Ken Burns move from the animation type."""
    if shot.effects:
        return list(shot.effects)
    preset = KEN_BURNS_PRESETS.get(shot.animation_type or "")
    return [preset] if preset else []


def assign_lanes(clips: Iterable[AudioClip]) -> List[List[AudioClip]]:
    """Spread clips over as few lanes as possible so no lane has overlaps."""
    lanes: List[List[AudioClip]] = []
    for clip in sorted(clips, key=lambda c: c.start_offset):
        for lane in lanes:
            if lane[-1].end_offset <= clip.start_offset + EPSILON:
                lane.append(clip)
                break
        else:
            lanes.append([clip])
    return lanes


def build_video_track(
    shots: List[Shot],
    shot_videos: Dict[str, str],
    default_transition: Optional[Transition] = None,
    scene_transition: Optional[Transition] = None,
    lip_sync_videos: Optional[Dict[str, str]] = None,
) -> VideoTrack:
    """Lay shots end to end; a lip-synced clip replaces the generated one."""
    default_transition = default_transition or make_transition(
        settings.default_transition, settings.default_transition_duration
    )
    scene_transition = scene_transition or make_transition(
        settings.scene_transition, settings.scene_transition_duration
    )

    clips: List[Clip] = []
    cursor = 0.0
    previous: Optional[Shot] = None
    for shot in shots:
        if shot.transition_in is not None:
            transition = shot.transition_in
        elif previous is None:
            transition = CUT
        elif previous.scene_id != shot.scene_id:
            transition = scene_transition
        else:
            transition = default_transition

        clips.append(Clip(
            source_asset_url=(lip_sync_videos or {}).get(shot.shot_id) or shot_videos[shot.shot_id],
            start_offset=cursor,
            duration_seconds=shot.duration_seconds,
            transition_in=transition,
            effects=default_effects(shot),
            shot_id=shot.shot_id,
        ))
        cursor += shot.duration_seconds
        previous = shot
    return VideoTrack(clips=clips)


def build_timeline(
    shots: Iterable[Shot],
    shot_videos: Dict[str, str],
    shot_audio: Optional[Dict[str, List[DialogueAsset]]] = None,
    scene_music: Optional[Dict[str, AudioAsset]] = None,
    default_transition: Optional[Transition] = None,
    scene_transition: Optional[Transition] = None,
    lip_sync_videos: Optional[Dict[str, str]] = None,
) -> Timeline:
    """
    Assemble the episode timeline.

    Args:
        shots: Episode shots; those without a video are left out
        shot_videos: Video URL per shot id
        shot_audio: Synthesized dialogue per shot id
        scene_music: Score per scene id
        default_transition: Override for the between-shot transition
        scene_transition: Override for the scene-boundary transition
        lip_sync_videos: Lip-synced video URL per shot id, preferred over shot_videos

    Returns:
        Timeline with one video track, dialogue lanes and music lanes
    """
    ordered = sorted((s for s in shots if s.shot_id in shot_videos), key=lambda s: (s.order, s.shot_id))
    track = build_video_track(ordered, shot_videos, default_transition, scene_transition, lip_sync_videos)
    rendered_starts = dict(zip((s.shot_id for s in ordered), track.rendered_offsets()))

    dialogue: List[AudioClip] = []
    for shot in ordered:
        for line in (shot_audio or {}).get(shot.shot_id, []):
            dialogue.append(AudioClip(
                source_asset_url=line.asset.url,
                start_offset=rendered_starts[shot.shot_id] + line.start_offset,
                duration_seconds=line.asset.spoken_duration,
            ))

    music: List[AudioClip] = []
    for scene_id, asset in (scene_music or {}).items():
        scene_shots = [s for s in ordered if s.scene_id == scene_id]
        if not scene_shots:
            continue
        start = rendered_starts[scene_shots[0].shot_id]
        end = rendered_starts[scene_shots[-1].shot_id] + scene_shots[-1].duration_seconds
        duration = min(end - start, asset.duration_seconds)
        if duration > EPSILON:
            music.append(AudioClip(source_asset_url=asset.url, start_offset=start, duration_seconds=duration))

    audio_tracks = [
        AudioTrack(kind="dialogue", gain_db=settings.dialogue_gain_db, clips=lane)
        for lane in assign_lanes(dialogue)
    ] + [
        AudioTrack(kind="music", gain_db=settings.music_gain_db, clips=lane)
        for lane in assign_lanes(music)
    ]
    return Timeline(video_tracks=[track], audio_tracks=audio_tracks)
