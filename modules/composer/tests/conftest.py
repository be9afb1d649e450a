"""
Pytest fixtures for composer tests.
"""
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest

from shared.models.render import OutputSettings
from shared.models.timeline import AudioClip, AudioTrack, Clip, Timeline, Transition, VideoTrack
from modules.composer import CompositionEngine


@pytest.fixture
def output_settings():
    return OutputSettings(width=1280, height=720, fps=24)


@pytest.fixture
def asset_files(tmp_path):
    """Write small placeholder media files and return their paths by name."""
    def _create(*names: str) -> List[Path]:
        paths = []
        for name in names:
            path = tmp_path / "assets" / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"\x00" * 64)
            paths.append(path)
        return paths
    return _create


@pytest.fixture
def sample_timeline(asset_files):
    """Two clips (4s then 5s) joined by a 1s crossfade, with one dialogue line."""
    first, second, line = asset_files("s1.mp4", "s2.mp4", "line1.wav")
    return Timeline(
        video_tracks=[VideoTrack(clips=[
            Clip(source_asset_url=str(first), start_offset=0, duration_seconds=4, shot_id="s1"),
            Clip(
                source_asset_url=str(second),
                start_offset=4,
                duration_seconds=5,
                transition_in=Transition(type="crossfade", duration_seconds=1),
                shot_id="s2",
            ),
        ])],
        audio_tracks=[AudioTrack(kind="dialogue", clips=[
            AudioClip(source_asset_url=str(line), start_offset=1, duration_seconds=2),
        ])],
    )


@pytest.fixture
def engine(tmp_path):
    """Engine over tmp dirs; the ffmpeg availability check always passes."""
    with patch("modules.composer.process.check_ffmpeg_available", return_value=True):
        yield CompositionEngine(
            ffmpeg_binary="ffmpeg",
            work_root=tmp_path / "work",
            output_dir=tmp_path / "out",
            keep_intermediates=False,
        )
