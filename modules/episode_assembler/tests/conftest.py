"""
Pytest fixtures for episode assembly tests.
"""
from typing import Dict, List

import pytest

from shared.errors import PipelineError
from shared.models.episode import AudioAsset, DialogueLine, Shot, WordTimestamp
from shared.models.render import RenderStatus
from shared.storage import InMemoryEpisodeStore
from modules.batch_manager import BatchManager
from modules.episode_assembler import AudioCollaborator, EpisodeAssembler, InMemoryShotSource
from modules.video_generator.registry import ProviderRegistry


class FakeAudio(AudioCollaborator):
    """Records requests; raises the error queued for a line, scene or shot id."""

    def __init__(self):
        self.errors: Dict[str, PipelineError] = {}
        self.dialogue_calls: List[str] = []
        self.music_calls: List[tuple] = []
        self.lip_sync_calls: List[str] = []

    async def synthesize_dialogue(self, line, mood_tags):
        self.dialogue_calls.append(line.line_id)
        if line.line_id in self.errors:
            raise self.errors.pop(line.line_id)
        return AudioAsset(
            url=f"https://audio.test/{line.line_id}.wav",
            duration_seconds=2.0,
            words=[WordTimestamp(word="hello", start=0.1, end=1.5)],
        )

    async def synthesize_music(self, scene_id, mood_tags, duration_seconds, intensity):
        self.music_calls.append((scene_id, tuple(mood_tags), duration_seconds, intensity))
        if scene_id in self.errors:
            raise self.errors.pop(scene_id)
        return AudioAsset(url=f"https://audio.test/{scene_id}.mp3", duration_seconds=30.0)

    async def synthesize_lip_sync(self, video_url, dialogue):
        shot_id = dialogue[0].shot_id
        self.lip_sync_calls.append(shot_id)
        if shot_id in self.errors:
            raise self.errors.pop(shot_id)
        return f"https://cdn.test/lipsync/{shot_id}.mp4"


class FakeEngine:
    """Stands in for CompositionEngine; completes the render job it is given."""

    def __init__(self):
        self.calls = 0
        self.error = None
        self.timelines = []

    async def render(self, timeline, output_settings=None, *, color_grade=None, render_job=None,
                     output_name=None, on_progress=None):
        self.calls += 1
        self.timelines.append(timeline)
        if self.error is not None:
            error, self.error = self.error, None
            render_job.enter_stage(RenderStatus.BUILDING_GRADE)
            render_job.mark_failed(error.message)
            raise error
        render_job.report_progress(50)
        on_progress(render_job)
        render_job.mark_completed(f"/renders/{output_name}.mp4")
        on_progress(render_job)
        return render_job


@pytest.fixture
def episode_shots():
    return [
        Shot(
            shot_id="s1", scene_id="A", order=1, duration_seconds=4,
            source_image_url="https://img.test/s1.png", motion_description="The knight looks up",
            mood_tags=["tense"], score_intensity=0.8, animation_type="zoom_in",
        ),
        Shot(
            shot_id="s2", scene_id="A", order=2, duration_seconds=5,
            source_image_url="https://img.test/s2.png", motion_description="The dragon lands",
            mood_tags=["epic"],
            dialogue=[DialogueLine(line_id="l1", character_id="knight", voice_id="v-knight", text="Stand fast!", start_offset=1)],
        ),
        Shot(
            shot_id="s3", scene_id="B", order=3, duration_seconds=3,
            source_image_url="https://img.test/s3.png", motion_description="Embers drift",
        ),
    ]


@pytest.fixture
def build_assembler(make_profile, fake_provider, fast_retry, episode_shots):
    """Assembler wired to a fake provider, fake audio and fake engine."""
    def _build(script=None, shots=None, store=None):
        provider = fake_provider(make_profile("budget", cap=2), script=script)
        registry = ProviderRegistry([])
        registry.register(provider)
        audio = FakeAudio()
        engine = FakeEngine()
        assembler = EpisodeAssembler(
            shot_source=InMemoryShotSource({"ep1": shots if shots is not None else episode_shots}),
            audio=audio,
            store=store or InMemoryEpisodeStore(),
            batch_manager=BatchManager(registry, global_cap=4, retry_options=fast_retry),
            engine=engine,
        )
        return assembler, provider, audio, engine
    return _build
