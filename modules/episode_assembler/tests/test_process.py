"""
Tests for EpisodeAssembler phase sequencing, idempotence and resume.
"""
import asyncio
from decimal import Decimal
from unittest.mock import patch

import pytest

from shared.config import settings
from shared.errors import (
    CompositionError,
    EpisodeAssemblyError,
    ErrorKind,
    GenerationError,
    ValidationError,
)
from shared.models.episode import CompositionState, EpisodeComposition, GenerationPhase, Shot
from shared.storage import InMemoryEpisodeStore
from modules.episode_assembler import InMemoryShotSource
from modules.episode_assembler.process import shot_request


def test_shot_request_carries_shot_fields(episode_shots):
    request = shot_request(episode_shots[0])

    assert request.shot_id == "s1"
    assert request.source_image_ref == "https://img.test/s1.png"
    assert request.target_duration_seconds == 4
    assert request.mood == "tense"


@pytest.mark.asyncio
async def test_assembles_episode(build_assembler):
    assembler, provider, audio, engine = build_assembler()
    events = []
    assembler.subscribe(events.append)

    output = await assembler.assemble_episode("ep1")

    assert output.output_path == "/renders/ep1.mp4"
    assert output.clip_count == 3
    assert output.failed_shots == []
    assert output.duration_seconds == 10.5
    assert output.cached is False
    # 0.02/s over 12s of clips
    assert output.total_cost == Decimal("0.24")
    assert sorted(provider.submitted) == ["s1", "s2", "s3"]
    assert audio.dialogue_calls == ["l1"]
    assert audio.music_calls == [("A", ("epic", "tense"), 9, 0.8)]
    assert audio.lip_sync_calls == ["s2"]
    assert engine.timelines[0].primary_track.clips[1].source_asset_url == "https://cdn.test/lipsync/s2.mp4"

    composition = await assembler.get_composition("ep1")
    assert composition.state == CompositionState.COMPLETED
    assert composition.phase == GenerationPhase.PERSIST
    assert composition.render["status"] == "completed"
    assert set(composition.shot_videos) == {"s1", "s2", "s3"}
    assert composition.lip_sync_videos == {"s2": "https://cdn.test/lipsync/s2.mp4"}

    phases = []
    for event in events:
        if not phases or phases[-1] != event.phase:
            phases.append(event.phase)
    assert phases == list(GenerationPhase)
    assert all(0 <= e.percent <= 100 for e in events)


@pytest.mark.asyncio
async def test_completed_episode_is_not_rendered_again(build_assembler):
    assembler, provider, audio, engine = build_assembler()

    first = await assembler.assemble_episode("ep1")
    second = await assembler.assemble_episode("ep1")

    assert engine.calls == 1
    assert len(provider.submitted) == 3
    assert second.cached is True
    assert second.output_path == first.output_path


@pytest.mark.asyncio
async def test_state_survives_a_new_assembler(build_assembler):
    store = InMemoryEpisodeStore()
    first, _, _, _ = build_assembler(store=store)
    await first.assemble_episode("ep1")

    second, provider, _, engine = build_assembler(store=store)
    output = await second.assemble_episode("ep1")

    assert output.cached is True
    assert engine.calls == 0
    assert provider.submitted == []


@pytest.mark.asyncio
async def test_partial_shot_failure_still_renders(build_assembler):
    assembler, provider, audio, engine = build_assembler(script={"s2": [GenerationError("model crashed")]})

    output = await assembler.assemble_episode("ep1")

    assert output.failed_shots == ["s2"]
    assert output.clip_count == 2
    assert audio.dialogue_calls == []
    assert [c.shot_id for c in engine.timelines[0].primary_track.clips] == ["s1", "s3"]


@pytest.mark.asyncio
async def test_every_shot_failing_stops_at_video_phase(build_assembler):
    assembler, provider, audio, engine = build_assembler(
        script={sid: [GenerationError("model crashed")] for sid in ("s1", "s2", "s3")}
    )

    with pytest.raises(EpisodeAssemblyError, match="failed at phase 2") as exc_info:
        await assembler.assemble_episode("ep1")

    assert exc_info.value.phase == "generate_video"
    composition = await assembler.get_composition("ep1")
    assert composition.state == CompositionState.FAILED
    assert composition.failed_phase == GenerationPhase.GENERATE_VIDEO
    assert composition.failed_shots == ["s1", "s2", "s3"]
    assert engine.calls == 0


@pytest.mark.asyncio
async def test_resume_after_audio_failure(build_assembler):
    assembler, provider, audio, engine = build_assembler()
    audio.errors["l1"] = ValidationError("Unknown voice v-knight")

    with pytest.raises(EpisodeAssemblyError) as exc_info:
        await assembler.assemble_episode("ep1")

    assert exc_info.value.phase == "synthesize_audio"
    assert exc_info.value.kind == ErrorKind.FATAL
    failed = await assembler.get_composition("ep1")
    assert failed.failure_label == "failed at phase 3 (synthesize_audio)"
    assert failed.error["cause"] == "ValidationError"
    assert "A" in failed.scene_music
    assert failed.shot_audio == {}

    output = await assembler.assemble_episode("ep1")

    assert output.cached is False
    assert len(provider.submitted) == 3
    assert len(audio.music_calls) == 1
    assert audio.dialogue_calls == ["l1", "l1"]
    resumed = await assembler.get_composition("ep1")
    assert resumed.failed_phase is None
    assert resumed.error is None


@pytest.mark.asyncio
async def test_resume_after_render_failure(build_assembler):
    assembler, provider, audio, engine = build_assembler()
    engine.error = CompositionError("FFmpeg building_grade failed with exit code 1", stage="building_grade")

    with pytest.raises(EpisodeAssemblyError, match=r"phase 5 \(render\)"):
        await assembler.assemble_episode("ep1")

    failed = await assembler.get_composition("ep1")
    assert failed.render["status"] == "failed"
    assert failed.render["failed_stage"] == "building_grade"

    output = await assembler.assemble_episode("ep1")

    assert output.output_path == "/renders/ep1.mp4"
    assert engine.calls == 2
    assert len(provider.submitted) == 3
    assert audio.dialogue_calls == ["l1"]


@pytest.mark.asyncio
async def test_unknown_episode_fails_at_fetch(build_assembler):
    assembler, _, _, _ = build_assembler()

    with pytest.raises(EpisodeAssemblyError, match=r"phase 1 \(fetch_shots\)"):
        await assembler.assemble_episode("missing")


@pytest.mark.asyncio
async def test_shots_without_images_are_skipped(build_assembler, episode_shots):
    pending = Shot(shot_id="s4", scene_id="B", order=4)
    prerendered = Shot(shot_id="s0", scene_id="A", order=0, video_url="https://cdn.test/upstream/s0.mp4")
    assembler, provider, _, engine = build_assembler(shots=episode_shots + [pending, prerendered])

    output = await assembler.assemble_episode("ep1")

    assert output.clip_count == 4
    assert "s0" not in provider.submitted
    assert "s4" not in provider.submitted
    assert engine.timelines[0].primary_track.clips[0].source_asset_url == "https://cdn.test/upstream/s0.mp4"


@pytest.mark.asyncio
async def test_no_usable_shots(build_assembler):
    assembler, _, _, _ = build_assembler(shots=[Shot(shot_id="s1", scene_id="A", order=1)])

    with pytest.raises(EpisodeAssemblyError, match="no shots with images"):
        await assembler.assemble_episode("ep1")


@pytest.mark.asyncio
async def test_async_subscriber_and_unsubscribe(build_assembler):
    assembler, _, _, _ = build_assembler()
    received = []

    async def subscriber(event):
        received.append(event.phase)

    def broken(event):
        raise RuntimeError("subscriber bug")

    dropped = []
    assembler.subscribe(subscriber)
    assembler.subscribe(broken)
    unsubscribe = assembler.subscribe(dropped.append)
    unsubscribe()

    await assembler.assemble_episode("ep1")

    assert GenerationPhase.RENDER in received
    assert dropped == []


@pytest.mark.asyncio
async def test_lip_sync_failure_keeps_generated_clip(build_assembler):
    assembler, _, audio, engine = build_assembler()
    audio.errors["s2"] = GenerationError("lip-sync model crashed")

    output = await assembler.assemble_episode("ep1")

    assert output.clip_count == 3
    assert audio.lip_sync_calls == ["s2"]
    assert engine.timelines[0].primary_track.clips[1].source_asset_url == "https://cdn.test/budget/s2.mp4"
    assert (await assembler.get_composition("ep1")).lip_sync_videos == {}


@pytest.mark.asyncio
async def test_lip_sync_can_be_disabled(build_assembler):
    assembler, _, audio, engine = build_assembler()

    with patch.object(settings, "lip_sync_enabled", False):
        await assembler.assemble_episode("ep1")

    assert audio.dialogue_calls == ["l1"]
    assert audio.lip_sync_calls == []
    assert engine.timelines[0].primary_track.clips[1].source_asset_url == "https://cdn.test/budget/s2.mp4"


def test_cancel_render_without_running_render(build_assembler):
    assembler, _, _, _ = build_assembler()
    assert assembler.cancel_render("ep1") is False


@pytest.mark.asyncio
async def test_shot_source_returns_copies():
    shot = Shot(shot_id="s1", scene_id="A", order=1, source_image_url="https://img.test/s1.png")
    source = InMemoryShotSource()
    source.put_shots("ep1", [shot])

    fetched = await source.fetch_shots("ep1")
    fetched[0].mood_tags.append("changed")

    assert (await source.fetch_shots("ep1"))[0].mood_tags == []
    with pytest.raises(ValidationError):
        await source.fetch_shots("ep2")


class RecordingStore(InMemoryEpisodeStore):
    """Keeps a copy of every document written, in order."""

    def __init__(self):
        super().__init__()
        self.writes = []

    async def put(self, episode_id, document):
        self.writes.append(document)
        await super().put(episode_id, document)


async def stored_when(store, predicate, attempts=1000):
    for _ in range(attempts):
        document = await store.get("ep1")
        if document is not None and predicate(document):
            return document
        await asyncio.sleep(0)
    raise AssertionError("Episode store never reached the expected state")


@pytest.mark.asyncio
async def test_progress_is_persisted_while_clips_generate(build_assembler):
    store = InMemoryEpisodeStore()
    assembler, provider, _, _ = build_assembler(store=store)
    gate = provider.gate("s2")

    task = asyncio.ensure_future(assembler.assemble_episode("ep1"))
    document = await stored_when(store, lambda d: (d.get("batch_progress") or {}).get("completed") == 2)

    assert document["state"] == "running"
    assert document["phase"] == "generate_video"
    assert document["batch_progress"]["total"] == 3
    assert assembler.is_assembling("ep1") is True
    mirrored = await assembler.get_composition("ep1")
    assert mirrored.phase == GenerationPhase.GENERATE_VIDEO
    assert mirrored.batch_progress.completed == 2

    gate.set()
    await task

    assert assembler.is_assembling("ep1") is False
    assert (await store.get("ep1"))["state"] == "completed"


@pytest.mark.asyncio
async def test_phase_is_stored_when_it_starts(build_assembler):
    store = RecordingStore()
    assembler, _, _, engine = build_assembler(store=store)

    async def render(timeline, output_settings=None, *, render_job=None, on_progress=None, **kwargs):
        render_job.report_progress(50)
        on_progress(render_job)
        await asyncio.sleep(0.01)
        render_job.mark_completed("/renders/ep1.mp4")
        on_progress(render_job)
        return render_job

    engine.render = render
    await assembler.assemble_episode("ep1")

    render_writes = [w for w in store.writes if w["phase"] == "render"]
    assert render_writes[0]["render"] is None
    assert any((w["render"] or {}).get("progress_percent") == 50 for w in render_writes)
    assert all(w["state"] == "running" for w in render_writes)
    started = [w["phase"] for w in store.writes]
    assert started.index("synthesize_audio") < started.index("build_timeline") < started.index("render")


@pytest.mark.asyncio
async def test_stale_running_state_is_resumed(build_assembler):
    store = InMemoryEpisodeStore()
    await store.put("ep1", EpisodeComposition(
        episode_id="ep1",
        state=CompositionState.RUNNING,
        phase=GenerationPhase.GENERATE_VIDEO,
        shot_videos={"s1": "https://cdn.test/budget/s1.mp4"},
    ).model_dump(mode="json"))
    assembler, provider, _, engine = build_assembler(store=store)

    assert assembler.is_assembling("ep1") is False
    output = await assembler.assemble_episode("ep1")

    assert output.cached is False
    assert sorted(provider.submitted) == ["s2", "s3"]
    assert engine.calls == 1
