"""
Episode assembly coordinator.

Runs the six phases of turning an episode's shots into one rendered video:
fetch shots, generate missing clips, synthesize audio, build the timeline,
render, persist. State is written to the episode store when a phase starts
and when it ends, and on progress while clips generate and the episode
renders. A failure records the phase it happened in and keeps earlier
artifacts, so the next call resumes instead of starting over.
"""
import asyncio
import inspect
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from shared.config import settings
from shared.errors import (
    EpisodeAssemblyError,
    ErrorKind,
    PipelineError,
    error_kind,
)
from shared.logging import get_logger, set_episode_id
from shared.models.episode import (
    AudioAsset,
    CompositionOutput,
    CompositionState,
    DialogueAsset,
    EpisodeComposition,
    GenerationPhase,
    ProgressEvent,
    Shot,
)
from shared.models.generation import GenerationRequest, ProviderProfile, utcnow
from shared.models.render import OutputSettings, RenderJob
from shared.models.timeline import Timeline
from shared.retry import RetryOptions, execute
from shared.storage import EpisodeStore
from modules.batch_manager import BatchManager
from modules.composer import CompositionEngine, get_output_preset

from .collaborators import AudioCollaborator, ShotSource
from .timeline_builder import build_timeline

logger = get_logger("episode_assembler.process")

ProgressSubscriber = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


def shot_request(shot: Shot) -> GenerationRequest:
    """Generation request for a shot's still image."""
    return GenerationRequest(
        shot_id=shot.shot_id,
        source_image_ref=shot.source_image_url,
        target_duration_seconds=shot.duration_seconds,
        motion_description=shot.motion_description,
        camera_instruction=shot.camera_instruction,
        negative_prompt=shot.negative_prompt,
        provider_hint=shot.provider_hint,
        resolution=shot.resolution,
        mood=", ".join(shot.mood_tags),
    )


class EpisodeAssembler:
    """Coordinates collaborators to assemble one episode at a time per id."""

    def __init__(
        self,
        shot_source: ShotSource,
        audio: AudioCollaborator,
        store: EpisodeStore,
        batch_manager: BatchManager,
        engine: CompositionEngine,
        profiles: Optional[List[ProviderProfile]] = None,
        output_settings: Optional[OutputSettings] = None,
        color_grade: Optional[str] = None,
        budget_usd: Optional[Decimal] = None,
    ):
        self.shot_source = shot_source
        self.audio = audio
        self.store = store
        self.batch_manager = batch_manager
        self.engine = engine
        self.profiles = profiles
        self.output_settings = output_settings or get_output_preset(settings.default_output_preset)
        self.color_grade = color_grade or settings.default_color_grade
        self.budget_usd = budget_usd
        self._subscribers: List[ProgressSubscriber] = []
        self._mirror: Dict[str, EpisodeComposition] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._render_jobs: Dict[str, RenderJob] = {}
        self._background: set = set()
        self._progress_marks: Dict[str, Tuple[GenerationPhase, int]] = {}
        self._progress_writes: Dict[str, asyncio.Task] = {}

    # Progress

    def subscribe(self, subscriber: ProgressSubscriber) -> Callable[[], None]:
        """Register a sync or async progress callback; returns an unsubscribe function."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def _deliver(self, event: ProgressEvent) -> List[Awaitable[Any]]:
        pending = []
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
            except Exception as e:
                logger.warning(f"Progress subscriber failed: {e}", extra={"phase": event.phase.value})
                continue
            if inspect.isawaitable(result):
                pending.append(result)
        return pending

    async def _report(self, episode_id: str, phase: GenerationPhase, percent: int, message: Optional[str] = None) -> None:
        event = ProgressEvent(episode_id=episode_id, phase=phase, percent=percent, message=message)
        for awaitable in self._deliver(event):
            try:
                await awaitable
            except Exception as e:
                logger.warning(f"Progress subscriber failed: {e}", extra={"phase": phase.value})

    def _report_nowait(self, episode_id: str, phase: GenerationPhase, percent: int) -> None:
        """Progress from synchronous callbacks; async subscribers run as tasks."""
        event = ProgressEvent(episode_id=episode_id, phase=phase, percent=max(0, min(100, percent)))
        for awaitable in self._deliver(event):
            task = asyncio.ensure_future(awaitable)
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    # Persistence

    async def _write(self, composition: EpisodeComposition) -> None:
        composition.updated_at = utcnow()
        document = composition.model_dump(mode="json")
        await execute(
            lambda: self.store.put(composition.episode_id, document),
            RetryOptions.from_settings("episode_store.put"),
        )
        self._mirror[composition.episode_id] = composition.model_copy(deep=True)

    async def _persist(self, composition: EpisodeComposition) -> None:
        # A progress write still in flight must not land after this one
        pending = self._progress_writes.pop(composition.episode_id, None)
        if pending is not None:
            await pending
        await self._write(composition)

    def _persist_progress(self, composition: EpisodeComposition, percent: int) -> None:
        """
        Persist from synchronous progress callbacks, at most once per whole percent.

        Marks arriving while a write is in flight are coalesced into one more
        write of the latest state.
        """
        episode_id = composition.episode_id
        mark = (composition.phase, percent)
        if self._progress_marks.get(episode_id) == mark:
            return
        self._progress_marks[episode_id] = mark
        pending = self._progress_writes.get(episode_id)
        if pending is None or pending.done():
            self._progress_writes[episode_id] = asyncio.ensure_future(self._write_progress(composition))

    async def _write_progress(self, composition: EpisodeComposition) -> None:
        episode_id = composition.episode_id
        written = None
        while written != self._progress_marks.get(episode_id):
            written = self._progress_marks.get(episode_id)
            try:
                await self._write(composition)
            except PipelineError as e:
                logger.warning(f"Failed to persist progress: {e}", extra={"episode_id": episode_id})
                return

    async def get_composition(self, episode_id: str) -> Optional[EpisodeComposition]:
        """Last persisted composition state, from the local mirror when available."""
        if episode_id in self._mirror:
            return self._mirror[episode_id].model_copy(deep=True)
        document = await self.store.get(episode_id)
        if document is None:
            return None
        composition = EpisodeComposition.model_validate(document)
        self._mirror[episode_id] = composition
        return composition.model_copy(deep=True)

    def is_assembling(self, episode_id: str) -> bool:
        """Whether this process is assembling ``episode_id`` right now."""
        lock = self._locks.get(episode_id)
        return lock is not None and lock.locked()

    def cancel_render(self, episode_id: str) -> bool:
        job = self._render_jobs.get(episode_id)
        return job.cancel() if job else False

    # Assembly

    async def assemble_episode(self, episode_id: str) -> CompositionOutput:
        """
        Assemble ``episode_id`` into a rendered video.

        An episode whose render already completed returns the stored output
        without rendering again. A previously failed episode resumes: clips and
        audio produced before the failure are reused.

        Raises:
            EpisodeAssemblyError: A phase failed; ``phase`` names it and ``kind``
                carries the cause's tag (fatal, exhausted-retries, ...)
        """
        lock = self._locks.setdefault(episode_id, asyncio.Lock())
        async with lock:
            set_episode_id(episode_id)
            composition = await self.get_composition(episode_id) or EpisodeComposition(episode_id=episode_id)

            if composition.state == CompositionState.COMPLETED and composition.output_path:
                logger.info(f"Episode {episode_id} already rendered, returning stored output")
                return CompositionOutput(
                    episode_id=episode_id,
                    output_path=composition.output_path,
                    duration_seconds=composition.duration_seconds or 0.0,
                    clip_count=len(composition.shot_videos),
                    failed_shots=composition.failed_shots,
                    total_cost=composition.total_cost,
                    cached=True,
                )

            if composition.failed_phase is not None:
                logger.info(
                    f"Resuming episode {episode_id} after {composition.failure_label}",
                    extra={"failed_phase": composition.failed_phase.value}
                )
            elif composition.state == CompositionState.RUNNING:
                # Stored as running but no task here holds it: the run that wrote it died
                logger.warning(
                    f"Resuming episode {episode_id} left running by an interrupted process",
                    extra={"phase": composition.phase.value if composition.phase else None}
                )
            composition.state = CompositionState.RUNNING
            composition.failed_phase = None
            composition.error = None
            await self._persist(composition)

            phase = GenerationPhase.FETCH_SHOTS
            try:
                shots = await self._fetch_shots(composition)
                phase = GenerationPhase.GENERATE_VIDEO
                await self._generate_videos(composition, shots)
                phase = GenerationPhase.SYNTHESIZE_AUDIO
                await self._synthesize_audio(composition, shots)
                phase = GenerationPhase.BUILD_TIMELINE
                timeline = await self._build_timeline(composition, shots)
                phase = GenerationPhase.RENDER
                render_job = await self._render(composition, timeline)
                phase = GenerationPhase.PERSIST
                return await self._complete(composition, timeline, render_job)
            except asyncio.CancelledError:
                await self._fail(composition, phase, EpisodeAssemblyError(
                    "Assembly cancelled", phase=phase.value
                ), kind=ErrorKind.CANCELLED)
                raise
            except Exception as e:
                error = await self._fail(composition, phase, e)
                raise error from e
            finally:
                self._render_jobs.pop(episode_id, None)
                self._progress_marks.pop(episode_id, None)
                set_episode_id(None)

    async def _fail(
        self,
        composition: EpisodeComposition,
        phase: GenerationPhase,
        cause: BaseException,
        kind: Optional[str] = None,
    ) -> EpisodeAssemblyError:
        message = cause.message if isinstance(cause, PipelineError) else str(cause) or type(cause).__name__
        error = EpisodeAssemblyError(
            f"Episode {composition.episode_id} failed at phase {phase.number} ({phase.value}): {message}",
            phase=phase.value,
            job_id=getattr(cause, "job_id", None),
            provider_id=getattr(cause, "provider_id", None),
        )
        error.kind = kind or (cause.kind if isinstance(cause, PipelineError) else ErrorKind.FATAL)

        composition.state = CompositionState.FAILED
        composition.failed_phase = phase
        report = error.to_dict()
        report["cause"] = type(cause).__name__
        composition.error = report
        logger.error(
            error.message,
            exc_info=not isinstance(cause, PipelineError),
            extra={"phase": phase.value, "kind": error.kind, "provider_id": error.provider_id}
        )
        try:
            await self._persist(composition)
        except PipelineError as e:
            logger.error(f"Failed to persist failure state: {e}", extra={"phase": phase.value})
        return error

    async def _enter(self, composition: EpisodeComposition, phase: GenerationPhase) -> None:
        """Record ``phase`` as the one in progress before any of its work starts."""
        await self._persist(composition)
        await self._report(composition.episode_id, phase, 0)

    async def _fetch_shots(self, composition: EpisodeComposition) -> List[Shot]:
        episode_id = composition.episode_id
        await self._enter(composition, GenerationPhase.FETCH_SHOTS)
        shots = await self.shot_source.fetch_shots(episode_id)

        ready = []
        for shot in shots:
            if shot.video_url:
                composition.shot_videos.setdefault(shot.shot_id, shot.video_url)
            if shot.video_url or shot.source_image_url or shot.shot_id in composition.shot_videos:
                ready.append(shot)
            else:
                logger.warning(f"Shot {shot.shot_id} has no still image yet, skipping", extra={"shot_id": shot.shot_id})
        if not ready:
            raise EpisodeAssemblyError(f"Episode {episode_id} has no shots with images", phase=GenerationPhase.FETCH_SHOTS.value)

        ready.sort(key=lambda s: (s.order, s.shot_id))
        await self._persist(composition)
        await self._report(episode_id, GenerationPhase.FETCH_SHOTS, 100, f"{len(ready)} shots")
        return ready

    async def _generate_videos(self, composition: EpisodeComposition, shots: List[Shot]) -> None:
        episode_id = composition.episode_id
        phase = GenerationPhase.GENERATE_VIDEO
        await self._enter(composition, phase)

        missing = [shot for shot in shots if shot.shot_id not in composition.shot_videos]
        if missing:
            def on_progress(progress) -> None:
                composition.batch_progress = progress
                self._report_nowait(episode_id, phase, progress.percent)
                self._persist_progress(composition, progress.percent)

            run = await self.batch_manager.run_batch(
                [shot_request(shot) for shot in missing],
                self.profiles,
                batch_id=f"{episode_id}-{uuid4().hex[:8]}",
                budget_usd=self.budget_usd,
                retry_failed=True,
                on_progress=on_progress,
            )
            composition.shot_videos.update(run.results())
            composition.total_cost += run.total_cost
            composition.batch_progress = run.get_progress()
            for job in run.failures():
                logger.warning(
                    f"Shot {job.shot_id} failed: {job.error_message}",
                    extra={"shot_id": job.shot_id, "error_kind": job.error_kind, "provider_id": job.provider_id}
                )

        composition.failed_shots = [s.shot_id for s in shots if s.shot_id not in composition.shot_videos]
        if len(composition.failed_shots) == len(shots):
            raise EpisodeAssemblyError(
                f"No shot produced a video ({len(shots)} failed)", phase=phase.value
            )

        await self._persist(composition)
        await self._report(
            episode_id, phase, 100,
            f"{len(shots) - len(composition.failed_shots)} clips, {len(composition.failed_shots)} failed",
        )

    async def _synthesize_audio(self, composition: EpisodeComposition, shots: List[Shot]) -> None:
        """
        Voice missing dialogue lines, score scenes that need music and
        lip-sync the voiced shots.

        Successful results are kept even when other requests fail, so a retry
        only asks for what is still missing.
        """
        episode_id = composition.episode_id
        phase = GenerationPhase.SYNTHESIZE_AUDIO
        await self._enter(composition, phase)
        usable = [shot for shot in shots if shot.shot_id in composition.shot_videos]

        async def voice(shot: Shot, line) -> DialogueAsset:
            asset = await self.audio.synthesize_dialogue(line, shot.mood_tags)
            return DialogueAsset(line_id=line.line_id, shot_id=shot.shot_id, start_offset=line.start_offset, asset=asset)

        async def score(scene_id: str, scene_shots: List[Shot]) -> Tuple[str, AudioAsset]:
            mood = sorted({tag for s in scene_shots for tag in s.mood_tags})
            duration = sum(s.duration_seconds for s in scene_shots)
            intensity = max(s.score_intensity for s in scene_shots)
            asset = await self.audio.synthesize_music(scene_id, mood, duration, intensity)
            return scene_id, asset

        work = []
        for shot in usable:
            done = {d.line_id for d in composition.shot_audio.get(shot.shot_id, [])}
            work += [voice(shot, line) for line in shot.dialogue if line.line_id not in done]

        scenes: Dict[str, List[Shot]] = {}
        for shot in usable:
            scenes.setdefault(shot.scene_id, []).append(shot)
        for scene_id, scene_shots in scenes.items():
            if scene_id in composition.scene_music:
                continue
            if max(s.score_intensity for s in scene_shots) >= settings.music_score_threshold:
                work.append(score(scene_id, scene_shots))

        first_error: Optional[BaseException] = None
        for result in await asyncio.gather(*work, return_exceptions=True):
            if isinstance(result, BaseException):
                logger.warning(f"Audio synthesis failed: {result}", extra={"error_kind": error_kind(result)})
                first_error = first_error or result
            elif isinstance(result, DialogueAsset):
                composition.shot_audio.setdefault(result.shot_id, []).append(result)
            else:
                scene_id, asset = result
                composition.scene_music[scene_id] = asset

        await self._persist(composition)
        if first_error is not None:
            raise first_error
        if settings.lip_sync_enabled:
            await self._lip_sync(composition, usable)
        await self._report(episode_id, phase, 100)

    async def _lip_sync(self, composition: EpisodeComposition, shots: List[Shot]) -> None:
        """Lip-sync voiced shots not synced yet; a failed shot keeps its generated clip."""
        voiced = [
            shot for shot in shots
            if composition.shot_audio.get(shot.shot_id) and shot.shot_id not in composition.lip_sync_videos
        ]
        if not voiced:
            return

        results = await asyncio.gather(*(
            self.audio.synthesize_lip_sync(composition.shot_videos[shot.shot_id], composition.shot_audio[shot.shot_id])
            for shot in voiced
        ), return_exceptions=True)
        for shot, result in zip(voiced, results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Lip-sync of shot {shot.shot_id} failed, keeping the generated clip: {result}",
                    extra={"shot_id": shot.shot_id, "error_kind": error_kind(result)}
                )
                continue
            composition.lip_sync_videos[shot.shot_id] = result
        await self._persist(composition)

    async def _build_timeline(self, composition: EpisodeComposition, shots: List[Shot]) -> Timeline:
        episode_id = composition.episode_id
        phase = GenerationPhase.BUILD_TIMELINE
        await self._enter(composition, phase)
        timeline = build_timeline(
            shots,
            composition.shot_videos,
            composition.shot_audio,
            composition.scene_music,
            lip_sync_videos=composition.lip_sync_videos,
        )
        logger.info(
            f"Timeline built: {len(timeline.primary_track.clips)} clips, {timeline.total_duration_seconds:.2f}s",
            extra={"audio_tracks": len(timeline.audio_tracks)}
        )
        composition.duration_seconds = timeline.total_duration_seconds
        await self._persist(composition)
        await self._report(episode_id, phase, 100)
        return timeline

    async def _render(self, composition: EpisodeComposition, timeline: Timeline) -> RenderJob:
        episode_id = composition.episode_id
        phase = GenerationPhase.RENDER
        await self._enter(composition, phase)
        job = RenderJob(timeline=timeline, output_settings=self.output_settings, color_grade=self.color_grade)
        self._render_jobs[episode_id] = job

        def on_progress(render_job: RenderJob) -> None:
            composition.render = render_job.snapshot()
            self._report_nowait(episode_id, phase, int(render_job.progress_percent))
            self._persist_progress(composition, int(render_job.progress_percent))

        try:
            await self.engine.render(
                timeline,
                self.output_settings,
                color_grade=self.color_grade,
                render_job=job,
                output_name=episode_id,
                on_progress=on_progress,
            )
        finally:
            composition.render = job.snapshot()
        await self._persist(composition)
        await self._report(episode_id, phase, 100)
        return job

    async def _complete(self, composition: EpisodeComposition, timeline: Timeline, job: RenderJob) -> CompositionOutput:
        episode_id = composition.episode_id
        phase = GenerationPhase.PERSIST
        await self._enter(composition, phase)
        composition.output_path = job.output_path
        composition.duration_seconds = timeline.total_duration_seconds
        composition.state = CompositionState.COMPLETED
        await self._persist(composition)
        await self._report(episode_id, phase, 100)
        logger.info(
            f"Episode {episode_id} assembled: {job.output_path}",
            extra={"output_path": job.output_path, "failed_shots": len(composition.failed_shots)}
        )
        return CompositionOutput(
            episode_id=episode_id,
            output_path=job.output_path,
            duration_seconds=timeline.total_duration_seconds,
            clip_count=len(timeline.primary_track.clips),
            failed_shots=composition.failed_shots,
            total_cost=composition.total_cost,
        )
