"""
Main entry point for composer module.

CompositionEngine renders a Timeline to a single video file in four ffmpeg
stages: concat (clips, effects, transitions), audio mix, color grade (muxing
the mix) and final encode. Each stage reads the previous stage's artifact
from the render's work directory.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from shared.config import settings
from shared.errors import (
    CompositionError,
    EncoderNotFoundError,
    JobCancelledError,
    PipelineError,
    ValidationError,
)
from shared.logging import get_logger
from shared.models.render import OutputSettings, RenderJob, RenderStatus
from shared.models.timeline import EPSILON, Timeline

from .audio_mixer import build_audio_graph
from .color_grader import build_grade_filter
from .config import (
    INTERMEDIATE_CRF,
    STAGE_WINDOWS,
    ColorGrade,
    get_color_grade,
    get_output_preset,
)
from .downloader import fetch_assets
from .encoder import build_encode_args, validate_output
from .filter_graph import build_video_graph, fmt
from .utils import check_ffmpeg_available, run_ffmpeg_command

logger = get_logger("composer.process")

RenderCallback = Callable[[RenderJob], None]


def _validate_timeline(timeline: Timeline) -> None:
    primary = timeline.primary_track
    extra = [track for track in timeline.video_tracks if track is not primary and track.clips]
    if extra:
        raise ValidationError(
            f"Timeline has {len(extra) + 1} non-empty video tracks; only the primary track can be rendered"
        )


class CompositionEngine:
    """Renders timelines with ffmpeg."""

    def __init__(
        self,
        ffmpeg_binary: Optional[str] = None,
        work_root: Optional[Path] = None,
        output_dir: Optional[Path] = None,
        keep_intermediates: Optional[bool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
        self.work_root = Path(work_root or settings.composition_work_dir)
        self.output_dir = Path(output_dir or settings.composition_output_dir)
        self.keep_intermediates = (
            settings.keep_intermediates if keep_intermediates is None else keep_intermediates
        )
        self.http_client = http_client

    async def render(
        self,
        timeline: Timeline,
        output_settings: Optional[OutputSettings] = None,
        *,
        color_grade: Optional[str] = None,
        render_job: Optional[RenderJob] = None,
        output_name: Optional[str] = None,
        on_progress: Optional[RenderCallback] = None,
    ) -> RenderJob:
        """
        Render ``timeline`` and return the completed RenderJob.

        Args:
            timeline: Timeline to render
            output_settings: Encode parameters (default preset from settings)
            color_grade: Color grade preset name (default from settings)
            render_job: Existing job to drive, so callers can watch or cancel it
            output_name: Output file stem (default: render job id)
            on_progress: Called with the job after every status or progress change

        Returns:
            The RenderJob, status completed, output_path set

        Raises:
            ValidationError: Unknown grade or unrenderable timeline
            CompositionError: An ffmpeg stage failed (job failed at that stage)
            EncoderNotFoundError: ffmpeg is not installed
            JobCancelledError: The render job was cancelled
        """
        output_settings = output_settings or get_output_preset(settings.default_output_preset)
        grade_name = color_grade or settings.default_color_grade
        grade = get_color_grade(grade_name)
        _validate_timeline(timeline)
        if not check_ffmpeg_available(self.ffmpeg_binary):
            raise EncoderNotFoundError(f"FFmpeg binary not found: {self.ffmpeg_binary}")

        job = render_job or RenderJob(timeline=timeline)
        if job.is_terminal:
            raise ValidationError(f"Render job {job.id} already {job.status.value}")
        job.timeline = timeline
        job.output_settings = output_settings
        job.color_grade = grade_name

        task = asyncio.ensure_future(self._run(job, grade, output_name, on_progress))
        job.attach_task(task)
        try:
            await task
        except asyncio.CancelledError:
            if job.cancel_requested:
                job.mark_cancelled()
                raise JobCancelledError(f"Render {job.id} was cancelled", job_id=job.id) from None
            raise
        return job

    def _notify(self, job: RenderJob, on_progress: Optional[RenderCallback]) -> None:
        if on_progress is None:
            return
        try:
            on_progress(job)
        except Exception as e:
            logger.warning(f"Render progress subscriber failed: {e}", extra={"job_id": str(job.id)})

    async def _run(
        self,
        job: RenderJob,
        grade: ColorGrade,
        output_name: Optional[str],
        on_progress: Optional[RenderCallback],
    ) -> None:
        work_dir = self.work_root / str(job.id)
        work_dir.mkdir(parents=True, exist_ok=True)
        job.work_dir = str(work_dir)

        def notify() -> None:
            self._notify(job, on_progress)

        timeline = job.timeline
        logger.info(
            f"Rendering {len(timeline.primary_track.clips)} clips, "
            f"{timeline.audio_clip_count()} audio clips, {timeline.total_duration_seconds:.2f}s",
            extra={"job_id": str(job.id), "color_grade": job.color_grade, "work_dir": str(work_dir)}
        )

        try:
            concat_path = await self._build_concat(job, work_dir, notify)
            mix_path = await self._build_audio_mix(job, work_dir, notify)
            graded_path = await self._build_grade(job, grade, concat_path, mix_path, work_dir, notify)
            final_path = await self._encode(job, graded_path, work_dir, notify)
            output_path = self._publish(final_path, output_name or str(job.id))
        except asyncio.CancelledError:
            job.mark_cancelled()
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.warning(f"Render {job.id} cancelled, work dir removed", extra={"job_id": str(job.id)})
            notify()
            raise
        except PipelineError as e:
            if isinstance(e, CompositionError) and e.stage is None:
                e.stage = job.status.value
            job.mark_failed(e.message)
            logger.error(
                f"Render {job.id} failed during {job.failed_stage.value}: {e.message}",
                extra={"job_id": str(job.id), "stage": job.failed_stage.value, "work_dir": str(work_dir)}
            )
            notify()
            raise
        except OSError as e:
            stage = job.status.value
            job.mark_failed(str(e))
            notify()
            raise CompositionError(f"Render failed during {stage}: {e}", stage=stage, job_id=job.id) from e

        job.mark_completed(str(output_path))
        if not self.keep_intermediates:
            shutil.rmtree(work_dir, ignore_errors=True)
        logger.info(
            f"Render {job.id} completed: {output_path}",
            extra={"job_id": str(job.id), "output_path": str(output_path)}
        )
        notify()

    def _enter(self, job: RenderJob, stage: RenderStatus, notify: Callable[[], None]) -> None:
        job.enter_stage(stage)
        job.report_progress(STAGE_WINDOWS[stage][0])
        notify()

    async def _ffmpeg(
        self,
        job: RenderJob,
        stage: RenderStatus,
        args: List[str],
        expected_duration: float,
        notify: Callable[[], None],
    ) -> None:
        low, high = STAGE_WINDOWS[stage]

        def on_fraction(fraction: float) -> None:
            job.report_progress(low + (high - low) * fraction)
            notify()

        cmd = [self.ffmpeg_binary, "-hide_banner", "-nostdin", "-y", "-progress", "pipe:1", "-nostats", *args]
        await run_ffmpeg_command(
            cmd,
            stage=stage.value,
            expected_duration=expected_duration,
            on_progress=on_fraction,
            job_id=str(job.id),
        )
        job.report_progress(high)
        notify()

    def _intermediate_video_args(self) -> List[str]:
        return [
            "-c:v", "libx264",
            "-preset", settings.ffmpeg_preset,
            "-crf", str(INTERMEDIATE_CRF),
            "-pix_fmt", "yuv420p",
            "-threads", str(settings.ffmpeg_threads),
        ]

    async def _build_concat(self, job: RenderJob, work_dir: Path, notify: Callable[[], None]) -> Path:
        self._enter(job, RenderStatus.BUILDING_CONCAT, notify)
        track = job.timeline.primary_track
        sources = await fetch_assets(
            [clip.source_asset_url for clip in track.clips], work_dir / "assets", client=self.http_client
        )
        graph = build_video_graph(track, sources, job.output_settings)
        output = work_dir / "concat.mp4"
        args = [
            *graph.inputs,
            "-filter_complex", graph.filter_complex,
            "-map", f"[{graph.output_label}]",
            "-an",
            *self._intermediate_video_args(),
            str(output),
        ]
        await self._ffmpeg(job, RenderStatus.BUILDING_CONCAT, args, graph.duration, notify)
        return output

    async def _build_audio_mix(self, job: RenderJob, work_dir: Path, notify: Callable[[], None]) -> Path:
        self._enter(job, RenderStatus.BUILDING_AUDIO_MIX, notify)
        timeline = job.timeline
        sources = await fetch_assets(
            [clip.source_asset_url for track in timeline.audio_tracks for clip in track.clips],
            work_dir / "assets",
            client=self.http_client,
        )
        duration = timeline.total_duration_seconds
        graph = build_audio_graph(timeline, sources, duration)
        output = work_dir / "mix.wav"
        args = [
            *graph.inputs,
            "-filter_complex", graph.filter_complex,
            "-map", f"[{graph.output_label}]",
            "-t", fmt(duration),
            "-c:a", "pcm_s16le",
            str(output),
        ]
        await self._ffmpeg(job, RenderStatus.BUILDING_AUDIO_MIX, args, duration, notify)
        return output

    async def _build_grade(
        self,
        job: RenderJob,
        grade: ColorGrade,
        concat_path: Path,
        mix_path: Path,
        work_dir: Path,
        notify: Callable[[], None],
    ) -> Path:
        self._enter(job, RenderStatus.BUILDING_GRADE, notify)
        timeline = job.timeline
        total = timeline.total_duration_seconds
        chain = build_grade_filter(grade)
        # Hold the last frame when the audio runs past the picture
        tail = total - timeline.primary_track.rendered_duration_seconds
        if tail > EPSILON:
            chain += f",tpad=stop_mode=clone:stop_duration={fmt(tail)}"
        output = work_dir / "graded.mkv"
        args = [
            "-i", str(concat_path),
            "-i", str(mix_path),
            "-filter_complex", f"[0:v]{chain}[vout]",
            "-map", "[vout]",
            "-map", "1:a",
            *self._intermediate_video_args(),
            "-c:a", "pcm_s16le",
            "-t", fmt(total),
            str(output),
        ]
        await self._ffmpeg(job, RenderStatus.BUILDING_GRADE, args, total, notify)
        return output

    async def _encode(self, job: RenderJob, graded_path: Path, work_dir: Path, notify: Callable[[], None]) -> Path:
        self._enter(job, RenderStatus.ENCODING, notify)
        output = work_dir / f"final.{job.output_settings.format}"
        args = build_encode_args(graded_path, output, job.output_settings)
        await self._ffmpeg(job, RenderStatus.ENCODING, args, job.timeline.total_duration_seconds, notify)
        await validate_output(output, str(job.id))
        return output

    def _publish(self, final_path: Path, name: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        destination = self.output_dir / f"{name}{final_path.suffix}"
        shutil.move(str(final_path), str(destination))
        return destination
