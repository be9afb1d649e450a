"""
Final video encoding for composer module.

Scales the graded master to the requested size and encodes it with the
codec pair of the requested container.
"""
from pathlib import Path
from typing import List

from shared.config import settings
from shared.errors import CompositionError
from shared.logging import get_logger
from shared.models.render import OutputSettings

from .config import FORMAT_CODECS
from .utils import probe_duration

logger = get_logger("composer.encoder")


def build_encode_args(source: Path, output_path: Path, output: OutputSettings) -> List[str]:
    """ffmpeg arguments (after the common head) for the final encode."""
    video_codec, audio_codec = FORMAT_CODECS[output.format]
    args = [
        "-i", str(source),
        "-vf", f"scale={output.width}:{output.height}:flags=lanczos,fps={output.fps},format=yuv420p",
        "-c:v", video_codec,
        "-b:v", output.video_bitrate,
    ]
    if video_codec == "libx264":
        args += ["-preset", settings.ffmpeg_preset]
    else:
        args += ["-row-mt", "1", "-deadline", "good"]
    args += [
        "-c:a", audio_codec,
        "-b:a", output.audio_bitrate,
        "-threads", str(settings.ffmpeg_threads),
    ]
    if output.format in ("mp4", "mov"):
        args += ["-movflags", "+faststart"]  # Web optimization
    args.append(str(output_path))
    return args


async def validate_output(output_path: Path, job_id: str) -> None:
    """
    Check the encoded file exists and is non-empty.

    Raises:
        CompositionError: Output missing or empty
    """
    if not output_path.exists():
        raise CompositionError(f"Final video not created: {output_path}", stage="encoding")

    output_size = output_path.stat().st_size
    if output_size == 0:
        raise CompositionError(f"Final video is empty: {output_path}", stage="encoding")

    duration = await probe_duration(output_path)
    logger.info(
        f"Final video encoded ({output_size / 1024 / 1024:.2f} MB)",
        extra={"job_id": job_id, "size_mb": output_size / 1024 / 1024, "duration": duration}
    )
