"""
Utility functions for composer module.

FFmpeg process execution with progress streaming, duration probing and
availability checks.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from shared.config import settings
from shared.errors import CompositionError, EncoderNotFoundError
from shared.logging import get_logger

logger = get_logger("composer.utils")

# Keep the tail of stderr for error reports
STDERR_TAIL = 2000

ProgressFn = Callable[[float], None]


def check_ffmpeg_available(binary: Optional[str] = None) -> bool:
    """
    Check if FFmpeg is installed and available in PATH.

    Returns:
        True if FFmpeg is available, False otherwise
    """
    return shutil.which(binary or settings.ffmpeg_binary) is not None


def parse_clock(value: str) -> Optional[float]:
    """Parse ``HH:MM:SS.micro`` into seconds."""
    try:
        hours, minutes, seconds = value.strip().split(":")
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    except ValueError:
        return None


def parse_progress_line(line: str) -> Optional[float]:
    """
    Encoded position in seconds from one ``-progress`` key=value line.

    ffmpeg reports both out_time_us and out_time_ms in microseconds.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or value in ("", "N/A"):
        return None
    if key in ("out_time_us", "out_time_ms"):
        try:
            return max(0.0, int(value) / 1_000_000)
        except ValueError:
            return None
    if key == "out_time":
        seconds = parse_clock(value)
        return max(0.0, seconds) if seconds is not None else None
    return None


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()


async def run_ffmpeg_command(
    cmd: List[str],
    stage: str,
    expected_duration: float = 0.0,
    on_progress: Optional[ProgressFn] = None,
    job_id: Optional[str] = None,
) -> None:
    """
    Run one ffmpeg process to completion, streaming progress.

    ``cmd`` must include ``-progress pipe:1``. ``on_progress`` receives the
    stage-local completion fraction in [0, 1]. Encoder failures are not
    retried: the same inputs fail the same way.

    Raises:
        EncoderNotFoundError: ffmpeg binary is missing
        CompositionError: Non-zero exit status
    """
    logger.info(
        f"Running FFmpeg ({stage}): {' '.join(cmd)}",
        extra={"job_id": job_id, "stage": stage}
    )

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise EncoderNotFoundError(f"FFmpeg binary not found: {cmd[0]}", stage=stage) from e

    stderr_task = asyncio.ensure_future(process.stderr.read())
    try:
        async for raw in process.stdout:
            position = parse_progress_line(raw.decode("utf-8", errors="ignore"))
            if position is not None and on_progress and expected_duration > 0:
                on_progress(min(1.0, position / expected_duration))
        returncode = await process.wait()
        stderr = (await stderr_task).decode("utf-8", errors="replace")
    except asyncio.CancelledError:
        stderr_task.cancel()
        await _kill(process)
        logger.warning(f"FFmpeg ({stage}) killed on cancellation", extra={"job_id": job_id, "stage": stage})
        raise

    if returncode != 0:
        tail = stderr[-STDERR_TAIL:].strip() or "no stderr output"
        logger.error(
            f"FFmpeg ({stage}) exited with {returncode}",
            extra={"job_id": job_id, "stage": stage, "returncode": returncode, "stderr": tail}
        )
        raise CompositionError(f"FFmpeg {stage} failed with exit code {returncode}: {tail}", stage=stage)


async def probe_duration(path: Path, timeout: float = 10.0) -> Optional[float]:
    """
    Container duration via ffprobe.

    Returns:
        Duration in seconds, or None when probing fails
    """
    try:
        process = await asyncio.create_subprocess_exec(
            settings.ffprobe_binary,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        logger.warning(f"Failed to probe duration: {e}", extra={"path": str(path)})
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(process)
        logger.warning(f"ffprobe timed out after {timeout}s", extra={"path": str(path)})
        return None

    try:
        return float(stdout.decode().strip())
    except ValueError as e:
        logger.warning(f"Failed to probe duration: {e}", extra={"path": str(path)})
        return None
