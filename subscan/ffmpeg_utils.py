"""
FFmpeg utilities shared by the media stages.

Builds the common ffmpeg argument prefix and queries media duration for
progress reporting.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from pathlib import Path

from subscan.io import is_stdio

logger = logging.getLogger(__name__)

# Larger probe window so streams arriving on a pipe are detected reliably
PIPE_INPUT_OPTS = ["-analyzeduration", "100M", "-probesize", "100M"]

DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


class FFmpegError(Exception):
    """The ffmpeg binary is missing or unusable."""

    pass


def ffmpeg_version(ffmpeg_path: str = "ffmpeg") -> str | None:
    """
    First line of ``ffmpeg -version``.

    Returns:
        Version banner, or None if the binary cannot be run
    """
    try:
        proc = subprocess.run([ffmpeg_path, "-version"], capture_output=True, text=True, timeout=10)
    except (subprocess.SubprocessError, OSError):
        return None
    if proc.returncode != 0 or not proc.stdout:
        return None
    return proc.stdout.splitlines()[0]


def require_ffmpeg(ffmpeg_path: str = "ffmpeg") -> None:
    """Raise FFmpegError unless ffmpeg can be executed."""
    version = ffmpeg_version(ffmpeg_path)
    if version is None:
        raise FFmpegError(f"FFmpeg not found at: {ffmpeg_path}")
    logger.debug(version)


# ============================================================
# Command building
# ============================================================


def base_command(ffmpeg_path: str, input_path: str | None, verbose: bool) -> list[str]:
    """Common ffmpeg prefix up to and including the input."""
    cmd = [ffmpeg_path, "-hide_banner", "-y"]
    if not verbose:
        cmd += ["-v", "error"]
    if is_stdio(input_path):
        cmd += PIPE_INPUT_OPTS + ["-i", "pipe:0"]
    else:
        # Keep ffmpeg off the terminal; it runs in its own process group
        cmd += ["-nostdin", "-i", str(input_path)]
    return cmd


# ============================================================
# Duration probing
# ============================================================


def parse_duration_text(text: str) -> float | None:
    """
    Parse the ``Duration: HH:MM:SS.xx`` line ffmpeg prints for an input.

    Returns:
        Duration in seconds, or None if absent
    """
    match = DURATION_RE.search(text)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def _ffprobe_duration(video_path: Path, ffprobe_path: str) -> float | None:
    cmd = [ffprobe_path, "-v", "error", "-show_entries", "format=duration", "-of", "json", str(video_path)]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
        if proc.returncode != 0:
            logger.debug(f"ffprobe exited {proc.returncode} for {video_path}")
            return None

        data = json.loads(proc.stdout)
        duration = data.get("format", {}).get("duration")
        return float(duration) if duration is not None else None

    except (subprocess.SubprocessError, OSError, json.JSONDecodeError, ValueError) as e:
        logger.debug(f"ffprobe unusable: {e}")
        return None


def _ffmpeg_banner_duration(video_path: Path, ffmpeg_path: str) -> float | None:
    cmd = [ffmpeg_path, "-hide_banner", "-nostdin", "-i", str(video_path)]
    try:
        # Exits non-zero ("At least one output file must be specified")
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
        return parse_duration_text(proc.stderr)
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"ffmpeg duration probe failed: {e}")
        return None


def probe_duration(
    video_path: Path | str | None,
    *,
    ffprobe_path: str = "ffprobe",
    ffmpeg_path: str = "ffmpeg",
) -> float | None:
    """
    Get the duration of a video file in seconds.

    Queries ffprobe first and falls back to parsing ffmpeg's input banner.

    Args:
        video_path: Video file, or None/'-' for stdin (never probed)
        ffprobe_path: Path to ffprobe binary
        ffmpeg_path: Path to ffmpeg binary

    Returns:
        Positive duration, or None when it cannot be determined
    """
    if is_stdio(video_path):
        return None

    video_path = Path(video_path)
    duration = _ffprobe_duration(video_path, ffprobe_path)
    if duration is None or duration <= 0:
        duration = _ffmpeg_banner_duration(video_path, ffmpeg_path)

    if duration is None or duration <= 0:
        logger.warning(f"Could not determine duration of {video_path}")
        return None
    return duration
