"""
I/O utilities and frame file layout.

Provides path helpers for stdin/stdout markers, frame naming and the
default named output directory.
"""

from __future__ import annotations

import re
from pathlib import Path

# Marker used on the command line for stdin input / stdout output
STDIO_MARKER = "-"

# Frame naming pattern: frame_XXXX.jpg (ffmpeg image2 muxer syntax)
FRAME_PATTERN = "frame_%04d.jpg"
FRAME_RE = re.compile(r"^frame_(\d+)\.jpg$")

# Default directory names for named working areas
FRAMES_SUFFIX = "_frames"
DEFAULT_FRAMES_DIR = "frames"


# ============================================================
# Path Helpers
# ============================================================


def ensure_dir(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to create

    Returns:
        The same path (for chaining)
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def is_stdio(value: str | Path | None) -> bool:
    """Check whether an endpoint is the stdin/stdout marker."""
    return value is None or str(value) == STDIO_MARKER


def frame_seq(path: Path | str) -> int | None:
    """Return the sequence number embedded in a frame filename."""
    match = FRAME_RE.match(Path(path).name)
    return int(match.group(1)) if match else None


def list_frames(frames_dir: Path) -> list[Path]:
    """
    List extracted frames in processing order.

    Order is ascending sequence number, which matches the lexicographic
    order of the zero-padded filenames.

    Args:
        frames_dir: Directory written by frame extraction

    Returns:
        Sorted list of frame paths (empty if the directory is missing)
    """
    if not frames_dir.is_dir():
        return []

    frames = [p for p in frames_dir.iterdir() if p.is_file() and frame_seq(p) is not None]
    return sorted(frames, key=lambda p: (frame_seq(p), p.name))


def named_frames_dir(input_path: str | Path | None) -> Path:
    """
    Derive the default named frames directory for an input.

    Args:
        input_path: Input video path, or the stdin marker

    Returns:
        ``<stem>_frames`` for files, ``frames`` for stdin
    """
    if is_stdio(input_path):
        return Path(DEFAULT_FRAMES_DIR)
    return Path(Path(input_path).stem + FRAMES_SUFFIX)
