"""
Frame sampling from video.

Builds the ffmpeg stage that writes one numbered JPEG per sampled frame,
the per-frame exec stage that runs over them, and the postcondition that
fails a run when no frames were produced.
"""

from __future__ import annotations

import logging
import shlex
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from subscan.ffmpeg_utils import base_command
from subscan.io import list_frames
from subscan.schema import (
    FRAMES_TOKEN,
    FRAME_PLACEHOLDER,
    InputMode,
    OutputMode,
    StageKind,
    StageSpec,
)

if TYPE_CHECKING:
    from subscan.config import PipelineConfig

logger = logging.getLogger(__name__)


class FrameExtractionError(Exception):
    """Frame extraction finished without producing any frames."""

    pass


def extract_command(
    rate: str,
    input_path: str | None,
    output_pattern: str,
    *,
    ffmpeg_path: str = "ffmpeg",
    jpeg_quality: int | None = None,
    verbose: bool = False,
) -> list[str]:
    """
    Build the ffmpeg command that samples frames into numbered images.

    Args:
        rate: Frames per second, as passed to the fps filter
        input_path: Input video, or None/'-' for stdin
        output_pattern: Image path pattern (e.g. ``dir/frame_%04d.jpg``)
        ffmpeg_path: Path to ffmpeg binary
        jpeg_quality: JPEG quality (2 = best, 31 = worst), ffmpeg default if None
        verbose: Let ffmpeg print its normal diagnostics

    Returns:
        Argument vector
    """
    cmd = base_command(ffmpeg_path, input_path, verbose)
    cmd += ["-vf", f"fps={rate}", "-start_number", "1"]
    if jpeg_quality is not None:
        cmd += ["-q:v", str(jpeg_quality)]
    cmd.append(output_pattern)
    return cmd


def extract_stage(config: PipelineConfig, *, from_pipe: bool = False) -> StageSpec:
    """
    Define the frame extraction stage.

    The output pattern is left as a token; the working area it points into
    is only allocated when the run starts.

    Args:
        config: Run configuration
        from_pipe: Read the previous stage's stdout instead of config.input
    """
    if from_pipe:
        input_mode, input_path = InputMode.PIPE, None
    elif config.reads_stdin:
        input_mode, input_path = InputMode.STDIN, None
    else:
        input_mode, input_path = InputMode.FILE, config.input

    command = extract_command(
        config.rate_arg,
        input_path,
        FRAMES_TOKEN,
        ffmpeg_path=config.ffmpeg_path,
        jpeg_quality=config.jpeg_quality,
        verbose=config.verbose,
    )
    return StageSpec(
        name="extract",
        kind=StageKind.EXTRACT,
        command=tuple(command),
        input_mode=input_mode,
        input_path=input_path,
        output_mode=OutputMode.FANOUT,
        progress=True,
    )


def ocr_command(languages: str, fast: bool = False) -> list[str]:
    """Command template running the OCR worker on one frame."""
    cmd = [sys.executable, "-m", "subscan.ocr", "-l", languages]
    if fast:
        cmd.append("-f")
    cmd.append(FRAME_PLACEHOLDER)
    return cmd


def exec_stage(
    template: str | list[str],
    *,
    name: str = "exec",
    to_pipe: bool = False,
) -> StageSpec:
    """
    Define a stage that runs a command once per frame.

    String templates are split like a shell would, then every ``{}`` is
    replaced literally with the frame path at invocation time. No shell is
    involved.

    Args:
        template: Command template containing ``{}``
        name: Stage label
        to_pipe: Collect stdout for the transcript instead of inheriting it
    """
    argv = shlex.split(template) if isinstance(template, str) else list(template)
    if not any(FRAME_PLACEHOLDER in token for token in argv):
        raise ValueError(f"Exec command must contain the {FRAME_PLACEHOLDER} frame placeholder")

    return StageSpec(
        name=name,
        kind=StageKind.EXEC,
        command=tuple(argv),
        input_mode=InputMode.FRAMES,
        output_mode=OutputMode.PIPE if to_pipe else OutputMode.STDOUT,
    )


def collect_frames(frames_dir: Path) -> list[Path]:
    """
    List the frames of a finished extraction.

    Raises:
        FrameExtractionError: If the directory holds no frames, even when
            ffmpeg exited successfully
    """
    frames = list_frames(frames_dir)
    if not frames:
        raise FrameExtractionError("No frames were extracted")

    logger.info(f"Extracted {len(frames)} frames")
    return frames
