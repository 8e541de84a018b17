"""
Video cropping.

Parses ``WxH+X+Y`` crop geometry and builds the ffmpeg stage that cuts the
subtitle band out of the input video.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from subscan.ffmpeg_utils import base_command
from subscan.io import is_stdio
from subscan.schema import InputMode, OutputMode, StageKind, StageSpec

if TYPE_CHECKING:
    from subscan.config import PipelineConfig

AREA_RE = re.compile(r"^(\d+)x(\d+)\+(\d+)\+(\d+)$")


class CropError(ValueError):
    """Invalid crop geometry."""

    pass


class CropArea(BaseModel):
    """A crop rectangle in pixels."""

    model_config = ConfigDict(frozen=True, strict=True)

    width: int = Field(..., ge=0, description="Width in pixels")
    height: int = Field(..., ge=0, description="Height in pixels")
    x: int = Field(..., ge=0, description="Left offset in pixels")
    y: int = Field(..., ge=0, description="Top offset in pixels")

    def __str__(self) -> str:
        return f"{self.width}x{self.height}+{self.x}+{self.y}"

    @property
    def filter(self) -> str:
        """ffmpeg crop filter expression."""
        return f"crop={self.width}:{self.height}:{self.x}:{self.y}"


def parse_area(value: str) -> CropArea:
    """
    Parse a ``WxH+X+Y`` crop area.

    Args:
        value: Geometry string, e.g. ``1920x200+0+880``

    Returns:
        CropArea with width, height, x, y in that order

    Raises:
        CropError: If the string is not four non-negative integers in
            ``WxH+X+Y`` layout
    """
    match = AREA_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise CropError(f"Area must be in format WxH+X+Y, got {value!r}")

    width, height, x, y = (int(g) for g in match.groups())
    return CropArea(width=width, height=height, x=x, y=y)


def crop_command(
    area: CropArea,
    input_path: str | None,
    output: str | None,
    *,
    ffmpeg_path: str = "ffmpeg",
    video_codec: str = "libx264",
    preset: str = "medium",
    verbose: bool = False,
) -> list[str]:
    """
    Build the ffmpeg command that crops a video to a rectangle.

    Args:
        area: Crop rectangle
        input_path: Input video, or None/'-' for stdin
        output: Output file, or None/'-' for stdout (matroska)
        ffmpeg_path: Path to ffmpeg binary
        video_codec: Encoder for the cropped stream
        preset: Encoder preset
        verbose: Let ffmpeg print its normal diagnostics

    Returns:
        Argument vector
    """
    cmd = base_command(ffmpeg_path, input_path, verbose)
    cmd += ["-filter:v", area.filter, "-c:v", video_codec, "-preset", preset, "-c:a", "copy"]

    if is_stdio(output):
        # Pipes need an explicit container
        cmd += ["-f", "matroska", "-"]
    else:
        cmd.append(str(output))
    return cmd


def crop_stage(config: PipelineConfig, *, to_pipe: bool = False) -> StageSpec:
    """
    Define the crop stage for a run.

    Args:
        config: Run configuration (area must be set)
        to_pipe: Feed the next stage instead of writing config.output

    Returns:
        StageSpec for the crop transform
    """
    if config.area is None:
        raise CropError("Area parameter is required")

    output = None if to_pipe or config.writes_stdout else config.output
    if to_pipe:
        output_mode = OutputMode.PIPE
    elif config.writes_stdout:
        output_mode = OutputMode.STDOUT
    else:
        output_mode = OutputMode.FILE

    command = crop_command(
        config.area,
        config.input,
        output,
        ffmpeg_path=config.ffmpeg_path,
        video_codec=config.video_codec,
        preset=config.preset,
        verbose=config.verbose,
    )
    return StageSpec(
        name="crop",
        kind=StageKind.CROP,
        command=tuple(command),
        input_mode=InputMode.STDIN if config.reads_stdin else InputMode.FILE,
        input_path=None if config.reads_stdin else config.input,
        output_mode=output_mode,
        output_path=output,
        progress=True,
    )
