"""
Pydantic v2 models for pipeline definitions.

These models describe what a run does (ordered stages and their
endpoints) and are immutable once built from parsed options.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Placeholder substituted with a frame path in per-frame command templates
FRAME_PLACEHOLDER = "{}"

# Token substituted with the fan-out output pattern of frame extraction
FRAMES_TOKEN = "{frames}"


class StageKind(str, Enum):
    CROP = "crop"
    EXTRACT = "extract"
    EXEC = "exec"


class InputMode(str, Enum):
    FILE = "file"
    STDIN = "stdin"
    PIPE = "pipe"  # stdout of the previous stage
    FRAMES = "frames"  # one invocation per frame of the previous stage


class OutputMode(str, Enum):
    FILE = "file"
    STDOUT = "stdout"
    PIPE = "pipe"  # stdin of the next stage, or the transcript reducer
    FANOUT = "fanout"  # numbered image files in the working area


class StageSpec(BaseModel):
    """One external transform in a pipeline."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Label used in logs and errors")
    kind: StageKind
    command: tuple[str, ...] = Field(..., min_length=1, description="Command template")
    input_mode: InputMode
    input_path: str | None = Field(default=None, description="Input file for FILE mode")
    output_mode: OutputMode
    output_path: str | None = Field(default=None, description="Output file for FILE mode")
    progress: bool = Field(default=False, description="Stage can write an ffmpeg progress feed")

    @model_validator(mode="after")
    def check_endpoints(self) -> StageSpec:
        """File endpoints need a path."""
        if self.input_mode == InputMode.FILE and not self.input_path:
            raise ValueError(f"{self.name}: file input requires input_path")
        if self.output_mode == OutputMode.FILE and not self.output_path:
            raise ValueError(f"{self.name}: file output requires output_path")
        if self.kind == StageKind.EXEC and self.input_mode != InputMode.FRAMES:
            raise ValueError(f"{self.name}: exec stages run once per frame")
        return self

    def render(
        self,
        *,
        frame: str | None = None,
        frames_pattern: str | None = None,
        progress_path: str | None = None,
    ) -> list[str]:
        """
        Substitute runtime endpoints into the command template.

        Args:
            frame: Frame path replacing every ``{}`` (exec stages)
            frames_pattern: Output pattern replacing the ``{frames}`` token
            progress_path: Progress feed path, added as ``-progress``

        Returns:
            Argument vector ready for subprocess
        """
        argv: list[str] = []
        for token in self.command:
            if token == FRAMES_TOKEN and frames_pattern is not None:
                token = frames_pattern
            elif frame is not None:
                token = token.replace(FRAME_PLACEHOLDER, frame)
            argv.append(token)

        if progress_path is not None and self.progress:
            argv[1:1] = ["-progress", progress_path]
        return argv


class PipelineSpec(BaseModel):
    """Ordered stages wired end to end."""

    model_config = ConfigDict(frozen=True)

    stages: tuple[StageSpec, ...] = Field(..., min_length=1)
    transcript: bool = Field(
        default=False, description="Reduce the last stage's output into a transcript"
    )

    @model_validator(mode="after")
    def check_chaining(self) -> PipelineSpec:
        """Stage i's output endpoint must be stage i+1's input endpoint."""
        first = self.stages[0]
        if first.input_mode in (InputMode.PIPE, InputMode.FRAMES):
            raise ValueError(f"{first.name}: first stage must read a file or stdin")

        for prev, nxt in zip(self.stages, self.stages[1:]):
            if prev.output_mode == OutputMode.PIPE and nxt.input_mode == InputMode.PIPE:
                continue
            if prev.output_mode == OutputMode.FANOUT and nxt.input_mode == InputMode.FRAMES:
                continue
            raise ValueError(
                f"{prev.name} ({prev.output_mode.value}) cannot feed "
                f"{nxt.name} ({nxt.input_mode.value})"
            )

        last = self.stages[-1]
        if self.transcript and last.output_mode != OutputMode.PIPE:
            raise ValueError("transcript requires the last stage to output to a pipe")
        if not self.transcript and last.output_mode == OutputMode.PIPE:
            raise ValueError(f"{last.name}: pipe output has no consumer")
        return self

    def stage(self, kind: StageKind) -> StageSpec | None:
        """Return the first stage of a kind, if any."""
        return next((s for s in self.stages if s.kind == kind), None)


class RunResult(BaseModel):
    """Outcome of a completed pipeline run."""

    state: str = Field(..., description="Terminal state before cleanup")
    frames: int = Field(default=0, ge=0, description="Frames extracted")
    lines: int = Field(default=0, ge=0, description="Transcript lines emitted")
    frames_dir: str | None = Field(default=None, description="Kept frames directory, if named")
    output: str | None = Field(default=None, description="Transcript or video output file")
