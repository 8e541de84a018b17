"""
Pipeline orchestration.

Wires stages end to end: media stages are connected with OS pipes and run
concurrently inside one process group, then the per-frame stage runs once
per extracted frame in filename order, feeding the transcript reducer.

Run states:
    IDLE -> CONFIGURING -> RUNNING -> SUCCEEDED | FAILED | INTERRUPTED -> CLEANED_UP
"""

from __future__ import annotations

import logging
import signal
import subprocess
import sys
import threading
from enum import Enum
from pathlib import Path
from typing import TextIO

from subscan.config import PipelineConfig
from subscan.crop import crop_stage
from subscan.ffmpeg_utils import probe_duration
from subscan.frames import collect_frames, exec_stage, extract_stage, ocr_command
from subscan.progress import ProgressMonitor, make_renderer
from subscan.schema import InputMode, OutputMode, PipelineSpec, RunResult, StageKind
from subscan.stage import ProcessGroup, StageHandle, StreamStage
from subscan.transcript import TranscriptReducer, TranscriptSink
from subscan.workspace import Interrupted, ResourceManager, WorkingArea, hold_signals, interrupt_guard

logger = logging.getLogger(__name__)

# Progress labels per stage kind: (running, finished)
PROGRESS_LABELS = {
    StageKind.CROP: ("Cropping", "Cropped "),
    StageKind.EXTRACT: ("Framing ", "Framed  "),
}

_UNPROBED = object()


class RunState(str, Enum):
    IDLE = "idle"
    CONFIGURING = "configuring"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    CLEANED_UP = "cleaned_up"


# ============================================================
# Pipeline definitions
# ============================================================


def build_pipeline_spec(config: PipelineConfig) -> PipelineSpec:
    """
    Subtitle extraction: crop -> extract frames -> OCR per frame -> transcript.

    Without an area the input goes straight to frame extraction. A custom
    exec template replaces the built-in OCR worker.
    """
    stages = []
    if config.area is not None:
        stages.append(crop_stage(config, to_pipe=True))
    stages.append(extract_stage(config, from_pipe=config.area is not None))

    template = config.exec_cmd or ocr_command(config.languages, config.fast)
    stages.append(exec_stage(template, name="ocr", to_pipe=True))
    return PipelineSpec(stages=tuple(stages), transcript=True)


def build_crop_spec(config: PipelineConfig) -> PipelineSpec:
    """Crop only, writing config.output."""
    return PipelineSpec(stages=(crop_stage(config),))


def build_framify_spec(config: PipelineConfig) -> PipelineSpec:
    """Extract frames, optionally running config.exec_cmd on each one."""
    stages = [extract_stage(config)]
    if config.exec_cmd:
        stages.append(exec_stage(config.exec_cmd))
    return PipelineSpec(stages=tuple(stages))


# ============================================================
# Orchestrator
# ============================================================


class PipelineOrchestrator:
    """
    Runs a PipelineSpec to completion.

    ``run`` returns only after every process has exited and every temporary
    resource has been removed, including when it raises.
    """

    def __init__(
        self,
        spec: PipelineSpec,
        config: PipelineConfig,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        grace: float = 5.0,
    ):
        self.spec = spec
        self.config = config
        self.stdout = stdout
        self.stderr = stderr or sys.stderr
        self.grace = grace
        self.state = RunState.IDLE
        self.history: list[RunState] = [RunState.IDLE]
        self._groups: list[ProcessGroup] = []
        self._handles: list[StageHandle] = []
        self._monitors: list[ProgressMonitor] = []
        self._duration: float | None | object = _UNPROBED
        self._duration_lock = threading.Lock()

    @property
    def show_progress(self) -> bool:
        return self.config.progress and not self.config.verbose

    @property
    def staging(self) -> bool:
        """Frames are intermediate when a per-frame step produces the real output."""
        has_exec = self.spec.stage(StageKind.EXEC) is not None
        return self.spec.transcript or (has_exec and not self.config.verbose)

    def _transition(self, state: RunState) -> None:
        logger.debug(f"Pipeline state: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self) -> RunResult:
        """
        Execute the pipeline.

        Returns:
            RunResult describing the successful run

        Raises:
            FileNotFoundError: Input vanished before the run started
            StageError: A stage failed to start or exited non-zero
            FrameExtractionError: Extraction produced no frames
            Interrupted: SIGTERM/SIGHUP arrived mid-run
            KeyboardInterrupt: SIGINT arrived mid-run
        """
        self._transition(RunState.CONFIGURING)
        stages = [StreamStage(spec, verbose=self.config.verbose) for spec in self.spec.stages]

        try:
            for stage in stages:
                stage.validate()
        except Exception:
            self._transition(RunState.FAILED)
            self._transition(RunState.CLEANED_UP)
            raise

        try:
            with interrupt_guard(), ResourceManager(self.config, staging=self.staging) as resources:
                self._transition(RunState.RUNNING)
                try:
                    result = self._execute(stages, resources)
                    self._transition(RunState.SUCCEEDED)
                except (KeyboardInterrupt, Interrupted):
                    self._transition(RunState.INTERRUPTED)
                    raise
                except Exception:
                    self._transition(RunState.FAILED)
                    raise
                finally:
                    self._release(resources)
        finally:
            self._transition(RunState.CLEANED_UP)

        return result

    def _execute(self, stages: list[StreamStage], resources: ResourceManager) -> RunResult:
        media = [s for s in stages if s.spec.kind != StageKind.EXEC]
        per_frame = next((s for s in stages if s.spec.kind == StageKind.EXEC), None)

        area = resources.working_area() if self.spec.stage(StageKind.EXTRACT) else None
        self._log_summary(area, per_frame)

        if media:
            self._run_media(media, area, resources)

        frames: list[Path] = []
        if area is not None:
            frames = collect_frames(area.path)

        lines = 0
        if per_frame is not None:
            lines = self._run_per_frame(per_frame, frames)

        return RunResult(
            state=RunState.SUCCEEDED.value,
            frames=len(frames),
            lines=lines,
            frames_dir=str(area.path) if area is not None and not area.ephemeral else None,
            output=self._output_path(),
        )

    def _output_path(self) -> str | None:
        if self.spec.transcript:
            return None if self.config.writes_stdout else self.config.output
        return self.spec.stages[-1].output_path

    # ------------------------------------------------------------
    # Media stages
    # ------------------------------------------------------------

    def _input_duration(self) -> float | None:
        """Duration of the input, probed once; cropping keeps it unchanged."""
        # Called from every monitor thread
        with self._duration_lock:
            if self._duration is _UNPROBED:
                self._duration = probe_duration(
                    self.config.input,
                    ffprobe_path=self.config.ffprobe_path,
                    ffmpeg_path=self.config.ffmpeg_path,
                )
            return self._duration

    def _start_monitor(self, stage: StreamStage, position: int, resources: ResourceManager) -> str | None:
        if not (self.show_progress and stage.spec.progress):
            return None

        feed = resources.progress_feed(stage.name)
        label, done_label = PROGRESS_LABELS.get(stage.spec.kind, (stage.name, stage.name))
        spinner = stage.spec.kind == StageKind.CROP and self.config.reads_stdin

        def renderer(duration: float | None):
            return make_renderer(
                label,
                done_label,
                duration,
                spinner=spinner,
                width=self.config.progress_width,
                position=position,
                file=self.stderr,
            )

        probe = None if spinner else self._input_duration
        self._monitors.append(ProgressMonitor(feed, renderer, probe=probe).start())
        return str(feed.path)

    def _run_media(
        self,
        stages: list[StreamStage],
        area: WorkingArea | None,
        resources: ResourceManager,
    ) -> None:
        group = ProcessGroup()
        self._groups.append(group)
        handles: list[StageHandle] = []

        stdin = None if stages[0].spec.input_mode == InputMode.STDIN else subprocess.DEVNULL
        for position, stage in enumerate(stages):
            progress_path = self._start_monitor(stage, position, resources)

            if stage.spec.output_mode == OutputMode.PIPE:
                stdout = subprocess.PIPE
            elif stage.spec.output_mode == OutputMode.STDOUT:
                stdout = None
            else:
                stdout = subprocess.DEVNULL

            handle = stage.start(
                group,
                stdin=stdin,
                stdout=stdout,
                frames_pattern=area.frames_pattern if area is not None else None,
                progress_path=progress_path,
            )
            self._handles.append(handle)
            handles.append(handle)

            if len(handles) > 1 and handles[-2].process.stdout is not None:
                # Only the next stage holds the read end now
                handles[-2].process.stdout.close()
            stdin = handle.process.stdout

        for handle in handles:
            handle.wait()
            logger.debug(f"Stage '{handle.name}' exited with {handle.returncode}")

        failed = [h for h in handles if h.returncode != 0]
        if failed:
            # An upstream stage dying of SIGPIPE is a symptom, not the cause
            cause = next((h for h in failed if h.returncode != -signal.SIGPIPE), failed[0])
            raise cause.error()

        self._stop_monitors()

    # ------------------------------------------------------------
    # Per-frame stage
    # ------------------------------------------------------------

    def _run_per_frame(self, stage: StreamStage, frames: list[Path]) -> int:
        capture = stage.spec.output_mode == OutputMode.PIPE
        if self.config.verbose:
            logger.info(f"Executing: {' '.join(stage.spec.command)} on each frame")

        if not capture:
            for frame in frames:
                self._run_frame(stage, frame, capture=False)
            return 0

        sink = TranscriptSink(self.config.output, stdout=self.stdout)
        with sink:
            reducer = TranscriptReducer(sink.write, tee=self.stderr if self.config.verbose else None)
            for frame in frames:
                output = self._run_frame(stage, frame, capture=True)
                reducer.extend(output.decode("utf-8", errors="replace").splitlines())

        if reducer.count == 0:
            logger.warning("No text was recognized in any frame")
        return reducer.count

    def _run_frame(self, stage: StreamStage, frame: Path, *, capture: bool) -> bytes:
        group = ProcessGroup()
        self._groups = [group]
        handle = stage.start(
            group,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if capture else None,
            frame=str(frame),
        )
        try:
            output = handle.collect() if capture else b""
            handle.check()
        finally:
            handle.close()
        return output

    # ------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------

    def _stop_monitors(self) -> None:
        for monitor in self._monitors:
            monitor.stop()
        self._monitors = []

    def _shutdown(self) -> None:
        """Kill whatever is still running, drain progress feeds, close files."""
        for group in self._groups:
            if group.running:
                logger.debug(f"Terminating process group {group.pgid}")
                group.terminate(self.grace)
        self._groups = []

        self._stop_monitors()

        for handle in self._handles:
            handle.close()
        self._handles = []

    def _release(self, resources: ResourceManager) -> None:
        """Shut down and remove temporaries; signals arriving meanwhile are held."""
        with hold_signals() as held:
            self._shutdown()
            resources.close()
        for signum in held:
            logger.warning(f"{signal.Signals(signum).name} received during cleanup, already stopping")

    def _log_summary(self, area: WorkingArea | None, per_frame: StreamStage | None) -> None:
        if not self.config.verbose:
            return
        logger.info(f"Input : {'stdin (pipe)' if self.config.reads_stdin else self.config.input}")
        if self.spec.transcript or self.spec.stage(StageKind.EXTRACT) is None:
            logger.info(f"Output: {'stdout (pipe)' if self.config.writes_stdout else self.config.output}")
        if area is not None:
            logger.info(f"Frames: {area.path} ({area.policy.value})")
            logger.info(f"Rate  : {self.config.rate_arg} fps")
        if self.config.area is not None and self.spec.stage(StageKind.CROP) is not None:
            logger.info(f"Area  : {self.config.area}")
        if per_frame is not None:
            logger.info(f"Exec  : {' '.join(per_frame.spec.command)}")
