"""
External process stages.

A stage wraps one external transform (ffmpeg crop, ffmpeg frame sampling, a
per-frame command) bound to explicit stdin/stdout endpoints. Every process
is started inside a ProcessGroup so cancellation reaches the whole tree a
stage spawns, not only the direct child.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

from subscan.schema import InputMode, StageSpec

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


class StageError(Exception):
    """A stage process could not be started or exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        returncode: int | None = None,
        stderr: str | None = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr


class ProcessGroup:
    """
    Processes that are signalled as one unit.

    The first spawned process leads a new process group and later ones join
    it, so ``terminate`` also reaches grandchildren that never left the
    group. Members must be spawned before the leader is reaped.
    """

    def __init__(self) -> None:
        self.pgid: int | None = None
        self.members: list[subprocess.Popen] = []

    def spawn(self, argv: list[str], **kwargs: Any) -> subprocess.Popen:
        kwargs["process_group"] = 0 if self.pgid is None else self.pgid
        proc = subprocess.Popen(argv, **kwargs)
        if self.pgid is None:
            self.pgid = proc.pid
        self.members.append(proc)
        return proc

    @property
    def running(self) -> bool:
        return any(proc.poll() is None for proc in self.members)

    def signal(self, signum: int) -> None:
        """Deliver a signal to every process in the group."""
        if self.pgid is None:
            return
        try:
            os.killpg(self.pgid, signum)
        except ProcessLookupError:
            pass

    def terminate(self, grace: float = 5.0) -> None:
        """
        Stop the whole group: SIGTERM, then SIGKILL after the grace period.

        Returns once every direct member has been reaped. The SIGKILL is sent
        even if an exception interrupts the grace period.
        """
        if self.pgid is None:
            return

        try:
            self.signal(signal.SIGTERM)
            deadline = time.monotonic() + grace
            for proc in self.members:
                try:
                    proc.wait(timeout=max(0.0, deadline - time.monotonic()))
                except subprocess.TimeoutExpired:
                    logger.warning(f"Process {proc.pid} ignored SIGTERM, killing group {self.pgid}")
                    break
        finally:
            # Grandchildren may outlive their parent; they share the group
            self.signal(signal.SIGKILL)
            for proc in self.members:
                proc.wait()


@dataclass
class StageHandle:
    """A running stage process and its endpoints."""

    spec: StageSpec
    process: subprocess.Popen
    argv: list[str] = field(default_factory=list)
    stderr_file: IO[bytes] | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def wait(self) -> int:
        return self.process.wait()

    def collect(self) -> bytes:
        """Wait for exit and return everything written to a piped stdout."""
        out, _ = self.process.communicate()
        return out or b""

    def stderr_tail(self, lines: int = STDERR_TAIL_LINES) -> str | None:
        if self.stderr_file is None or self.stderr_file.closed:
            return None
        self.stderr_file.seek(0)
        text = self.stderr_file.read().decode("utf-8", errors="replace").strip()
        return "\n".join(text.splitlines()[-lines:]) or None

    def error(self) -> StageError:
        rc = self.returncode
        if rc is not None and rc < 0:
            reason = f"killed by {signal.Signals(-rc).name}"
        else:
            reason = f"exited with code {rc}"
        return StageError(
            f"Stage '{self.name}' failed: {reason}",
            stage=self.name,
            returncode=rc,
            stderr=self.stderr_tail(),
        )

    def check(self) -> None:
        """Raise StageError unless the process exited zero."""
        if self.wait() != 0:
            raise self.error()

    def close(self) -> None:
        if self.stderr_file is not None:
            self.stderr_file.close()


class StreamStage:
    """Runs one StageSpec as an external process."""

    def __init__(self, spec: StageSpec, *, verbose: bool = False):
        self.spec = spec
        self.verbose = verbose

    @property
    def name(self) -> str:
        return self.spec.name

    def validate(self) -> None:
        """
        Check inputs before anything is started.

        Raises:
            FileNotFoundError: If a file input does not exist
        """
        if self.spec.input_mode == InputMode.FILE:
            path = Path(self.spec.input_path or "")
            if not path.is_file():
                raise FileNotFoundError(f"Input file '{path}' does not exist")

    def start(
        self,
        group: ProcessGroup,
        *,
        stdin: int | IO[Any] | None = None,
        stdout: int | IO[Any] | None = None,
        frame: str | None = None,
        frames_pattern: str | None = None,
        progress_path: str | None = None,
    ) -> StageHandle:
        """
        Start the stage process inside a process group.

        Engine diagnostics go to the terminal in verbose mode; otherwise they
        are kept in an anonymous temp file for error reports.

        Raises:
            StageError: If the executable cannot be started
        """
        argv = self.spec.render(
            frame=frame,
            frames_pattern=frames_pattern,
            progress_path=progress_path,
        )
        logger.debug(f"Running {self.name}: {shlex.join(argv)}")

        stderr_file = None if self.verbose else tempfile.TemporaryFile()
        try:
            proc = group.spawn(argv, stdin=stdin, stdout=stdout, stderr=stderr_file)
        except OSError as e:
            if stderr_file is not None:
                stderr_file.close()
            raise StageError(
                f"Stage '{self.name}' could not start {argv[0]}: {e}",
                stage=self.name,
            ) from e

        return StageHandle(self.spec, proc, argv, stderr_file)
