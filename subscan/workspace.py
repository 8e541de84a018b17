"""
Working areas, progress FIFOs and interrupt handling.

Everything a run allocates on disk is registered with a ResourceManager the
moment it is created, and released when the manager exits, whether the run
succeeded, failed or was interrupted.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import signal
import tempfile
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from subscan.io import FRAME_PATTERN, ensure_dir, named_frames_dir

if TYPE_CHECKING:
    from subscan.config import PipelineConfig

logger = logging.getLogger(__name__)

INTERRUPT_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class Interrupted(Exception):
    """A termination signal arrived during a run."""

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by {signal.Signals(signum).name}")
        self.signum = signum

    @property
    def exit_code(self) -> int:
        return 128 + self.signum


@contextmanager
def interrupt_guard(signals: tuple[int, ...] = INTERRUPT_SIGNALS) -> Iterator[None]:
    """
    Turn termination signals into ``Interrupted`` exceptions.

    The exception unwinds through the same ``with``/``finally`` blocks as any
    other failure, so cleanup on interrupt is the normal cleanup path.
    SIGINT already arrives as KeyboardInterrupt. Outside the main thread
    signal handlers cannot be installed and this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum: int, frame: object) -> None:
        raise Interrupted(signum)

    previous = {signum: signal.signal(signum, handler) for signum in signals}
    try:
        yield
    finally:
        for signum, prev in previous.items():
            signal.signal(signum, prev)


@contextmanager
def hold_signals(signals: tuple[int, ...] = (signal.SIGINT, *INTERRUPT_SIGNALS)) -> Iterator[list[int]]:
    """
    Record termination signals instead of acting on them.

    Used around shutdown so a second Ctrl-C or SIGTERM cannot cut cleanup
    short. Yields the list the held signal numbers are appended to; the
    previous handlers are restored on exit. A no-op outside the main thread.
    """
    held: list[int] = []
    if threading.current_thread() is not threading.main_thread():
        yield held
        return

    def handler(signum: int, frame: object) -> None:
        held.append(signum)

    previous = {signum: signal.signal(signum, handler) for signum in signals}
    try:
        yield held
    finally:
        for signum, prev in previous.items():
            signal.signal(signum, prev)


class StoragePolicy(str, Enum):
    NAMED = "named"  # caller-visible, never deleted
    EPHEMERAL = "ephemeral"  # system temp, removed on exit


def choose_policy(
    *,
    use_system_temp: bool = False,
    explicit_dir: str | None = None,
    staging: bool = False,
) -> StoragePolicy:
    """
    Decide where frames live for a run.

    Args:
        use_system_temp: Caller asked for system temp storage
        explicit_dir: Directory the caller named; always kept
        staging: Frames only feed a later step whose results are the output

    Returns:
        The storage policy, fixed for the rest of the run
    """
    if explicit_dir:
        return StoragePolicy.NAMED
    if use_system_temp or staging:
        return StoragePolicy.EPHEMERAL
    return StoragePolicy.NAMED


@dataclass(frozen=True)
class WorkingArea:
    """Directory receiving extracted frames."""

    path: Path
    policy: StoragePolicy

    @property
    def ephemeral(self) -> bool:
        return self.policy == StoragePolicy.EPHEMERAL

    @property
    def frames_pattern(self) -> str:
        """ffmpeg output pattern for numbered frames in this area."""
        return str(self.path / FRAME_PATTERN)


@dataclass
class ProgressFeed:
    """A FIFO a stage writes ffmpeg progress records into."""

    path: Path
    duration: float | None = None

    def release_reader(self) -> bool:
        """
        Give a reader blocked in ``open()`` an end-of-stream.

        Opening the write end succeeds only while a reader is waiting;
        closing it again immediately lets the reader see EOF. Used when the
        stage died before opening its end.

        Returns:
            True if a waiting reader was released
        """
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as e:
            if e.errno in (errno.ENXIO, errno.ENOENT):
                return False
            raise
        os.close(fd)
        return True

    def remove(self) -> None:
        self.release_reader()
        self.path.unlink(missing_ok=True)


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
        logger.debug(f"Removed {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


class ResourceManager:
    """
    Allocates the working area and progress feeds of one run.

    Use as a context manager; every allocation registers its release on an
    ExitStack, and leaving the ``with`` block runs those releases in reverse
    order on every exit path.
    """

    def __init__(self, config: PipelineConfig, *, staging: bool = False):
        self.config = config
        self.staging = staging
        self._stack = ExitStack()
        self._area: WorkingArea | None = None
        self._feeds_dir: Path | None = None
        self.feeds: list[ProgressFeed] = []

    def __enter__(self) -> ResourceManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._stack.close()

    @property
    def policy(self) -> StoragePolicy:
        return choose_policy(
            use_system_temp=self.config.use_system_temp,
            explicit_dir=self.config.frames_dir,
            staging=self.staging,
        )

    def working_area(self) -> WorkingArea:
        """Create the frames directory on first use and return it."""
        if self._area is not None:
            return self._area

        policy = self.policy
        if policy == StoragePolicy.EPHEMERAL:
            path = Path(tempfile.mkdtemp(prefix="subscan-frames-"))
            self._stack.callback(_remove_tree, path)
        elif self.config.frames_dir:
            path = ensure_dir(Path(self.config.frames_dir))
        else:
            path = ensure_dir(named_frames_dir(self.config.input))

        logger.debug(f"Working area ({policy.value}): {path}")
        self._area = WorkingArea(path=path, policy=policy)
        return self._area

    def progress_feed(self, name: str, duration: float | None = None) -> ProgressFeed:
        """
        Create a FIFO for a stage's progress records.

        FIFOs live in their own temp directory so named working areas only
        ever contain frames.
        """
        if self._feeds_dir is None:
            self._feeds_dir = Path(tempfile.mkdtemp(prefix="subscan-progress-"))
            self._stack.callback(_remove_tree, self._feeds_dir)

        path = self._feeds_dir / f"{name}.progress"
        os.mkfifo(path)
        feed = ProgressFeed(path=path, duration=duration)
        self._stack.callback(feed.remove)
        self.feeds.append(feed)
        return feed
