"""
Progress reporting from ffmpeg ``-progress`` feeds.

A ProgressMonitor reads ``key=value`` records from a stage's FIFO on a
background thread and draws a tqdm bar on stderr. It never writes to the
stage or signals it, so the stage runs at full speed whether or not anyone
watches the bar.
"""

from __future__ import annotations

import itertools
import logging
import re
import sys
import threading
import time
from typing import TYPE_CHECKING, Callable, TextIO

from tqdm import tqdm

if TYPE_CHECKING:
    from subscan.workspace import ProgressFeed

logger = logging.getLogger(__name__)

PROGRESS_RE = re.compile(r"^out_time_ms=(\d+)$")

# Seconds represented by a full bar when the duration is unknown
NOMINAL_SCALE = 100

SPINNER = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

DEFAULT_WIDTH = 40


def parse_elapsed(line: str) -> int | None:
    """
    Extract elapsed whole seconds from an ``out_time_ms`` record.

    ffmpeg reports this field in microseconds despite its name.
    """
    match = PROGRESS_RE.match(line.strip())
    if not match:
        return None
    return int(match.group(1)) // 1_000_000


class ProgressTracker:
    """
    Turns progress records into redraw decisions.

    ``update`` returns a fill value (0-100) only when the elapsed time
    strictly increased, so duplicate records never cause a redraw.
    """

    def __init__(self, duration: float | None = None):
        self.duration = duration if duration and duration > 0 else None
        self.last_time = 0

    @property
    def scaled(self) -> bool:
        return self.duration is not None

    def percent(self, elapsed: float) -> int:
        if self.duration is not None:
            return min(100, int(elapsed * 100 // self.duration))
        return min(100, int(elapsed * 100 // NOMINAL_SCALE))

    def update(self, line: str) -> int | None:
        elapsed = parse_elapsed(line)
        if elapsed is None or elapsed <= self.last_time:
            return None
        self.last_time = elapsed
        return self.percent(elapsed)


# ============================================================
# Renderers
# ============================================================


class BarRenderer:
    """``Label: [####    ]  NN%`` bar for a known duration."""

    every_record = False

    def __init__(
        self,
        label: str,
        done_label: str,
        *,
        width: int = DEFAULT_WIDTH,
        position: int = 0,
        file: TextIO | None = None,
        show_percent: bool = True,
    ):
        self.label = label
        self.done_label = done_label
        bar_format = f"{{desc}}: [{{bar:{width}}}]"
        if show_percent:
            bar_format += " {percentage:3.0f}%"
        self.bar = tqdm(
            total=100,
            desc=label,
            bar_format=bar_format,
            ascii=" #",
            position=position,
            leave=True,
            file=file or sys.stderr,
            dynamic_ncols=False,
        )

    def draw(self, value: int) -> None:
        self.bar.set_description_str(self.done_label if value >= 100 else self.label, refresh=False)
        self.bar.n = value
        self.bar.refresh()

    def finish(self) -> None:
        self.draw(100)
        self.bar.close()


class UnscaledRenderer(BarRenderer):
    """Activity bar against a nominal scale; no percentage is shown."""

    def __init__(self, label: str, done_label: str, **kwargs):
        super().__init__(label, done_label, show_percent=False, **kwargs)

    def finish(self) -> None:
        # Completion is the only point where 100% is known
        self.bar.bar_format = self.bar.bar_format + " {percentage:3.0f}%"
        super().finish()


class SpinnerRenderer:
    """Rotating spinner for unseekable input."""

    # Turns on each record; there is no elapsed scale to advance against
    every_record = True

    def __init__(self, label: str, done_label: str, *, position: int = 0, file: TextIO | None = None):
        self.label = label
        self.done_label = done_label
        self.frame = 0
        self.bar = tqdm(
            total=None,
            desc=f"{label} {SPINNER[0]}",
            bar_format="{desc}",
            position=position,
            leave=True,
            file=file or sys.stderr,
        )

    def draw(self, value: int) -> None:
        self.frame = (self.frame + 1) % len(SPINNER)
        self.bar.set_description_str(f"{self.label} {SPINNER[self.frame]}")

    def finish(self) -> None:
        self.bar.set_description_str(self.done_label)
        self.bar.close()


Renderer = BarRenderer | SpinnerRenderer


def make_renderer(
    label: str,
    done_label: str,
    duration: float | None,
    *,
    spinner: bool = False,
    width: int = DEFAULT_WIDTH,
    position: int = 0,
    file: TextIO | None = None,
) -> Renderer:
    """Pick the indicator that fits what is known about the input."""
    if spinner:
        return SpinnerRenderer(label, done_label, position=position, file=file)
    if duration and duration > 0:
        return BarRenderer(label, done_label, width=width, position=position, file=file)
    return UnscaledRenderer(label, done_label, width=width, position=position, file=file)


# ============================================================
# Monitor
# ============================================================


class ProgressMonitor:
    """
    Background reader for one ProgressFeed.

    The renderer is built on the reader thread once the stage has written its
    first record. ``probe``, when given, looks up the input duration there
    too, so a slow lookup never delays the stage itself.
    """

    def __init__(
        self,
        feed: ProgressFeed,
        renderer_factory: Callable[[float | None], Renderer],
        *,
        probe: Callable[[], float | None] | None = None,
    ):
        self.feed = feed
        self.renderer_factory = renderer_factory
        self.probe = probe
        self.renderer: Renderer | None = None
        self.tracker = ProgressTracker(feed.duration)
        self.redraws = 0
        self._thread: threading.Thread | None = None

    def start(self) -> ProgressMonitor:
        self._thread = threading.Thread(
            target=self._run,
            name=f"progress-{self.feed.path.stem}",
            daemon=True,
        )
        self._thread.start()
        return self

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _redraw_value(self, line: str) -> int | None:
        value = self.tracker.update(line)
        if value is None and self.renderer.every_record and parse_elapsed(line) is not None:
            return self.tracker.percent(self.tracker.last_time)
        return value

    def _run(self) -> None:
        try:
            # Blocks until the stage opens its end; EOF once it closes it
            with open(self.feed.path, encoding="utf-8", errors="replace") as fh:
                first = fh.readline()
                if first and self.probe is not None:
                    self.feed.duration = self.probe()
                    self.tracker = ProgressTracker(self.feed.duration)
                self.renderer = self.renderer_factory(self.feed.duration)

                for line in itertools.chain([first], fh):
                    value = self._redraw_value(line)
                    if value is not None:
                        self.redraws += 1
                        self.renderer.draw(value)
        finally:
            # Always show completion, even if the last record undershot
            if self.renderer is not None:
                self.renderer.finish()

    def stop(self, timeout: float = 5.0) -> None:
        """
        Wait for the feed to drain.

        If the stage never opened its end of the FIFO the reader is still
        blocked in ``open()``; it is released with an empty writer.
        """
        if self._thread is None:
            return

        deadline = time.monotonic() + timeout
        while self._thread.is_alive() and time.monotonic() < deadline:
            self._thread.join(0.05)
            if self._thread.is_alive():
                self.feed.release_reader()

        if self._thread.is_alive():
            logger.warning(f"Progress reader for {self.feed.path.name} did not finish")
