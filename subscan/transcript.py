"""
Transcript reduction.

OCR output arrives one frame at a time, in frame order. Consecutive frames
usually show the same subtitle, so blank lines are dropped and a line equal
to the previously kept line is skipped. Only one line of history is kept;
repeats that are not adjacent survive.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Iterable, Iterator, TextIO

from subscan.io import is_stdio


class TranscriptReducer:
    """Single-pass consecutive-duplicate filter."""

    def __init__(self, emit: Callable[[str], None] | None = None, *, tee: TextIO | None = None):
        self.emit = emit
        self.tee = tee
        self.previous: str | None = None
        self.count = 0

    def accept(self, line: str) -> str | None:
        """
        Offer one OCR line.

        Returns:
            The trimmed line if it was kept, None if dropped
        """
        text = line.strip()
        if not text or text == self.previous:
            return None

        self.previous = text
        self.count += 1
        if self.emit is not None:
            self.emit(text)
        if self.tee is not None:
            self.tee.write(text + "\n")
            self.tee.flush()
        return text

    def extend(self, lines: Iterable[str]) -> int:
        """Offer many lines; returns how many were kept."""
        return sum(1 for line in lines if self.accept(line) is not None)


def reduce_lines(lines: Iterable[str]) -> Iterator[str]:
    """Yield the lines a TranscriptReducer keeps."""
    reducer = TranscriptReducer()
    for line in lines:
        kept = reducer.accept(line)
        if kept is not None:
            yield kept


class TranscriptSink:
    """
    Destination for transcript lines: a file or stdout.

    The file is only created when the sink is entered, so a run that fails
    before OCR leaves no empty transcript behind. Lines are flushed as they
    arrive.
    """

    def __init__(self, output: str | Path | None, *, stdout: TextIO | None = None):
        self.output = output
        self.stdout = stdout
        self._fh: TextIO | None = None

    @property
    def path(self) -> Path | None:
        return None if is_stdio(self.output) else Path(self.output)

    def __enter__(self) -> TranscriptSink:
        if self.path is None:
            self._fh = self.stdout or sys.stdout
        else:
            self._fh = open(self.path, "w", encoding="utf-8")
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._fh is not None and self.path is not None:
            self._fh.close()
        self._fh = None

    def write(self, line: str) -> None:
        if self._fh is None:
            raise RuntimeError("TranscriptSink is not open")
        self._fh.write(line + "\n")
        self._fh.flush()
