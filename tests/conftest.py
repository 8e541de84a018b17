"""Shared fixtures: stand-in executables for ffmpeg and OCR stages."""

import stat
import sys
import tempfile
from pathlib import Path

import pytest

FAKE_STAGE = '''
import argparse
import os
import signal
import sys
import time

parser = argparse.ArgumentParser()
parser.add_argument("-progress")
parser.add_argument("--emit", nargs="*", default=[])
parser.add_argument("--split")
parser.add_argument("--exit", type=int, default=0)
parser.add_argument("--sleep", type=float, default=0.0)
parser.add_argument("--ignore-term", action="store_true")
parser.add_argument("--pid-file")
args = parser.parse_args()

if args.ignore_term:
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
if args.pid_file:
    with open(args.pid_file, "w") as fh:
        fh.write(str(os.getpid()))

if args.progress:
    with open(args.progress, "w") as fh:
        for us in (1000000, 1000000, 2000000, 3000000):
            fh.write(f"out_time_ms={us}\\nprogress=continue\\n")
            fh.flush()
        fh.write("progress=end\\n")

for line in args.emit:
    print(line, flush=True)

if args.split:
    for i, line in enumerate(sys.stdin.read().splitlines(), 1):
        with open(args.split % i, "w") as fh:
            fh.write(line + "\\n")

time.sleep(args.sleep)
sys.exit(args.exit)
'''

FAKE_OCR = '''
import sys

path = sys.argv[-1]
if "--fail" in sys.argv:
    sys.stderr.write(f"cannot read {path}\\n")
    sys.exit(3)
with open(path) as fh:
    sys.stdout.write(fh.read())
'''


def _write_executable(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_stage(tmp_path):
    """Executable standing in for ffmpeg: emits lines, splits stdin into frames."""
    return str(_write_executable(tmp_path / "fake_stage", FAKE_STAGE))


@pytest.fixture
def fake_ocr(tmp_path):
    """Executable standing in for the OCR worker: prints the frame's text."""
    return str(_write_executable(tmp_path / "fake_ocr", FAKE_OCR))


@pytest.fixture
def video_file(tmp_path):
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return video


@pytest.fixture
def temp_root(tmp_path, monkeypatch):
    """Redirect the system temp dir so leftovers can be detected."""
    root = tmp_path / "systemp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root
