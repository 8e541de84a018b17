"""Tests for subscan/workspace.py - working areas, feeds and interrupts."""

import os
import signal
import stat
import time

import pytest

from subscan.config import PipelineConfig
from subscan.workspace import (
    Interrupted,
    ResourceManager,
    StoragePolicy,
    choose_policy,
    hold_signals,
    interrupt_guard,
)


class TestChoosePolicy:
    """Tests for choose_policy."""

    def test_default_named(self):
        assert choose_policy() == StoragePolicy.NAMED

    def test_system_temp(self):
        assert choose_policy(use_system_temp=True) == StoragePolicy.EPHEMERAL

    def test_staging(self):
        assert choose_policy(staging=True) == StoragePolicy.EPHEMERAL

    def test_explicit_dir_always_kept(self):
        assert choose_policy(use_system_temp=True, explicit_dir="out", staging=True) == StoragePolicy.NAMED


class TestResourceManager:
    """Tests for ResourceManager cleanup on every exit path."""

    def test_ephemeral_removed_on_success(self, temp_root):
        with ResourceManager(PipelineConfig(use_system_temp=True)) as resources:
            area = resources.working_area()
            (area.path / "frame_0001.jpg").write_bytes(b"x")
            assert area.ephemeral
            assert area.path.parent == temp_root

        assert not area.path.exists()
        assert list(temp_root.iterdir()) == []

    def test_ephemeral_removed_on_error(self, temp_root):
        with pytest.raises(RuntimeError):
            with ResourceManager(PipelineConfig(), staging=True) as resources:
                area = resources.working_area()
                raise RuntimeError("stage failed")

        assert not area.path.exists()

    def test_ephemeral_removed_on_interrupt(self, temp_root):
        with pytest.raises(Interrupted):
            with ResourceManager(PipelineConfig(use_system_temp=True)) as resources:
                resources.working_area()
                resources.progress_feed("extract")
                raise Interrupted(signal.SIGTERM)

        assert list(temp_root.iterdir()) == []

    def test_working_area_allocated_once(self, temp_root):
        with ResourceManager(PipelineConfig(use_system_temp=True)) as resources:
            assert resources.working_area() is resources.working_area()
            assert len(list(temp_root.iterdir())) == 1

    def test_explicit_dir_kept(self, tmp_path):
        frames_dir = tmp_path / "custom_frames"
        with ResourceManager(PipelineConfig(frames_dir=str(frames_dir), use_system_temp=True)) as resources:
            area = resources.working_area()
            assert not area.ephemeral

        assert frames_dir.is_dir()

    def test_named_dir_from_input(self, tmp_path, monkeypatch, video_file):
        monkeypatch.chdir(tmp_path)
        with ResourceManager(PipelineConfig(input=str(video_file))) as resources:
            area = resources.working_area()

        assert area.policy == StoragePolicy.NAMED
        assert (tmp_path / "clip_frames").is_dir()
        assert area.frames_pattern.endswith("frame_%04d.jpg")

    def test_progress_feed_is_fifo(self, temp_root):
        with ResourceManager(PipelineConfig()) as resources:
            feed = resources.progress_feed("crop", duration=12.0)
            assert stat.S_ISFIFO(os.stat(feed.path).st_mode)
            assert feed.duration == 12.0
            assert resources.feeds == [feed]

        assert not feed.path.exists()
        assert list(temp_root.iterdir()) == []

    def test_release_reader_without_reader(self, temp_root):
        with ResourceManager(PipelineConfig()) as resources:
            feed = resources.progress_feed("crop")
            assert feed.release_reader() is False


class TestInterruptGuard:
    """Tests for interrupt_guard."""

    def test_sigterm_raises(self):
        with pytest.raises(Interrupted) as exc_info:
            with interrupt_guard():
                os.kill(os.getpid(), signal.SIGTERM)
                time.sleep(5)

        assert exc_info.value.signum == signal.SIGTERM
        assert exc_info.value.exit_code == 143

    def test_handlers_restored(self):
        before = signal.getsignal(signal.SIGTERM)
        with interrupt_guard():
            assert signal.getsignal(signal.SIGTERM) is not before
        assert signal.getsignal(signal.SIGTERM) is before

    def test_exit_codes(self):
        assert Interrupted(signal.SIGHUP).exit_code == 129
        assert "SIGHUP" in str(Interrupted(signal.SIGHUP))


class TestHoldSignals:
    """Tests for hold_signals."""

    def test_signals_recorded_not_raised(self):
        with interrupt_guard():
            with hold_signals() as held:
                os.kill(os.getpid(), signal.SIGTERM)
                os.kill(os.getpid(), signal.SIGINT)
                time.sleep(0.2)

        assert sorted(held) == sorted([signal.SIGTERM, signal.SIGINT])

    def test_guard_handler_restored(self):
        with interrupt_guard():
            guard = signal.getsignal(signal.SIGTERM)
            with hold_signals():
                assert signal.getsignal(signal.SIGTERM) is not guard
            assert signal.getsignal(signal.SIGTERM) is guard
