"""Tests for subscan/ffmpeg_utils.py."""

import pytest

from subscan.ffmpeg_utils import (
    FFmpegError,
    base_command,
    ffmpeg_version,
    parse_duration_text,
    probe_duration,
    require_ffmpeg,
)


class TestBaseCommand:
    """Tests for base_command."""

    def test_file_input(self):
        cmd = base_command("ffmpeg", "in.mp4", verbose=False)
        assert cmd == ["ffmpeg", "-hide_banner", "-y", "-v", "error", "-nostdin", "-i", "in.mp4"]

    def test_stdin_input(self):
        cmd = base_command("/usr/bin/ffmpeg", "-", verbose=True)
        assert cmd[0] == "/usr/bin/ffmpeg"
        assert "-v" not in cmd
        assert "-nostdin" not in cmd
        assert cmd[-2:] == ["-i", "pipe:0"]
        assert cmd[cmd.index("-analyzeduration") + 1] == "100M"


class TestParseDurationText:
    """Tests for parse_duration_text."""

    def test_banner_line(self):
        text = "Input #0, mov,mp4\n  Duration: 01:02:03.50, start: 0.000000, bitrate: 1 kb/s\n"
        assert parse_duration_text(text) == pytest.approx(3723.5)

    def test_absent(self):
        assert parse_duration_text("Duration: N/A, start: 0") is None
        assert parse_duration_text("") is None


class TestProbeDuration:
    """Tests for probe_duration."""

    def test_stdin_never_probed(self):
        assert probe_duration("-") is None
        assert probe_duration(None) is None

    def test_missing_tools(self, video_file):
        duration = probe_duration(
            video_file,
            ffprobe_path="/nonexistent/ffprobe",
            ffmpeg_path="/nonexistent/ffmpeg",
        )
        assert duration is None


class TestRequireFFmpeg:
    """Tests for ffmpeg availability checks."""

    def test_missing_binary(self):
        assert ffmpeg_version("/nonexistent/ffmpeg") is None
        with pytest.raises(FFmpegError, match="not found"):
            require_ffmpeg("/nonexistent/ffmpeg")
