"""Tests for subscan/io.py - frame naming and path helpers."""

from pathlib import Path

from subscan.io import (
    FRAME_PATTERN,
    frame_seq,
    is_stdio,
    list_frames,
    named_frames_dir,
)


class TestFrameNaming:
    """Tests for frame_seq."""

    def test_pattern_zero_padded(self):
        assert FRAME_PATTERN % 1 == "frame_0001.jpg"
        assert FRAME_PATTERN % 42 == "frame_0042.jpg"

    def test_frame_seq(self):
        assert frame_seq("frame_0007.jpg") == 7
        assert frame_seq(Path("/tmp/x/frame_12345.jpg")) == 12345

    def test_frame_seq_other_files(self):
        assert frame_seq("frame_0001.png") is None
        assert frame_seq("cover.jpg") is None


class TestListFrames:
    """Tests for list_frames."""

    def test_missing_directory(self, tmp_path):
        assert list_frames(tmp_path / "nope") == []

    def test_sorted_by_sequence(self, tmp_path):
        for seq in (10, 2, 1, 10000, 9999):
            (tmp_path / (FRAME_PATTERN % seq)).write_bytes(b"")
        (tmp_path / "notes.txt").write_text("x")

        names = [p.name for p in list_frames(tmp_path)]
        assert names == [
            "frame_0001.jpg",
            "frame_0002.jpg",
            "frame_0010.jpg",
            "frame_9999.jpg",
            "frame_10000.jpg",
        ]


class TestStdio:
    """Tests for stdin/stdout markers and named directories."""

    def test_is_stdio(self):
        assert is_stdio(None)
        assert is_stdio("-")
        assert not is_stdio("video.mp4")
        assert not is_stdio(Path("-x"))

    def test_named_frames_dir(self):
        assert named_frames_dir("/videos/movie.mp4") == Path("movie_frames")
        assert named_frames_dir("-") == Path("frames")
        assert named_frames_dir(None) == Path("frames")
