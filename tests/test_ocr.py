"""Tests for subscan/ocr.py - language mapping and line reconstruction."""

import numpy as np
import pytest

from subscan.ocr import (
    OCRError,
    group_lines,
    join_words,
    load_image,
    main,
    preprocess_subtitle,
    tesseract_languages,
)


class TestTesseractLanguages:
    """Tests for tesseract_languages."""

    def test_default_pair(self):
        assert tesseract_languages("zh-CN,en-US") == "chi_sim+eng"

    def test_duplicates_collapsed(self):
        assert tesseract_languages("en-US, en-GB ,en") == "eng"

    def test_unknown_passed_through(self):
        assert tesseract_languages("jpn_vert,ko-KR") == "jpn_vert+kor"

    def test_empty(self):
        with pytest.raises(OCRError):
            tesseract_languages(" , ")


class TestJoinWords:
    """Tests for join_words."""

    def test_latin_spaced(self):
        assert join_words(["Hello", "world"]) == "Hello world"

    def test_cjk_not_spaced(self):
        assert join_words(["你好", "世界"]) == "你好世界"

    def test_mixed(self):
        assert join_words(["价格", "100", "元"]) == "价格 100 元"


class TestGroupLines:
    """Tests for group_lines."""

    def test_grouped_by_line(self):
        data = {
            "text": ["", "Hello", "world", "", "Second", "line", "noise"],
            "conf": [-1, 95, 90, -1, 88, 91, -1],
            "block_num": [1, 1, 1, 1, 1, 1, 1],
            "par_num": [1, 1, 1, 1, 1, 1, 1],
            "line_num": [0, 1, 1, 2, 2, 2, 3],
        }
        assert group_lines(data) == ["Hello world", "Second line"]

    def test_no_text(self):
        data = {"text": [""], "conf": [-1], "block_num": [0], "par_num": [0], "line_num": [0]}
        assert group_lines(data) == []


class TestLoadImage:
    """Tests for load_image."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(OCRError, match="does not exist"):
            load_image(tmp_path / "missing.jpg")

    def test_not_an_image(self, tmp_path):
        path = tmp_path / "frame_0001.jpg"
        path.write_text("not an image")
        with pytest.raises(OCRError, match="Could not create image"):
            load_image(path)

    def test_empty_bytes(self):
        with pytest.raises(OCRError, match="No input data"):
            load_image(b"")

    def test_png_bytes(self, tmp_path):
        from PIL import Image

        path = tmp_path / "frame.png"
        Image.new("RGB", (8, 4), "white").save(path)
        img = load_image(path.read_bytes())
        assert img.size == (8, 4)
        assert img.mode == "RGB"


class TestMain:
    """Tests for the subscan-ocr entry point."""

    def test_missing_file_exit_code(self, tmp_path, capsys):
        assert main([str(tmp_path / "missing.jpg")]) == 1
        assert "Error:" in capsys.readouterr().err


class TestPreprocessSubtitle:
    """Tests for preprocess_subtitle."""

    def test_light_text_becomes_dark_on_white(self):
        band = np.zeros((20, 100), dtype=np.uint8)
        band[8:12, 10:90] = 255

        result = preprocess_subtitle(band, upscale=2.0)

        assert result.shape == (40, 200)
        assert set(np.unique(result)) <= {0, 255}
        assert result[0, 0] == 255
        assert result[20, 100] == 0

    def test_no_upscale(self):
        band = np.full((10, 40), 255, dtype=np.uint8)
        band[4:6, 5:35] = 0

        result = preprocess_subtitle(band, upscale=1.0, denoise=False)
        assert result.shape == (10, 40)
        assert result[0, 0] == 255
