"""
Subtitle OCR with Tesseract.

Per-frame OCR worker. The pipeline runs it as ``python -m subscan.ocr`` once
per frame, so each recognition is a separate process that cancellation can
kill. Prints recognized lines to stdout, top to bottom.
"""

from __future__ import annotations

import argparse
import io
import logging
import re
import sys
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from subscan.config import DEFAULT_LANGUAGES

logger = logging.getLogger(__name__)

# BCP-47 tags accepted on the command line -> Tesseract traineddata names
LANGUAGE_CODES = {
    "en": "eng",
    "en-US": "eng",
    "en-GB": "eng",
    "zh-CN": "chi_sim",
    "zh-Hans": "chi_sim",
    "zh-TW": "chi_tra",
    "zh-Hant": "chi_tra",
    "ja-JP": "jpn",
    "ko-KR": "kor",
    "fr-FR": "fra",
    "de-DE": "deu",
    "es-ES": "spa",
    "it-IT": "ita",
    "pt-BR": "por",
    "ru-RU": "rus",
    "uk-UA": "ukr",
    "vi-VT": "vie",
    "th-TH": "tha",
    "ar-SA": "ara",
}

CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff\uff00-\uffef]")


class OCRError(Exception):
    """Error during OCR processing."""

    pass


def tesseract_languages(languages: str) -> str:
    """
    Convert a comma-separated language list to Tesseract's ``a+b`` form.

    Unknown entries are passed through, so Tesseract names work directly.
    """
    codes: list[str] = []
    for tag in languages.split(","):
        tag = tag.strip()
        if not tag:
            continue
        code = LANGUAGE_CODES.get(tag, tag)
        if code not in codes:
            codes.append(code)
    if not codes:
        raise OCRError("No OCR language given")
    return "+".join(codes)


# ============================================================
# Image Preprocessing
# ============================================================


def to_gray(img: Image.Image) -> np.ndarray:
    """Grayscale array of a PIL image."""
    return np.asarray(img.convert("L"))


def preprocess_subtitle(gray: np.ndarray, *, upscale: float = 2.0, denoise: bool = True) -> np.ndarray:
    """
    Prepare a cropped subtitle band for Tesseract.

    Subtitle text is usually light on a busy background. The band is
    upscaled, binarized with Otsu's threshold and inverted when needed so
    the text ends up dark on white.

    Args:
        gray: Grayscale subtitle band
        upscale: Resize factor applied first (1.0 keeps the size)
        denoise: Median-filter speckles left by thresholding

    Returns:
        Binary image, text black on white
    """
    import cv2

    result = gray
    if upscale > 1.0:
        result = cv2.resize(result, None, fx=upscale, fy=upscale, interpolation=cv2.INTER_CUBIC)

    result = cv2.GaussianBlur(result, (3, 3), 0)
    _, result = cv2.threshold(result, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    # Glyphs cover less of the band than background does
    if np.count_nonzero(result) < result.size / 2:
        result = cv2.bitwise_not(result)

    if denoise:
        result = cv2.medianBlur(result, 3)
    return result


# ============================================================
# Tesseract OCR
# ============================================================


def join_words(words: list[str]) -> str:
    """Join words of one line; CJK characters are not space separated."""
    text = ""
    for word in words:
        if text and not (CJK_RE.match(text[-1]) and CJK_RE.match(word[0])):
            text += " "
        text += word
    return text


def group_lines(data: dict[str, list]) -> list[str]:
    """
    Rebuild text lines from ``pytesseract.image_to_data`` output.

    Words are grouped by (block, paragraph, line) in the order Tesseract
    reports them, which is top to bottom. Empty and negative-confidence
    entries are dropped.
    """
    lines: dict[tuple[int, int, int], list[str]] = {}
    for i, text in enumerate(data["text"]):
        text = str(text).strip()
        if not text or float(data["conf"][i]) < 0:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(text)
    return [join_words(words) for words in lines.values()]


def recognize_lines(img: np.ndarray | Image.Image, lang: str, *, psm: int = 6) -> list[str]:
    """
    Recognize the text lines of one image.

    Args:
        img: Image as a PIL image or a grayscale/binary array
        lang: Tesseract language string (e.g. ``chi_sim+eng``)
        psm: Page segmentation mode (6 = one uniform block of text)

    Returns:
        Recognized lines, top to bottom

    Raises:
        OCRError: If Tesseract is missing or fails
    """
    import pytesseract

    if isinstance(img, np.ndarray):
        img = Image.fromarray(img)

    try:
        data = pytesseract.image_to_data(
            img,
            lang=lang,
            config=f"--psm {psm}",
            output_type=pytesseract.Output.DICT,
        )
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        raise OCRError(f"Tesseract failed: {e}") from e

    lines = group_lines(data)
    logger.debug(f"Tesseract ({lang}, psm {psm}) recognized {len(lines)} lines")
    return lines


def load_image(source: Path | str | bytes) -> Image.Image:
    """
    Open an image from a path or raw bytes.

    Raises:
        OCRError: If the file is missing or not a readable image
    """
    try:
        if isinstance(source, bytes):
            if not source:
                raise OCRError("No input data received")
            return Image.open(io.BytesIO(source)).convert("RGB")

        path = Path(source)
        if not path.is_file():
            raise OCRError(f"File does not exist at path: {path}")
        with Image.open(path) as img:
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise OCRError(f"Could not create image from input data: {e}") from e


def ocr_image(source: Path | str | bytes, *, languages: str = DEFAULT_LANGUAGES, fast: bool = False) -> list[str]:
    """
    Recognize the subtitle lines of one frame.

    Fast mode hands the frame to Tesseract as is; otherwise it is
    upscaled and binarized first.
    """
    img = load_image(source)
    lang = tesseract_languages(languages)

    if fast:
        return recognize_lines(img, lang)
    return recognize_lines(preprocess_subtitle(to_gray(img)), lang)


def list_languages() -> list[str]:
    """Languages installed for Tesseract."""
    import pytesseract

    try:
        return sorted(pytesseract.get_languages(config=""))
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        raise OCRError(f"Failed to get supported languages: {e}") from e


# ============================================================
# CLI
# ============================================================


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``subscan-ocr`` / ``python -m subscan.ocr``."""
    parser = argparse.ArgumentParser(
        prog="subscan-ocr",
        description="Recognize text in one image (file argument or stdin)",
        epilog=(
            "Examples:\n"
            "  subscan-ocr image.jpg\n"
            "  subscan-ocr -l zh-CN,en-US image.jpg\n"
            "  subscan-ocr -f image.jpg\n"
            "  cat image.jpg | subscan-ocr"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("image", nargs="?", help="Image file (default: read stdin)")
    parser.add_argument(
        "-l",
        "--language",
        default=DEFAULT_LANGUAGES,
        help=f"Recognition languages, comma-separated (default: {DEFAULT_LANGUAGES})",
    )
    parser.add_argument("-f", "--fast", action="store_true", help="Use fast recognition mode")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--langs", action="store_true", help="List supported languages")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.langs:
            print("Supported languages:")
            for lang in list_languages():
                print(f"  {lang}")
            return 0

        source = args.image if args.image else sys.stdin.buffer.read()
        for line in ocr_image(source, languages=args.language, fast=args.fast):
            print(line)
        return 0

    except OCRError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
