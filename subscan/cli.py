"""
Command line entry points.

Usage:
    subscan -i video.mp4 -a 1920x200+0+880 -o subs.txt
    cat video.mp4 | subscan -a 600x50+210+498 > subs.txt
    subscan-crop -i video.mp4 -a 1920x200+0+880 -o cropped.mkv
    subscan-framify -i video.mp4 -r 2 -o custom_frames
    subscan-framify -i video.mp4 -exec 'subscan-ocr {}'
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError
from tqdm.contrib.logging import logging_redirect_tqdm

from subscan.config import DEFAULT_LANGUAGES, PipelineConfig, load_config
from subscan.ffmpeg_utils import FFmpegError, require_ffmpeg
from subscan.frames import FrameExtractionError
from subscan.pipeline import (
    PipelineOrchestrator,
    build_crop_spec,
    build_framify_spec,
    build_pipeline_spec,
)
from subscan.schema import PipelineSpec, RunResult
from subscan.stage import StageError
from subscan.workspace import Interrupted

logger = logging.getLogger("subscan")

SUBSCAN_EXAMPLES = """\
Examples:
  # Using pipe (read from stdin, write to stdout):
  cat video.mp4 | subscan -a 600x50+210+498 > subs.txt

  # Using pipe with custom frame rate:
  cat video.mp4 | subscan -a 600x50+210+498 -r 2 > subs.txt

  # Using pipe with specific language:
  cat video.mp4 | subscan -a 600x50+210+498 -l en-US > subs.txt

  # Using input file (equivalent to above):
  subscan -i video.mp4 -a 600x50+210+498 -o subs.txt

  # Use fast mode for quicker processing:
  subscan -i video.mp4 -a 600x50+210+498 -f -o subs.txt
"""

CROP_EXAMPLES = """\
Example:
  subscan-crop --input video.mp4 --area 1920x200+0+880 --output cropped.mkv
"""

FRAMIFY_EXAMPLES = """\
Examples:
  # Extract 1 frame per second (output to 'video_frames' directory):
  subscan-framify -i video.mp4

  # Extract 2 frames per second to custom directory:
  subscan-framify -i video.mp4 -r 2 -o custom_frames

  # Using stdin (output to 'frames' directory):
  cat video.mp4 | subscan-framify

  # Extract frames and perform OCR on each frame:
  subscan-framify -i video.mp4 -exec 'subscan-ocr {}'
"""


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", type=Path, help="Path to subscan.yaml")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show ffmpeg output instead of progress bars",
    )


def _build_config(parser: argparse.ArgumentParser, args: argparse.Namespace, **options: Any) -> PipelineConfig:
    """Validate options; any problem ends the process with usage text."""
    try:
        file_config = load_config(args.config)
        return PipelineConfig.from_sources(file_config, verbose=args.verbose or None, **options)
    except ValidationError as e:
        messages = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
        parser.error(messages)
    except (FileNotFoundError, ValueError) as e:
        parser.error(str(e))


def _execute(
    spec_builder: Callable[[PipelineConfig], PipelineSpec],
    config: PipelineConfig,
) -> tuple[int, RunResult | None]:
    """Run a pipeline and map its outcome to an exit code."""
    try:
        require_ffmpeg(config.ffmpeg_path)
        orchestrator = PipelineOrchestrator(spec_builder(config), config)
        with logging_redirect_tqdm():
            result = orchestrator.run()
        return 0, result

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130, None
    except Interrupted as e:
        logger.info(str(e))
        return e.exit_code, None
    except FFmpegError as e:
        logger.error(str(e))
        return 1, None
    except FrameExtractionError as e:
        logger.error(f"Error: {e}")
        return 1, None
    except StageError as e:
        logger.error(str(e))
        if e.stderr:
            logger.error(e.stderr)
        return 1, None
    except FileNotFoundError as e:
        logger.error(f"Error: {e}")
        return 1, None


# ============================================================
# subscan
# ============================================================


def main(argv: list[str] | None = None) -> int:
    """Extract subtitles from a video."""
    argv = sys.argv[1:] if argv is None else argv
    parser = argparse.ArgumentParser(
        prog="subscan",
        description="Extract subtitles from video file",
        epilog=SUBSCAN_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-i", "--input", default="-", help="Input video file (default: stdin)")
    parser.add_argument(
        "-a",
        "--area",
        required=True,
        help="Area to extract in format WxH+X+Y (e.g. 1920x200+0+880 for bottom subtitle)",
    )
    parser.add_argument("-o", "--output", default="-", help="Output file for subtitles (default: stdout)")
    parser.add_argument("-r", "--rate", help="Frame rate (frames per second, default: 1)")
    parser.add_argument(
        "-l",
        "--language",
        help=f"OCR language(s) (comma-separated, default: {DEFAULT_LANGUAGES})",
    )
    parser.add_argument("-f", "--fast", action="store_true", default=None, help="Use fast OCR mode")
    parser.add_argument(
        "-exec",
        "--exec",
        dest="exec_cmd",
        help="Run this command per frame instead of the built-in OCR; {} is the frame path",
    )
    parser.add_argument("--no-progress", action="store_true", help="Do not draw progress bars")
    _add_common(parser)

    if not argv:
        parser.print_help(sys.stderr)
        return 1

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = _build_config(
        parser,
        args,
        input=args.input,
        area=args.area,
        output=args.output,
        rate=args.rate,
        languages=args.language,
        fast=args.fast,
        exec_cmd=args.exec_cmd,
        progress=False if args.no_progress else None,
        use_system_temp=True,
    )

    if not config.writes_stdout:
        logger.info("Extracting subtitles from video...")
        logger.info("This may take a while...")

    code, result = _execute(build_pipeline_spec, config)
    if code == 0 and result is not None and result.output:
        logger.info(f"Subtitles extracted to: {result.output}")
        logger.info("Done!")
    return code


# ============================================================
# subscan-crop
# ============================================================


def crop_main(argv: list[str] | None = None) -> int:
    """Crop a video to a rectangle."""
    argv = sys.argv[1:] if argv is None else argv
    parser = argparse.ArgumentParser(
        prog="subscan-crop",
        description="Crop a video to an area",
        epilog=CROP_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-i", "--input", default="-", help="Input video file (use '-' for stdin)")
    parser.add_argument("-o", "--output", default="-", help="Output video file (use '-' for stdout)")
    parser.add_argument("-a", "--area", required=True, help="Area to crop in format WxH+X+Y")
    _add_common(parser)

    if not argv:
        parser.print_help(sys.stderr)
        return 1

    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    config = _build_config(parser, args, input=args.input, output=args.output, area=args.area)

    code, result = _execute(build_crop_spec, config)
    if code == 0 and result is not None and result.output:
        logger.info(f"Cropped video saved to: {result.output}")
    return code


# ============================================================
# subscan-framify
# ============================================================


def framify_main(argv: list[str] | None = None) -> int:
    """Sample a video into numbered frame images."""
    argv = sys.argv[1:] if argv is None else argv
    parser = argparse.ArgumentParser(
        prog="subscan-framify",
        description="Extract frames from a video",
        epilog=FRAMIFY_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-i", "--input", help="Input video file (optional when using stdin)")
    parser.add_argument("-r", "--rate", help="Frame rate (frames per second, default: 1)")
    parser.add_argument(
        "-o",
        "--output",
        dest="frames_dir",
        help="Output directory for frames (default: inputname_frames, or 'frames' for stdin)",
    )
    parser.add_argument(
        "-exec",
        "--exec",
        dest="exec_cmd",
        help="Execute command for each frame. Use {} as frame placeholder",
    )
    parser.add_argument(
        "--temp",
        action="store_true",
        default=os.environ.get("USE_SYSTEM_TEMP", "false").lower() == "true",
        help="Keep frames in a system temp directory removed on exit",
    )
    _add_common(parser)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    input_path = args.input
    if input_path is None:
        if sys.stdin.isatty():
            parser.error("Input file is required when not using stdin")
        input_path = "-"

    config = _build_config(
        parser,
        args,
        input=input_path,
        rate=args.rate,
        frames_dir=args.frames_dir,
        exec_cmd=args.exec_cmd,
        use_system_temp=args.temp or None,
    )

    code, result = _execute(build_framify_spec, config)
    if code == 0 and result is not None:
        if config.verbose:
            logger.info(f"Extracted: {result.frames} frames")
        if result.frames_dir:
            logger.info(f"Frames saved to: {result.frames_dir}")
    return code


if __name__ == "__main__":
    sys.exit(main())
