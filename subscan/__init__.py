"""
subscan - Hardcoded subtitle extraction

Crops the subtitle band out of a video, samples it into frames, runs OCR on
every frame and collapses the recognized lines into a transcript.

Modules:
    - schema: Pydantic models for pipeline definitions
    - config: Run configuration and YAML config loading
    - io: Path helpers and frame naming
    - ffmpeg_utils: Shared ffmpeg arguments and duration probing
    - crop: Crop areas and the crop stage
    - frames: Frame extraction stage and per-frame exec templates
    - stage: External process stages and process groups
    - progress: ffmpeg progress feed monitoring via tqdm
    - workspace: Working directories, progress FIFOs and interrupt handling
    - pipeline: Pipeline orchestration
    - transcript: Consecutive-duplicate line reduction
    - ocr: Per-frame OCR worker via Tesseract
    - cli: Command line entry points
"""

__version__ = "0.1.0"
