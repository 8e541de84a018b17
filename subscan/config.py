"""
Run configuration.

Options come from built-in defaults, an optional YAML file and the command
line, in increasing precedence. Everything is validated when the
``PipelineConfig`` is constructed, before any directory, FIFO or process
exists.
"""

from __future__ import annotations

import copy
import logging
import re
import shlex
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from subscan.io import STDIO_MARKER, is_stdio
from subscan.crop import CropArea, parse_area
from subscan.schema import FRAME_PLACEHOLDER

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "subscan.yaml"
DEFAULT_LANGUAGES = "zh-CN,en-US"

RATE_RE = re.compile(r"^[0-9]+(\.[0-9]+)?$")


# ============================================================
# YAML config file
# ============================================================


def get_default_config() -> dict[str, Any]:
    """Return default configuration."""
    return {
        "ffmpeg": {"path": "ffmpeg", "ffprobe_path": "ffprobe"},
        "crop": {"video_codec": "libx264", "preset": "medium"},
        "frames": {"rate": "1", "jpeg_quality": None},
        "ocr": {"languages": DEFAULT_LANGUAGES, "fast": False},
        "progress": {"enabled": True, "width": 40},
        "workspace": {"use_system_temp": False},
    }


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration from a YAML file merged over the defaults.

    Args:
        config_path: Explicit config file. When None, ``subscan.yaml`` in the
            current directory is used if present.

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If an explicit config file does not exist
        ValueError: If the file is not a YAML mapping
    """
    defaults = get_default_config()

    if config_path is None:
        candidate = Path(DEFAULT_CONFIG_NAME)
        if not candidate.exists():
            logger.debug("No subscan.yaml found, using defaults")
            return defaults
        config_path = candidate

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    logger.debug(f"Loaded config from: {config_path}")
    return _merge(defaults, data)


# ============================================================
# Run configuration
# ============================================================


class PipelineConfig(BaseModel):
    """Validated options for one run."""

    model_config = ConfigDict(frozen=True)

    input: str = Field(default=STDIO_MARKER, description="Input video path or '-' for stdin")
    area: CropArea | None = Field(default=None, description="Crop rectangle")
    rate: float = Field(default=1.0, gt=0, description="Sampled frames per second")
    output: str = Field(default=STDIO_MARKER, description="Output path or '-' for stdout")
    frames_dir: str | None = Field(default=None, description="Explicit frames directory")
    exec_cmd: str | None = Field(default=None, description="Per-frame command template")
    languages: str = Field(default=DEFAULT_LANGUAGES, description="Comma-separated OCR languages")
    fast: bool = Field(default=False, description="Fast OCR mode")
    verbose: bool = Field(default=False, description="Pass engine diagnostics through")
    progress: bool = Field(default=True, description="Render progress bars")
    use_system_temp: bool = Field(default=False, description="Keep frames in system temp")
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    video_codec: str = "libx264"
    preset: str = "medium"
    jpeg_quality: int | None = Field(default=None, ge=2, le=31, description="ffmpeg -q:v")
    progress_width: int = Field(default=40, ge=10, le=200)

    @field_validator("area", mode="before")
    @classmethod
    def coerce_area(cls, v: Any) -> Any:
        """Accept ``WxH+X+Y`` strings."""
        if isinstance(v, str):
            return parse_area(v)
        return v

    @field_validator("rate", mode="before")
    @classmethod
    def parse_rate(cls, v: Any) -> Any:
        """Rate must be a positive decimal such as ``1`` or ``0.5``."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str) or not RATE_RE.match(v.strip()):
            raise ValueError(f"Frame rate must be a positive number, got {v!r}")
        return float(v)

    @field_validator("exec_cmd")
    @classmethod
    def exec_has_placeholder(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            argv = shlex.split(v)
        except ValueError as e:
            raise ValueError(f"Exec command cannot be parsed: {e}") from e
        if not any(FRAME_PLACEHOLDER in token for token in argv):
            raise ValueError(f"Exec command must contain the {FRAME_PLACEHOLDER} frame placeholder")
        return v

    @model_validator(mode="after")
    def input_exists(self) -> PipelineConfig:
        """File inputs are checked before anything starts."""
        if not is_stdio(self.input) and not Path(self.input).is_file():
            raise ValueError(f"Input file '{self.input}' does not exist")
        return self

    @property
    def reads_stdin(self) -> bool:
        return is_stdio(self.input)

    @property
    def writes_stdout(self) -> bool:
        return is_stdio(self.output)

    @property
    def rate_arg(self) -> str:
        """Rate formatted for the ffmpeg fps filter."""
        return f"{self.rate:g}"

    @classmethod
    def from_sources(cls, file_config: dict[str, Any], **overrides: Any) -> PipelineConfig:
        """
        Build a config from a loaded YAML dict plus explicit options.

        Overrides that are None are ignored so unset CLI flags fall back to
        the file.
        """
        ffmpeg_cfg = file_config.get("ffmpeg", {})
        crop_cfg = file_config.get("crop", {})
        frames_cfg = file_config.get("frames", {})
        ocr_cfg = file_config.get("ocr", {})
        progress_cfg = file_config.get("progress", {})
        workspace_cfg = file_config.get("workspace", {})

        values: dict[str, Any] = {
            "ffmpeg_path": ffmpeg_cfg.get("path", "ffmpeg"),
            "ffprobe_path": ffmpeg_cfg.get("ffprobe_path", "ffprobe"),
            "video_codec": crop_cfg.get("video_codec", "libx264"),
            "preset": crop_cfg.get("preset", "medium"),
            "rate": frames_cfg.get("rate", "1"),
            "jpeg_quality": frames_cfg.get("jpeg_quality"),
            "languages": ocr_cfg.get("languages", DEFAULT_LANGUAGES),
            "fast": ocr_cfg.get("fast", False),
            "progress": progress_cfg.get("enabled", True),
            "progress_width": progress_cfg.get("width", 40),
            "use_system_temp": workspace_cfg.get("use_system_temp", False),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
