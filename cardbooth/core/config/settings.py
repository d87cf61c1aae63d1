"""Booth configuration.

Settings are loaded from YAML defaults and overridden by environment variables
prefixed with `CBT_`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cardbooth.core.types import LiveConfig, SegmentationMode

LIVE_THRESHOLD_MIN = 0.5
LIVE_THRESHOLD_MAX = 0.99


class BoothSettings(BaseSettings):
    """Runtime configuration loaded from YAML defaults and `CBT_` env overrides."""

    model_config = SettingsConfigDict(env_prefix="CBT_", validate_assignment=True)

    video_source: str = Field("webcam", description="webcam|file|rtsp")
    video_path: str | None = None
    rtsp_url: str | None = None
    camera_index: int = 0

    segmentation_mode: SegmentationMode = SegmentationMode.PERSON_BALANCED
    # Live preview threshold; binarize() itself accepts the full [0, 1] range.
    threshold: float = 0.8
    sharpness: float = 20.0
    confidence: float = 0.25
    soft_edge_px: int = 7
    inference_width: int | None = None
    model_fast: str = "yolo11n-seg.pt"
    model_balanced: str = "yolo11s-seg.pt"
    model_accurate: str = "yolo11l-seg.pt"
    model_instance: str = "yolo11l-seg.pt"

    burst_attempts: int = 3
    burst_delay_ms: float = 150.0
    # Optional wall-clock bound for a whole burst. None disables it.
    burst_deadline_s: float | None = None
    coverage_stride: int = 4
    coverage_cutoff: float = 0.5

    # Optional cap for the processing loop FPS. 0 runs as fast as possible.
    target_fps: float = 0.0
    output_width: int | None = None
    jpeg_quality: int = 80
    show_fps_overlay: bool = True

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file", "rtsp"}:
            raise ValueError("video_source must be webcam|file|rtsp")
        return v

    @field_validator("threshold")
    @classmethod
    def _validate_threshold(cls, v: float) -> float:
        return validate_live_threshold(v)

    @field_validator("sharpness")
    @classmethod
    def _validate_sharpness(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sharpness must be > 0")
        return float(v)

    @field_validator("confidence")
    @classmethod
    def _validate_confidence(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("confidence must be in (0, 1]")
        return v

    @field_validator("soft_edge_px")
    @classmethod
    def _validate_soft_edge(cls, v: int) -> int:
        if v < 0:
            raise ValueError("soft_edge_px must be >= 0")
        return v

    @field_validator("inference_width", "output_width")
    @classmethod
    def _validate_width(cls, v: int | None) -> int | None:
        if v is None:
            return v
        if v <= 0:
            raise ValueError("width must be > 0")
        return v

    @field_validator("burst_attempts")
    @classmethod
    def _validate_burst_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("burst_attempts must be >= 1")
        return v

    @field_validator("burst_delay_ms")
    @classmethod
    def _validate_burst_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("burst_delay_ms must be >= 0")
        return float(v)

    @field_validator("burst_deadline_s")
    @classmethod
    def _validate_burst_deadline(cls, v: float | None) -> float | None:
        if v is None:
            return v
        if v <= 0:
            raise ValueError("burst_deadline_s must be > 0")
        return float(v)

    @field_validator("coverage_stride")
    @classmethod
    def _validate_coverage_stride(cls, v: int) -> int:
        if v < 1:
            raise ValueError("coverage_stride must be >= 1")
        return v

    @field_validator("coverage_cutoff")
    @classmethod
    def _validate_coverage_cutoff(cls, v: float) -> float:
        if not 0.0 <= float(v) < 1.0:
            raise ValueError("coverage_cutoff must be in [0, 1)")
        return float(v)

    @field_validator("target_fps")
    @classmethod
    def _validate_target_fps(cls, v: float) -> float:
        if v < 0:
            raise ValueError("target_fps must be >= 0")
        return float(v)

    @field_validator("jpeg_quality")
    @classmethod
    def _validate_jpeg_quality(cls, v: int) -> int:
        if not 10 <= v <= 100:
            raise ValueError("jpeg_quality must be in [10, 100]")
        return v


def validate_live_threshold(v: float) -> float:
    """Validate a live-preview threshold (restricted to fairly high confidence)."""

    if not LIVE_THRESHOLD_MIN <= float(v) <= LIVE_THRESHOLD_MAX:
        raise ValueError(f"threshold must be in [{LIVE_THRESHOLD_MIN}, {LIVE_THRESHOLD_MAX}]")
    return float(v)


def settings_to_dict(settings: BoothSettings) -> dict[str, Any]:
    """Convert settings to a plain JSON-friendly dict."""

    return cast(dict[str, Any], settings.model_dump(mode="json"))


def model_names_from_settings(settings: BoothSettings) -> dict[SegmentationMode, str]:
    return {
        SegmentationMode.PERSON_FAST: settings.model_fast,
        SegmentationMode.PERSON_BALANCED: settings.model_balanced,
        SegmentationMode.PERSON_ACCURATE: settings.model_accurate,
        SegmentationMode.FOREGROUND_INSTANCE_MASK: settings.model_instance,
    }


def live_config_from_settings(settings: BoothSettings) -> LiveConfig:
    return LiveConfig(
        mode=settings.segmentation_mode,
        threshold=settings.threshold,
        sharpness=settings.sharpness,
    )


def _config_path() -> Path:
    """Return the YAML configuration path (defaults to config/booth.config.yml)."""

    return Path(os.getenv("CBT_CONFIG", "config/booth.config.yml"))


def load_settings() -> BoothSettings:
    """Load settings from YAML and environment variables.

    YAML provides defaults; environment variables override.
    """

    data: dict[str, Any] = {}
    path = _config_path()
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    env_settings = BoothSettings()
    env_overrides: dict[str, Any] = {
        name: getattr(env_settings, name) for name in env_settings.model_fields_set
    }

    merged = {**data, **env_overrides}
    return BoothSettings(**merged)
