"""Pydantic models for the HTTP/WS API."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from cardbooth.core.types import SegmentationMode


class PreviewSchema(BaseModel):
    """Per-frame preview metadata payload."""

    frame_id: int
    timestamp: float
    fps: float
    subject_detected: bool
    frame_size: tuple[int, int] | list[int]
    coverage: float | None = None
    stream_fps: float | None = None


class StatsSchema(BaseModel):
    """High-level summary stats payload."""

    fps: float
    stream_fps: float | None = None
    mode: SegmentationMode
    threshold: float
    subject_detected: bool
    capture_in_progress: bool = False
    has_capture: bool = False
    error: str | None = None


class ModeSchema(BaseModel):
    mode: SegmentationMode


class ThresholdSchema(BaseModel):
    threshold: float = Field(ge=0.5, le=0.99)


class LiveConfigSchema(BaseModel):
    mode: SegmentationMode
    threshold: float
    applied: bool


class CaptureRequestSchema(BaseModel):
    attempts: int | None = Field(default=None, ge=1, le=20)
    delay_ms: float | None = Field(default=None, ge=0, le=5000)


class CaptureSchema(BaseModel):
    """Burst capture outcome."""

    ok: bool
    score: float | None = None
    mode: SegmentationMode | None = None
    threshold: float | None = None
    attempts_run: int
    skipped: int
    elapsed_ms: float
    frame_size: tuple[int, int] | list[int] | None = None


class CardRequestSchema(BaseModel):
    template_id: int = 0
    label: str = Field(default="", max_length=64)


class TemplateSchema(BaseModel):
    id: int
    display_name: str
    background_color: list[int]
    accent_color: list[int]


class ConfigSchema(BaseModel):
    """Runtime configuration payload."""

    video_source: str
    video_path: str | None = None
    rtsp_url: str | None = None
    camera_index: int = Field(default=0, ge=0)
    segmentation_mode: SegmentationMode = SegmentationMode.PERSON_BALANCED
    threshold: float = Field(default=0.8, ge=0.5, le=0.99)
    sharpness: float = Field(default=20.0, gt=0.0)
    confidence: float = Field(default=0.25, gt=0.0, le=1.0)
    soft_edge_px: int = Field(default=7, ge=0)
    inference_width: int | None = Field(default=None, gt=0)
    model_fast: str = "yolo11n-seg.pt"
    model_balanced: str = "yolo11s-seg.pt"
    model_accurate: str = "yolo11l-seg.pt"
    model_instance: str = "yolo11l-seg.pt"
    burst_attempts: int = Field(default=3, ge=1)
    burst_delay_ms: float = Field(default=150.0, ge=0)
    burst_deadline_s: float | None = Field(default=None, gt=0)
    coverage_stride: int = Field(default=4, ge=1)
    coverage_cutoff: float = Field(default=0.5, ge=0.0, lt=1.0)
    target_fps: float = Field(default=0.0, ge=0)
    output_width: int | None = Field(default=None, gt=0)
    jpeg_quality: int = Field(default=80, ge=10, le=100)
    show_fps_overlay: bool = True

    @field_validator("video_source")
    @classmethod
    def _validate_source(cls, v: str) -> str:
        if v not in {"webcam", "file", "rtsp"}:
            raise ValueError("video_source must be webcam|file|rtsp")
        return v
