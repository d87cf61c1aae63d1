"""Ultralytics YOLO segmentation engine.

Person modes map to YOLO11 segmentation models of increasing size and return a soft
probability mask; the instance mode returns hard per-instance masks for every
detected object together with a pre-composited cutout.
"""

from __future__ import annotations

import importlib
import logging
import os
import threading
import time
from contextlib import nullcontext
from typing import Any, Callable, Protocol

import cv2
import numpy as np
from ultralytics import YOLO

from cardbooth.core.compositing.preview import preview
from cardbooth.core.masking.binarize import resample_mask
from cardbooth.core.types import (
    Frame,
    InstanceMask,
    InstanceSegmentation,
    ProbabilisticSegmentation,
    ProbabilityMask,
    SegmentationMode,
    SegmentationRequest,
    SegmentationResult,
)

logger = logging.getLogger(__name__)

YOLO11_SEG_MODEL_SIZES = ("n", "s", "m", "l", "x")

DEFAULT_MODEL_NAMES: dict[SegmentationMode, str] = {
    SegmentationMode.PERSON_FAST: "yolo11n-seg.pt",
    SegmentationMode.PERSON_BALANCED: "yolo11s-seg.pt",
    SegmentationMode.PERSON_ACCURATE: "yolo11l-seg.pt",
    SegmentationMode.FOREGROUND_INSTANCE_MASK: "yolo11l-seg.pt",
}

# COCO class id for "person".
_COCO_PERSON_CLASS = 0


def resolve_seg_model(model_size: str) -> str:
    """Return the YOLO11 segmentation checkpoint name for a size letter."""

    size = str(model_size).strip().lower()
    if size not in YOLO11_SEG_MODEL_SIZES:
        raise ValueError("model_size must be one of: " + ", ".join(YOLO11_SEG_MODEL_SIZES))
    return f"yolo11{size}-seg.pt"


class Segmenter(Protocol):
    """Minimal engine interface expected by the pipeline and burst capture."""

    def segment(self, frame: Frame, mode: SegmentationMode) -> SegmentationResult | None:
        """Return a segmentation result, or `None` when nothing was found."""


def _to_numpy(value: Any) -> np.ndarray:
    if hasattr(value, "cpu"):
        value = value.cpu()
    if hasattr(value, "numpy"):
        return value.numpy()
    return np.asarray(value)


class YoloSegmentationEngine:
    """Segmentation engine backed by Ultralytics YOLO segmentation models.

    The engine holds no per-session state besides loaded models. Every call builds
    its own `SegmentationRequest`; each model is guarded by its own inference lock
    so the preview and capture threads can segment concurrently with different
    modes.
    """

    _torch_threads_configured: bool = False

    def __init__(
        self,
        model_names: dict[SegmentationMode, str] | None = None,
        confidence: float = 0.25,
        imgsz: int | None = None,
        soft_edge_px: int = 7,
        model_factory: Callable[[str], Any] | None = None,
    ) -> None:
        """Create an engine.

        Args:
            model_names: Optional per-mode checkpoint overrides.
            confidence: Minimum detection confidence passed to the predictor.
            imgsz: Optional inference size hint.
            soft_edge_px: Gaussian kernel size used to soften person masks
                (0 disables; even values are bumped to the next odd value).
            model_factory: Callable building a model from a checkpoint name
                (defaults to `ultralytics.YOLO`).
        """

        self._configure_torch_threads_from_env()
        self.model_names = {**DEFAULT_MODEL_NAMES, **(model_names or {})}
        self.confidence = float(confidence)
        self.imgsz = imgsz
        k = max(0, int(soft_edge_px))
        self.soft_edge_px = k + 1 if k and k % 2 == 0 else k
        self._model_factory = model_factory or YOLO
        self._models: dict[str, Any] = {}
        self._model_locks: dict[str, threading.Lock] = {}
        self._load_lock = threading.Lock()
        self._torch_inference_mode: Any | None = None
        try:
            torch = importlib.import_module("torch")
            self._torch_inference_mode = torch.inference_mode
        except Exception:
            self._torch_inference_mode = None

    @classmethod
    def _configure_torch_threads_from_env(cls) -> None:
        """Configure torch thread count from `CBT_TORCH_THREADS` (one-time)."""

        if cls._torch_threads_configured:
            return
        cls._torch_threads_configured = True

        threads_s = os.getenv("CBT_TORCH_THREADS")
        if threads_s is None or not threads_s.strip():
            return
        try:
            torch = importlib.import_module("torch")
            torch.set_num_threads(max(1, int(threads_s)))
        except Exception:
            logger.warning("Ignoring CBT_TORCH_THREADS=%r", threads_s)

    def request_for(self, mode: SegmentationMode) -> SegmentationRequest:
        """Build the immutable per-call configuration for `mode`."""

        return SegmentationRequest(
            mode=mode,
            model_name=self.model_names[mode],
            confidence=self.confidence,
            imgsz=self.imgsz,
            classes=(_COCO_PERSON_CLASS,) if mode.is_probabilistic else None,
        )

    def warmup(self, modes: list[SegmentationMode] | None = None) -> None:
        """Load the models used by `modes` (all modes by default)."""

        for mode in modes or list(SegmentationMode):
            self._model(self.model_names[mode])

    def _model(self, name: str) -> tuple[Any, threading.Lock]:
        with self._load_lock:
            model = self._models.get(name)
            if model is None:
                logger.info("Loading segmentation model %s", name)
                t0 = time.perf_counter()
                model = self._model_factory(name)
                self._models[name] = model
                self._model_locks[name] = threading.Lock()
                logger.info("Loaded %s in %.1f s", name, time.perf_counter() - t0)
            return model, self._model_locks[name]

    def segment(self, frame: Frame, mode: SegmentationMode) -> SegmentationResult | None:
        """Segment one frame.

        Returns `None` when nothing is detected or the detector fails; failures are
        logged, never raised.
        """

        request = self.request_for(mode)
        try:
            raw = self._predict(frame.image, request)
        except Exception:
            logger.exception("Segmentation failed (mode=%s)", mode.value)
            return None
        if raw is None:
            return None
        masks, confs, classes, names = raw

        if mode.is_probabilistic:
            prob = self._probability_mask(masks, frame.width, frame.height)
            if prob is None:
                return None
            return ProbabilisticSegmentation(mask=prob, mode=mode)

        instances: list[InstanceMask] = []
        union = np.zeros((frame.height, frame.width), dtype=np.uint8)
        for i, (m, conf_v, cls_v) in enumerate(zip(masks, confs, classes, strict=False)):
            scaled = resample_mask(m.astype(np.float32), frame.width, frame.height, cv2.INTER_NEAREST)
            hard = (scaled >= 0.5).astype(np.uint8)
            if not hard.any():
                continue
            union |= hard
            instances.append(
                InstanceMask(
                    mask=hard,
                    instance_id=i + 1,
                    label=str(names.get(int(cls_v), int(cls_v))),
                    confidence=float(conf_v),
                )
            )
        if not instances:
            return None
        return InstanceSegmentation(instances=instances, cutout=preview(frame, union.astype(np.float32)))

    def _probability_mask(
        self,
        masks: np.ndarray,
        width: int,
        height: int,
    ) -> ProbabilityMask | None:
        """Merge instance masks into one soft mask.

        Detection confidence only gates which instances arrive here (`conf` on the
        predictor); the per-pixel values come from the masks and the Gaussian edge.
        """

        prob = np.zeros((height, width), dtype=np.float32)
        for m in masks:
            soft = resample_mask(m.astype(np.float32), width, height)
            np.maximum(prob, soft, out=prob)
        if not prob.any():
            return None
        if self.soft_edge_px:
            prob = cv2.GaussianBlur(prob, (self.soft_edge_px, self.soft_edge_px), 0)
        np.clip(prob, 0.0, 1.0, out=prob)
        return ProbabilityMask(prob)

    def _predict(
        self,
        image: np.ndarray,
        request: SegmentationRequest,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, dict[int, str]] | None:
        """Run the model and return `(masks, confs, classes, names)` or `None`."""

        model, lock = self._model(request.model_name)
        kwargs: dict[str, Any] = {
            "conf": request.confidence,
            "verbose": False,
            # Masks at source resolution instead of the letterboxed inference size.
            "retina_masks": True,
        }
        if request.classes is not None:
            kwargs["classes"] = list(request.classes)
        if request.imgsz:
            kwargs["imgsz"] = int(request.imgsz)

        infer_ctx = (
            self._torch_inference_mode()
            if self._torch_inference_mode is not None
            else nullcontext()
        )
        with lock, infer_ctx:
            results = model.predict(image, **kwargs)

        if not results:
            return None
        result = results[0]
        masks = getattr(result, "masks", None)
        boxes = getattr(result, "boxes", None)
        if masks is None or boxes is None or len(boxes) == 0:
            return None

        mask_data = _to_numpy(masks.data)
        data = getattr(boxes, "data", None)
        if data is not None:
            # Boxes.data = (x1, y1, x2, y2, conf, cls)
            box_np = _to_numpy(data)
            if box_np.ndim != 2 or box_np.shape[1] < 6:
                return None
            confs = box_np[:, 4]
            classes = box_np[:, 5]
        else:
            confs = _to_numpy(boxes.conf)
            classes = _to_numpy(boxes.cls)
        if mask_data.ndim != 3 or mask_data.shape[0] == 0:
            return None
        names = dict(getattr(result, "names", None) or {})
        return mask_data, confs, classes, names
