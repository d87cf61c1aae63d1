"""Per-frame preview pipeline.

Ties the segmentation engine, the mask binarizer and the preview compositor into a
single call used by the frame-processing thread; `cutout_from_result` is shared with
the burst scorer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from cardbooth.core.compositing.preview import preview
from cardbooth.core.masking.binarize import binarize
from cardbooth.core.segmentation.yolo_seg import Segmenter
from cardbooth.core.types import (
    Cutout,
    Frame,
    InstanceSegmentation,
    LiveConfig,
    SegmentationResult,
)


def cutout_from_result(
    frame: Frame,
    result: SegmentationResult | None,
    threshold: float,
    sharpness: float,
) -> Cutout | None:
    """Turn a segmentation result into a cutout of `frame`.

    Probabilistic results are binarized at `threshold`; instance results already
    carry a hard-edged cutout and bypass the binarizer. Returns `None` for an empty
    result or a cutout with no visible pixels.
    """

    if result is None:
        return None
    if isinstance(result, InstanceSegmentation):
        cutout = result.cutout
        if cutout.size != frame.size:
            cutout = preview(frame, cutout)
    else:
        cutout = preview(frame, binarize(result.mask, threshold, sharpness))
    if cutout.is_empty():
        return None
    return cutout


@dataclass
class PreviewResult:
    cutout: Cutout | None
    timings: dict[str, float] = field(default_factory=dict)


class PreviewPipeline:
    """Segment → binarize → composite for one frame."""

    def __init__(self, engine: Segmenter) -> None:
        self.engine = engine

    def process(self, frame: Frame, config: LiveConfig) -> PreviewResult:
        """Process one frame with the given live configuration snapshot."""

        t0 = time.perf_counter()
        result = self.engine.segment(frame, config.mode)
        t1 = time.perf_counter()
        cutout = cutout_from_result(frame, result, config.threshold, config.sharpness)
        t2 = time.perf_counter()
        return PreviewResult(
            cutout=cutout,
            timings={
                "segment_ms": (t1 - t0) * 1000.0,
                "composite_ms": (t2 - t1) * 1000.0,
            },
        )
