"""Burst capture and coverage scoring.

A capture runs the segmentation engine over a handful of frames in the session's
highest-accuracy mode, scores every cutout by how much of the frame it covers and
keeps the best one.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import numpy as np

from cardbooth.core.pipeline import cutout_from_result
from cardbooth.core.segmentation.yolo_seg import Segmenter
from cardbooth.core.types import (
    BurstCandidate,
    BurstOutcome,
    Cutout,
    Frame,
    SegmentationMode,
    capture_mode_for,
)

logger = logging.getLogger(__name__)


class CaptureInProgressError(RuntimeError):
    """Raised when a capture is requested while another one is running."""


def coverage_score(alpha: np.ndarray | Cutout, stride: int = 4, cutoff: float = 0.5) -> float:
    """Fraction of grid samples whose opacity strictly exceeds `cutoff`.

    Samples every `stride`-th pixel in each dimension. `uint8` alpha is normalised
    by 255; float alpha is expected in [0, 1].
    """

    if stride < 1:
        raise ValueError("stride must be >= 1")
    if isinstance(alpha, Cutout):
        a = alpha.rgba[:, :, 3]
    else:
        a = np.asarray(alpha)
    if a.ndim == 3:
        a = a[:, :, -1]
    samples = a[::stride, ::stride]
    if samples.size == 0:
        return 0.0
    if samples.dtype == np.uint8:
        hits = samples > cutoff * 255.0
    else:
        hits = samples > cutoff
    return float(np.count_nonzero(hits)) / float(samples.size)


class BurstCapture:
    """Serialized multi-attempt capture.

    Args:
        engine: Segmentation engine.
        frame_provider: Returns the current preview frame (or `None`). Called once
            per attempt; the returned reference is used for the whole attempt.
        mode_provider: Returns the session's segmentation mode.
        threshold_provider: Returns the session's confidence threshold.
        sharpness: Binarizer sharpness.
        stride: Coverage sampling stride.
        cutoff: Coverage opacity cutoff.
        deadline_s: Optional wall-clock bound; no new attempt starts after it.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        engine: Segmenter,
        frame_provider: Callable[[], Frame | None],
        mode_provider: Callable[[], SegmentationMode],
        threshold_provider: Callable[[], float],
        sharpness: float = 20.0,
        stride: int = 4,
        cutoff: float = 0.5,
        deadline_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.engine = engine
        self._frame_provider = frame_provider
        self._mode_provider = mode_provider
        self._threshold_provider = threshold_provider
        self.sharpness = float(sharpness)
        self.stride = int(stride)
        self.cutoff = float(cutoff)
        self.deadline_s = deadline_s
        self._sleep = sleep
        self._clock = clock
        self._busy = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._busy.locked()

    def capture_best(self, attempts: int, inter_attempt_delay: float) -> BurstOutcome:
        """Run up to `attempts` segmentations and return the best-scoring candidate.

        Raises:
            CaptureInProgressError: another capture is running.
            ValueError: `attempts` < 1 or negative delay.
        """

        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        if inter_attempt_delay < 0:
            raise ValueError("inter_attempt_delay must be >= 0")
        if not self._busy.acquire(blocking=False):
            raise CaptureInProgressError("A capture is already in progress")
        try:
            return self._run(attempts, float(inter_attempt_delay))
        finally:
            self._busy.release()

    def _run(self, attempts: int, delay: float) -> BurstOutcome:
        # Mode and threshold are fixed for the whole burst so scores stay comparable.
        mode = capture_mode_for(self._mode_provider())
        threshold = float(self._threshold_provider())
        start = self._clock()
        best: BurstCandidate | None = None
        attempts_run = 0
        skipped = 0

        for i in range(attempts):
            if i > 0:
                if self.deadline_s is not None and (self._clock() - start) >= self.deadline_s:
                    logger.info("Burst capture deadline reached after %d attempts", i)
                    break
                self._sleep(delay)
            frame = self._frame_provider()
            if frame is None:
                skipped += 1
                continue
            attempts_run += 1
            result = self.engine.segment(frame, mode)
            cutout = cutout_from_result(frame, result, threshold, self.sharpness)
            if cutout is None:
                continue
            score = coverage_score(cutout, self.stride, self.cutoff)
            if score <= 0.0:
                continue
            if best is None or score > best.score:
                best = BurstCandidate(
                    frame=frame,
                    cutout=cutout,
                    score=score,
                    mode=mode,
                    threshold=threshold,
                )

        elapsed = self._clock() - start
        if best is None:
            logger.info(
                "Burst capture found no subject (attempts=%d, skipped=%d)", attempts_run, skipped
            )
        else:
            logger.info(
                "Burst capture picked score=%.3f (attempts=%d, skipped=%d, %.0f ms)",
                best.score,
                attempts_run,
                skipped,
                elapsed * 1000.0,
            )
        return BurstOutcome(best=best, attempts_run=attempts_run, skipped=skipped, elapsed_s=elapsed)
