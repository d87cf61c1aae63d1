"""Probability mask sharpening and resampling."""

from __future__ import annotations

import cv2
import numpy as np

from cardbooth.core.types import BinaryAlphaMask, ProbabilityMask

DEFAULT_SHARPNESS = 20.0


def binarize(
    mask: ProbabilityMask,
    threshold: float,
    sharpness: float = DEFAULT_SHARPNESS,
) -> BinaryAlphaMask:
    """Sharpen a probability mask into a near-binary alpha mask.

    Applies `v * sharpness + bias` with `bias = 1 - threshold * sharpness` and clamps
    to [0, 1]: values at or above `threshold` saturate to 1, values more than
    `1 / sharpness` below it go to 0, with a steep linear ramp in between. A
    full-confidence pixel stays opaque for any threshold in [0, 1].

    Args:
        mask: Input probability mask (any resolution; values outside [0, 1] allowed).
        threshold: Upper end of the ramp, in [0, 1].
        sharpness: Ramp steepness (> 0).
    """

    if not 0.0 <= float(threshold) <= 1.0:
        raise ValueError("threshold must be in [0, 1]")
    if sharpness <= 0:
        raise ValueError("sharpness must be > 0")

    bias = 1.0 - float(threshold) * float(sharpness)
    data = np.asarray(mask.data, dtype=np.float32)
    out = data * np.float32(sharpness) + np.float32(bias)
    np.clip(out, 0.0, 1.0, out=out)
    # NaN survives clip; treat as background.
    np.nan_to_num(out, copy=False, nan=0.0)
    return BinaryAlphaMask(out)


def resample_mask(
    mask: np.ndarray,
    width: int,
    height: int,
    interpolation: int = cv2.INTER_LINEAR,
) -> np.ndarray:
    """Scale a single-channel mask to `(height, width)`; no-op when already there."""

    h, w = mask.shape[:2]
    if (w, h) == (width, height):
        return mask
    return cv2.resize(mask, (int(width), int(height)), interpolation=interpolation)
