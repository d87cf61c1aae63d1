"""Preview display helpers (OpenCV).

Flattens a transparent cutout onto a checkerboard for JPEG streaming; when no
subject was found the unmasked frame is shown instead.
"""

from __future__ import annotations

import cv2
import numpy as np

from cardbooth.core.types import Cutout, PreviewUpdate

CHECKER_LIGHT = (205, 205, 205)
CHECKER_DARK = (150, 150, 150)
CHECKER_CELL = 16
TEXT_COLOR = (255, 255, 255)
NO_SUBJECT_COLOR = (0, 170, 255)


def checkerboard(width: int, height: int, cell: int = CHECKER_CELL) -> np.ndarray:
    """Return a BGR checkerboard image."""

    ys, xs = np.indices((height, width))
    mask = ((ys // cell) + (xs // cell)) % 2 == 0
    out = np.empty((height, width, 3), dtype=np.uint8)
    out[mask] = CHECKER_LIGHT
    out[~mask] = CHECKER_DARK
    return out


def flatten(cutout: Cutout, background: np.ndarray | None = None) -> np.ndarray:
    """Alpha-composite `cutout` over `background` (checkerboard by default)."""

    if background is None:
        background = checkerboard(cutout.width, cutout.height)
    a = cutout.alpha[:, :, None]
    fg = cutout.rgba[:, :, :3].astype(np.float32)
    out = fg * a + background.astype(np.float32) * (1.0 - a)
    return np.rint(out).astype(np.uint8)


def render_preview(update: PreviewUpdate, show_fps: bool = True) -> np.ndarray:
    """Return the BGR image shown for a preview update."""

    if update.cutout is not None:
        img = flatten(update.cutout)
    else:
        img = np.array(update.frame.image, copy=True)

    if show_fps:
        cv2.putText(
            img,
            f"{update.fps:.0f} fps",
            (10, 24),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            TEXT_COLOR,
            1,
            cv2.LINE_AA,
        )
    if update.cutout is None:
        cv2.putText(
            img,
            "no subject",
            (10, 48),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            NO_SUBJECT_COLOR,
            1,
            cv2.LINE_AA,
        )
    return img
