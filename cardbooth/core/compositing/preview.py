"""Real-time preview compositing and frame-rate metering."""

from __future__ import annotations

import time

import cv2
import numpy as np

from cardbooth.core.masking.binarize import resample_mask
from cardbooth.core.types import BinaryAlphaMask, Cutout, Frame


def preview(frame: Frame, alpha: BinaryAlphaMask | Cutout | np.ndarray) -> Cutout:
    """Blend `frame` with `alpha` against a fully transparent background.

    The mask is scaled to the frame's resolution (never cropped). A `Cutout` is
    accepted as a hard mask; only its alpha channel is used.
    """

    if isinstance(alpha, Cutout):
        mask = alpha.alpha
        interpolation = cv2.INTER_NEAREST
    elif isinstance(alpha, BinaryAlphaMask):
        mask = alpha.data
        interpolation = cv2.INTER_LINEAR
    else:
        mask = np.asarray(alpha, dtype=np.float32)
        interpolation = cv2.INTER_LINEAR

    mask = resample_mask(mask.astype(np.float32, copy=False), frame.width, frame.height, interpolation)
    a = np.clip(mask, 0.0, 1.0)

    image = frame.image
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        image = image[:, :, :3]

    rgba = np.zeros((frame.height, frame.width, 4), dtype=np.uint8)
    visible = a > 0.0
    rgba[:, :, :3][visible] = image[visible]
    rgba[:, :, 3] = np.rint(a * 255.0).astype(np.uint8)
    return Cutout(rgba)


class FrameRateMeter:
    """Counts processed frames and reports the count once per elapsed second.

    `fps` is the number of frames counted during the last completed window, not
    an instantaneous estimate. It stays `0.0` until the first window closes.
    Windows are aligned to the first tick, so each one spans exactly `window_s`
    however late the frame that closes it arrives.
    """

    def __init__(self, window_s: float = 1.0, clock=time.perf_counter) -> None:
        self.window_s = float(window_s)
        self._clock = clock
        self._count = 0
        self._window_start: float | None = None
        self.fps = 0.0

    def tick(self, now: float | None = None) -> float:
        """Record one processed frame and return the current reported FPS."""

        if now is None:
            now = self._clock()
        if self._window_start is None:
            self._window_start = now
        else:
            elapsed = int((now - self._window_start) // self.window_s)
            if elapsed >= 1:
                # Close the window before counting the frame that arrived after it;
                # any further whole windows that passed were empty.
                self.fps = float(self._count) if elapsed == 1 else 0.0
                self._count = 0
                self._window_start += elapsed * self.window_s
        self._count += 1
        return self.fps

    def read(self, now: float | None = None) -> float:
        """Return the FPS as of `now` without recording a frame.

        Falls to `0.0` once a full window has passed with no ticks, so a stalled
        pipeline does not keep reporting its last rate.
        """

        if self._window_start is None:
            return self.fps
        if now is None:
            now = self._clock()
        elapsed = (now - self._window_start) // self.window_s
        if elapsed < 1:
            return self.fps
        if elapsed < 2:
            return float(self._count)
        return 0.0

    def reset(self) -> None:
        self._count = 0
        self._window_start = None
        self.fps = 0.0
