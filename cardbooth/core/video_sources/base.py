"""Frame sources.

The booth consumes frames through a small interface (`VideoSource`) so the capture
implementation (webcam/file/RTSP) can be swapped without affecting the segmentation
pipeline. Every frame is stamped with a monotonic capture timestamp.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

import cv2

from cardbooth.core.types import Frame

logger = logging.getLogger(__name__)


class VideoSource(ABC):
    """Base interface for anything that can produce frames."""

    @abstractmethod
    def read(self) -> Frame | None:
        """Return the next frame, or `None` when unavailable."""

        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release any underlying resources."""

        raise NotImplementedError


class OpenCVSource(VideoSource):
    """A `VideoSource` backed by `cv2.VideoCapture`."""

    def __init__(self, source: str | int) -> None:
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {source}")

    def read(self) -> Frame | None:
        ok, image = self.cap.read()
        if not ok or image is None:
            return None
        return Frame(image=image, timestamp=time.perf_counter())

    def close(self) -> None:
        self.cap.release()


class WebcamSource(OpenCVSource):
    """Local camera by index; tries the platform default backend, then any backend."""

    def __init__(self, index: int = 0) -> None:
        self.cap = None
        for backend in (cv2.CAP_ANY, getattr(cv2, "CAP_V4L2", None), getattr(cv2, "CAP_DSHOW", None)):
            if backend is None:
                continue
            try:
                cap = cv2.VideoCapture(index, backend)
            except Exception:
                logger.debug("Camera backend %s unavailable", backend, exc_info=True)
                continue
            if cap.isOpened():
                self.cap = cap
                logger.info("Opened camera index=%s backend=%s", index, backend)
                break
            cap.release()
        if self.cap is None:
            raise RuntimeError(f"Failed to open camera: {index}")

        # Keep driver-side buffering minimal so `read()` returns a fresh frame.
        try:
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        except Exception:
            pass


class FileSource(OpenCVSource):
    """Video file played back at its native rate, looping at EOF."""

    def __init__(self, path: str, loop: bool = True) -> None:
        self._path = path
        self._loop = loop
        self._start_perf: float | None = None
        self._frame_index = 0
        super().__init__(path)
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._source_fps = fps if fps > 0.0 else None

    def _pace(self) -> None:
        if not self._source_fps or self._start_perf is None:
            return
        expected = self._frame_index / self._source_fps
        delay = expected - (time.perf_counter() - self._start_perf)
        if delay > 0:
            time.sleep(delay)

    def read(self) -> Frame | None:
        if self._start_perf is None:
            self._start_perf = time.perf_counter()
            self._frame_index = 0

        frame = super().read()
        if frame is None and self._loop and self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0):
            self._start_perf = time.perf_counter()
            self._frame_index = 0
            frame = super().read()
        if frame is None:
            return None
        self._frame_index += 1
        self._pace()
        return frame


class RTSPSource(OpenCVSource):
    """RTSP stream, preferring the FFmpeg backend."""

    def __init__(self, url: str) -> None:
        self.cap = None
        backend = getattr(cv2, "CAP_FFMPEG", None)
        if backend is not None:
            cap = cv2.VideoCapture(url, backend)
            if cap.isOpened():
                self.cap = cap
            else:
                cap.release()
        if self.cap is None:
            super().__init__(url)
        try:
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        except Exception:
            pass
