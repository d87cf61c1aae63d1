from pathlib import Path

import cv2
import numpy as np
import pytest

from cardbooth.core.video_sources import base
from cardbooth.core.video_sources.base import FileSource, OpenCVSource, RTSPSource, WebcamSource


def _make_video(path: Path, frames: int = 3, size=(32, 24)) -> None:
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 200.0, size)
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video on this platform")
    for i in range(frames):
        writer.write(np.full((size[1], size[0], 3), i * 40, dtype=np.uint8))
    writer.release()


def test_opencv_source_raises_when_unopened(tmp_path: Path):
    with pytest.raises(RuntimeError):
        OpenCVSource(str(tmp_path / "missing.avi"))


def test_file_source_loops_at_eof(tmp_path: Path):
    path = tmp_path / "clip.avi"
    _make_video(path)
    source = FileSource(str(path))
    try:
        frames = [source.read() for _ in range(5)]
    finally:
        source.close()
    if any(f is None for f in frames):
        pytest.skip("OpenCV backend cannot seek the generated video")
    assert all(f.size == (32, 24) for f in frames)
    assert frames[0].timestamp < frames[-1].timestamp


def test_file_source_without_loop_stops(tmp_path: Path):
    path = tmp_path / "clip.avi"
    _make_video(path, frames=2)
    source = FileSource(str(path), loop=False)
    try:
        reads = [source.read() for _ in range(4)]
    finally:
        source.close()
    assert reads[-1] is None


class _FakeCapture:
    def __init__(self, opened=True):
        self.opened = opened
        self.props = {}
        self.released = False

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def release(self):
        self.released = True


def test_webcam_source_tries_backends(monkeypatch):
    attempts = []

    def fake_capture(index, backend=None):
        attempts.append(backend)
        return _FakeCapture(opened=len(attempts) > 1)

    monkeypatch.setattr(base.cv2, "VideoCapture", fake_capture)
    source = WebcamSource(0)
    assert len(attempts) == 2
    assert source.cap.props[cv2.CAP_PROP_BUFFERSIZE] == 1


def test_webcam_source_raises_when_no_backend_opens(monkeypatch):
    monkeypatch.setattr(base.cv2, "VideoCapture", lambda index, backend=None: _FakeCapture(opened=False))
    with pytest.raises(RuntimeError):
        WebcamSource(3)


def test_rtsp_source_falls_back_to_default_backend(monkeypatch):
    calls = []

    def fake_capture(url, backend=None):
        calls.append(backend)
        return _FakeCapture(opened=backend is None)

    monkeypatch.setattr(base.cv2, "VideoCapture", fake_capture)
    source = RTSPSource("rtsp://camera/stream")
    assert calls[-1] is None
    assert source.cap.props[cv2.CAP_PROP_BUFFERSIZE] == 1
