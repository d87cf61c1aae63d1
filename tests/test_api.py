import asyncio
from concurrent.futures import Future

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from cardbooth.api.main import app
from cardbooth.api.routes import stream
from cardbooth.api.services import state as engine_state
from cardbooth.api.services.state import get_engine
from cardbooth.core.capture.burst import CaptureInProgressError
from cardbooth.core.config.settings import BoothSettings
from cardbooth.core.types import (
    BurstCandidate,
    BurstOutcome,
    CompositeCard,
    Cutout,
    Frame,
    LiveConfig,
    PreviewUpdate,
    SegmentationMode,
)


def _cutout(w=40, h=30):
    rgba = np.zeros((h, w, 4), dtype=np.uint8)
    rgba[5:25, 10:30] = (50, 100, 150, 255)
    return Cutout(rgba)


def _candidate():
    frame = Frame(image=np.zeros((30, 40, 3), dtype=np.uint8), timestamp=0.0)
    return BurstCandidate(
        frame=frame,
        cutout=_cutout(),
        score=0.33,
        mode=SegmentationMode.PERSON_ACCURATE,
        threshold=0.8,
    )


def _done(outcome):
    future = Future()
    future.set_result(outcome)
    return future


class DummyEngine:
    def __init__(self, update=None, capture=None, error=None, outcome=None, busy=False):
        self._update = update
        self._capture = capture
        self._outcome = outcome
        self._busy = busy
        self.last_error = error
        self.running = True
        self.capture_in_progress = busy
        self.submitted = []
        self.composed = []

    def live_config(self):
        return LiveConfig(mode=SegmentationMode.PERSON_FAST, threshold=0.85)

    def latest_update(self):
        return self._update

    def latest_capture(self):
        return self._capture

    def fps(self):
        return 24.0

    def stream_fps(self):
        return 30.0

    def submit_capture(self, attempts=None, delay_ms=None):
        if self._busy:
            raise CaptureInProgressError("busy")
        self.submitted.append((attempts, delay_ms))
        return _done(self._outcome)

    def compose_card(self, template_id, label):
        if template_id not in (0, 1, 2, 3):
            raise KeyError(template_id)
        self.composed.append((template_id, label))
        if self._capture is None:
            return None
        image = np.zeros((880, 630, 4), dtype=np.uint8)
        image[:, :, 3] = 255
        return CompositeCard(image=image, template_id=template_id, label=label.upper())


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use(engine):
    app.dependency_overrides[get_engine] = lambda: engine


@pytest.fixture
def fresh_state(monkeypatch):
    monkeypatch.setattr(engine_state, "_settings", BoothSettings())
    monkeypatch.setattr(engine_state, "_engine", None)
    monkeypatch.setattr(engine_state, "load_settings", lambda: BoothSettings())


def test_health_endpoint(client, fresh_state):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "engine": "idle"}


def test_health_reports_running_engine(client, monkeypatch):
    monkeypatch.setattr(engine_state, "_engine", DummyEngine())
    assert client.get("/health").json()["engine"] == "running"


def test_stats_with_subject(client):
    frame = Frame(image=np.zeros((30, 40, 3), dtype=np.uint8), timestamp=0.0)
    update = PreviewUpdate(frame_id=3, frame=frame, cutout=_cutout(), fps=24.0, timestamp=0.0)
    _use(DummyEngine(update=update, capture=_candidate()))
    res = client.get("/stats")

    assert res.status_code == 200
    data = res.json()
    assert data["fps"] == 24.0
    assert data["stream_fps"] == 30.0
    assert data["mode"] == "person_fast"
    assert data["threshold"] == 0.85
    assert data["subject_detected"] is True
    assert data["has_capture"] is True
    assert data["capture_in_progress"] is False
    assert data["error"] is None


def test_stats_without_update_reports_error(client):
    _use(DummyEngine(error="Failed to initialize video source"))
    data = client.get("/stats").json()
    assert data["subject_detected"] is False
    assert data["has_capture"] is False
    assert data["error"] == "Failed to initialize video source"


def test_config_get_and_presets(client, fresh_state):
    res = client.get("/config")
    assert res.status_code == 200
    assert res.json()["segmentation_mode"] == "person_balanced"

    presets = client.get("/config/presets").json()["presets"]
    assert [p["id"] for p in presets] == ["fast", "balanced", "accurate", "instance"]

    res = client.post("/config/presets/fast")
    assert res.status_code == 200
    assert res.json()["segmentation_mode"] == "person_fast"

    assert client.post("/config/presets/ultra").status_code == 404


def test_config_update_validates(client, fresh_state):
    payload = client.get("/config").json()
    payload["jpeg_quality"] = 5
    assert client.post("/config", json=payload).status_code == 422

    payload["jpeg_quality"] = 60
    res = client.post("/config", json=payload)
    assert res.status_code == 200
    assert res.json()["jpeg_quality"] == 60


def test_live_mode_and_threshold_without_engine(client, fresh_state):
    res = client.post("/config/mode", json={"mode": "foreground_instance_mask"})
    assert res.status_code == 200
    assert res.json() == {"mode": "foreground_instance_mask", "threshold": 0.8, "applied": False}

    res = client.post("/config/threshold", json={"threshold": 0.9})
    assert res.status_code == 200
    assert res.json()["threshold"] == 0.9

    assert client.post("/config/threshold", json={"threshold": 0.3}).status_code == 422
    assert client.post("/config/mode", json={"mode": "sketch"}).status_code == 422


def test_capture_success(client):
    candidate = _candidate()
    engine = DummyEngine(outcome=BurstOutcome(best=candidate, attempts_run=3, skipped=0, elapsed_s=0.4))
    _use(engine)
    res = client.post("/capture", json={"attempts": 3, "delay_ms": 100})

    assert res.status_code == 200
    data = res.json()
    assert data["ok"] is True
    assert data["score"] == 0.33
    assert data["mode"] == "person_accurate"
    assert data["attempts_run"] == 3
    assert data["elapsed_ms"] == pytest.approx(400.0)
    assert data["frame_size"] == [40, 30]
    assert engine.submitted == [(3, 100.0)]


def test_capture_without_body_uses_defaults(client):
    engine = DummyEngine(outcome=BurstOutcome(best=_candidate(), attempts_run=1))
    _use(engine)
    assert client.post("/capture").status_code == 200
    assert engine.submitted == [(None, None)]


def test_capture_in_progress_conflict(client):
    _use(DummyEngine(busy=True))
    res = client.post("/capture", json={})
    assert res.status_code == 409


def test_capture_failure_asks_for_retry(client):
    _use(DummyEngine(outcome=BurstOutcome(best=None, attempts_run=3)))
    res = client.post("/capture", json={})
    assert res.status_code == 422
    assert res.json()["detail"] == "Capture failed, retry"


def test_capture_request_bounds(client):
    _use(DummyEngine(outcome=BurstOutcome(best=None)))
    assert client.post("/capture", json={"attempts": 0}).status_code == 422


def test_captured_cutout_png(client):
    _use(DummyEngine())
    assert client.get("/capture/cutout.png").status_code == 404

    _use(DummyEngine(capture=_candidate()))
    res = client.get("/capture/cutout.png")
    assert res.status_code == 200
    assert res.headers["content-type"] == "image/png"
    img = cv2.imdecode(np.frombuffer(res.content, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    assert img.shape == (30, 40, 4)


def test_templates_listing(client):
    res = client.get("/templates")
    assert res.status_code == 200
    names = [t["display_name"] for t in res.json()]
    assert names == ["Classic Blue", "Fire Red", "Gold Elite", "Emerald"]


def test_card_png(client):
    engine = DummyEngine(capture=_candidate())
    _use(engine)
    res = client.post("/card", json={"template_id": 2, "label": "Ada"})
    assert res.status_code == 200
    assert res.headers["content-type"] == "image/png"
    img = cv2.imdecode(np.frombuffer(res.content, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    assert img.shape == (880, 630, 4)
    assert engine.composed == [(2, "Ada")]


def test_card_unknown_template_and_missing_capture(client):
    _use(DummyEngine(capture=_candidate()))
    assert client.post("/card", json={"template_id": 9, "label": "x"}).status_code == 404

    _use(DummyEngine())
    res = client.post("/card", json={"template_id": 0, "label": "x"})
    assert res.status_code == 409


def test_metadata_websocket_sends_preview(client, monkeypatch):
    frame = Frame(image=np.zeros((30, 40, 3), dtype=np.uint8), timestamp=0.0)
    update = PreviewUpdate(frame_id=1, frame=frame, cutout=_cutout(), fps=12.0, timestamp=5.0)

    class WSEngine(DummyEngine):
        async def preview_stream(self):
            yield update

    monkeypatch.setattr(engine_state, "_engine", WSEngine())
    with client.websocket_connect("/stream/metadata") as ws:
        data = ws.receive_json()
    assert data["frame_id"] == 1
    assert data["frame_size"] == [40, 30]
    assert data["subject_detected"] is True
    assert data["coverage"] == pytest.approx(25 / 80)
    assert data["stream_fps"] == 30.0


def test_stream_video_follows_engine_swaps(monkeypatch):
    class JpegEngine:
        def __init__(self, jpeg):
            self.jpeg = jpeg

        def latest_jpeg(self):
            return self.jpeg

    engines = [JpegEngine(b"\xff\xd8one")]
    monkeypatch.setattr(stream, "get_engine", lambda: engines[-1])

    async def _read():
        response = await stream.stream_video()
        chunks = response.body_iterator
        try:
            first = await asyncio.wait_for(chunks.__anext__(), timeout=2)
            # A settings reload replaces the engine; the open stream picks it up.
            engines.append(JpegEngine(b"\xff\xd8two"))
            second = await asyncio.wait_for(chunks.__anext__(), timeout=2)
        finally:
            await chunks.aclose()
        return response, first, second

    response, first, second = asyncio.run(_read())
    assert response.media_type == "multipart/x-mixed-replace; boundary=frame"
    assert first.startswith(b"--frame\r\nContent-Type: image/jpeg\r\nContent-Length: 5\r\n\r\n")
    assert first.endswith(b"\xff\xd8one\r\n")
    assert second.endswith(b"\xff\xd8two\r\n")
