from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncGenerator, Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from queue import Empty, Full, Queue

import cv2
import numpy as np

from cardbooth.core.capture.burst import BurstCapture, CaptureInProgressError
from cardbooth.core.compositing.card import compose
from cardbooth.core.compositing.preview import FrameRateMeter
from cardbooth.core.config.settings import (
    BoothSettings,
    live_config_from_settings,
    model_names_from_settings,
    validate_live_threshold,
)
from cardbooth.core.overlay.draw import render_preview
from cardbooth.core.pipeline import PreviewPipeline
from cardbooth.core.segmentation.yolo_seg import Segmenter, YoloSegmentationEngine
from cardbooth.core.templates import get_template
from cardbooth.core.types import (
    BurstCandidate,
    BurstOutcome,
    CompositeCard,
    Frame,
    FrameSlot,
    LiveConfig,
    PreviewUpdate,
    SegmentationMode,
)
from cardbooth.core.video_sources.base import FileSource, RTSPSource, VideoSource, WebcamSource

logger = logging.getLogger(__name__)

PreviewListener = Callable[[PreviewUpdate], None]


class BoothEngine:
    """Runs the capture → segment/preview → encode pipeline plus burst captures.

    The engine is designed for low-latency preview:
    - capture thread continuously reads frames and hands them over via `on_frame`
    - process thread segments the latest frame only (late frames are dropped)
    - encode thread JPEG-encodes previews and drops old ones under load
    - bursts run on their own single worker so they never stall the preview
    """

    def __init__(self, settings: BoothSettings, segmenter: Segmenter | None = None) -> None:
        self.settings = settings
        self.segmenter: Segmenter = segmenter or YoloSegmentationEngine(
            model_names=model_names_from_settings(settings),
            confidence=settings.confidence,
            imgsz=settings.inference_width,
            soft_edge_px=settings.soft_edge_px,
        )
        self.pipeline = PreviewPipeline(self.segmenter)

        self._config_lock = threading.Lock()
        self._live = live_config_from_settings(settings)

        # Incoming frames waiting for the process thread (single slot, drop-oldest).
        self._incoming: FrameSlot[Frame] = FrameSlot()
        # Newest frame seen; read by bursts without consuming it.
        self._current: FrameSlot[Frame] = FrameSlot()

        self._fps_meter = FrameRateMeter()
        self._camera_fps = 0.0
        self._camera_alpha = 0.2
        self._last_captured_at: float | None = None
        self._frame_id = 0

        self._burst = BurstCapture(
            self.segmenter,
            frame_provider=self._current.peek,
            mode_provider=lambda: self.live_config().mode,
            threshold_provider=lambda: self.live_config().threshold,
            sharpness=settings.sharpness,
            stride=settings.coverage_stride,
            cutoff=settings.coverage_cutoff,
            deadline_s=settings.burst_deadline_s,
        )
        self._executor: ThreadPoolExecutor | None = None
        self._capture_pending = False

        self.source: VideoSource | None = None
        self.running = False
        self._capture_thread: threading.Thread | None = None
        self._process_thread: threading.Thread | None = None
        self._encode_thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._listeners: list[PreviewListener] = []
        self._latest_update: PreviewUpdate | None = None
        self._latest_jpeg: bytes | None = None
        self._latest_capture: BurstCandidate | None = None
        self._latest_card: CompositeCard | None = None
        self._encode_queue: Queue[PreviewUpdate] = Queue(maxsize=1)
        self._encode_event = threading.Event()
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _make_source(self) -> VideoSource:
        """Instantiate the configured `VideoSource`."""

        if self.settings.video_source == "file" and self.settings.video_path:
            video_path = Path(self.settings.video_path)
            if not video_path.exists():
                raise RuntimeError(f"Video path not found: {video_path}")
            return FileSource(str(video_path))
        if self.settings.video_source == "rtsp" and self.settings.rtsp_url:
            return RTSPSource(self.settings.rtsp_url)
        return WebcamSource(self.settings.camera_index)

    def start(self) -> None:
        """Start background threads.

        Safe to call multiple times; subsequent calls while running are ignored.
        """

        if self.running:
            return
        try:
            self.source = self._make_source()
        except Exception:
            self.last_error = "Failed to initialize video source"
            logger.exception(self.last_error)
            return
        self.running = True
        self.last_error = None
        self._encode_event.clear()
        self._capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._process_thread = threading.Thread(target=self._process_loop, daemon=True)
        self._encode_thread = threading.Thread(target=self._encode_loop, daemon=True)
        self._capture_thread.start()
        self._process_thread.start()
        self._encode_thread.start()

    def stop(self) -> None:
        """Stop background threads, the burst worker and the video source."""

        self.running = False
        self._incoming.wake()
        self._encode_event.set()
        for t in (self._capture_thread, self._process_thread, self._encode_thread):
            if t and t.is_alive():
                t.join(timeout=2)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        # A cancelled burst never reaches its own cleanup.
        with self._lock:
            self._capture_pending = False
        if self.source:
            self.source.close()
            self.source = None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def on_frame(self, image: np.ndarray | Frame, timestamp: float | None = None) -> None:
        """Hand a raw frame to the process thread; never blocks beyond a reference swap."""

        now = time.perf_counter()
        if isinstance(image, Frame):
            frame = image
        else:
            frame = Frame(image=image, timestamp=now if timestamp is None else float(timestamp))
        with self._lock:
            if self._last_captured_at is not None:
                dt = now - self._last_captured_at
                if dt > 0:
                    instant = 1.0 / dt
                    self._camera_fps = (
                        instant
                        if self._camera_fps == 0.0
                        else self._camera_fps * (1.0 - self._camera_alpha) + instant * self._camera_alpha
                    )
            self._last_captured_at = now
        self._current.put(frame)
        self._incoming.put(frame)

    def live_config(self) -> LiveConfig:
        with self._config_lock:
            return self._live

    def set_mode(self, mode: SegmentationMode | str) -> LiveConfig:
        """Switch segmentation mode; effective from the next processed frame."""

        mode = SegmentationMode(mode)
        with self._config_lock:
            self._live = LiveConfig(mode=mode, threshold=self._live.threshold, sharpness=self._live.sharpness)
            return self._live

    def set_threshold(self, threshold: float) -> LiveConfig:
        """Change the live threshold (validated to [0.5, 0.99]); effective next frame."""

        value = validate_live_threshold(threshold)
        with self._config_lock:
            self._live = LiveConfig(mode=self._live.mode, threshold=value, sharpness=self._live.sharpness)
            return self._live

    def subscribe(self, listener: PreviewListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: PreviewListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _capture_loop(self) -> None:
        """Continuously read frames from the configured source."""

        logger.debug("Capture loop started")
        while self.running and self.source:
            frame = self.source.read()
            if frame is None:
                time.sleep(0.02)
                continue
            self.on_frame(frame)

    def _process_frame(self, frame: Frame) -> PreviewUpdate | None:
        """Run the preview pipeline on one frame and publish the result."""

        config = self.live_config()
        start = time.perf_counter()
        try:
            result = self.pipeline.process(frame, config)
            self.last_error = None
        except Exception:
            self.last_error = "Pipeline processing failed"
            logger.exception(self.last_error)
            return None

        fps = self._fps_meter.tick()
        timings = dict(result.timings)
        timings["process_ms"] = (time.perf_counter() - start) * 1000.0
        with self._lock:
            self._frame_id += 1
            update = PreviewUpdate(
                frame_id=self._frame_id,
                frame=frame,
                cutout=result.cutout,
                fps=fps,
                timestamp=time.time(),
                profile=timings,
            )
            self._latest_update = update
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(update)
            except Exception:
                logger.exception("Preview listener failed")

        try:
            self._encode_queue.put_nowait(update)
        except Full:
            try:
                self._encode_queue.get_nowait()
            except Empty:
                pass
            try:
                self._encode_queue.put_nowait(update)
            except Full:
                pass
        self._encode_event.set()
        return update

    def _process_loop(self) -> None:
        """Segment the latest frame; frames that arrive meanwhile replace each other."""

        logger.debug("Process loop started")
        target_fps = float(self.settings.target_fps)
        while self.running:
            if not self._incoming.wait(timeout=0.5):
                continue
            frame = self._incoming.take()
            if frame is None:
                continue
            start = time.perf_counter()
            self._process_frame(frame)
            if target_fps > 0:
                desired_interval = (1.0 / target_fps) - (time.perf_counter() - start)
                if desired_interval > 0:
                    time.sleep(desired_interval)

    def _encode_loop(self) -> None:
        """JPEG-encode preview updates, dropping old ones under load."""

        logger.debug("Encode loop started")
        while self.running:
            if not self._encode_event.wait(timeout=0.5):
                continue
            try:
                update = self._encode_queue.get_nowait()
            except Empty:
                self._encode_event.clear()
                continue
            if self._encode_queue.empty():
                self._encode_event.clear()

            try:
                img = render_preview(update, show_fps=self.settings.show_fps_overlay)
                out_w = self.settings.output_width
                h0, w0 = img.shape[:2]
                if out_w and w0 > out_w:
                    out_h = max(1, int(h0 * out_w / float(w0)))
                    img = cv2.resize(img, (out_w, out_h), interpolation=cv2.INTER_LINEAR)
                ok, jpg = cv2.imencode(".jpg", img, [int(cv2.IMWRITE_JPEG_QUALITY), self.settings.jpeg_quality])
                if not ok:
                    continue
                with self._lock:
                    self._latest_jpeg = jpg.tobytes()
            except Exception:
                logger.exception("JPEG encoding failed")

    # ------------------------------------------------------------------
    # Capture and compose
    # ------------------------------------------------------------------

    def submit_capture(
        self,
        attempts: int | None = None,
        delay_ms: float | None = None,
    ) -> Future[BurstOutcome]:
        """Schedule a burst on the capture worker.

        Raises:
            CaptureInProgressError: a burst is already scheduled or running.
        """

        n = int(attempts if attempts is not None else self.settings.burst_attempts)
        delay_s = float(delay_ms if delay_ms is not None else self.settings.burst_delay_ms) / 1000.0
        with self._lock:
            if self._capture_pending:
                raise CaptureInProgressError("A capture is already in progress")
            self._capture_pending = True
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="burst")
            executor = self._executor

        def _run() -> BurstOutcome:
            try:
                outcome = self._burst.capture_best(n, delay_s)
                if outcome.best is not None:
                    with self._lock:
                        self._latest_capture = outcome.best
                return outcome
            finally:
                with self._lock:
                    self._capture_pending = False

        try:
            return executor.submit(_run)
        except Exception:
            with self._lock:
                self._capture_pending = False
            raise

    def capture_best(self, attempts: int | None = None, delay_ms: float | None = None) -> BurstOutcome:
        """Run a burst on the capture worker and wait for its outcome."""

        return self.submit_capture(attempts, delay_ms).result()

    def compose_card(self, template_id: int, label: str) -> CompositeCard | None:
        """Render a card from the latest captured cutout.

        Returns `None` when nothing has been captured yet. Raises `KeyError` for an
        unknown template id.
        """

        template = get_template(template_id)
        candidate = self.latest_capture()
        if candidate is None:
            return None
        card = compose(candidate.cutout, template, label)
        if card is not None:
            with self._lock:
                self._latest_card = card
        return card

    # ------------------------------------------------------------------
    # Published results
    # ------------------------------------------------------------------

    def latest_update(self) -> PreviewUpdate | None:
        with self._lock:
            return self._latest_update

    def latest_jpeg(self) -> bytes | None:
        """Return the latest encoded preview JPEG (or `None` if not ready)."""

        with self._lock:
            return self._latest_jpeg

    def latest_capture(self) -> BurstCandidate | None:
        with self._lock:
            return self._latest_capture

    def latest_card(self) -> CompositeCard | None:
        with self._lock:
            return self._latest_card

    def fps(self) -> float:
        """Processed frames counted during the last completed second (0 when stalled)."""

        return self._fps_meter.read()

    def stream_fps(self) -> float:
        """Approximate input FPS based on capture timestamps."""

        with self._lock:
            return float(self._camera_fps)

    @property
    def capture_in_progress(self) -> bool:
        with self._lock:
            return self._capture_pending

    async def preview_stream(self) -> AsyncGenerator[PreviewUpdate, None]:
        """Yield each new preview update (polling; updates may be skipped under load)."""

        last_id = -1
        while True:
            update = self.latest_update()
            if update is not None and update.frame_id != last_id:
                last_id = update.frame_id
                yield update
            await asyncio.sleep(0.02)
