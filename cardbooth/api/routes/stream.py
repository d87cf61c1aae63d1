from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from cardbooth.api.schemas.models import PreviewSchema
from cardbooth.api.services.engine import BoothEngine
from cardbooth.api.services.state import get_engine
from cardbooth.core.capture.burst import coverage_score
from cardbooth.core.types import PreviewUpdate

router = APIRouter()

logger = logging.getLogger(__name__)


def preview_payload(update: PreviewUpdate, stream_fps: float | None = None) -> dict:
    return PreviewSchema(
        frame_id=update.frame_id,
        timestamp=update.timestamp,
        fps=update.fps,
        subject_detected=update.subject_detected,
        frame_size=update.frame.size,
        coverage=coverage_score(update.cutout) if update.cutout is not None else None,
        stream_fps=stream_fps,
    ).model_dump(mode="json")


@router.get("/stream/video")
async def stream_video():
    """MJPEG stream of the live cutout preview."""

    async def generator():
        last_engine: BoothEngine | None = None
        last_sent: bytes | None = None
        while True:
            # Re-resolved each pass so a settings reload switches to the new engine.
            engine: BoothEngine = await asyncio.to_thread(get_engine)
            if engine is not last_engine:
                last_engine = engine
                last_sent = None
            frame = engine.latest_jpeg()
            if frame is not None and frame is not last_sent:
                headers = b"--frame\r\n" b"Content-Type: image/jpeg\r\n"
                headers += f"Content-Length: {len(frame)}\r\n\r\n".encode("ascii")
                yield headers + frame + b"\r\n"
                last_sent = frame
            await asyncio.sleep(0.02)

    return StreamingResponse(
        generator(),
        media_type="multipart/x-mixed-replace; boundary=frame",
        headers={
            "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
            "Pragma": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.websocket("/stream/metadata")
async def stream_metadata(ws: WebSocket):
    """Push one JSON message per processed preview frame."""

    await ws.accept()
    engine: BoothEngine = await asyncio.to_thread(get_engine)
    try:
        async for update in engine.preview_stream():
            try:
                payload = preview_payload(update, engine.stream_fps())
            except Exception:
                # Keep the websocket alive even if one frame fails serialization.
                logger.exception("Failed to serialize preview update")
                continue
            await ws.send_json(payload)
    except WebSocketDisconnect:
        return
    except Exception:
        logger.exception("Metadata websocket crashed")
        try:
            await ws.close(code=1011)
        except Exception:
            pass
