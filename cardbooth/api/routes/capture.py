"""Burst capture and card rendering endpoints."""

from __future__ import annotations

import asyncio

import cv2
import numpy as np
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from cardbooth.api.schemas.models import (
    CaptureRequestSchema,
    CaptureSchema,
    CardRequestSchema,
    TemplateSchema,
)
from cardbooth.api.services.engine import BoothEngine
from cardbooth.api.services.state import get_engine
from cardbooth.core.capture.burst import CaptureInProgressError
from cardbooth.core.templates import list_templates

router = APIRouter(tags=["capture"])


def _png(image: np.ndarray) -> Response:
    ok, buf = cv2.imencode(".png", image)
    if not ok:
        raise HTTPException(status_code=500, detail="Failed to encode PNG")
    return Response(content=bytes(buf), media_type="image/png", headers={"Cache-Control": "no-store"})


@router.post("/capture", response_model=CaptureSchema)
async def capture(
    body: CaptureRequestSchema | None = None,
    engine: BoothEngine = Depends(get_engine),
) -> CaptureSchema:
    """Run a burst capture and keep the best cutout for card rendering.

    409 when a capture is already running, 422 when no attempt found a subject.
    """

    body = body or CaptureRequestSchema()
    try:
        future = engine.submit_capture(body.attempts, body.delay_ms)
    except CaptureInProgressError:
        raise HTTPException(status_code=409, detail="Capture already in progress") from None
    outcome = await asyncio.wrap_future(future)
    if not outcome.ok:
        raise HTTPException(status_code=422, detail="Capture failed, retry")
    best = outcome.best
    return CaptureSchema(
        ok=True,
        score=best.score,
        mode=best.mode,
        threshold=best.threshold,
        attempts_run=outcome.attempts_run,
        skipped=outcome.skipped,
        elapsed_ms=outcome.elapsed_s * 1000.0,
        frame_size=best.frame.size,
    )


@router.get("/capture/cutout.png")
def captured_cutout(engine: BoothEngine = Depends(get_engine)) -> Response:
    """Return the latest captured cutout as a transparent PNG."""

    candidate = engine.latest_capture()
    if candidate is None:
        raise HTTPException(status_code=404, detail="Nothing captured yet")
    return _png(candidate.cutout.rgba)


@router.get("/templates", response_model=list[TemplateSchema])
def templates() -> list[TemplateSchema]:
    """List the card template catalog."""

    return [TemplateSchema(**t) for t in list_templates()]


@router.post("/card")
def card(body: CardRequestSchema, engine: BoothEngine = Depends(get_engine)) -> Response:
    """Render a card PNG from the latest capture.

    404 for an unknown template, 409 when there is no usable capture.
    """

    try:
        result = engine.compose_card(body.template_id, body.label)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown template") from None
    if result is None:
        raise HTTPException(status_code=409, detail="No captured subject to compose")
    return _png(result.image)
