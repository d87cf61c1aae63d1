"""Stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from cardbooth.api.schemas.models import StatsSchema
from cardbooth.api.services.engine import BoothEngine
from cardbooth.api.services.state import get_engine

router = APIRouter()


@router.get("/stats", response_model=StatsSchema)
def stats(engine: BoothEngine = Depends(get_engine)) -> StatsSchema:
    """Return preview throughput and capture state."""

    live = engine.live_config()
    update = engine.latest_update()
    return StatsSchema(
        fps=engine.fps(),
        stream_fps=engine.stream_fps(),
        mode=live.mode,
        threshold=live.threshold,
        subject_detected=bool(update is not None and update.subject_detected),
        capture_in_progress=engine.capture_in_progress,
        has_capture=engine.latest_capture() is not None,
        error=engine.last_error,
    )
