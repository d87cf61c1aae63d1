"""Health check endpoints."""

from fastapi import APIRouter

from cardbooth.api.services import state

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Liveness probe; reports engine status without starting it."""

    engine = state._engine
    if engine is None:
        status = "idle"
    elif engine.running:
        status = "running"
    else:
        status = "stopped"
    return {"status": "ok", "engine": status}
