"""Configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from cardbooth.api.schemas.models import ConfigSchema, LiveConfigSchema, ModeSchema, ThresholdSchema
from cardbooth.api.services.state import apply_live_config, get_settings, reload_settings
from cardbooth.core.config.presets import list_presets, preset_patch
from cardbooth.core.config.settings import settings_to_dict

router = APIRouter()


def _live_payload(live) -> LiveConfigSchema:
    settings = get_settings()
    if live is None:
        return LiveConfigSchema(mode=settings.segmentation_mode, threshold=settings.threshold, applied=False)
    return LiveConfigSchema(mode=live.mode, threshold=live.threshold, applied=True)


@router.get("/config", response_model=ConfigSchema)
def get_config() -> ConfigSchema:
    """Return the current effective booth configuration."""

    settings = get_settings()
    return ConfigSchema(**settings_to_dict(settings))


@router.get("/config/presets")
def get_presets() -> dict[str, list[dict[str, object]]]:
    """Return available quality presets."""

    return {"presets": list_presets()}


@router.post("/config/presets/{preset_id}", response_model=ConfigSchema)
def apply_preset(preset_id: str) -> ConfigSchema:
    """Apply a preset by id and return the updated configuration."""

    try:
        patch = preset_patch(preset_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown preset") from None
    settings = reload_settings(patch)
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config", response_model=ConfigSchema)
def update_config(cfg: ConfigSchema) -> ConfigSchema:
    """Replace in-memory settings and restart the engine.

    Persist configuration via environment variables or the YAML config file.
    """

    data = cfg.model_dump(mode="json")
    settings = reload_settings(data)
    return ConfigSchema(**settings_to_dict(settings))


@router.post("/config/mode", response_model=LiveConfigSchema)
def set_mode(body: ModeSchema) -> LiveConfigSchema:
    """Switch segmentation mode from the next processed frame (no restart)."""

    return _live_payload(apply_live_config(mode=body.mode))


@router.post("/config/threshold", response_model=LiveConfigSchema)
def set_threshold(body: ThresholdSchema) -> LiveConfigSchema:
    """Change the live confidence threshold from the next processed frame."""

    return _live_payload(apply_live_config(threshold=body.threshold))
