"""In-process state for settings and the booth engine.

FastAPI routes use this module to access (and hot-reload) the singleton
`BoothEngine` instance.
"""

from __future__ import annotations

from threading import RLock

from cardbooth.api.services.engine import BoothEngine
from cardbooth.core.config.settings import BoothSettings, load_settings, settings_to_dict
from cardbooth.core.types import LiveConfig, SegmentationMode

_settings: BoothSettings | None = None
_engine: BoothEngine | None = None
_lock = RLock()


def get_settings() -> BoothSettings:
    """Return cached settings, loading them on first use."""

    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
    return _settings


def reload_settings(data: dict | None = None) -> BoothSettings:
    """Reload settings and restart the engine if it is running.

    Args:
        data: Optional patch dict merged into the loaded settings.
    """

    global _settings, _engine
    with _lock:
        base = load_settings()
        if data:
            _settings = BoothSettings(**{**settings_to_dict(base), **data})
        else:
            _settings = base
        if _engine:
            _engine.stop()
            _engine = BoothEngine(_settings)
            _engine.start()
    return _settings


def apply_live_config(
    mode: SegmentationMode | None = None,
    threshold: float | None = None,
) -> LiveConfig | None:
    """Change mode/threshold without restarting the engine.

    The cached settings are updated too so a later `reload_settings()` patch or
    `GET /config` reflects the change. Returns the engine's new live config, or
    `None` when no engine is running.
    """

    settings = get_settings()
    with _lock:
        if mode is not None:
            settings.segmentation_mode = SegmentationMode(mode)
        if threshold is not None:
            settings.threshold = threshold
        if _engine is None:
            return None
        live = _engine.live_config()
        if mode is not None:
            live = _engine.set_mode(mode)
        if threshold is not None:
            live = _engine.set_threshold(threshold)
        return live


def get_engine() -> BoothEngine:
    """Return the singleton engine instance, creating and starting it if needed."""

    global _engine
    with _lock:
        if _engine is None:
            _engine = BoothEngine(get_settings())
            _engine.start()
    return _engine


def stop_engine() -> None:
    """Stop and discard the singleton engine instance (if present)."""

    global _engine
    with _lock:
        if _engine is not None:
            _engine.stop()
            _engine = None
