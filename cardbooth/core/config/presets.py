from __future__ import annotations

from typing import Any


# Quality presets. Each one patches the booth settings.
#
# Notes:
# - segmentation_mode drives the live preview; bursts always upgrade to the most
#   accurate mode of the same family
# - inference_width is a downscale hint for the segmentation model
# - burst_attempts / burst_delay_ms bound the cost of a capture


PRESETS: dict[str, dict[str, Any]] = {
    # Max throughput on modest CPUs.
    "fast": {
        "segmentation_mode": "person_fast",
        "inference_width": 416,
        "threshold": 0.75,
        "burst_attempts": 2,
        "burst_delay_ms": 100.0,
        "output_width": 640,
        "jpeg_quality": 70,
    },
    # Good compromise for most machines.
    "balanced": {
        "segmentation_mode": "person_balanced",
        "inference_width": 640,
        "threshold": 0.8,
        "burst_attempts": 3,
        "burst_delay_ms": 150.0,
        "output_width": 960,
        "jpeg_quality": 80,
    },
    # Best edges; expect single-digit preview FPS on CPU.
    "accurate": {
        "segmentation_mode": "person_accurate",
        "inference_width": None,
        "threshold": 0.85,
        "burst_attempts": 4,
        "burst_delay_ms": 200.0,
        "output_width": None,
        "jpeg_quality": 90,
    },
    # Any foreground object, hard-edged masks.
    "instance": {
        "segmentation_mode": "foreground_instance_mask",
        "inference_width": 640,
        "burst_attempts": 3,
        "burst_delay_ms": 150.0,
    },
}


PRESET_LABELS: dict[str, str] = {
    "fast": "Fast",
    "balanced": "Balanced",
    "accurate": "Accurate",
    "instance": "Any object",
}


def list_presets() -> list[dict[str, Any]]:
    return [
        {
            "id": preset_id,
            "label": PRESET_LABELS.get(preset_id, preset_id),
            "settings": PRESETS[preset_id],
        }
        for preset_id in PRESETS.keys()
    ]


def preset_patch(preset_id: str) -> dict[str, Any]:
    if preset_id not in PRESETS:
        raise KeyError(preset_id)
    return dict(PRESETS[preset_id])
