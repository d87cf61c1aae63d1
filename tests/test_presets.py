import pytest

from cardbooth.core.config.presets import PRESETS, list_presets, preset_patch
from cardbooth.core.config.settings import BoothSettings


def test_list_presets_has_labels_and_settings():
    presets = list_presets()
    ids = [p["id"] for p in presets]
    assert ids == ["fast", "balanced", "accurate", "instance"]
    for p in presets:
        assert p["label"]
        assert isinstance(p["settings"], dict)


def test_preset_patch_returns_copy():
    patch = preset_patch("fast")
    patch["threshold"] = 0.5
    assert PRESETS["fast"]["threshold"] == 0.75


def test_preset_patch_unknown_raises():
    with pytest.raises(KeyError):
        preset_patch("ultra")


@pytest.mark.parametrize("preset_id", list(PRESETS))
def test_presets_produce_valid_settings(preset_id):
    settings = BoothSettings(**preset_patch(preset_id))
    assert settings.segmentation_mode.value == PRESETS[preset_id]["segmentation_mode"]
