import numpy as np
import pytest

from cardbooth.core.compositing.card import (
    BAR_OPACITY,
    BAR_TOP_FRACTION,
    CARD_SIZE,
    compose,
    darker,
    harmonize,
    normalize_label,
    subject_rect,
    temperature_gains,
)
from cardbooth.core.templates import TEMPLATES, get_template
from cardbooth.core.types import Cutout


def _cutout(w=200, h=300, color=(60, 120, 180)):
    rgba = np.zeros((h, w, 4), dtype=np.uint8)
    rgba[h // 4 : 3 * h // 4, w // 4 : 3 * w // 4] = (*color, 255)
    return Cutout(rgba)


def test_compose_returns_bgra_card_of_fixed_size():
    card = compose(_cutout(), get_template(0), "Ada")
    assert card is not None
    assert card.image.shape == (CARD_SIZE[1], CARD_SIZE[0], 4)
    assert card.image.dtype == np.uint8
    assert np.all(card.image[:, :, 3] == 255)
    assert card.template_id == 0
    assert card.label == "ADA"


def test_compose_is_deterministic():
    cutout = _cutout()
    a = compose(cutout, get_template(2), "Grace Hopper")
    b = compose(cutout, get_template(2), "Grace Hopper")
    assert np.array_equal(a.image, b.image)


def test_compose_missing_or_empty_cutout_returns_none():
    assert compose(None, get_template(0), "x") is None
    empty = Cutout(np.zeros((10, 10, 4), dtype=np.uint8))
    assert compose(empty, get_template(0), "x") is None


def test_compose_background_gradient_and_bar():
    template = get_template(0)
    card = compose(_cutout(), template, "")
    img = card.image

    # Top row centre is the template colour (BGR); no subject reaches it.
    r, g, b = template.background_color
    assert tuple(int(v) for v in img[0, CARD_SIZE[0] // 2, :3]) == (b, g, r)

    # Bottom row is the darkened colour under the semi-transparent bar.
    dr, dg, db = darker(template.background_color)
    expected = np.array([db, dg, dr], dtype=np.float32) * (1.0 - BAR_OPACITY)
    bottom = img[CARD_SIZE[1] - 1, CARD_SIZE[0] // 2, :3].astype(np.float32)
    assert np.all(np.abs(bottom - expected) <= 2.0)


def test_compose_templates_differ():
    cutout = _cutout()
    images = [compose(cutout, t, "Same").image for t in TEMPLATES.values()]
    for i in range(len(images)):
        for j in range(i + 1, len(images)):
            assert not np.array_equal(images[i], images[j])


def test_compose_label_is_drawn_in_bar():
    cutout = _cutout()
    plain = compose(cutout, get_template(1), "").image
    named = compose(cutout, get_template(1), "Linus").image
    bar_top = int(round(CARD_SIZE[1] * BAR_TOP_FRACTION))
    assert np.array_equal(plain[:bar_top], named[:bar_top])
    assert not np.array_equal(plain[bar_top:], named[bar_top:])


def test_compose_subject_lands_in_subject_rect():
    cutout = _cutout(color=(255, 255, 255))
    card = compose(cutout, get_template(2), "").image
    x, y, w, h = subject_rect(cutout.size)
    cx, cy = x + w // 2, y + h // 2
    # Gold Elite background is dark; the white subject stays bright after harmonising.
    assert card[cy, cx, :3].min() > 200


def test_darker_lowers_brightness():
    assert darker((0, 122, 255)) in {(0, 85, 178), (0, 85, 179)}
    assert darker((10, 10, 10)) == (0, 0, 0)
    assert darker((255, 255, 255), 0.5) in {(127, 127, 127), (128, 128, 128)}


def test_normalize_label():
    assert normalize_label("  ada   lovelace ") == "ADA LOVELACE"
    assert normalize_label("R2-D2!") == "RD"
    assert normalize_label("Zoë") == "ZOE"
    assert normalize_label("Ångström") == "ANGSTROM"
    # No ASCII form for the stroked L.
    assert normalize_label("Łódź") == "ODZ"
    assert normalize_label("a" * 30) == "A" * 20
    assert normalize_label("") == ""


def test_subject_rect_scales_to_height_fraction():
    x, y, w, h = subject_rect((200, 300))
    assert h == 616
    assert w == round(200 * 616 / 300)
    assert y == 70
    assert x == (630 - w) // 2


def test_subject_rect_wide_cutout_overflows_horizontally():
    x, _, w, _ = subject_rect((1920, 300))
    assert w > CARD_SIZE[0]
    assert x < 0


def test_compose_wide_cutout_is_clipped_not_failing():
    card = compose(_cutout(w=1920, h=300), get_template(3), "Wide")
    assert card.image.shape == (880, 630, 4)


def test_temperature_gains_identity_for_same_temperature():
    assert np.allclose(temperature_gains(6500, 6500), 1.0)


def test_harmonize_preserves_alpha_and_transparent_black():
    cutout = _cutout()
    out = harmonize(cutout)
    assert np.array_equal(out.rgba[:, :, 3], cutout.rgba[:, :, 3])
    assert np.all(out.rgba[out.rgba[:, :, 3] == 0, :3] == 0)


def test_get_template_unknown_raises():
    with pytest.raises(KeyError):
        get_template(99)
