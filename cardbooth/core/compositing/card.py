"""Card compositing (OpenCV).

Renders a finished 63:88 portrait card from a cutout, a template and a name:
gradient background, colour-harmonised subject, accent frame with a name bar, and
the uppercased name.
"""

from __future__ import annotations

import colorsys
import re
import unicodedata

import cv2
import numpy as np

from cardbooth.core.types import CompositeCard, Cutout, Template

CARD_SIZE = (630, 880)  # (width, height)

BACKGROUND_DARKEN = 0.3

SUBJECT_HEIGHT_FRACTION = 0.70
SUBJECT_TOP_FRACTION = 0.08

NEUTRAL_TEMPERATURE_K = 6500.0
TARGET_TEMPERATURE_K = 6500.0
SATURATION = 1.10
CONTRAST = 1.05
BRIGHTNESS = 0.02

OUTER_BORDER_INSET = 12
OUTER_BORDER_WIDTH = 8
INNER_BORDER_INSET = 20
INNER_BORDER_WIDTH = 2
BAR_TOP_FRACTION = 0.82
BAR_OPACITY = 0.6

LABEL_FONT = cv2.FONT_HERSHEY_DUPLEX
LABEL_THICKNESS = 3
LABEL_CAP_HEIGHT_PX = 34
LABEL_LETTER_SPACING_PX = 4
LABEL_CENTER_FRACTION = 0.88
LABEL_COLOR = (255, 255, 255)
LABEL_MAX_LENGTH = 20

# Rec. 709 luma weights, BGR order.
_LUMA_BGR = np.array([0.0722, 0.7152, 0.2126], dtype=np.float32)


def _bgr(rgb: tuple[int, int, int]) -> tuple[int, int, int]:
    r, g, b = rgb
    return int(b), int(g), int(r)


def darker(color: tuple[int, int, int], amount: float = BACKGROUND_DARKEN) -> tuple[int, int, int]:
    """Lower the HSB brightness of an RGB colour by `amount` (clamped at 0)."""

    r, g, b = (c / 255.0 for c in color)
    h, s, v = colorsys.rgb_to_hsv(r, g, b)
    r2, g2, b2 = colorsys.hsv_to_rgb(h, s, max(v - amount, 0.0))
    return int(round(r2 * 255)), int(round(g2 * 255)), int(round(b2 * 255))


def normalize_label(text: str, max_length: int = LABEL_MAX_LENGTH) -> str:
    """Keep ASCII letters and spaces, collapse whitespace, truncate and uppercase.

    Accented letters are folded to their base letter first ("Zoë" -> "ZOE"). Letters
    with no ASCII decomposition are dropped: the Hershey fonts only cover ASCII.
    """

    folded = unicodedata.normalize("NFKD", text)
    kept = "".join(c for c in folded if (c.isascii() and c.isalpha()) or c.isspace())
    kept = re.sub(r"\s+", " ", kept).strip()
    return kept[:max_length].rstrip().upper()


def _kelvin_to_rgb(kelvin: float) -> np.ndarray:
    """Approximate RGB (0-1) of a black body at `kelvin`."""

    t = kelvin / 100.0
    if t <= 66:
        r = 255.0
        g = 99.4708025861 * np.log(t) - 161.1195681661
    else:
        r = 329.698727446 * ((t - 60) ** -0.1332047592)
        g = 288.1221695283 * ((t - 60) ** -0.0755148492)
    if t >= 66:
        b = 255.0
    elif t <= 19:
        b = 0.0
    else:
        b = 138.5177312231 * np.log(t - 10) - 305.0447927307
    return np.clip(np.array([r, g, b], dtype=np.float32), 1.0, 255.0) / 255.0


def temperature_gains(neutral_k: float, target_k: float) -> np.ndarray:
    """Per-channel BGR gains mapping the `neutral_k` white point onto `target_k`."""

    rgb = _kelvin_to_rgb(target_k) / _kelvin_to_rgb(neutral_k)
    return rgb[::-1].astype(np.float32)


def harmonize(cutout: Cutout) -> Cutout:
    """Apply the fixed colour-harmonisation chain to a cutout's colour channels.

    Temperature correction, then saturation, brightness and contrast as a colour
    controls filter does. Alpha is preserved.
    """

    bgr = cutout.rgba[:, :, :3].astype(np.float32) / 255.0
    bgr *= temperature_gains(NEUTRAL_TEMPERATURE_K, TARGET_TEMPERATURE_K)

    luma = (bgr @ _LUMA_BGR)[:, :, None]
    bgr = luma + (bgr - luma) * SATURATION
    bgr += BRIGHTNESS
    bgr = (bgr - 0.5) * CONTRAST + 0.5
    np.clip(bgr, 0.0, 1.0, out=bgr)

    out = cutout.rgba.copy()
    out[:, :, :3] = np.rint(bgr * 255.0).astype(np.uint8)
    out[out[:, :, 3] == 0, :3] = 0
    return Cutout(out)


def subject_rect(
    cutout_size: tuple[int, int],
    canvas_size: tuple[int, int] = CARD_SIZE,
) -> tuple[int, int, int, int]:
    """Return `(x, y, w, h)` of the scaled subject on the canvas.

    Uniform scale to a fixed fraction of the canvas height, centred horizontally and
    anchored near the top. `x` may be negative for very wide cutouts.
    """

    cw, ch = cutout_size
    width, height = canvas_size
    target_h = max(1, int(round(height * SUBJECT_HEIGHT_FRACTION)))
    scale = target_h / float(ch)
    target_w = max(1, int(round(cw * scale)))
    x = (width - target_w) // 2
    y = int(round(height * SUBJECT_TOP_FRACTION))
    return x, y, target_w, target_h


def _draw_background(canvas: np.ndarray, template: Template) -> None:
    height = canvas.shape[0]
    top = np.array(_bgr(template.background_color), dtype=np.float32)
    bottom = np.array(_bgr(darker(template.background_color)), dtype=np.float32)
    t = np.linspace(0.0, 1.0, height, dtype=np.float32)[:, None, None]
    canvas[:] = top * (1.0 - t) + bottom * t


def _draw_subject(canvas: np.ndarray, cutout: Cutout) -> None:
    height, width = canvas.shape[:2]
    x, y, w, h = subject_rect(cutout.size, (width, height))

    # Premultiply before resampling so transparent pixels do not bleed into edges.
    alpha = cutout.alpha
    premul = cutout.rgba[:, :, :3].astype(np.float32) * alpha[:, :, None]
    src = np.dstack([premul, alpha * 255.0])
    interpolation = cv2.INTER_AREA if h < cutout.height else cv2.INTER_LINEAR
    scaled = cv2.resize(src, (w, h), interpolation=interpolation)

    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + w, width), min(y + h, height)
    if x0 >= x1 or y0 >= y1:
        return
    patch = scaled[y0 - y : y1 - y, x0 - x : x1 - x]
    a = np.clip(patch[:, :, 3:4] / 255.0, 0.0, 1.0)
    region = canvas[y0:y1, x0:x1]
    region[:] = patch[:, :, :3] + region * (1.0 - a)


def _draw_frame(canvas: np.ndarray, template: Template) -> None:
    height, width = canvas.shape[:2]
    accent = _bgr(template.accent_color)
    o, i = OUTER_BORDER_INSET, INNER_BORDER_INSET
    cv2.rectangle(canvas, (o, o), (width - o, height - o), accent, OUTER_BORDER_WIDTH, cv2.LINE_AA)
    cv2.rectangle(canvas, (i, i), (width - i, height - i), accent, INNER_BORDER_WIDTH, cv2.LINE_AA)

    bar_top = int(round(height * BAR_TOP_FRACTION))
    bar = canvas[bar_top:].astype(np.float32) * (1.0 - BAR_OPACITY)
    canvas[bar_top:] = np.rint(bar).astype(np.uint8)


def _label_layout(text: str, max_width: int) -> tuple[float, list[int], int]:
    """Return `(font_scale, char_advances, cap_height)` fitting `max_width`."""

    def _advances(s: float) -> list[int]:
        return [cv2.getTextSize(c, LABEL_FONT, s, LABEL_THICKNESS)[0][0] for c in text]

    scale = cv2.getFontScaleFromHeight(LABEL_FONT, LABEL_CAP_HEIGHT_PX, LABEL_THICKNESS)
    advances = _advances(scale)
    total = sum(advances) + LABEL_LETTER_SPACING_PX * (len(text) - 1)
    if total > max_width:
        scale *= max_width / float(total)
        advances = _advances(scale)
    (_, cap_h), _ = cv2.getTextSize(text, LABEL_FONT, scale, LABEL_THICKNESS)
    return scale, advances, cap_h


def _draw_label(canvas: np.ndarray, label: str) -> None:
    text = label.upper()
    if not text:
        return
    height, width = canvas.shape[:2]
    max_width = width - 2 * (INNER_BORDER_INSET + 8)
    scale, advances, cap_h = _label_layout(text, max_width)
    total = sum(advances) + LABEL_LETTER_SPACING_PX * (len(text) - 1)
    x = (width - total) // 2
    baseline = int(round(height * LABEL_CENTER_FRACTION + cap_h / 2.0))
    for c, adv in zip(text, advances, strict=True):
        if not c.isspace():
            cv2.putText(
                canvas,
                c,
                (int(x), baseline),
                LABEL_FONT,
                scale,
                LABEL_COLOR,
                LABEL_THICKNESS,
                cv2.LINE_AA,
            )
        x += adv + LABEL_LETTER_SPACING_PX


def compose(
    cutout: Cutout | None,
    template: Template,
    label: str,
    size: tuple[int, int] = CARD_SIZE,
) -> CompositeCard | None:
    """Render a card; returns `None` when the cutout is missing or fully transparent.

    Deterministic: identical inputs produce pixel-identical output.
    """

    if cutout is None or cutout.is_empty():
        return None

    width, height = size
    name = normalize_label(label)

    canvas = np.zeros((height, width, 3), dtype=np.float32)
    _draw_background(canvas, template)
    _draw_subject(canvas, harmonize(cutout))
    np.clip(canvas, 0.0, 255.0, out=canvas)

    img = np.rint(canvas).astype(np.uint8)
    _draw_frame(img, template)
    _draw_label(img, name)

    bgra = cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    return CompositeCard(image=bgra, template_id=template.id, label=name)
