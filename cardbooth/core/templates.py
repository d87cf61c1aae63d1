from __future__ import annotations

from typing import Any

from cardbooth.core.types import Template

# Colours are RGB; they match the system palette the cards were designed against.
BLUE = (0, 122, 255)
RED = (255, 59, 48)
GREEN = (52, 199, 89)
YELLOW = (255, 204, 0)
WHITE = (255, 255, 255)


TEMPLATES: dict[int, Template] = {
    0: Template(id=0, display_name="Classic Blue", background_color=BLUE, accent_color=YELLOW),
    1: Template(id=1, display_name="Fire Red", background_color=RED, accent_color=WHITE),
    2: Template(id=2, display_name="Gold Elite", background_color=(51, 38, 13), accent_color=YELLOW),
    3: Template(id=3, display_name="Emerald", background_color=GREEN, accent_color=WHITE),
}


def get_template(template_id: int) -> Template:
    """Return a catalog template; raises `KeyError` for unknown ids."""

    if template_id not in TEMPLATES:
        raise KeyError(template_id)
    return TEMPLATES[template_id]


def list_templates() -> list[dict[str, Any]]:
    return [
        {
            "id": t.id,
            "display_name": t.display_name,
            "background_color": list(t.background_color),
            "accent_color": list(t.accent_color),
        }
        for t in TEMPLATES.values()
    ]
