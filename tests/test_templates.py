from cardbooth.core.templates import TEMPLATES, get_template, list_templates


def test_catalog_ids_and_names():
    assert [t.display_name for t in TEMPLATES.values()] == [
        "Classic Blue",
        "Fire Red",
        "Gold Elite",
        "Emerald",
    ]
    assert all(t.id == key for key, t in TEMPLATES.items())


def test_get_template():
    assert get_template(2).background_color == (51, 38, 13)
    assert get_template(0).accent_color == (255, 204, 0)


def test_list_templates_is_json_friendly():
    listed = list_templates()
    assert listed[1] == {
        "id": 1,
        "display_name": "Fire Red",
        "background_color": [255, 59, 48],
        "accent_color": [255, 255, 255],
    }
