from __future__ import annotations

from studio_reminders.templates import TEMPLATES, render


def test_render_replaces_upper_cased_placeholders() -> None:
    body = render("SMS_D1", {"imie": "Anna", "data": "12.03", "godz": "14:00", "studio": "Studio Tatuażu"})

    assert body == "Hej Anna! Jutro 12.03 o 14:00 w Studio Tatuażu"


def test_render_keeps_unresolved_placeholders_and_ignores_unknown_variables() -> None:
    body = render("SMS_D0", {"IMIE": "Ola", "UNUSED": "x"})

    assert body == "To dziś, Ola! {GODZ} w {STUDIO}"


def test_unknown_template_id_is_rendered_verbatim() -> None:
    assert render("Hello {IMIE}", {"imie": "Ola"}) == "Hello Ola"


def test_every_template_mentions_the_studio() -> None:
    for template_id, body in TEMPLATES.items():
        assert "{STUDIO}" in body, template_id
