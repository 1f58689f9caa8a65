from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

TemplateId = Literal[
    "SMS_D2",
    "SMS_D1",
    "SMS_D0",
    "SMS_AFTER_TATTOO",
    "SMS_AFTER_PIERCING",
    "SMS_DEPOSIT_BEFORE",
    "SMS_DEPOSIT_AFTER",
]

TEMPLATES: dict[str, str] = {
    "SMS_D2": "Cześć {IMIE}! Wizyta {DATA} o {GODZ} w {STUDIO} – widzimy się pojutrze",
    "SMS_D1": "Hej {IMIE}! Jutro {DATA} o {GODZ} w {STUDIO}",
    "SMS_D0": "To dziś, {IMIE}! {GODZ} w {STUDIO}",
    "SMS_AFTER_TATTOO": (
        "Dzięki za wizytę {IMIE}! Pamiętaj o pielęgnacji tatuażu. 3 razy dziennie smaruj poleconym "
        "kremem, regularnie przemywaj tatuaż, unikaj słońca i kąpieli w zbiornikach wodnych. "
        "Zrezygnuj przez następne kilka dni z intensywnego wysiłku fizycznego. "
        "W razie pytań jesteśmy do dyspozycji! ({STUDIO})"
    ),
    "SMS_AFTER_PIERCING": (
        "Dzięki za wizytę {IMIE}! Pielęgnacja piercingu: sól morska 2×/dzień, bez basenu/sauny "
        "przez 6 tygodni. W razie pytań jesteśmy do dyspozycji! ({STUDIO})"
    ),
    "SMS_DEPOSIT_BEFORE": "Prosimy o zadatek {KWOTA}zł za wizytę {DATA} {GODZ} w {STUDIO}",
    "SMS_DEPOSIT_AFTER": "{IMIE}, prosimy o zadatek {KWOTA}zł za wizytę {DATA} {GODZ} w {STUDIO}",
}


def render(template_id: str, variables: Mapping[str, object]) -> str:
    """Render a template body.

    An unknown ``template_id`` is used as the body itself. Placeholders are the
    upper-cased variable names in braces; anything left unresolved is kept as is.
    """
    body = TEMPLATES.get(template_id, template_id)
    for key, value in variables.items():
        body = body.replace("{" + str(key).upper() + "}", str(value))
    return body
