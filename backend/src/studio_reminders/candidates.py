from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from .appointments import Appointment, AppointmentStore
from .civil_time import CivilZone, ReminderWindow

ReminderCategory = Literal[
    "two-days-before",
    "one-day-before",
    "same-day",
    "deposit-due-soon",
    "deposit-overdue",
    "post-service",
]

APPOINTMENT_CATEGORIES: tuple[ReminderCategory, ...] = ("two-days-before", "one-day-before", "same-day")
DEPOSIT_CATEGORIES: tuple[ReminderCategory, ...] = ("deposit-due-soon", "deposit-overdue")

CATEGORY_TEMPLATES: dict[str, str] = {
    "two-days-before": "SMS_D2",
    "one-day-before": "SMS_D1",
    "same-day": "SMS_D0",
    "deposit-due-soon": "SMS_DEPOSIT_BEFORE",
    "deposit-overdue": "SMS_DEPOSIT_AFTER",
}

_DAY_OFFSETS: dict[str, int] = {
    "two-days-before": 2,
    "one-day-before": 1,
    "same-day": 0,
    "deposit-due-soon": 1,
}

OVERDUE_GRACE_DAYS = 3
OVERDUE_LOOKBACK_DAYS = 90
POST_SERVICE_EVENING_CUTOFF_HOUR = 18
POST_SERVICE_EVENING_HOUR = 19
POST_SERVICE_MORNING_HOUR = 9
TATTOO_MARKERS = ("tatuaż", "tattoo")
GROSZ = Decimal("0.01")


@dataclass(frozen=True)
class ReminderCandidate:
    category: ReminderCategory
    appointment: Appointment
    template_id: str
    logical_slot: datetime
    variables: dict[str, str]


def category_window(zone: CivilZone, category: ReminderCategory, now: datetime) -> ReminderWindow:
    if category in _DAY_OFFSETS:
        return zone.day_window(now, _DAY_OFFSETS[category], label=category)
    today = zone.civil_date(now)
    if category == "deposit-overdue":
        # Due no later than the end of civil day now-3, looking back 90 days.
        return ReminderWindow(
            start=zone.midnight(today - timedelta(days=OVERDUE_LOOKBACK_DAYS)),
            end=zone.midnight(today - timedelta(days=OVERDUE_GRACE_DAYS - 1)),
            label=category,
        )
    if category == "post-service":
        return ReminderWindow(
            start=zone.midnight(today - timedelta(days=1)),
            end=zone.midnight(today + timedelta(days=1)),
            label=category,
        )
    raise ValueError(f"unknown reminder category: {category}")


def post_service_send_time(zone: CivilZone, ends_at: datetime) -> datetime:
    civil_end = zone.to_civil(ends_at)
    if civil_end.hour >= POST_SERVICE_EVENING_CUTOFF_HOUR:
        return zone.at_wall_clock(civil_end.date() + timedelta(days=1), POST_SERVICE_MORNING_HOUR)
    return zone.at_wall_clock(civil_end.date(), POST_SERVICE_EVENING_HOUR)


def post_service_template(service: str) -> str:
    label = service.lower()
    if any(marker in label for marker in TATTOO_MARKERS):
        return "SMS_AFTER_TATTOO"
    return "SMS_AFTER_PIERCING"


def select_for_window(
    store: AppointmentStore,
    category: ReminderCategory,
    window: ReminderWindow,
) -> list[Appointment]:
    if category in APPOINTMENT_CATEGORIES:
        rows = store.list_starting_between(window.start, window.end)
    elif category in DEPOSIT_CATEGORIES:
        rows = store.list_unpaid_deposits_due_between(window.start, window.end)
    elif category == "post-service":
        rows = store.list_ending_between(window.start, window.end)
    else:
        raise ValueError(f"unknown reminder category: {category}")
    return [row for row in rows if row.has_phone]


def _as_decimal(value: float | int | Decimal) -> Decimal:
    return Decimal(str(value))


def format_amount(amount: float | int | Decimal) -> str:
    # Rounded to grosze, trailing zeros dropped, never in exponent form.
    quantized = _as_decimal(amount).quantize(GROSZ, rounding=ROUND_HALF_UP)
    return f"{quantized.normalize():f}"


def build_variables(
    zone: CivilZone,
    appointment: Appointment,
    *,
    studio_name: str,
    include_deposit: bool = False,
    include_schedule: bool = True,
) -> dict[str, str]:
    variables = {"IMIE": appointment.first_name, "STUDIO": studio_name}
    if include_schedule:
        variables["DATA"] = zone.format_date(appointment.starts_at)
        variables["GODZ"] = zone.format_time(appointment.starts_at)
    if include_deposit and appointment.deposit_amount is not None:
        variables["KWOTA"] = format_amount(appointment.deposit_amount)
    return variables


def collect_candidates(
    category: ReminderCategory,
    *,
    now: datetime,
    zone: CivilZone,
    store: AppointmentStore,
    studio_name: str,
) -> list[ReminderCandidate]:
    """Apply the category rule to the appointments selected for ``now``.

    ``now`` is the frozen reference instant of the run; every window and logical
    slot is derived from it.
    """
    window = category_window(zone, category, now)
    candidates: list[ReminderCandidate] = []
    for appointment in select_for_window(store, category, window):
        if category in APPOINTMENT_CATEGORIES:
            candidates.append(
                ReminderCandidate(
                    category=category,
                    appointment=appointment,
                    template_id=CATEGORY_TEMPLATES[category],
                    logical_slot=window.start,
                    variables=build_variables(zone, appointment, studio_name=studio_name),
                )
            )
        elif category in DEPOSIT_CATEGORIES:
            if not appointment.deposit_amount or appointment.deposit_amount <= 0:
                continue
            slot = window.start if category == "deposit-due-soon" else zone.midnight(zone.civil_date(now))
            candidates.append(
                ReminderCandidate(
                    category=category,
                    appointment=appointment,
                    template_id=CATEGORY_TEMPLATES[category],
                    logical_slot=slot,
                    variables=build_variables(zone, appointment, studio_name=studio_name, include_deposit=True),
                )
            )
        else:
            send_at = post_service_send_time(zone, appointment.ends_at)
            if now < send_at:
                continue
            candidates.append(
                ReminderCandidate(
                    category=category,
                    appointment=appointment,
                    template_id=post_service_template(appointment.service),
                    logical_slot=send_at,
                    variables=build_variables(
                        zone, appointment, studio_name=studio_name, include_schedule=False
                    ),
                )
            )
    return candidates
