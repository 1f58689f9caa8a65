from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from studio_reminders.civil_time import CivilZone, ReminderWindow, last_sunday, summer_time_bounds


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_last_sunday_of_march_and_october() -> None:
    assert last_sunday(2026, 3) == date(2026, 3, 29)
    assert last_sunday(2026, 10) == date(2026, 10, 25)
    assert last_sunday(2025, 12) == date(2025, 12, 28)


def test_summer_time_bounds_switch_at_one_utc() -> None:
    start, end = summer_time_bounds(2026)

    assert start == _utc(2026, 3, 29, 1, 0)
    assert end == _utc(2026, 10, 25, 1, 0)


def test_offset_changes_exactly_at_switch_instants() -> None:
    zone = CivilZone()

    assert zone.offset_minutes_for(_utc(2026, 3, 29, 0, 59)) == 60
    assert zone.offset_minutes_for(_utc(2026, 3, 29, 1, 0)) == 120
    assert zone.offset_minutes_for(_utc(2026, 10, 25, 0, 59)) == 120
    assert zone.offset_minutes_for(_utc(2026, 10, 25, 1, 0)) == 60


def test_now_uses_current_offset_of_injected_clock() -> None:
    zone = CivilZone(clock=lambda: _utc(2026, 7, 1, 12, 0))

    now = zone.now()

    assert now.utcoffset() == timedelta(hours=2)
    assert now.hour == 14


def test_day_window_is_24_hours_on_a_regular_day() -> None:
    zone = CivilZone()

    window = zone.day_window(_utc(2026, 3, 10, 8, 0), 1, label="one-day-before")

    assert window.start == _utc(2026, 3, 10, 23, 0)
    assert window.end == _utc(2026, 3, 11, 23, 0)
    assert window.label == "one-day-before"


def test_day_window_is_23_hours_on_spring_forward_day() -> None:
    zone = CivilZone()

    window = zone.day_window(_utc(2026, 3, 29, 12, 0), 0)

    assert window.start == _utc(2026, 3, 28, 23, 0)
    assert window.end == _utc(2026, 3, 29, 22, 0)
    assert window.end - window.start == timedelta(hours=23)


def test_day_window_is_25_hours_on_fall_back_day() -> None:
    zone = CivilZone()

    window = zone.day_window(_utc(2026, 10, 25, 12, 0), 0)

    assert window.start == _utc(2026, 10, 24, 22, 0)
    assert window.end == _utc(2026, 10, 25, 23, 0)
    assert window.end - window.start == timedelta(hours=25)


def test_day_window_uses_civil_date_not_utc_date() -> None:
    zone = CivilZone()

    # 23:30 UTC on March 10 is already March 11 in Warsaw.
    window = zone.day_window(_utc(2026, 3, 10, 23, 30), 0)

    assert window.start == _utc(2026, 3, 10, 23, 0)


def test_window_rejects_empty_interval() -> None:
    instant = _utc(2026, 3, 10, 0, 0)

    with pytest.raises(ValueError):
        ReminderWindow(start=instant, end=instant, label="empty")


def test_window_contains_is_half_open() -> None:
    window = ReminderWindow(start=_utc(2026, 3, 10, 0, 0), end=_utc(2026, 3, 11, 0, 0), label="day")

    assert window.contains(_utc(2026, 3, 10, 0, 0))
    assert not window.contains(_utc(2026, 3, 11, 0, 0))


def test_from_civil_reads_dates_and_naive_datetimes_as_wall_clock() -> None:
    zone = CivilZone()

    assert zone.from_civil(date(2026, 1, 10)) == _utc(2026, 1, 9, 23, 0)
    assert zone.from_civil(datetime(2026, 7, 1, 9, 0)) == _utc(2026, 7, 1, 7, 0)
    assert zone.from_civil(_utc(2026, 7, 1, 9, 0)) == _utc(2026, 7, 1, 9, 0)


def test_format_helpers_render_civil_wall_clock() -> None:
    zone = CivilZone()
    instant = _utc(2026, 7, 15, 8, 30)

    assert zone.format_date(instant) == "15.07"
    assert zone.format_time(instant) == "10:30"
