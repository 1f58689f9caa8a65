from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

DST_SWITCH_HOUR_UTC = 1


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def last_sunday(year: int, month: int) -> date:
    if month == 12:
        last_day = date(year + 1, 1, 1) - timedelta(days=1)
    else:
        last_day = date(year, month + 1, 1) - timedelta(days=1)
    # date.weekday(): Monday=0 .. Sunday=6
    return last_day - timedelta(days=(last_day.weekday() + 1) % 7)


def summer_time_bounds(year: int) -> tuple[datetime, datetime]:
    """Return the UTC instants at which EU summer time starts and ends in ``year``.

    Both switches happen at 01:00 UTC on the last Sunday of March and October.
    """
    start = datetime.combine(last_sunday(year, 3), time(DST_SWITCH_HOUR_UTC), tzinfo=timezone.utc)
    end = datetime.combine(last_sunday(year, 10), time(DST_SWITCH_HOUR_UTC), tzinfo=timezone.utc)
    return start, end


@dataclass(frozen=True)
class ReminderWindow:
    """Half-open ``[start, end)`` interval of UTC instants."""

    start: datetime
    end: datetime
    label: str

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"window {self.label!r} must have start < end")

    def contains(self, instant: datetime) -> bool:
        value = _coerce_utc(instant)
        return self.start <= value < self.end


class CivilZone:
    """Wall-clock arithmetic for a zone that follows the EU daylight-saving rule.

    Offsets are resolved from the instant alone, so the zone never consults the
    host's local timezone database.
    """

    def __init__(
        self,
        *,
        name: str = "Europe/Warsaw",
        standard_offset_minutes: int = 60,
        summer_offset_minutes: int = 120,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.name = name
        self.standard_offset_minutes = standard_offset_minutes
        self.summer_offset_minutes = summer_offset_minutes
        self._clock = clock

    def offset_minutes_for(self, instant: datetime) -> int:
        value = _coerce_utc(instant)
        start, end = summer_time_bounds(value.year)
        if start <= value < end:
            return self.summer_offset_minutes
        return self.standard_offset_minutes

    def to_civil(self, instant: datetime) -> datetime:
        offset = timedelta(minutes=self.offset_minutes_for(instant))
        return _coerce_utc(instant).astimezone(timezone(offset))

    def now(self) -> datetime:
        return self.to_civil(self._clock())

    def civil_date(self, instant: datetime) -> date:
        return self.to_civil(instant).date()

    def at_wall_clock(self, day: date, hour: int, minute: int = 0) -> datetime:
        wall = datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)
        guess = wall - timedelta(minutes=self.standard_offset_minutes)
        offset = self.offset_minutes_for(guess)
        return wall - timedelta(minutes=offset)

    def midnight(self, day: date) -> datetime:
        return self.at_wall_clock(day, 0, 0)

    def day_window(self, reference: datetime, day_offset: int, label: str = "") -> ReminderWindow:
        day = self.civil_date(reference) + timedelta(days=day_offset)
        return ReminderWindow(
            start=self.midnight(day),
            end=self.midnight(day + timedelta(days=1)),
            label=label or f"day{day_offset:+d}",
        )

    def from_civil(self, value: datetime | date) -> datetime:
        """Interpret a naive wall-clock value (or a bare date) in this zone."""
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                return _coerce_utc(value)
            return self.at_wall_clock(value.date(), value.hour, value.minute) + timedelta(
                seconds=value.second, microseconds=value.microsecond
            )
        return self.midnight(value)

    def format_date(self, instant: datetime) -> str:
        return self.to_civil(instant).strftime("%d.%m")

    def format_time(self, instant: datetime) -> str:
        return self.to_civil(instant).strftime("%H:%M")
