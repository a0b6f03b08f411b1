# =========================
#     WORKING HOURS CONFIG
# =========================

# Default crew shift: 08:00-16:00, Monday to Friday.
# Weekday indices follow date.weekday(): Monday = 0 ... Sunday = 6.
DEFAULT_SHIFT_START_HOUR = 8
DEFAULT_SHIFT_END_HOUR = 16
DEFAULT_WORKING_DAYS = (0, 1, 2, 3, 4)

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

from dataclasses import dataclass
from datetime import datetime, date, time, timedelta
from typing import Iterable, Optional


@dataclass(frozen=True)
class Interval:
    """Half-open time interval [start, end)."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def minutes(self) -> float:
        return self.duration.total_seconds() / 60

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def contains_instant(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    def intersection(self, other: "Interval") -> Optional["Interval"]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return Interval(start, end)

    def to_dict(self):
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @staticmethod
    def from_dict(d):
        return Interval(
            start=datetime.fromisoformat(d["start"]),
            end=datetime.fromisoformat(d["end"]),
        )


@dataclass(frozen=True)
class Shift:
    """Working hours for one weekday. Shifts never cross midnight."""

    start: time
    end: time

    def on(self, day: date) -> Interval:
        """Get the concrete working interval of this shift on a given date."""
        return Interval(datetime.combine(day, self.start), datetime.combine(day, self.end))

    @property
    def minutes(self) -> float:
        return (
            datetime.combine(date.min, self.end) - datetime.combine(date.min, self.start)
        ).total_seconds() / 60

    def to_dict(self):
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "available": True,
        }

    @staticmethod
    def from_dict(d):
        return Shift(start=parse_time(d["start"]), end=parse_time(d["end"]))


def parse_time(value) -> time:
    """Parse an "HH:MM" string (or pass through a time object).

    Args:
        value: "HH:MM" string or datetime.time

    Returns:
        time: The parsed wall-clock time.
    """
    if isinstance(value, time):
        return value

    hours, minutes = str(value).strip().split(":")[:2]
    return time(hour=int(hours), minute=int(minutes))


def standard_week(
    start: time = time(DEFAULT_SHIFT_START_HOUR),
    end: time = time(DEFAULT_SHIFT_END_HOUR),
    days: Iterable[int] = DEFAULT_WORKING_DAYS,
) -> dict[int, Shift]:
    """Build a working-hours map with the same shift on every listed weekday."""
    return {day: Shift(start=start, end=end) for day in days}


def working_hours_to_dict(working_hours: dict[int, Shift]) -> dict:
    """Convert a weekday -> Shift map to the {"monday": {...}} document form."""
    return {
        WEEKDAY_NAMES[day]: shift.to_dict()
        for day, shift in sorted(working_hours.items())
    }


def working_hours_from_dict(d: dict) -> dict[int, Shift]:
    """Parse the {"monday": {"start": "08:00", "end": "16:00", "available": true}} form.

    Days marked unavailable or missing start/end are days off.
    """
    working_hours: dict[int, Shift] = {}

    for name, hours in (d or {}).items():
        day = WEEKDAY_NAMES.index(name.lower())

        if not hours or not hours.get("available", True):
            continue

        if not hours.get("start") or not hours.get("end"):
            continue

        working_hours[day] = Shift.from_dict(hours)

    return working_hours


def weekday_name(day: date) -> str:
    """Get the lowercase weekday name for a date."""
    return WEEKDAY_NAMES[day.weekday()]


def day_interval(day: date) -> Interval:
    """Get the midnight-to-midnight interval of a date."""
    start = datetime.combine(day, time.min)
    return Interval(start, start + timedelta(days=1))


def days_in_interval(interval: Interval) -> list[date]:
    """List every calendar date touched by a half-open interval.

    Args:
        interval: The interval to walk.

    Returns:
        list[date]: Dates in chronological order.
    """
    days = []
    current = interval.start.date()

    while datetime.combine(current, time.min) < interval.end:
        days.append(current)
        current += timedelta(days=1)

    return days


def minutes_between(start: datetime, end: datetime) -> float:
    """Get the signed number of minutes from start to end."""
    return (end - start).total_seconds() / 60


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Merge overlapping or touching intervals into a sorted, disjoint list."""
    merged: list[Interval] = []

    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, interval.end))
        else:
            merged.append(interval)

    return merged


def subtract_intervals(base: Interval, blocks: Iterable[Interval]) -> list[Interval]:
    """Remove blocked intervals from a base interval.

    Args:
        base: The interval to carve up.
        blocks: Intervals to remove; they may overlap each other or extend past base.

    Returns:
        list[Interval]: The remaining free intervals in chronological order.
    """
    free = []
    cursor = base.start

    for block in merge_intervals(blocks):
        if block.end <= cursor or block.start >= base.end:
            continue

        if block.start > cursor:
            free.append(Interval(cursor, block.start))

        cursor = max(cursor, block.end)

        if cursor >= base.end:
            break

    if cursor < base.end:
        free.append(Interval(cursor, base.end))

    return free
