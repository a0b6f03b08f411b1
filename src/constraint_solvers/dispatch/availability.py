"""
Availability model: answers whether a technician is free for a span of time
and which open windows remain on their calendar.

Everything here is a pure read over the technician's current state.
"""

from datetime import datetime, date, timedelta
from typing import Iterable

from .domain import Technician
from .errors import InvalidInput
from .working_hours import (
    Interval,
    day_interval,
    days_in_interval,
    subtract_intervals,
)


def working_interval(technician: Technician, day: date) -> Interval | None:
    """Get the technician's working interval on a date, or None on a day off."""
    shift = technician.shift_for(day)
    if shift is None:
        return None
    return shift.on(day)


def blocked_intervals(
    technician: Technician, window: Interval, ignore_job_ids: Iterable[str] = ()
) -> list[Interval]:
    """Collect approved time-off and assignment intervals that touch a window.

    Args:
        technician: The technician whose calendar is read.
        window: Only blocks overlapping this interval are returned.
        ignore_job_ids: Assignments for these jobs are treated as free time.

    Returns:
        list[Interval]: Blocking intervals sorted by start.
    """
    ignored = set(ignore_job_ids)
    blocks = [t.interval for t in technician.blocking_time_off()]
    blocks += [a.interval for a in technician.assignments if a.job_id not in ignored]

    return sorted(
        (block for block in blocks if block.overlaps(window)),
        key=lambda block: (block.start, block.end),
    )


def is_free(
    technician: Technician,
    start: datetime,
    duration: timedelta,
    ignore_job_ids: Iterable[str] = (),
) -> bool:
    """Check whether [start, start + duration) is inside working hours and unblocked.

    Args:
        technician: The technician to check.
        start: Proposed start.
        duration: Proposed duration, must be positive.
        ignore_job_ids: Assignments for these jobs do not block.

    Returns:
        bool: True iff the span is within that weekday's shift and intersects
        neither approved time-off nor another assignment.
    """
    if duration <= timedelta(0):
        raise InvalidInput("Duration must be positive", field="duration")

    span = Interval(start, start + duration)
    work = working_interval(technician, start.date())

    if work is None or not work.contains(span):
        return False

    return not blocked_intervals(technician, span, ignore_job_ids)


def open_windows(
    technician: Technician, day: date, ignore_job_ids: Iterable[str] = ()
) -> list[Interval]:
    """Compute the free windows of a technician on one date.

    The result is the working-hours window minus time-off and assignments,
    in chronological order. A day off or a fully booked day yields an empty list.
    """
    work = working_interval(technician, day)
    if work is None:
        return []

    return subtract_intervals(work, blocked_intervals(technician, work, ignore_job_ids))


def open_windows_between(
    technician: Technician, window: Interval, ignore_job_ids: Iterable[str] = ()
) -> list[Interval]:
    """Compute free windows across a multi-day search window, clipped to it."""
    windows = []

    for day in days_in_interval(window):
        for free in open_windows(technician, day, ignore_job_ids):
            clipped = free.intersection(window)
            if clipped is not None:
                windows.append(clipped)

    return windows


def booked_minutes(
    technician: Technician, day: date, ignore_job_ids: Iterable[str] = ()
) -> float:
    """Total minutes of assignments on a date."""
    ignored = set(ignore_job_ids)
    bounds = day_interval(day)
    total = 0.0

    for assignment in technician.assignments:
        if assignment.job_id in ignored:
            continue
        overlap = assignment.interval.intersection(bounds)
        if overlap is not None:
            total += overlap.minutes

    return total
