"""
Boundary checks for jobs, technicians and search windows.

Every top-level operation validates its inputs here before any search runs,
so malformed data fails fast with ``InvalidInput``.
"""

from datetime import datetime, timedelta
from typing import Iterable

from .domain import Job, Location, Technician
from .errors import InvalidInput
from .working_hours import Interval


def validate_interval(start: datetime, end: datetime, field: str) -> None:
    if start is None or end is None:
        raise InvalidInput(f"{field} needs both a start and an end", field=field)
    if end <= start:
        raise InvalidInput(
            f"{field} ends before it starts ({start.isoformat()} -> {end.isoformat()})",
            field=field,
        )


def validate_location(location: Location, field: str) -> None:
    if location.lat is None and location.lng is None:
        return

    if location.lat is None or location.lng is None:
        raise InvalidInput(f"{field} has only one coordinate", field=field)

    if not -90 <= location.lat <= 90 or not -180 <= location.lng <= 180:
        raise InvalidInput(
            f"{field} coordinates out of range ({location.lat}, {location.lng})",
            field=field,
        )


def validate_search_window(window: Interval) -> None:
    validate_interval(window.start, window.end, "search_window")


def validate_job(job: Job) -> None:
    """Reject malformed job data.

    Raises:
        InvalidInput: Empty id, non-positive duration, inverted customer
            windows or invalid coordinates.
    """
    if not job.id:
        raise InvalidInput("Job id must not be empty", field="id")

    if job.duration <= timedelta(0):
        raise InvalidInput(
            f"Job {job.id} has a non-positive duration", field="duration"
        )

    validate_location(job.location, f"job {job.id} location")

    for window in job.time_windows:
        validate_interval(window.start, window.end, f"job {job.id} time window")

    if (job.technician_id is None) != (job.scheduled_start is None):
        raise InvalidInput(
            f"Job {job.id} has a partial assignment", field="technician_id"
        )


def validate_technician(technician: Technician) -> None:
    """Reject malformed technician data, including overlapping assignments."""
    if not technician.id:
        raise InvalidInput("Technician id must not be empty", field="id")

    validate_location(technician.home_base, f"technician {technician.id} home base")

    for day, shift in technician.working_hours.items():
        if not 0 <= day <= 6:
            raise InvalidInput(
                f"Technician {technician.id} has an invalid weekday {day}",
                field="working_hours",
            )
        if shift.end <= shift.start:
            raise InvalidInput(
                f"Technician {technician.id} shift ends before it starts",
                field="working_hours",
            )

    for time_off in technician.time_off:
        validate_interval(time_off.start, time_off.end, f"technician {technician.id} time-off")

    if technician.max_jobs_per_day is not None and technician.max_jobs_per_day < 1:
        raise InvalidInput(
            f"Technician {technician.id} max_jobs_per_day must be at least 1",
            field="max_jobs_per_day",
        )

    assignments = sorted(technician.assignments, key=lambda a: a.start)
    for assignment in assignments:
        if assignment.duration <= timedelta(0):
            raise InvalidInput(
                f"Assignment for job {assignment.job_id} has a non-positive duration",
                field="assignments",
            )

    for earlier, later in zip(assignments, assignments[1:]):
        if later.start < earlier.end:
            raise InvalidInput(
                f"Technician {technician.id} has overlapping assignments "
                f"{earlier.job_id} and {later.job_id}",
                field="assignments",
            )


def validate_pool(technicians: Iterable[Technician]) -> list[Technician]:
    """Validate every technician and reject duplicate ids; returns the pool as a list."""
    pool = list(technicians)
    seen = set()

    for technician in pool:
        validate_technician(technician)
        if technician.id in seen:
            raise InvalidInput(f"Duplicate technician id {technician.id}", field="id")
        seen.add(technician.id)

    return pool
