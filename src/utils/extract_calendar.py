from icalendar import Calendar
from datetime import datetime, date, time, timedelta
from typing import Optional, Tuple, List, Dict, Any

from constraint_solvers.dispatch.domain import TIME_OFF_KINDS, TimeOff, TimeOffStatus

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)

# iCalendar STATUS values mapped to time-off approval
ICAL_STATUS = {
    "CONFIRMED": TimeOffStatus.APPROVED,
    "TENTATIVE": TimeOffStatus.PENDING,
    "CANCELLED": TimeOffStatus.DENIED,
}


def _to_naive(dt: datetime) -> datetime:
    """Convert timezone-aware datetimes to local naive time."""
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


def _to_datetime(val) -> Optional[datetime]:
    """Convert an icalendar date or datetime property to a naive datetime.

    All-day dates map to midnight; DTEND of an all-day event is already
    exclusive, so the block covers the whole last day.
    """
    if not hasattr(val, "dt"):
        return None

    dt = val.dt
    if isinstance(dt, datetime):
        return _to_naive(dt)
    if isinstance(dt, date):
        return datetime.combine(dt, time.min)
    return None


def extract_ical_entries(file_bytes):
    """
    Parse VEVENT components out of an .ics payload.

    Returns:
        (entries, None) on success, (None, error message) when the payload is
        not a calendar.
    """
    try:
        cal = Calendar.from_ical(file_bytes)

    except ValueError as e:
        logger.warning(f"Could not parse calendar: {e}")
        return None, str(e)

    entries = []

    for component in cal.walk():
        if component.name != "VEVENT":
            continue

        summary = str(component.get("summary", ""))
        dtstart = component.get("dtstart")
        dtend = component.get("dtend")
        all_day = dtstart is not None and not isinstance(dtstart.dt, datetime)

        start_datetime = _to_datetime(dtstart)
        end_datetime = _to_datetime(dtend)

        # Events without DTEND last one day (all-day) or are instantaneous
        if start_datetime and end_datetime is None:
            end_datetime = start_datetime + (timedelta(days=1) if all_day else timedelta(0))

        entry = {
            "summary": summary,
            "status": str(component.get("status", "CONFIRMED")).upper(),
            "all_day": all_day,
        }

        if start_datetime:
            entry["start_datetime"] = start_datetime
        if end_datetime:
            entry["end_datetime"] = end_datetime

        entries.append(entry)

    logger.debug(f"Extracted {len(entries)} calendar entries")
    return entries, None


def infer_time_off_kind(summary: str) -> str:
    """Pick a time-off kind from keywords in the event summary."""
    text = summary.lower()

    match text:
        case t if "sick" in t or "ill" in t.split():
            return "sick"
        case t if "vacation" in t or "leave" in t:
            return "vacation"
        case t if "holiday" in t:
            return "holiday"
        case t if "training" in t or "course" in t:
            return "training"
        case t if "personal" in t or "appointment" in t:
            return "personal"
        case _:
            return "other"


def calendar_entries_to_time_off(
    calendar_entries: List[Dict[str, Any]]
) -> Tuple[List[TimeOff], List[str]]:
    """
    Convert calendar entries into time-off blocks.

    Args:
        calendar_entries: Entries from ``extract_ical_entries``

    Returns:
        Tuple of (time-off blocks sorted by start, messages for skipped entries)
    """
    blocks = []
    skipped = []

    for entry in calendar_entries:
        summary = entry.get("summary", "Unknown Event")
        start = entry.get("start_datetime")
        end = entry.get("end_datetime")

        if start is None or end is None or end <= start:
            skipped.append(f"'{summary}' has no usable start and end")
            continue

        status = ICAL_STATUS.get(entry.get("status", "CONFIRMED"), TimeOffStatus.APPROVED)
        kind = infer_time_off_kind(summary)

        blocks.append(
            TimeOff(
                start=start,
                end=end,
                kind=kind if kind in TIME_OFF_KINDS else "other",
                status=status,
                notes=summary,
            )
        )

    for message in skipped:
        logger.warning(f"Skipped calendar entry: {message}")

    return sorted(blocks, key=lambda t: (t.start, t.end)), skipped
