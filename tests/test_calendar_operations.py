import icalendar
import sys
from datetime import datetime
from pathlib import Path

# Import standardized test utilities
from tests.test_utils import get_test_logger, create_test_results

# Initialize standardized test logger
logger = get_test_logger(__name__)

from constraint_solvers.dispatch.domain import TimeOffStatus
from utils.extract_calendar import (
    calendar_entries_to_time_off,
    extract_ical_entries,
    infer_time_off_kind,
)

ICS_PATH = Path(__file__).parent / "data" / "time_off.ics"


def test_calendar_operations():
    """Test basic calendar operations and parsing"""

    logger.start_test("Testing calendar operations and parsing")

    # Verify test data exists
    assert ICS_PATH.exists(), f"Test calendar file not found: {ICS_PATH}"
    logger.debug(f"Reading calendar from: {ICS_PATH}")

    calendar = icalendar.Calendar.from_ical(ICS_PATH.read_bytes())
    event_count = len(calendar.walk("VEVENT"))

    entries, error = extract_ical_entries(ICS_PATH.read_bytes())

    assert error is None
    assert len(entries) == event_count == 4

    for entry in entries:
        logger.debug(f"Entry: {entry['summary']} ({entry['status']})")
        assert entry["summary"], "Every entry should have a summary"
        assert "start_datetime" in entry, "Every entry should have a start time"

    logger.pass_test(f"Calendar operations work correctly - parsed {event_count} events")


def test_entry_times():
    entries, _ = extract_ical_entries(ICS_PATH.read_bytes())
    by_summary = {e["summary"]: e for e in entries}

    sick = by_summary["Sick - flu"]
    assert not sick["all_day"]
    assert sick["start_datetime"] == datetime(2025, 3, 4, 8)
    assert sick["end_datetime"] == datetime(2025, 3, 4, 12)

    # All-day DTEND is exclusive
    vacation = by_summary["Vacation"]
    assert vacation["all_day"]
    assert vacation["status"] == "TENTATIVE"
    assert vacation["start_datetime"] == datetime(2025, 3, 6)
    assert vacation["end_datetime"] == datetime(2025, 3, 8)

    # All-day without DTEND lasts one day
    holiday = by_summary["Public holiday"]
    assert holiday["status"] == "CONFIRMED"
    assert holiday["end_datetime"] == datetime(2025, 3, 11)

    # Timed without DTEND is instantaneous
    sync = by_summary["Team sync"]
    assert sync["end_datetime"] == sync["start_datetime"]


def test_entries_to_time_off():
    entries, _ = extract_ical_entries(ICS_PATH.read_bytes())

    blocks, skipped = calendar_entries_to_time_off(entries)

    assert [b.kind for b in blocks] == ["sick", "vacation", "holiday"]
    assert [b.status for b in blocks] == [
        TimeOffStatus.APPROVED,
        TimeOffStatus.PENDING,
        TimeOffStatus.APPROVED,
    ]
    assert blocks[0].notes == "Sick - flu"
    assert len(skipped) == 1
    assert "Team sync" in skipped[0]


def test_cancelled_events_are_denied():
    entries = [
        {
            "summary": "Dentist appointment",
            "status": "CANCELLED",
            "start_datetime": datetime(2025, 3, 4, 13),
            "end_datetime": datetime(2025, 3, 4, 14),
        }
    ]

    blocks, skipped = calendar_entries_to_time_off(entries)

    assert blocks[0].status == TimeOffStatus.DENIED
    assert blocks[0].kind == "personal"
    assert not blocks[0].blocks_calendar
    assert skipped == []


def test_infer_time_off_kind():
    assert infer_time_off_kind("Out ill") == "sick"
    assert infer_time_off_kind("Parental leave") == "vacation"
    assert infer_time_off_kind("Safety Training") == "training"
    assert infer_time_off_kind("Bank holiday") == "holiday"
    assert infer_time_off_kind("Billing meeting") == "other"


def test_invalid_calendar():
    entries, error = extract_ical_entries(b"this is not a calendar")

    assert entries is None
    assert error


if __name__ == "__main__":
    logger.section("Calendar Operations Tests")

    # Create test results tracker
    results = create_test_results(logger)

    # Run the tests
    results.run_test("calendar_operations", test_calendar_operations)
    results.run_test("entry_times", test_entry_times)
    results.run_test("entries_to_time_off", test_entries_to_time_off)
    results.run_test("cancelled_events_are_denied", test_cancelled_events_are_denied)
    results.run_test("infer_time_off_kind", test_infer_time_off_kind)
    results.run_test("invalid_calendar", test_invalid_calendar)

    # Generate summary and exit with appropriate code
    all_passed = results.summary()
    sys.exit(0 if all_passed else 1)
