import pytest
from datetime import timedelta

# Import standardized test utilities
from tests.test_utils import (
    MONDAY,
    at,
    assign,
    get_test_logger,
    make_job,
    make_technician,
)

# Initialize standardized test logger
logger = get_test_logger(__name__)

from constraint_solvers.dispatch.availability import (
    blocked_intervals,
    booked_minutes,
    is_free,
    open_windows,
    open_windows_between,
)
from constraint_solvers.dispatch.domain import TimeOff, TimeOffStatus
from constraint_solvers.dispatch.errors import InvalidInput
from constraint_solvers.dispatch.working_hours import (
    Interval,
    merge_intervals,
    subtract_intervals,
)

HOUR = timedelta(hours=1)


class TestAvailability:
    """Availability model: working hours minus time-off and assignments."""

    def setup_method(self):
        self.technician = make_technician("alice")

    def test_free_inside_working_hours(self):
        assert is_free(self.technician, at(8), HOUR)
        assert is_free(self.technician, at(15), HOUR)

    def test_not_free_past_shift_end(self):
        assert not is_free(self.technician, at(15, 30), HOUR)
        assert not is_free(self.technician, at(7, 30), HOUR)

    def test_not_free_on_weekend(self):
        saturday = MONDAY + timedelta(days=5)
        assert not is_free(self.technician, at(10, day=saturday), HOUR)

    def test_approved_time_off_blocks(self):
        self.technician.time_off.append(TimeOff(start=at(9), end=at(12), kind="sick"))

        assert not is_free(self.technician, at(10), HOUR)
        assert not is_free(self.technician, at(8, 30), HOUR)
        assert is_free(self.technician, at(12), HOUR)

    def test_pending_time_off_does_not_block(self):
        self.technician.time_off.append(
            TimeOff(start=at(9), end=at(12), kind="vacation", status=TimeOffStatus.PENDING)
        )

        assert is_free(self.technician, at(10), HOUR)

    def test_assignment_blocks_unless_ignored(self):
        assign(self.technician, make_job("j1"), at(13))

        assert not is_free(self.technician, at(13, 30), HOUR)
        assert is_free(self.technician, at(13, 30), HOUR, ignore_job_ids={"j1"})

    def test_adjacent_assignment_does_not_block(self):
        assign(self.technician, make_job("j1"), at(9))

        assert is_free(self.technician, at(10), HOUR)
        assert is_free(self.technician, at(8), HOUR)

    def test_non_positive_duration_is_invalid(self):
        with pytest.raises(InvalidInput):
            is_free(self.technician, at(9), timedelta(0))

    def test_open_windows_subtracts_blocks(self):
        assign(self.technician, make_job("j1"), at(10))
        self.technician.time_off.append(TimeOff(start=at(13), end=at(14)))

        windows = open_windows(self.technician, MONDAY)

        assert windows == [
            Interval(at(8), at(10)),
            Interval(at(11), at(13)),
            Interval(at(14), at(16)),
        ]

    def test_open_windows_day_off_is_empty(self):
        sunday = MONDAY + timedelta(days=6)
        assert open_windows(self.technician, sunday) == []

    def test_open_windows_fully_booked_is_empty(self):
        self.technician.time_off.append(TimeOff(start=at(0), end=at(23, 59)))
        assert open_windows(self.technician, MONDAY) == []

    def test_open_windows_between_clips_to_search_window(self):
        tuesday = MONDAY + timedelta(days=1)
        window = Interval(at(12), at(10, day=tuesday))

        windows = open_windows_between(self.technician, window)

        assert windows == [
            Interval(at(12), at(16)),
            Interval(at(8, day=tuesday), at(10, day=tuesday)),
        ]

    def test_blocked_intervals_sorted_and_filtered(self):
        assign(self.technician, make_job("late"), at(14))
        assign(self.technician, make_job("early"), at(9))
        self.technician.time_off.append(
            TimeOff(start=at(11), end=at(12), status=TimeOffStatus.DENIED)
        )

        blocks = blocked_intervals(self.technician, Interval(at(8), at(16)))

        assert blocks == [Interval(at(9), at(10)), Interval(at(14), at(15))]

    def test_booked_minutes(self):
        assign(self.technician, make_job("j1", 90), at(9))
        assign(self.technician, make_job("j2", 30), at(13))

        assert booked_minutes(self.technician, MONDAY) == 120
        assert booked_minutes(self.technician, MONDAY, {"j1"}) == 30


class TestIntervals:
    def test_merge_touching_intervals(self):
        merged = merge_intervals(
            [Interval(at(10), at(11)), Interval(at(8), at(9)), Interval(at(9), at(10))]
        )
        assert merged == [Interval(at(8), at(11))]

    def test_subtract_blocks_extending_past_base(self):
        free = subtract_intervals(
            Interval(at(8), at(16)),
            [Interval(at(7), at(9)), Interval(at(15), at(17))],
        )
        assert free == [Interval(at(9), at(15))]
