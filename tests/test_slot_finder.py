import pytest
from datetime import timedelta

# Import standardized test utilities
from tests.test_utils import (
    MONDAY,
    assign,
    at,
    get_test_logger,
    make_config,
    make_job,
    make_technician,
    point,
)

# Initialize standardized test logger
logger = get_test_logger(__name__)

from constraint_solvers.dispatch.domain import (
    Priority,
    SearchStatus,
    TimeOff,
    TimeWindow,
    WindowKind,
)
from constraint_solvers.dispatch.errors import InvalidInput
from constraint_solvers.dispatch.evaluator import ConstraintEvaluator
from constraint_solvers.dispatch.slot_finder import SlotFinder, is_qualified
from constraint_solvers.dispatch.working_hours import Interval

TUESDAY = MONDAY + timedelta(days=1)


def monday_window():
    return Interval(at(0), at(0, day=TUESDAY))


class TestSlotFinder:
    def setup_method(self):
        self.config = make_config()
        self.evaluator = ConstraintEvaluator(config=self.config)
        self.finder = SlotFinder(self.evaluator, self.config)

        self.alice = make_technician("alice", skills=("hvac",))
        self.bob = make_technician("bob", skills=("plumbing",))
        self.job = make_job("job-1", 60, point(0), skills=("hvac",))

    def find(self, job=None, technicians=None, window=None, **kwargs):
        return self.finder.find_best_slot(
            job or self.job,
            technicians if technicians is not None else [self.alice, self.bob],
            window or monday_window(),
            **kwargs,
        )

    def test_first_slot_is_start_of_shift(self):
        result = self.find(now=at(7))

        assert result.status == SearchStatus.FOUND
        assert result.best.slot.technician_id == "alice"
        assert result.best.slot.start == at(8)
        assert result.best.slot.end == at(9)

    def test_no_slot_before_now(self):
        result = self.find(now=at(10, 15))

        assert result.best.slot.start == at(10, 15)
        assert all(c.slot.start >= at(10, 15) for c in result.candidates)

    def test_skill_filter(self):
        result = self.find(now=at(7))

        assert result.technicians_considered == 1
        assert {c.technician_id for c in result.candidates} == {"alice"}

    def test_is_qualified(self):
        assert is_qualified(self.alice, self.job)
        assert not is_qualified(self.bob, self.job)

        self.alice.archived = True
        assert not is_qualified(self.alice, self.job)

    def test_exhausted_when_nobody_qualifies(self):
        job = make_job("job-2", skills=("roofing",))

        result = self.find(job=job, now=at(7))

        assert result.status == SearchStatus.EXHAUSTED
        assert result.exhausted
        assert result.candidates == []
        assert result.best is None

    def test_exhausted_when_calendar_is_full(self):
        self.alice.time_off.append(TimeOff(start=at(0), end=at(0, day=TUESDAY), kind="sick"))

        result = self.find(now=at(7))

        assert result.status == SearchStatus.EXHAUSTED
        assert result.technicians_considered == 1

    def test_window_in_the_past_is_exhausted(self):
        result = self.find(now=at(9, day=TUESDAY))

        assert result.status == SearchStatus.EXHAUSTED
        assert result.search_window is None
        assert result.candidates_evaluated == 0

    def test_search_window_is_clipped(self):
        finder = SlotFinder(self.evaluator, make_config(max_search_days=2))
        window = Interval(at(0), at(0, day=MONDAY + timedelta(days=10)))

        result = finder.find_best_slot(self.job, [self.alice], window, now=at(0))

        assert result.search_window == Interval(at(0), at(0, day=MONDAY + timedelta(days=2)))
        assert all(c.slot.start < at(0, day=MONDAY + timedelta(days=2)) for c in result.candidates)

    def test_inverted_window_is_invalid(self):
        with pytest.raises(InvalidInput):
            self.find(window=Interval(at(12), at(8)))

    def test_invalid_job_is_rejected(self):
        with pytest.raises(InvalidInput):
            self.find(job=make_job("job-2", 0))

    def test_limit(self):
        result = self.find(now=at(7), limit=3)

        assert len(result.candidates) == 3

    def test_limit_from_config(self):
        finder = SlotFinder(self.evaluator, make_config(max_candidates=2))

        result = finder.find_best_slot(self.job, [self.alice], monday_window(), now=at(7))

        assert len(result.candidates) == 2

    def test_excluded_technician(self):
        carol = make_technician("carol", skills=("hvac",))

        result = self.find(technicians=[self.alice, carol], now=at(7), exclude_technician_ids=["alice"])

        assert {c.technician_id for c in result.candidates} == {"carol"}

    def test_tie_broken_by_technician_id(self):
        carol = make_technician("carol", skills=("hvac",))

        result = self.find(technicians=[carol, self.alice], now=at(7))

        assert result.candidates[0].technician_id == "alice"
        assert result.candidates[1].technician_id == "carol"
        assert result.candidates[0].slot.start == result.candidates[1].slot.start

    def test_search_is_deterministic(self):
        first = self.find(now=at(7))
        second = self.find(now=at(7))

        assert [c.to_dict() for c in first.candidates] == [c.to_dict() for c in second.candidates]

    def test_every_candidate_passes_hard_constraints(self):
        assign(self.alice, make_job("far", 60, point(20)), at(11))
        self.alice.time_off.append(TimeOff(start=at(14), end=at(15)))

        result = self.find(now=at(7))

        assert result.candidates
        for candidate in result.candidates:
            assert self.evaluator.check_hard(self.alice, self.job, candidate.slot) == []

    def test_travel_from_previous_job_sets_earliest_start(self):
        # 20 miles away: the job cannot start until 40 minutes after it ends
        assign(self.alice, make_job("far", 60, point(20)), at(8))

        result = self.find(now=at(7))

        assert result.best.slot.start == at(9, 40)
        assert result.rejections["travel_buffer"] >= 1

    def test_own_assignment_does_not_block(self):
        assign(self.alice, self.job, at(8))

        result = self.find(now=at(7))

        assert result.best.slot.start == at(8)

    def test_hard_window_limits_arrival(self):
        job = make_job(
            "job-2",
            skills=("hvac",),
            time_windows=[TimeWindow(start=at(13), end=at(14), kind=WindowKind.HARD)],
        )

        result = self.find(job=job, now=at(7))

        assert result.candidates
        assert all(at(13) <= c.slot.start <= at(14) for c in result.candidates)
        assert result.best.slot.start == at(13)

    def test_soft_window_preferred(self):
        job = make_job(
            "job-2",
            skills=("hvac",),
            time_windows=[TimeWindow(start=at(13), end=at(15))],
        )

        result = self.find(job=job, now=at(7))

        assert result.best.slot.start == at(13)

    def test_urgent_job_prefers_today(self):
        window = Interval(at(0), at(0, day=MONDAY + timedelta(days=2)))
        job = make_job("job-2", skills=("hvac",), priority=Priority.EMERGENCY)
        self.alice.time_off.append(TimeOff(start=at(8), end=at(15)))

        result = self.find(job=job, window=window, now=at(7))

        assert result.best.slot.start == at(15)
