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

from constraint_solvers.dispatch.domain import DispatchSnapshot, PlacementState
from constraint_solvers.dispatch.errors import InvalidInput
from constraint_solvers.dispatch.evaluator import ConstraintEvaluator
from constraint_solvers.dispatch.optimizer import (
    CancellationToken,
    ScheduleOptimizer,
    day_travel_minutes,
)


def make_snapshot(technicians, jobs, now):
    return DispatchSnapshot(
        technicians={t.id: t for t in technicians},
        jobs={j.id: j for j in jobs},
        now=now,
    )


MONDAY_ONLY = (MONDAY, MONDAY)


class TestOptimizer:
    """
    Backtracking scenario: the far job is done first, so the technician
    drives out 20 miles and comes back 15. Doing the near job first saves
    30 minutes of driving.
    """

    def setup_method(self):
        self.config = make_config()
        self.evaluator = ConstraintEvaluator(config=self.config)
        self.optimizer = ScheduleOptimizer(self.evaluator, self.config)

        self.alice = make_technician("alice", skills=(), home=point(0))
        self.far = make_job("J1", 60, point(20))
        self.near = make_job("J2", 60, point(5))
        assign(self.alice, self.far, at(8))
        assign(self.alice, self.near, at(9, 30))

        self.snapshot = make_snapshot([self.alice], [self.far, self.near], now=at(7))

    def test_day_travel_minutes(self):
        # Home to J1 is 40 minutes, J1 to J2 is 30
        assert day_travel_minutes(self.alice, MONDAY, self.evaluator.estimator) == 70

    def test_reorder_reduces_travel(self):
        proposal = self.optimizer.optimize(self.snapshot, MONDAY_ONLY)

        assert len(proposal.changes) == 1
        change = proposal.changes[0]

        assert change.state == PlacementState.SWAPPED
        assert change.states == (PlacementState.SCHEDULED, PlacementState.SWAPPED)
        assert change.travel_delta_minutes == -30
        assert change.score_delta == pytest.approx(0.5)
        assert "reduced travel by 30 minutes" in change.rationale
        assert proposal.source == "optimizer"
        assert not proposal.partial

        moves = {move.job_id: move for move in change.moves}
        assert moves["J2"].from_start == at(9, 30)
        assert moves["J2"].to_start == at(8)
        # J1 follows J2 after 30 minutes of driving back out
        assert moves["J1"].from_start == at(8)
        assert moves["J1"].to_start == at(9, 30)

    def test_snapshot_is_not_mutated(self):
        self.optimizer.optimize(self.snapshot, MONDAY_ONLY)

        assert self.snapshot.jobs["J1"].scheduled_start == at(8)
        assert self.snapshot.technicians["alice"].assignment_for("J2").start == at(9, 30)

    def test_proposal_is_deterministic(self):
        first = self.optimizer.optimize(self.snapshot, MONDAY_ONLY)
        second = self.optimizer.optimize(self.snapshot, MONDAY_ONLY)

        assert first.to_dict() == second.to_dict()

    def test_optimal_schedule_gives_empty_proposal(self):
        alice = make_technician("alice", skills=(), home=point(0))
        far, near = make_job("J1", 60, point(20)), make_job("J2", 60, point(5))
        assign(alice, near, at(8))
        assign(alice, far, at(9, 30))

        proposal = self.optimizer.optimize(make_snapshot([alice], [far, near], at(7)), MONDAY_ONLY)

        assert proposal.changes == []
        assert proposal.is_empty

    def test_started_jobs_are_not_moved(self):
        snapshot = make_snapshot([self.alice], [self.far, self.near], now=at(8, 30))

        proposal = self.optimizer.optimize(snapshot, MONDAY_ONLY)

        assert proposal.changes == []

    def test_date_range_outside_schedule(self):
        tuesday = MONDAY + timedelta(days=1)

        proposal = self.optimizer.optimize(self.snapshot, (tuesday, tuesday))

        assert proposal.changes == []

    def test_inverted_date_range(self):
        with pytest.raises(InvalidInput):
            self.optimizer.optimize(self.snapshot, (MONDAY + timedelta(days=1), MONDAY))

    def test_technician_filter(self):
        bob = make_technician("bob")
        snapshot = make_snapshot([self.alice, bob], [self.far, self.near], now=at(7))

        proposal = self.optimizer.optimize(snapshot, MONDAY_ONLY, technician_ids=["bob"])

        assert proposal.changes == []

    def test_cancelled_pass_is_partial(self):
        token = CancellationToken()
        token.cancel()

        proposal = self.optimizer.optimize(self.snapshot, MONDAY_ONLY, cancel_token=token)

        assert token.cancelled
        assert proposal.partial
        assert proposal.changes == []

    def test_iteration_cap(self):
        optimizer = ScheduleOptimizer(self.evaluator, make_config(optimizer_max_iterations=1))

        proposal = optimizer.optimize(self.snapshot, MONDAY_ONLY)

        assert len(proposal.changes) == 1

    def test_final_moves(self):
        proposal = self.optimizer.optimize(self.snapshot, MONDAY_ONLY)

        final = proposal.final_moves()

        assert set(final) == {"J1", "J2"}
        assert final["J2"][0].to_slot.start == at(8)


class TestExchange:
    def setup_method(self):
        self.config = make_config()
        self.optimizer = ScheduleOptimizer(config=self.config)

        # Each technician is booked at the other's doorstep
        self.alice = make_technician("alice", skills=("hvac",), home=point(0))
        self.bob = make_technician("bob", skills=("hvac",), home=point(20))
        self.at_bobs = make_job("A", 60, point(20), skills=("hvac",))
        self.at_alices = make_job("B", 60, point(0), skills=("hvac",))
        assign(self.alice, self.at_bobs, at(9))
        assign(self.bob, self.at_alices, at(9))

        self.snapshot = make_snapshot(
            [self.alice, self.bob], [self.at_bobs, self.at_alices], now=at(7)
        )

    def test_exchange_between_technicians(self):
        proposal = self.optimizer.optimize(self.snapshot, MONDAY_ONLY)

        assert len(proposal.changes) == 1
        change = proposal.changes[0]
        moves = {move.job_id: move for move in change.moves}

        assert moves["A"].to_technician_id == "bob"
        assert moves["B"].to_technician_id == "alice"
        assert change.travel_delta_minutes == -80
        assert change.rationale.startswith("Exchange")

    def test_incompatible_skills_are_not_exchanged(self):
        self.at_alices.required_skills = {"plumbing"}
        self.bob.skills = {"plumbing"}

        proposal = self.optimizer.optimize(self.snapshot, MONDAY_ONLY)

        assert proposal.changes == []


class TestSimulateSwap:
    def setup_method(self):
        self.config = make_config()
        self.optimizer = ScheduleOptimizer(config=self.config)

        self.alice = make_technician("alice", skills=(), home=point(0))
        self.far = make_job("J1", 60, point(20))
        self.near = make_job("J2", 60, point(5))
        self.loose = make_job("J3", 60, point(5))
        assign(self.alice, self.far, at(8))
        assign(self.alice, self.near, at(9, 30))

        self.snapshot = make_snapshot(
            [self.alice], [self.far, self.near, self.loose], now=at(7)
        )

    def test_adjacent_jobs_are_reordered(self):
        simulation = self.optimizer.simulate_swap(self.snapshot, "J1", "J2")

        assert simulation.valid
        assert simulation.travel_delta_minutes == -30
        assert simulation.score_delta == pytest.approx(0.5)
        assert simulation.rationale.startswith("Reorder")

    def test_argument_order_does_not_matter(self):
        forward = self.optimizer.simulate_swap(self.snapshot, "J1", "J2")
        backward = self.optimizer.simulate_swap(self.snapshot, "J2", "J1")

        assert forward == backward

    def test_simulation_does_not_commit(self):
        self.optimizer.simulate_swap(self.snapshot, "J1", "J2")

        assert self.snapshot.jobs["J1"].scheduled_start == at(8)

    def test_invalid_swap_reports_violations(self):
        # Exchanging the slots leaves no time to drive from J2 out to J1
        alice = make_technician("alice", skills=(), home=point(0))
        first, second = make_job("J1", 60, point(0)), make_job("J2", 60, point(20))
        assign(alice, first, at(8))
        assign(alice, second, at(10, 30))
        filler = make_job("J4", 30, point(0))
        assign(alice, filler, at(9, 15))
        snapshot = make_snapshot([alice], [first, second, filler], at(7))

        simulation = self.optimizer.simulate_swap(snapshot, "J1", "J2")

        assert not simulation.valid
        assert simulation.violations
        assert "breaks" in simulation.rationale

    def test_same_job(self):
        with pytest.raises(InvalidInput):
            self.optimizer.simulate_swap(self.snapshot, "J1", "J1")

    def test_unscheduled_job(self):
        with pytest.raises(InvalidInput):
            self.optimizer.simulate_swap(self.snapshot, "J1", "J3")

    def test_unknown_job(self):
        with pytest.raises(InvalidInput):
            self.optimizer.simulate_swap(self.snapshot, "J1", "nope")
