import pytest
import sys
from datetime import timedelta

# Import standardized test utilities
from tests.test_utils import (
    MONDAY,
    assign,
    at,
    create_test_results,
    get_test_logger,
    make_config,
    make_job,
    make_technician,
    point,
)

# Initialize standardized test logger
logger = get_test_logger(__name__)

from domain import ConstraintWeights
from constraint_solvers.dispatch.constraints import define_constraints
from constraint_solvers.dispatch.domain import (
    ConstraintType,
    Priority,
    Slot,
    TimeOff,
    TimeWindow,
    WindowKind,
)
from constraint_solvers.dispatch.errors import InvalidInput
from constraint_solvers.dispatch.evaluator import ConstraintEvaluator


class TestConstraints:
    """
    Test suite for the dispatch constraints.
    Each hard constraint is checked in isolation; soft constraints through the
    weighted breakdown of a feasible evaluation.
    """

    def setup_method(self):
        """Set up a technician, a job and an evaluator without a routing backend."""
        logger.debug("Setting up test technician, job and evaluator...")

        self.config = make_config()
        self.evaluator = ConstraintEvaluator(config=self.config)
        self.alice = make_technician("alice", skills=("hvac",), home=point(0))
        self.job = make_job("job-1", 60, point(0), skills=("hvac",))

    def check(self, name, slot, technician=None, job=None):
        return self.evaluator.check_hard(
            technician or self.alice, job or self.job, slot, only=[name]
        )

    def slot(self, start, minutes=60, technician_id="alice"):
        return Slot(technician_id, start, timedelta(minutes=minutes))

    # ==================== HARD CONSTRAINT TESTS ====================

    def test_define_constraints_lists_hard_before_soft(self):
        constraints = define_constraints()
        kinds = [c.kind for c in constraints]

        assert kinds == sorted(kinds, key=lambda k: k != ConstraintType.HARD)
        assert {c.name for c in constraints} >= {
            "required_skills",
            "no_assignment_overlap",
            "travel_buffer",
            "proximity",
            "urgency",
        }

    def test_required_skills_violation(self):
        job = make_job("job-2", skills=("plumbing", "hvac"))

        violations = self.check("required_skills", self.slot(at(9)), job=job)

        assert len(violations) == 1
        assert violations[0].details == ("plumbing",)
        assert violations[0].kind == ConstraintType.HARD

    def test_required_skills_satisfied(self):
        assert self.check("required_skills", self.slot(at(9))) == []

    def test_required_certification_missing(self):
        job = make_job("job-2", required_certifications={"epa-608"})

        violations = self.check("required_certifications", self.slot(at(9)), job=job)

        assert violations[0].details == ("epa-608",)

    def test_required_certification_expired(self):
        job = make_job("job-2", required_certifications={"epa-608"})
        self.alice.certifications = {"epa-608"}
        self.alice.certification_expiry = {"epa-608": MONDAY - timedelta(days=1)}

        violations = self.check("required_certifications", self.slot(at(9)), job=job)

        assert len(violations) == 1
        assert "Expired" in violations[0].message

    def test_certification_valid_on_expiry_day(self):
        job = make_job("job-2", required_certifications={"epa-608"})
        self.alice.certifications = {"epa-608"}
        self.alice.certification_expiry = {"epa-608": MONDAY}

        assert self.check("required_certifications", self.slot(at(9)), job=job) == []

    def test_within_working_hours(self):
        assert self.check("within_working_hours", self.slot(at(8))) == []
        assert self.check("within_working_hours", self.slot(at(15))) == []
        assert self.check("within_working_hours", self.slot(at(15, 30)))
        assert self.check("within_working_hours", self.slot(at(7, 30)))

    def test_within_working_hours_day_off(self):
        saturday = MONDAY + timedelta(days=5)
        assert self.check("within_working_hours", self.slot(at(10, day=saturday)))

    def test_time_off_overlap(self):
        self.alice.time_off.append(TimeOff(start=at(9), end=at(12), kind="sick"))

        assert self.check("no_time_off_overlap", self.slot(at(10)))
        assert self.check("no_time_off_overlap", self.slot(at(12))) == []

    def test_assignment_overlap(self):
        assign(self.alice, make_job("other"), at(10))

        violations = self.check("no_assignment_overlap", self.slot(at(10, 30)))

        assert violations[0].details == ("other",)
        assert self.check("no_assignment_overlap", self.slot(at(11))) == []

    def test_assignment_overlap_ignores_the_job_itself(self):
        assign(self.alice, self.job, at(10))

        assert self.check("no_assignment_overlap", self.slot(at(10, 30))) == []

    def test_travel_buffer_from_previous_job(self):
        # 20 miles away: 40 minutes of driving at 30 mph
        assign(self.alice, make_job("far", 60, point(20)), at(9))

        assert self.check("travel_buffer", self.slot(at(10, 30)))
        assert self.check("travel_buffer", self.slot(at(10, 40))) == []

    def test_travel_buffer_to_next_job(self):
        assign(self.alice, make_job("far", 60, point(20)), at(9))

        violations = self.check("travel_buffer", self.slot(at(8), 30))

        assert violations[0].details == ("far",)

    def test_minimum_buffer_applies_between_same_site_jobs(self):
        evaluator = ConstraintEvaluator(config=make_config(min_travel_buffer_minutes=15))
        assign(self.alice, make_job("here", 60, point(0)), at(9))

        tight = evaluator.check_hard(self.alice, self.job, self.slot(at(10)), only=["travel_buffer"])
        ok = evaluator.check_hard(self.alice, self.job, self.slot(at(10, 15)), only=["travel_buffer"])

        assert tight
        assert ok == []

    def test_hard_appointment_window(self):
        job = make_job(
            "job-2",
            time_windows=[TimeWindow(start=at(10), end=at(12), kind=WindowKind.HARD)],
        )

        assert self.check("customer_appointment_window", self.slot(at(9)), job=job)
        assert self.check("customer_appointment_window", self.slot(at(10)), job=job) == []
        # Both window ends are inclusive
        assert self.check("customer_appointment_window", self.slot(at(12)), job=job) == []

    def test_soft_window_is_not_a_hard_constraint(self):
        job = make_job("job-2", time_windows=[TimeWindow(start=at(10), end=at(12))])

        assert self.check("customer_appointment_window", self.slot(at(8)), job=job) == []

    def test_sla_deadline(self):
        job = make_job("job-2", sla_deadline=at(11))

        assert self.check("sla_deadline", self.slot(at(10, 30)), job=job)
        assert self.check("sla_deadline", self.slot(at(10)), job=job) == []

    def test_daily_job_limit(self):
        self.alice.max_jobs_per_day = 1
        assign(self.alice, make_job("other"), at(13))

        assert self.check("daily_job_limit", self.slot(at(9)))

        tuesday = MONDAY + timedelta(days=1)
        assert self.check("daily_job_limit", self.slot(at(9, day=tuesday))) == []

    def test_archived_technician(self):
        self.alice.archived = True
        assert self.check("technician_active", self.slot(at(9)))

    def test_slot_must_belong_to_technician(self):
        with pytest.raises(InvalidInput):
            self.evaluator.evaluate(self.alice, self.job, self.slot(at(9), technician_id="bob"))

    # ==================== EVALUATION TESTS ====================

    def test_hard_failure_skips_soft_scoring(self):
        evaluation = self.evaluator.evaluate(self.alice, self.job, self.slot(at(15, 30)))

        assert not evaluation.feasible
        assert evaluation.score == 0.0
        assert all(v.kind == ConstraintType.HARD for v in evaluation.violations)
        assert evaluation.breakdown == {}

    def test_evaluation_is_deterministic(self):
        first = self.evaluator.evaluate(self.alice, self.job, self.slot(at(9)), now=at(7))
        second = self.evaluator.evaluate(self.alice, self.job, self.slot(at(9)), now=at(7))

        assert first == second

    def test_perfect_placement_scores_every_weight(self):
        evaluation = self.evaluator.evaluate(self.alice, self.job, self.slot(at(8)), now=at(8))
        weights = self.config.weights

        assert evaluation.feasible
        assert evaluation.score == pytest.approx(
            weights.travel + weights.time_window + weights.urgency + weights.workload
        )

    # ==================== SOFT CONSTRAINT TESTS ====================

    def test_proximity_penalizes_detour(self):
        job = make_job("far", 60, point(30))

        evaluation = self.evaluator.evaluate(self.alice, job, self.slot(at(9)))

        # 60 minutes from home out of a 120 minute scale
        assert evaluation.breakdown["proximity"] == pytest.approx(0.5)
        assert evaluation.travel_minutes == 60

    def test_proximity_weight_is_configurable(self):
        config = make_config(weights=ConstraintWeights(travel=0.0))
        evaluator = ConstraintEvaluator(config=config)

        evaluation = evaluator.evaluate(self.alice, make_job("far", 60, point(30)), self.slot(at(9)))

        assert evaluation.breakdown["proximity"] == 0.0

    def test_preferred_window(self):
        job = make_job("job-2", time_windows=[TimeWindow(start=at(10), end=at(12))])

        inside = self.evaluator.evaluate(self.alice, job, self.slot(at(11)))
        outside = self.evaluator.evaluate(self.alice, job, self.slot(at(8)))

        assert inside.breakdown["preferred_window"] == pytest.approx(2.0)
        # Two hours early: 1 / (1 + 2)
        assert outside.breakdown["preferred_window"] == pytest.approx(2.0 / 3, abs=1e-5)
        assert any(v.constraint == "preferred_window" for v in outside.violations)

    def test_workload_balance_prefers_lighter_day(self):
        bob = make_technician("bob", skills=("hvac",))
        assign(self.alice, make_job("a1", 120), at(13))
        team = [self.alice, bob]

        busy = self.evaluator.evaluate(self.alice, self.job, self.slot(at(9)), team=team)
        free = self.evaluator.evaluate(bob, self.job, self.slot(at(9), technician_id="bob"), team=team)

        # Alice is 60 minutes over the team average of an 8 hour shift
        assert busy.breakdown["workload_balance"] == pytest.approx(0.5 * (1 - 60 / 480))
        assert free.breakdown["workload_balance"] == pytest.approx(0.5)
        assert free.score > busy.score

    def test_urgency_prefers_sooner_slots_for_urgent_jobs(self):
        emergency = make_job("job-2", priority=Priority.EMERGENCY)
        tuesday = MONDAY + timedelta(days=1)

        soon = self.evaluator.evaluate(self.alice, emergency, self.slot(at(8)), now=at(8))
        later = self.evaluator.evaluate(
            self.alice, emergency, self.slot(at(8, day=tuesday)), now=at(8)
        )

        assert soon.breakdown["urgency"] == pytest.approx(1.5)
        # 24 of 72 hours with the maximum urgency weight
        assert later.breakdown["urgency"] == pytest.approx(1.0, abs=1e-5)

    def test_urgency_matters_less_for_standard_jobs(self):
        tuesday = MONDAY + timedelta(days=1)

        later = self.evaluator.evaluate(
            self.alice, self.job, self.slot(at(8, day=tuesday)), now=at(8)
        )

        assert later.breakdown["urgency"] == pytest.approx(1.5 * (1 - 0.1 / 3), abs=1e-5)

    def test_rank_orders_by_score_then_start(self):
        early = self.evaluator.candidate(self.alice, self.job, self.slot(at(8)), now=at(8))
        late = self.evaluator.candidate(self.alice, self.job, self.slot(at(10)), now=at(8))

        assert ConstraintEvaluator.rank([late, early]) == [early, late]


if __name__ == "__main__":
    logger.section("Dispatch Constraint Tests")

    results = create_test_results(logger)
    suite = TestConstraints()

    for name in sorted(n for n in dir(suite) if n.startswith("test_")):
        suite.setup_method()
        results.run_test(name, getattr(suite, name))

    sys.exit(0 if results.summary() else 1)
