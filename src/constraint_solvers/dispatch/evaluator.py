from datetime import datetime
from typing import Iterable, Optional

from domain import DISPATCH_CONFIG, DispatchConfig

from .availability import booked_minutes
from .constraints import Constraint, PlacementContext, define_constraints
from .domain import (
    Candidate,
    ConstraintType,
    ConstraintViolation,
    Evaluation,
    Job,
    Slot,
    Technician,
)
from .errors import InvalidInput
from .travel import TravelEstimator

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)


class ConstraintEvaluator:
    """
    Scores and validates a candidate (technician, job, slot) triple.

    Hard constraints run first. Any failure makes the candidate infeasible and
    skips soft scoring. Otherwise every soft constraint contributes its
    satisfaction times its configured weight; a higher score is a better
    placement. Evaluation is deterministic for identical inputs.
    """

    def __init__(
        self,
        estimator: Optional[TravelEstimator] = None,
        config: Optional[DispatchConfig] = None,
        constraints: Optional[list[Constraint]] = None,
    ):
        self.config = config or DISPATCH_CONFIG
        self.estimator = estimator or TravelEstimator(self.config)
        self.constraints = constraints if constraints is not None else define_constraints()

    @property
    def hard_constraints(self) -> list[Constraint]:
        return [c for c in self.constraints if c.kind == ConstraintType.HARD]

    @property
    def soft_constraints(self) -> list[Constraint]:
        return [c for c in self.constraints if c.kind == ConstraintType.SOFT]

    def evaluate(
        self,
        technician: Technician,
        job: Job,
        slot: Slot,
        now: Optional[datetime] = None,
        team: Optional[Iterable[Technician]] = None,
    ) -> Evaluation:
        """
        Evaluate one placement.

        Args:
            technician: Technician snapshot the slot belongs to.
            job: The job to place.
            slot: Proposed slot; its technician_id must match the technician.
            now: Injected current time used by the urgency preference.
            team: Technicians used to compute the team's average workload.

        Returns:
            Evaluation: feasible flag, score and violations.
        """
        ctx = self._context(technician, job, slot, now, team)

        violations = self._hard_violations(ctx)
        if violations:
            return Evaluation(feasible=False, score=0.0, violations=tuple(violations))

        score, breakdown, soft_violations = self._soft_score(ctx)
        return Evaluation(
            feasible=True,
            score=score,
            violations=tuple(soft_violations),
            travel_minutes=float(ctx.travel_from_previous_minutes),
            breakdown=breakdown,
        )

    def check_hard(
        self,
        technician: Technician,
        job: Job,
        slot: Slot,
        only: Optional[Iterable[str]] = None,
    ) -> list[ConstraintViolation]:
        """Run the hard constraints only, optionally restricted to some names."""
        ctx = self._context(technician, job, slot, None, None)
        names = set(only) if only is not None else None
        return self._hard_violations(ctx, names)

    def score(
        self,
        technician: Technician,
        job: Job,
        slot: Slot,
        now: Optional[datetime] = None,
        team: Optional[Iterable[Technician]] = None,
    ) -> float:
        """Weighted soft score of a placement, ignoring hard constraints."""
        ctx = self._context(technician, job, slot, now, team)
        return self._soft_score(ctx)[0]

    def candidate(
        self,
        technician: Technician,
        job: Job,
        slot: Slot,
        now: Optional[datetime] = None,
        team: Optional[Iterable[Technician]] = None,
    ) -> Candidate:
        return Candidate(
            job_id=job.id, slot=slot, evaluation=self.evaluate(technician, job, slot, now, team)
        )

    @staticmethod
    def rank(candidates: Iterable[Candidate]) -> list[Candidate]:
        """Sort by score descending, then earliest start, lowest travel, technician id."""
        return sorted(candidates, key=lambda c: c.rank_key)

    def _context(self, technician, job, slot, now, team) -> PlacementContext:
        if slot.technician_id != technician.id:
            raise InvalidInput(
                f"Slot belongs to {slot.technician_id}, not {technician.id}",
                field="slot",
            )

        return PlacementContext(
            technician=technician,
            job=job,
            slot=slot,
            estimator=self.estimator,
            config=self.config,
            now=now,
            team_load_minutes=self._team_load(team, job, slot),
        )

    def _hard_violations(self, ctx: PlacementContext, names=None) -> list[ConstraintViolation]:
        violations = []
        for constraint in self.hard_constraints:
            if names is not None and constraint.name not in names:
                continue
            violation = constraint.check(ctx)
            if violation is not None:
                violations.append(violation)
        return violations

    def _soft_score(self, ctx: PlacementContext):
        score = 0.0
        breakdown: dict[str, float] = {}
        violations = []

        for constraint in self.soft_constraints:
            result = constraint.check(ctx)
            weight = getattr(self.config.weights, constraint.weight) if constraint.weight else 1.0
            weighted = weight * result.satisfaction

            score += weighted
            breakdown[constraint.name] = round(weighted, 6)
            if result.violation is not None:
                violations.append(result.violation)

        return round(score, 6), breakdown, violations

    @staticmethod
    def _team_load(team, job: Job, slot: Slot) -> float:
        if not team:
            return 0.0

        day = slot.start.date()
        loads = [
            booked_minutes(member, day, {job.id}) for member in team if not member.archived
        ]
        if not loads:
            return 0.0
        return sum(loads) / len(loads)
