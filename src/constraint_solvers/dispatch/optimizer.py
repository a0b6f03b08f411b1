"""
Local-search optimizer for committed schedules.

Starting from a snapshot, repeatedly applies the best improving move until no
move improves the schedule, the iteration cap is reached or the pass is
cancelled. Two move types are tried:

- reordering two adjacent jobs of one technician's day
- exchanging two same-day jobs between technicians with compatible skills

A move is kept only if every HARD constraint still holds for every job on
the technician-days it touches and the summed soft score of those jobs
strictly improves. The result is a ``ScheduleProposal``; nothing is written.
"""

import threading, uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional

from domain import DISPATCH_CONFIG, DispatchConfig

from .domain import (
    Assignment,
    ConstraintViolation,
    DispatchSnapshot,
    JobMove,
    JobStatus,
    PlacementState,
    ProposalChange,
    ScheduleProposal,
    Slot,
    Technician,
)
from .errors import InvalidInput
from .evaluator import ConstraintEvaluator

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)

# Score differences below this are treated as no improvement
SCORE_EPSILON = 1e-9


class CancellationToken:
    """Cooperative cancellation flag, checked by the optimizer between iterations."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class SwapSimulation:
    valid: bool
    score_delta: float
    travel_delta_minutes: float
    violations: tuple[ConstraintViolation, ...] = ()
    rationale: str = ""

    def to_dict(self):
        return {
            "valid": self.valid,
            "score_delta": self.score_delta,
            "travel_delta_minutes": self.travel_delta_minutes,
            "violations": [v.to_dict() for v in self.violations],
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class _Move:
    kind: str
    # (job id, new slot) pairs
    placements: tuple[tuple[str, Slot], ...]


@dataclass
class _Assessment:
    move: _Move
    snapshot: DispatchSnapshot
    score_delta: float
    travel_delta_minutes: float
    violations: list[ConstraintViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations


def day_travel_minutes(technician: Technician, day: date, estimator) -> int:
    """Travel over one technician-day: home base to the first job, then job to job."""
    location = technician.home_base
    total = 0

    for assignment in technician.assignments_on(day):
        total += estimator.estimate_minutes(location, assignment.location)
        location = assignment.location

    return total


def _days(date_range: tuple[date, date]) -> list[date]:
    start, end = date_range
    if end < start:
        raise InvalidInput("date_range ends before it starts", field="date_range")
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


class ScheduleOptimizer:
    """Improves committed schedules by swapping and reordering jobs."""

    def __init__(
        self,
        evaluator: Optional[ConstraintEvaluator] = None,
        config: Optional[DispatchConfig] = None,
    ):
        self.config = config or DISPATCH_CONFIG
        self.evaluator = evaluator or ConstraintEvaluator(config=self.config)

    def optimize(
        self,
        snapshot: DispatchSnapshot,
        date_range: tuple[date, date],
        technician_ids: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ScheduleProposal:
        """
        Search for schedule improvements.

        Args:
            snapshot: State to optimize; never mutated.
            date_range: Inclusive (first day, last day).
            technician_ids: Restrict the moves to these technicians.
            cancel_token: Checked between iterations.

        Returns:
            ScheduleProposal: One change per accepted move, in order. Empty
            when the schedule is already locally optimal.
        """
        days = _days(date_range)
        ids = sorted(set(technician_ids)) if technician_ids is not None else None
        technician_key = ",".join(ids) if ids is not None else "*"

        proposal = ScheduleProposal(
            id=str(
                uuid.uuid5(
                    uuid.NAMESPACE_OID,
                    f"optimize|{snapshot.now.isoformat()}|{days[0]}|{days[-1]}|{technician_key}",
                )
            ),
            source="optimizer",
            created_at=snapshot.now,
        )

        current = snapshot
        for iteration in range(self.config.optimizer_max_iterations):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info(f"Optimizer cancelled after {iteration} iterations")
                proposal.partial = True
                break

            best = None
            for move in self._moves(current, days, ids):
                assessment = self._assess(current, move)
                if not assessment.valid or assessment.score_delta <= SCORE_EPSILON:
                    continue
                if best is None or assessment.score_delta > best.score_delta + SCORE_EPSILON:
                    best = assessment

            if best is None:
                logger.debug(f"Optimizer converged after {iteration} iterations")
                break

            proposal.changes.append(self._change(current, best))
            current = best.snapshot

        logger.info(
            f"Optimizer proposal {proposal.id}: {len(proposal.changes)} changes, "
            f"score delta {proposal.score_delta}"
        )
        return proposal

    def simulate_swap(
        self, snapshot: DispatchSnapshot, job_a_id: str, job_b_id: str
    ) -> SwapSimulation:
        """
        Evaluate swapping two scheduled jobs without committing anything.

        Adjacent jobs of one technician are reordered; any other pair exchanges
        their slots.
        """
        if job_a_id == job_b_id:
            raise InvalidInput("Cannot swap a job with itself", field="job_b_id")

        job_a, job_b = snapshot.job(job_a_id), snapshot.job(job_b_id)
        for job in (job_a, job_b):
            if not job.is_scheduled:
                raise InvalidInput(f"Job {job.id} is not scheduled", field="job_id")

        move = self._swap_move(snapshot, job_a.scheduled_slot, job_a.id, job_b.scheduled_slot, job_b.id)
        assessment = self._assess(snapshot, move)

        return SwapSimulation(
            valid=assessment.valid,
            score_delta=assessment.score_delta,
            travel_delta_minutes=assessment.travel_delta_minutes,
            violations=tuple(assessment.violations),
            rationale=self._rationale(assessment),
        )

    ### MOVES ###
    def _moves(self, snapshot, days, technician_ids):
        technicians = [
            t
            for t in snapshot.pool(technician_ids)
            if not t.archived
        ]

        for day in days:
            day_jobs = {t.id: self._movable(snapshot, t, day) for t in technicians}

            # Reorder adjacent jobs within one technician's day
            for technician in technicians:
                assignments = day_jobs[technician.id]
                for first, second in zip(assignments, assignments[1:]):
                    yield self._reorder_move(technician, first, second)

            # Exchange jobs between technicians on the same day
            for i, left in enumerate(technicians):
                for right in technicians[i + 1 :]:
                    for a in day_jobs[left.id]:
                        for b in day_jobs[right.id]:
                            if self._compatible(snapshot, a.job_id, b.job_id):
                                yield _Move(
                                    "exchange",
                                    (
                                        (a.job_id, Slot(right.id, b.start, a.duration)),
                                        (b.job_id, Slot(left.id, a.start, b.duration)),
                                    ),
                                )

    def _movable(self, snapshot, technician, day) -> list[Assignment]:
        """Assignments the optimizer may move: known, scheduled, not yet started."""
        movable = []
        for assignment in technician.assignments_on(day):
            job = snapshot.jobs.get(assignment.job_id)
            if job is None or job.status != JobStatus.SCHEDULED:
                continue
            if assignment.start < snapshot.now:
                continue
            movable.append(assignment)
        return movable

    def _reorder_move(self, technician, first: Assignment, second: Assignment) -> _Move:
        """Put ``second`` at ``first``'s start and ``first`` right after it plus travel."""
        gap = max(
            self.config.min_travel_buffer_minutes,
            self.evaluator.estimator.estimate_minutes(second.location, first.location),
        )
        second_end = first.start + second.duration
        return _Move(
            "reorder",
            (
                (second.job_id, Slot(technician.id, first.start, second.duration)),
                (
                    first.job_id,
                    Slot(technician.id, second_end + timedelta(minutes=gap), first.duration),
                ),
            ),
        )

    def _swap_move(self, snapshot, slot_a, job_a_id, slot_b, job_b_id) -> _Move:
        if slot_b.start < slot_a.start:
            slot_a, job_a_id, slot_b, job_b_id = slot_b, job_b_id, slot_a, job_a_id

        if slot_a.technician_id == slot_b.technician_id and slot_a.start.date() == slot_b.start.date():
            technician = snapshot.technician(slot_a.technician_id)
            day = technician.assignments_on(slot_a.start.date())
            ids = [a.job_id for a in day]
            if job_a_id in ids and job_b_id in ids and ids.index(job_b_id) == ids.index(job_a_id) + 1:
                i = ids.index(job_a_id)
                j = i + 1
                return self._reorder_move(technician, day[i], day[j])

        return _Move(
            "exchange",
            (
                (job_a_id, Slot(slot_b.technician_id, slot_b.start, slot_a.duration)),
                (job_b_id, Slot(slot_a.technician_id, slot_a.start, slot_b.duration)),
            ),
        )

    @staticmethod
    def _compatible(snapshot, job_a_id, job_b_id) -> bool:
        skills_a = snapshot.jobs[job_a_id].required_skills
        skills_b = snapshot.jobs[job_b_id].required_skills
        if not skills_a and not skills_b:
            return True
        return bool(skills_a & skills_b)

    ### ASSESSMENT ###
    def _assess(self, snapshot: DispatchSnapshot, move: _Move) -> _Assessment:
        after = snapshot
        for job_id, _ in move.placements:
            after = after.release(job_id)
        for job_id, slot in move.placements:
            after = after.place(job_id, slot)

        affected = set()
        for job_id, slot in move.placements:
            original = snapshot.job(job_id).scheduled_slot
            if original is not None:
                affected.add((original.technician_id, original.start.date()))
            affected.add((slot.technician_id, slot.start.date()))
        affected = sorted(affected)

        violations = self._hard_violations(after, affected)
        score_delta = round(self._score(after, affected) - self._score(snapshot, affected), 6)
        travel_delta = self._travel(after, affected) - self._travel(snapshot, affected)

        return _Assessment(move, after, score_delta, float(travel_delta), violations)

    def _tech_day_jobs(self, snapshot, technician_id, day):
        technician = snapshot.technician(technician_id)
        for assignment in technician.assignments_on(day):
            job = snapshot.jobs.get(assignment.job_id)
            if job is not None:
                yield technician, job, Slot(technician.id, assignment.start, assignment.duration)

    def _hard_violations(self, snapshot, affected) -> list[ConstraintViolation]:
        violations = []
        for technician_id, day in affected:
            for technician, job, slot in self._tech_day_jobs(snapshot, technician_id, day):
                violations.extend(self.evaluator.check_hard(technician, job, slot))
        return violations

    def _score(self, snapshot, affected) -> float:
        team = snapshot.pool()
        total = 0.0
        for technician_id, day in affected:
            for technician, job, slot in self._tech_day_jobs(snapshot, technician_id, day):
                total += self.evaluator.score(technician, job, slot, snapshot.now, team)
        return total

    def _travel(self, snapshot, affected) -> int:
        return sum(
            day_travel_minutes(
                snapshot.technician(technician_id), day, self.evaluator.estimator
            )
            for technician_id, day in affected
        )

    ### PROPOSAL ###
    def _change(self, before: DispatchSnapshot, assessment: _Assessment) -> ProposalChange:
        moves = []
        for job_id, slot in assessment.move.placements:
            original = before.job(job_id).scheduled_slot
            moves.append(
                JobMove(
                    job_id=job_id,
                    from_technician_id=original.technician_id,
                    from_start=original.start,
                    to_technician_id=slot.technician_id,
                    to_start=slot.start,
                    duration=slot.duration,
                )
            )

        return ProposalChange(
            moves=tuple(moves),
            state=PlacementState.SWAPPED,
            rationale=self._rationale(assessment),
            states=(PlacementState.SCHEDULED, PlacementState.SWAPPED),
            score_delta=assessment.score_delta,
            travel_delta_minutes=assessment.travel_delta_minutes,
        )

    @staticmethod
    def _rationale(assessment: _Assessment) -> str:
        ids = " and ".join(job_id for job_id, _ in assessment.move.placements)
        verb = "Reorder" if assessment.move.kind == "reorder" else "Exchange"

        if not assessment.valid:
            return f"{verb} {ids}: breaks {assessment.violations[0].constraint}"

        travel = assessment.travel_delta_minutes
        if travel < 0:
            return f"{verb} {ids}: reduced travel by {-travel:.0f} minutes"
        if travel > 0:
            return (
                f"{verb} {ids}: adds {travel:.0f} minutes of travel, "
                f"score {assessment.score_delta:+.3f}"
            )
        return f"{verb} {ids}: score {assessment.score_delta:+.3f}"
