### GENERAL IMPORTS ###
from dataclasses import dataclass
from datetime import datetime
from functools import cached_property
from typing import Callable, Optional, Union

### DOMAIN ###
from domain import DispatchConfig

from .domain import (
    Assignment,
    ConstraintType,
    ConstraintViolation,
    Job,
    Location,
    Slot,
    Technician,
    MAX_URGENCY_WEIGHT,
)
from .travel import TravelEstimator
from .availability import booked_minutes, working_interval
from .working_hours import minutes_between


@dataclass(frozen=True)
class SoftResult:
    """Satisfaction of a soft constraint in [0, 1], with an optional explanation."""

    satisfaction: float
    violation: Optional[ConstraintViolation] = None


@dataclass(frozen=True)
class Constraint:
    """A named scheduling rule.

    HARD checks return a ConstraintViolation or None. SOFT checks return a
    SoftResult whose satisfaction is multiplied by the weight named by
    ``weight`` in ``ConstraintWeights``.
    """

    name: str
    kind: ConstraintType
    check: Callable[["PlacementContext"], Union[Optional[ConstraintViolation], SoftResult]]
    weight: Optional[str] = None
    description: str = ""


@dataclass(frozen=True)
class PlacementContext:
    """Everything a constraint may look at for one (technician, job, slot) triple."""

    technician: Technician
    job: Job
    slot: Slot
    estimator: TravelEstimator
    config: DispatchConfig
    now: Optional[datetime] = None
    # Average booked minutes across the team on the slot's date
    team_load_minutes: float = 0.0

    @cached_property
    def day_assignments(self) -> list[Assignment]:
        """Same-day assignments of the technician, excluding the job itself."""
        return self.technician.assignments_on(
            self.slot.start.date(), ignore_job_ids={self.job.id}
        )

    @cached_property
    def previous_assignment(self) -> Optional[Assignment]:
        previous = [a for a in self.day_assignments if a.start < self.slot.start]
        return previous[-1] if previous else None

    @cached_property
    def next_assignment(self) -> Optional[Assignment]:
        following = [a for a in self.day_assignments if a.start >= self.slot.start]
        return following[0] if following else None

    @cached_property
    def previous_location(self) -> Location:
        if self.previous_assignment is not None:
            return self.previous_assignment.location
        return self.technician.home_base

    @cached_property
    def travel_from_previous_minutes(self) -> int:
        return self.estimator.estimate_minutes(self.previous_location, self.job.location)

    def violation(self, constraint: str, message: str, *details) -> ConstraintViolation:
        return ConstraintViolation(
            constraint=constraint,
            kind=ConstraintType.HARD,
            message=message,
            details=tuple(details),
        )

    def soft_violation(self, constraint: str, message: str, *details) -> ConstraintViolation:
        return ConstraintViolation(
            constraint=constraint,
            kind=ConstraintType.SOFT,
            message=message,
            details=tuple(details),
        )


def define_constraints() -> list[Constraint]:
    """
    Define the constraints for the dispatch problem.

    Returns:
        list[Constraint]: The constraints, hard ones first.
    """
    return [
        # Hard constraints
        Constraint("technician_active", ConstraintType.HARD, technician_active),
        Constraint("required_skills", ConstraintType.HARD, required_skills),
        Constraint(
            "required_certifications", ConstraintType.HARD, required_certifications
        ),
        Constraint("within_working_hours", ConstraintType.HARD, within_working_hours),
        Constraint("no_time_off_overlap", ConstraintType.HARD, no_time_off_overlap),
        Constraint("no_assignment_overlap", ConstraintType.HARD, no_assignment_overlap),
        Constraint("travel_buffer", ConstraintType.HARD, travel_buffer),
        Constraint(
            "customer_appointment_window",
            ConstraintType.HARD,
            customer_appointment_window,
        ),
        Constraint("sla_deadline", ConstraintType.HARD, sla_deadline),
        Constraint("daily_job_limit", ConstraintType.HARD, daily_job_limit),
        # Soft constraints
        Constraint("proximity", ConstraintType.SOFT, proximity, weight="travel"),
        Constraint(
            "preferred_window", ConstraintType.SOFT, preferred_window, weight="time_window"
        ),
        Constraint(
            "workload_balance", ConstraintType.SOFT, workload_balance, weight="workload"
        ),
        Constraint("urgency", ConstraintType.SOFT, urgency, weight="urgency"),
    ]


### HARD CONSTRAINTS ###
def technician_active(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    if ctx.technician.archived:
        return ctx.violation(
            "technician_active", f"{ctx.technician.name} is archived"
        )
    return None


def required_skills(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    missing = sorted(ctx.job.required_skills - ctx.technician.skills)
    if missing:
        return ctx.violation(
            "required_skills", f"Missing skills: {', '.join(missing)}", *missing
        )
    return None


def required_certifications(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    """Certifications must be held and not expired on the day of the slot."""
    missing = sorted(ctx.job.required_certifications - ctx.technician.certifications)
    if missing:
        return ctx.violation(
            "required_certifications",
            f"Missing certifications: {', '.join(missing)}",
            *missing,
        )

    slot_day = ctx.slot.start.date()
    expired = sorted(
        cert
        for cert in ctx.job.required_certifications
        if cert in ctx.technician.certification_expiry
        and ctx.technician.certification_expiry[cert] < slot_day
    )
    if expired:
        return ctx.violation(
            "required_certifications",
            f"Expired certifications: {', '.join(expired)}",
            *expired,
        )
    return None


def within_working_hours(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    work = working_interval(ctx.technician, ctx.slot.start.date())

    if work is None:
        return ctx.violation(
            "within_working_hours",
            f"{ctx.technician.name} does not work on {ctx.slot.start:%A}",
        )

    if not work.contains(ctx.slot.interval):
        return ctx.violation(
            "within_working_hours",
            f"Slot {ctx.slot.start:%H:%M}-{ctx.slot.end:%H:%M} is outside "
            f"working hours {work.start:%H:%M}-{work.end:%H:%M}",
        )
    return None


def no_time_off_overlap(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    for time_off in ctx.technician.blocking_time_off():
        if time_off.interval.overlaps(ctx.slot.interval):
            return ctx.violation(
                "no_time_off_overlap",
                f"{ctx.technician.name} is on {time_off.kind} "
                f"({time_off.start:%Y-%m-%d %H:%M} to {time_off.end:%Y-%m-%d %H:%M})",
            )
    return None


def no_assignment_overlap(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    conflicts = [
        a
        for a in ctx.technician.assignments
        if a.job_id != ctx.job.id and a.interval.overlaps(ctx.slot.interval)
    ]
    if conflicts:
        first = conflicts[0]
        return ctx.violation(
            "no_assignment_overlap",
            f"Conflicts with job {first.job_id} ({first.start:%H:%M}-{first.end:%H:%M})",
            *(a.job_id for a in conflicts),
        )
    return None


def travel_buffer(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    """Gaps to the neighbouring same-day jobs must cover travel and the minimum buffer."""
    buffer = ctx.config.min_travel_buffer_minutes
    previous, following = ctx.previous_assignment, ctx.next_assignment

    if previous is not None:
        needed = max(buffer, ctx.travel_from_previous_minutes)
        available = minutes_between(previous.end, ctx.slot.start)
        if available < needed:
            return ctx.violation(
                "travel_buffer",
                f"Tight travel time from job {previous.job_id}: "
                f"{needed} min needed, {available:.0f} min available",
                previous.job_id,
            )

    if following is not None:
        travel = ctx.estimator.estimate_minutes(ctx.job.location, following.location)
        needed = max(buffer, travel)
        available = minutes_between(ctx.slot.end, following.start)
        if available < needed:
            return ctx.violation(
                "travel_buffer",
                f"Tight travel time to job {following.job_id}: "
                f"{needed} min needed, {available:.0f} min available",
                following.job_id,
            )
    return None


def customer_appointment_window(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    windows = ctx.job.hard_windows
    if windows and not any(w.admits(ctx.slot.start) for w in windows):
        return ctx.violation(
            "customer_appointment_window",
            f"Arrival at {ctx.slot.start:%Y-%m-%d %H:%M} is outside the customer's appointment window",
        )
    return None


def sla_deadline(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    deadline = ctx.job.sla_deadline
    if deadline is not None and ctx.slot.end > deadline:
        return ctx.violation(
            "sla_deadline",
            f"Finishes after SLA deadline ({deadline:%Y-%m-%d %H:%M})",
        )
    return None


def daily_job_limit(ctx: PlacementContext) -> Optional[ConstraintViolation]:
    limit = ctx.technician.max_jobs_per_day
    if limit is not None and len(ctx.day_assignments) >= limit:
        return ctx.violation(
            "daily_job_limit",
            f"{ctx.technician.name} already has {len(ctx.day_assignments)} jobs scheduled",
        )
    return None


### SOFT CONSTRAINTS ###
def proximity(ctx: PlacementContext) -> SoftResult:
    """Prefer placements that add little travel to the technician's day.

    The detour is the travel inserted between the previous stop (or home base)
    and the next stop.
    """
    detour = ctx.travel_from_previous_minutes
    following = ctx.next_assignment

    if following is not None:
        detour += ctx.estimator.estimate_minutes(ctx.job.location, following.location)
        detour -= ctx.estimator.estimate_minutes(ctx.previous_location, following.location)

    detour = max(0, detour)
    normalizer = ctx.config.travel_normalizer_minutes
    satisfaction = 1.0 - min(detour, normalizer) / normalizer

    violation = None
    if detour > 0:
        violation = ctx.soft_violation(
            "proximity", f"Adds {detour} min of travel to the route", detour
        )
    return SoftResult(satisfaction, violation)


def preferred_window(ctx: PlacementContext) -> SoftResult:
    windows = ctx.job.soft_windows
    if not windows:
        return SoftResult(1.0)

    minutes_off = min(w.minutes_outside(ctx.slot.start) for w in windows)
    if minutes_off == 0:
        return SoftResult(1.0)

    return SoftResult(
        1.0 / (1.0 + minutes_off / 60.0),
        ctx.soft_violation(
            "preferred_window",
            f"Arrives {minutes_off:.0f} min outside the customer's preferred window",
            minutes_off,
        ),
    )


def workload_balance(ctx: PlacementContext) -> SoftResult:
    """Prefer technicians whose day is not already busier than the team average."""
    load = booked_minutes(ctx.technician, ctx.slot.start.date(), {ctx.job.id})
    excess = max(0.0, load - ctx.team_load_minutes)
    if excess == 0:
        return SoftResult(1.0)

    shift = ctx.technician.shift_for(ctx.slot.start.date())
    capacity = shift.minutes if shift is not None else 480.0
    satisfaction = 1.0 - min(excess, capacity) / capacity

    return SoftResult(
        satisfaction,
        ctx.soft_violation(
            "workload_balance",
            f"{ctx.technician.name} is booked {excess:.0f} min above the team average",
            excess,
        ),
    )


def urgency(ctx: PlacementContext) -> SoftResult:
    """Prefer sooner slots, more strongly the more urgent the job."""
    if ctx.now is None:
        return SoftResult(1.0)

    hours_until = max(0.0, minutes_between(ctx.now, ctx.slot.start) / 60.0)
    fraction = min(1.0, hours_until / ctx.config.urgency_horizon_hours)
    weight = ctx.job.priority.urgency_weight / MAX_URGENCY_WEIGHT

    return SoftResult(1.0 - weight * fraction)
