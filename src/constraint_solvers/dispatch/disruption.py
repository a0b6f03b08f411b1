"""
Disruption handling: repairs a schedule after something changes underneath it.

Each event is applied to a working copy of the snapshot. Jobs whose placement
now breaks a HARD constraint are released and re-searched in priority order,
first on the same day and then over the lookahead horizon. A job that cannot
be placed is flagged for manual review; nothing is cancelled or dropped.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional, Union

from domain import DISPATCH_CONFIG, DispatchConfig

from .domain import (
    DispatchSnapshot,
    Job,
    JobMove,
    JobStatus,
    PlacementState,
    ProposalChange,
    ScheduleProposal,
    Slot,
    TimeOff,
    TimeOffStatus,
    TimeWindow,
)
from .errors import InvalidInput
from .evaluator import ConstraintEvaluator
from .slot_finder import SlotFinder
from .validation import validate_interval
from .working_hours import Interval, day_interval

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)


### EVENTS ###
@dataclass(frozen=True)
class TechnicianUnavailable:
    technician_id: str
    start: datetime
    end: datetime
    kind: str = "sick"
    reason: str = ""


@dataclass(frozen=True)
class JobOverrun:
    job_id: str
    # When the job is now expected to finish
    new_end: datetime


@dataclass(frozen=True)
class JobCancelled:
    job_id: str
    reason: str = ""


@dataclass(frozen=True)
class CustomerReschedule:
    job_id: str
    time_windows: tuple[TimeWindow, ...] = ()


DisruptionEvent = Union[TechnicianUnavailable, JobOverrun, JobCancelled, CustomerReschedule]


def event_source(event: DisruptionEvent) -> str:
    match event:
        case TechnicianUnavailable():
            return "disruption:technician_unavailable"
        case JobOverrun():
            return "disruption:job_overrun"
        case JobCancelled():
            return "disruption:job_cancelled"
        case CustomerReschedule():
            return "disruption:customer_reschedule"
        case _:
            raise InvalidInput(f"Unsupported disruption event: {event!r}", field="event")


def _priority_key(job: Job, original: Optional[Slot]):
    start = original.start if original is not None else datetime.max
    return (-job.priority.urgency_weight, start, job.id)


def _open_job(snapshot: DispatchSnapshot, job_id: str) -> Job:
    job = snapshot.job(job_id)
    if job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED):
        raise InvalidInput(f"Job {job_id} is {job.status.value}", field="job_id")
    return job


@dataclass
class _Repair:
    """Working state of one disruption run."""

    snapshot: DispatchSnapshot
    proposal: ScheduleProposal
    cause: str = ""
    # Jobs to release and re-search, with their original slots
    affected: dict[str, Slot] = field(default_factory=dict)
    excluded_technician_ids: set[str] = field(default_factory=set)
    # Jobs searched over a requested span instead of the lookahead horizon
    search_windows: dict[str, Interval] = field(default_factory=dict)


class DisruptionHandler:
    """Turns disruption events into repair proposals."""

    def __init__(
        self,
        evaluator: Optional[ConstraintEvaluator] = None,
        config: Optional[DispatchConfig] = None,
        slot_finder: Optional[SlotFinder] = None,
    ):
        self.config = config or DISPATCH_CONFIG
        self.evaluator = evaluator or ConstraintEvaluator(config=self.config)
        self.slot_finder = slot_finder or SlotFinder(self.evaluator, self.config)

    def handle_disruption(
        self, snapshot: DispatchSnapshot, event: DisruptionEvent
    ) -> ScheduleProposal:
        """
        Build a repair proposal for one disruption event.

        Args:
            snapshot: State before the event; never mutated.
            event: TechnicianUnavailable, JobOverrun, JobCancelled or
                CustomerReschedule.

        Returns:
            ScheduleProposal: Identical for identical snapshot and event.

        Raises:
            InvalidInput: Unknown technician or job, or a malformed event.
        """
        source = event_source(event)
        proposal = ScheduleProposal(
            id=str(
                uuid.uuid5(
                    uuid.NAMESPACE_OID,
                    f"{source}|{snapshot.now.isoformat()}|{event!r}",
                )
            ),
            source=source,
            created_at=snapshot.now,
        )
        repair = _Repair(snapshot=snapshot, proposal=proposal)

        match event:
            case TechnicianUnavailable():
                self._technician_unavailable(repair, event)
            case JobOverrun():
                self._job_overrun(repair, event)
            case JobCancelled():
                self._job_cancelled(repair, event)
            case CustomerReschedule():
                self._customer_reschedule(repair, event)

        self._reschedule_affected(repair)

        logger.info(
            f"Disruption {source}: {len(proposal.rescheduled)} rescheduled, "
            f"{len(proposal.manual_review)} need manual review"
        )
        return proposal

    ### EVENTS ###
    def _technician_unavailable(self, repair: _Repair, event: TechnicianUnavailable):
        validate_interval(event.start, event.end, "unavailability")
        technician = repair.snapshot.technician(event.technician_id)

        time_off = TimeOff(
            start=event.start,
            end=event.end,
            kind=event.kind,
            status=TimeOffStatus.APPROVED,
            notes=event.reason,
        )
        repair.snapshot = repair.snapshot.with_technician(technician.with_time_off(time_off))
        repair.proposal.time_off_additions.append((technician.id, time_off))
        repair.excluded_technician_ids.add(technician.id)
        repair.cause = f"{technician.name} unavailable"

        self._collect_broken(repair, technician.id)

    def _job_overrun(self, repair: _Repair, event: JobOverrun):
        job = repair.snapshot.job(event.job_id)
        original = job.scheduled_slot
        if original is None:
            raise InvalidInput(f"Job {job.id} is not scheduled", field="job_id")
        if event.new_end <= original.start:
            raise InvalidInput(
                f"Overrun end {event.new_end.isoformat()} is before job {job.id} starts",
                field="new_end",
            )

        extended = Slot(original.technician_id, original.start, event.new_end - original.start)
        repair.snapshot = repair.snapshot.place(job.id, extended)
        repair.cause = f"overrun of job {job.id}"

        repair.proposal.changes.append(
            ProposalChange(
                moves=(
                    JobMove(
                        job_id=job.id,
                        from_technician_id=original.technician_id,
                        from_start=original.start,
                        to_technician_id=extended.technician_id,
                        to_start=extended.start,
                        duration=extended.duration,
                    ),
                ),
                state=PlacementState.EXTENDED,
                rationale=f"Job {job.id} now ends at {event.new_end:%H:%M}",
                states=(PlacementState.SCHEDULED, PlacementState.EXTENDED),
            )
        )

        self._collect_broken(
            repair,
            original.technician_id,
            ignore_job_ids={job.id},
            after=original.start,
        )

    def _job_cancelled(self, repair: _Repair, event: JobCancelled):
        job = _open_job(repair.snapshot, event.job_id)
        original = job.scheduled_slot
        repair.snapshot = repair.snapshot.release(job.id)

        reason = f": {event.reason}" if event.reason else ""
        repair.proposal.changes.append(
            ProposalChange(
                moves=(
                    JobMove(
                        job_id=job.id,
                        from_technician_id=original.technician_id if original else None,
                        from_start=original.start if original else None,
                        to_technician_id=None,
                        to_start=None,
                        duration=job.duration,
                    ),
                ),
                state=PlacementState.RELEASED,
                rationale=f"Job {job.id} cancelled{reason}",
                states=(PlacementState.SCHEDULED, PlacementState.RELEASED)
                if original
                else (PlacementState.UNSCHEDULED, PlacementState.RELEASED),
            )
        )

        if original is not None and self.config.backfill_on_cancellation:
            self._backfill(repair, job.id, original)

    def _customer_reschedule(self, repair: _Repair, event: CustomerReschedule):
        job = _open_job(repair.snapshot, event.job_id)
        for window in event.time_windows:
            validate_interval(window.start, window.end, f"job {job.id} time window")

        repair.snapshot = repair.snapshot.with_job(
            replace(job, time_windows=list(event.time_windows))
        )
        repair.proposal.window_updates[job.id] = tuple(event.time_windows)
        repair.cause = "customer rescheduled"

        if job.scheduled_slot is None:
            return
        repair.affected[job.id] = job.scheduled_slot

        if event.time_windows:
            repair.search_windows[job.id] = self._requested_span(
                event.time_windows, job.duration, repair.snapshot.now
            )

    def _requested_span(self, windows, duration: timedelta, now: datetime) -> Interval:
        """
        Span of the customer's windows from now on, at most max_search_days long.

        Windows bound arrival, so the span runs one job duration past the last one.
        """
        start = max(now, min(w.start for w in windows))
        end = min(
            max(w.end for w in windows) + duration,
            start + timedelta(days=self.config.max_search_days),
        )
        return Interval(start, max(start, end))

    ### REPAIR ###
    def _collect_broken(self, repair: _Repair, technician_id, ignore_job_ids=(), after=None):
        """Mark the technician's jobs that now break a HARD constraint as affected."""
        snapshot = repair.snapshot
        technician = snapshot.technician(technician_id)

        for assignment in technician.assignments:
            if assignment.job_id in ignore_job_ids:
                continue
            if after is not None and (
                assignment.start < after or assignment.start.date() != after.date()
            ):
                continue

            job = snapshot.jobs.get(assignment.job_id)
            if job is None or job.status != JobStatus.SCHEDULED:
                continue

            slot = Slot(technician.id, assignment.start, assignment.duration)
            if self.evaluator.check_hard(technician, job, slot):
                repair.affected[job.id] = slot

    def _reschedule_affected(self, repair: _Repair):
        for job_id in repair.affected:
            repair.snapshot = repair.snapshot.release(job_id)

        ordered = sorted(
            repair.affected.items(),
            key=lambda item: _priority_key(repair.snapshot.job(item[0]), item[1]),
        )

        for job_id, original in ordered:
            job = repair.snapshot.job(job_id)
            candidate, rejections = self._search(repair, job, original)

            if candidate is not None:
                repair.snapshot = repair.snapshot.place(job_id, candidate.slot)
                repair.proposal.changes.append(
                    self._rescheduled_change(repair, job, original, candidate)
                )
                continue

            repair.snapshot = repair.snapshot.release(job_id, needs_review=True)
            summary = ", ".join(f"{name} x{count}" for name, count in rejections.items())
            repair.proposal.changes.append(
                ProposalChange(
                    moves=(self._move(job, original, None),),
                    state=PlacementState.MANUAL_REVIEW,
                    rationale=(
                        f"No feasible slot for job {job.id} within "
                        f"{self._horizon_text(repair, job.id)} after {repair.cause}"
                        + (f" (rejected: {summary})" if summary else "")
                    ),
                    states=(
                        PlacementState.SCHEDULED,
                        PlacementState.DISRUPTED,
                        PlacementState.UNSCHEDULED,
                        PlacementState.MANUAL_REVIEW,
                    ),
                )
            )
            logger.warning(f"Job {job.id} flagged for manual review after {repair.cause}")

    def _horizon_text(self, repair: _Repair, job_id: str) -> str:
        if job_id in repair.search_windows:
            return "the requested windows"
        return f"{self.config.disruption_lookahead_hours} hours"

    def _search(self, repair: _Repair, job: Job, original: Slot):
        """Same day first, then the lookahead horizon; a requested span replaces both."""
        now = repair.snapshot.now
        requested = repair.search_windows.get(job.id)
        if requested is not None:
            return self._search_phases(repair, job, [requested] if requested.duration else [])

        day = day_interval(original.start.date())
        anchor = max(now, day.start)
        horizon = anchor + timedelta(hours=self.config.disruption_lookahead_hours)

        phases = []
        if anchor < day.end:
            phases.append(Interval(anchor, day.end))
        if max(anchor, day.end) < horizon:
            phases.append(Interval(max(anchor, day.end), horizon))

        return self._search_phases(repair, job, phases)

    def _search_phases(self, repair: _Repair, job: Job, phases):
        now = repair.snapshot.now
        rejections = {}
        pool = repair.snapshot.pool()
        for window in phases:
            result = self.slot_finder.find_best_slot(
                job,
                pool,
                window,
                now=now,
                exclude_technician_ids=repair.excluded_technician_ids,
            )
            if result.best is not None:
                return result.best, {}
            for name, count in result.rejections.items():
                rejections[name] = rejections.get(name, 0) + count

        return None, dict(sorted(rejections.items()))

    def _backfill(self, repair: _Repair, cancelled_job_id: str, freed: Slot):
        """Offer the freed window to unscheduled jobs, most urgent first."""
        window = Interval(max(freed.start, repair.snapshot.now), freed.end)
        if window.start >= window.end:
            return

        waiting = sorted(
            (
                j
                for j in repair.snapshot.jobs.values()
                if j.id != cancelled_job_id
                and j.status == JobStatus.UNSCHEDULED
                and j.duration <= window.duration
            ),
            key=lambda j: (-j.priority.urgency_weight, j.id),
        )

        for job in waiting:
            technician = repair.snapshot.technician(freed.technician_id)
            result = self.slot_finder.find_best_slot(
                job, [technician], window, now=repair.snapshot.now
            )
            if result.best is None:
                continue

            slot = result.best.slot
            repair.snapshot = repair.snapshot.place(job.id, slot)
            repair.proposal.changes.append(
                ProposalChange(
                    moves=(self._move(job, None, slot),),
                    state=PlacementState.SCHEDULED,
                    rationale=f"Backfilled into the slot freed by job {cancelled_job_id}",
                    states=(PlacementState.UNSCHEDULED, PlacementState.SCHEDULED),
                    score_delta=result.best.score,
                )
            )
            logger.info(f"Backfilled job {job.id} into slot freed by {cancelled_job_id}")

    def _rescheduled_change(self, repair, job, original, candidate) -> ProposalChange:
        before = self.evaluator.score(
            repair.snapshot.technician(original.technician_id),
            job,
            original,
            repair.snapshot.now,
            repair.snapshot.pool(),
        )
        slot = candidate.slot
        moved = "" if slot.technician_id == original.technician_id else f" to {slot.technician_id}"

        return ProposalChange(
            moves=(self._move(job, original, slot),),
            state=PlacementState.RESCHEDULED,
            rationale=(
                f"Moved job {job.id}{moved} at {slot.start:%Y-%m-%d %H:%M} "
                f"after {repair.cause}"
            ),
            states=(
                PlacementState.SCHEDULED,
                PlacementState.DISRUPTED,
                PlacementState.RESCHEDULED,
            ),
            score_delta=round(candidate.score - before, 6),
        )

    @staticmethod
    def _move(job: Job, origin: Optional[Slot], destination: Optional[Slot]) -> JobMove:
        return JobMove(
            job_id=job.id,
            from_technician_id=origin.technician_id if origin else None,
            from_start=origin.start if origin else None,
            to_technician_id=destination.technician_id if destination else None,
            to_start=destination.start if destination else None,
            duration=destination.duration if destination else job.duration,
        )
