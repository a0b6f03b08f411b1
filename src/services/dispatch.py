from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from domain import DISPATCH_CONFIG, DispatchConfig
from state import DispatchStore, dispatch_state

from constraint_solvers.dispatch.analysis import ConstraintViolationAnalyzer
from constraint_solvers.dispatch.disruption import (
    DisruptionEvent,
    DisruptionHandler,
    TechnicianUnavailable,
)
from constraint_solvers.dispatch.domain import (
    DispatchSnapshot,
    Job,
    JobStatus,
    PlacementState,
    ScheduleProposal,
    Slot,
    SlotSearchResult,
)
from constraint_solvers.dispatch.errors import ConflictError, InvalidInput
from constraint_solvers.dispatch.evaluator import ConstraintEvaluator
from constraint_solvers.dispatch.optimizer import (
    CancellationToken,
    ScheduleOptimizer,
    SwapSimulation,
)
from constraint_solvers.dispatch.slot_finder import SlotFinder
from constraint_solvers.dispatch.working_hours import Interval

from utils.extract_calendar import calendar_entries_to_time_off, extract_ical_entries
from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)


class DispatchService:
    """
    Service wiring the dispatch engine to the technician/job store.

    Searches run over one batched snapshot read and never hold the store
    lock. Commits re-read the freshest documents, re-check the hard
    constraints and write with a compare-and-set on the versions of every
    technician and job they touch.
    """

    def __init__(
        self,
        store: Optional[DispatchStore] = None,
        config: Optional[DispatchConfig] = None,
        evaluator: Optional[ConstraintEvaluator] = None,
    ):
        self.store = store if store is not None else dispatch_state
        self.config = config or DISPATCH_CONFIG
        self.evaluator = evaluator or ConstraintEvaluator(config=self.config)
        self.slot_finder = SlotFinder(self.evaluator, self.config)
        self.optimizer = ScheduleOptimizer(self.evaluator, self.config)
        self.disruption_handler = DisruptionHandler(
            self.evaluator, self.config, self.slot_finder
        )

    ### SEARCH ###
    def find_best_slot(
        self,
        job_id: str,
        search_window: Interval,
        technician_ids: Optional[Iterable[str]] = None,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> SlotSearchResult:
        """Rank placements for a stored job over the stored technician pool."""
        snapshot = self.store.read_snapshot(now)
        job = snapshot.job(job_id)
        pool = snapshot.pool(technician_ids)

        result = self.slot_finder.find_best_slot(
            job, pool, search_window, now=snapshot.now, limit=limit
        )

        if result.exhausted:
            logger.info(
                f"No slot for job {job_id}:\n"
                + ConstraintViolationAnalyzer.analyze_search(job, pool, result)
            )
        return result

    def explain_exhausted(
        self, job_id: str, result: SlotSearchResult, technician_ids=None
    ) -> str:
        """Describe to a dispatcher why a search found nothing and what to change."""
        snapshot = self.store.read_snapshot()
        job = snapshot.job(job_id)
        violation_details = ConstraintViolationAnalyzer.analyze_search(
            job, snapshot.pool(technician_ids), result
        )

        suggestions = ConstraintViolationAnalyzer.generate_suggestions(job, result)
        if not suggestions:
            return violation_details

        suggestion_text = "\n".join(f"• {s}" for s in suggestions)
        return f"{violation_details}\n\nSuggestions:\n{suggestion_text}"

    ### COMMIT ###
    def commit_placement(
        self, job_id: str, slot: Slot, now: Optional[datetime] = None
    ) -> Job:
        """
        Place a job into a slot, moving it if it is already scheduled.

        Args:
            job_id: The job to place.
            slot: Target slot, usually a candidate returned by ``find_best_slot``.
            now: Injected current time.

        Returns:
            Job: The stored, scheduled job.

        Raises:
            ConflictError: The slot no longer satisfies the hard constraints, or
                a technician changed between read and write. Retry by searching
                again.
        """
        snapshot = self.store.read_snapshot(now)
        job = snapshot.job(job_id)
        target = snapshot.technician(slot.technician_id)

        if slot.duration != job.duration:
            raise InvalidInput(
                f"Slot duration does not match job {job_id}", field="slot"
            )
        if job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED):
            raise InvalidInput(f"Job {job_id} is {job.status.value}", field="job_id")

        expected = {target.id: target.version}
        current = job.scheduled_slot
        if current is not None:
            expected[current.technician_id] = snapshot.technician(
                current.technician_id
            ).version

        released = snapshot.release(job_id)
        violations = self.evaluator.check_hard(
            released.technician(slot.technician_id), job, slot
        )
        if violations:
            logger.warning(
                f"Commit of job {job_id} to {slot.technician_id} rejected: "
                f"{violations[0].message}"
            )
            raise ConflictError(
                f"Slot for job {job_id} is no longer available",
                job_id=job_id,
                technician_id=slot.technician_id,
                violations=violations,
            )

        placed = released.place(job_id, slot)
        self._write(placed, expected, [job_id], job_id=job_id)

        logger.info(
            f"Committed job {job_id} to {slot.technician_id} at {slot.start:%Y-%m-%d %H:%M}"
        )
        return placed.job(job_id)

    ### OPTIMIZER ###
    def optimize(
        self,
        date_range: tuple[date, date],
        technician_ids: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> ScheduleProposal:
        snapshot = self.store.read_snapshot(now)
        return self.optimizer.optimize(snapshot, date_range, technician_ids, cancel_token)

    def simulate_swap(
        self, job_a_id: str, job_b_id: str, now: Optional[datetime] = None
    ) -> SwapSimulation:
        snapshot = self.store.read_snapshot(now)
        return self.optimizer.simulate_swap(snapshot, job_a_id, job_b_id)

    ### DISRUPTIONS ###
    def handle_disruption(
        self, event: DisruptionEvent, now: Optional[datetime] = None
    ) -> ScheduleProposal:
        snapshot = self.store.read_snapshot(now)
        return self.disruption_handler.handle_disruption(snapshot, event)

    def apply_proposal(
        self, proposal: ScheduleProposal, now: Optional[datetime] = None
    ) -> DispatchSnapshot:
        """
        Apply a proposal all-or-nothing.

        Every moved job must still be where the proposal found it and every
        destination must still pass the hard constraints; otherwise nothing is
        written.

        Returns:
            DispatchSnapshot: The state that was written.

        Raises:
            ConflictError: The schedule changed since the proposal was made.
        """
        snapshot = self.store.read_snapshot(now)
        working = snapshot
        expected = {}
        touched_jobs = set()

        for technician_id, time_off in proposal.time_off_additions:
            technician = working.technician(technician_id)
            expected[technician_id] = snapshot.technician(technician_id).version
            working = working.with_technician(technician.with_time_off(time_off))

        for job_id, windows in proposal.window_updates.items():
            working = working.with_job(
                replace(working.job(job_id), time_windows=list(windows))
            )
            touched_jobs.add(job_id)

        moves = proposal.final_moves()

        for job_id, (move, _) in sorted(moves.items()):
            job = working.job(job_id)
            current = job.scheduled_slot
            position = (current.technician_id, current.start) if current else (None, None)

            if job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED):
                raise ConflictError(
                    f"Job {job_id} was {job.status.value} after proposal {proposal.id} was made",
                    job_id=job_id,
                )
            if position != (move.from_technician_id, move.from_start):
                raise ConflictError(
                    f"Job {job_id} moved since proposal {proposal.id} was made",
                    job_id=job_id,
                    technician_id=move.from_technician_id,
                )

            if current is not None:
                expected[current.technician_id] = snapshot.technician(
                    current.technician_id
                ).version
            working = working.release(job_id)
            touched_jobs.add(job_id)

        for job_id, (move, state) in sorted(moves.items()):
            slot = move.to_slot

            if slot is None:
                match state:
                    case PlacementState.MANUAL_REVIEW:
                        working = working.release(job_id, needs_review=True)
                    case PlacementState.RELEASED:
                        working = working.with_job(
                            replace(working.job(job_id), status=JobStatus.CANCELLED)
                        )
                continue

            expected[slot.technician_id] = snapshot.technician(slot.technician_id).version
            working = working.place(job_id, slot)

        for job_id, (move, state) in sorted(moves.items()):
            slot = move.to_slot
            if slot is None:
                continue

            # An overrun already happened; only refuse it if it now collides
            only = ["no_assignment_overlap"] if state == PlacementState.EXTENDED else None
            violations = self.evaluator.check_hard(
                working.technician(slot.technician_id), working.job(job_id), slot, only=only
            )
            if violations:
                raise ConflictError(
                    f"Proposal {proposal.id} no longer fits: {violations[0].message}",
                    job_id=job_id,
                    technician_id=slot.technician_id,
                    violations=violations,
                )

        self._write(working, expected, sorted(touched_jobs))

        logger.info(
            f"Applied proposal {proposal.id} ({proposal.source}): "
            f"{len(moves)} jobs, {len(proposal.time_off_additions)} time-off blocks"
        )
        return working

    ### CALENDAR ###
    def import_time_off_calendar(
        self,
        technician_id: str,
        calendar: Union[bytes, str, Path],
        now: Optional[datetime] = None,
        apply: bool = True,
    ) -> List[ScheduleProposal]:
        """
        Import a technician's .ics calendar as time-off.

        Each new approved block is handled as a ``TechnicianUnavailable``
        disruption. With ``apply`` set, each repair proposal is applied before
        the next block is handled.

        Raises:
            InvalidInput: The payload is not a calendar.
        """
        payload = Path(calendar).read_bytes() if isinstance(calendar, (str, Path)) else calendar
        entries, error = extract_ical_entries(payload)
        if error:
            raise InvalidInput(f"Invalid calendar: {error}", field="calendar")

        blocks, _ = calendar_entries_to_time_off(entries)
        proposals = []

        for block in blocks:
            technician = self.store.get_technician(technician_id)
            if block in technician.time_off:
                continue

            # Pending and denied blocks are recorded but never disrupt the schedule
            if not block.blocks_calendar:
                if apply:
                    technician.time_off.append(block)
                    self.store.compare_and_set(
                        [technician], [], {technician.id: technician.version}
                    )
                continue

            proposal = self.handle_disruption(
                TechnicianUnavailable(
                    technician_id=technician_id,
                    start=block.start,
                    end=block.end,
                    kind=block.kind,
                    reason=block.notes,
                ),
                now=now,
            )
            if apply:
                self.apply_proposal(proposal, now=now)
            proposals.append(proposal)

        logger.info(
            f"Imported {len(blocks)} calendar blocks for {technician_id}, "
            f"{len(proposals)} disruptions handled"
        )
        return proposals

    def _write(self, snapshot: DispatchSnapshot, expected, job_ids, job_id=None):
        technicians = [snapshot.technician(t) for t in sorted(expected)]
        jobs = [snapshot.job(j) for j in job_ids]
        expected_jobs = {j: snapshot.job_versions.get(j, 0) for j in job_ids}

        try:
            self.store.compare_and_set(technicians, jobs, expected, expected_jobs)

        except ConflictError as e:
            raise ConflictError(
                str(e), job_id=job_id or e.job_id, technician_id=e.technician_id
            ) from e
