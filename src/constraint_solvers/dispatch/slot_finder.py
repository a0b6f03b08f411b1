from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, Optional

from domain import DISPATCH_CONFIG, DispatchConfig

from .availability import open_windows_between
from .domain import (
    Candidate,
    Job,
    SearchStatus,
    Slot,
    SlotSearchResult,
    Technician,
)
from .evaluator import ConstraintEvaluator
from .validation import validate_job, validate_pool, validate_search_window
from .working_hours import Interval

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)


def is_qualified(technician: Technician, job: Job) -> bool:
    """Cheap tag pre-filter run before any calendar search."""
    return (
        not technician.archived
        and job.required_skills <= technician.skills
        and job.required_certifications <= technician.certifications
    )


class SlotFinder:
    """
    Finds the best available placements for one job across a technician pool.

    A search moves from SEARCHING to FOUND (ranked candidates) or EXHAUSTED
    (no feasible placement). EXHAUSTED is a normal outcome, not an error.
    Committing a candidate is a separate step.
    """

    def __init__(
        self,
        evaluator: Optional[ConstraintEvaluator] = None,
        config: Optional[DispatchConfig] = None,
    ):
        self.config = config or DISPATCH_CONFIG
        self.evaluator = evaluator or ConstraintEvaluator(config=self.config)

    def find_best_slot(
        self,
        job: Job,
        technicians: Iterable[Technician],
        search_window: Interval,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        exclude_technician_ids: Iterable[str] = (),
    ) -> SlotSearchResult:
        """
        Rank every feasible placement of a job within a bounded search window.

        Args:
            job: The job to place. Its own current assignment never blocks it.
            technicians: Candidate technician pool.
            search_window: Where to look; clipped to ``max_search_days``.
            now: Injected current time; no slot starts before it.
            limit: Keep at most this many candidates (defaults to config).
            exclude_technician_ids: Technicians left out of the search.

        Returns:
            SlotSearchResult: FOUND with candidates best-first, or EXHAUSTED.
        """
        validate_job(job)
        validate_search_window(search_window)
        pool = validate_pool(technicians)

        window = self._bounded_window(search_window, now)
        result = SlotSearchResult(job_id=job.id, search_window=window)
        excluded = set(exclude_technician_ids)

        if window is None:
            logger.debug(f"Search window for job {job.id} is entirely in the past")
            result.status = SearchStatus.EXHAUSTED
            return result

        eligible = sorted(
            (t for t in pool if t.id not in excluded and is_qualified(t, job)),
            key=lambda t: t.id,
        )
        result.technicians_considered = len(eligible)

        candidates: list[Candidate] = []
        rejections: Counter = Counter()

        for technician in eligible:
            for free in open_windows_between(technician, window, {job.id}):
                for start in self.candidate_starts(technician, job, free):
                    slot = Slot(technician.id, start, job.duration)
                    evaluation = self.evaluator.evaluate(technician, job, slot, now, pool)
                    result.candidates_evaluated += 1

                    if evaluation.feasible:
                        candidates.append(Candidate(job.id, slot, evaluation))
                    else:
                        rejections.update(v.constraint for v in evaluation.violations)

        ranked = ConstraintEvaluator.rank(candidates)
        limit = limit if limit is not None else self.config.max_candidates
        if limit is not None:
            ranked = ranked[:limit]

        result.candidates = ranked
        result.rejections = dict(sorted(rejections.items()))
        result.status = SearchStatus.FOUND if ranked else SearchStatus.EXHAUSTED

        logger.info(
            f"Slot search for job {job.id}: {result.status.value}, "
            f"{len(ranked)} candidates from {result.candidates_evaluated} evaluated "
            f"across {len(eligible)} technicians"
        )
        return result

    def candidate_starts(
        self, technician: Technician, job: Job, free: Interval
    ) -> list[datetime]:
        """
        Generate candidate start times inside one open window.

        Always the window start, the earliest start after travelling from the
        previous job, the latest start that still leaves travel time to the
        next job, and regular steps from the window start.
        """
        latest = free.end - job.duration
        if latest < free.start:
            return []

        starts = {free.start}
        estimator = self.evaluator.estimator
        buffer = self.config.min_travel_buffer_minutes
        day_assignments = technician.assignments_on(free.start.date(), {job.id})

        previous = [a for a in day_assignments if a.end <= free.start]
        if previous:
            travel = estimator.estimate_minutes(previous[-1].location, job.location)
            earliest = previous[-1].end + timedelta(minutes=max(buffer, travel))
            if free.start <= earliest <= latest:
                starts.add(earliest)

        following = [a for a in day_assignments if a.start >= free.end]
        if following:
            travel = estimator.estimate_minutes(job.location, following[0].location)
            last_fit = following[0].start - timedelta(minutes=max(buffer, travel)) - job.duration
            if free.start <= last_fit <= latest:
                starts.add(last_fit)

        step = timedelta(minutes=self.config.candidate_step_minutes)
        current = free.start + step
        while current <= latest:
            starts.add(current)
            current += step

        return sorted(starts)

    def _bounded_window(
        self, search_window: Interval, now: Optional[datetime]
    ) -> Optional[Interval]:
        start = search_window.start if now is None else max(search_window.start, now)
        horizon = start + timedelta(days=self.config.max_search_days)
        end = min(search_window.end, horizon)

        if end < search_window.end:
            logger.warning(
                f"Search window clipped to {self.config.max_search_days} days "
                f"(ends {end.isoformat()} instead of {search_window.end.isoformat()})"
            )

        if start >= end:
            return None
        return Interval(start, end)
