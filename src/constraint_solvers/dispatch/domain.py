from dataclasses import dataclass, field, replace
from datetime import datetime, date, timedelta
from enum import Enum
from typing import Optional

from .errors import InvalidInput
from .working_hours import (
    Interval,
    Shift,
    working_hours_from_dict,
    working_hours_to_dict,
)


class ConstraintType(str, Enum):
    HARD = "hard"
    SOFT = "soft"


class WindowKind(str, Enum):
    HARD = "hard"  # Appointment: arrival must fall inside the window
    SOFT = "soft"  # Preference: arriving outside lowers the score


class Priority(str, Enum):
    EMERGENCY = "emergency"
    URGENT = "urgent"
    STANDARD = "standard"
    FLEXIBLE = "flexible"

    @property
    def urgency_weight(self) -> float:
        return URGENCY_WEIGHTS[self]


URGENCY_WEIGHTS: dict[Priority, float] = {
    Priority.EMERGENCY: 10.0,
    Priority.URGENT: 5.0,
    Priority.STANDARD: 1.0,
    Priority.FLEXIBLE: 0.5,
}
MAX_URGENCY_WEIGHT = max(URGENCY_WEIGHTS.values())


class JobStatus(str, Enum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TimeOffStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    DENIED = "denied"


TIME_OFF_KINDS = ("vacation", "sick", "personal", "holiday", "training", "other")


class SearchStatus(str, Enum):
    SEARCHING = "searching"
    FOUND = "found"
    EXHAUSTED = "exhausted"


class PlacementState(str, Enum):
    SCHEDULED = "scheduled"
    DISRUPTED = "disrupted"
    RESCHEDULED = "rescheduled"
    UNSCHEDULED = "unscheduled"
    MANUAL_REVIEW = "manual_review"
    RELEASED = "released"
    EXTENDED = "extended"
    SWAPPED = "swapped"


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _minutes(duration: timedelta) -> float:
    return duration.total_seconds() / 60


@dataclass(frozen=True)
class Location:
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: str = ""

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def to_dict(self):
        return {"lat": self.lat, "lng": self.lng, "address": self.address}

    @staticmethod
    def from_dict(d):
        if not d:
            return Location()
        return Location(lat=d.get("lat"), lng=d.get("lng"), address=d.get("address", ""))


@dataclass(frozen=True)
class TimeOff:
    start: datetime
    end: datetime
    kind: str = "other"
    status: TimeOffStatus = TimeOffStatus.APPROVED
    notes: str = ""

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def blocks_calendar(self) -> bool:
        """Only approved time-off takes a technician off the calendar."""
        return self.status == TimeOffStatus.APPROVED

    def to_dict(self):
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "kind": self.kind,
            "status": self.status.value,
            "notes": self.notes,
        }

    @staticmethod
    def from_dict(d):
        return TimeOff(
            start=_parse_datetime(d["start"]),
            end=_parse_datetime(d["end"]),
            kind=d.get("kind", "other"),
            status=TimeOffStatus(d.get("status", TimeOffStatus.APPROVED.value)),
            notes=d.get("notes", ""),
        )


@dataclass(frozen=True)
class Assignment:
    job_id: str
    start: datetime
    duration: timedelta
    location: Location = field(default_factory=Location)

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def to_dict(self):
        return {
            "job_id": self.job_id,
            "start": self.start.isoformat(),
            "duration_minutes": _minutes(self.duration),
            "location": self.location.to_dict(),
        }

    @staticmethod
    def from_dict(d):
        return Assignment(
            job_id=d["job_id"],
            start=_parse_datetime(d["start"]),
            duration=timedelta(minutes=d["duration_minutes"]),
            location=Location.from_dict(d.get("location")),
        )


@dataclass
class Technician:
    id: str
    name: str
    home_base: Location = field(default_factory=Location)
    working_hours: dict[int, Shift] = field(default_factory=dict)
    skills: set[str] = field(default_factory=set)
    certifications: set[str] = field(default_factory=set)
    # Optional expiry per certification tag; an expired certification does not count
    certification_expiry: dict[str, date] = field(default_factory=dict)
    time_off: list[TimeOff] = field(default_factory=list)
    # Kept sorted by start time; never overlapping
    assignments: list[Assignment] = field(default_factory=list)
    max_jobs_per_day: Optional[int] = None
    archived: bool = False
    version: int = 0

    def shift_for(self, day: date) -> Optional[Shift]:
        return self.working_hours.get(day.weekday())

    def assignment_for(self, job_id: str) -> Optional[Assignment]:
        for assignment in self.assignments:
            if assignment.job_id == job_id:
                return assignment
        return None

    def assignments_on(self, day: date, ignore_job_ids=()) -> list[Assignment]:
        """Get the assignments starting on a date, in chronological order."""
        return sorted(
            (
                a
                for a in self.assignments
                if a.start.date() == day and a.job_id not in ignore_job_ids
            ),
            key=lambda a: (a.start, a.job_id),
        )

    def blocking_time_off(self) -> list[TimeOff]:
        return [t for t in self.time_off if t.blocks_calendar]

    def with_assignment(self, assignment: "Assignment") -> "Technician":
        """Copy of this technician with the assignment added (replacing any for the same job)."""
        remaining = [a for a in self.assignments if a.job_id != assignment.job_id]
        assignments = sorted(remaining + [assignment], key=lambda a: (a.start, a.job_id))
        return replace(self, assignments=assignments)

    def without_assignment(self, job_id: str) -> "Technician":
        return replace(
            self, assignments=[a for a in self.assignments if a.job_id != job_id]
        )

    def with_time_off(self, time_off: "TimeOff") -> "Technician":
        if time_off in self.time_off:
            return self
        return replace(self, time_off=self.time_off + [time_off])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "home_base": self.home_base.to_dict(),
            "working_hours": working_hours_to_dict(self.working_hours),
            "skills": sorted(self.skills),
            "certifications": sorted(self.certifications),
            "certification_expiry": {
                cert: expires.isoformat()
                for cert, expires in sorted(self.certification_expiry.items())
            },
            "time_off": [t.to_dict() for t in self.time_off],
            "assignments": [a.to_dict() for a in self.assignments],
            "max_jobs_per_day": self.max_jobs_per_day,
            "archived": self.archived,
            "version": self.version,
        }

    @staticmethod
    def from_dict(d):
        return Technician(
            id=d["id"],
            name=d.get("name", d["id"]),
            home_base=Location.from_dict(d.get("home_base")),
            working_hours=working_hours_from_dict(d.get("working_hours", {})),
            skills=set(d.get("skills", [])),
            certifications=set(d.get("certifications", [])),
            certification_expiry={
                cert: date.fromisoformat(expires)
                for cert, expires in d.get("certification_expiry", {}).items()
            },
            time_off=[TimeOff.from_dict(t) for t in d.get("time_off", [])],
            assignments=sorted(
                (Assignment.from_dict(a) for a in d.get("assignments", [])),
                key=lambda a: (a.start, a.job_id),
            ),
            max_jobs_per_day=d.get("max_jobs_per_day"),
            archived=d.get("archived", False),
            version=d.get("version", 0),
        )


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    kind: WindowKind = WindowKind.SOFT

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def admits(self, arrival: datetime) -> bool:
        """Arrival must fall inside the window, both ends inclusive."""
        return self.start <= arrival <= self.end

    def minutes_outside(self, arrival: datetime) -> float:
        if arrival < self.start:
            return _minutes(self.start - arrival)
        if arrival > self.end:
            return _minutes(arrival - self.end)
        return 0.0

    def to_dict(self):
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "kind": self.kind.value,
        }

    @staticmethod
    def from_dict(d):
        return TimeWindow(
            start=_parse_datetime(d["start"]),
            end=_parse_datetime(d["end"]),
            kind=WindowKind(d.get("kind", WindowKind.SOFT.value)),
        )


@dataclass(frozen=True)
class Slot:
    technician_id: str
    start: datetime
    duration: timedelta

    @property
    def end(self) -> datetime:
        return self.start + self.duration

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    def to_dict(self):
        return {
            "technician_id": self.technician_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


@dataclass
class Job:
    id: str
    duration: timedelta
    location: Location = field(default_factory=Location)
    title: str = ""
    required_skills: set[str] = field(default_factory=set)
    required_certifications: set[str] = field(default_factory=set)
    time_windows: list[TimeWindow] = field(default_factory=list)
    priority: Priority = Priority.STANDARD
    sla_deadline: Optional[datetime] = None
    status: JobStatus = JobStatus.UNSCHEDULED
    technician_id: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    # Set when the engine could not place the job and a dispatcher must decide
    needs_review: bool = False

    @property
    def is_scheduled(self) -> bool:
        return (
            self.status == JobStatus.SCHEDULED
            and self.technician_id is not None
            and self.scheduled_start is not None
        )

    @property
    def scheduled_slot(self) -> Optional[Slot]:
        if not self.is_scheduled:
            return None
        return Slot(self.technician_id, self.scheduled_start, self.duration)

    @property
    def hard_windows(self) -> list[TimeWindow]:
        return [w for w in self.time_windows if w.kind == WindowKind.HARD]

    @property
    def soft_windows(self) -> list[TimeWindow]:
        return [w for w in self.time_windows if w.kind == WindowKind.SOFT]

    def scheduled_at(self, slot: Slot) -> "Job":
        return replace(
            self,
            status=JobStatus.SCHEDULED,
            technician_id=slot.technician_id,
            scheduled_start=slot.start,
            duration=slot.duration,
            needs_review=False,
        )

    def unscheduled(self, needs_review: bool = False) -> "Job":
        return replace(
            self,
            status=JobStatus.UNSCHEDULED,
            technician_id=None,
            scheduled_start=None,
            needs_review=needs_review,
        )

    def to_assignment(self, start: datetime) -> Assignment:
        return Assignment(
            job_id=self.id, start=start, duration=self.duration, location=self.location
        )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "duration_minutes": _minutes(self.duration),
            "location": self.location.to_dict(),
            "required_skills": sorted(self.required_skills),
            "required_certifications": sorted(self.required_certifications),
            "time_windows": [w.to_dict() for w in self.time_windows],
            "priority": self.priority.value,
            "sla_deadline": self.sla_deadline.isoformat() if self.sla_deadline else None,
            "status": self.status.value,
            "technician_id": self.technician_id,
            "scheduled_start": self.scheduled_start.isoformat()
            if self.scheduled_start
            else None,
            "needs_review": self.needs_review,
        }

    @staticmethod
    def from_dict(d):
        return Job(
            id=d["id"],
            title=d.get("title", ""),
            duration=timedelta(minutes=d["duration_minutes"]),
            location=Location.from_dict(d.get("location")),
            required_skills=set(d.get("required_skills", [])),
            required_certifications=set(d.get("required_certifications", [])),
            time_windows=[TimeWindow.from_dict(w) for w in d.get("time_windows", [])],
            priority=Priority(d.get("priority", Priority.STANDARD.value)),
            sla_deadline=_parse_datetime(d.get("sla_deadline")),
            status=JobStatus(d.get("status", JobStatus.UNSCHEDULED.value)),
            technician_id=d.get("technician_id"),
            scheduled_start=_parse_datetime(d.get("scheduled_start")),
            needs_review=d.get("needs_review", False),
        )


@dataclass(frozen=True)
class ConstraintViolation:
    constraint: str
    kind: ConstraintType
    message: str
    details: tuple = ()

    def to_dict(self):
        return {
            "constraint": self.constraint,
            "kind": self.kind.value,
            "message": self.message,
            "details": list(self.details),
        }


@dataclass(frozen=True)
class Evaluation:
    feasible: bool
    score: float
    violations: tuple[ConstraintViolation, ...] = ()
    # Minutes of travel from the previous stop (or home base) to the job
    travel_minutes: float = 0.0
    breakdown: dict = field(default_factory=dict, compare=False)

    @property
    def hard_violations(self) -> list[ConstraintViolation]:
        return [v for v in self.violations if v.kind == ConstraintType.HARD]


@dataclass(frozen=True)
class Candidate:
    job_id: str
    slot: Slot
    evaluation: Evaluation

    @property
    def technician_id(self) -> str:
        return self.slot.technician_id

    @property
    def score(self) -> float:
        return self.evaluation.score

    @property
    def rank_key(self) -> tuple:
        """Score descending, then earliest start, lowest travel, technician id."""
        return (
            -self.evaluation.score,
            self.slot.start,
            self.evaluation.travel_minutes,
            self.slot.technician_id,
        )

    def to_dict(self):
        return {
            "job_id": self.job_id,
            **self.slot.to_dict(),
            "feasible": self.evaluation.feasible,
            "score": self.evaluation.score,
            "travel_minutes": self.evaluation.travel_minutes,
            "violations": [v.to_dict() for v in self.evaluation.violations],
        }


@dataclass
class SlotSearchResult:
    job_id: str
    status: SearchStatus = SearchStatus.SEARCHING
    candidates: list[Candidate] = field(default_factory=list)
    # Number of rejected candidates per hard constraint name
    rejections: dict[str, int] = field(default_factory=dict)
    technicians_considered: int = 0
    candidates_evaluated: int = 0
    search_window: Optional[Interval] = None

    @property
    def best(self) -> Optional[Candidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def exhausted(self) -> bool:
        return self.status == SearchStatus.EXHAUSTED


@dataclass(frozen=True)
class JobMove:
    job_id: str
    from_technician_id: Optional[str]
    from_start: Optional[datetime]
    to_technician_id: Optional[str]
    to_start: Optional[datetime]
    duration: timedelta

    @property
    def to_slot(self) -> Optional[Slot]:
        if self.to_technician_id is None or self.to_start is None:
            return None
        return Slot(self.to_technician_id, self.to_start, self.duration)

    def to_dict(self):
        return {
            "job_id": self.job_id,
            "from_technician_id": self.from_technician_id,
            "from_start": self.from_start.isoformat() if self.from_start else None,
            "to_technician_id": self.to_technician_id,
            "to_start": self.to_start.isoformat() if self.to_start else None,
            "duration_minutes": _minutes(self.duration),
        }


@dataclass(frozen=True)
class ProposalChange:
    moves: tuple[JobMove, ...]
    state: PlacementState
    rationale: str
    # State trail of the affected job(s), e.g. scheduled -> disrupted -> rescheduled
    states: tuple[PlacementState, ...] = ()
    score_delta: float = 0.0
    travel_delta_minutes: float = 0.0

    @property
    def job_ids(self) -> tuple[str, ...]:
        return tuple(move.job_id for move in self.moves)

    def to_dict(self):
        return {
            "job_ids": list(self.job_ids),
            "moves": [m.to_dict() for m in self.moves],
            "state": self.state.value,
            "states": [s.value for s in self.states],
            "score_delta": self.score_delta,
            "travel_delta_minutes": self.travel_delta_minutes,
            "rationale": self.rationale,
        }


@dataclass
class ScheduleProposal:
    id: str
    source: str
    created_at: datetime
    changes: list[ProposalChange] = field(default_factory=list)
    # (technician id, time-off) blocks that applying the proposal records
    time_off_additions: list[tuple[str, TimeOff]] = field(default_factory=list)
    # Customer window replacements that applying the proposal records
    window_updates: dict[str, tuple[TimeWindow, ...]] = field(default_factory=dict)
    # True when an optimizer pass was cancelled before it converged
    partial: bool = False

    @property
    def score_delta(self) -> float:
        return round(sum(change.score_delta for change in self.changes), 6)

    @property
    def is_empty(self) -> bool:
        return not self.changes and not self.time_off_additions and not self.window_updates

    @property
    def manual_review(self) -> list[str]:
        return [
            job_id
            for change in self.changes
            if change.state == PlacementState.MANUAL_REVIEW
            for job_id in change.job_ids
        ]

    @property
    def rescheduled(self) -> list[str]:
        return [
            job_id
            for change in self.changes
            if change.state == PlacementState.RESCHEDULED
            for job_id in change.job_ids
        ]

    def change_for(self, job_id: str) -> Optional[ProposalChange]:
        """Get the last change touching a job."""
        found = None
        for change in self.changes:
            if job_id in change.job_ids:
                found = change
        return found

    def final_moves(self) -> dict[str, tuple[JobMove, PlacementState]]:
        """Collapse the ordered changes into one move per job.

        The origin comes from the first move of a job and the destination from
        its last move, so a job swapped twice is applied once.
        """
        first: dict[str, JobMove] = {}
        last: dict[str, tuple[JobMove, PlacementState]] = {}

        for change in self.changes:
            for move in change.moves:
                first.setdefault(move.job_id, move)
                last[move.job_id] = (move, change.state)

        collapsed = {}
        for job_id, (move, state) in last.items():
            origin = first[job_id]
            collapsed[job_id] = (
                replace(
                    move,
                    from_technician_id=origin.from_technician_id,
                    from_start=origin.from_start,
                ),
                state,
            )
        return collapsed

    def to_dict(self):
        return {
            "id": self.id,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "changes": [c.to_dict() for c in self.changes],
            "time_off_additions": [
                {"technician_id": tech_id, **time_off.to_dict()}
                for tech_id, time_off in self.time_off_additions
            ],
            "window_updates": {
                job_id: [w.to_dict() for w in windows]
                for job_id, windows in self.window_updates.items()
            },
            "score_delta": self.score_delta,
            "manual_review": self.manual_review,
            "partial": self.partial,
        }


@dataclass(frozen=True)
class DispatchSnapshot:
    """Immutable view of the technicians and jobs one operation computes over."""

    technicians: dict[str, Technician]
    jobs: dict[str, Job]
    now: datetime
    # Store version of each job as read; technicians carry their own
    job_versions: dict[str, int] = field(default_factory=dict)

    def technician(self, technician_id: str) -> Technician:
        try:
            return self.technicians[technician_id]
        except KeyError:
            raise InvalidInput(
                f"Unknown technician: {technician_id}", field="technician_id"
            ) from None

    def job(self, job_id: str) -> Job:
        try:
            return self.jobs[job_id]
        except KeyError:
            raise InvalidInput(f"Unknown job: {job_id}", field="job_id") from None

    def pool(self, technician_ids=None) -> list[Technician]:
        """Get technicians in id order, optionally restricted to some ids."""
        if technician_ids is None:
            return [self.technicians[k] for k in sorted(self.technicians)]
        return [self.technician(k) for k in sorted(set(technician_ids))]

    def with_technician(self, technician: Technician) -> "DispatchSnapshot":
        technicians = dict(self.technicians)
        technicians[technician.id] = technician
        return replace(self, technicians=technicians)

    def with_job(self, job: Job) -> "DispatchSnapshot":
        jobs = dict(self.jobs)
        jobs[job.id] = job
        return replace(self, jobs=jobs)

    def place(self, job_id: str, slot: Slot) -> "DispatchSnapshot":
        """Move a job to a slot: drop its current assignment and add the new one."""
        snapshot = self.release(job_id)
        job = snapshot.job(job_id).scheduled_at(slot)
        technician = snapshot.technician(slot.technician_id)
        return snapshot.with_job(job).with_technician(
            technician.with_assignment(job.to_assignment(slot.start))
        )

    def release(self, job_id: str, needs_review: bool = False) -> "DispatchSnapshot":
        """Drop a job's assignment from every technician and mark it unscheduled."""
        snapshot = self
        for technician in self.technicians.values():
            if technician.assignment_for(job_id) is not None:
                snapshot = snapshot.with_technician(technician.without_assignment(job_id))

        job = self.jobs.get(job_id)
        if job is not None:
            snapshot = snapshot.with_job(job.unscheduled(needs_review=needs_review))
        return snapshot
