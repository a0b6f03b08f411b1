"""
Dispatch constraint solver module.

This module contains the domain models, constraints, slot search, schedule
optimizer and disruption handling for field technician dispatch.
"""

from .domain import (
    Assignment,
    Candidate,
    ConstraintType,
    ConstraintViolation,
    DispatchSnapshot,
    Evaluation,
    Job,
    JobMove,
    JobStatus,
    Location,
    PlacementState,
    Priority,
    ProposalChange,
    ScheduleProposal,
    SearchStatus,
    Slot,
    SlotSearchResult,
    Technician,
    TimeOff,
    TimeOffStatus,
    TimeWindow,
    WindowKind,
)
from .errors import (
    CollaboratorUnavailable,
    ConflictError,
    DispatchError,
    InvalidInput,
)
from .working_hours import Interval, Shift, standard_week
from .availability import is_free, open_windows, open_windows_between
from .travel import RoutingClient, TravelEstimator
from .constraints import define_constraints
from .evaluator import ConstraintEvaluator
from .slot_finder import SlotFinder
from .optimizer import CancellationToken, ScheduleOptimizer, SwapSimulation
from .disruption import (
    CustomerReschedule,
    DisruptionHandler,
    JobCancelled,
    JobOverrun,
    TechnicianUnavailable,
)

__all__ = [
    # Domain models
    "Assignment",
    "Candidate",
    "ConstraintType",
    "ConstraintViolation",
    "DispatchSnapshot",
    "Evaluation",
    "Interval",
    "Job",
    "JobMove",
    "JobStatus",
    "Location",
    "PlacementState",
    "Priority",
    "ProposalChange",
    "ScheduleProposal",
    "SearchStatus",
    "Shift",
    "Slot",
    "SlotSearchResult",
    "Technician",
    "TimeOff",
    "TimeOffStatus",
    "TimeWindow",
    "WindowKind",
    "standard_week",
    # Errors
    "CollaboratorUnavailable",
    "ConflictError",
    "DispatchError",
    "InvalidInput",
    # Components
    "ConstraintEvaluator",
    "RoutingClient",
    "SlotFinder",
    "ScheduleOptimizer",
    "CancellationToken",
    "SwapSimulation",
    "DisruptionHandler",
    "TravelEstimator",
    "define_constraints",
    "is_free",
    "open_windows",
    "open_windows_between",
    # Disruption events
    "CustomerReschedule",
    "JobCancelled",
    "JobOverrun",
    "TechnicianUnavailable",
]
