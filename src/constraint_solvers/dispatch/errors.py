"""
Typed error conditions raised by the dispatch engine.

An exhausted search is not an error: the slot finder reports it through
``SearchStatus.EXHAUSTED`` on its result. Only the conditions below are
raised, and none of them is fatal to the process.
"""

from typing import Any, Optional


class DispatchError(Exception):
    """Base class for every error raised by the dispatch engine."""


class InvalidInput(DispatchError, ValueError):
    """Malformed job, technician or window data, rejected before any search runs."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConflictError(DispatchError):
    """
    A commit lost a race against another writer.

    The target slot no longer satisfies the hard constraints when re-read from
    the store, or the technician document changed between read and write.
    Callers retry by re-running the slot finder, never by forcing the write.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        technician_id: Optional[str] = None,
        violations: Optional[list[Any]] = None,
    ):
        super().__init__(message)
        self.job_id = job_id
        self.technician_id = technician_id
        self.violations = list(violations or [])


class CollaboratorUnavailable(DispatchError):
    """The routing backend failed or timed out. Absorbed by the travel estimator."""
