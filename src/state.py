import copy, threading
from datetime import datetime
from typing import Dict, Iterable, Optional

from constraint_solvers.dispatch.domain import DispatchSnapshot, Job, Technician
from constraint_solvers.dispatch.errors import ConflictError, InvalidInput
from constraint_solvers.dispatch.validation import validate_job, validate_technician

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)


class DispatchStore:
    """
    Central state for technicians and jobs.

    Stands in for the document store: every technician and job carries a
    version that is bumped on each write, and commits are compare-and-set on
    those versions. Readers always get deep copies.
    """

    def __init__(self):
        self._technicians: Dict[str, Technician] = {}
        self._jobs: Dict[str, Job] = {}
        self._job_versions: Dict[str, int] = {}
        self._lock = threading.Lock()

    def read_snapshot(self, now: Optional[datetime] = None) -> DispatchSnapshot:
        """Read every technician and job in one batched call."""
        with self._lock:
            return DispatchSnapshot(
                technicians=copy.deepcopy(self._technicians),
                jobs=copy.deepcopy(self._jobs),
                now=now or datetime.now(),
                job_versions=dict(self._job_versions),
            )

    def get_technician(self, technician_id: str) -> Technician:
        with self._lock:
            if technician_id not in self._technicians:
                raise InvalidInput(f"Unknown technician: {technician_id}", field="technician_id")
            return copy.deepcopy(self._technicians[technician_id])

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            if job_id not in self._jobs:
                raise InvalidInput(f"Unknown job: {job_id}", field="job_id")
            return copy.deepcopy(self._jobs[job_id])

    def job_version(self, job_id: str) -> int:
        with self._lock:
            return self._job_versions.get(job_id, 0)

    def upsert_technician(self, technician: Technician) -> Technician:
        """Insert or replace a technician document, bumping its version."""
        validate_technician(technician)

        with self._lock:
            stored = copy.deepcopy(technician)
            previous = self._technicians.get(technician.id)
            stored.version = (previous.version if previous else technician.version) + 1
            self._technicians[stored.id] = stored
            return copy.deepcopy(stored)

    def upsert_job(self, job: Job) -> Job:
        """Insert or replace a job document, bumping its version."""
        validate_job(job)

        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)
            self._job_versions[job.id] = self._job_versions.get(job.id, 0) + 1
            return copy.deepcopy(job)

    def archive_technician(self, technician_id: str) -> Technician:
        """Technicians are archived, never deleted, so history stays readable."""
        with self._lock:
            if technician_id not in self._technicians:
                raise InvalidInput(f"Unknown technician: {technician_id}", field="technician_id")

            technician = self._technicians[technician_id]
            technician.archived = True
            technician.version += 1
            logger.info(f"Archived technician {technician_id}")
            return copy.deepcopy(technician)

    def compare_and_set(
        self,
        technicians: Iterable[Technician],
        jobs: Iterable[Job] = (),
        expected_versions: Optional[Dict[str, int]] = None,
        expected_job_versions: Optional[Dict[str, int]] = None,
    ) -> None:
        """
        Write technicians and jobs atomically if none of them changed since it was read.

        Args:
            technicians: Technician documents to write.
            jobs: Job documents to write.
            expected_versions: Technician id -> version read before the change.
                Defaults to each document's own version.
            expected_job_versions: Job id -> version read before the change.
                Jobs left out are written without a check.

        Raises:
            ConflictError: A technician's or job's stored version differs from
                the expected one.
        """
        technicians = list(technicians)
        jobs = list(jobs)
        expected = expected_versions or {t.id: t.version for t in technicians}
        expected_jobs = expected_job_versions or {}

        with self._lock:
            for job_id, version in sorted(expected_jobs.items()):
                current_version = self._job_versions.get(job_id, 0)

                if current_version != version:
                    logger.warning(
                        f"Version conflict on job {job_id}: "
                        f"expected {version}, found {current_version}"
                    )
                    raise ConflictError(
                        f"Job {job_id} changed since it was read", job_id=job_id
                    )

            for technician_id, version in sorted(expected.items()):
                current = self._technicians.get(technician_id)
                current_version = current.version if current is not None else 0

                if current_version != version:
                    logger.warning(
                        f"Version conflict on technician {technician_id}: "
                        f"expected {version}, found {current_version}"
                    )
                    raise ConflictError(
                        f"Technician {technician_id} changed since it was read",
                        technician_id=technician_id,
                    )

            for technician in technicians:
                stored = copy.deepcopy(technician)
                stored.version = expected.get(technician.id, technician.version) + 1
                self._technicians[stored.id] = stored

            for job in jobs:
                self._jobs[job.id] = copy.deepcopy(job)
                self._job_versions[job.id] = self._job_versions.get(job.id, 0) + 1

    def clear(self) -> None:
        """Clear all technicians and jobs."""
        with self._lock:
            self._technicians.clear()
            self._jobs.clear()
            self._job_versions.clear()

    def has_technician(self, technician_id: str) -> bool:
        with self._lock:
            return technician_id in self._technicians


# Global dispatch state instance
dispatch_state = DispatchStore()
