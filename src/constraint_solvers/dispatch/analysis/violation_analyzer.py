from typing import Iterable, List, Set

from ..domain import Job, SlotSearchResult, Technician

# Human-readable names of hard constraints, used in rejection summaries
CONSTRAINT_LABELS = {
    "technician_active": "Archived technician",
    "required_skills": "Missing skills",
    "required_certifications": "Missing or expired certifications",
    "within_working_hours": "Outside working hours",
    "no_time_off_overlap": "Technician time-off",
    "no_assignment_overlap": "Overlapping jobs",
    "travel_buffer": "Not enough travel time",
    "customer_appointment_window": "Customer appointment window",
    "sla_deadline": "SLA deadline",
    "daily_job_limit": "Daily job limit",
}


class ConstraintViolationAnalyzer:
    """
    Service for explaining exhausted slot searches.

    When the slot finder returns EXHAUSTED, this service inspects the job, the
    technician pool and the search counters to tell a dispatcher why nothing
    fit and what they could change.
    """

    @staticmethod
    def analyze_search(
        job: Job, technicians: Iterable[Technician], result: SlotSearchResult
    ) -> str:
        """
        Analyze an exhausted search and describe the blocking reasons.

        Args:
            job: The job that could not be placed
            technicians: The pool that was searched
            result: The slot search result

        Returns:
            Bullet lines describing why no slot was found
        """
        if not result.exhausted:
            return "No constraint violations detected."

        pool = [t for t in technicians if not t.archived]
        violations = []

        violations.extend(ConstraintViolationAnalyzer._check_window(result))
        violations.extend(ConstraintViolationAnalyzer._check_skills(job, pool))
        violations.extend(ConstraintViolationAnalyzer._check_certifications(job, pool))
        violations.extend(ConstraintViolationAnalyzer._check_rejections(result))

        if not violations:
            violations.append(
                "• No Open Time: No technician has an open window long enough for this job"
            )

        return "\n".join(violations)

    @staticmethod
    def _check_window(result: SlotSearchResult) -> List[str]:
        if result.search_window is None:
            return ["• Empty Search Window: The search window is entirely in the past"]
        return []

    @staticmethod
    def _check_skills(job: Job, pool: List[Technician]) -> List[str]:
        """Check for skills that nobody in the pool has"""
        available: Set[str] = set()
        for technician in pool:
            available.update(technician.skills)

        missing = job.required_skills - available
        if missing:
            return [
                f"• Missing Skills: No technicians have these required skills: {', '.join(sorted(missing))}"
            ]

        if job.required_skills and not any(
            job.required_skills <= t.skills for t in pool
        ):
            return [
                f"• Skill Combination: No single technician has all of: {', '.join(sorted(job.required_skills))}"
            ]
        return []

    @staticmethod
    def _check_certifications(job: Job, pool: List[Technician]) -> List[str]:
        available: Set[str] = set()
        for technician in pool:
            available.update(technician.certifications)

        missing = job.required_certifications - available
        if missing:
            return [
                f"• Missing Certifications: No technicians hold: {', '.join(sorted(missing))}"
            ]
        return []

    @staticmethod
    def _check_rejections(result: SlotSearchResult) -> List[str]:
        """Summarize which hard constraints rejected the evaluated candidates"""
        violations = []

        for name, count in sorted(result.rejections.items(), key=lambda item: (-item[1], item[0])):
            label = CONSTRAINT_LABELS.get(name, name)
            violations.append(f"• {label}: rejected {count} candidate slot(s)")

        return violations

    @staticmethod
    def generate_suggestions(job: Job, result: SlotSearchResult) -> List[str]:
        """Generate actionable suggestions for an exhausted search"""
        suggestions = []

        if not result.exhausted:
            return suggestions

        if job.required_skills or job.required_certifications:
            suggestions.append("Add technicians with the required skills or certifications")
        if job.hard_windows:
            suggestions.append("Ask the customer for a wider appointment window")
        if job.sla_deadline is not None:
            suggestions.append("Review the SLA deadline with the customer")

        suggestions.extend(
            [
                "Widen the search window (more days)",
                "Reduce the job duration or split it into visits",
            ]
        )
        return suggestions
