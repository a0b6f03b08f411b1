import pandas as pd

from constraint_solvers.dispatch.domain import (
    Candidate,
    DispatchSnapshot,
    ScheduleProposal,
    Technician,
)
from constraint_solvers.dispatch.working_hours import WEEKDAY_NAMES


def candidates_to_dataframe(candidates: list[Candidate], technicians=None) -> pd.DataFrame:
    """
    Convert ranked slot candidates to a pandas DataFrame.

    Args:
        candidates (list[Candidate]): Candidates, best first.
        technicians (dict[str, Technician], optional): Used to show names.

    Returns:
        pd.DataFrame: One row per candidate, in rank order.
    """
    technicians = technicians or {}
    data: list[dict] = []

    for rank, candidate in enumerate(candidates, start=1):
        technician = technicians.get(candidate.technician_id)

        data.append(
            {
                "Rank": rank,
                "Job": candidate.job_id,
                "Technician": technician.name if technician else candidate.technician_id,
                "Start": candidate.slot.start,
                "End": candidate.slot.end,
                "Score": candidate.score,
                "Travel (min)": candidate.evaluation.travel_minutes,
                "Notes": "; ".join(v.message for v in candidate.evaluation.violations),
            }
        )

    return pd.DataFrame(
        data,
        columns=["Rank", "Job", "Technician", "Start", "End", "Score", "Travel (min)", "Notes"],
    )


def proposal_to_dataframe(proposal: ScheduleProposal) -> pd.DataFrame:
    """
    Convert a schedule proposal to a pandas DataFrame, one row per job move.

    Args:
        proposal (ScheduleProposal): The proposal to convert.
    """
    data: list[dict] = []

    for step, change in enumerate(proposal.changes, start=1):
        for move in change.moves:
            data.append(
                {
                    "Step": step,
                    "Job": move.job_id,
                    "State": change.state.value,
                    "From Technician": move.from_technician_id or "",
                    "From Start": move.from_start,
                    "To Technician": move.to_technician_id or "",
                    "To Start": move.to_start,
                    "Score Delta": change.score_delta,
                    "Travel Delta (min)": change.travel_delta_minutes,
                    "Rationale": change.rationale,
                }
            )

    return pd.DataFrame(
        data,
        columns=[
            "Step",
            "Job",
            "State",
            "From Technician",
            "From Start",
            "To Technician",
            "To Start",
            "Score Delta",
            "Travel Delta (min)",
            "Rationale",
        ],
    )


def technicians_to_dataframe(technicians: list[Technician]) -> pd.DataFrame:
    """
    Convert technicians to a roster DataFrame.

    Args:
        technicians (list[Technician]): The technicians to convert.
    """

    def format_days(working_hours):
        """Helper function to format working days for display"""
        if not working_hours:
            return "None"
        return ", ".join(
            f"{WEEKDAY_NAMES[day][:3].title()} {shift.start:%H:%M}-{shift.end:%H:%M}"
            for day, shift in sorted(working_hours.items())
        )

    data: list[dict] = []

    for technician in technicians:
        first, last = (
            technician.name.split(" ", 1) if " " in technician.name else (technician.name, "")
        )

        data.append(
            {
                "ID": technician.id,
                "First Name": first,
                "Last Name": last,
                "Skills": ", ".join(sorted(technician.skills)),
                "Certifications": ", ".join(sorted(technician.certifications)),
                "Working Hours": format_days(technician.working_hours),
                "Time Off": len(technician.blocking_time_off()),
                "Assignments": len(technician.assignments),
                "Archived": technician.archived,
            }
        )

    return pd.DataFrame(data)


def schedule_to_dataframe(snapshot: DispatchSnapshot) -> pd.DataFrame:
    """
    Convert every scheduled job of a snapshot to a DataFrame, ordered by technician and start.

    Args:
        snapshot (DispatchSnapshot): The state to convert.
    """
    data: list[dict] = []

    for technician in snapshot.pool():
        for assignment in technician.assignments:
            job = snapshot.jobs.get(assignment.job_id)

            data.append(
                {
                    "Technician": technician.name,
                    "Job": assignment.job_id,
                    "Title": job.title if job else "",
                    "Start": assignment.start,
                    "End": assignment.end,
                    "Duration (hours)": assignment.duration.total_seconds() / 3600,
                    "Priority": job.priority.value if job else "",
                    "Required Skills": ", ".join(sorted(job.required_skills)) if job else "",
                }
            )

    return pd.DataFrame(
        data,
        columns=[
            "Technician",
            "Job",
            "Title",
            "Start",
            "End",
            "Duration (hours)",
            "Priority",
            "Required Skills",
        ],
    )
