from datetime import date, datetime, time, timedelta
from random import Random
from typing import Optional

import pandas as pd

pd.set_option("display.max_columns", None)

from factory.data.formatters import schedule_to_dataframe
from factory.data.generators import *
from factory.data.models import *

from constraint_solvers.dispatch.domain import Job, Technician
from constraint_solvers.dispatch.working_hours import Interval
from state import DispatchStore

from utils.logging_config import setup_logging, get_logger

# Initialize logging
setup_logging()
logger = get_logger(__name__)


# =========================
#        DEMO PARAMS
# =========================
SKILL_SET = SkillSet(
    required_skills=("hvac", "plumbing", "electrical"),
    optional_skills=(
        "appliance",
        "roofing",
        "carpentry",
        "drywall",
        "painting",
    ),
)

JOB_TEMPLATES = (
    JobTemplate(title="Thermostat Installation", skill="hvac", min_duration_minutes=30, max_duration_minutes=90),
    JobTemplate(title="AC Filter Service", skill="hvac", min_duration_minutes=30, max_duration_minutes=45),
    JobTemplate(
        title="Furnace Repair",
        skill="hvac",
        min_duration_minutes=90,
        max_duration_minutes=180,
        certification="epa-608",
    ),
    JobTemplate(title="Faucet Repair", skill="plumbing", min_duration_minutes=30, max_duration_minutes=60),
    JobTemplate(title="Garbage Disposal Replacement", skill="plumbing", min_duration_minutes=45, max_duration_minutes=90),
    JobTemplate(title="Water Heater Inspection", skill="plumbing", min_duration_minutes=120, max_duration_minutes=180),
    JobTemplate(title="Outlet Installation", skill="electrical", min_duration_minutes=30, max_duration_minutes=60),
    JobTemplate(title="Ceiling Fan Installation", skill="electrical", min_duration_minutes=45, max_duration_minutes=90),
    JobTemplate(
        title="Panel Upgrade",
        skill="electrical",
        min_duration_minutes=180,
        max_duration_minutes=240,
        certification="master-electrician",
    ),
    JobTemplate(title="Dishwasher Installation", skill="appliance", min_duration_minutes=60, max_duration_minutes=120),
    JobTemplate(title="Drywall Patch", skill="drywall", min_duration_minutes=60, max_duration_minutes=150),
)

# Austin, TX
SERVICE_AREA = ServiceArea(center_lat=30.2672, center_lng=-97.7431, radius_miles=15, city="Austin, TX")

DATA_PARAMS = DispatchDataParameters(
    skill_set=SKILL_SET,
    service_area=SERVICE_AREA,
    job_templates=JOB_TEMPLATES,
    certifications=("epa-608", "master-electrician"),
    days_in_schedule=14,
    technician_count=6,
    job_count=30,
    optional_skill_distribution=(
        CountDistribution(count=1, weight=3),
        CountDistribution(count=2, weight=1),
    ),
    time_off_count_distribution=(
        CountDistribution(count=0, weight=4),
        CountDistribution(count=1, weight=2),
        CountDistribution(count=2, weight=1),
    ),
    random_seed=37,
)


# =========================
#        DEMO DATA
# =========================
def generate_demo_data(
    start_date: Optional[date] = None,
    parameters: DispatchDataParameters = DATA_PARAMS,
) -> tuple[list[Technician], list[Job]]:
    """
    Generate a reproducible roster and job backlog.

    The same parameters and start date always produce the same data.
    """
    start_date = start_date or earliest_monday_on_or_after(date.today())
    randomizer: Random = Random(parameters.random_seed)

    technicians = generate_technicians(parameters, randomizer)
    generate_technician_time_off(technicians, parameters, start_date, randomizer)
    jobs = generate_jobs(parameters, start_date, randomizer)

    logger.debug(
        f"Generated {len(technicians)} technicians and {len(jobs)} jobs from {start_date}"
    )
    return technicians, jobs


def build_demo_store(
    store: Optional[DispatchStore] = None,
    start_date: Optional[date] = None,
    parameters: DispatchDataParameters = DATA_PARAMS,
    schedule: bool = True,
) -> DispatchStore:
    """
    Populate a store with demo data, optionally placing every job that fits.

    Jobs are placed most urgent first with the best-ranked candidate; jobs
    with no feasible slot stay unscheduled.
    """
    from services.dispatch import DispatchService

    start_date = start_date or earliest_monday_on_or_after(date.today())
    store = store if store is not None else DispatchStore()

    technicians, jobs = generate_demo_data(start_date, parameters)
    for technician in technicians:
        store.upsert_technician(technician)
    for job in jobs:
        store.upsert_job(job)

    if not schedule:
        return store

    service = DispatchService(store)
    now = datetime.combine(start_date, time.min)
    window = Interval(now, now + timedelta(days=parameters.days_in_schedule))
    placed = 0

    for job in sorted(jobs, key=lambda j: (-j.priority.urgency_weight, j.id)):
        result = service.find_best_slot(job.id, window, now=now, limit=1)
        if result.best is None:
            continue

        service.commit_placement(job.id, result.best.slot, now=now)
        placed += 1

    logger.info(f"Demo store ready: {placed} of {len(jobs)} jobs scheduled")
    logger.debug(f"\n{schedule_to_dataframe(store.read_snapshot(now))}")
    return store
