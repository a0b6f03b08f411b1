import math
from datetime import date, datetime, time, timedelta
from random import Random
from itertools import product

from factory.data.models import *
from constraint_solvers.dispatch.domain import (
    Job,
    Location,
    Priority,
    Technician,
    TimeOff,
    TimeWindow,
    WindowKind,
)
from constraint_solvers.dispatch.working_hours import standard_week

# Miles per degree of latitude
MILES_PER_DEGREE = 69.0


### TECHNICIANS ###
FIRST_NAMES = ("Amy", "Beth", "Carl", "Dan", "Elsa", "Flo", "Gus", "Hugo", "Ivy", "Jay")
LAST_NAMES = (
    "Cole",
    "Fox",
    "Green",
    "Jones",
    "King",
    "Li",
    "Poe",
    "Rye",
    "Smith",
    "Watt",
)

STREET_NAMES = ("Oak", "Cedar", "Lamar", "Congress", "Burnet", "Guadalupe", "Riverside")


def generate_technicians(
    parameters: DispatchDataParameters,
    random: Random,
) -> list[Technician]:
    """
    Generates technicians with random names, skills and home bases.
    Each technician gets one required skill plus a few optional ones.
    """
    name_permutations = [
        f"{first_name} {last_name}"
        for first_name, last_name in product(FIRST_NAMES, LAST_NAMES)
    ]

    random.shuffle(name_permutations)

    technicians = []
    ids = generate_ids("tech")

    for i in range(parameters.technician_count):
        (count,) = random.choices(
            population=counts(parameters.optional_skill_distribution),
            weights=weights(parameters.optional_skill_distribution),
        )
        count = min(count, len(parameters.skill_set.optional_skills))

        skills = []
        skills += random.sample(parameters.skill_set.required_skills, 1)
        skills += random.sample(parameters.skill_set.optional_skills, count)

        certifications = set()
        if parameters.certifications and random.random() >= 0.5:
            certifications.add(random.choice(parameters.certifications))

        technicians.append(
            Technician(
                id=next(ids),
                name=name_permutations[i],
                home_base=random_location(parameters.service_area, random),
                working_hours=standard_week(),
                skills=set(skills),
                certifications=certifications,
                max_jobs_per_day=random.choice((None, 4, 6)),
            )
        )

    return technicians


def generate_technician_time_off(
    technicians: list[Technician],
    parameters: DispatchDataParameters,
    start_date: date,
    random: Random,
) -> None:
    """
    Sets up random full-day time-off for technicians within the schedule.
    """
    all_dates = [start_date + timedelta(days=i) for i in range(parameters.days_in_schedule)]

    for technician in technicians:
        (count,) = random.choices(
            population=counts(parameters.time_off_count_distribution),
            weights=weights(parameters.time_off_count_distribution),
        )

        for day in sorted(random.sample(all_dates, min(count, len(all_dates)))):
            start = datetime.combine(day, time.min)
            technician.time_off.append(
                TimeOff(
                    start=start,
                    end=start + timedelta(days=1),
                    kind=random.choice(("vacation", "personal", "training")),
                )
            )


### JOBS ###
def generate_jobs(
    parameters: DispatchDataParameters,
    start_date: date,
    random: Random,
) -> list[Job]:
    """
    Generates unscheduled jobs from the templates, spread over the service area.
    Some jobs carry a customer time window on one of the schedule days.
    """
    jobs: list[Job] = []
    ids = generate_ids("job")

    for _ in range(parameters.job_count):
        template = random.choice(parameters.job_templates)

        # Durations rounded to 15 minutes
        minutes = random.randint(template.min_duration_minutes, template.max_duration_minutes)
        minutes = max(15, round(minutes / 15) * 15)

        (priority,) = random.choices(
            population=(Priority.EMERGENCY, Priority.URGENT, Priority.STANDARD, Priority.FLEXIBLE),
            weights=(1, 2, 6, 2),
        )

        time_windows = []
        if random.random() < parameters.windowed_job_ratio:
            time_windows.append(random_time_window(start_date, parameters, random))

        jobs.append(
            Job(
                id=next(ids),
                title=template.title,
                duration=timedelta(minutes=minutes),
                location=random_location(parameters.service_area, random),
                required_skills={template.skill},
                required_certifications={template.certification}
                if template.certification
                else set(),
                time_windows=time_windows,
                priority=priority,
            )
        )

    return jobs


def random_time_window(
    start_date: date, parameters: DispatchDataParameters, random: Random
) -> TimeWindow:
    """Morning (8-12) or afternoon (12-16) window on a random weekday of the schedule."""
    weekdays = [
        start_date + timedelta(days=i)
        for i in range(parameters.days_in_schedule)
        if (start_date + timedelta(days=i)).weekday() < 5
    ]
    day = random.choice(weekdays or [start_date])
    start_hour = random.choice((8, 12))
    kind = WindowKind.HARD if random.random() < 0.3 else WindowKind.SOFT

    return TimeWindow(
        start=datetime.combine(day, time(start_hour)),
        end=datetime.combine(day, time(start_hour + 4)),
        kind=kind,
    )


def random_location(area: ServiceArea, random: Random) -> Location:
    """Uniform random point within the service area radius."""
    distance = area.radius_miles * math.sqrt(random.random())
    bearing = random.uniform(0, 2 * math.pi)

    lat = area.center_lat + distance * math.cos(bearing) / MILES_PER_DEGREE
    lng = area.center_lng + distance * math.sin(bearing) / (
        MILES_PER_DEGREE * math.cos(math.radians(area.center_lat))
    )

    street = f"{random.randint(100, 9999)} {random.choice(STREET_NAMES)} St"
    address = f"{street}, {area.city}" if area.city else street

    return Location(lat=round(lat, 6), lng=round(lng, 6), address=address)


def generate_ids(prefix: str):
    current_id = 0
    while True:
        yield f"{prefix}-{current_id}"
        current_id += 1


# =========================
#     UTILITY FUNCTIONS
# =========================
def counts(distributions: tuple[CountDistribution, ...]) -> tuple[int, ...]:
    """
    Extracts the count values from a tuple of CountDistribution objects.
    """
    return tuple(distribution.count for distribution in distributions)


def weights(distributions: tuple[CountDistribution, ...]) -> tuple[float, ...]:
    """
    Extracts the weight values from a tuple of CountDistribution objects.
    """
    return tuple(distribution.weight for distribution in distributions)


def earliest_monday_on_or_after(target_date: date) -> date:
    """
    Returns the date of the next Monday on or after the given date.
    If the date is already Monday, returns the same date.
    """
    days = (7 - target_date.weekday()) % 7
    return target_date + timedelta(days=days)
