from dataclasses import dataclass, field


# =========================
#        DATA MODELS
# =========================
@dataclass(frozen=True, kw_only=True)
class CountDistribution:
    count: int
    weight: float


@dataclass(frozen=True, kw_only=True)
class SkillSet:
    required_skills: tuple[str, ...]
    optional_skills: tuple[str, ...]


@dataclass(frozen=True, kw_only=True)
class JobTemplate:
    title: str
    skill: str
    min_duration_minutes: int
    max_duration_minutes: int
    certification: str = ""


@dataclass(frozen=True, kw_only=True)
class ServiceArea:
    center_lat: float
    center_lng: float
    radius_miles: float
    city: str = ""


@dataclass(kw_only=True)
class DispatchDataParameters:
    skill_set: SkillSet
    service_area: ServiceArea
    job_templates: tuple[JobTemplate, ...]
    days_in_schedule: int
    technician_count: int
    job_count: int
    optional_skill_distribution: tuple[CountDistribution, ...]
    time_off_count_distribution: tuple[CountDistribution, ...]
    certifications: tuple[str, ...] = ()
    # Share of jobs that carry a customer time window
    windowed_job_ratio: float = 0.4
    random_seed: int = field(default=37)
