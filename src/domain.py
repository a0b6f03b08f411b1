import os
from dataclasses import dataclass, field
from typing import Optional


# =========================
#      DISPATCH CONFIG
# =========================


@dataclass(frozen=True)
class ConstraintWeights:
    """Weights of the soft constraints in the placement score"""

    travel: float = 1.0  # Minimize detour travel
    time_window: float = 2.0  # Heavily favor customer preferred windows
    urgency: float = 1.5  # Sooner slots for urgent jobs
    workload: float = 0.5  # Balance booked time across the team

    def __post_init__(self):
        for name in ("travel", "time_window", "urgency", "workload"):
            if getattr(self, name) < 0:
                raise ValueError(f"Constraint weight '{name}' must not be negative")


@dataclass(frozen=True)
class DispatchConfig:
    """Global configuration for the dispatch engine"""

    weights: ConstraintWeights = field(default_factory=ConstraintWeights)

    # Travel estimation
    average_speed_mph: float = 30.0
    min_travel_buffer_minutes: int = 0
    routing_url: Optional[str] = None
    routing_api_key: Optional[str] = None
    routing_timeout_seconds: float = 5.0
    routing_cache_ttl_seconds: int = 24 * 60 * 60
    routing_cache_max_entries: int = 10_000

    # Slot search
    candidate_step_minutes: int = 30
    max_search_days: int = 14
    max_candidates: Optional[int] = None

    # Soft constraint scales
    travel_normalizer_minutes: float = 120.0
    urgency_horizon_hours: float = 72.0

    # Optimizer
    optimizer_max_iterations: int = 100

    # Disruption handling
    disruption_lookahead_hours: int = 48
    backfill_on_cancellation: bool = True

    def __post_init__(self):
        """Validate configuration"""
        if self.average_speed_mph <= 0:
            raise ValueError("average_speed_mph must be positive")

        if self.min_travel_buffer_minutes < 0:
            raise ValueError("min_travel_buffer_minutes must not be negative")

        if self.candidate_step_minutes <= 0:
            raise ValueError("candidate_step_minutes must be positive")

        if self.max_search_days <= 0:
            raise ValueError("max_search_days must be positive")

        if self.max_candidates is not None and self.max_candidates <= 0:
            raise ValueError("max_candidates must be positive when set")

        if self.travel_normalizer_minutes <= 0 or self.urgency_horizon_hours <= 0:
            raise ValueError("Soft constraint scales must be positive")

        if self.optimizer_max_iterations <= 0:
            raise ValueError("optimizer_max_iterations must be positive")

        if self.disruption_lookahead_hours < 0:
            raise ValueError("disruption_lookahead_hours must not be negative")

        if self.routing_timeout_seconds <= 0:
            raise ValueError("routing_timeout_seconds must be positive")

        if self.routing_cache_max_entries <= 0:
            raise ValueError("routing_cache_max_entries must be positive")


# Global configuration instance
# Routing is optional; without KRIB_ROUTING_URL the distance-based estimate is used
DISPATCH_CONFIG = DispatchConfig(
    average_speed_mph=float(os.getenv("KRIB_AVERAGE_SPEED_MPH", "30")),
    min_travel_buffer_minutes=int(os.getenv("KRIB_MIN_TRAVEL_BUFFER_MINUTES", "0")),
    routing_url=os.getenv("KRIB_ROUTING_URL") or None,
    routing_api_key=os.getenv("KRIB_ROUTING_API_KEY") or None,
)
