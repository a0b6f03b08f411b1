"""
Factory module for demo data creation and tabular views.

This module contains all data creation, generation, and formatting logic
for the Krib dispatch engine, organized into:
- data: Seeded data generation, demo store provider and DataFrame formatters
"""

# Import from data submodule
from .data.formatters import (
    candidates_to_dataframe,
    proposal_to_dataframe,
    schedule_to_dataframe,
    technicians_to_dataframe,
)
from .data.generators import (
    generate_technicians,
    generate_technician_time_off,
    generate_jobs,
    earliest_monday_on_or_after,
)
from .data.provider import DATA_PARAMS, build_demo_store, generate_demo_data

__all__ = [
    # Data formatters - convert domain objects to DataFrames
    "candidates_to_dataframe",
    "proposal_to_dataframe",
    "schedule_to_dataframe",
    "technicians_to_dataframe",
    # Data generators - create domain objects
    "generate_technicians",
    "generate_technician_time_off",
    "generate_jobs",
    "earliest_monday_on_or_after",
    # Data providers - orchestrate data creation
    "DATA_PARAMS",
    "build_demo_store",
    "generate_demo_data",
]
