"""
Utils package for common utilities and helper functions.

This module contains logging configuration and calendar import utilities.
"""

from .logging_config import setup_logging, get_logger, is_debug_enabled
from .extract_calendar import (
    calendar_entries_to_time_off,
    extract_ical_entries,
    infer_time_off_kind,
)

__all__ = [
    # Logging utilities
    "setup_logging",
    "get_logger",
    "is_debug_enabled",
    # Calendar utilities
    "extract_ical_entries",
    "calendar_entries_to_time_off",
    "infer_time_off_kind",
]
