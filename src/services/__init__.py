"""
Services module for Krib Dispatch business logic.

This module wires the dispatch engine to the technician/job store.
"""

from .dispatch import DispatchService

__all__ = [
    "DispatchService",
]
