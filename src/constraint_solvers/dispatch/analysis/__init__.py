"""
Infeasibility analysis module.

This module explains to a dispatcher why a slot search came back empty.
"""

from .violation_analyzer import ConstraintViolationAnalyzer

__all__ = ["ConstraintViolationAnalyzer"]
