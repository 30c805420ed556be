"""
Validation module for the Peekbank import pipeline.
"""

from .validator import (
    Violation,
    ValidationReport,
    validate_table,
    validate_tables,
)

__all__ = [
    "Violation",
    "ValidationReport",
    "validate_table",
    "validate_tables",
]
