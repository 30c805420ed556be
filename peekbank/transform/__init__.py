"""
Transformation stages of the Peekbank import pipeline.
"""

from .timing import (
    rezero_times,
    normalize_times,
    resample_times,
)

from .keys import (
    assign_ids,
    assign_stimulus_ids,
    resolve_conflicts,
)

from .assemble import assemble_tables

__all__ = [
    "rezero_times",
    "normalize_times",
    "resample_times",
    "assign_ids",
    "assign_stimulus_ids",
    "resolve_conflicts",
    "assemble_tables",
]
