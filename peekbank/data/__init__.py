"""
Data module for the Peekbank import pipeline.

This module provides:
- Canonical table schemas and observation columns
- Raw file loading and reshaping utilities
- Readers for the supported raw export shapes
- Export and import of the processed tables
"""

from .schema import (
    TABLE_SCHEMAS,
    TABLE_NAMES,
    OBSERVATION_COLUMNS,
    get_schema,
)

from .loaders import (
    read_raw_table,
    load_raw_files,
    read_participants,
)

from .formats import (
    observations_from_wide_grid,
    observations_from_event_log,
    observations_from_sample_codes,
    attach_participants,
)

from .export import (
    write_tables,
    read_tables,
)

__all__ = [
    "TABLE_SCHEMAS",
    "TABLE_NAMES",
    "OBSERVATION_COLUMNS",
    "get_schema",
    "read_raw_table",
    "load_raw_files",
    "read_participants",
    "observations_from_wide_grid",
    "observations_from_event_log",
    "observations_from_sample_codes",
    "attach_participants",
    "write_tables",
    "read_tables",
]
