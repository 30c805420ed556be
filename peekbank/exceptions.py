"""
Exception types raised by the Peekbank import pipeline.

Every error is fatal for the dataset being imported; none of them are
caught inside the pipeline.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

import pandas as pd

if TYPE_CHECKING:
    from .validation.validator import ValidationReport


class PeekbankError(ValueError):
    """Base class for import failures."""


class ParseError(PeekbankError):
    """A raw file could not be parsed."""

    def __init__(
        self,
        path: Union[str, Path],
        detail: str,
        row: Optional[int] = None
    ):
        self.path = Path(path)
        self.row = row
        self.detail = detail
        location = f"{self.path}" if row is None else f"{self.path}, row {row}"
        super().__init__(f"Failed to parse {location}: {detail}")


class LinkageError(PeekbankError):
    """A required field or cross-reference is missing."""


class IdentityConflictError(PeekbankError):
    """An entity carries different values for a field expected to be constant."""

    def __init__(self, entity: str, conflicts: pd.DataFrame):
        self.entity = entity
        self.conflicts = conflicts
        keys = conflicts.iloc[:, 0].drop_duplicates().tolist()
        super().__init__(
            f"{entity}: {len(keys)} record(s) with conflicting values: {keys}. "
            f"Provide an explicit override for each."
        )


class ValidationError(PeekbankError):
    """The assembled tables failed schema validation."""

    def __init__(self, report: "ValidationReport"):
        self.report = report
        super().__init__(
            f"{len(report.violations)} schema violation(s):\n{report.summary()}"
        )
