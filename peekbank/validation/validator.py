"""
Schema validation of the assembled Peekbank tables.

Checks run on every table:
- Exact canonical column set
- Dense, zero-based, unique primary key
- Required (non-null) columns populated
- Categorical columns drawn from their closed vocabularies

Cross-table checks:
- Every non-null foreign key resolves
- Every subject has at least one administration
- One AOI label per (trial, administration, time bucket)

Violations are collected, never corrected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..data.schema import TABLE_NAMES, TABLE_SCHEMAS, TableSchema
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_REPORTED_ROWS = 10


@dataclass
class Violation:
    """A single schema violation."""

    table: str
    column: Optional[str]
    message: str
    rows: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "column": self.column,
            "message": self.message,
            "rows": self.rows,
        }

    def __str__(self) -> str:
        location = self.table if self.column is None else f"{self.table}.{self.column}"
        rows = f" (rows {self.rows})" if self.rows else ""
        return f"{location}: {self.message}{rows}"


@dataclass
class ValidationReport:
    """Outcome of validating one dataset's tables."""

    violations: List[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def add(
        self,
        table: str,
        column: Optional[str],
        message: str,
        rows: Optional[pd.Index] = None
    ) -> None:
        row_list = [] if rows is None else [int(r) for r in list(rows)[:MAX_REPORTED_ROWS]]
        violation = Violation(table, column, message, row_list)
        logger.error(str(violation))
        self.violations.append(violation)

    def summary(self) -> str:
        return "\n".join(f"- {v}" for v in self.violations)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [v.to_dict() for v in self.violations],
            columns=["table", "column", "message", "rows"],
        )

    def raise_if_failed(self) -> None:
        if not self.ok:
            raise ValidationError(self)


def _check_columns(df: pd.DataFrame, schema: TableSchema, report: ValidationReport) -> bool:
    expected = list(schema.columns)
    actual = list(df.columns)
    if actual == expected:
        return True

    missing = [c for c in expected if c not in actual]
    extra = [c for c in actual if c not in expected]
    if missing:
        report.add(schema.name, None, f"missing column(s) {missing}")
    if extra:
        report.add(schema.name, None, f"unexpected column(s) {extra}")
    if not missing and not extra:
        report.add(schema.name, None, f"columns out of canonical order: {actual}")
    return not missing


def _check_primary_key(df: pd.DataFrame, schema: TableSchema, report: ValidationReport) -> None:
    key = df[schema.primary_key]
    values = pd.to_numeric(key, errors="coerce")

    bad = values.isna() | (values != np.floor(values))
    if bad.any():
        report.add(schema.name, schema.primary_key, "non-integer key value(s)", df.index[bad])
        return

    duplicated = values.duplicated(keep=False)
    if duplicated.any():
        report.add(schema.name, schema.primary_key, "duplicated key value(s)", df.index[duplicated])

    expected = set(range(len(df)))
    if set(values.astype("int64")) != expected:
        report.add(
            schema.name,
            schema.primary_key,
            f"key is not dense and zero-based (expected 0..{len(df) - 1})",
        )


def _check_required(df: pd.DataFrame, schema: TableSchema, report: ValidationReport) -> None:
    for col in schema.columns:
        if col not in schema.required or col == schema.primary_key:
            continue
        nulls = df[col].isna()
        if nulls.any():
            report.add(
                schema.name, col, f"{int(nulls.sum()):,} null value(s) in required column",
                df.index[nulls],
            )


def _check_vocabularies(df: pd.DataFrame, schema: TableSchema, report: ValidationReport) -> None:
    for col, allowed in schema.vocabularies.items():
        values = df[col]
        bad = values.notna() & ~values.isin(allowed)
        if bad.any():
            report.add(
                schema.name, col,
                f"value(s) outside vocabulary: {sorted(values[bad].astype(str).unique())[:10]}",
                df.index[bad],
            )


def validate_table(df: pd.DataFrame, table_name: str, report: ValidationReport) -> None:
    """Run the single-table checks for `table_name`."""
    schema = TABLE_SCHEMAS[table_name]
    if not _check_columns(df, schema, report):
        return
    _check_primary_key(df, schema, report)
    _check_required(df, schema, report)
    _check_vocabularies(df, schema, report)


def _check_foreign_keys(tables: Dict[str, pd.DataFrame], report: ValidationReport) -> None:
    for name, schema in TABLE_SCHEMAS.items():
        df = tables[name]
        for col, (ref_table, ref_col) in schema.foreign_keys.items():
            if col not in df.columns or ref_col not in tables[ref_table].columns:
                continue
            referenced = set(pd.to_numeric(tables[ref_table][ref_col], errors="coerce").dropna())
            values = pd.to_numeric(df[col], errors="coerce")
            orphan = df[col].notna() & ~values.isin(referenced)
            if orphan.any():
                report.add(
                    name, col,
                    f"{int(orphan.sum()):,} value(s) not found in {ref_table}.{ref_col}",
                    df.index[orphan],
                )


def _check_orphan_subjects(tables: Dict[str, pd.DataFrame], report: ValidationReport) -> None:
    subjects = tables["subjects"]
    administrations = tables["administrations"]
    if "subject_id" not in subjects.columns or "subject_id" not in administrations.columns:
        return
    orphan = ~subjects["subject_id"].isin(set(administrations["subject_id"]))
    if orphan.any():
        report.add(
            "subjects", "subject_id",
            f"{int(orphan.sum()):,} subject(s) without an administration",
            subjects.index[orphan],
        )


def _check_unique_timepoints(tables: Dict[str, pd.DataFrame], report: ValidationReport) -> None:
    for name in ("aoi_timepoints", "xy_timepoints"):
        df = tables[name]
        keys = ["trial_id", "administration_id", "t_norm"]
        if not set(keys) <= set(df.columns):
            continue
        duplicated = df.duplicated(subset=keys, keep=False)
        if duplicated.any():
            report.add(
                name, "t_norm",
                f"{int(duplicated.sum()):,} row(s) share a (trial, administration, t_norm)",
                df.index[duplicated],
            )


def validate_tables(tables: Dict[str, pd.DataFrame]) -> ValidationReport:
    """
    Validate a full set of Peekbank tables.

    Parameters
    ----------
    tables : Dict[str, pd.DataFrame]
        Table name -> table; all nine tables must be present

    Returns
    -------
    ValidationReport
        Collected violations (empty when the tables pass)
    """
    report = ValidationReport()

    missing = [name for name in TABLE_NAMES if name not in tables]
    if missing:
        report.add("*", None, f"missing table(s) {missing}")
        return report

    for name in TABLE_NAMES:
        validate_table(tables[name].reset_index(drop=True), name, report)

    normalized = {name: tables[name].reset_index(drop=True) for name in TABLE_NAMES}
    _check_foreign_keys(normalized, report)
    _check_orphan_subjects(normalized, report)
    _check_unique_timepoints(normalized, report)

    if report.ok:
        logger.info("Validation passed for all tables")
    else:
        logger.error(f"Validation failed with {len(report.violations)} violation(s)")
    return report
