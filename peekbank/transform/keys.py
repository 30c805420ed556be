"""
Surrogate key assignment and entity de-duplication.

This module provides:
- assign_ids: distinct identity tuples -> dimension table + keyed facts
- assign_stimulus_ids: stimuli drawn from target and distractor columns
- find_conflicts / resolve_conflicts: surface entities whose supposedly
  constant attributes disagree, resolving only through explicit overrides

Keys are dense, zero-based and follow first occurrence in input row
order, so identical input always yields identical keys.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..exceptions import IdentityConflictError, LinkageError

logger = logging.getLogger(__name__)


def dense_ids(n: int) -> np.ndarray:
    """Zero-based contiguous ids for `n` rows."""
    return np.arange(n, dtype="int64")


def assign_ids(
    df: pd.DataFrame,
    identity_cols: Sequence[str],
    id_col: str,
    attribute_cols: Optional[Sequence[str]] = None,
    entity: Optional[str] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Assign a surrogate key to every distinct identity tuple.

    Parameters
    ----------
    df : pd.DataFrame
        Denormalized table
    identity_cols : Sequence[str]
        Columns that together define the entity; nulls compare equal
    id_col : str
        Name of the new key column
    attribute_cols : Optional[Sequence[str]]
        Extra columns copied into the dimension table: the first
        non-null value of each entity
    entity : Optional[str]
        Entity name. When given, an entity whose attribute takes more
        than one non-null value is an error.

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (dimension table in first-occurrence order with `id_col` first,
        copy of `df` with `id_col` joined back in the original row order)

    Raises
    ------
    IdentityConflictError
        If `entity` is given and an attribute conflicts within an entity
    """
    identity_cols = list(identity_cols)
    attribute_cols = [c for c in (attribute_cols or []) if c not in identity_cols]

    missing = [c for c in identity_cols + attribute_cols if c not in df.columns]
    if missing:
        raise LinkageError(f"Cannot assign {id_col}: missing column(s) {missing}")

    facts = df.drop(columns=[id_col]) if id_col in df.columns else df

    dimension = (
        facts.drop_duplicates(subset=identity_cols, keep="first")
        [identity_cols + attribute_cols]
        .reset_index(drop=True)
    )
    dimension.insert(0, id_col, dense_ids(len(dimension)))

    keyed = facts.merge(
        dimension[identity_cols + [id_col]],
        on=identity_cols,
        how="left",
        sort=False,
        validate="many_to_one",
    )
    keyed.index = facts.index

    unmatched = int(keyed[id_col].isna().sum())
    if unmatched:
        raise LinkageError(f"{unmatched} row(s) could not be matched to a {id_col}")

    keyed[id_col] = keyed[id_col].astype("int64")

    if entity is not None and attribute_cols:
        _raise_on_conflicts(keyed, dimension, identity_cols, id_col, attribute_cols, entity)

    for col in attribute_cols:
        if dimension[col].isna().any():
            firsts = keyed.groupby(id_col, sort=False)[col].first()
            dimension[col] = dimension[col].where(
                dimension[col].notna(), dimension[id_col].map(firsts)
            )

    logger.info(f"Assigned {len(dimension):,} {id_col} value(s) from {len(df):,} rows")
    return dimension, keyed


def _raise_on_conflicts(
    keyed: pd.DataFrame,
    dimension: pd.DataFrame,
    identity_cols: List[str],
    id_col: str,
    attribute_cols: List[str],
    entity: str,
) -> None:
    conflicts = find_conflicts(keyed, id_col, attribute_cols)
    if conflicts.empty:
        return

    identities = dimension.set_index(id_col)[identity_cols]
    for record in conflicts.to_dict(orient="records"):
        identity = identities.loc[record[id_col]].to_dict()
        logger.error(
            f"{entity}: {identity} has conflicting `{record['column']}` "
            f"values {record['values']}"
        )
    raise IdentityConflictError(entity, conflicts)


STIMULUS_SLOTS = ("target", "distractor")


def assign_stimulus_ids(df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Build the stimulus dimension from target and distractor columns.

    A stimulus is a distinct (label, image) pair. Rows are scanned in
    order, target before distractor, so the first stimulus seen gets
    id 0. `target_id` and `distractor_id` are joined back onto `df`.

    Parameters
    ----------
    df : pd.DataFrame
        Observations with `{slot}_label`, `{slot}_image` and
        `{slot}_novelty` for slot in (target, distractor)

    Returns
    -------
    Tuple[pd.DataFrame, pd.DataFrame]
        (stimuli with `stimulus_id`, `label`, `image`, `novelty`;
        keyed observations)
    """
    for slot in STIMULUS_SLOTS:
        unlabeled = df[f"{slot}_label"].isna()
        if unlabeled.any():
            raise LinkageError(
                f"{int(unlabeled.sum()):,} row(s) have no {slot} stimulus label"
            )

    pair_cols = [f"{slot}_{part}" for slot in STIMULUS_SLOTS for part in ("label", "image", "novelty")]
    pairs = df[pair_cols].drop_duplicates().reset_index(drop=True)

    slots: List[pd.DataFrame] = []
    for position, slot in enumerate(STIMULUS_SLOTS):
        part = pairs[[f"{slot}_label", f"{slot}_image", f"{slot}_novelty"]].set_axis(
            ["label", "image", "novelty"], axis=1
        )
        part = part.assign(_row=np.arange(len(part)), _slot=position)
        slots.append(part)
    scanned = pd.concat(slots, ignore_index=True).sort_values(["_row", "_slot"], kind="mergesort")

    stimuli, _ = assign_ids(scanned, ["label", "image"], "stimulus_id", ["novelty"], entity="stimuli")

    keyed = df
    for slot in STIMULUS_SLOTS:
        lookup = stimuli[["label", "image", "stimulus_id"]].rename(columns={
            "label": f"{slot}_label",
            "image": f"{slot}_image",
            "stimulus_id": f"{slot}_id",
        })
        keyed = _join_key(keyed, lookup, [f"{slot}_label", f"{slot}_image"], f"{slot}_id")

    return stimuli, keyed


def _join_key(
    df: pd.DataFrame,
    lookup: pd.DataFrame,
    on: List[str],
    id_col: str,
) -> pd.DataFrame:
    facts = df.drop(columns=[id_col]) if id_col in df.columns else df
    keyed = facts.merge(lookup, on=on, how="left", sort=False, validate="many_to_one")
    keyed.index = facts.index
    if keyed[id_col].isna().any():
        raise LinkageError(f"{int(keyed[id_col].isna().sum())} row(s) without a {id_col}")
    keyed[id_col] = keyed[id_col].astype("int64")
    return keyed


def find_conflicts(
    df: pd.DataFrame,
    key_col: str,
    attribute_cols: Sequence[str],
) -> pd.DataFrame:
    """
    Find entities whose attributes take more than one non-null value.

    Returns
    -------
    pd.DataFrame
        One row per (key, attribute) conflict with the distinct values
        observed, in first-occurrence order
    """
    records: List[Dict[str, Any]] = []
    for col in attribute_cols:
        if col not in df.columns:
            continue
        distinct = df[[key_col, col]].dropna().drop_duplicates()
        counts = distinct.groupby(key_col, sort=False)[col].transform("size")
        conflicting = distinct[counts > 1]
        for key, values in conflicting.groupby(key_col, sort=False)[col]:
            records.append({key_col: key, "column": col, "values": list(values)})
    return pd.DataFrame(records, columns=[key_col, "column", "values"])


def resolve_conflicts(
    df: pd.DataFrame,
    key_col: str,
    attribute_cols: Sequence[str],
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    entity: str = "subjects",
) -> pd.DataFrame:
    """
    Make per-entity attributes constant, failing on unresolved conflicts.

    Overrides replace the recorded values of the named entities before
    conflicts are checked. Remaining nulls are then filled from the
    entity's first non-null value.

    Parameters
    ----------
    df : pd.DataFrame
        Denormalized table
    key_col : str
        Entity key (e.g. lab_subject_id)
    attribute_cols : Sequence[str]
        Attributes expected to be constant per entity
    overrides : Optional[Dict[str, Dict[str, Any]]]
        {key: {column: canonical value}}; keys are matched as strings
    entity : str
        Entity name used in messages

    Returns
    -------
    pd.DataFrame
        Copy of `df` with constant attributes

    Raises
    ------
    IdentityConflictError
        If any entity still has conflicting values
    """
    out = df.copy()
    attribute_cols = [c for c in attribute_cols if c in out.columns]
    key_as_str = out[key_col].astype(str)

    for key, values in (overrides or {}).items():
        mask = key_as_str == str(key)
        if not mask.any():
            logger.warning(f"{entity}: override for unknown {key_col} {key!r} ignored")
            continue
        for col, value in values.items():
            if col not in attribute_cols:
                raise ValueError(f"{entity}: override for non-attribute column {col!r}")
            previous = out.loc[mask, col].dropna().unique().tolist()
            out.loc[mask, col] = value
            logger.warning(
                f"{entity}: {key_col} {key!r} `{col}` set to {value!r} "
                f"(recorded: {previous})"
            )

    conflicts = find_conflicts(out, key_col, attribute_cols)
    if not conflicts.empty:
        for record in conflicts.to_dict(orient="records"):
            logger.error(
                f"{entity}: {key_col} {record[key_col]!r} has conflicting "
                f"`{record['column']}` values {record['values']}"
            )
        raise IdentityConflictError(entity, conflicts)

    for col in attribute_cols:
        out[col] = out.groupby(key_col, sort=False, dropna=False)[col].transform("first")

    return out
