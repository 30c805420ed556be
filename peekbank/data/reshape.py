"""
Reshaping helpers that turn raw export layouts into long observations.

This module provides:
- Column name cleanup for raw exports (snake_case, repeated headers)
- Relabeling of coded-looking time-bin columns to signed millisecond offsets
- Wide-to-long pivot of time-offset columns
- Trial segmentation of sample logs with interleaved message rows
- Replicate marking for subjects who saw the same order more than once
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import LinkageError

logger = logging.getLogger(__name__)

_OFFSET_PATTERN = re.compile(r"^-?\d+$")


def clean_name(name: str) -> str:
    """Convert a raw column header to snake_case.

    Headers that start with a digit or a minus sign get an "x" prefix so
    that the result is a valid identifier ("-600" -> "x600").
    """
    s = str(name).strip()
    s = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s)
    s = re.sub(r"[^0-9a-zA-Z]+", "_", s).strip("_").lower()
    if not s:
        return "x"
    if s[0].isdigit():
        s = "x" + s
    return s


def clean_names(df: pd.DataFrame) -> pd.DataFrame:
    """Apply `clean_name` to every column, de-duplicating collisions."""
    seen: Dict[str, int] = {}
    new_columns = []
    for col in df.columns:
        name = clean_name(col)
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        new_columns.append(name)
    out = df.copy()
    out.columns = new_columns
    return out


def remove_repeat_headers(df: pd.DataFrame, idx_col: str) -> pd.DataFrame:
    """Drop header lines repeated inside the data.

    A row is a repeated header when its `idx_col` value cleans to the
    (already cleaned) column name.
    """
    mask = df[idx_col].astype(str).map(clean_name) != idx_col
    dropped = int((~mask).sum())
    if dropped:
        logger.info(f"Removed {dropped} repeated header row(s)")
    return df[mask].reset_index(drop=True)


def drop_empty_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Remove columns with no non-null values."""
    keep = df.columns[df.notna().any(axis=0)]
    return df[keep]


def relabel_time_bins(
    columns: Sequence[str],
    sample_rate_hz: float,
    pre_prefix: str = "x",
    post_prefix: str = "f",
) -> Dict[str, str]:
    """
    Map coded-looking time-bin headers to signed millisecond offsets.

    Pre-onset frames are numbered without timing information, so the
    n-th of `k` pre-onset columns is placed at -(k - n + 1) frame
    intervals. Post-onset headers already carry the offset in ms.

    Parameters
    ----------
    columns : Sequence[str]
        Column names after cleanup
    sample_rate_hz : float
        Native coding rate (frames per second)
    pre_prefix : str
        Prefix of the pre-onset frame columns
    post_prefix : str
        Prefix of the post-onset columns

    Returns
    -------
    Dict[str, str]
        Old name -> offset label, only for time-bin columns
    """
    interval_ms = 1000.0 / sample_rate_hz
    pre = [c for c in columns if re.fullmatch(rf"{re.escape(pre_prefix)}\d+", c)]
    post = [c for c in columns if re.fullmatch(rf"{re.escape(post_prefix)}\d+", c)]

    mapping: Dict[str, str] = {}
    n_pre = len(pre)
    for i, col in enumerate(pre):
        mapping[col] = str(int(round(-(n_pre - i) * interval_ms)))
    for col in post:
        mapping[col] = col[len(post_prefix):]
    return mapping


def time_offset_columns(df: pd.DataFrame) -> List[str]:
    """Columns whose names parse as signed integer offsets."""
    return [c for c in df.columns if _OFFSET_PATTERN.match(str(c))]


def pivot_time_columns(
    df: pd.DataFrame,
    value_name: str = "aoi",
    time_name: str = "t",
    max_offset: Optional[int] = None,
) -> pd.DataFrame:
    """
    Explode one row per (row, time-offset column) pair.

    Every column whose name is a signed integer is treated as a time
    coordinate; all other columns are carried along. Output rows follow
    the input row order, then ascending column position.

    Parameters
    ----------
    df : pd.DataFrame
        Wide table, one row per trial
    value_name : str
        Name of the value column in the output
    time_name : str
        Name of the time column in the output
    max_offset : Optional[int]
        Offsets beyond this value are dropped (late frames are rarely
        coded)

    Returns
    -------
    pd.DataFrame
        Long table with numeric `time_name`
    """
    time_cols = time_offset_columns(df)
    if not time_cols:
        raise LinkageError("No time-offset columns found to pivot")
    if max_offset is not None:
        time_cols = [c for c in time_cols if int(c) <= max_offset]

    id_cols = [c for c in df.columns if c not in time_cols and not _OFFSET_PATTERN.match(str(c))]
    wide = df[id_cols + time_cols].copy()
    wide["_row"] = np.arange(len(wide))

    long = wide.melt(
        id_vars=id_cols + ["_row"],
        value_vars=time_cols,
        var_name=time_name,
        value_name=value_name,
    )
    position = {c: i for i, c in enumerate(time_cols)}
    long["_col"] = long[time_name].map(position)
    long = long.sort_values(["_row", "_col"], kind="mergesort")
    long[time_name] = long[time_name].astype(int)

    logger.info(
        f"Pivoted {len(df):,} rows x {len(time_cols)} time bins "
        f"into {len(long):,} observations"
    )
    return long.drop(columns=["_row", "_col"]).reset_index(drop=True)


def split_event_log(
    df: pd.DataFrame,
    time_col: str,
    message_col: str,
    trial_start: str,
    target_onset: Optional[str] = None,
    trial_end: Optional[str] = None,
) -> pd.DataFrame:
    """
    Segment a sample log with interleaved message rows into trials.

    Rows with a non-empty message are events; all other rows are gaze
    samples. Rows are scanned in order carrying the current trial index,
    the trial start time and whether a trial is open. Samples outside an
    open trial are dropped.

    Parameters
    ----------
    df : pd.DataFrame
        Raw log rows in recording order
    time_col : str
        Absolute timestamp column (ms)
    message_col : str
        Message/event column
    trial_start : str
        Regular expression matching the trial-start message
    target_onset : Optional[str]
        Regular expression matching the target-naming onset message
    trial_end : Optional[str]
        Regular expression matching the trial-end message

    Returns
    -------
    pd.DataFrame
        Sample rows with `trial_index`, trial-relative `t` and
        `point_of_disambiguation` (relative to trial start, NaN when the
        trial had no onset message)
    """
    start_re = re.compile(trial_start)
    onset_re = re.compile(target_onset) if target_onset else None
    end_re = re.compile(trial_end) if trial_end else None

    times = pd.to_numeric(df[time_col], errors="coerce").to_numpy(dtype=float)
    messages = df[message_col].to_numpy(dtype=object)

    trial_index = -1
    start_time = np.nan
    is_open = False
    onsets: Dict[int, float] = {}
    keep_rows: List[int] = []
    sample_trials: List[int] = []
    sample_times: List[float] = []

    for i, (time, message) in enumerate(zip(times, messages)):
        if isinstance(message, str) and message.strip():
            if start_re.search(message):
                trial_index += 1
                start_time = time
                is_open = True
            elif onset_re is not None and is_open and onset_re.search(message):
                onsets[trial_index] = time - start_time
            elif end_re is not None and end_re.search(message):
                is_open = False
            continue

        if is_open and not np.isnan(time):
            keep_rows.append(i)
            sample_trials.append(trial_index)
            sample_times.append(time - start_time)

    samples = df.iloc[keep_rows].drop(columns=[message_col]).copy()
    samples["trial_index"] = sample_trials
    samples["t"] = sample_times
    samples["point_of_disambiguation"] = samples["trial_index"].map(onsets)

    logger.info(
        f"Segmented {len(df):,} log rows into {trial_index + 1} trial(s), "
        f"{len(samples):,} samples"
    )
    return samples.reset_index(drop=True)


def number_trial_runs(df: pd.DataFrame, cols: Sequence[str]) -> pd.Series:
    """
    Number consecutive runs of rows that share the same trial.

    A new run starts whenever any of `cols` changes from the previous
    row, so a trial replayed later in the file gets a new number even
    though its columns repeat an earlier run. Rows must be in recording
    order.

    Parameters
    ----------
    df : pd.DataFrame
        Samples in scan order
    cols : Sequence[str]
        Columns that together name a trial; nulls compare equal

    Returns
    -------
    pd.Series
        Zero-based run number per row
    """
    # String form so that null == null
    keys = df[list(cols)].astype(str)
    changed = keys.ne(keys.shift()).any(axis=1)
    return (changed.cumsum() - 1).astype("int64")


def mark_replicates(
    df: pd.DataFrame,
    instance_col: str = "trial_instance",
    subject_col: str = "lab_subject_id",
    order_col: str = "administration_order",
    trial_col: str = "trial_order",
    out_col: str = "replicate",
) -> pd.DataFrame:
    """
    Number repeated presentations of the same order to the same subject.

    Each distinct `instance_col` value is one raw trial occurrence. The
    k-th occurrence (in scan order) of a given (subject, order, trial
    position) gets replicate index k, so a subject who saw an identical
    order twice yields two administrations instead of one.

    Parameters
    ----------
    df : pd.DataFrame
        Observations carrying a per-occurrence identifier
    instance_col : str
        Column identifying one raw trial occurrence
    subject_col, order_col, trial_col : str
        Columns that together name a nominal trial
    out_col : str
        Output column

    Returns
    -------
    pd.DataFrame
        Copy of `df` with `out_col` added
    """
    group_cols = [c for c in (subject_col, order_col, trial_col) if c in df.columns]
    instances = df.drop_duplicates(subset=[instance_col])[[instance_col, *group_cols]]
    replicate = instances.groupby(group_cols, sort=False, dropna=False).cumcount()
    lookup = pd.Series(replicate.to_numpy(), index=instances[instance_col].to_numpy())

    out = df.copy()
    out[out_col] = out[instance_col].map(lookup).astype(int)

    n_repeated = int((replicate > 0).sum())
    if n_repeated:
        logger.warning(
            f"{n_repeated} trial occurrence(s) repeat an earlier order for the "
            f"same subject; marked as separate replicates"
        )
    return out
