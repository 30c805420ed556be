"""
Conversion of the three raw export shapes into canonical observations.

Supported shapes:
- Wide coded-looking grids: one row per trial, one column per time bin
- Long sample logs with message/event rows interleaved with samples
- Per-sample AOI codes or flags, already one row per sample

Demographics from a separate participant file are joined with
`attach_participants`.

Each reader renames lab columns onto the canonical observation columns
(`peekbank.data.schema.OBSERVATION_COLUMNS`) through an explicit column
map and tags every raw trial occurrence with `trial_instance`.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import LinkageError
from ..transform.derive import aoi_from_flags
from .reshape import (
    clean_names,
    drop_empty_columns,
    number_trial_runs,
    pivot_time_columns,
    relabel_time_bins,
    remove_repeat_headers,
    split_event_log,
)

logger = logging.getLogger(__name__)


def _rename(df: pd.DataFrame, column_map: Optional[Mapping[str, str]]) -> pd.DataFrame:
    if not column_map:
        return df
    missing = [c for c in column_map if c not in df.columns]
    if missing:
        raise LinkageError(f"Column map refers to missing raw column(s): {missing}")
    return df.rename(columns=dict(column_map))


def observations_from_wide_grid(
    raw: pd.DataFrame,
    sample_rate_hz: float,
    column_map: Optional[Mapping[str, str]] = None,
    header_col: Optional[str] = None,
    subject_col: str = "lab_subject_id",
    pre_prefix: str = "x",
    post_prefix: str = "f",
    max_offset: Optional[int] = None,
) -> pd.DataFrame:
    """
    Convert a coded-looking grid into long observations.

    Parameters
    ----------
    raw : pd.DataFrame
        Raw grid as loaded (one row per trial); a `raw_row` column, when
        present, identifies each trial occurrence
    sample_rate_hz : float
        Native coding rate used to place unlabeled pre-onset frames
    column_map : Optional[Mapping[str, str]]
        Cleaned raw column name -> canonical observation column
    header_col : Optional[str]
        Cleaned name of a column used to spot repeated header lines
    subject_col : str
        Canonical subject column; rows without a subject are dropped
    pre_prefix, post_prefix : str
        Prefixes of the pre- and post-onset time-bin columns
    max_offset : Optional[int]
        Offsets (ms) past this value are dropped

    Returns
    -------
    pd.DataFrame
        One row per (trial, time bin) with `t` and raw `aoi` codes
    """
    df = clean_names(raw)
    if header_col is not None:
        df = remove_repeat_headers(df, header_col)
    df = drop_empty_columns(df)

    df = df.rename(columns=relabel_time_bins(list(df.columns), sample_rate_hz, pre_prefix, post_prefix))
    df = _rename(df, column_map)

    if subject_col in df.columns:
        n_before = len(df)
        df = df[df[subject_col].notna()]
        if len(df) < n_before:
            logger.info(f"Dropped {n_before - len(df)} row(s) without a subject")

    if "trial_instance" not in df.columns:
        df["trial_instance"] = df["raw_row"] if "raw_row" in df.columns else np.arange(len(df))

    return pivot_time_columns(df, value_name="aoi", time_name="t", max_offset=max_offset)


def observations_from_event_log(
    raw: pd.DataFrame,
    time_col: str,
    message_col: str,
    trial_start: str,
    target_onset: Optional[str] = None,
    trial_end: Optional[str] = None,
    column_map: Optional[Mapping[str, str]] = None,
    trials: Optional[pd.DataFrame] = None,
    session_cols: Sequence[str] = ("lab_subject_id",),
) -> pd.DataFrame:
    """
    Convert a sample log with interleaved messages into observations.

    Times come out trial-relative (0 at the trial-start message) and the
    point of disambiguation is taken from the onset message, so callers
    skip the rezero stage.

    Parameters
    ----------
    raw : pd.DataFrame
        Log rows in recording order, one recording session per
        distinct value of `session_cols`
    time_col, message_col : str
        Raw timestamp and message columns
    trial_start, target_onset, trial_end : str
        Message patterns (regular expressions)
    column_map : Optional[Mapping[str, str]]
        Raw column -> canonical observation column, applied after
        segmentation
    trials : Optional[pd.DataFrame]
        Trial list merged on `trial_index` (and the session columns it
        shares with the log) to supply labels and sides
    session_cols : Sequence[str]
        Canonical columns identifying one recording session

    Returns
    -------
    pd.DataFrame
        Observations with `trial_index`, `trial_instance`, `t` and
        `point_of_disambiguation`
    """
    renamed = _rename(raw, column_map)
    time_col = (column_map or {}).get(time_col, time_col)
    message_col = (column_map or {}).get(message_col, message_col)

    session_cols = [c for c in session_cols if c in renamed.columns]
    sessions: List[pd.DataFrame] = []
    groups = renamed.groupby(session_cols, sort=False) if session_cols else [(None, renamed)]
    for _, session in groups:
        samples = split_event_log(
            session,
            time_col=time_col,
            message_col=message_col,
            trial_start=trial_start,
            target_onset=target_onset,
            trial_end=trial_end,
        )
        if time_col != "t":
            samples = samples.drop(columns=[time_col])
        sessions.append(samples)

    observations = pd.concat(sessions, ignore_index=True)

    if trials is not None:
        on = ["trial_index"] + [c for c in session_cols if c in trials.columns]
        observations = observations.merge(trials, on=on, how="left", sort=False, validate="many_to_one")

    instance_cols = session_cols + ["trial_index"]
    observations["trial_instance"] = observations.groupby(
        instance_cols, sort=False
    ).ngroup()
    return observations


def observations_from_sample_codes(
    raw: pd.DataFrame,
    column_map: Optional[Mapping[str, str]] = None,
    flag_columns: Optional[Dict[str, Optional[str]]] = None,
    instance_cols: Sequence[str] = ("lab_subject_id", "trial_order"),
) -> pd.DataFrame:
    """
    Convert per-sample AOI codes (or 0/1 flags) into observations.

    Parameters
    ----------
    raw : pd.DataFrame
        One row per sample
    column_map : Optional[Mapping[str, str]]
        Raw column -> canonical observation column
    flag_columns : Optional[Dict[str, Optional[str]]]
        When the raw data carries flags instead of codes: keyword
        arguments for `aoi_from_flags` (target_col, distractor_col,
        track_loss_col)
    instance_cols : Sequence[str]
        Canonical columns that together name a trial; each consecutive
        run of rows sharing them is one trial occurrence, so a replayed
        order gets new occurrences

    Returns
    -------
    pd.DataFrame
        Observations with `aoi` and `trial_instance`
    """
    observations = _rename(raw, column_map).copy()

    if flag_columns is not None:
        observations["aoi"] = aoi_from_flags(observations, **flag_columns)

    missing = [c for c in instance_cols if c not in observations.columns]
    if missing:
        raise LinkageError(f"Cannot identify trials: missing column(s) {missing}")

    observations["trial_instance"] = number_trial_runs(observations, instance_cols)
    return observations


def attach_participants(
    observations: pd.DataFrame,
    participants: pd.DataFrame,
    column_map: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    """
    Merge subject demographics onto observations by `lab_subject_id`.

    Columns already present in the observations win; participants
    without observations are ignored and observations without a
    participant row keep null demographics.

    Raises
    ------
    LinkageError
        If a lab subject id appears more than once in `participants`
    """
    participants = _rename(participants, column_map)
    if "lab_subject_id" not in participants.columns:
        raise LinkageError("Participant table has no `lab_subject_id` column")

    participants = participants.assign(
        lab_subject_id=participants["lab_subject_id"].astype(str).str.strip()
    )
    duplicated = participants["lab_subject_id"].duplicated(keep=False)
    if duplicated.any():
        raise LinkageError(
            f"Participant table lists subject(s) more than once: "
            f"{sorted(participants.loc[duplicated, 'lab_subject_id'].unique())}"
        )

    shared = [c for c in participants.columns if c in observations.columns and c != "lab_subject_id"]
    if shared:
        logger.info(f"Keeping observation values for participant column(s) {shared}")
        participants = participants.drop(columns=shared)

    observations = observations.assign(
        lab_subject_id=observations["lab_subject_id"].astype(str).str.strip()
    )
    unmatched = ~observations["lab_subject_id"].isin(set(participants["lab_subject_id"]))
    if unmatched.any():
        logger.warning(
            f"{observations.loc[unmatched, 'lab_subject_id'].nunique()} subject(s) "
            f"have no participant record"
        )

    merged = observations.merge(
        participants, on="lab_subject_id", how="left", sort=False, validate="many_to_one"
    )
    merged.index = observations.index
    return merged
