"""
Time normalization for per-trial gaze series.

This module provides the three composable stages that put every trial
on one shared clock:
- rezero_times: make each trial start at 0
- normalize_times: make 0 the point of disambiguation
- resample_times: snap each series onto the global fixed-rate grid

Each stage is a pure function of its input table and can be skipped when
the raw data already satisfies it.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..exceptions import LinkageError

logger = logging.getLogger(__name__)

TRIAL_KEYS = ["administration_id", "trial_id"]

PAYLOAD_COLUMNS: Dict[str, List[str]] = {
    "aoi_timepoints": ["aoi"],
    "xy_timepoints": ["x", "y"],
}


def _valid_times(df: pd.DataFrame, time_col: str) -> pd.DataFrame:
    out = df.copy()
    out[time_col] = pd.to_numeric(out[time_col], errors="coerce")
    n_invalid = int(out[time_col].isna().sum())
    if n_invalid:
        logger.warning(f"Dropping {n_invalid:,} sample(s) without a valid timestamp")
        out = out[out[time_col].notna()]
    return out


def rezero_times(
    df: pd.DataFrame,
    group_cols: Sequence[str] = TRIAL_KEYS,
    time_col: str = "t",
    out_col: str = "t_zeroed",
) -> pd.DataFrame:
    """
    Shift every trial so that its earliest sample is at t = 0.

    Parameters
    ----------
    df : pd.DataFrame
        Samples with absolute timestamps
    group_cols : Sequence[str]
        Columns identifying one trial series
    time_col : str
        Input timestamp column (ms)
    out_col : str
        Output column

    Returns
    -------
    pd.DataFrame
        Copy of the valid samples with `out_col` added
    """
    out = _valid_times(df, time_col)
    trial_start = out.groupby(list(group_cols), sort=False, dropna=False)[time_col].transform("min")
    out[out_col] = out[time_col] - trial_start
    return out


def normalize_times(
    df: pd.DataFrame,
    group_cols: Sequence[str] = TRIAL_KEYS,
    time_col: str = "t_zeroed",
    pod_col: str = "point_of_disambiguation",
    out_col: str = "t_norm",
) -> pd.DataFrame:
    """
    Center every trial on its point of disambiguation.

    Parameters
    ----------
    df : pd.DataFrame
        Samples with trial-relative timestamps
    group_cols : Sequence[str]
        Columns identifying one trial series (used for error reporting)
    time_col : str
        Trial-relative timestamp column (ms)
    pod_col : str
        Point of disambiguation, in the same time frame as `time_col`
    out_col : str
        Output column

    Returns
    -------
    pd.DataFrame
        Copy of the valid samples with `out_col` added

    Raises
    ------
    LinkageError
        If the point of disambiguation is absent for any trial
    """
    if pod_col not in df.columns:
        raise LinkageError(f"Cannot normalize times: no `{pod_col}` column")

    out = _valid_times(df, time_col)
    pod = pd.to_numeric(out[pod_col], errors="coerce")

    if pod.isna().any():
        missing = (
            out.loc[pod.isna(), list(group_cols)]
            .drop_duplicates()
            .to_dict(orient="records")
        )
        raise LinkageError(
            f"Cannot normalize times: {len(missing)} trial(s) without a "
            f"point of disambiguation: {missing[:10]}"
        )

    out[out_col] = out[time_col] - pod
    return out


def time_grid(t_min: float, t_max: float, step_ms: float) -> np.ndarray:
    """Buckets on the global grid (multiples of `step_ms`) spanning [t_min, t_max]."""
    first = np.floor(t_min / step_ms + 0.5)
    last = np.floor(t_max / step_ms + 0.5)
    return np.arange(first, last + 1) * step_ms


def nearest_sample(
    times: np.ndarray,
    grid: np.ndarray,
    tolerance_ms: float,
    series: Optional[np.ndarray] = None,
    grid_series: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Index of the nearest sample for each grid bucket, or -1.

    `times` must be sorted ascending (within each series when `series`
    is given). Ties go to the earlier sample and buckets with no sample
    within `tolerance_ms` get -1.

    Parameters
    ----------
    times : np.ndarray
        Sample times
    grid : np.ndarray
        Bucket times
    tolerance_ms : float
        Largest allowed distance to the chosen sample
    series, grid_series : Optional[np.ndarray]
        Non-decreasing integer series ids of the samples and buckets.
        A bucket only matches samples of its own series.
    """
    if len(times) == 0:
        return np.full(len(grid), -1, dtype="int64")

    if series is None:
        right = np.searchsorted(times, grid, side="left")
    else:
        # Lay the series end to end so one search covers all of them
        lo = min(times.min(), grid.min())
        span = max(times.max(), grid.max()) - lo + 1.0
        right = np.searchsorted(series * span + (times - lo), grid_series * span + (grid - lo), side="left")

    left = np.clip(right - 1, 0, len(times) - 1)
    right = np.clip(right, 0, len(times) - 1)

    dist_left = np.abs(grid - times[left])
    dist_right = np.abs(times[right] - grid)
    if series is not None:
        dist_left = np.where(series[left] == grid_series, dist_left, np.inf)
        dist_right = np.where(series[right] == grid_series, dist_right, np.inf)

    idx = np.where(dist_right < dist_left, right, left)
    dist = np.minimum(dist_left, dist_right)
    return np.where(dist <= tolerance_ms, idx, -1)


def resample_times(
    df: pd.DataFrame,
    table_type: str,
    step_ms: float,
    tolerance_ms: Optional[float] = None,
    group_cols: Sequence[str] = TRIAL_KEYS,
    time_col: str = "t_norm",
) -> pd.DataFrame:
    """
    Resample every trial series onto the shared fixed-rate grid.

    For each bucket the nearest original sample is taken (no
    interpolation). Buckets with no sample within the tolerance are
    marked "missing" (AOI) or left NaN (xy). When a series repeats a
    timestamp, the first sample at that time is kept and the drop is
    logged.

    Parameters
    ----------
    df : pd.DataFrame
        Normalized samples
    table_type : str
        "aoi_timepoints" or "xy_timepoints"; selects the payload columns
    step_ms : float
        Grid step shared by all datasets
    tolerance_ms : Optional[float]
        Largest allowed distance to the chosen sample; half a step if None
    group_cols : Sequence[str]
        Columns identifying one trial series
    time_col : str
        Normalized time column

    Returns
    -------
    pd.DataFrame
        `group_cols` + `time_col` + payload, one row per bucket, trials in
        first-occurrence order and buckets ascending
    """
    if table_type not in PAYLOAD_COLUMNS:
        raise ValueError(f"Unknown table_type: {table_type}")
    payload = PAYLOAD_COLUMNS[table_type]
    if tolerance_ms is None:
        tolerance_ms = step_ms / 2

    missing_cols = [c for c in [*group_cols, time_col, *payload] if c not in df.columns]
    if missing_cols:
        raise LinkageError(f"Cannot resample {table_type}: missing column(s) {missing_cols}")

    group_cols = list(group_cols)
    columns = [*group_cols, time_col, *payload]

    valid = _valid_times(df, time_col)
    if valid.empty:
        return pd.DataFrame(columns=columns)

    valid = valid.assign(
        _series=valid.groupby(group_cols, sort=False, dropna=False).ngroup(),
        _pos=np.arange(len(valid)),
    )
    valid = valid.sort_values(["_series", time_col, "_pos"]).reset_index(drop=True)

    duplicated = valid.duplicated(subset=["_series", time_col], keep="first")
    if duplicated.any():
        series_hit = valid.loc[duplicated, group_cols].drop_duplicates()
        logger.warning(
            f"{table_type}: dropped {int(duplicated.sum()):,} sample(s) repeating a "
            f"timestamp in {len(series_hit):,} trial series, e.g. "
            f"{series_hit.head(5).to_dict(orient='records')}"
        )
        valid = valid[~duplicated].reset_index(drop=True)

    times = valid[time_col].to_numpy(dtype=float)
    series = valid["_series"].to_numpy()

    bounds = valid.groupby("_series", sort=True)[time_col].agg(["min", "max"])
    first = np.floor(bounds["min"].to_numpy(dtype=float) / step_ms + 0.5)
    last = np.floor(bounds["max"].to_numpy(dtype=float) / step_ms + 0.5)
    n_buckets = (last - first + 1).astype("int64")

    grid_series = np.repeat(bounds.index.to_numpy(), n_buckets)
    starts = np.repeat(np.cumsum(n_buckets) - n_buckets, n_buckets)
    grid = (np.repeat(first, n_buckets) + (np.arange(n_buckets.sum()) - starts)) * step_ms

    idx = nearest_sample(times, grid, tolerance_ms, series=series, grid_series=grid_series)
    found = idx >= 0

    keys = valid.drop_duplicates(subset=["_series"]).set_index("_series")[group_cols]
    out = keys.loc[grid_series].reset_index(drop=True)
    out[time_col] = grid

    for col in payload:
        values = valid[col].to_numpy(dtype=object)
        column = np.full(len(grid), None, dtype=object)
        column[found] = values[idx[found]]
        out[col] = column

    if table_type == "aoi_timepoints":
        out["aoi"] = out["aoi"].where(out["aoi"].notna(), "missing")
    else:
        for col in payload:
            out[col] = pd.to_numeric(out[col], errors="coerce")

    out = out[columns]
    if np.all(np.mod(out[time_col], 1) == 0):
        out[time_col] = out[time_col].astype("int64")
    logger.info(
        f"Resampled {len(valid):,} samples from {len(bounds):,} trial(s) into "
        f"{len(out):,} {table_type} rows ({step_ms:g} ms step)"
    )
    return out
