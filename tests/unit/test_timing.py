"""
Unit tests for time normalization and resampling.
"""

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from peekbank.exceptions import LinkageError
from peekbank.transform.timing import (
    nearest_sample,
    normalize_times,
    resample_times,
    rezero_times,
    time_grid,
)


def _trial(times, aois, administration_id=0, trial_id=0, pod=None):
    df = pd.DataFrame({
        "administration_id": administration_id,
        "trial_id": trial_id,
        "t_norm": times,
        "aoi": aois,
    })
    if pod is not None:
        df["point_of_disambiguation"] = pod
    return df


class TestRezeroNormalize:
    """Tests for the rezero and normalize stages."""

    def test_round_trip(self):
        """Samples at 0..300 with onset 150 end up centered on the onset."""
        df = pd.DataFrame({
            "administration_id": 0,
            "trial_id": 0,
            "t": [0, 100, 200, 300],
            "point_of_disambiguation": 150,
        })
        out = normalize_times(rezero_times(df))
        assert list(out["t_norm"]) == [-150, -50, 50, 150]

    def test_rezero_absolute_clock(self):
        """Each trial starts at 0 regardless of its absolute clock."""
        df = pd.DataFrame({
            "administration_id": [0, 0, 0, 1, 1],
            "trial_id": [0, 0, 0, 1, 1],
            "t": [5000, 5033, 5067, 91000, 91010],
        })
        out = rezero_times(df)
        assert list(out["t_zeroed"]) == [0, 33, 67, 0, 10]

    def test_rezero_drops_invalid_times(self):
        """Samples without a timestamp are dropped, not zeroed."""
        df = pd.DataFrame({
            "administration_id": 0,
            "trial_id": 0,
            "t": [10, np.nan, 30],
        })
        out = rezero_times(df)
        assert len(out) == 2
        assert list(out["t_zeroed"]) == [0, 20]

    def test_missing_point_of_disambiguation_fails(self):
        """An unknown onset is an error, never a silent zero."""
        df = pd.DataFrame({
            "administration_id": [0, 0, 1],
            "trial_id": [0, 0, 1],
            "t_zeroed": [0, 100, 0],
            "point_of_disambiguation": [150, 150, np.nan],
        })
        with pytest.raises(LinkageError, match="point of disambiguation"):
            normalize_times(df)

    def test_missing_pod_column_fails(self):
        """Normalizing requires a point of disambiguation column."""
        df = pd.DataFrame({"administration_id": [0], "trial_id": [0], "t_zeroed": [0]})
        with pytest.raises(LinkageError):
            normalize_times(df)


class TestTimeGrid:
    """Tests for the shared grid helpers."""

    def test_grid_is_aligned_to_step(self):
        """Bucket bounds are rounded onto multiples of the step."""
        grid = time_grid(-37, 61, 25)
        assert list(grid) == [-25, 0, 25, 50]

    def test_nearest_sample_ties_go_earlier(self):
        """A bucket equidistant from two samples takes the earlier one."""
        idx = nearest_sample(np.array([40.0, 60.0]), np.array([50.0]), 25)
        assert list(idx) == [0]

    def test_nearest_sample_outside_tolerance(self):
        """Buckets without a sample within tolerance get -1."""
        idx = nearest_sample(np.array([0.0, 80.0]), np.array([0.0, 50.0, 100.0]), 25)
        assert list(idx) == [0, -1, 1]


class TestResample:
    """Tests for nearest-neighbour resampling."""

    def test_sample_snaps_to_nearest_bucket(self):
        """A sample at t=60 fills bucket 50 on a 50 ms grid."""
        df = _trial([0, 60], ["target", "distractor"])
        out = resample_times(df, "aoi_timepoints", step_ms=50, tolerance_ms=25)
        assert list(out["t_norm"]) == [0, 50]
        assert list(out["aoi"]) == ["target", "distractor"]

    def test_sample_within_tolerance(self):
        """A sample at t=80 fills bucket 100 within a 25 ms tolerance."""
        df = _trial([0, 80], ["target", "distractor"])
        out = resample_times(df, "aoi_timepoints", step_ms=50, tolerance_ms=25)
        assert list(out["t_norm"]) == [0, 50, 100]
        assert list(out["aoi"]) == ["target", "missing", "distractor"]

    def test_sample_beyond_tolerance_is_missing(self):
        """With a 15 ms tolerance the sample at t=80 fills nothing."""
        df = _trial([0, 80], ["target", "distractor"])
        out = resample_times(df, "aoi_timepoints", step_ms=50, tolerance_ms=15)
        assert list(out["aoi"]) == ["target", "missing", "missing"]

    def test_default_tolerance_is_half_a_step(self):
        """Without a tolerance, half a step is allowed."""
        df = _trial([0, 80], ["target", "distractor"])
        out = resample_times(df, "aoi_timepoints", step_ms=50)
        assert list(out["aoi"]) == ["target", "missing", "distractor"]

    def test_trials_keep_first_occurrence_order(self):
        """Trials are emitted in input order with ascending buckets."""
        df = pd.concat([
            _trial([0, 25], ["target", "target"], administration_id=1, trial_id=3),
            _trial([0, 25], ["distractor", "other"], administration_id=0, trial_id=0),
        ], ignore_index=True)
        out = resample_times(df, "aoi_timepoints", step_ms=25)
        assert list(out["trial_id"]) == [3, 3, 0, 0]
        assert list(out["aoi"]) == ["target", "target", "distractor", "other"]

    def test_integral_times_are_integers(self):
        """Bucket times come out as integers when the step is integral."""
        df = _trial([0.0, 24.0, 51.0], ["target", "target", "target"])
        out = resample_times(df, "aoi_timepoints", step_ms=25)
        assert out["t_norm"].dtype == np.int64

    def test_duplicate_times_keep_first(self):
        """Repeated timestamps keep the first sample."""
        df = _trial([0, 0, 25], ["target", "distractor", "other"])
        out = resample_times(df, "aoi_timepoints", step_ms=25)
        assert list(out["aoi"]) == ["target", "other"]

    def test_duplicate_times_are_logged(self, caplog):
        """Dropping a repeated timestamp is reported with its trial."""
        df = _trial([0, 0, 25], ["target", "distractor", "other"], trial_id=7)
        with caplog.at_level("WARNING"):
            resample_times(df, "aoi_timepoints", step_ms=25)
        assert "dropped 1 sample(s) repeating a timestamp" in caplog.text
        assert "'trial_id': 7" in caplog.text

    def test_series_never_borrow_neighbour_samples(self):
        """A gap in one trial is not filled from the next trial's samples."""
        df = pd.concat([
            _trial([0, 100], ["target", "target"], trial_id=0),
            _trial([50], ["distractor"], trial_id=1),
        ], ignore_index=True)
        out = resample_times(df, "aoi_timepoints", step_ms=25)

        first = out[out["trial_id"] == 0]
        assert list(first["t_norm"]) == [0, 25, 50, 75, 100]
        assert list(first["aoi"]) == ["target", "missing", "missing", "missing", "target"]
        assert list(out.loc[out["trial_id"] == 1, "aoi"]) == ["distractor"]

    def test_nearest_sample_within_series(self):
        """With series ids a bucket only matches samples of its own series."""
        times = np.array([0.0, 25.0, 0.0])
        series = np.array([0, 0, 1])
        grid = np.array([0.0, 25.0, 0.0, 25.0])
        grid_series = np.array([0, 0, 1, 1])
        idx = nearest_sample(times, grid, 10, series=series, grid_series=grid_series)
        assert list(idx) == [0, 1, 2, -1]

    def test_xy_gaps_are_nan(self):
        """Gaze buckets with no sample in range stay empty."""
        df = pd.DataFrame({
            "administration_id": 0,
            "trial_id": 0,
            "t_norm": [0, 100],
            "x": [10.0, 30.0],
            "y": [5.0, 7.0],
        })
        out = resample_times(df, "xy_timepoints", step_ms=25)
        assert list(out["t_norm"]) == [0, 25, 50, 75, 100]
        assert out["x"].isna().tolist() == [False, True, True, True, False]
        assert out.loc[4, "y"] == 7.0

    def test_trial_without_samples_yields_no_rows(self):
        """A trial whose samples are all invalid produces zero rows."""
        df = pd.concat([
            _trial([0, 25], ["target", "target"], trial_id=0),
            _trial([np.nan, np.nan], ["target", "target"], trial_id=1),
        ], ignore_index=True)
        out = resample_times(df, "aoi_timepoints", step_ms=25)
        assert set(out["trial_id"]) == {0}
        assert len(out) == 2

    def test_empty_input(self):
        """Empty input gives an empty frame with the output columns."""
        df = _trial([], [])
        out = resample_times(df, "aoi_timepoints", step_ms=25)
        assert out.empty
        assert list(out.columns) == ["administration_id", "trial_id", "t_norm", "aoi"]

    def test_unknown_table_type(self):
        """Only the two timepoint tables can be resampled."""
        with pytest.raises(ValueError):
            resample_times(_trial([0], ["target"]), "trials", step_ms=25)
