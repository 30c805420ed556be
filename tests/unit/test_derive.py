"""
Unit tests for column derivations.
"""

import json

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from peekbank.exceptions import LinkageError
from peekbank.transform.derive import (
    aoi_from_flags,
    aoi_from_xy,
    build_full_phrase,
    cdi_aux_data,
    map_aoi_codes,
    normalize_age,
    normalize_ages,
    standardize_sex,
    standardize_target_side,
)


class TestTargetSide:
    """Tests for target side standardization."""

    def test_coder_perspective_flips(self):
        """A coder-perspective "l" is the participant's right."""
        out = standardize_target_side(pd.Series(["l", "R"]), perspective="coder")
        assert list(out) == ["right", "left"]

    def test_participant_perspective_keeps_side(self):
        """Participant-perspective codes are only standardized."""
        out = standardize_target_side(pd.Series(["L", "right", " r "]))
        assert list(out) == ["left", "right", "right"]

    def test_null_stays_null(self):
        """Missing sides are not guessed."""
        out = standardize_target_side(pd.Series(["l", None]))
        assert out.iloc[0] == "left"
        assert pd.isna(out.iloc[1])

    def test_unknown_code_fails(self):
        """Codes other than left/right are rejected."""
        with pytest.raises(LinkageError, match="center"):
            standardize_target_side(pd.Series(["center"]))


class TestAges:
    """Tests for age normalization to months."""

    def test_whole_years_map_to_mid_year(self):
        """'2 years' is 30 months."""
        age, lab_age, units = normalize_age("2 years")
        assert age == 30
        assert lab_age == 2
        assert units == "years"

    def test_fractional_years(self):
        """Fractional years are converted exactly."""
        age, _, _ = normalize_age(2.5, "years")
        assert age == pytest.approx(30.0)

    def test_months_unchanged(self):
        """Months pass through; bare numbers default to months."""
        assert normalize_age("18mo")[0] == 18
        assert normalize_age(18)[0] == 18
        assert normalize_age(18)[2] == "months"

    def test_days(self):
        """Days are converted at 365.25 days per year."""
        age, _, units = normalize_age(365.25, "days")
        assert age == pytest.approx(12.0)
        assert units == "days"

    def test_unparsable_age(self):
        """Free text that is not an age fails loudly."""
        with pytest.raises(LinkageError):
            normalize_age("about two")

    def test_normalize_ages_frame(self):
        """The frame helper adds `age` and keeps raw value and units."""
        df = pd.DataFrame({
            "lab_age": ["24", "2 years", None],
            "lab_age_units": [None, None, None],
        })
        out = normalize_ages(df)
        assert list(out["age"][:2]) == [24, 30]
        assert np.isnan(out["age"].iloc[2])
        assert list(out["lab_age"][:2]) == [24, 2]
        assert list(out["lab_age_units"][:2]) == ["months", "years"]


class TestAoiMapping:
    """Tests for AOI code mapping."""

    def test_icoder_codes(self):
        """Default codes map onto the closed vocabulary."""
        codes = pd.Series(["1", "0", "0.5", ".", "-"])
        assert list(map_aoi_codes(codes)) == [
            "target", "distractor", "other", "missing", "missing"
        ]

    def test_unknown_codes_are_missing(self):
        """Unrecognized and absent codes become missing, never dropped."""
        codes = pd.Series(["9", None, "1"])
        out = map_aoi_codes(codes)
        assert len(out) == 3
        assert list(out) == ["missing", "missing", "target"]

    def test_canonical_labels_pass_through(self):
        """Already-canonical labels are kept."""
        codes = pd.Series(["target", "Track_Loss"])
        assert list(map_aoi_codes(codes)) == ["target", "track_loss"]

    def test_custom_code_map(self):
        """A dataset code map replaces the default codes."""
        codes = pd.Series(["T", "D", "A"])
        out = map_aoi_codes(codes, {"T": "target", "D": "distractor", "A": "other"})
        assert list(out) == ["target", "distractor", "other"]

    def test_code_map_outside_vocabulary(self):
        """A code map cannot introduce new labels."""
        with pytest.raises(ValueError):
            map_aoi_codes(pd.Series(["1"]), {"1": "face"})

    def test_flags(self):
        """Flag columns resolve target, distractor, track loss and other."""
        df = pd.DataFrame({
            "target": [1, 0, 0, 0, np.nan],
            "distractor": [0, 1, 0, 0, np.nan],
            "track_loss": [0, 0, 1, 0, np.nan],
        })
        assert list(aoi_from_flags(df)) == [
            "target", "distractor", "track_loss", "other", "missing"
        ]

    def test_xy_regions(self):
        """Gaze inside the target-side box is target."""
        regions = {
            "l_x_min": 0, "l_x_max": 100, "l_y_min": 0, "l_y_max": 100,
            "r_x_min": 200, "r_x_max": 300, "r_y_min": 0, "r_y_max": 100,
        }
        df = pd.DataFrame({
            "x": [50, 250, 150, np.nan, 250],
            "y": [50, 50, 50, 50, 50],
            "target_side": ["left", "left", "left", "left", "right"],
        })
        assert list(aoi_from_xy(df, regions)) == [
            "target", "distractor", "other", "missing", "target"
        ]


class TestPhrasesAndSubjects:
    """Tests for full phrases, sex codes and CDI aux data."""

    def test_full_phrase(self):
        """Carrier codes select the phrase template."""
        codes = pd.Series(["look", "Can", None, "zzz"])
        labels = pd.Series(["dog", "ball", "cat", "cup"])
        out = build_full_phrase(codes, labels)

        assert out.iloc[0] == "Look at the dog"
        assert out.iloc[1] == "Can you find the ball?"
        assert out.iloc[2] is None
        assert out.iloc[3] is None

    def test_sex_codes(self):
        """Sex codes map onto the closed vocabulary."""
        out = standardize_sex(pd.Series(["M", "female", "Girl", None, "?"]))
        assert list(out) == ["male", "female", "female", "unspecified", "unspecified"]

    def test_cdi_aux_data(self):
        """CDI scores are serialized; unscored entries are skipped."""
        text = cdi_aux_data([
            {"rawscore": 50, "age": 18, "measure": "prod"},
            {"rawscore": None, "age": 18, "measure": "comp"},
        ])
        payload = json.loads(text)
        assert len(payload["cdi_responses"]) == 1
        assert payload["cdi_responses"][0]["measure"] == "prod"
        assert payload["cdi_responses"][0]["instrument_type"] == "wg"

    def test_cdi_aux_data_empty(self):
        """Without scores there is no aux data."""
        assert cdi_aux_data([{"rawscore": None, "measure": "prod"}]) is None
