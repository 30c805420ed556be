"""
Unit tests for surrogate key assignment and conflict resolution.
"""

import numpy as np
import pandas as pd
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from peekbank.exceptions import IdentityConflictError, LinkageError
from peekbank.transform.keys import (
    assign_ids,
    assign_stimulus_ids,
    dense_ids,
    find_conflicts,
    resolve_conflicts,
)


class TestAssignIds:
    """Tests for generic key assignment."""

    def test_first_occurrence_order(self):
        """Keys follow first occurrence in input order, not sort order."""
        df = pd.DataFrame({"lab_subject_id": ["b", "a", "b", "c"]})
        dimension, keyed = assign_ids(df, ["lab_subject_id"], "subject_id")

        assert list(dimension["lab_subject_id"]) == ["b", "a", "c"]
        assert list(dimension["subject_id"]) == [0, 1, 2]
        assert list(keyed["subject_id"]) == [0, 1, 0, 2]

    def test_keyed_rows_keep_input_order(self):
        """The keyed table has the same rows, in the same order."""
        df = pd.DataFrame({
            "lab_subject_id": ["z", "y", "z"],
            "value": [1, 2, 3],
        }, index=[10, 11, 12])
        _, keyed = assign_ids(df, ["lab_subject_id"], "subject_id")
        assert list(keyed.index) == [10, 11, 12]
        assert list(keyed["value"]) == [1, 2, 3]

    def test_dimension_is_dense(self):
        """Dimension keys are exactly 0..n-1."""
        df = pd.DataFrame({"label": list("abcabcdd")})
        dimension, _ = assign_ids(df, ["label"], "label_id")
        assert list(dimension["label_id"]) == list(range(len(dimension)))

    def test_trial_type_dedup(self):
        """Identical trial definitions share one id; a flipped side does not."""
        df = pd.DataFrame({
            "target_id": [3, 3, 3],
            "distractor_id": [7, 7, 7],
            "target_side": ["left", "left", "right"],
            "condition": ["", "", ""],
            "full_phrase": [np.nan, np.nan, np.nan],
            "point_of_disambiguation": [0, 0, 0],
        })
        identity = list(df.columns)
        dimension, keyed = assign_ids(df, identity, "trial_type_id")

        assert len(dimension) == 2
        assert list(keyed["trial_type_id"]) == [0, 0, 1]

    def test_attributes_come_from_first_row(self):
        """Attribute columns are copied from each entity's first row."""
        df = pd.DataFrame({
            "lab_subject_id": ["a", "a", "b"],
            "sex": ["female", "female", "male"],
            "raw_row": [0, 1, 2],
        })
        dimension, _ = assign_ids(df, ["lab_subject_id"], "subject_id", ["sex"])
        assert list(dimension.columns) == ["subject_id", "lab_subject_id", "sex"]
        assert list(dimension["sex"]) == ["female", "male"]

    def test_attributes_skip_leading_nulls(self):
        """A null first row takes the entity's first recorded value."""
        df = pd.DataFrame({
            "administration": [0, 0, 1],
            "monitor_size_x": [None, 1280.0, None],
        })
        dimension, _ = assign_ids(df, ["administration"], "administration_id", ["monitor_size_x"])
        assert dimension.loc[0, "monitor_size_x"] == 1280.0
        assert pd.isna(dimension.loc[1, "monitor_size_x"])

    def test_conflicting_attribute_raises(self):
        """A named entity with two recorded values is an identity conflict."""
        df = pd.DataFrame({
            "trial_order": [1, 1, 1, 2],
            "excluded": [False, True, True, False],
        })
        with pytest.raises(IdentityConflictError) as excinfo:
            assign_ids(df, ["trial_order"], "trial_id", ["excluded"], entity="trials")

        conflicts = excinfo.value.conflicts
        assert list(conflicts["trial_id"]) == [0]
        assert conflicts.iloc[0]["values"] == [False, True]

    def test_missing_identity_column(self):
        """Unknown identity columns are a linkage error."""
        df = pd.DataFrame({"lab_subject_id": ["a"]})
        with pytest.raises(LinkageError):
            assign_ids(df, ["lab_subject_id", "lab_age"], "subject_id")

    def test_dense_ids(self):
        """dense_ids counts from zero."""
        assert list(dense_ids(3)) == [0, 1, 2]


class TestAssignStimulusIds:
    """Tests for stimulus extraction from target and distractor columns."""

    def _observations(self):
        return pd.DataFrame({
            "target_label": ["dog", "cat", "dog"],
            "target_image": ["dog.png", "cat.png", "dog.png"],
            "target_novelty": ["familiar", "familiar", "familiar"],
            "distractor_label": ["cat", "ball", "cat"],
            "distractor_image": ["cat.png", "ball.png", "cat.png"],
            "distractor_novelty": ["familiar", "familiar", "familiar"],
        })

    def test_scan_order(self):
        """Stimuli are numbered row by row, target before distractor."""
        stimuli, keyed = assign_stimulus_ids(self._observations())

        assert list(stimuli["label"]) == ["dog", "cat", "ball"]
        assert list(stimuli["stimulus_id"]) == [0, 1, 2]
        assert list(keyed["target_id"]) == [0, 1, 0]
        assert list(keyed["distractor_id"]) == [1, 2, 1]

    def test_same_label_different_image(self):
        """Two images of one label are two stimuli."""
        df = self._observations()
        df.loc[2, "target_image"] = "dog2.png"
        stimuli, keyed = assign_stimulus_ids(df)

        assert len(stimuli) == 4
        assert keyed.loc[2, "target_id"] != keyed.loc[0, "target_id"]

    def test_missing_images_still_dedup(self):
        """Stimuli without an image path are identified by label."""
        df = self._observations()
        df["target_image"] = None
        df["distractor_image"] = None
        stimuli, keyed = assign_stimulus_ids(df)

        assert len(stimuli) == 3
        assert list(keyed["target_id"]) == [0, 1, 0]

    def test_conflicting_novelty_fails(self):
        """One stimulus recorded as both familiar and novel is a conflict."""
        df = self._observations()
        df.loc[2, "target_novelty"] = "novel"
        with pytest.raises(IdentityConflictError, match="stimuli"):
            assign_stimulus_ids(df)

    def test_unlabeled_stimulus_fails(self):
        """A trial without a target label cannot be linked."""
        df = self._observations()
        df.loc[1, "target_label"] = None
        with pytest.raises(LinkageError, match="target"):
            assign_stimulus_ids(df)


class TestConflicts:
    """Tests for identity conflict detection and resolution."""

    def _subjects(self):
        return pd.DataFrame({
            "lab_subject_id": ["12608", "12608", "2001", "2001"],
            "sex": ["female", "male", None, "male"],
        })

    def test_find_conflicts(self):
        """Subjects with two recorded values are reported with both values."""
        conflicts = find_conflicts(self._subjects(), "lab_subject_id", ["sex"])

        assert len(conflicts) == 1
        record = conflicts.iloc[0]
        assert record["lab_subject_id"] == "12608"
        assert record["column"] == "sex"
        assert record["values"] == ["female", "male"]

    def test_unresolved_conflict_raises(self):
        """Conflicts are never resolved by picking a row."""
        with pytest.raises(IdentityConflictError) as excinfo:
            resolve_conflicts(self._subjects(), "lab_subject_id", ["sex"])
        assert "12608" in str(excinfo.value)
        assert len(excinfo.value.conflicts) == 1

    def test_override_resolves_conflict(self):
        """An explicit override settles the value for every row."""
        out = resolve_conflicts(
            self._subjects(),
            "lab_subject_id",
            ["sex"],
            overrides={"12608": {"sex": "female"}},
        )
        assert list(out["sex"]) == ["female", "female", "male", "male"]

    def test_override_is_logged(self, caplog):
        """Applied overrides are logged as warnings."""
        with caplog.at_level("WARNING"):
            resolve_conflicts(
                self._subjects(),
                "lab_subject_id",
                ["sex"],
                overrides={"12608": {"sex": "female"}},
            )
        assert any("12608" in r.getMessage() for r in caplog.records)

    def test_override_for_unknown_column(self):
        """Overrides may only touch the checked attributes."""
        with pytest.raises(ValueError):
            resolve_conflicts(
                self._subjects(),
                "lab_subject_id",
                ["sex"],
                overrides={"12608": {"native_language": "eng"}},
            )
