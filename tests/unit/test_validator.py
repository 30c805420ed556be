"""
Unit tests for schema validation and table persistence.
"""

import pandas as pd
import pytest
from sqlalchemy import create_engine

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from peekbank.exceptions import LinkageError, ValidationError
from peekbank.data.export import read_tables, write_tables
from peekbank.data.schema import TABLE_NAMES, conform_columns, get_schema
from peekbank.validation import validate_tables


def make_tables():
    """A minimal valid set of the nine tables."""
    tables = {
        "datasets": pd.DataFrame([{
            "dataset_id": 0,
            "lab_dataset_id": "toy",
            "dataset_name": "toy",
            "cite": "",
            "shortcite": "",
        }]),
        "subjects": pd.DataFrame([{
            "subject_id": 0,
            "sex": "female",
            "lab_subject_id": "s1",
            "native_language": "eng",
        }]),
        "administrations": pd.DataFrame([{
            "administration_id": 0,
            "dataset_id": 0,
            "subject_id": 0,
            "age": 24.0,
            "lab_age": 24.0,
            "lab_age_units": "months",
            "sample_rate": 30.0,
            "tracker": "video_camera",
            "coding_method": "manual gaze coding",
        }]),
        "stimuli": pd.DataFrame({
            "stimulus_id": [0, 1],
            "original_stimulus_label": ["dog", "cat"],
            "english_stimulus_label": ["dog", "cat"],
            "stimulus_novelty": ["familiar", "familiar"],
            "dataset_id": [0, 0],
        }),
        "trial_types": pd.DataFrame([{
            "trial_type_id": 0,
            "full_phrase_language": "eng",
            "point_of_disambiguation": 300.0,
            "target_side": "left",
            "condition": "",
            "vanilla_trial": True,
            "dataset_id": 0,
            "distractor_id": 1,
            "target_id": 0,
        }]),
        "trials": pd.DataFrame([{
            "trial_id": 0,
            "trial_order": 1,
            "excluded": False,
            "trial_type_id": 0,
        }]),
        "aoi_region_sets": get_schema("aoi_region_sets").empty_frame(),
        "xy_timepoints": get_schema("xy_timepoints").empty_frame(),
        "aoi_timepoints": pd.DataFrame({
            "aoi_timepoint_id": [0, 1],
            "aoi": ["target", "distractor"],
            "t_norm": [0, 25],
            "administration_id": [0, 0],
            "trial_id": [0, 0],
        }),
    }
    return {name: conform_columns(df, name) for name, df in tables.items()}


def _violations(report, table, column=None):
    return [
        v for v in report.violations
        if v.table == table and (column is None or v.column == column)
    ]


class TestValidateTables:
    """Tests for the table checks."""

    def test_valid_tables_pass(self):
        """A consistent table set has no violations."""
        report = validate_tables(make_tables())
        assert report.ok
        report.raise_if_failed()

    def test_missing_table(self):
        """All nine tables must be present."""
        tables = make_tables()
        del tables["trials"]
        report = validate_tables(tables)
        assert not report.ok
        assert "trials" in report.violations[0].message

    def test_column_order(self):
        """Columns must be exactly the canonical ones, in order."""
        tables = make_tables()
        tables["subjects"] = tables["subjects"][
            ["sex", "subject_id", "lab_subject_id", "native_language", "subject_aux_data"]
        ]
        report = validate_tables(tables)
        assert _violations(report, "subjects")

    def test_extra_column(self):
        """Unexpected columns are reported."""
        tables = make_tables()
        tables["trials"]["raw_row"] = 0
        report = validate_tables(tables)
        assert any("raw_row" in v.message for v in _violations(report, "trials"))

    def test_key_not_dense(self):
        """Keys must be 0..n-1."""
        tables = make_tables()
        tables["stimuli"]["stimulus_id"] = [0, 2]
        tables["trial_types"]["distractor_id"] = 2
        report = validate_tables(tables)
        assert _violations(report, "stimuli", "stimulus_id")

    def test_duplicate_key(self):
        """Keys must be unique."""
        tables = make_tables()
        tables["stimuli"]["stimulus_id"] = [0, 0]
        report = validate_tables(tables)
        messages = [v.message for v in _violations(report, "stimuli", "stimulus_id")]
        assert any("duplicated" in m for m in messages)

    def test_required_null(self):
        """Required columns must be populated."""
        tables = make_tables()
        tables["trial_types"]["point_of_disambiguation"] = None
        report = validate_tables(tables)
        assert _violations(report, "trial_types", "point_of_disambiguation")

    def test_vocabulary(self):
        """Closed vocabularies are enforced."""
        tables = make_tables()
        tables["aoi_timepoints"].loc[1, "aoi"] = "looking"
        tables["subjects"]["sex"] = "F"
        report = validate_tables(tables)

        aoi = _violations(report, "aoi_timepoints", "aoi")
        assert aoi and aoi[0].rows == [1]
        assert _violations(report, "subjects", "sex")

    def test_foreign_key(self):
        """Foreign keys must resolve."""
        tables = make_tables()
        tables["trial_types"]["target_id"] = 5
        report = validate_tables(tables)
        assert _violations(report, "trial_types", "target_id")

    def test_nullable_foreign_key(self):
        """An unset region set reference is allowed."""
        tables = make_tables()
        assert tables["trial_types"]["aoi_region_set_id"].isna().all()
        assert validate_tables(tables).ok

    def test_orphan_subject(self):
        """Subjects without administrations are invalid."""
        tables = make_tables()
        tables["subjects"] = conform_columns(pd.DataFrame({
            "subject_id": [0, 1],
            "sex": ["female", "male"],
            "lab_subject_id": ["s1", "s2"],
            "native_language": ["eng", "eng"],
        }), "subjects")
        report = validate_tables(tables)
        orphans = _violations(report, "subjects", "subject_id")
        assert orphans and orphans[0].rows == [1]

    def test_one_label_per_bucket(self):
        """Two AOI rows for the same trial and bucket are rejected."""
        tables = make_tables()
        tables["aoi_timepoints"]["t_norm"] = [0, 0]
        report = validate_tables(tables)
        assert _violations(report, "aoi_timepoints", "t_norm")

    def test_raise_if_failed(self):
        """Failures raise a ValidationError carrying the report."""
        tables = make_tables()
        tables["trials"]["excluded"] = None
        report = validate_tables(tables)
        with pytest.raises(ValidationError) as excinfo:
            report.raise_if_failed()
        assert excinfo.value.report is report
        assert "trials.excluded" in str(excinfo.value)

    def test_report_frame(self):
        """Violations can be exported as a table."""
        tables = make_tables()
        tables["subjects"]["sex"] = "F"
        frame = validate_tables(tables).to_frame()
        assert list(frame.columns) == ["table", "column", "message", "rows"]
        assert len(frame) == 1


class TestExport:
    """Tests for writing and reading the tables."""

    def test_csv_round_trip(self, tmp_path):
        """Tables written as CSV read back and still validate."""
        output = write_tables(make_tables(), tmp_path / "processed")

        for name in TABLE_NAMES:
            assert (output / f"{name}.csv").exists()
        tables = read_tables(output)
        assert set(tables) == set(TABLE_NAMES)
        assert validate_tables(tables).ok

    def test_empty_tables_have_headers(self, tmp_path):
        """Empty tables are written header-only."""
        output = write_tables(make_tables(), tmp_path / "processed")
        header = (output / "xy_timepoints.csv").read_text().strip()
        assert header == ",".join(get_schema("xy_timepoints").columns)

    def test_csv_replaces_previous_output(self, tmp_path):
        """A rewrite replaces the directory and leaves no staging files."""
        output = tmp_path / "processed"
        output.mkdir()
        (output / "stale.csv").write_text("x\n")

        write_tables(make_tables(), output)

        assert not (output / "stale.csv").exists()
        assert sorted(p.name for p in tmp_path.iterdir()) == ["processed"]

    def test_incomplete_tables_are_not_written(self, tmp_path):
        """Nothing is written for an incomplete table set."""
        tables = make_tables()
        del tables["aoi_timepoints"]
        output = tmp_path / "processed"

        with pytest.raises(LinkageError):
            write_tables(tables, output)
        assert not output.exists()

    def test_sqlite(self, tmp_path):
        """All tables are written into one SQLite database."""
        db_path = write_tables(make_tables(), tmp_path / "peekbank.db", format="sqlite")

        engine = create_engine(f"sqlite:///{db_path}")
        try:
            subjects = pd.read_sql("SELECT * FROM subjects", engine)
            timepoints = pd.read_sql("SELECT * FROM aoi_timepoints", engine)
        finally:
            engine.dispose()
        assert list(subjects["lab_subject_id"]) == ["s1"]
        assert len(timepoints) == 2

    def test_unknown_format(self, tmp_path):
        """Only csv and sqlite are supported."""
        with pytest.raises(ValueError):
            write_tables(make_tables(), tmp_path / "out", format="parquet")
