"""
Table definitions for the Peekbank output format.

This module defines:
- The nine output tables, their canonical column order and primary keys
- Required (non-null) columns and foreign keys for each table
- The closed vocabularies for categorical columns
- The canonical denormalized observation columns the pipeline consumes

Column names and vocabulary values are consumed by the downstream
database and must not change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

import pandas as pd

AOI_VALUES = frozenset({"target", "distractor", "other", "missing", "track_loss"})
SEX_VALUES = frozenset({"male", "female", "other", "unspecified"})
TARGET_SIDE_VALUES = frozenset({"left", "right"})
CODING_METHOD_VALUES = frozenset({
    "manual gaze coding",
    "eyetracking",
    "preprocessed eyetracking",
    "automated gaze coding",
})
STIMULUS_NOVELTY_VALUES = frozenset({"familiar", "novel"})
AGE_UNIT_VALUES = frozenset({"months", "years", "days"})

AOI_REGION_COLUMNS = [
    "l_x_max",
    "l_x_min",
    "l_y_max",
    "l_y_min",
    "r_x_max",
    "r_x_min",
    "r_y_max",
    "r_y_min",
]


@dataclass(frozen=True)
class TableSchema:
    """Structural contract for one output table."""

    name: str
    primary_key: str
    columns: Tuple[str, ...]
    required: FrozenSet[str] = frozenset()
    # column -> (table, column)
    foreign_keys: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    # column -> allowed values (nulls are checked by `required`)
    vocabularies: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    def empty_frame(self) -> pd.DataFrame:
        return pd.DataFrame(columns=list(self.columns))


TABLE_SCHEMAS: Dict[str, TableSchema] = {
    "datasets": TableSchema(
        name="datasets",
        primary_key="dataset_id",
        columns=(
            "dataset_id",
            "lab_dataset_id",
            "dataset_name",
            "cite",
            "shortcite",
            "dataset_aux_data",
        ),
        required=frozenset({"dataset_id", "dataset_name", "lab_dataset_id"}),
    ),
    "subjects": TableSchema(
        name="subjects",
        primary_key="subject_id",
        columns=(
            "subject_id",
            "sex",
            "lab_subject_id",
            "native_language",
            "subject_aux_data",
        ),
        required=frozenset({"subject_id", "sex", "lab_subject_id", "native_language"}),
        vocabularies={"sex": SEX_VALUES},
    ),
    "administrations": TableSchema(
        name="administrations",
        primary_key="administration_id",
        columns=(
            "administration_id",
            "dataset_id",
            "subject_id",
            "age",
            "lab_age",
            "lab_age_units",
            "monitor_size_x",
            "monitor_size_y",
            "sample_rate",
            "tracker",
            "coding_method",
            "administration_aux_data",
        ),
        required=frozenset({
            "administration_id",
            "dataset_id",
            "subject_id",
            "coding_method",
        }),
        foreign_keys={
            "dataset_id": ("datasets", "dataset_id"),
            "subject_id": ("subjects", "subject_id"),
        },
        vocabularies={
            "coding_method": CODING_METHOD_VALUES,
            "lab_age_units": AGE_UNIT_VALUES,
        },
    ),
    "stimuli": TableSchema(
        name="stimuli",
        primary_key="stimulus_id",
        columns=(
            "stimulus_id",
            "original_stimulus_label",
            "english_stimulus_label",
            "stimulus_novelty",
            "stimulus_image_path",
            "image_description",
            "image_description_source",
            "lab_stimulus_id",
            "dataset_id",
            "stimulus_aux_data",
        ),
        required=frozenset({
            "stimulus_id",
            "original_stimulus_label",
            "english_stimulus_label",
            "stimulus_novelty",
            "dataset_id",
        }),
        foreign_keys={"dataset_id": ("datasets", "dataset_id")},
        vocabularies={"stimulus_novelty": STIMULUS_NOVELTY_VALUES},
    ),
    "trial_types": TableSchema(
        name="trial_types",
        primary_key="trial_type_id",
        columns=(
            "trial_type_id",
            "full_phrase",
            "full_phrase_language",
            "point_of_disambiguation",
            "target_side",
            "lab_trial_id",
            "condition",
            "vanilla_trial",
            "aoi_region_set_id",
            "dataset_id",
            "distractor_id",
            "target_id",
            "trial_type_aux_data",
        ),
        required=frozenset({
            "trial_type_id",
            "point_of_disambiguation",
            "target_side",
            "dataset_id",
            "distractor_id",
            "target_id",
        }),
        foreign_keys={
            "aoi_region_set_id": ("aoi_region_sets", "aoi_region_set_id"),
            "dataset_id": ("datasets", "dataset_id"),
            "distractor_id": ("stimuli", "stimulus_id"),
            "target_id": ("stimuli", "stimulus_id"),
        },
        vocabularies={"target_side": TARGET_SIDE_VALUES},
    ),
    "trials": TableSchema(
        name="trials",
        primary_key="trial_id",
        columns=(
            "trial_id",
            "trial_order",
            "excluded",
            "exclusion_reason",
            "trial_type_id",
            "trial_aux_data",
        ),
        required=frozenset({"trial_id", "trial_order", "excluded", "trial_type_id"}),
        foreign_keys={"trial_type_id": ("trial_types", "trial_type_id")},
    ),
    "aoi_region_sets": TableSchema(
        name="aoi_region_sets",
        primary_key="aoi_region_set_id",
        columns=("aoi_region_set_id", *AOI_REGION_COLUMNS),
        required=frozenset({"aoi_region_set_id", *AOI_REGION_COLUMNS}),
    ),
    "xy_timepoints": TableSchema(
        name="xy_timepoints",
        primary_key="xy_timepoint_id",
        columns=(
            "xy_timepoint_id",
            "x",
            "y",
            "t_norm",
            "administration_id",
            "trial_id",
        ),
        required=frozenset({"xy_timepoint_id", "t_norm", "administration_id", "trial_id"}),
        foreign_keys={
            "administration_id": ("administrations", "administration_id"),
            "trial_id": ("trials", "trial_id"),
        },
    ),
    "aoi_timepoints": TableSchema(
        name="aoi_timepoints",
        primary_key="aoi_timepoint_id",
        columns=(
            "aoi_timepoint_id",
            "aoi",
            "t_norm",
            "administration_id",
            "trial_id",
        ),
        required=frozenset({
            "aoi_timepoint_id",
            "aoi",
            "t_norm",
            "administration_id",
            "trial_id",
        }),
        foreign_keys={
            "administration_id": ("administrations", "administration_id"),
            "trial_id": ("trials", "trial_id"),
        },
        vocabularies={"aoi": AOI_VALUES},
    ),
}

TABLE_NAMES: List[str] = list(TABLE_SCHEMAS)


# Denormalized input the pipeline consumes: one row per raw sample.
# Required columns must be present; optional ones are filled with nulls.
OBSERVATION_REQUIRED = [
    "lab_subject_id",
    "trial_order",
    "target_label",
    "distractor_label",
    "target_side",
    "t",
]

OBSERVATION_OPTIONAL = [
    "sex",
    "native_language",
    "subject_aux_data",
    "lab_age",
    "lab_age_units",
    "administration_order",
    "trial_instance",
    "replicate",
    "target_image",
    "distractor_image",
    "target_novelty",
    "distractor_novelty",
    "condition",
    "full_phrase",
    "phrase_code",
    "point_of_disambiguation",
    "lab_trial_id",
    "excluded",
    "exclusion_reason",
    "monitor_size_x",
    "monitor_size_y",
    "aoi",
    "x",
    "y",
    *AOI_REGION_COLUMNS,
]

OBSERVATION_COLUMNS = OBSERVATION_REQUIRED + OBSERVATION_OPTIONAL


def get_schema(table_name: str) -> TableSchema:
    """Look up a table schema by name."""
    try:
        return TABLE_SCHEMAS[table_name]
    except KeyError:
        raise ValueError(f"Unknown table: {table_name}") from None


def conform_columns(
    df: pd.DataFrame,
    table_name: str,
    fill_value: Optional[object] = None
) -> pd.DataFrame:
    """Return `df` restricted to, and ordered by, the table's canonical columns.

    Canonical columns absent from `df` are added filled with `fill_value`.
    """
    schema = get_schema(table_name)
    out = df.copy()
    for col in schema.columns:
        if col not in out.columns:
            out[col] = fill_value
    return out[list(schema.columns)].reset_index(drop=True)
