"""
Projection of keyed observations into the nine Peekbank tables.

No identity decisions are made here: every key has already been assigned
by `peekbank.transform.keys`. Each builder selects, renames and derives
columns and returns a table conformed to its canonical column order.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import pandas as pd

from config.settings import DatasetConfig
from ..data.schema import AOI_REGION_COLUMNS, TABLE_NAMES, conform_columns, get_schema
from .keys import dense_ids

logger = logging.getLogger(__name__)

DATASET_ID = 0


def build_datasets_table(dataset_config: DatasetConfig) -> pd.DataFrame:
    """One row describing the imported study."""
    datasets = pd.DataFrame([{
        "dataset_id": DATASET_ID,
        "lab_dataset_id": dataset_config.lab_dataset_id,
        "dataset_name": dataset_config.dataset_name,
        "cite": dataset_config.cite,
        "shortcite": dataset_config.shortcite,
        "dataset_aux_data": dataset_config.dataset_aux_data,
    }])
    return conform_columns(datasets, "datasets")


def build_subjects_table(subjects: pd.DataFrame) -> pd.DataFrame:
    return conform_columns(subjects, "subjects")


def build_administrations_table(
    administrations: pd.DataFrame,
    dataset_config: DatasetConfig
) -> pd.DataFrame:
    """
    Administrations with dataset-level tracker settings filled in.

    Monitor sizes recorded per observation win over the dataset
    constants; unknown sizes stay null.
    """
    out = administrations.copy()
    out["dataset_id"] = DATASET_ID
    out["sample_rate"] = dataset_config.sample_rate
    out["tracker"] = dataset_config.tracker
    out["coding_method"] = dataset_config.coding_method

    for col in ("monitor_size_x", "monitor_size_y"):
        constant = getattr(dataset_config, col)
        if col not in out.columns:
            out[col] = constant
        elif constant is not None:
            out[col] = out[col].where(out[col].notna(), constant)

    return conform_columns(out, "administrations")


def build_stimuli_table(stimuli: pd.DataFrame, dataset_config: DatasetConfig) -> pd.DataFrame:
    """
    Stimuli from the (label, image) dimension.

    Labels are assumed to be English; the image path doubles as the lab
    stimulus id when present.
    """
    out = pd.DataFrame({
        "stimulus_id": stimuli["stimulus_id"],
        "original_stimulus_label": stimuli["label"],
        "english_stimulus_label": stimuli["label"],
        "stimulus_novelty": stimuli["novelty"].fillna(dataset_config.stimulus_novelty),
        "stimulus_image_path": stimuli["image"],
        "image_description": stimuli["label"],
        "image_description_source": dataset_config.image_description_source,
        "lab_stimulus_id": stimuli["image"].where(stimuli["image"].notna(), stimuli["label"]),
        "dataset_id": DATASET_ID,
    })
    return conform_columns(out, "stimuli")


def build_trial_types_table(
    trial_types: pd.DataFrame,
    dataset_config: DatasetConfig
) -> pd.DataFrame:
    out = trial_types.copy()
    out["full_phrase_language"] = dataset_config.full_phrase_language
    out["vanilla_trial"] = dataset_config.vanilla_trial
    out["dataset_id"] = DATASET_ID
    out["point_of_disambiguation"] = pd.to_numeric(out["point_of_disambiguation"])
    if out["aoi_region_set_id"].notna().all():
        out["aoi_region_set_id"] = out["aoi_region_set_id"].astype("int64")
    else:
        out["aoi_region_set_id"] = out["aoi_region_set_id"].astype("Int64")
    return conform_columns(out, "trial_types")


def build_trials_table(trials: pd.DataFrame) -> pd.DataFrame:
    out = trials.copy()
    out["excluded"] = out["excluded"].astype(bool)
    return conform_columns(out, "trials")


def build_aoi_region_sets_table(region_sets: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Region sets, or a header-only table when no AOI regions apply."""
    if region_sets is None or region_sets.empty:
        return get_schema("aoi_region_sets").empty_frame()
    out = region_sets.copy()
    for col in AOI_REGION_COLUMNS:
        out[col] = pd.to_numeric(out[col])
    return conform_columns(out, "aoi_region_sets")


def build_timepoints_table(resampled: Optional[pd.DataFrame], table_type: str) -> pd.DataFrame:
    """
    Fact table from resampled series, numbering rows in output order.

    Parameters
    ----------
    resampled : Optional[pd.DataFrame]
        Output of `resample_times`, or None when the dataset carries no
        data of this kind
    table_type : str
        "aoi_timepoints" or "xy_timepoints"
    """
    if resampled is None or resampled.empty:
        return get_schema(table_type).empty_frame()

    out = resampled.reset_index(drop=True).copy()
    id_col = get_schema(table_type).primary_key
    out[id_col] = dense_ids(len(out))
    return conform_columns(out, table_type)


def assemble_tables(
    dataset_config: DatasetConfig,
    subjects: pd.DataFrame,
    administrations: pd.DataFrame,
    stimuli: pd.DataFrame,
    trial_types: pd.DataFrame,
    trials: pd.DataFrame,
    region_sets: Optional[pd.DataFrame],
    aoi_resampled: Optional[pd.DataFrame],
    xy_resampled: Optional[pd.DataFrame],
) -> Dict[str, pd.DataFrame]:
    """
    Build all nine tables.

    Returns
    -------
    Dict[str, pd.DataFrame]
        Table name -> table, in canonical table order
    """
    tables = {
        "datasets": build_datasets_table(dataset_config),
        "subjects": build_subjects_table(subjects),
        "administrations": build_administrations_table(administrations, dataset_config),
        "stimuli": build_stimuli_table(stimuli, dataset_config),
        "trial_types": build_trial_types_table(trial_types, dataset_config),
        "trials": build_trials_table(trials),
        "aoi_region_sets": build_aoi_region_sets_table(region_sets),
        "xy_timepoints": build_timepoints_table(xy_resampled, "xy_timepoints"),
        "aoi_timepoints": build_timepoints_table(aoi_resampled, "aoi_timepoints"),
    }

    for name in TABLE_NAMES:
        logger.info(f"Assembled {name}: {len(tables[name]):,} rows")
    return tables
