"""
End-to-end import of one dataset into the Peekbank tables.

This module provides:
- DatasetImporter: derivations, time normalization, key assignment,
  assembly and validation for one dataset's canonical observations
- import_dataset: convenience wrapper that runs and writes in one call

Control flow:
observations -> derived columns -> rezero/normalize (per raw trial)
-> surrogate keys -> resample (per trial, administration) -> nine
tables -> validation -> persistence
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from config.settings import DatasetConfig, ResampleConfig, get_config
from .data.export import write_tables
from .data.reshape import mark_replicates, number_trial_runs
from .data.schema import AOI_REGION_COLUMNS, OBSERVATION_OPTIONAL, OBSERVATION_REQUIRED
from .exceptions import LinkageError
from .transform.assemble import assemble_tables
from .transform.derive import (
    aoi_from_xy,
    build_full_phrase,
    map_aoi_codes,
    normalize_ages,
    standardize_sex,
    standardize_target_side,
)
from .transform.keys import assign_ids, assign_stimulus_ids, resolve_conflicts
from .transform.timing import normalize_times, resample_times, rezero_times
from .validation import ValidationReport, validate_tables

logger = logging.getLogger(__name__)

SUBJECT_ATTRIBUTES = ["sex", "native_language", "subject_aux_data"]
ADMINISTRATION_ATTRIBUTES = ["age", "lab_age_units", "monitor_size_x", "monitor_size_y"]
TRIAL_TYPE_IDENTITY = [
    "target_id",
    "distractor_id",
    "target_side",
    "condition",
    "full_phrase",
    "point_of_disambiguation",
    "aoi_region_set_id",
]
TRIAL_ATTRIBUTES = ["trial_order", "excluded", "exclusion_reason"]

# Name a raw trial; consecutive runs of these number trial occurrences
# when no `trial_instance` is given
RAW_TRIAL_COLUMNS = [
    "lab_subject_id",
    "lab_age",
    "administration_order",
    "replicate",
    "trial_order",
]

_TRUE_STRINGS = {"true", "t", "1", "yes", "y"}


class DatasetImporter:
    """
    Importer for one dataset's canonical observations.

    The importer holds no state shared between datasets; every run
    starts from the observations passed in and produces a fresh set of
    tables.
    """

    def __init__(
        self,
        dataset_config: DatasetConfig,
        resample_config: Optional[ResampleConfig] = None
    ):
        """
        Initialize the importer.

        Parameters
        ----------
        dataset_config : DatasetConfig
            Per-dataset constants
        resample_config : Optional[ResampleConfig]
            Shared resampling clock. Uses the global configuration if None.
        """
        self.dataset_config = dataset_config
        self.resample_config = resample_config or get_config().resample
        self.tables: Optional[Dict[str, pd.DataFrame]] = None
        self.report: Optional[ValidationReport] = None

    def prepare_observations(self, observations: pd.DataFrame) -> pd.DataFrame:
        """
        Check and derive the canonical observation columns.

        Parameters
        ----------
        observations : pd.DataFrame
            One row per raw sample with at least the required observation
            columns

        Returns
        -------
        pd.DataFrame
            Observations with standardized sides, phrases, sexes, ages,
            AOI labels, exclusion flags and points of disambiguation
        """
        cfg = self.dataset_config

        missing = [c for c in OBSERVATION_REQUIRED if c not in observations.columns]
        if missing:
            raise LinkageError(f"Observations are missing required column(s) {missing}")

        df = observations.reset_index(drop=True).copy()
        for col in OBSERVATION_OPTIONAL:
            if col not in df.columns:
                df[col] = None

        for col in ("lab_subject_id", "trial_order"):
            nulls = df[col].isna()
            if nulls.any():
                raise LinkageError(f"{int(nulls.sum()):,} observation(s) without `{col}`")

        df["lab_subject_id"] = df["lab_subject_id"].astype(str).str.strip()
        df["trial_order"] = pd.to_numeric(df["trial_order"])
        df["target_side"] = standardize_target_side(df["target_side"], cfg.side_perspective)

        for slot in ("target", "distractor"):
            df[f"{slot}_novelty"] = df[f"{slot}_novelty"].fillna(cfg.stimulus_novelty)

        needs_phrase = df["full_phrase"].isna() & df["phrase_code"].notna()
        if needs_phrase.any():
            df.loc[needs_phrase, "full_phrase"] = build_full_phrase(
                df.loc[needs_phrase, "phrase_code"],
                df.loc[needs_phrase, "target_label"],
                cfg.carrier_phrases,
            )
        df["condition"] = df["condition"].fillna("")

        df = self._derive_subject_columns(df)
        df = normalize_ages(df)
        for col in ("monitor_size_x", "monitor_size_y"):
            df[col] = pd.to_numeric(df[col], errors="coerce")

        df["excluded"] = self._exclusion_flags(df)
        df["point_of_disambiguation"] = self._points_of_disambiguation(df)

        df["trial_instance"] = self._trial_instances(df)
        if df["replicate"].isna().all():
            df = mark_replicates(df)
        else:
            df["replicate"] = pd.to_numeric(df["replicate"]).fillna(0).astype("int64")

        df["aoi"] = self._aoi_labels(df)
        for col in ("x", "y"):
            df[col] = pd.to_numeric(df[col], errors="coerce")

        logger.info(
            f"Prepared {len(df):,} observations from "
            f"{df['lab_subject_id'].nunique():,} subject(s)"
        )
        return df

    def _derive_subject_columns(self, df: pd.DataFrame) -> pd.DataFrame:
        cfg = self.dataset_config
        recorded = df["sex"]
        df["sex"] = standardize_sex(recorded).where(recorded.notna(), None)
        df["native_language"] = df["native_language"].fillna(cfg.native_language)

        df = resolve_conflicts(
            df,
            "lab_subject_id",
            SUBJECT_ATTRIBUTES,
            overrides=cfg.subject_overrides,
            entity="subjects",
        )
        df["sex"] = df["sex"].fillna("unspecified")
        return df

    @staticmethod
    def _exclusion_flags(df: pd.DataFrame) -> pd.Series:
        recorded = df["excluded"]
        flags = recorded.astype(str).str.strip().str.lower().isin(_TRUE_STRINGS)
        return flags.where(recorded.notna(), df["exclusion_reason"].notna()).astype(bool)

    def _points_of_disambiguation(self, df: pd.DataFrame) -> pd.Series:
        pod = pd.to_numeric(df["point_of_disambiguation"], errors="coerce")
        if self.dataset_config.point_of_disambiguation is not None:
            pod = pod.fillna(float(self.dataset_config.point_of_disambiguation))

        if pod.isna().any():
            trials = (
                df.loc[pod.isna(), ["lab_subject_id", "trial_order"]]
                .drop_duplicates()
                .to_dict(orient="records")
            )
            raise LinkageError(
                f"{len(trials)} trial(s) without a point of disambiguation and no "
                f"dataset constant configured: {trials[:10]}"
            )
        return pod

    def _aoi_labels(self, df: pd.DataFrame) -> pd.Series:
        cfg = self.dataset_config
        if df["aoi"].notna().any():
            return map_aoi_codes(df["aoi"], cfg.aoi_codes)

        has_xy = df["x"].notna().any() and df["y"].notna().any()
        if has_xy and cfg.aoi_region_set:
            logger.info("No AOI codes recorded; classifying gaze coordinates by region")
            return aoi_from_xy(df, cfg.aoi_region_set)
        if has_xy:
            return pd.Series(None, index=df.index, dtype=object)

        raise LinkageError("Observations carry neither AOI codes nor gaze coordinates")

    @staticmethod
    def _trial_instances(df: pd.DataFrame) -> pd.Series:
        recorded = df["trial_instance"]
        if recorded.notna().all():
            return recorded
        if recorded.notna().any():
            raise LinkageError(
                f"{int(recorded.isna().sum()):,} observation(s) without `trial_instance`"
            )
        return number_trial_runs(df, RAW_TRIAL_COLUMNS)

    def align_times(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Rezero and normalize every raw trial, as configured.

        Skipped stages pass their input time through unchanged.
        """
        cfg = self.dataset_config
        group_cols = ["trial_instance"]

        if cfg.rezero:
            df = rezero_times(df, group_cols=group_cols)
        else:
            df = df.assign(t_zeroed=pd.to_numeric(df["t"], errors="coerce"))

        if cfg.normalize:
            df = normalize_times(df, group_cols=group_cols)
        else:
            df = df.assign(t_norm=df["t_zeroed"])

        # Trials left without a timed sample get no keys
        return df[df["t_norm"].notna()].reset_index(drop=True)

    def _region_sets(self, df: pd.DataFrame) -> Tuple[Optional[pd.DataFrame], pd.DataFrame]:
        cfg = self.dataset_config
        recorded = df[AOI_REGION_COLUMNS].notna()

        if recorded.any().any():
            if not recorded.all().all():
                raise LinkageError("AOI region bounds are recorded for only some observations")
            for col in AOI_REGION_COLUMNS:
                df[col] = pd.to_numeric(df[col])
            return assign_ids(df, AOI_REGION_COLUMNS, "aoi_region_set_id")

        if cfg.aoi_region_set:
            missing = [c for c in AOI_REGION_COLUMNS if c not in cfg.aoi_region_set]
            if missing:
                raise ValueError(f"aoi_region_set is missing bound(s) {missing}")
            region_sets = pd.DataFrame([{
                "aoi_region_set_id": 0,
                **{c: float(cfg.aoi_region_set[c]) for c in AOI_REGION_COLUMNS},
            }])
            return region_sets, df.assign(aoi_region_set_id=0)

        return None, df.assign(aoi_region_set_id=np.nan)

    def run(self, observations: pd.DataFrame) -> Dict[str, pd.DataFrame]:
        """
        Convert canonical observations into the nine validated tables.

        Parameters
        ----------
        observations : pd.DataFrame
            One row per raw sample (see
            `peekbank.data.schema.OBSERVATION_COLUMNS`)

        Returns
        -------
        Dict[str, pd.DataFrame]
            Table name -> table

        Raises
        ------
        LinkageError
            If a required column or cross-reference is missing
        IdentityConflictError
            If a subject has conflicting attributes and no override, or
            another entity records two values for one of its attributes
        ValidationError
            If the assembled tables violate the schema
        """
        cfg = self.dataset_config
        logger.info(f"Importing dataset {cfg.dataset_name}")

        df = self.prepare_observations(observations)
        df = self.align_times(df)

        subjects, df = assign_ids(df, ["lab_subject_id"], "subject_id", SUBJECT_ATTRIBUTES)
        stimuli, df = assign_stimulus_ids(df)
        region_sets, df = self._region_sets(df)
        administrations, df = assign_ids(
            df,
            cfg.administration_identity,
            "administration_id",
            ADMINISTRATION_ATTRIBUTES,
            entity="administrations",
        )
        trial_types, df = assign_ids(
            df, TRIAL_TYPE_IDENTITY, "trial_type_id", ["lab_trial_id"], entity="trial_types"
        )
        trials, df = assign_ids(df, cfg.trial_identity, "trial_id", TRIAL_ATTRIBUTES, entity="trials")

        step_ms = self.resample_config.step_ms
        tolerance_ms = self.resample_config.effective_tolerance_ms

        aoi_resampled = None
        if df["aoi"].notna().any():
            aoi_resampled = resample_times(df, "aoi_timepoints", step_ms, tolerance_ms)

        xy_resampled = None
        if df["x"].notna().any() and df["y"].notna().any():
            xy_resampled = resample_times(df, "xy_timepoints", step_ms, tolerance_ms)

        tables = assemble_tables(
            cfg,
            subjects=subjects,
            administrations=administrations,
            stimuli=stimuli,
            trial_types=trial_types,
            trials=trials,
            region_sets=region_sets,
            aoi_resampled=aoi_resampled,
            xy_resampled=xy_resampled,
        )

        self.report = validate_tables(tables)
        self.report.raise_if_failed()
        self.tables = tables
        return tables

    def write(
        self,
        output: Union[str, Path],
        format: Optional[str] = None,
        float_format: Optional[str] = None,
    ) -> Path:
        """
        Persist the validated tables.

        Parameters
        ----------
        output : Union[str, Path]
            Directory (csv) or database file (sqlite)
        format : Optional[str]
            "csv" or "sqlite"; the global export setting if None
        """
        if self.tables is None:
            raise RuntimeError("No validated tables to write; call run() first")
        export = get_config().export
        return write_tables(
            self.tables,
            output,
            format=format or export.format,
            float_format=float_format or export.float_format,
        )


def import_dataset(
    observations: pd.DataFrame,
    dataset_config: DatasetConfig,
    output: Optional[Union[str, Path]] = None,
    format: Optional[str] = None,
) -> Dict[str, pd.DataFrame]:
    """
    Run the full import for one dataset and optionally write the tables.

    Parameters
    ----------
    observations : pd.DataFrame
        Canonical observations
    dataset_config : DatasetConfig
        Per-dataset constants
    output : Optional[Union[str, Path]]
        Where to write; nothing is written if None
    format : Optional[str]
        "csv" or "sqlite"

    Returns
    -------
    Dict[str, pd.DataFrame]
        The validated tables
    """
    importer = DatasetImporter(dataset_config)
    tables = importer.run(observations)
    if output is not None:
        importer.write(output, format=format)
    return tables
