"""
Configuration settings for the Peekbank import pipeline.

This module contains all configurable parameters for converting raw
eye-tracking exports into the Peekbank tables, including the shared
resampling clock, filesystem layout, export settings and the per-dataset
constants each import needs.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv

load_dotenv()

# Base paths
PROJECT_ROOT = Path(__file__).parent.parent.absolute()


@dataclass
class ResampleConfig:
    """Configuration for the shared resampling clock.

    Every dataset is resampled onto the same grid regardless of the
    native tracker rate, so these values are global rather than per
    dataset.
    """

    sample_rate_hz: float = field(
        default_factory=lambda: float(os.getenv("PEEKBANK_SAMPLE_RATE_HZ", "40"))
    )
    # Defaults to half a step when unset
    tolerance_ms: Optional[float] = field(
        default_factory=lambda: (
            float(os.environ["PEEKBANK_TOLERANCE_MS"])
            if os.getenv("PEEKBANK_TOLERANCE_MS")
            else None
        )
    )

    @property
    def step_ms(self) -> float:
        return 1000.0 / self.sample_rate_hz

    @property
    def effective_tolerance_ms(self) -> float:
        if self.tolerance_ms is None:
            return self.step_ms / 2
        return self.tolerance_ms


@dataclass
class PathsConfig:
    """Filesystem layout for raw and processed data."""

    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("PEEKBANK_DATA_DIR", str(PROJECT_ROOT / "data")))
    )
    raw_subdir: str = "raw_data"
    processed_subdir: str = "processed_data"

    def raw_path(self, dataset_name: str) -> Path:
        return self.data_dir / dataset_name / self.raw_subdir

    def processed_path(self, dataset_name: str) -> Path:
        return self.data_dir / dataset_name / self.processed_subdir


@dataclass
class ExportConfig:
    """Configuration for writing the processed tables."""

    format: str = field(default_factory=lambda: os.getenv("PEEKBANK_EXPORT_FORMAT", "csv"))
    sqlite_filename: str = "peekbank.db"
    float_format: Optional[str] = None


@dataclass
class DatasetConfig:
    """Per-dataset constants for one import.

    NOTES:
    - `side_perspective` is "coder" when the raw left/right coding is
      from the camera's point of view and must be flipped
    - `point_of_disambiguation` is a dataset-wide constant used when the
      observations carry no per-trial value; it is never defaulted
    - `rezero` / `normalize` are switched off when the raw timestamps
      already satisfy that stage
    """

    dataset_name: str
    lab_dataset_id: Optional[str] = None
    cite: str = ""
    shortcite: str = ""
    dataset_aux_data: Optional[str] = None

    # Administration constants
    tracker: str = ""
    sample_rate: Optional[float] = None
    monitor_size_x: Optional[float] = None
    monitor_size_y: Optional[float] = None
    coding_method: str = "eyetracking"
    native_language: str = "eng"

    # Trial type constants
    full_phrase_language: str = "eng"
    vanilla_trial: bool = True
    side_perspective: str = "participant"
    point_of_disambiguation: Optional[float] = None
    carrier_phrases: Optional[Dict[str, str]] = None
    stimulus_novelty: str = "familiar"
    image_description_source: str = "image path"

    # Raw column name -> canonical observation column
    column_map: Dict[str, str] = field(default_factory=dict)

    # Gaze coding
    aoi_codes: Optional[Dict[str, str]] = None
    aoi_region_set: Optional[Dict[str, float]] = None

    # Time normalization stages
    rezero: bool = True
    normalize: bool = True

    # Entity identity tuples
    administration_identity: List[str] = field(default_factory=lambda: [
        "subject_id",
        "lab_age",
        "administration_order",
        "replicate",
    ])
    trial_identity: List[str] = field(default_factory=lambda: [
        "administration_id",
        "trial_order",
        "trial_type_id",
    ])

    # Explicit resolutions for conflicting subject attributes
    # e.g. {"12608": {"sex": "female"}}
    subject_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        if self.lab_dataset_id is None:
            self.lab_dataset_id = self.dataset_name
        if self.side_perspective not in ("participant", "coder"):
            raise ValueError(
                f"side_perspective must be 'participant' or 'coder', "
                f"got {self.side_perspective!r}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatasetConfig":
        """Build from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown dataset configuration key(s): {unknown}")
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_dataset_config(path: Union[str, Path]) -> DatasetConfig:
    """Load a DatasetConfig from a JSON file."""
    with open(path, "r") as f:
        return DatasetConfig.from_dict(json.load(f))


@dataclass
class AppConfig:
    """Main application configuration."""

    # Environment
    env: str = field(default_factory=lambda: os.getenv("PEEKBANK_ENV", "development"))
    log_level: str = field(default_factory=lambda: os.getenv("PEEKBANK_LOG_LEVEL", "INFO"))

    # Sub-configurations
    resample: ResampleConfig = field(default_factory=ResampleConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    export: ExportConfig = field(default_factory=ExportConfig)


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    return config


def reload_config() -> AppConfig:
    """Reload configuration from environment."""
    global config
    load_dotenv(override=True)
    config = AppConfig()
    return config
