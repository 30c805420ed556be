"""
Configuration module for the Peekbank import pipeline.
"""

from .settings import (
    get_config,
    config,
    reload_config,
    DatasetConfig,
    ResampleConfig,
    load_dataset_config,
)

__all__ = [
    "get_config",
    "config",
    "reload_config",
    "DatasetConfig",
    "ResampleConfig",
    "load_dataset_config",
]
