"""
Peekbank import pipeline

Converts raw eye-tracking and coded-looking exports from independent
looking-while-listening studies into the normalized Peekbank tables.

Modules:
    - data: Raw readers, reshaping, table schemas and persistence
    - transform: Time normalization, key assignment, derivations, assembly
    - validation: Schema and referential-integrity checks
    - pipeline: End-to-end import of one dataset
"""

__version__ = "1.0.0"

from config.settings import get_config, config

__all__ = [
    "__version__",
    "get_config",
    "config",
]
