"""
Persistence of the validated Peekbank tables.

Tables are written all-or-nothing:
- CSV: written into a temporary sibling directory, then swapped into place
- SQLite: written through SQLAlchemy inside a single transaction
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd
from sqlalchemy import create_engine

from .schema import TABLE_NAMES
from ..exceptions import LinkageError

logger = logging.getLogger(__name__)


def table_filename(table_name: str) -> str:
    return f"{table_name}.csv"


def _check_complete(tables: Dict[str, pd.DataFrame]) -> None:
    missing = [name for name in TABLE_NAMES if name not in tables]
    if missing:
        raise LinkageError(f"Refusing to write an incomplete table set; missing {missing}")


def write_csv_tables(
    tables: Dict[str, pd.DataFrame],
    output_dir: Union[str, Path],
    float_format: Optional[str] = None,
) -> Path:
    """
    Write all nine tables as CSV files into `output_dir`.

    The files are first written to a temporary directory next to
    `output_dir`; only when every file has been written is the previous
    directory replaced.

    Parameters
    ----------
    tables : Dict[str, pd.DataFrame]
        Table name -> table
    output_dir : Union[str, Path]
        Destination directory (created or replaced)
    float_format : Optional[str]
        Passed to `DataFrame.to_csv`

    Returns
    -------
    Path
        The output directory
    """
    _check_complete(tables)
    output_dir = Path(output_dir)
    output_dir.parent.mkdir(parents=True, exist_ok=True)

    staging = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}.", dir=output_dir.parent))
    try:
        for name in TABLE_NAMES:
            tables[name].to_csv(
                staging / table_filename(name),
                index=False,
                float_format=float_format,
            )

        if output_dir.exists():
            previous = output_dir.with_name(f".{output_dir.name}.previous")
            if previous.exists():
                shutil.rmtree(previous)
            output_dir.rename(previous)
            staging.rename(output_dir)
            shutil.rmtree(previous)
        else:
            staging.rename(output_dir)
    finally:
        if staging.exists():
            shutil.rmtree(staging)

    logger.info(f"Wrote {len(TABLE_NAMES)} tables to {output_dir}")
    return output_dir


def write_sqlite_tables(
    tables: Dict[str, pd.DataFrame],
    db_path: Union[str, Path],
) -> Path:
    """
    Write all nine tables into a SQLite database in one transaction.

    Existing tables with the same names are replaced.
    """
    _check_complete(tables)
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        with engine.begin() as connection:
            for name in TABLE_NAMES:
                tables[name].to_sql(
                    name,
                    connection,
                    if_exists="replace",
                    index=False,
                )
    finally:
        engine.dispose()

    logger.info(f"Wrote {len(TABLE_NAMES)} tables to {db_path}")
    return db_path


def write_tables(
    tables: Dict[str, pd.DataFrame],
    output: Union[str, Path],
    format: str = "csv",
    float_format: Optional[str] = None,
) -> Path:
    """
    Write the nine tables in the requested format.

    Parameters
    ----------
    tables : Dict[str, pd.DataFrame]
        Validated tables
    output : Union[str, Path]
        Directory (csv) or database file (sqlite)
    format : str
        "csv" or "sqlite"
    """
    if format == "csv":
        return write_csv_tables(tables, output, float_format=float_format)
    elif format == "sqlite":
        return write_sqlite_tables(tables, output)
    else:
        raise ValueError(f"Unknown format: {format}")


def read_tables(input_dir: Union[str, Path]) -> Dict[str, pd.DataFrame]:
    """
    Read a directory of the nine CSV tables.

    Missing files are left out of the result, which validation reports
    as missing tables.
    """
    input_dir = Path(input_dir)
    tables: Dict[str, pd.DataFrame] = {}
    for name in TABLE_NAMES:
        path = input_dir / table_filename(name)
        if path.exists():
            tables[name] = pd.read_csv(path)
        else:
            logger.warning(f"Missing table file: {path}")
    return tables
