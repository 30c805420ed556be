"""
Raw file loading for the Peekbank import pipeline.

This module provides:
- Delimited raw file reading with file/row-level parse errors
- Multi-file loading that records scan order across files
- Participant/demographics loading
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional, Union

import pandas as pd

from ..exceptions import ParseError

logger = logging.getLogger(__name__)

DELIMITERS = {
    ".txt": "\t",
    ".tsv": "\t",
    ".csv": ",",
}

_ROW_PATTERN = re.compile(r"line (\d+)")


def _delimiter_for(path: Path) -> str:
    try:
        return DELIMITERS[path.suffix.lower()]
    except KeyError:
        raise ParseError(
            path, f"cannot infer delimiter for extension {path.suffix!r}"
        ) from None


def read_raw_table(
    path: Union[str, Path],
    delimiter: Optional[str] = None,
    skip_rows: int = 0,
    dtype: Optional[object] = str,
) -> pd.DataFrame:
    """
    Read one delimited raw export.

    Parameters
    ----------
    path : Union[str, Path]
        Path to a tab- or comma-separated file
    delimiter : Optional[str]
        Field delimiter; inferred from the extension when None
    skip_rows : int
        Number of preamble lines before the header row
    dtype : Optional[object]
        Column dtype; raw codes are read as strings by default so that
        codes such as "0.5" or "." survive unchanged

    Returns
    -------
    pd.DataFrame
        Raw table

    Raises
    ------
    ParseError
        If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ParseError(path, "file does not exist")

    sep = delimiter or _delimiter_for(path)

    try:
        df = pd.read_csv(path, sep=sep, skiprows=skip_rows, dtype=dtype)
    except pd.errors.ParserError as e:
        match = _ROW_PATTERN.search(str(e))
        row = int(match.group(1)) if match else None
        raise ParseError(path, str(e), row=row) from e
    except (pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ParseError(path, str(e)) from e

    logger.info(f"Loaded {path.name} ({len(df):,} rows, {len(df.columns)} columns)")
    return df


def load_raw_files(
    paths: Iterable[Union[str, Path]],
    delimiter: Optional[str] = None,
    skip_rows: int = 0,
) -> pd.DataFrame:
    """
    Load and concatenate several raw files of the same layout.

    Adds `source_file` and a global zero-based `raw_row` recording the
    scan order across all files, which later stages use to decide first
    occurrences and to tell repeated trials apart.

    Parameters
    ----------
    paths : Iterable[Union[str, Path]]
        Raw files, read in the given order
    delimiter : Optional[str]
        Field delimiter; inferred per file when None
    skip_rows : int
        Preamble lines to skip in every file

    Returns
    -------
    pd.DataFrame
        Concatenated raw rows
    """
    frames: List[pd.DataFrame] = []
    for path in paths:
        df = read_raw_table(path, delimiter=delimiter, skip_rows=skip_rows)
        df["source_file"] = Path(path).name
        frames.append(df)

    if not frames:
        raise ParseError(Path("."), "no raw files given")

    combined = pd.concat(frames, ignore_index=True)
    combined["raw_row"] = range(len(combined))
    logger.info(f"Combined {len(frames)} file(s) into {len(combined):,} rows")
    return combined


def read_participants(
    path: Union[str, Path],
    id_column: str,
    delimiter: Optional[str] = None,
) -> pd.DataFrame:
    """
    Read a participant/demographics file.

    Parameters
    ----------
    path : Union[str, Path]
        Demographics file
    id_column : str
        Column holding the lab subject id
    delimiter : Optional[str]
        Field delimiter; inferred from the extension when None

    Returns
    -------
    pd.DataFrame
        Demographics with the id column renamed to `lab_subject_id`
    """
    df = read_raw_table(path, delimiter=delimiter)
    if id_column not in df.columns:
        raise ParseError(path, f"missing participant id column {id_column!r}")

    df = df.rename(columns={id_column: "lab_subject_id"})
    df["lab_subject_id"] = df["lab_subject_id"].str.strip()

    missing = df["lab_subject_id"].isna()
    if missing.any():
        first = int(missing.to_numpy().nonzero()[0][0])
        raise ParseError(path, "participant row without an id", row=first + 2)

    return df
