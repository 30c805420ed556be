"""
Column derivations applied while assembling the Peekbank tables.

This module provides:
- Full phrase construction from carrier-phrase codes
- Target side standardization, including the coder-perspective flip
- Age normalization to months
- AOI label mapping from tracker/coder codes, flag columns or gaze
  coordinates
- Sex standardization and vocabulary (CDI) aux data
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from ..data.schema import AOI_VALUES
from ..exceptions import LinkageError

logger = logging.getLogger(__name__)

CARRIER_PHRASES: Dict[str, str] = {
    "can": "Can you find the {label}?",
    "do": "Do you see the {label}?",
    "look": "Look at the {label}",
    "where": "Where is the {label}?",
}

# iCoder-style manual gaze codes
ICODER_AOI_CODES: Dict[str, str] = {
    "1": "target",
    "1.0": "target",
    "0": "distractor",
    "0.0": "distractor",
    "0.5": "other",
    ".": "missing",
    "-": "missing",
}

SIDE_CODES: Dict[str, str] = {
    "l": "left",
    "left": "left",
    "r": "right",
    "right": "right",
}

SEX_CODES: Dict[str, str] = {
    "m": "male",
    "male": "male",
    "boy": "male",
    "f": "female",
    "female": "female",
    "girl": "female",
    "other": "other",
}

MONTHS_PER_DAY = 12 / 365.25

_AGE_PATTERN = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([a-zA-Z]*)\s*$")
_AGE_UNITS = {
    "": None,
    "m": "months",
    "mo": "months",
    "mos": "months",
    "month": "months",
    "months": "months",
    "y": "years",
    "yr": "years",
    "yrs": "years",
    "year": "years",
    "years": "years",
    "d": "days",
    "day": "days",
    "days": "days",
}


def build_full_phrase(
    codes: pd.Series,
    labels: pd.Series,
    carrier_phrases: Optional[Mapping[str, str]] = None,
) -> pd.Series:
    """
    Build full phrases from carrier-phrase codes and target labels.

    Parameters
    ----------
    codes : pd.Series
        Carrier-phrase codes (e.g. "look"); matched case-insensitively
    labels : pd.Series
        Target stimulus labels
    carrier_phrases : Optional[Mapping[str, str]]
        Code -> template with a `{label}` placeholder

    Returns
    -------
    pd.Series
        Phrases; null where the code is absent or unknown
    """
    templates = {k.lower(): v for k, v in (carrier_phrases or CARRIER_PHRASES).items()}

    def _phrase(code: Any, label: Any) -> Optional[str]:
        if pd.isna(code) or pd.isna(label):
            return None
        template = templates.get(str(code).strip().lower())
        if template is None:
            return None
        return template.format(label=label)

    phrases = [_phrase(code, label) for code, label in zip(codes, labels)]
    unknown = codes.notna() & pd.Series([p is None for p in phrases], index=codes.index)
    if unknown.any():
        logger.warning(
            f"{int(unknown.sum()):,} row(s) with unknown carrier phrase code(s) "
            f"{sorted(codes[unknown].astype(str).unique())}; full_phrase left null"
        )
    return pd.Series(phrases, index=codes.index, dtype=object)


def standardize_target_side(values: pd.Series, perspective: str = "participant") -> pd.Series:
    """
    Map raw side codes to "left"/"right" from the participant's view.

    Parameters
    ----------
    values : pd.Series
        Raw codes (l, r, left, right; any case)
    perspective : str
        "participant", or "coder" when the raw coding is from the
        camera/coder point of view and must be flipped

    Returns
    -------
    pd.Series
        Standardized sides; nulls stay null

    Raises
    ------
    LinkageError
        If a non-null code is not a recognized side
    """
    if perspective not in ("participant", "coder"):
        raise ValueError(f"Unknown perspective: {perspective}")

    normalized = values.astype("string").str.strip().str.lower()
    sides = normalized.map(SIDE_CODES)

    unknown = normalized.notna() & sides.isna()
    if unknown.any():
        raise LinkageError(
            f"Unrecognized target_side code(s): {sorted(normalized[unknown].unique())}"
        )

    if perspective == "coder":
        sides = sides.map({"left": "right", "right": "left"})
    return sides.astype(object).where(sides.notna(), None)


def parse_age(value: Any, units: Optional[str] = None) -> Tuple[Optional[float], Optional[str]]:
    """
    Split a raw age into (number, units).

    Accepts numbers or strings such as "2 years" or "18mo". A unit in
    the string wins over `units`.
    """
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None, units
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value), units

    match = _AGE_PATTERN.match(str(value))
    if not match:
        raise LinkageError(f"Unparsable age: {value!r}")

    number, unit = match.groups()
    unit = unit.lower()
    if unit not in _AGE_UNITS:
        raise LinkageError(f"Unknown age unit in {value!r}")
    return float(number), _AGE_UNITS[unit] or units


def age_in_months(value: Optional[float], units: Optional[str]) -> Optional[float]:
    """
    Convert an age to months.

    Whole-year ages map to the middle of that year (Y * 12 + 6), since a
    child reported as "2 years" is anywhere from 24 to 35 months old.
    """
    if value is None:
        return None
    if units in (None, "months"):
        return value
    if units == "years":
        if float(value).is_integer():
            return value * 12 + 6
        return value * 12
    if units == "days":
        return value * MONTHS_PER_DAY
    raise LinkageError(f"Unknown age units: {units!r}")


def normalize_age(value: Any, units: Optional[str] = None) -> Tuple[Optional[float], Any, Optional[str]]:
    """
    Normalize a raw age.

    Returns
    -------
    Tuple[Optional[float], Any, Optional[str]]
        (age in months, lab_age, lab_age_units)
    """
    number, parsed_units = parse_age(value, units)
    if number is None:
        return None, None, parsed_units
    parsed_units = parsed_units or "months"
    return age_in_months(number, parsed_units), number, parsed_units


def normalize_ages(
    df: pd.DataFrame,
    age_col: str = "lab_age",
    units_col: str = "lab_age_units",
) -> pd.DataFrame:
    """Add `age`, and rewrite `lab_age` / `lab_age_units`, for every row."""
    out = df.copy()
    units = out[units_col] if units_col in out.columns else pd.Series(None, index=out.index)

    normalized = [normalize_age(v, u if pd.notna(u) else None) for v, u in zip(out[age_col], units)]
    out["age"] = pd.Series([n[0] for n in normalized], index=out.index, dtype=float)
    out[age_col] = pd.to_numeric(pd.Series([n[1] for n in normalized], index=out.index, dtype=float))
    out[units_col] = [n[2] for n in normalized]
    return out


def map_aoi_codes(values: pd.Series, code_map: Optional[Mapping[str, str]] = None) -> pd.Series:
    """
    Map raw AOI codes onto target/distractor/other/missing/track_loss.

    Codes are compared as stripped strings. Canonical labels pass
    through unchanged; any other code, and nulls, become "missing".
    """
    mapping = {str(k): v for k, v in (code_map or ICODER_AOI_CODES).items()}
    bad_targets = set(mapping.values()) - AOI_VALUES
    if bad_targets:
        raise ValueError(f"AOI code map targets outside the vocabulary: {sorted(bad_targets)}")

    codes = values.astype("string").str.strip()
    labels = codes.map(mapping)
    canonical = codes.str.lower().where(codes.str.lower().isin(AOI_VALUES))
    labels = labels.fillna(canonical)

    unrecognized = codes.notna() & labels.isna()
    if unrecognized.any():
        logger.warning(
            f"{int(unrecognized.sum()):,} sample(s) with unrecognized AOI code(s) "
            f"{sorted(codes[unrecognized].unique())[:10]} mapped to 'missing'"
        )
    return labels.fillna("missing").astype(object)


def aoi_from_flags(
    df: pd.DataFrame,
    target_col: str = "target",
    distractor_col: str = "distractor",
    track_loss_col: Optional[str] = "track_loss",
) -> pd.Series:
    """
    Derive AOI labels from per-sample 0/1 flag columns.

    Target wins over distractor, distractor over track loss; all flags
    0 is "other" and anything unreadable is "missing".
    """
    def flag(col: Optional[str]) -> pd.Series:
        if col is None or col not in df.columns:
            return pd.Series(np.nan, index=df.index)
        return pd.to_numeric(df[col], errors="coerce")

    target = flag(target_col)
    distractor = flag(distractor_col)
    track_loss = flag(track_loss_col)

    conditions = [
        target == 1,
        distractor == 1,
        track_loss == 1,
        (target == 0) & (distractor == 0) & ((track_loss == 0) | track_loss.isna()),
    ]
    choices = ["target", "distractor", "track_loss", "other"]
    return pd.Series(np.select(conditions, choices, default="missing"), index=df.index, dtype=object)


def aoi_from_xy(
    df: pd.DataFrame,
    region_set: Mapping[str, float],
    x_col: str = "x",
    y_col: str = "y",
    side_col: str = "target_side",
) -> pd.Series:
    """
    Classify gaze coordinates into target/distractor/other/missing.

    Parameters
    ----------
    df : pd.DataFrame
        Samples with gaze coordinates and standardized target side
    region_set : Mapping[str, float]
        The eight rectangle bounds (l_x_min ... r_y_max) in tracker
        screen coordinates
    """
    x = pd.to_numeric(df[x_col], errors="coerce")
    y = pd.to_numeric(df[y_col], errors="coerce")

    def inside(side: str) -> pd.Series:
        return (
            x.between(region_set[f"{side}_x_min"], region_set[f"{side}_x_max"])
            & y.between(region_set[f"{side}_y_min"], region_set[f"{side}_y_max"])
        )

    in_left = inside("l")
    in_right = inside("r")
    target_left = df[side_col] == "left"
    target_right = df[side_col] == "right"

    conditions = [
        x.isna() | y.isna(),
        (in_left & target_left) | (in_right & target_right),
        (in_left & target_right) | (in_right & target_left),
    ]
    choices = ["missing", "target", "distractor"]
    return pd.Series(np.select(conditions, choices, default="other"), index=df.index, dtype=object)


def standardize_sex(values: pd.Series) -> pd.Series:
    """Map raw sex codes onto the closed vocabulary; unknown is "unspecified"."""
    normalized = values.astype("string").str.strip().str.lower()
    return normalized.map(SEX_CODES).fillna("unspecified").astype(object)


def cdi_aux_data(
    responses: Iterable[Dict[str, Any]],
    language: str = "English (American)",
    instrument_type: str = "wg",
) -> Optional[str]:
    """
    Serialize vocabulary (CDI) scores into `subject_aux_data` JSON.

    Parameters
    ----------
    responses : Iterable[Dict[str, Any]]
        Dicts with `rawscore`, `age` and `measure` ("comp" or "prod");
        entries without a score are skipped
    language : str
        CDI language
    instrument_type : str
        CDI form (e.g. "wg", "ws")

    Returns
    -------
    Optional[str]
        JSON text, or None when no scores are present
    """
    entries: List[Dict[str, Any]] = []
    for response in responses:
        score = response.get("rawscore")
        if score is None or pd.isna(score):
            continue
        entries.append({
            "rawscore": score.item() if isinstance(score, np.generic) else score,
            "age": response.get("age"),
            "measure": response["measure"],
            "language": response.get("language", language),
            "instrument_type": response.get("instrument_type", instrument_type),
        })

    if not entries:
        return None
    return json.dumps({"cdi_responses": entries}, default=str)
