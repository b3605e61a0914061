"""
Row-level cleaning of raw accident records.

Data-quality problems at the row level never abort a run: rows are filtered
and the number removed per reason is reported in a CleaningSummary.

- missing_coordinate: longitude or latitude absent/non-numeric (excluded
  before clustering)
- invalid_severity: severity not recognisable as slight / serious / fatal
- missing_covariate: any model covariate missing (excluded before training)
"""

from dataclasses import asdict, dataclass
from typing import Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from hotspot_severity.schemas import DEFAULT_COLUMNS, raw_accident_schema, validate_schema

# STATS19 marks unknown values with -1 or an explicit label
DEFAULT_MISSING_VALUES = (-1, "-1", "Data missing or out of range")

SEVERE_LABELS = frozenset({"1", "2", "fatal", "serious", "severe"})
SLIGHT_LABELS = frozenset({"3", "slight"})


@dataclass(frozen=True)
class CleaningSummary:
    """Counts of rows removed per reason."""
    n_input: int
    missing_coordinate: int = 0
    invalid_severity: int = 0
    missing_covariate: int = 0
    n_output: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping) -> "CleaningSummary":
        return cls(**{k: int(v) for k, v in data.items() if k in cls.__dataclass_fields__})


def select_source_columns(
    raw: pd.DataFrame,
    columns: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    """
    Validate that the raw table has every required column and rename them to
    canonical names (the keys of DEFAULT_COLUMNS).

    Raises:
        SchemaError: If a required column is missing.
    """
    columns = {**DEFAULT_COLUMNS, **(columns or {})}
    validate_schema(raw, raw_accident_schema(columns), context="raw input")
    return raw[list(columns.values())].rename(columns={v: k for k, v in columns.items()})


def replace_missing_codes(
    df: pd.DataFrame,
    columns: Iterable[str],
    missing_values: Sequence = DEFAULT_MISSING_VALUES,
) -> pd.DataFrame:
    """Return a copy of df with sentinel missing-data codes replaced by NA."""
    out = df.copy()
    for col in columns:
        out[col] = out[col].mask(out[col].isin(list(missing_values)))
    return out


def drop_missing_coordinates(
    df: pd.DataFrame,
    lon_column: str = "longitude",
    lat_column: str = "latitude",
) -> Tuple[pd.DataFrame, int]:
    """
    Exclude rows without usable coordinates.

    Coordinates are coerced to float64; non-numeric and non-finite values
    count as missing. The source index is preserved as row identity.

    Returns:
        (filtered copy, number of rows dropped)
    """
    out = df.copy()
    out[lon_column] = pd.to_numeric(out[lon_column], errors="coerce").astype("float64")
    out[lat_column] = pd.to_numeric(out[lat_column], errors="coerce").astype("float64")

    has_coords = np.isfinite(out[lon_column]) & np.isfinite(out[lat_column])
    return out[has_coords].copy(), int((~has_coords).sum())


def normalise_categories(series: pd.Series) -> pd.Series:
    """
    Convert a categorical column to stripped string labels.

    Integral numeric codes are rendered without a decimal part so that 1 and
    1.0 map to the same label "1".
    """
    if pd.api.types.is_bool_dtype(series):
        return series.astype("string")

    if pd.api.types.is_numeric_dtype(series):
        values = series.dropna()
        if len(values) == 0 or bool(np.all(np.mod(values.astype(float), 1) == 0)):
            return series.astype("Int64").astype("string")
        return series.astype("string")

    return series.astype("string").str.strip()


def binarize_severity(series: pd.Series) -> pd.Series:
    """
    Map raw severity to the binary label.

    fatal / serious (codes 1, 2) -> 1, slight (code 3) -> 0, anything else
    -> <NA>.
    """
    labels = normalise_categories(series).str.lower()
    out = pd.Series(pd.NA, index=series.index, dtype="Int64")
    out[labels.isin(SEVERE_LABELS).fillna(False).to_numpy(dtype=bool)] = 1
    out[labels.isin(SLIGHT_LABELS).fillna(False).to_numpy(dtype=bool)] = 0
    return out


def prepare_modeling_frame(
    df: pd.DataFrame,
    categorical_columns: Sequence[str],
    numeric_columns: Sequence[str],
    label_column: str = "severity",
) -> Tuple[pd.DataFrame, int]:
    """
    Build the complete-case modeling table.

    Rows with any missing covariate or label are dropped. Categorical
    covariates become string labels, numeric covariates float64, the label int.

    Returns:
        (modeling frame, number of rows dropped)
    """
    feature_columns = list(categorical_columns) + list(numeric_columns)
    out = df.copy()

    for col in categorical_columns:
        out[col] = normalise_categories(out[col])
    for col in numeric_columns:
        if pd.api.types.is_bool_dtype(out[col]):
            out[col] = out[col].astype("Float64")
        else:
            out[col] = pd.to_numeric(out[col], errors="coerce")

    complete = out[feature_columns + [label_column]].notna().all(axis=1)
    out = out[complete].copy()

    for col in categorical_columns:
        out[col] = out[col].astype(str)
    for col in numeric_columns:
        out[col] = out[col].astype("float64")
    out[label_column] = out[label_column].astype("int64")

    return out, int((~complete).sum())
