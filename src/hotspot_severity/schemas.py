"""
Schema validation for pipeline tables.

Canonical tables (raw accidents, hotspot features, scored rows) are validated
on write, so that schema drift becomes an immediate local failure instead of a
silently degenerate model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

import pandas as pd


# =============================================================================
# Schema Definition
# =============================================================================

@dataclass
class ColumnSpec:
    """Specification for a single column."""
    name: str
    dtype: Optional[str] = None  # "Int64", "int", "float64", "numeric", "bool"
    nullable: bool = True
    unique: bool = False
    allowed_values: Optional[Set[Any]] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None


@dataclass
class Schema:
    """Schema specification for a DataFrame."""
    name: str
    columns: List[ColumnSpec]
    required_columns: List[str] = field(default_factory=list)
    min_rows: int = 0

    def __post_init__(self):
        if not self.required_columns:
            self.required_columns = [c.name for c in self.columns]


class SchemaError(Exception):
    """Raised when schema validation fails."""
    pass


_DTYPE_CHECKS = {
    "Int64": pd.api.types.is_integer_dtype,
    "int": pd.api.types.is_integer_dtype,
    "float64": pd.api.types.is_float_dtype,
    "numeric": pd.api.types.is_numeric_dtype,
    "bool": pd.api.types.is_bool_dtype,
}


# =============================================================================
# Predefined Schemas
# =============================================================================

# Defaults follow the DfT STATS19 collision extract
DEFAULT_COLUMNS: Dict[str, str] = {
    "longitude": "longitude",
    "latitude": "latitude",
    "severity": "accident_severity",
    "date": "date",
    "time": "time",
    "weather": "weather_conditions",
    "light": "light_conditions",
    "road_surface": "road_surface_conditions",
    "speed_limit": "speed_limit",
    "urban_rural": "urban_or_rural_area",
    "casualties": "number_of_casualties",
    "vehicles": "number_of_vehicles",
}


def raw_accident_schema(columns: Optional[Mapping[str, str]] = None) -> Schema:
    """
    Schema for the raw accident table: presence of every required column.

    Values are not constrained here; missing and out-of-range values are
    handled (and counted) by the cleaning step.
    """
    columns = {**DEFAULT_COLUMNS, **(columns or {})}
    return Schema(
        name="raw_accidents",
        columns=[ColumnSpec(name) for name in columns.values()],
        min_rows=1,
    )


FEATURES_SCHEMA = Schema(
    name="hotspot_features",
    columns=[
        ColumnSpec("longitude", dtype="float64", nullable=False),
        ColumnSpec("latitude", dtype="float64", nullable=False),
        ColumnSpec("cluster_id", dtype="Int64", nullable=True, min_value=1),
        ColumnSpec("distance_to_hotspot", dtype="float64", nullable=False, min_value=0),
        ColumnSpec("nearest_hotspot", dtype="Int64", nullable=False, min_value=1),
        ColumnSpec("severity", dtype="Int64", nullable=True, allowed_values={0, 1}),
    ],
    min_rows=1,
)

CENTROIDS_SCHEMA = Schema(
    name="hotspot_centroids",
    columns=[
        ColumnSpec("cluster_id", dtype="int", nullable=False, unique=True, min_value=1),
        ColumnSpec("mean_longitude", dtype="float64", nullable=False),
        ColumnSpec("mean_latitude", dtype="float64", nullable=False),
        ColumnSpec("n_points", dtype="int", nullable=False, min_value=1),
    ],
    min_rows=1,
)

SCORED_SCHEMA = Schema(
    name="scored_accidents",
    columns=[
        ColumnSpec("severity", dtype="int", nullable=False, allowed_values={0, 1}),
        ColumnSpec("distance_to_hotspot", dtype="float64", nullable=False, min_value=0),
        ColumnSpec("predicted_probability", dtype="float64", nullable=False, min_value=0, max_value=1),
        ColumnSpec("partition", nullable=False, allowed_values={"train", "test"}),
    ],
    min_rows=1,
)


# =============================================================================
# Validation Functions
# =============================================================================

def validate_column(
    df: pd.DataFrame,
    spec: ColumnSpec,
) -> List[str]:
    """
    Validate a single column against its specification.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    col_name = spec.name

    if col_name not in df.columns:
        errors.append(f"Missing column: {col_name}")
        return errors

    col = df[col_name]

    if spec.dtype is not None:
        check = _DTYPE_CHECKS.get(spec.dtype)
        if check is None:
            errors.append(f"Column {col_name}: unknown dtype rule {spec.dtype}")
        elif not check(col):
            errors.append(f"Column {col_name}: expected {spec.dtype}, got {col.dtype}")

    if not spec.nullable and col.isna().any():
        na_count = col.isna().sum()
        errors.append(f"Column {col_name}: {na_count} NA values not allowed")

    if spec.unique and col.duplicated().any():
        dup_count = col.duplicated().sum()
        errors.append(f"Column {col_name}: {dup_count} duplicate values not allowed")

    if spec.allowed_values is not None:
        invalid = ~col.isin(spec.allowed_values) & col.notna()
        if invalid.any():
            invalid_vals = col[invalid].unique()[:5]
            errors.append(f"Column {col_name}: invalid values {list(invalid_vals)}")

    if spec.min_value is not None:
        below_min = (col < spec.min_value) & col.notna()
        if below_min.any():
            errors.append(f"Column {col_name}: values below min {spec.min_value}")

    if spec.max_value is not None:
        above_max = (col > spec.max_value) & col.notna()
        if above_max.any():
            errors.append(f"Column {col_name}: values above max {spec.max_value}")

    return errors


def validate_schema(
    df: pd.DataFrame,
    schema: Schema,
    context: str = "",
    raise_on_error: bool = True,
) -> List[str]:
    """
    Validate a DataFrame against a schema.

    Args:
        df: DataFrame to validate
        schema: Schema specification
        context: Optional context for error messages
        raise_on_error: If True, raise SchemaError on validation failure

    Returns:
        List of error messages (empty if valid)

    Raises:
        SchemaError: If raise_on_error=True and validation fails
    """
    errors = []
    ctx = f" ({context})" if context else ""

    if len(df) < schema.min_rows:
        errors.append(f"Expected at least {schema.min_rows} rows, got {len(df)}{ctx}")

    missing = set(schema.required_columns) - set(df.columns)
    if missing:
        errors.append(f"Missing required columns: {sorted(missing)}{ctx}")

    for col_spec in schema.columns:
        if col_spec.name in missing:
            continue
        errors.extend(validate_column(df, col_spec))

    if errors and raise_on_error:
        raise SchemaError(f"Schema validation failed for '{schema.name}':\n" + "\n".join(errors))

    return errors
