"""
Date/time field derivation for accident records.

STATS19 stores the collision date as dd/mm/yyyy and the local clock time as
HH:MM in two separate columns. These helpers combine them into a timestamp
and derive the temporal covariates used by the severity model. The night
window logic handles cross-midnight windows.
"""

from typing import Optional

import numpy as np
import pandas as pd

DEFAULT_DATE_FORMAT = "%d/%m/%Y"
DEFAULT_TIME_FORMAT = "%H:%M"

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


# =============================================================================
# Timestamp Parsing
# =============================================================================

def combine_date_time(
    dates: pd.Series,
    times: pd.Series,
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
) -> pd.Series:
    """
    Combine separate date and time columns into one naive timestamp Series.

    Unparseable values become NaT rather than raising, so the affected rows
    can be counted and dropped later.

    Args:
        dates: Series of date strings
        times: Series of time strings
        date_format: strptime format of the date column
        time_format: strptime format of the time column

    Returns:
        Series of datetime64 values (NaT where either part is invalid)
    """
    combined = dates.astype("string").str.strip() + " " + times.astype("string").str.strip()
    return pd.to_datetime(combined, format=f"{date_format} {time_format}", errors="coerce")


# =============================================================================
# Night Window (Cross-Midnight Aware)
# =============================================================================

def is_nighttime(
    timestamps: pd.Series,
    start_hour: int = 22,
    end_hour: int = 7,
) -> pd.Series:
    """
    Determine if timestamps fall within the night window.

    Examples:
        - 22:00-07:00: night is 22,23,0,1,2,3,4,5,6 (not 7)
        - 01:00-05:00: night is 1,2,3,4

    Returns:
        Nullable boolean Series (<NA> where the timestamp is NaT)
    """
    hours = timestamps.dt.hour

    if start_hour > end_hour:
        night = (hours >= start_hour) | (hours < end_hour)
    else:
        night = (hours >= start_hour) & (hours < end_hour)

    return night.astype("boolean").mask(timestamps.isna())


# =============================================================================
# Temporal Covariates
# =============================================================================

def derive_temporal_fields(
    df: pd.DataFrame,
    date_column: str = "date",
    time_column: str = "time",
    date_format: str = DEFAULT_DATE_FORMAT,
    time_format: str = DEFAULT_TIME_FORMAT,
    night_window: Optional[tuple] = None,
) -> pd.DataFrame:
    """
    Return a copy of df with hour, month, day_of_week, is_weekend, is_night.

    hour/month are nullable Int64; day_of_week is the day name; is_weekend and
    is_night are nullable booleans. Rows with an unparseable date or time get
    <NA> in every derived field.
    """
    start_hour, end_hour = night_window or (22, 7)

    out = df.copy()
    ts = combine_date_time(df[date_column], df[time_column], date_format, time_format)

    out["hour"] = ts.dt.hour.astype("Int64")
    out["month"] = ts.dt.month.astype("Int64")

    weekday = ts.dt.dayofweek
    names = np.array(DAY_NAMES, dtype=object)
    out["day_of_week"] = pd.Series(
        np.where(weekday.notna(), names[weekday.fillna(0).astype(int)], None),
        index=df.index,
        dtype="object",
    )
    out["is_weekend"] = (weekday >= 5).astype("boolean").mask(ts.isna())
    out["is_night"] = is_nighttime(ts, start_hour, end_hour)

    return out
