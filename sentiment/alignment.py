"""
Temporal Alignment Module
=========================

Puts every source on the same monthly key so tables can be joined by date.

The survey reports a month and a year; FRED reports monthly observations on the
first of the month and daily series for every day. All of them are keyed at the
15th of the month, midnight (naive timestamps are treated as UTC).

Functions:
    - mid_month_date: Canonical date for a (year, month) pair
    - shift_date: Advance a reported date by a fixed number of days
    - align_to_mid_month: Re-align any date to the 15th of its month
    - align_survey_dates: Vectorized mid-month dates for the survey table
    - align_observation_dates: Vectorized shift for monthly FRED series
    - monthly_mean: Average a daily series per calendar month
    - filter_since: Drop rows strictly before a cutoff
    - flag_before: Boolean pre/post cutoff column
"""

import logging
import datetime
from typing import Union

import numpy as np
import pandas as pd

from .data_loader import require_columns, table_name
from .errors import InvalidDateError

logger = logging.getLogger(__name__)

MID_MONTH_DAY = 15
DEFAULT_SHIFT_DAYS = 14

DateLike = Union[str, pd.Timestamp, np.datetime64, datetime.date]


def _validate_year_month(year, month) -> None:
    for label, value in (("year", year), ("month", month)):
        if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.integer, np.floating)):
            raise InvalidDateError(f"{label.capitalize()} must be an integer, got {value!r}")
        if not np.isfinite(value) or int(value) != value:
            raise InvalidDateError(f"{label.capitalize()} must be a whole number, got {value!r}")
    if not 1 <= month <= 12:
        raise InvalidDateError(f"Month must be in 1-12, got {month}")
    if year <= 0:
        raise InvalidDateError(f"Year must be positive, got {year}")


def mid_month_date(year: int, month: int) -> pd.Timestamp:
    """
    Build the canonical date for a month: day 15 at midnight.

    Args:
        year: Calendar year (positive)
        month: Month number in 1-12

    Returns:
        Timestamp on the 15th of the month

    Raises:
        InvalidDateError: If month is outside 1-12, year is non-positive,
            or the date cannot be represented
    """
    _validate_year_month(year, month)
    try:
        return pd.Timestamp(year=int(year), month=int(month), day=MID_MONTH_DAY)
    except (ValueError, OverflowError) as e:
        raise InvalidDateError(f"Cannot represent {int(year)}-{int(month):02d}-{MID_MONTH_DAY}: {e}") from e


def _to_utc_naive(ts: pd.Timestamp) -> pd.Timestamp:
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def shift_date(raw: DateLike, days: int = DEFAULT_SHIFT_DAYS) -> pd.Timestamp:
    """
    Advance a reported date by a fixed number of days and truncate to midnight UTC.

    FRED keys a monthly observation on the 1st; shifting by 14 days lands it on
    the 15th, matching the survey convention.

    Args:
        raw: Reported observation date
        days: Number of days to add

    Returns:
        Shifted timestamp at midnight (timezone-naive, UTC)

    Raises:
        InvalidDateError: If the date cannot be parsed
    """
    try:
        ts = pd.Timestamp(raw)
    except (ValueError, TypeError) as e:
        raise InvalidDateError(f"Cannot parse date {raw!r}: {e}") from e
    if pd.isna(ts):
        raise InvalidDateError(f"Cannot shift a missing date: {raw!r}")

    return _to_utc_naive(ts + pd.Timedelta(days=days)).normalize()


def align_to_mid_month(raw: DateLike) -> pd.Timestamp:
    """Re-key a date at the 15th of its own month. Aligning twice is a no-op."""
    try:
        ts = pd.Timestamp(raw)
    except (ValueError, TypeError) as e:
        raise InvalidDateError(f"Cannot parse date {raw!r}: {e}") from e
    if pd.isna(ts):
        raise InvalidDateError(f"Cannot align a missing date: {raw!r}")

    ts = _to_utc_naive(ts)
    return mid_month_date(ts.year, ts.month)


def align_survey_dates(
    df: pd.DataFrame,
    year_col: str = "yyyy",
    month_col: str = "Month",
    date_col: str = "date"
) -> pd.DataFrame:
    """
    Add a mid-month date column built from separate year and month fields.

    Args:
        df: Survey table
        year_col: Column holding the year
        month_col: Column holding the month number
        date_col: Name of the date column to create

    Returns:
        New DataFrame with the date column added

    Raises:
        InvalidDateError: If any row has an invalid year or month; the message
            names the first offending row
    """
    require_columns(df, [year_col, month_col])

    years = pd.to_numeric(df[year_col], errors="coerce")
    months = pd.to_numeric(df[month_col], errors="coerce")

    invalid = (
        years.isna() | months.isna()
        | (years <= 0) | (months < 1) | (months > 12)
        | (years % 1 != 0) | (months % 1 != 0)
    )
    if invalid.any():
        row = invalid.idxmax()
        raise InvalidDateError(
            f"{table_name(df)} row {row}: invalid {year_col}={df.at[row, year_col]!r}, "
            f"{month_col}={df.at[row, month_col]!r} ({int(invalid.sum())} invalid rows)"
        )

    try:
        dates = pd.to_datetime(pd.DataFrame({
            "year": years.astype(int),
            "month": months.astype(int),
            "day": MID_MONTH_DAY
        }))
    except (ValueError, OverflowError) as e:
        raise InvalidDateError(f"{table_name(df)}: cannot build dates: {e}") from e

    result = df.assign(**{date_col: dates})
    result.attrs = dict(df.attrs)
    logger.info(f"Aligned {len(result)} {table_name(df)} rows to mid-month dates")
    return result


def align_observation_dates(
    df: pd.DataFrame,
    date_col: str = "observation_date",
    shift_days: int = DEFAULT_SHIFT_DAYS,
    output_col: str = "date"
) -> pd.DataFrame:
    """
    Add a date column by shifting reported observation dates.

    Args:
        df: Indicator table
        date_col: Column holding the reported date
        shift_days: Days to add to each reported date
        output_col: Name of the aligned date column

    Returns:
        New DataFrame with the aligned date column added

    Raises:
        InvalidDateError: If any observation date is missing or unparseable
    """
    require_columns(df, [date_col])

    try:
        observed = pd.to_datetime(df[date_col])
    except (ValueError, TypeError) as e:
        raise InvalidDateError(f"{table_name(df)}: cannot parse {date_col}: {e}") from e

    if observed.isna().any():
        row = observed.isna().idxmax()
        raise InvalidDateError(f"{table_name(df)} row {row}: missing {date_col}")

    if observed.dt.tz is not None:
        observed = observed.dt.tz_convert("UTC").dt.tz_localize(None)

    aligned = (observed + pd.Timedelta(days=shift_days)).dt.normalize()

    result = df.assign(**{output_col: aligned})
    result.attrs = dict(df.attrs)
    logger.info(
        f"Shifted {len(result)} {table_name(df)} observation dates by {shift_days} days"
    )
    return result


def monthly_mean(
    df: pd.DataFrame,
    value_col: str,
    date_col: str = "observation_date",
    output_col: str = "date"
) -> pd.DataFrame:
    """
    Average a daily series within each calendar month.

    Args:
        df: Daily indicator table (e.g. DFF)
        value_col: Column to average
        date_col: Column holding the daily observation date
        output_col: Name of the mid-month date column

    Returns:
        New DataFrame with columns [output_col, value_col], one row per month
    """
    require_columns(df, [date_col, value_col])

    observed = pd.to_datetime(df[date_col])
    grouped = (
        df.assign(_year=observed.dt.year, _month=observed.dt.month)
        .groupby(["_year", "_month"], sort=True)[value_col]
        .mean()
        .reset_index()
    )
    grouped[output_col] = [
        mid_month_date(year, month) for year, month in zip(grouped["_year"], grouped["_month"])
    ]

    result = grouped[[output_col, value_col]].reset_index(drop=True)
    result.attrs = dict(df.attrs)
    logger.info(f"Averaged {len(df)} daily {table_name(df)} rows into {len(result)} months")
    return result


def filter_since(
    df: pd.DataFrame,
    cutoff: DateLike,
    date_col: str = "date"
) -> pd.DataFrame:
    """
    Drop rows whose date is strictly before the cutoff.

    Args:
        df: Aligned table
        cutoff: First date to keep
        date_col: Date column to compare

    Returns:
        New DataFrame containing rows on or after the cutoff
    """
    require_columns(df, [date_col])
    cutoff = pd.Timestamp(cutoff)

    result = df.loc[~(df[date_col] < cutoff)].reset_index(drop=True)
    result.attrs = dict(df.attrs)

    dropped = len(df) - len(result)
    if dropped:
        logger.info(f"Dropped {dropped} {table_name(df)} rows before {cutoff:%Y-%m-%d}")
    return result


def flag_before(
    df: pd.DataFrame,
    cutoff: DateLike,
    flag_col: str = "pre_2020",
    date_col: str = "date"
) -> pd.DataFrame:
    """Add a boolean column that is True for rows dated strictly before the cutoff."""
    require_columns(df, [date_col])
    cutoff = pd.Timestamp(cutoff)

    result = df.assign(**{flag_col: (df[date_col] < cutoff).astype(bool)})
    result.attrs = dict(df.attrs)
    return result
