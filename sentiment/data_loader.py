"""
Data Loader Module
==================

Handles CSV ingestion, column validation, and basic data quality checks.

Functions:
    - load_config: Read the YAML settings
    - load_table: Load a delimited file with a column-name mapping rule
    - load_survey: Load the consumer sentiment survey table
    - load_indicator: Load a FRED indicator series
    - require_columns: Fail fast on missing columns
    - validate_data: Duplicate-key, gap and outlier checks
    - get_data_summary / print_data_summary: Column overview
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Any, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
import numpy as np
import yaml

from .errors import ColumnNotFoundError

logger = logging.getLogger(__name__)

SURVEY_DATE_COLUMNS = ("Month", "yyyy")
OBSERVATION_DATE_COLUMN = "observation_date"


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Read the pipeline settings from a YAML file.

    Args:
        config_path: YAML file with the data, alignment, analysis, features,
            models, prediction, output and logging sections

    Returns:
        Settings as a nested dictionary (empty for an empty file)

    Raises:
        FileNotFoundError: If the file is absent
        yaml.YAMLError: If the YAML cannot be parsed
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    with path.open() as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Configuration read from {path} ({len(config)} sections)")
    return config


def table_name(df: pd.DataFrame, default: str = "table") -> str:
    """Return the human-readable name recorded on a table."""
    return df.attrs.get("name", default)


def require_columns(
    df: pd.DataFrame,
    columns: Iterable[str],
    name: Optional[str] = None
) -> None:
    """
    Check that every named column exists in the table.

    Args:
        df: Table to check
        columns: Column names that must be present
        name: Table name for the error message (defaults to df.attrs["name"])

    Raises:
        ColumnNotFoundError: If any column is absent
    """
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ColumnNotFoundError(
            missing,
            table_name=name or table_name(df),
            available=df.columns.tolist()
        )


def load_table(
    file_path: str,
    rename: Optional[Dict[str, str]] = None,
    key_fn: Optional[Callable[[str], str]] = str.strip,
    na_values: Sequence[str] = (".",),
    parse_dates: Optional[List[str]] = None,
    name: Optional[str] = None
) -> pd.DataFrame:
    """
    Load a delimited file into a DataFrame, applying a column-name mapping rule.

    The mapping rule is applied in two steps: ``key_fn`` transforms every
    header, then ``rename`` maps individual (already transformed) names.

    Args:
        file_path: Path to the CSV file
        rename: Explicit old -> new column name mapping
        key_fn: Function applied to every column header
        na_values: Extra strings to treat as missing (FRED uses ".")
        parse_dates: Columns to parse as dates
        name: Table name used in error messages (defaults to the file stem)

    Returns:
        Table named after ``name`` (in ``df.attrs["name"]``)

    Raises:
        FileNotFoundError: If the file is absent
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise FileNotFoundError(f"Input file does not exist: {file_path}")

    df = pd.read_csv(file_path, na_values=list(na_values))

    if key_fn is not None:
        df.columns = [key_fn(str(col)) for col in df.columns]
    if rename:
        require_columns(df, rename.keys(), name=name or file_path.stem)
        df = df.rename(columns=rename)

    for col in parse_dates or []:
        require_columns(df, [col], name=name or file_path.stem)
        df[col] = pd.to_datetime(df[col])

    df.attrs["name"] = name or file_path.stem
    logger.info(f"Read {len(df)} rows, {df.shape[1]} columns of {df.attrs['name']} from {file_path}")

    return df


def load_survey(file_path: str, name: str = "survey") -> pd.DataFrame:
    """
    Load the consumer sentiment survey table.

    Every column other than the month/year fields is coerced to a float;
    unparseable cells become NaN.

    Args:
        file_path: Path to the survey CSV (codebook column names)
        name: Table name used in error messages

    Returns:
        Survey DataFrame with integer Month/yyyy and numeric answer columns
    """
    df = load_table(file_path, name=name)
    require_columns(df, SURVEY_DATE_COLUMNS)

    for col in df.columns:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    unparseable = df[list(SURVEY_DATE_COLUMNS)].isna().any(axis=1).sum()
    if unparseable:
        logger.warning(f"{unparseable} survey rows have a missing Month or yyyy")

    return df


def load_indicator(
    file_path: str,
    value_column: str,
    rename_to: Optional[str] = None,
    name: Optional[str] = None
) -> pd.DataFrame:
    """
    Load a FRED indicator CSV with an observation date and one value column.

    Args:
        file_path: Path to the indicator CSV
        value_column: Name of the value column in the file (e.g. 'UNRATE')
        rename_to: Friendly name for the value column (e.g. 'unemployment')
        name: Table name used in error messages

    Returns:
        DataFrame with columns [observation_date, <rename_to or value_column>]
    """
    target = rename_to or value_column
    df = load_table(
        file_path,
        rename={value_column: target} if rename_to else None,
        parse_dates=[OBSERVATION_DATE_COLUMN],
        name=name or value_column
    )
    require_columns(df, [target])

    df = df[[OBSERVATION_DATE_COLUMN, target]].copy()
    df[target] = pd.to_numeric(df[target], errors="coerce")
    df.attrs["name"] = name or value_column

    return df


def validate_data(
    df: pd.DataFrame,
    key: str = "date",
    columns: Optional[List[str]] = None,
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Run quality checks on a loaded or joined table.

    Checks:
        - The key column has no repeated values
        - The checked columns have no gaps
        - No value lies more than 4 standard deviations from its column mean

    Args:
        df: Table to check
        key: Column expected to be unique (skipped when absent)
        columns: Value columns to check (default: every numeric column)
        strict: Raise instead of returning when an issue is found

    Returns:
        (passed, report) where report lists every issue found
    """
    columns = list(columns) if columns is not None else df.select_dtypes(include=[np.number]).columns.tolist()
    issues: List[str] = []
    report: Dict[str, Any] = {"rows": len(df), "key": key, "checked_columns": columns}

    if key in df.columns:
        repeated = int(df[key].duplicated().sum())
        if repeated:
            issues.append(f"{repeated} repeated {key} value(s)")

    gaps = df[columns].isna().sum()
    gaps = gaps[gaps > 0]
    if len(gaps):
        cells = max(len(df) * len(columns), 1)
        issues.append(f"{int(gaps.sum())} missing cell(s), {100 * gaps.sum() / cells:.2f}% of checked values")
        report["missing_by_column"] = {col: int(n) for col, n in gaps.items()}

    for col in columns:
        spread = df[col].std()
        if not spread or np.isnan(spread):
            continue
        extreme = int(((df[col] - df[col].mean()).abs() > 4 * spread).sum())
        if extreme:
            issues.append(f"'{col}': {extreme} value(s) beyond 4 standard deviations")

    for issue in issues:
        logger.warning(f"{table_name(df)}: {issue}")

    report["issues"] = issues
    report["is_valid"] = not issues

    if strict and issues:
        raise ValueError(f"{table_name(df)} validation failed: {issues}")

    return report["is_valid"], report


def get_data_summary(df: pd.DataFrame, columns: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Describe the selected numeric columns.

    Args:
        df: Table to describe
        columns: Columns to describe (default: every numeric column)

    Returns:
        Dictionary with the table shape and per-column count, mean, std,
        min, median and max
    """
    if columns is None:
        columns = df.select_dtypes(include=[np.number]).columns.tolist()
    require_columns(df, columns)

    described = df[columns].agg(["count", "mean", "std", "min", "median", "max"])
    return {
        "name": table_name(df),
        "shape": df.shape,
        "statistics": {
            col: {stat: float(value) for stat, value in described[col].items()}
            for col in columns
        }
    }


def print_data_summary(df: pd.DataFrame, columns: Optional[List[str]] = None) -> None:
    """Print the table's shape, date range and a per-column overview."""
    columns = columns or df.columns.tolist()

    print("\n" + "=" * 60)
    print(f"DATASET SUMMARY: {table_name(df, 'dataset')}")
    print("=" * 60)
    print(f"{len(df)} rows, {df.shape[1]} columns")
    if "date" in df.columns and len(df) > 0:
        print(f"Months: {df['date'].min():%Y-%m} to {df['date'].max():%Y-%m}")
    print("-" * 60)

    for col in columns:
        present = int(df[col].notna().sum())
        print(f"  {col:<24} {str(df[col].dtype):<10} {present:>6} values, {len(df) - present:>4} missing")

    numeric = df[columns].select_dtypes(include=[np.number])
    if not numeric.empty:
        print("-" * 60)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")
