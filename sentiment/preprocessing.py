"""
Data Preprocessing Module
=========================

Joins the aligned sources into one monthly dataset and derives model features.

Functions:
    - inner_join: Join time series tables on the date key
    - add_column: Derive a column elementwise from existing columns
    - add_product / add_power / add_root: Feature shortcuts used by the models
    - build_features: Derive all configured features
    - prepare_indicator: Align one FRED series to the monthly key
    - build_dataset: Complete loader -> aligner -> joiner pipeline
"""

import logging
from functools import partial, reduce
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .alignment import (
    align_observation_dates,
    align_survey_dates,
    filter_since,
    flag_before,
    monthly_mean,
)
from .data_loader import require_columns, table_name
from .errors import DuplicateKeyError, LengthMismatchError

logger = logging.getLogger(__name__)

DATE_KEY = "date"


def _product(*values: float) -> float:
    return reduce(lambda a, b: a * b, values)


def _power(value: float, exponent: float = 2) -> float:
    return value ** exponent


FEATURE_OPERATIONS: Dict[str, Callable[..., float]] = {
    "product": _product,
    "power": _power,
    "sqrt": np.sqrt,
}


def inner_join(tables: Sequence[pd.DataFrame], key: str = DATE_KEY) -> pd.DataFrame:
    """
    Inner-join time series tables on a shared key.

    A row of the first (driving) table is kept only when its key exists in every
    other table; output rows follow the driving table's order. Non-key columns
    keep their names. When a column appears in more than one table the last
    table wins and a warning is logged.

    Args:
        tables: Tables to join; the first one drives row order
        key: Join key column, unique within each table

    Returns:
        New joined DataFrame

    Raises:
        ValueError: If no tables are given
        ColumnNotFoundError: If a table has no key column
        DuplicateKeyError: If a key repeats within a table
    """
    if not tables:
        raise ValueError("inner_join requires at least one table")

    names = []
    for i, table in enumerate(tables):
        name = f"table[{i}] ({table_name(table)})"
        names.append(name)
        require_columns(table, [key], name=name)
        duplicates = table[key].duplicated()
        if duplicates.any():
            raise DuplicateKeyError(
                f"{name}: {int(duplicates.sum())} duplicate {key} values, "
                f"first is {table[key][duplicates].iloc[0]!r}"
            )

    # Datetime keys take the driving table's resolution
    key_dtype = tables[0][key].dtype
    is_datetime = pd.api.types.is_datetime64_any_dtype

    def normalize_key(table: pd.DataFrame) -> pd.DataFrame:
        table = table.copy()
        if is_datetime(key_dtype) and is_datetime(table[key]) and table[key].dtype != key_dtype:
            table[key] = table[key].astype(key_dtype)
        return table

    result = tables[0].copy()
    for name, table in zip(names[1:], tables[1:]):
        table = normalize_key(table)
        collisions = [c for c in table.columns if c != key and c in result.columns]
        if collisions:
            logger.warning(f"Columns {collisions} from {name} overwrite earlier values")
            result = result.drop(columns=collisions)
        result = result.merge(table, on=key, how="inner", sort=False)

    result = result.reset_index(drop=True)
    result.attrs = {"name": "+".join(table_name(t) for t in tables)}

    logger.info(
        f"Inner join of {len(tables)} tables on '{key}': "
        f"{[len(t) for t in tables]} rows -> {len(result)} rows"
    )
    return result


def add_column(
    table: pd.DataFrame,
    name: str,
    fn: Callable[..., Any],
    inputs: Sequence[str]
) -> pd.DataFrame:
    """
    Derive a column by applying ``fn`` elementwise across input columns.

    For every row i the new value is ``fn(col_1[i], ..., col_k[i])``.

    Args:
        table: Source table (not modified)
        name: Name of the derived column
        fn: Pure function of one value per input column
        inputs: Input column names, in argument order

    Returns:
        New DataFrame with the derived column

    Raises:
        ColumnNotFoundError: If any input column is absent
        LengthMismatchError: If input column lengths disagree
    """
    if not inputs:
        raise ValueError(f"Derived column '{name}' needs at least one input column")
    require_columns(table, inputs)

    columns = [table[col].to_numpy() for col in inputs]
    lengths = {col: len(values) for col, values in zip(inputs, columns)}
    if len(set(lengths.values()) | {len(table)}) > 1:
        raise LengthMismatchError(
            f"Cannot derive '{name}' in {table_name(table)}: column lengths {lengths} "
            f"differ from row count {len(table)}"
        )

    values = [fn(*row) for row in zip(*columns)]

    result = table.assign(**{name: pd.Series(values, index=table.index, dtype=float)})
    result.attrs = dict(table.attrs)
    return result


def add_product(table: pd.DataFrame, inputs: Sequence[str], name: Optional[str] = None) -> pd.DataFrame:
    """Interaction term: elementwise product of the input columns."""
    return add_column(table, name or "_x_".join(inputs), _product, inputs)


def add_power(table: pd.DataFrame, column: str, exponent: float = 2, name: Optional[str] = None) -> pd.DataFrame:
    """Elementwise power of one column (squares by default)."""
    if name is None:
        name = f"{column}_squared" if exponent == 2 else f"{column}_pow_{exponent}"
    return add_column(table, name, partial(_power, exponent=exponent), [column])


def add_root(table: pd.DataFrame, column: str, name: Optional[str] = None) -> pd.DataFrame:
    """Elementwise square root of one column; negative inputs give NaN."""
    with np.errstate(invalid="ignore"):
        return add_column(table, name or f"{column}_root", np.sqrt, [column])


def build_features(
    table: pd.DataFrame,
    feature_specs: Optional[List[Mapping[str, Any]]] = None
) -> pd.DataFrame:
    """
    Derive every configured feature, in order.

    Each feature definition is a mapping with ``name``, ``op`` (product, power or sqrt),
    ``inputs`` and, for ``power``, an optional ``exponent``. Later features may
    use earlier ones as inputs.

    Args:
        table: Joined dataset
        feature_specs: Feature definitions from the ``features`` config section

    Returns:
        New DataFrame with all derived columns
    """
    result = table
    for spec in feature_specs or []:
        op = spec.get("op")
        if op not in FEATURE_OPERATIONS:
            raise ValueError(
                f"Unknown feature operation '{op}' for '{spec.get('name')}'. "
                f"Choose from: {sorted(FEATURE_OPERATIONS)}"
            )

        inputs = list(spec.get("inputs", []))
        fn = FEATURE_OPERATIONS[op]
        if op == "power":
            fn = partial(_power, exponent=spec.get("exponent", 2))

        with np.errstate(invalid="ignore"):
            result = add_column(result, spec["name"], fn, inputs)
        logger.info(f"Derived feature '{spec['name']}' = {op}({', '.join(inputs)})")

    return result


def prepare_indicator(
    df: pd.DataFrame,
    value_col: str,
    frequency: str = "monthly",
    shift_days: int = 14,
    first_date: Optional[pd.Timestamp] = None
) -> pd.DataFrame:
    """
    Align one indicator series to the monthly date key.

    Monthly series are shifted from the 1st to the 15th; daily series are
    averaged per month. Rows before ``first_date`` are dropped.

    Args:
        df: Indicator table with an observation_date column
        value_col: Value column to keep
        frequency: 'monthly' or 'daily'
        shift_days: Alignment offset for monthly series
        first_date: First date to keep (typically the first survey month)

    Returns:
        New DataFrame with columns [date, value_col]
    """
    if frequency == "daily":
        aligned = monthly_mean(df, value_col)
    elif frequency == "monthly":
        aligned = align_observation_dates(df, shift_days=shift_days)[[DATE_KEY, value_col]]
        aligned.attrs = dict(df.attrs)
    else:
        raise ValueError(f"Unknown frequency '{frequency}' for {table_name(df)}. Choose from: monthly, daily")

    if first_date is not None:
        aligned = filter_since(aligned, first_date)

    return aligned


def build_dataset(
    survey: pd.DataFrame,
    indicators: Mapping[str, pd.DataFrame],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Complete preprocessing pipeline: align, join, and derive features.

    Args:
        survey: Raw survey table (Month, yyyy, codebook columns)
        indicators: Raw indicator tables keyed by friendly name; each table's
            value column carries that name
        config: Configuration dictionary

    Returns:
        Dictionary containing:
            - survey: Survey with mid-month dates (full history)
            - sentiment: Survey since start_date with the pre/post flag
            - indicators: Aligned indicator tables
            - joined: Survey inner-joined with every indicator
            - data: Joined dataset with derived features
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING")
    logger.info("=" * 60)

    align_config = config.get('alignment', {})
    indicator_config = config.get('data', {}).get('indicators', {})
    shift_days = align_config.get('date_shift_days', 14)

    aligned_survey = align_survey_dates(survey)
    first_date = aligned_survey[DATE_KEY].min()

    sentiment = filter_since(aligned_survey, align_config.get('start_date', '2008-01-01'))
    sentiment = flag_before(
        sentiment,
        align_config.get('cutoff_date', '2020-01-01'),
        flag_col=align_config.get('flag_column', 'pre_2020')
    )

    aligned_indicators = {}
    for name, df in indicators.items():
        frequency = indicator_config.get(name, {}).get('frequency', 'monthly')
        aligned_indicators[name] = prepare_indicator(
            df, name, frequency=frequency, shift_days=shift_days, first_date=first_date
        )

    joined = inner_join([aligned_survey] + list(aligned_indicators.values()))
    data = build_features(joined, config.get('features', []))

    result = {
        'survey': aligned_survey,
        'sentiment': sentiment,
        'indicators': aligned_indicators,
        'joined': joined,
        'data': data
    }

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Survey months: {len(aligned_survey)}")
    logger.info(f"  Sentiment months since start: {len(sentiment)}")
    logger.info(f"  Joined months: {len(data)}")
    if len(data):
        logger.info(f"  Joined range: {data[DATE_KEY].min():%Y-%m} to {data[DATE_KEY].max():%Y-%m}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        result: Dictionary from build_dataset
    """
    data = result['data']

    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Survey months: {len(result['survey'])}")
    print(f"Sentiment months (analysis window): {len(result['sentiment'])}")
    for name, df in result['indicators'].items():
        print(f"Indicator '{name}': {len(df)} months")
    print(f"Joined months: {len(data)}")
    if len(data):
        print(f"Date range: {data[DATE_KEY].min():%Y-%m-%d} to {data[DATE_KEY].max():%Y-%m-%d}")
    print(f"Columns: {data.shape[1]}")
    print("=" * 50 + "\n")
