"""
Exploratory Data Analysis (EDA) Module
======================================

Grouping, correlation, and trend charts for the sentiment and indicator data.

Functions:
    - group_mean: Mean of a column within each group (e.g. pre/post 2020)
    - correlation_matrix: Pairwise-complete Pearson correlations
    - compare_periods: Pre vs post cutoff means per question
    - indicator_correlations: Correlation rows for the economic indicators
    - plot_time_series: Line charts over the date axis
    - plot_correlation_matrix: Correlation heatmap
    - plot_indicator_overlay: Survey answers against an indicator on a second axis
    - plot_signed_bars: Good vs bad answer reasons as relative stacked bars
    - plot_chart_group: One configured group of survey columns
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

from .data_loader import require_columns, table_name
from .errors import DegenerateColumnError, EmptyGroupError

logger = logging.getLogger(__name__)

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

# Survey questions that make up the sentiment indexes
INDEX_SOURCES = ["pago_r_all", "pexp_r_all", "bus12_r_all", "bus5_r_all", "dur_r_all"]

COLUMN_LABELS = {
    "ics_all": "Consumer Sentiment",
    "ice_all": "Consumer Expectations",
    "icc_all": "Current Economic Conditions",
    "durrn_lp_all": "Prices Are Low",
    "durrn_biap_all": "Prices Won't Come Back Down",
    "durrn_hp_all": "Prices Are High",
    "inflation": "Inflation Rate",
    "unemployment": "Unemployment",
    "interest_rate": "Interest Rates",
}


def _python_key(key: Hashable) -> Hashable:
    return key.item() if isinstance(key, np.generic) else key


def save_figure(fig: plt.Figure, save_path: Optional[str]) -> None:
    """Tighten the layout and write ``fig`` to ``save_path`` when one is given."""
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Figure written: {save_path}")


def group_mean(
    table: pd.DataFrame,
    group_by: str,
    value: str,
    groups: Optional[Iterable[Hashable]] = None
) -> Dict[Hashable, float]:
    """
    Arithmetic mean of ``value`` within each group of ``group_by``.

    Rows with a missing value are ignored. Groups appear in order of first
    appearance.

    Args:
        table: Table to partition
        group_by: Group key column (e.g. the boolean pre_2020 flag)
        value: Column to average
        groups: Groups that must be present (e.g. [True, False])

    Returns:
        Mapping of group key -> mean

    Raises:
        ColumnNotFoundError: If either column is absent
        EmptyGroupError: If a group has no rows with a value
    """
    require_columns(table, [group_by, value])

    means = {}
    counts = {}
    for key, frame in table.groupby(group_by, sort=False, dropna=True):
        key = _python_key(key)
        eligible = frame[value].dropna()
        counts[key] = len(eligible)
        if len(eligible):
            means[key] = float(eligible.mean())

    expected = list(counts) if groups is None else list(groups)
    empty = [key for key in expected if counts.get(key, 0) == 0]
    if empty:
        raise EmptyGroupError(
            f"{table_name(table)}: no '{value}' values for {group_by} in {empty}"
        )

    return {key: means[key] for key in expected}


def correlation_matrix(table: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """
    Pearson correlation between every pair of columns.

    Each pair uses only the rows where both values are present, independent of
    missing values in other columns. The result is symmetric with exactly 1.0
    on the diagonal and every value in [-1, 1].

    Args:
        table: Table holding the columns
        columns: Numeric columns to correlate

    Returns:
        Square DataFrame indexed and labelled by ``columns``

    Raises:
        ColumnNotFoundError: If a column is absent
        DegenerateColumnError: If a column has zero variance (or fewer than
            two values) over the rows paired with another column
    """
    require_columns(table, columns)
    values = {col: pd.to_numeric(table[col], errors="coerce").astype(float) for col in columns}

    for col in columns:
        present = values[col].dropna()
        if len(present) < 2 or present.nunique() == 1:
            raise DegenerateColumnError(
                f"{table_name(table)}: column '{col}' has zero variance "
                f"over {len(present)} values; correlation is undefined"
            )

    n = len(columns)
    matrix = np.eye(n)
    for i in range(n):
        for j in range(i + 1, n):
            if columns[i] == columns[j]:
                matrix[i, j] = matrix[j, i] = 1.0
                continue
            x, y = values[columns[i]], values[columns[j]]
            both = x.notna() & y.notna()
            xs, ys = x[both], y[both]
            if len(xs) < 2 or xs.nunique() == 1 or ys.nunique() == 1:
                raise DegenerateColumnError(
                    f"{table_name(table)}: correlation of '{columns[i]}' and '{columns[j]}' "
                    f"is undefined over {len(xs)} paired rows (zero variance)"
                )
            # pandas pairs on the index and skips missing values itself
            r = float(np.clip(x.corr(y), -1.0, 1.0))
            matrix[i, j] = matrix[j, i] = r

    return pd.DataFrame(matrix, index=list(columns), columns=list(columns))


def compare_periods(
    table: pd.DataFrame,
    columns: List[str],
    flag_col: str = "pre_2020"
) -> pd.DataFrame:
    """
    Compare each column's mean before and after the cutoff.

    Args:
        table: Sentiment table with a boolean pre/post flag
        columns: Survey questions to compare
        flag_col: Boolean column, True before the cutoff

    Returns:
        DataFrame indexed by question with columns pre, post, difference
        (difference = pre - post)
    """
    rows = []
    for col in columns:
        means = group_mean(table, flag_col, col, groups=[True, False])
        rows.append({
            "question": col,
            "pre": means[True],
            "post": means[False],
            "difference": means[True] - means[False]
        })

    return pd.DataFrame(rows, columns=["question", "pre", "post", "difference"]).set_index("question")


def indicator_correlations(
    table: pd.DataFrame,
    measures: List[str],
    columns: List[str]
) -> pd.DataFrame:
    """
    Correlations of each economic measure with every listed column.

    Args:
        table: Joined dataset
        measures: Indicator columns (rows of the result)
        columns: Columns to correlate against (measures are included first)

    Returns:
        DataFrame with one row per measure
    """
    ordered = list(dict.fromkeys(list(measures) + list(columns)))
    corr = correlation_matrix(table, ordered)
    return corr.loc[list(measures), ordered]


def plot_time_series(
    df: pd.DataFrame,
    columns: List[str],
    date_col: str = "date",
    labels: Optional[Mapping[str, str]] = None,
    title: str = "Time Series",
    ylabel: str = "Value",
    figsize: Tuple[int, int] = (14, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot several columns against the date axis on one chart.

    Args:
        df: DataFrame with a date column
        columns: Columns to plot
        date_col: Date column for the x axis
        labels: Display names for the legend (default: COLUMN_LABELS or the column name)
        title: Chart title
        ylabel: Y axis label
        figsize, save_path: Figure size and optional PNG destination

    Returns:
        Matplotlib Figure object
    """
    require_columns(df, [date_col] + list(columns))
    labels = labels or COLUMN_LABELS

    fig, ax = plt.subplots(figsize=figsize)

    for col in columns:
        ax.plot(df[date_col], df[col], linewidth=1.2, alpha=0.9, label=labels.get(col, col))

    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.set_xlabel('Month')
    ax.set_ylabel(ylabel)
    ax.legend(loc='best', fontsize=8)

    save_figure(fig, save_path)
    return fig


def plot_correlation_matrix(
    corr_matrix: pd.DataFrame,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Annotated heatmap of a correlation table, square or indicator rows only."""
    fig, ax = plt.subplots(figsize=figsize)

    sns.heatmap(
        corr_matrix,
        annot=True,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "r"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title('Correlation Matrix (Pearson, pairwise complete)', fontsize=14, fontweight='bold')
    save_figure(fig, save_path)
    return fig


def plot_indicator_overlay(
    survey: pd.DataFrame,
    indicator: pd.DataFrame,
    survey_columns: List[str],
    indicator_column: str,
    date_col: str = "date",
    title: str = "Inflation vs Price Concerns",
    figsize: Tuple[int, int] = (14, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot survey answers with an economic indicator on a secondary axis.

    Args:
        survey: Sentiment table
        indicator: Aligned indicator table
        survey_columns: Survey answers for the left axis
        indicator_column: Indicator for the right axis
        date_col: Date column in both tables
        title: Chart title
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    require_columns(survey, [date_col] + list(survey_columns))
    require_columns(indicator, [date_col, indicator_column])

    fig, ax = plt.subplots(figsize=figsize)
    for col in survey_columns:
        ax.plot(survey[date_col], survey[col], linewidth=1.2, label=COLUMN_LABELS.get(col, col))
    ax.set_xlabel('Month')
    ax.set_ylabel('Response Rate')
    ax.grid(False)

    # Only the part of the indicator that overlaps the survey window
    start = survey[date_col].min()
    shown = indicator[indicator[date_col] >= start]

    ax2 = ax.twinx()
    ax2.plot(
        shown[date_col], shown[indicator_column],
        color='black', linewidth=3, alpha=0.7,
        label=COLUMN_LABELS.get(indicator_column, indicator_column)
    )
    ax2.set_ylabel(COLUMN_LABELS.get(indicator_column, indicator_column))
    ax2.grid(False)

    lines = ax.get_legend_handles_labels()
    lines2 = ax2.get_legend_handles_labels()
    ax.legend(lines[0] + lines2[0], lines[1] + lines2[1], loc='upper left', fontsize=8)
    ax.set_title(title, fontsize=14, fontweight='bold')

    save_figure(fig, save_path)
    return fig


def signed_answers(
    table: pd.DataFrame,
    columns: List[str],
    negative: Iterable[str] = ()
) -> pd.DataFrame:
    """
    Answer rates with the "bad" reasons turned negative.

    Columns listed in ``negative`` are multiplied by -1, the others are kept
    as they are. Returns a new frame holding ``columns`` in the given order.
    """
    require_columns(table, columns)
    negative = set(negative)
    signs = pd.Series([-1.0 if col in negative else 1.0 for col in columns], index=columns)
    return table[columns].astype(float) * signs


def plot_signed_bars(
    df: pd.DataFrame,
    columns: List[str],
    negative: Iterable[str] = (),
    date_col: str = "date",
    labels: Optional[Mapping[str, str]] = None,
    title: str = "Answer Breakdown",
    ylabel: str = "Answer Rate",
    figsize: Tuple[int, int] = (14, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Relative stacked bars, one per month, of the signed answer rates.

    Positive values stack upward from zero and negative values downward, so
    the good and bad reasons for an answer sit on opposite sides of the axis.
    """
    require_columns(df, [date_col])
    signed = signed_answers(df, columns, negative)
    labels = labels or COLUMN_LABELS
    dates = df[date_col]

    fig, ax = plt.subplots(figsize=figsize)

    above = np.zeros(len(df))
    below = np.zeros(len(df))
    for col in columns:
        values = np.nan_to_num(signed[col].to_numpy())
        ax.bar(
            dates, values, bottom=np.where(values >= 0, above, below),
            width=31, linewidth=0, label=labels.get(col, col)
        )
        above += np.clip(values, 0, None)
        below += np.clip(values, None, 0)

    ax.axhline(0, color='black', linewidth=0.8)
    ax.set(xlabel='Month', ylabel=ylabel)
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=7, ncol=2)

    save_figure(fig, save_path)
    return fig


def plot_chart_group(
    survey: pd.DataFrame,
    group: Mapping[str, Any],
    date_col: str = "date",
    save_path: Optional[str] = None
) -> Optional[plt.Figure]:
    """
    Draw one configured chart group from the survey table.

    ``group`` holds ``name``, ``title``, ``ylabel``, ``columns`` (survey
    column -> legend label), and optionally ``kind`` (``line`` or
    ``signed_bar``) and ``negative`` (columns drawn below zero). Columns the
    survey lacks are skipped; returns None when none are left.
    """
    labels = dict(group['columns'])
    present = [col for col in labels if col in survey.columns]
    missing = [col for col in labels if col not in survey.columns]
    if missing:
        logger.warning(f"Chart group '{group['name']}': survey has no {missing}")
    if not present:
        return None

    kind = group.get('kind', 'line')
    common = dict(
        date_col=date_col, labels=labels,
        title=group.get('title', group['name']), ylabel=group.get('ylabel', 'Positive Rate'),
        save_path=save_path
    )
    if kind == 'line':
        return plot_time_series(survey, present, **common)
    if kind == 'signed_bar':
        return plot_signed_bars(survey, present, negative=group.get('negative', ()), **common)
    raise ValueError(f"Chart group '{group['name']}': unknown kind '{kind}'. Choose from: line, signed_bar")


def generate_eda_report(
    dataset: Dict[str, Any],
    config: Dict[str, Any],
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Draw the sentiment, question, overlay, correlation, indicator trend and
    configured answer-breakdown charts into ``output_dir`` and collect the
    numbers behind them.

    ``dataset`` is the dict returned by ``preprocessing.build_dataset``. The
    returned dict holds the figure file names, the pre/post comparison, the
    indicator correlation rows and per-column summary statistics.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    analysis = config.get('analysis', {})
    flag_col = config.get('alignment', {}).get('flag_column', 'pre_2020')
    index_columns = analysis.get('index_columns', ["ics_all", "ice_all", "icc_all"])
    question_columns = analysis.get('question_columns', INDEX_SOURCES)
    indicator_columns = analysis.get('indicator_columns', ["unemployment", "inflation", "interest_rate"])
    price_columns = analysis.get('price_columns', ["durrn_lp_all", "durrn_biap_all", "durrn_hp_all"])

    sentiment = dataset['sentiment']
    joined = dataset['joined']

    report = {
        "data_shape": joined.shape,
        "figures": [],
        "period_comparison": None,
        "correlations": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    # 1. Sentiment indexes
    logger.info("Plotting sentiment indexes...")
    plot_time_series(
        sentiment, index_columns,
        title="Consumer Sentiment", ylabel="Index Value",
        save_path=str(output_dir / "01_sentiment_indexes.png")
    )
    report["figures"].append("01_sentiment_indexes.png")

    # 2. Index source questions
    logger.info("Plotting index source questions...")
    plot_time_series(
        sentiment, question_columns, labels={c: c for c in question_columns},
        title="Sources for Consumer Sentiment", ylabel="Positive Rate",
        save_path=str(output_dir / "02_index_sources.png")
    )
    report["figures"].append("02_index_sources.png")

    # 3. Pre vs post cutoff
    logger.info("Comparing pre and post cutoff means...")
    comparison = compare_periods(sentiment, question_columns, flag_col=flag_col)
    report["period_comparison"] = comparison.to_dict(orient="index")

    # 4. Inflation vs price concerns
    available_prices = [c for c in price_columns if c in sentiment.columns]
    if available_prices and 'inflation' in dataset['indicators']:
        logger.info("Plotting inflation against price concerns...")
        plot_indicator_overlay(
            sentiment, dataset['indicators']['inflation'], available_prices, 'inflation',
            save_path=str(output_dir / "03_inflation_vs_prices.png")
        )
        report["figures"].append("03_inflation_vs_prices.png")

    # 5. Indicator correlations
    logger.info(f"Correlating {len(indicator_columns)} indicators with sentiment measures...")
    corr_columns = [c for c in index_columns + question_columns if c in joined.columns]
    corr = indicator_correlations(joined, indicator_columns, corr_columns)
    plot_correlation_matrix(corr, save_path=str(output_dir / "04_correlations.png"))
    report["figures"].append("04_correlations.png")
    report["correlations"] = corr.to_dict(orient="index")

    # 6. Indicator trends
    for name, table in dataset['indicators'].items():
        if name not in table.columns:
            continue
        filename = f"05_{name}_trend.png"
        plot_time_series(
            table, [name], title=COLUMN_LABELS.get(name, name), ylabel=COLUMN_LABELS.get(name, name),
            save_path=str(output_dir / filename)
        )
        report["figures"].append(filename)

    # 7. Configured answer breakdowns
    for group in analysis.get('chart_groups', []):
        filename = f"06_{group['name']}.png"
        if plot_chart_group(sentiment, group, save_path=str(output_dir / filename)) is not None:
            report["figures"].append(filename)

    # Summary statistics
    for col in index_columns + indicator_columns:
        if col in joined.columns:
            values = joined[col]
            report["statistics"][col] = {
                stat: float(getattr(values, stat)()) for stat in ("mean", "std", "min", "max")
            }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info(f"EDA done: {len(report['figures'])} figures in {output_dir}")
    logger.info("=" * 60)

    return report


def print_period_comparison(comparison: Mapping[str, Mapping[str, float]]) -> None:
    """Print the pre vs post cutoff table."""
    print("\n" + "=" * 60)
    print("PRE vs POST PANDEMIC")
    print("=" * 60)
    print(f"{'Question':<15} {'Pre':>12} {'Post':>12} {'Difference':>12}")
    print("-" * 60)
    for question, row in comparison.items():
        print(f"{question:<15} {row['pre']:>12.2f} {row['post']:>12.2f} {row['difference']:>12.2f}")
    print("=" * 60 + "\n")


def print_correlation_insights(corr_matrix: pd.DataFrame, threshold: float = 0.5) -> None:
    """Print the measure/indicator pairs whose |r| reaches ``threshold``, strongest first."""
    print("\n" + "=" * 50)
    print("INDICATOR CORRELATIONS")
    print("=" * 50)

    pairs = [
        (measure, col, corr_matrix.loc[measure, col])
        for measure in corr_matrix.index
        for col in corr_matrix.columns
        if col != measure and abs(corr_matrix.loc[measure, col]) >= threshold
    ]

    if not pairs:
        print(f"\nNothing reaches |r| >= {threshold}")
    else:
        print(f"\nPairs with |r| >= {threshold}:")
        for measure, col, r in sorted(pairs, key=lambda p: -abs(p[2])):
            sign = "+" if r > 0 else "-"
            print(f"  {measure:<14} {col:<16} {r:7.3f} ({sign})")

    print("=" * 50 + "\n")
