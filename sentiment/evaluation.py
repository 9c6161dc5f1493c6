"""
Model Evaluation Module
=======================

Output tables, metrics and diagnostic plots for the fitted sentiment models.

Features:
    - Per-model output table {date, actual, predicted, fitted, residual}
    - Coefficient summary with significance markers
    - RMSE, MAE, R² per model
    - Actual vs Predicted timeline
    - Fitted vs Residuals scatter
    - Residual distribution
    - Predictor scatter coloured by the target
"""

import logging
import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .data_loader import require_columns
from .eda import COLUMN_LABELS, save_figure
from .model import OLSModel

logger = logging.getLogger(__name__)

OUTPUT_COLUMNS = ["date", "actual", "predicted", "fitted", "residual"]


def build_model_output(
    model: OLSModel,
    data: pd.DataFrame,
    date_col: str = "date"
) -> pd.DataFrame:
    """
    Build the per-row output table of a model over its training data.

    ``predicted`` applies the model to each row of ``data``; ``fitted`` and
    ``residual`` are the values cached at training time. For training rows
    the two agree.

    Args:
        model: Fitted model
        data: Dataset the model was trained on (with the date column)
        date_col: Date column of ``data`` used as the row key

    Returns:
        DataFrame with columns date, actual, predicted, fitted, residual,
        one row per training row, in date order
    """
    require_columns(data, [date_col, model.target])

    keyed = data.set_index(date_col)
    rows = keyed.loc[model.training_index]

    output = pd.DataFrame({
        "date": model.training_index,
        "actual": model.actual.to_numpy(),
        "predicted": model.predict_frame(rows).to_numpy(),
        "fitted": model.fitted_values.to_numpy(),
        "residual": model.residuals.to_numpy()
    })
    return output.sort_values("date").reset_index(drop=True)


def coefficient_summary(model: OLSModel) -> Dict[str, Dict[str, Any]]:
    """
    Coefficient summary as a plain mapping.

    Returns:
        Mapping of coefficient name -> {estimate, std_error, t_value,
        p_value, significance}
    """
    summary = model.summary()
    return {
        name: {
            'estimate': float(row['estimate']),
            'std_error': float(row['std_error']),
            't_value': float(row['t_value']),
            'p_value': float(row['p_value']),
            'significance': row['significance']
        }
        for name, row in summary.iterrows()
    }


def calculate_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """RMSE, MAE and R² plus the mean, spread and largest absolute error, and n."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    errors = y_true - y_pred

    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'r2': float(r2_score(y_true, y_pred)),
        'mean_error': float(np.mean(errors)),
        'std_error': float(np.std(errors)),
        'max_error': float(np.max(np.abs(errors))),
        'n_samples': int(len(y_true))
    }


def plot_actual_vs_predicted(
    output: pd.DataFrame,
    title: str = "Modeled Index",
    figsize: Tuple[int, int] = (14, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Actual and predicted index per month, the gap between them shaded."""
    dates = output['date']
    fig, ax = plt.subplots(figsize=figsize)

    ax.plot(dates, output['actual'], 'b-', linewidth=1.5, label='Actual', alpha=0.8)
    ax.plot(dates, output['predicted'], 'r--', linewidth=1.5, label='Predicted', alpha=0.8)
    ax.fill_between(dates, output['actual'], output['predicted'], alpha=0.2, color='gray')

    r2 = r2_score(output['actual'], output['predicted'])
    ax.set(xlabel='Month', ylabel='Index')
    ax.set_title(f'{title} (R²={r2:.4f})', fontsize=14, fontweight='bold')
    ax.legend(loc='upper right', fontsize=8)

    save_figure(fig, save_path)
    return fig


def plot_fitted_vs_residuals(
    output: pd.DataFrame,
    title: str = "Fitted vs Residuals",
    annotate_top: int = 5,
    figsize: Tuple[int, int] = (10, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of fitted values against residuals.

    The ``annotate_top`` rows with the largest absolute residual are labelled
    with their month (YYYY-MM).
    """
    fig, ax = plt.subplots(figsize=figsize)

    ax.scatter(output['fitted'], output['residual'], alpha=0.6, s=20)
    ax.axhline(0, color='red', linestyle='--', linewidth=1.5)

    if annotate_top:
        worst = output['residual'].abs().nlargest(annotate_top).index
        for _, row in output.loc[worst].iterrows():
            ax.annotate(
                pd.Timestamp(row['date']).strftime('%Y-%m'),
                (row['fitted'], row['residual']),
                fontsize=7, xytext=(3, 3), textcoords='offset points'
            )

    ax.set(xlabel='Fitted', ylabel='Residuals')
    ax.set_title(title, fontsize=14, fontweight='bold')

    save_figure(fig, save_path)
    return fig


def plot_residuals(
    output: pd.DataFrame,
    title: str = "Residual Distribution",
    figsize: Tuple[int, int] = (10, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """Histogram with KDE of the residuals, marking zero and the residual mean."""
    residuals = output['residual'].to_numpy()
    center = residuals.mean()

    fig, ax = plt.subplots(figsize=figsize)
    sns.histplot(residuals, kde=True, ax=ax, bins=30, alpha=0.7)

    ax.axvline(0, color='red', linestyle='--', linewidth=2, label='0')
    ax.axvline(center, color='green', linestyle='--', linewidth=2, label=f'mean {center:.4f}')

    ax.set(xlabel='Residual (Actual - Fitted)', ylabel='Months')
    ax.set_title(f'{title} (sd {residuals.std():.4f})', fontsize=12, fontweight='bold')
    ax.legend(fontsize=8)

    save_figure(fig, save_path)
    return fig


def _axis_label(column: str) -> str:
    return COLUMN_LABELS.get(column, column.replace('_', ' ').title())


def plot_predictor_scatter(
    data: pd.DataFrame,
    x: str = "inflation",
    y: str = "unemployment",
    color: str = "icc_all",
    date_col: str = "date",
    figsize: Tuple[int, int] = (10, 7),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Path of two predictors through time, each month coloured by ``color``.

    Args:
        data: Joined dataset
        x, y: Predictor columns for the two axes
        color: Column mapped onto the marker colour (usually a target)
        date_col: Column giving the order of the path
    """
    require_columns(data, [x, y, color, date_col])
    ordered = data.sort_values(date_col)

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(ordered[x], ordered[y], color='grey', linewidth=1, alpha=0.6)
    points = ax.scatter(ordered[x], ordered[y], c=ordered[color], cmap='hot', s=16, zorder=3)
    fig.colorbar(points, ax=ax, label=_axis_label(color))

    ax.set(xlabel=_axis_label(x), ylabel=_axis_label(y))
    ax.set_title(f'{_axis_label(x)} vs {_axis_label(y)}', fontsize=14, fontweight='bold')

    save_figure(fig, save_path)
    return fig


def evaluate_model(
    model: OLSModel,
    data: pd.DataFrame,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Write the output table, the evaluation JSON and the diagnostic charts of one model.

    Files land in ``<output_dir>/metrics/`` ({name}_output.csv,
    {name}_evaluation.json) and ``<output_dir>/figures/``.

    Returns:
        Dict with output, coefficients, metrics, figures, metrics_file, output_file
    """
    root = Path(output_dir)
    figures_dir, tables_dir = root / "figures", root / "metrics"
    for folder in (figures_dir, tables_dir):
        folder.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info(f"Evaluating model '{model.name}' ({model.target} ~ {' + '.join(model.predictors)})")
    logger.info("=" * 60)

    output = build_model_output(model, data)
    metrics = calculate_metrics(output['actual'], output['predicted'])
    coefficients = coefficient_summary(model)

    output_file = tables_dir / f"{model.name}_output.csv"
    output.to_csv(output_file, index=False)

    evaluation = {
        'model': model.name,
        'target': model.target,
        'predictors': list(model.predictors),
        'metrics': metrics,
        'r2': model.r2,
        'adj_r2': model.adj_r2,
        'f_statistic': model.f_statistic,
        'f_p_value': model.f_p_value,
        'coefficients': coefficients
    }
    metrics_file = tables_dir / f"{model.name}_evaluation.json"
    with open(metrics_file, 'w') as f:
        json.dump(evaluation, f, indent=2, default=str)
    logger.info(f"Wrote {output_file.name} and {metrics_file.name} to {tables_dir}")

    charts = [
        ("actual_vs_predicted", plot_actual_vs_predicted, {'title': f"Modeled {model.target}"}),
        ("fitted_vs_residuals", plot_fitted_vs_residuals, {}),
        ("residuals", plot_residuals, {}),
    ]
    figures = []
    for suffix, draw, kwargs in charts:
        filename = f"{model.name}_{suffix}.png"
        draw(output, save_path=str(figures_dir / filename), **kwargs)
        figures.append(filename)

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info(
        f"'{model.name}': RMSE {metrics['rmse']:.4f}, MAE {metrics['mae']:.4f}, "
        f"R² {metrics['r2']:.4f} over {metrics['n_samples']} months"
    )

    return {
        'output': output,
        'coefficients': coefficients,
        'metrics': metrics,
        'figures': figures,
        'metrics_file': str(metrics_file),
        'output_file': str(output_file)
    }


def evaluate_models(
    models: Mapping[str, OLSModel],
    data: pd.DataFrame,
    output_dir: str = "reports/",
    scatter: Optional[Mapping[str, str]] = None
) -> Dict[str, Dict[str, Any]]:
    """
    Evaluate every model, then draw the shared predictor scatter when
    ``scatter`` names its x, y and color columns.
    """
    results = {name: evaluate_model(model, data, output_dir) for name, model in models.items()}

    if scatter:
        plot_predictor_scatter(
            data, x=scatter['x'], y=scatter['y'], color=scatter['color'],
            save_path=str(Path(output_dir) / "figures" / "predictor_scatter.png")
        )
        plt.close('all')

    return results


def print_evaluation_report(results: Mapping[str, Dict[str, Any]]) -> None:
    """Console table of the evaluated models plus any coefficient above p = 0.1."""
    print("\n" + "=" * 70)
    print("FITTED MODELS")
    print("=" * 70)
    print(f"{'Model':<20} {'RMSE':>10} {'MAE':>10} {'R²':>10} {'Months':>8}")
    print("-" * 70)

    for name, result in results.items():
        m = result['metrics']
        print(f"{name:<20} {m['rmse']:>10.4f} {m['mae']:>10.4f} {m['r2']:>10.4f} {m['n_samples']:>8}")

    print("-" * 70)
    for name, result in results.items():
        weak = [c for c, row in result['coefficients'].items() if not row['significance']]
        if weak:
            print(f"  ⚠ {name}: p >= 0.1 for {', '.join(weak)}")

    print("=" * 70 + "\n")
