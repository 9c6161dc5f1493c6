"""
Prediction Module
=================

What-if predictions from the fitted sentiment models.

Features:
    - Scenario rows of indicator values with the training feature set derived
    - Predictions with t-based prediction intervals per model
    - CSV export of the prediction table
    - JSON report grouped by model
"""

import logging
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence
from datetime import datetime

import pandas as pd

from .errors import SchemaMismatchError
from .model import OLSModel
from .preprocessing import build_features

logger = logging.getLogger(__name__)

SCENARIO_COLUMN = "scenario"


def build_scenario_frame(
    scenarios: Sequence[Mapping[str, Any]],
    feature_specs: Optional[List[Mapping[str, Any]]] = None
) -> pd.DataFrame:
    """
    Turn scenario definitions into rows carrying the derived model features.

    Features whose inputs a scenario does not provide are skipped, so a
    scenario only needs the raw indicators its models use.

    Args:
        scenarios: Mappings of indicator values, each with an optional 'name'
        feature_specs: Feature definitions (same as used for training)

    Returns:
        DataFrame with one row per scenario, indexed by scenario name
    """
    if not scenarios:
        raise ValueError("At least one scenario is required")

    rows = []
    for i, scenario in enumerate(scenarios):
        row = dict(scenario)
        row.setdefault('name', f"scenario_{i + 1}")
        rows.append(row)

    frame = pd.DataFrame(rows).rename(columns={'name': SCENARIO_COLUMN})
    frame.attrs = {"name": "scenarios"}

    applicable = []
    available = set(frame.columns)
    for spec in feature_specs or []:
        if set(spec.get('inputs', [])) <= available:
            applicable.append(spec)
            available.add(spec['name'])
        else:
            logger.debug(f"Skipping feature '{spec.get('name')}' for scenarios: inputs not provided")

    frame = build_features(frame, applicable)
    return frame.set_index(SCENARIO_COLUMN)


def predict_scenarios(
    model: OLSModel,
    frame: pd.DataFrame,
    confidence_level: float = 0.95
) -> pd.DataFrame:
    """
    Predict every scenario row with one model.

    Args:
        model: Fitted model
        frame: Scenario frame from build_scenario_frame
        confidence_level: Prediction interval coverage

    Returns:
        DataFrame with scenario, model, target, prediction, lower_bound,
        upper_bound and std_error columns

    Raises:
        SchemaMismatchError: If the frame lacks one of the model's predictors
    """
    missing = [p for p in model.predictors if p not in frame.columns]
    if missing:
        raise SchemaMismatchError(
            f"Model '{model.name}' needs predictors {missing} missing from the scenarios"
        )

    records = []
    for scenario, values in frame.iterrows():
        row = {p: values[p] for p in model.predictors}
        interval = model.predict_interval(row, confidence_level=confidence_level)
        records.append({
            'scenario': scenario,
            'model': model.name,
            'target': model.target,
            'prediction': interval['prediction'],
            'lower_bound': interval['lower_bound'],
            'upper_bound': interval['upper_bound'],
            'std_error': interval['std_error']
        })

    return pd.DataFrame(records)


def export_predictions(
    predictions: pd.DataFrame,
    output_path: str,
    include_timestamp: bool = True
) -> str:
    """
    Write the prediction table as CSV into the directory ``output_path``.

    The file is ``predictions_<YYYYmmdd_HHMMSS>.csv``, or plain
    ``predictions.csv`` when ``include_timestamp`` is false. Returns its path.
    """
    target_dir = Path(output_path)
    target_dir.mkdir(parents=True, exist_ok=True)

    suffix = f"_{datetime.now():%Y%m%d_%H%M%S}" if include_timestamp else ""
    csv_file = target_dir / f"predictions{suffix}.csv"
    predictions.to_csv(csv_file, index=False)

    logger.info(f"{len(predictions)} prediction rows written to {csv_file}")
    return str(csv_file)


def _scenario_entry(row: pd.Series) -> Dict[str, float]:
    return {key: float(row[key]) for key in ('prediction', 'lower_bound', 'upper_bound')}


def generate_prediction_report(
    predictions: pd.DataFrame,
    models: Mapping[str, OLSModel],
    confidence_level: float = 0.95,
    output_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    JSON-ready summary of the predictions, one entry per model.

    Each entry carries the model's target, predictors, R² and residual
    standard error next to its scenario predictions. Written to
    ``output_path`` when given.
    """
    by_model = {}
    for name, model in models.items():
        rows = predictions[predictions['model'] == name]
        by_model[name] = {
            'target': model.target,
            'predictors': list(model.predictors),
            'r2': float(model.r2),
            'residual_std_error': model.residual_std_error,
            'scenarios': {str(row['scenario']): _scenario_entry(row) for _, row in rows.iterrows()}
        }

    report = {
        'generated_at': datetime.now().isoformat(timespec='seconds'),
        'confidence_level': confidence_level,
        'models': by_model
    }

    if output_path:
        report_file = Path(output_path)
        report_file.parent.mkdir(parents=True, exist_ok=True)
        report_file.write_text(json.dumps(report, indent=2))
        logger.info(f"Scenario report for {len(by_model)} model(s) written to {report_file}")

    return report


def run_final_prediction(
    models: Mapping[str, OLSModel],
    scenarios: Sequence[Mapping[str, Any]],
    feature_specs: Optional[List[Mapping[str, Any]]] = None,
    confidence_level: float = 0.95,
    output_dir: str = "data/predictions/"
) -> Dict[str, Any]:
    """
    Predict every scenario with every model and write the results.

    Args:
        models: Fitted models keyed by name
        scenarios: Scenario definitions (indicator values)
        feature_specs: Feature definitions used for training, so that derived
            predictors exist for each scenario
        confidence_level: Prediction interval coverage
        output_dir: Destination of the CSV and ``prediction_report.json``

    Returns:
        Dict with predictions, confidence_level, csv_path, report_path, report
    """
    frame = build_scenario_frame(scenarios, feature_specs)

    logger.info("=" * 60)
    logger.info(f"Predicting {len(frame)} scenario(s) with {len(models)} model(s)")
    logger.info("=" * 60)

    predictions = pd.concat(
        [predict_scenarios(model, frame, confidence_level) for model in models.values()],
        ignore_index=True
    )

    destination = Path(output_dir)
    csv_path = export_predictions(predictions, str(destination))
    report_path = destination / "prediction_report.json"
    report = generate_prediction_report(
        predictions, models, confidence_level, output_path=str(report_path)
    )

    return {
        'predictions': predictions,
        'confidence_level': confidence_level,
        'csv_path': csv_path,
        'report_path': str(report_path),
        'report': report
    }


def print_prediction_results(result: Dict[str, Any]) -> None:
    level = int(round(result['confidence_level'] * 100))

    print("\n" + "=" * 78)
    print("SCENARIO PREDICTIONS")
    print("=" * 78)
    print(f"\n{'Model':<16} {'Scenario':<20} {'Prediction':<14} "
          f"{f'{level}% Lower':<13} {f'{level}% Upper':<13}")
    print("-" * 78)

    for _, row in result['predictions'].iterrows():
        print(f"{row['model']:<16} {str(row['scenario']):<20} {row['prediction']:<14.3f} "
              f"{row['lower_bound']:<13.3f} {row['upper_bound']:<13.3f}")

    print("-" * 78)
    print(f"\nCSV:    {result['csv_path']}")
    print(f"Report: {result['report_path']}")
    print("=" * 78 + "\n")
