#!/usr/bin/env python3
"""
Consumer Sentiment Models - Main Pipeline
=========================================

Runs the consumer sentiment analysis from raw CSV files to fitted models.

Phases:
    1. EDA - Period comparisons, correlations and sentiment charts
    2. Model - OLS models of the sentiment indexes on economic indicators
    3. Evaluation - Output tables, metrics and diagnostic plots
    4. Prediction - What-if scenarios with prediction intervals

Usage:
    # Run complete pipeline
    python main.py --config config/config.yaml

    # Run specific phase
    python main.py --phase eda

    # Read the CSV files from another directory
    python main.py --data-dir /path/to/data
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent))

from sentiment.data_loader import (
    load_config, load_survey, load_indicator, validate_data, print_data_summary
)
from sentiment.eda import generate_eda_report, print_correlation_insights, print_period_comparison
from sentiment.preprocessing import build_dataset, print_preprocessing_summary
from sentiment.model import train_models, print_model_summary
from sentiment.evaluation import evaluate_models, print_evaluation_report
from sentiment.prediction import run_final_prediction, print_prediction_results

PHASES = ['eda', 'model', 'evaluate', 'predict', 'all']


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Log to stdout, and to a timestamped file in ``log_dir`` when one is given."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / f"pipeline_{datetime.now():%Y%m%d_%H%M%S}.log"
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _resolve(path: str, data_dir: Optional[str]) -> str:
    if data_dir:
        return str(Path(data_dir) / Path(path).name)
    return path


def load_inputs(config: Dict[str, Any], data_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the survey and every configured indicator.

    Args:
        config: Configuration dictionary
        data_dir: Directory overriding the configured file locations

    Returns:
        Dictionary with 'survey' and 'indicators' (name -> table)
    """
    data_config = config.get('data', {})

    print("\n📊 Reading survey and indicator files...")
    survey = load_survey(_resolve(data_config.get('survey_path', 'data/raw/sca-table.csv'), data_dir))
    print_data_summary(survey, columns=config.get('analysis', {}).get('index_columns'))

    indicators = {}
    for name, spec in data_config.get('indicators', {}).items():
        df = load_indicator(
            _resolve(spec['path'], data_dir),
            spec['column'],
            rename_to=name,
            name=spec.get('name', name)
        )
        is_valid, _ = validate_data(df, key='observation_date', columns=[name], strict=False)
        if not is_valid:
            print(f"⚠️  Validation warnings for indicator '{name}'. Proceeding anyway...")
        indicators[name] = df

    return {'survey': survey, 'indicators': indicators}


def prepare_dataset(config: Dict[str, Any], data_dir: Optional[str] = None) -> Dict[str, Any]:
    """Load every source and build the joined monthly dataset."""
    inputs = load_inputs(config, data_dir)
    dataset = build_dataset(inputs['survey'], inputs['indicators'], config)
    print_preprocessing_summary(dataset)
    return dataset


def run_eda(dataset: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Charts, period comparison and indicator correlations; returns the EDA report."""
    print("\n" + "=" * 70)
    print("PHASE 1: SENTIMENT AND INDICATOR ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')
    threshold = config.get('analysis', {}).get('correlation_threshold', 0.5)

    report = generate_eda_report(dataset, config, output_dir=output_dir, show_plots=False)

    print_period_comparison(report['period_comparison'])
    print_correlation_insights(pd.DataFrame(report['correlations']).T, threshold=threshold)

    print(f"\n✓ {len(report['figures'])} charts in {output_dir}")

    return report


def run_modeling(dataset: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Fit every configured model on the joined data and save it under ``output.models_path``."""
    print("\n" + "=" * 70)
    print("PHASE 2: MODEL TRAINING")
    print("=" * 70)

    output_config = config.get('output', {})

    models = train_models(
        dataset['data'],
        config.get('models', {}),
        n_jobs=config.get('training', {}).get('n_jobs', 1),
        save_dir=output_config.get('models_path', 'models/')
    )

    for model in models.values():
        print_model_summary(model)

    return models


def run_evaluation(
    models: Dict[str, Any],
    dataset: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """Output tables, metrics and diagnostic charts for each fitted model."""
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL EVALUATION")
    print("=" * 70)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')

    results = evaluate_models(
        models,
        dataset['data'],
        output_dir=output_dir,
        scatter=config.get('analysis', {}).get('predictor_scatter')
    )

    print_evaluation_report(results)

    return results


def run_prediction(models: Dict[str, Any], config: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Predict the configured what-if scenarios.

    Returns None, and predicts nothing, when ``prediction.scenarios`` is empty.
    """
    print("\n" + "=" * 70)
    print("PHASE 4: SCENARIO PREDICTION")
    print("=" * 70)

    pred_config = config.get('prediction', {})
    scenarios = pred_config.get('scenarios', [])
    if not scenarios:
        print("No scenarios configured; skipping prediction.")
        return None

    result = run_final_prediction(
        models,
        scenarios,
        feature_specs=config.get('features', []),
        confidence_level=pred_config.get('confidence_level', 0.95),
        output_dir=config.get('data', {}).get('predictions_path', 'data/predictions/')
    )

    print_prediction_results(result)

    return result


def run_pipeline(
    config_path: str = "config/config.yaml",
    phase: str = "all",
    data_dir: Optional[str] = None,
    verbose: bool = False
) -> Dict[str, Any]:
    """
    Execute one phase, or all of them, with the phases it depends on.

    Args:
        config_path: Path to configuration file
        phase: One of 'eda', 'model', 'evaluate', 'predict', 'all'
        data_dir: Directory overriding the configured file locations
        verbose: Log at DEBUG level

    Returns:
        Dictionary containing the results of each phase that ran
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    config = load_config(config_path)
    log_config = config.get('logging', {})
    setup_logging('DEBUG' if verbose else log_config.get('level', 'INFO'), log_config.get('log_dir'))

    print("\n" + "=" * 70)
    print("CONSUMER SENTIMENT PIPELINE")
    print(f"Start: {datetime.now():%Y-%m-%d %H:%M:%S}")
    print("=" * 70)

    dataset = prepare_dataset(config, data_dir)
    results = {'dataset': dataset}

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(dataset, config)

    if phase in ('model', 'evaluate', 'predict', 'all'):
        results['models'] = run_modeling(dataset, config)

    if phase in ('evaluate', 'all'):
        results['evaluation'] = run_evaluation(results['models'], dataset, config)

    if phase in ('predict', 'all'):
        results['prediction'] = run_prediction(results['models'], config)

    print("\n" + "=" * 70)
    print(f"DONE ({phase})")
    print("=" * 70)
    print(f"  • Joined months: {len(dataset['data'])}")
    for name, model in results.get('models', {}).items():
        print(f"  • {name}: R² {model.r2:.4f} (n={model.n_obs})")
    print(f"End:   {datetime.now():%Y-%m-%d %H:%M:%S}")
    print("=" * 70 + "\n")

    return results


def main():
    """Command line entry point; returns the process exit code."""
    parser = argparse.ArgumentParser(
        description="Consumer sentiment vs. economic indicators pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --phase eda
  python main.py --config config/custom.yaml --data-dir data/raw
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='YAML configuration (default: %(default)s)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Pipeline phase; earlier phases it needs run too (default: %(default)s)'
    )

    parser.add_argument(
        '--data-dir', '-d',
        type=str,
        default=None,
        help='Directory holding the survey and indicator CSV files'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Log at DEBUG level'
    )

    args = parser.parse_args()

    if not Path(args.config).exists():
        print(f"Error: no configuration at {args.config}")
        return 1

    try:
        run_pipeline(args.config, args.phase, args.data_dir, args.verbose)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
