"""
Test Suite for the Main Pipeline
================================

End-to-end run over small synthetic survey and FRED files.
"""

import matplotlib
matplotlib.use("Agg")

import pytest
import numpy as np
import pandas as pd
import yaml

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from main import run_pipeline, main


@pytest.fixture
def workspace(tmp_path):
    """Write survey, indicator CSVs and a config into a temporary directory."""
    np.random.seed(1)
    raw = tmp_path / "raw"
    raw.mkdir()

    months = pd.date_range("2017-01-01", "2021-12-01", freq="MS")
    n = len(months)
    unemployment = np.random.uniform(3.5, 10, n)
    inflation = np.random.uniform(1.0, 5, n)
    pd.DataFrame({
        'Month': months.month,
        'yyyy': months.year,
        'ics_all': 100 - 2 * unemployment - 3 * inflation + np.random.randn(n),
        'ice_all': 90 - 1.5 * unemployment - 2 * inflation + np.random.randn(n),
        'icc_all': 115 - 3 * unemployment - 4 * inflation + np.random.randn(n),
        'pago_r_all': np.random.randn(n) + 120,
        'dur_r_all': np.random.randn(n) + 140,
        'durrn_hp_all': np.random.randn(n) + 20
    }).to_csv(raw / "sca-table.csv", index=False)

    pd.DataFrame({'observation_date': months, 'UNRATE': unemployment}) \
        .to_csv(raw / "UNRATE.csv", index=False)
    pd.DataFrame({'observation_date': months, 'CORESTICKM159SFRBATL': inflation}) \
        .to_csv(raw / "CORESTICKM159SFRBATL.csv", index=False)
    days = pd.date_range("2017-01-01", "2021-12-31", freq="D")
    pd.DataFrame({'observation_date': days, 'DFF': np.random.uniform(0, 2.5, len(days))}) \
        .to_csv(raw / "DFF.csv", index=False)

    base = [
        'unemployment', 'inflation', 'unemployment_x_inflation'
    ]
    config = {
        'data': {
            'survey_path': "sca-table.csv",
            'predictions_path': str(tmp_path / "predictions"),
            'indicators': {
                'inflation': {'path': "CORESTICKM159SFRBATL.csv", 'column': "CORESTICKM159SFRBATL"},
                'unemployment': {'path': "UNRATE.csv", 'column': "UNRATE"},
                'interest_rate': {'path': "DFF.csv", 'column': "DFF", 'frequency': 'daily'}
            }
        },
        'alignment': {'start_date': "2018-01-01", 'cutoff_date': "2020-01-01"},
        'analysis': {
            'question_columns': ['pago_r_all', 'dur_r_all'],
            'price_columns': ['durrn_hp_all'],
            'predictor_scatter': {'x': 'inflation', 'y': 'unemployment', 'color': 'icc_all'}
        },
        'features': [
            {'name': 'unemployment_x_inflation', 'op': 'product', 'inputs': ['unemployment', 'inflation']},
            {'name': 'unemployment_squared', 'op': 'power', 'inputs': ['unemployment']},
            {'name': 'inflation_squared', 'op': 'power', 'inputs': ['inflation']}
        ],
        'models': {
            'ics': {'target': 'ics_all', 'predictors': base},
            'icc_quadratic': {'target': 'icc_all', 'predictors': base + ['unemployment_squared', 'inflation_squared']}
        },
        'prediction': {
            'scenarios': [{'name': 'baseline', 'unemployment': 4.0, 'inflation': 3.0}]
        },
        'output': {
            'figures_path': str(tmp_path / "reports" / "figures"),
            'reports_path': str(tmp_path / "reports"),
            'models_path': str(tmp_path / "models")
        },
        'logging': {'level': 'WARNING'}
    }
    config_path = tmp_path / "config.yaml"
    with open(config_path, 'w') as f:
        yaml.safe_dump(config, f)

    return {'root': tmp_path, 'raw': raw, 'config': config_path}


class TestPipeline:
    """Tests for run_pipeline and the CLI entry point."""

    def test_full_pipeline(self, workspace):
        results = run_pipeline(str(workspace['config']), 'all', data_dir=str(workspace['raw']))
        root = workspace['root']

        assert len(results['dataset']['data']) == 60
        assert set(results['models']) == {'ics', 'icc_quadratic'}
        assert results['models']['ics'].r2 > 0.5
        assert (root / "models" / "icc_quadratic.joblib").exists()
        assert (root / "reports" / "metrics" / "ics_output.csv").exists()
        assert (root / "reports" / "figures" / "04_correlations.png").exists()
        assert len(results['prediction']['predictions']) == 2

    def test_model_phase_only(self, workspace):
        results = run_pipeline(str(workspace['config']), 'model', data_dir=str(workspace['raw']))

        assert 'models' in results
        assert 'eda' not in results
        assert 'evaluation' not in results

    def test_unknown_phase(self, workspace):
        with pytest.raises(ValueError):
            run_pipeline(str(workspace['config']), 'train')

    def test_cli_failure_returns_one(self, workspace, monkeypatch):
        missing = workspace['root'] / "empty"
        missing.mkdir()
        monkeypatch.setattr(sys, 'argv', [
            'main.py', '--config', str(workspace['config']), '--data-dir', str(missing)
        ])

        assert main() == 1

    def test_cli_missing_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, 'argv', ['main.py', '--config', str(tmp_path / "nope.yaml")])

        assert main() == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
