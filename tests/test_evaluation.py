"""
Test Suite for Evaluation Module
================================

Tests for model output tables, metrics and the evaluation report.
"""

import json

import matplotlib
matplotlib.use("Agg")

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sentiment.evaluation import (
    OUTPUT_COLUMNS,
    build_model_output,
    coefficient_summary,
    calculate_metrics,
    evaluate_model,
    evaluate_models,
)
from sentiment.model import train_model


@pytest.fixture
def data():
    np.random.seed(5)
    n = 48
    dates = pd.date_range("2016-01-01", periods=n, freq="MS") + pd.Timedelta(days=14)
    unemployment = np.random.uniform(3.5, 10, n)
    inflation = np.random.uniform(0.5, 6, n)
    return pd.DataFrame({
        'date': dates,
        'unemployment': unemployment,
        'inflation': inflation,
        'icc_all': 110 - 2 * unemployment - 4 * inflation + np.random.randn(n)
    })


@pytest.fixture
def model(data):
    return train_model(data, 'icc_all', ['unemployment', 'inflation'], name='icc')


class TestModelOutput:
    """Tests for build_model_output and calculate_metrics."""

    def test_columns_and_rows(self, model, data):
        output = build_model_output(model, data)

        assert list(output.columns) == OUTPUT_COLUMNS
        assert len(output) == len(data)

    def test_predicted_equals_fitted_on_training_rows(self, model, data):
        output = build_model_output(model, data)

        np.testing.assert_allclose(output['predicted'], output['fitted'])
        np.testing.assert_allclose(output['residual'], output['actual'] - output['fitted'])

    def test_rows_follow_dates(self, model, data):
        shuffled = data.sample(frac=1.0, random_state=0)

        output = build_model_output(model, shuffled)

        assert output['date'].is_monotonic_increasing
        np.testing.assert_allclose(output['actual'], data['icc_all'])

    def test_coefficient_summary(self, model):
        summary = coefficient_summary(model)

        assert list(summary) == ['intercept', 'unemployment', 'inflation']
        assert summary['inflation']['estimate'] == pytest.approx(model.coefficients['inflation'])
        assert set(summary['inflation']) == {'estimate', 'std_error', 't_value', 'p_value', 'significance'}

    def test_metrics(self):
        metrics = calculate_metrics(np.array([1.0, 2.0, 3.0]), np.array([1.0, 2.0, 5.0]))

        assert metrics['mae'] == pytest.approx(2.0 / 3.0)
        assert metrics['rmse'] == pytest.approx(np.sqrt(4.0 / 3.0))
        assert metrics['max_error'] == pytest.approx(2.0)
        assert metrics['n_samples'] == 3

    def test_perfect_metrics(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])

        metrics = calculate_metrics(y, y)

        assert metrics['rmse'] == 0.0
        assert metrics['r2'] == 1.0


class TestEvaluateModel:
    """Tests for the evaluation report files."""

    def test_outputs_written(self, model, data, tmp_path):
        result = evaluate_model(model, data, output_dir=str(tmp_path))

        assert Path(result['output_file']).exists()
        for name in result['figures']:
            assert (tmp_path / "figures" / name).exists()

        with open(result['metrics_file']) as f:
            saved = json.load(f)
        assert saved['model'] == 'icc'
        assert saved['r2'] == pytest.approx(model.r2)
        assert saved['metrics']['r2'] == pytest.approx(model.r2)

    def test_evaluate_models_with_scatter(self, model, data, tmp_path):
        results = evaluate_models(
            {'icc': model}, data, output_dir=str(tmp_path),
            scatter={'x': 'inflation', 'y': 'unemployment', 'color': 'icc_all'}
        )

        assert list(results) == ['icc']
        assert (tmp_path / "figures" / "predictor_scatter.png").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
