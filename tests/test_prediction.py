"""
Test Suite for Prediction Module
================================

Tests for scenario frames and scenario predictions.
"""

import json

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sentiment.prediction import (
    build_scenario_frame,
    predict_scenarios,
    export_predictions,
    run_final_prediction,
)
from sentiment.model import train_models
from sentiment.errors import SchemaMismatchError

FEATURES = [
    {'name': 'unemployment_x_inflation', 'op': 'product', 'inputs': ['unemployment', 'inflation']},
    {'name': 'unemployment_squared', 'op': 'power', 'inputs': ['unemployment'], 'exponent': 2},
    {'name': 'rate_root', 'op': 'sqrt', 'inputs': ['interest_rate']},
]

SCENARIOS = [
    {'name': 'baseline', 'unemployment': 4.0, 'inflation': 3.0},
    {'name': 'stagflation', 'unemployment': 7.0, 'inflation': 6.0},
]


@pytest.fixture
def models():
    np.random.seed(21)
    n = 60
    unemployment = np.random.uniform(3.5, 10, n)
    inflation = np.random.uniform(0.5, 6, n)
    data = pd.DataFrame({
        'date': pd.date_range("2012-01-01", periods=n, freq="MS") + pd.Timedelta(days=14),
        'unemployment': unemployment,
        'inflation': inflation,
        'unemployment_x_inflation': unemployment * inflation,
        'unemployment_squared': unemployment ** 2,
        'icc_all': 110 - 2 * unemployment - 4 * inflation + np.random.randn(n)
    })
    return train_models(data, {
        'icc': {'target': 'icc_all', 'predictors': ['unemployment', 'inflation', 'unemployment_x_inflation']},
        'icc_quadratic': {'target': 'icc_all', 'predictors': ['unemployment', 'unemployment_squared']}
    })


class TestScenarioFrame:
    """Tests for build_scenario_frame."""

    def test_derived_features(self):
        frame = build_scenario_frame(SCENARIOS, FEATURES)

        assert list(frame.index) == ['baseline', 'stagflation']
        assert frame.loc['stagflation', 'unemployment_x_inflation'] == pytest.approx(42.0)
        assert frame.loc['baseline', 'unemployment_squared'] == pytest.approx(16.0)

    def test_skips_features_without_inputs(self):
        frame = build_scenario_frame(SCENARIOS, FEATURES)

        assert 'rate_root' not in frame.columns

    def test_default_names(self):
        frame = build_scenario_frame([{'unemployment': 4.0}])

        assert list(frame.index) == ['scenario_1']

    def test_no_scenarios(self):
        with pytest.raises(ValueError):
            build_scenario_frame([])


class TestPredictScenarios:
    """Tests for predict_scenarios and the final prediction workflow."""

    def test_matches_model_predict(self, models):
        frame = build_scenario_frame(SCENARIOS, FEATURES)
        model = models['icc']

        result = predict_scenarios(model, frame)

        expected = model.predict({'unemployment': 4.0, 'inflation': 3.0, 'unemployment_x_inflation': 12.0})
        assert result.loc[0, 'prediction'] == pytest.approx(expected)
        assert (result['lower_bound'] < result['prediction']).all()
        assert (result['prediction'] < result['upper_bound']).all()

    def test_missing_predictor(self, models):
        frame = build_scenario_frame([{'name': 'partial', 'unemployment': 4.0}], FEATURES)

        with pytest.raises(SchemaMismatchError):
            predict_scenarios(models['icc'], frame)

    def test_export(self, models, tmp_path):
        frame = build_scenario_frame(SCENARIOS, FEATURES)
        result = predict_scenarios(models['icc'], frame)

        path = export_predictions(result, str(tmp_path), include_timestamp=False)

        saved = pd.read_csv(path)
        assert list(saved['scenario']) == ['baseline', 'stagflation']

    def test_run_final_prediction(self, models, tmp_path):
        result = run_final_prediction(models, SCENARIOS, FEATURES, output_dir=str(tmp_path))

        assert len(result['predictions']) == 4
        assert Path(result['csv_path']).exists()

        with open(result['report_path']) as f:
            report = json.load(f)
        assert set(report['models']) == {'icc', 'icc_quadratic'}
        assert set(report['models']['icc']['scenarios']) == {'baseline', 'stagflation'}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
