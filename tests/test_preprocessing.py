"""
Test Suite for Preprocessing Module
===================================

Tests for the date-key join, derived columns and dataset assembly.
"""

import logging

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sentiment.preprocessing import (
    inner_join,
    add_column,
    add_product,
    add_power,
    add_root,
    build_features,
    prepare_indicator,
    build_dataset,
)
from sentiment.errors import ColumnNotFoundError, DuplicateKeyError


def monthly(dates, **columns):
    """Build a small date-keyed table."""
    df = pd.DataFrame({'date': pd.to_datetime(dates), **columns})
    return df


class TestInnerJoin:
    """Tests for inner_join."""

    @pytest.fixture
    def survey(self):
        df = monthly(["2020-01-15", "2020-02-15", "2020-03-15"], ics_all=[99.8, 101.0, 89.1])
        df.attrs['name'] = 'survey'
        return df

    @pytest.fixture
    def inflation(self):
        df = monthly(["2020-02-15", "2020-03-15", "2020-04-15"], inflation=[2.6, 2.5, 1.6])
        df.attrs['name'] = 'inflation'
        return df

    def test_concrete_join(self, survey, inflation):
        result = inner_join([survey, inflation])

        assert list(result.columns) == ['date', 'ics_all', 'inflation']
        assert list(result['date']) == list(pd.to_datetime(["2020-02-15", "2020-03-15"]))
        assert list(result['ics_all']) == [101.0, 89.1]
        assert list(result['inflation']) == [2.6, 2.5]
        assert result.attrs['name'] == 'survey+inflation'

    def test_single_matching_row(self):
        a = monthly(["2020-01-15"], x=[1.0])
        b = monthly(["2020-01-15"], y=[2.0])

        result = inner_join([a, b])

        assert result.to_dict(orient='records') == [
            {'date': pd.Timestamp("2020-01-15"), 'x': 1.0, 'y': 2.0}
        ]

    def test_driving_table_order(self, inflation):
        driver = monthly(["2020-03-15", "2020-01-15", "2020-02-15"], ics_all=[3.0, 1.0, 2.0])

        result = inner_join([driver, inflation])

        assert list(result['ics_all']) == [3.0, 2.0]

    def test_disjoint_keys_give_empty_table(self, survey):
        other = monthly(["2021-01-15"], unemployment=[6.4])

        result = inner_join([survey, other])

        assert len(result) == 0
        assert 'unemployment' in result.columns

    def test_row_count_bounded_by_smallest_table(self, survey, inflation):
        rates = monthly(["2020-03-15"], interest_rate=[0.65])

        result = inner_join([survey, inflation, rates])

        assert len(result) <= min(len(survey), len(inflation), len(rates))
        assert list(result['interest_rate']) == [0.65]

    def test_single_table(self, survey):
        result = inner_join([survey])

        pd.testing.assert_frame_equal(result, survey)

    def test_key_resolutions_differ(self, survey):
        survey = survey.assign(date=survey['date'].astype("datetime64[s]"))
        other = monthly(["2020-02-15", "2020-03-15"], unemployment=[3.5, 4.4])
        other['date'] = other['date'].astype("datetime64[ms]")

        result = inner_join([survey, other])

        assert result['date'].dtype == survey['date'].dtype
        assert list(result['date']) == list(pd.to_datetime(["2020-02-15", "2020-03-15"]))
        assert list(result['unemployment']) == [3.5, 4.4]

    def test_does_not_modify_inputs(self, survey, inflation):
        before = survey.copy()
        inner_join([survey, inflation])

        pd.testing.assert_frame_equal(survey, before)

    def test_column_collision_last_wins(self, survey, caplog):
        other = monthly(["2020-01-15", "2020-02-15"], ics_all=[0.0, 1.0])

        with caplog.at_level(logging.WARNING):
            result = inner_join([survey, other])

        assert list(result['ics_all']) == [0.0, 1.0]
        assert "overwrite" in caplog.text

    def test_duplicate_key(self, survey):
        dup = monthly(["2020-01-15", "2020-01-15"], inflation=[1.0, 2.0])

        with pytest.raises(DuplicateKeyError):
            inner_join([survey, dup])

    def test_missing_key(self, survey):
        with pytest.raises(ColumnNotFoundError) as exc_info:
            inner_join([survey, pd.DataFrame({'inflation': [1.0]})])

        assert exc_info.value.missing == ['date']
        assert 'table[1]' in exc_info.value.table_name

    def test_no_tables(self):
        with pytest.raises(ValueError):
            inner_join([])


class TestDerivedColumns:
    """Tests for add_column and the feature shortcuts."""

    @pytest.fixture
    def table(self):
        return monthly(
            ["2020-01-15", "2020-02-15", "2020-03-15"],
            unemployment=[3.5, 4.4, 14.8],
            inflation=[2.5, 2.6, -1.0]
        )

    def test_elementwise_function(self, table):
        result = add_column(table, 'spread', lambda u, i: u - i, ['unemployment', 'inflation'])

        assert list(result['spread']) == pytest.approx([1.0, 1.8, 15.8])
        assert 'spread' not in table.columns

    def test_product(self, table):
        result = add_product(table, ['unemployment', 'inflation'])

        assert list(result['unemployment_x_inflation']) == pytest.approx([8.75, 11.44, -14.8])

    def test_power(self, table):
        result = add_power(table, 'unemployment')

        assert list(result['unemployment_squared']) == pytest.approx([12.25, 19.36, 219.04])

    def test_root_of_negative_is_nan(self, table):
        result = add_root(table, 'inflation')

        assert result['inflation_root'].iloc[0] == pytest.approx(np.sqrt(2.5))
        assert np.isnan(result['inflation_root'].iloc[2])

    def test_missing_input(self, table):
        with pytest.raises(ColumnNotFoundError):
            add_column(table, 'bad', lambda x: x, ['interest_rate'])

    def test_no_inputs(self, table):
        with pytest.raises(ValueError):
            add_column(table, 'bad', lambda: 1.0, [])

    def test_build_features_in_order(self, table):
        specs = [
            {'name': 'unemployment_x_inflation', 'op': 'product', 'inputs': ['unemployment', 'inflation']},
            {'name': 'cube', 'op': 'power', 'inputs': ['unemployment_x_inflation'], 'exponent': 3},
            {'name': 'unemployment_root', 'op': 'sqrt', 'inputs': ['unemployment']},
        ]

        result = build_features(table, specs)

        assert result['cube'].iloc[0] == pytest.approx(8.75 ** 3)
        assert result['unemployment_root'].iloc[1] == pytest.approx(np.sqrt(4.4))

    def test_build_features_unknown_op(self, table):
        with pytest.raises(ValueError, match="Unknown feature operation"):
            build_features(table, [{'name': 'x', 'op': 'log', 'inputs': ['inflation']}])


def make_indicator(start, end, name, freq="MS", value=1.0):
    dates = pd.date_range(start, end, freq=freq)
    df = pd.DataFrame({
        'observation_date': dates,
        name: value + np.arange(len(dates)) * 0.1
    })
    df.attrs['name'] = name
    return df


class TestPrepareIndicator:
    """Tests for prepare_indicator."""

    def test_monthly(self):
        df = make_indicator("2020-01-01", "2020-03-01", "unemployment")

        result = prepare_indicator(df, 'unemployment')

        assert list(result.columns) == ['date', 'unemployment']
        assert result['date'].iloc[0] == pd.Timestamp("2020-01-15")

    def test_daily(self):
        df = make_indicator("2020-01-01", "2020-02-29", "interest_rate", freq="D")

        result = prepare_indicator(df, 'interest_rate', frequency='daily')

        assert len(result) == 2
        assert result['interest_rate'].iloc[0] == pytest.approx(df['interest_rate'].iloc[:31].mean())

    def test_drops_before_first_date(self):
        df = make_indicator("2019-01-01", "2020-03-01", "inflation")

        result = prepare_indicator(df, 'inflation', first_date=pd.Timestamp("2020-01-15"))

        assert list(result['date']) == list(pd.to_datetime(["2020-01-15", "2020-02-15", "2020-03-15"]))

    def test_unknown_frequency(self):
        df = make_indicator("2020-01-01", "2020-03-01", "inflation")

        with pytest.raises(ValueError):
            prepare_indicator(df, 'inflation', frequency='weekly')


class TestBuildDataset:
    """Tests for the complete build_dataset pipeline."""

    @pytest.fixture
    def survey(self):
        months = pd.date_range("2019-06-01", "2020-05-01", freq="MS")
        np.random.seed(42)
        df = pd.DataFrame({
            'Month': months.month,
            'yyyy': months.year,
            'ics_all': np.random.randn(len(months)) + 95,
            'pago_r_all': np.random.randn(len(months)) + 120
        })
        df.attrs['name'] = 'survey'
        return df

    @pytest.fixture
    def indicators(self):
        return {
            'inflation': make_indicator("2019-01-01", "2020-12-01", "inflation", value=2.0),
            'unemployment': make_indicator("2019-01-01", "2020-12-01", "unemployment", value=3.5),
            'interest_rate': make_indicator("2019-01-01", "2020-12-31", "interest_rate", freq="D", value=1.5)
        }

    @pytest.fixture
    def config(self):
        return {
            'alignment': {
                'date_shift_days': 14,
                'start_date': '2019-09-01',
                'cutoff_date': '2020-01-01',
                'flag_column': 'pre_2020'
            },
            'data': {'indicators': {'interest_rate': {'frequency': 'daily'}}},
            'features': [
                {'name': 'unemployment_x_inflation', 'op': 'product', 'inputs': ['unemployment', 'inflation']}
            ]
        }

    def test_expected_keys(self, survey, indicators, config):
        result = build_dataset(survey, indicators, config)

        for key in ['survey', 'sentiment', 'indicators', 'joined', 'data']:
            assert key in result, f"Missing key: {key}"

    def test_sentiment_window_and_flag(self, survey, indicators, config):
        result = build_dataset(survey, indicators, config)
        sentiment = result['sentiment']

        assert len(sentiment) == 9
        assert sentiment['pre_2020'].sum() == 4

    def test_indicators_start_at_first_survey_month(self, survey, indicators, config):
        result = build_dataset(survey, indicators, config)

        for df in result['indicators'].values():
            assert df['date'].min() == pd.Timestamp("2019-06-15")

    def test_joined_dataset(self, survey, indicators, config):
        result = build_dataset(survey, indicators, config)
        data = result['data']

        assert len(data) == 12
        for col in ['ics_all', 'inflation', 'unemployment', 'interest_rate', 'unemployment_x_inflation']:
            assert col in data.columns
        np.testing.assert_array_almost_equal(
            data['unemployment_x_inflation'],
            data['unemployment'] * data['inflation']
        )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
