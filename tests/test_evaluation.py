"""
Test Suite for Evaluation Module
================================

Tests for the result table, metrics, plots and model comparison.
"""

import json

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mcap.evaluation import (
    build_result_table, calculate_metrics, evaluate_model, compare_models,
    print_evaluation_report
)
from mcap.model import KNNModel, RandomForestModel
from mcap.preprocessing import preprocess_pipeline
from conftest import make_financials

TARGET = "Market.Cap.2023"


class TestResultTable:
    """Tests for build_result_table."""

    def test_inverse_scaling(self):
        results = build_result_table([0.0, 1.0, -1.0], [0.5, 1.0, 0.0],
                                     target_mean=100.0, target_std=10.0)

        np.testing.assert_allclose(results['real'], [100.0, 110.0, 90.0])
        np.testing.assert_allclose(results['predicted'], [105.0, 110.0, 100.0])
        np.testing.assert_allclose(results['residual'], [-5.0, 0.0, -10.0])
        np.testing.assert_allclose(results['abs_residual'], [5.0, 0.0, 10.0])

    def test_negative_predictions_abs(self):
        results = build_result_table([0.0, 0.0], [-3.0, 1.0],
                                     target_mean=10.0, target_std=5.0)

        assert results['negative_prediction'].tolist() == [True, False]
        np.testing.assert_allclose(results['predicted'], [5.0, 15.0])

    def test_negative_predictions_clip(self):
        results = build_result_table([0.0, 0.0], [-3.0, 1.0],
                                     target_mean=10.0, target_std=5.0, non_negative="clip")

        np.testing.assert_allclose(results['predicted'], [0.0, 15.0])
        assert results['negative_prediction'].sum() == 1

    @pytest.mark.parametrize("strategy", ["abs", "clip"])
    def test_predictions_never_negative(self, strategy):
        rng = np.random.default_rng(0)
        results = build_result_table(rng.normal(size=500), rng.normal(-1, 2, size=500),
                                     target_mean=1e9, target_std=2e9,
                                     non_negative=strategy)

        assert (results['predicted'] >= 0).all()
        assert results['negative_prediction'].any()

    def test_keeps_series_index(self):
        y = pd.Series([0.0, 1.0], index=[17, 42])
        results = build_result_table(y, [0.0, 1.0], 0.0, 1.0)

        assert list(results.index) == [17, 42]

    def test_invalid_strategy(self):
        with pytest.raises(ValueError, match="non_negative"):
            build_result_table([0.0], [0.0], 0.0, 1.0, non_negative="drop")

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="predictions"):
            build_result_table([0.0, 1.0], [0.0], 0.0, 1.0)


class TestMetrics:
    """Tests for calculate_metrics."""

    def test_mae_in_both_units(self):
        results = build_result_table([0.0, 1.0, 2.0, 3.0], [0.5, 1.0, 1.0, 3.5],
                                     target_mean=1000.0, target_std=100.0)

        metrics = calculate_metrics(results)

        assert metrics['mae_scaled'] == pytest.approx(0.5)
        assert metrics['mae_raw'] == pytest.approx(50.0)
        assert metrics['n_samples'] == 4
        assert metrics['n_negative_predictions'] == 0

    @pytest.mark.parametrize("strategy", ["abs", "clip"])
    def test_mae_units_agree_with_negative_predictions(self, strategy):
        results = build_result_table([0.0, 0.0], [-3.0, 1.0],
                                     target_mean=10.0, target_std=5.0, non_negative=strategy)

        metrics = calculate_metrics(results)

        assert metrics['n_negative_predictions'] == 1
        assert metrics['mae_raw'] == pytest.approx(metrics['mae_scaled'] * 5.0)
        assert metrics['mae_scaled_uncorrected'] == pytest.approx(2.0)

    def test_corrected_scaled_predictions(self):
        results = build_result_table([0.0, 0.0], [-3.0, 1.0],
                                     target_mean=10.0, target_std=5.0)

        np.testing.assert_allclose(results['predicted_scaled'], [-3.0, 1.0])
        np.testing.assert_allclose(results['predicted_scaled_corrected'], [-1.0, 1.0])

    def test_counts_negative_predictions(self):
        results = build_result_table([0.0, 0.0, 0.0], [-5.0, -4.0, 0.0], 1.0, 1.0)
        assert calculate_metrics(results)['n_negative_predictions'] == 2

    def test_report_prints(self, capsys):
        results = build_result_table([0.0, 1.0], [0.0, 1.5], 10.0, 1.0)
        print_evaluation_report(calculate_metrics(results), "knn")

        assert "MODEL EVALUATION REPORT: knn" in capsys.readouterr().out


class TestEvaluateModel:
    """Tests for evaluate_model and compare_models."""

    @pytest.fixture
    def prep_result(self):
        return preprocess_pipeline(make_financials(n_rows=60, seed=1), TARGET, random_state=0)

    def test_knn_evaluation_writes_outputs(self, tmp_path, prep_result):
        model = KNNModel(n_neighbors=3).fit(prep_result['X_train'], prep_result['y_train'])

        result = evaluate_model(
            model, prep_result['X_test'], prep_result['y_test'],
            prep_result['scaler'], TARGET, output_dir=str(tmp_path)
        )

        assert len(result['results']) == len(prep_result['X_test'])
        assert (result['results']['predicted'] >= 0).all()
        assert set(result['results'].index) == set(prep_result['test_index'])
        for name in result['figures']:
            assert (tmp_path / "figures" / name).exists()

        with open(result['metrics_file']) as f:
            saved = json.load(f)
        assert saved['mae_raw'] == pytest.approx(result['metrics']['mae_raw'])

    def test_real_values_match_test_rows(self, prep_result):
        model = KNNModel(n_neighbors=3).fit(prep_result['X_train'], prep_result['y_train'])

        result = evaluate_model(model, prep_result['X_test'], prep_result['y_test'],
                                prep_result['scaler'], TARGET, output_dir=None)

        np.testing.assert_allclose(
            result['results']['real'].values,
            prep_result['test_df'][TARGET].values,
            rtol=1e-10
        )

    def test_identifiers_joined(self, prep_result):
        model = KNNModel(n_neighbors=3).fit(prep_result['X_train'], prep_result['y_train'])
        identifiers = prep_result['test_df'][['Ticker', 'Sector']]

        result = evaluate_model(model, prep_result['X_test'], prep_result['y_test'],
                                prep_result['scaler'], TARGET, output_dir=None,
                                identifiers=identifiers)

        assert list(result['results'].columns[:2]) == ['Ticker', 'Sector']
        pd.testing.assert_series_equal(result['results']['Ticker'], identifiers['Ticker'])

    def test_random_forest_adds_importance_plot(self, tmp_path, prep_result):
        model = RandomForestModel(n_estimators=10).fit(prep_result['X_train'],
                                                       prep_result['y_train'])

        result = evaluate_model(model, prep_result['X_test'], prep_result['y_test'],
                                prep_result['scaler'], TARGET, output_dir=str(tmp_path))

        assert "eval_random_forest_importance.png" in result['figures']

    def test_compare_models_sorted(self, prep_result):
        evaluations = {}
        for k in (1, 5):
            model = KNNModel(n_neighbors=k).fit(prep_result['X_train'], prep_result['y_train'])
            evaluations[f"knn_{k}"] = evaluate_model(
                model, prep_result['X_test'], prep_result['y_test'],
                prep_result['scaler'], TARGET, model_name=f"knn_{k}", output_dir=None
            )

        comparison = compare_models(evaluations)

        assert set(comparison.index) == {"knn_1", "knn_5"}
        assert comparison['mae_raw'].is_monotonic_increasing


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
