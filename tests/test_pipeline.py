"""
End-to-end tests for main.py.
"""

import pytest
import yaml

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import mcap
import main
from conftest import make_financials

TARGET = "Market.Cap.2023"


@pytest.fixture
def workspace(tmp_path):
    """CSV input with a few gaps plus a small, fast config."""
    df = make_financials(n_rows=60, seed=21)
    df.loc[[2, 9, 30], "Cash.2022"] = 0
    df.loc[14, "EBIT.2021"] = 0
    df.loc[40, TARGET] = 0
    data_path = tmp_path / "financials.csv"
    df.to_csv(data_path, index=False)

    config = {
        'data': {'id_columns': ['Ticker', 'Sector'], 'target_field': 'Market.Cap'},
        'cleaning': {
            'imputation': {'max_iter': 3, 'n_estimators': 10, 'random_state': 0},
            'outlier_thresholds': {'Market.Cap': 1.0e+15}
        },
        'preprocessing': {'train_fraction': 0.5, 'random_state': 0, 'scale_on': 'train'},
        'models': {
            'neural_network': {'hidden_layer_sizes': [4], 'max_iter': 50},
            'knn': {'n_neighbors': 3},
            'random_forest': {'n_estimators': 10, 'max_features': 3},
            'disabled_forest': {'type': 'random_forest', 'enabled': False}
        },
        'evaluation': {'non_negative': 'abs'},
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

    return tmp_path, data_path, config_path


class TestFullPipeline:
    """Tests for run_full_pipeline."""

    def test_all_phases(self, workspace):
        tmp_path, data_path, config_path = workspace

        results = main.run_full_pipeline(str(data_path), str(config_path))

        assert results['target_column'] == TARGET
        assert results['cleaning']['row_counts']['raw'] == 60
        assert results['cleaning']['row_counts']['cleaned'] == 59
        assert set(results['models']) == {'neural_network', 'knn', 'random_forest'}

        comparison = results['evaluation']['comparison']
        assert len(comparison) == 3
        assert comparison['mae_raw'].is_monotonic_increasing
        for evaluation in results['evaluation']['evaluations'].values():
            assert (evaluation['results']['predicted'] >= 0).all()
            assert 'Ticker' in evaluation['results'].columns

        assert (tmp_path / "models" / "scaler.joblib").exists()
        assert (tmp_path / "models" / "knn.joblib").exists()
        assert not (tmp_path / "models" / "disabled_forest.joblib").exists()
        assert (tmp_path / "reports" / "metrics" / "model_comparison.csv").exists()
        assert (tmp_path / "reports" / "figures" / "01_missing_values.png").exists()

    def test_stops_after_phase(self, workspace):
        _, data_path, config_path = workspace

        results = main.run_full_pipeline(str(data_path), str(config_path), phase='preprocess')

        assert 'preprocessing' in results
        assert 'models' not in results
        assert 'eda' not in results

    def test_unknown_phase(self, workspace):
        _, data_path, config_path = workspace

        with pytest.raises(ValueError, match="Unknown phase"):
            main.run_full_pipeline(str(data_path), str(config_path), phase='deploy')


class TestPackage:
    """Tests for package metadata."""

    def test_metadata(self):
        assert mcap.__version__ == "1.0.0"
        assert mcap.__author__ == "mcap contributors"


class TestMain:
    """Tests for the command line entry point."""

    def test_missing_data_file(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(sys, 'argv', ['main.py', '--data', str(tmp_path / "nope.csv")])

        assert main.main() == 1
        assert "Data file not found" in capsys.readouterr().out

    def test_runs_requested_phase(self, workspace, monkeypatch):
        _, data_path, config_path = workspace
        monkeypatch.setattr(sys, 'argv', [
            'main.py', '--data', str(data_path), '--config', str(config_path),
            '--phase', 'clean'
        ])

        assert main.main() == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
