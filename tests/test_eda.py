"""
Test Suite for EDA Module
=========================
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mcap.eda import (
    plot_missing_values, plot_correlation_matrix, generate_eda_report,
    print_correlation_insights
)

TARGET = "Market.Cap.2023"


class TestPlots:
    """Tests for the individual EDA plots."""

    def test_missing_share_counts_zeros(self, financials):
        df = financials.copy()
        df.loc[:9, "Cash.2021"] = 0
        df.loc[:3, "EBIT.2022"] = np.nan

        _, share = plot_missing_values(df)

        assert share["Cash.2021"] == pytest.approx(25.0)
        assert share["EBIT.2022"] == pytest.approx(10.0)
        assert share.index[0] == "Cash.2021"

    def test_missing_share_without_zeros(self, financials):
        df = financials.copy()
        df.loc[:9, "Cash.2021"] = 0

        _, share = plot_missing_values(df, treat_zero_as_missing=False)

        assert share["Cash.2021"] == 0

    def test_correlation_excludes_identifiers(self, financials):
        _, corr = plot_correlation_matrix(financials)

        assert "Ticker" not in corr.columns
        assert corr.loc[TARGET, TARGET] == pytest.approx(1.0)


class TestEDAReport:
    """Tests for generate_eda_report."""

    def test_writes_all_figures(self, tmp_path, financials):
        report = generate_eda_report(financials, TARGET, output_dir=str(tmp_path))

        assert report["figures"] == [
            "01_missing_values.png", "02_correlation_matrix.png",
            "03_distributions.png", "04_feature_vs_target.png"
        ]
        for name in report["figures"]:
            assert (tmp_path / name).exists()

        assert report["data_shape"] == financials.shape
        assert TARGET in report["statistics"]

    def test_correlation_insights(self, capsys, financials):
        _, corr = plot_correlation_matrix(financials)

        print_correlation_insights(corr, TARGET, top_n=3)

        out = capsys.readouterr().out
        assert f"CORRELATION WITH {TARGET}" in out
        assert out.count("  • ") == 3

    def test_correlation_insights_missing_target(self, capsys):
        corr = pd.DataFrame([[1.0]], index=["a"], columns=["a"])

        print_correlation_insights(corr, TARGET)

        assert "Target not in correlation matrix" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
