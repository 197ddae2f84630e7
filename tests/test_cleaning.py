"""
Test Suite for Cleaning Module
==============================

Tests for zero masking, random-forest imputation and the outlier filter.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mcap.cleaning import (
    replace_zeros_with_missing, drop_missing_target, clean_data,
    impute_missing, get_imputation_mask, filter_outliers, cleaning_pipeline,
    ImputationError
)
import mcap.cleaning as cleaning
from conftest import make_financials

TARGET = "Market.Cap.2023"


class TestCleaner:
    """Tests for zero masking and target filtering."""

    def test_zeros_become_missing(self, financials):
        df = financials.copy()
        df.loc[3, "Cash.2022"] = 0
        df.loc[5, "EBIT.2021"] = 0

        cleaned = replace_zeros_with_missing(df)

        assert np.isnan(cleaned.loc[3, "Cash.2022"])
        assert np.isnan(cleaned.loc[5, "EBIT.2021"])
        assert cleaned.isna().sum().sum() == 2

    def test_input_not_modified(self, financials):
        df = financials.copy()
        df.loc[3, "Cash.2022"] = 0

        replace_zeros_with_missing(df)

        assert df.loc[3, "Cash.2022"] == 0

    def test_identifiers_untouched(self, financials):
        cleaned = replace_zeros_with_missing(financials)
        pd.testing.assert_series_equal(cleaned["Ticker"], financials["Ticker"])

    def test_drop_missing_target(self, financials):
        df = financials.copy()
        df.loc[[0, 7], TARGET] = np.nan

        result = drop_missing_target(df, TARGET)

        assert len(result) == len(df) - 2
        assert 0 not in result.index and 7 not in result.index

    def test_zero_target_rows_dropped(self, financials):
        df = financials.copy()
        df.loc[[1, 2, 3], TARGET] = 0

        result = clean_data(df, TARGET)

        assert len(result) == len(df) - 3
        assert result[TARGET].notna().all()


class TestImputer:
    """Tests for impute_missing."""

    @pytest.fixture
    def twenty_rows(self):
        """20 complete rows, one injected zero in a feature column."""
        df = make_financials(n_rows=20, seed=7)
        df.loc[11, "Cash.2022"] = 0
        return df

    def test_single_zero_scenario(self, twenty_rows):
        cleaned = clean_data(twenty_rows, TARGET)
        imputed = impute_missing(cleaned, n_estimators=20, random_state=0)

        assert len(imputed) == 20
        assert imputed.isna().sum().sum() == 0

        others = twenty_rows.drop(index=11)["Cash.2022"]
        value = imputed.loc[11, "Cash.2022"]
        assert others.min() <= value <= others.max()

    def test_observed_cells_unchanged(self, twenty_rows):
        cleaned = clean_data(twenty_rows, TARGET)
        imputed = impute_missing(cleaned, n_estimators=20, random_state=0)

        observed = cleaned.drop(index=11)
        pd.testing.assert_frame_equal(
            imputed.drop(index=11)[observed.columns], observed, check_dtype=False
        )

    def test_deterministic(self):
        df = make_financials(n_rows=30, seed=3)
        rng = np.random.default_rng(0)
        for col in ["Cash.2021", "EBIT.2022", "Liabilities.2023"]:
            df.loc[rng.choice(30, size=4, replace=False), col] = 0
        cleaned = clean_data(df, TARGET)

        first = impute_missing(cleaned, n_estimators=20, random_state=11)
        second = impute_missing(cleaned, n_estimators=20, random_state=11)

        pd.testing.assert_frame_equal(first, second)

    def test_insufficient_observations(self, financials):
        df = financials.copy()
        df.loc[1:, "Cash.2021"] = np.nan

        with pytest.raises(ImputationError, match="Cash.2021"):
            impute_missing(df, min_observed=2)

    def test_empty_column_with_zero_min_observed(self, financials):
        df = financials.copy()
        df["Cash.2021"] = np.nan

        with pytest.raises(ImputationError, match="at least 1"):
            impute_missing(df, min_observed=0)

    def test_rows_left_incomplete_are_dropped(self, twenty_rows, monkeypatch):
        class PassThroughImputer:
            n_iter_ = 0

            def __init__(self, **kwargs):
                pass

            def fit_transform(self, X):
                return X

        monkeypatch.setattr(cleaning, "IterativeImputer", PassThroughImputer)
        cleaned = clean_data(twenty_rows, TARGET)

        result = impute_missing(cleaned)

        assert len(result) == 19
        assert 11 not in result.index
        assert result.isna().sum().sum() == 0

    def test_nothing_to_impute(self, financials):
        result = impute_missing(financials)

        pd.testing.assert_frame_equal(result, financials)
        assert result is not financials

    def test_imputation_mask(self, twenty_rows):
        cleaned = clean_data(twenty_rows, TARGET)
        imputed = impute_missing(cleaned, n_estimators=20, random_state=0)

        mask = get_imputation_mask(cleaned, imputed)

        assert mask.values.sum() == 1
        assert mask.loc[11, "Cash.2022"]


class TestOutlierFilter:
    """Tests for filter_outliers."""

    @pytest.fixture
    def threshold_data(self):
        """15 rows below the market-cap bound, 5 above it."""
        df = make_financials(n_rows=20, seed=5)
        df[TARGET] = np.concatenate([np.full(15, 1e9), np.full(5, 1e12)])
        return df

    def test_rows_above_threshold_removed(self, threshold_data):
        result = filter_outliers(threshold_data, {TARGET: 5e11})
        assert len(result) == 15

    def test_subset_and_predicates(self, financials):
        thresholds = {"Revenue": financials["Revenue.2022"].median(),
                      "Market.Cap": financials["Market.Cap.2023"].quantile(0.8)}

        result = filter_outliers(financials, thresholds)

        assert set(result.index) <= set(financials.index)
        pd.testing.assert_frame_equal(result, financials.loc[result.index])
        for col in ["Revenue.2021", "Revenue.2022", "Revenue.2023"]:
            assert (result[col] <= thresholds["Revenue"]).all()
        for col in ["Market.Cap.2021", "Market.Cap.2022", "Market.Cap.2023"]:
            assert (result[col] <= thresholds["Market.Cap"]).all()

    def test_bound_is_inclusive(self, threshold_data):
        result = filter_outliers(threshold_data, {TARGET: 1e9})
        assert len(result) == 15

    def test_field_applies_to_every_year(self, financials):
        df = financials.copy()
        df.loc[4, "Revenue.2021"] = 1e15

        result = filter_outliers(df, {"Revenue": 1e14})

        assert 4 not in result.index
        assert len(result) == len(df) - 1

    def test_order_independent(self, financials):
        a = {"Revenue": financials["Revenue.2021"].median(), "Cash": 1e12}
        b = dict(reversed(list(a.items())))

        pd.testing.assert_frame_equal(filter_outliers(financials, a),
                                      filter_outliers(financials, b))

    def test_unknown_key(self, financials):
        with pytest.raises(ValueError, match="matches no column"):
            filter_outliers(financials, {"Goodwill": 1.0})


class TestCleaningPipeline:
    """Tests for the combined cleaning stage."""

    def test_row_counts(self):
        df = make_financials(n_rows=30, seed=9)
        df.loc[0, TARGET] = 0
        df.loc[5, "Cash.2021"] = 0
        df.loc[6, TARGET] = 1e15

        result = cleaning_pipeline(df, TARGET, {
            'imputation': {'n_estimators': 10, 'random_state': 1},
            'outlier_thresholds': {TARGET: 1e14}
        })

        assert result['row_counts'] == {'raw': 30, 'cleaned': 29, 'imputed': 29, 'filtered': 28}
        assert result['data'].isna().sum().sum() == 0
        assert result['imputation_mask'].values.sum() == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
