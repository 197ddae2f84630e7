"""
Data Cleaning Module
====================

Turns the raw spreadsheet into a dense numeric table ready for scaling.

Stages (each returns a new DataFrame, inputs are never modified):
    - replace_zeros_with_missing: zeros mean "not reported"
    - drop_missing_target: rows without a target cannot be used
    - impute_missing: chained-equations imputation with random forests
    - filter_outliers: drop rows above fixed per-field thresholds
"""

import logging
import warnings
from typing import Dict, Any, List, Optional

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer

from .data_loader import get_field_columns, get_numeric_columns

logger = logging.getLogger(__name__)


class ImputationError(ValueError):
    """Raised when a column has too few observed values to be imputed."""


def replace_zeros_with_missing(
    df: pd.DataFrame,
    id_columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Replace numeric zeros with NaN.

    A zero in the source spreadsheet means the company did not report the
    field. Genuine zeros are masked as well.

    Args:
        df: Raw table
        id_columns: Additional identifier columns to leave untouched

    Returns:
        Copy of ``df`` with zeros replaced in the numeric columns
    """
    numeric_cols = get_numeric_columns(df, id_columns)
    result = df.copy()

    n_zeros = int((result[numeric_cols] == 0).sum().sum())
    result[numeric_cols] = result[numeric_cols].mask(result[numeric_cols] == 0)

    logger.info(f"Replaced {n_zeros} zero cells with missing values")
    return result


def drop_missing_target(df: pd.DataFrame, target_column: str) -> pd.DataFrame:
    """Drop rows whose target value is missing."""
    result = df.dropna(subset=[target_column])
    n_dropped = len(df) - len(result)
    if n_dropped:
        logger.info(f"Dropped {n_dropped} rows without a '{target_column}' value")
    return result.copy()


def clean_data(
    df: pd.DataFrame,
    target_column: str,
    id_columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Mask zeros and keep only rows with a known target.

    Args:
        df: Raw table
        target_column: Name of the prediction target
        id_columns: Additional identifier columns

    Returns:
        Cleaned DataFrame
    """
    cleaned = replace_zeros_with_missing(df, id_columns)
    return drop_missing_target(cleaned, target_column)


def impute_missing(
    df: pd.DataFrame,
    max_iter: int = 5,
    n_estimators: int = 100,
    random_state: int = 42,
    min_observed: int = 2,
    id_columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Fill missing numeric cells with iterative random-forest imputation.

    Every column with gaps is regressed on all other numeric columns with a
    RandomForestRegressor, the gaps are replaced by the predictions, and the
    whole column pass is repeated ``max_iter`` times. Columns below
    ``min_observed`` (never less than one observed cell) are rejected up
    front, so the imputer returns a dense array; rows that would still hold a
    missing value are dropped as a safeguard.

    Args:
        df: Cleaned table
        max_iter: Number of chained-equation rounds
        n_estimators: Trees per random forest
        random_state: Seed for the forests
        min_observed: Minimum observed cells a column needs to be imputed
        id_columns: Additional identifier columns to leave untouched

    Returns:
        Dense DataFrame

    Raises:
        ImputationError: If a column with gaps has fewer than
            ``min_observed`` observed values
    """
    numeric_cols = get_numeric_columns(df, id_columns)
    missing = df[numeric_cols].isna()

    if not missing.any().any():
        logger.info("No missing values to impute")
        return df.copy()

    # An all-missing column is dropped by IterativeImputer, so at least one
    # observed cell is always required.
    required = max(min_observed, 1)
    observed = df[numeric_cols].notna().sum()
    for col in missing.columns[missing.any()]:
        if observed[col] < required:
            raise ImputationError(
                f"Column '{col}' has {int(observed[col])} observed values, "
                f"at least {required} are needed to impute it"
            )

    logger.info("=" * 60)
    logger.info("STARTING IMPUTATION")
    logger.info("=" * 60)
    logger.info(f"Missing cells: {int(missing.sum().sum())} "
                f"across {int(missing.any().sum())} columns")
    logger.info(f"Rounds: {max_iter}, trees per forest: {n_estimators}, seed: {random_state}")

    imputer = IterativeImputer(
        estimator=RandomForestRegressor(
            n_estimators=n_estimators,
            random_state=random_state
        ),
        max_iter=max_iter,
        initial_strategy="mean",
        skip_complete=True,
        random_state=random_state
    )

    # Rounds are fixed; the early-stopping tolerance is not expected to be met.
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=ConvergenceWarning)
        imputed = imputer.fit_transform(df[numeric_cols].to_numpy(dtype=float))

    result = df.copy()
    result[numeric_cols] = imputed

    dense = result.dropna(subset=numeric_cols)
    n_dropped = len(result) - len(dense)
    if n_dropped:
        logger.warning(f"Dropped {n_dropped} rows that could not be imputed")

    logger.info(f"Imputation complete after {imputer.n_iter_} rounds: {len(dense)} rows")
    return dense.copy()


def get_imputation_mask(
    before: pd.DataFrame,
    after: pd.DataFrame,
    id_columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Boolean frame marking which cells of ``after`` were filled in.

    Args:
        before: Table passed to ``impute_missing``
        after: Table returned by ``impute_missing``
        id_columns: Additional identifier columns

    Returns:
        DataFrame aligned with ``after`` (rows and numeric columns)
    """
    numeric_cols = get_numeric_columns(before, id_columns)
    return before.loc[after.index, numeric_cols].isna()


def filter_outliers(
    df: pd.DataFrame,
    thresholds: Dict[str, float]
) -> pd.DataFrame:
    """
    Keep rows whose values are at or below fixed upper bounds.

    Each key is either a field name, in which case the bound applies to
    every period column of that field (``Revenue`` covers ``Revenue.2018``
    through ``Revenue.2023``), or a single column name.

    Args:
        df: Dense table
        thresholds: Mapping of field or column name to inclusive upper bound

    Returns:
        Subset of ``df`` with the original index

    Raises:
        ValueError: If a key matches no column
    """
    keep = pd.Series(True, index=df.index)

    for key, bound in thresholds.items():
        bound = float(bound)
        columns = get_field_columns(df, key)
        if not columns:
            if key not in df.columns:
                raise ValueError(f"Outlier threshold '{key}' matches no column")
            columns = [key]

        within = (df[columns] <= bound).all(axis=1)
        n_removed = int((keep & ~within).sum())
        logger.info(f"Outlier filter {key} <= {bound:g}: removes {n_removed} rows")
        keep &= within

    result = df.loc[keep].copy()
    logger.info(f"Outlier filter kept {len(result)} of {len(df)} rows")
    return result


def cleaning_pipeline(
    df: pd.DataFrame,
    target_column: str,
    config: Optional[Dict[str, Any]] = None,
    id_columns: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Run cleaning, imputation and outlier filtering in order.

    Args:
        df: Raw table
        target_column: Name of the prediction target
        config: The ``cleaning`` section of the configuration
        id_columns: Additional identifier columns

    Returns:
        Dictionary containing:
            - data: dense, filtered DataFrame
            - imputation_mask: cells filled by the imputer
            - row_counts: rows remaining after each stage
    """
    config = config or {}
    imp_config = config.get('imputation', {})

    cleaned = clean_data(df, target_column, id_columns)

    imputed = impute_missing(
        cleaned,
        max_iter=imp_config.get('max_iter', 5),
        n_estimators=imp_config.get('n_estimators', 100),
        random_state=imp_config.get('random_state', 42),
        min_observed=imp_config.get('min_observed', 2),
        id_columns=id_columns
    )

    filtered = filter_outliers(imputed, config.get('outlier_thresholds', {}) or {})

    row_counts = {
        'raw': len(df),
        'cleaned': len(cleaned),
        'imputed': len(imputed),
        'filtered': len(filtered)
    }

    return {
        'data': filtered,
        'imputation_mask': get_imputation_mask(cleaned, filtered, id_columns),
        'row_counts': row_counts
    }


def print_cleaning_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the cleaning results.

    Args:
        result: Dictionary from cleaning_pipeline
    """
    counts = result['row_counts']
    n_imputed = int(np.asarray(result['imputation_mask']).sum())

    print("\n" + "=" * 50)
    print("CLEANING SUMMARY")
    print("=" * 50)
    print(f"Raw rows: {counts['raw']}")
    print(f"Rows with a known target: {counts['cleaned']}")
    print(f"Rows after imputation: {counts['imputed']}")
    print(f"Rows after outlier filter: {counts['filtered']}")
    print(f"Imputed cells kept: {n_imputed}")
    print("=" * 50 + "\n")
