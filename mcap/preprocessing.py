"""
Data Preprocessing Module
=========================

Handles standardization and the random train/test split.

Functions:
    - FinancialScaler: zero-mean / unit-variance scaling with stored parameters
    - split_indices: uniform random split of row positions
    - train_test_split_frame: apply a split to a DataFrame
    - preprocess_pipeline: split, scale and assemble model inputs
"""

import logging
from pathlib import Path
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.preprocessing import StandardScaler
import joblib

from .data_loader import get_numeric_columns, get_feature_columns

logger = logging.getLogger(__name__)


class SplitError(ValueError):
    """Raised when a split would leave the train or test set empty."""


class FinancialScaler:
    """
    Standardizes numeric columns of a financial table.

    Identifier columns pass through unchanged. The per-column mean and
    standard deviation are kept so scaled predictions can be turned back
    into currency units.
    """

    def __init__(self, columns: Optional[List[str]] = None):
        """
        Initialize the scaler.

        Args:
            columns: Columns to standardize (default: all numeric,
                non-identifier columns seen at fit time)
        """
        self.columns = columns

        self.scaler: Optional[StandardScaler] = None
        self.mean_: Optional[pd.Series] = None
        self.std_: Optional[pd.Series] = None
        self._is_fitted = False

    def fit(self, df: pd.DataFrame) -> 'FinancialScaler':
        """
        Learn mean and standard deviation of each column.

        Args:
            df: Table to learn the parameters from

        Returns:
            Self for method chaining
        """
        if self.columns is None:
            self.columns = get_numeric_columns(df)

        self.scaler = StandardScaler()
        self.scaler.fit(df[self.columns].to_numpy(dtype=float))

        self.mean_ = pd.Series(self.scaler.mean_, index=self.columns)
        self.std_ = pd.Series(self.scaler.scale_, index=self.columns)
        self._is_fitted = True

        logger.info(f"Fitted StandardScaler on {len(df)} rows × {len(self.columns)} columns")
        return self

    def _check_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Scaler must be fitted before use. Call fit() first.")

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Standardize the fitted columns.

        Args:
            df: Table to transform

        Returns:
            New DataFrame with the fitted columns replaced by
            ``(value - mean) / std``
        """
        self._check_fitted()

        result = df.copy()
        result[self.columns] = self.scaler.transform(df[self.columns].to_numpy(dtype=float))
        return result

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """Fit and transform in one step."""
        self.fit(df)
        return self.transform(df)

    def inverse_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Convert a scaled table back to raw units.

        Args:
            df: Table produced by ``transform``

        Returns:
            New DataFrame in the original scale
        """
        self._check_fitted()

        result = df.copy()
        result[self.columns] = self.scaler.inverse_transform(
            df[self.columns].to_numpy(dtype=float)
        )
        return result

    def inverse_transform_column(self, values, column: str) -> np.ndarray:
        """
        Convert scaled values of one column back to raw units.

        ``raw = scaled * std + mean``

        Args:
            values: Scaled values (array-like)
            column: Column whose parameters to use

        Returns:
            Array in the original scale
        """
        self._check_fitted()

        if column not in self.mean_.index:
            raise KeyError(f"Column '{column}' was not fitted by this scaler")

        return np.asarray(values, dtype=float) * self.std_[column] + self.mean_[column]

    def get_params(self, column: str) -> Tuple[float, float]:
        """(mean, std) of a fitted column."""
        self._check_fitted()
        return float(self.mean_[column]), float(self.std_[column])

    def get_params_table(self) -> pd.DataFrame:
        """
        Scaling parameters of every fitted column.

        Returns:
            DataFrame indexed by column with ``mean`` and ``std``
        """
        self._check_fitted()
        return pd.DataFrame({'mean': self.mean_, 'std': self.std_})

    def save(self, filepath: str) -> None:
        """
        Save the scaler state to disk.

        Args:
            filepath: Path to save the scaler
        """
        self._check_fitted()

        state = {
            'columns': self.columns,
            'scaler': self.scaler,
            'mean_': self.mean_,
            'std_': self.std_,
            '_is_fitted': self._is_fitted
        }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Scaler saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FinancialScaler':
        """
        Load a scaler from disk.

        Args:
            filepath: Path to the saved scaler

        Returns:
            Loaded FinancialScaler instance
        """
        state = joblib.load(filepath)

        scaler = cls(columns=state['columns'])
        scaler.scaler = state['scaler']
        scaler.mean_ = state['mean_']
        scaler.std_ = state['std_']
        scaler._is_fitted = state['_is_fitted']

        logger.info(f"Scaler loaded from {filepath}")
        return scaler


def split_indices(
    n_rows: int,
    train_fraction: float = 0.5,
    random_state: Optional[int] = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Randomly partition row positions into train and test sets.

    floor(n_rows * train_fraction) positions are drawn uniformly without
    replacement for training; the rest form the test set. No stratification.

    Args:
        n_rows: Number of rows in the table
        train_fraction: Share of rows used for training
        random_state: Seed for the random generator

    Returns:
        Tuple of (train_positions, test_positions), both sorted

    Raises:
        SplitError: If either set would be empty
    """
    if not 0 < train_fraction < 1:
        raise SplitError(f"train_fraction must be between 0 and 1, got {train_fraction}")

    n_train = int(np.floor(n_rows * train_fraction))
    n_test = n_rows - n_train

    if n_train == 0 or n_test == 0:
        raise SplitError(
            f"Split of {n_rows} rows at {train_fraction} gives "
            f"{n_train} train and {n_test} test rows"
        )

    rng = np.random.default_rng(random_state)
    train_pos = np.sort(rng.choice(n_rows, size=n_train, replace=False))
    test_pos = np.setdiff1d(np.arange(n_rows), train_pos)

    logger.info(f"Train/Test split: {n_train} train rows, {n_test} test rows")
    return train_pos, test_pos


def train_test_split_frame(
    df: pd.DataFrame,
    train_fraction: float = 0.5,
    random_state: Optional[int] = 42
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split a table into train and test halves.

    Args:
        df: Table to split
        train_fraction: Share of rows used for training
        random_state: Seed for the random generator

    Returns:
        Tuple of (train_df, test_df) keeping the original index
    """
    train_pos, test_pos = split_indices(len(df), train_fraction, random_state)
    return df.iloc[train_pos].copy(), df.iloc[test_pos].copy()


def preprocess_pipeline(
    df: pd.DataFrame,
    target_column: str,
    feature_columns: Optional[List[str]] = None,
    train_fraction: float = 0.5,
    random_state: Optional[int] = 42,
    scale_on: str = "train",
    id_columns: Optional[List[str]] = None,
    save_scaler: Optional[str] = None
) -> Dict[str, Any]:
    """
    Split, standardize and assemble model inputs.

    Args:
        df: Dense, filtered table
        target_column: Name of the prediction target
        feature_columns: Feature columns (default: all numeric except target)
        train_fraction: Share of rows used for training
        random_state: Seed for the split
        scale_on: ``"train"`` fits the scaler on training rows only,
            ``"all"`` fits it on the full table before splitting
        id_columns: Additional identifier columns
        save_scaler: Path to save the fitted scaler

    Returns:
        Dictionary containing:
            - X_train, X_test: scaled feature DataFrames
            - y_train, y_test: scaled target Series
            - train_df, test_df: unscaled halves (identifiers included)
            - scaler: fitted FinancialScaler
            - feature_columns, target_column
            - train_index, test_index: row labels of each half
    """
    if scale_on not in ("train", "all"):
        raise ValueError(f"scale_on must be 'train' or 'all', got '{scale_on}'")

    if target_column not in df.columns:
        raise KeyError(f"Target column '{target_column}' not in table")

    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING")
    logger.info("=" * 60)

    if feature_columns is None:
        feature_columns = get_feature_columns(df, target_column, id_columns)

    scaled_columns = list(feature_columns) + [target_column]

    train_df, test_df = train_test_split_frame(df, train_fraction, random_state)

    scaler = FinancialScaler(columns=scaled_columns)
    if scale_on == "all":
        logger.warning("Scaler fitted on the full table; test rows inform the scaling")
        scaler.fit(df)
    else:
        scaler.fit(train_df)

    train_scaled = scaler.transform(train_df)
    test_scaled = scaler.transform(test_df)

    if save_scaler:
        scaler.save(save_scaler)

    result = {
        'X_train': train_scaled[feature_columns],
        'X_test': test_scaled[feature_columns],
        'y_train': train_scaled[target_column],
        'y_test': test_scaled[target_column],
        'train_df': train_df,
        'test_df': test_df,
        'scaler': scaler,
        'feature_columns': list(feature_columns),
        'target_column': target_column,
        'train_index': train_df.index,
        'test_index': test_df.index
    }

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Training rows: {len(train_df)}")
    logger.info(f"  Test rows: {len(test_df)}")
    logger.info(f"  Features: {len(feature_columns)}")
    logger.info(f"  Scaler fitted on: {scale_on}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        result: Dictionary from preprocess_pipeline
    """
    mean, std = result['scaler'].get_params(result['target_column'])

    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Training rows: {len(result['X_train'])}")
    print(f"Test rows: {len(result['X_test'])}")
    print(f"Features: {len(result['feature_columns'])}")
    print(f"Target: {result['target_column']}")
    print(f"  mean: {mean:,.2f}")
    print(f"  std:  {std:,.2f}")
    print("=" * 50 + "\n")
