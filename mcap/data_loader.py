"""
Data Loader Module
==================

Handles spreadsheet ingestion, column layout detection and validation.

The input holds one row per company. Financial fields are spread over
several periods and named ``<Field>.<Year>`` (``Revenue.2021``) or, in the
relative layout, ``<Field>.PrevYear`` / ``<Field>.NextYear``.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load an Excel or CSV spreadsheet
    - parse_column / detect_layout / get_periods: Column naming helpers
    - resolve_target_column: Pick the market-cap column to predict
    - validate_data: Check data quality constraints
    - get_data_summary: Generate basic statistics
"""

import re
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import yaml

logger = logging.getLogger(__name__)

TARGET_FIELD = "Market.Cap"

FINANCIAL_FIELDS = [
    "Revenue",
    "Cost.of.Revenue",
    "Cash",
    "Depreciation.Amortization",
    "Operating.Expense",
    "EBIT",
    "Capital.Expenditure",
    "Accumulated.Depreciation",
    "Liabilities",
    TARGET_FIELD,
]

RELATIVE_PERIODS = ["PrevYear", "NextYear"]

_COLUMN_PATTERN = re.compile(r"^(?P<field>.+)\.(?P<period>\d{4}|PrevYear|NextYear)$")

EXCEL_SUFFIXES = {".xlsx", ".xls", ".xlsm"}


class MissingTargetError(ValueError):
    """Raised when the target column is absent from the loaded table."""


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    sheet_name: Optional[str] = None
) -> pd.DataFrame:
    """
    Load a spreadsheet of per-company financial fields.

    Excel workbooks are read with openpyxl, anything ending in ``.csv``
    with the CSV reader.

    Args:
        file_path: Path to the spreadsheet
        sheet_name: Worksheet to read (default: the first one)

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
        ValueError: If the file type is not supported
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(
            file_path,
            sheet_name=sheet_name if sheet_name is not None else 0,
            engine="openpyxl"
        )
    elif suffix == ".csv":
        df = pd.read_csv(file_path)
    else:
        raise ValueError(
            f"Unsupported file type '{suffix}'. Expected one of "
            f"{sorted(EXCEL_SUFFIXES | {'.csv'})}"
        )

    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")
    return df


def parse_column(column: str) -> Tuple[str, Optional[str]]:
    """
    Split a column name into its field and period.

    >>> parse_column("Market.Cap.2023")
    ('Market.Cap', '2023')
    >>> parse_column("Ticker")
    ('Ticker', None)
    """
    match = _COLUMN_PATTERN.match(str(column))
    if match is None:
        return str(column), None
    return match.group("field"), match.group("period")


def detect_layout(df: pd.DataFrame) -> str:
    """
    Detect the column layout of a loaded table.

    Returns:
        ``"years"`` for explicit year suffixes, ``"relative"`` for
        ``PrevYear`` / ``NextYear`` suffixes

    Raises:
        ValueError: If no period-suffixed columns are present
    """
    periods = {parse_column(col)[1] for col in df.columns} - {None}

    if any(p.isdigit() for p in periods):
        return "years"
    if periods & set(RELATIVE_PERIODS):
        return "relative"

    raise ValueError(
        "No '<Field>.<Year>' or '<Field>.PrevYear/.NextYear' columns found. "
        f"Columns: {list(df.columns)}"
    )


def get_periods(df: pd.DataFrame) -> List[str]:
    """Ordered list of period suffixes present in the table."""
    layout = detect_layout(df)
    periods = {parse_column(col)[1] for col in df.columns} - {None}

    if layout == "years":
        return sorted((p for p in periods if p.isdigit()), key=int)
    return [p for p in RELATIVE_PERIODS if p in periods]


def get_field_columns(df: pd.DataFrame, field: str) -> List[str]:
    """All period columns belonging to ``field``, in column order."""
    columns = []
    for col in df.columns:
        col_field, period = parse_column(col)
        if col_field == field and period is not None:
            columns.append(col)
    return columns


def resolve_target_column(
    df: pd.DataFrame,
    target_field: str = TARGET_FIELD,
    target: Optional[str] = None
) -> str:
    """
    Determine which column holds the prediction target.

    An explicit ``target`` is returned unchanged (it is checked later by
    ``validate_data``). Otherwise the target field's final period is used:
    the latest year, or ``NextYear`` in the relative layout.

    Args:
        df: Loaded table
        target_field: Field name of the target (default ``Market.Cap``)
        target: Explicit target column name (optional)

    Returns:
        Target column name

    Raises:
        MissingTargetError: If the table has no column for ``target_field``
    """
    if target:
        return target

    candidates = get_field_columns(df, target_field)
    if not candidates:
        raise MissingTargetError(
            f"No '{target_field}.<period>' column found in the data"
        )

    periods = get_periods(df)
    for period in reversed(periods):
        column = f"{target_field}.{period}"
        if column in candidates:
            logger.info(f"Using '{column}' as the prediction target")
            return column

    return candidates[-1]


def get_id_columns(
    df: pd.DataFrame,
    extra: Optional[List[str]] = None
) -> List[str]:
    """Identifier columns: non-numeric columns plus any listed in ``extra``."""
    id_columns = df.select_dtypes(exclude=[np.number]).columns.tolist()
    for col in extra or []:
        if col in df.columns and col not in id_columns:
            id_columns.append(col)
    return id_columns


def get_numeric_columns(
    df: pd.DataFrame,
    id_columns: Optional[List[str]] = None
) -> List[str]:
    """Numeric columns that are not identifiers."""
    excluded = set(get_id_columns(df, id_columns))
    return [
        col for col in df.select_dtypes(include=[np.number]).columns
        if col not in excluded
    ]


def get_feature_columns(
    df: pd.DataFrame,
    target_column: str,
    id_columns: Optional[List[str]] = None,
    exclude: Optional[List[str]] = None
) -> List[str]:
    """
    Numeric feature columns: everything numeric except identifiers, the
    target and anything in ``exclude``.
    """
    excluded = {target_column} | set(exclude or [])
    return [col for col in get_numeric_columns(df, id_columns) if col not in excluded]


def validate_data(
    df: pd.DataFrame,
    target_column: str,
    strict: bool = True,
    id_columns: Optional[List[str]] = None
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for the market-cap analysis.

    Checks:
        - The target column exists (always fatal)
        - Feature columns are numerical
        - Missing values and zero cells (zeros are treated as missing later)
        - Duplicate rows

    Args:
        df: DataFrame to validate
        target_column: Name of the prediction target
        strict: If True, raise errors on validation failure
        id_columns: Additional identifier columns

    Returns:
        Tuple of (is_valid, validation_report)

    Raises:
        MissingTargetError: If the target column is absent
        ValueError: In strict mode, if any other check fails
    """
    if target_column not in df.columns:
        raise MissingTargetError(
            f"Target column '{target_column}' not found. Columns: {list(df.columns)}"
        )

    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "target_column": target_column,
        "issues": []
    }

    # Check 1: Period columns should be numerical
    non_numeric_cols = [
        col for col in df.select_dtypes(exclude=[np.number]).columns
        if parse_column(col)[1] is not None
    ]
    if non_numeric_cols:
        issue = f"Non-numeric period columns found: {non_numeric_cols}"
        report["issues"].append(issue)
        logger.warning(issue)

    numeric_cols = get_numeric_columns(df, id_columns)

    # Check 2: Missing values
    missing_counts = df[numeric_cols].isnull().sum()
    total_missing = int(missing_counts.sum())
    if total_missing > 0:
        missing_pct = (total_missing / max(df.shape[0] * len(numeric_cols), 1)) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 3: Zeros (reported, later treated as missing)
    zero_counts = (df[numeric_cols] == 0).sum()
    total_zeros = int(zero_counts.sum())
    if total_zeros > 0:
        issue = f"Zero cells (treated as not reported): {total_zeros}"
        report["issues"].append(issue)
        report["zeros_by_column"] = zero_counts[zero_counts > 0].to_dict()
        logger.warning(issue)

    # Check 4: Duplicate rows
    duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        issue = f"Duplicate rows found: {duplicates}"
        report["issues"].append(issue)
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "memory_usage_mb": df.memory_usage(deep=True).sum() / 1024 / 1024,
        "statistics": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max()),
            "zeros": int((df[col] == 0).sum())
        }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / max(len(df), 1)) * 100
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("=" * 60 + "\n")
