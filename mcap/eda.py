"""
Exploratory Data Analysis (EDA) Module
======================================

Visualizes the financial fields and their relationship to market cap.

Functions:
    - plot_missing_values: Share of missing (or zero) cells per column
    - plot_correlation_matrix: Correlation heatmap
    - plot_distributions: Histograms on a log scale
    - plot_feature_vs_target: Scatter of each field against the target
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .data_loader import get_numeric_columns, parse_column

logger = logging.getLogger(__name__)

plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def _grid(n_plots: int, n_cols: int = 3, cell: Tuple[int, int] = (5, 4)):
    n_rows = max((n_plots + n_cols - 1) // n_cols, 1)
    fig, axes = plt.subplots(n_rows, n_cols,
                             figsize=(cell[0] * n_cols, cell[1] * n_rows))
    return fig, np.atleast_1d(axes).flatten()


def plot_missing_values(
    df: pd.DataFrame,
    treat_zero_as_missing: bool = True,
    figsize: Tuple[int, int] = (12, 6),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.Series]:
    """
    Bar chart of the share of missing cells per numeric column.

    Args:
        df: Raw table
        treat_zero_as_missing: Count zeros as missing, as the cleaner does
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Tuple of (Figure, missing share per column in percent)
    """
    numeric = df[get_numeric_columns(df)]
    missing = numeric.isna()
    if treat_zero_as_missing:
        missing |= numeric == 0

    share = (missing.mean() * 100).sort_values(ascending=False)

    fig, ax = plt.subplots(figsize=figsize)
    share.plot.bar(ax=ax, color='coral', alpha=0.8)
    ax.set_ylabel('Missing (%)')
    ax.set_title('Missing Values per Column', fontsize=14, fontweight='bold')
    ax.tick_params(axis='x', labelrotation=90, labelsize=7)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Missing value plot saved to {save_path}")

    return fig, share


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (14, 12),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    corr_matrix = df[get_numeric_columns(df)].corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=len(corr_matrix) <= 15,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histograms of positive values on a log10 scale.

    Financial fields span several orders of magnitude, so the raw scale
    hides everything but the largest companies.

    Args:
        df: DataFrame with numerical data
        columns: Columns to plot (default: all numeric)
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = get_numeric_columns(df)

    fig, axes = _grid(len(columns))

    for idx, col in enumerate(columns):
        ax = axes[idx]
        values = df[col].dropna()
        positive = values[values > 0]

        if len(positive) < 2:
            ax.set_title(f'{col} (no positive values)', fontsize=9)
            continue

        log_values = np.log10(positive)
        sns.histplot(log_values, kde=True, ax=ax, bins=40, alpha=0.7)

        skew = stats.skew(values) if len(values) > 2 else float('nan')
        ax.set_xlabel('log10(value)')
        ax.set_title(f'{col} (skew={skew:.2f})', fontsize=9, fontweight='bold')

    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Distribution Analysis (log scale)', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Distribution plots saved to {save_path}")

    return fig


def plot_feature_vs_target(
    df: pd.DataFrame,
    target_column: str,
    columns: Optional[List[str]] = None,
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter each feature against the target on log-log axes.

    Args:
        df: Table with features and target
        target_column: Name of the target column
        columns: Features to plot (default: same-period columns of every
            field, or all numeric columns if the target has no period)
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        _, target_period = parse_column(target_column)
        numeric = [c for c in get_numeric_columns(df) if c != target_column]
        same_period = [c for c in numeric if parse_column(c)[1] == target_period]
        columns = same_period or numeric

    fig, axes = _grid(len(columns))

    for idx, col in enumerate(columns):
        ax = axes[idx]
        pair = df[[col, target_column]].dropna()
        pair = pair[(pair[col] > 0) & (pair[target_column] > 0)]

        ax.scatter(pair[col], pair[target_column], alpha=0.4, s=12)
        if len(pair) > 0:
            ax.set_xscale('log')
            ax.set_yscale('log')

        if len(pair) > 2:
            rho, _ = stats.spearmanr(pair[col], pair[target_column])
            ax.set_title(f'{col} (ρ={rho:.2f})', fontsize=9, fontweight='bold')
        else:
            ax.set_title(col, fontsize=9, fontweight='bold')

        ax.set_xlabel(col, fontsize=8)
        ax.set_ylabel(target_column, fontsize=8)

    for idx in range(len(columns), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle(f'Relationship to {target_column}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Feature vs target plots saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    target_column: str,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: DataFrame to analyze
        target_column: Name of the target column
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "target_column": target_column,
        "figures": [],
        "correlation_matrix": None,
        "missing_pct": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    logger.info("Plotting missing values...")
    _, missing = plot_missing_values(
        df, save_path=str(output_dir / "01_missing_values.png")
    )
    report["figures"].append("01_missing_values.png")
    report["missing_pct"] = missing.to_dict()

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        df, save_path=str(output_dir / "02_correlation_matrix.png")
    )
    report["figures"].append("02_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    logger.info("Plotting distributions...")
    plot_distributions(df, save_path=str(output_dir / "03_distributions.png"))
    report["figures"].append("03_distributions.png")

    logger.info("Plotting features against the target...")
    plot_feature_vs_target(
        df, target_column, save_path=str(output_dir / "04_feature_vs_target.png")
    )
    report["figures"].append("04_feature_vs_target.png")

    for col in get_numeric_columns(df):
        report["statistics"][col] = {
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "max": float(df[col].max()),
            "skew": float(df[col].skew())
        }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_correlation_insights(
    corr_matrix: pd.DataFrame,
    target_column: str,
    top_n: int = 10
) -> None:
    """
    Print the features most correlated with the target.

    Args:
        corr_matrix: Correlation matrix DataFrame
        target_column: Name of the target column
        top_n: Number of features to list
    """
    print("\n" + "=" * 50)
    print(f"CORRELATION WITH {target_column}")
    print("=" * 50)

    if target_column not in corr_matrix.columns:
        print("Target not in correlation matrix")
        print("=" * 50 + "\n")
        return

    target_corr = corr_matrix[target_column].drop(target_column).dropna()
    ranked = target_corr.reindex(target_corr.abs().sort_values(ascending=False).index)

    for col, value in ranked.head(top_n).items():
        direction = "positive" if value > 0 else "negative"
        print(f"  • {col}: {value:.3f} ({direction})")

    print("=" * 50 + "\n")
