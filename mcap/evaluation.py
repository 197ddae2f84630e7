"""
Model Evaluation Module
=======================

Scores fitted models on the test half in raw currency units.

Features:
    - Result table: real vs predicted market cap with signed and absolute residuals
    - MAE in scaled and raw units (headline metric), RMSE and R²
    - Real vs Predicted and Real vs Residual scatter plots
    - Variable importance chart for the random forest
    - Side-by-side comparison of all evaluated models
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .model import MarketCapModel
from .preprocessing import FinancialScaler

logger = logging.getLogger(__name__)

NON_NEGATIVE_STRATEGIES = ("abs", "clip")


def build_result_table(
    y_true_scaled,
    y_pred_scaled,
    target_mean: float,
    target_std: float,
    non_negative: str = "abs",
    index: Optional[pd.Index] = None
) -> pd.DataFrame:
    """
    Turn scaled predictions into a per-row result table in raw units.

    Both series are inverted with ``raw = scaled * std + mean``. Negative
    raw predictions are flagged in ``negative_prediction`` and then made
    non-negative, either by absolute value (``"abs"``) or by clipping to
    zero (``"clip"``).

    ``predicted_scaled`` is the raw model output; ``predicted_scaled_corrected``
    maps the corrected prediction back to the scaled space.

    Args:
        y_true_scaled: Real target values, scaled
        y_pred_scaled: Predicted target values, scaled
        target_mean: Mean used to scale the target
        target_std: Standard deviation used to scale the target
        non_negative: How to treat negative predictions
        index: Row labels (default: taken from ``y_true_scaled`` if it is a Series)

    Returns:
        DataFrame with real, predicted, residual (real - predicted),
        abs_residual, real_scaled, predicted_scaled,
        predicted_scaled_corrected, negative_prediction
    """
    if non_negative not in NON_NEGATIVE_STRATEGIES:
        raise ValueError(
            f"non_negative must be one of {NON_NEGATIVE_STRATEGIES}, got '{non_negative}'"
        )

    if index is None and isinstance(y_true_scaled, pd.Series):
        index = y_true_scaled.index

    true_scaled = np.asarray(y_true_scaled, dtype=float).ravel()
    pred_scaled = np.asarray(y_pred_scaled, dtype=float).ravel()

    if len(true_scaled) != len(pred_scaled):
        raise ValueError(
            f"{len(true_scaled)} real values but {len(pred_scaled)} predictions"
        )

    real = true_scaled * target_std + target_mean
    predicted = pred_scaled * target_std + target_mean

    negative = predicted < 0
    if negative.any():
        logger.warning(
            f"{int(negative.sum())} of {len(predicted)} predictions are negative "
            f"before the '{non_negative}' correction"
        )

    if non_negative == "abs":
        predicted = np.abs(predicted)
    else:
        predicted = np.clip(predicted, 0, None)

    residual = real - predicted

    return pd.DataFrame({
        'real': real,
        'predicted': predicted,
        'residual': residual,
        'abs_residual': np.abs(residual),
        'real_scaled': true_scaled,
        'predicted_scaled': pred_scaled,
        'predicted_scaled_corrected': (predicted - target_mean) / target_std,
        'negative_prediction': negative
    }, index=index)


def calculate_metrics(results: pd.DataFrame) -> Dict[str, Any]:
    """
    Calculate evaluation metrics from a result table.

    Args:
        results: Table from build_result_table

    Returns:
        Dictionary with mae_raw, mae_scaled, mae_scaled_uncorrected, rmse_raw,
        r2_raw, median_abs_residual, mean_residual, n_samples,
        n_negative_predictions. ``mae_scaled`` uses the corrected predictions,
        so ``mae_raw == mae_scaled * std``
    """
    real = results['real'].to_numpy()
    predicted = results['predicted'].to_numpy()

    r2 = r2_score(real, predicted) if len(results) > 1 else float('nan')

    return {
        'mae_raw': float(mean_absolute_error(real, predicted)),
        'mae_scaled': float(mean_absolute_error(
            results['real_scaled'], results['predicted_scaled_corrected']
        )),
        'mae_scaled_uncorrected': float(mean_absolute_error(
            results['real_scaled'], results['predicted_scaled']
        )),
        'rmse_raw': float(np.sqrt(mean_squared_error(real, predicted))),
        'r2_raw': float(r2),
        'median_abs_residual': float(results['abs_residual'].median()),
        'mean_residual': float(results['residual'].mean()),
        'n_samples': int(len(results)),
        'n_negative_predictions': int(results['negative_prediction'].sum())
    }


def plot_real_vs_predicted(
    results: pd.DataFrame,
    model_name: str = "model",
    figsize: Tuple[int, int] = (8, 7),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of real against predicted market cap.

    Args:
        results: Table from build_result_table
        model_name: Title label
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    hue = results['negative_prediction'].map({True: 'was negative', False: 'ok'})
    sns.scatterplot(x=results['real'], y=results['predicted'], hue=hue,
                    alpha=0.6, s=25, ax=ax)

    min_val = min(results['real'].min(), results['predicted'].min())
    max_val = max(results['real'].max(), results['predicted'].max())
    ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

    mae = mean_absolute_error(results['real'], results['predicted'])
    ax.set_xlabel('Real market cap')
    ax.set_ylabel('Predicted market cap')
    ax.set_title(f'{model_name}: Real vs Predicted\nMAE={mae:,.0f}',
                 fontsize=12, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Real vs Predicted plot saved to {save_path}")

    return fig


def plot_residuals(
    results: pd.DataFrame,
    model_name: str = "model",
    figsize: Tuple[int, int] = (8, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter of real market cap against the signed residual.

    Args:
        results: Table from build_result_table
        model_name: Title label
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    ax.scatter(results['real'], results['residual'], alpha=0.6, s=25)
    ax.axhline(0, color='red', linestyle='--', linewidth=2, label='Zero')
    ax.axhline(results['residual'].mean(), color='green', linestyle='--',
               linewidth=1.5, label=f"Mean: {results['residual'].mean():,.0f}")

    ax.set_xlabel('Real market cap')
    ax.set_ylabel('Residual (Real - Predicted)')
    ax.set_title(f'{model_name}: Residuals', fontsize=12, fontweight='bold')
    ax.legend(fontsize=8)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_feature_importance(
    importances: pd.DataFrame,
    top_n: int = 20,
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Horizontal bar chart of the variable-importance ranking.

    Args:
        importances: DataFrame from RandomForestModel.get_feature_importances
        top_n: Number of features to show
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    top = importances.head(top_n)

    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(x=top['importance_pct'], y=top['feature'], color='steelblue', ax=ax)
    ax.set_xlabel('Share of impurity reduction (%)')
    ax.set_ylabel('')
    ax.set_title('Random Forest Variable Importance', fontsize=14, fontweight='bold')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Feature importance plot saved to {save_path}")

    return fig


def evaluate_model(
    model: MarketCapModel,
    X_test: pd.DataFrame,
    y_test: pd.Series,
    scaler: FinancialScaler,
    target_column: str,
    model_name: Optional[str] = None,
    non_negative: str = "abs",
    output_dir: Optional[str] = "reports/",
    show_plots: bool = False,
    identifiers: Optional[pd.DataFrame] = None
) -> Dict[str, Any]:
    """
    Evaluate a fitted model on the test half.

    Args:
        model: Fitted model
        X_test: Scaled test features
        y_test: Scaled test target
        scaler: Scaler holding the target's mean and std
        target_column: Name of the target column
        model_name: Label for reports (default: the model type)
        non_negative: How to treat negative predictions ("abs" or "clip")
        output_dir: Directory for figures and metrics (None: no files)
        show_plots: Whether to display plots interactively
        identifiers: Identifier columns of the test rows, joined onto the
            result table by index

    Returns:
        Dictionary containing metrics, the result table and file paths
    """
    model_name = model_name or model.model_type

    logger.info("=" * 60)
    logger.info(f"EVALUATING {model_name.upper()}")
    logger.info("=" * 60)

    if len(X_test) == 0:
        raise ValueError("Test set is empty")

    y_pred = model.predict(X_test)
    mean, std = scaler.get_params(target_column)

    results = build_result_table(y_test, y_pred, mean, std, non_negative=non_negative)
    if identifiers is not None:
        results = identifiers.join(results, how='right')
    metrics = calculate_metrics(results)
    metrics['model'] = model_name

    figures = []
    metrics_file = None

    if output_dir is not None:
        output_dir = Path(output_dir)
        figures_dir = output_dir / "figures"
        metrics_dir = output_dir / "metrics"
        figures_dir.mkdir(parents=True, exist_ok=True)
        metrics_dir.mkdir(parents=True, exist_ok=True)

        metrics_file = metrics_dir / f"{model_name}_metrics.json"
        with open(metrics_file, 'w') as f:
            json.dump(metrics, f, indent=2)
        logger.info(f"Metrics saved to {metrics_file}")

        plot_real_vs_predicted(
            results, model_name,
            save_path=str(figures_dir / f"eval_{model_name}_real_vs_predicted.png")
        )
        figures.append(f"eval_{model_name}_real_vs_predicted.png")

        plot_residuals(
            results, model_name,
            save_path=str(figures_dir / f"eval_{model_name}_residuals.png")
        )
        figures.append(f"eval_{model_name}_residuals.png")

        if hasattr(model, 'get_feature_importances'):
            plot_feature_importance(
                model.get_feature_importances(),
                save_path=str(figures_dir / f"eval_{model_name}_importance.png")
            )
            figures.append(f"eval_{model_name}_importance.png")

        if show_plots:
            plt.show()
        else:
            plt.close('all')

    logger.info(f"  MAE (raw): {metrics['mae_raw']:,.2f}")
    logger.info(f"  MAE (scaled): {metrics['mae_scaled']:.6f}")
    logger.info(f"  Negative predictions: {metrics['n_negative_predictions']}")

    return {
        'metrics': metrics,
        'results': results,
        'figures': figures,
        'metrics_file': str(metrics_file) if metrics_file else None
    }


def compare_models(evaluations: Dict[str, Dict[str, Any]]) -> pd.DataFrame:
    """
    Side-by-side metrics of several evaluated models.

    Args:
        evaluations: Mapping of model name to evaluate_model result

    Returns:
        DataFrame indexed by model, sorted by raw MAE (best first)
    """
    rows = []
    for name, evaluation in evaluations.items():
        metrics = evaluation['metrics']
        rows.append({
            'model': name,
            'mae_raw': metrics['mae_raw'],
            'mae_scaled': metrics['mae_scaled'],
            'rmse_raw': metrics['rmse_raw'],
            'r2_raw': metrics['r2_raw'],
            'n_negative_predictions': metrics['n_negative_predictions']
        })

    if not rows:
        return pd.DataFrame(columns=['mae_raw', 'mae_scaled', 'rmse_raw', 'r2_raw',
                                     'n_negative_predictions'])

    return pd.DataFrame(rows).set_index('model').sort_values('mae_raw')


def print_evaluation_report(metrics: Dict[str, Any], model_name: Optional[str] = None) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from calculate_metrics
        model_name: Label for the header
    """
    model_name = model_name or metrics.get('model', 'model')

    print("\n" + "=" * 70)
    print(f"MODEL EVALUATION REPORT: {model_name}")
    print("=" * 70)
    print(f"  • MAE (raw units): {metrics['mae_raw']:,.2f}")
    print(f"  • MAE (scaled): {metrics['mae_scaled']:.6f}")
    print(f"  • RMSE (raw units): {metrics['rmse_raw']:,.2f}")
    print(f"  • R²: {metrics['r2_raw']:.4f}")
    print(f"  • Median absolute residual: {metrics['median_abs_residual']:,.2f}")
    print(f"  • Samples evaluated: {metrics['n_samples']}")

    if metrics['n_negative_predictions']:
        print(f"\n  ⚠ {metrics['n_negative_predictions']} predictions were negative "
              "and were made non-negative before scoring")

    print("=" * 70 + "\n")


def print_model_comparison(comparison: pd.DataFrame) -> None:
    """
    Print the model comparison table.

    Args:
        comparison: DataFrame from compare_models
    """
    print("\n" + "=" * 70)
    print("MODEL COMPARISON (sorted by raw MAE)")
    print("=" * 70)
    print(f"{'Model':<18} {'MAE (raw)':>18} {'MAE (scaled)':>14} {'R²':>10} {'Neg.':>6}")
    print("-" * 70)

    for name, row in comparison.iterrows():
        print(f"{name:<18} {row['mae_raw']:>18,.0f} {row['mae_scaled']:>14.4f} "
              f"{row['r2_raw']:>10.4f} {int(row['n_negative_predictions']):>6}")

    print("=" * 70 + "\n")
