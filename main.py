#!/usr/bin/env python3
"""
Market Capitalization Prediction - Main Pipeline
=================================================

Orchestrates the complete analysis of S&P 500 financial fields.

Phases:
    1. EDA - Missing values, correlations and relationships to market cap
    2. Cleaning - Zero masking, random-forest imputation, outlier filter
    3. Preprocessing - Random train/test split and standardization
    4. Training - Neural network, k-nearest-neighbors and random forest
    5. Evaluation - MAE in raw units, residual plots, model comparison

Usage:
    # Run complete pipeline
    python main.py --data data/raw/sp500_financials.xlsx

    # Run specific phase
    python main.py --data data/raw/sp500_financials.xlsx --phase eda

    # Run with custom config
    python main.py --data data/raw/sp500_financials.xlsx --config config/config.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, List, Optional

import pandas as pd

from mcap.data_loader import (
    load_config, load_data, validate_data, print_data_summary,
    resolve_target_column, get_id_columns
)
from mcap.eda import generate_eda_report, print_correlation_insights
from mcap.cleaning import cleaning_pipeline, print_cleaning_summary
from mcap.preprocessing import preprocess_pipeline, print_preprocessing_summary
from mcap.model import train_model, print_model_summary, MarketCapModel, MODEL_REGISTRY
from mcap.evaluation import (
    evaluate_model, print_evaluation_report, compare_models, print_model_comparison
)

PHASES = ['eda', 'clean', 'preprocess', 'train', 'evaluate', 'all']


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def load_and_validate(
    data_path: str,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Load the spreadsheet, resolve the target and validate it.

    Args:
        data_path: Path to the input spreadsheet
        config: Configuration dictionary

    Returns:
        Dictionary with df, target_column and id_columns
    """
    data_config = config.get('data', {})

    print("\n📊 Loading data...")
    df = load_data(data_path, sheet_name=data_config.get('sheet_name'))
    print_data_summary(df)

    target_column = resolve_target_column(
        df,
        target_field=data_config.get('target_field', 'Market.Cap'),
        target=data_config.get('target')
    )
    id_columns = get_id_columns(df, data_config.get('id_columns'))

    is_valid, _ = validate_data(df, target_column, strict=False, id_columns=id_columns)
    if not is_valid:
        print("⚠️  Data validation warnings detected. Proceeding anyway...")

    return {'df': df, 'target_column': target_column, 'id_columns': id_columns}


def run_eda(
    df: pd.DataFrame,
    target_column: str,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        df: Raw data
        target_column: Name of the target column
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(df, target_column, output_dir=output_dir, show_plots=False)

    corr_df = pd.DataFrame(report["correlation_matrix"])
    print_correlation_insights(corr_df, target_column)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_cleaning(
    df: pd.DataFrame,
    target_column: str,
    id_columns: List[str],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 2: Cleaning, imputation and outlier filtering.

    Args:
        df: Raw data
        target_column: Name of the target column
        id_columns: Identifier columns
        config: Configuration dictionary

    Returns:
        Cleaning result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: CLEANING & IMPUTATION")
    print("=" * 70)

    result = cleaning_pipeline(
        df, target_column, config.get('cleaning', {}), id_columns=id_columns
    )
    print_cleaning_summary(result)

    return result


def run_preprocessing(
    df: pd.DataFrame,
    target_column: str,
    id_columns: List[str],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 3: Split and standardization.

    Args:
        df: Dense, filtered data
        target_column: Name of the target column
        id_columns: Identifier columns
        config: Configuration dictionary

    Returns:
        Preprocessing result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 3: DATA PREPROCESSING")
    print("=" * 70)

    prep_config = config.get('preprocessing', {})
    models_path = config.get('output', {}).get('models_path')

    result = preprocess_pipeline(
        df,
        target_column,
        feature_columns=prep_config.get('feature_columns'),
        train_fraction=prep_config.get('train_fraction', 0.5),
        random_state=prep_config.get('random_state', 42),
        scale_on=prep_config.get('scale_on', 'train'),
        id_columns=id_columns,
        save_scaler=str(Path(models_path) / 'scaler.joblib') if models_path else None
    )

    print_preprocessing_summary(result)

    return result


def run_training(
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, MarketCapModel]:
    """
    Execute Phase 4: Train every enabled model.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Mapping of model name to trained model
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL TRAINING")
    print("=" * 70)

    models_config = config.get('models', {name: {} for name in MODEL_REGISTRY})
    models_path = config.get('output', {}).get('models_path')

    models = {}
    for name, params in models_config.items():
        params = params or {}
        if not params.get('enabled', True):
            logging.info(f"Skipping disabled model: {name}")
            continue

        save_path = str(Path(models_path) / f'{name}.joblib') if models_path else None
        model = train_model(
            name,
            prep_result['X_train'],
            prep_result['y_train'],
            params,
            save_path=save_path
        )
        print_model_summary(model)
        models[name] = model

    return models


def run_evaluation(
    models: Dict[str, MarketCapModel],
    prep_result: Dict[str, Any],
    config: Dict[str, Any],
    id_columns: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Execute Phase 5: Evaluate every trained model on the test half.

    Args:
        models: Trained models by name
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary
        id_columns: Identifier columns copied into each result table

    Returns:
        Dictionary with per-model evaluations and the comparison table
    """
    print("\n" + "=" * 70)
    print("PHASE 5: MODEL EVALUATION")
    print("=" * 70)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    non_negative = config.get('evaluation', {}).get('non_negative', 'abs')
    test_df = prep_result['test_df']
    identifiers = test_df[[col for col in (id_columns or []) if col in test_df.columns]]

    evaluations = {}
    for name, model in models.items():
        evaluation = evaluate_model(
            model,
            prep_result['X_test'],
            prep_result['y_test'],
            prep_result['scaler'],
            prep_result['target_column'],
            model_name=name,
            non_negative=non_negative,
            output_dir=output_dir,
            show_plots=False,
            identifiers=identifiers
        )
        print_evaluation_report(evaluation['metrics'], name)
        evaluations[name] = evaluation

    comparison = compare_models(evaluations)
    print_model_comparison(comparison)

    comparison_path = Path(output_dir) / 'metrics' / 'model_comparison.csv'
    comparison_path.parent.mkdir(parents=True, exist_ok=True)
    comparison.to_csv(comparison_path)
    logging.info(f"Model comparison saved to {comparison_path}")

    return {'evaluations': evaluations, 'comparison': comparison}


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    phase: str = "all",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the pipeline up to (and including) ``phase``.

    Args:
        data_path: Path to input spreadsheet
        config_path: Path to configuration file
        phase: Last phase to run; EDA runs only for 'eda' and 'all'
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    config = load_config(config_path)
    log_config = config.get('logging', {})
    setup_logging(log_level or log_config.get('level', 'INFO'), log_config.get('log_dir'))

    print("\n" + "=" * 70)
    print("MARKET CAP PREDICTION PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    loaded = load_and_validate(data_path, config)
    df = loaded['df']
    target_column = loaded['target_column']
    id_columns = loaded['id_columns']

    results = {
        'config': config,
        'data_shape': df.shape,
        'target_column': target_column
    }

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(df, target_column, config)
        if phase == 'eda':
            return results

    results['cleaning'] = run_cleaning(df, target_column, id_columns, config)
    if phase == 'clean':
        return results

    results['preprocessing'] = run_preprocessing(
        results['cleaning']['data'], target_column, id_columns, config
    )
    if phase == 'preprocess':
        return results

    results['models'] = run_training(results['preprocessing'], config)
    if phase == 'train':
        return results

    results['evaluation'] = run_evaluation(
        results['models'], results['preprocessing'], config, id_columns
    )

    comparison = results['evaluation']['comparison']
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Rows modelled: {results['cleaning']['row_counts']['filtered']}")
    if len(comparison):
        print(f"  • Best model: {comparison.index[0]} "
              f"(MAE {comparison['mae_raw'].iloc[0]:,.0f})")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Market Capitalization Prediction for S&P 500 Companies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/sp500_financials.xlsx
  python main.py --data data/raw/sp500_financials.xlsx --phase eda
  python main.py --data data/raw/sp500_financials.xlsx --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input spreadsheet (.xlsx or .csv)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Run the pipeline up to this phase (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nExpected format: one row per company, columns named <Field>.<Year>")
        return 1

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    try:
        run_full_pipeline(
            args.data, args.config, phase=args.phase,
            log_level='DEBUG' if args.verbose else None
        )
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
