"""
Market Capitalization Prediction
=================================

An analysis pipeline that predicts the market capitalization of S&P 500
companies from their reported financial fields (2018-2023).

Modules:
    - data_loader: Spreadsheet ingestion, column layout detection and validation
    - eda: Exploratory Data Analysis of the financial fields
    - cleaning: Zero masking, random-forest imputation and outlier filtering
    - preprocessing: Standardization and random train/test splitting
    - model: Neural network, k-nearest-neighbors and random forest regressors
    - evaluation: Result tables, MAE metrics, residual plots and model comparison
"""

__version__ = "1.0.0"
__author__ = "mcap contributors"
