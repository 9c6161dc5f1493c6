"""
Consumer Sentiment Models
=========================

Relates consumer sentiment survey indexes to inflation, unemployment and the
federal funds rate.

Modules:
    - errors: Exception taxonomy
    - data_loader: CSV ingestion, configuration and validation
    - alignment: Monthly date keys for survey and indicator series
    - preprocessing: Joining and derived features
    - eda: Period comparisons, correlations and exploratory charts
    - model: Ordinary least squares models
    - evaluation: Output tables, metrics and diagnostic plots
    - prediction: Scenario predictions with intervals
"""

__version__ = "1.0.0"
__author__ = "Consumer Sentiment Team"
