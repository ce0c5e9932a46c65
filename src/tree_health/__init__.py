"""
Tree Health Classification Pipeline

Predicts the health of street trees (Poor / Fair / Good) from a municipal
tree census and compares four tuned classifiers.

Modules:
    - config: Configuration settings, cleaning knobs and hyperparameter grids
    - data_loader: Data loading, schema validation and initial inspection
    - preprocessing: Cleaning, stratified train/test split and fold assignment
    - models: Model family descriptors and the grid-search trainer
    - evaluation: Metrics, model comparison and plots
    - main: Main pipeline orchestration
"""

__version__ = "1.0.0"
__author__ = "Tree Health Project"
