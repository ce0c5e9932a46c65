"""
Configuration settings for the tree health classification pipeline.

Cleaning thresholds, split/CV settings and hyperparameter grids all live here
and are used as keyword defaults by the pipeline modules.
"""
from pathlib import Path

from scipy.stats import loguniform, randint

# Project paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_PATH = PROJECT_ROOT / "2015_Street_Tree_Census_-_Tree_Data.csv"
OUTPUT_DIR = PROJECT_ROOT / "output"
MODELS_DIR = OUTPUT_DIR / "models"
PLOTS_DIR = OUTPUT_DIR / "plots"

RANDOM_STATE = 42

# Schema
TARGET_COLUMN = "health"
STATUS_COLUMN = "status"
SPECIES_COLUMN = "spc_common"
ALIVE_STATUS = "Alive"

NUMERIC_FEATURES = ["tree_dbh", "latitude", "longitude"]
DAMAGE_INDICATORS = [
    'root_stone', 'root_grate', 'root_other',
    'trunk_wire', 'trnk_light', 'trnk_other',
    'brch_light', 'brch_shoe', 'brch_other',
]
CATEGORICAL_FEATURES = ["curb_loc", SPECIES_COLUMN, "boroname"] + DAMAGE_INDICATORS
FEATURE_COLUMNS = NUMERIC_FEATURES + CATEGORICAL_FEATURES
RETAINED_COLUMNS = [TARGET_COLUMN] + FEATURE_COLUMNS
REQUIRED_COLUMNS = [STATUS_COLUMN] + RETAINED_COLUMNS

# Ordered health domains (worst to best)
HEALTH_LEVELS = ["Poor", "Fair", "Good"]
DEAD_LABEL = "Dead"
HEALTH_LEVELS_WITH_DEAD = [DEAD_LABEL] + HEALTH_LEVELS

# Cleaning settings
STATUS_POLICY = "drop"  # "drop": keep Alive rows only, "recode": label non-Alive rows as Dead
SPECIES_MIN_COUNT = 5000  # keep species with strictly more records than this
HEAD_ROWS = None  # e.g. 5000 to work on the first rows only
SUBSAMPLE_FRACTION = 0.2  # None disables subsampling

# Split / cross-validation settings
TRAIN_PROPORTION = 0.8
N_FOLDS = 5
TUNE_METRIC = "accuracy"  # metric used to pick the best grid point
REPORT_METRICS = ["accuracy", "roc_auc"]
AUC_MULTI_CLASS = "ovo"  # Hand & Till multiclass AUC
N_JOBS = 1

# Boosted trees
XGBOOST_N_ESTIMATORS = 500
EARLY_STOPPING_FRACTION = 0.15

# Random forest
RF_N_ESTIMATORS = 500

# Lasso
LASSO_MAX_ITER = 2000

# ============================================================================
# HYPERPARAMETER GRIDS
# ============================================================================
# "kind" is "regular" (full cartesian product) or "random" (n_iter sampled points)

KNN_GRID = {
    'kind': 'regular',
    'params': {'n_neighbors': list(range(1, 51, 5))},
}

XGBOOST_GRID = {
    'kind': 'random',
    'n_iter': 20,
    'params': {
        'min_child_weight': randint(2, 41),
        'learning_rate': loguniform(1e-3, 0.3),
        'max_depth': randint(1, 16),
        'early_stopping_rounds': randint(3, 21),
    },
}

RANDOM_FOREST_GRID = {
    'kind': 'regular',
    'params': {
        'min_samples_leaf': [1, 5, 10, 20, 40],
        'max_features': [1, 3, 5, 8, 12],
    },
}

LASSO_GRID = {
    'kind': 'regular',
    'params': {'penalty': [1e-4, 3e-4, 1e-3, 3e-3, 1e-2, 3e-2, 1e-1]},
}

MODEL_FAMILIES = ["knn", "xgboost", "random_forest", "lasso"]
