"""
Model families and the generic grid-search / cross-validation trainer.

Every family is a ``ModelFamily`` descriptor (grid, estimator factory, optional
fit hook); one ``ModelTrainer`` tunes, refits and evaluates any of them.

Families:
1. knn           - k-nearest-neighbours vote on scaled numeric + one-hot features
2. xgboost       - boosted trees with early stopping
3. random_forest - bagged trees with per-split feature subsampling
4. lasso         - L1-regularised multinomial logistic regression
"""
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import joblib
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.compose import ColumnTransformer
from sklearn.ensemble import RandomForestClassifier
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import ParameterGrid, ParameterSampler, train_test_split
from sklearn.neighbors import KNeighborsClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler
from xgboost import XGBClassifier

from tree_health.config import (
    RANDOM_STATE, N_JOBS, TUNE_METRIC, MODELS_DIR, NUMERIC_FEATURES,
    KNN_GRID, XGBOOST_GRID, RANDOM_FOREST_GRID, LASSO_GRID, MODEL_FAMILIES,
    XGBOOST_N_ESTIMATORS, EARLY_STOPPING_FRACTION, RF_N_ESTIMATORS, LASSO_MAX_ITER
)
from tree_health.evaluation import SCORERS, EvaluationResult, get_scorer
from tree_health.preprocessing import iter_folds


class NoFeasibleGridPointError(RuntimeError):
    """Raised when every grid point failed during cross-validation."""


def _to_builtin(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


@dataclass(frozen=True)
class GridSpec:
    """
    Hyperparameter grid.

    ``kind="regular"`` expands the full cartesian product of value lists;
    ``kind="random"`` draws ``n_iter`` points from lists or scipy distributions.
    """
    params: Dict[str, Any]
    kind: str = 'regular'
    n_iter: int = 10

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'GridSpec':
        return cls(params=config['params'], kind=config.get('kind', 'regular'),
                   n_iter=config.get('n_iter', 10))

    def expand(self, random_state: int = RANDOM_STATE) -> List[Dict[str, Any]]:
        """Grid points in canonical order."""
        if self.kind == 'regular':
            points = list(ParameterGrid(self.params))
        elif self.kind == 'random':
            points = list(ParameterSampler(self.params, n_iter=self.n_iter, random_state=random_state))
        else:
            raise ValueError(f"Unknown grid kind '{self.kind}'")
        return [{k: _to_builtin(v) for k, v in point.items()} for point in points]


def build_preprocessor(X: pd.DataFrame, scale_numeric: bool) -> ColumnTransformer:
    """One-hot encode categorical columns; optionally standardise numeric ones."""
    numeric = [col for col in NUMERIC_FEATURES if col in X.columns]
    categorical = [col for col in X.columns if col not in numeric]

    return ColumnTransformer(
        transformers=[
            ('num', StandardScaler() if scale_numeric else 'passthrough', numeric),
            ('cat', OneHotEncoder(handle_unknown='ignore', sparse_output=False), categorical),
        ],
        verbose_feature_names_out=False,
    )


@dataclass(frozen=True)
class ModelFamily:
    """
    Everything the trainer needs to know about one model family.

    ``make_estimator(params, n_samples, seed)`` returns an unfitted classifier;
    ``fit_hook(pipeline, X, y, seed)`` replaces the plain ``pipeline.fit`` when set.
    ``build(..., n_jobs=1)`` pins the estimator to one core when folds already run in parallel.
    """
    name: str
    display_name: str
    make_estimator: Callable[[Dict[str, Any], int, int], Any]
    grid: GridSpec
    scale_numeric: bool = False
    fit_hook: Optional[Callable[..., Pipeline]] = None

    def build(self, params: Dict[str, Any], X: pd.DataFrame, seed: int,
              n_jobs: Optional[int] = None) -> Pipeline:
        estimator = self.make_estimator(params, len(X), seed)
        if n_jobs is not None and 'n_jobs' in estimator.get_params():
            estimator.set_params(n_jobs=n_jobs)
        return Pipeline([
            ('preprocess', build_preprocessor(X, self.scale_numeric)),
            ('model', estimator),
        ])

    def fit(self, pipeline: Pipeline, X: pd.DataFrame, y: np.ndarray, seed: int) -> Pipeline:
        if self.fit_hook is not None:
            return self.fit_hook(pipeline, X, y, seed)
        return pipeline.fit(X, y)


# ----------------------------------------------------------------------------
# Family definitions
# ----------------------------------------------------------------------------

def knn_family(grid: GridSpec = None) -> ModelFamily:
    def make_estimator(params, n_samples, seed):
        return KNeighborsClassifier(**params)

    return ModelFamily('knn', 'k-Nearest Neighbors', make_estimator,
                       grid or GridSpec.from_config(KNN_GRID), scale_numeric=True)


def _fit_with_early_stopping(pipeline: Pipeline, X: pd.DataFrame, y: np.ndarray, seed: int) -> Pipeline:
    """Fit the boosted model with a stratified early-stopping split carved off X."""
    model = pipeline.named_steps['model']
    if model.get_params().get('early_stopping_rounds') is None:
        return pipeline.fit(X, y)

    X_tr, X_val, y_tr, y_val = train_test_split(
        X, y, test_size=EARLY_STOPPING_FRACTION, random_state=seed, stratify=y
    )
    preprocess = pipeline.named_steps['preprocess'].fit(X_tr, y_tr)
    model.fit(
        preprocess.transform(X_tr), y_tr,
        eval_set=[(preprocess.transform(X_val), y_val)],
        verbose=False,
    )
    return pipeline


def xgboost_family(grid: GridSpec = None, n_estimators: int = XGBOOST_N_ESTIMATORS) -> ModelFamily:
    def make_estimator(params, n_samples, seed):
        return XGBClassifier(
            n_estimators=n_estimators,
            eval_metric='mlogloss',
            tree_method='hist',
            random_state=seed,
            n_jobs=-1,
            verbosity=0,
            **params
        )

    return ModelFamily('xgboost', 'XGBoost', make_estimator,
                       grid or GridSpec.from_config(XGBOOST_GRID),
                       fit_hook=_fit_with_early_stopping)


def random_forest_family(grid: GridSpec = None, n_estimators: int = RF_N_ESTIMATORS) -> ModelFamily:
    def make_estimator(params, n_samples, seed):
        return RandomForestClassifier(
            n_estimators=n_estimators,
            random_state=seed,
            n_jobs=-1,
            **params
        )

    return ModelFamily('random_forest', 'Random Forest', make_estimator,
                       grid or GridSpec.from_config(RANDOM_FOREST_GRID))


def lasso_family(grid: GridSpec = None, max_iter: int = LASSO_MAX_ITER) -> ModelFamily:
    """
    Multinomial logistic regression with a pure L1 penalty.

    The grid's ``penalty`` is the per-sample penalty strength (lambda), mapped
    to scikit-learn's inverse regularisation as ``C = 1 / (lambda * n_samples)``.
    """
    def make_estimator(params, n_samples, seed):
        params = dict(params)
        penalty = params.pop('penalty')
        return LogisticRegression(
            penalty='elasticnet',
            l1_ratio=1.0,
            C=1.0 / (penalty * n_samples),
            solver='saga',
            max_iter=max_iter,
            random_state=seed,
            **params
        )

    return ModelFamily('lasso', 'Lasso (multinomial)', make_estimator,
                       grid or GridSpec.from_config(LASSO_GRID), scale_numeric=True)


FAMILY_FACTORIES = {
    'knn': knn_family,
    'xgboost': xgboost_family,
    'random_forest': random_forest_family,
    'lasso': lasso_family,
}


def get_model_families(names: Sequence[str] = MODEL_FAMILIES) -> List[ModelFamily]:
    unknown = [n for n in names if n not in FAMILY_FACTORIES]
    if unknown:
        raise ValueError(f"Unknown model families {unknown}. Available: {list(FAMILY_FACTORIES)}")
    return [FAMILY_FACTORIES[n]() for n in names]


# ----------------------------------------------------------------------------
# Training
# ----------------------------------------------------------------------------

def predict_proba_aligned(model, X: pd.DataFrame, labels: Sequence[int]) -> np.ndarray:
    """Class probabilities with one column per entry of ``labels`` (zeros for unseen classes)."""
    proba = model.predict_proba(X)
    aligned = np.zeros((proba.shape[0], len(labels)))
    label_pos = {label: i for i, label in enumerate(labels)}
    for j, cls in enumerate(model.classes_):
        aligned[:, label_pos[_to_builtin(cls)]] = proba[:, j]
    return aligned


def _nanmean(values: List[float]) -> float:
    arr = np.asarray(values, dtype=float)
    if np.isnan(arr).all():
        return float('nan')
    return float(np.nanmean(arr))


def _evaluate_fold(family, params, X, y, fit_idx, val_idx, labels, seed, estimator_jobs=None):
    """Fit one grid point on one fold; returns (scores, error message)."""
    try:
        X_fit = X.iloc[fit_idx]
        pipeline = family.fit(family.build(params, X_fit, seed, n_jobs=estimator_jobs),
                              X_fit, y[fit_idx], seed)
        X_val = X.iloc[val_idx]
        y_pred = pipeline.predict(X_val)
        y_proba = predict_proba_aligned(pipeline, X_val, labels)
    except Exception as e:
        return None, f"{type(e).__name__}: {e}"

    y_val = y[val_idx]
    return {name: scorer(y_val, y_pred, y_proba, labels) for name, scorer in SCORERS.items()}, None


@dataclass
class TuningResult:
    """Best grid point of one family, refit on the whole training set."""
    family: str
    best_params: Dict[str, Any]
    best_score: float
    metric: str
    cv_results: pd.DataFrame = field(repr=False)
    model: Any = field(repr=False)
    labels: List[int] = field(default_factory=list)


class ModelTrainer:
    """
    Tunes model families by cross-validated grid search and refits the winner.
    """

    def __init__(
        self,
        metric: str = TUNE_METRIC,
        n_jobs: int = N_JOBS,
        random_state: int = RANDOM_STATE,
        labels: Sequence[int] = None,
    ):
        """
        Initialize the model trainer.

        Args:
            metric: Scoring function used to select the best grid point.
            n_jobs: Parallel fold evaluations (joblib semantics).
            random_state: Seed for grids and estimators.
            labels: All class codes; inferred from the training labels if None.
        """
        get_scorer(metric)
        self.metric = metric
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.labels = list(labels) if labels is not None else None
        self.results: Dict[str, TuningResult] = {}

    @property
    def fold_estimator_jobs(self) -> Optional[int]:
        """Estimator thread count inside parallel fold evaluation (None keeps the family default)."""
        return None if self.n_jobs == 1 else 1

    def _labels_for(self, y: np.ndarray) -> List[int]:
        if self.labels is not None:
            return self.labels
        return [_to_builtin(v) for v in np.unique(y)]

    def tune_and_fit(
        self,
        family: ModelFamily,
        X_train: pd.DataFrame,
        y_train: np.ndarray,
        folds: pd.Series,
        grid: GridSpec = None,
    ) -> TuningResult:
        """
        Cross-validate every grid point, pick the best and refit it on all of X_train.

        Each scoring function is applied to the same held-out fold predictions and
        averaged across folds. Grid points that fail on any fold get a NaN score and
        are never selected; ties go to the first point in grid order.

        Args:
            family: Model family descriptor.
            X_train: Training features.
            y_train: Training class codes.
            folds: Fold number per training row (positionally aligned with X_train).
            grid: Overrides the family's grid.

        Returns:
            TuningResult with the refit model.
        """
        grid = grid or family.grid
        candidates = grid.expand(self.random_state)
        if not candidates:
            raise ValueError(f"Grid for '{family.name}' is empty")
        if len(folds) != len(X_train):
            raise ValueError(f"Fold assignment has {len(folds)} rows, X_train has {len(X_train)}")

        y_train = np.asarray(y_train)
        labels = self._labels_for(y_train)
        fold_splits = list(iter_folds(folds))

        print(f"\n🧪 Tuning {family.display_name} "
              f"({len(candidates)} grid points × {len(fold_splits)} folds, metric={self.metric})...")

        if len(fold_splits) < 2:
            if len(candidates) > 1:
                raise ValueError("At least 2 folds are needed to compare grid points")
            cv_results = self._summarize(family, candidates, [[(None, None)]])
            best_idx = 0
        else:
            tasks = [
                (params, fit_idx, val_idx)
                for params in candidates
                for _, fit_idx, val_idx in fold_splits
            ]
            outcomes = Parallel(n_jobs=self.n_jobs)(
                delayed(_evaluate_fold)(
                    family, params, X_train, y_train, fit_idx, val_idx, labels,
                    self.random_state, self.fold_estimator_jobs
                )
                for params, fit_idx, val_idx in tasks
            )
            n_folds = len(fold_splits)
            per_point = [outcomes[i * n_folds:(i + 1) * n_folds] for i in range(len(candidates))]
            cv_results = self._summarize(family, candidates, per_point)
            best_idx = self._select_best(cv_results[f'mean_{self.metric}'].to_numpy())
            if best_idx is None:
                raise NoFeasibleGridPointError(
                    f"No feasible grid point for '{family.name}' ({len(candidates)} tried)"
                )

        best_params = candidates[best_idx]
        best_score = float(cv_results.loc[best_idx, f'mean_{self.metric}'])

        print(f"✅ Best {family.display_name} CV {self.metric}: {best_score:.4f}")
        print(f"   Best params: {best_params}")

        pipeline = family.fit(family.build(best_params, X_train, self.random_state),
                              X_train, y_train, self.random_state)

        result = TuningResult(
            family=family.name,
            best_params=best_params,
            best_score=best_score,
            metric=self.metric,
            cv_results=cv_results,
            model=pipeline,
            labels=labels,
        )
        self.results[family.name] = result
        return result

    def _summarize(self, family, candidates, per_point) -> pd.DataFrame:
        rows = []
        for params, outcomes in zip(candidates, per_point):
            errors = [err for _, err in outcomes if err is not None]
            scores = [s for s, _ in outcomes if s is not None]

            row = {f'param_{k}': v for k, v in params.items()}
            for name in SCORERS:
                if errors or not scores:
                    row[f'mean_{name}'] = float('nan')
                else:
                    with warnings.catch_warnings():
                        warnings.simplefilter('ignore', RuntimeWarning)
                        row[f'mean_{name}'] = _nanmean([s[name] for s in scores])
            row['n_failed_folds'] = len(errors)
            row['params'] = params
            rows.append(row)

            if errors:
                warnings.warn(
                    f"{family.name}: grid point {params} failed on {len(errors)} fold(s) "
                    f"({errors[0]}); its score is treated as missing"
                )

        return pd.DataFrame(rows)

    @staticmethod
    def _select_best(scores: np.ndarray) -> Optional[int]:
        best_idx = None
        for i, score in enumerate(scores):
            if np.isnan(score):
                continue
            if best_idx is None or score > scores[best_idx]:
                best_idx = i
        return best_idx

    def evaluate(
        self,
        result: TuningResult,
        X_test: pd.DataFrame,
        y_test: np.ndarray,
        model_name: str = None,
    ) -> EvaluationResult:
        """Score a refit model on held-out data with every registered metric."""
        y_test = np.asarray(y_test)
        y_pred = np.asarray(result.model.predict(X_test))
        y_proba = predict_proba_aligned(result.model, X_test, result.labels)

        metrics = {
            name: scorer(y_test, y_pred, y_proba, result.labels)
            for name, scorer in SCORERS.items()
        }
        return EvaluationResult(model_name or result.family, metrics, y_test, y_pred, y_proba)

    def save_result(self, name: str, models_dir: Path = MODELS_DIR) -> Path:
        """Persist one family's TuningResult."""
        models_dir = Path(models_dir)
        models_dir.mkdir(parents=True, exist_ok=True)
        filename = models_dir / f"{name}_result.joblib"
        joblib.dump(self.results[name], filename)
        print(f"✅ Saved {name} to {filename}")
        return filename

    def load_result(self, name: str, models_dir: Path = MODELS_DIR) -> Optional[TuningResult]:
        """Load a cached TuningResult, or None if there is none on disk."""
        filename = Path(models_dir) / f"{name}_result.joblib"
        if not filename.exists():
            return None
        result = joblib.load(filename)
        self.results[name] = result
        print(f"✅ Loaded {name} from {filename}")
        return result

    def get_cv_scores_summary(self) -> pd.DataFrame:
        """Best cross-validation score per tuned family."""
        rows = [
            {'Model': name, f'CV {self.metric}': result.best_score, 'Best params': result.best_params}
            for name, result in self.results.items()
        ]
        return pd.DataFrame(rows).sort_values(f'CV {self.metric}', ascending=False)

    def _get_model(self, name: str) -> Pipeline:
        if name not in self.results:
            raise ValueError(f"Model '{name}' not found. Available: {list(self.results.keys())}")
        return self.results[name].model

    def predict(self, name: str, X: pd.DataFrame) -> np.ndarray:
        return self._get_model(name).predict(X)

    def predict_proba(self, name: str, X: pd.DataFrame) -> np.ndarray:
        return predict_proba_aligned(self._get_model(name), X, self.results[name].labels)

    def get_feature_importance(self, name: str) -> pd.DataFrame:
        """Per-feature importance of a fitted family, most important first."""
        pipeline = self._get_model(name)
        model = pipeline.named_steps['model']

        if not hasattr(model, 'feature_importances_'):
            raise ValueError(f"Model '{name}' doesn't support feature importance.")

        importance_df = pd.DataFrame({
            'feature': pipeline.named_steps['preprocess'].get_feature_names_out(),
            'importance': model.feature_importances_,
        })
        return importance_df.sort_values('importance', ascending=False).reset_index(drop=True)
