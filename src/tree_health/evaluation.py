"""
Model evaluation module: scoring functions, comparison table and diagnostic plots.

Scoring functions share one signature ``(y_true, y_pred, y_proba, labels)`` so
the trainer can apply each of them to the same fold predictions.
"""
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import (
    accuracy_score, classification_report, confusion_matrix,
    roc_auc_score, roc_curve, auc
)

from tree_health.config import PLOTS_DIR, HEALTH_LEVELS, AUC_MULTI_CLASS, TUNE_METRIC


def accuracy_metric(y_true, y_pred, y_proba, labels: Sequence[int]) -> float:
    """Exact-match rate of the discrete predictions."""
    return float(accuracy_score(y_true, y_pred))


def roc_auc_metric(y_true, y_pred, y_proba, labels: Sequence[int]) -> float:
    """
    Area under the ROC curve from class probabilities.

    Multiclass problems use ``AUC_MULTI_CLASS`` averaging. Returns NaN (with a
    warning) when scikit-learn rejects the inputs.
    """
    if y_proba is None:
        return float('nan')
    try:
        if len(labels) == 2:
            return float(roc_auc_score(y_true, y_proba[:, 1]))
        return float(roc_auc_score(
            y_true, y_proba,
            multi_class=AUC_MULTI_CLASS,
            average='macro',
            labels=list(labels),
        ))
    except ValueError as e:
        warnings.warn(f"Could not compute ROC-AUC: {e}")
        return float('nan')


SCORERS: Dict[str, Callable[..., float]] = {
    'accuracy': accuracy_metric,
    'roc_auc': roc_auc_metric,
}


def get_scorer(metric: str) -> Callable[..., float]:
    if metric not in SCORERS:
        raise ValueError(f"Unknown metric '{metric}'. Available: {list(SCORERS)}")
    return SCORERS[metric]


@dataclass
class EvaluationResult:
    """Held-out metrics of one fitted model, plus the predictions behind them."""
    model_name: str
    metrics: Dict[str, float]
    y_true: np.ndarray = field(repr=False)
    y_pred: np.ndarray = field(repr=False)
    y_proba: Optional[np.ndarray] = field(default=None, repr=False)

    @property
    def accuracy(self) -> float:
        return self.metrics['accuracy']

    @property
    def roc_auc(self) -> float:
        return self.metrics['roc_auc']


class ModelEvaluator:
    """
    Collects evaluation results across model families and renders reports.
    """

    def __init__(
        self,
        label_mapping: Dict[int, str] = None,
        plots_dir: Path = PLOTS_DIR,
        sort_metric: str = TUNE_METRIC,
    ):
        """
        Initialize the evaluator.

        Args:
            label_mapping: Dictionary mapping class codes to class names.
            plots_dir: Directory plots are saved to.
            sort_metric: Metric the comparison table is ordered by.
        """
        get_scorer(sort_metric)
        self.label_mapping = label_mapping or {i: name for i, name in enumerate(HEALTH_LEVELS)}
        self.labels = sorted(self.label_mapping.keys())
        self.class_names = [self.label_mapping[i] for i in self.labels]
        self.plots_dir = Path(plots_dir)
        self.sort_metric = sort_metric
        self.results: Dict[str, EvaluationResult] = {}

    def evaluate_model(
        self,
        model_name: str,
        y_true: np.ndarray,
        y_pred: np.ndarray,
        y_proba: np.ndarray = None
    ) -> EvaluationResult:
        """
        Compute every registered metric for a model and store the result.

        Args:
            model_name: Name of the model.
            y_true: True class codes.
            y_pred: Predicted class codes.
            y_proba: Class probabilities, one column per label (for ROC-AUC).

        Returns:
            The stored EvaluationResult.
        """
        y_true = np.asarray(y_true)
        y_pred = np.asarray(y_pred)
        metrics = {
            name: scorer(y_true, y_pred, y_proba, self.labels)
            for name, scorer in SCORERS.items()
        }
        result = EvaluationResult(model_name, metrics, y_true, y_pred, y_proba)
        self.results[model_name] = result
        return result

    def add_result(self, result: EvaluationResult) -> None:
        self.results[result.model_name] = result

    def _get_result(self, model_name: str) -> EvaluationResult:
        if model_name not in self.results:
            raise ValueError(f"Model '{model_name}' not evaluated yet.")
        return self.results[model_name]

    def print_classification_report(self, model_name: str) -> None:
        """Print detailed classification report for a model."""
        result = self._get_result(model_name)

        print(f"\n{'='*60}")
        print(f"📊 CLASSIFICATION REPORT: {model_name.upper()}")
        print('='*60)
        print(classification_report(
            result.y_true, result.y_pred,
            labels=self.labels,
            target_names=self.class_names,
            digits=4,
            zero_division=0
        ))

    def get_comparison_table(self) -> pd.DataFrame:
        """
        Get comparison table of all evaluated models.

        Returns:
            DataFrame with one row per model, best ``sort_metric`` first.
        """
        if not self.results:
            raise ValueError("No models evaluated yet.")

        rows = []
        for model_name, result in self.results.items():
            row = {'Model': model_name}
            row.update(result.metrics)
            rows.append(row)

        df = pd.DataFrame(rows)
        # stable sort keeps insertion order among ties
        df = df.sort_values(self.sort_metric, ascending=False, kind='mergesort', na_position='last')
        return df.reset_index(drop=True)

    def print_comparison_summary(self) -> None:
        df = self.get_comparison_table()

        print("\n" + "="*60)
        print("📊 MODEL COMPARISON SUMMARY")
        print("="*60)

        display_df = df.copy()
        for col in display_df.columns:
            if col != 'Model':
                display_df[col] = display_df[col].apply(lambda x: f"{x:.4f}")
        print(display_df.to_string(index=False))

        best = df.iloc[0]
        print(f"\n🏆 Best Model: {best['Model']} ({self.sort_metric}: {best[self.sort_metric]:.4f})")

    def save_comparison_table(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.get_comparison_table().to_csv(path, index=False)
        print(f"✅ Saved comparison table to {path}")
        return path

    def get_best_model(self, metric: str = None) -> str:
        """Name of the best model by ``metric`` (defaults to the sort metric)."""
        metric = metric or self.sort_metric
        df = self.get_comparison_table()
        return df.loc[df[metric].idxmax(), 'Model']

    def _save(self, fig: plt.Figure, filename: str, what: str) -> None:
        self.plots_dir.mkdir(parents=True, exist_ok=True)
        path = self.plots_dir / filename
        fig.savefig(path, dpi=150, bbox_inches='tight')
        print(f"✅ Saved {what} to {path}")

    def plot_confusion_matrix(
        self,
        model_name: str,
        normalize: bool = False,
        figsize: tuple = (7, 6),
        save: bool = True
    ) -> plt.Figure:
        """
        Plot the confusion matrix of a model, predicted classes as rows.

        Args:
            model_name: Name of the model.
            normalize: If True, show the share of each actual class.
            figsize: Figure size.
            save: If True, save the plot.

        Returns:
            Matplotlib figure.
        """
        result = self._get_result(model_name)

        # rows: predicted, columns: actual
        cm = confusion_matrix(result.y_true, result.y_pred, labels=self.labels).T

        if normalize:
            col_sums = cm.sum(axis=0, keepdims=True)
            cm = cm.astype('float') / np.where(col_sums == 0, 1, col_sums)
            fmt = '.2f'
            title = f'Normalized Confusion Matrix - {model_name}'
        else:
            fmt = 'd'
            title = f'Confusion Matrix - {model_name}'

        fig, ax = plt.subplots(figsize=figsize)

        sns.heatmap(
            cm,
            annot=True,
            fmt=fmt,
            cmap='Blues',
            xticklabels=self.class_names,
            yticklabels=self.class_names,
            ax=ax,
            cbar_kws={'label': 'Proportion' if normalize else 'Count'}
        )

        ax.set_xlabel('Actual', fontsize=12)
        ax.set_ylabel('Predicted', fontsize=12)
        ax.set_title(title, fontsize=14, fontweight='bold')

        fig.tight_layout()

        if save:
            self._save(fig, f'confusion_matrix_{model_name}.png', 'confusion matrix')

        return fig

    def plot_roc_curves(
        self,
        model_names: List[str] = None,
        figsize: tuple = None,
        save: bool = True
    ) -> plt.Figure:
        """
        Plot one-vs-rest ROC curves, one panel per class, models overlaid.

        Args:
            model_names: Models to include (all evaluated models if None).
            figsize: Figure size.
            save: If True, save the plot.

        Returns:
            Matplotlib figure.
        """
        model_names = model_names or list(self.results)
        n_classes = len(self.labels)
        figsize = figsize or (5 * n_classes, 5)

        fig, axes = plt.subplots(1, n_classes, figsize=figsize, squeeze=False)
        colors = plt.cm.Set1(np.linspace(0, 1, max(len(model_names), 1)))

        for ax, class_code, class_name in zip(axes[0], self.labels, self.class_names):
            for model_name, color in zip(model_names, colors):
                result = self._get_result(model_name)
                if result.y_proba is None:
                    continue

                y_true_binary = (result.y_true == class_code).astype(int)
                if y_true_binary.min() == y_true_binary.max():
                    continue
                fpr, tpr, _ = roc_curve(y_true_binary, result.y_proba[:, class_code])
                ax.plot(fpr, tpr, color=color, lw=2,
                        label=f'{model_name} (AUC={auc(fpr, tpr):.3f})')

            ax.plot([0, 1], [0, 1], 'k--', lw=1)
            ax.set_xlim([0.0, 1.0])
            ax.set_ylim([0.0, 1.05])
            ax.set_xlabel('False Positive Rate')
            ax.set_ylabel('True Positive Rate')
            ax.set_title(f'ROC - {class_name}')
            ax.legend(loc='lower right', fontsize=8)
            ax.grid(True, alpha=0.3)

        fig.suptitle('ROC Curves (One-vs-Rest)', fontsize=14, fontweight='bold')
        fig.tight_layout()

        if save:
            self._save(fig, 'roc_curves.png', 'ROC curves')

        return fig

    def plot_feature_importance(
        self,
        importance_df: pd.DataFrame,
        model_name: str,
        top_n: int = 15,
        figsize: tuple = (9, 7),
        save: bool = True
    ) -> plt.Figure:
        """
        Horizontal bars of the strongest predictors of tree health for one family.

        One-hot columns of the same source variable (e.g. every ``spc_common_*``
        level) are listed separately, as the model sees them.

        Args:
            importance_df: DataFrame with 'feature' and 'importance' columns, sorted.
            model_name: Name of the model family.
            top_n: Number of predictors to show.
        """
        top = importance_df.head(top_n)
        share = top['importance'] / importance_df['importance'].sum()

        fig, ax = plt.subplots(figsize=figsize)
        sns.barplot(x=share.values, y=top['feature'].values, orient='h',
                    color='#2e8b57', ax=ax)

        for i, val in enumerate(share.values):
            ax.text(val, i, f' {val:.1%}', va='center', fontsize=9)

        ax.set_xlabel('Share of total importance', fontsize=12)
        ax.set_ylabel('')
        ax.set_title(f'Predictors of Tree Health - {model_name}',
                     fontsize=14, fontweight='bold')
        fig.tight_layout()

        if save:
            self._save(fig, f'feature_importance_{model_name}.png', 'feature importance')

        return fig

    def plot_metrics_comparison(
        self,
        figsize: tuple = (10, 6),
        save: bool = True
    ) -> plt.Figure:
        """Grouped bars of every held-out metric per model family, best family first."""
        df = self.get_comparison_table()
        long_df = df.melt(id_vars='Model', value_vars=list(SCORERS),
                          var_name='Metric', value_name='Score')

        fig, ax = plt.subplots(figsize=figsize)
        sns.barplot(data=long_df, x='Model', y='Score', hue='Metric',
                    palette='Set2', ax=ax)

        for container in ax.containers:
            ax.bar_label(container, fmt='%.3f', fontsize=8, padding=2)

        ax.set_xlabel('')
        ax.set_ylabel('Test score', fontsize=12)
        ax.set_title('Held-out Performance by Model Family', fontsize=14, fontweight='bold')
        ax.set_ylim(0, 1.1)
        ax.grid(True, alpha=0.3, axis='y')
        ax.legend(loc='lower right')
        fig.tight_layout()

        if save:
            self._save(fig, 'metrics_comparison.png', 'metrics comparison')

        return fig

    def plot_cv_results(
        self,
        cv_results: pd.DataFrame,
        model_name: str,
        metric: str = None,
        save: bool = True
    ) -> plt.Figure:
        """
        Plot the mean cross-validation metric against each tuned hyperparameter.

        Args:
            cv_results: Per-grid-point table with ``param_*`` and ``mean_*`` columns.
            model_name: Name of the model family.
            metric: Metric to plot (defaults to the sort metric).
            save: If True, save the plot.

        Returns:
            Matplotlib figure.
        """
        metric = metric or self.sort_metric
        param_cols = [c for c in cv_results.columns if c.startswith('param_')]
        if not param_cols:
            raise ValueError("cv_results has no parameter columns")

        fig, axes = plt.subplots(1, len(param_cols), figsize=(5 * len(param_cols), 4),
                                 squeeze=False)
        for ax, col in zip(axes[0], param_cols):
            ax.scatter(cv_results[col].astype(float), cv_results[f'mean_{metric}'], alpha=0.8)
            ax.set_xlabel(col[len('param_'):])
            ax.set_ylabel(f'mean {metric}')
            ax.grid(True, alpha=0.3)

        fig.suptitle(f'Cross-validation {metric} - {model_name}', fontsize=14, fontweight='bold')
        fig.tight_layout()

        if save:
            self._save(fig, f'cv_results_{model_name}.png', 'CV results')

        return fig
