#!/usr/bin/env python3
"""
Tree health classification pipeline.

Usage:
    tree-health                          # Clean, tune all four families, compare, plot
    tree-health --no-plots               # Skip plots
    tree-health --no-cache               # Ignore cached tuning results
    tree-health --data-path PATH         # Custom census CSV
    tree-health --families knn lasso     # Tune a subset of model families
"""
import argparse
import warnings

from tree_health.config import (
    DATA_PATH, OUTPUT_DIR, MODELS_DIR, PLOTS_DIR, RANDOM_STATE, N_FOLDS, N_JOBS,
    STATUS_POLICY, SPECIES_MIN_COUNT, SUBSAMPLE_FRACTION, HEAD_ROWS,
    TRAIN_PROPORTION, TUNE_METRIC, MODEL_FAMILIES, TARGET_COLUMN
)
from tree_health.data_loader import load_data, print_data_report, split_features_target, get_class_names
from tree_health.preprocessing import CensusCleaner, split_train_test, assign_folds
from tree_health.models import ModelTrainer, get_model_families
from tree_health.evaluation import ModelEvaluator


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Tree Health Classification')
    parser.add_argument('--data-path', '-d', type=str, default=None,
                        help='Path to tree census CSV')
    parser.add_argument('--no-plots', action='store_true',
                        help='Skip generating plots')
    parser.add_argument('--no-cache', action='store_true',
                        help='Re-tune every family even if a cached result exists')
    parser.add_argument('--n-jobs', type=int, default=N_JOBS,
                        help='Parallel fold evaluations during grid search')
    parser.add_argument('--folds', '-k', type=int, default=N_FOLDS,
                        help='Number of cross-validation folds')
    parser.add_argument('--status-policy', choices=['drop', 'recode'], default=STATUS_POLICY,
                        help="Drop non-alive trees or relabel them as 'Dead'")
    parser.add_argument('--species-min-count', type=int, default=SPECIES_MIN_COUNT,
                        help='Keep species with more records than this')
    parser.add_argument('--subsample', type=float, default=SUBSAMPLE_FRACTION,
                        help='Fraction of cleaned rows to keep (1 keeps all)')
    parser.add_argument('--head', type=int, default=HEAD_ROWS,
                        help='Keep only the first N cleaned rows')
    parser.add_argument('--families', nargs='+', default=MODEL_FAMILIES, choices=MODEL_FAMILIES,
                        help='Model families to tune')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    print("\n🌳 TREE HEALTH CLASSIFICATION")
    print("="*50)
    print("   ✓ clean → stratified split → CV grid search per family → refit → compare on test")

    df_raw = load_data(args.data_path or DATA_PATH)
    print_data_report(df_raw)

    cleaner = CensusCleaner(
        status_policy=args.status_policy,
        species_min_count=args.species_min_count,
        head_rows=args.head,
        subsample_fraction=args.subsample,
        random_state=RANDOM_STATE,
    )
    dataset = cleaner.clean(df_raw)
    class_names = get_class_names(dataset)
    label_mapping = dict(enumerate(class_names))

    train, test = split_train_test(dataset, TRAIN_PROPORTION, TARGET_COLUMN, RANDOM_STATE)
    folds = assign_folds(train, args.folds, TARGET_COLUMN, RANDOM_STATE)

    X_train, y_train = split_features_target(train)
    X_test, y_test = split_features_target(test)

    trainer = ModelTrainer(
        metric=TUNE_METRIC,
        n_jobs=args.n_jobs,
        random_state=RANDOM_STATE,
        labels=list(label_mapping),
    )
    evaluator = ModelEvaluator(label_mapping=label_mapping, plots_dir=PLOTS_DIR, sort_metric=TUNE_METRIC)

    families = get_model_families(args.families)
    for family in families:
        result = None if args.no_cache else trainer.load_result(family.name, MODELS_DIR)
        if result is None:
            result = trainer.tune_and_fit(family, X_train, y_train, folds)
            trainer.save_result(family.name, MODELS_DIR)
        evaluator.add_result(trainer.evaluate(result, X_test, y_test))

    print("\n" + "="*60)
    print("📊 CROSS-VALIDATION RESULTS")
    print("="*60)
    print(trainer.get_cv_scores_summary().to_string(index=False))

    evaluator.print_comparison_summary()
    evaluator.save_comparison_table(OUTPUT_DIR / 'model_comparison.csv')
    best_name = evaluator.get_best_model()
    evaluator.print_classification_report(best_name)

    if not args.no_plots:
        print("\n📈 Generating plots...")
        evaluator.plot_metrics_comparison()
        evaluator.plot_roc_curves()
        evaluator.plot_confusion_matrix(best_name)
        for family in families:
            evaluator.plot_cv_results(trainer.results[family.name].cv_results, family.name)
            try:
                importance_df = trainer.get_feature_importance(family.name)
            except ValueError:
                continue
            evaluator.plot_feature_importance(importance_df, family.name)

    print(f"\n🏆 Best: {best_name} ({TUNE_METRIC}={evaluator.results[best_name].metrics[TUNE_METRIC]:.3f})")
    print(f"📁 Models: {MODELS_DIR}")
    print(f"📁 Plots: {PLOTS_DIR}")
    print("\n✅ Done!")

    return best_name, evaluator.get_comparison_table()


def cli():
    warnings.filterwarnings('ignore', category=FutureWarning)
    main()


if __name__ == "__main__":
    cli()
