"""
Data loading and initial inspection module.
"""
import pandas as pd
import numpy as np
from typing import Tuple, Dict, Any, List

from tree_health.config import (
    DATA_PATH, REQUIRED_COLUMNS, TARGET_COLUMN, STATUS_COLUMN,
    SPECIES_COLUMN, FEATURE_COLUMNS
)


class SchemaError(ValueError):
    """Raised when the census table is missing required columns."""


def validate_schema(df: pd.DataFrame, required_columns: List[str] = REQUIRED_COLUMNS) -> None:
    """
    Check that every required column is present.

    Raises:
        SchemaError: listing the missing columns.
    """
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise SchemaError(f"Input is missing required columns: {missing}")


def load_data(filepath: str = None, required_columns: List[str] = REQUIRED_COLUMNS) -> pd.DataFrame:
    """
    Load the tree census from CSV file.

    Args:
        filepath: Path to CSV file. If None, uses default from config.
        required_columns: Columns that must be present in the header.

    Returns:
        DataFrame with loaded data.
    """
    if filepath is None:
        filepath = DATA_PATH

    df = pd.read_csv(filepath, low_memory=False)
    validate_schema(df, required_columns)
    print(f"✅ Loaded data: {df.shape[0]} samples, {df.shape[1]} columns")
    return df


def get_data_info(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Get summary information about the census table.

    Args:
        df: Input DataFrame.

    Returns:
        Dictionary with dataset information.
    """
    info = {
        'n_samples': len(df),
        'n_total_columns': len(df.columns),
        'missing_values': int(df.isnull().sum().sum()),
        'duplicate_rows': int(df.duplicated().sum()),
        'memory_mb': df.memory_usage(deep=True).sum() / 1024**2,
    }

    if STATUS_COLUMN in df.columns:
        info['status_distribution'] = df[STATUS_COLUMN].value_counts().to_dict()

    if TARGET_COLUMN in df.columns:
        info['class_distribution'] = df[TARGET_COLUMN].value_counts().to_dict()
        info['n_classes'] = df[TARGET_COLUMN].nunique()

    if SPECIES_COLUMN in df.columns:
        info['n_species'] = df[SPECIES_COLUMN].nunique()

    return info


def print_data_report(df: pd.DataFrame) -> None:
    """
    Print a data quality report.

    Args:
        df: Input DataFrame.
    """
    info = get_data_info(df)

    print("\n" + "="*60)
    print("📊 DATASET OVERVIEW")
    print("="*60)
    print(f"  Total samples:     {info['n_samples']:,}")
    print(f"  Total columns:     {info['n_total_columns']}")
    print(f"  Memory usage:      {info['memory_mb']:.2f} MB")
    if 'n_species' in info:
        print(f"  Species:           {info['n_species']}")

    print("\n" + "-"*60)
    print("📋 DATA QUALITY")
    print("-"*60)
    print(f"  Missing values:    {info['missing_values']}")
    print(f"  Duplicate rows:    {info['duplicate_rows']}")

    if 'status_distribution' in info:
        print("\n" + "-"*60)
        print("🌳 STATUS")
        print("-"*60)
        for status, count in info['status_distribution'].items():
            print(f"  {str(status):10s}: {count}")

    if 'class_distribution' in info and info['class_distribution']:
        print("\n" + "-"*60)
        print(f"🎯 CLASS DISTRIBUTION (Target: {TARGET_COLUMN})")
        print("-"*60)
        class_dist = info['class_distribution']
        total = sum(class_dist.values())

        sorted_classes = sorted(class_dist.items(), key=lambda x: x[1], reverse=True)

        for cls, count in sorted_classes:
            pct = count / total * 100
            bar = "█" * int(pct / 2)
            print(f"  {str(cls):10s}: {count:6d} ({pct:5.1f}%) {bar}")

        max_count = max(class_dist.values())
        min_count = min(class_dist.values())
        print(f"\n  ⚠️  Imbalance ratio (max/min): {max_count / min_count:.2f}:1")

    print("\n" + "="*60)


def get_feature_columns(df: pd.DataFrame) -> list:
    """Feature columns present in df, in configured order."""
    return [col for col in FEATURE_COLUMNS if col in df.columns]


def get_class_names(df: pd.DataFrame) -> List[str]:
    """Ordered class names of the (categorical) target column."""
    return [str(c) for c in df[TARGET_COLUMN].cat.categories]


def split_features_target(df: pd.DataFrame) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Split a cleaned DataFrame into features (X) and integer-coded target (y).

    The target codes follow the ordered health categories, so 0 is the worst label.

    Args:
        df: Cleaned DataFrame with a categorical target column.

    Returns:
        Tuple of (X, y).
    """
    X = df[get_feature_columns(df)].copy()
    y = df[TARGET_COLUMN].cat.codes.to_numpy(dtype=np.int64)

    print(f"✅ Split data: X shape = {X.shape}, y shape = {y.shape}")
    return X, y
