"""
Data cleaning and train/test/fold splitting for the tree census.

Cleaning is a pure transform: the raw frame is never modified in place.
"""
import warnings

import pandas as pd
import numpy as np
from typing import Tuple, List, Dict, Iterator, Optional
from sklearn.model_selection import StratifiedKFold

from tree_health.config import (
    RANDOM_STATE, TARGET_COLUMN, STATUS_COLUMN, SPECIES_COLUMN, ALIVE_STATUS,
    NUMERIC_FEATURES, CATEGORICAL_FEATURES, RETAINED_COLUMNS, REQUIRED_COLUMNS,
    HEALTH_LEVELS, HEALTH_LEVELS_WITH_DEAD, DEAD_LABEL,
    STATUS_POLICY, SPECIES_MIN_COUNT, HEAD_ROWS, SUBSAMPLE_FRACTION,
    TRAIN_PROPORTION, N_FOLDS
)
from tree_health.data_loader import validate_schema

STATUS_POLICIES = ("drop", "recode")


class CensusCleaner:
    """
    Turns raw census records into a modelling dataset.

    Steps, in order:
    - Drop (or relabel as Dead) trees that are not alive
    - Keep the retained columns only
    - Drop rows with any missing value (no imputation)
    - Restrict the health label to its domain
    - Keep species with more than ``species_min_count`` records
    - Optionally keep the first ``head_rows`` rows
    - Encode text columns as categoricals (health as an ordered one)
    - Optionally subsample a seeded fraction of rows
    - Drop health levels no record carries, so class codes stay consecutive
    """

    def __init__(
        self,
        status_policy: str = STATUS_POLICY,
        species_min_count: int = SPECIES_MIN_COUNT,
        head_rows: Optional[int] = HEAD_ROWS,
        subsample_fraction: Optional[float] = SUBSAMPLE_FRACTION,
        random_state: int = RANDOM_STATE,
    ):
        if status_policy not in STATUS_POLICIES:
            raise ValueError(f"Unknown status policy '{status_policy}'. Expected one of {STATUS_POLICIES}")
        if subsample_fraction is not None and not 0 < subsample_fraction <= 1:
            raise ValueError(f"subsample_fraction must be in (0, 1], got {subsample_fraction}")
        if head_rows is not None and head_rows < 1:
            raise ValueError(f"head_rows must be positive, got {head_rows}")

        self.status_policy = status_policy
        self.species_min_count = species_min_count
        self.head_rows = head_rows
        self.subsample_fraction = subsample_fraction
        self.random_state = random_state
        self.removed_counts: Dict[str, int] = {}
        self.retained_species: List[str] = []
        self.dropped_levels: List[str] = []

    @property
    def label_levels(self) -> List[str]:
        """Ordered health domain for the configured status policy."""
        if self.status_policy == "recode":
            return list(HEALTH_LEVELS_WITH_DEAD)
        return list(HEALTH_LEVELS)

    def clean(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Clean raw census records.

        Args:
            df: Raw census DataFrame.

        Returns:
            Cleaned DataFrame with a fresh 0..n-1 index.
        """
        print("\n🔧 Cleaning census records...")
        validate_schema(df, REQUIRED_COLUMNS)
        self.removed_counts = {}
        self.dropped_levels = []
        n_start = len(df)

        df_clean = self._apply_status_policy(df)
        df_clean = self._select_columns(df_clean)
        df_clean = self._drop_missing(df_clean)
        df_clean = self._restrict_label_domain(df_clean)
        df_clean = self._filter_common_species(df_clean)
        df_clean = self._take_head(df_clean)
        df_clean = self._encode_categoricals(df_clean)
        df_clean = self._subsample(df_clean)
        df_clean = self._drop_empty_levels(df_clean)
        df_clean = df_clean.reset_index(drop=True)

        print(f"✅ Done! {n_start} → {len(df_clean)} records, {len(self.retained_species)} species")
        return df_clean

    def _record_removed(self, step: str, before: int, after: int) -> None:
        self.removed_counts[step] = before - after
        print(f"  ✓ {step}: removed {before - after} rows ({after} left)")

    def _apply_status_policy(self, df: pd.DataFrame) -> pd.DataFrame:
        """Drop non-alive trees, or relabel them as Dead."""
        not_alive = df[STATUS_COLUMN].notna() & (df[STATUS_COLUMN] != ALIVE_STATUS)

        if self.status_policy == "drop":
            out = df[df[STATUS_COLUMN] == ALIVE_STATUS]
            self._record_removed("Status filter", len(df), len(out))
            return out

        out = df.copy()
        out[TARGET_COLUMN] = out[TARGET_COLUMN].astype(object)
        out.loc[not_alive, TARGET_COLUMN] = DEAD_LABEL
        print(f"  ✓ Status recode: labelled {int(not_alive.sum())} non-alive trees as '{DEAD_LABEL}'")
        return out

    def _select_columns(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df[RETAINED_COLUMNS].copy()
        for col in NUMERIC_FEATURES:
            out[col] = pd.to_numeric(out[col], errors='coerce')
        return out

    def _drop_missing(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.dropna()
        self._record_removed("Missing values", len(df), len(out))
        return out

    def _restrict_label_domain(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df[df[TARGET_COLUMN].isin(self.label_levels)]
        self._record_removed("Label domain", len(df), len(out))
        return out

    def _filter_common_species(self, df: pd.DataFrame) -> pd.DataFrame:
        """Keep species with strictly more than ``species_min_count`` records."""
        counts = df[SPECIES_COLUMN].value_counts()
        self.retained_species = sorted(counts[counts > self.species_min_count].index.astype(str))

        out = df[df[SPECIES_COLUMN].isin(self.retained_species)]
        self._record_removed(f"Species count > {self.species_min_count}", len(df), len(out))
        return out

    def _take_head(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.head_rows is None:
            return df
        out = df.head(self.head_rows)
        self._record_removed(f"Head {self.head_rows}", len(df), len(out))
        return out

    def _encode_categoricals(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.copy()
        out[TARGET_COLUMN] = pd.Categorical(
            out[TARGET_COLUMN].astype(str), categories=self.label_levels, ordered=True
        )
        for col in CATEGORICAL_FEATURES:
            out[col] = out[col].astype(str).astype('category')
        return out

    def _subsample(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.subsample_fraction is None or self.subsample_fraction == 1:
            return df
        out = df.sample(frac=self.subsample_fraction, random_state=self.random_state).sort_index()
        self._record_removed(f"Subsample {self.subsample_fraction:.0%}", len(df), len(out))
        return out

    def _drop_empty_levels(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Remove health levels without records.

        Recoded dead trees usually carry no species and do not survive the
        missing-value step, which would leave an empty Dead level behind.
        """
        if df.empty:
            return df
        counts = df[TARGET_COLUMN].value_counts()
        self.dropped_levels = [str(level) for level, n in counts.items() if n == 0]
        if not self.dropped_levels:
            return df

        warnings.warn(f"No records left with health {self.dropped_levels}; "
                      f"these levels are dropped from the label domain")
        out = df.copy()
        out[TARGET_COLUMN] = out[TARGET_COLUMN].cat.remove_unused_categories()
        return out


def split_train_test(
    dataset: pd.DataFrame,
    train_proportion: float = TRAIN_PROPORTION,
    stratify_column: str = TARGET_COLUMN,
    seed: int = RANDOM_STATE,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Stratified train/test split.

    Each stratum of ``stratify_column`` contributes ``round(train_proportion * n)``
    of its rows to train; the rest go to test.

    Args:
        dataset: Cleaned DataFrame.
        train_proportion: Fraction of each stratum assigned to train.
        stratify_column: Column whose label frequencies are preserved.
        seed: Random seed.

    Returns:
        Tuple of (train, test), both keeping the dataset's index.
    """
    if dataset.empty:
        raise ValueError("Cannot split an empty dataset; cleaning removed every record")
    if not 0 < train_proportion < 1:
        raise ValueError(f"train_proportion must be in (0, 1), got {train_proportion}")
    if stratify_column not in dataset.columns:
        raise ValueError(f"Expected stratify column '{stratify_column}' in dataset")

    train = (
        dataset.groupby(stratify_column, observed=True, group_keys=False)
        .sample(frac=train_proportion, random_state=seed)
        .sort_index()
    )
    test = dataset.drop(index=train.index)

    def _dist(x: pd.DataFrame) -> pd.Series:
        return x[stratify_column].value_counts(normalize=True).sort_index()

    print(f"\n✅ Train-test split (stratified on '{stratify_column}'):")
    print(f"   Train: {len(train)} ({len(train)/len(dataset)*100:.1f}%)")
    print(f"   Test:  {len(test)} ({len(test)/len(dataset)*100:.1f}%)")

    print(f"\n   Class distribution preserved (percent):")
    train_d, test_d = _dist(train), _dist(test)
    for cls in train_d.index.union(test_d.index):
        print(f"     {str(cls):10s}: Train={train_d.get(cls, 0)*100:.1f}%, Test={test_d.get(cls, 0)*100:.1f}%")

    return train, test


def assign_folds(
    train: pd.DataFrame,
    k: int = N_FOLDS,
    stratify_column: str = TARGET_COLUMN,
    seed: int = RANDOM_STATE,
) -> pd.Series:
    """
    Assign every training record to one of ``k`` stratified folds.

    Args:
        train: Training DataFrame.
        k: Number of folds. With k == 1 every record lands in fold 0.
        stratify_column: Column whose label frequencies are preserved per fold.
        seed: Random seed.

    Returns:
        Integer Series aligned to ``train.index`` with values in [0, k).
    """
    if k < 1:
        raise ValueError(f"Number of folds must be at least 1, got {k}")

    folds = pd.Series(0, index=train.index, name='fold', dtype=np.int64)
    if k == 1:
        return folds

    skf = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
    labels = np.asarray(train[stratify_column].astype(str))
    for fold, (_, val_idx) in enumerate(skf.split(np.zeros(len(train)), labels)):
        folds.iloc[val_idx] = fold

    print(f"✅ Assigned {len(train)} training records to {k} stratified folds")
    return folds


def iter_folds(folds: pd.Series) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
    """Yield (fold, fit positions, validation positions) for each fold, in fold order."""
    values = folds.to_numpy()
    for fold in np.unique(values):
        yield int(fold), np.flatnonzero(values != fold), np.flatnonzero(values == fold)
