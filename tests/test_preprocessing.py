import numpy as np
import pandas as pd
import pytest

from conftest import COMMON_SPECIES_MIN_COUNT, make_census
from tree_health.config import (
    CATEGORICAL_FEATURES, HEALTH_LEVELS, HEALTH_LEVELS_WITH_DEAD, RETAINED_COLUMNS
)
from tree_health.data_loader import SchemaError, split_features_target
from tree_health.preprocessing import CensusCleaner, split_train_test, assign_folds, iter_folds


# ----------------------------------------------------------------------------
# Cleaning
# ----------------------------------------------------------------------------

def test_clean_output_has_no_missing_values(clean_dataset):
    assert list(clean_dataset.columns) == RETAINED_COLUMNS
    assert not clean_dataset.isnull().any().any()
    assert clean_dataset.index.equals(pd.RangeIndex(len(clean_dataset)))


def test_clean_health_is_ordered_category(clean_dataset):
    health = clean_dataset["health"]
    assert isinstance(health.dtype, pd.CategoricalDtype)
    assert health.cat.ordered
    assert list(health.cat.categories) == HEALTH_LEVELS
    assert health.min() == "Poor"


def test_clean_text_columns_are_categorical(clean_dataset):
    for col in CATEGORICAL_FEATURES:
        assert isinstance(clean_dataset[col].dtype, pd.CategoricalDtype), col


def test_clean_drops_non_alive_trees(raw_census):
    cleaner = CensusCleaner(species_min_count=COMMON_SPECIES_MIN_COUNT, subsample_fraction=None)
    cleaner.clean(raw_census)

    n_not_alive = int((raw_census["status"] != "Alive").sum())
    assert cleaner.removed_counts["Status filter"] == n_not_alive


def test_clean_keeps_only_common_species(raw_census, clean_dataset):
    alive = raw_census[raw_census["status"] == "Alive"]
    assert (alive["spc_common"] == "ginkgo").sum() <= COMMON_SPECIES_MIN_COUNT

    assert "ginkgo" not in set(clean_dataset["spc_common"])
    assert set(clean_dataset["spc_common"]) == {
        "London planetree", "honeylocust", "Callery pear", "pin oak"
    }


def test_species_threshold_is_strict():
    df = make_census(n=200, seed=1)
    df["status"] = "Alive"
    df["health"] = "Good"
    df["tree_dbh"] = 10.0
    df["spc_common"] = ["a"] * 100 + ["b"] * 60 + ["c"] * 40

    cleaner = CensusCleaner(species_min_count=60, subsample_fraction=None)
    out = cleaner.clean(df)

    assert cleaner.retained_species == ["a"]
    assert len(out) == 100


def test_clean_is_deterministic(raw_census):
    kwargs = dict(species_min_count=COMMON_SPECIES_MIN_COUNT, subsample_fraction=0.5, random_state=7)
    first = CensusCleaner(**kwargs)
    second = CensusCleaner(**kwargs)

    out1 = first.clean(raw_census)
    out2 = second.clean(raw_census)

    pd.testing.assert_frame_equal(out1, out2)
    assert first.retained_species == second.retained_species


def test_subsample_takes_rounded_fraction(raw_census, clean_dataset):
    out = CensusCleaner(
        species_min_count=COMMON_SPECIES_MIN_COUNT, subsample_fraction=0.5
    ).clean(raw_census)

    assert len(out) == round(0.5 * len(clean_dataset))


def test_head_rows(raw_census):
    out = CensusCleaner(
        species_min_count=COMMON_SPECIES_MIN_COUNT, head_rows=100, subsample_fraction=None
    ).clean(raw_census)

    assert len(out) == 100


def test_clean_does_not_modify_input(raw_census):
    before = raw_census.copy()
    CensusCleaner(species_min_count=COMMON_SPECIES_MIN_COUNT, status_policy="recode").clean(raw_census)
    pd.testing.assert_frame_equal(raw_census, before)


def test_recode_policy_labels_dead_trees(raw_census):
    out = CensusCleaner(
        status_policy="recode",
        species_min_count=COMMON_SPECIES_MIN_COUNT,
        subsample_fraction=None,
    ).clean(raw_census)

    assert list(out["health"].cat.categories) == HEALTH_LEVELS_WITH_DEAD
    assert (out["health"] == "Dead").sum() > 0
    # stumps have no species and are excluded as missing
    assert not out.isnull().any().any()


def test_recode_drops_dead_level_without_records():
    cleaner = CensusCleaner(
        status_policy="recode",
        species_min_count=COMMON_SPECIES_MIN_COUNT,
        subsample_fraction=None,
    )

    with pytest.warns(UserWarning, match="Dead"):
        out = cleaner.clean(make_census(unnamed_dead_trees=True))

    assert cleaner.dropped_levels == ["Dead"]
    assert list(out["health"].cat.categories) == HEALTH_LEVELS
    assert out["health"].cat.ordered
    _, y = split_features_target(out)
    assert sorted(np.unique(y)) == [0, 1, 2]


def test_unknown_status_policy():
    with pytest.raises(ValueError, match="status policy"):
        CensusCleaner(status_policy="ignore")


def test_invalid_subsample_fraction():
    with pytest.raises(ValueError):
        CensusCleaner(subsample_fraction=1.5)


def test_clean_missing_column_raises(raw_census):
    with pytest.raises(SchemaError):
        CensusCleaner().clean(raw_census.drop(columns=["status"]))


# ----------------------------------------------------------------------------
# Train/test split
# ----------------------------------------------------------------------------

def _toy_dataset():
    labels = ["Poor"] * 3 + ["Fair"] * 3 + ["Good"] * 4
    return pd.DataFrame({
        "health": pd.Categorical(labels, categories=HEALTH_LEVELS, ordered=True),
        "tree_dbh": np.arange(10, dtype=float),
    })


def test_toy_split_places_rounded_share_of_each_label_in_train():
    dataset = _toy_dataset()
    train, test = split_train_test(dataset, 0.8, "health", 42)

    counts = train["health"].value_counts()
    assert counts["Poor"] >= 2
    assert counts["Fair"] >= 2
    assert counts["Good"] >= 3
    assert len(train) + len(test) == len(dataset)
    assert set(train.index).isdisjoint(test.index)


def test_split_is_disjoint_and_complete(clean_dataset):
    train, test = split_train_test(clean_dataset, 0.8, "health", 42)

    assert set(train.index).isdisjoint(test.index)
    assert set(train.index) | set(test.index) == set(clean_dataset.index)


def test_split_preserves_label_frequencies(clean_dataset):
    train, _ = split_train_test(clean_dataset, 0.8, "health", 42)

    full = clean_dataset["health"].value_counts(normalize=True)
    part = train["health"].value_counts(normalize=True)
    for label in HEALTH_LEVELS:
        assert abs(part[label] - full[label]) < 0.02


def test_split_is_deterministic(clean_dataset):
    train1, test1 = split_train_test(clean_dataset, 0.8, "health", 3)
    train2, test2 = split_train_test(clean_dataset, 0.8, "health", 3)

    pd.testing.assert_frame_equal(train1, train2)
    pd.testing.assert_frame_equal(test1, test2)


@pytest.mark.parametrize("proportion", [0, 1, 1.2, -0.1])
def test_split_rejects_bad_proportion(clean_dataset, proportion):
    with pytest.raises(ValueError):
        split_train_test(clean_dataset, proportion, "health", 42)


def test_split_rejects_empty_dataset(raw_census):
    empty = CensusCleaner(species_min_count=10**6, subsample_fraction=None).clean(raw_census)

    assert empty.empty
    with pytest.raises(ValueError, match="empty"):
        split_train_test(empty, 0.8, "health", 42)


# ----------------------------------------------------------------------------
# Fold assignment
# ----------------------------------------------------------------------------

def test_folds_cover_train_exactly_once(clean_dataset):
    train, _ = split_train_test(clean_dataset, 0.8, "health", 42)
    folds = assign_folds(train, 5, "health", 42)

    assert folds.index.equals(train.index)
    assert set(folds.unique()) == set(range(5))

    seen = []
    for _, fit_idx, val_idx in iter_folds(folds):
        assert set(fit_idx).isdisjoint(val_idx)
        assert len(fit_idx) + len(val_idx) == len(train)
        seen.extend(val_idx)
    assert sorted(seen) == list(range(len(train)))


def test_folds_are_stratified(clean_dataset):
    train, _ = split_train_test(clean_dataset, 0.8, "health", 42)
    folds = assign_folds(train, 5, "health", 42)

    full = train["health"].value_counts(normalize=True)
    for fold in range(5):
        part = train.loc[folds == fold, "health"].value_counts(normalize=True)
        for label in HEALTH_LEVELS:
            assert abs(part[label] - full[label]) < 0.05


def test_folds_are_deterministic(clean_dataset):
    train, _ = split_train_test(clean_dataset, 0.8, "health", 42)
    pd.testing.assert_series_equal(
        assign_folds(train, 4, "health", 9), assign_folds(train, 4, "health", 9)
    )


def test_single_fold_puts_everything_in_fold_zero(clean_dataset):
    folds = assign_folds(clean_dataset, 1, "health", 42)
    assert (folds == 0).all()
    assert len(list(iter_folds(folds))) == 1


def test_zero_folds_rejected(clean_dataset):
    with pytest.raises(ValueError):
        assign_folds(clean_dataset, 0, "health", 42)
