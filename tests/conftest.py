import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from tree_health.config import DAMAGE_INDICATORS, TARGET_COLUMN
from tree_health.data_loader import split_features_target
from tree_health.preprocessing import CensusCleaner, split_train_test, assign_folds

SPECIES = ["London planetree", "honeylocust", "Callery pear", "pin oak", "ginkgo"]
BOROUGHS = ["Queens", "Brooklyn", "Manhattan", "Bronx", "Staten Island"]
COMMON_SPECIES_MIN_COUNT = 50


def make_census(n: int = 900, seed: int = 0, unnamed_dead_trees: bool = False) -> pd.DataFrame:
    """
    Synthetic raw census where health degrades with the number of damage flags.

    Stumps never carry a species; with ``unnamed_dead_trees`` dead trees lose it too,
    as in the real census.
    """
    rng = np.random.default_rng(seed)

    status = rng.choice(["Alive", "Dead", "Stump"], size=n, p=[0.9, 0.06, 0.04])
    damage = {col: rng.choice(["Yes", "No"], size=n, p=[0.2, 0.8]) for col in DAMAGE_INDICATORS}
    n_damage = sum((damage[col] == "Yes").astype(int) for col in DAMAGE_INDICATORS)

    health = np.where(n_damage >= 3, "Poor", np.where(n_damage >= 1, "Fair", "Good")).astype(object)
    flip = rng.random(n) < 0.1
    health[flip] = rng.choice(["Poor", "Fair", "Good"], size=int(flip.sum()))

    df = pd.DataFrame({
        "tree_id": np.arange(1, n + 1),
        "status": status,
        TARGET_COLUMN: health,
        "tree_dbh": rng.gamma(4.0, 3.0, size=n).round(),
        "curb_loc": rng.choice(["OnCurb", "OffsetFromCurb"], size=n, p=[0.9, 0.1]),
        "spc_common": rng.choice(SPECIES, size=n, p=[0.35, 0.3, 0.2, 0.12, 0.03]).astype(object),
        "boroname": rng.choice(BOROUGHS, size=n),
        "latitude": 40.7 + rng.normal(0, 0.1, size=n),
        "longitude": -73.9 + rng.normal(0, 0.1, size=n),
        **damage,
    })

    df.loc[df["status"] != "Alive", TARGET_COLUMN] = np.nan
    df.loc[df["status"] == "Stump", "spc_common"] = np.nan
    if unnamed_dead_trees:
        df.loc[df["status"] == "Dead", "spc_common"] = np.nan
    alive_rows = df.index[df["status"] == "Alive"]
    df.loc[alive_rows[:5], "tree_dbh"] = np.nan
    return df


@pytest.fixture
def raw_census():
    return make_census()


@pytest.fixture
def clean_dataset(raw_census):
    cleaner = CensusCleaner(
        status_policy="drop",
        species_min_count=COMMON_SPECIES_MIN_COUNT,
        subsample_fraction=None,
    )
    return cleaner.clean(raw_census)


@pytest.fixture
def modelling_data(clean_dataset):
    """(X_train, y_train, X_test, y_test, folds) with 3 stratified folds."""
    train, test = split_train_test(clean_dataset, 0.8, TARGET_COLUMN, 42)
    folds = assign_folds(train, 3, TARGET_COLUMN, 42)
    X_train, y_train = split_features_target(train)
    X_test, y_test = split_features_target(test)
    return X_train, y_train, X_test, y_test, folds


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")
