"""Response-stratified train/test split and repeated k-fold resampling.

Every randomized split takes its seed from ``derive_seed``, which hashes the
root seed together with a path such as ``(CV_STREAM, repeat)``. A repeat's
folds therefore depend only on the root seed and the repeat number, never on
how many other splits were drawn before it.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, StratifiedKFold, train_test_split

from .config import CV_FOLDS, CV_REPEATS, RANDOM_STATE, STRATA_BINS, TARGET_COL, TRAIN_PROP

logger = logging.getLogger(__name__)

# spawn-key roots for the independent random streams
SPLIT_STREAM = 0
CV_STREAM = 1
MODEL_STREAM = 2


def derive_seed(root_seed: int, *path: int) -> int:
    """Deterministic 32-bit sub-seed for ``path`` under ``root_seed``."""
    seq = np.random.SeedSequence(entropy=root_seed, spawn_key=tuple(int(p) for p in path))
    return int(seq.generate_state(1, dtype=np.uint32)[0])


def response_strata(
    y: pd.Series, n_bins: int = STRATA_BINS, min_count: int = 2
) -> Optional[np.ndarray]:
    """
    Quantile bin labels of the response, used as stratification groups.

    Returns None when stratification is not possible: fewer than two distinct
    bins, or a bin holding fewer than ``min_count`` rows. Callers then fall
    back to plain random splitting.
    """
    values = pd.Series(np.asarray(y, dtype=float))
    if n_bins < 2:
        logger.warning("Stratification needs at least 2 bins, got %d; using unstratified split", n_bins)
        return None
    if len(values) < n_bins or values.nunique() < 2:
        logger.warning("Response too small or constant to bin; using unstratified split")
        return None

    bins = pd.qcut(values, q=n_bins, labels=False, duplicates="drop")
    counts = bins.value_counts()
    if len(counts) < 2:
        logger.warning("Response has a single quantile bin; using unstratified split")
        return None
    if counts.min() < min_count:
        logger.warning(
            "Smallest response stratum has %d rows (< %d); using unstratified split",
            int(counts.min()),
            min_count,
        )
        return None
    return bins.to_numpy(dtype=np.int64)


@dataclass(frozen=True)
class TrainTestSplit:
    train: pd.DataFrame
    test: pd.DataFrame
    train_index: np.ndarray
    test_index: np.ndarray
    seed: int
    stratified: bool


@dataclass(frozen=True)
class Fold:
    """One resample: positional row indices into the table it was drawn from."""

    fold_id: str
    repeat: int
    fold: int
    train_index: np.ndarray
    test_index: np.ndarray


def initial_split(
    df: pd.DataFrame,
    prop: float = TRAIN_PROP,
    seed: int = RANDOM_STATE,
    target_col: str = TARGET_COL,
    n_bins: int = STRATA_BINS,
) -> TrainTestSplit:
    """
    Stratified train/test split.

    The test partition holds ceil((1 - prop) * n) rows, so 1,000 rows at
    prop=0.8 give 800 train and 200 test rows. Stratification is dropped, with
    a warning, when either partition is smaller than the number of strata.
    """
    split_seed = derive_seed(seed, SPLIT_STREAM)
    positions = np.arange(len(df))
    strata = response_strata(df[target_col], n_bins=n_bins, min_count=2)

    n_test = math.ceil((1.0 - prop) * len(df))
    n_train = len(df) - n_test
    if strata is not None:
        n_strata = len(np.unique(strata))
        if min(n_train, n_test) < n_strata:
            logger.warning(
                "Split of %d train / %d test rows cannot hold %d strata; using unstratified split",
                n_train,
                n_test,
                n_strata,
            )
            strata = None

    train_index, test_index = train_test_split(
        positions,
        test_size=1.0 - prop,
        random_state=split_seed,
        stratify=strata,
    )
    train_index = np.sort(train_index)
    test_index = np.sort(test_index)

    logger.info(
        "Initial split: %d train / %d test rows (stratified=%s)",
        len(train_index),
        len(test_index),
        strata is not None,
    )
    return TrainTestSplit(
        train=df.iloc[train_index].reset_index(drop=True),
        test=df.iloc[test_index].reset_index(drop=True),
        train_index=train_index,
        test_index=test_index,
        seed=split_seed,
        stratified=strata is not None,
    )


def repeated_folds(
    df: pd.DataFrame,
    n_splits: int = CV_FOLDS,
    n_repeats: int = CV_REPEATS,
    seed: int = RANDOM_STATE,
    target_col: str = TARGET_COL,
    n_bins: int = STRATA_BINS,
) -> List[Fold]:
    """Stratified k-fold cross-validation repeated ``n_repeats`` times."""
    if len(df) < n_splits:
        raise ValueError(f"Cannot build {n_splits} folds from {len(df)} rows")

    strata = response_strata(df[target_col], n_bins=n_bins, min_count=n_splits)
    positions = np.arange(len(df))
    folds: List[Fold] = []

    for repeat in range(1, n_repeats + 1):
        repeat_seed = derive_seed(seed, CV_STREAM, repeat)
        if strata is not None:
            splitter = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=repeat_seed)
            split_iter = splitter.split(positions, strata)
        else:
            splitter = KFold(n_splits=n_splits, shuffle=True, random_state=repeat_seed)
            split_iter = splitter.split(positions)

        for fold, (train_idx, test_idx) in enumerate(split_iter, start=1):
            folds.append(
                Fold(
                    fold_id=f"Repeat{repeat}_Fold{fold:02d}",
                    repeat=repeat,
                    fold=fold,
                    train_index=np.sort(train_idx),
                    test_index=np.sort(test_idx),
                )
            )

    logger.info(
        "Built %d resamples (%d folds x %d repeats, stratified=%s)",
        len(folds),
        n_splits,
        n_repeats,
        strata is not None,
    )
    return folds


def train_test_folds(split: TrainTestSplit) -> List[Fold]:
    """The train/test split as a single resample over ``split_frame(split)``."""
    n_train = len(split.train)
    n_test = len(split.test)
    return [
        Fold(
            fold_id="test",
            repeat=1,
            fold=1,
            train_index=np.arange(n_train),
            test_index=np.arange(n_train, n_train + n_test),
        )
    ]


def split_frame(split: TrainTestSplit) -> pd.DataFrame:
    """Train rows followed by test rows, matching ``train_test_folds`` positions."""
    return pd.concat([split.train, split.test], ignore_index=True)
