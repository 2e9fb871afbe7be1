"""Cohort-stratified train/test partitioning.

Each cohort is split independently so every cohort keeps the same train
fraction. The split is a pure function of the input rows and the seed.
"""

import logging

import numpy as np
import pandas as pd

from src.errors import EmptyInputError, InvalidFractionError


logger = logging.getLogger(__name__)


def partition(
    patients: pd.DataFrame,
    train_fraction: float = 0.75,
    seed: int = 7,
    cohort_col: str = "cohort",
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split admissions into train and test sets, stratified by cohort.

    For every distinct cohort value (visited in sorted order) a fraction
    ``train_fraction`` of that cohort's rows is sampled without replacement
    into the train set; the remaining rows of the cohort go to the test set.
    Rows without a cohort value are dropped from both sets.
    All draws come from a single ``numpy`` generator seeded with ``seed``, so
    the same seed on the same input always yields the same row ids.

    Args:
        patients: Patient-level table with a cohort column
        train_fraction: Fraction of each cohort placed in train, in (0, 1)
        seed: Random seed
        cohort_col: Name of the cohort column

    Returns:
        Tuple of (train_df, test_df); the original index is kept as row id

    Raises:
        InvalidFractionError: If train_fraction is not in (0, 1)
        EmptyInputError: If the table is empty or has no cohort values

    Example:
        >>> train_df, test_df = partition(patients, 0.75, seed=7)
        >>> assert train_df.index.intersection(test_df.index).empty
    """
    if not 0 < train_fraction < 1:
        raise InvalidFractionError(
            f"train_fraction must be in (0, 1), got {train_fraction}"
        )
    if len(patients) == 0:
        raise EmptyInputError("Cannot partition an empty patient table")
    if cohort_col not in patients.columns or patients[cohort_col].notna().sum() == 0:
        raise EmptyInputError(f"Patient table has no values in column '{cohort_col}'")
    if not patients.index.is_unique:
        patients = patients.reset_index(drop=True)

    missing = patients[cohort_col].isna()
    if missing.any():
        logger.warning(f"Dropping {int(missing.sum())} rows with no '{cohort_col}' value")
        patients = patients[~missing]

    rng = np.random.default_rng(seed)
    train_ids = []

    for cohort in sorted(patients[cohort_col].dropna().unique()):
        row_ids = patients.index[patients[cohort_col] == cohort].to_numpy()
        n_train = int(round(train_fraction * len(row_ids)))
        train_ids.extend(rng.choice(row_ids, size=n_train, replace=False))

    in_train = patients.index.isin(train_ids)
    train_df = patients[in_train].copy()
    test_df = patients[~in_train].copy()

    return train_df, test_df
