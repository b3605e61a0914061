"""
Stratified, seeded train/test partitioning.

Severity classes are imbalanced, so the split is stratified on the label:
each partition keeps (approximately) the full-set share of severe rows.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split


class EmptyTrainingSet(Exception):
    """Raised when there are no rows to train on."""
    pass


class EmptyTestSet(Exception):
    """Raised when there are no rows to evaluate on."""
    pass


@dataclass(frozen=True)
class Split:
    """Disjoint positional row indices covering the input table."""
    train_indices: np.ndarray
    test_indices: np.ndarray
    seed: int
    train_fraction: float

    def partition_labels(self, n_rows: int) -> np.ndarray:
        """'train' / 'test' for every row position."""
        labels = np.empty(n_rows, dtype=object)
        labels[self.train_indices] = "train"
        labels[self.test_indices] = "test"
        return labels


def split(
    rows: pd.DataFrame,
    label_column: str,
    train_fraction: float = 0.7,
    seed: int = 123,
) -> Split:
    """
    Stratified train/test split of rows by label_column.

    The same seed and the same row order always give the same partition.
    Returned indices are positions (for .iloc), sorted ascending.

    Raises:
        ValueError: If train_fraction is not strictly between 0 and 1.
        EmptyTrainingSet / EmptyTestSet: If either side would be empty.
    """
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    n = len(rows)
    if n == 0:
        raise EmptyTrainingSet("Cannot split an empty table")

    n_train = int(np.floor(n * train_fraction + 1e-9))
    n_test = n - n_train
    if n_train < 1:
        raise EmptyTrainingSet(f"{n} rows leave no training rows at train_fraction={train_fraction}")
    if n_test < 1:
        raise EmptyTestSet(f"{n} rows leave no test rows at train_fraction={train_fraction}")

    positions = np.arange(n)
    train_idx, test_idx = train_test_split(
        positions,
        train_size=n_train,
        test_size=n_test,
        stratify=rows[label_column].to_numpy(),
        random_state=seed,
        shuffle=True,
    )

    return Split(
        train_indices=np.sort(train_idx),
        test_indices=np.sort(test_idx),
        seed=seed,
        train_fraction=train_fraction,
    )


def stratification_report(rows: pd.DataFrame, label_column: str, result: Split) -> dict:
    """Positive-class rate in the full table and in each partition."""
    labels = rows[label_column].to_numpy()
    return {
        "n_rows": int(len(labels)),
        "n_train": int(len(result.train_indices)),
        "n_test": int(len(result.test_indices)),
        "positive_rate_full": float(labels.mean()),
        "positive_rate_train": float(labels[result.train_indices].mean()),
        "positive_rate_test": float(labels[result.test_indices].mean()),
    }
