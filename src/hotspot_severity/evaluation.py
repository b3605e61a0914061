"""
Held-out evaluation of the severity classifier.

- accuracy at a 0.5 threshold
- AUC via the rank-based (Mann-Whitney) estimator with mid-ranks for ties,
  so constant scores give exactly 0.5 and perfect ranking exactly 1.0
- 2x2 confusion matrix, rows = predicted, columns = actual
- ROC curve points for downstream plotting
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy.stats import rankdata
from sklearn.metrics import roc_curve

from hotspot_severity.model import TrainedModel, score
from hotspot_severity.splitting import EmptyTestSet


class DegenerateLabelSet(Exception):
    """
    Raised when AUC is undefined because only one class is present.

    Carries the metrics that remain well defined (accuracy, confusion matrix)
    when raised from evaluate().
    """

    def __init__(
        self,
        message: str,
        accuracy: Optional[float] = None,
        confusion_matrix: Optional[pd.DataFrame] = None,
    ):
        super().__init__(message)
        self.accuracy = accuracy
        self.confusion_matrix = confusion_matrix


@dataclass(frozen=True)
class EvaluationResult:
    accuracy: float
    auc: float
    confusion_matrix: pd.DataFrame
    roc: pd.DataFrame
    n_rows: int

    def to_dict(self) -> dict:
        return {
            "accuracy": self.accuracy,
            "auc": self.auc,
            "n_rows": self.n_rows,
            "confusion_matrix": {
                f"predicted_{p}": {f"actual_{a}": int(self.confusion_matrix.loc[p, a]) for a in (0, 1)}
                for p in (0, 1)
            },
        }


def _as_arrays(labels, scores):
    labels = np.asarray(labels).astype(np.int64)
    scores = np.asarray(scores, dtype=np.float64)
    if labels.shape != scores.shape:
        raise ValueError(f"labels {labels.shape} and scores {scores.shape} differ in shape")
    return labels, scores


def predict_labels(scores, threshold: float = 0.5) -> np.ndarray:
    """Hard 0/1 predictions: 1 where score >= threshold."""
    return (np.asarray(scores, dtype=np.float64) >= threshold).astype(np.int64)


def accuracy(labels, scores, threshold: float = 0.5) -> float:
    labels, scores = _as_arrays(labels, scores)
    if len(labels) == 0:
        raise EmptyTestSet("Cannot compute accuracy on zero rows")
    return float(np.mean(predict_labels(scores, threshold) == labels))


def rank_auc(labels, scores) -> float:
    """
    Area under the ROC curve from the Mann-Whitney U statistic.

    Raises:
        DegenerateLabelSet: If labels contain a single class.
    """
    labels, scores = _as_arrays(labels, scores)
    n_pos = int((labels == 1).sum())
    n_neg = int((labels == 0).sum())
    if n_pos == 0 or n_neg == 0:
        raise DegenerateLabelSet(
            f"AUC undefined: {n_pos} positive and {n_neg} negative labels"
        )

    ranks = rankdata(scores, method="average")
    u_statistic = ranks[labels == 1].sum() - n_pos * (n_pos + 1) / 2.0
    return float(u_statistic / (n_pos * n_neg))


def confusion_table(labels, scores, threshold: float = 0.5) -> pd.DataFrame:
    """Counts indexed by predicted class (rows) and actual class (columns)."""
    labels, scores = _as_arrays(labels, scores)
    predicted = predict_labels(scores, threshold)

    table = np.zeros((2, 2), dtype=np.int64)
    np.add.at(table, (predicted, labels), 1)
    return pd.DataFrame(
        table,
        index=pd.Index([0, 1], name="predicted"),
        columns=pd.Index([0, 1], name="actual"),
    )


def roc_points(labels, scores) -> pd.DataFrame:
    """False/true positive rates at every distinct score threshold."""
    labels, scores = _as_arrays(labels, scores)
    fpr, tpr, thresholds = roc_curve(labels, scores, pos_label=1)
    return pd.DataFrame({"threshold": thresholds, "false_positive_rate": fpr, "true_positive_rate": tpr})


def evaluate(model: TrainedModel, test_rows: pd.DataFrame, threshold: float = 0.5) -> EvaluationResult:
    """
    Score test_rows and compute accuracy, AUC, confusion matrix and ROC.

    Raises:
        EmptyTestSet: If test_rows is empty.
        DegenerateLabelSet: If test labels hold one class; the exception
            carries accuracy and confusion matrix.
    """
    if len(test_rows) == 0:
        raise EmptyTestSet("Test set has zero rows")

    labels = test_rows[model.label_column].to_numpy()
    scores = score(model, test_rows)

    acc = accuracy(labels, scores, threshold)
    confusion = confusion_table(labels, scores, threshold)
    try:
        auc = rank_auc(labels, scores)
    except DegenerateLabelSet as e:
        raise DegenerateLabelSet(str(e), accuracy=acc, confusion_matrix=confusion) from e

    return EvaluationResult(
        accuracy=acc,
        auc=auc,
        confusion_matrix=confusion,
        roc=roc_points(labels, scores),
        n_rows=int(len(test_rows)),
    )
