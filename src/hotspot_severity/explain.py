"""
Model explainability: global importance, partial dependence and per-instance
attribution (break-down and Shapley values).

All attributions are on the probability scale. The baseline is the mean
prediction over the background rows; conditioning on a feature means setting
that column to the explained row's value in every background row. After every
feature is conditioned each background row equals the explained row, so
baseline + sum(contributions) reconstructs the row's prediction up to
floating-point rounding, for any conditioning order.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from hotspot_severity.model import TrainedModel


@dataclass(frozen=True)
class Attribution:
    """Additive decomposition of one prediction."""
    method: str
    baseline: float
    prediction: float
    contributions: pd.DataFrame  # feature, value, contribution

    @property
    def reconstruction_error(self) -> float:
        return abs(self.baseline + float(self.contributions["contribution"].sum()) - self.prediction)

    def to_frame(self) -> pd.DataFrame:
        """Contributions framed by intercept and prediction rows, with running totals."""
        body = self.contributions.copy()
        body["cumulative"] = self.baseline + body["contribution"].cumsum()
        intercept = pd.DataFrame(
            [{"feature": "intercept", "value": None, "contribution": self.baseline, "cumulative": self.baseline}]
        )
        prediction = pd.DataFrame(
            [{"feature": "prediction", "value": None, "contribution": self.prediction, "cumulative": self.prediction}]
        )
        out = pd.concat([intercept, body, prediction], ignore_index=True)
        out.insert(0, "method", self.method)
        return out


# =============================================================================
# Global importance
# =============================================================================

def feature_importance(model: TrainedModel) -> pd.DataFrame:
    """
    Gain, cover and split frequency per feature, summed over all trees.

    gain, cover_hessian and frequency are shares of the total (summing to 1
    when the model has any split); total_gain, total_cover_hessian and
    n_splits are the raw sums. Cover here is XGBoost's summed hessian of the
    training rows reaching each split, not a row count; under the logistic
    loss each row contributes p * (1 - p).
    Features never used in a split are listed with zeros.
    """
    trees = model.trees_frame()
    splits = trees[trees["Feature"] != "Leaf"]

    totals = (
        splits.groupby("Feature")
        .agg(total_gain=("Gain", "sum"), total_cover_hessian=("Cover", "sum"), n_splits=("Gain", "size"))
        .reindex(list(model.feature_names), fill_value=0)
    )
    totals.index.name = "feature"

    shares = (("gain", "total_gain"), ("cover_hessian", "total_cover_hessian"), ("frequency", "n_splits"))
    for share, total in shares:
        denom = totals[total].sum()
        totals[share] = totals[total] / denom if denom > 0 else 0.0

    totals["n_splits"] = totals["n_splits"].astype("int64")
    columns = ["feature", "gain", "cover_hessian", "frequency", "total_gain", "total_cover_hessian", "n_splits"]
    out = totals.reset_index()[columns]
    return out.sort_values(["gain", "feature"], ascending=[False, True], kind="mergesort").reset_index(drop=True)


# =============================================================================
# Partial dependence
# =============================================================================

def _feature_grid(model: TrainedModel, X: pd.DataFrame, feature: str, grid_size: int):
    """(encoded grid values, display values) for one feature."""
    if feature in model.encoding.columns:
        labels = model.encoding.columns[feature]
        return np.arange(len(labels), dtype=np.float64), list(labels)

    observed = np.unique(X[feature].to_numpy())
    if len(observed) <= grid_size:
        return observed, observed.tolist()
    grid = np.linspace(observed.min(), observed.max(), grid_size)
    return grid, grid.tolist()


def partial_dependence(
    model: TrainedModel,
    rows: pd.DataFrame,
    feature: str,
    grid_size: int = 20,
) -> pd.DataFrame:
    """
    Average predicted probability as one feature sweeps its grid.

    Every other feature keeps its observed per-row value. Categorical
    features sweep every encoded category; numeric features sweep their
    distinct values when there are at most grid_size of them, otherwise an
    evenly spaced grid over the observed range.
    """
    if feature not in model.feature_names:
        raise KeyError(f"'{feature}' is not a model feature")
    if len(rows) == 0:
        raise ValueError("Partial dependence needs at least one row")

    X = model.design_matrix(rows)
    grid, display = _feature_grid(model, X, feature, grid_size)
    column = list(model.feature_names).index(feature)

    values = X.to_numpy(copy=True)
    means = []
    for v in grid:
        values[:, column] = v
        means.append(float(model.predict_encoded(values).mean()))

    return pd.DataFrame({"feature": feature, "value": display, "mean_prediction": means})


# =============================================================================
# Per-instance attribution
# =============================================================================

def _observation_frame(observation: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(observation, pd.Series):
        return observation.to_frame().T
    if len(observation) != 1:
        raise ValueError(f"Expected exactly one observation row, got {len(observation)}")
    return observation


def _prepare(model: TrainedModel, rows: pd.DataFrame, observation):
    if len(rows) == 0:
        raise ValueError("Attribution needs at least one background row")
    obs = _observation_frame(observation)
    background = model.design_matrix(rows).to_numpy(dtype=np.float64)
    x = model.design_matrix(obs).to_numpy(dtype=np.float64)[0]
    raw_values = [obs.iloc[0][f] for f in model.feature_names]
    return background, x, raw_values


def _sequential_contributions(model: TrainedModel, background: np.ndarray, x: np.ndarray, order) -> np.ndarray:
    """Change in mean prediction as features in order are fixed one by one."""
    contributions = np.zeros(len(x), dtype=np.float64)
    current = background.copy()
    previous = float(model.predict_encoded(current).mean())
    for j in order:
        current[:, j] = x[j]
        mean = float(model.predict_encoded(current).mean())
        contributions[j] = mean - previous
        previous = mean
    return contributions


def _greedy_order(model: TrainedModel, background: np.ndarray, x: np.ndarray) -> list:
    """
    At each step pick the unconditioned feature whose fixing moves the mean
    prediction the most; ties go to the earlier model column.
    """
    remaining = list(range(len(x)))
    current = background.copy()
    current_mean = float(model.predict_encoded(current).mean())
    order = []

    while remaining:
        best_j, best_gap, best_mean = None, -1.0, current_mean
        for j in remaining:
            trial = current.copy()
            trial[:, j] = x[j]
            mean = float(model.predict_encoded(trial).mean())
            if abs(mean - current_mean) > best_gap:
                best_j, best_gap, best_mean = j, abs(mean - current_mean), mean
        order.append(best_j)
        remaining.remove(best_j)
        current[:, best_j] = x[best_j]
        current_mean = best_mean

    return order


def _attribution(method, model, baseline, prediction, contributions, raw_values, order) -> Attribution:
    names = list(model.feature_names)
    frame = pd.DataFrame(
        {
            "feature": [names[j] for j in order],
            "value": [raw_values[j] for j in order],
            "contribution": [float(contributions[j]) for j in order],
        }
    )
    return Attribution(method=method, baseline=baseline, prediction=prediction, contributions=frame)


def break_down(
    model: TrainedModel,
    rows: pd.DataFrame,
    observation: Union[pd.Series, pd.DataFrame],
    order: Optional[Sequence[str]] = None,
) -> Attribution:
    """
    Sequential-conditioning break-down of one prediction.

    Args:
        model: Trained model
        rows: Background rows defining the baseline
        observation: The row to explain (raw, unencoded values)
        order: Feature conditioning order; greedy by largest mean shift if None

    Returns:
        Attribution with contributions listed in conditioning order
    """
    background, x, raw_values = _prepare(model, rows, observation)
    names = list(model.feature_names)

    if order is None:
        positions = _greedy_order(model, background, x)
    else:
        if sorted(order) != sorted(names):
            raise ValueError(f"order must list every model feature exactly once: {names}")
        positions = [names.index(f) for f in order]

    baseline = float(model.predict_encoded(background).mean())
    prediction = float(model.predict_encoded(x.reshape(1, -1))[0])
    contributions = _sequential_contributions(model, background, x, positions)
    return _attribution("break_down", model, baseline, prediction, contributions, raw_values, positions)


def shapley_values(
    model: TrainedModel,
    rows: pd.DataFrame,
    observation: Union[pd.Series, pd.DataFrame],
    n_permutations: int = 25,
    seed: int = 123,
) -> Attribution:
    """
    Shapley-value attribution estimated from random feature orderings.

    Each sampled permutation yields an exact additive decomposition; the
    average over permutations keeps that property. Permutations are drawn
    from numpy.random.default_rng(seed).

    Returns:
        Attribution with features ordered by decreasing |contribution|
    """
    if n_permutations < 1:
        raise ValueError(f"n_permutations must be >= 1, got {n_permutations}")

    background, x, raw_values = _prepare(model, rows, observation)
    rng = np.random.default_rng(seed)

    total = np.zeros(len(x), dtype=np.float64)
    for _ in range(n_permutations):
        total += _sequential_contributions(model, background, x, rng.permutation(len(x)))
    contributions = total / n_permutations

    baseline = float(model.predict_encoded(background).mean())
    prediction = float(model.predict_encoded(x.reshape(1, -1))[0])
    order = sorted(range(len(x)), key=lambda j: (-abs(contributions[j]), j))
    return _attribution("shapley", model, baseline, prediction, contributions, raw_values, order)
