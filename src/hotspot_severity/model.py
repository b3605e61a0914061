"""
Gradient-boosted severity classifier.

Trees are fitted with XGBoost under the logistic loss: each round fits a
shallow regression tree to the gradient of the loss at the current ensemble
prediction, scaled by the learning rate. Row and column subsampling are seeded
from BoostParams.seed, so the same seed, data order and hyperparameters give
the same model. The predicted probability is the logistic sigmoid of the
summed tree outputs.

Categorical covariates are ordinal-encoded with an EncodingTable fitted on the
training rows; the table travels with the model.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from xgboost import XGBClassifier

from hotspot_severity.encoding import EncodingTable
from hotspot_severity.io_utils import atomic_write_json, atomic_write_with, read_json
from hotspot_severity.splitting import EmptyTrainingSet

MODEL_FORMAT_VERSION = 1


class InvalidHyperparameter(ValueError):
    """Raised when boosting hyperparameters are out of range."""
    pass


@dataclass(frozen=True)
class BoostParams:
    """Boosting hyperparameters; validated on construction."""
    learning_rate: float = 0.1
    max_depth: int = 4
    subsample: float = 0.8
    colsample: float = 0.8
    n_rounds: int = 100
    seed: int = 123
    n_jobs: int = 1

    def __post_init__(self):
        if self.max_depth < 1:
            raise InvalidHyperparameter(f"max_depth must be >= 1, got {self.max_depth}")
        if not self.learning_rate > 0:
            raise InvalidHyperparameter(f"learning_rate must be > 0, got {self.learning_rate}")
        if not 0 < self.subsample <= 1:
            raise InvalidHyperparameter(f"subsample must be in (0, 1], got {self.subsample}")
        if not 0 < self.colsample <= 1:
            raise InvalidHyperparameter(f"colsample must be in (0, 1], got {self.colsample}")
        if self.n_rounds < 1:
            raise InvalidHyperparameter(f"n_rounds must be >= 1, got {self.n_rounds}")

    @classmethod
    def from_config(cls, config: Optional[Mapping] = None, seed: Optional[int] = None) -> "BoostParams":
        """Build params from the `boosting` section of params.yml."""
        config = dict(config or {})
        defaults = cls.__dataclass_fields__
        return cls(
            learning_rate=float(config.get("learning_rate", defaults["learning_rate"].default)),
            max_depth=int(config.get("max_depth", defaults["max_depth"].default)),
            subsample=float(config.get("subsample", defaults["subsample"].default)),
            colsample=float(config.get("colsample", defaults["colsample"].default)),
            n_rounds=int(config.get("n_rounds", defaults["n_rounds"].default)),
            seed=int(seed if seed is not None else config.get("seed", defaults["seed"].default)),
            n_jobs=int(config.get("n_jobs", defaults["n_jobs"].default)),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TrainedModel:
    """A fitted ensemble plus everything needed to score new rows."""
    estimator: XGBClassifier
    params: BoostParams
    feature_names: Tuple[str, ...]
    categorical_columns: Tuple[str, ...]
    encoding: EncodingTable
    label_column: str

    @property
    def n_trees(self) -> int:
        return len(self.estimator.get_booster().get_dump())

    def trees_frame(self) -> pd.DataFrame:
        """The ordered tree sequence, one row per node."""
        return self.estimator.get_booster().trees_to_dataframe()

    def design_matrix(self, rows: pd.DataFrame) -> pd.DataFrame:
        """Encoded float64 feature matrix in model column order."""
        missing = [c for c in self.feature_names if c not in rows.columns]
        if missing:
            raise KeyError(f"Rows are missing model features: {missing}")
        encoded = self.encoding.transform(rows[list(self.feature_names)])
        return encoded.astype("float64")

    def predict_encoded(self, X: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
        """Probabilities for an already-encoded matrix in model column order."""
        if not isinstance(X, pd.DataFrame):
            X = pd.DataFrame(np.asarray(X, dtype=np.float64), columns=list(self.feature_names))
        return self.estimator.predict_proba(X)[:, 1].astype(np.float64)


def train(
    train_rows: pd.DataFrame,
    label_column: str,
    params: BoostParams,
    categorical_columns: Sequence[str] = (),
    feature_columns: Optional[Sequence[str]] = None,
) -> TrainedModel:
    """
    Fit the boosted classifier.

    Args:
        train_rows: Training table (covariates + label)
        label_column: Binary label column (0/1)
        params: Validated hyperparameters (seed included)
        categorical_columns: Columns to ordinal-encode
        feature_columns: Covariates to use; defaults to every non-label column

    Raises:
        EmptyTrainingSet: If train_rows has no rows.
        ValueError: If labels are not 0/1 or only one class is present.
    """
    if len(train_rows) == 0:
        raise EmptyTrainingSet("Training set has zero rows")

    if feature_columns is None:
        feature_columns = [c for c in train_rows.columns if c != label_column]
    feature_columns = tuple(feature_columns)
    categorical_columns = tuple(c for c in feature_columns if c in set(categorical_columns))

    labels = train_rows[label_column].to_numpy()
    if not np.isin(labels, (0, 1)).all():
        raise ValueError(f"Label column '{label_column}' must contain only 0/1")
    if len(np.unique(labels)) < 2:
        raise ValueError(f"Label column '{label_column}' has a single class; cannot fit a classifier")

    encoding = EncodingTable.fit(train_rows, categorical_columns)
    estimator = XGBClassifier(
        n_estimators=params.n_rounds,
        learning_rate=params.learning_rate,
        max_depth=params.max_depth,
        subsample=params.subsample,
        colsample_bytree=params.colsample,
        objective="binary:logistic",
        tree_method="hist",
        eval_metric="logloss",
        random_state=params.seed,
        n_jobs=params.n_jobs,
    )

    model = TrainedModel(
        estimator=estimator,
        params=params,
        feature_names=feature_columns,
        categorical_columns=categorical_columns,
        encoding=encoding,
        label_column=label_column,
    )
    estimator.fit(model.design_matrix(train_rows), labels.astype(np.int64))
    return model


def score(model: TrainedModel, rows: pd.DataFrame) -> np.ndarray:
    """
    Predicted probability of severity = 1 for every row, in [0, 1].

    Raises:
        UnknownCategory: If a categorical value was not seen in training.
    """
    if len(rows) == 0:
        return np.zeros(0, dtype=np.float64)
    return model.predict_encoded(model.design_matrix(rows))


# =============================================================================
# Serialization
# =============================================================================

def spec_path_for(model_path: Union[str, Path]) -> Path:
    model_path = Path(model_path)
    return model_path.with_name(f"{model_path.stem}_spec.json")


def save_model(model: TrainedModel, path: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Write the ensemble (XGBoost JSON) and its companion spec file.

    Returns:
        (model path, spec path)
    """
    path = Path(path)
    if path.suffix.lower() != ".json":
        raise ValueError(f"Model path must end in .json, got {path}")

    atomic_write_with(path, lambda p: model.estimator.save_model(str(p)))

    spec_path = spec_path_for(path)
    atomic_write_json(
        {
            "format_version": MODEL_FORMAT_VERSION,
            "label_column": model.label_column,
            "feature_names": list(model.feature_names),
            "categorical_columns": list(model.categorical_columns),
            "params": model.params.to_dict(),
            "encoding": model.encoding.to_dict(),
            "n_trees": model.n_trees,
        },
        spec_path,
    )
    return path, spec_path


def load_model(path: Union[str, Path]) -> TrainedModel:
    """Inverse of save_model."""
    path = Path(path)
    spec = read_json(spec_path_for(path))
    if spec.get("format_version") != MODEL_FORMAT_VERSION:
        raise ValueError(f"Unsupported model format version: {spec.get('format_version')}")

    estimator = XGBClassifier()
    estimator.load_model(str(path))

    return TrainedModel(
        estimator=estimator,
        params=BoostParams(**spec["params"]),
        feature_names=tuple(spec["feature_names"]),
        categorical_columns=tuple(spec["categorical_columns"]),
        encoding=EncodingTable.from_dict(spec["encoding"]),
        label_column=spec["label_column"],
    )
