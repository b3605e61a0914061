"""
Stage orchestration: raw accidents -> hotspot features -> model -> explanations.

Each stage takes the finalized output of the previous one plus explicit
configuration (seed included) and returns new values; nothing is mutated in
place and no global random state is used. Scripts 01-03 wrap these stages with
file I/O; tests call them directly.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from hotspot_severity.cleaning import (
    DEFAULT_MISSING_VALUES,
    CleaningSummary,
    binarize_severity,
    drop_missing_coordinates,
    prepare_modeling_frame,
    replace_missing_codes,
    select_source_columns,
)
from hotspot_severity.clustering import ClusterResult, cluster
from hotspot_severity.evaluation import EvaluationResult, evaluate
from hotspot_severity.explain import (
    Attribution,
    break_down,
    feature_importance,
    partial_dependence,
    shapley_values,
)
from hotspot_severity.hashing import read_metadata_sidecar
from hotspot_severity.hotspots import HotspotResult, resolve
from hotspot_severity.io_utils import read_yaml
from hotspot_severity.logging_utils import JSONLLogger
from hotspot_severity.model import BoostParams, TrainedModel, score, train
from hotspot_severity.paths import PARAMS_FILE
from hotspot_severity.point_index import PointIndex
from hotspot_severity.schemas import DEFAULT_COLUMNS
from hotspot_severity.splitting import Split, split
from hotspot_severity.time_utils import derive_temporal_fields

LABEL_COLUMN = "severity"

DEFAULT_CATEGORICAL = ("weather", "light", "road_surface", "urban_rural", "day_of_week")
DEFAULT_NUMERIC = ("speed_limit", "casualties", "vehicles", "hour", "month", "is_weekend", "distance_to_hotspot")


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """Resolved run configuration; boosting params validated on construction."""
    eps: float = 0.1
    min_pts: int = 500
    neighbor_chunk_size: int = 10_000
    train_fraction: float = 0.7
    seed: int = 123
    boosting: BoostParams = field(default_factory=BoostParams)
    columns: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_COLUMNS))
    missing_values: Tuple = DEFAULT_MISSING_VALUES
    date_format: str = "%d/%m/%Y"
    time_format: str = "%H:%M"
    night_window: Tuple[int, int] = (22, 7)
    categorical_features: Tuple[str, ...] = DEFAULT_CATEGORICAL
    numeric_features: Tuple[str, ...] = DEFAULT_NUMERIC
    pdp_features: Tuple[str, ...] = ("distance_to_hotspot", "speed_limit")
    pdp_grid_size: int = 20
    explain_rows: Tuple[int, ...] = (0,)
    shapley_permutations: int = 25
    background_rows: Optional[int] = None

    @property
    def feature_columns(self) -> List[str]:
        return list(self.categorical_features) + list(self.numeric_features)

    @classmethod
    def from_params(cls, params: Optional[Mapping] = None) -> "PipelineConfig":
        """
        Build a config from the params.yml mapping, applying defaults for any
        missing key.

        Raises:
            InvalidHyperparameter: If the boosting section is out of range.
        """
        params = params or {}
        clustering = params.get("clustering", {})
        split_cfg = params.get("split", {})
        features = params.get("features", {})
        explain = params.get("explain", {})
        temporal = params.get("temporal", {})
        seed = int(params.get("random_seed", 123))

        return cls(
            eps=float(clustering.get("eps", 0.1)),
            min_pts=int(clustering.get("min_pts", 500)),
            neighbor_chunk_size=int(clustering.get("neighbor_chunk_size", 10_000)),
            train_fraction=float(split_cfg.get("train_fraction", 0.7)),
            seed=seed,
            boosting=BoostParams.from_config(params.get("boosting", {}), seed=seed),
            columns={**DEFAULT_COLUMNS, **params.get("columns", {})},
            missing_values=tuple(params.get("missing_values", DEFAULT_MISSING_VALUES)),
            date_format=temporal.get("date_format", "%d/%m/%Y"),
            time_format=temporal.get("time_format", "%H:%M"),
            night_window=(
                int(temporal.get("night_start_hour", 22)),
                int(temporal.get("night_end_hour", 7)),
            ),
            categorical_features=tuple(features.get("categorical", DEFAULT_CATEGORICAL)),
            numeric_features=tuple(features.get("numeric", DEFAULT_NUMERIC)),
            pdp_features=tuple(explain.get("pdp_features", ("distance_to_hotspot", "speed_limit"))),
            pdp_grid_size=int(explain.get("pdp_grid_size", 20)),
            explain_rows=tuple(int(i) for i in explain.get("rows", (0,))),
            shapley_permutations=int(explain.get("shapley_permutations", 25)),
            background_rows=explain.get("background_rows"),
        )


def load_config(path=PARAMS_FILE) -> Tuple[PipelineConfig, dict]:
    """Read params.yml and resolve it; returns (config, raw params)."""
    params = read_yaml(path)
    return PipelineConfig.from_params(params), params


def recorded_cleaning(features_path, metadata_dir=None) -> Optional[CleaningSummary]:
    """
    Stage-1 cleaning counts stored in the feature table's metadata sidecar.

    Returns None when the sidecar or its cleaning block is absent.
    """
    metadata = read_metadata_sidecar(features_path, metadata_dir)
    if metadata is None:
        return None
    recorded = metadata.get("extra", {}).get("cleaning")
    return CleaningSummary.from_dict(recorded) if recorded else None


def _info(logger: Optional[JSONLLogger], message: str) -> None:
    if logger is not None:
        logger.info(message)


# =============================================================================
# Stage 1: hotspot features
# =============================================================================

@dataclass(frozen=True)
class HotspotFeatures:
    frame: pd.DataFrame  # every row with coordinates, plus cluster/distance columns
    clusters: ClusterResult
    hotspots: HotspotResult
    cleaning: CleaningSummary


def build_hotspot_features(
    raw: pd.DataFrame,
    config: PipelineConfig,
    logger: Optional[JSONLLogger] = None,
) -> HotspotFeatures:
    """
    Clean coordinates, cluster them and derive distance_to_hotspot.

    Raises:
        SchemaError: If required raw columns are missing.
        NoClustersFound: If no dense region exists at (eps, min_pts).
    """
    df = select_source_columns(raw, config.columns)
    covariates = [c for c in df.columns if c not in ("longitude", "latitude", "date", "time")]
    df = replace_missing_codes(df, covariates, config.missing_values)

    df, n_missing_coords = drop_missing_coordinates(df)
    _info(logger, f"Rows with coordinates: {len(df):,} / {len(raw):,}")

    points = PointIndex.from_frame(df)
    _info(logger, f"Clustering {len(points):,} points (eps={config.eps}, min_pts={config.min_pts})")
    clusters = cluster(points, config.eps, config.min_pts, index=df.index, chunk_size=config.neighbor_chunk_size)
    _info(logger, f"Found {clusters.n_clusters} hotspot clusters, {clusters.n_noise:,} noise points")

    hotspots = resolve(points, clusters.labels)

    frame = df.assign(
        cluster_id=clusters.labels,
        distance_to_hotspot=hotspots.distances,
        nearest_hotspot=hotspots.nearest_cluster,
    )
    frame = derive_temporal_fields(
        frame,
        date_column="date",
        time_column="time",
        date_format=config.date_format,
        time_format=config.time_format,
        night_window=config.night_window,
    )
    frame = frame.rename(columns={"severity": "severity_raw"})
    frame[LABEL_COLUMN] = binarize_severity(frame["severity_raw"])

    cleaning = CleaningSummary(
        n_input=int(len(raw)),
        missing_coordinate=n_missing_coords,
        n_output=int(len(frame)),
    )
    return HotspotFeatures(frame=frame, clusters=clusters, hotspots=hotspots, cleaning=cleaning)


# =============================================================================
# Stage 2: model
# =============================================================================

@dataclass(frozen=True)
class ModelRun:
    modeling_frame: pd.DataFrame
    split: Split
    model: TrainedModel
    evaluation: EvaluationResult
    scored: pd.DataFrame
    cleaning: CleaningSummary

    @property
    def train_rows(self) -> pd.DataFrame:
        return self.modeling_frame.iloc[self.split.train_indices]

    @property
    def test_rows(self) -> pd.DataFrame:
        return self.modeling_frame.iloc[self.split.test_indices]


def fit_and_evaluate(
    features: pd.DataFrame,
    config: PipelineConfig,
    cleaning: Optional[CleaningSummary] = None,
    logger: Optional[JSONLLogger] = None,
) -> ModelRun:
    """
    Complete-case filter, stratified split, boosted training and evaluation.

    Raises:
        EmptyTrainingSet / EmptyTestSet: If a partition is empty.
        DegenerateLabelSet: If the test set holds a single class.
        UnknownCategory: If a test category never occurs in training.
    """
    n_before = len(features)
    invalid_severity = int(features[LABEL_COLUMN].isna().sum())
    modeling, n_dropped = prepare_modeling_frame(
        features,
        config.categorical_features,
        config.numeric_features,
        label_column=LABEL_COLUMN,
    )
    _info(logger, f"Complete-case rows: {len(modeling):,} / {n_before:,}")

    base = cleaning or CleaningSummary(n_input=n_before)
    summary = CleaningSummary(
        n_input=base.n_input,
        missing_coordinate=base.missing_coordinate,
        invalid_severity=invalid_severity,
        missing_covariate=n_dropped - invalid_severity,
        n_output=int(len(modeling)),
    )

    partition = split(modeling, LABEL_COLUMN, config.train_fraction, config.seed)
    train_rows = modeling.iloc[partition.train_indices]
    test_rows = modeling.iloc[partition.test_indices]
    _info(logger, f"Split: {len(train_rows):,} train / {len(test_rows):,} test")

    model = train(
        train_rows,
        LABEL_COLUMN,
        config.boosting,
        categorical_columns=config.categorical_features,
        feature_columns=config.feature_columns,
    )
    _info(logger, f"Trained {model.n_trees} trees")

    evaluation = evaluate(model, test_rows)
    _info(logger, f"Test accuracy={evaluation.accuracy:.4f}, AUC={evaluation.auc:.4f}")

    scored = modeling.assign(
        predicted_probability=score(model, modeling),
        partition=partition.partition_labels(len(modeling)),
    )
    return ModelRun(
        modeling_frame=modeling,
        split=partition,
        model=model,
        evaluation=evaluation,
        scored=scored,
        cleaning=summary,
    )


# =============================================================================
# Stage 3: explanations
# =============================================================================

@dataclass(frozen=True)
class ExplanationTables:
    importance: pd.DataFrame
    partial_dependence: pd.DataFrame
    break_downs: Dict[int, Attribution]
    shapley: Dict[int, Attribution]

    def attribution_frame(self) -> pd.DataFrame:
        """All attributions stacked, keyed by test-row position."""
        frames = []
        for attributions in (self.break_downs, self.shapley):
            for position, attribution in attributions.items():
                frames.append(attribution.to_frame().assign(test_row=position))
        if not frames:
            return pd.DataFrame(columns=["method", "feature", "value", "contribution", "cumulative", "test_row"])
        return pd.concat(frames, ignore_index=True)


def background_sample(rows: pd.DataFrame, n_rows: Optional[int], seed: int) -> pd.DataFrame:
    """All rows, or a seeded sample of n_rows of them."""
    if n_rows is None or n_rows >= len(rows):
        return rows
    rng = np.random.default_rng(seed)
    positions = np.sort(rng.choice(len(rows), size=int(n_rows), replace=False))
    return rows.iloc[positions]


def explain_model(
    model: TrainedModel,
    modeling_frame: pd.DataFrame,
    test_rows: pd.DataFrame,
    config: PipelineConfig,
    logger: Optional[JSONLLogger] = None,
) -> ExplanationTables:
    """Importance, partial dependence and attributions for configured test rows."""
    importance = feature_importance(model)
    background = background_sample(modeling_frame, config.background_rows, config.seed)
    _info(logger, f"Explaining with {len(background):,} background rows")

    pdp = pd.concat(
        [partial_dependence(model, background, f, config.pdp_grid_size) for f in config.pdp_features],
        ignore_index=True,
    ) if config.pdp_features else pd.DataFrame(columns=["feature", "value", "mean_prediction"])

    break_downs, shapley = {}, {}
    for position in config.explain_rows:
        if not 0 <= position < len(test_rows):
            raise IndexError(f"Explain row {position} outside test set of {len(test_rows)} rows")
        observation = test_rows.iloc[[position]]
        break_downs[position] = break_down(model, background, observation)
        shapley[position] = shapley_values(
            model, background, observation, config.shapley_permutations, config.seed
        )
        _info(logger, f"Explained test row {position}: p={break_downs[position].prediction:.4f}")

    return ExplanationTables(
        importance=importance,
        partial_dependence=pdp,
        break_downs=break_downs,
        shapley=shapley,
    )


# =============================================================================
# Full run
# =============================================================================

@dataclass(frozen=True)
class PipelineResult:
    features: HotspotFeatures
    run: ModelRun
    explanations: ExplanationTables


def run_pipeline(
    raw: pd.DataFrame,
    config: PipelineConfig,
    logger: Optional[JSONLLogger] = None,
) -> PipelineResult:
    """Run every stage in order; the first failing stage aborts the run."""
    features = build_hotspot_features(raw, config, logger)
    run = fit_and_evaluate(features.frame, config, features.cleaning, logger)
    explanations = explain_model(run.model, run.modeling_frame, run.test_rows, config, logger)
    return PipelineResult(features=features, run=run, explanations=explanations)
