#!/usr/bin/env python3
"""
02_train_severity_model.py

Train and evaluate the gradient-boosted severity classifier.

- Load accident features from 01_build_hotspot_features.py
- Complete-case filter on the configured categorical + numeric features
- Stratified train/test split (configured fraction and seed)
- XGBoost binary:logistic with the configured hyperparameters
- Held-out accuracy, rank-based AUC, confusion matrix and ROC curve

Outputs:
- data/processed/models/severity_model.json (+ severity_model_spec.json)
- data/processed/evaluation/severity_metrics.json
- data/processed/evaluation/confusion_matrix.csv
- data/processed/evaluation/roc_curve.csv
- data/processed/evaluation/scored_accidents.parquet
- data/processed/evaluation/run_config.yml (resolved parameters)
- data/processed/metadata/severity_model_metadata.json (provenance sidecar)
"""

import argparse
from pathlib import Path

import pandas as pd

from hotspot_severity.evaluation import DegenerateLabelSet
from hotspot_severity.hashing import hash_dict, write_metadata_sidecar
from hotspot_severity.io_utils import atomic_write_df, atomic_write_json, atomic_write_yaml, read_df
from hotspot_severity.logging_utils import get_logger
from hotspot_severity.model import save_model
from hotspot_severity.paths import EVALUATION_DIR, FEATURES_DIR, MODELS_DIR, PARAMS_FILE, ensure_dirs_exist
from hotspot_severity.pipeline import LABEL_COLUMN, fit_and_evaluate, load_config, recorded_cleaning
from hotspot_severity.schemas import FEATURES_SCHEMA, SCORED_SCHEMA, validate_schema
from hotspot_severity.splitting import stratification_report


# =============================================================================
# Constants
# =============================================================================

INPUT_FEATURES = FEATURES_DIR / "accident_features.parquet"

OUTPUT_MODEL = MODELS_DIR / "severity_model.json"
OUTPUT_METRICS = EVALUATION_DIR / "severity_metrics.json"
OUTPUT_CONFUSION = EVALUATION_DIR / "confusion_matrix.csv"
OUTPUT_ROC = EVALUATION_DIR / "roc_curve.csv"
OUTPUT_SCORED = EVALUATION_DIR / "scored_accidents.parquet"
OUTPUT_RUN_CONFIG = EVALUATION_DIR / "run_config.yml"


# =============================================================================
# Data Loading
# =============================================================================

def load_features(logger) -> pd.DataFrame:
    """Load the per-accident hotspot features."""
    if not INPUT_FEATURES.exists():
        raise FileNotFoundError(
            f"Features file not found: {INPUT_FEATURES}. "
            "Run 01_build_hotspot_features.py first."
        )

    df = read_df(INPUT_FEATURES)
    validate_schema(df, FEATURES_SCHEMA, context="accident features")
    logger.info(f"Loaded {len(df):,} accident feature rows")
    return df


def confusion_long(confusion: pd.DataFrame) -> pd.DataFrame:
    """2x2 confusion matrix as predicted/actual/count rows."""
    return confusion.stack().rename("count").reset_index()


# =============================================================================
# Main
# =============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[1])
    parser.add_argument("--params", type=Path, default=PARAMS_FILE, help="Path to params.yml")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    with get_logger("02_train_severity_model") as logger:
        logger.info("Starting 02_train_severity_model.py")

        try:
            config, params = load_config(args.params)
            logger.log_config(params, config_digest=hash_dict(params))
            logger.info(
                f"Boosting: {config.boosting.n_rounds} rounds, "
                f"lr={config.boosting.learning_rate}, depth={config.boosting.max_depth}, "
                f"seed={config.seed}"
            )

            features = load_features(logger)
            logger.log_inputs({"accident_features": str(INPUT_FEATURES)})

            cleaning = recorded_cleaning(INPUT_FEATURES)
            if cleaning is None:
                logger.warning(
                    "No stage-1 cleaning counts in the features sidecar; "
                    "missing_coordinate will be reported as 0"
                )

            try:
                run = fit_and_evaluate(features, config, cleaning=cleaning, logger=logger)
            except DegenerateLabelSet as e:
                logger.error(
                    f"Test set holds a single class; AUC undefined: {e}",
                    extra={
                        "accuracy": e.accuracy,
                        "confusion_matrix": (
                            e.confusion_matrix.to_dict() if e.confusion_matrix is not None else None
                        ),
                    },
                )
                raise

            logger.log_cleaning(run.cleaning.to_dict())

            strat = stratification_report(run.modeling_frame, LABEL_COLUMN, run.split)
            logger.info(
                f"Positive rate: full={strat['positive_rate_full']:.3f}, "
                f"train={strat['positive_rate_train']:.3f}, test={strat['positive_rate_test']:.3f}"
            )

            validate_schema(run.scored, SCORED_SCHEMA, context="scored accidents")

            ensure_dirs_exist()

            # 1. Model artifact + spec
            model_path, spec_path = save_model(run.model, OUTPUT_MODEL)
            logger.info(f"Wrote: {model_path} ({run.model.n_trees} trees)")
            logger.info(f"Wrote: {spec_path}")

            # 2. Metrics
            metrics = {
                **run.evaluation.to_dict(),
                "stratification": strat,
                "cleaning": run.cleaning.to_dict(),
                "n_trees": run.model.n_trees,
            }
            atomic_write_json(metrics, OUTPUT_METRICS)
            logger.info(f"Wrote: {OUTPUT_METRICS}")

            # 3. Confusion matrix and ROC (CSV)
            atomic_write_df(confusion_long(run.evaluation.confusion_matrix), OUTPUT_CONFUSION)
            logger.info(f"Wrote: {OUTPUT_CONFUSION}")
            atomic_write_df(run.evaluation.roc, OUTPUT_ROC)
            logger.info(f"Wrote: {OUTPUT_ROC}")

            # 4. Scored rows with partition labels
            atomic_write_df(run.scored, OUTPUT_SCORED)
            logger.info(f"Wrote: {OUTPUT_SCORED} ({len(run.scored):,} rows)")

            # 5. Resolved parameters actually used
            atomic_write_yaml(
                {
                    "random_seed": config.seed,
                    "split": {"train_fraction": config.train_fraction},
                    "boosting": run.model.params.to_dict(),
                    "features": {
                        "categorical": list(config.categorical_features),
                        "numeric": list(config.numeric_features),
                    },
                },
                OUTPUT_RUN_CONFIG,
            )
            logger.info(f"Wrote: {OUTPUT_RUN_CONFIG}")

            logger.log_outputs({
                "model": str(model_path),
                "model_spec": str(spec_path),
                "metrics": str(OUTPUT_METRICS),
                "confusion_matrix": str(OUTPUT_CONFUSION),
                "roc_curve": str(OUTPUT_ROC),
                "scored": str(OUTPUT_SCORED),
                "run_config": str(OUTPUT_RUN_CONFIG),
            })
            logger.log_metrics(metrics)

            write_metadata_sidecar(
                output_path=OUTPUT_MODEL,
                inputs={"accident_features": str(INPUT_FEATURES)},
                config=params,
                run_id=logger.run_id,
                extra={
                    "boosting": run.model.params.to_dict(),
                    "accuracy": run.evaluation.accuracy,
                    "auc": run.evaluation.auc,
                    "n_train": strat["n_train"],
                    "n_test": strat["n_test"],
                },
            )

            logger.info("=" * 70)
            logger.info("Severity Model Summary:")
            logger.info(f"  Modeling rows: {len(run.modeling_frame):,}")
            logger.info(f"  Train / test: {strat['n_train']:,} / {strat['n_test']:,}")
            logger.info(f"  Accuracy: {run.evaluation.accuracy:.4f}")
            logger.info(f"  AUC: {run.evaluation.auc:.4f}")
            logger.info("=" * 70)

            logger.info("SUCCESS: Trained severity model")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
