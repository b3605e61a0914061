#!/usr/bin/env python3
"""
03_explain_severity_model.py

Explain the trained severity model.

- Global feature importance (gain, hessian cover, split frequency) over all trees
- Partial dependence curves for the configured features
- Break-down and Shapley attributions for the configured test-set rows

All attributions are on the probability scale and reconstruct each row's
prediction from the background mean.

Outputs:
- data/processed/explain/feature_importance.csv
- data/processed/explain/partial_dependence.csv
- data/processed/explain/attributions.csv
- data/processed/metadata/feature_importance_metadata.json (provenance sidecar)
"""

import argparse
from pathlib import Path

import pandas as pd

from hotspot_severity.hashing import hash_dict, write_metadata_sidecar
from hotspot_severity.io_utils import atomic_write_df, read_df
from hotspot_severity.logging_utils import get_logger
from hotspot_severity.model import load_model, spec_path_for
from hotspot_severity.paths import EVALUATION_DIR, EXPLAIN_DIR, MODELS_DIR, PARAMS_FILE, ensure_dirs_exist
from hotspot_severity.pipeline import explain_model, load_config
from hotspot_severity.schemas import SCORED_SCHEMA, validate_schema


# =============================================================================
# Constants
# =============================================================================

INPUT_MODEL = MODELS_DIR / "severity_model.json"
INPUT_SCORED = EVALUATION_DIR / "scored_accidents.parquet"

OUTPUT_IMPORTANCE = EXPLAIN_DIR / "feature_importance.csv"
OUTPUT_PDP = EXPLAIN_DIR / "partial_dependence.csv"
OUTPUT_ATTRIBUTIONS = EXPLAIN_DIR / "attributions.csv"

# Largest attribution error tolerated before the run is flagged
RECONSTRUCTION_TOLERANCE = 1e-6


# =============================================================================
# Data Loading
# =============================================================================

def load_scored(logger) -> pd.DataFrame:
    """Load the modeling rows with their train/test partition."""
    for path in (INPUT_MODEL, INPUT_SCORED):
        if not path.exists():
            raise FileNotFoundError(
                f"Required input not found: {path}. "
                "Run 02_train_severity_model.py first."
            )

    df = read_df(INPUT_SCORED)
    validate_schema(df, SCORED_SCHEMA, context="scored accidents")
    logger.info(
        f"Loaded {len(df):,} scored rows "
        f"({int((df['partition'] == 'test').sum()):,} test)"
    )
    return df


# =============================================================================
# Validation
# =============================================================================

def validate_attributions(explanations, logger) -> dict:
    """Check every attribution sums back to its prediction."""
    errors = {
        f"{method}_{position}": attribution.reconstruction_error
        for method, attributions in (("break_down", explanations.break_downs), ("shapley", explanations.shapley))
        for position, attribution in attributions.items()
    }
    worst = max(errors.values()) if errors else 0.0

    passed = worst <= RECONSTRUCTION_TOLERANCE
    if not passed:
        logger.error(f"Attribution reconstruction error {worst:.2e} exceeds {RECONSTRUCTION_TOLERANCE:.0e}!")

    logger.info(f"QA validation {'PASSED' if passed else 'FAILED'}")
    return {"max_reconstruction_error": worst, "n_attributions": len(errors), "passed": passed}


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

    with get_logger("03_explain_severity_model") as logger:
        logger.info("Starting 03_explain_severity_model.py")

        try:
            config, params = load_config(args.params)
            logger.log_config(params, config_digest=hash_dict(params))

            scored = load_scored(logger)
            model = load_model(INPUT_MODEL)
            logger.info(f"Loaded model: {model.n_trees} trees, {len(model.feature_names)} features")

            inputs = {
                "model": str(INPUT_MODEL),
                "model_spec": str(spec_path_for(INPUT_MODEL)),
                "scored": str(INPUT_SCORED),
            }
            logger.log_inputs(inputs)

            test_rows = scored[scored["partition"] == "test"]
            explanations = explain_model(model, scored, test_rows, config, logger)
            qa_stats = validate_attributions(explanations, logger)

            ensure_dirs_exist()

            atomic_write_df(explanations.importance, OUTPUT_IMPORTANCE)
            logger.info(f"Wrote: {OUTPUT_IMPORTANCE}")

            atomic_write_df(explanations.partial_dependence, OUTPUT_PDP)
            logger.info(f"Wrote: {OUTPUT_PDP}")

            atomic_write_df(explanations.attribution_frame(), OUTPUT_ATTRIBUTIONS)
            logger.info(f"Wrote: {OUTPUT_ATTRIBUTIONS}")

            logger.log_outputs({
                "feature_importance": str(OUTPUT_IMPORTANCE),
                "partial_dependence": str(OUTPUT_PDP),
                "attributions": str(OUTPUT_ATTRIBUTIONS),
            })
            logger.log_metrics(qa_stats)

            write_metadata_sidecar(
                output_path=OUTPUT_IMPORTANCE,
                inputs=inputs,
                config=params,
                run_id=logger.run_id,
                extra={
                    "pdp_features": list(config.pdp_features),
                    "explain_rows": list(config.explain_rows),
                    "shapley_permutations": config.shapley_permutations,
                    "qa_stats": qa_stats,
                },
            )

            logger.info("=" * 70)
            logger.info("Top features by gain:")
            for _, row in explanations.importance.head(5).iterrows():
                logger.info(f"  {row['feature']}: gain={row['gain']:.3f}, splits={row['n_splits']}")
            for position, attribution in explanations.shapley.items():
                top = attribution.contributions.iloc[0]
                logger.info(
                    f"Test row {position}: p={attribution.prediction:.4f} "
                    f"(baseline {attribution.baseline:.4f}), "
                    f"largest driver {top['feature']}={top['value']} ({top['contribution']:+.4f})"
                )
            logger.info("=" * 70)

            logger.info("SUCCESS: Explained severity model")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
