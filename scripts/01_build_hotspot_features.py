#!/usr/bin/env python3
"""
01_build_hotspot_features.py

Build density-clustered accident hotspots and the distance_to_hotspot feature.

- Load the most recent raw accident CSV from data/raw/accidents/
- Map configured source columns to canonical names, replace missing codes
- Drop rows without coordinates (counted, not silently)
- DBSCAN over (longitude, latitude) at the configured eps / min_pts
- Hotspot centroid = mean lon/lat of each cluster; every point gets the
  flat-plane distance to its nearest centroid
- Derive hour / month / day_of_week / is_weekend / is_night
- Binarize severity (Fatal/Serious -> 1, Slight -> 0)

Outputs:
- data/processed/features/accident_features.parquet
- data/processed/features/hotspot_centroids.csv
- data/processed/features/hotspot_centroids.geojson (map-ready)
- data/processed/metadata/accident_features_metadata.json (provenance sidecar)

Skips the run when the sidecar shows identical inputs and config, unless
--force is given.
"""

import argparse
from pathlib import Path
from typing import Tuple

import pandas as pd

from hotspot_severity.hashing import hash_dict, validate_cache, write_metadata_sidecar
from hotspot_severity.hotspots import centroids_to_gdf
from hotspot_severity.io_utils import atomic_write_df, atomic_write_gdf, latest_file, read_df
from hotspot_severity.logging_utils import get_logger
from hotspot_severity.paths import FEATURES_DIR, PARAMS_FILE, RAW_ACCIDENTS_DIR, ensure_dirs_exist
from hotspot_severity.pipeline import build_hotspot_features, load_config
from hotspot_severity.schemas import CENTROIDS_SCHEMA, FEATURES_SCHEMA, validate_schema


# =============================================================================
# Constants
# =============================================================================

OUTPUT_FEATURES = FEATURES_DIR / "accident_features.parquet"
OUTPUT_CENTROIDS_CSV = FEATURES_DIR / "hotspot_centroids.csv"
OUTPUT_CENTROIDS_GEOJSON = FEATURES_DIR / "hotspot_centroids.geojson"


# =============================================================================
# Data Loading
# =============================================================================

def load_raw_accidents(pattern: str, logger) -> Tuple[pd.DataFrame, Path]:
    """Load the most recent raw accident extract."""
    try:
        raw_path = latest_file(RAW_ACCIDENTS_DIR, pattern)
    except FileNotFoundError as e:
        raise FileNotFoundError(
            f"{e}. Place a STATS19-style accident CSV in {RAW_ACCIDENTS_DIR}."
        ) from e

    logger.info(f"Loading raw accidents from: {raw_path}")
    df = read_df(raw_path)
    logger.info(f"Loaded {len(df):,} raw records")
    return df, raw_path


# =============================================================================
# Validation
# =============================================================================

def validate_outputs(frame: pd.DataFrame, centroids: pd.DataFrame, logger) -> dict:
    """Schema checks plus the hotspot invariants; returns QA stats."""
    logger.info("Validating outputs...")

    validate_schema(frame, FEATURES_SCHEMA, context="accident features")
    validate_schema(centroids, CENTROIDS_SCHEMA, context="hotspot centroids")

    clustered = frame["cluster_id"].notna()
    qa_stats = {
        "n_rows": int(len(frame)),
        "n_clustered": int(clustered.sum()),
        "n_noise": int((~clustered).sum()),
        "n_hotspots": int(len(centroids)),
        "max_distance": float(frame["distance_to_hotspot"].max()),
        "label_na": int(frame["severity"].isna().sum()),
    }

    passed = int(centroids["n_points"].sum()) == qa_stats["n_clustered"]
    if not passed:
        logger.error("Centroid member counts do not match clustered row count!")

    qa_stats["passed"] = passed
    logger.info(f"QA validation {'PASSED' if passed else 'FAILED'}")
    return qa_stats


# =============================================================================
# Main
# =============================================================================

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[1])
    parser.add_argument("--force", action="store_true", help="Rebuild even if cached outputs are valid")
    parser.add_argument("--params", type=Path, default=PARAMS_FILE, help="Path to params.yml")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    with get_logger("01_build_hotspot_features") as logger:
        logger.info("Starting 01_build_hotspot_features.py")

        try:
            config, params = load_config(args.params)
            logger.log_config(params, config_digest=hash_dict(params))
            logger.info(f"Clustering: eps={config.eps}, min_pts={config.min_pts}")

            pattern = params.get("raw_input", {}).get("pattern", "*.csv")
            df_raw, raw_path = load_raw_accidents(pattern, logger)
            inputs = {"raw_accidents": str(raw_path)}
            logger.log_inputs(inputs)

            if not args.force and validate_cache(OUTPUT_FEATURES, inputs, params):
                logger.info(f"Cache valid for {OUTPUT_FEATURES}; nothing to do (use --force to rebuild)")
                return

            features = build_hotspot_features(df_raw, config, logger)
            centroids = features.hotspots.centroid_frame()

            logger.log_cleaning(features.cleaning.to_dict())
            logger.log_cluster_stats(features.clusters.summary())

            qa_stats = validate_outputs(features.frame, centroids, logger)

            ensure_dirs_exist()

            # 1. Per-accident features (parquet)
            atomic_write_df(features.frame, OUTPUT_FEATURES)
            logger.info(f"Wrote: {OUTPUT_FEATURES} ({len(features.frame):,} rows)")

            # 2. Centroids (CSV)
            atomic_write_df(centroids, OUTPUT_CENTROIDS_CSV)
            logger.info(f"Wrote: {OUTPUT_CENTROIDS_CSV}")

            # 3. Centroids (GeoJSON) for map display
            atomic_write_gdf(centroids_to_gdf(features.hotspots), OUTPUT_CENTROIDS_GEOJSON)
            logger.info(f"Wrote: {OUTPUT_CENTROIDS_GEOJSON}")

            logger.log_outputs({
                "accident_features": str(OUTPUT_FEATURES),
                "hotspot_centroids_csv": str(OUTPUT_CENTROIDS_CSV),
                "hotspot_centroids_geojson": str(OUTPUT_CENTROIDS_GEOJSON),
            })
            logger.log_metrics(qa_stats)

            write_metadata_sidecar(
                output_path=OUTPUT_FEATURES,
                inputs=inputs,
                config=params,
                run_id=logger.run_id,
                extra={
                    "eps": config.eps,
                    "min_pts": config.min_pts,
                    "cleaning": features.cleaning.to_dict(),
                    "cluster_stats": features.clusters.summary(),
                    "qa_stats": qa_stats,
                },
            )

            logger.info("=" * 70)
            logger.info("Hotspot Summary:")
            logger.info(f"  Accidents with coordinates: {qa_stats['n_rows']:,}")
            logger.info(f"  Hotspots: {qa_stats['n_hotspots']}")
            logger.info(f"  Noise points: {qa_stats['n_noise']:,}")
            logger.info("")
            logger.info("Largest hotspots:")
            for c in features.hotspots.largest(5):
                logger.info(
                    f"  #{c.cluster_id}: {c.n_points:,} accidents "
                    f"at ({c.mean_longitude:.4f}, {c.mean_latitude:.4f})"
                )
            logger.info("=" * 70)

            logger.info("SUCCESS: Built hotspot features")

        except Exception as e:
            logger.error(f"FAILED: {e}")
            raise


if __name__ == "__main__":
    main()
