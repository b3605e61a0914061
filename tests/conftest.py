"""
Shared synthetic data for the test suite.

Everything is generated from a fixed numpy seed so the tests are
deterministic; no file under data/ is required.
"""

import numpy as np
import pandas as pd
import pytest

from hotspot_severity.model import BoostParams
from hotspot_severity.pipeline import PipelineConfig

SPEED_LIMITS = [20, 30, 40, 50, 60, 70, 80, 90]


def make_raw_accidents(
    n_per_blob: int = 250,
    n_noise: int = 60,
    n_missing_coords: int = 5,
    n_missing_weather: int = 10,
    seed: int = 7,
) -> pd.DataFrame:
    """
    STATS19-shaped raw table: two dense accident blobs (Birmingham, London)
    plus sparse background points, with some missing coordinates and -1
    weather codes. Severe accidents are more likely on fast roads.
    """
    rng = np.random.default_rng(seed)

    centres = [(-1.90, 52.48), (-0.12, 51.50)]
    lon = [rng.normal(cx, 0.003, n_per_blob) for cx, _ in centres]
    lat = [rng.normal(cy, 0.003, n_per_blob) for _, cy in centres]
    lon.append(rng.uniform(-5.0, 1.0, n_noise))
    lat.append(rng.uniform(50.0, 55.0, n_noise))
    lon = np.concatenate(lon)
    lat = np.concatenate(lat)
    n = len(lon)

    speed = rng.choice(SPEED_LIMITS, n)
    p_severe = np.where(speed >= 60, 0.7, 0.15)
    severe = rng.random(n) < p_severe
    severity = np.where(severe, rng.choice([1, 2], n), 3)

    days = pd.Timestamp("2019-01-01") + pd.to_timedelta(rng.integers(0, 365, n), unit="D")

    df = pd.DataFrame(
        {
            "longitude": lon,
            "latitude": lat,
            "accident_severity": severity,
            "date": days.strftime("%d/%m/%Y"),
            "time": [f"{h:02d}:{m:02d}" for h, m in zip(rng.integers(0, 24, n), rng.integers(0, 60, n))],
            "weather_conditions": rng.choice([1, 2, 3], n),
            "light_conditions": rng.choice([1, 4], n),
            "road_surface_conditions": rng.choice([1, 2], n),
            "speed_limit": speed,
            "urban_or_rural_area": rng.choice([1, 2], n),
            "number_of_casualties": rng.integers(1, 4, n),
            "number_of_vehicles": rng.integers(1, 3, n),
        }
    )

    missing = rng.choice(n, n_missing_coords + n_missing_weather, replace=False)
    df.loc[missing[:n_missing_coords], "longitude"] = np.nan
    df.loc[missing[n_missing_coords:], "weather_conditions"] = -1
    return df


def make_speed_frame(n: int = 1000, seed: int = 11) -> pd.DataFrame:
    """Modeling rows whose label is exactly speed_limit > 70."""
    rng = np.random.default_rng(seed)
    speed = rng.choice(SPEED_LIMITS, n).astype(np.float64)
    return pd.DataFrame(
        {
            "weather": rng.choice(["1", "2", "3"], n),
            "speed_limit": speed,
            "severity": (speed > 70).astype(np.int64),
        }
    )


@pytest.fixture
def raw_accidents():
    return make_raw_accidents()


@pytest.fixture
def sparse_accidents():
    """Background points only: no region is dense enough to cluster."""
    return make_raw_accidents(n_per_blob=0, n_noise=200, n_missing_coords=0, n_missing_weather=0)


@pytest.fixture
def speed_frame():
    return make_speed_frame()


@pytest.fixture
def fast_params():
    """Small ensembles keep the model tests quick."""
    return BoostParams(n_rounds=20, max_depth=3, colsample=1.0, seed=123)


@pytest.fixture
def small_config(fast_params):
    """Pipeline settings scaled to the synthetic accident table."""
    return PipelineConfig(
        eps=0.02,
        min_pts=10,
        boosting=fast_params,
        pdp_features=("speed_limit", "weather"),
        explain_rows=(0, 1),
        shapley_permutations=5,
        background_rows=100,
    )
