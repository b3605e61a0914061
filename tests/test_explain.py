"""
Tests for model explanations.

Every attribution must reconstruct the explained prediction:
baseline + sum(contributions) == prediction (to 1e-6).
"""

import pandas as pd
import pytest

from hotspot_severity.explain import (
    break_down,
    feature_importance,
    partial_dependence,
    shapley_values,
)
from hotspot_severity.model import score, train


@pytest.fixture
def model(speed_frame, fast_params):
    return train(speed_frame, "severity", fast_params, categorical_columns=["weather"])


@pytest.fixture
def background(speed_frame):
    return speed_frame.iloc[:200]


@pytest.fixture
def fast_row(speed_frame):
    """A row on a 90 mph road: confidently severe."""
    return speed_frame[speed_frame["speed_limit"] == 90].iloc[[0]]


class TestFeatureImportance:

    def test_shares_sum_to_one(self, model):
        importance = feature_importance(model)
        for share in ("gain", "cover_hessian", "frequency"):
            assert importance[share].sum() == pytest.approx(1.0)

    def test_every_feature_listed(self, model):
        importance = feature_importance(model)
        assert set(importance["feature"]) == {"weather", "speed_limit"}

    def test_informative_feature_ranks_first(self, model):
        importance = feature_importance(model)
        assert importance["feature"].iloc[0] == "speed_limit"
        assert list(importance["gain"]) == sorted(importance["gain"], reverse=True)

    def test_cover_is_labelled_as_hessian(self, model):
        importance = feature_importance(model)
        assert "cover" not in importance.columns
        trees = model.trees_frame()
        hessian = trees.loc[trees["Feature"] != "Leaf", "Cover"].sum()
        assert importance["total_cover_hessian"].sum() == pytest.approx(hessian)

    def test_split_counts_match_trees(self, model):
        importance = feature_importance(model)
        trees = model.trees_frame()
        assert importance["n_splits"].sum() == int((trees["Feature"] != "Leaf").sum())


class TestPartialDependence:

    def test_distinct_values_used_when_few(self, model, background):
        pdp = partial_dependence(model, background, "speed_limit", grid_size=20)
        assert list(pdp["value"]) == sorted(background["speed_limit"].unique())

    def test_even_grid_when_many(self, model, background):
        pdp = partial_dependence(model, background, "speed_limit", grid_size=4)
        assert len(pdp) == 4
        assert pdp["value"].iloc[0] == 20.0
        assert pdp["value"].iloc[-1] == 90.0

    def test_categorical_sweeps_every_category(self, model, background):
        pdp = partial_dependence(model, background, "weather")
        assert list(pdp["value"]) == ["1", "2", "3"]

    def test_tracks_the_threshold(self, model, background):
        pdp = partial_dependence(model, background, "speed_limit").set_index("value")
        assert pdp.loc[90.0, "mean_prediction"] > 0.5 > pdp.loc[20.0, "mean_prediction"]

    def test_predictions_are_probabilities(self, model, background):
        pdp = partial_dependence(model, background, "speed_limit")
        assert pdp["mean_prediction"].between(0, 1).all()

    def test_unknown_feature(self, model, background):
        with pytest.raises(KeyError):
            partial_dependence(model, background, "hour")


class TestBreakDown:

    def test_reconstructs_prediction(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row)
        assert attribution.reconstruction_error < 1e-6

    def test_prediction_matches_score(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row)
        assert attribution.prediction == pytest.approx(float(score(model, fast_row)[0]))

    def test_baseline_is_background_mean(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row)
        assert attribution.baseline == pytest.approx(float(score(model, background).mean()))

    def test_explicit_order(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row, order=["weather", "speed_limit"])
        assert list(attribution.contributions["feature"]) == ["weather", "speed_limit"]
        assert attribution.reconstruction_error < 1e-6

    def test_greedy_order_leads_with_speed(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row)
        assert attribution.contributions["feature"].iloc[0] == "speed_limit"

    def test_invalid_order(self, model, background, fast_row):
        with pytest.raises(ValueError):
            break_down(model, background, fast_row, order=["speed_limit"])

    def test_raw_values_reported(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row)
        values = dict(zip(attribution.contributions["feature"], attribution.contributions["value"]))
        assert values["speed_limit"] == 90.0
        assert values["weather"] == fast_row["weather"].iloc[0]

    def test_accepts_series(self, model, background, fast_row):
        attribution = break_down(model, background, fast_row.iloc[0])
        assert attribution.reconstruction_error < 1e-6

    def test_frame_has_intercept_and_prediction(self, model, background, fast_row):
        frame = break_down(model, background, fast_row).to_frame()
        assert frame["feature"].iloc[0] == "intercept"
        assert frame["feature"].iloc[-1] == "prediction"
        assert frame["cumulative"].iloc[-2] == pytest.approx(frame["cumulative"].iloc[-1])


class TestShapley:

    def test_reconstructs_prediction(self, model, background, fast_row):
        attribution = shapley_values(model, background, fast_row, n_permutations=10, seed=123)
        assert attribution.reconstruction_error < 1e-6

    def test_seeded(self, model, background, fast_row):
        a = shapley_values(model, background, fast_row, n_permutations=5, seed=1)
        b = shapley_values(model, background, fast_row, n_permutations=5, seed=1)
        pd.testing.assert_frame_equal(a.contributions, b.contributions)

    def test_ordered_by_magnitude(self, model, background, fast_row):
        attribution = shapley_values(model, background, fast_row, n_permutations=10)
        magnitudes = attribution.contributions["contribution"].abs()
        assert list(magnitudes) == sorted(magnitudes, reverse=True)
        assert attribution.contributions["feature"].iloc[0] == "speed_limit"

    def test_needs_a_permutation(self, model, background, fast_row):
        with pytest.raises(ValueError):
            shapley_values(model, background, fast_row, n_permutations=0)

    def test_needs_background(self, model, fast_row, speed_frame):
        with pytest.raises(ValueError):
            shapley_values(model, speed_frame.iloc[:0], fast_row)
