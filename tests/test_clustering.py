"""
Tests for density clustering of accident coordinates.

- A single dense disk becomes one cluster, far points stay noise
- Core / border / noise classification with a closed eps neighborhood
- Partition does not depend on input order (ids may differ)
"""

import numpy as np
import pandas as pd
import pytest

from hotspot_severity.clustering import cluster, partition_of
from hotspot_severity.hotspots import resolve
from hotspot_severity.point_index import PointIndex


def disk(n, center, radius, rng):
    angle = rng.uniform(0, 2 * np.pi, n)
    r = radius * np.sqrt(rng.uniform(0, 1, n))
    return np.column_stack([center[0] + r * np.cos(angle), center[1] + r * np.sin(angle)])


@pytest.fixture
def dense_disk_with_outliers():
    """600 points within 0.04 of one center, plus 3 far-away points."""
    rng = np.random.default_rng(42)
    points = disk(600, (-1.5, 53.4), 0.04, rng)
    far = np.array([[10.0, 10.0], [20.0, 20.0], [-30.0, 40.0]])
    return np.vstack([points, far])


@pytest.fixture
def two_blobs():
    rng = np.random.default_rng(3)
    a = disk(80, (0.0, 0.0), 0.05, rng)
    b = disk(60, (1.0, 1.0), 0.05, rng)
    noise = np.array([[5.0, 5.0], [-5.0, 5.0], [5.0, -5.0]])
    return np.vstack([a, b, noise])


class TestDenseDisk:

    def test_single_cluster(self, dense_disk_with_outliers):
        result = cluster(dense_disk_with_outliers, eps=0.1, min_pts=500)
        assert result.n_clusters == 1
        assert (result.labels.iloc[:600] == 1).all()

    def test_far_points_are_noise(self, dense_disk_with_outliers):
        result = cluster(dense_disk_with_outliers, eps=0.1, min_pts=500)
        assert result.labels.iloc[600:].isna().all()
        assert result.n_noise == 3

    def test_summary(self, dense_disk_with_outliers):
        summary = cluster(dense_disk_with_outliers, eps=0.1, min_pts=500).summary()
        assert summary["n_points"] == 603
        assert summary["n_core"] == 600
        assert summary["largest_cluster"] == 600


class TestCoreBorderNoise:

    @pytest.fixture
    def chain(self):
        # 4 points at x=-0.125, 4 at x=0, one border point at x=0.125 and one far point
        return np.array(
            [[-0.125, 0.0]] * 4 + [[0.0, 0.0]] * 4 + [[0.125, 0.0], [5.0, 5.0]]
        )

    def test_border_point_joins_cluster(self, chain):
        result = cluster(chain, eps=0.125, min_pts=6)
        assert result.labels.iloc[8] == 1
        assert not result.is_core[8]

    def test_core_points(self, chain):
        result = cluster(chain, eps=0.125, min_pts=6)
        assert result.is_core[:8].all()
        assert result.n_clusters == 1

    def test_isolated_point_is_noise(self, chain):
        result = cluster(chain, eps=0.125, min_pts=6)
        assert pd.isna(result.labels.iloc[9])

    def test_min_pts_one_means_no_noise(self, chain):
        result = cluster(chain, eps=0.125, min_pts=1)
        assert result.n_noise == 0


class TestLabels:

    def test_ids_start_at_one_and_are_contiguous(self, two_blobs):
        result = cluster(two_blobs, eps=0.05, min_pts=5)
        assert sorted(result.labels.dropna().unique()) == list(range(1, result.n_clusters + 1))

    def test_labels_are_nullable_int(self, two_blobs):
        result = cluster(two_blobs, eps=0.05, min_pts=5)
        assert str(result.labels.dtype) == "Int64"

    def test_custom_index_preserved(self, two_blobs):
        index = pd.Index(np.arange(len(two_blobs)) * 10)
        result = cluster(two_blobs, eps=0.05, min_pts=5, index=index)
        assert result.labels.index.equals(index)

    def test_accepts_point_index(self, two_blobs):
        from_array = cluster(two_blobs, eps=0.05, min_pts=5)
        from_index = cluster(PointIndex(two_blobs), eps=0.05, min_pts=5)
        pd.testing.assert_series_equal(from_array.labels, from_index.labels)

    def test_empty_input(self):
        result = cluster(np.zeros((0, 2)), eps=0.1, min_pts=3)
        assert len(result.labels) == 0
        assert result.n_clusters == 0


class TestOrderIndependence:

    def test_partition_invariant_under_permutation(self, two_blobs):
        base = cluster(two_blobs, eps=0.05, min_pts=5)

        perm = np.random.default_rng(0).permutation(len(two_blobs))
        shuffled = cluster(two_blobs[perm], eps=0.05, min_pts=5, index=pd.Index(perm))

        assert partition_of(shuffled.labels) == partition_of(base.labels)
        assert set(shuffled.labels[shuffled.labels.isna()].index) == set(base.labels[base.labels.isna()].index)


class TestValidation:

    @pytest.mark.parametrize("eps", [0.0, -0.1])
    def test_non_positive_eps(self, two_blobs, eps):
        with pytest.raises(ValueError):
            cluster(two_blobs, eps=eps, min_pts=5)

    def test_min_pts_below_one(self, two_blobs):
        with pytest.raises(ValueError):
            cluster(two_blobs, eps=0.1, min_pts=0)

    def test_index_length_mismatch(self, two_blobs):
        with pytest.raises(ValueError):
            cluster(two_blobs, eps=0.1, min_pts=5, index=pd.RangeIndex(3))


class TestDenseDiskHotspot:
    """Clustering followed by centroid resolution on the 600 + 3 set."""

    @pytest.fixture
    def resolved(self, dense_disk_with_outliers):
        labels = cluster(dense_disk_with_outliers, eps=0.1, min_pts=500).labels
        return resolve(dense_disk_with_outliers, labels)

    def test_single_centroid_is_disk_mean(self, resolved, dense_disk_with_outliers):
        assert list(resolved.centroids) == [1]
        centroid = resolved.centroids[1]
        mean_lon, mean_lat = dense_disk_with_outliers[:600].mean(axis=0)
        assert centroid.n_points == 600
        assert centroid.mean_longitude == pytest.approx(mean_lon, abs=1e-12)
        assert centroid.mean_latitude == pytest.approx(mean_lat, abs=1e-12)

    def test_far_points_measured_to_centroid(self, resolved, dense_disk_with_outliers):
        centroid = resolved.centroids[1]
        far = dense_disk_with_outliers[600:]
        expected = np.hypot(far[:, 0] - centroid.mean_longitude, far[:, 1] - centroid.mean_latitude)
        np.testing.assert_allclose(resolved.distances.iloc[600:].to_numpy(), expected, rtol=1e-12)
        assert (resolved.nearest_cluster == 1).all()
