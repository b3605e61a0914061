"""
Density-based clustering of accident coordinates (DBSCAN semantics).

A point is a core point when its closed eps-neighborhood (itself included)
holds at least min_pts points. Each unassigned core point, visited in input
order, seeds a new cluster that grows breadth-first through core points.
Non-core points reached from a core point join the cluster as border points
but do not expand it. Points never reached stay noise.

Noise is represented as <NA> in a nullable Int64 label Series, never as an
integer, so no cluster id can collide with it. Cluster ids start at 1 and
follow discovery order; they carry no meaning beyond grouping. Compare
clusterings with partition_of(), not by id.
"""

from collections import deque
from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

import numpy as np
import pandas as pd

from hotspot_severity.point_index import PointIndex

UNASSIGNED = 0


@dataclass(frozen=True)
class ClusterResult:
    """Outcome of one clustering run."""
    labels: pd.Series  # Int64, <NA> = noise
    is_core: np.ndarray
    eps: float
    min_pts: int

    @property
    def n_clusters(self) -> int:
        return int(self.labels.nunique(dropna=True))

    @property
    def n_noise(self) -> int:
        return int(self.labels.isna().sum())

    def cluster_sizes(self) -> pd.Series:
        """Number of points per cluster id, largest first."""
        return self.labels.dropna().value_counts().sort_values(ascending=False)

    def summary(self) -> dict:
        sizes = self.cluster_sizes()
        return {
            "eps": self.eps,
            "min_pts": self.min_pts,
            "n_points": int(len(self.labels)),
            "n_clusters": self.n_clusters,
            "n_noise": self.n_noise,
            "n_core": int(self.is_core.sum()),
            "largest_cluster": int(sizes.iloc[0]) if len(sizes) else 0,
        }


def cluster(
    points: Union[PointIndex, np.ndarray],
    eps: float,
    min_pts: int,
    index: Optional[pd.Index] = None,
    chunk_size: int = 10_000,
) -> ClusterResult:
    """
    Assign every point a cluster label or noise.

    Args:
        points: PointIndex or (n, 2) array of (longitude, latitude)
        eps: Neighborhood radius, in coordinate units
        min_pts: Minimum neighborhood size (self included) for a core point
        index: Index for the returned label Series (defaults to 0..n-1)
        chunk_size: Batch size for the neighbor-count pass

    Returns:
        ClusterResult with labels in input order
    """
    if not eps > 0:
        raise ValueError(f"eps must be positive, got {eps}")
    if min_pts < 1:
        raise ValueError(f"min_pts must be at least 1, got {min_pts}")

    point_index = points if isinstance(points, PointIndex) else PointIndex(points)
    n = len(point_index)
    if index is None:
        index = pd.RangeIndex(n)
    elif len(index) != n:
        raise ValueError(f"index has {len(index)} entries for {n} points")

    if n == 0:
        return ClusterResult(pd.Series([], index=index, dtype="Int64"), np.zeros(0, dtype=bool), eps, min_pts)

    is_core = point_index.count_neighbors(eps, chunk_size=chunk_size) >= min_pts

    # State arena: UNASSIGNED or a positive cluster id
    state = np.full(n, UNASSIGNED, dtype=np.int64)
    next_id = 1

    for seed in np.flatnonzero(is_core):
        if state[seed] != UNASSIGNED:
            continue

        cluster_id = next_id
        next_id += 1
        state[seed] = cluster_id
        queue = deque([int(seed)])

        while queue:
            current = queue.popleft()
            neighbors = point_index.neighbors(current, eps)
            fresh = neighbors[state[neighbors] == UNASSIGNED]
            state[fresh] = cluster_id
            queue.extend(fresh[is_core[fresh]].tolist())

    labels = pd.Series(state, index=index, dtype="Int64")
    labels = labels.mask(labels == UNASSIGNED)
    return ClusterResult(labels=labels, is_core=is_core, eps=float(eps), min_pts=int(min_pts))


def partition_of(labels: pd.Series) -> FrozenSet[FrozenSet]:
    """
    Cluster membership as a set of sets of index labels.

    Noise points are excluded; two labelings that group the same points
    together produce equal partitions regardless of the ids used.
    """
    clustered = labels.dropna()
    groups = clustered.groupby(clustered).groups
    return frozenset(frozenset(members) for members in groups.values())
