"""
Queryable 2D point set over (longitude, latitude) pairs.

Distances are euclidean on raw degrees (flat-plane approximation, not
geodesic). Callers that need metric accuracy must project or pre-scale the
coordinates before building the index.
"""

from typing import Tuple

import numpy as np
import pandas as pd
from sklearn.neighbors import KDTree


class PointIndex:
    """
    Immutable KD-tree over an (n, 2) array of (longitude, latitude).

    Point identity is the row position in the array the index was built from.
    """

    def __init__(self, coords, leaf_size: int = 40):
        coords = np.asarray(coords, dtype=np.float64)
        if coords.ndim != 2 or coords.shape[1] != 2:
            raise ValueError(f"Expected an (n, 2) coordinate array, got shape {coords.shape}")
        if not np.isfinite(coords).all():
            raise ValueError("Coordinates must be finite; drop missing coordinates first")

        self._coords = coords.copy()
        self._tree = KDTree(coords, leaf_size=leaf_size) if len(coords) else None

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        lon_column: str = "longitude",
        lat_column: str = "latitude",
    ) -> "PointIndex":
        """Build an index from two coordinate columns of a DataFrame."""
        return cls(df[[lon_column, lat_column]].to_numpy(dtype=np.float64))

    @property
    def coords(self) -> np.ndarray:
        """Read-only view of the indexed coordinates."""
        view = self._coords.view()
        view.setflags(write=False)
        return view

    def __len__(self) -> int:
        return len(self._coords)

    def neighbors(self, position: int, eps: float) -> np.ndarray:
        """
        Positions of all points within eps of the point at position.

        The neighborhood is closed (distance <= eps) and contains the point
        itself. Positions are returned in ascending order.
        """
        found = self._tree.query_radius(self._coords[position:position + 1], r=eps)[0]
        return np.sort(found)

    def count_neighbors(self, eps: float, chunk_size: int = 10_000) -> np.ndarray:
        """
        Neighborhood size (self included) of every indexed point.

        Queries run in chunks of chunk_size points to bound memory.
        """
        counts = np.zeros(len(self._coords), dtype=np.int64)
        for start in range(0, len(self._coords), chunk_size):
            chunk = self._coords[start:start + chunk_size]
            counts[start:start + len(chunk)] = self._tree.query_radius(chunk, r=eps, count_only=True)
        return counts

    def nearest(self, query_coords) -> Tuple[np.ndarray, np.ndarray]:
        """
        Nearest indexed point for each query coordinate.

        Returns:
            (distances, positions) as 1-D arrays aligned with query_coords
        """
        if self._tree is None:
            raise ValueError("Cannot query an empty PointIndex")
        query = np.asarray(query_coords, dtype=np.float64).reshape(-1, 2)
        distances, positions = self._tree.query(query, k=1)
        return distances[:, 0], positions[:, 0]
