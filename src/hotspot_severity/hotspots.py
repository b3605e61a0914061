"""
Hotspot centroids and the distance-to-hotspot feature.

Each cluster found by the density clusterer becomes a hotspot whose centroid
is the arithmetic mean longitude and mean latitude of its members. Every
point (clustered or noise) then gets distance_to_hotspot, the flat-plane
euclidean distance to the closest centroid.
"""

from dataclasses import dataclass
from typing import Dict, List

import geopandas as gpd
import numpy as np
import pandas as pd

from hotspot_severity.point_index import PointIndex


class NoClustersFound(Exception):
    """Raised when clustering produced no hotspot to measure distance to."""
    pass


@dataclass(frozen=True)
class Centroid:
    """Mean location of one hotspot cluster."""
    cluster_id: int
    mean_longitude: float
    mean_latitude: float
    n_points: int


@dataclass(frozen=True)
class HotspotResult:
    """Centroids plus per-point distance to the nearest one."""
    centroids: Dict[int, Centroid]
    distances: pd.Series  # float64, same index as the labels
    nearest_cluster: pd.Series  # Int64 cluster id of the closest centroid

    def centroid_frame(self) -> pd.DataFrame:
        """Centroids as a table ordered by cluster id."""
        rows = [vars(c) for _, c in sorted(self.centroids.items())]
        return pd.DataFrame(rows, columns=["cluster_id", "mean_longitude", "mean_latitude", "n_points"])

    def largest(self, n: int = 5) -> List[Centroid]:
        """The n biggest hotspots, ties broken by cluster id."""
        ranked = sorted(self.centroids.values(), key=lambda c: (-c.n_points, c.cluster_id))
        return ranked[:n]


def resolve(points, labels: pd.Series) -> HotspotResult:
    """
    Compute hotspot centroids and every point's distance to the nearest one.

    Args:
        points: (n, 2) array of (longitude, latitude) or a PointIndex, in the
            same order as labels
        labels: Int64 cluster labels (<NA> = noise)

    Returns:
        HotspotResult

    Raises:
        NoClustersFound: If labels contain no cluster at all.
    """
    coords = points.coords if isinstance(points, PointIndex) else np.asarray(points, dtype=np.float64)
    if len(coords) != len(labels):
        raise ValueError(f"{len(coords)} points but {len(labels)} labels")

    clustered = labels.notna().to_numpy()
    if not clustered.any():
        raise NoClustersFound(
            f"No clusters among {len(labels):,} points; "
            "eps/min_pts are too strict for this data"
        )

    members = pd.DataFrame(
        {
            "cluster_id": labels[clustered].astype("int64").to_numpy(),
            "mean_longitude": coords[clustered, 0],
            "mean_latitude": coords[clustered, 1],
        }
    )
    grouped = members.groupby("cluster_id", sort=True)
    means = grouped[["mean_longitude", "mean_latitude"]].mean()
    sizes = grouped.size()

    centroids = {
        int(cid): Centroid(
            cluster_id=int(cid),
            mean_longitude=float(row.mean_longitude),
            mean_latitude=float(row.mean_latitude),
            n_points=int(sizes.loc[cid]),
        )
        for cid, row in means.iterrows()
    }

    centroid_index = PointIndex(means[["mean_longitude", "mean_latitude"]].to_numpy())
    distances, positions = centroid_index.nearest(coords)
    centroid_ids = means.index.to_numpy()

    return HotspotResult(
        centroids=centroids,
        distances=pd.Series(distances, index=labels.index, dtype="float64", name="distance_to_hotspot"),
        nearest_cluster=pd.Series(centroid_ids[positions], index=labels.index, dtype="Int64", name="nearest_hotspot"),
    )


def centroids_to_gdf(result: HotspotResult, crs: str = "EPSG:4326") -> gpd.GeoDataFrame:
    """Hotspot centroids as point geometries for map display."""
    df = result.centroid_frame()
    return gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df["mean_longitude"], df["mean_latitude"]),
        crs=crs,
    )
