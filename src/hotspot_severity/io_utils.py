"""
I/O utilities with atomic writes and safe reads.

All outputs are written via temp file -> rename/replace so a failed run never
leaves a half-written artifact behind. Parquet is the internal format for
tables; CSV and GeoJSON are exports for display tools.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional, Union

import geopandas as gpd
import pandas as pd
import yaml


# =============================================================================
# Atomic Write Utilities
# =============================================================================

def _temp_sibling(target_path: Path, suffix: str) -> Path:
    """Create an empty temp file next to target_path and return its path."""
    fd, temp_path = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.stem}_",
        dir=target_path.parent,
    )
    os.close(fd)
    return Path(temp_path)


def atomic_write_with(
    target_path: Union[str, Path],
    writer: Callable[[Path], None],
    suffix: Optional[str] = None,
) -> None:
    """Run writer against a temp path, then rename it onto target_path."""
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = _temp_sibling(target_path, suffix or target_path.suffix or ".tmp")
    try:
        writer(temp_path)
        temp_path.replace(target_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


@contextmanager
def atomic_write(
    target_path: Union[str, Path],
    mode: str = "w",
    suffix: Optional[str] = None,
):
    """
    Context manager for atomic file writes.

    Writes to a temporary file first, then atomically renames to target.
    If an exception occurs, the temp file is cleaned up and target unchanged.

    Args:
        target_path: Final destination path
        mode: File mode ('w' for text, 'wb' for binary)
        suffix: Optional suffix for temp file (e.g., '.json')

    Yields:
        File handle for writing
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = _temp_sibling(target_path, suffix or target_path.suffix or ".tmp")
    try:
        encoding = None if "b" in mode else "utf-8"
        with open(temp_path, mode, encoding=encoding) as f:
            yield f
        temp_path.replace(target_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write_df(
    df: pd.DataFrame,
    target_path: Union[str, Path],
    **kwargs,
) -> None:
    """
    Atomically write a DataFrame to CSV or Parquet (chosen by extension).

    Args:
        df: DataFrame to write
        target_path: Destination path (.csv or .parquet)
        **kwargs: Additional arguments passed to to_csv/to_parquet
    """
    suffix = Path(target_path).suffix.lower()

    if suffix == ".parquet":
        atomic_write_with(target_path, lambda p: df.to_parquet(p, **kwargs))
    elif suffix == ".csv":
        kwargs.setdefault("index", False)
        atomic_write_with(target_path, lambda p: df.to_csv(p, **kwargs))
    else:
        raise ValueError(f"Unsupported format: {suffix}")


def atomic_write_gdf(
    gdf: gpd.GeoDataFrame,
    target_path: Union[str, Path],
    **kwargs,
) -> None:
    """
    Atomically write a GeoDataFrame to GeoParquet or GeoJSON.

    Args:
        gdf: GeoDataFrame to write
        target_path: Destination path (.parquet, .geojson)
        **kwargs: Additional arguments passed to writer
    """
    suffix = Path(target_path).suffix.lower()

    if suffix == ".parquet":
        atomic_write_with(target_path, lambda p: gdf.to_parquet(p, **kwargs))
    elif suffix == ".geojson":
        atomic_write_with(target_path, lambda p: gdf.to_file(p, driver="GeoJSON", **kwargs))
    else:
        raise ValueError(f"Unsupported geo format: {suffix}")


def atomic_write_json(
    data: Any,
    target_path: Union[str, Path],
    **kwargs,
) -> None:
    """Atomically write JSON data (indented, non-serializable values str()-ed)."""
    kwargs.setdefault("indent", 2)
    kwargs.setdefault("default", str)

    with atomic_write(target_path, mode="w", suffix=".json") as f:
        json.dump(data, f, **kwargs)


def atomic_write_yaml(
    data: Any,
    target_path: Union[str, Path],
    **kwargs,
) -> None:
    """Atomically write YAML data (block style, insertion order kept)."""
    kwargs.setdefault("default_flow_style", False)
    kwargs.setdefault("sort_keys", False)

    with atomic_write(target_path, mode="w", suffix=".yml") as f:
        yaml.safe_dump(data, f, **kwargs)


# =============================================================================
# Read Utilities
# =============================================================================

def read_yaml(path: Union[str, Path]) -> dict:
    """Read a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def read_json(path: Union[str, Path]) -> Any:
    """Read a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_df(
    path: Union[str, Path],
    **kwargs,
) -> pd.DataFrame:
    """
    Read a DataFrame from CSV or Parquet.

    Args:
        path: Path to data file
        **kwargs: Additional arguments passed to reader

    Returns:
        DataFrame
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".parquet":
        return pd.read_parquet(path, **kwargs)
    elif suffix == ".csv":
        kwargs.setdefault("low_memory", False)
        return pd.read_csv(path, **kwargs)
    else:
        raise ValueError(f"Unsupported format: {suffix}")


def latest_file(directory: Union[str, Path], pattern: str) -> Path:
    """
    Return the most recently modified file in directory matching pattern.

    Raises:
        FileNotFoundError: If nothing matches.
    """
    directory = Path(directory)
    candidates = [p for p in directory.glob(pattern) if p.is_file()]
    if not candidates:
        raise FileNotFoundError(f"No files matching '{pattern}' in {directory}")
    return max(candidates, key=lambda p: p.stat().st_mtime)
