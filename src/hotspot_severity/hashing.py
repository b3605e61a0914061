"""
Hashing utilities for reproducibility and cache validation.

Each output artifact (feature table, model, evaluation metrics) gets a
metadata sidecar with:
  - input file hashes
  - config digest
  - code version (git commit if available)
  - runtime library versions
  - timestamp + run_id
Scripts skip a stage only if those hashes still match.
"""

import hashlib
import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from hotspot_severity.io_utils import atomic_write_json, read_json
from hotspot_severity.logging_utils import get_versions
from hotspot_severity.paths import METADATA_DIR


# =============================================================================
# File Hashing
# =============================================================================

def hash_file(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """
    Compute hash of a file, reading in chunks.

    Raises:
        FileNotFoundError: If path does not exist.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {path}")

    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)

    return h.hexdigest()


def hash_string(s: str, algorithm: str = "sha256") -> str:
    """Compute hash of a string."""
    h = hashlib.new(algorithm)
    h.update(s.encode("utf-8"))
    return h.hexdigest()


def hash_dict(d: Dict[str, Any], algorithm: str = "sha256") -> str:
    """
    Compute hash of a dictionary via canonical JSON serialization.

    Key order does not affect the digest.
    """
    s = json.dumps(d, sort_keys=True, default=str)
    return hash_string(s, algorithm)


# =============================================================================
# Git Version Info
# =============================================================================

def _run_git(*args: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def get_git_info() -> Dict[str, Any]:
    """
    Get git commit hash and dirty flag.

    Both values are None outside a git checkout.
    """
    commit = _run_git("rev-parse", "HEAD")
    status = _run_git("status", "--porcelain")
    return {
        "commit": commit.strip() if commit is not None else None,
        "dirty": len(status.strip()) > 0 if status is not None else None,
    }


# =============================================================================
# Metadata Sidecar
# =============================================================================

def sidecar_path_for(output_path: Union[str, Path], metadata_dir: Optional[Path] = None) -> Path:
    """Location of the metadata sidecar belonging to output_path."""
    metadata_dir = Path(metadata_dir) if metadata_dir is not None else METADATA_DIR
    return metadata_dir / f"{Path(output_path).stem}_metadata.json"


def create_metadata_sidecar(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create the metadata record for an output file.

    Args:
        output_path: Path to the output file
        inputs: Dictionary mapping input names to file paths
        config: Configuration used for this run
        run_id: Unique run identifier
        extra: Additional metadata to include

    Returns:
        Metadata dictionary
    """
    input_hashes = {}
    for name, path in inputs.items():
        path = Path(path)
        if path.exists():
            input_hashes[name] = {"path": str(path), "hash": hash_file(path)}
        else:
            input_hashes[name] = {"path": str(path), "hash": None, "missing": True}

    metadata = {
        "output_file": str(Path(output_path)),
        "run_id": run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "inputs": input_hashes,
        "config_digest": hash_dict(config),
        "config": config,
        "git": get_git_info(),
        "versions": get_versions(),
    }

    if extra:
        metadata["extra"] = extra

    return metadata


def write_metadata_sidecar(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    run_id: str,
    extra: Optional[Dict[str, Any]] = None,
    metadata_dir: Optional[Path] = None,
) -> Path:
    """
    Write a metadata sidecar file for an output.

    Returns:
        Path to the written sidecar file
    """
    metadata = create_metadata_sidecar(output_path, inputs, config, run_id, extra)
    sidecar_path = sidecar_path_for(output_path, metadata_dir)
    atomic_write_json(metadata, sidecar_path)
    return sidecar_path


def read_metadata_sidecar(
    output_path: Union[str, Path],
    metadata_dir: Optional[Path] = None,
) -> Optional[Dict[str, Any]]:
    """Read the metadata sidecar for an output file, or None if absent."""
    sidecar_path = sidecar_path_for(output_path, metadata_dir)
    if sidecar_path.exists():
        return read_json(sidecar_path)
    return None


# =============================================================================
# Cache Validation
# =============================================================================

def validate_cache(
    output_path: Union[str, Path],
    inputs: Dict[str, str],
    config: Dict[str, Any],
    metadata_dir: Optional[Path] = None,
) -> bool:
    """
    Check if a cached output is still valid.

    Valid means: the output exists, its sidecar exists, the config digest
    matches, and every input file still hashes to the recorded value.
    """
    output_path = Path(output_path)
    if not output_path.exists():
        return False

    metadata = read_metadata_sidecar(output_path, metadata_dir)
    if metadata is None:
        return False

    if metadata.get("config_digest") != hash_dict(config):
        return False

    cached_inputs = metadata.get("inputs", {})
    for name, path in inputs.items():
        path = Path(path)
        if name not in cached_inputs or not path.exists():
            return False
        if cached_inputs[name].get("hash") != hash_file(path):
            return False

    return True
