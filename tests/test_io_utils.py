"""
Tests for atomic writes, readers, hashing and metadata sidecars.
"""

import os
import time

import pandas as pd
import pytest

from hotspot_severity.hashing import (
    hash_dict,
    hash_file,
    read_metadata_sidecar,
    sidecar_path_for,
    validate_cache,
    write_metadata_sidecar,
)
from hotspot_severity.io_utils import (
    atomic_write,
    atomic_write_df,
    atomic_write_json,
    atomic_write_yaml,
    latest_file,
    read_df,
    read_json,
    read_yaml,
)


@pytest.fixture
def table():
    return pd.DataFrame({"cluster_id": [1, 2], "n_points": [600, 40]})


class TestAtomicWrites:

    def test_parquet_round_trip(self, table, tmp_path):
        path = tmp_path / "out" / "centroids.parquet"
        atomic_write_df(table, path)
        pd.testing.assert_frame_equal(read_df(path), table)

    def test_csv_has_no_index(self, table, tmp_path):
        path = tmp_path / "centroids.csv"
        atomic_write_df(table, path)
        assert list(read_df(path).columns) == ["cluster_id", "n_points"]

    def test_unsupported_suffix(self, table, tmp_path):
        with pytest.raises(ValueError):
            atomic_write_df(table, tmp_path / "centroids.xlsx")

    def test_failed_write_leaves_nothing_behind(self, tmp_path):
        target = tmp_path / "metrics.json"
        with pytest.raises(RuntimeError):
            with atomic_write(target) as f:
                f.write("{partial")
                raise RuntimeError("boom")
        assert not target.exists()
        assert os.listdir(tmp_path) == []

    def test_failed_write_keeps_previous_version(self, tmp_path):
        target = tmp_path / "metrics.json"
        atomic_write_json({"auc": 0.7}, target)
        with pytest.raises(RuntimeError):
            with atomic_write(target) as f:
                f.write("{partial")
                raise RuntimeError("boom")
        assert read_json(target) == {"auc": 0.7}

    def test_yaml_round_trip(self, tmp_path):
        path = tmp_path / "run_config.yml"
        atomic_write_yaml({"boosting": {"max_depth": 4}, "random_seed": 123}, path)
        assert read_yaml(path) == {"boosting": {"max_depth": 4}, "random_seed": 123}


class TestReaders:

    def test_empty_yaml_is_empty_dict(self, tmp_path):
        path = tmp_path / "params.yml"
        path.write_text("")
        assert read_yaml(path) == {}

    def test_latest_file(self, tmp_path):
        old, new = tmp_path / "a.csv", tmp_path / "b.csv"
        old.write_text("x\n1\n")
        new.write_text("x\n2\n")
        past = time.time() - 100
        os.utime(old, (past, past))
        assert latest_file(tmp_path, "*.csv") == new

    def test_latest_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            latest_file(tmp_path, "*.csv")


class TestHashing:

    def test_hash_dict_ignores_key_order(self):
        assert hash_dict({"eps": 0.1, "min_pts": 500}) == hash_dict({"min_pts": 500, "eps": 0.1})

    def test_hash_dict_detects_change(self):
        assert hash_dict({"eps": 0.1}) != hash_dict({"eps": 0.2})

    def test_hash_file_stable(self, tmp_path):
        path = tmp_path / "raw.csv"
        path.write_text("longitude,latitude\n-1.5,53.4\n")
        assert hash_file(path) == hash_file(path)


class TestMetadataSidecar:

    @pytest.fixture
    def artifacts(self, tmp_path):
        raw = tmp_path / "raw.csv"
        raw.write_text("longitude,latitude\n-1.5,53.4\n")
        output = tmp_path / "accident_features.parquet"
        output.write_bytes(b"placeholder")
        return raw, output, tmp_path / "metadata"

    def test_sidecar_location(self, artifacts):
        _, output, metadata_dir = artifacts
        assert sidecar_path_for(output, metadata_dir) == metadata_dir / "accident_features_metadata.json"

    def test_sidecar_contents(self, artifacts):
        raw, output, metadata_dir = artifacts
        config = {"clustering": {"eps": 0.1}}
        write_metadata_sidecar(output, {"raw": str(raw)}, config, "run-1", {"n_rows": 1}, metadata_dir)

        metadata = read_metadata_sidecar(output, metadata_dir)
        assert metadata["run_id"] == "run-1"
        assert metadata["config_digest"] == hash_dict(config)
        assert metadata["inputs"]["raw"]["hash"] == hash_file(raw)
        assert metadata["extra"] == {"n_rows": 1}
        assert "versions" in metadata

    def test_cache_valid_until_input_changes(self, artifacts):
        raw, output, metadata_dir = artifacts
        inputs, config = {"raw": str(raw)}, {"clustering": {"eps": 0.1}}
        write_metadata_sidecar(output, inputs, config, "run-1", metadata_dir=metadata_dir)

        assert validate_cache(output, inputs, config, metadata_dir)
        raw.write_text("longitude,latitude\n-1.6,53.4\n")
        assert not validate_cache(output, inputs, config, metadata_dir)

    def test_cache_invalid_on_config_change(self, artifacts):
        raw, output, metadata_dir = artifacts
        inputs = {"raw": str(raw)}
        write_metadata_sidecar(output, inputs, {"clustering": {"eps": 0.1}}, "run-1", metadata_dir=metadata_dir)
        assert not validate_cache(output, inputs, {"clustering": {"eps": 0.2}}, metadata_dir)

    def test_cache_invalid_without_sidecar(self, artifacts):
        raw, output, metadata_dir = artifacts
        assert not validate_cache(output, {"raw": str(raw)}, {}, metadata_dir)
