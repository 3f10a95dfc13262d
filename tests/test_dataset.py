from __future__ import annotations

from pathlib import Path

import anndata as ad
import numpy as np
import pytest

from codexmarrow.core.dataset import (
    SpatialDataset,
    compose_obs_name,
    read_dataset,
    validate_region,
    write_dataset,
)
from codexmarrow.core.types import IncorporationConfig, SyntheticCell
from codexmarrow.pipeline.incorporate import incorporate_objects


def test_compose_obs_name():
    assert compose_obs_name("R1", 501) == "R1_501"
    assert compose_obs_name("R1", np.int64(7)) == "R1_7"


def test_dataset_is_a_read_only_mapping(toy_dataset):
    assert toy_dataset.acquisition_ids == ["R1", "R2", "R3"]
    assert len(toy_dataset) == 3
    assert "R2" in toy_dataset and "R9" not in toy_dataset
    assert toy_dataset.n_cells == 15
    with pytest.raises(TypeError):
        toy_dataset.regions["R4"] = toy_dataset["R1"]
    meta = toy_dataset.project_metadata
    meta.loc["R1", "condition"] = "changed"
    assert toy_dataset.project_metadata.loc["R1", "condition"] == "NBM"
    assert toy_dataset.project_metadata.index.name == "acquisition_id"


def test_with_regions_shares_unchanged_regions(toy_dataset, make_region):
    replacement = make_region("R2", n_cells=2, max_id=9)
    updated = toy_dataset.with_regions({"R2": replacement})
    assert updated["R2"] is replacement
    assert updated["R1"] is toy_dataset["R1"]
    assert toy_dataset["R2"].n_obs == 4
    with pytest.raises(KeyError, match="R9"):
        toy_dataset.with_regions({"R9": replacement})


def test_validate_region_rejects_bad_regions(make_region):
    region = make_region()
    validate_region(region, "R1")

    no_xy = make_region()
    del no_xy.obsm["spatial"]
    with pytest.raises(KeyError, match="spatial"):
        validate_region(no_xy, "R1")

    dup = make_region()
    dup.obs["cell_id"] = 1
    with pytest.raises(ValueError, match="duplicated"):
        validate_region(dup, "R1")

    no_id = make_region()
    del no_id.obs["cell_id"]
    with pytest.raises(KeyError, match="cell_id"):
        validate_region(no_id, "R1")


def test_h5ad_round_trip_keeps_regions_and_project_metadata(toy_dataset, tmp_path: Path):
    path = write_dataset(toy_dataset, tmp_path / "sub" / "dataset.h5ad")
    assert path.exists()
    loaded = read_dataset(path)
    assert loaded.acquisition_ids == toy_dataset.acquisition_ids
    for aid in toy_dataset.acquisition_ids:
        a, b = toy_dataset[aid], loaded[aid]
        assert a.obs_names.tolist() == b.obs_names.tolist()
        assert np.allclose(np.asarray(a.X), np.asarray(b.X))
        assert np.allclose(np.asarray(a.layers["background"]), np.asarray(b.layers["background"]))
        assert np.array_equal(np.asarray(a.obsm["spatial"]), np.asarray(b.obsm["spatial"]))
        assert b.obs["cell_id"].tolist() == a.obs["cell_id"].tolist()
    meta = loaded.project_metadata
    assert meta.loc["R2", "condition"] == "AML"
    assert meta.index.name == "acquisition_id"


def test_from_anndata_requires_acquisition_key(toy_dataset):
    combined = toy_dataset.to_anndata()
    assert combined.n_obs == 15
    assert combined.obs_names.is_unique
    with pytest.raises(KeyError, match="slide"):
        SpatialDataset.from_anndata(combined, acquisition_key="slide")


def test_read_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError, match="not found"):
        read_dataset(tmp_path / "missing.h5ad")


def test_empty_dataset_cannot_be_exported():
    with pytest.raises(ValueError, match="empty"):
        SpatialDataset({}).to_anndata()


def test_from_anndata_without_project_metadata(make_region):
    combined = ad.concat([make_region("R1"), make_region("R2", max_id=50)], index_unique=None)
    dataset = SpatialDataset.from_anndata(combined)
    assert dataset.acquisition_ids == ["R1", "R2"]
    assert dataset.project_metadata.index.tolist() == ["R1", "R2"]


def test_round_trip_keeps_label_column_added_to_some_regions(toy_dataset, tmp_path: Path):
    cfg = IncorporationConfig(story="Megakaryocytes", label="Megakaryocyte", annotation_key="object_type")
    cell = SyntheticCell("R1", "mk-1", 4.0, 4.0, "Megakaryocyte")
    result = incorporate_objects(toy_dataset, {"R1": [cell]}, cfg)
    loaded = read_dataset(write_dataset(result.dataset, tmp_path / "inc.h5ad"))

    r1 = loaded["R1"].obs
    assert "object_type" in r1.columns
    assert r1.loc["R1_501", "object_type"] == "Megakaryocyte"
    assert r1["object_type"].iloc[:-1].isna().all()
    assert loaded["R2"].obs["object_type"].isna().all()
    assert loaded.n_cells == toy_dataset.n_cells + 1
