from __future__ import annotations

import os

os.environ.setdefault("MPLCONFIGDIR", "/tmp/mpl-test")

import anndata as ad
import numpy as np
import pandas as pd
import pytest
import scipy.sparse as sp

from codexmarrow.core.dataset import SpatialDataset

CHANNELS = ["CD3", "CD20", "CD45", "CD61"]


def build_region(
    acquisition_id: str = "R1",
    n_cells: int = 6,
    max_id: int = 500,
    *,
    channels: list[str] | None = None,
    sparse: bool = False,
    seed: int = 0,
) -> ad.AnnData:
    rng = np.random.default_rng(seed)
    chans = list(channels or CHANNELS)
    cell_ids = np.arange(max_id - n_cells + 1, max_id + 1, dtype=np.int64)
    obs = pd.DataFrame(
        {
            "cell_id": cell_ids,
            "acquisition_id": acquisition_id,
            "annotation": pd.Categorical(
                (["B cell", "T cell", "Myeloid"] * n_cells)[:n_cells]
            ),
            "cluster": pd.Categorical([str(i % 3) for i in range(n_cells)]),
            "area": rng.uniform(20.0, 80.0, size=n_cells),
            "sample": pd.Categorical(["S1"] * n_cells),
        },
        index=pd.Index([f"{acquisition_id}_{i}" for i in cell_ids]),
    )
    X = rng.uniform(0.0, 5.0, size=(n_cells, len(chans)))
    background = np.full((n_cells, len(chans)), 0.25)
    if sparse:
        X = sp.csr_matrix(X)
    region = ad.AnnData(
        X=X,
        obs=obs,
        var=pd.DataFrame(index=pd.Index(chans)),
        layers={"background": background},
    )
    region.obsm["spatial"] = rng.integers(0, 1000, size=(n_cells, 2)).astype(float)
    return region


@pytest.fixture
def make_region():
    return build_region


@pytest.fixture
def toy_dataset():
    regions = {
        "R1": build_region("R1", n_cells=6, max_id=500, seed=1),
        "R2": build_region("R2", n_cells=4, max_id=40, seed=2),
        "R3": build_region("R3", n_cells=5, max_id=12, seed=3),
    }
    project = pd.DataFrame(
        {"sample": ["S1", "S1", "S1"], "condition": ["NBM", "AML", "AML"]},
        index=pd.Index(["R1", "R2", "R3"], name="acquisition_id"),
    )
    return SpatialDataset(regions, project)


@pytest.fixture
def unit_square():
    return np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])


@pytest.fixture
def right_triangle():
    return np.array([[0.0, 0.0], [4.0, 0.0], [0.0, 3.0]])
