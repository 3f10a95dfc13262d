"""Whole-dataset container: one AnnData per acquisition plus project metadata."""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import anndata as ad
import numpy as np
import pandas as pd

SPATIAL_KEY = "spatial"
ACQUISITION_KEY = "acquisition_id"
CELL_ID_KEY = "cell_id"
PROJECT_METADATA_UNS = "project_metadata"


def compose_obs_name(acquisition_id: str, cell_id: int) -> str:
    return f"{acquisition_id}_{int(cell_id)}"


def validate_region(region: ad.AnnData, acquisition_id: str) -> None:
    if CELL_ID_KEY not in region.obs.columns:
        raise KeyError(f"Region '{acquisition_id}' is missing obs['{CELL_ID_KEY}'].")
    if SPATIAL_KEY not in region.obsm:
        raise KeyError(f"Region '{acquisition_id}' is missing obsm['{SPATIAL_KEY}'].")
    xy = np.asarray(region.obsm[SPATIAL_KEY])
    if xy.ndim != 2 or xy.shape[1] < 2:
        raise ValueError(
            f"Region '{acquisition_id}' obsm['{SPATIAL_KEY}'] must have shape (N, 2+), received {xy.shape}."
        )
    ids = pd.Series(region.obs[CELL_ID_KEY])
    if ids.isna().any():
        raise ValueError(f"Region '{acquisition_id}' has missing cell ids.")
    if ids.duplicated().any():
        raise ValueError(f"Region '{acquisition_id}' has duplicated cell ids.")


class SpatialDataset:
    """Immutable collection of regions keyed by acquisition id.

    Transformations return new datasets; regions that are not replaced are
    shared by reference, never copied.
    """

    def __init__(
        self,
        regions: Mapping[str, ad.AnnData],
        project_metadata: pd.DataFrame | None = None,
    ):
        self._regions = MappingProxyType({str(k): v for k, v in regions.items()})
        if project_metadata is None:
            project_metadata = pd.DataFrame(index=pd.Index(list(self._regions), name=ACQUISITION_KEY))
        self._project_metadata = project_metadata.rename_axis(ACQUISITION_KEY).copy()

    @property
    def regions(self) -> Mapping[str, ad.AnnData]:
        return self._regions

    @property
    def project_metadata(self) -> pd.DataFrame:
        return self._project_metadata.copy()

    @property
    def acquisition_ids(self) -> list[str]:
        return list(self._regions)

    @property
    def n_cells(self) -> int:
        return int(sum(r.n_obs for r in self._regions.values()))

    def __len__(self) -> int:
        return len(self._regions)

    def __getitem__(self, acquisition_id: str) -> ad.AnnData:
        return self._regions[acquisition_id]

    def __contains__(self, acquisition_id: object) -> bool:
        return acquisition_id in self._regions

    def with_regions(self, updates: Mapping[str, ad.AnnData]) -> "SpatialDataset":
        unknown = sorted(set(updates) - set(self._regions))
        if unknown:
            raise KeyError(f"Unknown acquisition ids: {', '.join(unknown)}")
        merged = {k: updates.get(k, v) for k, v in self._regions.items()}
        return SpatialDataset(merged, self._project_metadata)

    def to_anndata(self) -> ad.AnnData:
        parts = []
        for aid, region in self._regions.items():
            part = region.copy()
            part.obs[ACQUISITION_KEY] = aid
            parts.append(part)
        if not parts:
            raise ValueError("Cannot export an empty dataset.")
        # Outer join keeps obs columns and layers that only some regions carry.
        combined = ad.concat(parts, join="outer", merge="same", index_unique=None)
        combined.uns[PROJECT_METADATA_UNS] = self._project_metadata.reset_index()
        return combined

    @classmethod
    def from_anndata(
        cls,
        adata: ad.AnnData,
        acquisition_key: str = ACQUISITION_KEY,
    ) -> "SpatialDataset":
        if acquisition_key not in adata.obs.columns:
            raise KeyError(f"adata.obs['{acquisition_key}'] not found.")
        keys = adata.obs[acquisition_key].astype(str)
        regions: dict[str, ad.AnnData] = {}
        for aid in pd.unique(keys):
            region = adata[(keys == aid).to_numpy()].copy()
            validate_region(region, aid)
            regions[str(aid)] = region

        project = adata.uns.get(PROJECT_METADATA_UNS)
        if isinstance(project, pd.DataFrame) and acquisition_key in project.columns:
            project = project.assign(**{acquisition_key: project[acquisition_key].astype(str)})
            project = project.set_index(acquisition_key)
        else:
            project = None
        return cls(regions, project)


def read_dataset(path: str | Path, acquisition_key: str = ACQUISITION_KEY) -> SpatialDataset:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input file '{p}' not found.")
    return SpatialDataset.from_anndata(ad.read_h5ad(p), acquisition_key=acquisition_key)


def write_dataset(dataset: SpatialDataset, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    dataset.to_anndata().write_h5ad(out)
    return out
