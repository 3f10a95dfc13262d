"""Region merger: append synthetic point cells to one region's per-cell tables."""

from __future__ import annotations

import copy
from dataclasses import replace
from typing import Any, Mapping, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import scipy.sparse as sp

from codexmarrow.core.dataset import (
    ACQUISITION_KEY,
    CELL_ID_KEY,
    SPATIAL_KEY,
    compose_obs_name,
    validate_region,
)
from codexmarrow.core.errors import IdentifierCollision, PartialInsertion, SchemaMismatch
from codexmarrow.core.geometry import flip_y
from codexmarrow.core.types import IncorporationConfig, SyntheticCell


def _append_zero_rows(mat: Any, n_new: int) -> Any:
    if sp.issparse(mat):
        pad = sp.csr_matrix((n_new, mat.shape[1]), dtype=mat.dtype)
        return sp.vstack([mat, pad], format=mat.format)
    arr = np.asarray(mat)
    pad = np.zeros((n_new,) + arr.shape[1:], dtype=arr.dtype)
    return np.concatenate([arr, pad], axis=0)


def _append_missing_rows(value: Any, n_new: int, new_index: Sequence[str]) -> Any:
    if isinstance(value, pd.DataFrame):
        pad = pd.DataFrame(index=pd.Index(list(new_index)), columns=value.columns)
        return pd.concat([value, pad], axis=0)
    if sp.issparse(value):
        return _append_zero_rows(value, n_new)
    arr = np.asarray(value)
    if np.issubdtype(arr.dtype, np.floating):
        pad = np.full((n_new,) + arr.shape[1:], np.nan, dtype=arr.dtype)
        return np.concatenate([arr, pad], axis=0)
    return _append_zero_rows(arr, n_new)


def _pad_square(mat: Any, n_new: int) -> sp.spmatrix:
    m = sp.csr_matrix(mat, copy=True)
    n = m.shape[0] + n_new
    m.resize((n, n))
    return m


def check_channels(region: ad.AnnData, config: IncorporationConfig, acquisition_id: str) -> None:
    n_channels = int(region.n_vars)
    matrices = {"X": region.X} if region.X is not None else {}
    matrices.update({f"layers['{k}']": v for k, v in region.layers.items()})
    for name, mat in matrices.items():
        if int(mat.shape[1]) != n_channels:
            raise SchemaMismatch(
                f"Region '{acquisition_id}' {name} has {mat.shape[1]} channels, expected {n_channels}."
            )
    if config.expected_channels is not None:
        expected = [str(c) for c in config.expected_channels]
        observed = [str(c) for c in region.var_names]
        if observed != expected:
            missing = sorted(set(expected) - set(observed))
            extra = sorted(set(observed) - set(expected))
            raise SchemaMismatch(
                f"Region '{acquisition_id}' channel set differs from the panel "
                f"(missing={missing}, extra={extra})."
            )
    if (
        config.legacy_background_source
        and config.background_layer in region.layers
        and region.X is None
    ):
        raise SchemaMismatch(
            f"Region '{acquisition_id}' has no X to build the background layer from."
        )


def mint_cell_ids(
    region: ad.AnnData,
    candidates: Sequence[SyntheticCell],
    acquisition_id: str,
) -> list[SyntheticCell]:
    """Assign ids continuing from the region's maximum existing cell id."""
    existing = pd.Series(region.obs[CELL_ID_KEY]).astype("int64")
    start = int(existing.max()) + 1 if existing.size else 1
    new_ids = np.arange(start, start + len(candidates), dtype=np.int64)

    clash = sorted(set(new_ids.tolist()) & set(existing.tolist()))
    if clash:
        raise IdentifierCollision(
            f"Region '{acquisition_id}' already contains cell ids {clash[:5]}."
        )
    names = [compose_obs_name(acquisition_id, i) for i in new_ids]
    clash_names = sorted(set(names) & set(map(str, region.obs_names)))
    if clash_names:
        raise IdentifierCollision(
            f"Region '{acquisition_id}' already contains obs names {clash_names[:5]}."
        )
    return [replace(c, cell_id=int(i)) for c, i in zip(candidates, new_ids)]


def _merge_obs(
    obs: pd.DataFrame,
    minted: Sequence[SyntheticCell],
    config: IncorporationConfig,
    acquisition_id: str,
    project_values: Mapping[str, Any] | None,
) -> pd.DataFrame:
    names = [compose_obs_name(acquisition_id, c.cell_id) for c in minted]
    key = config.annotation_key
    base = obs.copy()

    new_rows: dict[str, Any] = {
        CELL_ID_KEY: np.array([c.cell_id for c in minted], dtype=np.int64),
        key: [c.label for c in minted],
    }
    if ACQUISITION_KEY in base.columns:
        new_rows[ACQUISITION_KEY] = acquisition_id
    new_obs = pd.DataFrame(new_rows, index=pd.Index(names))

    categorical = {
        col: base[col].cat.categories
        for col in base.columns
        if isinstance(base[col].dtype, pd.CategoricalDtype)
    }
    shared = [c for c in new_obs.columns if c in base.columns]
    for col in shared:
        base[col] = base[col].astype("object")
    base[CELL_ID_KEY] = base[CELL_ID_KEY].astype("int64")

    # Full outer merge keyed by obs name; names are disjoint so each row comes
    # from exactly one side and shared columns coalesce.
    merged = pd.merge(
        base.reset_index(names="_obs_name"),
        new_obs.reset_index(names="_obs_name"),
        how="outer",
        on=["_obs_name"] + shared,
    )
    merged = merged.set_index("_obs_name")
    merged = merged.reindex(list(base.index) + names)
    merged.index.name = obs.index.name

    for col, cats in categorical.items():
        seen = pd.Index(merged[col].dropna().unique())
        merged[col] = pd.Categorical(merged[col], categories=cats.append(seen.difference(cats)))
    merged[CELL_ID_KEY] = merged[CELL_ID_KEY].astype("int64")

    # Only the appended rows inherit region-level values; existing rows keep theirs.
    is_new = merged.index.isin(names)
    for col in config.project_columns:
        if col not in merged.columns:
            continue
        values = merged[col]
        fill = None
        if project_values is not None and col in project_values and not pd.isna(project_values[col]):
            fill = project_values[col]
        if fill is not None and isinstance(values.dtype, pd.CategoricalDtype) and fill not in values.cat.categories:
            values = values.cat.add_categories([fill])
        inherited = values.ffill()
        if fill is not None:
            inherited = inherited.fillna(fill)
        merged[col] = values.where(~is_new, inherited)
    return merged


def merge_region_with_ids(
    region: ad.AnnData,
    candidates: Sequence[SyntheticCell],
    config: IncorporationConfig,
    acquisition_id: str,
    project_values: Mapping[str, Any] | None = None,
) -> tuple[ad.AnnData, list[SyntheticCell]]:
    """Merge candidates into `region`, returning the new region and minted cells.

    All per-cell tables are staged before any AnnData is built; the input
    region is never mutated.
    """
    if len(candidates) == 0:
        return region, []

    validate_region(region, acquisition_id)
    check_channels(region, config, acquisition_id)
    minted = mint_cell_ids(region, candidates, acquisition_id)
    n_new = len(minted)
    names = [compose_obs_name(acquisition_id, c.cell_id) for c in minted]

    obs = _merge_obs(region.obs, minted, config, acquisition_id, project_values)

    X = _append_zero_rows(region.X, n_new) if region.X is not None else None
    layers = {}
    for name, mat in region.layers.items():
        if config.legacy_background_source and name == config.background_layer:
            # Reproduces the historical notebook, which padded the expression
            # matrix instead of the background matrix.
            layers[name] = _append_zero_rows(region.X, n_new)
        else:
            layers[name] = _append_zero_rows(mat, n_new)

    stored = np.asarray(region.obsm[SPATIAL_KEY], dtype=float)
    centroids = np.array([[c.x, c.y] for c in minted], dtype=float)
    # Centroids live in ROI-source orientation; flip them into stored orientation.
    new_xy = flip_y(centroids, origin=config.flip_origin)
    if stored.shape[1] > 2:
        extra = np.full((n_new, stored.shape[1] - 2), np.nan)
        new_xy = np.concatenate([new_xy, extra], axis=1)
    obsm = {SPATIAL_KEY: np.concatenate([stored, new_xy], axis=0)}
    for name, value in region.obsm.items():
        if name != SPATIAL_KEY:
            obsm[name] = _append_missing_rows(value, n_new, names)
    obsp = {name: _pad_square(value, n_new) for name, value in region.obsp.items()}

    n_total = region.n_obs + n_new
    staged = {"obs": obs.shape[0], "obsm['spatial']": obsm[SPATIAL_KEY].shape[0]}
    if X is not None:
        staged["X"] = X.shape[0]
    staged.update({f"layers['{k}']": v.shape[0] for k, v in layers.items()})
    staged.update({f"obsm['{k}']": v.shape[0] for k, v in obsm.items()})
    staged.update({f"obsp['{k}']": v.shape[0] for k, v in obsp.items()})
    bad = {k: v for k, v in staged.items() if int(v) != n_total}
    if bad:
        raise PartialInsertion(
            f"Region '{acquisition_id}' tables disagree on row count (expected {n_total}): {bad}"
        )
    if not obs.index.is_unique:
        raise IdentifierCollision(f"Region '{acquisition_id}' has duplicated obs names after merge.")

    merged = ad.AnnData(
        X=X,
        obs=obs,
        var=region.var.copy(),
        uns=copy.deepcopy(dict(region.uns)),
        obsm=obsm,
        varm=dict(region.varm),
        layers=layers,
        obsp=obsp,
        varp=dict(region.varp),
    )
    return merged, minted


def merge_region(
    region: ad.AnnData,
    candidates: Sequence[SyntheticCell],
    config: IncorporationConfig,
    acquisition_id: str | None = None,
    project_values: Mapping[str, Any] | None = None,
) -> ad.AnnData:
    """Return `region` with one zero-expression cell appended per candidate.

    With no candidates the input object itself is returned.
    """
    if len(candidates) == 0:
        return region
    aid = acquisition_id if acquisition_id is not None else candidates[0].acquisition_id
    merged, _ = merge_region_with_ids(region, candidates, config, aid, project_values)
    return merged
