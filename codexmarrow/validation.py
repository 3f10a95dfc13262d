"""Post-incorporation checks: label bookkeeping and spatial overlays."""

from __future__ import annotations

from pathlib import Path

import anndata as ad
import matplotlib

# Use a non-interactive backend for reproducible headless runs.
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from codexmarrow.core.dataset import SPATIAL_KEY, SpatialDataset
from codexmarrow.core.geometry import flip_y
from codexmarrow.core.types import IncorporationReport
from codexmarrow.plotting.styles import DEFAULT_PLOT_STYLE, PlotStyle
from codexmarrow.plotting.utils import save_figure


def _label_count(region: ad.AnnData, key: str, label: str) -> int:
    if key not in region.obs.columns:
        return 0
    return int((region.obs[key].astype("object") == label).sum())


def check_label_presence(
    before: SpatialDataset,
    after: SpatialDataset,
    report: IncorporationReport,
    key: str,
) -> pd.DataFrame:
    """Compare per-region cell and label counts against the pass report."""
    added = report.added_by_region()
    rows = []
    for aid in after.acquisition_ids:
        reg_before = before[aid] if aid in before else None
        reg_after = after[aid]
        n_before = int(reg_before.n_obs) if reg_before is not None else 0
        lab_before = _label_count(reg_before, key, report.label) if reg_before is not None else 0
        n_after = int(reg_after.n_obs)
        lab_after = _label_count(reg_after, key, report.label)
        expected = int(added.get(aid, 0))
        rows.append(
            {
                "acquisition_id": aid,
                "n_cells_before": n_before,
                "n_cells_after": n_after,
                "label_before": lab_before,
                "label_after": lab_after,
                "expected_added": expected,
                "ok": (n_after - n_before == expected) and (lab_after - lab_before == expected),
            }
        )
    return pd.DataFrame(rows)


def assert_label_presence(table: pd.DataFrame) -> None:
    bad = table.loc[~table["ok"].astype(bool), "acquisition_id"].tolist()
    if bad:
        raise ValueError(f"Label bookkeeping mismatch in regions: {', '.join(map(str, bad))}")


def plot_region_overlay(
    region: ad.AnnData,
    key: str,
    label: str,
    outpath: Path,
    *,
    title: str | None = None,
    image: np.ndarray | None = None,
    flip_origin: float = 0.0,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> None:
    """Scatter cells in ROI-source orientation with `label` cells highlighted.

    `image` is drawn underneath in pixel coordinates (origin at top-left) so a
    mirrored overlay is visible at a glance.
    """
    xy = flip_y(np.asarray(region.obsm[SPATIAL_KEY], dtype=float)[:, :2], origin=flip_origin)
    if key in region.obs.columns:
        mask = (region.obs[key].astype("object") == label).to_numpy()
    else:
        mask = np.zeros(region.n_obs, dtype=bool)

    fig, ax = plt.subplots(figsize=style.figsize_region)
    if image is not None:
        ax.imshow(image, origin="upper", alpha=style.image_alpha, cmap="gray")
    ax.scatter(
        xy[~mask, 0],
        xy[~mask, 1],
        s=style.s_cells,
        alpha=style.alpha_cells,
        color=style.color_cells,
        linewidths=0,
        rasterized=True,
        label="cells",
    )
    ax.scatter(
        xy[mask, 0],
        xy[mask, 1],
        s=style.s_synthetic,
        alpha=style.alpha_synthetic,
        color=style.color_synthetic,
        marker=style.synthetic_marker,
        linewidths=0.5,
        edgecolors="white",
        label=f"{label} (n={int(mask.sum())})",
    )
    if image is None:
        ax.invert_yaxis()
    ax.set_aspect("equal")
    ax.set_title(title or label, fontsize=style.title_fontsize)
    ax.set_xlabel("x (px)", fontsize=style.axis_label_fontsize)
    ax.set_ylabel("y (px)", fontsize=style.axis_label_fontsize)
    ax.legend(loc="upper left", bbox_to_anchor=(1.02, 1.0), fontsize=style.legend_fontsize, frameon=True)
    fig.tight_layout()
    save_figure(fig, outpath, style=style, bbox_tight=True)
